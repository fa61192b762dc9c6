from __future__ import annotations

from datetime import date

MIN_GRADE = 9
MAX_GRADE = 12


def school_year_ending_year(event_date: date) -> int:
    """School years run July through June; a fall event belongs to the next calendar year's class."""
    if event_date.month >= 7:
        return event_date.year + 1
    return event_date.year


def current_grade(graduating_class_year: int | None, event_date: date) -> int | None:
    if graduating_class_year is None:
        return None
    grade = MAX_GRADE - (graduating_class_year - school_year_ending_year(event_date))
    return max(MIN_GRADE, min(MAX_GRADE, grade))


def graduating_class_year(grade: int, event_date: date) -> int:
    return school_year_ending_year(event_date) + (MAX_GRADE - grade)
