import pytest

from jobshadow.core.exceptions import LotteryPreconditionError, ResourceNotFoundError
from jobshadow.models import GradeOrder, LotteryConfiguration, User, UserRole
from jobshadow.services.lottery_config import (
    add_manual_assignment,
    get_active_event,
    get_configuration,
    get_or_create_configuration,
    remove_manual_assignment,
    remove_prefill_setting,
    resolve_admin_school,
    set_grade_order,
    upsert_prefill_setting,
)
from lottery_factories import add_position, add_student, build_school


def test_resolve_admin_school_by_role(db):
    full = build_school(db)
    viewer = build_school(db, name="North High", admin_role=UserRole.read_only_admin)
    db.commit()

    assert resolve_admin_school(db, full.admin.id) == full.school.id
    assert resolve_admin_school(db, viewer.admin.id, require_full_access=False) == viewer.school.id
    with pytest.raises(LotteryPreconditionError, match="Read-only"):
        resolve_admin_school(db, viewer.admin.id)


def test_active_event_prefers_latest_active_date(db):
    setup = build_school(db)
    setup.event.is_active = False
    db.commit()
    assert get_active_event(db, setup.school.id) is None

    setup.event.is_active = True
    db.commit()
    assert get_active_event(db, setup.school.id).id == setup.event.id


def test_configuration_is_created_once_per_school(db):
    setup = build_school(db)
    assert get_configuration(db, setup.school.id) is None

    first = get_or_create_configuration(db, setup.school.id)
    second = get_or_create_configuration(db, setup.school.id)
    db.commit()

    assert first.id == second.id
    assert first.grade_order == GradeOrder.NONE
    assert db.query(LotteryConfiguration).count() == 1


def test_set_grade_order_updates_existing_configuration(db):
    setup = build_school(db)
    config = get_or_create_configuration(db, setup.school.id)

    updated = set_grade_order(db, school_id=setup.school.id, grade_order=GradeOrder.DESCENDING)
    db.commit()

    assert updated.id == config.id
    assert get_configuration(db, setup.school.id).grade_order == GradeOrder.DESCENDING


def test_manual_assignment_add_is_idempotent_and_removal_is_per_student(db):
    setup = build_school(db)
    lab = add_position(db, setup.event, title="Lab Assistant")
    studio = add_position(db, setup.event, title="Studio Intern")
    ann = add_student(db, setup.school, first_name="Ann")
    db.commit()

    first = add_manual_assignment(db, school_id=setup.school.id, student_id=ann.id, position_id=lab.id)
    again = add_manual_assignment(db, school_id=setup.school.id, student_id=ann.id, position_id=lab.id)
    add_manual_assignment(db, school_id=setup.school.id, student_id=ann.id, position_id=studio.id)
    db.commit()
    assert first.id == again.id

    removed = remove_manual_assignment(db, school_id=setup.school.id, student_id=ann.id)
    db.commit()

    assert removed == 2
    assert get_configuration(db, setup.school.id).manual_assignments == []


def test_manual_assignment_rejects_records_from_another_school(db):
    home = build_school(db)
    away = build_school(db, name="North High")
    away_position = add_position(db, away.event, title="Vet Tech")
    away_student = add_student(db, away.school, first_name="Dee")
    home_position = add_position(db, home.event, title="Lab Assistant")
    db.commit()

    with pytest.raises(ResourceNotFoundError):
        add_manual_assignment(db, school_id=home.school.id, student_id=away_student.id, position_id=home_position.id)
    home_student = add_student(db, home.school, first_name="Ann")
    with pytest.raises(ResourceNotFoundError):
        add_manual_assignment(db, school_id=home.school.id, student_id=home_student.id, position_id=away_position.id)


def test_removal_without_configuration_is_rejected(db):
    setup = build_school(db)
    db.commit()

    with pytest.raises(LotteryPreconditionError, match="No lottery configuration"):
        remove_manual_assignment(db, school_id=setup.school.id, student_id="anyone")
    with pytest.raises(LotteryPreconditionError, match="No lottery configuration"):
        remove_prefill_setting(db, school_id=setup.school.id, company_id=setup.company.id)


def test_prefill_setting_upsert_and_remove(db):
    setup = build_school(db)

    created = upsert_prefill_setting(db, school_id=setup.school.id, company_id=setup.company.id, prefill_percentage=25)
    changed = upsert_prefill_setting(db, school_id=setup.school.id, company_id=setup.company.id, prefill_percentage=75)
    db.commit()

    assert created.id == changed.id
    assert changed.prefill_percentage == 75
    assert remove_prefill_setting(db, school_id=setup.school.id, company_id=setup.company.id) == 1
    db.commit()
    assert get_configuration(db, setup.school.id).prefill_settings == []


@pytest.mark.parametrize("percentage", [-1, 101])
def test_prefill_percentage_out_of_range(db, percentage):
    setup = build_school(db)

    with pytest.raises(LotteryPreconditionError, match="between 0 and 100"):
        upsert_prefill_setting(
            db,
            school_id=setup.school.id,
            company_id=setup.company.id,
            prefill_percentage=percentage,
        )


def test_prefill_for_unknown_company(db):
    setup = build_school(db)

    with pytest.raises(ResourceNotFoundError, match="Company with id nope not found"):
        upsert_prefill_setting(db, school_id=setup.school.id, company_id="nope", prefill_percentage=10)


def test_manual_assignment_rejects_internal_tester_students(db):
    setup = build_school(db)
    lab = add_position(db, setup.event, title="Lab Assistant")
    tester = User(email="tester@example.com", role=UserRole.internal_tester)
    db.add(tester)
    db.flush()
    tess = add_student(db, setup.school, first_name="Tess", user=tester)
    db.commit()

    with pytest.raises(ResourceNotFoundError, match=f"Student with id {tess.id} not found"):
        add_manual_assignment(db, school_id=setup.school.id, student_id=tess.id, position_id=lab.id)
