import asyncio

from jobshadow.models import LotteryJob, ManualAssignment
from jobshadow.services.lottery_config import get_or_create_configuration
from jobshadow.services.lottery_jobs import create_lottery_job
from jobshadow.services.lottery_stats import TRACKED_CHOICES, LotteryStats, calculate_lottery_stats
from lottery_factories import add_position, add_student, build_school


def test_stats_count_choice_ranks_and_unplaced(db, runner):
    setup = build_school(db)
    lab = add_position(db, setup.event, title="Lab Assistant", slots=1)
    studio = add_position(db, setup.event, title="Studio Intern", slots=1)
    add_student(db, setup.school, first_name="Ann", choices=[lab, studio])
    add_student(db, setup.school, first_name="Bo", choices=[lab, studio])
    add_student(db, setup.school, first_name="Cy", choices=[lab])
    add_student(db, setup.school, first_name="Dee")
    db.commit()

    job_id = create_lottery_job(db, setup.admin.id).id
    asyncio.run(runner.run(job_id))
    db.expire_all()

    stats = calculate_lottery_stats(db, db.get(LotteryJob, job_id), setup.event)

    assert stats.total_students == 3
    assert stats.choice_counts[0] == 1
    assert stats.choice_counts[1] == 1
    assert stats.placed == 2
    assert stats.not_placed == 1
    assert stats.admin_email == setup.admin.email
    assert stats.completed_at is not None


def test_manual_placement_outside_choices_counts_as_not_placed(db, runner):
    setup = build_school(db)
    lab = add_position(db, setup.event, title="Lab Assistant", slots=2)
    studio = add_position(db, setup.event, title="Studio Intern", slots=1)
    ann = add_student(db, setup.school, first_name="Ann", choices=[lab])
    config = get_or_create_configuration(db, setup.school.id)
    db.add(ManualAssignment(lottery_configuration_id=config.id, student_id=ann.id, position_id=studio.id))
    db.commit()

    job_id = create_lottery_job(db, setup.admin.id).id
    asyncio.run(runner.run(job_id))
    db.expire_all()

    stats = calculate_lottery_stats(db, db.get(LotteryJob, job_id), setup.event)

    assert stats.total_students == 1
    assert stats.placed == 0
    assert stats.not_placed == 1


def test_empty_stats_track_ten_choices():
    stats = LotteryStats()

    assert stats.choice_counts == [0] * TRACKED_CHOICES
    assert stats.placed == 0
