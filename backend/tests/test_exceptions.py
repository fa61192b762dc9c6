from jobshadow.core.exceptions import AppError, LotteryJobSuperseded, LotteryPreconditionError, ResourceNotFoundError


def test_precondition_error_structure():
    err = LotteryPreconditionError(message="No positions", details={"event_id": "e1"})
    assert err.status_code == 400
    assert err.message == "No positions"
    assert err.details == {"event_id": "e1"}
    assert isinstance(err, AppError)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


def test_resource_not_found_message():
    err = ResourceNotFoundError("LotteryJob", "j1")
    assert err.status_code == 404
    assert err.message == "LotteryJob with id j1 not found"


def test_superseded_job_is_not_an_app_error():
    err = LotteryJobSuperseded("j1")
    assert err.job_id == "j1"
    assert not isinstance(err, AppError)
