import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import jobshadow.main as main_module
from jobshadow.api.deps import get_db, get_lottery_runner
from jobshadow.core.config import Settings
from jobshadow.db.base import Base
from jobshadow.main import app
from jobshadow.services.lottery_jobs import LotteryJobRunner


def make_lottery_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+pysqlite://",
        "lottery_trial_count": 200,
        "lottery_progress_interval": 50,
        "lottery_progress_yield_seconds": 0.0,
        "lottery_random_seed": 7,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def session_factory():
    engine = create_engine(  # in-memory DB shared by every session of the test
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def lottery_settings() -> Settings:
    return make_lottery_settings()


@pytest.fixture()
def runner(session_factory, lottery_settings) -> LotteryJobRunner:
    return LotteryJobRunner(session_factory=session_factory, settings=lottery_settings)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    # A file database lets the background job and the request handlers hold separate connections.
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'lottery.db'}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    test_runner = LotteryJobRunner(session_factory=TestingSessionLocal, settings=make_lottery_settings())

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(main_module, "ensure_runtime_schema_compatibility", lambda: None)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_lottery_runner] = lambda: test_runner

    with TestClient(app) as test_client:
        test_client.session_factory = TestingSessionLocal
        yield test_client

    app.dependency_overrides.clear()
    engine.dispose()
