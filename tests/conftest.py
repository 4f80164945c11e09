# tests/conftest.py

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from survey_incentives.core.limiter import limiter
from survey_incentives.db.session import build_engine, get_db
from survey_incentives.main import app
from survey_incentives.models import Base
from survey_incentives.services.notification_dispatcher import DispatchResult, get_notification_dispatcher
from tests.utils.auth import get_admin_headers


# --- Test Database Setup ---
# A file-backed SQLite database per test, so worker threads get their own
# connections to the same data.
@pytest.fixture(scope="function")
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'incentives_test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# --- Mock Dependencies Setup ---
class RecordingDispatcher:
    """Stands in for the Kafka dispatcher and remembers every notification."""

    def __init__(self, status: str = "queued"):
        self.status = status
        self.sent = []

    def dispatch(self, contact, payload, delivery_method):
        self.sent.append({"contact": contact, "payload": payload, "delivery_method": delivery_method})
        return DispatchResult(
            status=self.status,
            message_sid=f"msg_test_{len(self.sent)}",
            error="broker down" if self.status == "failed" else None,
        )


@pytest.fixture(scope="function")
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture(autouse=True)
def disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def client(db_session, dispatcher):
    """
    Provides a TestClient bound to the per-test database and the recording
    dispatcher. Authentication is real: use `admin_headers`.
    """

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_headers():
    return get_admin_headers()
