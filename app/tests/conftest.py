import os
import tempfile
from datetime import datetime, UTC

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Secrets and paths must be in place before the app modules are imported.
_TEST_DIR = tempfile.mkdtemp(prefix="meetgate-tests-")
os.environ.setdefault("MEETGATE_IDENTITY_SECRET", "test-identity-secret-0123456789abcdef")
os.environ.setdefault(
    "MEETGATE_INVITE_SIGNING_SECRET", "test-invite-signing-secret-0123456789"
)
os.environ.setdefault("MEETGATE_DATABASE_URL", f"sqlite:///{_TEST_DIR}/meetgate.db")
os.environ.setdefault("MEETGATE_LOG_DIR", os.path.join(_TEST_DIR, "logs"))
os.environ.pop("MEETGATE_SUBSCRIPTIONS_ENFORCED", None)

from app.database import Base, get_db
from app.main import app
from app.auth.auth import create_identity_token
from app.services.lobby import LobbyAdmission
from app.services.meeting_lifecycle import MeetingLifecycle
from app.services.media_grant import MediaGrantIssuer
from app.services.token_codec import InvitationTokenCodec

# Define a test database URL
TEST_DATABASE_URL = "sqlite:///:memory:"  # Use in-memory SQLite for tests
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Meeting start used by the time-window scenarios.
MEETING_START = datetime(2031, 3, 14, 15, 0, tzinfo=UTC)
TEST_SIGNING_SECRET = "unit-test-signing-secret-0123456789abcdef"


@pytest.fixture(scope="session")
def create_test_tables():
    """Create all database tables once per session before tests run."""
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function")
def db_session(create_test_tables):  # Depends on table creation
    """
    Provides a transactional database session for a test.
    Rolls back changes after the test.
    Overrides the main app's get_db dependency.
    """
    connection = engine.connect()
    transaction = connection.begin()
    db = TestingSessionLocal(bind=connection)

    original_get_db = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = lambda: db

    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()
        if original_get_db:
            app.dependency_overrides[get_db] = original_get_db
        else:
            del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def client(db_session: Session):
    """Provides a TestClient instance for making requests to the FastAPI app."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    """Build bearer headers for an identity, as the identity provider would."""

    def _headers(uid: str, name: str = None, email: str = None) -> dict:
        token = create_identity_token(uid, name=name, email=email)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def codec():
    return InvitationTokenCodec(TEST_SIGNING_SECRET, key_id="k1")


@pytest.fixture
def grant_issuer():
    return MediaGrantIssuer(
        "test-api-key",
        "test-api-secret-0123456789abcdef0123",
        "ws://media.test:7880",
    )


@pytest.fixture
def lifecycle(db_session: Session):
    return MeetingLifecycle(db_session)


@pytest.fixture
def lobby(db_session: Session):
    return LobbyAdmission(db_session)
