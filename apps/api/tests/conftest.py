"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file database migrated to Alembic head.
Workflow tests need real commits (claim races run on separate connections
and change events fire on commit), so instead of transactional rollback
every table is emptied after each test.

SQLite transactions take the write lock at BEGIN: a session that has read
something holds it until commit/rollback/close. Commit before handing the
database to another thread, request or subscription.
"""
import os
import sys
import tempfile

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_TEST_DB_DIR = tempfile.mkdtemp(prefix="video_critique_tests_")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests-only-32chars-min")
os.environ["REDIS_URL"] = ""
os.environ.setdefault("LOG_FORMAT", "text")


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """Apply the Alembic migrations to the test database once per run."""
    from run_migrations import upgrade_to_head

    try:
        upgrade_to_head()
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from core.auth import Principal, ROLE_ADMIN, ROLE_ATHLETE, ROLE_COACH  # noqa: E402
from core.database import SessionLocal, engine  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models import Comment, Notification, NotificationPreference, Review, Submission  # noqa: E402
from services import submission_store  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for model in (NotificationPreference, Notification, Comment, Review, Submission):
            conn.execute(model.__table__.delete())


@pytest.fixture(scope="function")
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def read_row():
    """Read a committed row on a short-lived session of its own."""

    def _read(model, row_id):
        session = SessionLocal()
        try:
            return session.get(model, row_id)
        finally:
            session.close()

    return _read


@pytest.fixture
def athlete():
    return Principal(uid="athlete-a", role=ROLE_ATHLETE)


@pytest.fixture
def other_athlete():
    return Principal(uid="athlete-b", role=ROLE_ATHLETE)


@pytest.fixture
def coach():
    return Principal(uid="coach-1", role=ROLE_COACH)


@pytest.fixture
def other_coach():
    return Principal(uid="coach-2", role=ROLE_COACH)


@pytest.fixture
def admin():
    return Principal(uid="admin-1", role=ROLE_ADMIN)


@pytest.fixture
def make_submission(db_session, athlete):
    """Create and commit a pending submission."""

    def _make(athlete_uid=None, media_ref="clip1", skill_tag="guard-pass", **extra):
        submission = submission_store.create_submission(
            db_session,
            athlete_uid=athlete_uid or athlete.uid,
            media_ref=media_ref,
            skill_tag=skill_tag,
            **extra,
        )
        db_session.commit()
        return submission

    return _make


@pytest.fixture
def headers_for():
    def _headers(uid: str, role: str) -> dict:
        token = create_access_token({"sub": uid, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


@pytest.fixture
def check_claim_invariant():
    """pending has no coach; claimed always has one."""

    def _check(submission) -> None:
        if submission.status == "pending":
            assert submission.coach_uid is None
        if submission.status == "claimed":
            assert submission.coach_uid is not None

    return _check
