import os
import tempfile
from pathlib import Path

# Settings are read at import time, so the environment is prepared first
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="xenbox-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DATA_DIR}/xenbox_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "xenbox-test-secret-key-0123456789abcdef")
os.environ["XENBOX_CLEANUP_INTERVAL_SECONDS"] = "0"

import pytest  # noqa: E402
from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.database import Base, SessionLocal, engine, get_db  # noqa: E402
from app.dependencies.storage import get_storage  # noqa: E402
from app.dependencies.xenbox import get_upload_coordinator  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.auth import hash_password  # noqa: E402
from app.services.upload_coordinator import UploadCoordinator  # noqa: E402
from app.storage.local import LocalStorageBackend  # noqa: E402
from app.utils.locks import quota_locks, upload_locks  # noqa: E402
from tests.constants import TEST_CHUNK_SIZE, TEST_PASSWORD  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Run Alembic migrations at the start of the test session."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")

    yield

    command.downgrade(alembic_cfg, "base")


@pytest.fixture
def db():
    """
    Fresh session per test; every table is emptied afterwards.

    Code under test commits, so rows are removed instead of rolled back.
    """
    session = SessionLocal()

    yield session

    session.close()
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture
def storage(tmp_path):
    return LocalStorageBackend(base_path=str(tmp_path / "storage"), max_size_mb=10)


@pytest.fixture
def coordinator(db, storage):
    return UploadCoordinator(db, storage, chunk_size=TEST_CHUNK_SIZE)


@pytest.fixture
def make_user(db):
    """Factory creating users directly in the database."""
    counter = {"n": 0}

    def _make_user(email: str | None = None, space_allowed: int = 1024 * 1024) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            hashed_password=hash_password(TEST_PASSWORD),
            space_allowed=space_allowed,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def client(db, storage):
    """Test client with storage and chunk size overrides."""

    def override_get_storage():
        return storage

    def override_get_upload_coordinator(session: Session = Depends(get_db)):
        return UploadCoordinator(session, storage, chunk_size=TEST_CHUNK_SIZE)

    app.dependency_overrides[get_storage] = override_get_storage
    app.dependency_overrides[get_upload_coordinator] = override_get_upload_coordinator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Reset the rate limiter and lock registries before each test."""
    from app.middleware.rate_limit import rate_limiter
    rate_limiter.reset()
    upload_locks.clear()
    quota_locks.clear()
    yield
