"""
Storage tests run against a bare LocalStorageBackend: no database, no app.
"""
import pytest

from app.storage.local import LocalStorageBackend


# 覆寫上層 conftest.py 的 autouse fixtures（它們需要資料庫）
@pytest.fixture(scope="session")
def setup_database():
    pass


@pytest.fixture
def db():
    yield None


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    yield


@pytest.fixture
def storage(tmp_path):
    """Backend rooted at tmp_path with a 1 MB object cap."""
    return LocalStorageBackend(base_path=str(tmp_path), max_size_mb=1)
