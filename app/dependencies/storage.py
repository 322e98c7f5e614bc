"""Storage backend selection for XenBox endpoints and the cleanup job."""
from app.config import settings
from app.storage.base import StorageBackend
from app.storage.local import LocalStorageBackend

SUPPORTED_BACKENDS = ("local",)


def get_storage() -> StorageBackend:
    """
    Build the backend named by STORAGE_BACKEND.

    The size cap handed to the backend is the per-file XenBox limit, so
    assembly refuses anything an initiate call would have rejected.

    Raises:
        ValueError: If STORAGE_BACKEND is not one of SUPPORTED_BACKENDS
    """
    backend = settings.STORAGE_BACKEND
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(
            f"Unknown storage backend: {backend} (supported: {', '.join(SUPPORTED_BACKENDS)})"
        )

    return LocalStorageBackend(
        base_path=settings.STORAGE_BASE_PATH,
        max_size_mb=settings.XENBOX_MAX_FILE_SIZE_MB,
    )
