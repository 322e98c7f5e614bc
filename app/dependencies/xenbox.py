"""
Service factories for the XenBox routes.

Tests override ``get_upload_coordinator`` to shrink the chunk size and
``get_storage`` to point at a temporary directory.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies.storage import get_storage
from app.services.file_registry import FileRegistry
from app.services.quota import QuotaGuard
from app.services.share_access import ShareAccessController
from app.services.upload_coordinator import UploadCoordinator
from app.storage.base import StorageBackend


def get_upload_coordinator(
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> UploadCoordinator:
    return UploadCoordinator(db, storage)


def get_file_registry(
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> FileRegistry:
    return FileRegistry(db, storage)


def get_quota_guard(db: Session = Depends(get_db)) -> QuotaGuard:
    return QuotaGuard(db)


def get_share_controller(
    registry: FileRegistry = Depends(get_file_registry),
    storage: StorageBackend = Depends(get_storage),
) -> ShareAccessController:
    return ShareAccessController(registry, storage)
