"""
Object storage for XenBox.

Finalized files are stored under their file id; in-flight uploads keep one
blob per chunk in a per-session area until finalize assembles them.
"""

from app.storage.base import StorageBackend
from app.storage.exceptions import (
    FileSizeExceededError,
    ObjectNotFoundError,
    StorageError,
)
from app.storage.local import LocalStorageBackend

__all__ = [
    "StorageBackend",
    "LocalStorageBackend",
    "StorageError",
    "ObjectNotFoundError",
    "FileSizeExceededError",
]
