"""
Storage-specific exceptions.

These exceptions provide detailed error handling for storage operations.
"""


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class FileSizeExceededError(StorageError):
    """Raised when a stored object exceeds the backend's maximum size."""

    def __init__(self, file_size: int, max_size: int):
        self.file_size = file_size
        self.max_size = max_size
        super().__init__(
            f"File size ({file_size} bytes) exceeds maximum allowed size ({max_size} bytes)"
        )


class ObjectNotFoundError(StorageError):
    """Raised when a requested file, chunk or upload area is not in storage."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")
