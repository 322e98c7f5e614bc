"""
Local filesystem storage implementation.

This module provides a local filesystem implementation of the storage backend
with async file operations and S3-compatible directory structure.
"""
import hashlib
import os
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterator

import aiofiles

from app.config import settings
from app.storage.base import StorageBackend
from app.storage.exceptions import FileSizeExceededError, ObjectNotFoundError, StorageError

# Read/write block size for streaming
BLOCK_SIZE = 64 * 1024


class LocalStorageBackend(StorageBackend):
    """
    Local filesystem storage with async operations.

    Uses sharded directory structures:
        <base_path>/xenbox/<prefix>/<file_id>
        <base_path>/.tmp/uploads/<prefix>/<session_id>/<chunk_index>.part

    The prefix is derived from a hash of the key so that session ids sharing
    a common textual prefix still spread across directories. This structure
    maps directly to S3 buckets for easy migration.
    """

    def __init__(self, base_path: str | None = None, max_size_mb: int | None = None):
        """
        Initialize local storage backend.

        Args:
            base_path: Base directory for file storage (default from config)
            max_size_mb: Maximum file size in MB (default from config)
        """
        self.base_path = Path(base_path or settings.STORAGE_BASE_PATH)
        self.max_size_bytes = (max_size_mb or settings.XENBOX_MAX_FILE_SIZE_MB) * 1024 * 1024

    async def save_file(
        self,
        file_id: str,
        file_stream: AsyncIterator[bytes],
        content_type: str,
    ) -> str:
        """
        Stream file to disk block by block.

        The object is written under a temporary name and renamed into place,
        so a failed or oversized write never leaves a partial file behind.
        """
        file_path = self._get_file_path(file_id)
        self._ensure_directory_exists(file_path)
        incoming_path = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex}.incoming")

        total_size = 0

        try:
            async with aiofiles.open(incoming_path, "wb") as f:
                async for block in file_stream:
                    total_size += len(block)

                    if total_size > self.max_size_bytes:
                        raise FileSizeExceededError(total_size, self.max_size_bytes)

                    await f.write(block)

            os.replace(incoming_path, file_path)

        except StorageError:
            self._remove_quietly(incoming_path)
            raise
        except OSError as e:
            self._remove_quietly(incoming_path)
            raise StorageError(f"Failed to save file {file_id}: {e}") from e

        return str(file_path)

    def get_file_path(self, file_id: str) -> str:
        file_path = self._get_file_path(file_id)

        if not file_path.exists():
            raise ObjectNotFoundError(file_id)

        return str(file_path)

    async def delete_file(self, file_id: str) -> None:
        file_path = self._get_file_path(file_id)

        if not file_path.exists():
            raise ObjectNotFoundError(file_id)

        try:
            file_path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete file {file_id}: {e}") from e

        self._prune_empty_dir(file_path.parent)

    def file_exists(self, file_id: str) -> bool:
        return self._get_file_path(file_id).exists()

    def _get_file_path(self, file_id: str) -> Path:
        """
        Calculate file path using sharded structure.

        Structure: <base_path>/xenbox/<prefix>/<file_id>
        """
        return self.base_path / "xenbox" / self._prefix(file_id) / file_id

    def _ensure_directory_exists(self, file_path: Path) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _prefix(key: str) -> str:
        # Two hex characters: 256 shard directories
        return hashlib.sha1(key.encode()).hexdigest()[:2]

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            pass

    @staticmethod
    def _prune_empty_dir(directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError:
            # Directory not empty, ignore
            pass

    # Chunked upload methods

    def _get_temp_dir(self, session_id: str) -> Path:
        """
        Temporary directory holding the chunks of one upload.

        Structure: <base_path>/.tmp/uploads/<prefix>/<session_id>/
        """
        return self._temp_root() / self._prefix(session_id) / session_id

    def _get_chunk_path(self, session_id: str, chunk_index: int) -> Path:
        return self._get_temp_dir(session_id) / f"{chunk_index:06d}.part"

    def _temp_root(self) -> Path:
        return self.base_path / ".tmp" / "uploads"

    async def init_chunked_upload(self, session_id: str) -> str:
        temp_dir = self._get_temp_dir(session_id)

        try:
            temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to initialize chunked upload {session_id}: {e}") from e

        return str(temp_dir)

    async def save_chunk(
        self,
        session_id: str,
        chunk_index: int,
        chunk_data: bytes,
    ) -> int:
        """
        Write one chunk blob.

        The blob is written to a unique temporary name and renamed over
        <chunk_index>.part, so concurrent writes of the same index resolve to
        one complete blob (last rename wins).
        """
        temp_dir = self._get_temp_dir(session_id)

        if not temp_dir.is_dir():
            raise ObjectNotFoundError(f"upload area for session {session_id}")

        chunk_path = self._get_chunk_path(session_id, chunk_index)
        incoming_path = temp_dir / f".{chunk_index:06d}.{uuid.uuid4().hex}.incoming"

        try:
            async with aiofiles.open(incoming_path, "wb") as f:
                bytes_written = await f.write(chunk_data)
            os.replace(incoming_path, chunk_path)

        except OSError as e:
            self._remove_quietly(incoming_path)
            raise StorageError(f"Failed to save chunk {chunk_index} of {session_id}: {e}") from e

        return bytes_written

    async def read_chunk(self, session_id: str, chunk_index: int) -> AsyncIterator[bytes]:
        chunk_path = self._get_chunk_path(session_id, chunk_index)

        if not chunk_path.exists():
            raise ObjectNotFoundError(f"chunk {chunk_index} of session {session_id}")

        try:
            async with aiofiles.open(chunk_path, "rb") as f:
                while True:
                    block = await f.read(BLOCK_SIZE)
                    if not block:
                        break
                    yield block
        except OSError as e:
            raise StorageError(f"Failed to read chunk {chunk_index} of {session_id}: {e}") from e

    async def list_chunks(self, session_id: str) -> list[int]:
        temp_dir = self._get_temp_dir(session_id)

        if not temp_dir.is_dir():
            return []

        return sorted(int(path.stem) for path in temp_dir.glob("*.part") if path.stem.isdigit())

    async def abort_chunked_upload(self, session_id: str) -> None:
        temp_dir = self._get_temp_dir(session_id)

        if not temp_dir.exists():
            return

        try:
            shutil.rmtree(temp_dir)
        except OSError as e:
            raise StorageError(f"Failed to cleanup upload session {session_id}: {e}") from e

        self._prune_empty_dir(temp_dir.parent)

    async def list_temp_upload_files(self) -> list[str]:
        """
        List all temporary upload areas.

        Scans <base_path>/.tmp/uploads/<prefix>/ and returns the session_ids.
        """
        temp_root = self._temp_root()

        if not temp_root.exists():
            return []

        session_ids = []

        for prefix_dir in temp_root.iterdir():
            if prefix_dir.is_dir():
                for session_dir in prefix_dir.iterdir():
                    if session_dir.is_dir():
                        session_ids.append(session_dir.name)

        return session_ids
