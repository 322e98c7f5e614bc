"""
Storage interface used by XenBox.

Two kinds of objects live behind it: finalized files keyed by file_id, and
the chunk blobs of in-flight uploads keyed by (session_id, chunk_index).
Only the upload coordinator writes chunks; only finalize turns them into a
file.
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator


class StorageBackend(ABC):
    """
    Contract shared by the local filesystem backend and any object store.

    Writes of both files and chunks are all-or-nothing: a failed or
    oversized write leaves no object behind.
    """

    @abstractmethod
    async def save_file(
        self,
        file_id: str,
        file_stream: AsyncIterator[bytes],
        content_type: str,
    ) -> str:
        """
        Write a finalized file from a stream of blocks.

        Args:
            file_id: Key of the finalized file
            file_stream: Async iterator yielding file blocks
            content_type: MIME type recorded for the object

        Returns:
            Path or key of the stored object

        Raises:
            FileSizeExceededError: If the stream exceeds the per-file cap
            StorageError: If the object could not be written
        """
        pass

    @abstractmethod
    def get_file_path(self, file_id: str) -> str:
        """
        Path or key a download response can serve the file from.

        Raises:
            ObjectNotFoundError: If no object is stored under file_id
        """
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        """
        Remove a finalized file.

        Raises:
            ObjectNotFoundError: If no object is stored under file_id
            StorageError: If the object could not be removed
        """
        pass

    @abstractmethod
    def file_exists(self, file_id: str) -> bool:
        pass

    # Chunk area of in-flight uploads

    @abstractmethod
    async def init_chunked_upload(self, session_id: str) -> str:
        """
        Prepare the temporary area that holds the chunks of one upload.

        Args:
            session_id: Upload session identifier (upload_id)

        Returns:
            Path or key prefix of the temporary area

        Raises:
            StorageError: If initialization fails
        """
        pass

    @abstractmethod
    async def save_chunk(
        self,
        session_id: str,
        chunk_index: int,
        chunk_data: bytes,
    ) -> int:
        """
        Store the bytes of one chunk.

        Re-saving an index replaces the previous blob as a whole; a reader
        never observes a partially written chunk.

        Args:
            session_id: Upload session identifier (upload_id)
            chunk_index: Chunk index (0-based)
            chunk_data: Chunk bytes

        Returns:
            Number of bytes written

        Raises:
            ObjectNotFoundError: If the session area was never initialized
            StorageError: If chunk write fails
        """
        pass

    @abstractmethod
    def read_chunk(self, session_id: str, chunk_index: int) -> AsyncIterator[bytes]:
        """
        Stream the stored bytes of one chunk.

        Raises:
            ObjectNotFoundError: If the chunk was never stored
        """
        pass

    @abstractmethod
    async def list_chunks(self, session_id: str) -> list[int]:
        """
        List the chunk indices stored for a session, ascending.

        Returns an empty list when the session area does not exist.
        """
        pass

    @abstractmethod
    async def abort_chunked_upload(self, session_id: str) -> None:
        """
        Delete every chunk of an upload and its temporary area.

        Succeeds when nothing is stored for the session.

        Raises:
            StorageError: If cleanup fails
        """
        pass

    @abstractmethod
    async def list_temp_upload_files(self) -> list[str]:
        """
        List the session_ids that currently own a temporary upload area.

        Raises:
            StorageError: If listing fails
        """
        pass
