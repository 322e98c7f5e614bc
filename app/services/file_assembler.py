"""
File assembler.

Concatenates the chunk blobs of a complete upload, strictly in ascending
index order, into one durable object. Every index in [0, total_chunks) must
be stored; a lost chunk is detected before anything is written.
"""
from dataclasses import dataclass
from typing import AsyncIterator

from app.storage.base import StorageBackend
from app.storage.exceptions import ObjectNotFoundError


@dataclass
class AssembledFile:
    path: str
    size: int


class _ChunkStream:
    """Chunk blocks in index order, counting the bytes handed out."""

    def __init__(self, storage: StorageBackend, upload_id: str, total_chunks: int):
        self.storage = storage
        self.upload_id = upload_id
        self.total_chunks = total_chunks
        self.bytes_read = 0

    async def blocks(self) -> AsyncIterator[bytes]:
        for chunk_index in range(self.total_chunks):
            async for block in self.storage.read_chunk(self.upload_id, chunk_index):
                self.bytes_read += len(block)
                yield block


async def assemble(
    storage: StorageBackend,
    upload_id: str,
    total_chunks: int,
    file_id: str,
    content_type: str,
) -> AssembledFile:
    """
    Write chunks 0..total_chunks-1 of ``upload_id`` as object ``file_id``.

    Returns:
        Stored path and the number of bytes assembled

    Raises:
        ObjectNotFoundError: If a chunk is missing from storage
        StorageError: If reading a chunk or writing the object fails
    """
    stored = set(await storage.list_chunks(upload_id))
    lost = [index for index in range(total_chunks) if index not in stored]
    if lost:
        raise ObjectNotFoundError(f"{upload_id}/chunk-{lost[0]}")

    stream = _ChunkStream(storage, upload_id, total_chunks)
    path = await storage.save_file(file_id, stream.blocks(), content_type)
    return AssembledFile(path=path, size=stream.bytes_read)
