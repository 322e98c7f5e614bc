"""
Chunk codec.

Pure helpers shared by the sending side (XenBoxClient) and the receiving
side (UploadCoordinator): chunk arithmetic, slicing a file into fixed-size
byte ranges and base64 transport encoding.
"""
import base64
import binascii
from pathlib import Path

from app.services.exceptions import InvalidChunk


def calculate_total_chunks(file_size: int, chunk_size: int) -> int:
    """
    Number of chunks needed for ``file_size`` bytes: ceil(file_size / chunk_size).

    Examples:
        >>> calculate_total_chunks(25 * 1024 * 1024, 10 * 1024 * 1024)
        3
    """
    if file_size <= 0:
        raise ValueError("file_size must be positive")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return (file_size + chunk_size - 1) // chunk_size  # Ceiling division


def chunk_range(chunk_index: int, file_size: int, chunk_size: int) -> tuple[int, int]:
    """Half-open byte range [start, end) covered by ``chunk_index``."""
    total_chunks = calculate_total_chunks(file_size, chunk_size)
    if not 0 <= chunk_index < total_chunks:
        raise ValueError(f"chunk_index {chunk_index} outside [0, {total_chunks})")
    start = chunk_index * chunk_size
    return start, min(start + chunk_size, file_size)


def chunk_ranges(file_size: int, chunk_size: int) -> list[tuple[int, int]]:
    """
    All chunk ranges of a file, in index order.

    Examples:
        >>> chunk_ranges(25, 10)
        [(0, 10), (10, 20), (20, 25)]
    """
    total_chunks = calculate_total_chunks(file_size, chunk_size)
    return [chunk_range(index, file_size, chunk_size) for index in range(total_chunks)]


def split_bytes(data: bytes, chunk_size: int) -> list[bytes]:
    """Slice an in-memory payload into chunks."""
    return [data[start:end] for start, end in chunk_ranges(len(data), chunk_size)]


def read_file_chunk(path: str | Path, chunk_index: int, chunk_size: int) -> bytes:
    """Read a single chunk of a file on disk, used when resuming."""
    file_size = Path(path).stat().st_size
    start, end = chunk_range(chunk_index, file_size, chunk_size)
    with open(path, "rb") as f:
        f.seek(start)
        return f.read(end - start)


def encode_chunk(data: bytes) -> str:
    """Base64 transport encoding of a chunk."""
    return base64.b64encode(data).decode("ascii")


def decode_chunk(payload: str) -> bytes:
    """
    Decode a base64 chunk payload.

    Raises:
        InvalidChunk: If the payload is not valid base64 or decodes to nothing
    """
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidChunk(f"Chunk payload is not valid base64: {e}") from e

    if not data:
        raise InvalidChunk("Chunk payload is empty")

    return data
