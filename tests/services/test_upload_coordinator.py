"""
Tests for UploadCoordinator: the chunked upload state machine.
"""
import asyncio
import os
from datetime import timedelta
from pathlib import Path

import pytest

from app.database import SessionLocal
from app.models.upload_session import UploadStatus
from app.models.xenbox_file import XenBoxFile
from app.services.chunk_codec import calculate_total_chunks, split_bytes
from app.services.exceptions import (
    AssemblyFailed,
    ChunkCountMismatch,
    ChunkIndexOutOfRange,
    ChunkWriteFailed,
    IncompleteUpload,
    InvalidChunk,
    InvalidUploadRequest,
    QuotaExceeded,
    SessionNotFound,
    SizeMismatch,
)
from app.services.upload_coordinator import UploadCoordinator
from app.storage.exceptions import StorageError
from app.utils.datetime import utcnow
from tests.constants import TEST_CHUNK_SIZE


def _payload(size: int) -> bytes:
    return os.urandom(size)


async def _start(coordinator, owner, payload, filename="data.bin"):
    total_chunks = calculate_total_chunks(len(payload), TEST_CHUNK_SIZE)
    return await coordinator.initiate(owner.id, filename, len(payload), total_chunks)


async def _send_all(coordinator, owner, session, payload, order=None):
    chunks = split_bytes(payload, TEST_CHUNK_SIZE)
    for index in order if order is not None else range(len(chunks)):
        await coordinator.receive_chunk(
            session.upload_id, owner.id, index, session.total_chunks, chunks[index]
        )


# initiate

@pytest.mark.asyncio
async def test_initiate_creates_session(coordinator, make_user, storage):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "report.pdf", 2500, 3)

    assert session.status == UploadStatus.INITIATED
    assert session.total_chunks == 3
    assert session.chunk_size == TEST_CHUNK_SIZE
    assert session.mime_type == "application/pdf"
    assert session.received_chunk_indices == []
    assert await storage.list_temp_upload_files() == [session.upload_id]


@pytest.mark.asyncio
async def test_initiate_rejects_wrong_total_chunks(coordinator, make_user):
    owner = make_user()

    with pytest.raises(InvalidUploadRequest):
        await coordinator.initiate(owner.id, "a.bin", 2500, 2)
    with pytest.raises(InvalidUploadRequest):
        await coordinator.initiate(owner.id, "a.bin", 2500, 4)


@pytest.mark.asyncio
async def test_initiate_rejects_non_positive_size(coordinator, make_user):
    owner = make_user()

    with pytest.raises(InvalidUploadRequest):
        await coordinator.initiate(owner.id, "a.bin", 0, 0)


@pytest.mark.asyncio
async def test_initiate_rejects_size_over_maximum(db, storage, make_user):
    owner = make_user(space_allowed=10 ** 9)
    coordinator = UploadCoordinator(db, storage, chunk_size=TEST_CHUNK_SIZE, max_file_size=4096)

    with pytest.raises(InvalidUploadRequest):
        await coordinator.initiate(owner.id, "a.bin", 4097, 5)


@pytest.mark.asyncio
async def test_initiate_sanitizes_filename(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "../../secret/notes.txt", 10, 1)

    assert session.filename == "notes.txt"
    assert session.mime_type == "text/plain"


# quota

@pytest.mark.asyncio
async def test_quota_boundary(coordinator, make_user, db):
    allowed = 10_000
    owner = make_user(space_allowed=allowed)
    db.add(XenBoxFile(
        file_id="existing1", owner_id=owner.id, filename="old.bin",
        mime_type="application/octet-stream", size=4_000, share_token="tok-existing",
    ))
    db.commit()
    remaining = allowed - 4_000

    with pytest.raises(QuotaExceeded):
        await coordinator.initiate(
            owner.id, "big.bin", remaining + 1, calculate_total_chunks(remaining + 1, TEST_CHUNK_SIZE)
        )

    session = await coordinator.initiate(
        owner.id, "fits.bin", remaining, calculate_total_chunks(remaining, TEST_CHUNK_SIZE)
    )
    assert session.declared_file_size == remaining


@pytest.mark.asyncio
async def test_active_sessions_reserve_quota(coordinator, make_user):
    owner = make_user(space_allowed=3000)

    await coordinator.initiate(owner.id, "a.bin", 2000, 2)

    with pytest.raises(QuotaExceeded):
        await coordinator.initiate(owner.id, "b.bin", 1500, 2)


@pytest.mark.asyncio
async def test_cancel_releases_reservation(coordinator, make_user):
    owner = make_user(space_allowed=3000)
    first = await coordinator.initiate(owner.id, "a.bin", 2000, 2)

    await coordinator.cancel(first.upload_id, owner.id)

    second = await coordinator.initiate(owner.id, "b.bin", 2500, 3)
    assert second.status == UploadStatus.INITIATED


@pytest.mark.asyncio
async def test_concurrent_initiates_cannot_jointly_exceed_quota(storage, make_user):
    owner = make_user(space_allowed=3000)
    sessions = [SessionLocal(), SessionLocal()]
    coordinators = [UploadCoordinator(s, storage, chunk_size=TEST_CHUNK_SIZE) for s in sessions]

    try:
        results = await asyncio.gather(
            coordinators[0].initiate(owner.id, "a.bin", 2000, 2),
            coordinators[1].initiate(owner.id, "b.bin", 2000, 2),
            return_exceptions=True,
        )
    finally:
        for s in sessions:
            s.close()

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, QuotaExceeded)]
    assert len(accepted) == 1
    assert len(rejected) == 1


@pytest.mark.asyncio
async def test_finalize_rechecks_quota(coordinator, make_user, db, storage):
    owner = make_user(space_allowed=3000)
    payload = _payload(2000)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload)

    # Plan downgraded while the upload was in flight
    owner.space_allowed = 1000
    db.commit()

    with pytest.raises(QuotaExceeded):
        await coordinator.finalize(session.upload_id, owner.id)

    db.refresh(session)
    assert session.status == UploadStatus.FAILED
    assert await storage.list_chunks(session.upload_id) == []
    assert db.query(XenBoxFile).count() == 0


# receive_chunk

@pytest.mark.asyncio
async def test_receive_chunk_tracks_progress(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)

    receipt = await coordinator.receive_chunk(session.upload_id, owner.id, 1, 3, b"x" * 1024)

    assert receipt.chunk_index == 1
    assert receipt.received_chunks == 1
    assert receipt.total_chunks == 3
    assert session.status == UploadStatus.RECEIVING
    assert session.missing_chunk_indices() == [0, 2]


@pytest.mark.asyncio
async def test_duplicate_chunk_is_idempotent(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)

    await coordinator.receive_chunk(session.upload_id, owner.id, 0, 3, b"a" * 1024)
    receipt = await coordinator.receive_chunk(session.upload_id, owner.id, 0, 3, b"a" * 1024)

    assert receipt.duplicate is True
    assert receipt.received_chunks == 1


@pytest.mark.asyncio
async def test_receive_chunk_rejects_count_mismatch(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)

    with pytest.raises(ChunkCountMismatch):
        await coordinator.receive_chunk(session.upload_id, owner.id, 0, 4, b"a")


@pytest.mark.asyncio
async def test_receive_chunk_rejects_index_out_of_range(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)

    with pytest.raises(ChunkIndexOutOfRange):
        await coordinator.receive_chunk(session.upload_id, owner.id, 3, 3, b"a")
    with pytest.raises(ChunkIndexOutOfRange):
        await coordinator.receive_chunk(session.upload_id, owner.id, -1, 3, b"a")


@pytest.mark.asyncio
async def test_receive_chunk_rejects_oversized_and_empty(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)

    with pytest.raises(InvalidChunk):
        await coordinator.receive_chunk(session.upload_id, owner.id, 0, 3, b"a" * (TEST_CHUNK_SIZE + 1))
    with pytest.raises(InvalidChunk):
        await coordinator.receive_chunk(session.upload_id, owner.id, 0, 3, b"")


@pytest.mark.asyncio
async def test_receive_chunk_for_unknown_or_foreign_session(coordinator, make_user):
    owner = make_user()
    other = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 100, 1)

    with pytest.raises(SessionNotFound):
        await coordinator.receive_chunk("xenbox-unknown", owner.id, 0, 1, b"a")
    with pytest.raises(SessionNotFound):
        await coordinator.receive_chunk(session.upload_id, other.id, 0, 1, b"a")


@pytest.mark.asyncio
async def test_storage_failure_on_chunk_is_retryable(coordinator, make_user, storage, monkeypatch):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 100, 1)
    original_save_chunk = storage.save_chunk

    async def failing_save_chunk(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(storage, "save_chunk", failing_save_chunk)
    with pytest.raises(ChunkWriteFailed):
        await coordinator.receive_chunk(session.upload_id, owner.id, 0, 1, b"a" * 100)

    assert session.received_count == 0

    monkeypatch.setattr(storage, "save_chunk", original_save_chunk)
    receipt = await coordinator.receive_chunk(session.upload_id, owner.id, 0, 1, b"a" * 100)
    assert receipt.received_chunks == 1


@pytest.mark.asyncio
async def test_concurrent_chunks_for_one_session(coordinator, make_user):
    owner = make_user()
    payload = _payload(5 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)
    chunks = split_bytes(payload, TEST_CHUNK_SIZE)

    await asyncio.gather(*[
        coordinator.receive_chunk(session.upload_id, owner.id, index, 5, data)
        for index, data in enumerate(chunks)
    ])

    assert coordinator.status(session.upload_id, owner.id).received_count == 5


# finalize

@pytest.mark.asyncio
async def test_out_of_order_upload_finalizes_exactly(coordinator, make_user, storage):
    """2.5 chunks received in order 2, 0, 1 reassemble to the original bytes."""
    owner = make_user()
    payload = _payload(2 * TEST_CHUNK_SIZE + TEST_CHUNK_SIZE // 2)
    session = await _start(coordinator, owner, payload, filename="movie.mp4")
    assert session.total_chunks == 3

    await _send_all(coordinator, owner, session, payload, order=[2, 0, 1])
    xenbox_file = await coordinator.finalize(session.upload_id, owner.id)

    assert xenbox_file.size == len(payload)
    assert xenbox_file.mime_type == "video/mp4"
    assert xenbox_file.share_token
    assert Path(storage.get_file_path(xenbox_file.file_id)).read_bytes() == payload

    session_after = coordinator.sessions.get(session.upload_id)
    assert session_after.status == UploadStatus.COMMITTED
    assert session_after.file_id == xenbox_file.file_id
    assert await storage.list_chunks(session.upload_id) == []


@pytest.mark.asyncio
async def test_duplicate_delivery_does_not_change_assembled_file(coordinator, make_user, storage):
    owner = make_user()
    payload = _payload(3 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)

    await _send_all(coordinator, owner, session, payload, order=[0, 1, 1, 2, 0])
    xenbox_file = await coordinator.finalize(session.upload_id, owner.id)

    assert Path(storage.get_file_path(xenbox_file.file_id)).read_bytes() == payload


@pytest.mark.asyncio
async def test_finalize_incomplete_upload_fails_session(coordinator, make_user, storage):
    owner = make_user()
    payload = _payload(3 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload, order=[0, 2])

    with pytest.raises(IncompleteUpload) as exc:
        await coordinator.finalize(session.upload_id, owner.id)

    assert exc.value.received == 2
    assert exc.value.total == 3
    assert coordinator.sessions.get(session.upload_id).status == UploadStatus.FAILED
    assert await storage.list_chunks(session.upload_id) == []

    # The failed session is gone for every further operation
    with pytest.raises(SessionNotFound):
        await coordinator.receive_chunk(session.upload_id, owner.id, 1, 3, b"a")


@pytest.mark.asyncio
async def test_finalize_size_mismatch(coordinator, make_user, storage, db):
    """All chunks present but shorter than declared."""
    owner = make_user()
    declared = 2 * TEST_CHUNK_SIZE + 500
    session = await coordinator.initiate(owner.id, "a.bin", declared, 3)

    for index in range(3):
        await coordinator.receive_chunk(session.upload_id, owner.id, index, 3, b"z" * 100)

    with pytest.raises(SizeMismatch) as exc:
        await coordinator.finalize(session.upload_id, owner.id)

    assert exc.value.declared == declared
    assert exc.value.actual == 300
    assert coordinator.sessions.get(session.upload_id).status == UploadStatus.FAILED
    assert db.query(XenBoxFile).count() == 0
    assert await storage.list_chunks(session.upload_id) == []


@pytest.mark.asyncio
async def test_assembly_storage_failure_keeps_session_resumable(coordinator, make_user, storage, monkeypatch, db):
    owner = make_user()
    payload = _payload(2 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload)
    original_save_file = storage.save_file

    async def failing_save_file(*args, **kwargs):
        raise StorageError("backend unavailable")

    monkeypatch.setattr(storage, "save_file", failing_save_file)
    with pytest.raises(AssemblyFailed):
        await coordinator.finalize(session.upload_id, owner.id)

    assert coordinator.sessions.get(session.upload_id).status == UploadStatus.RECEIVING
    assert db.query(XenBoxFile).count() == 0

    monkeypatch.setattr(storage, "save_file", original_save_file)
    xenbox_file = await coordinator.finalize(session.upload_id, owner.id)
    assert xenbox_file.size == len(payload)


@pytest.mark.asyncio
async def test_lost_chunk_fails_assembly_before_writing(coordinator, make_user, storage, monkeypatch, db):
    owner = make_user()
    payload = _payload(3 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload)
    storage._get_chunk_path(session.upload_id, 1).unlink()

    written = []
    original_save_file = storage.save_file

    async def recording_save_file(file_id, *args, **kwargs):
        written.append(file_id)
        return await original_save_file(file_id, *args, **kwargs)

    monkeypatch.setattr(storage, "save_file", recording_save_file)

    with pytest.raises(AssemblyFailed):
        await coordinator.finalize(session.upload_id, owner.id)

    assert written == []
    assert coordinator.sessions.get(session.upload_id).status == UploadStatus.RECEIVING

    chunk = split_bytes(payload, TEST_CHUNK_SIZE)[1]
    await coordinator.receive_chunk(session.upload_id, owner.id, 1, session.total_chunks, chunk)
    xenbox_file = await coordinator.finalize(session.upload_id, owner.id)

    assert xenbox_file.size == len(payload)
    assert db.query(XenBoxFile).count() == 1


@pytest.mark.asyncio
async def test_finalize_twice(coordinator, make_user):
    owner = make_user()
    payload = _payload(100)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload)

    await coordinator.finalize(session.upload_id, owner.id)

    with pytest.raises(SessionNotFound):
        await coordinator.finalize(session.upload_id, owner.id)


@pytest.mark.asyncio
async def test_finalize_and_chunk_are_serialized(coordinator, make_user, storage):
    """A chunk racing finalize either lands before it or sees a closed session."""
    owner = make_user()
    payload = _payload(2 * TEST_CHUNK_SIZE)
    session = await _start(coordinator, owner, payload)
    await _send_all(coordinator, owner, session, payload)

    results = await asyncio.gather(
        coordinator.finalize(session.upload_id, owner.id),
        coordinator.receive_chunk(session.upload_id, owner.id, 0, 2, payload[:TEST_CHUNK_SIZE]),
        return_exceptions=True,
    )

    assert isinstance(results[0], XenBoxFile)
    assert not isinstance(results[1], Exception) or isinstance(results[1], SessionNotFound)
    assert Path(storage.get_file_path(results[0].file_id)).read_bytes() == payload


# cancel / status / expiry

@pytest.mark.asyncio
async def test_cancel_then_chunk_is_session_not_found(coordinator, make_user, storage):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)
    await coordinator.receive_chunk(session.upload_id, owner.id, 0, 3, b"a" * 1024)

    assert await coordinator.cancel(session.upload_id, owner.id) is True
    assert await storage.list_chunks(session.upload_id) == []

    with pytest.raises(SessionNotFound):
        await coordinator.receive_chunk(session.upload_id, owner.id, 1, 3, b"a" * 1024)


@pytest.mark.asyncio
async def test_cancel_is_idempotent(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 100, 1)

    assert await coordinator.cancel(session.upload_id, owner.id) is True
    assert await coordinator.cancel(session.upload_id, owner.id) is False
    assert await coordinator.cancel("xenbox-never-existed", owner.id) is False


@pytest.mark.asyncio
async def test_cancel_foreign_session_is_ignored(coordinator, make_user):
    owner = make_user()
    other = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 100, 1)

    assert await coordinator.cancel(session.upload_id, other.id) is False
    assert coordinator.status(session.upload_id, owner.id).status == UploadStatus.INITIATED


@pytest.mark.asyncio
async def test_status_is_read_only(coordinator, make_user):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 2500, 3)
    await coordinator.receive_chunk(session.upload_id, owner.id, 1, 3, b"a" * 1024)
    before = coordinator.sessions.get(session.upload_id).last_activity_at

    progress = coordinator.status(session.upload_id, owner.id)

    assert progress.total_chunks == 3
    assert progress.received_count == 1
    assert progress.missing_chunk_indices() == [0, 2]
    assert coordinator.sessions.get(session.upload_id).last_activity_at == before


@pytest.mark.asyncio
async def test_expire_session(coordinator, make_user, storage):
    owner = make_user()
    session = await coordinator.initiate(owner.id, "a.bin", 100, 1)

    # Activity after the cutoff keeps the session alive
    assert await coordinator.expire_session(session.upload_id, utcnow() - timedelta(minutes=5)) is False

    assert await coordinator.expire_session(session.upload_id, utcnow() + timedelta(seconds=1)) is True
    assert coordinator.sessions.get(session.upload_id).status == UploadStatus.EXPIRED
    assert await storage.list_temp_upload_files() == []

    with pytest.raises(SessionNotFound):
        coordinator.status(session.upload_id, owner.id)
