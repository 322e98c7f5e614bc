r"""
Upload coordinator.

State machine of a chunked upload:

    initiated -> receiving -> finalizing -> committed
         \           \            \
          +-----------+------------+--> cancelled | failed | expired

Every mutation of a session happens while holding that session's lock from
``upload_locks``; quota admission and the finalize commit additionally hold
the owner's lock from ``quota_locks`` (always acquired second).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import setup_logging
from app.models.upload_session import UploadSession, UploadStatus
from app.models.xenbox_file import XenBoxFile
from app.services import file_assembler
from app.services.chunk_codec import calculate_total_chunks
from app.services.exceptions import (
    AssemblyFailed,
    ChunkCountMismatch,
    ChunkIndexOutOfRange,
    ChunkWriteFailed,
    IncompleteUpload,
    InvalidChunk,
    InvalidUploadRequest,
    QuotaExceeded,
    SizeMismatch,
    StorageUnavailable,
    UploadStateConflict,
)
from app.services.file_registry import FileRegistry
from app.services.quota import QuotaGuard
from app.services.upload_sessions import UploadSessionStore
from app.storage.base import StorageBackend
from app.storage.exceptions import StorageError
from app.utils.datetime import ensure_aware
from app.utils.files import detect_mime_type, sanitize_filename
from app.utils.ids import generate_short_id
from app.utils.locks import KeyedLocks, quota_locks, upload_locks

logger = setup_logging()


@dataclass
class ChunkReceipt:
    chunk_index: int
    received_chunks: int
    total_chunks: int
    duplicate: bool = False


class UploadCoordinator:
    def __init__(
        self,
        db: Session,
        storage: StorageBackend,
        chunk_size: int | None = None,
        max_file_size: int | None = None,
        session_ttl: timedelta | None = None,
        session_locks: KeyedLocks = upload_locks,
        owner_locks: KeyedLocks = quota_locks,
    ):
        self.db = db
        self.storage = storage
        self.chunk_size = chunk_size or settings.chunk_size_bytes
        self.max_file_size = max_file_size or settings.max_file_size_bytes
        self.session_ttl = session_ttl or timedelta(minutes=settings.XENBOX_UPLOAD_SESSION_TTL_MINUTES)
        self.session_locks = session_locks
        self.sessions = UploadSessionStore(db)
        self.quota = QuotaGuard(db, owner_locks)
        self.registry = FileRegistry(db, storage)

    def expires_at(self, session: UploadSession) -> datetime:
        """Instant after which an idle session becomes eligible for reclamation."""
        return ensure_aware(session.last_activity_at) + self.session_ttl

    async def initiate(
        self,
        owner_id: int,
        filename: str,
        file_size: int,
        total_chunks: int,
    ) -> UploadSession:
        """
        Open a new upload session.

        Raises:
            InvalidUploadRequest: If the size is out of bounds or total_chunks
                does not equal ceil(file_size / chunk_size)
            QuotaExceeded: If the owner has no room for file_size more bytes
            StorageUnavailable: If the chunk area cannot be created
        """
        if file_size <= 0:
            raise InvalidUploadRequest("File size must be greater than zero")

        if file_size > self.max_file_size:
            raise InvalidUploadRequest(
                f"File size exceeds the maximum of {self.max_file_size // (1024 * 1024)} MB"
            )

        expected_chunks = calculate_total_chunks(file_size, self.chunk_size)
        if total_chunks != expected_chunks:
            logger.warning(
                f"Rejected initiate: owner_id={owner_id}, file_size={file_size}, "
                f"total_chunks={total_chunks}, expected={expected_chunks}"
            )
            raise InvalidUploadRequest(
                f"totalChunks must be {expected_chunks} for a {file_size} byte file "
                f"with chunk size {self.chunk_size}"
            )

        safe_name = sanitize_filename(filename)

        async with self.quota.owner_lock(owner_id):
            self.quota.check_admission(owner_id, file_size)
            session = self.sessions.create(
                owner_id=owner_id,
                filename=safe_name,
                mime_type=detect_mime_type(safe_name),
                declared_file_size=file_size,
                chunk_size=self.chunk_size,
                total_chunks=total_chunks,
            )

        try:
            await self.storage.init_chunked_upload(session.upload_id)
        except StorageError as e:
            logger.error(f"Failed to prepare upload area for {session.upload_id}: {e}", exc_info=True)
            self.sessions.set_status(session, UploadStatus.FAILED, reason="storage unavailable")
            raise StorageUnavailable() from e

        logger.info(
            f"Upload initiated: upload_id={session.upload_id}, owner_id={owner_id}, "
            f"filename={safe_name}, size={file_size}, chunks={total_chunks}"
        )
        return session

    async def receive_chunk(
        self,
        upload_id: str,
        owner_id: int,
        chunk_index: int,
        total_chunks: int,
        data: bytes,
    ) -> ChunkReceipt:
        """
        Store one chunk. Repeated deliveries of an index replace the blob.

        Raises:
            SessionNotFound: If the session is unknown, terminal or foreign
            UploadStateConflict: If the session is being finalized
            ChunkCountMismatch: If total_chunks differs from the session's
            ChunkIndexOutOfRange: If chunk_index is outside [0, total_chunks)
            InvalidChunk: If the payload is empty or larger than the chunk size
            ChunkWriteFailed: If storage rejected the write (retryable)
        """
        async with self.session_locks.hold(upload_id):
            session = self.sessions.get_active(upload_id, owner_id)

            if session.status == UploadStatus.FINALIZING:
                raise UploadStateConflict(upload_id, session.status.value)

            if total_chunks != session.total_chunks:
                logger.warning(
                    f"Chunk count mismatch for {upload_id}: "
                    f"session={session.total_chunks}, request={total_chunks}"
                )
                raise ChunkCountMismatch(session.total_chunks, total_chunks)

            if not 0 <= chunk_index < session.total_chunks:
                raise ChunkIndexOutOfRange(chunk_index, session.total_chunks)

            if not data:
                raise InvalidChunk("Chunk payload is empty")

            if len(data) > session.chunk_size:
                raise InvalidChunk(
                    f"Chunk of {len(data)} bytes exceeds chunk size {session.chunk_size}"
                )

            try:
                await self.storage.save_chunk(upload_id, chunk_index, data)
            except StorageError as e:
                logger.error(
                    f"Failed to store chunk {chunk_index} of {upload_id}: {e}", exc_info=True
                )
                raise ChunkWriteFailed(upload_id, chunk_index) from e

            is_new = self.sessions.mark_received(session, chunk_index)

            if not is_new:
                logger.info(f"Duplicate chunk {chunk_index} for {upload_id} replaced")

            return ChunkReceipt(
                chunk_index=chunk_index,
                received_chunks=session.received_count,
                total_chunks=session.total_chunks,
                duplicate=not is_new,
            )

    async def finalize(self, upload_id: str, owner_id: int) -> XenBoxFile:
        """
        Assemble a complete upload and commit it to the file registry.

        IncompleteUpload, SizeMismatch and QuotaExceeded end the session
        (failed, chunks discarded). AssemblyFailed leaves it receiving so
        finalize can be retried.

        Raises:
            SessionNotFound: If the session is unknown, terminal or foreign
            UploadStateConflict: If another finalize is in progress
            IncompleteUpload: If any chunk index was never received
            SizeMismatch: If the assembled length differs from the declared size
            QuotaExceeded: If committing would exceed the owner's quota
            AssemblyFailed: If storage failed while assembling
        """
        async with self.session_locks.hold(upload_id):
            session = self.sessions.get_active(upload_id, owner_id)

            if session.status == UploadStatus.FINALIZING:
                raise UploadStateConflict(upload_id, session.status.value)

            missing = session.missing_chunk_indices()
            if missing:
                received = session.received_count
                logger.warning(
                    f"Finalize rejected for {upload_id}: {received}/{session.total_chunks} chunks, "
                    f"first missing index {missing[0]}"
                )
                await self._fail(session, "incomplete upload")
                raise IncompleteUpload(received, session.total_chunks)

            self.sessions.set_status(session, UploadStatus.FINALIZING)
            file_id = generate_short_id()

            try:
                assembled = await file_assembler.assemble(
                    self.storage,
                    upload_id,
                    session.total_chunks,
                    file_id,
                    session.mime_type,
                )
            except StorageError as e:
                logger.error(f"Failed to assemble {upload_id}: {e}", exc_info=True)
                await self._discard_object(file_id)
                self.sessions.set_status(session, UploadStatus.RECEIVING)
                raise AssemblyFailed(upload_id) from e

            if assembled.size != session.declared_file_size:
                logger.warning(
                    f"Size mismatch for {upload_id}: declared={session.declared_file_size}, "
                    f"assembled={assembled.size}"
                )
                await self._discard_object(file_id)
                await self._fail(session, "size mismatch")
                raise SizeMismatch(session.declared_file_size, assembled.size)

            async with self.quota.owner_lock(owner_id):
                try:
                    self.quota.check_commit(owner_id, assembled.size)
                except QuotaExceeded:
                    await self._discard_object(file_id)
                    await self._fail(session, "quota exceeded")
                    raise

                try:
                    xenbox_file = self.registry.create(
                        owner_id=owner_id,
                        file_id=file_id,
                        filename=session.filename,
                        mime_type=session.mime_type,
                        size=assembled.size,
                        commit=False,
                    )
                    session.file_id = file_id
                    self.sessions.set_status(session, UploadStatus.COMMITTED, commit=False)
                    self.db.commit()
                except SQLAlchemyError as e:
                    self.db.rollback()
                    logger.error(f"Failed to commit file record for {upload_id}: {e}", exc_info=True)
                    await self._discard_object(file_id)
                    self.sessions.set_status(self.sessions.get(upload_id), UploadStatus.RECEIVING)
                    raise AssemblyFailed(upload_id) from e

            self.db.refresh(xenbox_file)
            await self._release_chunks(upload_id)

        logger.info(
            f"Upload finalized: upload_id={upload_id}, file_id={file_id}, "
            f"owner_id={owner_id}, size={xenbox_file.size}"
        )
        return xenbox_file

    async def cancel(self, upload_id: str, owner_id: int) -> bool:
        """
        Discard a session and its chunks.

        Idempotent: unknown, foreign or already terminal sessions are left
        alone.

        Returns:
            True if an active session was cancelled
        """
        async with self.session_locks.hold(upload_id):
            session = self.sessions.get(upload_id)

            if session is None or session.owner_id != owner_id or not session.is_active:
                logger.info(f"Cancel ignored for {upload_id}: no active session")
                return False

            self.sessions.set_status(session, UploadStatus.CANCELLED, reason="cancelled by owner")
            await self._release_chunks(upload_id)

        logger.info(f"Upload cancelled: upload_id={upload_id}, owner_id={owner_id}")
        return True

    def status(self, upload_id: str, owner_id: int) -> UploadSession:
        """
        Read-only progress snapshot.

        Raises:
            SessionNotFound: If the session is unknown, terminal or foreign
        """
        return self.sessions.get_active(upload_id, owner_id)

    async def expire_session(self, upload_id: str, cutoff: datetime) -> bool:
        """
        Reclaim a session idle since before ``cutoff``.

        The idle check is repeated under the session lock, so a chunk that
        arrived after the sweep selected the session keeps it alive.
        """
        async with self.session_locks.hold(upload_id):
            session = self.sessions.get(upload_id)

            if session is None or not session.is_active:
                return False

            if ensure_aware(session.last_activity_at) >= ensure_aware(cutoff):
                return False

            self.sessions.set_status(session, UploadStatus.EXPIRED, reason="inactive")
            await self._release_chunks(upload_id)

        logger.info(f"Upload session expired: upload_id={upload_id}")
        return True

    async def _fail(self, session: UploadSession, reason: str) -> None:
        self.sessions.set_status(session, UploadStatus.FAILED, reason=reason)
        await self._release_chunks(session.upload_id)
        logger.info(f"Upload failed: upload_id={session.upload_id}, reason={reason}")

    async def _release_chunks(self, upload_id: str) -> None:
        try:
            await self.storage.abort_chunked_upload(upload_id)
        except StorageError as e:
            # Left for the orphan sweep
            logger.error(f"Failed to delete chunks of {upload_id}: {e}", exc_info=True)

    async def _discard_object(self, file_id: str) -> None:
        if not self.storage.file_exists(file_id):
            return
        try:
            await self.storage.delete_file(file_id)
        except StorageError as e:
            logger.error(f"Failed to discard assembled object {file_id}: {e}", exc_info=True)
