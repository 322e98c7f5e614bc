"""
Upload session store.

Keyed registry of chunked upload sessions backed by the upload_sessions
table. All mutation goes through UploadCoordinator, which holds the
per-upload lock around every call that changes a session.
"""
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from app.models.upload_session import ACTIVE_STATUSES, TERMINAL_STATUSES, UploadSession, UploadStatus
from app.services.exceptions import SessionNotFound
from app.utils.datetime import utcnow
from app.utils.ids import generate_upload_id


class UploadSessionStore:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: int,
        filename: str,
        mime_type: str,
        declared_file_size: int,
        chunk_size: int,
        total_chunks: int,
    ) -> UploadSession:
        now = utcnow()
        session = UploadSession(
            upload_id=generate_upload_id(),
            owner_id=owner_id,
            filename=filename,
            mime_type=mime_type,
            declared_file_size=declared_file_size,
            chunk_size=chunk_size,
            total_chunks=total_chunks,
            received_chunk_indices=[],
            status=UploadStatus.INITIATED,
            created_at=now,
            last_activity_at=now,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def get(self, upload_id: str) -> UploadSession | None:
        """Fresh read of a session in any state."""
        return self.db.execute(
            select(UploadSession)
            .where(UploadSession.upload_id == upload_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_active(self, upload_id: str, owner_id: int | None = None) -> UploadSession:
        """
        Return a non-terminal session.

        Raises:
            SessionNotFound: If the session is unknown, terminal, or owned by
                someone other than ``owner_id`` (existence is not revealed)
        """
        session = self.get(upload_id)

        if session is None or session.status in TERMINAL_STATUSES:
            raise SessionNotFound(upload_id)

        if owner_id is not None and session.owner_id != owner_id:
            raise SessionNotFound(upload_id)

        return session

    def mark_received(self, session: UploadSession, chunk_index: int) -> bool:
        """
        Record ``chunk_index`` as stored and move the session to receiving.

        Returns:
            True if the index was new, False for a repeated delivery
        """
        indices = list(session.received_chunk_indices or [])
        is_new = chunk_index not in indices
        if is_new:
            indices.append(chunk_index)
            indices.sort()
            session.received_chunk_indices = indices
            # Explicitly mark JSON column as modified
            flag_modified(session, "received_chunk_indices")

        session.status = UploadStatus.RECEIVING
        session.last_activity_at = utcnow()
        self.db.commit()
        return is_new

    def set_status(
        self,
        session: UploadSession,
        status: UploadStatus,
        reason: str | None = None,
        commit: bool = True,
    ) -> None:
        session.status = status
        session.last_activity_at = utcnow()
        if reason is not None:
            session.failure_reason = reason
        if status in TERMINAL_STATUSES:
            session.completed_at = utcnow()
        if commit:
            self.db.commit()

    def reserved_bytes(self, owner_id: int, exclude_upload_id: str | None = None) -> int:
        """Declared size of the owner's in-flight uploads."""
        stmt = select(func.coalesce(func.sum(UploadSession.declared_file_size), 0)).where(
            UploadSession.owner_id == owner_id,
            UploadSession.status.in_(ACTIVE_STATUSES),
        )
        if exclude_upload_id is not None:
            stmt = stmt.where(UploadSession.upload_id != exclude_upload_id)
        return int(self.db.execute(stmt).scalar_one())

    def list_stale(self, cutoff: datetime) -> list[UploadSession]:
        """Active sessions with no activity since ``cutoff``."""
        return list(
            self.db.execute(
                select(UploadSession).where(
                    UploadSession.status.in_(ACTIVE_STATUSES),
                    UploadSession.last_activity_at < cutoff,
                )
            ).scalars().all()
        )

    def active_upload_ids(self) -> set[str]:
        return set(
            self.db.execute(
                select(UploadSession.upload_id).where(UploadSession.status.in_(ACTIVE_STATUSES))
            ).scalars().all()
        )
