"""
Upload session database model.

This module defines the UploadSession model tracking one in-flight chunked
upload from initiate until it is committed, cancelled, failed or expired.
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.database import Base

if TYPE_CHECKING:
    from app.models.user import User


class UploadStatus(str, enum.Enum):
    """
    Upload session states.

    initiated -> receiving -> finalizing -> committed
    initiated/receiving -> cancelled | failed | expired
    finalizing -> receiving (storage failure while assembling, retryable)
    """

    INITIATED = "initiated"
    RECEIVING = "receiving"
    FINALIZING = "finalizing"
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"


ACTIVE_STATUSES = (UploadStatus.INITIATED, UploadStatus.RECEIVING, UploadStatus.FINALIZING)
TERMINAL_STATUSES = (
    UploadStatus.COMMITTED,
    UploadStatus.CANCELLED,
    UploadStatus.FAILED,
    UploadStatus.EXPIRED,
)


class UploadSession(Base):
    """
    Server-side record of a chunked upload.

    Attributes:
        id: Primary key
        upload_id: Opaque identifier handed to the client
        owner_id: ID of the uploading user
        filename: Sanitized original filename
        mime_type: MIME type detected at initiate
        declared_file_size: Size the client announced, checked at finalize
        chunk_size: Chunk size in force when the session was created
        total_chunks: ceil(declared_file_size / chunk_size)
        received_chunk_indices: Sorted list of stored chunk indices
        status: Current UploadStatus
        failure_reason: Why the session ended in failed/expired
        file_id: Public id of the committed file
        created_at: Session creation timestamp
        last_activity_at: Last initiate/chunk/finalize attempt, drives expiry
        completed_at: When the session reached a terminal state
    """

    __tablename__ = "upload_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    upload_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    filename: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(255))
    declared_file_size: Mapped[int] = mapped_column(BigInteger)
    chunk_size: Mapped[int] = mapped_column(Integer)
    total_chunks: Mapped[int] = mapped_column(Integer)
    received_chunk_indices: Mapped[list[int]] = mapped_column(JSON, default=list)
    status: Mapped[UploadStatus] = mapped_column(
        Enum(
            UploadStatus,
            name="uploadstatus",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        default=UploadStatus.INITIATED,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner: Mapped["User"] = relationship("User")

    __table_args__ = (
        Index("idx_upload_sessions_owner_status", "owner_id", "status"),
        Index("idx_upload_sessions_status_activity", "status", "last_activity_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def received_count(self) -> int:
        return len(self.received_chunk_indices or [])

    def missing_chunk_indices(self) -> list[int]:
        received = set(self.received_chunk_indices or [])
        return [index for index in range(self.total_chunks) if index not in received]

    def __repr__(self) -> str:
        return f"<UploadSession(upload_id={self.upload_id}, status={self.status}, chunks={self.received_count}/{self.total_chunks})>"
