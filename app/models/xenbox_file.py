"""
XenBox file database model.

A XenBoxFile row is the catalog entry of one finalized upload: metadata,
the public share token and the optional access policy (password hash,
expiry). Rows are created only by a successful finalize.
"""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.utils.datetime import ensure_aware, utcnow

if TYPE_CHECKING:
    from app.models.user import User


class XenBoxFile(Base):
    """
    Finalized file owned by a user.

    Attributes:
        id: Primary key
        file_id: Public short identifier (base62)
        owner_id: ID of the user who uploaded the file
        filename: Sanitized original filename
        mime_type: MIME type served on download
        size: File size in bytes (counts against the owner's quota)
        share_token: Token for the public share link
        password_hash: bcrypt hash when the link is password protected
        expiry: Link expiry (UTC), None for links that never expire
        created_at: Finalize timestamp
    """

    __tablename__ = "xenbox_files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    file_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    filename: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(255))
    size: Mapped[int] = mapped_column(BigInteger)
    share_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    owner: Mapped["User"] = relationship("User", back_populates="files")

    __table_args__ = (
        Index("idx_xenbox_files_owner_created", "owner_id", "created_at"),
    )

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        """A link expires at its expiry instant (inclusive)."""
        if self.expiry is None:
            return False
        return (now or utcnow()) >= ensure_aware(self.expiry)

    def __repr__(self) -> str:
        return f"<XenBoxFile(id={self.id}, file_id={self.file_id}, filename={self.filename})>"
