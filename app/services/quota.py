"""
Quota guard.

Admission control against a user's spaceAllowed. spaceUsed is derived from
the owner's committed files; in-flight uploads count as reservations at
admission time so that concurrent uploads cannot jointly overshoot.

Callers must hold ``owner_lock(owner_id)`` around a check and the write it
guards (session creation at initiate, file commit at finalize).
"""
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.logging_config import setup_logging
from app.models.user import User
from app.services.exceptions import QuotaExceeded
from app.services.file_registry import space_used_by
from app.services.upload_sessions import UploadSessionStore
from app.utils.files import format_file_size
from app.utils.locks import KeyedLocks, quota_locks

logger = setup_logging()


@dataclass
class QuotaUsage:
    space_used: int
    space_allowed: int
    space_reserved: int

    @property
    def space_available(self) -> int:
        return max(self.space_allowed - self.space_used - self.space_reserved, 0)


class QuotaGuard:
    def __init__(self, db: Session, locks: KeyedLocks = quota_locks):
        self.db = db
        self.locks = locks
        self.sessions = UploadSessionStore(db)

    def owner_lock(self, owner_id: int) -> AbstractAsyncContextManager[None]:
        return self.locks.hold(owner_id)

    def space_allowed(self, owner_id: int) -> int:
        allowed = self.db.execute(
            select(User.space_allowed).where(User.id == owner_id)
        ).scalar_one_or_none()
        return int(allowed or 0)

    def space_used(self, owner_id: int) -> int:
        return space_used_by(self.db, owner_id)

    def usage(self, owner_id: int) -> QuotaUsage:
        return QuotaUsage(
            space_used=self.space_used(owner_id),
            space_allowed=self.space_allowed(owner_id),
            space_reserved=self.sessions.reserved_bytes(owner_id),
        )

    def check_admission(self, owner_id: int, file_size: int) -> None:
        """
        Admit a new upload of ``file_size`` bytes.

        Raises:
            QuotaExceeded: If used + reserved + file_size > allowed
        """
        usage = self.usage(owner_id)
        committed_and_reserved = usage.space_used + usage.space_reserved

        if committed_and_reserved + file_size > usage.space_allowed:
            logger.warning(
                f"Quota admission rejected: owner_id={owner_id}, size={file_size}, "
                f"used={usage.space_used}, reserved={usage.space_reserved}, "
                f"allowed={usage.space_allowed}"
            )
            raise QuotaExceeded(
                file_size,
                committed_and_reserved,
                usage.space_allowed,
                message=(
                    f"Quota exceeded. Available space: {format_file_size(usage.space_available)}, "
                    f"File size: {format_file_size(file_size)}"
                ),
            )

    def check_commit(self, owner_id: int, file_size: int) -> None:
        """
        Re-check at finalize against committed usage only.

        Raises:
            QuotaExceeded: If used + file_size > allowed
        """
        space_used = self.space_used(owner_id)
        space_allowed = self.space_allowed(owner_id)

        if space_used + file_size > space_allowed:
            logger.warning(
                f"Quota commit rejected: owner_id={owner_id}, size={file_size}, "
                f"used={space_used}, allowed={space_allowed}"
            )
            raise QuotaExceeded(file_size, space_used, space_allowed)
