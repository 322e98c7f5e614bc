"""
File registry.

Owner-scoped catalog of finalized XenBox files: listing, lookup by id or
share token, settings updates (password, expiry) and deletion.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import setup_logging
from app.models.xenbox_file import XenBoxFile
from app.services.auth import hash_password
from app.services.exceptions import FileNotFound
from app.storage.base import StorageBackend
from app.storage.exceptions import ObjectNotFoundError, StorageError
from app.utils.datetime import ensure_aware
from app.utils.ids import generate_share_token

logger = setup_logging()


class _Unset:
    """Marker for a settings field the caller did not send."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def space_used_by(db: Session, owner_id: int) -> int:
    """Bytes held by the owner's committed files."""
    total = db.execute(
        select(func.coalesce(func.sum(XenBoxFile.size), 0)).where(XenBoxFile.owner_id == owner_id)
    ).scalar_one()
    return int(total)


def build_share_url(share_token: str, base_url: str | None = None) -> str:
    base = (settings.XENBOX_SHARE_BASE_URL or base_url or "").rstrip("/")
    return f"{base}/xenbox/{share_token}"


class FileRegistry:
    def __init__(self, db: Session, storage: StorageBackend):
        self.db = db
        self.storage = storage

    def create(
        self,
        owner_id: int,
        file_id: str,
        filename: str,
        mime_type: str,
        size: int,
        commit: bool = True,
    ) -> XenBoxFile:
        xenbox_file = XenBoxFile(
            file_id=file_id,
            owner_id=owner_id,
            filename=filename,
            mime_type=mime_type,
            size=size,
            share_token=generate_share_token(),
        )
        self.db.add(xenbox_file)
        if commit:
            self.db.commit()
            self.db.refresh(xenbox_file)
        else:
            self.db.flush()
        return xenbox_file

    def list_files(self, owner_id: int, search: str | None = None) -> list[XenBoxFile]:
        """Owner's files, newest first, optionally filtered by filename."""
        stmt = select(XenBoxFile).where(XenBoxFile.owner_id == owner_id)

        if search:
            stmt = stmt.where(func.lower(XenBoxFile.filename).contains(search.lower(), autoescape=True))

        stmt = stmt.order_by(XenBoxFile.created_at.desc(), XenBoxFile.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def get_owned(self, owner_id: int, file_id: str) -> XenBoxFile:
        """
        Raises:
            FileNotFound: If the file does not exist or belongs to another owner
        """
        xenbox_file = self.db.execute(
            select(XenBoxFile).where(XenBoxFile.file_id == file_id)
        ).scalar_one_or_none()

        if xenbox_file is None or xenbox_file.owner_id != owner_id:
            raise FileNotFound(file_id)

        return xenbox_file

    def open_owned(self, owner_id: int, file_id: str) -> tuple[XenBoxFile, str]:
        """
        Locate the stored bytes of an owner's file.

        Share expiry and password do not apply to the owner.

        Raises:
            FileNotFound: If the file is unknown, foreign, or its bytes are gone
        """
        xenbox_file = self.get_owned(owner_id, file_id)

        try:
            path = self.storage.get_file_path(file_id)
        except ObjectNotFoundError:
            logger.error(f"Stored bytes missing for file_id={file_id}")
            raise FileNotFound(file_id)

        logger.info(f"Owner download: file_id={file_id}, owner_id={owner_id}")
        return xenbox_file, path

    def get_by_share_token(self, share_token: str) -> XenBoxFile | None:
        return self.db.execute(
            select(XenBoxFile)
            .where(XenBoxFile.share_token == share_token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def space_used(self, owner_id: int) -> int:
        return space_used_by(self.db, owner_id)

    def update_settings(
        self,
        xenbox_file: XenBoxFile,
        password: str | None = UNSET,
        expiry: datetime | None = UNSET,
    ) -> XenBoxFile:
        """
        Change the share policy of a file.

        A field left as UNSET is untouched; None (or an empty string) clears
        it. Passwords are stored as bcrypt hashes only.
        """
        changed = []

        if password is not UNSET:
            xenbox_file.password_hash = hash_password(password) if password else None
            changed.append("password")

        if expiry is not UNSET:
            xenbox_file.expiry = ensure_aware(expiry) if expiry else None
            changed.append("expiry")

        if changed:
            self.db.commit()
            self.db.refresh(xenbox_file)
            logger.info(
                f"Share settings updated: file_id={xenbox_file.file_id}, "
                f"fields={','.join(changed)}, has_password={xenbox_file.requires_password}"
            )

        return xenbox_file

    async def delete(self, owner_id: int, file_id: str) -> None:
        """
        Remove the catalog entry and its stored bytes.

        The record goes first so the quota is released even if the backend
        fails; leftover bytes are only logged.

        Raises:
            FileNotFound: If the file does not exist or belongs to another owner
        """
        xenbox_file = self.get_owned(owner_id, file_id)
        size = xenbox_file.size

        self.db.delete(xenbox_file)
        self.db.commit()

        try:
            await self.storage.delete_file(file_id)
        except ObjectNotFoundError:
            logger.warning(f"Stored bytes already missing for file_id={file_id}")
        except StorageError as e:
            logger.error(f"Failed to delete stored bytes for file_id={file_id}: {e}", exc_info=True)

        logger.info(f"File deleted: file_id={file_id}, owner_id={owner_id}, size={size}")
