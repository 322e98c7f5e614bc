"""
Share access controller.

Evaluates anonymous requests against a file's sharing policy. Checks run in
a fixed order and the first failing one decides the response:

    1. token unknown        -> ShareNotFound (404)
    2. now >= expiry        -> ShareExpired (403), whatever the password
    3. password protected   -> SharePasswordRequired / SharePasswordIncorrect (401)

An expired link never reveals whether it was password protected.
"""
from dataclasses import dataclass
from datetime import datetime

from app.logging_config import setup_logging
from app.models.xenbox_file import XenBoxFile
from app.services.auth import verify_password
from app.services.exceptions import (
    ShareExpired,
    ShareNotFound,
    SharePasswordIncorrect,
    SharePasswordRequired,
)
from app.services.file_registry import FileRegistry
from app.storage.base import StorageBackend
from app.storage.exceptions import ObjectNotFoundError
from app.utils.datetime import utcnow

logger = setup_logging()


@dataclass
class DownloadGrant:
    file: XenBoxFile
    path: str


class ShareAccessController:
    def __init__(self, registry: FileRegistry, storage: StorageBackend):
        self.registry = registry
        self.storage = storage

    def _resolve(self, share_token: str, now: datetime | None) -> XenBoxFile:
        xenbox_file = self.registry.get_by_share_token(share_token)

        if xenbox_file is None:
            logger.warning("Share access denied: unknown token")
            raise ShareNotFound()

        if xenbox_file.is_expired(now or utcnow()):
            logger.warning(f"Share access denied: link expired for file_id={xenbox_file.file_id}")
            raise ShareExpired()

        return xenbox_file

    def info(self, share_token: str, now: datetime | None = None) -> XenBoxFile:
        """Public metadata of a shared file; no password needed."""
        return self._resolve(share_token, now)

    def authorize(
        self,
        share_token: str,
        password: str | None = None,
        now: datetime | None = None,
    ) -> XenBoxFile:
        xenbox_file = self._resolve(share_token, now)

        if xenbox_file.requires_password:
            if not password:
                logger.warning(f"Share access denied: password required for file_id={xenbox_file.file_id}")
                raise SharePasswordRequired()

            if not verify_password(password, xenbox_file.password_hash):
                logger.warning(f"Share access denied: wrong password for file_id={xenbox_file.file_id}")
                raise SharePasswordIncorrect()

        return xenbox_file

    def open_download(
        self,
        share_token: str,
        password: str | None = None,
        now: datetime | None = None,
    ) -> DownloadGrant:
        """
        Authorize a download and locate the stored bytes.

        Raises:
            ShareNotFound: If the token is unknown or the bytes are gone
            ShareExpired: If the link has expired
            SharePasswordRequired: If a password is needed but none was given
            SharePasswordIncorrect: If the password does not match
        """
        xenbox_file = self.authorize(share_token, password, now)

        try:
            path = self.storage.get_file_path(xenbox_file.file_id)
        except ObjectNotFoundError:
            logger.error(f"Stored bytes missing for file_id={xenbox_file.file_id}")
            raise ShareNotFound()

        logger.info(f"Share download: file_id={xenbox_file.file_id}, size={xenbox_file.size}")
        return DownloadGrant(file=xenbox_file, path=path)
