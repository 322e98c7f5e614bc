"""
Tests for ShareAccessController policy evaluation.

Order of checks: existence (404), expiry (403), password (401).
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.services.exceptions import (
    ShareExpired,
    ShareNotFound,
    SharePasswordIncorrect,
    SharePasswordRequired,
)
from app.services.file_registry import FileRegistry
from app.services.share_access import ShareAccessController

EXPIRY = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def registry(db, storage):
    return FileRegistry(db, storage)


@pytest.fixture
def controller(registry, storage):
    return ShareAccessController(registry, storage)


@pytest.fixture
def shared_file(registry, storage, make_user):
    """A stored file with bytes on disk."""
    import asyncio

    owner = make_user()

    async def blocks():
        yield b"shared content"

    asyncio.run(storage.save_file("shr12345", blocks(), "text/plain"))
    return registry.create(owner.id, "shr12345", "notes.txt", "text/plain", 14)


def test_unknown_token(controller):
    with pytest.raises(ShareNotFound):
        controller.info("does-not-exist")
    with pytest.raises(ShareNotFound):
        controller.authorize("does-not-exist", "whatever")


def test_open_link_without_policy(controller, shared_file):
    grant = controller.open_download(shared_file.share_token)

    assert grant.file.file_id == "shr12345"
    with open(grant.path, "rb") as f:
        assert f.read() == b"shared content"


def test_info_does_not_need_password(controller, registry, shared_file):
    registry.update_settings(shared_file, password="letmein")

    info = controller.info(shared_file.share_token)

    assert info.requires_password is True


class TestExpiry:
    def test_before_expiry(self, controller, registry, shared_file):
        registry.update_settings(shared_file, expiry=EXPIRY)

        controller.authorize(shared_file.share_token, now=EXPIRY - timedelta(seconds=1))

    def test_at_expiry_instant(self, controller, registry, shared_file):
        registry.update_settings(shared_file, expiry=EXPIRY)

        with pytest.raises(ShareExpired):
            controller.authorize(shared_file.share_token, now=EXPIRY)

    def test_expired_info(self, controller, registry, shared_file):
        registry.update_settings(shared_file, expiry=EXPIRY)

        with pytest.raises(ShareExpired):
            controller.info(shared_file.share_token, now=EXPIRY + timedelta(days=1))

    def test_expiry_dominates_correct_password(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein", expiry=EXPIRY)

        with pytest.raises(ShareExpired):
            controller.authorize(shared_file.share_token, "letmein", now=EXPIRY)

    def test_expiry_dominates_missing_password(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein", expiry=EXPIRY)

        with pytest.raises(ShareExpired):
            controller.authorize(shared_file.share_token, None, now=EXPIRY)

    def test_expired_link_without_password(self, controller, registry, shared_file):
        registry.update_settings(shared_file, expiry=EXPIRY)

        with pytest.raises(ShareExpired):
            controller.open_download(shared_file.share_token, now=EXPIRY + timedelta(minutes=1))


class TestPassword:
    def test_password_required(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein")

        with pytest.raises(SharePasswordRequired) as exc:
            controller.authorize(shared_file.share_token)

        assert not isinstance(exc.value, SharePasswordIncorrect)
        assert exc.value.to_response()["requiresPassword"] is True

    def test_empty_password_counts_as_missing(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein")

        with pytest.raises(SharePasswordRequired) as exc:
            controller.authorize(shared_file.share_token, "")

        assert not isinstance(exc.value, SharePasswordIncorrect)

    def test_password_incorrect(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein")

        with pytest.raises(SharePasswordIncorrect) as exc:
            controller.authorize(shared_file.share_token, "wrong")

        assert exc.value.message == "Incorrect password"

    def test_password_correct(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein")

        grant = controller.open_download(shared_file.share_token, "letmein")

        assert grant.file.file_id == "shr12345"

    def test_cleared_password_opens_link(self, controller, registry, shared_file):
        registry.update_settings(shared_file, password="letmein")
        registry.update_settings(shared_file, password=None)

        controller.authorize(shared_file.share_token)


def test_missing_bytes_report_not_found(controller, registry, make_user):
    owner = make_user()
    xenbox_file = registry.create(owner.id, "gone1234", "gone.txt", "text/plain", 5)

    with pytest.raises(ShareNotFound):
        controller.open_download(xenbox_file.share_token)
