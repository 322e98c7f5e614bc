"""
Background cleanup service for stale upload sessions.

This module provides periodic reclamation of idle upload sessions and of
chunk areas that no active session owns.
"""
import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

from app.config import settings
from app.database import SessionLocal
from app.dependencies.storage import get_storage
from app.logging_config import setup_logging
from app.services.upload_coordinator import UploadCoordinator
from app.services.upload_sessions import UploadSessionStore
from app.storage.base import StorageBackend
from app.storage.exceptions import StorageError
from app.utils.datetime import utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = setup_logging()


async def cleanup_expired_upload_sessions(
    db: "Session | None" = None,
    storage: StorageBackend | None = None,
    ttl: timedelta | None = None,
) -> int:
    """
    Expire upload sessions with no activity for longer than the TTL.

    Marks them 'expired' and deletes their chunks. Each session is handled
    under its own upload lock, so a session that received a chunk after it
    was selected is left alone.

    Args:
        db: Optional database session. If not provided, creates a new one.
        storage: Optional storage backend. If not provided, uses get_storage().
        ttl: Inactivity timeout (default from config)

    Returns:
        Number of sessions expired
    """
    close_db = False
    if db is None:
        db = SessionLocal()
        close_db = True

    if storage is None:
        storage = get_storage()

    ttl = ttl or timedelta(minutes=settings.XENBOX_UPLOAD_SESSION_TTL_MINUTES)
    cutoff = utcnow() - ttl
    expired_count = 0

    try:
        coordinator = UploadCoordinator(db, storage, session_ttl=ttl)
        stale_ids = [session.upload_id for session in coordinator.sessions.list_stale(cutoff)]

        logger.info(f"Found {len(stale_ids)} stale upload sessions")

        for upload_id in stale_ids:
            if await coordinator.expire_session(upload_id, cutoff):
                expired_count += 1

        logger.info(f"Expired {expired_count} upload sessions")

    except Exception as e:
        logger.error(f"Cleanup task failed: {str(e)}", exc_info=True)
        db.rollback()

    finally:
        if close_db:
            db.close()

    return expired_count


async def cleanup_orphaned_temp_files(
    db: "Session | None" = None,
    storage: StorageBackend | None = None,
) -> int:
    """
    Clean up orphaned chunk areas.

    Removes temporary upload areas that don't belong to an active session,
    e.g. when deleting chunks failed after a session reached a terminal state.

    Returns:
        Number of areas removed
    """
    close_db = False
    if db is None:
        db = SessionLocal()
        close_db = True

    if storage is None:
        storage = get_storage()

    cleaned_count = 0

    try:
        # Areas first: a session row always exists before its area does
        temp_session_ids = await storage.list_temp_upload_files()
        active_ids = UploadSessionStore(db).active_upload_ids()
        orphaned_ids = [sid for sid in temp_session_ids if sid not in active_ids]

        logger.info(
            f"Active upload sessions: {len(active_ids)}, "
            f"Total temp areas: {len(temp_session_ids)}, "
            f"Orphaned areas: {len(orphaned_ids)}"
        )

        for session_id in orphaned_ids:
            try:
                await storage.abort_chunked_upload(session_id)
                cleaned_count += 1
            except StorageError as e:
                logger.error(f"Failed to cleanup orphaned chunks for {session_id}: {str(e)}")

        logger.info(f"Cleaned up {cleaned_count} orphaned temp areas")

    except Exception as e:
        logger.error(f"Orphaned temp file cleanup failed: {str(e)}", exc_info=True)

    finally:
        if close_db:
            db.close()

    return cleaned_count


async def run_cleanup_loop(interval_seconds: int) -> None:
    """Run both sweeps every ``interval_seconds`` until cancelled."""
    logger.info(f"Upload cleanup loop started, interval={interval_seconds}s")
    while True:
        await asyncio.sleep(interval_seconds)
        await cleanup_expired_upload_sessions()
        await cleanup_orphaned_temp_files()
