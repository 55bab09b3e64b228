"""
cleanup.py — Sweep expired, revoked and exhausted Sends.

Uses the same predicates as the download guard, so anything this deletes
could no longer be downloaded anyway. Safe to run repeatedly.

Usage:
  python cleanup.py
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import models
from access_guard import as_utc, is_expired
from send_service import delete_blobs, remove_send
from storage import BlobStore

logger = logging.getLogger(__name__)


def cleanup_reason(send: models.Send, now: datetime) -> Optional[str]:
    if is_expired(send.expires_at, now):
        return "expired"
    if send.revoked:
        return "revoked"
    if send.download_count >= send.max_downloads:
        return "exhausted"
    return None


def run_cleanup(db: Session, storage: BlobStore, now: Optional[datetime] = None) -> dict:
    now = as_utc(now) or datetime.now(timezone.utc)
    logger.info("Starting cleanup of expired/revoked/exhausted sends")

    deleted_sends = 0
    deleted_files = 0
    freed_bytes = 0

    for send in db.query(models.Send).all():
        reason = cleanup_reason(send, now)
        if reason is None:
            continue
        send_id = send.id
        logger.info(f"Deleting send {send_id} (reason: {reason})")
        sizes = {f.storage_path: f.size_bytes for f in send.files}
        try:
            paths = remove_send(db, send)
            db.commit()
        except StaleDataError:
            # a download got in first; the next sweep sees the new state
            db.rollback()
            logger.warning(f"Send {send_id} changed during cleanup, skipped")
            continue
        deleted = delete_blobs(storage, paths)
        deleted_files += len(deleted)
        freed_bytes += sum(sizes[p] for p in deleted)
        deleted_sends += 1

    logger.info(
        f"Cleanup completed: deleted {deleted_sends} sends, {deleted_files} files, freed {freed_bytes} bytes"
    )
    return {
        "deleted_sends": deleted_sends,
        "deleted_files": deleted_files,
        "freed_bytes": freed_bytes,
        "timestamp": now.isoformat(),
    }


if __name__ == "__main__":
    from database import Base, SessionLocal, engine
    from logging_config import setup_logging
    from storage import get_storage

    setup_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        print(run_cleanup(db, get_storage()))
    finally:
        db.close()
