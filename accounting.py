"""
accounting.py — Download accounting for Send retrievals.

The guard decision and the counter increment happen in one transaction per
attempt. Rows are selected FOR UPDATE where the database supports it, and
the Send's version column makes the UPDATE conditional everywhere else: if
another retrieval committed first, SQLAlchemy raises StaleDataError and the
whole read-evaluate-increment sequence runs again against fresh data.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import config
import models
from access_guard import GRANTED, evaluate
from errors import AccessDenied, SendNotFound, TransientConflict
from security import verify_password

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.01


@dataclass(frozen=True)
class FileRef:
    """Detached snapshot of an attached file, safe to hand to other threads."""

    id: str
    filename: str
    storage_path: str
    size_bytes: int

    @classmethod
    def of(cls, meta: models.FileMetadata) -> "FileRef":
        return cls(meta.id, meta.filename, meta.storage_path, meta.size_bytes)


def _grant_once(
    db: Session,
    access_token: str,
    password: Optional[str],
    now: datetime,
    prepare: Optional[Callable[[List[FileRef]], Any]] = None,
):
    send = (
        db.query(models.Send)
        .filter(models.Send.access_token == access_token)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if send is None:
        raise SendNotFound()

    reason = evaluate(send, now, password, verify_password, has_files=bool(send.files))
    if reason is not GRANTED:
        logger.info(f"Download rejected: send={send.id} reason={reason.name}")
        db.rollback()
        raise AccessDenied(reason)

    send.download_count += 1
    files = [FileRef.of(f) for f in send.files]
    if prepare is None:
        granted = files
    else:
        # a stream that cannot be opened must not use up a slot
        try:
            granted = prepare(files)
        except Exception:
            db.rollback()
            raise
    try:
        db.commit()
    except Exception:
        if prepare is not None:
            granted.close()
        raise
    logger.info(
        f"Download granted: send={send.id} count={send.download_count}/{send.max_downloads}"
    )
    return granted


def attempt(
    db: Session,
    access_token: str,
    password: Optional[str] = None,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
    prepare: Optional[Callable[[List[FileRef]], Any]] = None,
):
    """Check access and consume one download slot.

    Returns the Send's files in attachment order. With PREPARE, the files are
    handed to it before the slot is committed and its result is returned
    instead; that result must have a close() method, called if the commit
    fails. Raises SendNotFound, AccessDenied (never retried), whatever PREPARE
    raises, or TransientConflict once retries run out.
    """
    max_attempts = max_attempts or config.DOWNLOAD_MAX_ATTEMPTS
    for attempt_no in range(1, max_attempts + 1):
        current = now or datetime.now(timezone.utc)
        try:
            return _grant_once(db, access_token, password, current, prepare)
        except (StaleDataError, OperationalError) as e:
            db.rollback()
            logger.warning(
                f"Download conflict on token={access_token[:6]}… "
                f"(attempt {attempt_no}/{max_attempts}): {type(e).__name__}"
            )
            time.sleep(RETRY_BACKOFF_SECONDS * attempt_no)

    raise TransientConflict()
