"""
send_service.py — Send lifecycle and the retrieval entry point.

Sends are created metadata-only; files are attached afterwards. A Send owns
its file rows: deleting it removes the rows in the same transaction and then
removes the blobs best-effort.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, List, Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import accounting
import config
import models
from auth import Identity
from errors import FileNotFound, InvalidSendRequest, SendNotFound, StorageFailure, TransientConflict
from security import hash_password
from storage import BlobStore
from stream_assembler import DownloadStream, assemble
from tokens import generate_access_token

logger = logging.getLogger(__name__)

SEND_TYPES = ("FILE", "TEXT")

T = TypeVar("T")


@dataclass
class NewSend:
    name: Optional[str] = None
    send_type: str = "FILE"
    encrypted_metadata: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_downloads: int = 1
    password_protected: bool = False
    password: Optional[str] = None


# ─── CREATE / READ ─────────────────────────────────────

def create_send(
    db: Session,
    data: NewSend,
    identity: Optional[Identity] = None,
    token_factory: Callable[[], str] = generate_access_token,
) -> models.Send:
    max_downloads = 1 if data.max_downloads is None else data.max_downloads
    if not 1 <= max_downloads <= config.MAX_DOWNLOADS_LIMIT:
        raise InvalidSendRequest(f"max_downloads must be between 1 and {config.MAX_DOWNLOADS_LIMIT}")
    if data.send_type not in SEND_TYPES:
        raise InvalidSendRequest(f"send_type must be one of {', '.join(SEND_TYPES)}")

    # a protection flag without a usable password leaves the Send open
    password_hash = None
    if data.password_protected and data.password and data.password.strip():
        password_hash = hash_password(data.password)

    for attempt_no in range(1, config.TOKEN_MAX_ATTEMPTS + 1):
        send = models.Send(
            access_token=token_factory(),
            owner_id=identity.user_id if identity else None,
            owner_name=identity.name if identity else None,
            owner_email=identity.email if identity else None,
            name=data.name,
            send_type=data.send_type,
            encrypted_metadata=data.encrypted_metadata,
            expires_at=data.expires_at,
            max_downloads=max_downloads,
            download_count=0,
            password_protected=password_hash is not None,
            password_hash=password_hash,
            revoked=False,
        )
        db.add(send)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Access token collision on attempt {attempt_no}, regenerating")
            continue
        db.refresh(send)
        logger.info(f"Send created: id={send.id} max_downloads={max_downloads} protected={send.password_protected}")
        return send

    raise TransientConflict("Could not allocate a unique access token")


def get_send(db: Session, send_id: str) -> models.Send:
    send = db.get(models.Send, send_id)
    if send is None:
        raise SendNotFound()
    return send


def get_send_by_token(db: Session, access_token: str) -> models.Send:
    send = db.query(models.Send).filter(models.Send.access_token == access_token).first()
    if send is None:
        raise SendNotFound()
    return send


def list_sends(db: Session, owner_id: Optional[str]) -> List[models.Send]:
    if not owner_id:
        return []
    return (
        db.query(models.Send)
        .filter(models.Send.owner_id == owner_id)
        .order_by(models.Send.created_at.desc())
        .all()
    )


# ─── MUTATIONS ─────────────────────────────────────────

def _commit_fresh(db: Session, send_id: str, mutate: Callable[[models.Send], T], action: str) -> T:
    """Apply MUTATE to a freshly loaded Send and commit, retrying lost races.

    Every granted download bumps the Send's version, so a copy loaded earlier
    in the request cannot be written back once a download has committed.
    """
    max_attempts = config.DOWNLOAD_MAX_ATTEMPTS
    for attempt_no in range(1, max_attempts + 1):
        send = db.get(models.Send, send_id, populate_existing=True, with_for_update=True)
        if send is None:
            raise SendNotFound()
        try:
            result = mutate(send)
            db.commit()
            return result
        except (StaleDataError, OperationalError) as e:
            db.rollback()
            logger.warning(
                f"{action} conflict on send={send_id} "
                f"(attempt {attempt_no}/{max_attempts}): {type(e).__name__}"
            )
            time.sleep(accounting.RETRY_BACKOFF_SECONDS * attempt_no)

    raise TransientConflict()


def _mark_revoked(send: models.Send) -> models.Send:
    send.revoked = True
    return send


def revoke_send(db: Session, send_id: str) -> models.Send:
    send = _commit_fresh(db, send_id, _mark_revoked, "Revoke")
    logger.info(f"Send revoked: id={send_id}")
    return send


def delete_blobs(storage: BlobStore, storage_paths: List[str]) -> List[str]:
    """Best-effort blob removal once the rows are gone. Returns the paths actually deleted."""
    deleted = []
    for path in storage_paths:
        try:
            if storage.delete(path):
                deleted.append(path)
        except StorageFailure as e:
            logger.warning(f"Failed to delete blob {path}: {e}")
    return deleted


def remove_send(db: Session, send: models.Send) -> List[str]:
    """Delete the Send's file rows, then the Send. Commit is left to the caller."""
    paths = [f.storage_path for f in send.files]
    for meta in list(send.files):
        db.delete(meta)
    db.flush()
    db.expire(send, ["files"])
    db.delete(send)
    return paths


def delete_send(db: Session, storage: BlobStore, send_id: str) -> None:
    paths = _commit_fresh(db, send_id, lambda send: remove_send(db, send), "Delete")
    delete_blobs(storage, paths)
    logger.info(f"Send deleted: id={send_id} files={len(paths)}")


# ─── FILES ─────────────────────────────────────────────

def attach_file(
    db: Session,
    storage: BlobStore,
    send_id: str,
    source: BinaryIO,
    filename: str,
    size_hint: Optional[int] = None,
) -> models.FileMetadata:
    send = get_send(db, send_id)
    if not filename:
        raise InvalidSendRequest("A filename is required")

    blob = storage.write(source, size_hint=size_hint, suggested_name=filename)
    next_position = (
        db.query(func.coalesce(func.max(models.FileMetadata.position), -1))
        .filter(models.FileMetadata.send_id == send.id)
        .scalar()
        + 1
    )
    meta = models.FileMetadata(
        send_id=send.id,
        position=next_position,
        filename=filename,
        storage_path=blob.storage_path,
        size_bytes=blob.size_bytes,
        checksum=blob.checksum,
    )
    db.add(meta)
    try:
        db.commit()
    except Exception:
        db.rollback()
        delete_blobs(storage, [blob.storage_path])
        raise
    db.refresh(meta)
    logger.info(f"File attached: send={send.id} file={meta.id} size={meta.size_bytes}")
    return meta


def find_file(db: Session, file_id: str) -> models.FileMetadata:
    meta = db.get(models.FileMetadata, file_id)
    if meta is None:
        raise FileNotFound()
    return meta


def open_file(db: Session, storage: BlobStore, file_id: str) -> BinaryIO:
    return storage.read(find_file(db, file_id).storage_path)


# ─── RETRIEVAL ─────────────────────────────────────────

def retrieve(
    db: Session,
    storage: BlobStore,
    access_token: str,
    password: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DownloadStream:
    """Check access, count the download and return the outbound stream.

    The stream is opened before the download is counted, so a blob that
    cannot be opened costs no download slot.
    """
    archive_name = f"send-{access_token}.zip"
    return accounting.attempt(
        db, access_token, password, now=now,
        prepare=lambda files: assemble(files, storage, archive_name=archive_name),
    )
