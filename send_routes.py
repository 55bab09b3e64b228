# send_routes.py

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session
from starlette.concurrency import iterate_in_threadpool

import models
import schemas
import send_service
from auth import Identity, get_optional_identity, require_admin, require_identity
from cleanup import run_cleanup
from database import get_db
from errors import NotAuthenticated, PermissionDenied
from file_service import content_disposition
from storage import BlobStore, get_storage
from stream_assembler import BlobStream, ClosableStream

router = APIRouter(prefix="/api/v1", tags=["Sends"])


def _ensure_can_manage(send: models.Send, identity: Optional[Identity]):
    if identity is None:
        raise NotAuthenticated()
    if identity.is_admin or (send.owner_id is not None and send.owner_id == identity.user_id):
        return
    raise PermissionDenied("You do not own this send")


async def _relay(stream: ClosableStream):
    # closing here also covers clients that disconnect mid-download
    try:
        async for chunk in iterate_in_threadpool(stream):
            yield chunk
    finally:
        stream.close()


# ─── SENDS ────────────────────────────────────────────

@router.post("/sends", response_model=schemas.SendOut)
def create_send(
    req: schemas.SendCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_identity),
):
    data = send_service.NewSend(**req.model_dump())
    return send_service.create_send(db, data, identity)


@router.get("/sends", response_model=List[schemas.SendOut])
def list_sends(
    db: Session = Depends(get_db),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    return send_service.list_sends(db, identity.user_id if identity else None)


@router.get("/sends/{send_ref}", response_model=schemas.SendOut)
def get_send(send_ref: str, db: Session = Depends(get_db)):
    # UUIDs are ids, anything else is an access token
    try:
        uuid.UUID(send_ref)
    except ValueError:
        return send_service.get_send_by_token(db, send_ref)
    return send_service.get_send(db, send_ref)


@router.delete("/sends/{send_id}", status_code=204)
def delete_send(
    send_id: str,
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
    identity: Identity = Depends(require_identity),
):
    _ensure_can_manage(send_service.get_send(db, send_id), identity)
    send_service.delete_send(db, storage, send_id)
    return Response(status_code=204)


@router.post("/sends/{send_id}/revoke", response_model=schemas.SendOut)
def revoke_send(
    send_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_identity),
):
    _ensure_can_manage(send_service.get_send(db, send_id), identity)
    return send_service.revoke_send(db, send_id)


# ─── DOWNLOAD ─────────────────────────────────────────

@router.get("/sends/{access_token}/download")
def download_send(
    access_token: str,
    password: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    result = send_service.retrieve(db, storage, access_token, password)

    headers = {"Content-Disposition": content_disposition(result.filename)}
    if result.size_bytes is not None:
        headers["Content-Length"] = str(result.size_bytes)
    media_type = "application/zip" if result.is_archive else "application/octet-stream"

    return StreamingResponse(_relay(result.stream), media_type=media_type, headers=headers)


# ─── FILES ────────────────────────────────────────────

@router.post("/files", response_model=schemas.FileOut, status_code=201, tags=["Files"])
def upload_file(
    send_id: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
    identity: Identity = Depends(require_identity),
):
    _ensure_can_manage(send_service.get_send(db, send_id), identity)
    return send_service.attach_file(db, storage, send_id, file.file, file.filename, size_hint=file.size)


@router.get("/files/{file_id}", tags=["Files"])
def download_file(
    file_id: str,
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
    identity: Identity = Depends(require_identity),
):
    meta = send_service.find_file(db, file_id)
    _ensure_can_manage(meta.send, identity)
    stream = BlobStream(send_service.open_file(db, storage, file_id))

    return StreamingResponse(
        _relay(stream),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": content_disposition(meta.filename),
            "Content-Length": str(meta.size_bytes),
        },
    )


# ─── ADMIN ────────────────────────────────────────────

@router.post("/admin/cleanup", response_model=schemas.CleanupReport, tags=["Admin"])
def cleanup_sends(
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
    identity: Identity = Depends(require_admin),
):
    return run_cleanup(db, storage)
