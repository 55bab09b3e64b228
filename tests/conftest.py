import os
import tempfile

# settings are read at import time, so point them somewhere disposable first
_TMP = tempfile.mkdtemp(prefix="sendvault-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/app.db")
os.environ.setdefault("STORAGE_PROVIDER", "local")
os.environ.setdefault("STORAGE_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import database
import models  # noqa: F401
import send_service
from auth import Identity, create_access_token
from storage import LocalBlobStore, get_storage


@pytest.fixture()
def engine(tmp_path: Path):
    eng = database.make_engine(f"sqlite:///{tmp_path / 'sends.db'}")
    database.Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def storage(tmp_path: Path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture()
def owner():
    return Identity(user_id="user-1", name="Alice", email="alice@example.com")


@pytest.fixture()
def make_send(db, storage):
    """Create a Send and attach FILES, a list of (filename, bytes)."""

    def _make(files=(("payload.bin", b"encrypted-content"),), identity=None, **fields):
        send = send_service.create_send(db, send_service.NewSend(**fields), identity)
        for filename, data in files:
            send_service.attach_file(db, storage, send.id, io.BytesIO(data), filename, size_hint=len(data))
        db.refresh(send)
        return send

    return _make


@pytest.fixture()
def client(session_factory, storage):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user_id: str = "user-1", role: str = "user", **claims) -> dict:
        token = create_access_token({"sub": user_id, "role": role, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _headers
