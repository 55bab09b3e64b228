import io
import zipfile
from datetime import datetime, timedelta, timezone

import pytest

import config


@pytest.fixture()
def alice(auth_headers):
    return auth_headers(user_id="alice")


def create(client, headers, **body):
    resp = client.post("/api/v1/sends", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def upload(client, headers, send_id, filename, data):
    resp = client.post(
        "/api/v1/files",
        data={"send_id": send_id},
        files={"file": (filename, data, "application/octet-stream")},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def download(client, token, password=None):
    params = {"password": password} if password is not None else {}
    return client.get(f"/api/v1/sends/{token}/download", params=params)


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_single_use_send(client, alice):
    payload = b"\x89ciphertext\x00" * 4096
    send = create(client, alice, name="report")
    assert len(send["access_token"]) == 22
    assert send["owner_id"] == "alice"
    assert "password_hash" not in send
    upload(client, alice, send["id"], "report.pdf.enc", payload)

    first = download(client, send["access_token"])
    assert first.status_code == 200
    assert first.content == payload
    assert first.headers["content-length"] == str(len(payload))
    assert "report.pdf.enc" in first.headers["content-disposition"]

    second = download(client, send["access_token"])
    assert second.status_code == 410
    assert second.json()["code"] == "SEND_DOWNLOAD_LIMIT_EXCEEDED"


def test_multi_file_send_is_a_zip(client, alice):
    send = create(client, alice, max_downloads=2)
    upload(client, alice, send["id"], "b.txt", b"bee")
    upload(client, alice, send["id"], "a.txt", b"ay")

    resp = download(client, send["access_token"])
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"
    assert "content-length" not in resp.headers
    assert f"send-{send['access_token']}.zip" in resp.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
        assert archive.namelist() == ["b.txt", "a.txt"]
        assert archive.read("a.txt") == b"ay"


def test_expired_send(client, alice):
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    send = create(client, alice, expires_at=past)
    upload(client, alice, send["id"], "x.bin", b"x")

    resp = download(client, send["access_token"])
    assert resp.status_code == 410
    assert resp.json()["code"] == "SEND_EXPIRED"


def test_revoked_send_looks_missing(client, alice):
    send = create(client, alice, max_downloads=5)
    upload(client, alice, send["id"], "x.bin", b"x")

    resp = client.post(f"/api/v1/sends/{send['id']}/revoke", headers=alice)
    assert resp.json()["revoked"] is True

    resp = download(client, send["access_token"])
    assert resp.status_code == 404
    assert resp.json()["code"] == "SEND_REVOKED"


def test_password_protected_send(client, alice):
    send = create(client, alice, password_protected=True, password="open sesame")
    assert send["password_protected"] is True
    upload(client, alice, send["id"], "x.bin", b"secret")

    for attempt in (None, "", "wrong"):
        resp = download(client, send["access_token"], attempt)
        assert resp.status_code == 403
        assert resp.json()["code"] == "SEND_PASSWORD_INVALID"

    resp = download(client, send["access_token"], "open sesame")
    assert resp.status_code == 200
    assert resp.content == b"secret"


def test_send_without_files(client, alice):
    send = create(client, alice)
    resp = download(client, send["access_token"])
    assert resp.status_code == 404
    assert resp.json()["code"] == "SEND_NO_FILES"


def test_unknown_token(client):
    resp = download(client, "nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "SEND_NOT_FOUND"


def test_error_body_carries_correlation_id(client):
    resp = client.get("/api/v1/sends/nope/download", headers={"X-Correlation-ID": "cid-42"})
    assert resp.headers["x-correlation-id"] == "cid-42"
    assert resp.json()["correlation_id"] == "cid-42"


def test_creating_requires_identity(client):
    resp = client.post("/api/v1/sends", json={})
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"


def test_max_downloads_follows_configured_limit(client, alice):
    limit = config.MAX_DOWNLOADS_LIMIT
    assert create(client, alice, max_downloads=limit)["max_downloads"] == limit
    assert client.post("/api/v1/sends", json={"max_downloads": 0}, headers=alice).status_code == 422
    assert client.post("/api/v1/sends", json={"max_downloads": limit + 1}, headers=alice).status_code == 422


def test_lookup_by_id_or_token(client, alice):
    send = create(client, alice, name="lookup")
    by_id = client.get(f"/api/v1/sends/{send['id']}").json()
    by_token = client.get(f"/api/v1/sends/{send['access_token']}").json()
    assert by_id["id"] == by_token["id"] == send["id"]


def test_list_own_sends(client, auth_headers, alice):
    mine = create(client, alice)
    create(client, auth_headers(user_id="bob"))

    listed = client.get("/api/v1/sends", headers=alice).json()
    assert [s["id"] for s in listed] == [mine["id"]]
    assert client.get("/api/v1/sends").json() == []


def test_delete_requires_owner(client, auth_headers, alice):
    send = create(client, alice)

    assert client.delete(f"/api/v1/sends/{send['id']}").status_code == 401
    assert client.delete(f"/api/v1/sends/{send['id']}", headers=auth_headers(user_id="bob")).status_code == 403
    assert client.delete(f"/api/v1/sends/{send['id']}", headers=alice).status_code == 204
    assert client.get(f"/api/v1/sends/{send['id']}").status_code == 404


def test_token_holder_cannot_add_files(client, auth_headers, alice):
    send = create(client, alice, max_downloads=2)
    upload(client, alice, send["id"], "real.bin", b"real")

    # anyone with the token can resolve the id
    send_id = client.get(f"/api/v1/sends/{send['access_token']}").json()["id"]
    attempt = {"data": {"send_id": send_id}, "files": {"file": ("evil.exe", b"MZ")}}

    assert client.post("/api/v1/files", **attempt).status_code == 401
    assert client.post("/api/v1/files", headers=auth_headers(user_id="bob"), **attempt).status_code == 403

    resp = download(client, send["access_token"])
    assert resp.content == b"real"
    assert "real.bin" in resp.headers["content-disposition"]


def test_admin_may_upload_to_any_send(client, auth_headers, alice):
    send = create(client, alice)
    upload(client, auth_headers(user_id="root", role="admin"), send["id"], "x.bin", b"x")
    assert len(client.get(f"/api/v1/sends/{send['id']}").json()["files"]) == 1


def test_owner_reads_file_without_counting(client, alice):
    send = create(client, alice)
    meta = upload(client, alice, send["id"], "x.bin", b"owner copy")

    resp = client.get(f"/api/v1/files/{meta['id']}", headers=alice)
    assert resp.content == b"owner copy"
    assert client.get(f"/api/v1/sends/{send['id']}").json()["download_count"] == 0


def test_admin_cleanup(client, auth_headers, alice):
    past = (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()
    expired = create(client, alice, expires_at=past)
    upload(client, alice, expired["id"], "x.bin", b"12345")
    alive = create(client, alice)

    assert client.post("/api/v1/admin/cleanup", headers=alice).status_code == 403

    report = client.post("/api/v1/admin/cleanup", headers=auth_headers(role="admin")).json()
    assert report["deleted_sends"] == 1
    assert report["freed_bytes"] == 5
    assert client.get(f"/api/v1/sends/{expired['id']}").status_code == 404
    assert client.get(f"/api/v1/sends/{alive['id']}").status_code == 200
