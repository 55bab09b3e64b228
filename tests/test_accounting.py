import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm.exc import StaleDataError

import accounting
import send_service
from errors import AccessDenied, RejectionReason, SendNotFound, TransientConflict


def reload_count(db, send):
    db.expire_all()
    return send_service.get_send(db, send.id).download_count


def test_single_download_then_limit(db, make_send):
    send = make_send(max_downloads=1)

    files = accounting.attempt(db, send.access_token)
    assert [f.filename for f in files] == ["payload.bin"]
    assert reload_count(db, send) == 1

    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token)
    assert info.value.reason == RejectionReason.LIMIT_EXCEEDED
    assert reload_count(db, send) == 1


def test_expired_send_is_not_counted(db, make_send):
    send = make_send(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))

    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token)
    assert info.value.reason == RejectionReason.EXPIRED
    assert reload_count(db, send) == 0


def test_revocation_after_download(db, make_send):
    send = make_send(max_downloads=3)
    accounting.attempt(db, send.access_token)
    send_service.revoke_send(db, send.id)

    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token)
    assert info.value.reason == RejectionReason.REVOKED
    assert reload_count(db, send) == 1


def test_unknown_token(db):
    with pytest.raises(SendNotFound):
        accounting.attempt(db, "does-not-exist")


def test_send_without_files(db, make_send):
    send = make_send(files=())
    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token)
    assert info.value.reason == RejectionReason.NO_FILES_ATTACHED
    assert reload_count(db, send) == 0


@pytest.mark.parametrize("password", [None, "", "   ", "wrong"])
def test_bad_password_does_not_consume_a_slot(db, make_send, password):
    send = make_send(password_protected=True, password="correct horse", max_downloads=2)

    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token, password)
    assert info.value.reason == RejectionReason.PASSWORD_INVALID
    assert reload_count(db, send) == 0


def test_correct_password_until_limit(db, make_send):
    send = make_send(password_protected=True, password="correct horse", max_downloads=2)

    accounting.attempt(db, send.access_token, "correct horse")
    accounting.attempt(db, send.access_token, "correct horse")
    with pytest.raises(AccessDenied) as info:
        accounting.attempt(db, send.access_token, "correct horse")
    assert info.value.reason == RejectionReason.LIMIT_EXCEEDED
    assert reload_count(db, send) == 2


@pytest.mark.parametrize("limit", [1, 2, 3, 4, 5])
def test_concurrent_attempts_never_over_grant(session_factory, make_send, db, limit):
    send = make_send(max_downloads=limit)
    token = send.access_token
    callers = limit + 4
    barrier = threading.Barrier(callers)
    granted, rejected, errors = [], [], []

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            granted.append(accounting.attempt(session, token, max_attempts=50))
        except AccessDenied as e:
            rejected.append(e.reason)
        except Exception as e:  # surfaced through the assertion below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert len(granted) == limit
    assert rejected == [RejectionReason.LIMIT_EXCEEDED] * (callers - limit)
    assert reload_count(db, send) == limit


def test_conflicts_are_retried_then_surface(db, make_send, monkeypatch):
    send = make_send()
    calls = []

    def always_stale(*args):
        calls.append(args)
        raise StaleDataError("lost the race")

    monkeypatch.setattr(accounting, "_grant_once", always_stale)
    monkeypatch.setattr(accounting, "RETRY_BACKOFF_SECONDS", 0)

    with pytest.raises(TransientConflict):
        accounting.attempt(db, send.access_token, max_attempts=3)
    assert len(calls) == 3


def test_rejections_are_not_retried(db, make_send, monkeypatch):
    send = make_send(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    original = accounting._grant_once
    calls = []

    def counting(*args):
        calls.append(args)
        return original(*args)

    monkeypatch.setattr(accounting, "_grant_once", counting)
    with pytest.raises(AccessDenied):
        accounting.attempt(db, send.access_token)
    assert len(calls) == 1
