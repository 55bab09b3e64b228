"""
access_guard.py — The decision procedure run before every Send retrieval.

Predicates are evaluated in a fixed order: revoked, expired, password,
download limit, attached files. Revocation and expiry come first so a
closed Send never reveals whether it is password protected, and the limit
comes after the password so a caller without credentials cannot burn a
download slot.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from errors import RejectionReason

GRANTED = None

PasswordVerifier = Callable[[str, str], bool]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stores without timezone support hand back naive datetimes; those are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    expires_at = as_utc(expires_at)
    return expires_at is not None and expires_at < now


def evaluate(
    send,
    now: datetime,
    password: Optional[str],
    verify: PasswordVerifier,
    has_files: bool = True,
) -> Optional[RejectionReason]:
    """Return GRANTED (None) or the first RejectionReason that applies.

    ``send`` only needs the attributes revoked, expires_at, password_protected,
    password_hash, download_count and max_downloads. It is never modified.
    """
    if send.revoked:
        return RejectionReason.REVOKED

    if is_expired(send.expires_at, as_utc(now)):
        return RejectionReason.EXPIRED

    if send.password_protected:
        # blank and wrong passwords get the same answer
        if password is None or not password.strip():
            return RejectionReason.PASSWORD_INVALID
        if not send.password_hash or not verify(password, send.password_hash):
            return RejectionReason.PASSWORD_INVALID

    if send.download_count >= send.max_downloads:
        return RejectionReason.LIMIT_EXCEEDED

    if not has_files:
        return RejectionReason.NO_FILES_ATTACHED

    return GRANTED
