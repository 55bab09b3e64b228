"""
file_service.py — Helper utilities for uploaded file names.

Filenames arrive from clients and are untrusted. They are only ever shown
back (archive entry names, Content-Disposition); storage keys are derived
from a sanitized copy.
"""
import re
from urllib.parse import quote

SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")
MAX_SAFE_NAME = 100


def sanitize_filename(filename: str) -> str:
    """Reduce a client filename to a single safe path component."""
    base = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = SAFE_NAME_RE.sub("_", base).strip("._")
    return cleaned[:MAX_SAFE_NAME] or "blob"


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = sanitize_filename(filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename or fallback, safe='')}"
