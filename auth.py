from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
import logging

from config import SECRET_KEY, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from errors import NotAuthenticated, PermissionDenied

logger = logging.getLogger(__name__)

# Bearer tokens are optional: anonymous callers may create and download Sends
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(data: dict) -> str:
    """
    Creates a signed JWT. Embeds: sub (user id), name, email, role, exp (expiry).
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])


def identity_from_claims(claims: dict) -> Optional[Identity]:
    subject = claims.get("sub")
    if not subject:
        return None
    name = claims.get("name") or claims.get("preferred_username")
    return Identity(
        user_id=str(subject),
        name=name,
        email=claims.get("email"),
        role=claims.get("role", "user"),
    )


def get_optional_identity(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Identity]:
    if not token:
        return None
    try:
        return identity_from_claims(decode_token(token))
    except JWTError as e:
        logger.info(f"Ignoring invalid bearer token: {e}")
        return None


def require_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise NotAuthenticated()
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        raise PermissionDenied("Admin access required")
    return identity
