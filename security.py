from passlib.context import CryptContext

from config import BCRYPT_ROUNDS

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Constant-time check of a plain password against a bcrypt hash. Returns False on malformed hashes."""
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False
