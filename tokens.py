import secrets

# 16 random bytes -> 128 bits, 22 URL-safe base64 characters, no padding
ACCESS_TOKEN_BYTES = 16
ACCESS_TOKEN_LENGTH = 22


def generate_access_token() -> str:
    return secrets.token_urlsafe(ACCESS_TOKEN_BYTES)
