import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sendvault.db")

SECRET_KEY = os.getenv("SECRET_KEY", "change-this-in-production-minimum-32-chars!")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# local | minio
STORAGE_PROVIDER = os.getenv("STORAGE_PROVIDER", "local").lower()
STORAGE_DIR = os.getenv("STORAGE_DIR", "uploads")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "http://localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ROOT_USER", "admin")
MINIO_SECRET_KEY = os.getenv("MINIO_ROOT_PASSWORD", "StrongPassword123")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "sendvault")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MAX_DOWNLOADS_LIMIT = int(os.getenv("MAX_DOWNLOADS_LIMIT", "50"))
DOWNLOAD_MAX_ATTEMPTS = int(os.getenv("DOWNLOAD_MAX_ATTEMPTS", "5"))
TOKEN_MAX_ATTEMPTS = int(os.getenv("TOKEN_MAX_ATTEMPTS", "3"))

ARCHIVE_CHANNEL_SIZE = int(os.getenv("ARCHIVE_CHANNEL_SIZE", "16"))
STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", str(64 * 1024)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
