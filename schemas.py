from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

from config import MAX_DOWNLOADS_LIMIT


class SendCreate(BaseModel):
    name: Optional[str] = None
    send_type: str = "FILE"  # FILE | TEXT
    encrypted_metadata: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_downloads: int = Field(1, ge=1, le=MAX_DOWNLOADS_LIMIT)
    password_protected: bool = False
    password: Optional[str] = None


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    send_id: str
    filename: str
    size_bytes: int
    checksum: Optional[str] = None


class SendOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    access_token: str
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    name: Optional[str] = None
    send_type: str
    encrypted_metadata: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_downloads: int
    download_count: int
    password_protected: bool
    revoked: bool
    created_at: Optional[datetime] = None
    files: List[FileOut] = []


class CleanupReport(BaseModel):
    deleted_sends: int
    deleted_files: int
    freed_bytes: int
    timestamp: str
