import uuid

from sqlalchemy import Column, Integer, String, DateTime, BigInteger, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ─────────────────────────────────────────────────────────────
# Send container
# ─────────────────────────────────────────────────────────────
class Send(Base):
    __tablename__ = "sends"

    id = Column(String(36), primary_key=True, default=_uuid)
    access_token = Column(String(32), unique=True, index=True, nullable=False)
    owner_id = Column(String, index=True, nullable=True)
    owner_name = Column(String, nullable=True)
    owner_email = Column(String, nullable=True)
    name = Column(String, nullable=True)
    send_type = Column(String, default="FILE", nullable=False)  # FILE | TEXT
    encrypted_metadata = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_downloads = Column(Integer, default=1, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    password_protected = Column(Boolean, default=False, nullable=False)
    password_hash = Column(String(60), nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    version_id = Column(Integer, nullable=False)

    files = relationship(
        "FileMetadata",
        back_populates="send",
        order_by="FileMetadata.position",
        cascade="all, delete-orphan",
    )

    # UPDATEs carry "WHERE version_id = :old" and raise StaleDataError on a lost race
    __mapper_args__ = {"version_id_col": version_id}


# ─────────────────────────────────────────────────────────────
# Files attached to a Send
# ─────────────────────────────────────────────────────────────
class FileMetadata(Base):
    __tablename__ = "send_files"

    id = Column(String(36), primary_key=True, default=_uuid)
    send_id = Column(String(36), ForeignKey("sends.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    filename = Column(String, nullable=False)
    storage_path = Column(String(512), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    checksum = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    send = relationship("Send", back_populates="files")
