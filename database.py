from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DATABASE_URL


def make_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite sessions are handed to the download stream's worker threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        # Connection pooling for reliability under load
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,     # test connections before use (handles dropped DB connections)
        pool_recycle=3600,      # recycle connections every hour (prevents stale connections)
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency - yields a DB session and always closes it after the request."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
