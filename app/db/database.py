"""Database engines, session factories and the declarative base."""
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import settings


def build_engine(url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite files get their parent directory created, cross-thread access
    enabled, and a busy timeout of STORE_TIMEOUT_SECONDS so a locked database
    fails the call instead of blocking it indefinitely.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Configured engine
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.STORE_TIMEOUT_SECONDS,
        }
        path = url.split("///", 1)[-1]
        directory = os.path.dirname(path)
        if path != ":memory:" and directory:
            os.makedirs(directory, exist_ok=True)
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

queue_engine = build_engine(settings.OFFLINE_QUEUE_URL)
QueueSessionLocal = sessionmaker(bind=queue_engine, autoflush=False, autocommit=False)

Base = declarative_base()
"""Base for progression record tables."""

QueueBase = declarative_base()
"""Base for the local offline queue table, which lives in its own database."""


def get_db():
    """Yield a record store session, closing it when the request ends."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
