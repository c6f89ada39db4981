"""Database engine, session factory and table creation"""
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.models.base import Base
from app.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for create_engine

    Scheduler jobs run in worker threads, so SQLite connections must not be
    pinned to the thread that opened them. Pool tuning applies to server
    databases only.
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Request-scoped session for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create every table known to the models"""
    import app.models  # noqa: F401  registers every model with Base.metadata
    Base.metadata.create_all(bind=engine)
