# ecoanalytics/db.py
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from ecoanalytics import monitoring

# Default dev DB; api/index.py points this at /tmp for serverless deploys
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ecoanalytics.db")


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    # Create tables if they don't exist
    try:
        # models register themselves on Base.metadata at import
        import ecoanalytics.models as models  # noqa: F401
        Base.metadata.create_all(bind=engine)
    except Exception:
        # Don't crash the app at import time; storage calls will surface the failure
        monitoring.logger.exception("DB init failed", extra={"database_url": str(engine.url)})
