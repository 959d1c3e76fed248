import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from armory.config import settings
from armory.exceptions import ArmoryError, conflict_from_integrity_error

logger = logging.getLogger(__name__)


def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool
        connect_args["check_same_thread"] = False
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    @event.listens_for(engine, "connect")
    def configure_connection(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if engine.dialect.name == "sqlite":
            cursor.execute("PRAGMA foreign_keys=ON")
        elif engine.dialect.name == "postgresql":
            cursor.execute("SET search_path TO public")
        cursor.close()

    return engine


engine = build_engine(settings.database_connection_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Session factory for work that runs outside the request session (audit writes)."""
    return SessionLocal


@contextmanager
def atomic(db: Session) -> Generator[Session, None, None]:
    """
    Run a block as one transaction on the request session.

    Commits on normal exit. On any exception the session is rolled back;
    unique-key violations raised by the store are re-raised as ConflictError.
    """
    try:
        yield db
        db.commit()
    except ArmoryError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Integrity error rolled back: {exc.orig}")
        raise conflict_from_integrity_error(exc) from exc
    except Exception:
        db.rollback()
        logger.exception("Transaction rolled back after unexpected error")
        raise
