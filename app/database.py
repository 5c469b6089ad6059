import logging
import sqlite3
import threading
from pathlib import Path
import uuid

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config.loader import get_database_settings

logger = logging.getLogger("database")

_settings = get_database_settings()
DATABASE_URL = _settings["url"]
IS_SQLITE = DATABASE_URL.startswith("sqlite")

# One writer at a time across the process; SQLite allows no more.
_SQLITE_WRITE_LOCK = threading.RLock()


def _ensure_sqlite_directory(database_url: str) -> None:
    db_url = make_url(database_url)
    if not db_url.database or db_url.database == ":memory:":
        return
    db_path = Path(db_url.database)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)


def is_sqlite_locked_error(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database table is locked" in message


class SerializedSession(Session):
    """
    Session whose flushes and commits hold the process-wide write lock.

    A commit that fails because the database is locked is rolled back and
    re-raised. The pending changes are gone after the rollback, so the caller
    has to redo its whole unit of work; the commit is never retried here.
    """

    def commit(self) -> None:
        with _SQLITE_WRITE_LOCK:
            try:
                return super().commit()
            except OperationalError as exc:
                if is_sqlite_locked_error(exc):
                    logger.warning("Commit refused, database is locked: %s", exc)
                    super().rollback()
                raise

    def flush(self, objects=None) -> None:
        with _SQLITE_WRITE_LOCK:
            return super().flush(objects)


connect_args = {}
if IS_SQLITE:
    _ensure_sqlite_directory(DATABASE_URL)
    connect_args["check_same_thread"] = False
    connect_args["timeout"] = max(1, _settings["busy_timeout_ms"] / 1000)

    @event.listens_for(Engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        if not isinstance(dbapi_connection, sqlite3.Connection):
            return
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA journal_mode={_settings['journal_mode']}")
        cursor.execute(f"PRAGMA synchronous={_settings['synchronous']}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={_settings['busy_timeout_ms']}")
        cursor.close()


engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=SerializedSession if IS_SQLITE else Session,
)

Base = declarative_base()


def get_db():
    req_id = uuid.uuid4()
    logger.debug(f"[DB_SESSION_START][{req_id}] Creating database session.")
    db = SessionLocal()
    try:
        yield db
    finally:
        logger.debug(f"[DB_SESSION_END][{req_id}] Closing database session.")
        db.close()
