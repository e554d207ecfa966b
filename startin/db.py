from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from startin.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"


def default_db_path() -> Path:
    """``STARTIN_DB_PATH`` if set, else ``data/startin.db`` beside the package."""
    configured = os.environ.get("STARTIN_DB_PATH", "").strip()
    return Path(configured) if configured else DATA_DIR / "startin.db"


def _enable_foreign_keys(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        db_path = Path(db_path) if db_path is not None else default_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        event.listen(_engine, "connect", _enable_foreign_keys)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        log.info("Using database %s", db_path)


def get_session() -> Session:
    with _lock:
        factory = _SessionLocal
    if factory is None:
        raise RuntimeError("Database not initialised; call init_db() first")
    return factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session that rolls back on error and always closes. Callers commit."""
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_generator() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session
