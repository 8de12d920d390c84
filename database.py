from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None


def _create_engine(database_url: str, **kwargs) -> Engine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    if not _is_memory_connection(dbapi_conn):
        cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _is_memory_connection(dbapi_conn) -> bool:
    cursor = dbapi_conn.cursor()
    try:
        rows = cursor.execute("PRAGMA database_list;").fetchall()
    finally:
        cursor.close()
    return all(not row[2] for row in rows)


def init_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create the process-wide engine and bind the session factory to it.

    Called once at application startup. Calling it again replaces the
    previous engine after disposing its pool.
    """
    global _engine
    if _engine is not None:
        _engine.dispose()
    url = database_url or get_settings().database_url
    _engine = _create_engine(url, **kwargs)
    SessionLocal.configure(bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine is not initialised")
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
