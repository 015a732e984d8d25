"""
Task database: one SQLAlchemy engine per process, sessions handed out by session_scope().
SQLite under ~/.goldfish unless the config names a database.url or database.path.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

DATA_DIR = Path.home() / ".goldfish"

_engine = None
_SessionLocal = None


def _sqlite_url(path: Path) -> str:
    path = path.expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def resolve_db_url(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> str:
    """Explicit url, then database.url, then database.path, then the per-user default file."""
    if db_url:
        return db_url
    database = (config_data or {}).get("database") or {}
    if database.get("url"):
        return database["url"]
    if database.get("path"):
        return _sqlite_url(Path(database["path"]))
    return _sqlite_url(DATA_DIR / "goldfish.db")


@contextmanager
def session_scope() -> Iterator[Session]:
    """A unit of work against the task tables; committed when the block exits cleanly."""
    if _SessionLocal is None:
        raise RuntimeError("Task database is not open; call init_db() at startup")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """Open the task database and create missing tables. A second call is a no-op until close_db()."""
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Task database already open")
        return

    url = resolve_db_url(config_data, db_url)
    # SQLite connections are shared with asyncio.to_thread workers
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _engine = create_engine(url, future=True, connect_args=connect_args)

    from goldfish.core import models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info(f"Task database ready at {url.split('?')[0]}")


def close_db() -> None:
    """Dispose the engine so init_db can be called again (tests, config reload)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
