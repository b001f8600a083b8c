from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import StorageUnavailable
from .models import Base

logger = logging.getLogger("photo_sync.storage")


def _make_sqlite_url(path: Union[str, Path]) -> str:
    p = Path(path)
    if not p.is_absolute():
        p = p.resolve()
    return f"sqlite:///{p.as_posix()}"


def get_engine(path: Optional[Union[str, Path]] = None) -> Engine:
    """Return a SQLAlchemy Engine for the given path.

    - If path is None or 'memory', return an in-memory SQLite engine shared by all sessions.
    - If path is a filesystem path, ensure parent directories exist and return a file-based SQLite engine.
    """
    if path is None or path == "memory":
        return sa.create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(
        _make_sqlite_url(path),
        connect_args={"check_same_thread": False},
        future=True,
    )


class Database:
    """Owns the engine and session factory shared by the queue, state and cache stores."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, future=True, expire_on_commit=False)

    @classmethod
    def open(cls, path: Optional[Union[str, Path]] = None) -> "Database":
        database = cls(get_engine(path))
        database.init()
        return database

    def init(self) -> None:
        """Create the schema if it does not exist yet."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Could not initialise storage: {exc}") from exc
        logger.info({"event": "storage.init_db", "engine": self.engine.url.render_as_string(hide_password=True)})

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a Session that commits on success and rolls back on error.

        Database errors surface as StorageUnavailable.
        """
        try:
            sess: Session = self._sessions()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(str(exc)) from exc
        try:
            yield sess
            sess.commit()
        except SQLAlchemyError as exc:
            sess.rollback()
            raise StorageUnavailable(str(exc)) from exc
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    def dispose(self) -> None:
        self.engine.dispose()
