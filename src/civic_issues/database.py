"""Database handle and declarative base for the issue store."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Explicitly constructed persistence handle.

    The handle is created once per application, connected at startup and closed
    at shutdown. Services receive it at construction time and open one session
    per operation through :meth:`session`.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    @property
    def connected(self) -> bool:
        return self.engine is not None

    def connect(self) -> "Database":
        if self.engine is not None:
            return self
        kwargs = {"future": True, "echo": self.echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url == "sqlite://":
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
            kwargs["pool_recycle"] = 300
        self.engine = create_engine(self.url, **kwargs)
        if self.url.startswith("sqlite"):
            # SQLite only honours ON DELETE CASCADE with foreign keys switched on
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._sessionmaker = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        logger.info("database engine created for %s", self.engine.url.render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._sessionmaker = None
        logger.info("database engine disposed")

    def create_all(self) -> None:
        """Create database tables if they do not exist."""
        # models must be imported so their tables are registered on Base
        from .models import issue, user  # noqa: F401

        Base.metadata.create_all(bind=self._require_engine())

    def ping(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            with self._require_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("database ping failed", exc_info=True)
            return False

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a session that rolls back on error and is always closed."""
        if self._sessionmaker is None:
            raise RuntimeError("Database is not connected")
        session: Session = self._sessionmaker()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Database is not connected")
        return self.engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
