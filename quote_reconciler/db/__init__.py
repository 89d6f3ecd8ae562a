"""Database package: Database (engine + session factory) with a session() context manager."""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quote_reconciler.config import DATABASE_URL
from quote_reconciler.db.base import Base

# Import all models so Base.metadata has all tables
from quote_reconciler.db.models import AuditLog, Quotation, WatchCheckpoint  # noqa: F401


def _create_engine(url: str) -> Engine:
    """Create engine with check_same_thread=False for use from executor threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False)
    connect_args = {"check_same_thread": False}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise each thread sees its own empty database.
        return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, echo=False, connect_args=connect_args)


class Database:
    """Owns the engine and session factory; pass it to repository functions."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or DATABASE_URL
        self.engine = _create_engine(self.url)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Yield a session; commit on success, roll back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def init_db(url: Optional[str] = None) -> Database:
    """Create a Database and its tables."""
    db = Database(url)
    db.create_all()
    return db


__all__ = ["Base", "Database", "init_db"]
