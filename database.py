"""
Persistence accessor.

Wraps a SQLAlchemy engine and session factory. Callers get scoped sessions
through ``session()`` for reads and ``transaction()`` for atomic writes; store
failures surface as PersistenceError with the detail kept in the logs.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from errors import PersistenceError
from models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.url = url
        connect_args = {}
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 15}
        else:
            engine_kwargs.update(pool_size=20, max_overflow=0, pool_timeout=2, pool_recycle=1800)
        self.engine = create_engine(url, connect_args=connect_args, **engine_kwargs)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._sessionmaker = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._sessionmaker()
        try:
            yield session
        except SQLAlchemyError as exc:
            logger.exception("Database error")
            raise PersistenceError() from exc
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session inside BEGIN; commit on success, roll back on any error."""
        session = self._sessionmaker()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Database error, transaction rolled back")
            raise PersistenceError() from exc
        finally:
            session.close()

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
