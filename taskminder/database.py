import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

# Make sure to import models to register them with SQLModel.metadata
from taskminder import models  # noqa: F401

logger = logging.getLogger(__name__)


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # LIKE is case-insensitive for ASCII unless told otherwise
    cursor.execute("PRAGMA case_sensitive_like=ON")
    cursor.close()


class Database:
    """
    Owns the engine (and with it the connection pool) for one application.

    Constructed once by ``create_app`` and kept on ``app.state``; ``init`` runs
    at startup and ``dispose`` drains the pool at shutdown.
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False, engine: Optional[Engine] = None):
        if engine is None:
            if not url:
                raise ValueError("A database URL or an engine is required.")
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, echo=echo, connect_args=connect_args, pool_pre_ping=True)
        self.engine = engine
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _configure_sqlite)

    def init(self) -> None:
        logger.info("Creating tables on %s", self.engine.url.render_as_string(hide_password=True))
        SQLModel.metadata.create_all(self.engine)

    def dispose(self) -> None:
        logger.info("Disposing database connection pool")
        self.engine.dispose()

    def session(self) -> Generator[Session, None, None]:
        with Session(self.engine) as session:
            yield session


def get_session(request: Request) -> Generator[Session, None, None]:
    """
    Request-scoped session taken from the application's ``Database``.
    """
    database: Database = request.app.state.database
    yield from database.session()
