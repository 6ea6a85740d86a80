# parkhub/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL (SQLite works for local runs and tests).

The engine lives on an explicitly constructed Database handle that main.py
opens at startup and closes at shutdown; nothing connects at import time.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from parkhub.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


class Database:
    def __init__(self, url: str, timeout_seconds: int = 5, echo: bool = False):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        if self.is_sqlite:
            # Request handlers and the sweep share the file from several threads
            self.engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False, "timeout": self.timeout_seconds},
                echo=self.echo,
            )
        else:
            self.engine = create_engine(
                self.url,
                pool_pre_ping=True,          # Auto-reconnect if DB connection drops
                pool_size=10,
                max_overflow=20,
                pool_timeout=self.timeout_seconds,
                echo=self.echo,              # Set True to log all SQL queries (debug only)
            )
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info(f"Database opened: {self.engine.url.render_as_string(hide_password=True)}")
        return self

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    def create_tables(self):
        """
        Creates all DB tables. Safe to call multiple times.
        Import all models here so SQLAlchemy knows about them.
        """
        from parkhub.models.parking_space import ParkingSpace                # noqa
        from parkhub.models.space_status_history import SpaceStatusHistory   # noqa
        from parkhub.models.notification import Notification                 # noqa

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database closed")
        self.engine = None
        self._session_factory = None


def get_db(request: Request):
    """FastAPI dependency: yields a DB session and closes it after request."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
