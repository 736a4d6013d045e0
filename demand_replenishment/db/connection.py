# demand_replenishment/db/connection.py
import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from demand_replenishment.exceptions import DatabaseError
from demand_replenishment.models import Base


class DatabaseConnection:
    """Database connection handler.

    Owns the SQLAlchemy engine and session factory. Instances are created by
    the composition root and passed down; there is no shared global.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800
    ):
        """Initialize database connection.

        Args:
            url: SQLAlchemy database URL
            echo: Echo SQL statements
            pool_size: Connection pool size (server databases only)
            max_overflow: Pool overflow (server databases only)
            pool_timeout: Pool checkout timeout in seconds
            pool_recycle: Connection recycle age in seconds
        """
        self.url = url

        try:
            self._engine = create_engine(url, echo=echo, **self._engine_options(
                url, pool_size, max_overflow, pool_timeout, pool_recycle
            ))
        except Exception as e:
            raise DatabaseError(f"Failed to initialize database connection: {str(e)}")

        self._SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine
        )
        # Sessions sharing the single in-memory connection must not overlap
        self._serialize = threading.RLock() if self._single_connection(url) else None

    @classmethod
    def from_config(cls, db_config: Dict[str, Any]) -> 'DatabaseConnection':
        """Create a connection from the ``Config.db_config`` dictionary."""
        return cls(
            db_config['url'],
            echo=db_config.get('echo', False),
            pool_size=db_config.get('pool_size', 10),
            max_overflow=db_config.get('max_overflow', 20),
            pool_timeout=db_config.get('pool_timeout', 30),
            pool_recycle=db_config.get('pool_recycle', 1800)
        )

    @staticmethod
    def _single_connection(url: str) -> bool:
        return url in ('sqlite://', 'sqlite:///:memory:')

    @classmethod
    def _engine_options(cls, url, pool_size, max_overflow, pool_timeout, pool_recycle) -> Dict[str, Any]:
        if url.startswith('sqlite'):
            options: Dict[str, Any] = {'connect_args': {'check_same_thread': False}}
            if cls._single_connection(url):
                # One shared connection, otherwise every checkout sees an empty database
                options['poolclass'] = StaticPool
            return options

        return {
            'pool_size': pool_size,
            'max_overflow': max_overflow,
            'pool_timeout': pool_timeout,
            'pool_recycle': pool_recycle
        }

    def create_all_tables(self):
        """Create all tables defined in the models."""
        Base.metadata.create_all(self._engine)

    def drop_all_tables(self):
        """Drop all tables from the database."""
        Base.metadata.drop_all(self._engine)

    def test_connection(self):
        """Run a trivial query against the database."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            raise DatabaseError(f"Database connection test failed: {str(e)}")

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations."""
        with self._serialize or nullcontext():
            session = self._SessionLocal()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self):
        """Release pooled connections."""
        self._engine.dispose()
