"""
Database connection management.

Connects to Cloud SQL through the Cloud SQL Python Connector with IAM
authentication, or to any SQLAlchemy URL given by ``DATABASE_URL`` (SQLite
for local runs).
"""

import os

from google.cloud.sql.connector import Connector
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


class DatabaseConnection:
    """
    Manages database connections for the worker.

    Usage:
        # Initialize at startup
        DatabaseConnection.initialize(
            instance_connection_name="project:region:instance",
            db_name="shipwatch",
            db_user="service-account@project.iam"
        )

        # Or against a plain URL
        DatabaseConnection.initialize(database_url="sqlite:///shipwatch.db")

        with UnitOfWork() as uow:  # sessions come from get_session()
            ...

        DatabaseConnection.close()
    """

    _engine: Engine | None = None
    _connector: Connector | None = None
    _session_factory: sessionmaker | None = None
    _initialized: bool = False

    @classmethod
    def initialize(
        cls,
        instance_connection_name: str | None = None,
        db_name: str | None = None,
        db_user: str | None = None,
        database_url: str | None = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
    ):
        """
        Initialize the connection pool.

        Args:
            instance_connection_name: Cloud SQL instance (project:region:instance)
            db_name: Database name
            db_user: Database user (service account email for IAM auth)
            database_url: SQLAlchemy URL; when set, Cloud SQL settings are ignored
            pool_size: Base connection pool size
            max_overflow: Additional connections allowed beyond pool_size
            pool_timeout: Seconds to wait for a connection
            pool_recycle: Recycle connections after this many seconds
        """
        if cls._initialized:
            return

        database_url = database_url or os.getenv("DATABASE_URL")
        if database_url:
            cls._engine = create_url_engine(database_url)
        else:
            cls._engine = cls._create_cloud_sql_engine(
                instance_connection_name,
                db_name,
                db_user,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
            )

        cls._session_factory = sessionmaker(bind=cls._engine)
        cls._initialized = True

    @classmethod
    def _create_cloud_sql_engine(
        cls,
        instance_connection_name: str | None,
        db_name: str | None,
        db_user: str | None,
        **pool_options,
    ) -> Engine:
        instance_connection_name = instance_connection_name or os.getenv(
            "INSTANCE_CONNECTION_NAME"
        )
        db_name = db_name or os.getenv("DB_NAME", "shipwatch")
        db_user = db_user or os.getenv("DB_USER")

        if not instance_connection_name:
            raise ValueError(
                "INSTANCE_CONNECTION_NAME or DATABASE_URL environment variable is "
                "required. Format: project:region:instance"
            )

        if not db_user:
            raise ValueError(
                "DB_USER environment variable is required. "
                "Should be service account email for IAM auth."
            )

        cls._connector = Connector()

        def getconn():
            assert cls._connector is not None
            return cls._connector.connect(
                instance_connection_name,
                "pg8000",
                user=db_user,
                db=db_name,
                enable_iam_auth=True,
            )

        return create_engine(
            "postgresql+pg8000://",
            creator=getconn,
            pool_pre_ping=True,
            **pool_options,
        )

    @classmethod
    def get_engine(cls) -> Engine:
        """Get the SQLAlchemy engine."""
        if not cls._initialized or cls._engine is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return cls._engine

    @classmethod
    def get_session(cls) -> Session:
        """
        Get a new database session.

        The caller is responsible for committing/rolling back and closing it.
        """
        if not cls._initialized or cls._session_factory is None:
            raise RuntimeError(
                "Database not initialized. Call DatabaseConnection.initialize() first."
            )
        return cls._session_factory()

    @classmethod
    def close(cls):
        """Close the connection pool and connector."""
        if cls._engine:
            cls._engine.dispose()
            cls._engine = None

        if cls._connector:
            cls._connector.close()
            cls._connector = None

        cls._session_factory = None
        cls._initialized = False


def create_url_engine(database_url: str) -> Engine:
    """
    Create an engine for a plain SQLAlchemy URL.

    SQLite engines share one connection so an in-memory database survives
    across sessions.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)
