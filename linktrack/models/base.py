"""Base model and database setup."""
import uuid

from sqlalchemy import create_engine, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PostgreSQLUUID
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import CHAR

from linktrack.config import settings

# SQLAlchemy base class
Base = declarative_base()

# Database engine - will be initialized by app factory
engine = None
SessionLocal = None


class GUID(TypeDecorator):
    """
    Platform-independent GUID type.

    Uses PostgreSQL's UUID type, otherwise uses CHAR(36), storing as stringified hex values.
    """
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQLUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


def build_engine(database_url: str):
    """
    Create a SQLAlchemy engine for the given URL.

    In-memory SQLite databases share one connection across threads so every
    session sees the same data.

    Args:
        database_url: Database connection URL (PostgreSQL or SQLite)

    Returns:
        Configured engine
    """
    if database_url.startswith('sqlite'):
        options = {
            'connect_args': {'check_same_thread': False},
            'echo': settings.is_development,
        }
        if ':memory:' in database_url or database_url in ('sqlite://', 'sqlite:///'):
            options['poolclass'] = StaticPool
        return create_engine(database_url, **options)

    # PostgreSQL configuration
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=settings.is_development,
    )


def init_db(database_url: str) -> None:
    """
    Initialize database engine and session factory.

    Args:
        database_url: Database connection URL (PostgreSQL or SQLite)
    """
    global engine, SessionLocal

    engine = build_engine(database_url)

    # Aggregates are handed back to callers after commit
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )


def get_session_factory():
    """
    Return the initialized session factory.

    Raises:
        RuntimeError: If init_db has not been called
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db first.")
    return SessionLocal
