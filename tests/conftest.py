"""
Test configuration and shared fixtures.

This module provides pytest fixtures used across all test modules.
"""
import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['MASTER_API_KEY'] = 'test-master-api-key'
os.environ['FERNET_KEY'] = 'bGlua3RyYWNrLXRlc3Qta2V5LTMyLWJ5dGVzLWxvbmc='
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['EXPIRATION_SWEEP_ENABLED'] = 'false'

from linktrack import create_app
from linktrack.models import Base
from linktrack.models import base as db_base
from linktrack.services.authorization import StaticAuthorizer
from linktrack.services.engine import TrackingEngine
from linktrack.services.geo_device import NullGeolocationClient
from tests.fixtures.doubles import FrozenClock, RecordingLedger

START_TIME = datetime(2026, 10, 19, 12, 0, 0)


def _memory_session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope='function')
def clock():
    """Clock frozen at START_TIME; tests move it with advance()."""
    return FrozenClock(START_TIME)


@pytest.fixture(scope='function')
def session_factory():
    """
    Provide a session factory bound to a fresh in-memory database.

    Yields:
        sessionmaker
    """
    engine, factory = _memory_session_factory()

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope='function')
def db(session_factory):
    """
    Provide a database session for model tests.

    Yields:
        SQLAlchemy session
    """
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def file_session_factory(tmp_path):
    """
    Session factory on a file database, for tests that need real
    separate connections.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'linktrack.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    engine.dispose()


@pytest.fixture(scope='function')
def ledger():
    return RecordingLedger()


@pytest.fixture(scope='function')
def admin():
    """Authorizer that always permits link administration."""
    return StaticAuthorizer(True)


@pytest.fixture(scope='function')
def tracking_engine(session_factory, clock, ledger):
    """
    Provide a TrackingEngine on an isolated database.

    Geolocation is disabled and revenue goes to a RecordingLedger.
    """
    return TrackingEngine(
        session_factory,
        clock=clock,
        geolocation_client=NullGeolocationClient(),
        ledger=ledger,
    )


@pytest.fixture(scope='function')
def link(tracking_engine, admin):
    """A 24 hour link without click quota."""
    return tracking_engine.create_link(admin, 'Spring Sale', 'newsletter', 'email', ttl_hours=24)


@pytest.fixture(scope='function')
def app(clock, ledger):
    """
    Create Flask app for testing.

    Each test gets its own in-memory database.

    Yields:
        Flask app configured for testing
    """
    app = create_app({
        'TESTING': True,
        'DEBUG': False,
        'DATABASE_URL': 'sqlite://',
        'CREATE_TABLES': True,
        'TRACKING_CLOCK': clock,
        'GEOLOCATION_CLIENT': NullGeolocationClient(),
        'REVENUE_LEDGER': ledger,
    })

    yield app

    Base.metadata.drop_all(bind=db_base.engine)
    db_base.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """
    Provide Flask test client.

    Args:
        app: Flask app fixture

    Yields:
        Flask test client
    """
    return app.test_client()


@pytest.fixture(scope='function')
def auth_headers():
    """
    Provide authentication headers for API requests.

    Returns:
        Dictionary with X-API-Key header
    """
    return {'X-API-Key': 'test-master-api-key'}
