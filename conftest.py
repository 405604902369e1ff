"""
Shared pytest fixtures: an in-memory SQLite database per test and an eager
Celery app.
"""

import os
from typing import Generator

import pytest
from celery import Celery
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Load environment variables from .env file
load_dotenv()

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from bloodwatch.db.base import Base  # noqa: E402


# Fixture for the Celery app for testing
@pytest.fixture(scope="module")
def celery_app_fixture() -> Celery:
    from bloodwatch.core.celery_app import celery_app

    celery_app.conf.update(task_always_eager=True)
    return celery_app


# Fixture for an in-memory SQLite database for testing
@pytest.fixture(scope="function")
def db_engine() -> Generator[Engine, None, None]:
    """Yield an engine for a fresh in-memory SQLite database with all tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs an explicit BEGIN for SAVEPOINT (begin_nested) to work
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine: Engine) -> Generator[Session, None, None]:
    """Yield a database session for a single test function."""
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = session_local()

    yield session

    session.close()
