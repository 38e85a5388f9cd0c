import os
from pathlib import Path

# Settings are read once at import, so the environment must be ready first.
TEST_DB_PATH = Path("/tmp/ambudispatch_test_api.db")
TEST_DB_PATH.unlink(missing_ok=True)
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{TEST_DB_PATH}")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_SEED_ADMIN_USER", "false")
os.environ.setdefault("AUTO_SEED_HOSPITALS", "true")
os.environ.setdefault("ENABLE_MQTT_BRIDGE", "false")
os.environ.setdefault("ENABLE_INTAKE_CONSUMER", "false")
os.environ.setdefault("AMBU_JWT_SECRET", "test-jwt-secret-strong-value-123456")
os.environ.setdefault("AMBU_PASSWORD_HASH_ROUNDS", "1000")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ambudispatch.models import Base
from ambudispatch.services.change_feed import ChangeFeed
from ambudispatch.services.data_access import DataAccess
from ambudispatch.services.dispatch import DispatchService


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def feed(session_factory):
    change_feed = ChangeFeed()
    change_feed.attach(session_factory)
    yield change_feed
    change_feed.detach(session_factory)


@pytest.fixture
def data(session_factory, feed):
    return DataAccess(session_factory, feed)


@pytest.fixture
def dispatch(data):
    return DispatchService(data)
