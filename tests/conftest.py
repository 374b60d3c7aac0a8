"""Pytest fixtures for testing."""
import random
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from app.content.philosophers import PHILOSOPHERS
from app.db.database import Base, QueueBase
from app.db import models, queue_models  # noqa: F401
from app.services.catalog import build_catalog, load_default_catalog
from app.services.gacha import GachaEngine
from app.services.offline_queue import ConnectivitySignal, OfflineQueueStore, OfflineSubmissionPipeline
from app.services.progression import ProgressionOrchestrator
from app.services.store import RecordStore
from tests.helpers import SMALL_POOL, FixedClock, memory_engine


@pytest.fixture(scope="function")
def session_factory():
    """Session factory over a fresh in-memory record store."""
    engine = memory_engine(Base)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture(scope="function")
def queue_session_factory():
    """Session factory over a fresh in-memory offline queue."""
    engine = memory_engine(QueueBase)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def catalog():
    """The bundled content catalog."""
    return load_default_catalog()


@pytest.fixture
def plain_catalog():
    """Full philosopher pool without achievements or milestones."""
    return build_catalog([], [], PHILOSOPHERS)


@pytest.fixture
def small_catalog():
    """One collectible per rarity, no achievements or milestones."""
    return build_catalog([], [], SMALL_POOL)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 12, 0, 0))


@pytest.fixture
def orchestrator(store, catalog, clock):
    return ProgressionOrchestrator(store, catalog, clock=clock)


@pytest.fixture
def gacha(orchestrator):
    return GachaEngine(orchestrator, rng=random.Random(1234))


@pytest.fixture
def queue_store(queue_session_factory):
    return OfflineQueueStore(queue_session_factory)


@pytest.fixture
def signal():
    return ConnectivitySignal(is_connected=True)


@pytest.fixture
def pipeline(orchestrator, queue_store, signal, clock):
    pipeline = OfflineSubmissionPipeline(orchestrator, queue_store, signal, clock=clock, max_attempts=3)
    yield pipeline
    pipeline.close()
