"""Shared engine objects for the request handlers.

The catalog, orchestrator, gacha engine and offline pipeline are built once
per process from the configured session factories. Tests swap them through
``app.dependency_overrides``.
"""
from functools import lru_cache

from app.db.database import QueueSessionLocal, SessionLocal
from app.services.catalog import ContentCatalog, load_default_catalog
from app.services.gacha import GachaEngine
from app.services.offline_queue import ConnectivitySignal, OfflineQueueStore, OfflineSubmissionPipeline
from app.services.progression import ProgressionOrchestrator
from app.services.store import RecordStore


@lru_cache(maxsize=None)
def get_catalog() -> ContentCatalog:
    return load_default_catalog()


@lru_cache(maxsize=None)
def get_orchestrator() -> ProgressionOrchestrator:
    return ProgressionOrchestrator(RecordStore(SessionLocal), get_catalog())


@lru_cache(maxsize=None)
def get_gacha() -> GachaEngine:
    return GachaEngine(get_orchestrator())


@lru_cache(maxsize=None)
def get_signal() -> ConnectivitySignal:
    return ConnectivitySignal(is_connected=True)


@lru_cache(maxsize=None)
def get_pipeline() -> OfflineSubmissionPipeline:
    return OfflineSubmissionPipeline(
        get_orchestrator(),
        OfflineQueueStore(QueueSessionLocal),
        get_signal(),
    )
