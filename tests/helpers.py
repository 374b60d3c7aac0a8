"""Shared test doubles and builders."""
import random
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.services.records import ProgressionDelta
from app.services.store import RecordStore


class FixedClock:
    """Controllable clock for streak and backoff tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedRandom(random.Random):
    """random() replays ``scripted`` values, then falls back to the seeded stream.

    getrandbits is redefined so choice() keeps drawing from the seeded stream
    instead of consuming scripted values.
    """
    scripted = ()
    repeat_last = False

    def random(self):
        if self.scripted:
            value = self.scripted[0]
            if len(self.scripted) > 1 or not self.repeat_last:
                self.scripted = self.scripted[1:]
            return value
        return super().random()

    def getrandbits(self, k):
        return super().getrandbits(k)


def scripted_random(values, seed=7, repeat_last=False) -> ScriptedRandom:
    """Random source whose random() returns ``values`` in order."""
    rng = ScriptedRandom(seed)
    rng.scripted = tuple(values)
    rng.repeat_last = repeat_last
    return rng


def memory_engine(base):
    """In-memory SQLite engine shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    base.metadata.create_all(engine)
    return engine


def give(store: RecordStore, user_id: str, **fields) -> None:
    """Set record fields directly, bypassing the orchestrator."""
    record = store.get_or_create(user_id)
    store.atomic_write(user_id, ProgressionDelta(expected_version=record.version, user_fields=fields))


# One collectible per rarity, so every draw's collectible is known
SMALL_POOL = [
    {"id": "thales", "name": "Thales", "rarity": "common", "base_stats": {"wisdom": 50, "logic": 60}},
    {"id": "avicenna", "name": "Avicenna", "rarity": "rare", "base_stats": {"wisdom": 65, "logic": 85}},
    {"id": "diogenes", "name": "Diogenes", "rarity": "epic", "base_stats": {"wisdom": 90, "logic": 70}},
    {"id": "socrates", "name": "Socrates", "rarity": "legendary", "base_stats": {"wisdom": 100, "logic": 85}},
]
