"""Tests for the offline submission pipeline."""
import logging
from datetime import timedelta

import pytest

from app.db.queue_models import OfflineQueueEntry
from app.services.offline_queue import ConnectivitySignal, OfflineQueueStore, OfflineSubmissionPipeline
from app.services.progression import InvalidUpdate, ProgressionOrchestrator, ProgressionResult, ProgressionUpdate
from app.services.store import RecordStore, StoreUnavailable


class ScriptedOrchestrator:
    """Records updates by experience_delta and fails the scripted ones."""

    def __init__(self, failures=None):
        self.calls = []
        self.applied = []
        self.modes = []
        self.failures = dict(failures or {})  # experience_delta -> failures left
        self.on_apply = None

    def apply_update(self, user_id, update, immediate=True):
        self.calls.append(update.experience_delta)
        self.modes.append(immediate)
        if self.on_apply is not None:
            self.on_apply(update)
        if self.failures.get(update.experience_delta, 0) > 0:
            self.failures[update.experience_delta] -= 1
            raise StoreUnavailable("store timed out")
        self.applied.append(update.experience_delta)
        return ProgressionResult(new_level=1)

    def pending_count(self, user_id=None):
        return 0


@pytest.fixture
def fake():
    return ScriptedOrchestrator()


@pytest.fixture
def offline_signal():
    return ConnectivitySignal(is_connected=False)


@pytest.fixture
def fake_pipeline(fake, queue_store, offline_signal, clock):
    """Pipeline over the scripted orchestrator, starting offline."""
    pipeline = OfflineSubmissionPipeline(
        fake, queue_store, offline_signal, clock=clock,
        max_attempts=3, backoff_base_seconds=2, backoff_max_seconds=300
    )
    yield pipeline
    pipeline.close()


def submit(pipeline, *deltas):
    return [pipeline.submit("u1", ProgressionUpdate(experience_delta=d)) for d in deltas]


class TestConnectivitySignal:
    """Tests for ConnectivitySignal."""

    def test_only_transitions_notify(self):
        signal = ConnectivitySignal(is_connected=True)
        heard = []
        signal.subscribe(heard.append)

        assert signal.publish(True) is False
        assert signal.publish(False) is True
        assert signal.publish(False) is False
        assert signal.publish(True) is True
        assert heard == [False, True]

    def test_unsubscribe(self):
        signal = ConnectivitySignal(is_connected=True)
        heard = []
        unsubscribe = signal.subscribe(heard.append)
        unsubscribe()

        signal.publish(False)
        assert heard == []


class TestSubmit:
    """Tests for OfflineSubmissionPipeline.submit."""

    def test_online_passes_through(self, fake, fake_pipeline, offline_signal):
        offline_signal.publish(True)

        result = fake_pipeline.submit("u1", {"experience_delta": 10})

        assert result.success is True
        assert result.queued is False
        assert fake.applied == [10]
        assert fake_pipeline.queue.count() == 0

    def test_offline_queues(self, fake, fake_pipeline):
        result = fake_pipeline.submit("u1", {"experience_delta": 10})

        assert result.success is True
        assert result.queued is True
        assert result.entry_id is not None
        assert fake.calls == []
        assert fake_pipeline.queue.count() == 1

    def test_transient_failure_queues(self, fake, fake_pipeline, offline_signal):
        offline_signal.publish(True)
        fake.failures = {5: 1}

        result = fake_pipeline.submit("u1", {"experience_delta": 5})

        assert result.queued is True
        assert "timed out" in result.reason
        assert fake_pipeline.queue.count() == 1

    def test_invalid_update_is_not_queued(self, fake_pipeline):
        with pytest.raises(InvalidUpdate):
            fake_pipeline.submit("u1", {"experience_delta": -1})
        with pytest.raises(InvalidUpdate):
            fake_pipeline.submit("", {"experience_delta": 1})

        assert fake_pipeline.queue.count() == 0

    def test_new_submission_waits_behind_queue(self, fake, fake_pipeline, offline_signal, clock):
        """Online submissions never overtake queued ones."""
        fake.failures = {1: 1}
        submit(fake_pipeline, 1)
        offline_signal.publish(True)  # replay of 1 fails and backs off

        result = fake_pipeline.submit("u1", {"experience_delta": 2})

        assert result.queued is True
        assert fake.calls == [1]
        assert [e.update().experience_delta for e in fake_pipeline.queue.entries()] == [1, 2]

        clock.advance(seconds=5)
        fake_pipeline.drain()
        assert fake.applied == [1, 2]


class TestDrain:
    """Tests for ordered replay."""

    def test_failed_head_blocks_until_retried(self, fake, fake_pipeline, offline_signal, clock):
        """A, B, C queued; B fails once; replay order is A, B, B, C."""
        fake.failures = {2: 1}
        submit(fake_pipeline, 1, 2, 3)

        offline_signal.publish(True)

        assert fake.calls == [1, 2]
        head = fake_pipeline.queue.head()
        assert head.update().experience_delta == 2
        assert head.attempts == 1
        assert head.next_attempt_at == clock.now + timedelta(seconds=2)

        report = fake_pipeline.drain()
        assert report.blocked_until == head.next_attempt_at
        assert fake.calls == [1, 2]

        clock.advance(seconds=3)
        report = fake_pipeline.drain()

        assert fake.calls == [1, 2, 2, 3]
        assert fake.applied == [1, 2, 3]
        assert len(report.applied) == 2
        assert report.remaining == 0

    def test_force_ignores_backoff(self, fake, fake_pipeline, offline_signal):
        fake.failures = {1: 1}
        submit(fake_pipeline, 1)
        offline_signal.publish(True)

        report = fake_pipeline.drain(force=True)

        assert fake.applied == [1]
        assert report.remaining == 0

    def test_drain_does_nothing_offline(self, fake, fake_pipeline):
        submit(fake_pipeline, 1)

        report = fake_pipeline.drain(force=True)

        assert report.started is True
        assert fake.calls == []
        assert report.remaining == 1

    def test_stops_when_connectivity_drops(self, fake, fake_pipeline, offline_signal):
        submit(fake_pipeline, 1, 2)
        fake.on_apply = lambda update: offline_signal.publish(False)

        offline_signal.publish(True)

        assert fake.applied == [1]
        assert fake_pipeline.queue.count() == 1

    def test_only_one_drain_at_a_time(self, fake, fake_pipeline, offline_signal):
        submit(fake_pipeline, 1)
        nested = []
        fake.on_apply = lambda update: nested.append(fake_pipeline.drain(force=True))

        offline_signal.publish(True)

        assert len(nested) == 1
        assert nested[0].started is False
        assert fake.applied == [1]
        assert fake_pipeline.queue.count() == 0

    def test_exhausted_entry_is_kept_and_reported(self, fake, fake_pipeline, offline_signal, clock, caplog):
        fake.failures = {7: 100}
        submit(fake_pipeline, 7)
        offline_signal.publish(True)

        with caplog.at_level(logging.WARNING):
            for _ in range(2):
                clock.advance(seconds=600)
                report = fake_pipeline.drain()

        entry = fake_pipeline.queue.head()
        assert entry.attempts == 3
        assert report.exhausted == [entry.entry_id]
        assert "still failing" in caplog.text
        assert fake_pipeline.queue.count() == 1

        status = fake_pipeline.status()
        assert status["queued"] == 1
        assert status["entries"][0]["exhausted"] is True
        assert len(status["warnings"]) == 1
        assert [e.entry_id for e in fake_pipeline.exhausted_entries()] == [entry.entry_id]

        assert fake_pipeline.resolve(entry.entry_id) is True
        assert fake_pipeline.queue.count() == 0

    def test_corrupt_entry_blocks_until_resolved(self, fake, fake_pipeline, offline_signal, queue_session_factory):
        corrupt, good = submit(fake_pipeline, 1, 2)
        db = queue_session_factory()
        try:
            db.get(OfflineQueueEntry, corrupt.entry_id).payload = "{not json"
            db.commit()
        finally:
            db.close()

        offline_signal.publish(True)

        assert fake.calls == []
        assert fake_pipeline.queue.head().attempts == 1

        fake_pipeline.resolve(corrupt.entry_id)
        fake_pipeline.drain(force=True)
        assert fake.applied == [2]

    @pytest.mark.parametrize("attempts,seconds", [(1, 2), (2, 4), (3, 8), (6, 64), (20, 300)])
    def test_backoff_doubles_up_to_cap(self, fake_pipeline, attempts, seconds):
        assert fake_pipeline.backoff(attempts) == timedelta(seconds=seconds)

    def test_deferred_flag_is_kept_while_queued(self, fake, fake_pipeline, offline_signal):
        fake_pipeline.submit("u1", {"experience_delta": 1}, immediate=False)
        fake_pipeline.submit("u1", {"experience_delta": 2})

        assert [e.immediate for e in fake_pipeline.queue.entries()] == [False, True]

        offline_signal.publish(True)

        assert fake.applied == [1, 2]
        assert fake.modes == [False, True]


class TestEndToEnd:
    """Tests with the real orchestrator and record store."""

    def test_offline_update_syncs_on_reconnect(self, pipeline, signal, store):
        signal.publish(False)

        result = pipeline.submit("u1", {"experience_delta": 500})
        assert result.queued is True
        assert not store.exists("u1")

        signal.publish(True)

        record = store.read("u1")
        assert record.level == 3
        assert record.gacha_tickets == 4
        assert pipeline.queue.count() == 0

    def test_queue_survives_restart(self, orchestrator, queue_session_factory, store, clock):
        first = OfflineSubmissionPipeline(
            orchestrator, OfflineQueueStore(queue_session_factory), ConnectivitySignal(False), clock=clock
        )
        first.submit("u1", {"experience_delta": 100})
        first.close()

        second = OfflineSubmissionPipeline(
            orchestrator, OfflineQueueStore(queue_session_factory), ConnectivitySignal(True), clock=clock
        )
        report = second.drain(force=True)
        second.close()

        assert len(report.applied) == 1
        assert store.read("u1").level == 2

    def test_offline_deferred_update_waits_for_flush(self, pipeline, signal, orchestrator, store):
        signal.publish(False)
        pipeline.submit("u1", {"experience_delta": 500}, immediate=False)

        signal.publish(True)

        assert pipeline.queue.count() == 0
        assert orchestrator.pending_count("u1") == 1
        assert not store.exists("u1")

        flushed = pipeline.flush_deferred()

        assert len(flushed["u1"]) == 1
        assert store.read("u1").level == 3


class TestDeferredFlush:
    """Tests for flushing deferred updates through the pipeline."""

    def test_online_deferred_update_applies_on_flush(self, pipeline, orchestrator, store):
        result = pipeline.submit("u1", {"experience_delta": 500}, immediate=False)

        assert result.queued is False
        assert result.result.deferred is True
        assert pipeline.status()["deferred"] == 1

        pipeline.flush_deferred()

        assert store.read("u1").level == 3
        assert orchestrator.pending_count() == 0

    def test_flush_during_outage_survives_restart(
        self, session_factory, queue_session_factory, catalog, clock, monkeypatch
    ):
        """Deferred updates the store refuses are persisted, in order, for replay."""
        store = RecordStore(session_factory)
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock)
        first = OfflineSubmissionPipeline(
            orchestrator, OfflineQueueStore(queue_session_factory), ConnectivitySignal(True), clock=clock
        )
        first.submit("u1", {"experience_delta": 100}, immediate=False)
        first.submit("u1", {"experience_delta": 400}, immediate=False)

        def unavailable(user_id):
            raise StoreUnavailable("store timed out")

        monkeypatch.setattr(store, "get_or_create", unavailable)
        assert first.flush_deferred() == {}
        first.close()

        assert orchestrator.pending_count() == 0
        queued = OfflineQueueStore(queue_session_factory).entries()
        assert [e.update().experience_delta for e in queued] == [100, 400]
        assert all(e.immediate for e in queued)

        # New process: fresh orchestrator and pipeline over the same databases
        restarted = OfflineSubmissionPipeline(
            ProgressionOrchestrator(RecordStore(session_factory), catalog, clock=clock),
            OfflineQueueStore(queue_session_factory),
            ConnectivitySignal(True),
            clock=clock,
        )
        report = restarted.drain(force=True)
        restarted.close()

        assert len(report.applied) == 2
        record = RecordStore(session_factory).read("u1")
        assert record.experience == 500
        assert record.level == 3

    def test_updates_stay_buffered_if_queue_write_fails(self, pipeline, orchestrator, store, monkeypatch, caplog):
        pipeline.submit("u1", {"experience_delta": 100}, immediate=False)

        def unavailable(user_id):
            raise StoreUnavailable("store timed out")

        def disk_full(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(store, "get_or_create", unavailable)
        monkeypatch.setattr(pipeline.queue, "enqueue_many", disk_full)

        with caplog.at_level(logging.ERROR):
            pipeline.flush_deferred()

        assert orchestrator.pending_count("u1") == 1
        assert pipeline.queue.count() == 0
        assert "keeping them buffered" in caplog.text
