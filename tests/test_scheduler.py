# tests/test_scheduler.py
from datetime import timedelta

from listing_sync import scheduler, sync_state
from listing_sync.schemas import SyncPhase
from listing_sync.sync_state import Pipeline
from listing_sync.utils import utcnow


def test_watchdog_clears_stale_flag(store, monkeypatch):
    monkeypatch.setattr(scheduler, "CacheStore", lambda: store)
    monkeypatch.setattr("listing_sync.config.SYNC_MAX_DURATION_SECONDS", 60)
    sync_state.acquire(store, Pipeline.ACTIVE, now=utcnow() - timedelta(minutes=10))

    scheduler.run_watchdog()

    state = sync_state.read_state(store, Pipeline.ACTIVE)
    assert state.in_progress is False
    assert state.status == SyncPhase.FAILED


def test_watchdog_leaves_running_sync_alone(store, monkeypatch):
    monkeypatch.setattr(scheduler, "CacheStore", lambda: store)
    sync_state.acquire(store, Pipeline.ACTIVE)

    scheduler.run_watchdog()

    assert sync_state.read_state(store, Pipeline.ACTIVE).in_progress is True
