# tests/test_sync.py
import pytest

from listing_sync import sync_state
from listing_sync.enrichment import merge_enrichment_map
from listing_sync.errors import FeedError
from listing_sync.schemas import EnrichmentEntry, FetchMode, ListingStatus, SyncPhase
from listing_sync.sync import SyncOrchestrator, get_sync_status
from listing_sync.sync_state import Pipeline
from tests.conftest import make_listing


@pytest.fixture
def orchestrator(feed, matcher, enrichment, store):
    return SyncOrchestrator(feed, matcher, enrichment, store, min_initial_listings=1)


def batch():
    return [
        make_listing("R1", address="70 Rainey St", unit_number="1201", modified="2024-05-01T10:00:00Z"),
        make_listing("R2", address="70 Rainey St Unit 905", unit_number="905", modified="2024-05-02T09:00:00Z"),
        make_listing("I1", address="301 West Ave", listing_type="Lease", modified="2024-04-30T00:00:00Z"),
        make_listing("U1", address="999 Nowhere Rd", modified="2024-05-01T00:00:00Z"),
    ]


def test_cycle_writes_groups_index_and_watermark(orchestrator, feed, store):
    feed.active = batch()
    result = orchestrator.run_cycle()

    assert result.success is True
    assert result.mode == FetchMode.INITIAL
    assert result.counts["fetched"] == 4
    assert result.counts["matched"] == 3
    assert result.counts["unmatched"] == 1
    assert result.counts["batch_leases"] == 1
    assert result.latest_timestamp == "2024-05-02T09:00:00Z"
    assert feed.active_calls == [FetchMode.INITIAL]

    rainey = store.read_snapshot("70-rainey")
    assert sorted(r.listing_id for r in rainey.records) == ["R1", "R2"]
    assert all(r.property_name_raw == "70 Rainey" for r in rainey.records)
    assert store.read_index() == {"R1": "70-rainey", "R2": "70-rainey", "I1": "the-independent", "U1": "_unmatched"}

    state = sync_state.read_state(store, Pipeline.ACTIVE)
    assert state.in_progress is False
    assert state.status == SyncPhase.IDLE
    assert state.last_sync_timestamp == "2024-05-02T09:00:00Z"
    assert state.total_counts == {"sales": 3, "leases": 1, "total": 4}


def test_unmatched_listing_is_routed_not_dropped(orchestrator, feed, store):
    feed.active = batch()
    result = orchestrator.run_cycle()
    assert [r.listing_id for r in store.read_snapshot("_unmatched").records] == ["U1"]
    assert result.unmatched_sample[0].address == "999 Nowhere Rd"
    for key in store.list_snapshot_keys():
        if key != "_unmatched":
            assert "U1" not in {r.listing_id for r in store.read_snapshot(key).records}


def test_second_run_is_idempotent(orchestrator, feed, store):
    feed.active = batch()
    orchestrator.run_cycle()
    snapshots = {k: store.read_snapshot(k).records for k in store.list_snapshot_keys()}
    index = store.read_index()

    result = orchestrator.run_cycle()

    assert result.success is True
    assert result.mode == FetchMode.INCREMENTAL
    assert {k: store.read_snapshot(k).records for k in store.list_snapshot_keys()} == snapshots
    assert store.read_index() == index
    assert result.analytics_summary["added"] == 0
    assert result.analytics_summary["updated"] == 4


def test_conflict_when_already_in_progress(orchestrator, feed, store):
    feed.active = batch()
    sync_state.acquire(store, Pipeline.ACTIVE)

    result = orchestrator.run_cycle()

    assert result.success is False
    assert result.error == "conflict"
    assert feed.active_calls == []
    assert store.list_snapshot_keys() == []
    assert store.read_index() == {}
    assert sync_state.read_state(store, Pipeline.ACTIVE).in_progress is True


def test_incomplete_initial_import_is_failed(feed, matcher, enrichment, store):
    feed.active = [make_listing(f"L{i}") for i in range(10)]
    orchestrator = SyncOrchestrator(feed, matcher, enrichment, store, min_initial_listings=50)

    result = orchestrator.run_cycle()

    assert result.success is False
    assert result.error == "incomplete_import"
    state = sync_state.read_state(store, Pipeline.ACTIVE)
    assert state.last_sync_timestamp is None
    assert state.status == SyncPhase.FAILED
    assert state.in_progress is False
    assert store.list_snapshot_keys() == []


def test_small_fetch_is_accepted_after_first_sync(feed, matcher, enrichment, store):
    feed.active = [make_listing(f"L{i}") for i in range(60)]
    orchestrator = SyncOrchestrator(feed, matcher, enrichment, store, min_initial_listings=50)
    assert orchestrator.run_cycle().success is True

    feed.active = feed.active[:10]
    result = orchestrator.run_cycle()
    assert result.success is True
    assert len(store.read_snapshot("70-rainey").records) == 10


def test_index_drops_listings_absent_from_next_cycle(orchestrator, feed, store):
    feed.active = batch()
    orchestrator.run_cycle()
    feed.active = [r for r in batch() if r.listing_id != "I1"]

    orchestrator.run_cycle()

    assert "I1" not in store.read_index()
    assert store.read_snapshot("the-independent").records == []


def test_upstream_error_marks_failed_and_keeps_watermark(orchestrator, feed, store):
    feed.active = batch()
    orchestrator.run_cycle()
    feed.active_error = FeedError("MLSGrid API error (503): unavailable")

    result = orchestrator.run_cycle()

    assert result.success is False
    assert result.error == "sync_failed"
    assert "503" in result.details
    state = sync_state.read_state(store, Pipeline.ACTIVE)
    assert state.in_progress is False
    assert state.status == SyncPhase.FAILED
    assert state.last_sync_timestamp == "2024-05-02T09:00:00Z"
    # the next trigger is not blocked
    feed.active_error = None
    assert orchestrator.run_cycle().success is True


def test_store_failure_on_guard_returns_failed_result(orchestrator, feed, store, monkeypatch):
    feed.active = batch()

    def unavailable(*args, **kwargs):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(store, "write_sync_state", unavailable)
    result = orchestrator.run_cycle()

    assert result.success is False
    assert result.error == "sync_failed"
    assert result.details == "store unavailable"
    assert feed.active_calls == []


def test_store_failure_while_recording_failure_still_returns_result(orchestrator, feed, store, monkeypatch):
    feed.active_error = FeedError("MLSGrid API error (503): unavailable")
    real_write = store.write_sync_state
    calls = []

    def write_once(pipeline, state):
        calls.append(state.status)
        if len(calls) > 1:
            raise RuntimeError("store unavailable")
        real_write(pipeline, state)

    monkeypatch.setattr(store, "write_sync_state", write_once)
    result = orchestrator.run_cycle()

    assert result.success is False
    assert result.error == "sync_failed"
    assert calls == [SyncPhase.IN_PROGRESS, SyncPhase.FAILED]


def test_analytics_error_does_not_fail_cycle(orchestrator, feed, store):
    feed.active = batch()
    feed.status_error = FeedError("status fetch failed")

    result = orchestrator.run_cycle()

    assert result.success is True
    assert result.analytics_summary == {"error": "status fetch failed"}
    assert sync_state.read_state(store, Pipeline.ACTIVE).last_sync_timestamp == "2024-05-02T09:00:00Z"
    analytics = sync_state.read_state(store, Pipeline.ANALYTICS)
    assert analytics.status == SyncPhase.FAILED
    assert analytics.in_progress is False


def test_interrupt_clears_flag_before_propagating(orchestrator, feed, store):
    feed.active_error = KeyboardInterrupt()
    with pytest.raises(KeyboardInterrupt):
        orchestrator.run_cycle()
    state = sync_state.read_state(store, Pipeline.ACTIVE)
    assert state.in_progress is False
    assert state.status == SyncPhase.FAILED


def test_status_change_supersedes_active_record(orchestrator, feed, store):
    feed.active = [make_listing("X", status=ListingStatus.ACTIVE)]
    feed.status_changed = [make_listing("X", status=ListingStatus.PENDING)]

    result = orchestrator.run_cycle()

    assert result.analytics_summary["superseded"] == 1
    records = store.read_analytics("70-rainey")
    assert [(r.listing_id, r.status) for r in records] == [("X", ListingStatus.PENDING)]


def test_enrichment_applied_to_active_snapshots(orchestrator, feed, store):
    merge_enrichment_map(store, "70-rainey", {"1201": EnrichmentEntry(floor_plan="A9", orientation="SE")})
    feed.active = batch()

    result = orchestrator.run_cycle()

    assert result.counts["enriched"] == 1
    r1 = next(r for r in store.read_snapshot("70-rainey").records if r.listing_id == "R1")
    assert (r1.floor_plan, r1.orientation) == ("A9", "SE")


def test_get_sync_status(orchestrator, feed, store):
    report = get_sync_status(store)
    assert report.next_mode == FetchMode.INITIAL

    feed.active = batch()
    orchestrator.run_cycle()
    report = get_sync_status(store)

    assert report.next_mode == FetchMode.INCREMENTAL
    assert report.cache["total_listings"] == 4
    assert report.cache["index_entries"] == 4
    assert report.cache["analytics"]["total"] == 4
    assert report.analytics.status == SyncPhase.IDLE
