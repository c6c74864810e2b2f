# tests/test_cache.py
from datetime import datetime, timezone

from listing_sync.schemas import AnalyticsImportState, AnalyticsRecord, EnrichmentEntry, SnapshotOut, SyncState
from tests.conftest import make_listing


def test_upsert_counts_added_then_updated(store):
    first = store.upsert_snapshot("70-rainey", [AnalyticsRecord(listing_id="A", list_price=100.0)])
    assert (first.added, first.updated, first.total) == (1, 0, 1)

    second = store.upsert_snapshot("70-rainey", [AnalyticsRecord(listing_id="A", list_price=999.0)])
    assert (second.added, second.updated, second.total) == (0, 1, 1)
    assert store.read_analytics("70-rainey")[0].list_price == 999.0


def test_upsert_leaves_other_records_untouched(store):
    store.upsert_snapshot("g", [AnalyticsRecord(listing_id="A"), AnalyticsRecord(listing_id="B", list_price=5.0)])
    store.upsert_snapshot("g", [AnalyticsRecord(listing_id="A", list_price=1.0)])
    records = {r.listing_id: r for r in store.read_analytics("g")}
    assert set(records) == {"A", "B"}
    assert records["B"].list_price == 5.0


def test_snapshot_is_replaced_whole(store):
    store.write_snapshot("70-rainey", [make_listing("A"), make_listing("B")])
    store.write_snapshot("70-rainey", [make_listing("C")])
    snapshot = store.read_snapshot("70-rainey")
    assert [r.listing_id for r in snapshot.records] == ["C"]
    assert store.read_snapshot("missing") is None


def test_index_is_overwritten_not_merged(store):
    store.write_index({"A": "70-rainey", "B": "_unmatched"})
    store.write_index({"C": "70-rainey"})
    assert store.read_index() == {"C": "70-rainey"}


def test_remove_from_other_groups(store):
    store.upsert_snapshot("old", [AnalyticsRecord(listing_id="A"), AnalyticsRecord(listing_id="B")])
    store.upsert_snapshot("new", [AnalyticsRecord(listing_id="A")])
    assert store.remove_from_other_groups("new", {"A"}) == 1
    assert [r.listing_id for r in store.read_analytics("old")] == ["B"]
    assert [r.listing_id for r in store.read_analytics("new")] == ["A"]


def test_sync_state_round_trip(store):
    assert store.read_sync_state("active") is None
    store.write_sync_state("active", SyncState(pipeline="active", in_progress=True,
                                               last_sync_timestamp="2024-05-01T12:00:00Z"))
    state = store.read_sync_state("active")
    assert state.in_progress is True
    assert state.last_sync_timestamp == "2024-05-01T12:00:00Z"


def test_enrichment_map_round_trip(store):
    store.write_enrichment_map("70-rainey", {"1201": EnrichmentEntry(floor_plan="A9", orientation="SE")})
    assert store.read_enrichment_map("70-rainey")["1201"].floor_plan == "A9"
    assert store.list_enrichment_keys() == ["70-rainey"]


def test_listing_snapshot_log_appends(store):
    at = datetime(2024, 5, 1, tzinfo=timezone.utc)
    store.append_listing_snapshots([SnapshotOut(listing_id="A", captured_at=at, status="Active", list_price=1.0)])
    store.append_listing_snapshots([SnapshotOut(listing_id="A", captured_at=at, status="Pending", list_price=1.0)])
    rows = store.read_listing_snapshots("A")
    assert [r.status for r in rows] == ["Active", "Pending"]


def test_clear_active_cache_keeps_analytics(store):
    store.write_snapshot("70-rainey", [make_listing("A")])
    store.write_index({"A": "70-rainey"})
    store.upsert_snapshot("70-rainey", [AnalyticsRecord(listing_id="A")])
    assert store.clear_active_cache() == 2
    assert store.list_snapshot_keys() == []
    assert store.read_index() == {}
    assert len(store.read_analytics("70-rainey")) == 1


def test_upsert_treats_board_prefixed_id_as_same_listing(store):
    store.upsert_snapshot("70-rainey", [AnalyticsRecord(listing_id="ACT4939483", list_price=1.0)])
    counts = store.upsert_snapshot("70-rainey", [AnalyticsRecord(listing_id="4939483", list_price=2.0)])
    assert (counts.added, counts.updated, counts.total) == (0, 1, 1)
    assert [(r.listing_id, r.list_price) for r in store.read_analytics("70-rainey")] == [("4939483", 2.0)]

    store.upsert_snapshot("_unmatched", [AnalyticsRecord(listing_id="ACT4939483")])
    assert store.remove_from_other_groups("_unmatched", {"ACT4939483"}) == 1
    assert store.read_analytics("70-rainey") == []


def test_import_state_round_trip(store):
    assert store.read_import_state() is None
    store.write_import_state(AnalyticsImportState(last_import_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
                                                  total_imported=3, date_range_start="2021-07-04"))
    state = store.read_import_state()
    assert (state.total_imported, state.date_range_start) == (3, "2021-07-04")
    assert store.list_analytics_keys() == []
