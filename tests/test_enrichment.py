# tests/test_enrichment.py
from listing_sync.enrichment import merge_enrichment_map, normalize_unit
from listing_sync.schemas import EnrichmentEntry
from tests.conftest import make_listing


def test_normalize_unit():
    assert normalize_unit(" #0905 ") == "905"
    assert normalize_unit("ph2a") == "PH2A"


def test_lookup_exact_and_normalized(store, enrichment):
    merge_enrichment_map(store, "70-rainey", {
        "1201": EnrichmentEntry(floor_plan="A9", orientation="SE"),
        "0905": EnrichmentEntry(floor_plan="B2", orientation="N"),
    })
    assert enrichment.lookup("70-rainey", "1201").floor_plan == "A9"
    assert enrichment.lookup("70-rainey", "#905").floor_plan == "B2"
    assert enrichment.lookup("70-rainey", "777") is None
    assert enrichment.lookup(None, "1201") is None
    assert enrichment.lookup("the-independent", "1201") is None


def test_enrich_keeps_existing_values_when_entry_is_blank(store, enrichment):
    merge_enrichment_map(store, "70-rainey", {"1201": EnrichmentEntry(floor_plan="A9")})
    record = make_listing("A", unit_number="1201", orientation="W")
    enriched = enrichment.enrich(record, "70-rainey")
    assert enriched.floor_plan == "A9"
    assert enriched.orientation == "W"
    assert record.floor_plan is None


def test_merge_counts(store):
    first = merge_enrichment_map(store, "g", {"1": EnrichmentEntry(floor_plan="A")})
    second = merge_enrichment_map(store, "g", {"1": EnrichmentEntry(floor_plan="B"),
                                               "2": EnrichmentEntry(floor_plan="C")})
    assert (first.added, first.updated) == (1, 0)
    assert (second.added, second.updated, second.total) == (1, 1, 2)
    assert store.read_enrichment_map("g")["1"].floor_plan == "B"


def test_refresh_drops_cached_maps(store, enrichment):
    assert enrichment.lookup("g", "1") is None
    merge_enrichment_map(store, "g", {"1": EnrichmentEntry(floor_plan="A")})
    assert enrichment.lookup("g", "1") is None
    enrichment.refresh()
    assert enrichment.lookup("g", "1").floor_plan == "A"
