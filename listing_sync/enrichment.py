# listing_sync/enrichment.py
"""Floor plan and orientation lookup keyed by (group key, unit number).

Maps are stored per building in the cache store and imported separately;
a sync cycle only reads them.
"""
from typing import Dict, Optional

from .schemas import EnrichmentEntry, ListingRecord, UpsertCounts
from .utils import logger


def normalize_unit(unit: str) -> str:
    return unit.strip().lstrip("#").lstrip("0").upper()


class EnrichmentLookup:
    def __init__(self, store):
        self.store = store
        self._maps: Dict[str, Dict[str, EnrichmentEntry]] = {}

    def refresh(self):
        self._maps.clear()

    def _map_for(self, group_key: str) -> Dict[str, EnrichmentEntry]:
        if group_key not in self._maps:
            self._maps[group_key] = self.store.read_enrichment_map(group_key)
        return self._maps[group_key]

    def lookup(self, group_key: Optional[str], unit_number: Optional[str]) -> Optional[EnrichmentEntry]:
        if not group_key or not unit_number:
            return None
        units = self._map_for(group_key)
        if not units:
            return None
        entry = units.get(unit_number)
        if entry is None:
            normalized = normalize_unit(unit_number)
            entry = units.get(normalized)
            if entry is None:
                for unit, candidate in units.items():
                    if normalize_unit(unit) == normalized:
                        entry = candidate
                        break
        return entry

    def enrich(self, record: ListingRecord, group_key: Optional[str]) -> ListingRecord:
        """Return a copy of `record` with floor plan/orientation filled in when known."""
        entry = self.lookup(group_key, record.unit_number)
        if entry is None:
            return record
        return record.model_copy(update={
            "floor_plan": entry.floor_plan or record.floor_plan,
            "orientation": entry.orientation or record.orientation,
        })


def merge_enrichment_map(store, group_key: str, entries: Dict[str, EnrichmentEntry]) -> UpsertCounts:
    """Merge unit mappings into a building's map; new entries overwrite by unit."""
    existing = store.read_enrichment_map(group_key)
    added = updated = 0
    for unit, entry in entries.items():
        if unit in existing:
            updated += 1
        else:
            added += 1
        existing[unit] = entry
    store.write_enrichment_map(group_key, existing)
    logger.info("Merged enrichment for %s: %d added, %d updated", group_key, added, updated)
    return UpsertCounts(added=added, updated=updated, total=len(existing))
