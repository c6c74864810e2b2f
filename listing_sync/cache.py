# listing_sync/cache.py
"""Cache store for the listing sync engine.

Every value lives under a namespaced key in the `cache_entries` table:

    mls:cache:<group>        active listings snapshot (full replacement)
    mls:index:listings       listing_id -> group key reverse index
    mls:analytics:<group>    analytics records (upsert by listing_id)
    mls:enrichment:<group>   unit number -> floor plan / orientation
    mls:sync:state:<name>    per-pipeline sync state
    mls:import:state         last historical CSV import

The store does no concurrency control of its own beyond keeping each
single-key upsert inside one transaction.
"""
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Set

from . import crud
from .db import SessionLocal
from .schemas import (
    AnalyticsRecord,
    AnalyticsImportState,
    EnrichmentEntry,
    GroupSnapshot,
    ListingRecord,
    SnapshotOut,
    SyncState,
    UpsertCounts,
)
from .utils import logger, normalize_listing_id, utcnow

CACHE_PREFIX = "mls:cache:"
INDEX_KEY = "mls:index:listings"
ANALYTICS_PREFIX = "mls:analytics:"
ENRICHMENT_PREFIX = "mls:enrichment:"
SYNC_STATE_PREFIX = "mls:sync:state:"
IMPORT_STATE_KEY = "mls:import:state"


def _dump(records: Iterable[ListingRecord]) -> List[dict]:
    return [r.model_dump(mode="json") for r in records]


class CacheStore:
    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # --- active listings ---

    def write_snapshot(self, group_key: str, records: List[ListingRecord]) -> GroupSnapshot:
        snapshot = GroupSnapshot(group_key=group_key, records=records, written_at=utcnow())
        with self._session() as db:
            crud.set_entry(db, CACHE_PREFIX + group_key, snapshot.model_dump(mode="json"))
        logger.info("Wrote cache for %s (%d listings)", group_key, len(records))
        return snapshot

    def read_snapshot(self, group_key: str) -> Optional[GroupSnapshot]:
        with self._session() as db:
            value = crud.get_entry(db, CACHE_PREFIX + group_key)
        if value is None:
            return None
        return GroupSnapshot.model_validate(value)

    def list_snapshot_keys(self) -> List[str]:
        with self._session() as db:
            keys = crud.list_keys(db, CACHE_PREFIX)
        return [k[len(CACHE_PREFIX):] for k in keys]

    def write_index(self, index: Dict[str, str]):
        with self._session() as db:
            crud.set_entry(db, INDEX_KEY, dict(index))

    def read_index(self) -> Dict[str, str]:
        with self._session() as db:
            return crud.get_entry(db, INDEX_KEY) or {}

    def clear_active_cache(self) -> int:
        """Delete every active snapshot and the reverse index."""
        cleared = 0
        with self._session() as db:
            for key in crud.list_keys(db, CACHE_PREFIX) + [INDEX_KEY]:
                if crud.delete_entry(db, key):
                    cleared += 1
        logger.info("Cleared %d cache entries", cleared)
        return cleared

    # --- analytics ---

    def read_analytics(self, group_key: str) -> List[AnalyticsRecord]:
        with self._session() as db:
            value = crud.get_entry(db, ANALYTICS_PREFIX + group_key) or []
        return [AnalyticsRecord.model_validate(v) for v in value]

    def write_analytics(self, group_key: str, records: List[AnalyticsRecord]):
        with self._session() as db:
            crud.set_entry(db, ANALYTICS_PREFIX + group_key, _dump(records))
        logger.info("Wrote %d analytics listings for %s", len(records), group_key)

    def list_analytics_keys(self) -> List[str]:
        with self._session() as db:
            keys = crud.list_keys(db, ANALYTICS_PREFIX)
        return [k[len(ANALYTICS_PREFIX):] for k in keys]

    def upsert_snapshot(self, group_key: str, records: List[AnalyticsRecord]) -> UpsertCounts:
        """Merge records into a group's analytics cache by listing_id.

        Incoming records replace stored ones with the same (normalized) id;
        every other stored record is left untouched.
        """
        key = ANALYTICS_PREFIX + group_key
        with self._session() as db:
            existing = crud.lock_entry(db, key) or []
            merged = {normalize_listing_id(item["listing_id"]): item for item in existing}
            added = updated = 0
            for record in records:
                listing_id = normalize_listing_id(record.listing_id)
                if listing_id in merged:
                    updated += 1
                else:
                    added += 1
                merged[listing_id] = record.model_copy(update={"listing_id": listing_id}).model_dump(mode="json")
            crud.set_entry(db, key, list(merged.values()))
        logger.info(
            "Upserted analytics for %s: %d added, %d updated (total: %d)",
            group_key, added, updated, len(merged),
        )
        return UpsertCounts(added=added, updated=updated, total=len(merged))

    def remove_from_other_groups(self, group_key: str, listing_ids: Set[str]) -> int:
        """Drop `listing_ids` from every analytics group except `group_key`."""
        listing_ids = {normalize_listing_id(i) for i in listing_ids}
        removed = 0
        for other in self.list_analytics_keys():
            if other == group_key:
                continue
            key = ANALYTICS_PREFIX + other
            with self._session() as db:
                existing = crud.lock_entry(db, key) or []
                kept = [item for item in existing if normalize_listing_id(item["listing_id"]) not in listing_ids]
                if len(kept) == len(existing):
                    db.rollback()
                    continue
                crud.set_entry(db, key, kept)
            removed += len(existing) - len(kept)
        return removed

    # --- enrichment ---

    def read_enrichment_map(self, group_key: str) -> Dict[str, EnrichmentEntry]:
        with self._session() as db:
            value = crud.get_entry(db, ENRICHMENT_PREFIX + group_key) or {}
        return {unit: EnrichmentEntry.model_validate(entry) for unit, entry in value.items()}

    def write_enrichment_map(self, group_key: str, entries: Dict[str, EnrichmentEntry]):
        payload = {unit: entry.model_dump(mode="json") for unit, entry in entries.items()}
        with self._session() as db:
            crud.set_entry(db, ENRICHMENT_PREFIX + group_key, payload)
        logger.info("Wrote %d unit mappings for %s", len(entries), group_key)

    def list_enrichment_keys(self) -> List[str]:
        with self._session() as db:
            keys = crud.list_keys(db, ENRICHMENT_PREFIX)
        return [k[len(ENRICHMENT_PREFIX):] for k in keys]

    # --- sync state ---

    def read_sync_state(self, pipeline: str) -> Optional[SyncState]:
        with self._session() as db:
            value = crud.get_entry(db, SYNC_STATE_PREFIX + pipeline)
        if value is None:
            return None
        return SyncState.model_validate(value)

    def write_sync_state(self, pipeline: str, state: SyncState):
        with self._session() as db:
            crud.set_entry(db, SYNC_STATE_PREFIX + pipeline, state.model_dump(mode="json"))

    def read_import_state(self) -> Optional[AnalyticsImportState]:
        with self._session() as db:
            value = crud.get_entry(db, IMPORT_STATE_KEY)
        if value is None:
            return None
        return AnalyticsImportState.model_validate(value)

    def write_import_state(self, state: AnalyticsImportState):
        with self._session() as db:
            crud.set_entry(db, IMPORT_STATE_KEY, state.model_dump(mode="json"))

    # --- lifecycle snapshot log ---

    def append_listing_snapshots(self, rows: List[SnapshotOut]) -> int:
        if not rows:
            return 0
        with self._session() as db:
            crud.add_snapshots(db, [row.model_dump() for row in rows])
        return len(rows)

    def read_listing_snapshots(self, listing_id: Optional[str] = None, limit: int = 500) -> List[SnapshotOut]:
        with self._session() as db:
            rows = crud.list_snapshots(db, listing_id=listing_id, limit=limit)
            return [SnapshotOut.model_validate(row) for row in rows]
