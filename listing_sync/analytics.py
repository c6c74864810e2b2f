# listing_sync/analytics.py
"""Analytics reconciliation.

The analytics cache accumulates every listing ever seen, in any status.
Each cycle it is fed from two sources: the active batch the orchestrator
already fetched (converted, no second API call) and a status-change fetch
for listings that left Active. When both carry the same listing_id the
status-change record wins, since the active batch may hold a stale
"Active" status for a listing that has since gone Pending or Closed.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .feed import FeedClient
from .schemas import (
    NON_ACTIVE_STATUSES,
    UNMATCHED_KEY,
    AnalyticsRecord,
    AnalyticsStatusFilter,
    ListingRecord,
    ListingStatus,
    SnapshotOut,
)
from .sync_state import Pipeline, acquire, mark_failed, mark_success
from .utils import isoformat, logger, normalize_listing_id, utcnow


def price_per_sqft(record: ListingRecord) -> Optional[float]:
    if not record.living_area:
        return None
    price = record.close_price if record.status == ListingStatus.CLOSED and record.close_price else record.list_price
    return round(price / record.living_area, 2) if price else None


def to_analytics_record(
    record: ListingRecord,
    group_key: Optional[str] = None,
    property_name: Optional[str] = None,
    imported_at: Optional[str] = None,
) -> AnalyticsRecord:
    data = record.model_dump()
    data.update(
        listing_id=normalize_listing_id(record.listing_id),
        group_key=group_key,
        property_name=property_name or record.property_name_raw,
        original_list_price=record.original_list_price or record.list_price,
        price_sf=price_per_sqft(record),
        source="api-sync",
        imported_at=imported_at or isoformat(utcnow()),
    )
    return AnalyticsRecord.model_validate(data)


def drop_superseded(
    converted: List[AnalyticsRecord], status_changed: List[AnalyticsRecord]
) -> Tuple[List[AnalyticsRecord], int]:
    """Remove converted active records whose id appears in the status-change fetch."""
    authoritative_ids = {r.listing_id for r in status_changed}
    kept = [r for r in converted if r.listing_id not in authoritative_ids]
    return kept, len(converted) - len(kept)


def count_by_status(store) -> Dict[str, int]:
    counts = {"closed": 0, "pending": 0, "active": 0, "other": 0, "total": 0}
    for key in store.list_analytics_keys():
        for record in store.read_analytics(key):
            if record.status == ListingStatus.CLOSED:
                counts["closed"] += 1
            elif record.status == ListingStatus.PENDING:
                counts["pending"] += 1
            elif record.status in (ListingStatus.ACTIVE, ListingStatus.ACTIVE_UNDER_CONTRACT):
                counts["active"] += 1
            else:
                counts["other"] += 1
            counts["total"] += 1
    return counts


def assign_groups(records: List[AnalyticsRecord], matcher, enrichment):
    """Match each record to a building, name and enrich it, and bucket it by group key."""
    groups: Dict[str, List[AnalyticsRecord]] = defaultdict(list)
    matched = unmatched = 0
    for record in records:
        key = matcher.match(record.address, record.property_name_raw or None)
        if key:
            matched += 1
            record = record.model_copy(update={
                "group_key": key,
                "property_name": matcher.display_name(key) or record.property_name,
            })
            record = enrichment.enrich(record, key)
        else:
            unmatched += 1
            record = record.model_copy(update={"group_key": None})
        groups[key or UNMATCHED_KEY].append(record)
    return dict(groups), matched, unmatched


def upsert_groups(store, groups: Dict[str, List[AnalyticsRecord]]) -> Tuple[int, int, int]:
    """Upsert every group, then drop each listing from the groups it no longer belongs to."""
    added = updated = 0
    for key in sorted(groups):
        counts = store.upsert_snapshot(key, groups[key])
        added += counts.added
        updated += counts.updated

    deduped = 0
    for key in sorted(groups):
        deduped += store.remove_from_other_groups(key, {r.listing_id for r in groups[key]})
    if deduped:
        logger.info("Analytics dedup: removed %d cross-group duplicates", deduped)
    return added, updated, deduped


STATUS_FILTERS = {
    AnalyticsStatusFilter.CLOSED: {ListingStatus.CLOSED},
    AnalyticsStatusFilter.PENDING: {ListingStatus.PENDING, ListingStatus.ACTIVE_UNDER_CONTRACT},
    AnalyticsStatusFilter.OFFMARKET: {
        ListingStatus.WITHDRAWN,
        ListingStatus.HOLD,
        ListingStatus.EXPIRED,
        ListingStatus.CANCELED,
        ListingStatus.DELETED,
    },
    AnalyticsStatusFilter.ACTIVE: {ListingStatus.ACTIVE},
}


def query_analytics(
    store,
    status: AnalyticsStatusFilter = AnalyticsStatusFilter.ALL,
    group_key: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[AnalyticsRecord]:
    """Filtered read over the analytics cache.

    Without `group_key` every matched group is read; the unmatched bucket
    is only returned when asked for by name. Dates are ISO `YYYY-MM-DD`
    strings compared against the close date of closed listings and the list
    date of everything else. Records with no such date are kept.
    """
    if group_key:
        keys = [group_key]
    else:
        keys = [k for k in store.list_analytics_keys() if k != UNMATCHED_KEY]
    records = [r for key in keys for r in store.read_analytics(key)]

    allowed = STATUS_FILTERS.get(status)
    if allowed:
        records = [r for r in records if r.status in allowed]

    if date_from or date_to:
        def in_range(record):
            date = record.close_date if record.status == ListingStatus.CLOSED else record.list_date
            if not date:
                return True
            date = date[:10]
            if date_from and date < date_from:
                return False
            if date_to and date > date_to:
                return False
            return True

        records = [r for r in records if in_range(r)]
    return records


class AnalyticsReconciler:
    def __init__(self, feed: FeedClient, matcher, enrichment, store):
        self.feed = feed
        self.matcher = matcher
        self.enrichment = enrichment
        self.store = store

    def run(self, active_batch: List[ListingRecord], active_watermark: Optional[str],
            now: Optional[datetime] = None) -> Dict:
        now = now or utcnow()
        previous = acquire(self.store, Pipeline.ANALYTICS, now=now)
        try:
            summary = self._reconcile(active_batch, active_watermark, previous.last_sync_timestamp, now)
        except Exception as e:
            mark_failed(self.store, Pipeline.ANALYTICS, str(e))
            raise
        return summary

    def _reconcile(self, active_batch, active_watermark, analytics_watermark, now):
        imported_at = isoformat(now)
        status_changed = [
            to_analytics_record(r, imported_at=imported_at)
            for r in self.feed.fetch_by_status(NON_ACTIVE_STATUSES, analytics_watermark)
        ]
        converted = [to_analytics_record(r, imported_at=imported_at) for r in active_batch]
        kept, superseded = drop_superseded(converted, status_changed)
        logger.info(
            "Analytics: %d status-changed, %d active converted, %d superseded",
            len(status_changed), len(converted), superseded,
        )

        groups, matched, unmatched = assign_groups(status_changed + kept, self.matcher, self.enrichment)

        added, updated, deduped = upsert_groups(self.store, groups)

        snapshots = self.store.append_listing_snapshots([
            SnapshotOut(
                listing_id=r.listing_id,
                captured_at=now,
                status=r.status.value,
                list_price=r.list_price,
                days_on_market=r.days_on_market,
            )
            for r in active_batch
        ])

        # the full active fetch is the freshest view, so its watermark wins
        watermark = active_watermark or analytics_watermark or isoformat(now)
        batch_counts = {
            "status_changed": len(status_changed),
            "active_converted": len(converted),
            "superseded": superseded,
        }
        totals = count_by_status(self.store)
        mark_success(self.store, Pipeline.ANALYTICS, watermark, batch_counts, totals, now=now)

        return {
            "status_changed_fetched": len(status_changed),
            "active_converted": len(converted),
            "superseded": superseded,
            "matched": matched,
            "unmatched": unmatched,
            "added": added,
            "updated": updated,
            "deduped": deduped,
            "snapshots_captured": snapshots,
            "total_cached": totals["total"],
            "watermark": watermark,
        }


def rematch_analytics(store, matcher) -> Dict:
    """Re-run the matcher over every analytics record and regroup.

    Matching uses the address only; a building name carried over from an
    earlier import may be the reason the record was misfiled.
    """
    regrouped: Dict[str, List[AnalyticsRecord]] = defaultdict(list)
    changes = []
    old_keys = store.list_analytics_keys()
    total = 0
    for old_key in old_keys:
        for record in store.read_analytics(old_key):
            total += 1
            new_key = matcher.match(record.address) or UNMATCHED_KEY
            previous = record.group_key or UNMATCHED_KEY
            if new_key != previous:
                changes.append({
                    "listing_id": record.listing_id,
                    "address": record.address,
                    "from": previous,
                    "to": new_key,
                })
            name = matcher.display_name(new_key) if new_key != UNMATCHED_KEY else None
            regrouped[new_key].append(record.model_copy(update={
                "group_key": None if new_key == UNMATCHED_KEY else new_key,
                "property_name": name or record.property_name,
            }))

    for key in old_keys:
        if key not in regrouped:
            store.write_analytics(key, [])
    for key, records in regrouped.items():
        store.write_analytics(key, records)

    logger.info("Analytics rematch: %d listings, %d moved", total, len(changes))
    return {"total_listings": total, "changes_count": len(changes), "changes": changes[:50]}


def apply_enrichment(store, enrichment) -> Dict:
    """Apply the current enrichment maps to every stored analytics record."""
    enrichment.refresh()
    enriched = 0
    for key in store.list_analytics_keys():
        if key == UNMATCHED_KEY:
            continue
        records = store.read_analytics(key)
        updated = [enrichment.enrich(r, key) for r in records]
        changed = sum(1 for before, after in zip(records, updated) if before != after)
        if changed:
            store.write_analytics(key, updated)
            enriched += changed
    logger.info("Applied enrichment to %d analytics listings", enriched)
    return {"enriched": enriched}
