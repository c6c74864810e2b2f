# listing_sync/sync.py
"""Listing sync orchestrator.

One call to `SyncOrchestrator.run_cycle` performs one full replication
cycle: guard, fetch, match, enrich, write snapshots, rebuild the reverse
index, commit the watermark, reconcile analytics, and report. Every
collaborator is injected so the cycle can run against fakes.
"""
import time
from collections import defaultdict
from typing import Dict, List, Tuple

from . import config
from .analytics import AnalyticsReconciler, count_by_status
from .errors import IncompleteImportError, SyncConflictError
from .feed import FeedClient
from .schemas import (
    UNMATCHED_KEY,
    FetchMode,
    ListingRecord,
    StatusReport,
    SyncResult,
    UnmatchedListing,
)
from . import sync_state
from .sync_state import Pipeline
from .utils import logger


def count_by_type(records: List[ListingRecord]) -> Dict[str, int]:
    sales = sum(1 for r in records if r.listing_type == "Sale")
    leases = sum(1 for r in records if r.listing_type == "Lease")
    return {"sales": sales, "leases": leases, "total": len(records)}


def build_index(groups: Dict[str, List[ListingRecord]]) -> Dict[str, str]:
    return {r.listing_id: key for key, records in groups.items() for r in records}


class SyncOrchestrator:
    def __init__(
        self,
        feed: FeedClient,
        matcher,
        enrichment,
        store,
        min_initial_listings: int = config.MIN_INITIAL_LISTINGS,
        unmatched_sample_size: int = config.UNMATCHED_SAMPLE_SIZE,
    ):
        self.feed = feed
        self.matcher = matcher
        self.enrichment = enrichment
        self.store = store
        self.min_initial_listings = min_initial_listings
        self.unmatched_sample_size = unmatched_sample_size
        self.analytics = AnalyticsReconciler(feed, matcher, enrichment, store)

    def run_cycle(self) -> SyncResult:
        started = time.monotonic()
        try:
            previous = sync_state.acquire(self.store, Pipeline.ACTIVE)
        except SyncConflictError as e:
            logger.warning("Sync already in progress - aborting to prevent overlap: %s", e)
            return SyncResult(success=False, error="conflict", details=str(e),
                              duration_ms=self._elapsed(started))
        except Exception as e:
            # the flag write is the last step of acquire, so nothing was claimed
            logger.exception("Could not acquire sync state: %s", e)
            return SyncResult(success=False, error="sync_failed", details=str(e),
                              duration_ms=self._elapsed(started))

        mode = FetchMode.INITIAL if previous.last_sync_timestamp is None else FetchMode.INCREMENTAL
        try:
            result = self._run(previous, mode)
        except IncompleteImportError as e:
            self._mark_failed(str(e))
            return SyncResult(success=False, mode=mode, error="incomplete_import", details=str(e),
                              counts={"fetched": e.count}, duration_ms=self._elapsed(started))
        except Exception as e:
            logger.exception("Listing sync failed: %s", e)
            self._mark_failed(str(e))
            return SyncResult(success=False, mode=mode, error="sync_failed", details=str(e),
                              duration_ms=self._elapsed(started))
        except BaseException as e:
            self._mark_failed(f"interrupted: {e!r}")
            raise

        result.duration_ms = self._elapsed(started)
        logger.info(
            "Sync completed in %dms: %d fetched, %d matched, %d unmatched",
            result.duration_ms, result.counts["fetched"], result.counts["matched"], result.counts["unmatched"],
        )
        return result

    def _run(self, previous, mode: FetchMode) -> SyncResult:
        is_initial = mode == FetchMode.INITIAL
        logger.info("Starting listing sync: full fetch (%s)", "initial import" if is_initial else "refresh")

        # always a full fetch: media URLs carry tokens that expire
        listings = self.feed.fetch_active(FetchMode.INITIAL)
        logger.info("Fetched %d listings", len(listings))
        if is_initial and len(listings) < self.min_initial_listings:
            raise IncompleteImportError(len(listings), self.min_initial_listings)

        self.enrichment.refresh()
        groups, unmatched = self._group(listings)
        enriched = self._write_groups(groups, unmatched)

        all_groups = dict(groups)
        all_groups[UNMATCHED_KEY] = unmatched
        index = build_index(all_groups)
        self.store.write_index(index)
        logger.info("Built listing index: %d entries", len(index))

        latest = sync_state.find_latest_timestamp(listings) or previous.last_sync_timestamp
        sync_state.commit_watermark(self.store, Pipeline.ACTIVE, latest)

        try:
            analytics_summary = self.analytics.run(listings, latest)
        except Exception as e:
            logger.exception("Analytics phase error (non-fatal): %s", e)
            analytics_summary = {"error": str(e)}

        batch = count_by_type(listings)
        totals = self._count_cached()
        sync_state.mark_success(self.store, Pipeline.ACTIVE, latest, batch, totals)

        matched = sum(len(records) for records in groups.values())
        counts = {
            "fetched": len(listings),
            "matched": matched,
            "unmatched": len(unmatched),
            "groups_updated": len(groups),
            "enriched": enriched,
            "index_entries": len(index),
            "batch_sales": batch["sales"],
            "batch_leases": batch["leases"],
            "total_cached_sales": totals["sales"],
            "total_cached_leases": totals["leases"],
            "total_cached": totals["total"],
        }
        sample = [
            UnmatchedListing(
                listing_id=r.listing_id,
                address=r.address,
                unit_number=r.unit_number,
                property_name_raw=r.property_name_raw,
                listing_type=r.listing_type,
            )
            for r in unmatched[: self.unmatched_sample_size]
        ]
        return SyncResult(
            success=True,
            mode=mode,
            counts=counts,
            unmatched_sample=sample,
            analytics_summary=analytics_summary,
            latest_timestamp=latest,
        )

    def _group(self, listings: List[ListingRecord]) -> Tuple[Dict[str, List[ListingRecord]], List[ListingRecord]]:
        groups: Dict[str, List[ListingRecord]] = defaultdict(list)
        unmatched: List[ListingRecord] = []
        for listing in listings:
            key = self.matcher.match(listing.address, listing.property_name_raw or None)
            if key is None:
                logger.debug("Unmatched: %r unit=%s building=%r", listing.address, listing.unit_number,
                             listing.property_name_raw)
                unmatched.append(listing)
                continue
            name = self.matcher.display_name(key)
            if name:
                listing = listing.model_copy(update={"property_name_raw": name})
            groups[key].append(listing)
        logger.info("Address matching: %d listings -> %d groups, %d unmatched",
                    sum(len(v) for v in groups.values()), len(groups), len(unmatched))
        return dict(groups), unmatched

    def _write_groups(self, groups: Dict[str, List[ListingRecord]], unmatched: List[ListingRecord]) -> int:
        """Write one full-replacement snapshot per group; returns the enriched count.

        Groups that were cached before but have no listings now are written
        as empty snapshots; the unmatched bucket is always written.
        """
        enriched = 0
        for key in sorted(groups):
            records = [self.enrichment.enrich(r, key) for r in groups[key]]
            enriched += sum(1 for r in records if r.floor_plan)
            self.store.write_snapshot(key, records)
        for key in sorted(set(self.store.list_snapshot_keys()) - set(groups) - {UNMATCHED_KEY}):
            self.store.write_snapshot(key, [])
        self.store.write_snapshot(UNMATCHED_KEY, unmatched)
        return enriched

    def _count_cached(self) -> Dict[str, int]:
        records = []
        for key in self.store.list_snapshot_keys():
            snapshot = self.store.read_snapshot(key)
            if snapshot:
                records.extend(snapshot.records)
        return count_by_type(records)

    def _mark_failed(self, reason: str):
        # the caller still gets a structured result when the store is down;
        # the watchdog clears a flag left set here
        try:
            sync_state.mark_failed(self.store, Pipeline.ACTIVE, reason)
        except Exception as e:
            logger.error("Could not record sync failure (%s): %s", reason, e)

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.monotonic() - started) * 1000)


def get_sync_status(store) -> StatusReport:
    """Read-only view of both pipelines and the cached counts."""
    active = sync_state.read_state(store, Pipeline.ACTIVE)
    analytics = sync_state.read_state(store, Pipeline.ANALYTICS)
    groups = []
    sales = leases = 0
    for key in store.list_snapshot_keys():
        snapshot = store.read_snapshot(key)
        if not snapshot or not snapshot.records:
            continue
        counts = count_by_type(snapshot.records)
        sales += counts["sales"]
        leases += counts["leases"]
        groups.append({"group_key": key, **counts, "written_at": snapshot.written_at})
    return StatusReport(
        active=active,
        analytics=analytics,
        next_mode=FetchMode.INCREMENTAL if active.last_sync_timestamp else FetchMode.INITIAL,
        cache={
            "total_sales": sales,
            "total_leases": leases,
            "total_listings": sales + leases,
            "groups_with_listings": len(groups),
            "groups": groups,
            "index_entries": len(store.read_index()),
            "analytics": count_by_status(store),
        },
    )
