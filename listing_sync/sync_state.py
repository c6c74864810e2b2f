# listing_sync/sync_state.py
"""Per-pipeline sync state: idle -> in_progress -> idle | failed.

Only the orchestrator drives transitions. `reset_sync_state` and
`reset_stale_sync` are the administrative escape hatches for a flag left
behind by a process that died mid-cycle; neither touches cached listings.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, Optional

from .errors import SyncConflictError
from .schemas import ListingRecord, SyncPhase, SyncState
from .utils import logger, parse_timestamp, utcnow


class Pipeline(str, Enum):
    ACTIVE = "active"
    ANALYTICS = "analytics"


def read_state(store, pipeline: Pipeline) -> SyncState:
    state = store.read_sync_state(pipeline.value)
    return state or SyncState(pipeline=pipeline.value)


def acquire(store, pipeline: Pipeline, now: Optional[datetime] = None) -> SyncState:
    """Flip the pipeline to in_progress and return the state it had before.

    Raises SyncConflictError when a cycle is already running. This is a
    best-effort guard: the check and the write are two store calls.
    """
    previous = read_state(store, pipeline)
    if previous.in_progress:
        raise SyncConflictError(
            f"{pipeline.value} sync already in progress since {previous.started_at}"
        )
    state = previous.model_copy(update={
        "status": SyncPhase.IN_PROGRESS,
        "in_progress": True,
        "started_at": now or utcnow(),
    })
    store.write_sync_state(pipeline.value, state)
    return previous


def commit_watermark(store, pipeline: Pipeline, watermark: Optional[str]) -> SyncState:
    """Persist a new watermark without leaving the in_progress phase."""
    state = read_state(store, pipeline)
    if watermark:
        state = state.model_copy(update={"last_sync_timestamp": watermark})
        store.write_sync_state(pipeline.value, state)
    return state


def mark_success(
    store,
    pipeline: Pipeline,
    watermark: Optional[str],
    batch_counts: Optional[Dict[str, int]] = None,
    total_counts: Optional[Dict[str, int]] = None,
    now: Optional[datetime] = None,
) -> SyncState:
    current = read_state(store, pipeline)
    state = current.model_copy(update={
        "status": SyncPhase.IDLE,
        "in_progress": False,
        "last_sync_timestamp": watermark or current.last_sync_timestamp,
        "last_sync_date": now or utcnow(),
        "last_failure_reason": None,
        "started_at": None,
        "batch_counts": batch_counts if batch_counts is not None else current.batch_counts,
        "total_counts": total_counts if total_counts is not None else current.total_counts,
    })
    store.write_sync_state(pipeline.value, state)
    logger.info(
        "Updated %s sync state: watermark=%s totals=%s",
        pipeline.value, state.last_sync_timestamp, state.total_counts,
    )
    return state


def mark_failed(store, pipeline: Pipeline, reason: str) -> SyncState:
    state = read_state(store, pipeline).model_copy(update={
        "status": SyncPhase.FAILED,
        "in_progress": False,
        "last_failure_reason": reason,
        "started_at": None,
    })
    store.write_sync_state(pipeline.value, state)
    logger.error("Marked %s sync failed: %s", pipeline.value, reason)
    return state


def reset_sync_state(store, pipeline: Pipeline, clear_watermark: bool = True) -> SyncState:
    """Clear the in_progress flag (and by default the watermark).

    With the watermark cleared the next cycle runs as an initial import.
    """
    current = read_state(store, pipeline)
    update = {
        "status": SyncPhase.IDLE,
        "in_progress": False,
        "started_at": None,
        "last_failure_reason": None,
    }
    if clear_watermark:
        update["last_sync_timestamp"] = None
    state = current.model_copy(update=update)
    store.write_sync_state(pipeline.value, state)
    logger.info("Reset %s sync state (watermark cleared: %s)", pipeline.value, clear_watermark)
    return state


def reset_stale_sync(store, max_age_seconds: int, now: Optional[datetime] = None) -> Dict[str, bool]:
    """Watchdog: fail any pipeline stuck in_progress for longer than max_age_seconds."""
    now = now or utcnow()
    cleared = {}
    for pipeline in Pipeline:
        state = read_state(store, pipeline)
        stale = False
        if state.in_progress:
            started = state.started_at
            stale = started is None or now - started > timedelta(seconds=max_age_seconds)
        if stale:
            mark_failed(store, pipeline, f"watchdog: in progress since {state.started_at}, exceeded {max_age_seconds}s")
        cleared[pipeline.value] = stale
    return cleared


def find_latest_timestamp(records: Iterable[ListingRecord]) -> Optional[str]:
    """Return the newest modification_timestamp, or None when there is none."""
    latest = None
    latest_at = None
    for record in records:
        parsed = parse_timestamp(record.modification_timestamp)
        if parsed is None:
            continue
        if latest_at is None or parsed > latest_at:
            latest, latest_at = record.modification_timestamp, parsed
    return latest
