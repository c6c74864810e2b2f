# listing_sync/services.py
from functools import lru_cache
from typing import Callable, Optional
from .cache import CacheStore
from .enrichment import EnrichmentLookup
from .feed import MLSGridClient
from .matcher import AddressMatcher, load_buildings
from .schemas import SyncResult
from .sync import SyncOrchestrator
from .utils import logger

@lru_cache(maxsize=1)
def get_matcher() -> AddressMatcher:
    buildings = load_buildings()
    logger.info("Loaded %d buildings for address matching", len(buildings))
    return AddressMatcher(buildings)

def build_orchestrator(store: Optional[CacheStore] = None) -> SyncOrchestrator:
    # Wire the production collaborators around a cache store
    store = store or CacheStore()
    return SyncOrchestrator(
        feed=MLSGridClient(),
        matcher=get_matcher(),
        enrichment=EnrichmentLookup(store),
        store=store,
    )

def run_sync(store: Optional[CacheStore] = None,
             build: Callable[[Optional[CacheStore]], SyncOrchestrator] = build_orchestrator) -> SyncResult:
    try:
        orchestrator = build(store)
    except Exception as e:
        # e.g. no MLSGRID_ACCESS_TOKEN; nothing has been touched yet
        logger.exception("Could not set up listing sync: %s", e)
        return SyncResult(success=False, error="sync_failed", details=str(e))
    result = orchestrator.run_cycle()
    if result.success:
        logger.info("Sync cycle finished: %s", result.counts)
    else:
        logger.error("Sync cycle did not complete: %s (%s)", result.error, result.details)
    return result
