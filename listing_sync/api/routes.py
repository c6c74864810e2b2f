# listing_sync/api/routes.py
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import Dict, List, Optional
from .. import analytics, config, schemas
from ..cache import CacheStore
from ..enrichment import EnrichmentLookup, merge_enrichment_map
from ..errors import AnalyticsImportError
from ..importer import AnalyticsImporter
from ..services import build_orchestrator, get_matcher, run_sync
from ..sync import get_sync_status
from ..sync_state import Pipeline, read_state, reset_sync_state
from ..utils import logger

router = APIRouter()
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

def get_store() -> CacheStore:
    return CacheStore()

def get_orchestrator_builder():
    return build_orchestrator

def require_cron_secret(authorization: Optional[str] = Header(None)):
    # no secret configured means the endpoints are open (local development)
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")

@router.get("/health")
def health():
    return {"status": "ok"}

@router.api_route("/sync", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
def trigger_sync(store: CacheStore = Depends(get_store), build=Depends(get_orchestrator_builder)):
    result = run_sync(store, build)
    if result.success:
        return result.model_dump(mode="json")
    status_code = 409 if result.error == "conflict" else 500
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))

@router.get("/status", response_model=schemas.StatusReport, dependencies=[Depends(require_cron_secret)])
def status(store: CacheStore = Depends(get_store)):
    try:
        return get_sync_status(store)
    except Exception as e:
        logger.exception("Failed to read status: %s", e)
        raise HTTPException(status_code=500, detail="Failed to read status")

@router.post("/reset-sync", dependencies=[Depends(require_cron_secret)])
def reset_sync(pipeline: Pipeline = Query(Pipeline.ACTIVE), keep_watermark: bool = False,
               store: CacheStore = Depends(get_store)):
    state = reset_sync_state(store, pipeline, clear_watermark=not keep_watermark)
    return {"success": True, "state": state.model_dump(mode="json")}

@router.post("/clear-cache", dependencies=[Depends(require_cron_secret)])
def clear_cache(store: CacheStore = Depends(get_store)):
    cleared = store.clear_active_cache()
    return {"success": True, "cleared": cleared}

@router.get("/listings", response_model=List[schemas.ListingRecord])
def listings(group_key: Optional[str] = None, store: CacheStore = Depends(get_store)):
    keys = [group_key] if group_key else store.list_snapshot_keys()
    items: List[schemas.ListingRecord] = []
    for key in keys:
        snapshot = store.read_snapshot(key)
        if snapshot:
            items.extend(snapshot.records)
    return items

@router.get("/listings/{listing_id}", response_model=schemas.ListingRecord)
def get_listing(listing_id: str, store: CacheStore = Depends(get_store)):
    group_key = store.read_index().get(listing_id)
    snapshot = store.read_snapshot(group_key) if group_key else None
    if snapshot:
        for record in snapshot.records:
            if record.listing_id == listing_id:
                return record
    raise HTTPException(status_code=404, detail="Listing not found")

@router.get("/listings/{listing_id}/snapshots", response_model=List[schemas.SnapshotOut])
def listing_snapshots(listing_id: str, store: CacheStore = Depends(get_store)):
    return store.read_listing_snapshots(listing_id=listing_id)

@router.get("/analytics", response_model=schemas.AnalyticsView)
def analytics_view(
    status: schemas.AnalyticsStatusFilter = schemas.AnalyticsStatusFilter.ALL,
    group_key: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from", pattern=DATE_PATTERN),
    date_to: Optional[str] = Query(None, alias="to", pattern=DATE_PATTERN),
    store: CacheStore = Depends(get_store),
):
    listings = analytics.query_analytics(store, status, group_key, date_from, date_to)
    return schemas.AnalyticsView(
        listings=listings,
        count=len(listings),
        sync_state=read_state(store, Pipeline.ANALYTICS),
        import_state=store.read_import_state(),
    )

@router.get("/analytics/{group_key}", response_model=List[schemas.AnalyticsRecord])
def analytics_listings(group_key: str, store: CacheStore = Depends(get_store)):
    return store.read_analytics(group_key)

@router.post("/analytics/rematch", dependencies=[Depends(require_cron_secret)])
def analytics_rematch(store: CacheStore = Depends(get_store), matcher=Depends(get_matcher)):
    return {"success": True, **analytics.rematch_analytics(store, matcher)}

@router.post("/enrichment/apply", dependencies=[Depends(require_cron_secret)])
def enrichment_apply(store: CacheStore = Depends(get_store)):
    return {"success": True, **analytics.apply_enrichment(store, EnrichmentLookup(store))}

@router.post("/enrichment/{group_key}", response_model=schemas.UpsertCounts,
             dependencies=[Depends(require_cron_secret)])
def enrichment_import(group_key: str, entries: Dict[str, schemas.EnrichmentEntry],
                      store: CacheStore = Depends(get_store)):
    return merge_enrichment_map(store, group_key, entries)

@router.post("/analytics/import", response_model=schemas.ImportResult,
             dependencies=[Depends(require_cron_secret)])
def analytics_import(payload: schemas.CsvImportRequest, store: CacheStore = Depends(get_store),
                     matcher=Depends(get_matcher)):
    importer = AnalyticsImporter(matcher, EnrichmentLookup(store), store)
    try:
        return importer.import_csv(payload.csv_text)
    except AnalyticsImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.post("/analytics/import-files", response_model=schemas.ImportResult,
             dependencies=[Depends(require_cron_secret)])
def analytics_import_files(store: CacheStore = Depends(get_store), matcher=Depends(get_matcher)):
    importer = AnalyticsImporter(matcher, EnrichmentLookup(store), store)
    try:
        return importer.import_files()
    except AnalyticsImportError as e:
        raise HTTPException(status_code=400, detail=str(e))
