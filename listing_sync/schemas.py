# listing_sync/schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

UNMATCHED_KEY = "_unmatched"


class ListingStatus(str, Enum):
    ACTIVE = "Active"
    PENDING = "Pending"
    ACTIVE_UNDER_CONTRACT = "Active Under Contract"
    CLOSED = "Closed"
    WITHDRAWN = "Withdrawn"
    HOLD = "Hold"
    EXPIRED = "Expired"
    CANCELED = "Canceled"
    DELETED = "Deleted"


# statuses pulled by the analytics status-change fetch
NON_ACTIVE_STATUSES = (
    ListingStatus.CLOSED,
    ListingStatus.PENDING,
    ListingStatus.WITHDRAWN,
    ListingStatus.HOLD,
    ListingStatus.EXPIRED,
    ListingStatus.CANCELED,
)


class FetchMode(str, Enum):
    INITIAL = "initial"
    INCREMENTAL = "incremental"


class ListingRecord(BaseModel):
    listing_id: str = Field(..., max_length=255)
    address: str = ""
    unit_number: str = ""
    property_name_raw: str = ""
    status: ListingStatus = ListingStatus.ACTIVE
    listing_type: str = "Sale"
    list_price: Optional[float] = None
    original_list_price: Optional[float] = None
    close_price: Optional[float] = None
    living_area: Optional[float] = None
    bedrooms_total: Optional[int] = None
    bathrooms_total_integer: Optional[int] = None
    list_date: Optional[str] = None
    close_date: Optional[str] = None
    days_on_market: Optional[int] = None
    modification_timestamp: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    floor_plan: Optional[str] = None
    orientation: Optional[str] = None
    hoa_fee: Optional[float] = None
    property_sub_type: Optional[str] = None
    year_built: Optional[int] = None
    list_agent_full_name: Optional[str] = None
    list_office_name: Optional[str] = None


class AnalyticsRecord(ListingRecord):
    group_key: Optional[str] = None
    property_name: str = ""
    price_sf: Optional[float] = None
    cp_lp: Optional[float] = None
    cp_olp: Optional[float] = None
    buyer_agent_full_name: Optional[str] = None
    source: str = "api-sync"
    imported_at: Optional[str] = None


class GroupSnapshot(BaseModel):
    group_key: str
    records: List[ListingRecord] = Field(default_factory=list)
    written_at: datetime


class EnrichmentEntry(BaseModel):
    floor_plan: Optional[str] = None
    orientation: Optional[str] = None


class UpsertCounts(BaseModel):
    added: int = 0
    updated: int = 0
    total: int = 0


class SyncPhase(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


class SyncState(BaseModel):
    pipeline: str
    status: SyncPhase = SyncPhase.IDLE
    in_progress: bool = False
    last_sync_timestamp: Optional[str] = None
    last_sync_date: Optional[datetime] = None
    last_failure_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    batch_counts: Dict[str, int] = Field(default_factory=dict)
    total_counts: Dict[str, int] = Field(default_factory=dict)


class UnmatchedListing(BaseModel):
    listing_id: str
    address: str
    unit_number: str
    property_name_raw: str
    listing_type: str


class SyncResult(BaseModel):
    success: bool
    mode: Optional[FetchMode] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    unmatched_sample: List[UnmatchedListing] = Field(default_factory=list)
    analytics_summary: Dict[str, Any] = Field(default_factory=dict)
    latest_timestamp: Optional[str] = None
    duration_ms: int = 0
    error: Optional[str] = None
    details: Optional[str] = None


class SnapshotOut(BaseModel):
    listing_id: str
    captured_at: datetime
    status: Optional[str] = None
    list_price: Optional[float] = None
    days_on_market: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class StatusReport(BaseModel):
    active: SyncState
    analytics: SyncState
    next_mode: FetchMode
    cache: Dict[str, Any] = Field(default_factory=dict)


class AnalyticsStatusFilter(str, Enum):
    ALL = "all"
    CLOSED = "closed"
    PENDING = "pending"
    OFFMARKET = "offmarket"
    ACTIVE = "active"


class AnalyticsImportState(BaseModel):
    last_import_date: datetime
    total_imported: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    date_range_start: Optional[str] = None
    date_range_end: Optional[str] = None
    groups_affected: int = 0


class CsvImportRequest(BaseModel):
    csv_text: str


class ImportFileResult(BaseModel):
    file_name: str
    total_rows: int = 0
    parsed: int = 0
    errors: int = 0


class ImportResult(BaseModel):
    success: bool = True
    total_rows: int = 0
    total_imported: int = 0
    matched: int = 0
    unmatched: int = 0
    added: int = 0
    updated: int = 0
    deduped: int = 0
    groups_affected: int = 0
    date_range_start: Optional[str] = None
    date_range_end: Optional[str] = None
    detected_columns: Dict[str, str] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    files: List[ImportFileResult] = Field(default_factory=list)
    duration_ms: int = 0


class AnalyticsView(BaseModel):
    listings: List[AnalyticsRecord] = Field(default_factory=list)
    count: int = 0
    sync_state: SyncState
    import_state: Optional[AnalyticsImportState] = None
