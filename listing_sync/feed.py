# listing_sync/feed.py
"""MLSGrid replication client.

Sales and leases both live on the OData `Property` resource and are told
apart by PropertyType. Results are paged through `@odata.nextLink` with a
delay between pages to stay far below MLSGrid's rate limits (warning at
4 req/sec, suspension at 6 req/sec).
"""
from datetime import timedelta
from time import sleep
from typing import Iterable, List, Optional, Protocol
from urllib.parse import quote

import requests

from . import config
from .errors import FeedError
from .schemas import FetchMode, ListingRecord, ListingStatus
from .utils import isoformat, logger, retry, utcnow


class FeedClient(Protocol):
    def fetch_active(self, mode: FetchMode, since: Optional[str] = None) -> List[ListingRecord]:
        ...

    def fetch_by_status(self, statuses: Iterable[ListingStatus], since: Optional[str]) -> List[ListingRecord]:
        ...


PROPERTY_TYPES = {"Sale": "Residential", "Lease": "Residential Lease"}

SELECT_FIELDS = ",".join([
    "ListingId", "ListingKey", "StreetNumber", "StreetName", "UnitNumber", "BuildingName",
    "ListPrice", "OriginalListPrice", "ClosePrice", "BedroomsTotal", "BathroomsTotalInteger",
    "LivingArea", "StandardStatus", "ListingContractDate", "CloseDate", "DaysOnMarket",
    "PropertyType", "PropertySubType", "MLSAreaMajor", "AssociationFee", "YearBuilt",
    "ListAgentFullName", "ListOfficeName", "ModificationTimestamp", "MlgCanView",
    "OriginatingSystemName",
])

_STATUS_ALIASES = {
    "active": ListingStatus.ACTIVE,
    "activeundercontract": ListingStatus.ACTIVE_UNDER_CONTRACT,
    "undercontract": ListingStatus.ACTIVE_UNDER_CONTRACT,
    "pending": ListingStatus.PENDING,
    "closed": ListingStatus.CLOSED,
    "withdrawn": ListingStatus.WITHDRAWN,
    "hold": ListingStatus.HOLD,
    "expired": ListingStatus.EXPIRED,
    "canceled": ListingStatus.CANCELED,
    "cancelled": ListingStatus.CANCELED,
    "delete": ListingStatus.DELETED,
    "deleted": ListingStatus.DELETED,
}


def normalize_status(value: Optional[str]) -> ListingStatus:
    key = "".join((value or "").lower().split())
    status = _STATUS_ALIASES.get(key)
    if status is None:
        # a blank status is an active listing; anything else is a feed change
        if key:
            logger.warning("Unknown StandardStatus %r, treating as Active", value)
        status = ListingStatus.ACTIVE
    return status


def _float(value) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _int(value) -> Optional[int]:
    f = _float(value)
    return int(f) if f is not None else None


def parse_listing(data: dict, listing_type: str) -> ListingRecord:
    address = f"{data.get('StreetNumber') or ''} {data.get('StreetName') or ''}".strip()
    photos = [m["MediaURL"] for m in data.get("Media") or [] if m.get("MediaURL")]
    return ListingRecord(
        listing_id=data.get("ListingId") or data.get("ListingKey") or "",
        address=address,
        unit_number=data.get("UnitNumber") or "",
        property_name_raw=data.get("BuildingName") or "",
        status=normalize_status(data.get("StandardStatus")),
        listing_type=listing_type,
        list_price=_float(data.get("ListPrice")),
        original_list_price=_float(data.get("OriginalListPrice")),
        close_price=_float(data.get("ClosePrice")),
        living_area=_float(data.get("LivingArea")),
        bedrooms_total=_int(data.get("BedroomsTotal")),
        bathrooms_total_integer=_int(data.get("BathroomsTotalInteger")),
        list_date=data.get("ListingContractDate"),
        close_date=data.get("CloseDate"),
        days_on_market=_int(data.get("DaysOnMarket")),
        modification_timestamp=data.get("ModificationTimestamp"),
        photos=photos,
        hoa_fee=_float(data.get("AssociationFee")),
        property_sub_type=data.get("PropertySubType"),
        year_built=_int(data.get("YearBuilt")),
        list_agent_full_name=data.get("ListAgentFullName"),
        list_office_name=data.get("ListOfficeName"),
    )


def _in_market(data: dict, area_major: Optional[str]) -> bool:
    if area_major and (data.get("MLSAreaMajor") or "") != area_major:
        return False
    sub_type = data.get("PropertySubType")
    if sub_type:
        lowered = sub_type.lower()
        return any(word in lowered for word in ("condo", "townhouse", "townhome"))
    return True


class MLSGridClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: str = config.MLSGRID_API_URL,
        originating_system: str = config.MLSGRID_ORIGINATING_SYSTEM,
        area_major: Optional[str] = config.MLS_AREA_MAJOR,
        page_size: int = config.FEED_PAGE_SIZE,
        request_delay: float = config.FEED_REQUEST_DELAY,
        lookback_days: int = config.ANALYTICS_LOOKBACK_DAYS,
        session: Optional[requests.Session] = None,
    ):
        self.access_token = access_token or config.MLSGRID_ACCESS_TOKEN
        if not self.access_token:
            raise RuntimeError("MLSGRID_ACCESS_TOKEN not set")
        self.base_url = base_url.rstrip("/")
        self.originating_system = originating_system
        self.area_major = area_major
        self.page_size = page_size
        self.request_delay = request_delay
        self.lookback_days = lookback_days
        self.session = session or requests.Session()
        self.request_count = 0

    def fetch_active(self, mode: FetchMode, since: Optional[str] = None) -> List[ListingRecord]:
        """Active listings: all viewable ones (initial) or those changed after `since`."""
        filters = ["StandardStatus eq 'Active'"]
        if mode == FetchMode.INITIAL:
            filters.append("MlgCanView eq true")
        elif since:
            filters.append(f"ModificationTimestamp gt {since}")
        listings = self._fetch_all(filters)
        logger.info("Replicated %d active listings (%d requests)", len(listings), self.request_count)
        return listings

    def fetch_by_status(self, statuses: Iterable[ListingStatus], since: Optional[str]) -> List[ListingRecord]:
        """Listings in any of `statuses` modified after `since`.

        Without a watermark the fetch is bounded to the last `lookback_days`.
        """
        if not since:
            since = isoformat(utcnow() - timedelta(days=self.lookback_days))
        clause = " or ".join(f"StandardStatus eq '{ListingStatus(s).value}'" for s in statuses)
        listings = self._fetch_all([f"({clause})", f"ModificationTimestamp gt {since}"])
        logger.info("Fetched %d status-changed listings since %s", len(listings), since)
        return listings

    def _fetch_all(self, filters: List[str]) -> List[ListingRecord]:
        results: List[ListingRecord] = []
        for listing_type, property_type in PROPERTY_TYPES.items():
            query = [
                f"OriginatingSystemName eq '{self.originating_system}'",
                f"PropertyType eq '{property_type}'",
            ] + filters
            next_url = (
                f"{self.base_url}/Property?$filter={quote(' and '.join(query))}"
                f"&$select={SELECT_FIELDS}&$expand=Media&$top={self.page_size}"
            )
            fetched = kept = 0
            while next_url:
                payload = self._get(next_url)
                for item in payload.get("value") or []:
                    fetched += 1
                    if _in_market(item, self.area_major):
                        results.append(parse_listing(item, listing_type))
                        kept += 1
                next_url = payload.get("@odata.nextLink")
                if next_url and self.request_delay:
                    sleep(self.request_delay)
            logger.info("%s: %d from API, %d after area/sub type filter", listing_type, fetched, kept)
        return results

    @retry((requests.ConnectionError, requests.Timeout), tries=3, delay=2, backoff=2)
    def _get(self, url: str) -> dict:
        self.request_count += 1
        response = self.session.get(
            url,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept-Encoding": "gzip",
            },
            timeout=60,
        )
        if not response.ok:
            raise FeedError(f"MLSGrid API error ({response.status_code}): {response.text[:500]}")
        return response.json()
