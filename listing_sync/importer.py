# listing_sync/importer.py
"""Historical analytics import from MLS CSV exports.

The live feed only reaches back as far as the analytics watermark, so older
transactions are loaded from CSV exports. Column names differ between
export tools; `COLUMN_ALIASES` maps the known spellings onto record fields.
Imported records go through the same matching, enrichment, upsert and
cross-group dedup as the sync's analytics phase.
"""
import csv
import io
import re
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import config
from .analytics import assign_groups, price_per_sqft, upsert_groups
from .errors import AnalyticsImportError
from .schemas import (
    AnalyticsImportState,
    AnalyticsRecord,
    ImportFileResult,
    ImportResult,
    ListingStatus,
)
from .utils import isoformat, logger, normalize_listing_id, utcnow

MAX_ROW_ERRORS = 50

COLUMN_ALIASES = {
    "listing_id": ["ListingId", "ListingID", "MLS ID", "MLS #", "MlsNumber", "Listing ID"],
    "address": ["Address", "StreetAddress", "Street Address", "Full Address"],
    "unit_number": ["UnitNumber", "Unit Number", "Unit", "Unit #", "UnitNorm"],
    "building_name": ["Building Name", "BuildingName", "SubdivisionName", "Subdivision"],
    "bedrooms_total": ["BedroomsTotal", "Bedrooms", "Beds", "BR", "# Beds"],
    "bathrooms_total_integer": ["BathroomsTotalInteger", "Bathrooms", "Baths", "BA", "# Baths"],
    "living_area": ["LivingArea", "Living Area", "Sqft", "SqFt", "Square Feet", "SF",
                    "Living Area Srch Sq Ft"],
    "list_price": ["ListPrice", "List Price"],
    "original_list_price": ["OriginalListPrice", "Original List Price", "Orig List Price"],
    "close_price": ["ClosePrice", "Close Price", "Closed Price", "SoldPrice", "Sold Price"],
    "close_date": ["CloseDate", "Close Date", "Closed Date", "Sold Date"],
    "status": ["MlsStatus", "StandardStatus", "Standard Status", "Status", "Listing Status"],
    "days_on_market": ["DaysOnMarket", "Days On Market", "DOM"],
    "list_date": ["ListingContractDate", "Listing Contract Date", "List Date"],
    "hoa_fee": ["HOA Fee", "AssociationFee", "Association Fee", "HOA"],
    "property_type": ["PropertyType", "Property Type"],
    "property_sub_type": ["PropertySubType", "Property Sub Type"],
    "year_built": ["YearBuilt", "Year Built"],
    "list_agent_full_name": ["Listing Agent", "ListAgentFullName", "List Agent", "List Agent Full Name"],
    "buyer_agent_full_name": ["Buyer Agent", "BuyerAgentFullName", "Buyer's Agent", "Buyer Agent Full Name"],
    "list_office_name": ["ListOfficeName", "List Office", "List Office Name"],
    "cp_lp": ["Closed Price/List Price", "CP/LP", "CP$/LP$ %"],
    "cp_olp": ["Closed Price/Original List Price", "Close Price/Original List Price", "CP/OLP",
               "CP$/OLP$ %"],
    "floor_plan": ["Floor Plan Name/Number", "FloorPlanName", "Floor Plan"],
}

# checked in order; "active under contract" must win over "active"
_STATUS_WORDS = [
    (("closed", "sold"), ListingStatus.CLOSED),
    (("pending",), ListingStatus.PENDING),
    (("active under contract",), ListingStatus.ACTIVE_UNDER_CONTRACT),
    (("active",), ListingStatus.ACTIVE),
    (("withdrawn",), ListingStatus.WITHDRAWN),
    (("hold",), ListingStatus.HOLD),
    (("expired",), ListingStatus.EXPIRED),
    (("canceled", "cancelled"), ListingStatus.CANCELED),
    (("delete",), ListingStatus.DELETED),
]

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_csv(text: str) -> Tuple[List[str], List[Dict[str, str]]]:
    """Return the header row and the non-blank data rows."""
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    headers = list(reader.fieldnames or [])
    rows = [row for row in reader if any((v or "").strip() for k, v in row.items() if k is not None)]
    return headers, rows


def detect_column_mapping(headers: Iterable[str]) -> Dict[str, str]:
    by_lower = {}
    for header in headers:
        by_lower.setdefault(header.strip().lower(), header)
    mapping = {}
    for field, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias.lower() in by_lower:
                mapping[field] = by_lower[alias.lower()]
                break
    return mapping


def normalize_date(raw: str) -> Optional[str]:
    """MLS exports write `MM/DD/YYYY [HH:MM:SS AM]`; return `YYYY-MM-DD`."""
    value = (raw or "").strip()
    if _ISO_DATE.match(value):
        return value[:10]
    m = _US_DATE.match(value)
    if m:
        return f"{m.group(3)}-{int(m.group(1)):02d}-{int(m.group(2)):02d}"
    return None


def parse_number(raw: str) -> Optional[float]:
    cleaned = (raw or "").replace("$", "").replace(",", "").replace("%", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _int(raw: str) -> Optional[int]:
    value = parse_number(raw)
    return int(value) if value is not None else None


def normalize_csv_status(raw: str) -> ListingStatus:
    lowered = (raw or "").strip().lower()
    for words, status in _STATUS_WORDS:
        if any(word in lowered for word in words):
            return status
    raise ValueError(f"unrecognized status {raw!r}")


def _ratio(raw: str, numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    value = parse_number(raw)
    if value:
        return value
    if numerator and denominator:
        return round(numerator / denominator, 4)
    return None


def row_to_record(row: Dict[str, str], columns: Dict[str, str], imported_at: str) -> Optional[AnalyticsRecord]:
    """Convert one CSV row; None for rows with neither an id nor an address."""
    def get(field):
        header = columns.get(field)
        return (row.get(header) or "").strip() if header else ""

    address = get("address")
    listing_id = normalize_listing_id(get("listing_id"))
    if not address and not listing_id:
        return None

    status = normalize_csv_status(get("status"))
    list_price = parse_number(get("list_price"))
    original_list_price = parse_number(get("original_list_price"))
    close_price = parse_number(get("close_price"))
    record = AnalyticsRecord(
        listing_id=listing_id or f"import-{address}-{get('unit_number')}",
        address=address,
        unit_number=get("unit_number"),
        property_name_raw=get("building_name"),
        property_name=get("building_name"),
        status=status,
        listing_type="Lease" if "lease" in get("property_type").lower() else "Sale",
        list_price=list_price,
        original_list_price=original_list_price or list_price,
        close_price=close_price,
        living_area=parse_number(get("living_area")),
        bedrooms_total=_int(get("bedrooms_total")),
        bathrooms_total_integer=_int(get("bathrooms_total_integer")),
        list_date=normalize_date(get("list_date")),
        close_date=normalize_date(get("close_date")),
        days_on_market=_int(get("days_on_market")),
        hoa_fee=parse_number(get("hoa_fee")),
        property_sub_type=get("property_sub_type") or None,
        year_built=_int(get("year_built")),
        list_agent_full_name=get("list_agent_full_name") or None,
        buyer_agent_full_name=get("buyer_agent_full_name") or None,
        list_office_name=get("list_office_name") or None,
        floor_plan=get("floor_plan") or None,
        cp_lp=_ratio(get("cp_lp"), close_price, list_price),
        cp_olp=_ratio(get("cp_olp"), close_price, original_list_price or list_price),
        source="csv-import",
        imported_at=imported_at,
    )
    return record.model_copy(update={"price_sf": price_per_sqft(record)})


class AnalyticsImporter:
    def __init__(self, matcher, enrichment, store):
        self.matcher = matcher
        self.enrichment = enrichment
        self.store = store

    def import_csv(self, csv_text: str) -> ImportResult:
        started = time.monotonic()
        if not csv_text or not csv_text.strip():
            raise AnalyticsImportError("Missing CSV text")
        records, file_result, columns, errors = self._parse(csv_text, "upload")
        if not file_result.total_rows:
            raise AnalyticsImportError("No valid rows found in CSV")
        result = ImportResult(total_rows=file_result.total_rows, detected_columns=columns, errors=errors)
        return self._store(records, result, started)

    def import_files(self, directory: Optional[str] = None) -> ImportResult:
        """Import every `*.csv` file in `directory` in one pass."""
        started = time.monotonic()
        path = Path(directory or config.ANALYTICS_IMPORT_DIR)
        if not path.is_dir():
            raise AnalyticsImportError(f"Import directory {path} does not exist")
        files = sorted(p for p in path.iterdir() if p.suffix.lower() == ".csv")
        if not files:
            raise AnalyticsImportError(f"No CSV files found in {path}")
        logger.info("Found %d CSV files in %s", len(files), path)

        result = ImportResult()
        records: List[AnalyticsRecord] = []
        for file in files:
            parsed, file_result, columns, errors = self._parse(file.read_text(encoding="utf-8"), file.name)
            if not file_result.total_rows:
                errors.append(f"[{file.name}] No valid rows found")
            records.extend(parsed)
            result.files.append(file_result)
            result.total_rows += file_result.total_rows
            result.detected_columns.update(columns)
            result.errors.extend(errors[: MAX_ROW_ERRORS - len(result.errors)])
        return self._store(records, result, started)

    def _parse(self, text: str, label: str):
        headers, rows = parse_csv(text)
        columns = detect_column_mapping(headers)
        logger.info("%s: %d rows, detected columns %s", label, len(rows), columns)

        imported_at = isoformat(utcnow())
        records: List[AnalyticsRecord] = []
        errors: List[str] = []
        failed = 0
        for i, row in enumerate(rows):
            try:
                record = row_to_record(row, columns, imported_at)
            except ValueError as e:
                failed += 1
                if len(errors) < MAX_ROW_ERRORS:
                    # +2: header line and 1-based numbering
                    errors.append(f"[{label} row {i + 2}] {e}")
                continue
            if record:
                records.append(record)
        file_result = ImportFileResult(file_name=label, total_rows=len(rows), parsed=len(records), errors=failed)
        return records, file_result, columns, errors

    def _store(self, records: List[AnalyticsRecord], result: ImportResult, started: float) -> ImportResult:
        self.enrichment.refresh()
        groups, matched, unmatched = assign_groups(records, self.matcher, self.enrichment)
        added, updated, deduped = upsert_groups(self.store, groups)

        dates = sorted(d for r in records for d in (r.close_date, r.list_date) if d)
        state = AnalyticsImportState(
            last_import_date=utcnow(),
            total_imported=len(records),
            matched_count=matched,
            unmatched_count=unmatched,
            date_range_start=dates[0] if dates else None,
            date_range_end=dates[-1] if dates else None,
            groups_affected=len(groups),
        )
        self.store.write_import_state(state)

        result = result.model_copy(update={
            "total_imported": len(records),
            "matched": matched,
            "unmatched": unmatched,
            "added": added,
            "updated": updated,
            "deduped": deduped,
            "groups_affected": len(groups),
            "date_range_start": state.date_range_start,
            "date_range_end": state.date_range_end,
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        logger.info(
            "Analytics import: %d listings (%d matched, %d unmatched), %d added, %d updated",
            len(records), matched, unmatched, added, updated,
        )
        return result
