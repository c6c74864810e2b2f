# listing_sync/utils.py
"""Shared utilities such as logging, retry decorators and timestamp helpers."""
import os
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("listing-sync")

def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an upstream ISO 8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def normalize_listing_id(value: Optional[str]) -> str:
    """Drop the MLS board prefix so "ACT4939483" and "4939483" compare equal.

    Only a letter prefix in front of an all-digit MLS number is removed.
    """
    return re.sub(r"^[A-Za-z]+(?=\d{4,}$)", "", (value or "").strip())
