# listing_sync/config.py
"""Runtime configuration read from the environment (and `.env` if present)."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL") or "sqlite:///./listing_sync.db"
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))

MLSGRID_ACCESS_TOKEN = os.getenv("MLSGRID_ACCESS_TOKEN")
MLSGRID_API_URL = os.getenv("MLSGRID_API_URL", "https://api.mlsgrid.com/v2")
# Unlock MLS (Austin Board of REALTORS) publishes as 'actris'
MLSGRID_ORIGINATING_SYSTEM = os.getenv("MLSGRID_ORIGINATING_SYSTEM", "actris")
MLS_AREA_MAJOR = os.getenv("MLS_AREA_MAJOR", "DT")
FEED_PAGE_SIZE = int(os.getenv("FEED_PAGE_SIZE", "500"))
FEED_REQUEST_DELAY = float(os.getenv("FEED_REQUEST_DELAY", "2.0"))
ANALYTICS_LOOKBACK_DAYS = int(os.getenv("ANALYTICS_LOOKBACK_DAYS", "365"))
ANALYTICS_IMPORT_DIR = os.getenv("ANALYTICS_IMPORT_DIR", "data/imports")

MIN_INITIAL_LISTINGS = int(os.getenv("MIN_INITIAL_LISTINGS", "50"))
UNMATCHED_SAMPLE_SIZE = int(os.getenv("UNMATCHED_SAMPLE_SIZE", "50"))
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.75"))
BUILDINGS_FILE = os.getenv("BUILDINGS_FILE") or str(Path(__file__).parent / "data" / "buildings.json")

SYNC_INTERVAL_MINUTES = int(os.getenv("SYNC_INTERVAL_MINUTES", "15"))
SYNC_MAX_DURATION_SECONDS = int(os.getenv("SYNC_MAX_DURATION_SECONDS", "300"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"
CRON_SECRET = os.getenv("CRON_SECRET", "")
