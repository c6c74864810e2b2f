import argparse
import json

from dotenv import load_dotenv

# Load environment variables from .env before the package reads its config
load_dotenv()

from listing_sync.db import Base, engine  # noqa: E402
import listing_sync.models  # noqa: E402,F401
from listing_sync.cache import CacheStore  # noqa: E402
from listing_sync.services import run_sync  # noqa: E402
from listing_sync.sync import get_sync_status  # noqa: E402
from listing_sync.sync_state import Pipeline, reset_sync_state  # noqa: E402


def main():
    parser = argparse.ArgumentParser(description="Run one listing sync cycle from the project root.")
    parser.add_argument("--status", action="store_true", help="print sync status instead of syncing")
    parser.add_argument("--reset", choices=[p.value for p in Pipeline],
                        help="clear the in-progress flag and watermark for a pipeline")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    store = CacheStore()

    if args.reset:
        state = reset_sync_state(store, Pipeline(args.reset))
        print(json.dumps(state.model_dump(mode="json"), indent=2))
        return 0
    if args.status:
        print(json.dumps(get_sync_status(store).model_dump(mode="json"), indent=2))
        return 0

    result = run_sync(store)
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
