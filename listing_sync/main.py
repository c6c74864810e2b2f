from fastapi import FastAPI
from listing_sync import config
from listing_sync.api.routes import router as api_router
from listing_sync.db import Base, engine
import listing_sync.models  # noqa: F401 ensure models are imported so tables are known
from listing_sync.utils import logger

# create FastAPI instance
app = FastAPI(title="listing-sync")
app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    # Ensure database tables are created on startup
    Base.metadata.create_all(bind=engine)
    if config.SCHEDULER_ENABLED:
        from listing_sync.scheduler import start_scheduler
        start_scheduler()
    else:
        logger.info("Scheduler disabled; sync runs only when triggered")


@app.on_event("shutdown")
def on_shutdown():
    from listing_sync.scheduler import shutdown_scheduler
    shutdown_scheduler()
