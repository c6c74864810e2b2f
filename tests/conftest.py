# tests/conftest.py
import pytest
from sqlalchemy.orm import sessionmaker

from listing_sync.cache import CacheStore
from listing_sync.db import Base, make_engine
from listing_sync.enrichment import EnrichmentLookup
from listing_sync.matcher import AddressMatcher, Building
from listing_sync.schemas import ListingRecord, ListingStatus
import listing_sync.models  # noqa: F401 register tables on Base

BUILDINGS = [
    Building(slug="70-rainey", name="70 Rainey", address="70 Rainey St"),
    Building(slug="the-independent", name="The Independent", address="301 West Ave"),
    Building(slug="the-austonian", name="The Austonian", address="200 Congress Ave"),
    Building(slug="the-modern", name="The Modern", address="40 N IH 35"),
]


def make_listing(listing_id, address="70 Rainey St", status=ListingStatus.ACTIVE,
                 modified="2024-05-01T12:00:00Z", **kwargs):
    data = dict(
        listing_id=listing_id,
        address=address,
        unit_number=kwargs.pop("unit_number", "1201"),
        status=status,
        list_price=kwargs.pop("list_price", 500000.0),
        living_area=kwargs.pop("living_area", 1000.0),
        days_on_market=kwargs.pop("days_on_market", 10),
        modification_timestamp=modified,
    )
    data.update(kwargs)
    return ListingRecord(**data)


class FakeFeed:
    """In-memory feed: returns copies of whatever the test assigns."""

    def __init__(self, active=None, status_changed=None):
        self.active = list(active or [])
        self.status_changed = list(status_changed or [])
        self.active_calls = []
        self.status_calls = []
        self.active_error = None
        self.status_error = None

    def fetch_active(self, mode, since=None):
        self.active_calls.append(mode)
        if self.active_error:
            raise self.active_error
        return [r.model_copy() for r in self.active]

    def fetch_by_status(self, statuses, since):
        self.status_calls.append((tuple(statuses), since))
        if self.status_error:
            raise self.status_error
        return [r.model_copy() for r in self.status_changed]


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return CacheStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


@pytest.fixture
def matcher():
    return AddressMatcher(BUILDINGS)


@pytest.fixture
def enrichment(store):
    return EnrichmentLookup(store)


@pytest.fixture
def feed():
    return FakeFeed()
