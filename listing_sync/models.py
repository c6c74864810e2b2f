# listing_sync/models.py
"""SQLAlchemy ORM models for persisted entities.

`CacheEntry` is the key/value table behind the cache store (snapshots, the
reverse index, sync state, enrichment maps). `ListingSnapshot` is the
append-only lifecycle log.
"""
from sqlalchemy import Column, Integer, Text, Numeric, JSON, TIMESTAMP, func, Index
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base

class CacheEntry(Base):
    __tablename__ = "cache_entries"
    key = Column(Text, primary_key=True)
    value = Column(JSON().with_variant(JSONB, "postgresql"))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

class ListingSnapshot(Base):
    __tablename__ = "listing_snapshots"
    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Text, nullable=False, index=True)
    captured_at = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(Text)
    list_price = Column(Numeric(asdecimal=False))
    days_on_market = Column(Integer)

Index("idx_listing_snapshots_captured_at", ListingSnapshot.captured_at)
