# listing_sync/crud.py
"""Key/value operations on `CacheEntry` rows plus the snapshot log.

`set_entry` is an idempotent upsert on the key; `lock_entry` reads a value
under a row lock so a read-modify-write stays inside one transaction.
"""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy import select, delete, func
from .models import CacheEntry, ListingSnapshot
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

def _insert_for(db: Session):
    return pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert

def get_entry(db: Session, key: str):
    obj = db.get(CacheEntry, key)
    return obj.value if obj else None

def lock_entry(db: Session, key: str):
    stmt = select(CacheEntry.value).where(CacheEntry.key == key).with_for_update()
    return db.execute(stmt).scalar_one_or_none()

def set_entry(db: Session, key: str, value: Any, commit: bool = True):
    table = CacheEntry.__table__
    stmt = _insert_for(db)(table).values(key=key, value=value)
    # refresh value and updated_at on re-run
    stmt = stmt.on_conflict_do_update(
        index_elements=["key"],
        set_={"value": stmt.excluded.value, "updated_at": func.now()},
    )
    db.execute(stmt)
    if commit:
        db.commit()

def delete_entry(db: Session, key: str):
    result = db.execute(delete(CacheEntry).where(CacheEntry.key == key))
    db.commit()
    return result.rowcount > 0

def list_keys(db: Session, prefix: str) -> List[str]:
    stmt = select(CacheEntry.key).where(CacheEntry.key.startswith(prefix, autoescape=True)).order_by(CacheEntry.key)
    return list(db.execute(stmt).scalars().all())

def add_snapshots(db: Session, rows: List[Dict[str, Any]]):
    db.add_all([ListingSnapshot(**row) for row in rows])
    db.commit()

def list_snapshots(db: Session, listing_id: Optional[str] = None, limit: int = 500):
    q = db.query(ListingSnapshot)
    if listing_id:
        q = q.filter(ListingSnapshot.listing_id == listing_id)
    return q.order_by(ListingSnapshot.captured_at, ListingSnapshot.id).limit(limit).all()
