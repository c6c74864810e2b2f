# tests/test_crud.py
import pytest
from sqlalchemy.orm import sessionmaker
from listing_sync import crud

@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()

def test_upsert_and_get(db):
    crud.set_entry(db, "mls:cache:test", {"records": [{"listing_id": "test123"}]})
    assert crud.get_entry(db, "mls:cache:test") == {"records": [{"listing_id": "test123"}]}

def test_set_entry_overwrites_existing_value(db):
    crud.set_entry(db, "k", [1, 2])
    crud.set_entry(db, "k", [3])
    db.expire_all()
    assert crud.get_entry(db, "k") == [3]

def test_list_keys_escapes_like_wildcards(db):
    crud.set_entry(db, "mls:cache:_unmatched", [])
    crud.set_entry(db, "mls:cache:70-rainey", [])
    crud.set_entry(db, "mlsXcache:other", [])
    assert crud.list_keys(db, "mls:cache:") == ["mls:cache:70-rainey", "mls:cache:_unmatched"]

def test_delete_entry(db):
    crud.set_entry(db, "gone", {})
    assert crud.delete_entry(db, "gone") is True
    assert crud.delete_entry(db, "gone") is False
    assert crud.get_entry(db, "gone") is None
