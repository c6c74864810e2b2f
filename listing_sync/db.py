# listing_sync/db.py
"""Database engine and session utilities.

Centralized SQLAlchemy engine creation and the session factory.
The cache store keeps all of its keys in this database.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from . import config

def make_engine(url: str):
    # Normalize SQLAlchemy URL scheme (SQLAlchemy 2.x doesn't accept 'postgres://')
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # a single shared connection keeps an in-memory database alive
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    # tuned pool settings for cloud DB
    return create_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True
    )

engine = make_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
