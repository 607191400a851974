"""Backing store selection."""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from models import Base

from .config import ConfigurationError, EtlConfig
from .firestore_store import FirestoreContentStore, build_firestore_client
from .persistence import ContentStore, SqlContentStore

LOGGER = logging.getLogger(__name__)

_ENGINE_OPTIONS = {
    # Supabase sits behind a pooler; keep each process's footprint small.
    "pool_size": 2,
    "max_overflow": 0,
    "pool_pre_ping": True,
    "pool_recycle": 1800,
}


@lru_cache(maxsize=8)
def session_factory(db_url: str):
    options = {} if db_url.startswith("sqlite") else _ENGINE_OPTIONS
    engine = create_engine(db_url, **options)
    Base.metadata.create_all(engine)  # ensure required tables exist before queries
    return sessionmaker(bind=engine)


def build_store(config: EtlConfig) -> ContentStore:
    """Return the store selected by ``USE_SUPABASE``."""

    if config.use_supabase:
        if not config.db_url:
            raise ConfigurationError("SUPABASE_DB_URL is required when USE_SUPABASE is enabled")
        LOGGER.debug("Using Supabase backing store")
        return SqlContentStore(session_factory(config.db_url))

    LOGGER.debug("Using Firestore backing store")
    return FirestoreContentStore(build_firestore_client(config.firestore))


__all__ = ["build_store", "session_factory"]
