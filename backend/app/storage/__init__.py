from __future__ import annotations

import logging
from typing import Optional, Union

from ..config import get_store_url
from .memory import MemoryStore
from .db import DatabaseStore
from .records import ConflictError, InteractionRecord, StoreError, UserRecord


logger = logging.getLogger(__name__)

ProfileStore = Union[MemoryStore, DatabaseStore]


def init_store(db_url: Optional[str] = None) -> ProfileStore:
    db_url = db_url or get_store_url()
    if db_url:
        try:
            logger.info("[STORAGE] DATABASE_URL found, initializing DatabaseStore...")
            store = DatabaseStore(db_url)
            logger.info("[STORAGE] DatabaseStore initialized successfully")
            return store
        except Exception as e:
            logger.warning("[STORAGE] Failed to initialize DatabaseStore: %s", e)
            logger.warning("[STORAGE] Falling back to MemoryStore")
    else:
        logger.warning("[STORAGE] No DATABASE_URL found, using MemoryStore (data will be lost on restart)")
    return MemoryStore()


__all__ = [
    "ConflictError",
    "DatabaseStore",
    "InteractionRecord",
    "MemoryStore",
    "ProfileStore",
    "StoreError",
    "UserRecord",
    "init_store",
]
