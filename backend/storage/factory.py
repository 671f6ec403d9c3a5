import logging
from typing import Optional

from backend.core.config import settings
from backend.core.database import create_db_engine, get_database_url
from backend.storage.memory import InMemoryStore
from backend.storage.sql import SqlStore

logger = logging.getLogger("socialstory.storage")


def build_store(database_url: Optional[str] = None, *, env: Optional[str] = None):
    """SqlStore when a database URL is configured, otherwise the in-memory store.

    The in-memory store is per-process and not durable, so it is refused in
    production.
    """
    url = database_url or get_database_url()
    mode = (env or settings.ENV or "development").lower()
    if url:
        store = SqlStore(create_db_engine(url))
        logger.info("storage.selected", extra={"store": store.name, "dialect": store.engine.dialect.name})
        return store
    if mode == "production":
        raise RuntimeError("DATABASE_URL is required in production; the in-memory store is not durable")
    logger.warning("DATABASE_URL not set; using the in-memory store (data is lost on restart)")
    return InMemoryStore()
