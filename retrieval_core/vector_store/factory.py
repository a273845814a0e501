"""Vector store construction from ``SearchConfig``."""

from typing import Optional

import structlog

from ..common.config import SearchConfig
from .base import VectorStore
from .pgvector import PgVectorStore

logger = structlog.get_logger("vector_store.factory")


def create_vector_store_from_config(config: SearchConfig) -> Optional[VectorStore]:
    """Create the pgvector store from ``SearchConfig``.

    Returns ``None`` when no DSN is configured.
    """
    if not config.ml_search_db_dsn:
        logger.info("Vector store not configured")
        return None

    return PgVectorStore(
        dsn=config.ml_search_db_dsn,
        table=config.ml_vector_table,
        pool_size=config.ml_search_pool_size,
        command_timeout=config.ml_search_command_timeout,
        vector_dimension=config.ml_vector_dimension,
    )
