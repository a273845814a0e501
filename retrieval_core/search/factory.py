"""Build searchers from ``SearchConfig``.

Backends whose endpoint is not configured are left out; hybrid search then
reports them as ``not_configured`` in its note.
"""

from typing import Optional

import structlog

from ..common.config import SearchConfig
from ..common.metrics import MetricsCollector, get_metrics_collector
from ..vector_store.factory import create_vector_store_from_config
from .hybrid import HybridSearcher
from .opensearch import OpenSearchBackend
from .postgres import PostgresTextBackend
from .vector import VectorSearcher

logger = structlog.get_logger("search.factory")


def create_hybrid_searcher(
    config: Optional[SearchConfig] = None,
    metrics: Optional[MetricsCollector] = None,
) -> HybridSearcher:
    """Create a ``HybridSearcher`` wired to the configured backends."""
    config = config or SearchConfig()
    metrics = metrics or get_metrics_collector()

    lexical = None
    if config.opensearch_hosts:
        lexical = OpenSearchBackend(
            hosts=config.opensearch_hosts,
            index_name=config.ml_opensearch_index,
            username=config.ml_opensearch_username,
            password=config.ml_opensearch_password,
            verify_certs=config.ml_opensearch_verify_certs,
            timeout_ms=config.hybrid_timeout_ms,
        )

    relational = None
    if config.ml_search_db_dsn:
        relational = PostgresTextBackend(
            dsn=config.ml_search_db_dsn,
            table=config.ml_search_text_table,
            text_search_config=config.ml_search_text_config,
            pool_size=config.ml_search_pool_size,
            command_timeout=config.ml_search_command_timeout,
        )

    logger.info(
        "Hybrid searcher created",
        lexical_configured=lexical is not None,
        relational_configured=relational is not None,
        mock_on_failure=config.hybrid_mock_on_failure,
    )
    return HybridSearcher(
        lexical=lexical,
        relational=relational,
        metrics=metrics,
        probe_query=config.hybrid_probe_query,
        probe_hits_as_results=config.hybrid_probe_hits_as_results,
        mock_on_failure=config.hybrid_mock_on_failure,
    )


def create_vector_searcher(
    config: Optional[SearchConfig] = None,
    metrics: Optional[MetricsCollector] = None,
) -> VectorSearcher:
    """Create a ``VectorSearcher`` over the configured pgvector table."""
    config = config or SearchConfig()
    metrics = metrics or get_metrics_collector()
    return VectorSearcher(create_vector_store_from_config(config), metrics=metrics)
