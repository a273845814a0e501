"""Tenant-scoped vector search.

Embeddings are supplied by the caller. Store failures degrade to an empty
result with elapsed time; the call never raises.
"""

import time
from typing import Optional, Sequence

import structlog

from ..common.logging import log_performance
from ..common.metrics import MetricsCollector
from ..vector_store.base import VectorStore
from .models import CandidateItem, CandidateSource, VectorSearchResult

logger = structlog.get_logger("search.vector")

DEFAULT_TOP_K = 5


class VectorSearcher:
    """Nearest-neighbour search over a ``VectorStore``."""

    def __init__(self, store: Optional[VectorStore], metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics

    async def search_vector(
        self,
        tenant_id: str,
        embedding: Sequence[float],
        top_k: int = DEFAULT_TOP_K,
    ) -> VectorSearchResult:
        """Return up to ``top_k`` hits with similarity in ``[0, 1]``."""
        if self.store is None:
            return VectorSearchResult(note="vector:not_configured")
        if embedding is None or len(embedding) == 0:
            return VectorSearchResult(note="vector:empty_embedding")

        started = time.perf_counter()
        try:
            matches = await self.store.search_similar(embedding, tenant_id, limit=max(1, top_k))
        except Exception as e:
            elapsed = int(round((time.perf_counter() - started) * 1000))
            logger.warning(
                "Vector search degraded",
                tenant_id=tenant_id,
                error=str(e),
                duration_ms=elapsed,
            )
            if self.metrics is not None:
                self.metrics.record_backend_error("vector")
            return VectorSearchResult(ms=elapsed, note=f"vector_error:{type(e).__name__}:{e}")

        elapsed = int(round((time.perf_counter() - started) * 1000))
        items = [
            CandidateItem(
                id=match.id,
                text=match.text,
                score=min(1.0, max(0.0, match.similarity)),
                source=CandidateSource.VECTOR,
            )
            for match in matches
        ]

        if self.metrics is not None:
            self.metrics.record_search("vector", elapsed / 1000.0)

        log_performance("vector_search", elapsed, tenant_id=tenant_id, results_count=len(items))
        return VectorSearchResult(
            items=items,
            ms=elapsed,
            note=None if items else "vector:no_hits",
        )
