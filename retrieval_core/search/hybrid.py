"""Hybrid lexical + relational search.

Both backends are queried concurrently and independently. A failing or
unconfigured backend contributes zero hits and a diagnostic note; the call
itself never raises.

Note vocabulary (joined with `` | ``)
- ``lexical:not_configured`` / ``relational:not_configured``
- ``lexical_error:<msg>`` / ``relational_error:<msg>``
- ``probe:backend_has_documents`` / ``probe:backend_empty`` /
  ``probe:fallback_query_used`` / ``probe_error:<msg>``
- ``mock-used`` when placeholder results were returned
- always last: ``search_ms=<n> lexical_hits=<n> relational_hits=<n>``
"""

import asyncio
import time
from typing import List, Optional, Tuple

import structlog

from ..common.logging import log_performance
from ..common.metrics import MetricsCollector
from .base import TextSearchBackend
from .fusion import ZScoreFusion
from .models import CandidateItem, CandidateSource, HybridSearchResult

logger = structlog.get_logger("search.hybrid")

SEARCH_SIZE = 50
PROBE_SIZE = 5
DEFAULT_PROBE_QUERY = "返品 送料"

# (hits, answered, notes)
_BackendOutcome = Tuple[List[CandidateItem], bool, List[str]]


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class HybridSearcher:
    """Fan a query out to the lexical and relational backends and fuse."""

    def __init__(
        self,
        lexical: Optional[TextSearchBackend] = None,
        relational: Optional[TextSearchBackend] = None,
        fusion: Optional[ZScoreFusion] = None,
        metrics: Optional[MetricsCollector] = None,
        probe_query: str = DEFAULT_PROBE_QUERY,
        probe_hits_as_results: bool = False,
        mock_on_failure: bool = False,
        size: int = SEARCH_SIZE,
        probe_size: int = PROBE_SIZE,
    ):
        self.lexical = lexical
        self.relational = relational
        self.fusion = fusion or ZScoreFusion()
        self.metrics = metrics
        self.probe_query = probe_query
        self.probe_hits_as_results = probe_hits_as_results
        self.mock_on_failure = mock_on_failure
        self.size = size
        self.probe_size = probe_size

    async def hybrid_search(self, query: str) -> HybridSearchResult:
        """Search both backends and return the fused, deduplicated list."""
        started = time.perf_counter()

        (lexical_hits, lexical_ok, lexical_notes), (relational_hits, relational_ok, relational_notes) = (
            await asyncio.gather(
                self._search_lexical(query),
                self._search_relational(query),
            )
        )
        notes = lexical_notes + relational_notes

        if not lexical_ok and not relational_ok and self.mock_on_failure:
            notes.append("mock-used")
            items = self._mock_items(query)
        else:
            items = self.fusion.fuse_results([lexical_hits, relational_hits])

        elapsed = _elapsed_ms(started)
        notes.append(
            f"search_ms={elapsed} lexical_hits={len(lexical_hits)} "
            f"relational_hits={len(relational_hits)}"
        )

        if self.metrics is not None:
            self.metrics.record_search("hybrid", elapsed / 1000.0)

        log_performance(
            "hybrid_search",
            elapsed,
            lexical_hits=len(lexical_hits),
            relational_hits=len(relational_hits),
            results_count=len(items),
        )
        return HybridSearchResult(items=items, ms=elapsed, note=" | ".join(notes))

    async def _search_lexical(self, query: str) -> _BackendOutcome:
        notes: List[str] = []
        if self.lexical is None:
            return [], False, ["lexical:not_configured"]

        try:
            hits = await self.lexical.search(query, self.size)
        except Exception as e:
            self._record_failure("lexical", e)
            return [], False, [f"lexical_error:{e}"]

        if not hits:
            hits = await self._probe(notes)
        return hits, True, notes

    async def _probe(self, notes: List[str]) -> List[CandidateItem]:
        """Tell "no matches" apart from "backend empty" with a fixed query."""
        try:
            probe_hits = await self.lexical.search(self.probe_query, self.probe_size)
        except Exception as e:
            self._record_failure("lexical_probe", e)
            notes.append(f"probe_error:{e}")
            return []

        if not probe_hits:
            notes.append("probe:backend_empty")
            return []
        if self.probe_hits_as_results:
            notes.append("probe:fallback_query_used")
            return probe_hits
        notes.append("probe:backend_has_documents")
        return []

    async def _search_relational(self, query: str) -> _BackendOutcome:
        if self.relational is None:
            return [], False, ["relational:not_configured"]

        try:
            hits = await self.relational.search(query, self.size)
        except Exception as e:
            self._record_failure("relational", e)
            return [], False, [f"relational_error:{e}"]
        return hits, True, []

    def _record_failure(self, backend: str, error: Exception) -> None:
        logger.warning("Search backend degraded", backend=backend, error=str(error))
        if self.metrics is not None:
            self.metrics.record_backend_error(backend)

    @staticmethod
    def _mock_items(query: str) -> List[CandidateItem]:
        return [
            CandidateItem(
                id="mock-lexical",
                text=f"Lexical mock for: {query}",
                score=1.0,
                source=CandidateSource.LEXICAL,
            ),
            CandidateItem(
                id="mock-relational",
                text=f"Relational mock for: {query}",
                score=0.8,
                source=CandidateSource.RELATIONAL,
            ),
        ]

    async def close(self) -> None:
        for backend in (self.lexical, self.relational):
            if backend is not None:
                await backend.close()
