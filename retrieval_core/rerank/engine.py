"""Two-stage reranking.

Stage 1 always runs: a lexical heuristic orders every candidate. Stage 2
re-orders the top window with the Cross-Encoder when the gate allows it.
Any Stage 2 failure falls back to the Stage 1 order, so ``rerank`` never
raises for engine problems.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..common.logging import log_performance
from ..common.metrics import MetricsCollector, get_metrics_collector
from ..search.models import CandidateItem
from .ce_engine import CeEngine, CeEngineKind, InferenceError, get_ce_engine

logger = structlog.get_logger("rerank.engine")

SCORE_TIE_BREAK_WEIGHT = 1e-6


class RerankEngineUsed(str, Enum):
    """Which path produced a rerank result."""
    HEURISTIC = "heuristic"
    CE = "ce"
    CE_FALLBACK = "ce_fallback"


@dataclass
class RerankResult:
    """Ordered candidates; ``elapsed_ms`` covers Stage 2 only."""

    items: List[CandidateItem] = field(default_factory=list)
    elapsed_ms: int = 0
    engine_used: RerankEngineUsed = RerankEngineUsed.HEURISTIC

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "ce_ms": self.elapsed_ms,
            "engine": self.engine_used.value,
        }


def heuristic_score(query_tokens: Sequence[str], item: CandidateItem) -> float:
    """Fraction of query tokens found in the text, plus a tiny score term."""
    tie_break = (item.score or 0.0) * SCORE_TIE_BREAK_WEIGHT
    if not query_tokens:
        return tie_break
    text = (item.text or "").lower()
    matches = sum(1 for token in query_tokens if token in text)
    return matches / len(query_tokens) + tie_break


def heuristic_rank(query: str, items: Sequence[CandidateItem]) -> List[CandidateItem]:
    """Stage 1 ordering: heuristic score, then original score, both descending."""
    query_tokens = query.lower().split()
    scored = [(heuristic_score(query_tokens, item), item) for item in items]
    scored.sort(key=lambda pair: (-pair[0], -(pair[1].score or 0.0)))
    return [item for _, item in scored]


class RerankEngine:
    """Rerank candidates with a heuristic and, when gated in, a Cross-Encoder."""

    def __init__(
        self,
        ce_engine: Optional[CeEngine] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.metrics = metrics or get_metrics_collector()
        self.ce_engine = ce_engine or get_ce_engine(self.metrics)

    def should_use_ce(self, query: str, window_size: int) -> bool:
        """Decide whether Stage 2 is attempted.

        Whether the model is already loaded is not checked; ``score_batch``
        loads it lazily.
        """
        config = self.ce_engine.config
        if len((query or "").strip()) < config.min_query_chars:
            return False
        if window_size <= 1:
            return False
        if self.ce_engine.kind != CeEngineKind.NEURAL:
            return False
        return self.ce_engine.status().last_error is None

    async def rerank(
        self,
        query: str,
        items: Sequence[CandidateItem],
        top_k: int = 5,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RerankResult:
        """Return at most ``top_k`` of ``items`` in reranked order."""
        if not items:
            return self._finish(RerankResult())

        safe_top_k = max(1, top_k)
        ranked = heuristic_rank(query, items)
        window_size = min(self.ce_engine.config.candidate_window_size, len(ranked))

        if not self.should_use_ce(query, window_size):
            return self._finish(RerankResult(items=ranked[:safe_top_k]))

        window = ranked[:window_size]
        started = time.perf_counter()
        try:
            scores = await self.ce_engine.score_batch(
                query, [item.text or "" for item in window], cancel_event=cancel_event
            )
            if len(scores) != len(window):
                raise InferenceError(f"expected {len(window)} scores, got {len(scores)}")
            order = sorted(
                range(len(window)),
                key=lambda i: (-scores[i], -(window[i].score or 0.0)),
            )
            result = RerankResult(
                items=[window[i] for i in order][:safe_top_k],
                engine_used=RerankEngineUsed.CE,
            )
        except Exception as e:
            logger.warning(
                "Cross-Encoder rerank failed, using heuristic order",
                error=str(e),
                error_type=type(e).__name__,
                window_size=window_size,
            )
            result = RerankResult(
                items=ranked[:safe_top_k],
                engine_used=RerankEngineUsed.CE_FALLBACK,
            )

        result.elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        log_performance(
            "rerank",
            result.elapsed_ms,
            engine=result.engine_used.value,
            window_size=window_size,
        )
        return self._finish(result)

    def _finish(self, result: RerankResult) -> RerankResult:
        self.metrics.record_rerank(result.engine_used.value)
        return result

    async def warmup(self) -> Dict[str, Any]:
        """Warm the engine up and summarise the outcome for health probes."""
        status = await self.ce_engine.warmup()
        ok = status.model_loaded and status.last_error is None
        summary: Dict[str, Any] = {
            "ok": ok,
            "engine": CeEngineKind.NEURAL.value if ok else CeEngineKind.INERT.value,
        }
        if ok:
            summary["model"] = status.model_path
        if status.last_error is not None:
            summary["error"] = status.last_error
        return summary

    def ce_status(self) -> Dict[str, Any]:
        """Compact, read-only engine summary."""
        status = self.ce_engine.status()
        loaded = status.model_loaded and status.last_error is None
        return {
            "model_loaded": loaded,
            "engine": CeEngineKind.NEURAL.value if loaded else CeEngineKind.INERT.value,
            "error": status.last_error,
        }
