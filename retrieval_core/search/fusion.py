"""Result fusion for hybrid search."""

from typing import Callable, List, Sequence

import numpy as np
import structlog

from .models import CandidateItem

logger = structlog.get_logger("search.fusion")

MAX_FUSED_RESULTS = 80


def z_score_normalizer(scores: Sequence[float]) -> Callable[[float], float]:
    """Build a population z-score function for one backend's scores.

    A zero variance (or an empty list) divides by one, so identical scores
    all map to 0 instead of being flagged.
    """
    values = np.asarray(scores, dtype=np.float64)
    mean = float(values.mean()) if values.size else 0.0
    variance = float(values.var()) if values.size else 0.0
    std = float(np.sqrt(variance or 1.0))

    def normalize(score: float) -> float:
        return (score - mean) / std

    return normalize


class ZScoreFusion:
    """Merge per-backend result lists on a common z-score scale.

    Each list is normalised independently, the union is sorted by normalised
    score (stable, so ties keep backend order), duplicates are dropped with
    the first occurrence winning, and the result is capped.
    """

    def __init__(self, limit: int = MAX_FUSED_RESULTS):
        self.limit = limit

    def fuse_results(self, result_lists: Sequence[List[CandidateItem]]) -> List[CandidateItem]:
        """Fuse backend lists; returned items keep their native scores."""
        scored = []
        for results in result_lists:
            normalize = z_score_normalizer([item.score for item in results])
            scored.extend((normalize(item.score), item) for item in results)

        scored.sort(key=lambda pair: -pair[0])

        fused: List[CandidateItem] = []
        seen = set()
        for _, item in scored:
            if item.id in seen:
                continue
            seen.add(item.id)
            fused.append(item)
            if len(fused) >= self.limit:
                break

        logger.debug(
            "Z-score fusion completed",
            input_lists=len(result_lists),
            input_count=len(scored),
            output_count=len(fused),
        )
        return fused
