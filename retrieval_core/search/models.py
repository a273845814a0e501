"""Result types shared by search and rerank."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class CandidateSource(str, Enum):
    """Backend a candidate was retrieved from."""
    LEXICAL = "lexical"
    RELATIONAL = "relational"
    VECTOR = "vector"


@dataclass
class CandidateItem:
    """A retrieved document with its backend-native score.

    Scores are only comparable across sources after normalisation.
    """

    id: str
    text: str
    score: float
    source: CandidateSource

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


@dataclass
class HybridSearchResult:
    """Fused lexical and relational hits."""

    items: List[CandidateItem] = field(default_factory=list)
    ms: int = 0
    note: Optional[str] = None


@dataclass
class VectorSearchResult:
    """Tenant-scoped nearest-neighbour hits."""

    items: List[CandidateItem] = field(default_factory=list)
    ms: int = 0
    note: Optional[str] = None
