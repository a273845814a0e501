"""Text search backend interface.

Both the lexical engine and the relational ranking source implement
``TextSearchBackend`` so hybrid search can query them the same way.
"""

from abc import ABC, abstractmethod
from typing import List

from .models import CandidateItem, CandidateSource


class TextSearchBackend(ABC):
    """Abstract full-text search backend."""

    source: CandidateSource

    @abstractmethod
    async def search(self, query: str, size: int) -> List[CandidateItem]:
        """Return up to ``size`` hits in backend rank order.

        Raises ``BackendUnavailableError`` on failure.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release client resources."""
        pass


class SearchBackendError(Exception):
    """Base exception for search backends."""
    pass


class BackendUnavailableError(SearchBackendError):
    """Backend could not be reached or rejected the query."""
    pass
