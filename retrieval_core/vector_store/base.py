"""Base vector store interface.

Defines the abstract contract vector search depends on, independent of the
backing implementation.

All methods are asynchronous to support high-throughput services.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass
class VectorMatch:
    """A single nearest-neighbour hit with similarity in ``[0, 1]``."""

    id: str
    text: str
    similarity: float


class VectorStore(ABC):
    """Abstract base class for vector stores.

    Implementations must scope every query to a tenant and report similarity
    on a bounded ``[0, 1]`` scale, highest first.
    """

    @abstractmethod
    async def search_similar(
        self,
        query_vector: np.ndarray,
        tenant_id: str,
        limit: int = 5,
    ) -> List[VectorMatch]:
        """Search for the ``limit`` nearest documents of ``tenant_id``.

        Raises ``VectorStoreError`` subclasses on failure.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release any pooled connections."""
        pass


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass
