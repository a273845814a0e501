"""PgVector implementation of vector store.

Embeddings live in PostgreSQL using the pgvector extension. Nearest
neighbours are ordered by euclidean distance (``<->``); for unit-normalised
embeddings that distance lies in ``[0, 2]`` and is mapped to a similarity
of ``1 - d / 2``, clamped to ``[0, 1]``.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import re
from typing import Any, Iterable, List, Optional

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from .base import (
    VectorMatch,
    VectorStore,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def distance_to_similarity(distance: Optional[float]) -> float:
    """Map a ``[0, 2]`` distance to a ``[0, 1]`` similarity."""
    if distance is None:
        return 0.0
    similarity = 1.0 - float(distance) / 2.0
    if not np.isfinite(similarity):
        return 0.0
    return min(1.0, max(0.0, similarity))


class PgVectorStore(VectorStore):
    """PgVector implementation of vector store."""

    def __init__(
        self,
        dsn: str,
        table: str = "faq_embeddings",
        pool_size: int = 10,
        command_timeout: int = 60,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PgVector-backed vector store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - table: Table with ``id``, ``text``, ``embedding`` and ``tenant_id``
        - pool_size: Max size of asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Expected dimensionality for query vectors
        """
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.dsn = dsn
        self.table = table
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}")

        return self._pool

    async def _execute_query(self, query: str, *args: Any, fetch_one: bool = False) -> Any:
        """Run a read query, wrapping failures in ``VectorStoreQueryError``."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                return await conn.fetch(query, *args)
        except Exception as e:
            logger.error("Query execution failed", table=self.table, error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}")

    async def search_similar(
        self,
        query_vector: np.ndarray,
        tenant_id: str,
        limit: int = 5,
    ) -> List[VectorMatch]:
        """Search for the nearest embeddings of a tenant."""
        try:
            vector_array = self._ensure_vector_dimension(query_vector)
        except ValueError as e:
            raise VectorStoreQueryError(str(e))

        query = f"""
            SELECT id::text AS id, text, embedding <-> $1 AS distance
            FROM {self.table}
            WHERE tenant_id = $2
            ORDER BY embedding <-> $1
            LIMIT $3
        """
        rows = await self._execute_query(query, vector_array, tenant_id, max(1, limit))

        return [
            VectorMatch(
                id=row["id"],
                text=row["text"] or "",
                similarity=distance_to_similarity(row["distance"]),
            )
            for row in rows
        ]

    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
