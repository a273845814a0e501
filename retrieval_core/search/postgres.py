"""PostgreSQL full-text ranking backend.

Uses ``ts_rank`` over ``to_tsvector`` of the document text as a secondary
lexical source.
"""

import re
from typing import Any, List, Optional

import asyncpg
import structlog
from asyncpg import Pool

from .base import BackendUnavailableError, TextSearchBackend
from .models import CandidateItem, CandidateSource

logger = structlog.get_logger("search.postgres")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class PostgresTextBackend(TextSearchBackend):
    """Relational text ranking via ``ts_rank``."""

    source = CandidateSource.RELATIONAL

    def __init__(
        self,
        dsn: Optional[str] = None,
        table: str = "docs",
        text_search_config: str = "simple",
        pool_size: int = 10,
        command_timeout: int = 60,
        pool: Optional[Any] = None,
    ):
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        if dsn is None and pool is None:
            raise ValueError("PostgresTextBackend requires a dsn or a pool")
        self.dsn = dsn
        self.table = table
        self.text_search_config = text_search_config
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = pool

    async def _get_pool(self) -> Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=self.command_timeout,
            )
            logger.info("Created text search connection pool", pool_size=self.pool_size)
        return self._pool

    async def search(self, query: str, size: int) -> List[CandidateItem]:
        """Rank documents matching ``query``."""
        sql = f"""
            SELECT id::text AS id, text,
                   ts_rank(to_tsvector($1::regconfig, text), plainto_tsquery($1::regconfig, $2)) AS rank
            FROM {self.table}
            WHERE to_tsvector($1::regconfig, text) @@ plainto_tsquery($1::regconfig, $2)
            ORDER BY rank DESC
            LIMIT $3
        """
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(sql, self.text_search_config, query, size)
        except Exception as e:
            logger.warning("Relational search failed", table=self.table, error=str(e))
            raise BackendUnavailableError(str(e)) from e

        return [
            CandidateItem(
                id=row["id"],
                text=row["text"] or "",
                score=float(row["rank"] or 0.0),
                source=self.source,
            )
            for row in rows
        ]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
