"""OpenSearch lexical backend.

Runs a ``match`` query on the ``text`` field of one index. The request
timeout is a transport setting of the client; the core itself imposes no
deadline on the pipeline.
"""

from typing import Any, List, Optional

import structlog
from opensearchpy import AsyncOpenSearch

from .base import BackendUnavailableError, TextSearchBackend
from .models import CandidateItem, CandidateSource

logger = structlog.get_logger("search.opensearch")


class OpenSearchBackend(TextSearchBackend):
    """Lexical search against an OpenSearch index."""

    source = CandidateSource.LEXICAL

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        index_name: str = "docs",
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_certs: bool = False,
        timeout_ms: int = 600,
        client: Optional[Any] = None,
    ):
        """Initialize the backend.

        Args:
            hosts: List of OpenSearch host URLs
            index_name: Index holding the documents
            username: OpenSearch username
            password: OpenSearch password
            verify_certs: Whether to verify SSL certificates
            timeout_ms: Per-request transport timeout
            client: Pre-built async client, mainly for tests
        """
        self.index_name = index_name
        self.timeout_ms = timeout_ms

        if client is not None:
            self.client = client
        else:
            if not hosts:
                raise ValueError("OpenSearch requires at least one host")
            self.client = AsyncOpenSearch(
                hosts=hosts,
                http_auth=(username, password) if username and password else None,
                verify_certs=verify_certs,
                ssl_show_warn=False,
                use_ssl=hosts[0].startswith("https"),
            )

    async def search(self, query: str, size: int) -> List[CandidateItem]:
        """Match ``query`` against the ``text`` field."""
        body = {"size": size, "query": {"match": {"text": query}}}
        try:
            response = await self.client.search(
                index=self.index_name,
                body=body,
                request_timeout=self.timeout_ms / 1000.0,
            )
        except Exception as e:
            logger.warning("Lexical search failed", index=self.index_name, error=str(e))
            raise BackendUnavailableError(str(e)) from e

        hits = (response.get("hits") or {}).get("hits") or []
        return [
            CandidateItem(
                id=str(hit.get("_id")),
                text=(hit.get("_source") or {}).get("text") or "",
                score=float(hit.get("_score") or 0.0),
                source=self.source,
            )
            for hit in hits
        ]

    async def close(self) -> None:
        await self.client.close()
