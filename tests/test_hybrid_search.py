"""Tests for hybrid lexical + relational search."""

import pytest
from prometheus_client import CollectorRegistry

from retrieval_core.common.config import SearchConfig
from retrieval_core.common.metrics import MetricsCollector, get_metrics_collector
from retrieval_core.search import hybrid as hybrid_module
from retrieval_core.search.base import BackendUnavailableError, TextSearchBackend
from retrieval_core.search.factory import create_hybrid_searcher
from retrieval_core.search.hybrid import HybridSearcher
from retrieval_core.search.models import CandidateItem, CandidateSource
from retrieval_core.search.opensearch import OpenSearchBackend
from retrieval_core.search.postgres import PostgresTextBackend


class FakeBackend(TextSearchBackend):
    """Backend answering from a query -> hits table."""

    def __init__(self, source, responses=None, error=None):
        self.source = source
        self.responses = responses or {}
        self.error = error
        self.calls = []
        self.closed = False

    async def search(self, query, size):
        self.calls.append((query, size))
        if self.error:
            raise self.error
        return [
            CandidateItem(id=id, text=f"text {id}", score=score, source=self.source)
            for id, score in self.responses.get(query, [])[:size]
        ]

    async def close(self):
        self.closed = True


def lexical(responses=None, error=None):
    return FakeBackend(CandidateSource.LEXICAL, responses, error)


def relational(responses=None, error=None):
    return FakeBackend(CandidateSource.RELATIONAL, responses, error)


@pytest.mark.asyncio
async def test_fuses_both_backends():
    searcher = HybridSearcher(
        lexical=lexical({"refund": [("a", 12.0), ("b", 4.0)]}),
        relational=relational({"refund": [("c", 0.5), ("a", 0.1)]}),
    )

    result = await searcher.hybrid_search("refund")

    assert [x.id for x in result.items] == ["a", "c", "b"]
    assert result.note.endswith("lexical_hits=2 relational_hits=2")
    assert result.note.startswith("search_ms=")
    assert result.ms >= 0


@pytest.mark.asyncio
async def test_lexical_failure_degrades_with_note():
    searcher = HybridSearcher(
        lexical=lexical(error=BackendUnavailableError("connection refused")),
        relational=relational({"q": [("c", 0.5)]}),
    )

    result = await searcher.hybrid_search("q")

    assert [x.id for x in result.items] == ["c"]
    assert "lexical_error:connection refused" in result.note
    assert "lexical_hits=0 relational_hits=1" in result.note


@pytest.mark.asyncio
async def test_unexpected_errors_never_escape():
    searcher = HybridSearcher(
        lexical=lexical(error=RuntimeError("boom")),
        relational=relational(error=ValueError("bad sql")),
    )

    result = await searcher.hybrid_search("q")

    assert result.items == []
    assert "lexical_error:boom" in result.note
    assert "relational_error:bad sql" in result.note


@pytest.mark.asyncio
async def test_probe_reports_backend_has_documents():
    backend = lexical({"返品 送料": [("p1", 3.0)]})
    searcher = HybridSearcher(lexical=backend, relational=relational())

    result = await searcher.hybrid_search("nothing matches")

    assert result.items == []
    assert "probe:backend_has_documents" in result.note
    assert backend.calls == [("nothing matches", 50), ("返品 送料", 5)]


@pytest.mark.asyncio
async def test_probe_reports_empty_backend():
    searcher = HybridSearcher(lexical=lexical(), relational=relational())
    result = await searcher.hybrid_search("anything")
    assert "probe:backend_empty" in result.note


@pytest.mark.asyncio
async def test_probe_hits_can_be_used_as_results():
    searcher = HybridSearcher(
        lexical=lexical({"fixed": [("p1", 3.0), ("p2", 1.0)]}),
        relational=relational(),
        probe_query="fixed",
        probe_hits_as_results=True,
    )

    result = await searcher.hybrid_search("nothing")

    assert [x.id for x in result.items] == ["p1", "p2"]
    assert "probe:fallback_query_used" in result.note


@pytest.mark.asyncio
async def test_probe_skipped_after_lexical_error():
    backend = lexical(error=BackendUnavailableError("down"))
    searcher = HybridSearcher(lexical=backend, relational=relational())

    result = await searcher.hybrid_search("q")

    assert len(backend.calls) == 1
    assert "probe" not in result.note


@pytest.mark.asyncio
async def test_mock_results_when_no_backend_answers():
    searcher = HybridSearcher(
        lexical=lexical(error=BackendUnavailableError("down")),
        relational=None,
        mock_on_failure=True,
    )

    result = await searcher.hybrid_search("shipping")

    assert [x.id for x in result.items] == ["mock-lexical", "mock-relational"]
    assert result.items[0].text == "Lexical mock for: shipping"
    assert "relational:not_configured" in result.note
    assert "mock-used" in result.note


@pytest.mark.asyncio
async def test_no_mock_when_a_backend_answered():
    searcher = HybridSearcher(
        lexical=lexical(error=BackendUnavailableError("down")),
        relational=relational(),
        mock_on_failure=True,
    )
    result = await searcher.hybrid_search("q")
    assert result.items == []
    assert "mock-used" not in result.note


@pytest.mark.asyncio
async def test_unconfigured_backends_without_mock():
    result = await HybridSearcher().hybrid_search("q")
    assert result.items == []
    assert result.note.startswith("lexical:not_configured | relational:not_configured")


@pytest.mark.asyncio
async def test_metrics_are_recorded():
    metrics = MetricsCollector("test", registry=CollectorRegistry())
    searcher = HybridSearcher(
        lexical=lexical(error=BackendUnavailableError("down")),
        relational=relational({"q": [("c", 1.0)]}),
        metrics=metrics,
    )

    await searcher.hybrid_search("q")

    text = metrics.get_metrics()
    assert 'retrieval_backend_errors_total{backend="lexical"} 1.0' in text
    assert 'retrieval_search_requests_total{kind="hybrid"} 1.0' in text


@pytest.mark.asyncio
async def test_timing_is_logged(monkeypatch):
    calls = []
    monkeypatch.setattr(hybrid_module, "log_performance", lambda *args, **kwargs: calls.append((args, kwargs)))
    searcher = HybridSearcher(lexical=lexical({"refund": [("a", 1.0)]}), relational=relational())

    result = await searcher.hybrid_search("refund")

    assert calls == [(
        ("hybrid_search", result.ms),
        {"lexical_hits": 1, "relational_hits": 0, "results_count": 1},
    )]


@pytest.mark.asyncio
async def test_close_closes_backends():
    lex, rel = lexical(), relational()
    await HybridSearcher(lexical=lex, relational=rel).close()
    assert lex.closed and rel.closed


class FakeOpenSearchClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def search(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.response

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_opensearch_backend_maps_hits():
    client = FakeOpenSearchClient({
        "hits": {"hits": [
            {"_id": "7", "_score": 2.5, "_source": {"text": "return policy"}},
            {"_id": "8", "_score": None, "_source": {}},
        ]}
    })
    backend = OpenSearchBackend(index_name="docs", timeout_ms=600, client=client)

    hits = await backend.search("return", 50)

    assert [(h.id, h.text, h.score) for h in hits] == [("7", "return policy", 2.5), ("8", "", 0.0)]
    assert hits[0].source == CandidateSource.LEXICAL
    call = client.calls[0]
    assert call["index"] == "docs"
    assert call["body"] == {"size": 50, "query": {"match": {"text": "return"}}}
    assert call["request_timeout"] == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_opensearch_backend_wraps_errors():
    backend = OpenSearchBackend(client=FakeOpenSearchClient(error=ConnectionError("refused")))
    with pytest.raises(BackendUnavailableError):
        await backend.search("q", 5)


def test_opensearch_backend_requires_hosts():
    with pytest.raises(ValueError):
        OpenSearchBackend(hosts=[])


class FakeConnection:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        if self.error:
            raise self.error
        return self.rows


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        return FakeAcquire(self.conn)

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_postgres_backend_ranks_with_ts_rank():
    conn = FakeConnection([{"id": "1", "text": "free shipping", "rank": 0.6}])
    backend = PostgresTextBackend(pool=FakePool(conn), table="docs", text_search_config="english")

    hits = await backend.search("shipping", 50)

    assert hits[0].id == "1" and hits[0].score == pytest.approx(0.6)
    assert hits[0].source == CandidateSource.RELATIONAL
    query, args = conn.calls[0]
    assert "ts_rank" in query and "FROM docs" in query
    assert args == ("english", "shipping", 50)


@pytest.mark.asyncio
async def test_postgres_backend_wraps_errors():
    backend = PostgresTextBackend(pool=FakePool(FakeConnection(error=OSError("reset"))))
    with pytest.raises(BackendUnavailableError):
        await backend.search("q", 5)


def test_factory_skips_unconfigured_backends(monkeypatch):
    monkeypatch.delenv("ML_OPENSEARCH_HOSTS", raising=False)
    monkeypatch.delenv("ML_SEARCH_DB_DSN", raising=False)
    monkeypatch.setenv("HYBRID_MOCK_ON_FAILURE", "true")

    searcher = create_hybrid_searcher(SearchConfig(_env_file=None))

    assert searcher.lexical is None
    assert searcher.relational is None
    assert searcher.mock_on_failure is True
    assert searcher.probe_query == "返品 送料"
    assert searcher.metrics is get_metrics_collector()


@pytest.mark.asyncio
async def test_factory_builds_configured_backends(monkeypatch):
    monkeypatch.setenv("ML_OPENSEARCH_HOSTS", "http://localhost:9200")
    monkeypatch.setenv("ML_SEARCH_DB_DSN", "postgresql://u:p@localhost/search")

    searcher = create_hybrid_searcher(SearchConfig(_env_file=None))

    assert isinstance(searcher.lexical, OpenSearchBackend)
    assert isinstance(searcher.relational, PostgresTextBackend)
    await searcher.close()
