"""Metrics collection for the retrieval core.

Provides a thin convenience wrapper around ``prometheus_client`` so search
and rerank code records requests, backend failures and Cross-Encoder
inference consistently.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class MetricsCollector:
    """Centralized metrics collection for retrieval components.

    Parameters
    - service_name: Logical name of the owning service
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.search_requests = Counter(
            'retrieval_search_requests_total',
            'Total search requests',
            ['kind'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'retrieval_search_duration_seconds',
            'Search duration',
            ['kind'],
            registry=self.registry
        )

        self.backend_errors = Counter(
            'retrieval_backend_errors_total',
            'Search backend failures degraded to zero hits',
            ['backend'],
            registry=self.registry
        )

        self.rerank_requests = Counter(
            'retrieval_rerank_requests_total',
            'Total rerank requests by engine used',
            ['engine'],
            registry=self.registry
        )

        self.ce_inference_duration = Histogram(
            'retrieval_ce_inference_duration_seconds',
            'Cross-Encoder inference call duration',
            registry=self.registry
        )

        self.ce_pairs_scored = Counter(
            'retrieval_ce_pairs_scored_total',
            'Total (query, document) pairs scored by the Cross-Encoder',
            registry=self.registry
        )

    def record_search(self, kind: str, duration: float) -> None:
        """Record search metrics; ``duration`` is in seconds."""
        self.search_requests.labels(kind=kind).inc()
        self.search_duration.labels(kind=kind).observe(duration)

    def record_backend_error(self, backend: str) -> None:
        """Record a backend failure."""
        self.backend_errors.labels(backend=backend).inc()

    def record_rerank(self, engine: str) -> None:
        """Record a rerank outcome."""
        self.rerank_requests.labels(engine=engine).inc()

    def record_ce_inference(self, pairs: int, duration: float) -> None:
        """Record one Cross-Encoder inference call."""
        self.ce_pairs_scored.inc(pairs)
        self.ce_inference_duration.observe(duration)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str = "retrieval-core") -> MetricsCollector:
    """Get or create the metrics collector.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
