"""
Prometheus metrics for billing-event processing.

Quick Start:
    >>> from titrate.monitoring.prometheus import FulfillmentMetrics, start_metrics_server
    >>>
    >>> start_metrics_server(port=8000)
    >>> metrics = FulfillmentMetrics()
    >>> processor = RecurringFulfillmentProcessor(..., metrics=metrics)
"""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

from titrate.core.logger import get_logger

logger = get_logger(__name__)


class FulfillmentMetrics:
    """
    Prometheus collector for the fulfillment engine.

    Exposes:
        - <prefix>_events_total: billing events by type and outcome
        - <prefix>_duplicate_events_total: redeliveries absorbed by the ledger
        - <prefix>_external_failures_total: catalog/order failures by collaborator
        - <prefix>_invariant_violations_total: prescriptions halted for review
        - <prefix>_stage_dispensed_total: dispensations by stage index
        - <prefix>_event_duration_seconds: processing time by event type

    Pass a dedicated ``registry`` when more than one instance lives in the
    same process (tests, multiple engines).
    """

    def __init__(self, prefix: str = "titrate", registry: CollectorRegistry | None = None):
        registry = registry if registry is not None else REGISTRY
        self._prefix = prefix

        self._events_total = Counter(
            f"{prefix}_events_total",
            "Billing events processed",
            ["event_type", "outcome"],
            registry=registry,
        )
        self._duplicates_total = Counter(
            f"{prefix}_duplicate_events_total",
            "Billing events skipped because the ledger already held them",
            registry=registry,
        )
        self._external_failures_total = Counter(
            f"{prefix}_external_failures_total",
            "Catalog or order collaborator failures",
            ["collaborator"],
            registry=registry,
        )
        self._invariant_violations_total = Counter(
            f"{prefix}_invariant_violations_total",
            "Prescriptions whose refills exceed their schedule depth",
            registry=registry,
        )
        self._stage_dispensed_total = Counter(
            f"{prefix}_stage_dispensed_total",
            "Dispensations by dose stage",
            ["stage_index"],
            registry=registry,
        )
        self._event_duration = Histogram(
            f"{prefix}_event_duration_seconds",
            "Billing event processing duration in seconds",
            ["event_type"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )

    def record_event(self, event_type: str, outcome: str, duration: float) -> None:
        self._events_total.labels(event_type=event_type, outcome=outcome).inc()
        self._event_duration.labels(event_type=event_type).observe(duration)

    def record_duplicate(self) -> None:
        self._duplicates_total.inc()

    def record_external_failure(self, collaborator: str) -> None:
        self._external_failures_total.labels(collaborator=collaborator).inc()

    def record_invariant_violation(self) -> None:
        self._invariant_violations_total.inc()

    def record_dispensed(self, stage_index: int) -> None:
        self._stage_dispensed_total.labels(stage_index=str(stage_index)).inc()


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:
    """
    Start a Prometheus HTTP metrics server.

    Example:
        >>> start_metrics_server(port=8000)
        >>> # Metrics available at http://localhost:8000/metrics
    """
    start_http_server(port, addr=addr)
    logger.info(f"Prometheus metrics server started on {addr}:{port}")


_default_metrics: FulfillmentMetrics | None = None


def default_metrics() -> FulfillmentMetrics:
    """Process-wide collector on the default registry, created on first use."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = FulfillmentMetrics()
    return _default_metrics
