"""
Monitoring - structured logging and Prometheus metrics.
"""

from titrate.monitoring.logging import (
    FulfillmentContextFilter,
    FulfillmentJsonFormatter,
    bind_fulfillment_context,
    configure_logging,
)
from titrate.monitoring.prometheus import FulfillmentMetrics, default_metrics, start_metrics_server

__all__ = [
    "FulfillmentContextFilter",
    "FulfillmentJsonFormatter",
    "FulfillmentMetrics",
    "bind_fulfillment_context",
    "configure_logging",
    "default_metrics",
    "start_metrics_server",
]
