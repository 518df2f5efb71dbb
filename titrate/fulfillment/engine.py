"""
FulfillmentEngine - one object wiring the processor, signals and sweeper.

All three share a storage backend, a lock registry, a notification sink
and metrics, so a renewal, a replacement and a sweep touching the same
prescription are serialized.

Usage:
    >>> engine = create_engine(orders=MyOrderGateway())
    >>> await engine.start()
    >>>
    >>> await engine.signals.mark_paid(prescription.id)
    >>> await engine.process_billing_event(event)
    >>>
    >>> await engine.stop()
"""

from __future__ import annotations

from titrate.core.config import TitrateConfig, get_config
from titrate.core.logger import get_logger
from titrate.fulfillment.collaborators import (
    BillingPlanUpdater,
    CatalogResolver,
    InMemoryOrderGateway,
    NotificationSink,
    OrderGateway,
)
from titrate.fulfillment.locks import PrescriptionLockRegistry
from titrate.fulfillment.processor import RecurringFulfillmentProcessor
from titrate.fulfillment.signals import PrescriptionSignals
from titrate.fulfillment.sweeper import HousekeepingSweeper
from titrate.monitoring.prometheus import FulfillmentMetrics, default_metrics
from titrate.storage.interfaces import FulfillmentStorage
from titrate.types import BillingEvent, RenewalResult

logger = get_logger(__name__)


class FulfillmentEngine:
    """
    Facade over the fulfillment components.

    Attributes:
        storage: Shared storage backend
        processor: Billing event processor
        signals: Non-billing lifecycle signals
        sweeper: Housekeeping sweeps
    """

    def __init__(
        self,
        storage: FulfillmentStorage,
        orders: OrderGateway,
        catalog: CatalogResolver | None = None,
        notifier: NotificationSink | None = None,
        plan_updater: BillingPlanUpdater | None = None,
        metrics: FulfillmentMetrics | None = None,
        external_call_timeout: float = 10.0,
        pending_payment_ttl_days: int = 30,
    ):
        self.storage = storage
        self.locks = PrescriptionLockRegistry()

        shared = {
            "notifier": notifier,
            "locks": self.locks,
            "metrics": metrics,
            "external_call_timeout": external_call_timeout,
        }
        self.processor = RecurringFulfillmentProcessor(
            storage, orders, catalog=catalog, plan_updater=plan_updater, **shared
        )
        self.signals = PrescriptionSignals(storage, **shared)
        self.sweeper = HousekeepingSweeper(
            storage, pending_payment_ttl_days=pending_payment_ttl_days, **shared
        )

    async def start(self) -> None:
        await self.storage.initialize()
        logger.info(f"Fulfillment engine started on {type(self.storage).__name__}")

    async def stop(self) -> None:
        await self.storage.close()

    async def __aenter__(self) -> FulfillmentEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def process_billing_event(self, event: BillingEvent) -> RenewalResult:
        return await self.processor.process_billing_event(event)


def create_engine(
    config: TitrateConfig | None = None,
    orders: OrderGateway | None = None,
    catalog: CatalogResolver | None = None,
    notifier: NotificationSink | None = None,
    plan_updater: BillingPlanUpdater | None = None,
    metrics: FulfillmentMetrics | None = None,
) -> FulfillmentEngine:
    """
    Build an engine from configuration.

    Args:
        config: Configuration (default: the global one, see ``configure``)
        orders: Order gateway (default: InMemoryOrderGateway, for development)
        metrics: Metrics collector; when omitted one is created if
            ``config.metrics`` is enabled
    """
    config = config if config is not None else get_config()

    if orders is None:
        logger.warning("No order gateway configured; orders are kept in memory")
        orders = InMemoryOrderGateway()

    if metrics is None and config.metrics:
        metrics = default_metrics()

    return FulfillmentEngine(
        storage=config.storage,
        orders=orders,
        catalog=catalog,
        notifier=notifier,
        plan_updater=plan_updater,
        metrics=metrics,
        external_call_timeout=config.external_call_timeout,
        pending_payment_ttl_days=config.pending_payment_ttl_days,
    )
