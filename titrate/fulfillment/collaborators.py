"""
External collaborator protocols.

The engine talks to four outside services and treats each as opaque:

- CatalogResolver: maps a dose stage onto catalog variant / price ids
- OrderGateway: creates the fulfillment order for a stage
- NotificationSink: receives lifecycle notifications (fire-and-forget)
- BillingPlanUpdater: re-points a billing subscription at the next price

In-memory implementations are provided for development and testing.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from titrate.core.logger import get_logger
from titrate.fulfillment.events import LifecycleNotification
from titrate.types import DoseStage

logger = get_logger(__name__)


@dataclass(frozen=True)
class CatalogVariant:
    """Catalog and billing identifiers for one dose stage."""

    catalog_variant_id: str
    price_id: str


@dataclass(frozen=True)
class OrderConfirmed:
    order_ref: str


@dataclass(frozen=True)
class OrderFailed:
    reason: str


OrderResult = OrderConfirmed | OrderFailed


# ============================================
# PROTOCOLS
# ============================================


@runtime_checkable
class CatalogResolver(Protocol):
    async def resolve_variant(self, stage: DoseStage) -> CatalogVariant | None:
        """
        Resolve the catalog identifiers for a stage.

        Returns:
            The variant, or None if the catalog has no match
        """
        ...


@runtime_checkable
class OrderGateway(Protocol):
    async def create_order(self, prescription_id: str, catalog_variant_id: str) -> OrderResult:
        """
        Request an order for one dispensation.

        Returns:
            OrderConfirmed on success, OrderFailed with a reason otherwise.
            Raising is also treated as a failure.
        """
        ...


@runtime_checkable
class NotificationSink(Protocol):
    async def publish(self, notification: LifecycleNotification) -> None:
        ...


@runtime_checkable
class BillingPlanUpdater(Protocol):
    async def update_plan(self, external_subscription_ref: str, price_id: str) -> None:
        """Charge the next renewal of the subscription at ``price_id``."""
        ...


# ============================================
# IMPLEMENTATIONS
# ============================================


class ScheduleCatalogResolver:
    """Uses the identifiers authored into the dose schedule."""

    async def resolve_variant(self, stage: DoseStage) -> CatalogVariant | None:
        if not stage.catalog_variant_id or not stage.price_id:
            return None
        return CatalogVariant(stage.catalog_variant_id, stage.price_id)


class MappingCatalogResolver:
    """
    Resolves stages through a static dose-label mapping.

    Example:
        >>> resolver = MappingCatalogResolver({
        ...     "2.5mg": CatalogVariant("gid://shop/Variant/1", "price_25"),
        ...     "5mg": CatalogVariant("gid://shop/Variant/2", "price_50"),
        ... })
    """

    def __init__(self, variants: Mapping[str, CatalogVariant], fallback_to_schedule: bool = False):
        self._variants = dict(variants)
        self._fallback = ScheduleCatalogResolver() if fallback_to_schedule else None

    async def resolve_variant(self, stage: DoseStage) -> CatalogVariant | None:
        variant = self._variants.get(stage.dose_label)
        if variant is None and self._fallback is not None:
            return await self._fallback.resolve_variant(stage)
        return variant


class LoggingNotificationSink:
    """Writes notifications to the log. Default when no sink is configured."""

    async def publish(self, notification: LifecycleNotification) -> None:
        logger.info(
            f"Notification {notification.event_type} for prescription "
            f"{notification.prescription_id}"
        )


class InMemoryNotificationSink:
    """
    Collects notifications in memory.

    Usage:
        >>> sink = InMemoryNotificationSink()
        >>> ...
        >>> sink.of_type(SubscriptionCancelled)
    """

    def __init__(self):
        self.notifications: list[LifecycleNotification] = []

    async def publish(self, notification: LifecycleNotification) -> None:
        self.notifications.append(notification)

    def of_type(self, notification_type: type) -> list[LifecycleNotification]:
        return [n for n in self.notifications if isinstance(n, notification_type)]

    def clear(self) -> None:
        self.notifications.clear()


class InMemoryOrderGateway:
    """
    Confirms every order and remembers it.

    Set ``fail_with`` to make subsequent orders fail with that reason.
    """

    def __init__(self):
        self.orders: list[tuple[str, str]] = []
        self.fail_with: str | None = None

    async def create_order(self, prescription_id: str, catalog_variant_id: str) -> OrderResult:
        if self.fail_with is not None:
            return OrderFailed(self.fail_with)
        self.orders.append((prescription_id, catalog_variant_id))
        return OrderConfirmed(order_ref=f"order-{len(self.orders)}")
