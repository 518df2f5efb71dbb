"""
Fulfillment - billing events in, dose dispensations out.

Components:
    RecurringFulfillmentProcessor: initial, renewal and cancellation events
    PrescriptionSignals: payment, signature, cancellation, replacement, pause/resume
    HousekeepingSweeper: abandoned checkouts and orphaned subscriptions
    FulfillmentEngine: all of the above sharing one lock registry
"""

from titrate.fulfillment.collaborators import (
    BillingPlanUpdater,
    CatalogResolver,
    CatalogVariant,
    InMemoryNotificationSink,
    InMemoryOrderGateway,
    LoggingNotificationSink,
    MappingCatalogResolver,
    NotificationSink,
    OrderConfirmed,
    OrderFailed,
    OrderGateway,
    OrderResult,
    ScheduleCatalogResolver,
)
from titrate.fulfillment.events import (
    DoseAdvanced,
    LifecycleNotification,
    PrescriptionCompleted,
    SubscriptionCancelled,
)
from titrate.fulfillment.locks import PrescriptionLockRegistry
from titrate.fulfillment.processor import RecurringFulfillmentProcessor
from titrate.fulfillment.signals import PrescriptionSignals
from titrate.fulfillment.sweeper import HousekeepingSweeper, SweepReport
from titrate.fulfillment.engine import FulfillmentEngine, create_engine

__all__ = [
    "BillingPlanUpdater",
    "CatalogResolver",
    "CatalogVariant",
    "DoseAdvanced",
    "FulfillmentEngine",
    "HousekeepingSweeper",
    "InMemoryNotificationSink",
    "InMemoryOrderGateway",
    "LifecycleNotification",
    "LoggingNotificationSink",
    "MappingCatalogResolver",
    "NotificationSink",
    "OrderConfirmed",
    "OrderFailed",
    "OrderGateway",
    "OrderResult",
    "PrescriptionCompleted",
    "PrescriptionLockRegistry",
    "PrescriptionSignals",
    "RecurringFulfillmentProcessor",
    "ScheduleCatalogResolver",
    "SubscriptionCancelled",
    "SweepReport",
    "create_engine",
]
