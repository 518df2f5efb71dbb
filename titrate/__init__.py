"""
Titrate - Dose titration and idempotent recurring fulfillment

Walks patients through a provider-authored dose-escalation schedule, one
stage per billing renewal, with support for:
- Pure progression arithmetic mapping refills onto schedule stages
- Prescription and subscription lifecycle state machines
- An idempotency ledger making each billing event dispense at most once
- Per-prescription locking for concurrent, redelivered events
- Replacement prescriptions and billing cancellations
- Housekeeping sweeps for abandoned checkouts and orphaned subscriptions
- Storage backends (Memory, SQLite)
- Prometheus metrics and structured JSON logging

Usage:
    >>> from titrate import (
    ...     BillingEvent, BillingEventType, DoseSchedule, Prescription, create_engine
    ... )
    >>>
    >>> schedule = DoseSchedule.from_labels([
    ...     ("2.5mg", "variant-25", "price-25"),
    ...     ("5mg", "variant-50", "price-50"),
    ...     ("7.5mg", "variant-75", "price-75"),
    ... ])
    >>> prescription = Prescription("patient-1", "doctor-1", schedule, refills_remaining=2)
    >>>
    >>> engine = create_engine(orders=MyOrderGateway())
    >>> await engine.storage.save_prescription(prescription)
    >>> await engine.signals.mark_paid(prescription.id)
    >>> await engine.signals.mark_signed(prescription.id)
    >>>
    >>> result = await engine.process_billing_event(
    ...     BillingEvent("inv_001", prescription.id, BillingEventType.RENEWAL)
    ... )
    >>> result.stage_index
    1
"""

from titrate.core.config import TitrateConfig, configure, get_config
from titrate.core.exceptions import (
    DuplicateEventError,
    ExternalFulfillmentError,
    InvalidStateError,
    NotFoundError,
    ScheduleDefinitionError,
    ScheduleInvariantViolation,
    TitrateError,
)
from titrate.core.logger import get_logger, set_logger
from titrate.fulfillment import (
    CatalogVariant,
    DoseAdvanced,
    FulfillmentEngine,
    HousekeepingSweeper,
    InMemoryNotificationSink,
    InMemoryOrderGateway,
    MappingCatalogResolver,
    OrderConfirmed,
    OrderFailed,
    PrescriptionCompleted,
    PrescriptionLockRegistry,
    PrescriptionSignals,
    RecurringFulfillmentProcessor,
    ScheduleCatalogResolver,
    SubscriptionCancelled,
    SweepReport,
    create_engine,
)
from titrate.ledger import IdempotencyLedger
from titrate.lifecycle import PrescriptionStateMachine, SubscriptionStateMachine
from titrate.storage import (
    FulfillmentStorage,
    InMemoryFulfillmentStorage,
    SQLiteFulfillmentStorage,
    create_storage,
)
from titrate.types import (
    BillingEvent,
    BillingEventType,
    DoseSchedule,
    DoseStage,
    FulfillmentLedgerEntry,
    Prescription,
    PrescriptionStatus,
    RenewalOutcome,
    RenewalResult,
    Subscription,
    SubscriptionStatus,
)

__version__ = "0.1.0"

__all__ = [
    "BillingEvent",
    "BillingEventType",
    "CatalogVariant",
    "DoseAdvanced",
    "DoseSchedule",
    "DoseStage",
    "DuplicateEventError",
    "ExternalFulfillmentError",
    "FulfillmentEngine",
    "FulfillmentLedgerEntry",
    "FulfillmentStorage",
    "HousekeepingSweeper",
    "IdempotencyLedger",
    "InMemoryFulfillmentStorage",
    "InMemoryNotificationSink",
    "InMemoryOrderGateway",
    "InvalidStateError",
    "MappingCatalogResolver",
    "NotFoundError",
    "OrderConfirmed",
    "OrderFailed",
    "Prescription",
    "PrescriptionCompleted",
    "PrescriptionLockRegistry",
    "PrescriptionSignals",
    "PrescriptionStateMachine",
    "PrescriptionStatus",
    "RecurringFulfillmentProcessor",
    "RenewalOutcome",
    "RenewalResult",
    "SQLiteFulfillmentStorage",
    "ScheduleCatalogResolver",
    "ScheduleDefinitionError",
    "ScheduleInvariantViolation",
    "Subscription",
    "SubscriptionCancelled",
    "SubscriptionStateMachine",
    "SubscriptionStatus",
    "SweepReport",
    "TitrateConfig",
    "TitrateError",
    "configure",
    "create_engine",
    "create_storage",
    "get_config",
    "get_logger",
    "set_logger",
]
