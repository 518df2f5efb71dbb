"""
Titrate CLI Application - Built with Click.

Operational commands for the fulfillment engine:
- stage:  preview which dose stage a refill counter maps to
- show:   inspect a prescription and its subscription
- ledger: list the billing events fulfilled for a prescription
- sweep:  run housekeeping sweeps
- health: check the storage backend
"""

import asyncio
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from titrate.core.config import TitrateConfig
from titrate.core.logger import get_logger
from titrate.fulfillment.collaborators import InMemoryOrderGateway
from titrate.fulfillment.engine import FulfillmentEngine
from titrate.monitoring.logging import configure_logging
from titrate.progression import (
    current_stage_index,
    initial_stage_index,
    next_stage_index,
    should_advance,
    violates_schedule_depth,
)
from titrate.storage.factory import create_storage
from titrate.storage.health import HealthStatus

console = Console()
logger = get_logger(__name__)


# ============================================================================
# CLI Group
# ============================================================================


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(version="0.1.0", prog_name="titrate")
@click.option(
    "--storage",
    "storage_url",
    envvar="TITRATE_STORAGE_URL",
    default="memory://",
    show_default=True,
    help="Storage URL (memory://, sqlite:///path.db)",
)
@click.option("--log-level", default="WARNING", show_default=True, help="Log level")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def cli(ctx, storage_url: str, log_level: str, json_logs: bool):
    """
    Titrate - Dose titration and recurring fulfillment.

    \b
    Commands:
      stage     Preview the stage due for a refill counter
      show      Show a prescription and its subscription
      ledger    List fulfilled billing events for a prescription
      sweep     Cancel abandoned checkouts and orphaned subscriptions
      health    Check storage health
    """
    ctx.ensure_object(dict)
    ctx.obj["storage_url"] = storage_url
    configure_logging(level=log_level.upper(), json_format=json_logs)


def _open_storage(ctx):
    try:
        return create_storage(ctx.obj["storage_url"])
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--storage") from e


# ============================================================================
# titrate stage
# ============================================================================


@cli.command("stage")
@click.option("--stages", "-n", type=click.IntRange(min=0), required=True, help="Schedule length")
@click.option("--refills", "-r", type=click.IntRange(min=0), required=True, help="Refills left")
@click.option("--initial", is_flag=True, help="Treat as the initial order")
def stage_cmd(stages: int, refills: int, initial: bool):
    """Preview the stage a renewal would dispense."""
    max_stage = stages - 1 if stages else None

    if initial:
        current = initial_stage_index() if stages else None
    else:
        current = current_stage_index(refills, max_stage)

    table = Table(title="Dose progression")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("max stage", _fmt(max_stage))
    table.add_row("refills remaining", str(refills))
    table.add_row("order", "initial" if initial else "renewal")
    table.add_row("stage due", _fmt(current))
    if not initial:
        table.add_row("next stage", _fmt(next_stage_index(refills, max_stage)))
        table.add_row("should advance", str(should_advance(refills, max_stage)))
    console.print(table)

    if violates_schedule_depth(refills, max_stage):
        console.print(
            "[bold red]Refills exceed the schedule depth; "
            "this prescription would be halted for review[/bold red]"
        )
        sys.exit(2)


def _fmt(value) -> str:
    return "-" if value is None else str(value)


# ============================================================================
# titrate show
# ============================================================================


@cli.command("show")
@click.argument("prescription_id")
@click.pass_context
def show_cmd(ctx, prescription_id: str):
    """Show a prescription, its schedule and its subscription."""
    storage = _open_storage(ctx)
    prescription, subscription = asyncio.run(_load_prescription(storage, prescription_id))

    if prescription is None:
        console.print(f"[red]Prescription not found: {prescription_id}[/red]")
        sys.exit(1)

    console.print(
        Panel(
            f"Patient: {prescription.patient_id}\n"
            f"Prescriber: {prescription.prescriber_id}\n"
            f"Status: {prescription.status.value}\n"
            f"Refills remaining: {prescription.refills_remaining}\n"
            f"Start: {prescription.start_date}  End: {_fmt(prescription.end_date)}\n"
            f"Replaces: {_fmt(prescription.replaces)}  "
            f"Replaced by: {_fmt(prescription.replaced_by)}",
            title=f"Prescription {prescription.id}",
            border_style="blue",
        )
    )

    due = current_stage_index(
        prescription.refills_remaining, prescription.dose_schedule.max_stage
    )
    table = Table(title="Dose schedule")
    table.add_column("#", style="cyan")
    table.add_column("Dose")
    table.add_column("Variant")
    table.add_column("Price")
    for stage in prescription.dose_schedule:
        marker = " [bold green]← next[/bold green]" if stage.stage_index == due else ""
        table.add_row(
            str(stage.stage_index),
            stage.dose_label + marker,
            stage.catalog_variant_id,
            stage.price_id,
        )
    console.print(table)

    if subscription is None:
        console.print("No open subscription")
    else:
        console.print(
            f"Subscription {subscription.id}: {subscription.status.value} "
            f"(billing ref {_fmt(subscription.external_subscription_ref)})"
        )


async def _load_prescription(storage, prescription_id: str):
    async with storage:
        prescription = await storage.get_prescription(prescription_id)
        subscription = await storage.find_open_subscription(prescription_id)
        return prescription, subscription


# ============================================================================
# titrate ledger
# ============================================================================


@cli.command("ledger")
@click.argument("prescription_id")
@click.pass_context
def ledger_cmd(ctx, prescription_id: str):
    """List the billing events fulfilled for a prescription."""
    storage = _open_storage(ctx)
    entries = asyncio.run(_load_ledger(storage, prescription_id))

    if not entries:
        console.print(f"No ledger entries for {prescription_id}")
        return

    table = Table(title=f"Fulfillment ledger: {prescription_id}")
    table.add_column("Event", style="cyan")
    table.add_column("Stage")
    table.add_column("Order")
    table.add_column("Recorded")
    for entry in entries:
        table.add_row(
            entry.external_event_id,
            str(entry.stage_index_dispensed),
            _fmt(entry.order_ref),
            entry.created_at.isoformat(timespec="seconds"),
        )
    console.print(table)


async def _load_ledger(storage, prescription_id: str):
    async with storage:
        return await storage.list_ledger_entries(prescription_id)


# ============================================================================
# titrate sweep
# ============================================================================


@cli.command("sweep")
@click.option(
    "--ttl-days",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Cancel unpaid prescriptions older than this",
)
@click.pass_context
def sweep_cmd(ctx, ttl_days: int):
    """Cancel abandoned checkouts and orphaned subscriptions."""
    config = TitrateConfig(
        storage=_open_storage(ctx),
        pending_payment_ttl_days=ttl_days,
        metrics=False,
    )
    reports = asyncio.run(_run_sweeps(config))

    table = Table(title="Housekeeping")
    table.add_column("Sweep", style="cyan")
    table.add_column("Examined")
    table.add_column("Cancelled", style="green")
    table.add_column("Failed", style="red")
    for report in reports:
        table.add_row(
            report.name, str(report.examined), str(report.affected), str(report.failed)
        )
    console.print(table)

    if any(report.failed for report in reports):
        sys.exit(1)


async def _run_sweeps(config: TitrateConfig):
    engine = FulfillmentEngine(
        storage=config.storage,
        orders=InMemoryOrderGateway(),
        pending_payment_ttl_days=config.pending_payment_ttl_days,
    )
    async with engine:
        return await engine.sweeper.run_all()


# ============================================================================
# titrate health
# ============================================================================


@cli.command("health")
@click.pass_context
def health_cmd(ctx):
    """Check storage health."""
    storage = _open_storage(ctx)
    result = asyncio.run(_check_health(storage))

    icon = {
        HealthStatus.HEALTHY: "[green]●[/green]",
        HealthStatus.DEGRADED: "[yellow]●[/yellow]",
        HealthStatus.UNHEALTHY: "[red]○[/red]",
    }[result.status]

    table = Table(title="Storage Health")
    table.add_column("Backend", style="cyan")
    table.add_column("Status")
    table.add_column("Latency")
    table.add_column("Message")
    table.add_row(
        type(storage).__name__,
        f"{icon} {result.status.value}",
        f"{result.latency_ms:.1f} ms",
        result.message or "",
    )
    console.print(table)

    if not result.is_healthy:
        sys.exit(1)


async def _check_health(storage):
    async with storage:
        return await storage.health_check()


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
