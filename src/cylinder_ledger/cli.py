"""Command-line entry points for the cylinder ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the events consumed by the business layer, and
printing the resulting reports. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .carry_forward import DailyLedgerReport
from .constants import IngestStatus, SaleType, ShipmentDirection, ShipmentStatus
from .events import InventoryCountEvent, OnboardingEvent, SalesEvent, ShipmentEvent


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def _iso_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{raw}', expected YYYY-MM-DD") from exc


def _iso_datetime(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid timestamp '{raw}'") from exc
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _today() -> date:
    return datetime.now(UTC).date()


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="cylinder-ledger",
        description="Command-line tools for the cylinder ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as catalog entries and events."""
    specs = {
        "add-size": register_add_size_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-driver": register_add_driver_command(subparsers),
        "set-active": register_set_active_command(subparsers),
        "onboard": register_onboard_command(subparsers),
        "sale": register_sale_command(subparsers),
        "shipment": register_shipment_command(subparsers),
        "complete-shipment": register_complete_shipment_command(subparsers),
        "stock-count": register_stock_count_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "ledger": register_ledger_command(subparsers),
        "outstanding": register_outstanding_command(subparsers),
        "receivables": register_receivables_command(subparsers),
        "alerts": register_alerts_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_size_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-size``."""
    name = "add-size"
    help_text = "Register a new cylinder size."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--size-id", required=True)
        parser.add_argument("--label", default=None)
        parser.add_argument("--low-stock-threshold", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_size)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product bound to a cylinder size."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--size-id", required=True)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--company-id", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_driver_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-driver``."""
    name = "add-driver"
    help_text = "Register a driver, optionally with opening receivables for one size."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--driver-id", required=True)
        parser.add_argument("--driver-name", required=True)
        parser.add_argument("--baseline-size-id", default=None)
        parser.add_argument("--baseline-date", type=_iso_date, default=None)
        parser.add_argument("--cylinder-receivables", type=int, default=0)
        parser.add_argument("--cash-receivables", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_driver)


def register_set_active_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-active``."""
    name = "set-active"
    help_text = "Activate a size, product, or driver, or deactivate it with --inactive."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", required=True, choices=("size", "product", "driver"))
        parser.add_argument("--id", dest="record_id", required=True)
        parser.add_argument("--inactive", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_active)


def register_onboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``onboard``."""
    name = "onboard"
    help_text = "Record the opening stock of a cylinder size."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--size-id", required=True)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--date", type=_iso_date, default=None)
        parser.add_argument("--full", type=int, required=True)
        parser.add_argument("--empty", type=int, required=True)
        parser.add_argument("--receivables", type=int, default=0)
        parser.add_argument("--total", type=int, default=None)
        parser.add_argument("--event-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_onboard)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a package or refill sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--sale-type", choices=[member.value for member in SaleType], required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--revenue", required=True)
        parser.add_argument("--discount", default="0")
        parser.add_argument("--cash-deposited", default="0")
        parser.add_argument("--cylinders-deposited", type=int, default=0)
        parser.add_argument("--driver-id", default=None)
        parser.add_argument("--date", type=_iso_date, default=None)
        parser.add_argument("--sale-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_shipment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``shipment``."""
    name = "shipment"
    help_text = "Record an incoming or outgoing shipment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--direction", choices=[member.value for member in ShipmentDirection], required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--cost", default="0")
        parser.add_argument("--refill", action="store_true", help="Mark an incoming full shipment as a refill purchase.")
        parser.add_argument(
            "--status",
            choices=[member.value for member in ShipmentStatus],
            default=ShipmentStatus.PENDING.value,
        )
        parser.add_argument("--date", type=_iso_date, default=None)
        parser.add_argument("--shipment-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_shipment)


def register_complete_shipment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``complete-shipment``."""
    name = "complete-shipment"
    help_text = "Mark a pending shipment as completed."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shipment-id", required=True)
        parser.add_argument("--completed-at", type=_iso_datetime, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_complete_shipment)


def register_stock_count_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock-count``."""
    name = "stock-count"
    help_text = "Record a manual count of full and empty cylinders."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--size-id", required=True)
        parser.add_argument("--full", type=int, required=True)
        parser.add_argument("--empty", type=int, required=True)
        parser.add_argument("--total", type=int, default=None)
        parser.add_argument("--date", type=_iso_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_count)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Show the daily cylinder ledger for a date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="date_from", type=_iso_date, required=True)
        parser.add_argument("--to", dest="date_to", type=_iso_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger_report)


def register_outstanding_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``outstanding``."""
    name = "outstanding"
    help_text = "List shipments outstanding at the end of a day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=_iso_date, default=None)
        parser.add_argument("--direction", choices=[member.value for member in ShipmentDirection], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_outstanding_report)


def register_receivables_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receivables``."""
    name = "receivables"
    help_text = "Show cylinders and cash owed by drivers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=_iso_date, default=None)
        parser.add_argument("--snapshot", action="store_true", help="Append the position to the snapshot history.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receivables_report)


def register_alerts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``alerts``."""
    name = "alerts"
    help_text = "List sizes at or below their low stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=_iso_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_alerts_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translators
# ---------------------------------------------------------------------------


def translate_onboard(args: argparse.Namespace) -> OnboardingEvent:
    """Translate CLI args into an onboarding event."""
    return OnboardingEvent(
        event_id=args.event_id or core_logic.generate_event_id(prefix="O"),
        date=args.date or _today(),
        cylinder_size_id=args.size_id,
        product_id=args.product_id,
        full_cylinders=args.full,
        empty_cylinders=args.empty,
        cylinder_receivables=args.receivables,
        total_cylinders=args.total,
    )


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> SalesEvent:
    """Translate CLI args into a sales event, resolving the product's size."""
    product = core_logic.get_product(context, args.product_id)
    sale_id = args.sale_id or core_logic.generate_event_id(prefix="SL")
    return SalesEvent(
        event_id=sale_id,
        sale_id=sale_id,
        date=args.date or _today(),
        product_id=product.product_id,
        cylinder_size_id=product.cylinder_size_id,
        sale_type=SaleType(args.sale_type),
        quantity=args.quantity,
        revenue=Decimal(args.revenue),
        discount=Decimal(args.discount),
        cash_deposited=Decimal(args.cash_deposited),
        cylinders_deposited=args.cylinders_deposited,
        driver_id=args.driver_id,
    )


def translate_shipment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> ShipmentEvent:
    """Translate CLI args into a shipment event, resolving the product's size."""
    product = core_logic.get_product(context, args.product_id)
    shipment_id = args.shipment_id or core_logic.generate_event_id(prefix="SH")
    status = ShipmentStatus(args.status)
    return ShipmentEvent(
        event_id=shipment_id,
        shipment_id=shipment_id,
        date=args.date or _today(),
        product_id=product.product_id,
        cylinder_size_id=product.cylinder_size_id,
        direction=ShipmentDirection(args.direction),
        quantity=args.quantity,
        cost=Decimal(args.cost),
        is_refill_purchase=args.refill,
        status=status,
        completed_at=datetime.now(UTC) if status is ShipmentStatus.COMPLETED else None,
    )


def translate_stock_count(args: argparse.Namespace) -> InventoryCountEvent:
    return InventoryCountEvent(
        event_id=core_logic.generate_event_id(prefix="C"),
        date=args.date or _today(),
        cylinder_size_id=args.size_id,
        full_cylinders=args.full,
        empty_cylinders=args.empty,
        total_cylinders=args.total,
    )


def report_ingest_result(result: core_logic.IngestResult) -> int:
    """Print the outcome of an ingested event and map it to an exit code."""
    print(f"{result.status.value}: {result.event_id}")
    for violation in result.violations:
        print(f"  {violation.code.value} {violation.field}: {violation.message}")
    if result.conflict is not None:
        print(f"  needs review: {result.conflict}")
    return 2 if result.status is IngestStatus.REJECTED else 0


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_size(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-size workflow in the BLL."""
    core_logic.add_cylinder_size(
        context, args.size_id, args.label or args.size_id, low_stock_threshold=args.low_stock_threshold
    )
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    core_logic.add_product(context, args.product_id, args.size_id, args.product_name, company_id=args.company_id)
    return 0


def run_add_driver(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-driver workflow, recording a baseline when requested."""
    core_logic.add_driver(context, args.driver_id, args.driver_name)
    if args.baseline_size_id:
        core_logic.add_driver_baseline(
            context,
            args.driver_id,
            args.baseline_size_id,
            args.baseline_date or _today(),
            cylinder_receivables=args.cylinder_receivables,
            cash_receivables=Decimal(args.cash_receivables),
        )
    return 0


def run_set_active(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    row = core_logic.set_catalog_active(context, args.kind, args.record_id, active=not args.inactive)
    print(f"{args.kind} {args.record_id} {'active' if row.is_active else 'inactive'}")
    return 0


def run_onboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return report_ingest_result(core_logic.ingest_event(context, translate_onboard(args)))


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return report_ingest_result(core_logic.ingest_event(context, translate_sale(context, args)))


def run_shipment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the shipment workflow, warning first when stock looks short."""
    event = translate_shipment(context, args)
    warnings = core_logic.check_shipment_availability(
        context,
        event.cylinder_size_id,
        event.direction,
        event.quantity,
        is_refill_purchase=event.is_refill_purchase,
        as_of=event.date,
    )
    for warning in warnings:
        print(f"warning: {warning.message}")
    return report_ingest_result(core_logic.ingest_event(context, event))


def run_complete_shipment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.complete_shipment(context, args.shipment_id, completed_at=args.completed_at)
    return report_ingest_result(result)


def run_stock_count(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return report_ingest_result(core_logic.ingest_event(context, translate_stock_count(args)))


def format_daily_report(report: DailyLedgerReport) -> List[str]:
    """Render one day of the ledger as printable lines."""
    if report.full_cylinders is None:
        lines = [f"{report.date} {report.status.value}"]
    else:
        lines = [
            f"{report.date} {report.status.value} full={report.full_cylinders} empty={report.empty_cylinders} "
            f"in_stock={report.empty_cylinders_in_stock} receivables={report.empty_cylinder_receivables} "
            f"outstanding_refill={report.outstanding_refill_orders} total={report.total_cylinders}"
        ]
    for size_id, breakdown in sorted(report.per_size_breakdown.items()):
        lines.append(
            f"  {size_id}: full={breakdown.full_cylinders} empty={breakdown.empty_cylinders} "
            f"sales={breakdown.package_sales_qty}/{breakdown.refill_sales_qty} total={breakdown.total_cylinders}"
        )
    for diagnostic in report.diagnostics:
        lines.append(f"  ! {diagnostic.cylinder_size_id} {diagnostic.field}: {diagnostic.message}")
    return lines


def run_ledger_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily ledger reporting workflow."""
    result = core_logic.build_daily_ledger(context, args.date_from, args.date_to or args.date_from)
    for day in sorted(result.reports):
        for line in format_daily_report(result.reports[day]):
            print(line)
    return 0


def run_outstanding_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the outstanding shipments reporting workflow."""
    direction = ShipmentDirection(args.direction) if args.direction else None
    for record in core_logic.list_outstanding(context, args.as_of or _today(), direction):
        print(
            f"{record.shipment_id} {record.shipment_date} {record.direction.value} "
            f"{record.cylinder_size_id} qty={record.quantity} status={record.status.value}"
        )
    return 0


def run_receivables_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the driver receivables reporting workflow."""
    as_of = args.as_of or _today()
    position = core_logic.receivables_position(context, as_of)
    for entry in position.drivers:
        print(f"{entry.driver_id} {entry.cylinder_size_id} cylinders={entry.cylinder_balance} cash={entry.cash_balance}")
    print(f"total cylinders={position.empty_cylinder_receivables()} cash={position.total_cash_receivables()}")
    if args.snapshot:
        core_logic.snapshot_receivables(context, as_of)
    return 0


def run_alerts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low stock alert workflow."""
    for alert in core_logic.check_low_stock(context, args.as_of or _today()):
        print(f"LOW {alert.cylinder_size_id} ({alert.label}): {alert.full_cylinders} <= {alert.threshold}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
