"""Shared pytest fixtures and utilities for cylinder ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Callable, Iterator

import pytest

# src layout: importable without installation
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cylinder_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from cylinder_ledger.events import OnboardingEvent, normalize_event  # noqa: E402
from cylinder_ledger.merge import LedgerMergeEngine  # noqa: E402
from cylinder_ledger.record_store import RecordStore  # noqa: E402
from cylinder_ledger.setup_excel import create_master_workbook  # noqa: E402
from cylinder_ledger.validator import CatalogContext  # noqa: E402

TENANT = "T1"
DAY0 = date(2024, 1, 1)
DAY1 = date(2024, 1, 2)
DAY2 = date(2024, 1, 3)
DAY3 = date(2024, 1, 4)
DAY4 = date(2024, 1, 5)
TODAY = date(2024, 2, 1)

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "TenantId = {tenant_id}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Ledger]\n"
    "Workers = {workers}\n"
    "UnitTimeoutSeconds = 0\n"
    "ReportCacheTTL = {cache_ttl}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    tenant_id: str
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        tenant_id: str = TENANT,
        filename: str = "ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, tenant_id=tenant_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return the path to a freshly created ledger workbook."""

    return workbook_factory()


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        tenant_id: str = TENANT,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        workers: int = 2,
        cache_ttl: float = 300,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", tenant_id=tenant_id)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                tenant_id=tenant_id,
                schema_version=schema_version,
                workers=workers,
                cache_ttl=cache_ttl,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            tenant_id=tenant_id,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def catalog_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context with sizes 12L and 35L and one product per size."""

    core_logic.add_cylinder_size(runtime_context, "12L", "12 litre", low_stock_threshold=10)
    core_logic.add_cylinder_size(runtime_context, "35L", "35 litre", low_stock_threshold=5)
    core_logic.add_product(runtime_context, "P12", "12L", "Gas 12L", company_id="ACME")
    core_logic.add_product(runtime_context, "P35", "35L", "Gas 35L", company_id="ACME")
    core_logic.add_driver(runtime_context, "D1", "Driver One")
    core_logic.add_driver(runtime_context, "D2", "Driver Two")
    return runtime_context


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> RecordStore:
    """Return an empty in-memory record store."""

    return RecordStore()


@pytest.fixture
def engine(store: RecordStore) -> LedgerMergeEngine:
    return LedgerMergeEngine(store)


@pytest.fixture
def onboard(engine: LedgerMergeEngine) -> Callable[..., None]:
    """Apply an onboarding event straight through the merge engine."""

    def _apply(
        size_id: str = "12L",
        *,
        full: int = 100,
        empty: int = 50,
        receivables: int = 0,
        day: date = DAY0,
        product_id: str | None = None,
        tenant_id: str = TENANT,
    ) -> None:
        event = OnboardingEvent(
            event_id=f"onb-{size_id}-{product_id or '-'}",
            date=day,
            cylinder_size_id=size_id,
            product_id=product_id,
            full_cylinders=full,
            empty_cylinders=empty,
            cylinder_receivables=receivables,
        )
        engine.apply(normalize_event(tenant_id, event))

    return _apply


def make_size(size_id: str, *, active: bool = True, threshold: int = 0) -> data_manager.CylinderSizeRow:
    return data_manager.CylinderSizeRow(TENANT, size_id, size_id, threshold, active)


def make_product(product_id: str, size_id: str, *, active: bool = True) -> data_manager.ProductRow:
    return data_manager.ProductRow(TENANT, product_id, "ACME", product_id, size_id, active)


@pytest.fixture
def catalog_factory() -> Callable[..., CatalogContext]:
    """Build validator catalogs around sizes 12L/35L and products P12/P35."""

    def _create(
        *,
        onboarded: frozenset = frozenset({("12L", constants.NO_PRODUCT)}),
        sizes_with_events: frozenset = frozenset(),
        known_shipments: frozenset = frozenset(),
        inactive_sizes: tuple = (),
        inactive_products: tuple = (),
        today: date = TODAY,
    ) -> CatalogContext:
        sizes = {
            size_id: make_size(size_id, active=size_id not in inactive_sizes) for size_id in ("12L", "35L")
        }
        products = {
            "P12": make_product("P12", "12L", active="P12" not in inactive_products),
            "P35": make_product("P35", "35L", active="P35" not in inactive_products),
        }
        return CatalogContext(
            tenant_id=TENANT,
            sizes=sizes,
            products=products,
            onboarded=onboarded,
            sizes_with_events=sizes_with_events,
            known_shipments=known_shipments,
            today=today,
        )

    return _create


def utc(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=UTC)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="cylinder-ledger", description="Cylinder ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
