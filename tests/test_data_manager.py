"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from cylinder_ledger import constants, data_manager
from cylinder_ledger.data_manager import LedgerDay, LedgerKey


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "TenantId") == "T1"
    assert parser.getint("Ledger", "Workers") == 2


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.tenant_id == "T1"
    assert settings.workers == 2
    assert settings.unit_timeout_seconds == 0
    assert settings.report_cache_ttl == 300


def test_parse_settings_applies_ledger_defaults(tmp_path):
    """The [Ledger] section is optional and falls back to module defaults."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile = ledger.xlsx\nTenantId = T9\nSchemaVersion = 1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.workers == data_manager.DEFAULT_WORKERS
    assert settings.report_cache_ttl == data_manager.DEFAULT_REPORT_CACHE_TTL
    assert settings.data_file == (tmp_path / "ledger.xlsx").resolve()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_zero_workers(tmp_path):
    """A worker pool needs at least one thread."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile = ledger.xlsx\nTenantId = T1\nSchemaVersion = 1.0.0\n[Ledger]\nWorkers = 0\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(data_manager.SHEET_COLUMNS) <= set(workbook.sheetnames)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_driver(workbook, data_manager.DriverRow("T1", "D7", "Jordan", True))
    copy_path = tmp_path / "copies" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy[constants.SheetName.DRIVERS.value].iter_rows(min_row=2, values_only=True))
    assert ("T1", "D7", "Jordan", True) in rows


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_cylinder_size(original, data_manager.CylinderSizeRow("T1", "12L", "12 litre", 10, True))
    data_manager.save_workbook(original, master_workbook_path)

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    sizes = list(data_manager.iter_cylinder_sizes(refreshed))
    assert sizes == [data_manager.CylinderSizeRow("T1", "12L", "12 litre", 10, True)]


# ---------------------------------------------------------------------------
# Catalog sheets
# ---------------------------------------------------------------------------


def test_iter_products_yields_product_rows(master_workbook_path):
    """iter_products should yield ProductRow instances for worksheet data."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[constants.SheetName.PRODUCTS.value].append(["T1", "P12", "ACME", "Gas 12L", "12L", True])

    products = list(data_manager.iter_products(workbook))
    assert products == [data_manager.ProductRow("T1", "P12", "ACME", "Gas 12L", "12L", True)]


def test_iter_cylinder_sizes_coerces_numeric_identifiers(master_workbook_path):
    """Sizes typed as numbers in Excel come back as strings."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[constants.SheetName.CYLINDER_SIZES.value].append(["T1", 12, None, "5", 1])

    (size,) = list(data_manager.iter_cylinder_sizes(workbook))
    assert size.cylinder_size_id == "12"
    assert size.label == "12"
    assert size.low_stock_threshold == 5
    assert size.is_active is True


def test_iter_drivers_includes_seeded_unassigned_driver(master_workbook_path):
    """The setup script seeds the pseudo driver owning tenant-level receivables."""

    workbook = data_manager.open_workbook(master_workbook_path)
    drivers = list(data_manager.iter_drivers(workbook))
    assert [driver.driver_id for driver in drivers] == [constants.UNASSIGNED_DRIVER]


def test_append_driver_baseline_round_trips(master_workbook_path):
    """Baselines keep their date and money precision through the sheet."""

    workbook = data_manager.open_workbook(master_workbook_path)
    baseline = data_manager.DriverBaselineRow("T1", "D1", "12L", date(2024, 1, 1), 4, Decimal("12.50"))
    data_manager.append_driver_baseline(workbook, baseline)

    assert list(data_manager.iter_driver_baselines(workbook)) == [baseline]


def test_iter_sheet_skips_blank_rows(master_workbook_path):
    """Fully empty rows left behind by manual edits are ignored."""

    workbook = data_manager.open_workbook(master_workbook_path)
    sheet = workbook[constants.SheetName.PRODUCTS.value]
    sheet.append([None, None, None, None, None, None])
    sheet.append(["T1", "P35", "ACME", "Gas 35L", "35L", True])

    assert [row.product_id for row in data_manager.iter_products(workbook)] == ["P35"]


def test_update_row_modifies_existing_row(master_workbook_path):
    """update_row should only touch the requested columns."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, data_manager.ProductRow("T1", "P12", "ACME", "Gas 12L", "12L", True))
    data_manager.update_row(
        workbook,
        constants.SheetName.PRODUCTS.value,
        {"TenantID": "T1", "ProductID": "P12"},
        field_values={"IsActive": False},
    )

    (product,) = list(data_manager.iter_products(workbook))
    assert product.is_active is False
    assert product.product_name == "Gas 12L"


def test_update_row_missing_raises(master_workbook_path):
    """Updating a non-existent row should raise KeyError."""

    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_row(
            workbook, constants.SheetName.PRODUCTS.value, {"ProductID": "missing"}, field_values={"IsActive": False}
        )


def test_locate_row_returns_row_index(master_workbook_path):
    """locate_row should return the 1-based worksheet row for a match."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_driver(workbook, data_manager.DriverRow("T1", "D1", "Driver One", True))

    assert data_manager.locate_row(workbook, constants.SheetName.DRIVERS.value, {"DriverID": "D1"}) == 3
    assert data_manager.locate_row(workbook, constants.SheetName.DRIVERS.value, {"DriverID": "D9"}) is None


def test_locate_row_rejects_unknown_column(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, constants.SheetName.DRIVERS.value, {"Nope": 1})


def test_replace_sheet_rows_keeps_header(master_workbook_path):
    """Rewriting a sheet replaces every data row but leaves the header alone."""

    workbook = data_manager.open_workbook(master_workbook_path)
    sheet_name = constants.SheetName.DIRTY_MARKERS.value
    data_manager.replace_sheet_rows(workbook, sheet_name, [["T1", "12L", "2024-01-01"], ["T1", "35L", "2024-01-02"]])
    written = data_manager.replace_sheet_rows(workbook, sheet_name, [["T1", "12L", "2024-01-03"]])

    assert written == 1
    rows = list(workbook[sheet_name].iter_rows(values_only=True))
    assert rows[0] == tuple(data_manager.SHEET_COLUMNS[sheet_name])
    assert rows[1:] == [("T1", "12L", "2024-01-03")]


# ---------------------------------------------------------------------------
# Coercion and (de)serialization
# ---------------------------------------------------------------------------


def test_to_money_rounds_half_up():
    assert data_manager.to_money("2.345") == Decimal("2.35")
    assert data_manager.to_money(None) == Decimal("0.00")
    assert data_manager.to_money(3) == Decimal("3.00")


def test_to_date_accepts_excel_datetimes():
    assert data_manager.to_date(datetime(2024, 1, 2, 13, 30)) == date(2024, 1, 2)
    assert data_manager.to_date("2024-01-02") == date(2024, 1, 2)


def test_ledger_columns_follow_dataclass_fields():
    """Every ledger field has a matching CamelCase column."""

    columns = data_manager.SHEET_COLUMNS[constants.SheetName.LEDGER_DAYS.value]
    assert columns[:4] == ["TenantID", "Date", "ProductID", "CylinderSizeID"]
    assert "PackageSalesQuantity" in columns
    assert "EmptyCylinderReceivables" in columns
    assert len(columns) == 4 + len(data_manager.LEDGER_FLOW_FIELDS)


def test_ledger_day_keeps_blank_balances_as_none():
    """A ledger row that was never computed must not read back as zero stock."""

    record = LedgerDay(
        tenant_id="T1",
        date=date(2024, 1, 2),
        product_id="P12",
        cylinder_size_id="12L",
        package_sales_quantity=3,
        package_sales_revenue=Decimal("30.00"),
    )
    restored = data_manager.deserialize_ledger_day(data_manager.serialize_ledger_day(record))

    assert restored == record
    assert restored.full_cylinders is None
    assert restored.has_balances is False


def test_deserialize_ledger_day_defaults_missing_product_to_size_row():
    raw = ["T1", "2024-01-01", None, "12L"] + [None] * len(data_manager.LEDGER_FLOW_FIELDS)
    record = data_manager.deserialize_ledger_day(raw)
    assert record.key == LedgerKey("T1", date(2024, 1, 1), constants.NO_PRODUCT, "12L")
    assert record.key.is_size_row
    assert record.sales_discount == Decimal("0.00")


def test_deserialize_shipment_treats_naive_timestamps_as_utc():
    raw = ["T1", "SH1", "2024-01-02", "P12", "12L", "INCOMING_FULL", 5, "40", True, "COMPLETED", "2024-01-04T08:00:00"]
    record = data_manager.deserialize_shipment(raw)

    assert record.direction is constants.ShipmentDirection.INCOMING_FULL
    assert record.status is constants.ShipmentStatus.COMPLETED
    assert record.completed_at == datetime(2024, 1, 4, 8, tzinfo=UTC)
    assert record.cost == Decimal("40.00")


def test_serialize_sale_preserves_order():
    record = data_manager.SaleRecord(
        tenant_id="T1",
        sale_id="SL1",
        sale_date=date(2024, 1, 2),
        driver_id="D1",
        product_id="P12",
        cylinder_size_id="12L",
        sale_type=constants.SaleType.REFILL,
        quantity=4,
        revenue=Decimal("40.00"),
        discount=Decimal("1.00"),
        cash_deposited=Decimal("20.00"),
        cylinders_deposited=2,
    )
    assert data_manager.serialize_sale(record) == [
        "T1",
        "SL1",
        "2024-01-02",
        "D1",
        "P12",
        "12L",
        "REFILL",
        4,
        Decimal("40.00"),
        Decimal("1.00"),
        Decimal("20.00"),
        2,
    ]
