"""Fixtures shared by the party ledger test modules.

Workbooks are built from the real template in :mod:`party_ledger.setup_excel`
and filled with rows from :class:`RecordFactory`.
"""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence
from unittest.mock import Mock

import openpyxl
import pytest

# Lets the suite run from a checkout without ``pip install -e .``.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from party_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from party_ledger.setup_excel import create_template_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_PARTY = "Acme Traders"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Ledger]\n"
    "Currency = PKR\n"
    "CurrencyExponent = 2\n"
    "LinkedPaymentPolicy = {policy}\n"
    "FetchWorkers = 4\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Paths and values behind one generated config.ini."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    business_name: str


class RecordFactory:
    """Build raw records shaped like the rows of each record sheet."""

    def __init__(self, party: str = DEFAULT_PARTY) -> None:
        self.party = party

    def sale(self, when: Any, total: Any, received: Any = 0, **extra: Any) -> Dict[str, Any]:
        return {"invoiceNo": "INV-1", "date": when, "partyName": self.party, "grandTotal": total, "received": received, **extra}

    def purchase(self, when: Any, total: Any, paid: Any = 0, **extra: Any) -> Dict[str, Any]:
        return {"billNo": "BILL-1", "date": when, "supplierName": self.party, "grandTotal": total, "paid": paid, **extra}

    def payment_in(self, when: Any, final_amount: Any, **extra: Any) -> Dict[str, Any]:
        return {"receiptNo": "RCV-1", "paymentDate": when, "partyName": self.party, "finalAmount": final_amount, **extra}

    def payment_out(self, when: Any, final_amount: Any, **extra: Any) -> Dict[str, Any]:
        return {"receiptNo": "PAY-1", "paymentDate": when, "supplierName": self.party, "finalAmount": final_amount, **extra}

    def credit_note(self, when: Any, total: Any, **extra: Any) -> Dict[str, Any]:
        return {"creditNoteNo": "CN-1", "date": when, "partyName": self.party, "grandTotal": total, **extra}

    def expense(self, when: Any, total: Any, received: Any = 0, mode: str = "Credit", **extra: Any) -> Dict[str, Any]:
        return {
            "expenseNumber": "EXP-1",
            "expenseDate": when,
            "party": self.party,
            "totalAmount": total,
            "receivedAmount": received,
            "paymentType": mode,
            **extra,
        }

    def quotation(self, when: Any, total: Any, **extra: Any) -> Dict[str, Any]:
        return {"quotationNo": "QT-1", "date": when, "customerName": self.party, "totalAmount": total, **extra}

    def sale_order(self, when: Any, total: Any, **extra: Any) -> Dict[str, Any]:
        return {"orderNumber": "SO-1", "orderDate": when, "customerName": self.party, "total": total, **extra}

    def purchase_order(self, when: Any, total: Any, **extra: Any) -> Dict[str, Any]:
        return {"orderNumber": "PO-1", "orderDate": when, "supplierName": self.party, "total": total, **extra}

    def challan(self, when: Any, total: Any, **extra: Any) -> Dict[str, Any]:
        return {"challanNumber": "DC-1", "challanDate": when, "customerName": self.party, "total": total, **extra}


def append_rows(workbook_path: Path, sheet_name: str, rows: Sequence[Mapping[str, Any]]) -> None:
    """Append header-keyed rows to ``sheet_name`` and save the workbook."""

    workbook = openpyxl.load_workbook(workbook_path)
    sheet = workbook[sheet_name]
    header = [cell.value for cell in sheet[1]]
    for row in rows:
        sheet.append([row.get(name) for name in header])
    workbook.save(workbook_path)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    saved = list(sys.path)
    yield
    sys.path[:] = saved


@pytest.fixture
def records() -> RecordFactory:
    """Return a raw record factory bound to the default party."""

    return RecordFactory()


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized records workbook in a temp folder.

    ``sheets`` maps sheet names to rows (dicts keyed by header) appended after
    the workbook is created.
    """

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "party_records.xlsx",
        sheets: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_template_workbook(workbook_path, overwrite=True)
        for sheet_name, rows in (sheets or {}).items():
            append_rows(workbook_path, sheet_name, rows)
        return workbook_path

    return _create_workbook


@pytest.fixture
def records_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty records workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def populated_sheets(records: RecordFactory) -> Dict[str, Sequence[Mapping[str, Any]]]:
    """Sheets for one customer and one supplier with a small trading history."""

    supplier = RecordFactory("Blue Mills")
    return {
        "Parties": [
            {
                "PartyID": "P-1",
                "PartyName": DEFAULT_PARTY,
                "PartyType": "Customer",
                "OpeningBalance": 100,
                "CurrentBalance": 400,
                "Status": "Active",
            },
            {
                "PartyID": "P-2",
                "PartyName": "Blue Mills",
                "PartyType": "Supplier",
                "OpeningBalance": 0,
                "CurrentBalance": -400,
                "Status": "Active",
            },
        ],
        "Sales": [records.sale(datetime(2025, 1, 5, 10, 0), 1000, 400, invoiceNo="INV-1")],
        "PaymentsIn": [records.payment_in(datetime(2025, 2, 1, 9, 0), 300, receiptNo="RCV-1")],
        "Quotations": [records.quotation(datetime(2025, 1, 2, 12, 0), 5000)],
        "Purchases": [supplier.purchase(datetime(2025, 1, 10, 8, 0), 500, 50, billNo="BILL-7")],
    }


@pytest.fixture
def config_factory(
    tmp_path: Path,
    workbook_factory: Callable[..., Path],
    populated_sheets: Dict[str, Sequence[Mapping[str, Any]]],
) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Traders",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        policy: str = "netted",
        sheets: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
    ) -> ConfigBundle:
        folder = f"ledger_{uuid.uuid4().hex[:12]}"
        workbook_path = workbook_factory(subdir=folder, sheets=populated_sheets if sheets is None else sheets)
        config_path = workbook_path.parent / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=workbook_path.name if make_relative else workbook_path,
                business_name=business_name,
                schema_version=schema_version,
                policy=policy,
            )
        )
        return ConfigBundle(workbook_path.parent, config_path, workbook_path, schema_version, business_name)

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """config.ini over the populated two-party workbook."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Context loaded from ``config_file`` the way the CLI loads it."""

    loaded = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(loaded)
    return loaded


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Bare parser without sub-commands."""

    return argparse.ArgumentParser(prog="party-ledger-test")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """An ``echo`` command whose executor records that it ran."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    return "echo", cli.CommandSpec("echo", "echo help", lambda action: action.add_parser("echo"), execute)


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Three no-op specs named alpha, beta and gamma."""

    return [
        cli.CommandSpec(name, f"{name} help", lambda action, name=name: action.add_parser(name), lambda *_: 0)
        for name in ("alpha", "beta", "gamma")
    ]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Default ledger settings pointing at a workbook that need not exist."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "party_records.xlsx",
        business_name="Test Traders",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def workbook() -> Mock:
    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Context over a mock workbook; tests patch the data_manager calls."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook, snapshot_version="v1")
