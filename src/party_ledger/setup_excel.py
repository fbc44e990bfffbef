"""Creates the empty records workbook that the ledger reads.

Usable as the ``party-ledger-setup`` script or imported. ``SHEET_COLUMNS`` is
the workbook layout: a ``Parties`` sheet, then one sheet per record set whose
header row holds the raw record field names.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PARTIES.value: [
        "PartyID",
        "PartyName",
        "PartyType",
        "OpeningBalance",
        "CurrentBalance",
        "Status",
    ],
    SheetName.SALES.value: [
        "invoiceNo",
        "date",
        "partyName",
        "grandTotal",
        "received",
        "paymentType",
        "description",
    ],
    SheetName.PURCHASES.value: [
        "billNo",
        "date",
        "supplierName",
        "grandTotal",
        "paid",
        "paymentType",
        "description",
    ],
    SheetName.PAYMENTS_IN.value: [
        "receiptNo",
        "paymentDate",
        "partyName",
        "finalAmount",
        "paymentType",
        "category",
        "saleId",
        "description",
    ],
    SheetName.PAYMENTS_OUT.value: [
        "receiptNo",
        "paymentDate",
        "supplierName",
        "finalAmount",
        "paymentType",
        "purchaseId",
        "description",
    ],
    SheetName.CREDIT_NOTES.value: [
        "creditNoteNo",
        "date",
        "partyName",
        "grandTotal",
        "description",
    ],
    SheetName.EXPENSES.value: [
        "expenseNumber",
        "expenseDate",
        "party",
        "totalAmount",
        "receivedAmount",
        "paymentType",
        "description",
    ],
    SheetName.QUOTATIONS.value: ["quotationNo", "date", "customerName", "totalAmount"],
    SheetName.SALE_ORDERS.value: ["orderNumber", "orderDate", "customerName", "total"],
    SheetName.PURCHASE_ORDERS.value: ["orderNumber", "orderDate", "supplierName", "total"],
    SheetName.DELIVERY_CHALLANS.value: ["challanNumber", "challanDate", "customerName", "total"],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """The two ``[System]`` entries the setup script needs."""

    data_file: Path
    business_name: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``DataFile`` and ``BusinessName`` from ``config_path``.

    A relative ``DataFile`` is anchored at the config file's directory, the
    same way the ledger resolves it at runtime.
    """

    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file does not exist: {config_path}")

    config = configparser.ConfigParser()
    config.read(config_path, encoding="utf-8")
    if not config.has_option("System", "DataFile") or not config.has_option("System", "BusinessName"):
        raise KeyError(f"{config_path} needs DataFile and BusinessName under [System]")

    data_file = Path(config.get("System", "DataFile").strip()).expanduser()
    if not data_file.is_absolute():
        data_file = (config_path.parent / data_file).resolve()
    return SetupSettings(data_file=data_file, business_name=config.get("System", "BusinessName"))


def create_template_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Write an empty records workbook with one header row per sheet.

    Args:
        destination (Path): ``.xlsx`` file to create. Missing parent
            directories are created.
        sheet_columns (Mapping[str, Sequence[str]]): Header row of every
            sheet, in sheet order.
        overwrite (bool): Replace ``destination`` if it already exists.

    Returns:
        Path: Absolute path of the written workbook.

    Raises:
        FileExistsError: ``destination`` exists and ``overwrite`` is off.
    """

    target = Path(destination).expanduser().resolve()
    if target.exists() and not overwrite:
        raise FileExistsError(f"Records workbook already exists: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    header_font = Font(bold=True)
    for title, headers in sheet_columns.items():
        sheet = workbook.create_sheet(title=title)
        sheet.append(list(headers))
        for cell in sheet[1]:
            cell.font = header_font
        sheet.freeze_panes = "A2"

    workbook.save(target)
    log.info("Wrote records workbook template %s with %d sheets", target, len(sheet_columns))
    return target


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook that ``config_path`` points ``DataFile`` at."""

    return create_template_workbook(load_settings(config_path).data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="party-ledger-setup",
        description="Create an empty party records workbook from config.ini.",
    )
    parser.add_argument("--config", default=CONFIG_FILE, help="config.ini naming the workbook (default: %(default)s)")
    parser.add_argument("--force", action="store_true", help="Replace the workbook if it exists.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ``party-ledger-setup`` console script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Party ledger setup, config: {config_path}")

    try:
        created = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Could not write the workbook: {exc}")
        return 1

    print(f"[SUCCESS] Records workbook created at {created}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
