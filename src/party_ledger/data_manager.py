"""Data access layer for the party ledger.

Everything here is read-only. The helpers locate ``config.ini`` and turn it
into :class:`ConfigSettings`, open and fingerprint the records workbook, and
answer two queries against it: the rows of the ``Parties`` sheet, and the raw
rows of one record set that belong to one party. Balances are computed by the
engine, never here.
"""


from __future__ import annotations

import configparser
import dataclasses
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .adapters import COMMON_PARTY_FIELDS, FIELD_MAPS
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_CURRENCY_EXPONENT,
    DEFAULT_FETCH_WORKERS,
    RECORD_SET_KINDS,
    RECORD_SET_SHEETS,
    LinkedPaymentPolicy,
    RecordSet,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PARTIES_SHEET = SheetName.PARTIES.value


@dataclasses.dataclass(frozen=True)
class ConfigSettings:
    """Settings read from ``[System]`` and the optional ``[Ledger]`` section."""

    data_file: Path
    business_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    currency_exponent: int = DEFAULT_CURRENCY_EXPONENT
    linked_payment_policy: LinkedPaymentPolicy = LinkedPaymentPolicy.NETTED
    fetch_workers: int = DEFAULT_FETCH_WORKERS


@dataclasses.dataclass(frozen=True)
class PartyRow:
    """In-memory view of a row from the ``Parties`` sheet."""

    party_id: str
    party_name: str
    party_type: Optional[str]
    opening_balance: Decimal
    current_balance: Optional[Decimal]
    status: Optional[str]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Return the config path to use.

    An explicit path wins and is returned as given. Otherwise the working
    directory and each of its ancestors are searched for ``config.ini`` and the
    nearest one is used.

    Raises:
        FileNotFoundError: No ancestor directory holds a ``config.ini``.
    """

    if explicit_path:
        return explicit_path

    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        if (directory / CONFIG_FILE_NAME).exists():
            return directory / CONFIG_FILE_NAME

    raise FileNotFoundError(f"No {CONFIG_FILE_NAME} found in {cwd} or its parents")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Parse ``config_path`` without validating its contents.

    Args:
        config_path (Path): Config file location; ``~`` is expanded.

    Returns:
        configparser.ConfigParser: The raw parsed file. Missing sections are
            reported later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: The file does not exist.
    """

    path = Path(config_path).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    config = configparser.ConfigParser()
    config.read(path, encoding="utf-8")
    return config


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Build :class:`ConfigSettings` from a parsed config.

    ``DataFile``, ``BusinessName`` and ``SchemaVersion`` under ``[System]``
    must be present. ``[Ledger]`` may be omitted entirely; each of its options
    has a default. A relative ``DataFile`` is anchored at ``base_path``, which
    defaults to the working directory.

    Raises:
        KeyError: A required ``[System]`` entry is missing.
        ValueError: A ``[Ledger]`` option has an unusable value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"config.ini is missing {exc}") from exc

    currency = parser.get("Ledger", "Currency", fallback=DEFAULT_CURRENCY).strip()
    currency_exponent = parser.getint("Ledger", "CurrencyExponent", fallback=DEFAULT_CURRENCY_EXPONENT)
    fetch_workers = parser.getint("Ledger", "FetchWorkers", fallback=DEFAULT_FETCH_WORKERS)
    policy_raw = parser.get("Ledger", "LinkedPaymentPolicy", fallback=LinkedPaymentPolicy.NETTED.value)

    if currency_exponent < 0:
        raise ValueError(f"CurrencyExponent must be zero or positive, got {currency_exponent}")
    if fetch_workers < 1:
        raise ValueError(f"FetchWorkers must be at least 1, got {fetch_workers}")
    try:
        linked_payment_policy = LinkedPaymentPolicy(policy_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown LinkedPaymentPolicy: {policy_raw}") from exc

    data_file = Path(data_file_raw.strip()).expanduser()
    if not data_file.is_absolute():
        data_file = ((base_path or Path.cwd()) / data_file).resolve()

    return ConfigSettings(
        data_file=data_file,
        business_name=business_name,
        schema_version=schema_version,
        currency=currency,
        currency_exponent=currency_exponent,
        linked_payment_policy=linked_payment_policy,
        fetch_workers=fetch_workers,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Load the records workbook with formula cells read as cached values.

    Raises:
        FileNotFoundError: ``data_file`` does not exist.
    """

    path = Path(data_file).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"Records workbook does not exist: {path}")

    log.debug("Opening records workbook %s", path)
    return openpyxl.load_workbook(path, data_only=True)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, picking up records written since."""

    return open_workbook(data_file)


def snapshot_version(data_file: Path) -> str:
    """Fingerprint the workbook file so cached ledgers can detect changes.

    Args:
        data_file (Path): Location of the source workbook.

    Returns:
        str: ``"<mtime_ns>-<size>"`` of the file on disk.
    """

    stat = Path(data_file).expanduser().resolve().stat()
    return f"{stat.st_mtime_ns}-{stat.st_size}"


def iter_rows_as_dicts(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Stream worksheet rows as dictionaries keyed by the header row.

    Columns with a blank header are ignored and rows whose cells are all
    ``None`` are skipped.

    Raises:
        KeyError: If ``sheet_name`` does not exist in the workbook.
    """

    if sheet_name not in workbook.sheetnames:
        raise KeyError(f"Missing worksheet: {sheet_name}")

    rows = workbook[sheet_name].iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    columns = [(index, str(name).strip()) for index, name in enumerate(header) if name is not None]
    for values in rows:
        if all(cell is None for cell in values):
            continue
        yield {name: values[index] if index < len(values) else None for index, name in columns}


def iter_parties(workbook: Workbook) -> Iterable[PartyRow]:
    """Yield a :class:`PartyRow` for every non-empty row of ``Parties``."""

    for row in iter_rows_as_dicts(workbook, PARTIES_SHEET):
        yield deserialize_party(row)


def find_party(workbook: Workbook, party_name: str) -> Optional[PartyRow]:
    """Return the party whose name matches ``party_name``, if any."""

    wanted = party_name.strip()
    for party in iter_parties(workbook):
        if party.party_name == wanted:
            return party
    return None


def list_records(workbook: Workbook, record_set: RecordSet, party_name: str) -> List[Dict[str, Any]]:
    """List the raw records of one record set that belong to ``party_name``.

    Rows are matched on the same party fields the record adapters read (for
    example ``partyName`` for sales, ``supplierName`` for purchases), so the
    result can be fed to the engine unchanged.

    Args:
        workbook (Workbook): Source workbook.
        record_set (RecordSet): Which record set to read.
        party_name (str): Exact party name to match.

    Returns:
        list[dict[str, Any]]: Raw records in sheet order.

    Raises:
        KeyError: If the record set's worksheet is missing.
    """

    record_set = RecordSet(record_set)
    sheet_name = RECORD_SET_SHEETS[record_set].value
    party_fields = (*FIELD_MAPS[RECORD_SET_KINDS[record_set]].party, *COMMON_PARTY_FIELDS)
    wanted = party_name.strip()

    matches: List[Dict[str, Any]] = []
    for row in iter_rows_as_dicts(workbook, sheet_name):
        for name in party_fields:
            value = row.get(name)
            if value is not None and str(value).strip():
                if str(value).strip() == wanted:
                    matches.append(row)
                break
    log.debug("Loaded %d %s records for party '%s'", len(matches), record_set.value, wanted)
    return matches


def _optional_decimal(value: object) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        log.warning("Ignoring non-numeric balance value %r on Parties sheet", value)
        return None


def deserialize_party(row: Dict[str, Any]) -> PartyRow:
    """Turn a header-keyed ``Parties`` row into a :class:`PartyRow`.

    Excel hands back numeric ids as numbers, so ids are stringified. Balances
    become ``Decimal``. A blank opening balance is zero, while a blank current
    balance stays ``None`` and disables the consistency check for that party.
    """

    party_id = row.get("PartyID")
    party_type = row.get("PartyType")
    status = row.get("Status")
    return PartyRow(
        party_id=str(party_id) if party_id is not None else "",
        party_name=str(row.get("PartyName") or "").strip(),
        party_type=str(party_type) if party_type is not None else None,
        opening_balance=_optional_decimal(row.get("OpeningBalance")) or Decimal("0.00"),
        current_balance=_optional_decimal(row.get("CurrentBalance")),
        status=str(status) if status is not None else None,
    )


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigSettings",
    "PartyRow",
    "find_config_file",
    "read_config",
    "parse_settings",
    "open_workbook",
    "refresh_workbook",
    "snapshot_version",
    "iter_rows_as_dicts",
    "iter_parties",
    "find_party",
    "list_records",
    "deserialize_party",
]
