"""Business logic layer for the party ledger.

Sits between the workbook repositories in :mod:`data_manager` and the pure
:mod:`engine`. Configuration loading, the concurrent per-party fetch, partial
failure handling and the snapshot-keyed ledger cache all live here.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, BalanceSide, RecordSet
from .engine import ConsistencyResult, DateWindow, LedgerResult, Party, RecordSets, compute_ledger
from .errors import EmptyPartyError
from .money import to_minor_units


@dataclass(frozen=True)
class RuntimeContext:
    """Settings, the open workbook and its fingerprint, shared by every call."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    snapshot_version: str = ""
    _cache: Dict[str, Dict[Any, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class FetchResult:
    """Raw records gathered for one party plus the record sets that failed."""

    records: RecordSets
    failed: Tuple[RecordSet, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.failed)


@dataclass(frozen=True)
class PartyBalance:
    """Recomputed closing balance of one party, split by side."""

    party_name: str
    party_type: Optional[str]
    balance: int
    partial: bool = False

    @property
    def receivable(self) -> int:
        return self.balance if self.balance > 0 else 0

    @property
    def payable(self) -> int:
        return -self.balance if self.balance < 0 else 0

    @property
    def side(self) -> Optional[BalanceSide]:
        if self.balance > 0:
            return BalanceSide.RECEIVABLE
        if self.balance < 0:
            return BalanceSide.PAYABLE
        return None


@dataclass(frozen=True)
class BalanceReport:
    """Receivable/payable balances of every listed party with their totals."""

    rows: Tuple[PartyBalance, ...]

    @property
    def total_receivable(self) -> int:
        return sum(row.receivable for row in self.rows)

    @property
    def total_payable(self) -> int:
        return sum(row.payable for row in self.rows)

    @property
    def partial(self) -> bool:
        return any(row.partial for row in self.rows)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[Any, Any]:
    """Return the cache dict stored under ``name``, creating it if needed.

    Buckets in use are ``parties`` and ``ledgers``.
    """

    if name not in context._cache:
        log.debug("Creating cache bucket '%s'", name)
    return context._cache.setdefault(name, {})


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Drop the named cache buckets; unknown names are ignored."""

    for name in names:
        if context._cache.pop(name, None) is not None:
            log.debug("Dropped cache bucket '%s'", name)


def _ensure_parties_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the party cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` parties in sheet order and a
            ``by_name`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "parties")
    if not bucket:
        parties = [party for party in data_manager.iter_parties(context.workbook) if party.party_name]
        bucket["all"] = parties
        bucket["by_name"] = {party.party_name: party for party in parties}
        log.debug("Cached %d parties", len(parties))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Read the config, open the records workbook and fingerprint it.

    Args:
        config_path (Path | None): Config file to use. ``None`` searches
            upward from the working directory. A relative ``DataFile`` is
            anchored at the config file's directory.

    Raises:
        FileNotFoundError: The config file or the workbook is missing.
        KeyError: A required ``[System]`` entry is missing.
        ValueError: A ``[Ledger]`` option is invalid.
    """
    config_file = Path(data_manager.find_config_file(config_path)).expanduser().resolve()
    settings = data_manager.parse_settings(data_manager.read_config(config_file), base_path=config_file.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    version = data_manager.snapshot_version(settings.data_file)
    log.info("Using records workbook %s (snapshot %s)", settings.data_file, version)
    return RuntimeContext(settings=settings, workbook=workbook, snapshot_version=version)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work with a workbook whose declared schema we do not read.

    Raises:
        RuntimeError: ``SchemaVersion`` differs from ``EXPECTED_SCHEMA_VERSION``.
    """
    declared = context.settings.schema_version
    if declared == EXPECTED_SCHEMA_VERSION:
        return
    message = f"Records workbook declares schema {declared}, this version reads {EXPECTED_SCHEMA_VERSION}"
    log.error(message)
    raise RuntimeError(message)


def list_parties(context: RuntimeContext) -> List[data_manager.PartyRow]:
    """Return cached party rows in sheet order."""

    return list(_ensure_parties_cache(context)["all"])


def get_party(context: RuntimeContext, party_name: str) -> data_manager.PartyRow:
    """Return a single party identified by ``party_name``.

    Args:
        context (RuntimeContext): Runtime context whose party cache is
            consulted.
        party_name (str): Exact party name, surrounding whitespace ignored.

    Returns:
        data_manager.PartyRow: Cached party row.

    Raises:
        EmptyPartyError: If the party does not exist.
    """

    cache = _ensure_parties_cache(context)
    party = cache["by_name"].get(party_name.strip())
    if party is None:
        log.warning("Party lookup failed for name '%s'", party_name)
        raise EmptyPartyError(f"Unknown party: {party_name}")
    return party


def to_engine_party(row: data_manager.PartyRow, *, exponent: int) -> Party:
    """Convert a ``Parties`` row into the engine's :class:`Party`."""

    return Party(
        name=row.party_name,
        opening_balance=to_minor_units(row.opening_balance, exponent=exponent),
        stored_current_balance=(
            None if row.current_balance is None else to_minor_units(row.current_balance, exponent=exponent)
        ),
        party_id=row.party_id or None,
    )


def fetch_party_records(context: RuntimeContext, party_name: str) -> FetchResult:
    """Fetch every record set for ``party_name`` concurrently.

    All fetches are allowed to settle. A record set whose fetch raises is
    replaced by an empty list and reported in :attr:`FetchResult.failed`, so
    one broken sheet degrades the statement instead of blocking it.

    Args:
        context (RuntimeContext): Runtime context with the open workbook.
        party_name (str): Party whose records are collected.

    Returns:
        FetchResult: Records keyed by record set and the failed record sets.
    """

    record_sets = tuple(RecordSet)
    workers = max(1, min(context.settings.fetch_workers, len(record_sets)))
    collected: Dict[str, List[Dict[str, Any]]] = {}
    failed: List[RecordSet] = []

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ledger-fetch") as executor:
        futures = {
            record_set: executor.submit(data_manager.list_records, context.workbook, record_set, party_name)
            for record_set in record_sets
        }
        for record_set, future in futures.items():
            try:
                collected[record_set.value] = future.result()
            except Exception as exc:
                log.warning("Fetching %s for party '%s' failed: %s", record_set.value, party_name, exc)
                collected[record_set.value] = []
                failed.append(record_set)

    return FetchResult(records=RecordSets.from_mapping(collected), failed=tuple(failed))


def build_party_ledger(
    context: RuntimeContext,
    party_name: str,
    window: Optional[DateWindow] = None,
) -> LedgerResult:
    """Compute (or reuse) the ledger of one party.

    Results are cached per ``(party, snapshot version, window, policy)``.
    Results built from a partial fetch are returned but not cached, so the
    next call retries the failed record sets.

    Args:
        context (RuntimeContext): Runtime context.
        party_name (str): Party whose ledger is requested.
        window (DateWindow | None): Optional inclusive date window.

    Returns:
        LedgerResult: Engine output for the party.

    Raises:
        EmptyPartyError: If the party does not exist.
    """

    settings = context.settings
    row = get_party(context, party_name)
    key = (row.party_name, context.snapshot_version, window, settings.linked_payment_policy)

    bucket = _get_cache_bucket(context, "ledgers")
    cached = bucket.get(key)
    if cached is not None:
        log.debug("Serving cached ledger for party '%s'", row.party_name)
        return cached

    fetched = fetch_party_records(context, row.party_name)
    result = compute_ledger(
        to_engine_party(row, exponent=settings.currency_exponent),
        fetched.records,
        window,
        linked_payment_policy=settings.linked_payment_policy,
        currency_exponent=settings.currency_exponent,
        partial=fetched.partial,
    )
    if not result.partial:
        bucket[key] = result
    return result


def check_party_balance(context: RuntimeContext, party_name: str) -> Optional[ConsistencyResult]:
    """Compare a party's stored balance with the one recomputed from records.

    Returns:
        ConsistencyResult | None: ``None`` when the party has no stored
            balance to compare against.
    """

    return build_party_ledger(context, party_name).consistency


def party_balances(context: RuntimeContext, only: Optional[BalanceSide | str] = None) -> BalanceReport:
    """Recompute every party's closing balance and split it into sides.

    A positive balance is receivable (the party owes the business), a
    negative one payable. Each party goes through :func:`build_party_ledger`,
    so cached ledgers are reused.

    Args:
        context (RuntimeContext): Runtime context.
        only (BalanceSide | str | None): Keep only parties on that side;
            ``None`` keeps every party, settled ones included.

    Returns:
        BalanceReport: Rows in ``Parties`` sheet order. Totals cover the rows
            kept by ``only``.

    Raises:
        ValueError: ``only`` is not a known side.
    """

    side = None if only is None else BalanceSide(only)
    rows: List[PartyBalance] = []
    for party in list_parties(context):
        result = build_party_ledger(context, party.party_name)
        row = PartyBalance(party.party_name, party.party_type, result.final_balance, partial=result.partial)
        if side is None or row.side is side:
            rows.append(row)
    report = BalanceReport(rows=tuple(rows))
    log.info(
        "Balance report over %d parties: receivable %s, payable %s",
        len(rows),
        report.total_receivable,
        report.total_payable,
    )
    return report


def is_stale(context: RuntimeContext) -> bool:
    """Return ``True`` when the workbook on disk changed since it was loaded."""

    return data_manager.snapshot_version(context.settings.data_file) != context.snapshot_version


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Return a new context over the current workbook contents.

    Settings are kept. The workbook is reopened, the fingerprint recomputed
    and the cache starts empty.
    """
    data_file = context.settings.data_file
    workbook = data_manager.refresh_workbook(data_file)
    version = data_manager.snapshot_version(data_file)
    log.info("Reopened records workbook %s (snapshot %s)", data_file, version)
    return RuntimeContext(settings=context.settings, workbook=workbook, snapshot_version=version)


__all__ = [
    "RuntimeContext",
    "FetchResult",
    "PartyBalance",
    "BalanceReport",
    "load_runtime_context",
    "ensure_schema_version",
    "list_parties",
    "get_party",
    "to_engine_party",
    "fetch_party_records",
    "build_party_ledger",
    "check_party_balance",
    "party_balances",
    "is_stale",
    "refresh_context",
]
