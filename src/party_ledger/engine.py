"""Party ledger reconciliation engine.

The engine folds every record that touches one party (invoices, bills,
payments, credit notes, expenses, and non-financial documents) into a single
chronological ledger with a running balance, and derives summary totals over
an optional date window. It is a pure function of its inputs: it performs no
I/O, mutates nothing it is given, and returns fresh immutable objects.

Pipeline::

    raw records --adapt--> SourceEntry --normalize--> LedgerEntry
        --sequence--> chronological stream --fold--> balances stamped
        --summarize--> LedgerSummary (+ optional ConsistencyResult)

Balances are expressed from the business's point of view: a positive balance
is owed by the party (receivable), a negative balance is owed to the party
(payable). All amounts are integer minor units.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, date, datetime, time
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .adapters import SourceEntry, adapt_record, parse_timestamp
from .constants import (
    CREDIT_PAYMENT_MODE,
    DEFAULT_CURRENCY,
    DEFAULT_CURRENCY_EXPONENT,
    KIND_PRIORITY,
    NON_FINANCIAL_KINDS,
    RECORD_SET_ALIASES,
    RECORD_SET_KINDS,
    EntryKind,
    LinkedPaymentPolicy,
    RecordSet,
)
from .errors import EmptyPartyError, MalformedRecordError, UnknownKindError
from .money import Money, coerce_minor_units


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Party:
    """The party whose ledger is computed; never mutated by the engine."""

    name: str = ""
    opening_balance: int = 0
    stored_current_balance: Optional[int] = None
    party_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> "Party":
        """Build a party from a JSON-style mapping expressed in major units.

        Accepts ``name``/``partyName``, ``id``/``_id``/``partyId``,
        ``openingBalance`` and ``storedCurrentBalance``/``currentBalance``.
        """

        stored_raw = raw.get("storedCurrentBalance", raw.get("currentBalance"))
        party_id = raw.get("partyId", raw.get("id", raw.get("_id")))
        return cls(
            name=str(raw.get("name") or raw.get("partyName") or ""),
            opening_balance=coerce_minor_units(raw.get("openingBalance"), exponent=exponent, field="openingBalance"),
            stored_current_balance=(
                None
                if stored_raw is None
                else coerce_minor_units(stored_raw, exponent=exponent, field="storedCurrentBalance")
            ),
            party_id=str(party_id) if party_id is not None else None,
        )


@dataclass(frozen=True)
class DateWindow:
    """Inclusive date range used to filter the ledger and the summary.

    A bound given as a plain :class:`~datetime.date` covers that whole day, so
    ``DateWindow(date(2025, 1, 1), date(2025, 1, 31))`` includes entries
    stamped late on the 31st. Omitted bounds do not filter.
    """

    date_from: Optional[Union[date, datetime]] = None
    date_to: Optional[Union[date, datetime]] = None

    def __post_init__(self) -> None:
        lower, upper = self.lower_bound, self.upper_bound
        if lower is not None and upper is not None and lower > upper:
            log.error("Rejected inverted date window %s > %s", self.date_from, self.date_to)
            raise ValueError("Window start must not be after window end")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "DateWindow":
        """Build a window from a JSON-style ``{"from": ..., "to": ...}`` mapping.

        Bounds may be ``date``/``datetime`` objects or ISO-8601 strings. A
        date-only string such as ``"2025-01-31"`` is read as a whole day.

        Raises:
            ValueError: A bound cannot be parsed, or the window is inverted.
        """

        return cls(
            date_from=_window_bound(raw.get("from", raw.get("dateFrom"))),
            date_to=_window_bound(raw.get("to", raw.get("dateTo"))),
        )

    @property
    def lower_bound(self) -> Optional[datetime]:
        if self.date_from is None:
            return None
        if isinstance(self.date_from, datetime):
            return parse_timestamp(self.date_from)
        return datetime.combine(self.date_from, time.min, tzinfo=UTC)

    @property
    def upper_bound(self) -> Optional[datetime]:
        if self.date_to is None:
            return None
        if isinstance(self.date_to, datetime):
            return parse_timestamp(self.date_to)
        return datetime.combine(self.date_to, time.max, tzinfo=UTC)

    def is_before(self, moment: datetime) -> bool:
        lower = self.lower_bound
        return lower is not None and moment < lower

    def is_after(self, moment: datetime) -> bool:
        upper = self.upper_bound
        return upper is not None and moment > upper

    def contains(self, moment: datetime) -> bool:
        return not self.is_before(moment) and not self.is_after(moment)


def _window_bound(value: Any) -> Optional[Union[date, datetime]]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, (date, datetime)):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return parse_timestamp(text)
    except MalformedRecordError as exc:
        raise ValueError(f"Unparseable window bound: {value!r}") from exc


@dataclass(frozen=True)
class LedgerEntry:
    """One normalized, dated line of a party ledger."""

    kind: EntryKind
    timestamp: datetime
    reference_number: str
    party_name: str
    gross_amount: int
    settled_amount: int
    cash_in_amount: int
    cash_out_amount: int
    balance_delta: int
    balance_after: Optional[int] = None
    payment_mode: Optional[str] = None
    linked: bool = False
    description: Optional[str] = None
    source_index: int = 0

    @property
    def is_financial(self) -> bool:
        return self.kind not in NON_FINANCIAL_KINDS

    def to_dict(self, *, currency: str = DEFAULT_CURRENCY, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> Dict[str, Any]:
        """Serialize with money as minor units and timestamps as ISO-8601."""

        def money(amount: Optional[int]) -> Optional[Dict[str, Any]]:
            if amount is None:
                return None
            return Money(amount, currency=currency, exponent=exponent).to_dict()

        return {
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "reference_number": self.reference_number,
            "party_name": self.party_name,
            "gross_amount": money(self.gross_amount),
            "cash_in_amount": money(self.cash_in_amount),
            "cash_out_amount": money(self.cash_out_amount),
            "balance_delta": money(self.balance_delta),
            "balance_after": money(self.balance_after),
            "payment_mode": self.payment_mode,
            "linked": self.linked,
        }


@dataclass(frozen=True)
class LedgerSummary:
    """Aggregate totals over a (possibly windowed) ledger."""

    total_sale: int = 0
    total_purchase: int = 0
    total_payment_in: int = 0
    total_payment_out: int = 0
    total_credit_note: int = 0
    total_expense: int = 0
    total_money_in: int = 0
    total_money_out: int = 0
    total_receivable: int = 0
    opening_balance: int = 0
    closing_balance: int = 0
    entry_count: int = 0

    def to_dict(self, *, currency: str = DEFAULT_CURRENCY, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for name, value in asdict(self).items():
            if name == "entry_count":
                payload[name] = value
            else:
                payload[name] = Money(value, currency=currency, exponent=exponent).to_dict()
        return payload


@dataclass(frozen=True)
class ConsistencyResult:
    """Outcome of comparing the computed balance with the stored one."""

    matches: bool
    drift: int
    computed_balance: int
    stored_balance: int


@dataclass(frozen=True)
class RecordWarning:
    """A raw record skipped because it was malformed."""

    record_set: RecordSet
    index: int
    message: str
    field: Optional[str] = None


@dataclass(frozen=True)
class RecordSets:
    """Raw record lists for one party, one list per source kind."""

    sales: Sequence[Mapping[str, Any]] = ()
    purchases: Sequence[Mapping[str, Any]] = ()
    payments_in: Sequence[Mapping[str, Any]] = ()
    payments_out: Sequence[Mapping[str, Any]] = ()
    credit_notes: Sequence[Mapping[str, Any]] = ()
    expenses: Sequence[Mapping[str, Any]] = ()
    quotations: Sequence[Mapping[str, Any]] = ()
    sale_orders: Sequence[Mapping[str, Any]] = ()
    purchase_orders: Sequence[Mapping[str, Any]] = ()
    challans: Sequence[Mapping[str, Any]] = ()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Optional[Sequence[Mapping[str, Any]]]]) -> "RecordSets":
        """Build from a mapping keyed by record set name.

        Keys may be the canonical snake_case names or the camelCase names used
        by JSON callers (``paymentsIn``, ``creditNotes``...). ``None`` values
        count as empty lists.

        Raises:
            UnknownKindError: If a key names no known record set.
        """

        values: Dict[str, Sequence[Mapping[str, Any]]] = {}
        for key, records in raw.items():
            record_set = resolve_record_set(key)
            values[record_set.value] = tuple(records or ())
        return cls(**values)

    def get(self, record_set: RecordSet) -> Sequence[Mapping[str, Any]]:
        return getattr(self, record_set.value)

    def iter_tagged(self) -> Iterator[Tuple[RecordSet, EntryKind, int, Mapping[str, Any]]]:
        """Yield ``(record_set, kind, position, raw)`` in a fixed order."""

        for record_set in RecordSet:
            kind = RECORD_SET_KINDS[record_set]
            for position, raw in enumerate(self.get(record_set)):
                yield record_set, kind, position, raw


@dataclass(frozen=True)
class LedgerResult:
    """Everything one engine invocation produces for a party."""

    party: Party
    entries: Tuple[LedgerEntry, ...]
    ledger: Tuple[LedgerEntry, ...]
    summary: LedgerSummary
    window: Optional[DateWindow] = None
    consistency: Optional[ConsistencyResult] = None
    warnings: Tuple[RecordWarning, ...] = field(default_factory=tuple)
    partial: bool = False
    linked_payment_policy: LinkedPaymentPolicy = LinkedPaymentPolicy.NETTED

    @property
    def final_balance(self) -> int:
        """Balance after the last entry of the full history."""
        if not self.entries:
            return self.party.opening_balance
        return self.entries[-1].balance_after  # type: ignore[return-value]


def resolve_record_set(key: Union[str, RecordSet]) -> RecordSet:
    """Translate a record set key or alias into :class:`RecordSet`.

    Raises:
        UnknownKindError: If ``key`` is not a known record set.
    """

    if isinstance(key, RecordSet):
        return key
    if key in RECORD_SET_ALIASES:
        return RECORD_SET_ALIASES[key]
    try:
        return RecordSet(key)
    except ValueError as exc:
        log.error("Unknown record set '%s' supplied to the ledger engine", key)
        raise UnknownKindError(f"Unknown record set: {key!r}") from exc


# ---------------------------------------------------------------------------
# Entry normalizer
# ---------------------------------------------------------------------------


def _is_credit_mode(payment_mode: Optional[str]) -> bool:
    return (payment_mode or "").strip().casefold() == CREDIT_PAYMENT_MODE.casefold()


def normalize_entry(
    source: SourceEntry,
    *,
    linked_payment_policy: LinkedPaymentPolicy = LinkedPaymentPolicy.NETTED,
    source_index: int = 0,
) -> LedgerEntry:
    """Apply the sign convention for ``source.kind``.

    ======================  =================  ========  =========
    kind                    balance delta      cash in   cash out
    ======================  =================  ========  =========
    Sale Invoice            gross - settled    settled   0
    Purchase Bill           -(gross - settled) 0         settled
    Payment In              -gross             gross     0
    Payment Out             +gross             0         gross
    Credit Note             -gross             0         0
    Expense (Credit mode)   gross - settled    settled   0
    Expense (other modes)   0                  0         0
    Non-financial kinds     0                  0         0
    ======================  =================  ========  =========

    A payment flagged as linked to an invoice or bill is already counted in
    that document's settled amount; under :attr:`LinkedPaymentPolicy.NETTED`
    it stays on the timeline with zero delta and zero cash.

    Args:
        source (SourceEntry): Adapter output.
        linked_payment_policy (LinkedPaymentPolicy): Treatment of linked
            payments.
        source_index (int): Insertion position, used as the final sort key.

    Returns:
        LedgerEntry: Entry with delta and cash amounts set and no
            ``balance_after`` yet.

    Raises:
        UnknownKindError: If ``source.kind`` has no rule.
    """

    kind = source.kind
    gross = source.gross_amount
    settled = source.settled_amount
    netted = source.linked and LinkedPaymentPolicy(linked_payment_policy) is LinkedPaymentPolicy.NETTED

    if kind is EntryKind.SALE_INVOICE:
        delta, cash_in, cash_out = gross - settled, settled, 0
    elif kind is EntryKind.PURCHASE_BILL:
        delta, cash_in, cash_out = -(gross - settled), 0, settled
    elif kind is EntryKind.PAYMENT_IN:
        delta, cash_in, cash_out = (0, 0, 0) if netted else (-gross, gross, 0)
    elif kind is EntryKind.PAYMENT_OUT:
        delta, cash_in, cash_out = (0, 0, 0) if netted else (gross, 0, gross)
    elif kind is EntryKind.CREDIT_NOTE:
        delta, cash_in, cash_out = -gross, 0, 0
    elif kind is EntryKind.EXPENSE:
        if _is_credit_mode(source.payment_mode):
            delta, cash_in, cash_out = gross - settled, settled, 0
        else:
            delta, cash_in, cash_out = 0, 0, 0
    elif kind in NON_FINANCIAL_KINDS:
        delta, cash_in, cash_out = 0, 0, 0
    else:
        log.error("No sign convention for record kind %r", kind)
        raise UnknownKindError(f"No sign convention for record kind: {kind!r}")

    return LedgerEntry(
        kind=kind,
        timestamp=source.timestamp,
        reference_number=source.reference_number,
        party_name=source.party_name,
        gross_amount=gross,
        settled_amount=settled,
        cash_in_amount=cash_in,
        cash_out_amount=cash_out,
        balance_delta=delta,
        payment_mode=source.payment_mode,
        linked=source.linked,
        description=source.description,
        source_index=source_index,
    )


# ---------------------------------------------------------------------------
# Sequencer, fold, summarizer, validator
# ---------------------------------------------------------------------------


def _sort_key(entry: LedgerEntry) -> Tuple[datetime, int, int]:
    return entry.timestamp, KIND_PRIORITY[entry.kind], entry.source_index


def sequence_entries(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Order entries chronologically with a deterministic tie-break.

    Equal timestamps fall back to the kind priority in
    :data:`~party_ledger.constants.KIND_PRIORITY`, then to insertion order,
    so an invoice precedes the payment recorded at the same instant and
    repeated runs over the same input produce the same sequence.
    """

    return sorted(entries, key=_sort_key)


def compute_running_balances(opening_balance: int, entries: Sequence[LedgerEntry]) -> List[LedgerEntry]:
    """Stamp ``balance_after`` on each entry via a left fold.

    Args:
        opening_balance (int): Balance carried into the first entry.
        entries (Sequence[LedgerEntry]): Entries already in ledger order.

    Returns:
        list[LedgerEntry]: New entries; the input objects are untouched, so
            the same sequence can be re-folded with another opening balance.
    """

    balance = opening_balance
    stamped: List[LedgerEntry] = []
    for entry in entries:
        balance += entry.balance_delta
        stamped.append(replace(entry, balance_after=balance))
    return stamped


def summarize(
    entries: Iterable[LedgerEntry],
    window: Optional[DateWindow] = None,
    *,
    opening_balance: int = 0,
) -> LedgerSummary:
    """Reduce entries inside ``window`` into a :class:`LedgerSummary`.

    Totals reuse the deltas and cash amounts computed by
    :func:`normalize_entry`, so ``total_receivable`` always equals the
    movement of the running balance across the window. Entries before the
    window roll into the summary's ``opening_balance``.

    Args:
        entries (Iterable[LedgerEntry]): Normalized entries, any order.
        window (DateWindow | None): Inclusive filter; ``None`` keeps all.
        opening_balance (int): Balance before the earliest entry overall.

    Returns:
        LedgerSummary: Totals for the window.
    """

    totals: Dict[str, int] = {
        "total_sale": 0,
        "total_purchase": 0,
        "total_payment_in": 0,
        "total_payment_out": 0,
        "total_credit_note": 0,
        "total_expense": 0,
        "total_money_in": 0,
        "total_money_out": 0,
        "total_receivable": 0,
    }
    window_opening = opening_balance
    count = 0

    for entry in entries:
        if window is not None and window.is_before(entry.timestamp):
            window_opening += entry.balance_delta
            continue
        if window is not None and window.is_after(entry.timestamp):
            continue

        count += 1
        totals["total_receivable"] += entry.balance_delta
        totals["total_money_in"] += entry.cash_in_amount
        totals["total_money_out"] += entry.cash_out_amount
        if entry.kind is EntryKind.SALE_INVOICE:
            totals["total_sale"] += entry.gross_amount
        elif entry.kind is EntryKind.PURCHASE_BILL:
            totals["total_purchase"] += entry.gross_amount
        elif entry.kind is EntryKind.PAYMENT_IN:
            totals["total_payment_in"] += entry.cash_in_amount
        elif entry.kind is EntryKind.PAYMENT_OUT:
            totals["total_payment_out"] += entry.cash_out_amount
        elif entry.kind is EntryKind.CREDIT_NOTE:
            totals["total_credit_note"] += entry.gross_amount
        elif entry.kind is EntryKind.EXPENSE:
            totals["total_expense"] += entry.gross_amount

    return LedgerSummary(
        **totals,
        opening_balance=window_opening,
        closing_balance=window_opening + totals["total_receivable"],
        entry_count=count,
    )


def validate_consistency(computed_final_balance: int, stored_current_balance: int) -> ConsistencyResult:
    """Compare the computed balance with the independently stored one.

    Never raises. ``drift`` is ``stored - computed``; a non-zero drift means
    the record-writing side and the ledger disagree and is logged as a
    warning for the caller to surface.
    """

    drift = stored_current_balance - computed_final_balance
    matches = drift == 0
    if not matches:
        log.warning(
            "Stored balance %s drifts from computed balance %s by %s",
            stored_current_balance,
            computed_final_balance,
            drift,
        )
    return ConsistencyResult(
        matches=matches,
        drift=drift,
        computed_balance=computed_final_balance,
        stored_balance=stored_current_balance,
    )


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


def _assemble_result(
    party: Party,
    sequenced: Sequence[LedgerEntry],
    window: Optional[DateWindow],
    *,
    warnings: Tuple[RecordWarning, ...],
    partial: bool,
    policy: LinkedPaymentPolicy,
) -> LedgerResult:
    entries = tuple(compute_running_balances(party.opening_balance, sequenced))
    ledger = tuple(entry for entry in entries if window is None or window.contains(entry.timestamp))
    summary = summarize(entries, window, opening_balance=party.opening_balance)
    final_balance = entries[-1].balance_after if entries else party.opening_balance

    consistency = None
    if party.stored_current_balance is not None:
        consistency = validate_consistency(final_balance, party.stored_current_balance)  # type: ignore[arg-type]

    return LedgerResult(
        party=party,
        entries=entries,
        ledger=ledger,
        summary=summary,
        window=window,
        consistency=consistency,
        warnings=warnings,
        partial=partial,
        linked_payment_policy=policy,
    )


def compute_ledger(
    party: Union[Party, Mapping[str, Any], None],
    records: Union[RecordSets, Mapping[str, Any], None],
    window: Union[DateWindow, Mapping[str, Any], None] = None,
    *,
    linked_payment_policy: Union[LinkedPaymentPolicy, str] = LinkedPaymentPolicy.NETTED,
    currency_exponent: int = DEFAULT_CURRENCY_EXPONENT,
    partial: bool = False,
) -> LedgerResult:
    """Compute the chronological ledger and summary for one party.

    Malformed records are skipped and reported in ``warnings``; every other
    failure aborts the computation so a partially wrong balance is never
    returned.

    Args:
        party (Party | Mapping | None): The party; a mapping is read with
            :meth:`Party.from_mapping`.
        records (RecordSets | Mapping | None): Raw records per record set. A
            kind whose fetch failed should be passed as an empty list.
        window (DateWindow | Mapping | None): Restricts ``ledger`` and
            ``summary``; a ``{"from", "to"}`` mapping is read with
            :meth:`DateWindow.from_mapping`. Balances are always computed
            over the full history.
        linked_payment_policy (LinkedPaymentPolicy | str): Treatment of
            payments tied to an invoice or bill.
        currency_exponent (int): Decimal places of the currency.
        partial (bool): Propagated unchanged to signal that some record sets
            could not be fetched.

    Returns:
        LedgerResult: Fresh, immutable result owned by the caller.

    Raises:
        EmptyPartyError: If no party is supplied, or it has neither a name
            nor an id.
        UnknownKindError: If ``records`` names an unknown record set.
        ValueError: If ``linked_payment_policy`` is not a known policy or
            ``window`` cannot be read.
    """

    if party is not None and not isinstance(party, Party):
        party = Party.from_mapping(party, exponent=currency_exponent) if party else None
    if party is None or not (party.name or party.party_id):
        log.error("Ledger computation requested without a party")
        raise EmptyPartyError("A party is required to compute a ledger")
    if window is not None and not isinstance(window, DateWindow):
        window = DateWindow.from_mapping(window)

    policy = LinkedPaymentPolicy(linked_payment_policy)
    if isinstance(records, RecordSets):
        record_sets = records
    else:
        record_sets = RecordSets.from_mapping(records or {})

    normalized: List[LedgerEntry] = []
    warnings: List[RecordWarning] = []
    for source_index, (record_set, kind, position, raw) in enumerate(record_sets.iter_tagged()):
        try:
            source = adapt_record(kind, raw, exponent=currency_exponent)
        except MalformedRecordError as exc:
            log.warning("Skipping %s record #%d for party '%s': %s", record_set.value, position, party.name, exc)
            warnings.append(RecordWarning(record_set=record_set, index=position, message=str(exc), field=exc.field))
            continue
        normalized.append(normalize_entry(source, linked_payment_policy=policy, source_index=source_index))

    result = _assemble_result(
        party,
        sequence_entries(normalized),
        window,
        warnings=tuple(warnings),
        partial=partial,
        policy=policy,
    )
    log.info(
        "Computed ledger for party '%s': %d entries, %d skipped, final balance %s%s",
        party.name,
        len(result.entries),
        len(warnings),
        result.final_balance,
        " (partial)" if partial else "",
    )
    return result


def rebalance(result: LedgerResult, opening_balance: int) -> LedgerResult:
    """Re-run the fold of ``result`` with a different opening balance.

    Entries are reused as-is, so no record is adapted or normalized again.
    """

    party = replace(result.party, opening_balance=opening_balance)
    log.debug("Rebalancing ledger for party '%s' from opening balance %s", party.name, opening_balance)
    return _assemble_result(
        party,
        result.entries,
        result.window,
        warnings=result.warnings,
        partial=result.partial,
        policy=result.linked_payment_policy,
    )


__all__ = [
    "Party",
    "DateWindow",
    "LedgerEntry",
    "LedgerSummary",
    "ConsistencyResult",
    "RecordWarning",
    "RecordSets",
    "LedgerResult",
    "resolve_record_set",
    "normalize_entry",
    "sequence_entries",
    "compute_running_balances",
    "summarize",
    "validate_consistency",
    "compute_ledger",
    "rebalance",
]
