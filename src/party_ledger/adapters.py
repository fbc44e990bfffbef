"""Record adapters that turn raw business records into source entries.

Every source kind stores its monetary facts under different field names: a
sale keeps ``grandTotal`` and ``received``, a purchase keeps ``grandTotal``
and ``paid``, an expense keeps ``totalAmount`` and ``receivedAmount``, and so
on. The adapters in this module hide those differences behind
:class:`SourceEntry`, which records the gross amount of the document and the
portion already settled in cash. Deciding what those amounts mean for the
party's balance is left to :func:`party_ledger.engine.normalize_entry`.

Adapters are pure. They raise :class:`MalformedRecordError` when a record
lacks a party, a usable timestamp, or (for financial kinds) every monetary
field, and never touch the record they were given.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .constants import DEFAULT_CURRENCY_EXPONENT, NON_FINANCIAL_KINDS, EntryKind
from .errors import MalformedRecordError, UnknownKindError
from .money import coerce_minor_units, is_missing


# Field names every kind accepts in addition to its own.
COMMON_PARTY_FIELDS = ("partyIdentifier",)
COMMON_TIMESTAMP_FIELDS = ("timestamp",)
COMMON_REFERENCE_FIELDS = ("referenceNumber", "_id", "id")

INVOICE_PAYMENT_CATEGORY = "Invoice Payment In"


@dataclass(frozen=True)
class SourceEntry:
    """Kind-agnostic view of one raw record, before sign rules are applied."""

    kind: EntryKind
    timestamp: datetime
    reference_number: str
    party_name: str
    gross_amount: int
    settled_amount: int = 0
    payment_mode: Optional[str] = None
    linked: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class FieldMap:
    """Raw field names, in lookup order, for one source kind."""

    party: Sequence[str]
    timestamp: Sequence[str]
    reference: Sequence[str]
    gross: Sequence[str]
    settled: Sequence[str] = ()
    mode: Sequence[str] = ()
    link: Sequence[str] = ()


FIELD_MAPS: Mapping[EntryKind, FieldMap] = {
    EntryKind.SALE_INVOICE: FieldMap(
        party=("partyName",),
        timestamp=("date", "createdAt"),
        reference=("invoiceNo",),
        gross=("grandTotal",),
        settled=("received", "amountReceived"),
        mode=("paymentType",),
    ),
    EntryKind.PURCHASE_BILL: FieldMap(
        party=("supplierName", "partyName"),
        timestamp=("date", "createdAt"),
        reference=("billNo",),
        gross=("grandTotal",),
        settled=("paid", "amountPaid"),
        mode=("paymentType",),
    ),
    EntryKind.PAYMENT_IN: FieldMap(
        party=("partyName", "customerName", "supplierName"),
        timestamp=("paymentDate", "createdAt"),
        reference=("receiptNo", "invoiceNo", "billNo"),
        gross=("finalAmount", "amount", "amountReceived"),
        mode=("paymentType",),
        link=("saleId", "invoiceNo"),
    ),
    EntryKind.PAYMENT_OUT: FieldMap(
        party=("supplierName", "partyName"),
        timestamp=("paymentDate", "createdAt"),
        reference=("receiptNo", "billNo"),
        gross=("finalAmount", "amount", "amountPaid"),
        mode=("paymentType",),
        link=("purchaseId", "billNo"),
    ),
    EntryKind.CREDIT_NOTE: FieldMap(
        party=("partyName",),
        timestamp=("date", "createdAt"),
        reference=("creditNoteNo",),
        gross=("grandTotal",),
        mode=("paymentType",),
    ),
    EntryKind.EXPENSE: FieldMap(
        party=("party", "partyName"),
        timestamp=("expenseDate", "createdAt"),
        reference=("expenseNumber",),
        gross=("totalAmount",),
        settled=("receivedAmount",),
        mode=("paymentType", "paymentMode"),
    ),
    EntryKind.QUOTATION: FieldMap(
        party=("customerName",),
        timestamp=("date", "createdAt"),
        reference=("quotationNo", "quotationNumber"),
        gross=("totalAmount",),
    ),
    EntryKind.SALE_ORDER: FieldMap(
        party=("customerName",),
        timestamp=("orderDate", "createdAt"),
        reference=("orderNumber",),
        gross=("total",),
    ),
    EntryKind.PURCHASE_ORDER: FieldMap(
        party=("supplierName",),
        timestamp=("orderDate", "createdAt"),
        reference=("orderNumber",),
        gross=("total",),
    ),
    EntryKind.DELIVERY_CHALLAN: FieldMap(
        party=("customerName",),
        timestamp=("challanDate", "createdAt"),
        reference=("challanNumber",),
        gross=("total",),
    ),
}


def parse_timestamp(value: Any) -> datetime:
    """Coerce a raw timestamp into a timezone-aware UTC datetime.

    Args:
        value (Any): ``datetime``, ``date`` or ISO-8601 string. Naive values
            are interpreted as UTC; a trailing ``Z`` is accepted.

    Returns:
        datetime: Equivalent moment expressed in UTC.

    Raises:
        MalformedRecordError: If ``value`` is missing or cannot be parsed.
    """

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedRecordError(f"Unparseable timestamp: {value!r}", field="timestamp") from exc
    else:
        raise MalformedRecordError("Record has no timestamp", field="timestamp")

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def _first_present(raw: Mapping[str, Any], names: Sequence[str]) -> Optional[Tuple[str, Any]]:
    """Return the first ``(name, value)`` pair whose value is not missing."""

    for name in names:
        value = raw.get(name)
        if not is_missing(value):
            return name, value
    return None


def _text(raw: Mapping[str, Any], names: Sequence[str]) -> Optional[str]:
    found = _first_present(raw, names)
    if found is None:
        return None
    return str(found[1]).strip()


def _amount(raw: Mapping[str, Any], names: Sequence[str], *, exponent: int) -> Tuple[bool, int]:
    """Read a monetary field, returning ``(present, minor_units)``."""

    found = _first_present(raw, names)
    if found is None:
        return False, 0
    name, value = found
    return True, coerce_minor_units(value, exponent=exponent, field=name)


def _is_linked(kind: EntryKind, raw: Mapping[str, Any], field_map: FieldMap) -> bool:
    if _first_present(raw, field_map.link) is not None:
        return True
    if kind is EntryKind.PAYMENT_IN:
        return str(raw.get("category") or "").strip() == INVOICE_PAYMENT_CATEGORY
    return False


def _adapt(kind: EntryKind, raw: Mapping[str, Any], *, exponent: int) -> SourceEntry:
    """Shared mapping routine behind every per-kind adapter."""

    if not isinstance(raw, Mapping):
        raise MalformedRecordError(f"{kind.value} record is not a mapping: {type(raw).__name__}")

    field_map = FIELD_MAPS[kind]
    party_name = _text(raw, (*field_map.party, *COMMON_PARTY_FIELDS))
    if not party_name:
        raise MalformedRecordError(f"{kind.value} record has no party identifier", field="party")

    found_timestamp = _first_present(raw, (*field_map.timestamp, *COMMON_TIMESTAMP_FIELDS))
    timestamp = parse_timestamp(found_timestamp[1] if found_timestamp else None)

    has_gross, gross_amount = _amount(raw, field_map.gross, exponent=exponent)
    has_settled, settled_amount = _amount(raw, field_map.settled, exponent=exponent)
    if kind not in NON_FINANCIAL_KINDS and not (has_gross or has_settled):
        raise MalformedRecordError(f"{kind.value} record has no monetary fields", field="amount")

    reference = _text(raw, (*field_map.reference, *COMMON_REFERENCE_FIELDS)) or ""

    return SourceEntry(
        kind=kind,
        timestamp=timestamp,
        reference_number=reference,
        party_name=party_name,
        gross_amount=gross_amount,
        settled_amount=settled_amount,
        payment_mode=_text(raw, field_map.mode),
        linked=_is_linked(kind, raw, field_map),
        description=_text(raw, ("description",)),
    )


def adapt_sale_invoice(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Map a sale invoice (``grandTotal`` / ``received``)."""
    return _adapt(EntryKind.SALE_INVOICE, raw, exponent=exponent)


def adapt_purchase_bill(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Map a purchase bill (``grandTotal`` / ``paid``)."""
    return _adapt(EntryKind.PURCHASE_BILL, raw, exponent=exponent)


def adapt_payment_in(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Map a received payment.

    ``finalAmount`` (after discount) wins over ``amount``. Payments carrying a
    ``saleId``/``invoiceNo`` or the invoice payment category are flagged as
    linked because the invoice's ``received`` already includes them.
    """
    return _adapt(EntryKind.PAYMENT_IN, raw, exponent=exponent)


def adapt_payment_out(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Map a payment made to a supplier; ``purchaseId``/``billNo`` mark it linked."""
    return _adapt(EntryKind.PAYMENT_OUT, raw, exponent=exponent)


def adapt_credit_note(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    return _adapt(EntryKind.CREDIT_NOTE, raw, exponent=exponent)


def adapt_expense(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Map an expense booked against the party (``totalAmount`` / ``receivedAmount``)."""
    return _adapt(EntryKind.EXPENSE, raw, exponent=exponent)


def adapt_quotation(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    return _adapt(EntryKind.QUOTATION, raw, exponent=exponent)


def adapt_sale_order(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    return _adapt(EntryKind.SALE_ORDER, raw, exponent=exponent)


def adapt_purchase_order(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    return _adapt(EntryKind.PURCHASE_ORDER, raw, exponent=exponent)


def adapt_delivery_challan(raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    return _adapt(EntryKind.DELIVERY_CHALLAN, raw, exponent=exponent)


Adapter = Callable[..., SourceEntry]

ADAPTERS: Dict[EntryKind, Adapter] = {
    EntryKind.SALE_INVOICE: adapt_sale_invoice,
    EntryKind.PURCHASE_BILL: adapt_purchase_bill,
    EntryKind.PAYMENT_IN: adapt_payment_in,
    EntryKind.PAYMENT_OUT: adapt_payment_out,
    EntryKind.CREDIT_NOTE: adapt_credit_note,
    EntryKind.EXPENSE: adapt_expense,
    EntryKind.QUOTATION: adapt_quotation,
    EntryKind.SALE_ORDER: adapt_sale_order,
    EntryKind.PURCHASE_ORDER: adapt_purchase_order,
    EntryKind.DELIVERY_CHALLAN: adapt_delivery_challan,
}


def adapt_record(kind: EntryKind, raw: Mapping[str, Any], *, exponent: int = DEFAULT_CURRENCY_EXPONENT) -> SourceEntry:
    """Dispatch ``raw`` to the adapter registered for ``kind``.

    Raises:
        UnknownKindError: If no adapter is registered for ``kind``.
        MalformedRecordError: Propagated from the adapter.
    """

    adapter = ADAPTERS.get(kind)  # type: ignore[arg-type]
    if adapter is None:
        raise UnknownKindError(f"No adapter registered for record kind: {kind!r}")
    return adapter(raw, exponent=exponent)


__all__ = [
    "SourceEntry",
    "FieldMap",
    "FIELD_MAPS",
    "ADAPTERS",
    "parse_timestamp",
    "adapt_record",
    "adapt_sale_invoice",
    "adapt_purchase_bill",
    "adapt_payment_in",
    "adapt_payment_out",
    "adapt_credit_note",
    "adapt_expense",
    "adapt_quotation",
    "adapt_sale_order",
    "adapt_purchase_order",
    "adapt_delivery_challan",
]
