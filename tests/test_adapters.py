"""Unit tests for the raw record adapters."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from party_ledger import adapters
from party_ledger.constants import EntryKind
from party_ledger.errors import MalformedRecordError, UnknownKindError


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def test_parse_timestamp_accepts_zulu_strings():
    """ISO strings with a trailing Z are read as UTC."""

    assert adapters.parse_timestamp("2025-01-05T10:00:00Z") == datetime(2025, 1, 5, 10, 0, tzinfo=UTC)


def test_parse_timestamp_converts_offsets_to_utc():
    """Aware datetimes in other zones are normalized to UTC."""

    karachi = timezone(timedelta(hours=5))
    moment = datetime(2025, 1, 5, 15, 0, tzinfo=karachi)
    assert adapters.parse_timestamp(moment) == datetime(2025, 1, 5, 10, 0, tzinfo=UTC)


def test_parse_timestamp_treats_naive_and_dates_as_utc():
    """Naive datetimes (as read from Excel) and plain dates are taken as UTC."""

    assert adapters.parse_timestamp(datetime(2025, 3, 1, 8, 30)).tzinfo is UTC
    assert adapters.parse_timestamp(date(2025, 3, 1)) == datetime(2025, 3, 1, tzinfo=UTC)


@pytest.mark.parametrize("raw", [None, "", "yesterday", 42])
def test_parse_timestamp_rejects_unusable_values(raw):
    """Missing or unparseable timestamps should raise MalformedRecordError."""

    with pytest.raises(MalformedRecordError) as excinfo:
        adapters.parse_timestamp(raw)
    assert excinfo.value.field == "timestamp"


# ---------------------------------------------------------------------------
# Per-kind field mapping
# ---------------------------------------------------------------------------


def test_adapt_sale_invoice_reads_total_and_received(records):
    """A sale maps grandTotal to gross and received to settled."""

    entry = adapters.adapt_sale_invoice(records.sale("2025-01-05T10:00:00Z", 1000, "400.50", paymentType="Cash"))

    assert entry.kind is EntryKind.SALE_INVOICE
    assert entry.gross_amount == 100000
    assert entry.settled_amount == 40050
    assert entry.reference_number == "INV-1"
    assert entry.party_name == "Acme Traders"
    assert entry.payment_mode == "Cash"


def test_adapt_sale_invoice_falls_back_to_amount_received(records):
    """amountReceived is used when received is absent."""

    raw = records.sale("2025-01-05", 1000)
    del raw["received"]
    raw["amountReceived"] = 250
    assert adapters.adapt_sale_invoice(raw).settled_amount == 25000


def test_adapt_purchase_bill_reads_supplier_and_paid(records):
    """Purchases identify the party through supplierName."""

    entry = adapters.adapt_purchase_bill(records.purchase("2025-01-10", 500, 50))

    assert entry.party_name == "Acme Traders"
    assert entry.gross_amount == 50000
    assert entry.settled_amount == 5000


def test_adapt_payment_in_prefers_final_amount(records):
    """finalAmount (after discount) wins over amount."""

    entry = adapters.adapt_payment_in(records.payment_in("2025-02-01", 290, amount=300))
    assert entry.gross_amount == 29000
    assert entry.linked is False


@pytest.mark.parametrize(
    "extra",
    [{"saleId": "S-9"}, {"invoiceNo": "INV-9"}, {"category": "Invoice Payment In"}],
)
def test_adapt_payment_in_flags_invoice_payments_as_linked(records, extra):
    """Payments tied to an invoice are marked linked."""

    entry = adapters.adapt_payment_in(records.payment_in("2025-02-01", 300, **extra))
    assert entry.linked is True


def test_adapt_payment_out_flags_bill_payments_as_linked(records):
    """Payments referencing a purchase are marked linked."""

    assert adapters.adapt_payment_out(records.payment_out("2025-02-01", 100, purchaseId="PU-1")).linked is True
    assert adapters.adapt_payment_out(records.payment_out("2025-02-01", 100)).linked is False


def test_adapt_expense_reads_mode_and_received(records):
    """Expenses carry their payment mode for the sign rule."""

    entry = adapters.adapt_expense(records.expense("2025-03-01", 200, 50, mode="Credit"))
    assert (entry.gross_amount, entry.settled_amount, entry.payment_mode) == (20000, 5000, "Credit")


def test_non_financial_records_need_no_amount(records):
    """Quotations without totals are still valid timeline entries."""

    raw = records.quotation("2025-01-02", None)
    entry = adapters.adapt_quotation(raw)
    assert entry.kind is EntryKind.QUOTATION
    assert entry.gross_amount == 0


def test_common_fields_are_accepted(records):
    """partyIdentifier, timestamp and referenceNumber work for every kind."""

    raw = {"partyIdentifier": "Acme Traders", "timestamp": "2025-01-01", "referenceNumber": "X-1", "total": 10}
    entry = adapters.adapt_sale_order(raw)
    assert (entry.party_name, entry.reference_number) == ("Acme Traders", "X-1")


def test_adapter_does_not_mutate_input(records):
    """Adapters must leave the raw record untouched."""

    raw = records.sale("2025-01-05", 1000, 400)
    snapshot = dict(raw)
    adapters.adapt_sale_invoice(raw)
    assert raw == snapshot


# ---------------------------------------------------------------------------
# Malformed records and dispatch
# ---------------------------------------------------------------------------


def test_missing_party_is_malformed(records):
    """Records without any party identifier cannot be placed on a ledger."""

    raw = records.sale("2025-01-05", 1000)
    raw["partyName"] = "  "
    with pytest.raises(MalformedRecordError) as excinfo:
        adapters.adapt_sale_invoice(raw)
    assert excinfo.value.field == "party"


def test_financial_record_without_amounts_is_malformed(records):
    """A sale with neither total nor received amount is rejected."""

    raw = records.sale("2025-01-05", None, None)
    with pytest.raises(MalformedRecordError) as excinfo:
        adapters.adapt_sale_invoice(raw)
    assert excinfo.value.field == "amount"


def test_non_mapping_record_is_malformed():
    """Rows that are not mappings are rejected rather than crashing."""

    with pytest.raises(MalformedRecordError):
        adapters.adapt_record(EntryKind.SALE_INVOICE, ["not", "a", "mapping"])  # type: ignore[arg-type]


def test_adapt_record_dispatches_by_kind(records):
    """adapt_record should route to the adapter registered for the kind."""

    entry = adapters.adapt_record(EntryKind.DELIVERY_CHALLAN, records.challan("2025-04-01", 75))
    assert entry.kind is EntryKind.DELIVERY_CHALLAN
    assert set(adapters.ADAPTERS) == set(EntryKind)


def test_adapt_record_rejects_unknown_kind(records):
    """Kinds without an adapter raise UnknownKindError."""

    with pytest.raises(UnknownKindError):
        adapters.adapt_record("Debit Note", records.sale("2025-01-05", 10))  # type: ignore[arg-type]
