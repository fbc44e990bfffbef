"""Enumerations shared across the party ledger modules.

Centralises domain constants so that the data access layer (DAL), the
reconciliation engine, and the presentation layer rely on a single source of
truth for record kinds, sheet names, and ordering rules.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY = "PKR"
DEFAULT_CURRENCY_EXPONENT = 2
DEFAULT_FETCH_WORKERS = 4


class EntryKind(str, Enum):
    """Enumerate the record kinds that can appear on a party ledger."""

    SALE_INVOICE = "Sale Invoice"
    PURCHASE_BILL = "Purchase Bill"
    PAYMENT_IN = "Payment In"
    PAYMENT_OUT = "Payment Out"
    CREDIT_NOTE = "Credit Note"
    EXPENSE = "Expense"
    QUOTATION = "Quotation"
    SALE_ORDER = "Sale Order"
    PURCHASE_ORDER = "Purchase Order"
    DELIVERY_CHALLAN = "Delivery Challan"


class LinkedPaymentPolicy(str, Enum):
    """How payments recorded against a specific invoice or bill are treated."""

    # Already reflected in the invoice's received / bill's paid amount.
    NETTED = "netted"
    STANDALONE = "standalone"


class BalanceSide(str, Enum):
    """Which side of the books a party's closing balance falls on."""

    RECEIVABLE = "receivable"
    PAYABLE = "payable"


class RecordSet(str, Enum):
    """Enumerate the raw record sets a caller supplies for one party."""

    SALES = "sales"
    PURCHASES = "purchases"
    PAYMENTS_IN = "payments_in"
    PAYMENTS_OUT = "payments_out"
    CREDIT_NOTES = "credit_notes"
    EXPENSES = "expenses"
    QUOTATIONS = "quotations"
    SALE_ORDERS = "sale_orders"
    PURCHASE_ORDERS = "purchase_orders"
    CHALLANS = "challans"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names read by the DAL."""

    PARTIES = "Parties"
    SALES = "Sales"
    PURCHASES = "Purchases"
    PAYMENTS_IN = "PaymentsIn"
    PAYMENTS_OUT = "PaymentsOut"
    CREDIT_NOTES = "CreditNotes"
    EXPENSES = "Expenses"
    QUOTATIONS = "Quotations"
    SALE_ORDERS = "SaleOrders"
    PURCHASE_ORDERS = "PurchaseOrders"
    DELIVERY_CHALLANS = "DeliveryChallans"


RECORD_SET_KINDS: Mapping[RecordSet, EntryKind] = {
    RecordSet.SALES: EntryKind.SALE_INVOICE,
    RecordSet.PURCHASES: EntryKind.PURCHASE_BILL,
    RecordSet.PAYMENTS_IN: EntryKind.PAYMENT_IN,
    RecordSet.PAYMENTS_OUT: EntryKind.PAYMENT_OUT,
    RecordSet.CREDIT_NOTES: EntryKind.CREDIT_NOTE,
    RecordSet.EXPENSES: EntryKind.EXPENSE,
    RecordSet.QUOTATIONS: EntryKind.QUOTATION,
    RecordSet.SALE_ORDERS: EntryKind.SALE_ORDER,
    RecordSet.PURCHASE_ORDERS: EntryKind.PURCHASE_ORDER,
    RecordSet.CHALLANS: EntryKind.DELIVERY_CHALLAN,
}

RECORD_SET_SHEETS: Mapping[RecordSet, SheetName] = {
    RecordSet.SALES: SheetName.SALES,
    RecordSet.PURCHASES: SheetName.PURCHASES,
    RecordSet.PAYMENTS_IN: SheetName.PAYMENTS_IN,
    RecordSet.PAYMENTS_OUT: SheetName.PAYMENTS_OUT,
    RecordSet.CREDIT_NOTES: SheetName.CREDIT_NOTES,
    RecordSet.EXPENSES: SheetName.EXPENSES,
    RecordSet.QUOTATIONS: SheetName.QUOTATIONS,
    RecordSet.SALE_ORDERS: SheetName.SALE_ORDERS,
    RecordSet.PURCHASE_ORDERS: SheetName.PURCHASE_ORDERS,
    RecordSet.CHALLANS: SheetName.DELIVERY_CHALLANS,
}

# camelCase keys used by JSON callers, mapped onto the canonical record sets.
RECORD_SET_ALIASES: Mapping[str, RecordSet] = {
    "paymentsIn": RecordSet.PAYMENTS_IN,
    "paymentsOut": RecordSet.PAYMENTS_OUT,
    "creditNotes": RecordSet.CREDIT_NOTES,
    "saleOrders": RecordSet.SALE_ORDERS,
    "purchaseOrders": RecordSet.PURCHASE_ORDERS,
    "deliveryChallans": RecordSet.CHALLANS,
}

# Same-timestamp tie-break: an invoice lands before the payment settling it.
KIND_PRIORITY: Mapping[EntryKind, int] = {
    EntryKind.SALE_INVOICE: 0,
    EntryKind.PAYMENT_IN: 1,
    EntryKind.PURCHASE_BILL: 2,
    EntryKind.PAYMENT_OUT: 3,
    EntryKind.CREDIT_NOTE: 4,
    EntryKind.EXPENSE: 5,
    EntryKind.QUOTATION: 6,
    EntryKind.SALE_ORDER: 7,
    EntryKind.PURCHASE_ORDER: 8,
    EntryKind.DELIVERY_CHALLAN: 9,
}

NON_FINANCIAL_KINDS: frozenset[EntryKind] = frozenset(
    {
        EntryKind.QUOTATION,
        EntryKind.SALE_ORDER,
        EntryKind.PURCHASE_ORDER,
        EntryKind.DELIVERY_CHALLAN,
    }
)

CREDIT_PAYMENT_MODE = "Credit"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY",
    "DEFAULT_CURRENCY_EXPONENT",
    "DEFAULT_FETCH_WORKERS",
    "EntryKind",
    "LinkedPaymentPolicy",
    "BalanceSide",
    "RecordSet",
    "SheetName",
    "RECORD_SET_KINDS",
    "RECORD_SET_SHEETS",
    "RECORD_SET_ALIASES",
    "KIND_PRIORITY",
    "NON_FINANCIAL_KINDS",
    "CREDIT_PAYMENT_MODE",
]
