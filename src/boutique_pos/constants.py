"""Enumerations and fixed values shared across the Boutique POS modules.

Centralises domain constants so that the data access layer (DAL), the sale
reconciliation engine, the analytics functions and the CLI all rely on a
single source of truth for sheet layouts, delivery windows and policy values.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Customer phones are matched on exactly this many digits.
PHONE_DIGITS = 11

# Cost assumed for a sold item whose product has since left the catalog.
FALLBACK_COST_RATIO = Decimal("0.6")

TOP_SELLER_LIMIT = 5
FOLLOW_UP_LIMIT = 5
FOLLOW_UP_WINDOW = timedelta(days=7)
DEFAULT_FOLLOW_UP_HOURS = 48


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    SALES = "Sales"
    EXPENSES = "Expenses"


# Column order is significant: rows are (de)serialized positionally.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "Category",
        "Color",
        "Size",
        "CostPrice",
        "SellingPrice",
        "Stock",
        "Version",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "CustomerName",
        "Phone",
        "Address",
        "TotalSpent",
        "LastPurchase",
        "Version",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Date",
        "CustomerName",
        "CustomerPhone",
        "DeliveryDuration",
        "Items",
        "TotalAmount",
        "IsReturned",
        "ReturnReason",
        "ReturnedAt",
        "IdempotencyKey",
        "Version",
    ],
    SheetName.EXPENSES.value: [
        "ExpenseID",
        "Description",
        "Amount",
        "Category",
        "Date",
    ],
}


class DeliveryDuration(str, Enum):
    """Enumerate the delivery windows a customer can be promised."""

    HOURS_24 = "24 hours"
    HOURS_48 = "48 hours"
    DAYS_3 = "3 days"
    DAYS_4 = "4 days"
    DAYS_5 = "5 days"

    @property
    def hours(self) -> int:
        return _DURATION_HOURS[self]

    @classmethod
    def parse(cls, label: object) -> "DeliveryDuration":
        """Resolve a stored or user-supplied label into a member.

        Accepts the canonical values as well as the Arabic labels written by
        the first release of the shop front-end.

        Raises:
            ValueError: If ``label`` is not a recognized delivery window.
        """

        if isinstance(label, cls):
            return label
        text = str(label).strip() if label is not None else ""
        for member in cls:
            if member.value == text:
                return member
        legacy = LEGACY_DURATION_LABELS.get(text)
        if legacy is not None:
            return legacy
        raise ValueError(f"Unknown delivery duration: {label!r}")


_DURATION_HOURS: Mapping[DeliveryDuration, int] = {
    DeliveryDuration.HOURS_24: 24,
    DeliveryDuration.HOURS_48: 48,
    DeliveryDuration.DAYS_3: 72,
    DeliveryDuration.DAYS_4: 96,
    DeliveryDuration.DAYS_5: 120,
}

LEGACY_DURATION_LABELS: Mapping[str, DeliveryDuration] = {
    "24 ساعة": DeliveryDuration.HOURS_24,
    "48 ساعة": DeliveryDuration.HOURS_48,
    "3 ايام": DeliveryDuration.DAYS_3,
    "4 ايام": DeliveryDuration.DAYS_4,
    "5 ايام": DeliveryDuration.DAYS_5,
}

DEFAULT_DELIVERY_DURATION = DeliveryDuration.HOURS_48


def delivery_hours(label: Optional[str]) -> int:
    """Return the promised delivery window in hours, tolerating unknown labels."""

    try:
        return DeliveryDuration.parse(label).hours
    except ValueError:
        return DEFAULT_FOLLOW_UP_HOURS


class ExpenseCategory(str, Enum):
    """Enumerate the expense categories offered by the shop."""

    OPERATING = "Operating"
    SALARIES = "Salaries"
    MARKETING = "Marketing"
    MAINTENANCE = "Maintenance"
    OTHER = "Other"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "PHONE_DIGITS",
    "FALLBACK_COST_RATIO",
    "TOP_SELLER_LIMIT",
    "FOLLOW_UP_LIMIT",
    "FOLLOW_UP_WINDOW",
    "DEFAULT_FOLLOW_UP_HOURS",
    "SheetName",
    "SHEET_COLUMNS",
    "DeliveryDuration",
    "LEGACY_DURATION_LABELS",
    "DEFAULT_DELIVERY_DURATION",
    "delivery_hours",
    "ExpenseCategory",
]
