"""Data access layer for Boutique POS.

This module provides low-level helpers that read from and write to the
``boutique_workbook.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records, appending rows and patching
   individual rows under an optional version guard.

The workbook offers no multi-row transactions. Every function here touches a
single row (or a single sheet scan) so the engines can reason about exactly
which steps were committed when a later step fails.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import SheetName
from .errors import ConcurrencyConflict, NotFoundError


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
SALES_SHEET = SheetName.SALES.value
EXPENSES_SHEET = SheetName.EXPENSES.value
VERSION_COLUMN = "Version"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    timezone: str = "UTC"
    max_conflict_retries: int = 3
    allow_negative_stock: bool = True
    reverse_spend_on_return: bool = False

    @property
    def tzinfo(self) -> tzinfo:
        """Time zone used to draw calendar-day boundaries."""

        return resolve_timezone(self.timezone)


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    category: str
    color: str
    size: str
    cost_price: Decimal
    selling_price: Decimal
    stock: int
    version: int = 0


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    customer_name: str
    phone: str
    address: str
    total_spent: Decimal
    last_purchase_iso: Optional[str]
    version: int = 0


@dataclass(frozen=True)
class SaleItem:
    """Frozen copy of a product line as it was sold."""

    product_id: str
    product_name: str
    color: str
    size: str
    quantity: int
    price: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "color": self.color,
            "size": self.size,
            "quantity": self.quantity,
            "price": str(self.price),
            "total": str(self.total),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SaleItem":
        price = Decimal(str(raw.get("price", "0")))
        quantity = int(raw.get("quantity", 0))
        total_raw = raw.get("total")
        total = Decimal(str(total_raw)) if total_raw is not None else price * quantity
        return cls(
            product_id=str(raw.get("product_id", "")),
            product_name=str(raw.get("product_name", "")),
            color=str(raw.get("color", "")),
            size=str(raw.get("size", "")),
            quantity=quantity,
            price=price,
            total=total,
        )


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    date_iso: str
    customer_name: str
    customer_phone: str
    delivery_duration: str
    items: tuple[SaleItem, ...]
    total_amount: Decimal
    is_returned: bool = False
    return_reason: Optional[str] = None
    returned_at_iso: Optional[str] = None
    idempotency_key: Optional[str] = None
    version: int = 0

    @property
    def timestamp(self) -> datetime:
        return parse_timestamp(self.date_iso)


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    description: str
    amount: Decimal
    category: str
    date_iso: str

    @property
    def timestamp(self) -> datetime:
        return parse_timestamp(self.date_iso)


@dataclass(frozen=True)
class StockReading:
    """Stock level observed for a product together with its version token."""

    product_id: str
    stock: int
    version: int


def resolve_timezone(name: str) -> tzinfo:
    """Translate a configured zone name into a ``tzinfo`` instance.

    Raises:
        ValueError: If ``name`` is not a zone known to the system database.
    """

    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {name}") from exc


def parse_timestamp(value: str, *, default_tz: tzinfo = UTC) -> datetime:
    """Parse an ISO-8601 timestamp, assuming ``default_tz`` for naive values."""

    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=default_tz)
    return moment


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file. The path is *not* resolved or validated when supplied
            explicitly.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``ShopName`` and ``SchemaVersion``.
    ``TimeZone`` and the whole ``[Engine]`` section are optional and fall back
    to the defaults declared on :class:`ConfigSettings`. Relative data file
    paths are expanded against ``base_path`` when provided, or against the
    current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If an optional entry holds a malformed value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    timezone = parser.get("System", "TimeZone", fallback="UTC")
    resolve_timezone(timezone)
    max_retries = parser.getint("Engine", "MaxConflictRetries", fallback=3)
    if max_retries < 1:
        raise ValueError("MaxConflictRetries must be at least 1")
    allow_negative = parser.getboolean("Engine", "AllowNegativeStock", fallback=True)
    reverse_spend = parser.getboolean("Engine", "ReverseSpendOnReturn", fallback=False)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        timezone=timezone,
        max_conflict_retries=max_retries,
        allow_negative_stock=allow_negative,
        reverse_spend_on_return=reverse_spend,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the boutique workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent folders on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def get_sheet(workbook: Workbook, sheet_name: str) -> Worksheet:
    """Return ``sheet_name`` or fail with :class:`NotFoundError`.

    A missing sheet means the workbook was never provisioned for this schema,
    which callers treat like any other missing record.
    """

    try:
        return workbook[sheet_name]
    except KeyError as exc:
        raise NotFoundError(f"Sheet '{sheet_name}' is not provisioned in the workbook") from exc


def _header_map(sheet: Worksheet) -> dict[str, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    sheet = get_sheet(workbook, sheet_name)
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Header and fully empty rows are skipped; every remaining row goes through
    :func:`deserialize_product`.
    """

    for raw in _iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over the ``Customers`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale records from the ``Sales`` worksheet in sheet order."""

    for raw in _iter_raw_rows(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    """Stream expense records from the ``Expenses`` worksheet in sheet order."""

    for raw in _iter_raw_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def list_products(workbook: Workbook) -> List[ProductRow]:
    return list(iter_products(workbook))


def list_customers(workbook: Workbook) -> List[CustomerRow]:
    return list(iter_customers(workbook))


def list_sales(workbook: Workbook) -> List[SaleRow]:
    """Return every sale ordered newest first."""

    return sorted(iter_sales(workbook), key=lambda sale: sale.timestamp, reverse=True)


def list_expenses(workbook: Workbook) -> List[ExpenseRow]:
    """Return every expense ordered newest first."""

    return sorted(iter_expenses(workbook), key=lambda expense: expense.timestamp, reverse=True)


def get_product(workbook: Workbook, product_id: str) -> Optional[ProductRow]:
    """Return the product with ``product_id`` or ``None`` when it is absent."""

    for product in iter_products(workbook):
        if product.product_id == product_id:
            return product
    return None


def get_sale(workbook: Workbook, sale_id: str) -> SaleRow:
    """Return the sale with ``sale_id``.

    Raises:
        NotFoundError: If no sale row carries the identifier.
    """

    for sale in iter_sales(workbook):
        if sale.sale_id == sale_id:
            return sale
    raise NotFoundError(f"Sale not found: {sale_id}")


def find_sale_by_idempotency_key(workbook: Workbook, key: str) -> Optional[SaleRow]:
    """Return the sale previously recorded under ``key``, if any."""

    for sale in iter_sales(workbook):
        if sale.idempotency_key == key:
            return sale
    return None


def find_customer_by_phone(workbook: Workbook, phone: str) -> Optional[CustomerRow]:
    """Return the first customer whose stored phone equals ``phone``."""

    for customer in iter_customers(workbook):
        if customer.phone == phone:
            return customer
    return None


def read_product_stock(workbook: Workbook, product_id: str) -> Optional[StockReading]:
    """Read the live stock level and version token of a product.

    Returns:
        StockReading | None: The observation, or ``None`` when the product no
            longer exists in the catalog.
    """

    product = get_product(workbook, product_id)
    if product is None:
        return None
    return StockReading(product_id=product.product_id, stock=product.stock, version=product.version)


def get_product_stock(workbook: Workbook, product_id: str) -> int:
    """Return the live stock level of a product.

    Raises:
        NotFoundError: If the product does not exist.
    """

    reading = read_product_stock(workbook, product_id)
    if reading is None:
        raise NotFoundError(f"Product not found: {product_id}")
    return reading.stock


def set_product_stock(
    workbook: Workbook,
    product_id: str,
    new_stock: int,
    *,
    expected_version: Optional[int] = None,
) -> Optional[int]:
    """Overwrite a product's stock, optionally guarded by its version token.

    Returns:
        int | None: The product's new version token.

    Raises:
        NotFoundError: If the product does not exist.
        ConcurrencyConflict: If ``expected_version`` no longer matches.
    """

    return update_product(
        workbook,
        product_id,
        field_values={"Stock": int(new_stock)},
        expected_version=expected_version,
    )


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    get_sheet(workbook, PRODUCTS_SHEET).append(serialize_product(record))


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    """Append a customer record to the ``Customers`` worksheet."""

    get_sheet(workbook, CUSTOMERS_SHEET).append(serialize_customer(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet.

    Items are stored as a JSON document in a single cell so the sale keeps a
    frozen copy of product attributes independent from later catalog edits.
    """

    get_sheet(workbook, SALES_SHEET).append(serialize_sale(record))


def append_expense(workbook: Workbook, record: ExpenseRow) -> None:
    """Append an expense record to the ``Expenses`` worksheet."""

    get_sheet(workbook, EXPENSES_SHEET).append(serialize_expense(record))


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: dict[str, Any],
    *,
    label: str,
    expected_version: Optional[int],
) -> Optional[int]:
    """Patch selected columns of one row, honouring the ``Version`` column.

    When the sheet has a ``Version`` column, the stored version is compared to
    ``expected_version`` (if given) before anything is written, and then
    incremented together with the patched fields.

    Returns:
        int | None: The row's new version, or ``None`` for unversioned sheets.

    Raises:
        NotFoundError: If no row matches ``key_value``.
        KeyError: If ``field_values`` names a column the sheet does not have.
        ConcurrencyConflict: If the stored version differs from
            ``expected_version``.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise NotFoundError(f"{label} not found: {key_value}")

    sheet = get_sheet(workbook, sheet_name)
    header_map = _header_map(sheet)
    for field in field_values:
        if field not in header_map:
            raise KeyError(f"Unknown {label.lower()} field: {field}")

    new_version: Optional[int] = None
    version_col = header_map.get(VERSION_COLUMN)
    if version_col is not None:
        current = _to_int(sheet.cell(row=row_index, column=version_col).value)
        if expected_version is not None and current != expected_version:
            log.warning(
                "Version conflict on %s '%s': expected %s, found %s",
                label.lower(),
                key_value,
                expected_version,
                current,
            )
            raise ConcurrencyConflict(
                f"{label} '{key_value}' changed concurrently "
                f"(expected version {expected_version}, found {current})"
            )
        new_version = current + 1

    for field, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[field], value=value)
    if version_col is not None:
        sheet.cell(row=row_index, column=version_col, value=new_version)
    return new_version


def update_product(
    workbook: Workbook,
    product_id: str,
    *,
    field_values: dict[str, Any],
    expected_version: Optional[int] = None,
) -> Optional[int]:
    """Update selected columns for an existing product.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.
        expected_version (int | None): Version token read by the caller; the
            write is refused when the row changed since.

    Raises:
        NotFoundError: If the product cannot be found.
        KeyError: If a referenced column cannot be found.
        ConcurrencyConflict: If the version guard fails.
    """

    return _update_row(
        workbook,
        PRODUCTS_SHEET,
        "ProductID",
        product_id,
        field_values,
        label="Product",
        expected_version=expected_version,
    )


def update_customer(
    workbook: Workbook,
    customer_id: str,
    *,
    field_values: dict[str, Any],
    expected_version: Optional[int] = None,
) -> Optional[int]:
    """Update selected columns for an existing customer (see :func:`update_product`)."""

    return _update_row(
        workbook,
        CUSTOMERS_SHEET,
        "CustomerID",
        customer_id,
        field_values,
        label="Customer",
        expected_version=expected_version,
    )


def update_sale(
    workbook: Workbook,
    sale_id: str,
    *,
    field_values: dict[str, Any],
    expected_version: Optional[int] = None,
) -> Optional[int]:
    """Update selected columns for an existing sale.

    ``Items`` values must already be serialized with :func:`serialize_items`.
    """

    return _update_row(
        workbook,
        SALES_SHEET,
        "SaleID",
        sale_id,
        field_values,
        label="Sale",
        expected_version=expected_version,
    )


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, *, label: str) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise NotFoundError(f"{label} not found: {key_value}")
    get_sheet(workbook, sheet_name).delete_rows(row_index)


def delete_product(workbook: Workbook, product_id: str) -> None:
    """Physically remove a product row. Historical sales keep their copies."""

    _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, label="Product")


def delete_expense(workbook: Workbook, expense_id: str) -> None:
    """Physically remove an expense row."""

    _delete_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id, label="Expense")


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
        NotFoundError: If the worksheet itself is missing.
    """

    sheet = get_sheet(workbook, sheet_name)
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_items(items: Sequence[SaleItem]) -> str:
    """Encode sale items as the JSON document stored in the ``Items`` cell."""

    return json.dumps([item.to_dict() for item in items], ensure_ascii=False)


def deserialize_items(raw: object) -> tuple[SaleItem, ...]:
    if raw is None or raw == "":
        return ()
    return tuple(SaleItem.from_dict(entry) for entry in json.loads(str(raw)))


def serialize_product(record: ProductRow) -> list[object]:
    return [
        record.product_id,
        record.product_name,
        record.category,
        record.color,
        record.size,
        record.cost_price,
        record.selling_price,
        record.stock,
        record.version,
    ]


def serialize_customer(record: CustomerRow) -> list[object]:
    return [
        record.customer_id,
        record.customer_name,
        record.phone,
        record.address,
        record.total_spent,
        record.last_purchase_iso,
        record.version,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    return [
        record.sale_id,
        record.date_iso,
        record.customer_name,
        record.customer_phone,
        record.delivery_duration,
        serialize_items(record.items),
        record.total_amount,
        record.is_returned,
        record.return_reason,
        record.returned_at_iso,
        record.idempotency_key,
        record.version,
    ]


def serialize_expense(record: ExpenseRow) -> list[object]:
    return [
        record.expense_id,
        record.description,
        record.amount,
        record.category,
        record.date_iso,
    ]


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(raw) if raw is not None else 0


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _to_optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _pad(raw_row: Sequence[object], width: int) -> Sequence[object]:
    # Rows written before trailing columns existed come back short.
    if len(raw_row) >= width:
        return raw_row
    return tuple(raw_row) + (None,) * (width - len(raw_row))


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Money columns become :class:`~decimal.Decimal`, stock and version become
    ``int`` and text columns are coerced to ``str`` so that Excel's habit of
    turning numeric-looking sizes into numbers does not leak out.
    """

    (
        product_id,
        product_name,
        category,
        color,
        size,
        cost_raw,
        selling_raw,
        stock_raw,
        version_raw,
    ) = _pad(raw_row, 9)[:9]
    return ProductRow(
        product_id=str(product_id),
        product_name=_to_text(product_name),
        category=_to_text(category),
        color=_to_text(color),
        size=_to_text(size),
        cost_price=_to_decimal(cost_raw),
        selling_price=_to_decimal(selling_raw),
        stock=_to_int(stock_raw),
        version=_to_int(version_raw),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    (
        customer_id,
        customer_name,
        phone,
        address,
        total_raw,
        last_purchase,
        version_raw,
    ) = _pad(raw_row, 7)[:7]
    return CustomerRow(
        customer_id=str(customer_id),
        customer_name=_to_text(customer_name),
        phone=_to_text(phone),
        address=_to_text(address),
        total_spent=_to_decimal(total_raw),
        last_purchase_iso=_to_optional_text(last_purchase),
        version=_to_int(version_raw),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale record.

    The ``Items`` JSON document is decoded into :class:`SaleItem` tuples and
    the returned flag defaults to ``False`` when the cell is blank.
    """

    (
        sale_id,
        date_iso,
        customer_name,
        customer_phone,
        delivery_duration,
        items_raw,
        total_raw,
        is_returned,
        return_reason,
        returned_at,
        idempotency_key,
        version_raw,
    ) = _pad(raw_row, 12)[:12]
    return SaleRow(
        sale_id=str(sale_id),
        date_iso=_to_text(date_iso),
        customer_name=_to_text(customer_name),
        customer_phone=_to_text(customer_phone),
        delivery_duration=_to_text(delivery_duration),
        items=deserialize_items(items_raw),
        total_amount=_to_decimal(total_raw),
        is_returned=bool(is_returned),
        return_reason=_to_optional_text(return_reason),
        returned_at_iso=_to_optional_text(returned_at),
        idempotency_key=_to_optional_text(idempotency_key),
        version=_to_int(version_raw),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    expense_id, description, amount_raw, category, date_iso = _pad(raw_row, 5)[:5]
    return ExpenseRow(
        expense_id=str(expense_id),
        description=_to_text(description),
        amount=_to_decimal(amount_raw),
        category=_to_text(category),
        date_iso=_to_text(date_iso),
    )
