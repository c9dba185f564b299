"""Business logic layer for Boutique POS.

This module holds the runtime context shared by every operation, the cached
read helpers, input validation, and the catalog and expense management
workflows. It consumes the Data Access Layer (DAL) for all I/O. The sale
reconciliation workflows live in :mod:`boutique_pos.reconciliation` and the
pure reporting functions in :mod:`boutique_pos.analytics`.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from openpyxl.workbook import Workbook

from . import analytics, data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, PHONE_DIGITS, ExpenseCategory
from .errors import NotFoundError, PosError, RemoteOperationError, ValidationError


T = TypeVar("T")

PRODUCT_FIELD_COLUMNS: Dict[str, str] = {
    "product_name": "ProductName",
    "category": "Category",
    "color": "Color",
    "size": "Size",
    "cost_price": "CostPrice",
    "selling_price": "SellingPrice",
    "stock": "Stock",
}


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are simple dictionaries keyed by domain area (products,
    customers, sales, expenses) that store the collections read from the
    workbook, so list queries do not rescan the sheets.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = call_store("list products", data_manager.list_products, context.workbook)
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customers")
    if "all" not in bucket:
        all_customers = call_store("list customers", data_manager.list_customers, context.workbook)
        bucket["all"] = all_customers
        log.debug("Populated customers cache with %d entries", len(all_customers))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = call_store("list sales", data_manager.list_sales, context.workbook)
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        all_expenses = call_store("list expenses", data_manager.list_expenses, context.workbook)
        bucket["all"] = all_expenses
        log.debug("Populated expenses cache with %d entries", len(all_expenses))
    return bucket


def call_store(description: str, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Invoke a DAL function, translating unexpected failures.

    Errors that already belong to the :class:`~boutique_pos.errors.PosError`
    hierarchy propagate untouched. Anything else raised by the store is
    wrapped in :class:`RemoteOperationError` with the original exception
    chained, so callers deal with a single failure type per step.

    Args:
        description (str): Short human description of the step, used in the
            log and in the wrapped error message.
        operation (Callable): DAL function to call.
        *args: Positional arguments forwarded to ``operation``.
        **kwargs: Keyword arguments forwarded to ``operation``.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        RemoteOperationError: If ``operation`` fails with a non-domain error.
    """

    try:
        return operation(*args, **kwargs)
    except PosError:
        raise
    except Exception as exc:
        log.error("Store call failed while trying to %s: %s", description, exc)
        raise RemoteOperationError(f"Failed to {description}: {exc}") from exc


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def invalidate_all(context: RuntimeContext) -> None:
    """Drop every cached collection so the next read hits the workbook."""

    _invalidate_cache(context, "products", "customers", "sales", "expenses")


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return the catalog in sheet order from cache."""
    return list(_ensure_products_cache(context)["all"])


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_ensure_customers_cache(context)["all"])


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return every sale, newest first."""
    return list(_ensure_sales_cache(context)["all"])


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    """Return every expense, newest first."""
    return list(_ensure_expenses_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        NotFoundError: If ``product_id`` is absent from the catalog.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise NotFoundError(f"Unknown product id: {product_id}") from exc


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale record by its identifier from cache.

    Raises:
        NotFoundError: If ``sale_id`` is unknown.
    """
    cache = _ensure_sales_cache(context)
    try:
        return cache["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise NotFoundError(f"Unknown sale id: {sale_id}") from exc


def take_snapshot(context: RuntimeContext) -> analytics.Snapshot:
    """Capture the current records as an immutable analytics snapshot."""

    return analytics.Snapshot(
        products=tuple(list_products(context)),
        sales=tuple(list_sales(context)),
        expenses=tuple(list_expenses(context)),
        customers=tuple(list_customers(context)),
    )


def generate_record_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{hex}``. The
            timestamp keeps identifiers chronologically sortable and the random
            suffix keeps records created in the same microsecond apart.
    """
    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def normalize_phone(raw: Optional[str]) -> str:
    """Reduce a phone number to digits and enforce the expected length.

    Raises:
        ValidationError: If the digits do not add up to ``PHONE_DIGITS``.
    """
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) != PHONE_DIGITS:
        log.error("Phone validation failed: %r", raw)
        raise ValidationError(f"Phone number must contain exactly {PHONE_DIGITS} digits")
    return digits


def require_text(value: Optional[str], field_name: str) -> str:
    """Return ``value`` stripped, rejecting blank input."""
    text = (value or "").strip()
    if not text:
        log.error("Validation failed: %s is empty", field_name)
        raise ValidationError(f"{field_name} is required")
    return text


def require_positive_quantity(quantity: int) -> int:
    """Validate that a quantity is a strictly positive whole number.

    Raises:
        ValidationError: If ``quantity`` is zero, negative or fractional.
    """
    if isinstance(quantity, bool) or int(quantity) != quantity or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")
    return int(quantity)


def require_nonnegative_money(amount: Decimal) -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is negative or not a number.
    """
    value = _to_money(amount)
    if value < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")
    return value


def require_positive_money(amount: Decimal) -> Decimal:
    value = _to_money(amount)
    if value <= Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be greater than zero")
    return value


def _to_money(amount: Any) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError(f"Not a valid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Not a valid amount: {amount!r}")
    return value


def add_product(
    context: RuntimeContext,
    *,
    product_name: str,
    category: str,
    color: str,
    size: str,
    cost_price: Decimal,
    selling_price: Decimal,
    stock: int,
    product_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Validate and append a product to the catalog.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        product_name (str): Display name, shared by every color/size variant.
        category (str): Free-form category label.
        color (str): Variant color.
        size (str): Variant size.
        cost_price (Decimal): Purchase cost per unit, zero or positive.
        selling_price (Decimal): Shelf price per unit, zero or positive.
        stock (int): Opening stock, zero or positive.
        product_id (str | None): Explicit identifier; generated when omitted.

    Returns:
        data_manager.ProductRow: The stored product.

    Raises:
        ValidationError: If a field fails validation or ``product_id`` is
            already taken.
    """
    name = require_text(product_name, "Product name")
    cost = require_nonnegative_money(cost_price)
    price = require_nonnegative_money(selling_price)
    if isinstance(stock, bool) or int(stock) != stock or stock < 0:
        raise ValidationError("Stock must be a whole number, zero or positive")

    record_id = product_id or generate_record_id("P")
    if record_id in _ensure_products_cache(context)["by_id"]:
        raise ValidationError(f"Product id already exists: {record_id}")

    product = data_manager.ProductRow(
        product_id=record_id,
        product_name=name,
        category=(category or "").strip(),
        color=(color or "").strip(),
        size=(size or "").strip(),
        cost_price=cost,
        selling_price=price,
        stock=int(stock),
        version=0,
    )
    call_store("append product", data_manager.append_product, context.workbook, product)
    _invalidate_cache(context, "products")
    log.info("Added product '%s' (%s / %s / %s)", product.product_id, name, product.color, product.size)
    return product


def add_product_variants(
    context: RuntimeContext,
    *,
    product_name: str,
    category: str,
    colors: Iterable[str],
    sizes: Iterable[str],
    cost_price: Decimal,
    selling_price: Decimal,
    stock: int,
) -> List[data_manager.ProductRow]:
    """Add one product per color and size combination.

    Duplicate colors or sizes are collapsed while keeping their first
    position, so the variants come out in the order they were typed.

    Raises:
        ValidationError: If no color or no size is supplied.
    """
    unique_colors = _unique_labels(colors)
    unique_sizes = _unique_labels(sizes)
    if not unique_colors or not unique_sizes:
        raise ValidationError("At least one color and one size are required")

    created = [
        add_product(
            context,
            product_name=product_name,
            category=category,
            color=color,
            size=size,
            cost_price=cost_price,
            selling_price=selling_price,
            stock=stock,
        )
        for color in unique_colors
        for size in unique_sizes
    ]
    log.info("Added %d variants of '%s'", len(created), product_name)
    return created


def _unique_labels(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        label = (value or "").strip()
        if label and label not in seen:
            seen.append(label)
    return seen


def edit_product(context: RuntimeContext, product_id: str, **changes: Any) -> data_manager.ProductRow:
    """Patch catalog fields of an existing product.

    Keyword names follow :class:`~boutique_pos.data_manager.ProductRow`
    (``product_name``, ``category``, ``color``, ``size``, ``cost_price``,
    ``selling_price``, ``stock``). ``None`` values are ignored.

    Raises:
        ValidationError: If an unknown field is named or a value is invalid.
        NotFoundError: If the product does not exist.
    """
    field_values: Dict[str, Any] = {}
    for name, value in changes.items():
        if value is None:
            continue
        column = PRODUCT_FIELD_COLUMNS.get(name)
        if column is None:
            raise ValidationError(f"Unknown product field: {name}")
        if name in ("cost_price", "selling_price"):
            value = require_nonnegative_money(value)
        elif name == "stock":
            if isinstance(value, bool) or int(value) != value:
                raise ValidationError("Stock must be a whole number")
            value = int(value)
        elif name == "product_name":
            value = require_text(value, "Product name")
        else:
            value = str(value).strip()
        field_values[column] = value

    if not field_values:
        return get_product(context, product_id)

    call_store(
        "update product",
        data_manager.update_product,
        context.workbook,
        product_id,
        field_values=field_values,
    )
    _invalidate_cache(context, "products")
    log.info("Edited product '%s': %s", product_id, ", ".join(sorted(field_values)))
    return get_product(context, product_id)


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalog.

    Past sales keep their frozen item copies; analytics fall back to an
    estimated cost for them.
    """
    call_store("delete product", data_manager.delete_product, context.workbook, product_id)
    _invalidate_cache(context, "products")
    log.info("Deleted product '%s'", product_id)


def add_expense(
    context: RuntimeContext,
    *,
    description: str,
    amount: Decimal,
    category: ExpenseCategory = ExpenseCategory.OPERATING,
    timestamp: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Validate and append an expense to the ledger.

    Raises:
        ValidationError: If the description is blank, the amount is not
            positive, or the category is not an :class:`ExpenseCategory`.
    """
    text = require_text(description, "Expense description")
    value = require_positive_money(amount)
    try:
        category = ExpenseCategory(category)
    except ValueError as exc:
        raise ValidationError(f"Unsupported expense category: {category}") from exc

    moment = resolve_timestamp(timestamp)
    expense = data_manager.ExpenseRow(
        expense_id=generate_record_id("E", when=moment),
        description=text,
        amount=value,
        category=category.value,
        date_iso=moment.isoformat(),
    )
    call_store("append expense", data_manager.append_expense, context.workbook, expense)
    _invalidate_cache(context, "expenses")
    log.info("Recorded expense '%s' (%s, amount=%s)", expense.expense_id, category.value, value)
    return expense


def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    call_store("delete expense", data_manager.delete_expense, context.workbook, expense_id)
    _invalidate_cache(context, "expenses")
    log.info("Deleted expense '%s'", expense_id)
