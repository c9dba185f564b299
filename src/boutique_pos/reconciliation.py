"""Sale reconciliation workflows for Boutique POS.

Completing, amending and returning a sale each touch several collections of
the workbook (sales, product stock, customer spend) and the store offers no
multi-row commit. The functions below therefore perform an explicit, ordered
series of single-row writes:

* every counter update (``Stock``, ``TotalSpent``) is a read followed by a
  write guarded by the row's version token, retried on conflict;
* sale rows are written under their version token, so two concurrent
  amendments or returns of the same sale cannot both succeed;
* :class:`CompleteSaleCommand` accepts an idempotency key so a resubmitted
  checkout returns the sale recorded the first time.

When a step fails the error propagates and the steps already performed stay
committed. The caches of the runtime context are dropped on the way out in
every case, so the next read reflects exactly what reached the workbook.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import data_manager, log
from .constants import DEFAULT_DELIVERY_DURATION, DeliveryDuration
from .core_logic import (
    RuntimeContext,
    call_store,
    generate_record_id,
    invalidate_all,
    normalize_phone,
    require_nonnegative_money,
    require_positive_quantity,
    require_text,
    resolve_timestamp,
)
from .errors import ConcurrencyConflict, NotFoundError, SaleAlreadyReturned, ValidationError


@dataclass(frozen=True)
class CartLine:
    """One product line in the checkout cart.

    ``unit_price`` overrides the catalog selling price for this sale only.
    """

    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass(frozen=True)
class CustomerDetails:
    """Who the sale is for and how fast it was promised."""

    name: str
    phone: str
    address: str = ""
    delivery_duration: Union[DeliveryDuration, str] = DEFAULT_DELIVERY_DURATION


@dataclass(frozen=True)
class CompleteSaleCommand:
    """User intent for checking out a cart."""

    cart: Tuple[CartLine, ...]
    customer: CustomerDetails
    idempotency_key: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AmendedLine:
    """Replacement quantity and unit price for a product in an amended sale."""

    product_id: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class AmendSaleCommand:
    """User intent for correcting an active sale."""

    sale_id: str
    customer_name: str
    customer_phone: str
    delivery_duration: Union[DeliveryDuration, str]
    items: Tuple[AmendedLine, ...]


@dataclass(frozen=True)
class ReturnSaleCommand:
    """User intent for taking a whole sale back."""

    sale_id: str
    reason: str
    timestamp: Optional[datetime] = None


def parse_duration(label: Union[DeliveryDuration, str]) -> DeliveryDuration:
    """Resolve a delivery label, rejecting anything outside the closed set.

    Raises:
        ValidationError: If ``label`` is not a known delivery window.
    """
    try:
        return DeliveryDuration.parse(label)
    except ValueError as exc:
        log.error("Delivery duration validation failed: %r", label)
        raise ValidationError(str(exc)) from exc


def complete_sale(context: RuntimeContext, command: CompleteSaleCommand) -> data_manager.SaleRow:
    """Record a checkout: the sale, the stock it consumes, and the customer's spend.

    The cart and customer details are fully validated, and every product is
    read, before anything is written. The writes then happen in this order:

    1. append the sale with ``is_returned=False``;
    2. decrement the stock of each cart line's product;
    3. add the sale total to the customer matched by phone (refreshing their
       name, address and last purchase), or register a new customer.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            settings.
        command (CompleteSaleCommand): Cart, customer details and optional
            idempotency key.

    Returns:
        data_manager.SaleRow: The recorded sale, or the sale previously
            recorded under the same idempotency key.

    Raises:
        ValidationError: On an empty cart, malformed customer details, a bad
            quantity or price, or insufficient stock when negative stock is
            disabled.
        NotFoundError: If a cart line references an unknown product.
        RemoteOperationError: If a store call fails; earlier writes remain.
    """
    if not command.cart:
        log.error("Checkout rejected: cart is empty")
        raise ValidationError("Cart is empty")
    name = require_text(command.customer.name, "Customer name")
    phone = normalize_phone(command.customer.phone)
    address = (command.customer.address or "").strip()
    duration = parse_duration(command.customer.delivery_duration)

    workbook = context.workbook
    if command.idempotency_key:
        existing = call_store(
            "look up idempotency key",
            data_manager.find_sale_by_idempotency_key,
            workbook,
            command.idempotency_key,
        )
        if existing is not None:
            log.info(
                "Checkout with idempotency key '%s' already recorded as sale '%s'",
                command.idempotency_key,
                existing.sale_id,
            )
            return existing

    items = [_snapshot_cart_line(context, line) for line in command.cart]
    if not context.settings.allow_negative_stock:
        _require_available_stock(context, _quantities(items))

    total_amount = sum((item.total for item in items), Decimal("0"))
    timestamp = resolve_timestamp(command.timestamp)
    sale = data_manager.SaleRow(
        sale_id=generate_record_id("S", when=timestamp),
        date_iso=timestamp.isoformat(),
        customer_name=name,
        customer_phone=phone,
        delivery_duration=duration.value,
        items=tuple(items),
        total_amount=total_amount,
        is_returned=False,
        idempotency_key=command.idempotency_key or None,
    )

    try:
        call_store("record sale", data_manager.append_sale, workbook, sale)
        log.info(
            "Recorded sale '%s' for %s (%d lines, total=%s)",
            sale.sale_id,
            phone,
            len(items),
            total_amount,
        )
        for item in items:
            _adjust_stock(context, item.product_id, -item.quantity)

        matched = _add_customer_spend(
            context,
            phone,
            total_amount,
            extra_fields={
                "CustomerName": name,
                "Address": address,
                "LastPurchase": sale.date_iso,
            },
        )
        if matched is None:
            customer = data_manager.CustomerRow(
                customer_id=generate_record_id("C", when=timestamp),
                customer_name=name,
                phone=phone,
                address=address,
                total_spent=total_amount,
                last_purchase_iso=sale.date_iso,
            )
            call_store("register customer", data_manager.append_customer, workbook, customer)
            log.info("Registered customer '%s' (%s)", customer.customer_id, phone)
    finally:
        invalidate_all(context)

    return sale


def amend_sale(context: RuntimeContext, command: AmendSaleCommand) -> data_manager.SaleRow:
    """Replace the customer details and items of an active sale.

    The amendment runs in four ordered phases:

    1. revert: give back the stock of every item of the stored sale;
    2. replace: overwrite the sale's customer, delivery, items and total;
    3. reapply: take the stock of every new item;
    4. adjust: add ``new_total - old_total`` to the spend of the customer
       matched by the (possibly changed) phone.

    Item names, colors and sizes are kept from the stored sale; items for a
    product the sale did not contain are copied from the live catalog.

    Raises:
        NotFoundError: If the sale, or a product for a new line, is unknown.
        SaleAlreadyReturned: If the sale was returned.
        ValidationError: If the amendment leaves no items or carries bad input.
        ConcurrencyConflict: If the sale changed since it was read.
        RemoteOperationError: If a store call fails; earlier phases remain.
    """
    workbook = context.workbook
    sale = call_store("read sale", data_manager.get_sale, workbook, command.sale_id)
    if sale.is_returned:
        log.error("Amendment rejected: sale '%s' was returned", sale.sale_id)
        raise SaleAlreadyReturned(f"Sale '{sale.sale_id}' was returned and can no longer be amended")

    name = require_text(command.customer_name, "Customer name")
    phone = normalize_phone(command.customer_phone)
    duration = parse_duration(command.delivery_duration)
    if not command.items:
        log.error("Amendment rejected: sale '%s' would have no items", sale.sale_id)
        raise ValidationError("A sale must keep at least one item; return the sale instead")

    new_items = _build_amended_items(context, sale, command.items)
    new_total = sum((item.total for item in new_items), Decimal("0"))
    if not context.settings.allow_negative_stock:
        _require_available_stock(context, _quantities(new_items), released=_quantities(sale.items))

    try:
        for item in sale.items:
            _adjust_stock(context, item.product_id, item.quantity)

        call_store(
            "update sale",
            data_manager.update_sale,
            workbook,
            sale.sale_id,
            field_values={
                "CustomerName": name,
                "CustomerPhone": phone,
                "DeliveryDuration": duration.value,
                "Items": data_manager.serialize_items(new_items),
                "TotalAmount": new_total,
            },
            expected_version=sale.version,
        )

        for item in new_items:
            _adjust_stock(context, item.product_id, -item.quantity)

        diff = new_total - sale.total_amount
        if _add_customer_spend(context, phone, diff) is None:
            log.warning("No customer with phone %s; spend difference %s not recorded", phone, diff)
    finally:
        invalidate_all(context)

    log.info(
        "Amended sale '%s' (total %s -> %s)",
        sale.sale_id,
        sale.total_amount,
        new_total,
    )
    return call_store("read sale", data_manager.get_sale, workbook, sale.sale_id)


def return_sale(context: RuntimeContext, command: ReturnSaleCommand) -> data_manager.SaleRow:
    """Take back a whole sale and restock its items.

    The sale is first marked returned (with the reason and time) under its
    version token, then every item's quantity goes back to stock. The
    customer's spend is left untouched unless ``ReverseSpendOnReturn`` is
    enabled in the configuration.

    Raises:
        ValidationError: If no reason is given.
        NotFoundError: If the sale is unknown.
        SaleAlreadyReturned: If the sale was already returned.
        RemoteOperationError: If a store call fails; earlier writes remain.
    """
    reason = require_text(command.reason, "Return reason")
    workbook = context.workbook
    sale = call_store("read sale", data_manager.get_sale, workbook, command.sale_id)
    if sale.is_returned:
        log.error("Return rejected: sale '%s' was already returned", sale.sale_id)
        raise SaleAlreadyReturned(f"Sale '{sale.sale_id}' was already returned")

    timestamp = resolve_timestamp(command.timestamp)
    try:
        call_store(
            "mark sale returned",
            data_manager.update_sale,
            workbook,
            sale.sale_id,
            field_values={
                "IsReturned": True,
                "ReturnReason": reason,
                "ReturnedAt": timestamp.isoformat(),
            },
            expected_version=sale.version,
        )
        for item in sale.items:
            _adjust_stock(context, item.product_id, item.quantity)

        if context.settings.reverse_spend_on_return:
            if _add_customer_spend(context, sale.customer_phone, -sale.total_amount) is None:
                log.warning("No customer with phone %s; spend not reversed", sale.customer_phone)
    finally:
        invalidate_all(context)

    log.info("Returned sale '%s' (%s)", sale.sale_id, reason)
    return call_store("read sale", data_manager.get_sale, workbook, sale.sale_id)


def _snapshot_cart_line(context: RuntimeContext, line: CartLine) -> data_manager.SaleItem:
    quantity = require_positive_quantity(line.quantity)
    product = call_store("read product", data_manager.get_product, context.workbook, line.product_id)
    if product is None:
        log.error("Checkout rejected: unknown product '%s'", line.product_id)
        raise NotFoundError(f"Unknown product id: {line.product_id}")
    price = product.selling_price if line.unit_price is None else require_nonnegative_money(line.unit_price)
    return data_manager.SaleItem(
        product_id=product.product_id,
        product_name=product.product_name,
        color=product.color,
        size=product.size,
        quantity=quantity,
        price=price,
        total=price * quantity,
    )


def _build_amended_items(
    context: RuntimeContext,
    sale: data_manager.SaleRow,
    lines: Sequence[AmendedLine],
) -> List[data_manager.SaleItem]:
    previous = {}
    for item in sale.items:
        previous.setdefault(item.product_id, item)

    items: List[data_manager.SaleItem] = []
    for line in lines:
        quantity = require_positive_quantity(line.quantity)
        price = require_nonnegative_money(line.price)
        source: Any = previous.get(line.product_id)
        if source is None:
            product = call_store("read product", data_manager.get_product, context.workbook, line.product_id)
            if product is None:
                raise NotFoundError(f"Unknown product id: {line.product_id}")
            source = data_manager.SaleItem(
                product_id=product.product_id,
                product_name=product.product_name,
                color=product.color,
                size=product.size,
                quantity=0,
                price=product.selling_price,
                total=Decimal("0"),
            )
        items.append(
            data_manager.SaleItem(
                product_id=source.product_id,
                product_name=source.product_name,
                color=source.color,
                size=source.size,
                quantity=quantity,
                price=price,
                total=price * quantity,
            )
        )
    return items


def _quantities(items: Iterable[data_manager.SaleItem]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def _require_available_stock(
    context: RuntimeContext,
    needed: Mapping[str, int],
    *,
    released: Optional[Mapping[str, int]] = None,
) -> None:
    """Refuse quantities that would take a product below zero.

    ``released`` holds quantities that will be given back before ``needed``
    is taken (the old items of an amended sale).
    """
    released = released or {}
    for product_id, quantity in needed.items():
        reading = call_store("read product stock", data_manager.read_product_stock, context.workbook, product_id)
        if reading is None:
            continue
        available = reading.stock + released.get(product_id, 0)
        if quantity > available:
            log.error(
                "Insufficient stock for product '%s': requested %d, available %d",
                product_id,
                quantity,
                available,
            )
            raise ValidationError(
                f"Insufficient stock for product '{product_id}': requested {quantity}, available {available}"
            )


def _adjust_stock(context: RuntimeContext, product_id: str, delta: int) -> Optional[int]:
    """Add ``delta`` to a product's stock with a version-guarded write.

    Products deleted from the catalog are skipped with a warning, since there
    is no row left to hold their stock.

    Returns:
        int | None: The new stock level, or ``None`` if the product is gone.

    Raises:
        ConcurrencyConflict: If every attempt lost the race to another writer.
    """
    attempts = context.settings.max_conflict_retries
    for attempt in range(1, attempts + 1):
        reading = call_store("read product stock", data_manager.read_product_stock, context.workbook, product_id)
        if reading is None:
            log.warning("Product '%s' no longer exists; stock change of %+d skipped", product_id, delta)
            return None

        new_stock = reading.stock + delta
        if new_stock < 0:
            log.warning("Stock of product '%s' drops below zero (%d)", product_id, new_stock)
        try:
            call_store(
                "update product stock",
                data_manager.set_product_stock,
                context.workbook,
                product_id,
                new_stock,
                expected_version=reading.version,
            )
        except ConcurrencyConflict:
            log.warning(
                "Stock update for product '%s' conflicted (attempt %d of %d)",
                product_id,
                attempt,
                attempts,
            )
            continue
        log.debug("Stock of product '%s': %d -> %d", product_id, reading.stock, new_stock)
        return new_stock

    raise ConcurrencyConflict(f"Could not update stock of product '{product_id}' after {attempts} attempts")


def _add_customer_spend(
    context: RuntimeContext,
    phone: str,
    delta: Decimal,
    *,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> Optional[data_manager.CustomerRow]:
    """Add ``delta`` to the spend of the customer matched by ``phone``.

    Returns:
        CustomerRow | None: The customer as read before the update, or
            ``None`` when no customer has this phone.

    Raises:
        ConcurrencyConflict: If every attempt lost the race to another writer.
    """
    attempts = context.settings.max_conflict_retries
    for attempt in range(1, attempts + 1):
        customer = call_store("find customer", data_manager.find_customer_by_phone, context.workbook, phone)
        if customer is None:
            return None

        field_values: Dict[str, Any] = {"TotalSpent": customer.total_spent + delta}
        field_values.update(extra_fields or {})
        try:
            call_store(
                "update customer",
                data_manager.update_customer,
                context.workbook,
                customer.customer_id,
                field_values=field_values,
                expected_version=customer.version,
            )
        except ConcurrencyConflict:
            log.warning(
                "Spend update for customer '%s' conflicted (attempt %d of %d)",
                customer.customer_id,
                attempt,
                attempts,
            )
            continue
        log.info(
            "Customer '%s' spend %s -> %s",
            customer.customer_id,
            customer.total_spent,
            field_values["TotalSpent"],
        )
        return customer

    raise ConcurrencyConflict(f"Could not update spend of customer with phone {phone} after {attempts} attempts")
