"""Reporting functions computed from an immutable snapshot of the workbook.

Nothing in this module performs I/O. Every function receives a
:class:`Snapshot` (or plain sequences of rows) and returns fresh values, so the
same figures can be recomputed at any time from whatever was actually
committed to the store.

Calendar boundaries are drawn in the shop's time zone: a day runs from
``00:00:00.000`` to ``23:59:59.999`` inclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .constants import (
    FALLBACK_COST_RATIO,
    FOLLOW_UP_LIMIT,
    FOLLOW_UP_WINDOW,
    TOP_SELLER_LIMIT,
    delivery_hours,
)
from .data_manager import (
    CustomerRow,
    ExpenseRow,
    ProductRow,
    SaleItem,
    SaleRow,
    parse_timestamp,
)


DateLike = Union[date, datetime]

ZERO = Decimal("0")
HUNDRED = Decimal("100")
END_OF_DAY = time.max


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time copy of the records analytics are computed from."""

    products: Tuple[ProductRow, ...] = ()
    sales: Tuple[SaleRow, ...] = ()
    expenses: Tuple[ExpenseRow, ...] = ()
    customers: Tuple[CustomerRow, ...] = ()

    def products_by_id(self) -> Dict[str, ProductRow]:
        return {product.product_id: product for product in self.products}


@dataclass(frozen=True)
class RangeMetrics:
    revenue: Decimal
    invoice_count: int
    cogs: Decimal
    expense_total: Decimal
    profit: Decimal


@dataclass(frozen=True)
class DashboardStats:
    today_sales: Decimal
    net_profit: Decimal
    total_expenses: Decimal
    inventory_value: Decimal


@dataclass(frozen=True)
class PeriodComparison:
    """Metrics of a period next to those of the period before it."""

    label: str
    current_start: date
    current_end: date
    previous_start: date
    previous_end: date
    current: RangeMetrics
    previous: RangeMetrics

    @property
    def revenue_change(self) -> Optional[Decimal]:
        return percentage_change(self.current.revenue, self.previous.revenue)

    @property
    def invoice_change(self) -> Optional[Decimal]:
        return percentage_change(self.current.invoice_count, self.previous.invoice_count)

    @property
    def profit_change(self) -> Optional[Decimal]:
        return percentage_change(self.current.profit, self.previous.profit)


@dataclass(frozen=True)
class ComparativeReport:
    day: PeriodComparison
    week: PeriodComparison
    month: PeriodComparison


@dataclass(frozen=True)
class KpiReport:
    gross_margin_pct: Decimal
    average_sale_value: Decimal
    return_on_spend_pct: Decimal
    expense_ratio_pct: Decimal


@dataclass(frozen=True)
class TopSeller:
    product_id: str
    product_name: str
    quantity: int


def _local_date(value: DateLike, tz: tzinfo) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(tz).date()
    return value


def _aware(moment: datetime, tz: tzinfo) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=tz)


def normalize_range(start: DateLike, end: DateLike, *, tz: tzinfo = UTC) -> Tuple[datetime, datetime]:
    """Widen a date range to whole calendar days in ``tz``.

    Returns:
        tuple[datetime, datetime]: ``start`` at ``00:00:00.000`` and ``end``
            at the last microsecond of its day, both timezone-aware.
    """

    start_day = _local_date(start, tz)
    end_day = _local_date(end, tz)
    return (
        datetime.combine(start_day, time.min, tzinfo=tz),
        datetime.combine(end_day, END_OF_DAY, tzinfo=tz),
    )


def item_cost(item: SaleItem, products_by_id: Mapping[str, ProductRow]) -> Decimal:
    """Cost of one sold line.

    Uses the live product's cost price; when the product has left the catalog
    the cost is estimated as ``FALLBACK_COST_RATIO`` of the price it sold at.
    """

    product = products_by_id.get(item.product_id)
    unit_cost = product.cost_price if product is not None else item.price * FALLBACK_COST_RATIO
    return unit_cost * item.quantity


def sale_cogs(sale: SaleRow, products_by_id: Mapping[str, ProductRow]) -> Decimal:
    return sum((item_cost(item, products_by_id) for item in sale.items), ZERO)


def _metrics(
    sales: Sequence[SaleRow],
    expenses: Sequence[ExpenseRow],
    products_by_id: Mapping[str, ProductRow],
) -> RangeMetrics:
    revenue = sum((sale.total_amount for sale in sales), ZERO)
    cogs = sum((sale_cogs(sale, products_by_id) for sale in sales), ZERO)
    expense_total = sum((expense.amount for expense in expenses), ZERO)
    return RangeMetrics(
        revenue=revenue,
        invoice_count=len(sales),
        cogs=cogs,
        expense_total=expense_total,
        profit=revenue - cogs - expense_total,
    )


def compute_range_metrics(
    snapshot: Snapshot,
    start: DateLike,
    end: DateLike,
    *,
    tz: tzinfo = UTC,
) -> RangeMetrics:
    """Revenue, invoice count, COGS, expenses and profit for a date range.

    Returned sales are excluded. Both ends of the range are inclusive and
    widened to whole days (see :func:`normalize_range`).
    """

    lower, upper = normalize_range(start, end, tz=tz)
    sales = [
        sale
        for sale in snapshot.sales
        if not sale.is_returned and lower <= parse_timestamp(sale.date_iso, default_tz=tz) <= upper
    ]
    expenses = [
        expense
        for expense in snapshot.expenses
        if lower <= parse_timestamp(expense.date_iso, default_tz=tz) <= upper
    ]
    return _metrics(sales, expenses, snapshot.products_by_id())


def compute_lifetime_metrics(snapshot: Snapshot) -> RangeMetrics:
    """The same figures as :func:`compute_range_metrics` over all history."""

    sales = [sale for sale in snapshot.sales if not sale.is_returned]
    return _metrics(sales, list(snapshot.expenses), snapshot.products_by_id())


def inventory_value(products: Iterable[ProductRow]) -> Decimal:
    return sum((product.cost_price * product.stock for product in products), ZERO)


def compute_dashboard_stats(snapshot: Snapshot, *, today: DateLike, tz: tzinfo = UTC) -> DashboardStats:
    """Headline figures: today's sales, lifetime net profit, expenses, stock value."""

    lifetime = compute_lifetime_metrics(snapshot)
    return DashboardStats(
        today_sales=compute_range_metrics(snapshot, today, today, tz=tz).revenue,
        net_profit=lifetime.profit,
        total_expenses=lifetime.expense_total,
        inventory_value=inventory_value(snapshot.products),
    )


def percentage_change(current: Union[Decimal, int], previous: Union[Decimal, int]) -> Optional[Decimal]:
    """Relative change from ``previous`` to ``current`` in percent.

    Returns:
        Decimal | None: ``None`` when there is no prior data (``previous`` is
            zero).
    """

    previous_value = Decimal(previous)
    if previous_value == 0:
        return None
    return (Decimal(current) - previous_value) / previous_value * HUNDRED


def _compare(
    snapshot: Snapshot,
    label: str,
    current: Tuple[date, date],
    previous: Tuple[date, date],
    tz: tzinfo,
) -> PeriodComparison:
    return PeriodComparison(
        label=label,
        current_start=current[0],
        current_end=current[1],
        previous_start=previous[0],
        previous_end=previous[1],
        current=compute_range_metrics(snapshot, current[0], current[1], tz=tz),
        previous=compute_range_metrics(snapshot, previous[0], previous[1], tz=tz),
    )


def compute_period_comparisons(snapshot: Snapshot, *, today: DateLike, tz: tzinfo = UTC) -> ComparativeReport:
    """Compare today, the trailing week and the current month with their predecessors.

    - day: today against yesterday;
    - week: the last 7 days including today against the 7 days before;
    - month: the 1st of this month up to today against the whole previous
      calendar month.
    """

    day = _local_date(today, tz)
    yesterday = day - timedelta(days=1)
    week_start = day - timedelta(days=6)
    month_start = day.replace(day=1)
    previous_month_end = month_start - timedelta(days=1)
    previous_month_start = previous_month_end.replace(day=1)

    return ComparativeReport(
        day=_compare(snapshot, "day", (day, day), (yesterday, yesterday), tz),
        week=_compare(
            snapshot,
            "week",
            (week_start, day),
            (week_start - timedelta(days=7), week_start - timedelta(days=1)),
            tz,
        ),
        month=_compare(
            snapshot,
            "month",
            (month_start, day),
            (previous_month_start, previous_month_end),
            tz,
        ),
    )


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator


def compute_kpis(snapshot: Snapshot) -> KpiReport:
    """Whole-history ratios over non-returned sales.

    Each ratio is zero when its denominator is zero.
    """

    lifetime = compute_lifetime_metrics(snapshot)
    revenue = lifetime.revenue
    return KpiReport(
        gross_margin_pct=_ratio(revenue - lifetime.cogs, revenue) * HUNDRED,
        average_sale_value=_ratio(revenue, Decimal(lifetime.invoice_count)),
        return_on_spend_pct=_ratio(lifetime.profit, lifetime.cogs + lifetime.expense_total) * HUNDRED,
        expense_ratio_pct=_ratio(lifetime.expense_total, revenue) * HUNDRED,
    )


def top_sellers(snapshot: Snapshot, *, limit: int = TOP_SELLER_LIMIT) -> List[TopSeller]:
    """Products ranked by units sold across every sale, returned ones included.

    Ties keep catalog order, so the result does not depend on the order of
    the sales.
    """

    sold: Dict[str, int] = {}
    for sale in snapshot.sales:
        for item in sale.items:
            sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity

    ranked = sorted(
        (
            TopSeller(product_id=product.product_id, product_name=product.product_name, quantity=sold.get(product.product_id, 0))
            for product in snapshot.products
        ),
        key=lambda seller: seller.quantity,
        reverse=True,
    )
    return ranked[:limit]


def follow_up_due(sale: SaleRow, now: datetime, *, tz: tzinfo = UTC) -> bool:
    """Whether the delivery window of ``sale`` closed within the last week."""

    if sale.is_returned:
        return False
    delivered_by = parse_timestamp(sale.date_iso, default_tz=tz) + timedelta(hours=delivery_hours(sale.delivery_duration))
    moment = _aware(now, tz)
    return delivered_by < moment < delivered_by + FOLLOW_UP_WINDOW


def follow_up_candidates(
    snapshot: Snapshot,
    *,
    now: datetime,
    limit: int = FOLLOW_UP_LIMIT,
    tz: tzinfo = UTC,
) -> List[SaleRow]:
    """Sales worth a customer check-in, at most ``limit``, in snapshot order."""

    candidates: List[SaleRow] = []
    for sale in snapshot.sales:
        if len(candidates) >= limit:
            break
        if follow_up_due(sale, now, tz=tz):
            candidates.append(sale)
    return candidates


def search_sales(
    sales: Iterable[SaleRow],
    *,
    term: str = "",
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
    returns_only: bool = False,
    tz: tzinfo = UTC,
) -> List[SaleRow]:
    """Filter sales for the sales log, newest first.

    ``term`` matches the customer name (case-insensitive), the sale id or the
    phone. ``start`` and ``end`` are independent, inclusive whole-day bounds.
    """

    needle = term.strip().lower()
    lower = normalize_range(start, start, tz=tz)[0] if start is not None else None
    upper = normalize_range(end, end, tz=tz)[1] if end is not None else None

    matches: List[Tuple[datetime, SaleRow]] = []
    for sale in sales:
        if returns_only and not sale.is_returned:
            continue
        if needle and not (
            needle in sale.customer_name.lower()
            or needle in sale.sale_id.lower()
            or needle in sale.customer_phone
        ):
            continue
        moment = parse_timestamp(sale.date_iso, default_tz=tz)
        if lower is not None and moment < lower:
            continue
        if upper is not None and moment > upper:
            continue
        matches.append((moment, sale))

    matches.sort(key=lambda pair: pair[0], reverse=True)
    return [sale for _, sale in matches]


def search_customers(snapshot: Snapshot, term: str = "") -> List[CustomerRow]:
    needle = term.strip().lower()
    if not needle:
        return list(snapshot.customers)
    return [
        customer
        for customer in snapshot.customers
        if needle in customer.customer_name.lower() or needle in customer.phone
    ]
