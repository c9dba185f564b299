"""Unit tests for the pure reporting functions."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from boutique_pos import analytics, data_manager
from boutique_pos.constants import DeliveryDuration


def _product(product_id: str, *, cost: str = "600", stock: int = 0, name: str | None = None) -> data_manager.ProductRow:
    return data_manager.ProductRow(
        product_id=product_id,
        product_name=name or f"Product {product_id}",
        category="Dresses",
        color="Black",
        size="M",
        cost_price=Decimal(cost),
        selling_price=Decimal("1000"),
        stock=stock,
    )


def _item(product_id: str, quantity: int, price: str = "1000") -> data_manager.SaleItem:
    unit = Decimal(price)
    return data_manager.SaleItem(product_id, f"Product {product_id}", "Black", "M", quantity, unit, unit * quantity)


def _sale(
    sale_id: str,
    when: datetime,
    *items: data_manager.SaleItem,
    returned: bool = False,
    duration: str = DeliveryDuration.HOURS_48.value,
    name: str = "Sara",
    phone: str = "07700000000",
) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id=sale_id,
        date_iso=when.isoformat(),
        customer_name=name,
        customer_phone=phone,
        delivery_duration=duration,
        items=tuple(items),
        total_amount=sum((item.total for item in items), Decimal("0")),
        is_returned=returned,
    )


def _expense(expense_id: str, when: datetime, amount: str) -> data_manager.ExpenseRow:
    return data_manager.ExpenseRow(expense_id, "Rent", Decimal(amount), "Operating", when.isoformat())


def _at(day: int, hour: int = 12, minute: int = 0, *, month: int = 3) -> datetime:
    return datetime(2024, month, day, hour, minute, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Range metrics
# ---------------------------------------------------------------------------


def test_day_with_only_an_expense_reports_a_loss():
    snapshot = analytics.Snapshot(expenses=(_expense("E1", _at(5), "50"),))

    metrics = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5))

    assert metrics == analytics.RangeMetrics(
        revenue=Decimal("0"),
        invoice_count=0,
        cogs=Decimal("0"),
        expense_total=Decimal("50"),
        profit=Decimal("-50"),
    )


def test_range_metrics_exclude_returned_sales_and_use_product_cost():
    snapshot = analytics.Snapshot(
        products=(_product("P1", cost="600"),),
        sales=(
            _sale("S1", _at(5), _item("P1", 2)),
            _sale("S2", _at(5), _item("P1", 1), returned=True),
        ),
        expenses=(_expense("E1", _at(5), "100"),),
    )

    metrics = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5))

    assert metrics.revenue == Decimal("2000")
    assert metrics.invoice_count == 1
    assert metrics.cogs == Decimal("1200")
    assert metrics.profit == Decimal("700")


def test_cogs_falls_back_to_share_of_price_for_deleted_products():
    snapshot = analytics.Snapshot(sales=(_sale("S1", _at(5), _item("GONE", 2, "500")),))

    metrics = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5))

    assert metrics.cogs == Decimal("600.0")


def test_range_bounds_cover_whole_days_inclusively():
    snapshot = analytics.Snapshot(
        sales=(
            _sale("S-start", datetime(2024, 3, 5, 0, 0, tzinfo=UTC), _item("P1", 1)),
            _sale("S-end", datetime(2024, 3, 6, 23, 59, 59, 999000, tzinfo=UTC), _item("P1", 1)),
            _sale("S-after", datetime(2024, 3, 7, 0, 0, tzinfo=UTC), _item("P1", 1)),
            _sale("S-before", datetime(2024, 3, 4, 23, 59, 59, tzinfo=UTC), _item("P1", 1)),
        ),
    )

    metrics = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 6))

    assert metrics.invoice_count == 2


def test_sale_in_last_microseconds_of_day_counts_for_that_day():
    late = datetime(2024, 3, 5, 23, 59, 59, 999500, tzinfo=UTC)
    snapshot = analytics.Snapshot(sales=(_sale("S-late", late, _item("P1", 1)),))

    day = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5))
    next_day = analytics.compute_range_metrics(snapshot, date(2024, 3, 6), date(2024, 3, 6))

    assert day.revenue == Decimal("1000")
    assert next_day.revenue == Decimal("0")
    stats = analytics.compute_dashboard_stats(snapshot, today=date(2024, 3, 5))
    assert stats.today_sales == Decimal("1000")


def test_normalize_range_returns_aware_day_bounds():
    lower, upper = analytics.normalize_range(date(2024, 3, 5), date(2024, 3, 6))

    assert lower == datetime(2024, 3, 5, tzinfo=UTC)
    assert upper == datetime(2024, 3, 6, 23, 59, 59, 999999, tzinfo=UTC)


def test_day_boundaries_follow_shop_time_zone():
    baghdad = ZoneInfo("Asia/Baghdad")
    # 22:30 UTC on the 4th is 01:30 on the 5th in Baghdad.
    snapshot = analytics.Snapshot(sales=(_sale("S1", datetime(2024, 3, 4, 22, 30, tzinfo=UTC), _item("P1", 1)),))

    local = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5), tz=baghdad)
    utc = analytics.compute_range_metrics(snapshot, date(2024, 3, 5), date(2024, 3, 5))

    assert local.invoice_count == 1
    assert utc.invoice_count == 0


# ---------------------------------------------------------------------------
# Dashboard and comparisons
# ---------------------------------------------------------------------------


def test_dashboard_stats():
    snapshot = analytics.Snapshot(
        products=(_product("P1", cost="600", stock=3), _product("P2", cost="100", stock=0)),
        sales=(
            _sale("S-today", _at(10), _item("P1", 1)),
            _sale("S-earlier", _at(2), _item("P1", 2)),
            _sale("S-returned", _at(10), _item("P1", 5), returned=True),
        ),
        expenses=(_expense("E1", _at(1), "200"), _expense("E2", _at(10), "50")),
    )

    stats = analytics.compute_dashboard_stats(snapshot, today=date(2024, 3, 10))

    assert stats.today_sales == Decimal("1000")
    assert stats.total_expenses == Decimal("250")
    assert stats.net_profit == Decimal("3000") - Decimal("1800") - Decimal("250")
    assert stats.inventory_value == Decimal("1800")


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (Decimal("150"), Decimal("100"), Decimal("50")),
        (Decimal("50"), Decimal("100"), Decimal("-50")),
        (3, 2, Decimal("50")),
        (Decimal("10"), Decimal("0"), None),
    ],
)
def test_percentage_change(current, previous, expected):
    assert analytics.percentage_change(current, previous) == expected


def test_period_comparisons_use_expected_windows():
    report = analytics.compute_period_comparisons(analytics.Snapshot(), today=date(2024, 3, 15))

    assert (report.day.current_start, report.day.previous_start) == (date(2024, 3, 15), date(2024, 3, 14))
    assert (report.week.current_start, report.week.current_end) == (date(2024, 3, 9), date(2024, 3, 15))
    assert (report.week.previous_start, report.week.previous_end) == (date(2024, 3, 2), date(2024, 3, 8))
    assert (report.month.current_start, report.month.current_end) == (date(2024, 3, 1), date(2024, 3, 15))
    assert (report.month.previous_start, report.month.previous_end) == (date(2024, 2, 1), date(2024, 2, 29))


def test_period_comparisons_compute_changes():
    snapshot = analytics.Snapshot(
        products=(_product("P1", cost="0"),),
        sales=(
            _sale("S1", _at(15), _item("P1", 3)),
            _sale("S2", _at(14), _item("P1", 2)),
            _sale("S3", _at(20, month=2), _item("P1", 1)),
        ),
    )

    report = analytics.compute_period_comparisons(snapshot, today=date(2024, 3, 15))

    assert report.day.current.revenue == Decimal("3000")
    assert report.day.revenue_change == Decimal("50")
    assert report.week.previous.revenue == Decimal("0")
    assert report.week.revenue_change is None
    assert report.month.current.invoice_count == 2
    assert report.month.invoice_change == Decimal("100")


def test_period_comparisons_cross_year_boundary():
    report = analytics.compute_period_comparisons(analytics.Snapshot(), today=date(2024, 1, 3))

    assert (report.month.previous_start, report.month.previous_end) == (date(2023, 12, 1), date(2023, 12, 31))


# ---------------------------------------------------------------------------
# KPIs
# ---------------------------------------------------------------------------


def test_kpis_from_history():
    snapshot = analytics.Snapshot(
        products=(_product("P1", cost="400"),),
        sales=(
            _sale("S1", _at(1), _item("P1", 1)),
            _sale("S2", _at(2), _item("P1", 1)),
            _sale("S3", _at(3), _item("P1", 4), returned=True),
        ),
        expenses=(_expense("E1", _at(1), "200"),),
    )

    kpis = analytics.compute_kpis(snapshot)

    assert kpis.gross_margin_pct == Decimal("60")
    assert kpis.average_sale_value == Decimal("1000")
    assert kpis.return_on_spend_pct == Decimal("100")
    assert kpis.expense_ratio_pct == Decimal("10")


def test_kpis_are_zero_without_data():
    kpis = analytics.compute_kpis(analytics.Snapshot())

    assert kpis == analytics.KpiReport(Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"))


# ---------------------------------------------------------------------------
# Top sellers
# ---------------------------------------------------------------------------


def test_top_sellers_rank_by_units_including_returns():
    products = tuple(_product(f"P{index}") for index in range(1, 8))
    sales = (
        _sale("S1", _at(1), _item("P3", 4), _item("P1", 1)),
        _sale("S2", _at(2), _item("P2", 2), returned=True),
        _sale("S3", _at(3), _item("P3", 1), _item("P5", 2)),
    )

    ranked = analytics.top_sellers(analytics.Snapshot(products=products, sales=sales))

    assert [(seller.product_id, seller.quantity) for seller in ranked] == [
        ("P3", 5),
        ("P2", 2),
        ("P5", 2),
        ("P1", 1),
        ("P4", 0),
    ]


def test_top_sellers_are_stable_under_sale_reordering():
    products = (_product("P1"), _product("P2"), _product("P3"))
    sales = (
        _sale("S1", _at(1), _item("P2", 2)),
        _sale("S2", _at(2), _item("P1", 2)),
        _sale("S3", _at(3), _item("P3", 1)),
    )

    forward = analytics.top_sellers(analytics.Snapshot(products=products, sales=sales))
    backward = analytics.top_sellers(analytics.Snapshot(products=products, sales=tuple(reversed(sales))))

    assert forward == backward
    assert [seller.product_id for seller in forward] == ["P1", "P2", "P3"]


def test_top_sellers_limit():
    products = tuple(_product(f"P{index}") for index in range(10))
    assert len(analytics.top_sellers(analytics.Snapshot(products=products), limit=3)) == 3


# ---------------------------------------------------------------------------
# Follow-ups
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "duration, hours_after_sale, expected",
    [
        (DeliveryDuration.HOURS_24.value, 23, False),
        (DeliveryDuration.HOURS_24.value, 25, True),
        (DeliveryDuration.DAYS_3.value, 73, True),
        (DeliveryDuration.DAYS_3.value, 71, False),
        (DeliveryDuration.HOURS_48.value, 48 + 7 * 24 + 1, False),
        ("48 ساعة", 49, True),
        ("whenever", 47, False),
        ("whenever", 49, True),
    ],
)
def test_follow_up_due_window(duration, hours_after_sale, expected):
    sale = _sale("S1", _at(1, 9), _item("P1", 1), duration=duration)

    assert analytics.follow_up_due(sale, _at(1, 9) + timedelta(hours=hours_after_sale)) is expected


def test_follow_up_ignores_returned_sales():
    sale = _sale("S1", _at(1), _item("P1", 1), returned=True)
    assert analytics.follow_up_due(sale, _at(4)) is False


def test_follow_up_candidates_keep_input_order_and_limit():
    sales = tuple(
        _sale(f"S{index}", _at(1, 9) + timedelta(hours=index), _item("P1", 1))
        for index in range(7)
    )
    snapshot = analytics.Snapshot(sales=(_sale("S-fresh", _at(5), _item("P1", 1)),) + sales)

    candidates = analytics.follow_up_candidates(snapshot, now=_at(5, 9))

    assert [sale.sale_id for sale in candidates] == ["S0", "S1", "S2", "S3", "S4"]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def test_search_sales_filters_and_orders_newest_first():
    sales = [
        _sale("S-A", _at(1), _item("P1", 1), name="Sara"),
        _sale("S-B", _at(3), _item("P1", 1), name="Noor", phone="07811111111"),
        _sale("S-C", _at(2), _item("P1", 1), name="sara h", returned=True),
    ]

    assert [sale.sale_id for sale in analytics.search_sales(sales)] == ["S-B", "S-C", "S-A"]
    assert [sale.sale_id for sale in analytics.search_sales(sales, term="SARA")] == ["S-C", "S-A"]
    assert [sale.sale_id for sale in analytics.search_sales(sales, term="0781")] == ["S-B"]
    assert [sale.sale_id for sale in analytics.search_sales(sales, term="s-a")] == ["S-A"]
    assert [sale.sale_id for sale in analytics.search_sales(sales, returns_only=True)] == ["S-C"]
    assert [
        sale.sale_id for sale in analytics.search_sales(sales, start=date(2024, 3, 2), end=date(2024, 3, 2))
    ] == ["S-C"]
    assert [sale.sale_id for sale in analytics.search_sales(sales, start=date(2024, 3, 2))] == ["S-B", "S-C"]


def test_search_customers():
    customers = (
        data_manager.CustomerRow("C1", "Sara", "07700000000", "", Decimal("0"), None),
        data_manager.CustomerRow("C2", "Noor", "07811111111", "", Decimal("0"), None),
    )
    snapshot = analytics.Snapshot(customers=customers)

    assert analytics.search_customers(snapshot, "") == list(customers)
    assert [row.customer_id for row in analytics.search_customers(snapshot, "noor")] == ["C2"]
    assert [row.customer_id for row in analytics.search_customers(snapshot, "0770")] == ["C1"]
