"""
Tests for the Dimension Aggregator.

Key properties:
- Grand total of the groups equals the sum over all records
- Every record lands in exactly one group
- Trends are bucketed by the requested periodicity
"""
import pytest
from datetime import date

from src.core.error_taxonomy import ErrorCategory, ErrorCollector
from src.core.filters import Dimension, MetricType
from src.core.periods import Periodicity
from src.core.records import LineItem
from src.tools.aggregator import (
    aggregate,
    days_of_stock,
    grand_total,
    invoice_details,
    metric_value,
    period_series,
    summarize_metrics,
)


def make_item(**overrides) -> LineItem:
    values = dict(
        id="1", date="2025-04-01", invoice_number="INV-1", customer="ABC Traders",
        item_name="Rice", stock_group="Grains", pin_code="560001",
        quantity=1.0, rate=100.0, amount=100.0, profit=10.0,
    )
    values.update(overrides)
    return LineItem(**values)


@pytest.fixture
def sales_lines():
    return [
        make_item(id="1", customer="ABC Traders", item_name="Rice", amount=600, profit=60, quantity=10),
        make_item(id="2", customer="Metro Wholesale", item_name="Dal", amount=250, profit=40, quantity=5,
                  date="15-May-25"),
        make_item(id="3", customer="ABC Traders", item_name="Dal", amount=150, profit=15, quantity=3,
                  date="2025-05-20"),
        make_item(id="4", customer="", item_name="Sugar", amount=75.5, profit=-5, quantity=1,
                  date="2025-06-02"),
    ]


class TestAggregate:
    """Tests for aggregate()."""

    def test_empty_input(self):
        assert aggregate([], Dimension.CUSTOMER) == {}

    @pytest.mark.parametrize("dimension", list(Dimension))
    @pytest.mark.parametrize("periodicity", list(Periodicity))
    def test_grand_total_preserved(self, sales_lines, dimension, periodicity):
        """Group totals and trend totals both add up to the plain sum."""
        rows = aggregate(sales_lines, dimension, MetricType.SALES, periodicity)
        expected = sum(r.amount for r in sales_lines)

        assert grand_total(rows.values()) == pytest.approx(expected)
        trend_total = sum(p.value for row in rows.values() for p in row.trend)
        assert trend_total == pytest.approx(expected)

    def test_every_record_counted_once(self, sales_lines):
        rows = aggregate(sales_lines, Dimension.ITEM)
        assert sum(r.order_count for r in rows.values()) == len(sales_lines)

    def test_first_seen_order(self, sales_lines):
        rows = aggregate(sales_lines, Dimension.CUSTOMER)
        assert list(rows) == ["ABC Traders", "Metro Wholesale", ""]

    def test_empty_dimension_value_is_its_own_group(self, sales_lines):
        """Lines with a blank customer are grouped, not dropped."""
        rows = aggregate(sales_lines, Dimension.CUSTOMER)
        assert rows[""].metric_value == 75.5

    def test_profit_metric(self, sales_lines):
        rows = aggregate(sales_lines, Dimension.CUSTOMER, "profit")
        abc = rows["ABC Traders"]
        assert abc.metric_value == 75
        assert abc.secondary_metric_value == 750
        assert abc.revenue == 750
        assert abc.profit == 75
        assert abc.profit_percent == pytest.approx(10.0)

    def test_callable_dimension(self, sales_lines):
        rows = aggregate(sales_lines, lambda r: r.customer.upper() or "UNKNOWN")
        assert set(rows) == {"ABC TRADERS", "METRO WHOLESALE", "UNKNOWN"}

    def test_twelve_months_into_four_quarters(self):
        """Twelve monthly lines of 100 make four quarterly buckets of 300."""
        records = [
            make_item(id=str(month), date=date(2025, month, 1).isoformat(), amount=100)
            for month in range(1, 13)
        ]
        rows = aggregate(records, Dimension.STOCK_GROUP, MetricType.SALES, Periodicity.QUARTERLY)
        trend = rows["Grains"].trend

        assert [p.period for p in trend] == ["2025-Q1", "2025-Q2", "2025-Q3", "2025-Q4"]
        assert [p.label for p in trend] == ["Q1-25", "Q2-25", "Q3-25", "Q4-25"]
        assert [p.value for p in trend] == [300, 300, 300, 300]

    def test_weekly_trend_labels(self):
        records = [
            make_item(id="1", date="2025-08-11"),
            make_item(id="2", date="2025-08-14"),
            make_item(id="3", date="2025-08-18"),
        ]
        trend = aggregate(records, Dimension.ITEM, periodicity="weekly")["Rice"].trend
        assert [p.label for p in trend] == ["11-Aug to 14-Aug", "18-Aug to 18-Aug"]
        assert [p.value for p in trend] == [200, 100]

    def test_weekly_labels_use_each_groups_own_dates(self):
        """A customer's week label spans that customer's sales, not everyone's."""
        records = [
            make_item(id="1", customer="ABC Traders", date="2025-08-04"),
            make_item(id="2", customer="Metro Wholesale", date="2025-08-05"),
            make_item(id="3", customer="ABC Traders", date="2025-08-08"),
        ]
        rows = aggregate(records, Dimension.CUSTOMER, periodicity="weekly")

        assert [p.label for p in rows["Metro Wholesale"].trend] == ["5-Aug to 5-Aug"]
        assert [p.label for p in rows["ABC Traders"].trend] == ["4-Aug to 8-Aug"]
        assert rows["Metro Wholesale"].trend[0].period == rows["ABC Traders"].trend[0].period

    def test_undated_line_counts_in_total_only(self):
        errors = ErrorCollector()
        records = [make_item(id="1"), make_item(id="2", date="31-Feb-25")]
        row = aggregate(records, Dimension.ITEM, errors=errors)["Rice"]

        assert row.metric_value == 200
        assert sum(p.value for p in row.trend) == 100
        assert errors.count(ErrorCategory.DATE_PARSE_FAILURE) == 1

    def test_same_input_same_output(self, sales_lines):
        first = aggregate(sales_lines, Dimension.ITEM, periodicity="weekly")
        second = aggregate(sales_lines, Dimension.ITEM, periodicity="weekly")
        assert first == second


class TestSeriesAndMetrics:
    """Tests for the period trend and the metric cards."""

    def test_period_series_ascending(self, sales_lines):
        points = period_series(sales_lines, "sales", "monthly")
        assert [p.period for p in points] == ["2025-04", "2025-05", "2025-06"]
        assert [p.value for p in points] == [600, 400, 75.5]

    def test_metric_value(self):
        item = make_item(amount=100, profit=12)
        assert metric_value(item, "sales") == 100
        assert metric_value(item, MetricType.PROFIT) == 12

    def test_summarize_metrics(self, sales_lines):
        metrics = summarize_metrics(sales_lines)
        assert metrics.total_revenue == 1075.5
        assert metrics.total_orders == 4
        assert metrics.unique_customers == 3
        assert metrics.unique_items == 3
        assert metrics.avg_order_value == pytest.approx(1075.5 / 4)

    def test_summarize_empty(self):
        metrics = summarize_metrics([])
        assert metrics.total_orders == 0
        assert metrics.avg_order_value == 0.0


class TestDaysOfStock:
    """Tests for days_of_stock."""

    def test_rounds_to_nearest_day(self):
        assert days_of_stock(quantity_sold=60, closing_quantity=100, avg_window_days=30) == 50
        assert days_of_stock(quantity_sold=45, closing_quantity=100, avg_window_days=30) == 67

    def test_nothing_sold(self):
        assert days_of_stock(quantity_sold=0, closing_quantity=100, avg_window_days=30) == 0


class TestInvoiceDetails:
    """Tests for the invoice list of one entity."""

    def test_newest_first_and_undated_last(self):
        records = [
            make_item(id="1", invoice_number="INV-1", date="2025-08-01", amount=100),
            make_item(id="2", invoice_number="INV-2", date="05-Aug-25", amount=50),
            make_item(id="3", invoice_number="INV-2", date="05-Aug-25", item_name="Dal", amount=25),
            make_item(id="4", invoice_number="INV-3", date="unknown", amount=10),
            make_item(id="5", invoice_number="INV-4", customer="Other", date="2025-09-01"),
        ]
        invoices = invoice_details(records, Dimension.CUSTOMER, "ABC Traders")

        assert [inv.invoice_number for inv in invoices] == ["INV-2", "INV-1", "INV-3"]
        assert invoices[0].total_amount == 75
        assert [line.item_name for line in invoices[0].items] == ["Rice", "Dal"]
