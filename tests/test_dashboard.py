"""
Tests for dashboard assembly.

Builds dashboards from a small fixed set of sales lines and checks what
each drilldown level shows.
"""
import pytest

from src.core.drilldown import (
    ChartBarClicked,
    EntitySelected,
    FiltersApplied,
    MetricCardOpened,
    initial_state,
    replay,
)
from src.core.error_taxonomy import ErrorCollector
from src.core.filters import ALL, ChartGroup, Dimension, FilterConfig
from src.core.observability import SpanKind, Tracer
from src.core.records import LineItem
from src.reports.dashboard import SalesDashboard


def make_item(**overrides) -> LineItem:
    values = dict(
        id="1", date="2025-04-01", invoice_number="INV-1", customer="ABC Traders",
        item_name="Rice", stock_group="Grains", pin_code="560001",
        quantity=1.0, rate=100.0, amount=100.0, profit=10.0,
    )
    values.update(overrides)
    return LineItem(**values)


@pytest.fixture
def records():
    return [
        make_item(id="1", customer="ABC Traders", item_name="Rice", amount=3000, profit=300, quantity=30),
        make_item(id="2", customer="Metro Wholesale", item_name="Dal", stock_group="Pulses",
                  pin_code="400001", amount=2000, profit=400, quantity=20, invoice_number="INV-2",
                  date="2025-05-10"),
        make_item(id="3", customer="Ganesh Agencies", item_name="Rice", amount=1000, profit=50, quantity=10,
                  invoice_number="INV-3", date="2025-05-12"),
        make_item(id="4", customer="ABC Traders", item_name="Sugar", stock_group="Sugar", amount=500,
                  profit=25, quantity=5, invoice_number="INV-4", date="bad-date"),
    ]


@pytest.fixture
def dashboard(records):
    return SalesDashboard(records, closing_stock={"Rice": 120.0, "Dal": 0.0}, top_n=2, tracer=Tracer())


class TestSummary:
    """Tests for the summary level."""

    def test_default_charts(self, dashboard):
        report = dashboard.build(initial_state())

        assert set(report.charts) == {
            ChartGroup.STOCK_GROUP_CHART, ChartGroup.CUSTOMERS_CHART, ChartGroup.TOP_ITEMS,
        }
        assert report.trend is not None
        assert report.entity_list == []
        assert report.invoices == []

    def test_metrics(self, dashboard):
        metrics = dashboard.build(initial_state()).metrics
        assert metrics.total_revenue == 6500
        assert metrics.total_orders == 4
        assert metrics.unique_customers == 3

    def test_truncated_charts(self, dashboard):
        customers = dashboard.build(initial_state()).charts[ChartGroup.CUSTOMERS_CHART]
        assert [r.dimension_value for r in customers.rows] == ["ABC Traders", "Metro Wholesale"]
        assert customers.rows[0].metric_value == 3500
        assert customers.title == "Top Customers by Sales"

    def test_pin_code_chart_not_truncated(self, dashboard):
        state = replay(initial_state(), FiltersApplied(FilterConfig(enabled_groups={"pinCodeChart"})))
        report = dashboard.build(state)
        assert list(report.charts) == [ChartGroup.PIN_CODE_CHART]
        assert report.trend is None

        pins = report.charts[ChartGroup.PIN_CODE_CHART].rows
        assert sorted(r.dimension_value for r in pins) == ["400001", "560001"]

    def test_trend_skips_undated_lines(self, dashboard):
        errors = ErrorCollector()
        report = dashboard.build(initial_state(), errors=errors)
        assert [p.period for p in report.trend.points] == ["2025-04", "2025-05"]
        assert sum(p.value for p in report.trend.points) == 6000
        assert report.issues != "No issues"

    def test_scale_applied_to_charts_and_trend(self, dashboard):
        state = replay(initial_state(), FiltersApplied(FilterConfig(scale_factor=1000)))
        report = dashboard.build(state)

        assert report.suffix == " (K)"
        items = report.charts[ChartGroup.TOP_ITEMS]
        assert items.title.endswith(" (K)")
        assert items.rows[0].metric_value == 4
        assert report.trend.points[0].value == 3

    def test_profit_metric(self, dashboard):
        state = replay(initial_state(), FiltersApplied(FilterConfig(metric_type="profit")))
        items = dashboard.build(state).charts[ChartGroup.TOP_ITEMS]
        assert items.title == "Top Items by Profit"
        assert [r.dimension_value for r in items.rows] == ["Dal", "Rice"]


class TestFiltered:
    """Tests for chart filters."""

    def test_bar_click_filters_everything(self, dashboard):
        state = replay(initial_state(), ChartBarClicked(Dimension.STOCK_GROUP, "Grains"))
        report = dashboard.build(state)

        assert report.metrics.total_revenue == 4000
        assert report.charts[ChartGroup.STOCK_GROUP_CHART].selected == "Grains"
        # Options still list every value so the selection can be changed back
        assert report.options[Dimension.STOCK_GROUP] == [ALL, "Grains", "Pulses", "Sugar"]


class TestDrilldownLists:
    """Tests for the entity list and invoice detail."""

    def test_item_list_with_days_of_stock(self, dashboard):
        state = replay(initial_state(), MetricCardOpened(Dimension.ITEM))
        report = dashboard.build(state)

        names = [e.row.dimension_value for e in report.entity_list]
        assert names == ["Rice", "Dal", "Sugar"]
        rice, dal, sugar = report.entity_list
        # 40 sold over 30 days, 120 in stock
        assert rice.days_of_stock == 90
        assert dal.days_of_stock == 0
        assert sugar.days_of_stock is None

    def test_entity_sort(self, dashboard):
        state = replay(initial_state(), MetricCardOpened(Dimension.CUSTOMER))
        report = dashboard.build(state, entity_sort="profitPercent-desc")
        assert [e.row.dimension_value for e in report.entity_list] == [
            "Metro Wholesale", "ABC Traders", "Ganesh Agencies",
        ]

    def test_invoice_detail(self, dashboard):
        state = replay(
            initial_state(),
            MetricCardOpened(Dimension.CUSTOMER),
            EntitySelected("ABC Traders"),
        )
        report = dashboard.build(state)
        assert [inv.invoice_number for inv in report.invoices] == ["INV-1", "INV-4"]
        assert len(report.entity_list) == 3

    def test_report_serializes(self, dashboard):
        state = replay(initial_state(), MetricCardOpened(Dimension.ITEM), EntitySelected("Rice"))
        data = dashboard.build(state).to_dict()
        assert data["state"]["level"] == "invoice_detail"
        assert data["invoices"][0]["items"][0]["item_name"] == "Rice"


class TestTracing:
    """Tests for build spans."""

    def test_aggregation_spans(self, records):
        tracer = Tracer()
        dashboard = SalesDashboard(records, top_n=5, tracer=tracer)
        with tracer.start_trace("dashboard") as trace:
            dashboard.build(initial_state())
        assert len(trace.spans_of(SpanKind.AGGREGATION)) == 4
        assert len(trace.spans_of(SpanKind.RANKING)) == 3
