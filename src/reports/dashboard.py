"""
Sales Dashboard Assembly

Builds everything a sales dashboard shows for one DrilldownState:
- Metric cards (totals, distinct counts, averages)
- Dimension charts: stock groups, pin codes, customers, top items
- Period trend of the chosen metric
- Customer / item drilldown lists, when a metric card is open
- Invoice detail of the selected entity

Charts and lists are computed from the line items that pass the state's
filters; the filter option lists are computed from all line items so a
selection can always be changed back.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from config.settings import get_config
from src.core.drilldown import DrilldownLevel, DrilldownState
from src.core.error_taxonomy import ErrorCollector
from src.core.filters import ChartGroup, Dimension, apply_line_item_filters, filter_options
from src.core.observability import SpanKind, Tracer, get_tracer
from src.core.records import LineItem
from src.tools.aggregator import (
    AggregateRow,
    InvoiceSummary,
    SalesMetrics,
    TrendPoint,
    aggregate,
    days_of_stock,
    invoice_details,
    period_series,
    summarize_metrics,
)
from src.tools.ranker import SortKey, rank, scale_rows, scale_series, scale_suffix

logger = logging.getLogger(__name__)

CHART_TITLES = {
    ChartGroup.STOCK_GROUP_CHART: "{metric} by Stock Group",
    ChartGroup.PIN_CODE_CHART: "{metric} by Pin Code",
    ChartGroup.CUSTOMERS_CHART: "Top Customers by {metric}",
    ChartGroup.TOP_ITEMS: "Top Items by {metric}",
    ChartGroup.PERIOD_TREND: "{metric} Trend",
}

CHART_DIMENSIONS = {
    ChartGroup.STOCK_GROUP_CHART: Dimension.STOCK_GROUP,
    ChartGroup.PIN_CODE_CHART: Dimension.PIN_CODE,
    ChartGroup.CUSTOMERS_CHART: Dimension.CUSTOMER,
    ChartGroup.TOP_ITEMS: Dimension.ITEM,
}

# Charts cut to the top N rows; the pin code chart shows every pin code
TRUNCATED_CHARTS = (ChartGroup.STOCK_GROUP_CHART, ChartGroup.CUSTOMERS_CHART, ChartGroup.TOP_ITEMS)


@dataclass
class DimensionChart:
    group: ChartGroup
    title: str
    rows: List[AggregateRow]
    selected: str = "all"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group.value,
            "title": self.title,
            "selected": self.selected,
            "rows": [r.to_dict() for r in self.rows],
        }


@dataclass
class TrendChart:
    title: str
    points: List[TrendPoint]

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "points": [p.to_dict() for p in self.points]}


@dataclass
class EntityListRow:
    """One row of the customer / item drilldown list."""
    row: AggregateRow
    days_of_stock: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = self.row.to_dict()
        result["days_of_stock"] = self.days_of_stock
        return result


@dataclass
class DashboardReport:
    metrics: SalesMetrics
    state: DrilldownState
    suffix: str
    charts: Dict[ChartGroup, DimensionChart] = field(default_factory=dict)
    trend: Optional[TrendChart] = None
    entity_list: List[EntityListRow] = field(default_factory=list)
    invoices: List[InvoiceSummary] = field(default_factory=list)
    options: Dict[Dimension, List[str]] = field(default_factory=dict)
    issues: str = "No issues"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "metrics": self.metrics.to_dict(),
            "suffix": self.suffix,
            "charts": {group.value: chart.to_dict() for group, chart in self.charts.items()},
            "trend": self.trend.to_dict() if self.trend else None,
            "entity_list": [e.to_dict() for e in self.entity_list],
            "invoices": [
                {
                    "invoice_number": inv.invoice_number,
                    "date": inv.date,
                    "customer": inv.customer,
                    "total_amount": inv.total_amount,
                    "items": [asdict(line) for line in inv.items],
                }
                for inv in self.invoices
            ],
            "options": {d.value: values for d, values in self.options.items()},
            "issues": self.issues,
        }


class SalesDashboard:
    """
    Assembles a DashboardReport from line items and a drilldown state.

    Usage:
        dashboard = SalesDashboard(line_items, closing_stock=stock)
        report = dashboard.build(state, entity_sort="profit-desc")
    """

    def __init__(
        self,
        records: Sequence[LineItem],
        closing_stock: Optional[Dict[str, float]] = None,
        top_n: Optional[int] = None,
        tracer: Optional[Tracer] = None,
    ):
        self.records = list(records)
        self.closing_stock = closing_stock or {}
        self.top_n = top_n if top_n is not None else get_config().report.top_n
        self.tracer = tracer or get_tracer()

    def _dimension_chart(
        self,
        group: ChartGroup,
        records: List[LineItem],
        state: DrilldownState,
        errors: ErrorCollector,
    ) -> DimensionChart:
        filters = state.filters
        dimension = CHART_DIMENSIONS[group]
        metric_name = filters.metric_type.value.capitalize()

        with self.tracer.span(f"aggregate_{dimension.value}", SpanKind.AGGREGATION) as span:
            rows = aggregate(records, dimension, filters.metric_type, filters.periodicity, errors)
            span.attributes["groups"] = len(rows)

        with self.tracer.span(f"rank_{dimension.value}", SpanKind.RANKING):
            ranked = rank(rows, filters, top_n=self.top_n if group in TRUNCATED_CHARTS else None)

        return DimensionChart(
            group=group,
            title=CHART_TITLES[group].format(metric=metric_name) + scale_suffix(filters.scale_factor),
            rows=scale_rows(ranked, filters.scale_factor),
            selected=filters.selection(dimension),
        )

    def _entity_list(
        self,
        records: List[LineItem],
        state: DrilldownState,
        sort_by: Union[str, SortKey, None],
        errors: ErrorCollector,
    ) -> List[EntityListRow]:
        filters = state.filters
        with self.tracer.span(f"entity_list_{state.entity_type.value}", SpanKind.AGGREGATION):
            rows = aggregate(records, state.entity_type, filters.metric_type, filters.periodicity, errors)
            ordered = rank(rows, filters, sort_by=sort_by or SortKey.SALES_DESC)

        entries = []
        for row in scale_rows(ordered, filters.scale_factor):
            stock = None
            if state.entity_type == Dimension.ITEM and row.dimension_value in self.closing_stock:
                stock = days_of_stock(row.quantity, self.closing_stock[row.dimension_value],
                                      filters.avg_window_days)
            entries.append(EntityListRow(row=row, days_of_stock=stock))
        return entries

    def build(
        self,
        state: DrilldownState,
        entity_sort: Union[str, SortKey, None] = None,
        errors: Optional[ErrorCollector] = None,
    ) -> DashboardReport:
        """
        Build the dashboard for a drilldown state.

        Args:
            state: Filters and open drilldown levels
            entity_sort: Sort key of the open customer / item list
                         (sales-desc when not given)
            errors: Collector for absorbed parse failures; a fresh one is
                    used when not given

        Returns:
            DashboardReport with only the enabled charts populated
        """
        errors = errors if errors is not None else ErrorCollector()
        filters = state.filters
        filtered = apply_line_item_filters(self.records, filters)

        report = DashboardReport(
            metrics=summarize_metrics(filtered),
            state=state,
            suffix=scale_suffix(filters.scale_factor),
            options={d: filter_options(self.records, d) for d in Dimension},
        )

        for group in CHART_DIMENSIONS:
            if filters.is_enabled(group):
                report.charts[group] = self._dimension_chart(group, filtered, state, errors)

        if filters.is_enabled(ChartGroup.PERIOD_TREND):
            with self.tracer.span("period_trend", SpanKind.AGGREGATION):
                points = period_series(filtered, filters.metric_type, filters.periodicity, errors)
            report.trend = TrendChart(
                title=CHART_TITLES[ChartGroup.PERIOD_TREND].format(
                    metric=filters.metric_type.value.capitalize()) + report.suffix,
                points=scale_series(points, filters.scale_factor),
            )

        if state.entity_type is not None and state.level in (
            DrilldownLevel.ENTITY_DRILLDOWN, DrilldownLevel.INVOICE_DETAIL
        ):
            report.entity_list = self._entity_list(filtered, state, entity_sort, errors)

        if state.level == DrilldownLevel.INVOICE_DETAIL and state.selected_entity is not None:
            report.invoices = invoice_details(filtered, state.entity_type, state.selected_entity,
                                              filters.metric_type)

        report.issues = errors.summary()
        logger.info(
            f"Dashboard built from {len(filtered)}/{len(self.records)} lines "
            f"at {state.level.value}: {len(report.charts)} charts, {report.issues}"
        )
        return report
