"""
Dimension Aggregator

Groups sales line-items by one categorical dimension (customer, item,
stock group, pin code) and, inside each group, by period. Every pass is
a pure function of its inputs: a new filter or periodicity always yields
a fresh set of AggregateRows.

Grouping runs in two named phases:
1. _index_records: a single pass building mutable drafts keyed by dimension
2. _freeze_rows: drafts converted to immutable rows with ordered trends

Top-N truncation is NOT done here; see src.tools.ranker.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from src.core.error_taxonomy import ErrorCategory, ErrorCollector, record_error
from src.core.filters import Dimension, MetricType, dimension_accessor
from src.core.periods import Periodicity, label_buckets, parse_date, period_key_of
from src.core.records import LineItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrendPoint:
    """One period of a trend series."""
    period: str          # sortable key, e.g. "2025-Q3"
    label: str           # display label, e.g. "Q3-25"
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"period": self.period, "label": self.label, "value": self.value}


@dataclass(frozen=True)
class AggregateRow:
    """Totals for one dimension value."""
    dimension_value: str
    metric_value: float              # sum of the chosen metric
    secondary_metric_value: float    # sum of the other metric
    quantity: float
    trend: Tuple[TrendPoint, ...] = ()
    revenue: float = 0.0
    profit: float = 0.0
    order_count: int = 0

    @property
    def profit_percent(self) -> float:
        from src.tools.ranker import profit_percent
        return profit_percent(self.profit, self.revenue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension_value": self.dimension_value,
            "metric_value": self.metric_value,
            "secondary_metric_value": self.secondary_metric_value,
            "quantity": self.quantity,
            "revenue": self.revenue,
            "profit": self.profit,
            "profit_percent": self.profit_percent,
            "order_count": self.order_count,
            "trend": [p.to_dict() for p in self.trend],
        }


@dataclass
class _GroupDraft:
    metric: float = 0.0
    secondary: float = 0.0
    quantity: float = 0.0
    revenue: float = 0.0
    profit: float = 0.0
    count: int = 0
    periods: Dict[str, float] = field(default_factory=lambda: defaultdict(float))
    dates: List[date] = field(default_factory=list)


@dataclass(frozen=True)
class SalesMetrics:
    """Headline figures of the metric cards."""
    total_revenue: float
    total_profit: float
    total_orders: int
    total_quantity: float
    unique_customers: int
    unique_items: int
    avg_order_value: float
    avg_profit_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_revenue": self.total_revenue,
            "total_profit": self.total_profit,
            "total_orders": self.total_orders,
            "total_quantity": self.total_quantity,
            "unique_customers": self.unique_customers,
            "unique_items": self.unique_items,
            "avg_order_value": self.avg_order_value,
            "avg_profit_value": self.avg_profit_value,
        }


@dataclass(frozen=True)
class InvoiceLine:
    item_name: str
    quantity: float
    rate: float
    amount: float


@dataclass(frozen=True)
class InvoiceSummary:
    """All lines of one invoice that belong to the selected entity."""
    invoice_number: str
    date: str
    customer: str
    total_amount: float
    items: Tuple[InvoiceLine, ...]


def metric_value(record: LineItem, metric: Union[str, MetricType]) -> float:
    """The figure a chart sums for a record: amount for sales, else profit."""
    metric = MetricType.coerce(metric)
    return record.amount if metric == MetricType.SALES else record.profit


def _secondary_value(record: LineItem, metric: MetricType) -> float:
    return record.profit if metric == MetricType.SALES else record.amount


def _index_records(
    records: Sequence[LineItem],
    accessor: Callable[[LineItem], str],
    metric: MetricType,
    periodicity: Periodicity,
    errors: Optional[ErrorCollector],
) -> Dict[str, _GroupDraft]:
    drafts: Dict[str, _GroupDraft] = {}

    for record in records:
        draft = drafts.setdefault(accessor(record), _GroupDraft())
        value = metric_value(record, metric)
        draft.metric += value
        draft.secondary += _secondary_value(record, metric)
        draft.quantity += record.quantity
        draft.revenue += record.amount
        draft.profit += record.profit
        draft.count += 1

        record_date = parse_date(record.date)
        if record_date is None:
            # Still counted in the totals; only the trend cannot place it
            record_error(errors, ErrorCategory.DATE_PARSE_FAILURE,
                         f"line {record.id!r} has no usable date {record.date!r}",
                         phase="aggregate")
            continue
        draft.dates.append(record_date)
        draft.periods[period_key_of(record_date, periodicity).key] += value

    return drafts


def _freeze_rows(
    drafts: Dict[str, _GroupDraft],
    periodicity: Periodicity,
) -> Dict[str, AggregateRow]:
    rows: Dict[str, AggregateRow] = {}
    for dimension_value, draft in drafts.items():
        # Weekly range labels come from this group's own dates
        buckets = label_buckets(draft.dates, periodicity)
        trend = tuple(
            TrendPoint(period=key, label=buckets[key].label, value=value)
            for key, value in sorted(draft.periods.items())
        )
        rows[dimension_value] = AggregateRow(
            dimension_value=dimension_value,
            metric_value=draft.metric,
            secondary_metric_value=draft.secondary,
            quantity=draft.quantity,
            trend=trend,
            revenue=draft.revenue,
            profit=draft.profit,
            order_count=draft.count,
        )
    return rows


def aggregate(
    records: Sequence[LineItem],
    dimension: Union[Dimension, Callable[[LineItem], str]],
    metric: Union[str, MetricType] = MetricType.SALES,
    periodicity: Union[str, Periodicity] = Periodicity.MONTHLY,
    errors: Optional[ErrorCollector] = None,
) -> Dict[str, AggregateRow]:
    """
    Group records by a dimension and sum the chosen metric.

    Args:
        records: Sales lines to aggregate
        dimension: A Dimension or any callable returning the group value
        metric: 'sales' sums amount, 'profit' sums profit
        periodicity: Bucket size of each row's trend; weekly labels span
            only the dates of that row's own lines
        errors: Optional collector for absorbed parse failures

    Returns:
        Mapping of dimension value to AggregateRow, in first-seen order.
        Empty-string dimension values form their own group.
    """
    metric = MetricType.coerce(metric)
    periodicity = Periodicity.coerce(periodicity)

    drafts = _index_records(records, dimension_accessor(dimension), metric, periodicity, errors)
    rows = _freeze_rows(drafts, periodicity)

    logger.debug(
        f"Aggregated {len(records)} lines into {len(rows)} groups "
        f"({metric.value}, {periodicity.value})"
    )
    return rows


def period_series(
    records: Sequence[LineItem],
    metric: Union[str, MetricType] = MetricType.SALES,
    periodicity: Union[str, Periodicity] = Periodicity.MONTHLY,
    errors: Optional[ErrorCollector] = None,
) -> List[TrendPoint]:
    """
    Single trend series over all records, ascending by period key.

    Records without a usable date are left out of the series.
    """
    metric = MetricType.coerce(metric)
    periodicity = Periodicity.coerce(periodicity)

    totals: Dict[str, float] = defaultdict(float)
    dates: List[date] = []
    for record in records:
        record_date = parse_date(record.date)
        if record_date is None:
            record_error(errors, ErrorCategory.DATE_PARSE_FAILURE,
                         f"line {record.id!r} has no usable date {record.date!r}",
                         phase="period_series")
            continue
        dates.append(record_date)
        totals[period_key_of(record_date, periodicity).key] += metric_value(record, metric)

    buckets = label_buckets(dates, periodicity)
    return [
        TrendPoint(period=key, label=buckets[key].label, value=value)
        for key, value in sorted(totals.items())
    ]


def grand_total(rows: Iterable[AggregateRow]) -> float:
    return sum(row.metric_value for row in rows)


def summarize_metrics(records: Sequence[LineItem]) -> SalesMetrics:
    """Totals, distinct counts and per-order averages for the metric cards."""
    total_revenue = sum(r.amount for r in records)
    total_profit = sum(r.profit for r in records)
    total_orders = len(records)
    return SalesMetrics(
        total_revenue=total_revenue,
        total_profit=total_profit,
        total_orders=total_orders,
        total_quantity=sum(r.quantity for r in records),
        unique_customers=len({r.customer for r in records}),
        unique_items=len({r.item_name for r in records}),
        avg_order_value=total_revenue / total_orders if total_orders else 0.0,
        avg_profit_value=total_profit / total_orders if total_orders else 0.0,
    )


def days_of_stock(quantity_sold: float, closing_quantity: float, avg_window_days: int) -> int:
    """
    Days the closing stock lasts at the average daily sales rate.

    0 when nothing sold in the window.
    """
    if avg_window_days <= 0:
        return 0
    avg_daily_sales = quantity_sold / avg_window_days
    if avg_daily_sales <= 0:
        return 0
    return int(math.floor(closing_quantity / avg_daily_sales + 0.5))


def invoice_details(
    records: Sequence[LineItem],
    dimension: Dimension,
    entity_name: str,
    metric: Union[str, MetricType] = MetricType.SALES,
) -> List[InvoiceSummary]:
    """
    Source invoices of one customer or item, newest first.

    Lines are grouped by (invoice number, date). Invoices with an
    unreadable date sort after all dated ones.
    """
    metric = MetricType.coerce(metric)
    grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}

    for record in records:
        if dimension.value_of(record) != entity_name:
            continue
        key = (record.invoice_number, record.date)
        entry = grouped.setdefault(key, {"customer": record.customer, "total": 0.0, "items": []})
        value = metric_value(record, metric)
        entry["total"] += value
        entry["items"].append(InvoiceLine(
            item_name=record.item_name,
            quantity=record.quantity,
            rate=record.rate,
            amount=value,
        ))

    invoices = [
        InvoiceSummary(
            invoice_number=invoice_number,
            date=raw_date,
            customer=entry["customer"],
            total_amount=entry["total"],
            items=tuple(entry["items"]),
        )
        for (invoice_number, raw_date), entry in grouped.items()
    ]

    def newest_first(invoice: InvoiceSummary):
        parsed = parse_date(invoice.date)
        return (parsed is None, -(parsed.toordinal()) if parsed else 0)

    return sorted(invoices, key=newest_first)
