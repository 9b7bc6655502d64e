"""
Ranking and Scaling

Orders aggregated rows for charts and drilldown lists.

Sort keys follow the filter sheet's toggle names: the plain key sorts
ascending and the "-desc" key sorts descending ("sales" is smallest
first, "sales-desc" largest first). Without a sort key rows are ordered
by metric value, largest first. Equal values fall back to the dimension
value so repeated runs give the same order.
"""
import logging
from enum import Enum
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Optional, Union

from src.core.filters import ALL, Dimension, FilterConfig
from src.tools.aggregator import AggregateRow, TrendPoint

logger = logging.getLogger(__name__)


class SortKey(Enum):
    SALES = "sales"
    SALES_DESC = "sales-desc"
    PROFIT = "profit"
    PROFIT_DESC = "profit-desc"
    PROFIT_PERCENT = "profitPercent"
    PROFIT_PERCENT_DESC = "profitPercent-desc"

    @property
    def descending(self) -> bool:
        return self.value.endswith("-desc")

    @classmethod
    def coerce(cls, value: Union[str, "SortKey", None]) -> Optional["SortKey"]:
        if value is None or isinstance(value, cls):
            return value
        return cls(value)


SCALE_SUFFIXES: Dict[int, str] = {
    10: " (x10)",
    100: " (x100)",
    1_000: " (K)",
    100_000: " (L)",
    10_000_000: " (Cr)",
}


def profit_percent(profit: float, revenue: float) -> float:
    """profit / revenue * 100, or 0.0 when revenue is zero."""
    if revenue == 0:
        return 0.0
    return profit / revenue * 100


def _sort_value(sort_key: Optional[SortKey]) -> Callable[[AggregateRow], float]:
    if sort_key in (SortKey.SALES, SortKey.SALES_DESC):
        return lambda row: row.revenue
    if sort_key in (SortKey.PROFIT, SortKey.PROFIT_DESC):
        return lambda row: row.profit
    if sort_key in (SortKey.PROFIT_PERCENT, SortKey.PROFIT_PERCENT_DESC):
        return lambda row: row.profit_percent
    return lambda row: row.metric_value


def sort_rows(
    rows: List[AggregateRow],
    sort_by: Union[str, SortKey, None] = None,
) -> List[AggregateRow]:
    """Sort rows by a toggle key; metric value descending by default."""
    sort_key = SortKey.coerce(sort_by)
    value_of = _sort_value(sort_key)
    descending = sort_key is None or sort_key.descending

    if descending:
        return sorted(rows, key=lambda row: (-value_of(row), row.dimension_value))
    return sorted(rows, key=lambda row: (value_of(row), row.dimension_value))


def rank(
    rows: Mapping[str, AggregateRow],
    filters: FilterConfig,
    top_n: Optional[int] = None,
    sort_by: Union[str, SortKey, None] = None,
    dimension: Optional[Dimension] = None,
) -> List[AggregateRow]:
    """
    Filter, sort and optionally truncate aggregated rows.

    Args:
        rows: Output of aggregate()
        filters: Current report filters
        top_n: Keep only the first N rows after sorting
        sort_by: Optional SortKey or its string value
        dimension: Dimension the rows are keyed by; when its selection in
                   filters is not 'all', only the matching row is kept
    """
    selected = filters.selection(dimension) if dimension is not None else ALL
    candidates = [
        row for value, row in rows.items()
        if selected == ALL or value == selected
    ]

    ordered = sort_rows(candidates, sort_by)
    if top_n is not None:
        ordered = ordered[:max(top_n, 0)]

    logger.debug(f"Ranked {len(rows)} rows -> {len(ordered)} (sort={sort_by}, top_n={top_n})")
    return ordered


def scale_rows(rows: List[AggregateRow], scale_factor: float) -> List[AggregateRow]:
    """Divide monetary figures and trends by the display scale."""
    if scale_factor == 1:
        return list(rows)
    return [
        replace(
            row,
            metric_value=row.metric_value / scale_factor,
            secondary_metric_value=row.secondary_metric_value / scale_factor,
            revenue=row.revenue / scale_factor,
            profit=row.profit / scale_factor,
            trend=tuple(
                TrendPoint(point.period, point.label, point.value / scale_factor)
                for point in row.trend
            ),
        )
        for row in rows
    ]


def scale_series(points: List[TrendPoint], scale_factor: float) -> List[TrendPoint]:
    return [TrendPoint(p.period, p.label, p.value / scale_factor) for p in points]


def scale_suffix(scale_factor: float) -> str:
    """Chart title suffix for a scale, '' for unscaled values."""
    return SCALE_SUFFIXES.get(int(scale_factor), "")
