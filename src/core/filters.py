"""
Report Filter Configuration

The per-view filter state of a sales report: categorical selections,
periodicity, scale, averaging window, metric and which dimension charts
are shown. A FilterConfig is immutable; every change produces a new one
through the functions below, so aggregation can stay a pure function of
(records, config).

'all' means "no filter" for every categorical selection.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union, TYPE_CHECKING

from src.core.periods import Periodicity, filter_by_date_range

if TYPE_CHECKING:
    from config.settings import ReportConfig
    from src.core.records import LineItem

logger = logging.getLogger(__name__)

ALL = "all"


class MetricType(Enum):
    """Which line-item figure a chart sums."""
    SALES = "sales"
    PROFIT = "profit"

    @classmethod
    def coerce(cls, value: Any) -> "MetricType":
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


class Dimension(Enum):
    """Categorical grouping axes of a sales line."""
    CUSTOMER = "customer"
    ITEM = "item_name"
    STOCK_GROUP = "stock_group"
    PIN_CODE = "pin_code"

    @property
    def selection_field(self) -> str:
        """Name of the FilterConfig field holding this dimension's selection."""
        return _SELECTION_FIELDS[self]

    def value_of(self, record: "LineItem") -> str:
        return getattr(record, self.value)


_SELECTION_FIELDS = {
    Dimension.CUSTOMER: "selected_customer",
    Dimension.ITEM: "selected_item",
    Dimension.STOCK_GROUP: "selected_stock_group",
    Dimension.PIN_CODE: "selected_pin_code",
}


class ChartGroup(Enum):
    """Dashboard chart toggles."""
    STOCK_GROUP_CHART = "stockGroupChart"
    PIN_CODE_CHART = "pinCodeChart"
    CUSTOMERS_CHART = "customersChart"
    PERIOD_TREND = "monthlySales"
    TOP_ITEMS = "topItems"


DEFAULT_ENABLED_GROUPS: FrozenSet[ChartGroup] = frozenset({
    ChartGroup.STOCK_GROUP_CHART,
    ChartGroup.CUSTOMERS_CHART,
    ChartGroup.PERIOD_TREND,
    ChartGroup.TOP_ITEMS,
})


@dataclass(frozen=True)
class FilterConfig:
    """Filter state of one report view."""
    selected_stock_group: str = ALL
    selected_pin_code: str = ALL
    selected_customer: str = ALL
    selected_item: str = ALL
    periodicity: Periodicity = Periodicity.MONTHLY
    scale_factor: float = 1
    avg_window_days: int = 30
    metric_type: MetricType = MetricType.SALES
    enabled_groups: FrozenSet[ChartGroup] = field(default_factory=lambda: DEFAULT_ENABLED_GROUPS)

    def __post_init__(self):
        # Accept plain strings from callers and UIs
        object.__setattr__(self, "periodicity", Periodicity.coerce(self.periodicity))
        object.__setattr__(self, "metric_type", MetricType.coerce(self.metric_type))
        object.__setattr__(self, "enabled_groups", frozenset(
            g if isinstance(g, ChartGroup) else ChartGroup(g) for g in self.enabled_groups
        ))
        if self.scale_factor <= 0:
            raise ValueError(f"scale_factor must be positive, got {self.scale_factor}")
        if self.avg_window_days <= 0:
            raise ValueError(f"avg_window_days must be positive, got {self.avg_window_days}")

    def selection(self, dimension: Dimension) -> str:
        return getattr(self, dimension.selection_field)

    def with_selection(self, dimension: Dimension, value: str) -> "FilterConfig":
        return replace(self, **{dimension.selection_field: value})

    def is_enabled(self, group: ChartGroup) -> bool:
        return group in self.enabled_groups

    @property
    def active_selections(self) -> Dict[Dimension, str]:
        """Dimensions with a non-'all' selection."""
        return {
            dimension: self.selection(dimension)
            for dimension in Dimension
            if self.selection(dimension) != ALL
        }

    @property
    def has_active_filters(self) -> bool:
        return bool(self.active_selections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_stock_group": self.selected_stock_group,
            "selected_pin_code": self.selected_pin_code,
            "selected_customer": self.selected_customer,
            "selected_item": self.selected_item,
            "periodicity": self.periodicity.value,
            "scale_factor": self.scale_factor,
            "avg_window_days": self.avg_window_days,
            "metric_type": self.metric_type.value,
            "enabled_groups": sorted(g.value for g in self.enabled_groups),
        }


def default_filters(report_config: "ReportConfig" = None) -> FilterConfig:
    """Filter state of a freshly mounted report view."""
    if report_config is None:
        return FilterConfig()
    return FilterConfig(
        periodicity=Periodicity.coerce(report_config.default_periodicity),
        scale_factor=report_config.default_scale_factor,
        avg_window_days=report_config.avg_window_days,
    )


def apply_filters(config: FilterConfig, **changes: Any) -> FilterConfig:
    """
    The explicit "apply" action of the filter sheet.

    Unknown field names raise TypeError; values are validated by FilterConfig.
    """
    updated = replace(config, **changes)
    logger.debug(f"Filters applied: {updated.to_dict()}")
    return updated


def reset_filters(report_config: "ReportConfig" = None) -> FilterConfig:
    """The explicit "reset" action."""
    return default_filters(report_config)


def with_dimension_filter(config: FilterConfig, dimension: Dimension, value: str) -> FilterConfig:
    """Set one chart's filter slot, leaving the others untouched."""
    return config.with_selection(dimension, value)


def clear_dimension_filter(config: FilterConfig, dimension: Dimension) -> FilterConfig:
    """The chart's back button: its slot returns to 'all'."""
    return config.with_selection(dimension, ALL)


def matches(record: "LineItem", config: FilterConfig) -> bool:
    """True when record passes every non-'all' selection."""
    return all(
        dimension.value_of(record) == value
        for dimension, value in config.active_selections.items()
    )


def apply_line_item_filters(
    records: Iterable["LineItem"],
    config: FilterConfig,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List["LineItem"]:
    """
    Filter line items by the config's selections and an optional date range.

    With a date range, records whose date cannot be parsed are excluded.
    """
    result = list(records)
    original_count = len(result)

    if start is not None and end is not None:
        result = filter_by_date_range(result, start, end, lambda r: r.date)

    result = [r for r in result if matches(r, config)]
    logger.debug(f"Filtered {original_count} -> {len(result)} line items")
    return result


def filter_options(records: Iterable["LineItem"], dimension: Dimension) -> List[str]:
    """'all' followed by the distinct values of a dimension in first-seen order."""
    seen: Dict[str, None] = {}
    for record in records:
        seen.setdefault(dimension.value_of(record), None)
    return [ALL, *seen.keys()]


def dimension_accessor(dimension: Union[Dimension, Callable[["LineItem"], str]]) -> Callable[["LineItem"], str]:
    """Normalize a Dimension or a plain callable into an accessor."""
    if isinstance(dimension, Dimension):
        return dimension.value_of
    return dimension
