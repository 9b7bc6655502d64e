"""
Tests for ranking, truncation and display scaling.
"""
import pytest

from src.core.filters import Dimension, FilterConfig
from src.tools.aggregator import AggregateRow, TrendPoint
from src.tools.ranker import (
    SortKey,
    profit_percent,
    rank,
    scale_rows,
    scale_series,
    scale_suffix,
    sort_rows,
)


def make_row(name: str, revenue: float, profit: float, metric: float = None) -> AggregateRow:
    return AggregateRow(
        dimension_value=name,
        metric_value=revenue if metric is None else metric,
        secondary_metric_value=profit,
        quantity=1,
        revenue=revenue,
        profit=profit,
        order_count=1,
    )


@pytest.fixture
def rows():
    return {
        "Alpha": make_row("Alpha", revenue=1000, profit=500),
        "Zero": make_row("Zero", revenue=0, profit=0),
        "Beta": make_row("Beta", revenue=200, profit=100),
    }


class TestProfitPercent:
    """Tests for profit_percent."""

    def test_basic(self):
        assert profit_percent(25, 200) == 12.5

    def test_zero_revenue_is_zero(self):
        assert profit_percent(50, 0) == 0.0

    def test_row_property(self, rows):
        assert rows["Zero"].profit_percent == 0.0
        assert rows["Beta"].profit_percent == 50.0


class TestSorting:
    """Tests for sort keys."""

    def test_default_is_metric_descending(self, rows):
        ranked = rank(rows, FilterConfig())
        assert [r.dimension_value for r in ranked] == ["Alpha", "Beta", "Zero"]

    def test_profit_percent_desc_with_tie(self, rows):
        """50%, 50%, 0%; equal percentages fall back to the dimension value."""
        ranked = rank(rows, FilterConfig(), sort_by="profitPercent-desc")
        assert [r.profit_percent for r in ranked] == [50.0, 50.0, 0.0]
        assert [r.dimension_value for r in ranked] == ["Alpha", "Beta", "Zero"]

    def test_plain_keys_sort_ascending(self, rows):
        """'sales' is smallest first and 'sales-desc' largest first."""
        ascending = rank(rows, FilterConfig(), sort_by=SortKey.SALES)
        descending = rank(rows, FilterConfig(), sort_by=SortKey.SALES_DESC)
        assert [r.dimension_value for r in ascending] == ["Zero", "Beta", "Alpha"]
        assert [r.dimension_value for r in descending] == ["Alpha", "Beta", "Zero"]

    def test_profit_ascending(self, rows):
        ranked = sort_rows(list(rows.values()), "profit")
        assert [r.profit for r in ranked] == [0, 100, 500]

    def test_unknown_sort_key_raises(self, rows):
        with pytest.raises(ValueError):
            rank(rows, FilterConfig(), sort_by="margin")

    def test_descending_flag(self):
        assert SortKey.PROFIT_DESC.descending
        assert not SortKey.PROFIT_PERCENT.descending


class TestRank:
    """Tests for filtering and truncation."""

    def test_top_n_applied_after_sorting(self, rows):
        ranked = rank(rows, FilterConfig(), top_n=2, sort_by="sales")
        assert [r.dimension_value for r in ranked] == ["Zero", "Beta"]

    def test_top_n_zero(self, rows):
        assert rank(rows, FilterConfig(), top_n=0) == []

    def test_dimension_selection_keeps_matching_row(self, rows):
        filters = FilterConfig(selected_customer="Beta")
        ranked = rank(rows, filters, dimension=Dimension.CUSTOMER)
        assert [r.dimension_value for r in ranked] == ["Beta"]

    def test_selection_on_other_dimension_ignored(self, rows):
        filters = FilterConfig(selected_item="Beta")
        assert len(rank(rows, filters, dimension=Dimension.CUSTOMER)) == 3


class TestScaling:
    """Tests for display scaling."""

    @pytest.mark.parametrize("scale, suffix", [
        (1, ""), (10, " (x10)"), (100, " (x100)"), (1000, " (K)"),
        (100000, " (L)"), (10000000, " (Cr)"),
    ])
    def test_suffixes(self, scale, suffix):
        assert scale_suffix(scale) == suffix

    def test_scale_rows(self):
        row = AggregateRow(
            dimension_value="Alpha", metric_value=5000, secondary_metric_value=1000, quantity=7,
            trend=(TrendPoint("2025-04", "Apr-25", 5000),), revenue=5000, profit=1000,
        )
        scaled = scale_rows([row], 1000)[0]
        assert scaled.metric_value == 5
        assert scaled.profit == 1
        assert scaled.quantity == 7
        assert scaled.trend[0].value == 5
        assert scaled.profit_percent == row.profit_percent

    def test_scale_series(self):
        points = scale_series([TrendPoint("2025", "2025", 250)], 100)
        assert points[0].value == 2.5
