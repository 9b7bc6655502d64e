"""
Drilldown Navigation

Tracks what a report view is showing and the filter context that implies,
as an immutable state plus a pure transition function:

    state = transition(state, ChartBarClicked(Dimension.CUSTOMER, "ABC Traders"))

Levels:
- SUMMARY: dimension charts, no chart filter set
- DIMENSION_FILTERED: at least one chart bar clicked; charts still visible
- ENTITY_DRILLDOWN: customer or item list opened from a metric card
- INVOICE_DETAIL: one entity of that list, showing its source invoices

The first two are the base of the stack and follow the filters. The two
modal levels are pushed on top and ModalClosed pops exactly one of them.
Chart filters are independent slots of the FilterConfig: clearing one
leaves the others in place. A chart back-click therefore returns to
SUMMARY only when no other chart filter remains; otherwise the view
stays DIMENSION_FILTERED.

Transitions never fetch data. A caller that needs fresh records compares
the old and new state's filters and refetches itself.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union, TYPE_CHECKING

from src.core.filters import (
    Dimension,
    FilterConfig,
    clear_dimension_filter,
    default_filters,
    with_dimension_filter,
)

if TYPE_CHECKING:
    from config.settings import ReportConfig

logger = logging.getLogger(__name__)


class DrilldownLevel(Enum):
    SUMMARY = "summary"
    DIMENSION_FILTERED = "dimension_filtered"
    ENTITY_DRILLDOWN = "entity_drilldown"
    INVOICE_DETAIL = "invoice_detail"


MODAL_LEVELS = (DrilldownLevel.ENTITY_DRILLDOWN, DrilldownLevel.INVOICE_DETAIL)

# Metric cards that open an entity list
DRILLABLE_ENTITIES = (Dimension.CUSTOMER, Dimension.ITEM)


# Actions

@dataclass(frozen=True)
class ChartBarClicked:
    dimension: Dimension
    value: str


@dataclass(frozen=True)
class ChartBackClicked:
    dimension: Dimension


@dataclass(frozen=True)
class MetricCardOpened:
    entity_type: Dimension


@dataclass(frozen=True)
class EntitySelected:
    name: str


@dataclass(frozen=True)
class ModalClosed:
    pass


@dataclass(frozen=True)
class FiltersApplied:
    config: FilterConfig


@dataclass(frozen=True)
class FiltersReset:
    report_config: Optional["ReportConfig"] = None


DrilldownAction = Union[
    ChartBarClicked, ChartBackClicked, MetricCardOpened,
    EntitySelected, ModalClosed, FiltersApplied, FiltersReset,
]


@dataclass(frozen=True)
class DrilldownState:
    """Current view of a report: filters plus the stack of open levels."""
    filters: FilterConfig = field(default_factory=FilterConfig)
    stack: Tuple[DrilldownLevel, ...] = (DrilldownLevel.SUMMARY,)
    entity_type: Optional[Dimension] = None
    selected_entity: Optional[str] = None

    @property
    def level(self) -> DrilldownLevel:
        return self.stack[-1]

    @property
    def depth(self) -> int:
        return len(self.stack)

    @property
    def modal_open(self) -> bool:
        return self.level in MODAL_LEVELS

    @property
    def charts_visible(self) -> bool:
        return not self.modal_open

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "stack": [lv.value for lv in self.stack],
            "entity_type": self.entity_type.value if self.entity_type else None,
            "selected_entity": self.selected_entity,
            "filters": self.filters.to_dict(),
        }


def _base_levels(filters: FilterConfig) -> Tuple[DrilldownLevel, ...]:
    if filters.has_active_filters:
        return (DrilldownLevel.SUMMARY, DrilldownLevel.DIMENSION_FILTERED)
    return (DrilldownLevel.SUMMARY,)


def _with_filters(state: DrilldownState, filters: FilterConfig) -> DrilldownState:
    """Replace filters and rebuild the base of the stack, keeping open modals."""
    modals = tuple(lv for lv in state.stack if lv in MODAL_LEVELS)
    return replace(state, filters=filters, stack=_base_levels(filters) + modals)


def initial_state(report_config: "ReportConfig" = None) -> DrilldownState:
    """State of a freshly mounted report view."""
    return DrilldownState(filters=default_filters(report_config))


def _ignored(state: DrilldownState, action: Any, reason: str) -> DrilldownState:
    logger.debug(f"Ignored {type(action).__name__} at {state.level.value}: {reason}")
    return state


def transition(state: DrilldownState, action: DrilldownAction) -> DrilldownState:
    """
    Apply one action and return the next state.

    Actions that make no sense at the current level (a chart click while a
    modal covers the charts, selecting an entity with no list open) return
    the state unchanged. Unknown action types raise TypeError.
    """
    if isinstance(action, ChartBarClicked):
        if not state.charts_visible:
            return _ignored(state, action, "charts hidden by modal")
        return _with_filters(state, with_dimension_filter(state.filters, action.dimension, action.value))

    if isinstance(action, ChartBackClicked):
        if not state.charts_visible:
            return _ignored(state, action, "charts hidden by modal")
        return _with_filters(state, clear_dimension_filter(state.filters, action.dimension))

    if isinstance(action, MetricCardOpened):
        if action.entity_type not in DRILLABLE_ENTITIES:
            raise ValueError(f"No drilldown list for {action.entity_type}")
        if state.modal_open:
            return _ignored(state, action, "a modal is already open")
        return replace(
            state,
            stack=state.stack + (DrilldownLevel.ENTITY_DRILLDOWN,),
            entity_type=action.entity_type,
            selected_entity=None,
        )

    if isinstance(action, EntitySelected):
        if state.level != DrilldownLevel.ENTITY_DRILLDOWN:
            return _ignored(state, action, "no entity list open")
        return replace(
            state,
            stack=state.stack + (DrilldownLevel.INVOICE_DETAIL,),
            selected_entity=action.name,
        )

    if isinstance(action, ModalClosed):
        if state.level == DrilldownLevel.INVOICE_DETAIL:
            return replace(state, stack=state.stack[:-1], selected_entity=None)
        if state.level == DrilldownLevel.ENTITY_DRILLDOWN:
            return replace(state, stack=state.stack[:-1], entity_type=None, selected_entity=None)
        return _ignored(state, action, "no modal open")

    if isinstance(action, FiltersApplied):
        return _with_filters(state, action.config)

    if isinstance(action, FiltersReset):
        return _with_filters(state, default_filters(action.report_config))

    raise TypeError(f"Unknown drilldown action: {action!r}")


def replay(state: DrilldownState, *actions: DrilldownAction) -> DrilldownState:
    """Apply actions in order."""
    for action in actions:
        state = transition(state, action)
    return state
