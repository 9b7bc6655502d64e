"""
Error Taxonomy for the Reporting Engine

Classifies the failures the engine absorbs while aggregating and grouping:
- Parse failures degrade to safe defaults (None date, 0.0 amount)
- Shape failures skip the offending row
- Division by zero is replaced by a sentinel

None of these abort a pass. They are collected so callers can show
"N rows skipped" style diagnostics next to the report. Failures at the
I/O boundary (backend or local store) raise DataSourceError instead.
"""

from enum import Enum, auto
from dataclasses import asdict, dataclass, field
from typing import Optional, Dict, Any, List
from collections import Counter
import logging
import traceback

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Record parsing
    DATE_PARSE_FAILURE = auto()
    AMOUNT_PARSE_FAILURE = auto()

    # Record shape
    MISSING_IDENTITY = auto()
    MISSING_FIELD = auto()

    # Calculation
    DIVISION_BY_ZERO = auto()

    # Data retrieval
    DATA_SOURCE_UNAVAILABLE = auto()
    DATA_RETRIEVAL_TIMEOUT = auto()
    DATA_FORMAT_ERROR = auto()
    STALE_RESPONSE = auto()

    # System
    CONFIGURATION_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Absorbed categories never abort a pass
ABSORBED_CATEGORIES = {
    ErrorCategory.DATE_PARSE_FAILURE,
    ErrorCategory.AMOUNT_PARSE_FAILURE,
    ErrorCategory.MISSING_IDENTITY,
    ErrorCategory.MISSING_FIELD,
    ErrorCategory.DIVISION_BY_ZERO,
    ErrorCategory.STALE_RESPONSE,
}


USER_MESSAGES = {
    ErrorCategory.DATE_PARSE_FAILURE: "Some records had unreadable dates and were left out of the period.",
    ErrorCategory.AMOUNT_PARSE_FAILURE: "Some amounts could not be read and were counted as zero.",
    ErrorCategory.MISSING_IDENTITY: "Some voucher rows had no voucher id and were skipped.",
    ErrorCategory.MISSING_FIELD: "Some item lines had no ledger and were skipped.",
    ErrorCategory.DATA_SOURCE_UNAVAILABLE: "No data for this period: the data source is unavailable.",
    ErrorCategory.DATA_RETRIEVAL_TIMEOUT: "The data source took too long to respond.",
}


@dataclass
class ClassifiedError:
    """One absorbed or boundary failure, with where it happened."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool
    phase: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.category, f"An error occurred: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("stack_trace")
        data["category"] = self.category.name
        data["severity"] = self.severity.value
        data["user_message"] = self.user_message
        return data


class DataSourceError(Exception):
    """Raised when the backend API or the local store cannot serve a request."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.DATA_SOURCE_UNAVAILABLE,
        context: Dict[str, Any] = None,
    ):
        super().__init__(message)
        self.category = category
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=ErrorSeverity.HIGH,
            message=str(self),
            recoverable=self.category == ErrorCategory.DATA_RETRIEVAL_TIMEOUT,
            context=self.context,
            stack_trace="".join(traceback.format_exception(type(self), self, self.__traceback__)),
        )


class ErrorCollector:
    """
    Accumulates absorbed errors for one engine pass.

    Engine functions take an optional collector; when none is given the
    failure is only logged.
    """

    def __init__(self, max_errors: int = 500):
        self.max_errors = max_errors
        self.errors: List[ClassifiedError] = []
        self._counts: Counter = Counter()

    def record(
        self,
        category: ErrorCategory,
        message: str,
        phase: str = None,
        **context: Any,
    ) -> None:
        self._counts[category] += 1
        logger.debug(f"[{phase or 'engine'}] {category.name}: {message}")
        if len(self.errors) >= self.max_errors:
            return
        self.errors.append(ClassifiedError(
            category=category,
            severity=ErrorSeverity.LOW if category in ABSORBED_CATEGORIES else ErrorSeverity.HIGH,
            message=message,
            recoverable=category in ABSORBED_CATEGORIES,
            phase=phase,
            context=context,
        ))

    def count(self, category: ErrorCategory = None) -> int:
        if category is None:
            return sum(self._counts.values())
        return self._counts[category]

    def by_category(self) -> Dict[str, int]:
        return {category.name: n for category, n in self._counts.items()}

    def __len__(self) -> int:
        return self.count()

    def __bool__(self) -> bool:
        return True

    def summary(self) -> str:
        if not self._counts:
            return "No issues"
        parts = [f"{n} {category.name.lower().replace('_', ' ')}" for category, n in self._counts.most_common()]
        return ", ".join(parts)


def record_error(
    collector: Optional[ErrorCollector],
    category: ErrorCategory,
    message: str,
    phase: str = None,
    **context: Any,
) -> None:
    """Record into collector if one was supplied, otherwise only log."""
    if collector is not None:
        collector.record(category, message, phase=phase, **context)
    else:
        logger.debug(f"[{phase or 'engine'}] {category.name}: {message}")
