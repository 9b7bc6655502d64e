"""
Operation Tracing for Report Runs

Times the phases of a report build (data retrieval, aggregation,
grouping, ranking) so slow stages show up in the logs and, optionally,
in exported JSON traces.

Key Capabilities:
- Trace: every span of one report run (a dashboard build, a voucher page load)
- Span: one timed phase with attributes and error status
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from contextlib import contextmanager
from enum import Enum
import time
import json
import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class SpanKind(Enum):
    """Report phase a span measures."""
    DATA_RETRIEVAL = "data_retrieval"
    AGGREGATION = "aggregation"
    GROUPING = "grouping"
    RANKING = "ranking"


class SpanStatus(Enum):
    OK = "ok"
    ERROR = "error"


def _describe(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


@dataclass
class _Timed:
    """Wall-clock stamps plus a monotonic duration."""
    name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    status: SpanStatus = SpanStatus.OK
    error_message: Optional[str] = None
    _clock: float = field(default_factory=time.perf_counter, repr=False, compare=False)
    _elapsed: Optional[float] = field(default=None, repr=False, compare=False)

    def finish(self):
        self._elapsed = time.perf_counter() - self._clock
        self.end_time = datetime.now(timezone.utc)

    def set_error(self, error: Exception):
        self.status = SpanStatus.ERROR
        self.error_message = _describe(error)

    @property
    def duration_ms(self) -> float:
        return self._elapsed * 1000 if self._elapsed is not None else 0.0

    def _timing_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "started_at": self.started_at.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": round(self.duration_ms, 3),
            "status": self.status.value,
            "error_message": self.error_message,
        }


@dataclass
class Span(_Timed):
    """One timed phase of a report run."""
    kind: SpanKind = SpanKind.DATA_RETRIEVAL
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    parent_span_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self._timing_dict()
        data.update(
            span_id=self.span_id,
            kind=self.kind.value,
            parent_span_id=self.parent_span_id,
            attributes=self.attributes,
        )
        return data


@dataclass
class Trace(_Timed):
    """All spans of one report run."""
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    spans: List[Span] = field(default_factory=list)

    def spans_of(self, kind: SpanKind) -> List[Span]:
        return [s for s in self.spans if s.kind is kind]

    def to_dict(self) -> Dict[str, Any]:
        data = self._timing_dict()
        data["trace_id"] = self.trace_id
        data["spans"] = [s.to_dict() for s in self.spans]
        return data


class Tracer:
    """
    Collects spans for report runs.

    Usage:
        tracer = get_tracer()

        with tracer.start_trace("dashboard"):
            with tracer.span("aggregate_customers", SpanKind.AGGREGATION) as span:
                rows = aggregate(...)
                span.attributes["groups"] = len(rows)

    Spans opened outside a trace are timed and logged but not kept.
    Finished traces are written as JSON when export_dir is set.
    """

    def __init__(self, export_dir: Optional[Path] = None):
        self.export_dir = export_dir
        if export_dir is not None:
            export_dir.mkdir(parents=True, exist_ok=True)
        self._trace: Optional[Trace] = None
        self._open: List[Span] = []

    @property
    def current_trace(self) -> Optional[Trace]:
        return self._trace

    @property
    def current_span(self) -> Optional[Span]:
        return self._open[-1] if self._open else None

    @contextmanager
    def start_trace(self, name: str):
        trace = Trace(name=name)
        self._trace, self._open = trace, []
        try:
            yield trace
        except Exception as e:
            trace.set_error(e)
            raise
        finally:
            trace.finish()
            self._trace = None
            logger.info(f"Report run '{name}' took {trace.duration_ms:.0f}ms across {len(trace.spans)} spans")
            if self.export_dir is not None:
                self._write(trace)

    @contextmanager
    def span(self, name: str, kind: SpanKind, attributes: Optional[Dict[str, Any]] = None):
        parent = self.current_span
        span = Span(
            name=name,
            kind=kind,
            parent_span_id=parent.span_id if parent else None,
            attributes=dict(attributes or {}),
        )
        if self._trace is not None:
            self._trace.spans.append(span)
        self._open.append(span)
        try:
            yield span
        except Exception as e:
            span.set_error(e)
            raise
        finally:
            span.finish()
            self._open.pop()
            suffix = f" [{span.error_message}]" if span.error_message else ""
            logger.debug(f"{kind.value}:{name} {span.duration_ms:.1f}ms{suffix}")

    def _write(self, trace: Trace):
        target = self.export_dir / f"{trace.name}_{trace.trace_id}.json"
        try:
            target.write_text(json.dumps(trace.to_dict(), indent=2, default=str))
        except OSError as e:
            logger.error(f"Could not write trace {trace.trace_id} to {target}: {e}")


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    """Process-wide tracer; TRACE_EXPORT_DIR enables JSON export."""
    global _tracer
    if _tracer is None:
        export_dir = os.getenv("TRACE_EXPORT_DIR")
        _tracer = Tracer(export_dir=Path(export_dir) if export_dir else None)
    return _tracer


def reset_tracer():
    global _tracer
    _tracer = None
