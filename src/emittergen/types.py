# src/emittergen/types.py
"""
Boundary types shared by instrumented code, the generated call-site tables
and the analyzer.

The analyzer matches on the fully-qualified names of these types
(``emittergen.types.CombinedEmitter`` etc.), so instrumented packages must
annotate their emitters, handles and timers with them.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar

T = TypeVar("T")

Props = Optional[Mapping[str, Any]]


class MetricType(enum.IntEnum):
    COUNT = 0
    GAUGE = 1
    HISTOGRAM = 2
    TIMER = 3
    METER = 4
    SET = 5
    EVENT = 6

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class CallSiteDetails:
    """Pre-resolved metadata for one event, as written into generated tables."""
    filename: str = ""
    line_no: int = 0
    func_name: str = ""
    package: str = ""
    property_keys: Tuple[str, ...] = ()
    metric_type: str = ""

    def is_empty(self) -> bool:
        return not self.filename and self.line_no == 0


@dataclass(frozen=True)
class MetricManifestEntry:
    """One row of the exported metric manifest; ``metric_type`` is None for untyped emits."""
    name: str
    metric_type: Optional[MetricType]
    type_string: str
    property_keys: Tuple[str, ...] = ()


# ==============================================================================
# Handles
# ==============================================================================


class MetricEmitterFn(Protocol):
    def __call__(self, ctx: Any, props: Props, *values: Any) -> None: ...


class LogEmitterFn(Protocol):
    def __call__(self, ctx: Any, props: Props, fmt: str, *args: Any) -> None: ...


CallsiteProvider = Callable[[str], CallSiteDetails]


class MetricsTimer(Protocol[T]):
    def time(self, ctx: Any, event: str, props: Props, fn: Callable[[], T]) -> T: ...


class EmitterBackend(Protocol):
    """Sink an emitter fans every event out to; durations are in seconds."""

    def emit_int(self, ctx: Any, event: str, props: Dict[str, Any], value: int, metric_type: MetricType) -> None: ...
    def emit_float(
        self, ctx: Any, event: str, props: Dict[str, Any], value: float, metric_type: MetricType
    ) -> None: ...
    def emit_duration(
        self, ctx: Any, event: str, props: Dict[str, Any], value: float, metric_type: MetricType
    ) -> None: ...


# ==============================================================================
# Provider
# ==============================================================================


class CombinedEmitter(Protocol):
    # metrics
    def count(self, ctx: Any, event: str, props: Props, value: int) -> None: ...
    def gauge(self, ctx: Any, event: str, props: Props, value: float) -> None: ...
    def histogram(self, ctx: Any, event: str, props: Props, value: float) -> None: ...
    def meter(self, ctx: Any, event: str, props: Props, value: float) -> None: ...
    def set(self, ctx: Any, event: str, props: Props, value: Any) -> None: ...
    def event(self, ctx: Any, event: str, props: Props) -> None: ...

    def emit_int(self, ctx: Any, event: str, props: Props, value: int, metric_type: MetricType) -> None: ...
    def emit_float(self, ctx: Any, event: str, props: Props, value: float, metric_type: MetricType) -> None: ...
    def emit_duration(self, ctx: Any, event: str, props: Props, value: float, metric_type: MetricType) -> None: ...

    # logs
    def info(self, event: str, props: Props, *args: Any) -> None: ...
    def warn(self, event: str, props: Props, *args: Any) -> None: ...
    def error(self, event: str, props: Props, *args: Any) -> None: ...
    def fatal(self, event: str, props: Props, *args: Any) -> None: ...
    def debug(self, event: str, props: Props, *args: Any) -> None: ...
    def trace(self, event: str, props: Props, *args: Any) -> None: ...

    def infof(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def warnf(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def errorf(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def fatalf(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def debugf(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def tracef(self, event: str, props: Props, fmt: str, *args: Any) -> None: ...

    def info_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...
    def warn_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...
    def error_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...
    def fatal_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...
    def debug_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...
    def trace_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None: ...

    def infof_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def warnf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def errorf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def fatalf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def debugf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...
    def tracef_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None: ...

    # registration
    def metric(self, event: str, metric_type: MetricType) -> MetricEmitterFn: ...
    def metric_with_props(self, event: str, metric_type: MetricType, prop_keys: Sequence[str]) -> MetricEmitterFn: ...
    def log(self, event: str, log_fn: Callable[..., None]) -> LogEmitterFn: ...
    def log_with_props(self, event: str, log_fn: Callable[..., None], prop_keys: Sequence[str]) -> LogEmitterFn: ...

    # call-site markers
    def metric_fn_callsite(self, fn: MetricEmitterFn) -> MetricEmitterFn: ...
    def log_fn_callsite(self, fn: LogEmitterFn) -> LogEmitterFn: ...

    # derivation
    def new_sub_emitter(self) -> "CombinedEmitter": ...
    def with_static_metadata(self, static_data: Dict[str, CallSiteDetails]) -> "CombinedEmitter": ...
    def with_callsite_provider(self, provider: CallsiteProvider) -> "CombinedEmitter": ...
