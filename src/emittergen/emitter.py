# src/emittergen/emitter.py
"""
Runtime emitter.

``Emitter`` implements ``CombinedEmitter``: every metric and log event is
fanned out to the configured backends. When magic props are enabled, each
event also carries the call site it was emitted from (``filename``,
``line_no``, ``func_name``, ``package``, ``hostname``). Call sites come from
a provider: by default a walk up the Python stack, or the table the
generator wrote, via ``with_static_metadata`` or
``with_callsite_provider(new_static_callsite_provider(table))``.
"""
from __future__ import annotations

import logging
import socket
import sys
import threading
import time
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, Set, TypeVar

from .static import new_static_callsite_provider
from .types import (
    CallSiteDetails,
    CallsiteProvider,
    EmitterBackend,
    LogEmitterFn,
    MetricEmitterFn,
    MetricManifestEntry,
    MetricType,
    Props,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[Any, str, Dict[str, Any]], None]

MAGIC_PROPS = ("hostname", "filename", "line_no", "func_name", "package")


def default_callsite_provider(event: str) -> CallSiteDetails:
    """Call site of the first frame outside this module."""
    frame = sys._getframe(1)
    while frame is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    if frame is None:
        return CallSiteDetails()
    code = frame.f_code
    module = frame.f_globals.get("__name__", "")
    func = "" if code.co_name == "<module>" else getattr(code, "co_qualname", code.co_name)
    return CallSiteDetails(
        filename=code.co_filename,
        line_no=frame.f_lineno,
        func_name=f"{module}.{func}" if func and module else func,
        package=frame.f_globals.get("__package__") or module.rpartition(".")[0],
    )


def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return ""


class Emitter:
    """
    Fan-out emitter with optional call-site props.

    Builder methods (``with_*``) configure this emitter in place and return
    it. ``new_sub_emitter`` copies the configuration into an emitter with
    its own registrations, memo and backend list.
    """

    def __init__(self, *backends: EmitterBackend) -> None:
        self._backends: List[EmitterBackend] = list(backends)
        self._registered: Set[str] = set()
        self._memo: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._callback: Optional[Callback] = None
        self._hostname_provider: Callable[[], str] = _hostname
        self._callsite_provider: CallsiteProvider = default_callsite_provider
        self._static: Dict[str, CallSiteDetails] = {}
        self._magic: Set[str] = set()

    # ----------------------------- configuration ------------------------------

    def with_backend(self, backend: EmitterBackend) -> "Emitter":
        self._backends.append(backend)
        return self

    def with_callback(self, callback: Callback) -> "Emitter":
        """``callback(ctx, event, props)`` runs before the backends see an event."""
        self._callback = callback
        return self

    def with_hostname_provider(self, provider: Callable[[], str]) -> "Emitter":
        self._hostname_provider = provider
        return self

    def with_callsite_provider(self, provider: CallsiteProvider) -> "Emitter":
        with self._lock:
            self._callsite_provider = provider
            self._memo.clear()
        return self

    def with_static_metadata(self, static_data: Mapping[str, CallSiteDetails]) -> "Emitter":
        """
        Use a generated call-site table; events missing from it fall back to
        the provider configured before.
        """
        self._static = dict(static_data)
        static = new_static_callsite_provider(self._static)
        fallback = self._callsite_provider

        def provider(event: str) -> CallSiteDetails:
            details = static(event)
            return fallback(event) if details.is_empty() else details

        return self.with_callsite_provider(provider)

    def with_magic_props(self, *names: str) -> "Emitter":
        unknown = set(names) - set(MAGIC_PROPS)
        if unknown:
            raise ValueError(f"unknown magic props: {', '.join(sorted(unknown))}")
        self._magic.update(names)
        return self

    def with_all_magic_props(self) -> "Emitter":
        return self.with_magic_props(*MAGIC_PROPS)

    def without_magic_props(self) -> "Emitter":
        self._magic.clear()
        return self

    def new_sub_emitter(self) -> "Emitter":
        sub = Emitter(*self._backends)
        sub._callback = self._callback
        sub._hostname_provider = self._hostname_provider
        sub._callsite_provider = self._callsite_provider
        sub._static = dict(self._static)
        sub._magic = set(self._magic)
        return sub

    def get_manifest(self) -> List[MetricManifestEntry]:
        """Metric manifest of the static table, sorted by event name."""
        return [
            MetricManifestEntry(
                name=name,
                metric_type=MetricType.__members__.get(details.metric_type),
                type_string=details.metric_type,
                property_keys=tuple(details.property_keys),
            )
            for name, details in sorted(self._static.items())
        ]

    # ----------------------------- fan-out ------------------------------------

    def _call_site(self, event: str) -> Dict[str, Any]:
        with self._lock:
            cached = self._memo.get(event)
        if cached is not None:
            return cached
        details = self._callsite_provider(event)
        site: Dict[str, Any] = {
            "filename": details.filename,
            "line_no": details.line_no,
            "func_name": details.func_name,
            "package": details.package,
        }
        hostname = self._hostname_provider()
        if hostname:
            site["hostname"] = hostname
        with self._lock:
            return self._memo.setdefault(event, site)

    def _props(self, ctx: Any, event: str, props: Props, *, magic: bool = True) -> Dict[str, Any]:
        p = dict(props) if props else {}
        if magic and self._magic:
            p.update((k, v) for k, v in self._call_site(event).items() if k in self._magic)
        if self._callback is not None:
            self._callback(ctx, event, p)
        return p

    def _fan_out(
        self, method: str, ctx: Any, event: str, props: Dict[str, Any], value: Any, metric_type: MetricType
    ) -> None:
        for backend in self._backends:
            getattr(backend, method)(ctx, event, dict(props), value, metric_type)

    def emit_int(self, ctx: Any, event: str, props: Props, value: int, metric_type: MetricType) -> None:
        self._fan_out("emit_int", ctx, event, self._props(ctx, event, props), value, metric_type)

    def emit_float(self, ctx: Any, event: str, props: Props, value: float, metric_type: MetricType) -> None:
        self._fan_out("emit_float", ctx, event, self._props(ctx, event, props), value, metric_type)

    def emit_duration(self, ctx: Any, event: str, props: Props, value: float, metric_type: MetricType) -> None:
        self._fan_out("emit_duration", ctx, event, self._props(ctx, event, props), value, metric_type)

    # ----------------------------- metrics ------------------------------------

    def count(self, ctx: Any, event: str, props: Props, value: int) -> None:
        self.emit_int(ctx, event, props, value, MetricType.COUNT)

    def gauge(self, ctx: Any, event: str, props: Props, value: float) -> None:
        self.emit_float(ctx, event, props, value, MetricType.GAUGE)

    def histogram(self, ctx: Any, event: str, props: Props, value: float) -> None:
        self.emit_float(ctx, event, props, value, MetricType.HISTOGRAM)

    def meter(self, ctx: Any, event: str, props: Props, value: float) -> None:
        self.emit_int(ctx, event, props, value, MetricType.METER)

    def set(self, ctx: Any, event: str, props: Props, value: Any) -> None:
        self.emit_int(ctx, event, props, value, MetricType.SET)

    def event(self, ctx: Any, event: str, props: Props) -> None:
        self.emit_int(ctx, event, props, 1, MetricType.EVENT)

    # ----------------------------- logs ---------------------------------------

    def _log(self, ctx: Any, level: str, event: str, props: Props, message: str) -> None:
        p = self._props(ctx, event, props)
        p["_message"] = message
        p["_log_level"] = level
        self._fan_out("emit_int", ctx, event, p, 1, MetricType.COUNT)

    def info_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "INFO", event, props, _join(args))

    def warn_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "WARN", event, props, _join(args))

    def error_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "ERROR", event, props, _join(args))

    def fatal_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "FATAL", event, props, _join(args))

    def debug_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "DEBUG", event, props, _join(args))

    def trace_context(self, ctx: Any, event: str, props: Props, *args: Any) -> None:
        self._log(ctx, "TRACE", event, props, _join(args))

    def infof_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "INFO", event, props, _format(fmt, args))

    def warnf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "WARN", event, props, _format(fmt, args))

    def errorf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "ERROR", event, props, _format(fmt, args))

    def fatalf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "FATAL", event, props, _format(fmt, args))

    def debugf_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "DEBUG", event, props, _format(fmt, args))

    def tracef_context(self, ctx: Any, event: str, props: Props, fmt: str, *args: Any) -> None:
        self._log(ctx, "TRACE", event, props, _format(fmt, args))

    def info(self, event: str, props: Props, *args: Any) -> None:
        self.info_context(None, event, props, *args)

    def warn(self, event: str, props: Props, *args: Any) -> None:
        self.warn_context(None, event, props, *args)

    def error(self, event: str, props: Props, *args: Any) -> None:
        self.error_context(None, event, props, *args)

    def fatal(self, event: str, props: Props, *args: Any) -> None:
        self.fatal_context(None, event, props, *args)

    def debug(self, event: str, props: Props, *args: Any) -> None:
        self.debug_context(None, event, props, *args)

    def trace(self, event: str, props: Props, *args: Any) -> None:
        self.trace_context(None, event, props, *args)

    def infof(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.infof_context(None, event, props, fmt, *args)

    def warnf(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.warnf_context(None, event, props, fmt, *args)

    def errorf(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.errorf_context(None, event, props, fmt, *args)

    def fatalf(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.fatalf_context(None, event, props, fmt, *args)

    def debugf(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.debugf_context(None, event, props, fmt, *args)

    def tracef(self, event: str, props: Props, fmt: str, *args: Any) -> None:
        self.tracef_context(None, event, props, fmt, *args)

    # ----------------------------- registration -------------------------------

    def _register(self, event: str, metric_type: MetricType) -> None:
        with self._lock:
            if event in self._registered:
                raise ValueError(f"event {event!r} already registered")
            self._registered.add(event)
        logger.debug("registered %s (%s)", event, metric_type)
        # zero-valued announcement so backends know the event before its first use
        self._fan_out("emit_int", None, event, self._props(None, event, None, magic=False), 0, metric_type)

    def metric(self, event: str, metric_type: MetricType) -> MetricEmitterFn:
        self._register(event, metric_type)

        def emit(ctx: Any, props: Props, *values: Any) -> None:
            self.emit_int(ctx, event, props, values[0] if values else 1, metric_type)

        return emit

    def metric_with_props(self, event: str, metric_type: MetricType, prop_keys: Sequence[str]) -> MetricEmitterFn:
        return self.metric(event, metric_type)

    def log(self, event: str, log_fn: Callable[..., None]) -> LogEmitterFn:
        self._register(event, MetricType.COUNT)

        def emit(ctx: Any, props: Props, fmt: str, *args: Any) -> None:
            log_fn(ctx, event, props, fmt, *args)

        return emit

    def log_with_props(self, event: str, log_fn: Callable[..., None], prop_keys: Sequence[str]) -> LogEmitterFn:
        return self.log(event, log_fn)

    # markers for the generator; no-ops at runtime
    def metric_fn_callsite(self, fn: MetricEmitterFn) -> MetricEmitterFn:
        return fn

    def log_fn_callsite(self, fn: LogEmitterFn) -> LogEmitterFn:
        return fn


class TimingEmitter(Generic[T]):
    """``MetricsTimer`` over an emitter: times ``fn`` and emits a TIMER duration."""

    def __init__(self, emitter: Emitter) -> None:
        self.emitter = emitter

    def time(self, ctx: Any, event: str, props: Props, fn: Callable[[], T]) -> T:
        start = time.perf_counter()
        try:
            return fn()
        finally:
            self.emitter.emit_duration(ctx, event, props, time.perf_counter() - start, MetricType.TIMER)


def new_timing_emitter(emitter: Emitter) -> TimingEmitter[Any]:
    return TimingEmitter(emitter)


def _join(args: Sequence[Any]) -> str:
    return " ".join(str(a) for a in args)


def _format(fmt: str, args: Sequence[Any]) -> str:
    return fmt % args if args else fmt
