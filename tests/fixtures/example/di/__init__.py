"""Dependency container shared by the example package."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from emittergen.types import CombinedEmitter, MetricsTimer, MetricType, Props

T = TypeVar("T")

_default: Optional[CombinedEmitter] = None


@dataclass
class Dependencies:
    emitter: CombinedEmitter


def configure(emitter: CombinedEmitter) -> None:
    global _default
    _default = emitter


def new_dependencies() -> Dependencies:
    if _default is None:
        raise RuntimeError("di.configure() must be called first")
    return Dependencies(emitter=_default)


class _TimingEmitter(Generic[T]):
    def __init__(self, emitter: CombinedEmitter) -> None:
        self._emitter = emitter

    def time(self, ctx: Any, event: str, props: Props, fn: Callable[[], T]) -> T:
        start = time.monotonic()
        try:
            return fn()
        finally:
            self._emitter.emit_duration(ctx, event, props, time.monotonic() - start, MetricType.TIMER)


def new_timing_emitter(emitter: CombinedEmitter) -> MetricsTimer[Any]:
    return _TimingEmitter(emitter)
