# src/emittergen/backends/dummy.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..types import MetricType


@dataclass(frozen=True)
class Record:
    name: str
    value: Any
    metric_type: MetricType
    props: Dict[str, Any] = field(default_factory=dict)


class DummyBackend:
    """In-memory ``EmitterBackend``: keeps every event it receives, grouped by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.memo: Dict[str, List[Record]] = {}

    def _keep(self, event: str, props: Dict[str, Any], value: Any, metric_type: MetricType) -> None:
        with self._lock:
            self.memo.setdefault(event, []).append(Record(event, value, metric_type, dict(props or {})))

    def emit_int(self, ctx: Any, event: str, props: Dict[str, Any], value: int, metric_type: MetricType) -> None:
        self._keep(event, props, value, metric_type)

    def emit_float(self, ctx: Any, event: str, props: Dict[str, Any], value: float, metric_type: MetricType) -> None:
        self._keep(event, props, value, metric_type)

    def emit_duration(self, ctx: Any, event: str, props: Dict[str, Any], value: float, metric_type: MetricType) -> None:
        self._keep(event, props, value, metric_type)

    def records(self, event: str) -> List[Record]:
        with self._lock:
            return list(self.memo.get(event, []))

    def clear(self) -> None:
        with self._lock:
            self.memo.clear()
