# src/emittergen/callsites/anomalies.py
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AnomalyKind(str, enum.Enum):
    # Discovery / IO
    IO_ERROR = "IO_ERROR"
    SKIPPED = "SKIPPED"                # filtered by rule
    BINARY_FILE = "BINARY_FILE"
    ENCODING = "ENCODING"
    GENERATED_CODE = "GENERATED_CODE"
    # Parsing
    PARSE_FAILED = "PARSE_FAILED"
    # Resolution (never fatal, never user-visible)
    UNRESOLVED = "UNRESOLVED"
    NON_LITERAL_INDEX = "NON_LITERAL_INDEX"
    AMBIGUOUS_FIELD = "AMBIGUOUS_FIELD"
    DEPTH_LIMIT = "DEPTH_LIMIT"
    # Catch-all
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Anomaly:
    """
    Immutable record. Persisted by CallsiteStore via its Arrow mapping.
    """
    path: str
    kind: AnomalyKind
    severity: Severity
    detail: str = ""
    line: int = 0
    blob_sha: str = ""
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict:
        return {
            "path": self.path,
            "blob_sha": self.blob_sha,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "line": int(self.line),
            "ts_ms": int(self.ts_ms),
        }


class AnomalySink:
    """
    Collects anomalies for one generator run. Thread-safe.

    Besides the records themselves it keeps flat counters (``total``,
    ``kind:<KIND>``, ``sev:<SEVERITY>``) and per-name duration histograms;
    both end up in the manifest receipt.
    """

    __slots__ = ("_lock", "_items", "_counts", "_timers")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Anomaly] = []
        self._counts: Dict[str, int] = {"total": 0}
        self._timers: Dict[str, Dict[str, int]] = {}   # name -> bucket -> observations

    def _bump(self, table: Dict[str, int], key: str) -> None:
        table[key] = table.get(key, 0) + 1

    def emit(self, anomaly: Anomaly) -> None:
        logger.debug("%s %s:%d %s", anomaly.kind.value, anomaly.path, anomaly.line, anomaly.detail)
        with self._lock:
            self._items.append(anomaly)
            self._bump(self._counts, "total")
            self._bump(self._counts, f"kind:{anomaly.kind.value}")
            self._bump(self._counts, f"sev:{anomaly.severity.value}")

    def extend(self, anomalies: Iterable[Anomaly]) -> None:
        for a in anomalies:
            self.emit(a)

    def drain(self) -> List[Anomaly]:
        """Hand over the buffered records; counters keep their totals."""
        with self._lock:
            out, self._items = self._items, []
        return out

    def items(self) -> List[Anomaly]:
        with self._lock:
            return list(self._items)

    def count(self, kind: Optional[AnomalyKind] = None) -> int:
        key = "total" if kind is None else f"kind:{kind.value}"
        with self._lock:
            return self._counts.get(key, 0)

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def observe_duration(self, name: str, seconds: float) -> None:
        """observe_duration("parse_seconds", dt) -> one hit in a log-scale bucket."""
        with self._lock:
            hist = self._timers.setdefault(name, {})
            self._bump(hist, _duration_bucket(seconds))
            self._bump(hist, f"{name}::count")

    def timer_histograms(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {name: dict(hist) for name, hist in self._timers.items()}


_BUCKETS = ((1e-3, "<1ms"), (1e-2, "<10ms"), (1e-1, "<100ms"), (1.0, "<1s"), (10.0, "<10s"))


def _duration_bucket(seconds: float) -> str:
    s = max(0.0, float(seconds))
    return next((label for limit, label in _BUCKETS if s < limit), ">=10s")
