# src/emittergen/callsites/emitter_api.py
"""
Catalog of the instrumentation API the analyzer recognises: which types are
handle providers, handles and timers, and what every provider method means
(argument positions, metric kind, what it returns).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

_TYPES = "emittergen.types"


class Role(str, enum.Enum):
    DIRECT = "direct"          # em.count(ctx, "event", props, 1)
    REGISTER = "register"      # em.metric("event", MetricType.COUNT) -> handle
    DECORATE = "decorate"      # em.metric_fn_callsite(handle) -> handle
    DERIVE = "derive"          # em.new_sub_emitter() -> provider
    TIMER = "timer"            # timer.time(ctx, "event", props, fn)


@dataclass(frozen=True)
class MethodSpec:
    name: str
    role: Role
    event_index: int = -1
    props_index: int = -1
    metric_type_index: int = -1
    prop_keys_index: int = -1
    kind: str = ""              # fixed metric kind; "" when taken from an argument or unknown
    returns: str = ""           # fq type name of the returned handle/provider


@dataclass(frozen=True)
class EmitterApiConfig:
    provider_types: FrozenSet[str] = frozenset({f"{_TYPES}.CombinedEmitter"})
    metric_handle_types: FrozenSet[str] = frozenset({f"{_TYPES}.MetricEmitterFn"})
    log_handle_types: FrozenSet[str] = frozenset({f"{_TYPES}.LogEmitterFn"})
    timer_types: FrozenSet[str] = frozenset({f"{_TYPES}.MetricsTimer"})
    metric_type_enum: str = f"{_TYPES}.MetricType"

    @property
    def handle_types(self) -> FrozenSet[str]:
        return self.metric_handle_types | self.log_handle_types


_METRIC_METHODS = ("count", "gauge", "histogram", "meter", "set", "event")
_LOG_LEVELS = ("info", "warn", "error", "fatal", "debug", "trace")
_EMIT_METHODS = ("emit_int", "emit_float", "emit_duration")

METRIC_KINDS = frozenset({"COUNT", "GAUGE", "HISTOGRAM", "TIMER", "METER", "SET", "EVENT"})


def _provider_methods(cfg: EmitterApiConfig) -> Dict[str, MethodSpec]:
    metric_handle = sorted(cfg.metric_handle_types)[0]
    log_handle = sorted(cfg.log_handle_types)[0]
    provider = sorted(cfg.provider_types)[0]

    methods: Dict[str, MethodSpec] = {}
    for name in _METRIC_METHODS:
        methods[name] = MethodSpec(name, Role.DIRECT, event_index=1, props_index=2, kind=name.upper())
    for name in _EMIT_METHODS:
        methods[name] = MethodSpec(name, Role.DIRECT, event_index=1, props_index=2)
    for level in _LOG_LEVELS:
        for name in (level, f"{level}f"):
            methods[name] = MethodSpec(name, Role.DIRECT, event_index=0, props_index=1, kind="COUNT")
            ctx_name = f"{name}_context"
            methods[ctx_name] = MethodSpec(ctx_name, Role.DIRECT, event_index=1, props_index=2, kind="COUNT")

    methods["metric"] = MethodSpec("metric", Role.REGISTER, event_index=0, metric_type_index=1, returns=metric_handle)
    methods["metric_with_props"] = MethodSpec(
        "metric_with_props", Role.REGISTER, event_index=0, metric_type_index=1, prop_keys_index=2, returns=metric_handle,
    )
    methods["log"] = MethodSpec("log", Role.REGISTER, event_index=0, kind="COUNT", returns=log_handle)
    methods["log_with_props"] = MethodSpec(
        "log_with_props", Role.REGISTER, event_index=0, prop_keys_index=2, kind="COUNT", returns=log_handle,
    )

    methods["metric_fn_callsite"] = MethodSpec("metric_fn_callsite", Role.DECORATE, returns=metric_handle)
    methods["log_fn_callsite"] = MethodSpec("log_fn_callsite", Role.DECORATE, returns=log_handle)

    for name in ("new_sub_emitter", "with_static_metadata", "with_callsite_provider"):
        methods[name] = MethodSpec(name, Role.DERIVE, returns=provider)
    return methods


class EmitterApi:
    """Lookup of provider and timer methods by name, bound to one config."""

    def __init__(self, cfg: Optional[EmitterApiConfig] = None) -> None:
        self.cfg = cfg or EmitterApiConfig()
        self._provider = _provider_methods(self.cfg)
        self._timer = {"time": MethodSpec("time", Role.TIMER, event_index=1, props_index=2, kind="TIMER")}

    def provider_method(self, name: str) -> Optional[MethodSpec]:
        return self._provider.get(name)

    def timer_method(self, name: str) -> Optional[MethodSpec]:
        return self._timer.get(name)
