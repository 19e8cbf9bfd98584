from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from emittergen.types import CombinedEmitter, MetricsTimer

from .di import Dependencies, new_dependencies, new_timing_emitter


# Timers held in a dataclass


@dataclass
class ServiceTimers:
    db_query_timer: MetricsTimer[int]
    api_call_timer: MetricsTimer[str]
    processing_timer: MetricsTimer[bool]


def init_service_timers(deps: Dependencies) -> ServiceTimers:
    return ServiceTimers(
        db_query_timer=new_timing_emitter(deps.emitter),
        api_call_timer=new_timing_emitter(deps.emitter),
        processing_timer=new_timing_emitter(deps.emitter),
    )


class ServiceWithTimers:
    def __init__(self, deps: Dependencies) -> None:
        self.deps = deps
        self.timers = init_service_timers(deps)

    def query_database(self, ctx: Any) -> int:
        return self.timers.db_query_timer.time(  # callsite: service.db.query
            ctx,
            "service.db.query",
            {"table": "users"},
            lambda: 42,
        )

    def call_external_api(self, ctx: Any) -> str:
        return self.timers.api_call_timer.time(  # callsite: service.api.call
            ctx,
            "service.api.call",
            {"endpoint": "/users", "method": "GET"},
            lambda: "success",
        )

    def process_data(self, ctx: Any) -> bool:
        return self.timers.processing_timer.time(ctx, "service.process.data", None, lambda: True)  # callsite: service.process.data

    def complex_operation(self, ctx: Any) -> int:
        timer = self.timers.db_query_timer
        return timer.time(ctx, "service.complex.operation", {"complexity": "high"}, lambda: 100)  # callsite: service.complex.operation

    def chained_timer_usage(self, ctx: Any) -> int:
        t1 = self.timers.db_query_timer
        t2 = t1
        return t2.time(ctx, "service.chained.timer", {"depth": 2}, lambda: 5)  # callsite: service.chained.timer


# Timers created at the point of use


def function_level_timer(ctx: Any) -> int:
    deps = new_dependencies()
    timer = new_timing_emitter(deps.emitter)
    return timer.time(ctx, "function.level.timer", {"scope": "function"}, lambda: 77)  # callsite: function.level.timer


def inline_timer_creation(ctx: Any) -> float:
    deps = new_dependencies()
    return new_timing_emitter(deps.emitter).time(  # callsite: inline.timer.event
        ctx,
        event="inline.timer.event",
        props={"inline": True},
        fn=lambda: 3.14,
    )


# Timers in collections


@dataclass
class TimerCollection:
    timers: List[MetricsTimer[int]] = field(default_factory=list)


def new_timer_collection(e: CombinedEmitter) -> TimerCollection:
    return TimerCollection(timers=[new_timing_emitter(e), new_timing_emitter(e), new_timing_emitter(e)])


def timer_from_slice(ctx: Any) -> int:
    deps = new_dependencies()
    collection = new_timer_collection(deps.emitter)
    return collection.timers[0].time(ctx, "slice.timer.event1", {"index": 0}, lambda: 10)  # callsite: slice.timer.event1


@dataclass
class TimerMap:
    timers_by_name: Dict[str, MetricsTimer[str]]


def new_timer_map(e: CombinedEmitter) -> TimerMap:
    return TimerMap(
        {
            "fast": new_timing_emitter(e),
            "medium": new_timing_emitter(e),
            "slow": new_timing_emitter(e),
        }
    )


def timer_from_map(ctx: Any) -> str:
    deps = new_dependencies()
    timers = new_timer_map(deps.emitter)
    return timers.timers_by_name["fast"].time(ctx, "map.timer.fast", {"category": "fast"}, lambda: "done")  # callsite: map.timer.fast


def get_timer(e: CombinedEmitter) -> MetricsTimer[bool]:
    return new_timing_emitter(e)


def timer_from_function(ctx: Any) -> bool:
    deps = new_dependencies()
    timer = get_timer(deps.emitter)
    return timer.time(ctx, "function.timer.event", {"source": "function"}, lambda: False)  # callsite: function.timer.event
