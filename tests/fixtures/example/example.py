from __future__ import annotations

import logging
from typing import Any, Dict, List

from emittergen.types import CombinedEmitter, LogEmitterFn, MetricEmitterFn, MetricType

from .emitters import em
from .example_emitters import some_emitters

logger = logging.getLogger(__name__)


def direct_calls() -> None:
    ctx: Any = None

    em.count(ctx, "direct_count", {"environment": "prod", "region": "us-west"}, 1)  # callsite: direct_count
    em.gauge(ctx, "direct_gauge", {"host": "server1"}, 42.5)  # callsite: direct_gauge

    em.info_context(ctx, "direct_info_log", {"user": "alice", "action": "login"}, "info message")  # callsite: direct_info_log
    em.error_context(ctx, "direct_error_log", {"code": "E500"}, "error message")  # callsite: direct_error_log
    em.debugf_context(ctx, "direct_debugf_log", None, "debug %s", "message")  # callsite: direct_debugf_log


# Registered metrics
user_login_metric = em.metric_with_props("user_login_metric", MetricType.COUNT, ["user_id", "success"])
request_duration = em.metric_with_props("request_duration", MetricType.TIMER, ["endpoint", "method"])
active_users = em.metric("active_users", MetricType.GAUGE)


def registered_metrics() -> None:
    ctx = None
    user_login_metric(ctx, {"user_id": "123"})  # callsite: user_login_metric
    request_duration(ctx, None)  # callsite: request_duration
    active_users(ctx, {"region": "us-east"})  # callsite: active_users


# Registered logs
audit_log = em.log_with_props("audit_log", em.infof_context, ["action", "resource", "user"])
error_log = em.log("error_log", em.errorf_context)


def registered_logs() -> None:
    ctx = None
    audit_log(ctx, {"action": "delete"}, "User %s deleted resource %s", "alice", "file.txt")  # callsite: audit_log
    error_log(ctx, None, "Database connection failed: %v", "timeout")  # callsite: error_log


# Inline decoration: the registrations themselves are not call sites
decorated_metric = em.metric("decorated_metric", MetricType.COUNT)
decorated_log = em.log("decorated_log", em.infof_context)


def decorated_functions() -> None:
    ctx = None
    em.metric_fn_callsite(decorated_metric)(ctx, None)  # callsite: decorated_metric
    em.log_fn_callsite(decorated_log)(ctx, {"level": "info"}, "This is a %s", "test")  # callsite: decorated_log


# Indirect decoration: decorate at the point of use, invoke later
cache_hit_metric = em.metric("cache_hit_metric", MetricType.COUNT)
auth_failure_log = em.log("auth_failure_log", em.errorf_context)


def indirectly_decorated_functions() -> None:
    ctx = None

    decorated_cache_hit = em.metric_fn_callsite(cache_hit_metric)  # callsite: cache_hit_metric
    decorated_cache_hit(ctx, {"key": "user:123"})

    decorated_auth_failure = em.log_fn_callsite(auth_failure_log)  # callsite: auth_failure_log
    decorated_auth_failure(ctx, {"user": "alice"}, "Failed login attempt from %s", "192.168.1.1")


bloom_filter_reset = em.metric_with_props("bloom_filter_reset", MetricType.COUNT, ["density", "service_count"])
critical_confabulation = em.log_with_props("critical_confabulation", em.errorf_context, ["confabulacity"])


def indirectly_decorated_functions_with_props() -> None:
    ctx = None

    decorated_bloom_filter = em.metric_fn_callsite(bloom_filter_reset)  # callsite: bloom_filter_reset
    decorated_bloom_filter(ctx, None)

    decorated_confabulation = em.log_fn_callsite(fn=critical_confabulation)  # callsite: critical_confabulation
    decorated_confabulation(ctx, None, "Critically excessive confabulation from %s", "192.168.1.1")


class FakeLogger:
    """Not an emitter: it only shares method names with one."""

    def info(self, msg: str) -> None:
        pass

    def count(self, ctx: Any, name: str, props: Dict[str, Any], n: int) -> None:
        pass

    def gauge(self, ctx: Any, name: str, props: Dict[str, Any], v: float) -> None:
        pass


def non_emitter_calls() -> None:
    ctx = None

    _ = "error with code: {}".format("E404")
    _ = ValueError("database error: connection failed")

    logger.info("user logged in %s", "alice")
    logger.error("database error %s", "E500")
    logger.debug("debug message")

    fake = FakeLogger()
    fake.info("should not be picked up")
    fake.count(ctx, "not_an_emitter_count", {}, 1)
    fake.gauge(ctx, "not_an_emitter_gauge", {}, 42.0)


def emitters_defined_in_another_module() -> None:
    ctx = None
    tem = some_emitters(em)
    tem.event1(ctx, {"prop1": "value1", "prop2": "value2"}, "Event 1 occurred")  # callsite: event1
    tem.event2(ctx, {"metric1": "value1", "metric2": "value2"}, 100)  # callsite: event2
    tem.event3.time(ctx, "timed_event", {"Hello": "World"}, lambda: 0)  # callsite: timed_event


def emitters_in_slice(e: CombinedEmitter) -> List[MetricEmitterFn]:
    return [
        e.metric("slice_metric_0", MetricType.COUNT),
        e.metric_with_props("slice_metric_1", MetricType.HISTOGRAM, ["size", "duration"]),
        e.metric_with_props("slice_metric_2", MetricType.GAUGE, ["value"]),
    ]


def emitters_in_map(e: CombinedEmitter) -> Dict[str, LogEmitterFn]:
    return {
        "info": e.log("map_info", e.infof_context),
        "warn": e.log_with_props("map_warn", e.warnf_context, ["severity", "component"]),
        "error": e.log("map_error", e.errorf_context),
    }


def emitters_in_arrays() -> None:
    ctx = None
    slice_ = emitters_in_slice(em)

    slice_[0](ctx, None)  # callsite: slice_metric_0
    slice_[1](ctx, {"size": 100, "duration": 50})  # callsite: slice_metric_1
    slice_[2](ctx, {"value": 42})  # callsite: slice_metric_2


def emitters_in_maps() -> None:
    ctx = None
    m = emitters_in_map(em)

    m["info"](ctx, None, "Info message: %s", "test")  # callsite: map_info
    m["warn"](ctx, {"severity": "high", "component": "auth"}, "Warning: %s", "failure")  # callsite: map_warn
    m["error"](ctx, None, "Error occurred: %v", "timeout")  # callsite: map_error
