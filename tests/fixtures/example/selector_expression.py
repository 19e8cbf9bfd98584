from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from emittergen.types import CombinedEmitter, LogEmitterFn, MetricEmitterFn, MetricType

from .di import Dependencies
from .emitters import em


@dataclass
class ServiceEmitters:
    create_success: LogEmitterFn
    create_failure: LogEmitterFn
    update_success: MetricEmitterFn
    update_failure: MetricEmitterFn


def init_service_emitters(deps: Dependencies) -> ServiceEmitters:
    return ServiceEmitters(
        create_success=deps.emitter.log("selector_create_success", deps.emitter.debugf_context),
        create_failure=deps.emitter.log("selector_create_failure", deps.emitter.errorf_context),
        update_success=deps.emitter.metric("selector_update_success", MetricType.COUNT),
        update_failure=deps.emitter.metric("selector_update_failure", MetricType.COUNT),
    )


delete_success_callback = em.log("selector_delete_success", em.debugf_context)


def pkg_emitter_helper(deps: Dependencies) -> CombinedEmitter:
    return deps.emitter


class Service:
    def __init__(self, deps: Dependencies) -> None:
        self.deps = deps
        self.emitters = init_service_emitters(deps)

    def create_item(self, ctx: Any) -> None:
        pkg_emitter_helper(self.deps).log_fn_callsite(self.emitters.create_success)(ctx, None, "Item created")  # callsite: selector_create_success
        pkg_emitter_helper(self.deps).log_fn_callsite(self.emitters.create_failure)(ctx, None, "Failed to create item")  # callsite: selector_create_failure

    def update_item(self, ctx: Any) -> None:
        pkg_emitter_helper(self.deps).metric_fn_callsite(self.emitters.update_success)(ctx, None)  # callsite: selector_update_success
        pkg_emitter_helper(self.deps).metric_fn_callsite(self.emitters.update_failure)(ctx, None)  # callsite: selector_update_failure

    def delete_item(self, ctx: Any) -> None:
        em = pkg_emitter_helper(self.deps)
        cb = delete_success_callback
        cb2 = cb
        em.log_fn_callsite(cb2)(ctx, None, "Item deleted")  # callsite: selector_delete_success
