"""Sub-emitters carrying their own static call-site tables."""
from __future__ import annotations

from typing import Dict

from emittergen.static import new_static_callsite_provider
from emittergen.types import CallSiteDetails

from ..di import Dependencies


def sub_emitter_example(deps: Dependencies) -> None:
    parent = deps.emitter

    package1_metadata: Dict[str, CallSiteDetails] = {
        "package1.api_request": CallSiteDetails(
            filename="/app/package1/api.py",
            line_no=25,
            func_name="package1.api.handle_request",
            package="package1",
            property_keys=("endpoint", "method"),
            metric_type="COUNT",
        ),
    }
    package1_emitter = (
        parent.new_sub_emitter()
        .with_callsite_provider(new_static_callsite_provider(package1_metadata))
        .with_static_metadata(package1_metadata)
    )
    dynamic_emitter = parent.new_sub_emitter()

    ctx = None
    package1_emitter.count(ctx, "package1.api_request", {"endpoint": "/users", "method": "GET"}, 1)
    dynamic_emitter.count(ctx, "dynamic.event", None, 1)
