# src/emittergen/callsites/classifier.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

import libcst as cst

from .emitter_api import MethodSpec, Role
from .program import ProgramIndex, argument, denotes_value
from .registrations import RegistrationScanner
from .typeinfo import TypeOracle


class InvocationKind(str, enum.Enum):
    DIRECT = "direct"              # em.count(ctx, "event", ...)
    TIMER = "timer"                # timer.time(ctx, "event", ...)
    DECORATOR = "decorator"        # em.metric_fn_callsite(<path>)
    IDENTIFIER = "identifier"      # cb(...)
    SELECTOR = "selector"          # x.field(...)
    INDEX = "index"                # arr[0](...), m["k"](...)
    CALL_RESULT = "call_result"    # make()(...)


_PATH_KINDS = {
    cst.Name: InvocationKind.IDENTIFIER,
    cst.Attribute: InvocationKind.SELECTOR,
    cst.Subscript: InvocationKind.INDEX,
    cst.Call: InvocationKind.CALL_RESULT,
}


@dataclass(frozen=True, eq=False)
class Invocation:
    call: cst.Call
    kind: InvocationKind
    target: cst.BaseExpression     # access path to resolve (callee, or the decorated argument)
    spec: Optional[MethodSpec] = None


class InvocationClassifier:
    """
    Decides, per call expression, whether it may invoke a handle and which
    access path produced the callee. Registering and provider-deriving calls
    are not invocations.
    """

    def __init__(self, program: ProgramIndex, oracle: TypeOracle, scanner: RegistrationScanner) -> None:
        self.program = program
        self.oracle = oracle
        self.scanner = scanner

    def classify(self, call: cst.Call) -> Optional[Invocation]:
        spec = self.scanner.match(call)
        if spec is not None:
            if spec.role is Role.DIRECT:
                return Invocation(call, InvocationKind.DIRECT, call.func, spec)
            if spec.role is Role.TIMER:
                return Invocation(call, InvocationKind.TIMER, call.func, spec)
            if spec.role is Role.DECORATE:
                wrapped = argument(call, 0, "fn")
                if isinstance(wrapped, (cst.Name, cst.Attribute, cst.Subscript)):
                    return Invocation(call, InvocationKind.DECORATOR, wrapped, spec)
            return None

        func = call.func
        kind = _PATH_KINDS.get(type(func))
        if kind is None:
            return None
        if kind is not InvocationKind.CALL_RESULT and not denotes_value(self.program.symbol_for(func)):
            # classes, functions, modules and external names are never handles
            return None
        if isinstance(func, cst.Call):
            inner = self.scanner.match(func)
            if inner is not None and inner.role is Role.DECORATE:
                # em.metric_fn_callsite(h)(...) is recorded at the decorator call
                return None
        if self.oracle.callee_function(call) is not None:
            return None
        callee_type = self.oracle.type_of(func)
        if callee_type is not None and not self.oracle.is_handle(callee_type):
            return None
        return Invocation(call, kind, func)
