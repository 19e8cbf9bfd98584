# src/emittergen/callsites/registrations.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import libcst as cst

from .emitter_api import METRIC_KINDS, EmitterApi, MethodSpec, Role
from .errors import NonLiteralEventNameError, SourceLocation
from .program import ProgramIndex, argument, denotes_value, dotted_name, literal_string
from .typeinfo import TypeOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    """
    Event metadata carried by one registering, direct or timer call.
    Immutable; the recorder keys call sites by ``event_name``.
    """
    event_name: str
    location: SourceLocation
    enclosing_routine: str
    property_keys: Tuple[str, ...]
    metric_kind: str
    method: str
    role: Role
    node: cst.Call = field(compare=False, repr=False)


def property_keys_from_props(expr: Optional[cst.BaseExpression]) -> Tuple[str, ...]:
    """Keys of a props literal (dict display or ``dict(k=...)``); empty for anything else."""
    keys: List[str] = []
    if isinstance(expr, cst.Dict):
        for el in expr.elements:
            if isinstance(el, cst.DictElement):
                key = literal_string(el.key)
                if key is not None:
                    keys.append(key)
    elif isinstance(expr, cst.Call) and dotted_name(expr.func) == "dict":
        for arg in expr.args:
            if arg.keyword is not None and not arg.star:
                keys.append(arg.keyword.value)
    return tuple(sorted(set(keys)))


def property_keys_from_list(expr: Optional[cst.BaseExpression]) -> Tuple[str, ...]:
    """Entries of a prop-key list/tuple/set display of string literals."""
    keys: List[str] = []
    if isinstance(expr, (cst.List, cst.Tuple, cst.Set)):
        for el in expr.elements:
            if isinstance(el, cst.Element):
                key = literal_string(el.value)
                if key is not None:
                    keys.append(key)
    return tuple(sorted(set(keys)))


def _metric_kind_from_arg(expr: Optional[cst.BaseExpression]) -> str:
    if isinstance(expr, cst.Attribute):
        name = expr.attr.value
    elif isinstance(expr, cst.Name):
        name = expr.value
    else:
        return ""
    return name if name in METRIC_KINDS else ""


def _describe(expr: cst.BaseExpression) -> str:
    if isinstance(expr, cst.FormattedString):
        return "f-string"
    if isinstance(expr, cst.SimpleString):
        return "bytes literal"
    return type(expr).__name__


class RegistrationScanner:
    """
    Recognises provider and timer method calls by the static type of their
    receiver, and turns the ones carrying an event name into Registrations.
    """

    def __init__(self, program: ProgramIndex, oracle: TypeOracle, api: EmitterApi) -> None:
        self.program = program
        self.oracle = oracle
        self.api = api
        self._matches: Dict[cst.Call, Optional[MethodSpec]] = {}
        self._registrations: Dict[cst.Call, Optional[Registration]] = {}

    def match(self, call: cst.Call) -> Optional[MethodSpec]:
        if call in self._matches:
            return self._matches[call]
        spec: Optional[MethodSpec] = None
        func = call.func
        if isinstance(func, cst.Attribute):
            if denotes_value(self.program.symbol_for(func.value)):
                receiver = self.oracle.type_of(func.value)
                name = func.attr.value
                if self.oracle.is_provider(receiver):
                    spec = self.api.provider_method(name)
                elif self.oracle.is_timer(receiver):
                    spec = self.api.timer_method(name)
        self._matches[call] = spec
        return spec

    def registration_for(self, call: cst.Call) -> Optional[Registration]:
        """
        Registration carried by ``call`` (registering, direct or timer call).
        None when the call is none of those or has no event argument at all.
        Raises NonLiteralEventNameError when the event name is not a literal.
        """
        if call in self._registrations:
            return self._registrations[call]
        reg = self._build(call)
        self._registrations[call] = reg
        return reg

    def _build(self, call: cst.Call) -> Optional[Registration]:
        spec = self.match(call)
        if spec is None or spec.role not in (Role.REGISTER, Role.DIRECT, Role.TIMER):
            return None

        event_arg = argument(call, spec.event_index, "event")
        if event_arg is None:
            return None
        event = literal_string(event_arg)
        if event is None:
            raise NonLiteralEventNameError(self.program.location(event_arg), spec.name, _describe(event_arg))

        if spec.role is Role.REGISTER:
            keys = property_keys_from_list(argument(call, spec.prop_keys_index, "prop_keys")) if spec.prop_keys_index >= 0 else ()
            kind = spec.kind
            if spec.metric_type_index >= 0:
                kind = _metric_kind_from_arg(argument(call, spec.metric_type_index, "metric_type"))
        else:
            keys = property_keys_from_props(argument(call, spec.props_index, "props"))
            kind = spec.kind

        return Registration(
            event_name=event,
            location=self.program.location(call),
            enclosing_routine=self.program.routine_name(call),
            property_keys=keys,
            metric_kind=kind,
            method=spec.name,
            role=spec.role,
            node=call,
        )

    def scan(self) -> List[Registration]:
        """Validate and collect every registering call of the unit modules, in source order."""
        out: List[Registration] = []
        for module in self.program.unit_modules():
            for call in module.calls:
                spec = self.match(call)
                if spec is None or spec.role is not Role.REGISTER:
                    continue
                reg = self.registration_for(call)
                if reg is not None:
                    out.append(reg)
        logger.debug("found %d registrations", len(out))
        return out
