# src/emittergen/callsites/resolver.py
"""
Backward, on-demand alias resolution.

``AliasResolver.resolve(path)`` walks from an access path at an invocation
point back through assignments, field initialisers, collection displays and
function returns until it reaches the registering call whose handle flows
into the path. Pending subscripts and attribute accesses travel as a stack
of ``Step`` objects, so ``make()[1].field`` is resolved by descending into
the return value of ``make`` with steps ``[item 1, attr field]``.

Resolution is lazy: it never relies on the order in which call sites are
visited. Results are memoised per (node, steps), except those reached
through a cycle cut or the depth limit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Union

import libcst as cst

from ..core.config import env_int
from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .emitter_api import Role
from .program import (
    Binding,
    BindingKind,
    ClassInfo,
    ExternalRef,
    GlobalRef,
    ProgramIndex,
    keyword_argument,
    literal_key,
    subscript_key,
)
from .registrations import Registration, RegistrationScanner
from .typeinfo import TypeOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolverConfig:
    max_depth: int = 32

    @classmethod
    def from_env(cls) -> "ResolverConfig":
        return cls(max_depth=env_int("max_resolve_depth", cls.max_depth, minimum=1))


@dataclass(frozen=True)
class Step:
    kind: str                      # "item" | "attr"
    key: Union[int, str]

    def __str__(self) -> str:
        return f"[{self.key!r}]" if self.kind == "item" else f".{self.key}"


Steps = Tuple[Step, ...]
_NO_STEPS: Steps = ()


class AliasResolver:
    def __init__(
        self,
        program: ProgramIndex,
        oracle: TypeOracle,
        scanner: RegistrationScanner,
        *,
        cfg: Optional[ResolverConfig] = None,
        sink: Optional[AnomalySink] = None,
    ) -> None:
        self.program = program
        self.oracle = oracle
        self.scanner = scanner
        self.cfg = cfg or ResolverConfig.from_env()
        self.sink = sink or AnomalySink()
        # (node, steps) -> (result, how far below the entry depth the walk went)
        self._memo: Dict[Tuple[cst.CSTNode, Steps], Tuple[Optional[Registration], int]] = {}
        self._active: Set[Tuple[cst.CSTNode, Steps]] = set()
        self._cuts = 0
        self._deepest = 0

    # ----------------------------- public API ---------------------------------

    def resolve(self, expr: cst.BaseExpression) -> Optional[Registration]:
        """Registration whose handle reaches ``expr``; None when it cannot be determined."""
        return self._resolve(expr, _NO_STEPS, 0)

    # ----------------------------- dispatch -----------------------------------

    def _resolve(self, expr: cst.BaseExpression, steps: Steps, depth: int) -> Optional[Registration]:
        key = (expr, steps)
        hit = self._memo.get(key)
        if hit is not None and depth + hit[1] <= self.cfg.max_depth:
            self._deepest = max(self._deepest, depth + hit[1])
            return hit[0]
        if depth > self.cfg.max_depth:
            self._cuts += 1
            self._anomaly(expr, AnomalyKind.DEPTH_LIMIT, f"resolution deeper than {self.cfg.max_depth}")
            return None
        if key in self._active:
            self._cuts += 1
            return None
        cuts, outer = self._cuts, self._deepest
        self._deepest = depth
        self._active.add(key)
        try:
            result = self._dispatch(expr, steps, depth + 1)
        finally:
            self._active.discard(key)
            span = self._deepest - depth
            self._deepest = max(outer, self._deepest)
        # a result shaped by a cycle cut or the depth limit depends on where the walk started
        if self._cuts == cuts:
            self._memo[key] = (result, span)
        return result

    def _dispatch(self, expr: cst.BaseExpression, steps: Steps, depth: int) -> Optional[Registration]:
        if isinstance(expr, cst.Name):
            return self._name(expr, steps, depth)
        if isinstance(expr, cst.Attribute):
            return self._attribute(expr, steps, depth)
        if isinstance(expr, cst.Subscript):
            return self._subscript(expr, steps, depth)
        if isinstance(expr, cst.Call):
            return self._call(expr, steps, depth)
        if isinstance(expr, (cst.List, cst.Tuple)):
            return self._sequence(expr, steps, depth)
        if isinstance(expr, cst.Dict):
            return self._mapping(expr, steps, depth)
        if isinstance(expr, cst.IfExp):
            return self._first(((expr.body, steps), (expr.orelse, steps)), depth)
        if isinstance(expr, cst.BooleanOperation):
            return self._first(((expr.left, steps), (expr.right, steps)), depth)
        if isinstance(expr, cst.NamedExpr):
            return self._resolve(expr.value, steps, depth)
        return None

    def _first(self, candidates, depth: int) -> Optional[Registration]:
        for value, steps in candidates:
            reg = self._resolve(value, steps, depth)
            if reg is not None:
                return reg
        return None

    # ----------------------------- rule 1: identifiers ------------------------

    def _name(self, expr: cst.Name, steps: Steps, depth: int) -> Optional[Registration]:
        # only the binding that reaches the use; an older one may hold a stale handle
        bindings = self.program.lookup(expr.value, expr)
        if not bindings:
            return None
        return self._binding(bindings[0], steps, depth)

    def _binding(self, b: Binding, steps: Steps, depth: int) -> Optional[Registration]:
        if b.kind in (BindingKind.ASSIGN, BindingKind.ANN_ASSIGN):
            if b.value is None:
                return None
            if b.unpack_index is not None:
                return self._resolve(b.value, (Step("item", b.unpack_index),) + steps, depth)
            return self._resolve(b.value, steps, depth)
        if b.kind is BindingKind.IMPORT:
            sym = self.program.resolve_fq(b.target)
            if isinstance(sym, GlobalRef):
                return self._global(sym, steps, depth)
        return None

    def _global(self, ref: GlobalRef, steps: Steps, depth: int) -> Optional[Registration]:
        bindings = self.program.module_globals(ref.module, ref.name)
        if not bindings:
            return None
        return self._binding(bindings[0], steps, depth)

    # ----------------------------- rule 2: selectors --------------------------

    def _attribute(self, expr: cst.Attribute, steps: Steps, depth: int) -> Optional[Registration]:
        attr = expr.attr.value

        sym = self.program.symbol_for(expr)
        if isinstance(sym, GlobalRef):
            return self._global(sym, steps, depth)
        if sym is not None:
            return None

        owner_sym = self.program.symbol_for(expr.value)
        if isinstance(owner_sym, ClassInfo):
            decl = self.program.find_field(owner_sym, attr)
            if decl is None:
                return None
            return self._field(decl.owner, attr, steps, depth)
        if isinstance(owner_sym, ExternalRef):
            return None

        # the receiver's own value first: svc_a.emitters.x goes through svc_a's constructor
        reg = self._resolve(expr.value, (Step("attr", attr),) + steps, depth)
        if reg is not None:
            return reg

        receiver = self.oracle.class_of(self.oracle.type_of(expr.value))
        if receiver is not None:
            decl = self.program.find_field(receiver, attr)
            if decl is None:
                return None
            return self._field(decl.owner, attr, steps, depth)

        declaring = self.program.classes_declaring(attr)
        if len(declaring) == 1:
            return self._field(declaring[0], attr, steps, depth)
        if len(declaring) > 1:
            self._anomaly(
                expr,
                AnomalyKind.AMBIGUOUS_FIELD,
                f"field {attr!r} declared by {', '.join(c.fqname for c in declaring)}",
            )
        return None

    def _field(self, owner: ClassInfo, attr: str, steps: Steps, depth: int) -> Optional[Registration]:
        """
        Every initializer of ``owner.<attr>`` (class default, ``self.attr = ...``,
        constructor argument, ``obj.attr = ...``) in file/line order; the first
        one that resolves wins.
        """
        return self._first(((v, steps) for v in self._field_initializers(owner, attr)), depth)

    def _field_initializers(self, owner: ClassInfo, attr: str) -> List[cst.BaseExpression]:
        values: List[cst.BaseExpression] = []
        for cls in self.program.subclasses(owner):
            for decl in cls.fields.get(attr, []):
                if decl.value is not None:
                    values.append(decl.value)
            for call in self.program.constructor_calls(cls):
                values.extend(self.program.constructor_field_values(call, cls, attr))
        for store in self.program.attribute_stores(attr):
            if store.value is None:
                continue
            cls = self.oracle.class_of(self.oracle.type_of(store.target.value))
            if cls is not None and self.program.is_subclass(cls, owner):
                values.append(store.value)

        unique: Dict[int, cst.BaseExpression] = {}
        for v in values:
            unique.setdefault(id(v), v)
        return sorted(unique.values(), key=self._order_key)

    def _order_key(self, node: cst.CSTNode) -> Tuple[str, Tuple[int, int]]:
        module = self.program.module_of(node)
        return (module.parsed.file.path if module is not None else "", self.program.position(node))

    # ----------------------------- rules 3/4: indexing ------------------------

    def _subscript(self, expr: cst.Subscript, steps: Steps, depth: int) -> Optional[Registration]:
        key = subscript_key(expr)
        if key is None:
            self._anomaly(expr, AnomalyKind.NON_LITERAL_INDEX, "index is not a literal")
            return None
        return self._resolve(expr.value, (Step("item", key),) + steps, depth)

    def _sequence(self, expr: Union[cst.List, cst.Tuple], steps: Steps, depth: int) -> Optional[Registration]:
        if not steps or steps[0].kind != "item" or not isinstance(steps[0].key, int):
            return None
        elements = list(expr.elements)
        if any(isinstance(el, cst.StarredElement) for el in elements):
            return None
        idx = steps[0].key
        if not -len(elements) <= idx < len(elements):
            return None
        return self._resolve(elements[idx].value, steps[1:], depth)

    def _mapping(self, expr: cst.Dict, steps: Steps, depth: int) -> Optional[Registration]:
        if not steps or steps[0].kind != "item":
            return None
        for el in reversed(expr.elements):
            if isinstance(el, cst.DictElement) and literal_key(el.key) == steps[0].key:
                return self._resolve(el.value, steps[1:], depth)
        return None

    def _call(self, call: cst.Call, steps: Steps, depth: int) -> Optional[Registration]:
        spec = self.scanner.match(call)
        if spec is not None:
            # a decorator in value position is recorded at its own call site
            if spec.role is Role.REGISTER and not steps:
                return self.scanner.registration_for(call)
            return None

        cls = self.program.callee_class(call)
        if cls is not None:
            if not steps or steps[0].kind != "attr":
                return None
            values = self.program.constructor_field_values(call, cls, str(steps[0].key))
            return self._first(((v, steps[1:]) for v in values), depth)

        sym = self.program.symbol_for(call.func)
        if isinstance(sym, ExternalRef):
            if sym.fqname == "builtins.dict" and steps and steps[0].kind == "item" and isinstance(steps[0].key, str):
                value = keyword_argument(call, steps[0].key)
                if value is not None:
                    return self._resolve(value, steps[1:], depth)
            return None

        fn = self.oracle.callee_function(call)
        if fn is None:
            return None
        return self._first(((ret, steps) for ret in fn.returns), depth)

    # ----------------------------- anomalies ----------------------------------

    def _anomaly(self, node: cst.CSTNode, kind: AnomalyKind, detail: str) -> None:
        loc = self.program.location(node)
        module = self.program.module_of(node)
        self.sink.emit(
            Anomaly(
                path=module.parsed.file.path if module is not None else loc.filename,
                kind=kind,
                severity=Severity.INFO,
                detail=detail,
                line=loc.line,
            )
        )
