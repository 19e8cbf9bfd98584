# src/emittergen/callsites/typeinfo.py
"""
Static type oracle over the program index.

Types are nominal and shallow: a ``TypeRef`` is a fully-qualified class name
plus type arguments. They come from annotations first and from values
second (constructor calls, registering calls, return expressions,
container displays).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple, Union

import libcst as cst

from .emitter_api import EmitterApi, Role
from .program import (
    Binding,
    BindingKind,
    ClassInfo,
    ExternalRef,
    FunctionInfo,
    GlobalRef,
    ModuleInfo,
    ProgramIndex,
    denotes_value,
    dotted_name,
    literal_string,
    subscript_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeRef:
    name: str
    args: Tuple["TypeRef", ...] = ()

    def arg(self, i: int) -> Optional["TypeRef"]:
        if -len(self.args) <= i < len(self.args):
            t = self.args[i]
            return t if t.name else None
        return None

    def element(self, key: Optional[Union[int, str]] = None) -> Optional["TypeRef"]:
        """Type of ``value[key]`` (or of one iteration item when ``key`` is None)."""
        if self.name in _SEQUENCE_TYPES:
            return self.arg(0)
        if self.name in _MAPPING_TYPES:
            return self.arg(0) if key is None else self.arg(1)
        if self.name == "builtins.tuple":
            if len(self.args) == 2 and self.args[1].name == _ELLIPSIS:
                return self.arg(0)
            if isinstance(key, int):
                return self.arg(key)
        return None

    def __str__(self) -> str:
        if not self.args:
            return self.name or "?"
        return f"{self.name}[{', '.join(str(a) for a in self.args)}]"


UNKNOWN = TypeRef("")
_ELLIPSIS = "builtins.Ellipsis"
_NONE = "builtins.None"

_ALIASES: Dict[str, str] = {
    "typing.List": "builtins.list",
    "typing.Sequence": "builtins.list",
    "typing.MutableSequence": "builtins.list",
    "typing.Iterable": "builtins.list",
    "typing.Iterator": "builtins.list",
    "typing.Collection": "builtins.list",
    "typing.Dict": "builtins.dict",
    "typing.Mapping": "builtins.dict",
    "typing.MutableMapping": "builtins.dict",
    "typing.DefaultDict": "builtins.dict",
    "typing.OrderedDict": "builtins.dict",
    "typing.Tuple": "builtins.tuple",
    "typing.Set": "builtins.set",
    "typing.FrozenSet": "builtins.frozenset",
    "typing.Callable": "collections.abc.Callable",
    "collections.abc.Sequence": "builtins.list",
    "collections.abc.MutableSequence": "builtins.list",
    "collections.abc.Iterable": "builtins.list",
    "collections.abc.Iterator": "builtins.list",
    "collections.abc.Collection": "builtins.list",
    "collections.abc.Mapping": "builtins.dict",
    "collections.abc.MutableMapping": "builtins.dict",
    "collections.defaultdict": "builtins.dict",
    "collections.OrderedDict": "builtins.dict",
}
_SEQUENCE_TYPES = frozenset({"builtins.list", "builtins.set", "builtins.frozenset"})
_MAPPING_TYPES = frozenset({"builtins.dict"})
_UNWRAP = frozenset({
    "typing.Optional", "typing.Annotated", "typing.ClassVar", "typing.Final",
    "typing_extensions.Annotated", "typing_extensions.Final",
})
_UNION = frozenset({"typing.Union"})
_ANY = frozenset({"typing.Any", "builtins.object"})

_MAX_ALIAS_DEPTH = 8


def normalize(fqname: str) -> str:
    return _ALIASES.get(fqname, fqname)


class TypeOracle:
    """``type_of(expr)`` plus the emitter-specific type predicates."""

    def __init__(self, program: ProgramIndex, api: EmitterApi) -> None:
        self.program = program
        self.api = api
        self._memo: Dict[cst.CSTNode, Optional[TypeRef]] = {}
        self._active: Set[cst.CSTNode] = set()

    # ----------------------------- predicates ---------------------------------

    def _matches(self, t: Optional[TypeRef], names) -> bool:
        if t is None or not t.name:
            return False
        if t.name in names:
            return True
        cls = self.program.classes.get(t.name)
        if cls is None:
            return False
        return any(base in names for base in self.program.base_names(cls))

    def is_provider(self, t: Optional[TypeRef]) -> bool:
        return self._matches(t, self.api.cfg.provider_types)

    def is_handle(self, t: Optional[TypeRef]) -> bool:
        return self._matches(t, self.api.cfg.handle_types)

    def is_timer(self, t: Optional[TypeRef]) -> bool:
        return self._matches(t, self.api.cfg.timer_types)

    def class_of(self, t: Optional[TypeRef]) -> Optional[ClassInfo]:
        if t is None:
            return None
        return self.program.classes.get(t.name)

    # ----------------------------- annotations --------------------------------

    def annotation_type(self, expr: Optional[cst.BaseExpression], at: cst.CSTNode, _depth: int = 0) -> Optional[TypeRef]:
        """Evaluate a type annotation; names resolve in the scope of ``at``."""
        if expr is None or _depth > _MAX_ALIAS_DEPTH:
            return None

        if isinstance(expr, (cst.SimpleString, cst.ConcatenatedString)):
            text = literal_string(expr)
            if not text:
                return None
            try:
                parsed = cst.parse_expression(text.strip())
            except cst.ParserSyntaxError:
                return None
            return self.annotation_type(parsed, at, _depth + 1)

        if isinstance(expr, cst.Ellipsis):
            return TypeRef(_ELLIPSIS)

        if isinstance(expr, cst.BinaryOperation) and isinstance(expr.operator, cst.BitOr):
            left = self.annotation_type(expr.left, at, _depth + 1)
            if left is not None and left.name != _NONE:
                return left
            return self.annotation_type(expr.right, at, _depth + 1)

        if isinstance(expr, (cst.Name, cst.Attribute)):
            sym = self.program.symbol_for(expr, at=at)
            if isinstance(sym, ClassInfo):
                return TypeRef(sym.fqname)
            if isinstance(sym, ExternalRef):
                name = normalize(sym.fqname)
                return None if name in _ANY else TypeRef(name)
            if isinstance(sym, GlobalRef):
                # module-level type alias
                b = sym.bindings[0]
                if b.value is not None and (b.kind is BindingKind.ASSIGN or _is_type_alias(b)):
                    return self.annotation_type(b.value, b.value, _depth + 1)
            return None

        if isinstance(expr, cst.Subscript):
            base = self.annotation_type(expr.value, at, _depth + 1)
            if base is None:
                return None
            params = [
                el.slice.value for el in expr.slice if isinstance(el.slice, cst.Index)
            ]
            if base.name in _UNWRAP:
                return self.annotation_type(params[0], at, _depth + 1) if params else None
            if base.name in _UNION:
                for p in params:
                    t = self.annotation_type(p, at, _depth + 1)
                    if t is not None and t.name != _NONE:
                        return t
                return None
            args = tuple(self.annotation_type(p, at, _depth + 1) or UNKNOWN for p in params)
            return TypeRef(base.name, args)

        return None

    # ----------------------------- expressions --------------------------------

    def type_of(self, expr: cst.BaseExpression) -> Optional[TypeRef]:
        if expr in self._memo:
            return self._memo[expr]
        if expr in self._active:
            return None
        self._active.add(expr)
        try:
            result = self._type_of(expr)
        finally:
            self._active.discard(expr)
        self._memo[expr] = result
        return result

    def _type_of(self, expr: cst.BaseExpression) -> Optional[TypeRef]:
        if isinstance(expr, cst.Name):
            return self.bindings_type(self.program.lookup(expr.value, expr))

        if isinstance(expr, cst.Attribute):
            sym = self.program.symbol_for(expr)
            if isinstance(sym, GlobalRef):
                return self.bindings_type(self.program.module_globals(sym.module, sym.name))
            if sym is not None:
                return None
            return self.member_type(self.type_of(expr.value), expr.attr.value)

        if isinstance(expr, cst.Subscript):
            base = self.type_of(expr.value)
            return base.element(subscript_key(expr)) if base is not None else None

        if isinstance(expr, cst.Call):
            return self._call_type(expr)

        if isinstance(expr, (cst.List, cst.Set)):
            name = "builtins.list" if isinstance(expr, cst.List) else "builtins.set"
            return TypeRef(name, (self._first_known(el.value for el in expr.elements if isinstance(el, cst.Element)),))

        if isinstance(expr, cst.Tuple):
            return TypeRef(
                "builtins.tuple",
                tuple(self.type_of(el.value) or UNKNOWN for el in expr.elements if isinstance(el, cst.Element)),
            )

        if isinstance(expr, cst.Dict):
            values = (el.value for el in expr.elements if isinstance(el, cst.DictElement))
            return TypeRef("builtins.dict", (UNKNOWN, self._first_known(values)))

        if isinstance(expr, (cst.ListComp, cst.SetComp)):
            return TypeRef("builtins.list", (self.type_of(expr.elt) or UNKNOWN,))

        if isinstance(expr, cst.DictComp):
            return TypeRef("builtins.dict", (UNKNOWN, self.type_of(expr.value) or UNKNOWN))

        if isinstance(expr, cst.IfExp):
            return self.type_of(expr.body) or self.type_of(expr.orelse)

        if isinstance(expr, cst.BooleanOperation):
            return self.type_of(expr.left) or self.type_of(expr.right)

        if isinstance(expr, cst.NamedExpr):
            return self.type_of(expr.value)

        if isinstance(expr, (cst.SimpleString, cst.ConcatenatedString, cst.FormattedString)):
            return TypeRef("builtins.str")
        if isinstance(expr, cst.Integer):
            return TypeRef("builtins.int")
        if isinstance(expr, cst.Float):
            return TypeRef("builtins.float")
        return None

    def _first_known(self, exprs) -> TypeRef:
        for e in exprs:
            t = self.type_of(e)
            if t is not None:
                return t
        return UNKNOWN

    def bindings_type(self, bindings) -> Optional[TypeRef]:
        """
        ``bindings`` come from one scope, nearest first. A declared annotation
        anywhere in that scope fixes the type; otherwise only the nearest
        binding is inferred.
        """
        for b in bindings:
            if b.annotation is not None:
                t = self.annotation_type(b.annotation, b.node)
                if t is not None:
                    return t
        if not bindings:
            return None
        return self.binding_type(bindings[0])

    def binding_type(self, b: Binding) -> Optional[TypeRef]:
        if b.kind is BindingKind.PARAM:
            owner = b.scope.function.owner if b.scope.function is not None else None
            if (b.is_self or b.is_cls) and owner is not None:
                return TypeRef(owner.fqname)
            if b.annotation is not None:
                return self.annotation_type(b.annotation, b.node)
            return self.type_of(b.default) if b.default is not None else None

        if b.kind in (BindingKind.ASSIGN, BindingKind.ANN_ASSIGN):
            if b.annotation is not None:
                declared = self.annotation_type(b.annotation, b.node)
                if declared is not None:
                    return declared
            if b.value is None:
                return None
            t = self.type_of(b.value)
            if b.unpack_index is not None:
                return t.element(b.unpack_index) if t is not None else None
            return t

        if b.kind is BindingKind.LOOP and b.value is not None:
            t = self.type_of(b.value)
            item = t.element() if t is not None else None
            if b.unpack_index is not None:
                return item.element(b.unpack_index) if item is not None else None
            return item

        if b.kind is BindingKind.IMPORT:
            sym = self.program.resolve_fq(b.target)
            if isinstance(sym, GlobalRef):
                return self.bindings_type(self.program.module_globals(sym.module, sym.name))
        return None

    def member_type(self, base: Optional[TypeRef], attr: str) -> Optional[TypeRef]:
        cls = self.class_of(base)
        if cls is None:
            return None
        decl = self.program.find_field(cls, attr)
        if decl is not None:
            if decl.annotation is not None:
                t = self.annotation_type(decl.annotation, decl.node)
                if t is not None:
                    return t
            for c in self.program.mro(cls):
                for d in c.fields.get(attr, []):
                    if d.value is not None:
                        t = self.type_of(d.value)
                        if t is not None:
                            return t
            return None
        method = self.program.find_method(cls, attr)
        if method is not None and _is_property(method):
            return self.return_type(method)
        return None

    def return_type(self, fn: FunctionInfo) -> Optional[TypeRef]:
        if fn.return_annotation is not None:
            return self.annotation_type(fn.return_annotation, fn.node)
        for value in fn.returns:
            t = self.type_of(value)
            if t is not None:
                return t
        return None

    def callee_function(self, call: cst.Call) -> Optional[FunctionInfo]:
        """In-package function or method a call dispatches to, when statically known."""
        fn = self.program.callee_function(call)
        if fn is not None:
            return fn
        func = call.func
        if isinstance(func, cst.Attribute) and denotes_value(self.program.symbol_for(func.value)):
            cls = self.class_of(self.type_of(func.value))
            if cls is not None:
                return self.program.find_method(cls, func.attr.value)
        return None

    def _call_type(self, call: cst.Call) -> Optional[TypeRef]:
        func = call.func

        if isinstance(func, cst.Attribute):
            receiver = self.type_of(func.value) if denotes_value(self.program.symbol_for(func.value)) else None
            if self.is_provider(receiver):
                spec = self.api.provider_method(func.attr.value)
                if spec is not None and spec.returns:
                    if spec.role is Role.DERIVE:
                        return receiver
                    return TypeRef(spec.returns)

        sym = self.program.symbol_for(func)
        if isinstance(sym, ClassInfo):
            return TypeRef(sym.fqname)
        if isinstance(sym, ExternalRef):
            name = normalize(sym.fqname)
            if name in ("builtins.dict", "builtins.list", "builtins.tuple", "builtins.set"):
                return TypeRef(name)
            return None
        if isinstance(sym, ModuleInfo):
            return None

        fn = self.callee_function(call)
        if fn is not None:
            return self.return_type(fn)

        callee = self.type_of(func)
        if callee is not None and callee.name == "collections.abc.Callable":
            return callee.arg(-1)
        return None


def _is_property(fn: FunctionInfo) -> bool:
    return any(dotted_name(d.decorator) in ("property", "functools.cached_property", "cached_property") for d in fn.node.decorators)


def _is_type_alias(b: Binding) -> bool:
    return b.annotation is not None and dotted_name(b.annotation).rsplit(".", 1)[-1] == "TypeAlias"
