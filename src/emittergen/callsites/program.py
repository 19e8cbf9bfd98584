# src/emittergen/callsites/program.py
"""
Declaration index over a loaded package.

Every module gets a scope tree (module / class / function, plus lambdas and
comprehensions) holding the bindings that the resolver walks backward
through, plus class and function records keyed by fully-qualified name.
Lookups never depend on the order in which the analysis visits call sites:
the whole index is built up front and queried on demand.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

import libcst as cst
from libcst.metadata import CodeRange

from .errors import SourceLocation
from .loader import LoadedPackage
from .python_driver import ParsedModule

logger = logging.getLogger(__name__)

Position = Tuple[int, int]
_NO_POS: Position = (0, 0)
_MAX_ALIAS_HOPS = 16


# ==============================================================================
# Records
# ==============================================================================


class BindingKind(str, enum.Enum):
    ASSIGN = "assign"
    ANN_ASSIGN = "ann_assign"
    PARAM = "param"
    IMPORT = "import"
    FUNCTION = "function"
    CLASS = "class"
    LOOP = "loop"
    OTHER = "other"


@dataclass(eq=False)
class Binding:
    """One place where a name receives a value in a scope."""
    name: str
    kind: BindingKind
    node: cst.CSTNode                 # defining statement / parameter
    scope: "Scope"
    position: Position
    value: Optional[cst.BaseExpression] = None
    annotation: Optional[cst.BaseExpression] = None
    unpack_index: Optional[int] = None   # `a, b = value` binds element i of value
    target: str = ""                     # dotted import target
    info: Optional[Union["ClassInfo", "FunctionInfo"]] = None
    default: Optional[cst.BaseExpression] = None
    is_self: bool = False
    is_cls: bool = False


@dataclass(eq=False)
class Scope:
    kind: str                           # module, class, function, lambda or comprehension
    node: cst.CSTNode
    module: "ModuleInfo"
    parent: Optional["Scope"]
    qualname: str                       # "" for modules, "Cls.method" otherwise
    bindings: Dict[str, List[Binding]] = field(default_factory=dict)
    global_names: Set[str] = field(default_factory=set)
    nonlocal_names: Set[str] = field(default_factory=set)
    cls: Optional["ClassInfo"] = None
    function: Optional["FunctionInfo"] = None

    def bind(self, binding: Binding) -> None:
        self.bindings.setdefault(binding.name, []).append(binding)

    def root(self) -> "Scope":
        cur = self
        while cur.parent is not None:
            cur = cur.parent
        return cur


@dataclass(eq=False)
class FieldDecl:
    """A class attribute declared in the class body or stored via ``self.<name>``."""
    name: str
    owner: "ClassInfo"
    node: cst.CSTNode
    scope: Scope                        # scope the value evaluates in
    position: Position
    annotation: Optional[cst.BaseExpression] = None
    value: Optional[cst.BaseExpression] = None
    instance: bool = False


@dataclass(eq=False)
class ClassInfo:
    name: str
    fqname: str
    node: cst.ClassDef
    module: "ModuleInfo"
    scope: Scope
    bases: List[cst.BaseExpression] = field(default_factory=list)
    fields: Dict[str, List[FieldDecl]] = field(default_factory=dict)
    field_order: List[str] = field(default_factory=list)
    methods: Dict[str, "FunctionInfo"] = field(default_factory=dict)

    def add_field(self, decl: FieldDecl, *, ordered: bool = False) -> None:
        self.fields.setdefault(decl.name, []).append(decl)
        if ordered and decl.name not in self.field_order:
            self.field_order.append(decl.name)

    def declaration(self, name: str) -> Optional[FieldDecl]:
        decls = self.fields.get(name)
        if not decls:
            return None
        for d in decls:
            if d.annotation is not None:
                return d
        return decls[0]


@dataclass(eq=False)
class FunctionInfo:
    name: str
    fqname: str
    node: cst.FunctionDef
    module: "ModuleInfo"
    scope: Scope
    owner: Optional[ClassInfo] = None
    kind: str = "function"              # function | method | staticmethod | classmethod
    returns: List[cst.BaseExpression] = field(default_factory=list)

    @property
    def return_annotation(self) -> Optional[cst.BaseExpression]:
        return self.node.returns.annotation if self.node.returns is not None else None

    def positional_params(self) -> List[cst.Param]:
        params = list(self.node.params.posonly_params) + list(self.node.params.params)
        if self.kind in ("method", "classmethod"):
            return params[1:]
        return params

    @property
    def self_name(self) -> Optional[str]:
        if self.kind != "method":
            return None
        params = list(self.node.params.posonly_params) + list(self.node.params.params)
        return params[0].name.value if params else None


@dataclass(eq=False)
class AttributeStore:
    """``<expr>.<attr> = value`` anywhere in the package."""
    target: cst.Attribute
    value: Optional[cst.BaseExpression]
    annotation: Optional[cst.BaseExpression]
    scope: Scope
    position: Position


@dataclass(eq=False)
class ModuleInfo:
    name: str
    parsed: ParsedModule
    scope: Optional[Scope] = None
    calls: List[cst.Call] = field(default_factory=list)
    attribute_stores: List[AttributeStore] = field(default_factory=list)

    @property
    def node(self) -> cst.Module:
        return self.parsed.module

    @property
    def is_unit(self) -> bool:
        return self.parsed.is_unit

    @property
    def package(self) -> str:
        if self.parsed.is_package_init:
            return self.name
        return self.name.rpartition(".")[0]


@dataclass(frozen=True)
class ExternalRef:
    """A name imported from outside the package (or a builtin)."""
    fqname: str


@dataclass(eq=False)
class GlobalRef:
    """A module-level variable of an in-package module."""
    module: ModuleInfo
    name: str
    bindings: List[Binding]


Symbol = Union[ModuleInfo, ClassInfo, FunctionInfo, GlobalRef, ExternalRef]


# ==============================================================================
# CST helpers
# ==============================================================================


def dotted_name(expr: Optional[cst.CSTNode]) -> str:
    if isinstance(expr, cst.Name):
        return expr.value
    if isinstance(expr, cst.Attribute):
        base = dotted_name(expr.value)
        return f"{base}.{expr.attr.value}" if base else ""
    if isinstance(expr, cst.Call):
        return dotted_name(expr.func)
    return ""


def positional_arguments(call: cst.Call) -> List[cst.BaseExpression]:
    """Positional arguments up to the first ``*args`` splat."""
    out: List[cst.BaseExpression] = []
    for arg in call.args:
        if arg.star:
            break
        if arg.keyword is None:
            out.append(arg.value)
    return out


def keyword_argument(call: cst.Call, name: str) -> Optional[cst.BaseExpression]:
    for arg in call.args:
        if arg.keyword is not None and not arg.star and arg.keyword.value == name:
            return arg.value
    return None


def argument(call: cst.Call, index: int, keyword: str) -> Optional[cst.BaseExpression]:
    value = keyword_argument(call, keyword)
    if value is not None:
        return value
    positional = positional_arguments(call)
    if 0 <= index < len(positional):
        return positional[index]
    return None


def literal_string(expr: Optional[cst.BaseExpression]) -> Optional[str]:
    if isinstance(expr, (cst.SimpleString, cst.ConcatenatedString)):
        value = expr.evaluated_value
        if isinstance(value, str):
            return value
    return None


def literal_key(expr: Optional[cst.BaseExpression]) -> Optional[Union[int, str]]:
    """Literal integer (possibly negative) or string used as an index/key."""
    if isinstance(expr, cst.Integer):
        return int(expr.evaluated_value)
    if (
        isinstance(expr, cst.UnaryOperation)
        and isinstance(expr.operator, cst.Minus)
        and isinstance(expr.expression, cst.Integer)
    ):
        return -int(expr.expression.evaluated_value)
    return literal_string(expr)


def subscript_key(node: cst.Subscript) -> Optional[Union[int, str]]:
    if len(node.slice) != 1:
        return None
    sl = node.slice[0].slice
    if not isinstance(sl, cst.Index):
        return None
    return literal_key(sl.value)


# ==============================================================================
# Index
# ==============================================================================


class ProgramIndex:
    """
    Package-wide declaration index with the lookup primitives the analysis
    needs: name lookup, symbol resolution, class/field/method queries and
    source locations.
    """

    def __init__(self, modules: Sequence[ParsedModule], *, relative_paths: bool = False) -> None:
        self.modules: Dict[str, ModuleInfo] = {}
        self.classes: Dict[str, ClassInfo] = {}
        self.functions: Dict[str, FunctionInfo] = {}
        self.relative_paths = relative_paths

        self._scopes: Dict[cst.CSTNode, Scope] = {}
        self._parents: Dict[cst.CSTNode, cst.CSTNode] = {}
        self._positions: Dict[cst.CSTNode, CodeRange] = {}
        self._module_by_root: Dict[cst.CSTNode, ModuleInfo] = {}
        self._ctor_index: Optional[Dict[ClassInfo, List[cst.Call]]] = None
        self._stores_by_attr: Optional[Dict[str, List[AttributeStore]]] = None
        self._mro_cache: Dict[ClassInfo, List[ClassInfo]] = {}

        for parsed in sorted(modules, key=lambda m: m.file.path):
            info = ModuleInfo(parsed.name, parsed)
            self.modules[parsed.name] = info
            self._module_by_root[parsed.module] = info
            self._parents.update(parsed.parents)
            self._positions.update(parsed.positions)

        for info in self.modules.values():
            _ModuleBuilder(self, info).build()

        logger.debug(
            "indexed %d modules, %d classes, %d functions",
            len(self.modules), len(self.classes), len(self.functions),
        )

    @classmethod
    def build(cls, package: LoadedPackage, *, relative_paths: bool = False) -> "ProgramIndex":
        return cls(package.modules, relative_paths=relative_paths)

    # ----------------------------- tree primitives ----------------------------

    def unit_modules(self) -> List[ModuleInfo]:
        return [m for m in self.modules.values() if m.is_unit]

    def parent(self, node: cst.CSTNode) -> Optional[cst.CSTNode]:
        return self._parents.get(node)

    def position(self, node: cst.CSTNode) -> Position:
        rng = self._positions.get(node)
        if rng is None:
            return _NO_POS
        return (rng.start.line, rng.start.column)

    def module_of(self, node: cst.CSTNode) -> Optional[ModuleInfo]:
        cur: Optional[cst.CSTNode] = node
        while cur is not None:
            if isinstance(cur, cst.Module):
                return self._module_by_root.get(cur)
            cur = self._parents.get(cur)
        return None

    def scope_of(self, node: cst.CSTNode) -> Optional[Scope]:
        """
        Scope an expression evaluates in. Decorators, default values and
        annotations of a def/class/lambda belong to the enclosing scope; only
        the body opens a new one. A comprehension is its own scope except for
        its first iterable.
        """
        if isinstance(node, cst.Module):
            return self._scopes.get(node)
        child = node
        parent = self._parents.get(node)
        while parent is not None:
            if isinstance(parent, (cst.FunctionDef, cst.ClassDef, cst.Lambda)) and child is parent.body:
                scope = self._scopes.get(parent)
                if scope is not None:
                    return scope
            if isinstance(parent, cst.CompFor) and child is parent.iter:
                comp = self._parents.get(parent)
                if isinstance(comp, _COMPREHENSIONS) and comp.for_in is parent:
                    child, parent = comp, self._parents.get(comp)
                    continue
            if isinstance(parent, _COMPREHENSIONS):
                scope = self._scopes.get(parent)
                if scope is not None:
                    return scope
            if isinstance(parent, cst.Module):
                return self._scopes.get(parent)
            child, parent = parent, self._parents.get(parent)
        return None

    def filename(self, module: ModuleInfo) -> str:
        if self.relative_paths:
            return module.parsed.file.path
        return module.parsed.file.real_path

    def location(self, node: cst.CSTNode) -> SourceLocation:
        module = self.module_of(node)
        if module is None:
            return SourceLocation("", 0, 0)
        return module.parsed.location(node, filename=self.filename(module))

    def routine_name(self, node: cst.CSTNode) -> str:
        """``module.Class.method`` / ``module.func`` enclosing ``node``; "" at module level."""
        scope = self.scope_of(node)
        while scope is not None and scope.kind != "function":
            scope = scope.parent
        if scope is None:
            return ""
        prefix = scope.module.name
        return f"{prefix}.{scope.qualname}" if prefix else scope.qualname

    # ----------------------------- name lookup --------------------------------

    def lookup(self, name: str, at: cst.CSTNode) -> List[Binding]:
        """
        Bindings of ``name`` in the scope that provides it, the binding that
        reaches the use first. Callers resolve only that head entry.

        In the scope of the use (or around a comprehension) the nearest
        binding preceding the use wins; in other enclosing scopes the last
        binding wins. Class bodies are skipped when looking outward.
        """
        scope = self.scope_of(at)
        if scope is None:
            return []
        pos = self.position(at)
        first = positional = True
        if name in scope.global_names:
            scope = scope.root()
            first = positional = False
        cur: Optional[Scope] = scope
        while cur is not None:
            if cur.kind == "class" and not first:
                cur = cur.parent
                continue
            found = cur.bindings.get(name)
            if found:
                return _order_bindings(found, pos if positional else None)
            first = False
            # a comprehension runs where it is written; a lambda body runs later
            positional = positional and cur.kind == "comprehension"
            cur = cur.parent
        return []

    def module_globals(self, module: ModuleInfo, name: str) -> List[Binding]:
        if module.scope is None:
            return []
        return _order_bindings(module.scope.bindings.get(name, []), None)

    # ----------------------------- symbols ------------------------------------

    def resolve_fq(self, fqname: str, _hops: int = 0) -> Optional[Symbol]:
        if _hops > _MAX_ALIAS_HOPS or not fqname:
            return None
        if fqname in self.modules:
            return self.modules[fqname]
        if fqname in self.classes:
            return self.classes[fqname]
        if fqname in self.functions:
            return self.functions[fqname]
        mod_name, _, attr = fqname.rpartition(".")
        module = self.modules.get(mod_name)
        if module is None:
            return None
        bindings = self.module_globals(module, attr)
        if not bindings:
            return None
        last = bindings[0]
        if last.kind is BindingKind.IMPORT:
            return self.resolve_fq(last.target, _hops + 1) or ExternalRef(last.target)
        if last.kind in (BindingKind.CLASS, BindingKind.FUNCTION) and last.info is not None:
            return last.info
        return GlobalRef(module, attr, bindings)

    def symbol_for(self, expr: cst.BaseExpression, at: Optional[cst.CSTNode] = None) -> Optional[Symbol]:
        """
        Static entity (module, class, function, module global or external
        name) an expression denotes; None for local values.
        """
        if isinstance(expr, cst.Name):
            bindings = self.lookup(expr.value, at if at is not None else expr)
            if not bindings:
                return ExternalRef(f"builtins.{expr.value}")
            b = bindings[0]
            if b.kind is BindingKind.IMPORT:
                return self.resolve_fq(b.target) or ExternalRef(b.target)
            if b.kind in (BindingKind.CLASS, BindingKind.FUNCTION):
                return b.info
            if b.scope.kind == "module":
                return GlobalRef(b.scope.module, expr.value, bindings)
            return None
        if isinstance(expr, cst.Attribute):
            base = self.symbol_for(expr.value, at)
            attr = expr.attr.value
            if isinstance(base, ModuleInfo):
                return self.resolve_fq(f"{base.name}.{attr}")
            if isinstance(base, ExternalRef):
                return ExternalRef(f"{base.fqname}.{attr}")
            if isinstance(base, ClassInfo):
                nested = self.classes.get(f"{base.fqname}.{attr}")
                if nested is not None:
                    return nested
                return self.find_method(base, attr)
            return None
        if isinstance(expr, cst.Subscript):
            base = self.symbol_for(expr.value, at)
            if isinstance(base, (ClassInfo, ExternalRef)):
                return base
        return None

    def callee_class(self, call: cst.Call) -> Optional[ClassInfo]:
        sym = self.symbol_for(call.func)
        return sym if isinstance(sym, ClassInfo) else None

    def callee_function(self, call: cst.Call) -> Optional[FunctionInfo]:
        sym = self.symbol_for(call.func)
        return sym if isinstance(sym, FunctionInfo) else None

    # ----------------------------- classes ------------------------------------

    def base_classes(self, cls: ClassInfo) -> List[ClassInfo]:
        out: List[ClassInfo] = []
        for expr in cls.bases:
            sym = self.symbol_for(expr, at=cls.node)
            if isinstance(sym, ClassInfo):
                out.append(sym)
        return out

    def base_names(self, cls: ClassInfo) -> List[str]:
        """Fully-qualified names of every (transitive) base, in-package or not."""
        names: List[str] = []
        for c in self.mro(cls):
            for expr in c.bases:
                sym = self.symbol_for(expr, at=c.node)
                if isinstance(sym, ClassInfo):
                    names.append(sym.fqname)
                elif isinstance(sym, ExternalRef):
                    names.append(sym.fqname)
        return names

    def mro(self, cls: ClassInfo) -> List[ClassInfo]:
        cached = self._mro_cache.get(cls)
        if cached is not None:
            return cached
        order: List[ClassInfo] = []

        def visit(c: ClassInfo, depth: int) -> None:
            if depth > _MAX_ALIAS_HOPS or any(c is o for o in order):
                return
            order.append(c)
            for base in self.base_classes(c):
                visit(base, depth + 1)

        visit(cls, 0)
        self._mro_cache[cls] = order
        return order

    def subclasses(self, owner: ClassInfo) -> List[ClassInfo]:
        """``owner`` followed by every in-package class deriving from it."""
        family = [c for c in self.classes.values() if c is not owner and self.is_subclass(c, owner)]
        return [owner] + sorted(family, key=lambda c: c.fqname)

    def is_subclass(self, cls: ClassInfo, owner: ClassInfo) -> bool:
        return any(c is owner for c in self.mro(cls))

    def find_field(self, cls: ClassInfo, name: str) -> Optional[FieldDecl]:
        for c in self.mro(cls):
            decl = c.declaration(name)
            if decl is not None:
                return decl
        return None

    def find_method(self, cls: ClassInfo, name: str) -> Optional[FunctionInfo]:
        for c in self.mro(cls):
            method = c.methods.get(name)
            if method is not None:
                return method
        return None

    def classes_declaring(self, name: str) -> List[ClassInfo]:
        return sorted(
            (c for c in self.classes.values() if name in c.fields),
            key=lambda c: c.fqname,
        )

    def init_fields(self, cls: ClassInfo) -> List[str]:
        """Generated-``__init__`` parameter order (dataclass / NamedTuple style)."""
        order: List[str] = []
        for c in reversed(self.mro(cls)):
            for name in c.field_order:
                if name not in order:
                    order.append(name)
        return order

    def constructor_calls(self, cls: ClassInfo) -> List[cst.Call]:
        if self._ctor_index is None:
            index: Dict[ClassInfo, List[cst.Call]] = {}
            for module in self.modules.values():
                for call in module.calls:
                    target = self.callee_class(call)
                    if target is not None:
                        index.setdefault(target, []).append(call)
            self._ctor_index = index
        return self._ctor_index.get(cls, [])

    def attribute_stores(self, attr: str) -> List[AttributeStore]:
        if self._stores_by_attr is None:
            index: Dict[str, List[AttributeStore]] = {}
            for module in self.modules.values():
                for store in module.attribute_stores:
                    index.setdefault(store.target.attr.value, []).append(store)
            self._stores_by_attr = index
        return self._stores_by_attr.get(attr, [])

    def bind_arguments(self, fn: FunctionInfo, call: cst.Call) -> Dict[str, cst.BaseExpression]:
        """Map parameter names of ``fn`` to the argument expressions of ``call``."""
        out: Dict[str, cst.BaseExpression] = {}
        for param, value in zip(fn.positional_params(), positional_arguments(call)):
            out[param.name.value] = value
        for arg in call.args:
            if arg.keyword is not None and not arg.star:
                out[arg.keyword.value] = arg.value
        return out

    def constructor_field_values(self, call: cst.Call, cls: ClassInfo, name: str) -> List[cst.BaseExpression]:
        """
        Expressions a constructor call stores into field ``name``: through an
        explicit ``__init__`` (``self.name = <param or expr>``), or by keyword /
        field order for generated initialisers.
        """
        init = self.find_method(cls, "__init__")
        if init is not None and init.owner is not None:
            bound = self.bind_arguments(init, call)
            out: List[cst.BaseExpression] = []
            for decl in init.owner.fields.get(name, []):
                if decl.value is None or decl.scope is not init.scope:
                    continue
                value = decl.value
                if isinstance(value, cst.Name):
                    params = [b for b in init.scope.bindings.get(value.value, []) if b.kind is BindingKind.PARAM]
                    if params:
                        if value.value in bound:
                            out.append(bound[value.value])
                        elif params[0].default is not None:
                            out.append(params[0].default)
                        continue
                out.append(value)
            return out

        value = keyword_argument(call, name)
        if value is not None:
            return [value]
        order = self.init_fields(cls)
        if name in order:
            positional = positional_arguments(call)
            idx = order.index(name)
            if idx < len(positional):
                return [positional[idx]]
        return []


def _order_bindings(bindings: List[Binding], pos: Optional[Position]) -> List[Binding]:
    ordered = sorted(bindings, key=lambda b: b.position, reverse=True)
    if pos is None:
        return ordered
    before = [b for b in ordered if b.position < pos]
    after = [b for b in ordered if b.position >= pos]
    return before + after


# ==============================================================================
# Builder
# ==============================================================================


class _CallCollector(cst.CSTVisitor):
    def __init__(self) -> None:
        self.calls: List[cst.Call] = []

    def visit_Call(self, node: cst.Call) -> None:
        self.calls.append(node)


class _ExpressionScopeCollector(cst.CSTVisitor):
    """Lambdas and comprehensions, outermost first."""

    def __init__(self) -> None:
        self.nodes: List[cst.CSTNode] = []

    def visit_Lambda(self, node: cst.Lambda) -> None:
        self.nodes.append(node)

    def visit_ListComp(self, node: cst.ListComp) -> None:
        self.nodes.append(node)

    def visit_SetComp(self, node: cst.SetComp) -> None:
        self.nodes.append(node)

    def visit_DictComp(self, node: cst.DictComp) -> None:
        self.nodes.append(node)

    def visit_GeneratorExp(self, node: cst.GeneratorExp) -> None:
        self.nodes.append(node)


_COMPREHENSIONS = (cst.ListComp, cst.SetComp, cst.DictComp, cst.GeneratorExp)


_CLAUSES = (
    cst.Else,
    cst.Finally,
    cst.ExceptHandler,
    cst.ExceptStarHandler,
    cst.If,
    cst.MatchCase,
)


class _ModuleBuilder:
    """Single pass over one module's statements filling scopes and records."""

    def __init__(self, index: ProgramIndex, module: ModuleInfo) -> None:
        self.index = index
        self.module = module

    def build(self) -> None:
        root = self.module.node
        scope = Scope("module", root, self.module, None, "")
        self.module.scope = scope
        self.index._scopes[root] = scope
        self._statements(root.body, scope)

        nested = _ExpressionScopeCollector()
        root.visit(nested)
        for node in nested.nodes:
            self._expression_scope(node)

        collector = _CallCollector()
        root.visit(collector)
        self.module.calls = collector.calls

    def _expression_scope(self, node: cst.CSTNode) -> None:
        """Lambda parameters and comprehension targets bind in a scope of their own."""
        parent = self.index.scope_of(node)
        if parent is None:
            return
        if isinstance(node, cst.Lambda):
            scope = Scope("lambda", node, self.module, parent, parent.qualname)
            self.index._scopes[node] = scope
            params = node.params
            for p in list(params.posonly_params) + list(params.params) + list(params.kwonly_params):
                self._param(p, scope)
            for p in (params.star_arg, params.star_kwarg):
                if isinstance(p, cst.Param):
                    self._param(p, scope)
            return

        scope = Scope("comprehension", node, self.module, parent, parent.qualname)
        self.index._scopes[node] = scope
        comp_for: Optional[cst.CompFor] = node.for_in
        while comp_for is not None:
            self._bind_target(comp_for.target, comp_for.iter, scope, comp_for, kind=BindingKind.LOOP)
            comp_for = comp_for.inner_for_in

    # ----------------------------- statements ---------------------------------

    def _statements(self, statements: Sequence[cst.CSTNode], scope: Scope) -> None:
        for stmt in statements:
            self._statement(stmt, scope)

    def _suite(self, suite: cst.BaseSuite, scope: Scope) -> None:
        if isinstance(suite, cst.IndentedBlock):
            self._statements(suite.body, scope)
        elif isinstance(suite, cst.SimpleStatementSuite):
            for small in suite.body:
                self._small(small, scope)

    def _statement(self, stmt: cst.CSTNode, scope: Scope) -> None:
        if isinstance(stmt, cst.SimpleStatementLine):
            for small in stmt.body:
                self._small(small, scope)
        elif isinstance(stmt, cst.FunctionDef):
            self._function(stmt, scope)
        elif isinstance(stmt, cst.ClassDef):
            self._class(stmt, scope)
        elif isinstance(stmt, cst.For):
            self._bind_target(stmt.target, stmt.iter, scope, stmt, kind=BindingKind.LOOP)
            self._compound(stmt, scope)
        elif isinstance(stmt, cst.With):
            for item in stmt.items:
                if item.asname is not None:
                    self._bind_target(item.asname.name, None, scope, stmt, kind=BindingKind.OTHER)
            self._compound(stmt, scope)
        else:
            self._compound(stmt, scope)

    def _compound(self, node: cst.CSTNode, scope: Scope) -> None:
        for child in node.children:
            if isinstance(child, cst.BaseSuite):
                self._suite(child, scope)
            elif isinstance(child, _CLAUSES):
                self._compound(child, scope)

    def _small(self, small: cst.CSTNode, scope: Scope) -> None:
        if isinstance(small, cst.Assign):
            for target in small.targets:
                self._bind_target(target.target, small.value, scope, small)
        elif isinstance(small, cst.AnnAssign):
            self._bind_target(small.target, small.value, scope, small, annotation=small.annotation.annotation)
        elif isinstance(small, (cst.Import, cst.ImportFrom)):
            self._import(small, scope)
        elif isinstance(small, cst.Return):
            if small.value is not None and scope.function is not None:
                scope.function.returns.append(small.value)
        elif isinstance(small, cst.Global):
            scope.global_names.update(n.name.value for n in small.names)
        elif isinstance(small, cst.Nonlocal):
            scope.nonlocal_names.update(n.name.value for n in small.names)

    # ----------------------------- bindings -----------------------------------

    def _pos(self, node: cst.CSTNode) -> Position:
        return self.index.position(node)

    def _binding_scope(self, name: str, scope: Scope) -> Scope:
        if name in scope.global_names:
            return scope.root()
        if name in scope.nonlocal_names:
            cur = scope.parent
            while cur is not None and cur.kind != "function":
                cur = cur.parent
            if cur is not None:
                return cur
        return scope

    def _bind_target(
        self,
        target: cst.BaseExpression,
        value: Optional[cst.BaseExpression],
        scope: Scope,
        anchor: cst.CSTNode,
        *,
        annotation: Optional[cst.BaseExpression] = None,
        unpack: Optional[int] = None,
        kind: Optional[BindingKind] = None,
    ) -> None:
        if isinstance(target, cst.Name):
            dest = self._binding_scope(target.value, scope)
            k = kind or (BindingKind.ANN_ASSIGN if annotation is not None else BindingKind.ASSIGN)
            pos = self._pos(target)
            dest.bind(
                Binding(
                    target.value, k, anchor, dest, pos,
                    value=value, annotation=annotation, unpack_index=unpack,
                )
            )
            if dest.kind == "class" and dest.cls is not None and k in (BindingKind.ASSIGN, BindingKind.ANN_ASSIGN):
                dest.cls.add_field(
                    FieldDecl(target.value, dest.cls, anchor, dest, pos, annotation=annotation, value=value),
                    ordered=annotation is not None and not _is_classvar(annotation),
                )
        elif isinstance(target, (cst.Tuple, cst.List)):
            elements = list(target.elements)
            values: Optional[List[cst.BaseExpression]] = None
            if (
                unpack is None
                and isinstance(value, (cst.Tuple, cst.List))
                and len(value.elements) == len(elements)
                and not any(isinstance(e, cst.StarredElement) for e in value.elements)
            ):
                values = [e.value for e in value.elements]
            starred = any(isinstance(e, cst.StarredElement) for e in elements)
            for i, element in enumerate(elements):
                if isinstance(element, cst.StarredElement):
                    continue
                if values is not None:
                    self._bind_target(element.value, values[i], scope, anchor, kind=kind)
                elif value is not None and unpack is None and not starred:
                    self._bind_target(element.value, value, scope, anchor, unpack=i, kind=kind)
                else:
                    self._bind_target(element.value, None, scope, anchor, kind=kind)
        elif isinstance(target, cst.Attribute):
            pos = self._pos(target)
            self.module.attribute_stores.append(AttributeStore(target, value, annotation, scope, pos))
            fn = scope.function
            if (
                fn is not None
                and fn.owner is not None
                and isinstance(target.value, cst.Name)
                and target.value.value == fn.self_name
            ):
                fn.owner.add_field(
                    FieldDecl(
                        target.attr.value, fn.owner, anchor, scope, pos,
                        annotation=annotation, value=value, instance=True,
                    )
                )

    def _import(self, node: Union[cst.Import, cst.ImportFrom], scope: Scope) -> None:
        if isinstance(node, cst.Import):
            for alias in node.names:
                full = dotted_name(alias.name)
                if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                    local, target = alias.asname.name.value, full
                else:
                    local = full.split(".")[0]
                    target = local
                scope.bind(Binding(local, BindingKind.IMPORT, node, scope, self._pos(alias), target=target))
            return

        if isinstance(node.names, cst.ImportStar):
            return
        base = self._import_base(node)
        for alias in node.names:
            name = dotted_name(alias.name)
            local = name
            if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
                local = alias.asname.name.value
            target = f"{base}.{name}" if base else name
            scope.bind(Binding(local, BindingKind.IMPORT, node, scope, self._pos(alias), target=target))

    def _import_base(self, node: cst.ImportFrom) -> str:
        mod = dotted_name(node.module) if node.module is not None else ""
        level = len(node.relative)
        if level == 0:
            return mod
        package = self.module.package
        for _ in range(level - 1):
            package = package.rpartition(".")[0]
        return ".".join(p for p in (package, mod) if p)

    # ----------------------------- definitions --------------------------------

    def _qualname(self, scope: Scope, name: str) -> str:
        return f"{scope.qualname}.{name}" if scope.qualname else name

    def _fq(self, qualname: str) -> str:
        return f"{self.module.name}.{qualname}" if self.module.name else qualname

    def _function(self, node: cst.FunctionDef, scope: Scope) -> None:
        name = node.name.value
        qual = self._qualname(scope, name)
        kind = "function"
        if scope.kind == "class":
            kind = "method"
            for dec in node.decorators:
                dec_name = dotted_name(dec.decorator)
                if dec_name == "staticmethod":
                    kind = "staticmethod"
                elif dec_name == "classmethod":
                    kind = "classmethod"

        fscope = Scope("function", node, self.module, scope, qual)
        info = FunctionInfo(
            name, self._fq(qual), node, self.module, fscope,
            owner=scope.cls if scope.kind == "class" else None, kind=kind,
        )
        fscope.function = info
        self.index._scopes[node] = fscope
        self.index.functions[info.fqname] = info
        if info.owner is not None:
            info.owner.methods[name] = info
        scope.bind(Binding(name, BindingKind.FUNCTION, node, scope, self._pos(node.name), info=info))

        params = node.params
        positional = list(params.posonly_params) + list(params.params)
        for i, p in enumerate(positional):
            b = self._param(p, fscope)
            b.is_self = i == 0 and kind == "method"
            b.is_cls = i == 0 and kind == "classmethod"
        for p in params.kwonly_params:
            self._param(p, fscope)
        for p in (params.star_arg, params.star_kwarg):
            if isinstance(p, cst.Param):
                b = self._param(p, fscope)
                b.annotation = None

        self._suite(node.body, fscope)

    def _param(self, p: cst.Param, scope: Scope) -> Binding:
        b = Binding(
            p.name.value, BindingKind.PARAM, p, scope, self._pos(p.name),
            annotation=p.annotation.annotation if p.annotation is not None else None,
            default=p.default,
        )
        scope.bind(b)
        return b

    def _class(self, node: cst.ClassDef, scope: Scope) -> None:
        name = node.name.value
        qual = self._qualname(scope, name)
        cscope = Scope("class", node, self.module, scope, qual)
        info = ClassInfo(
            name, self._fq(qual), node, self.module, cscope,
            bases=[arg.value for arg in node.bases if arg.keyword is None],
        )
        cscope.cls = info
        self.index._scopes[node] = cscope
        self.index.classes[info.fqname] = info
        scope.bind(Binding(name, BindingKind.CLASS, node, scope, self._pos(node.name), info=info))
        self._suite(node.body, cscope)


def _is_classvar(annotation: cst.BaseExpression) -> bool:
    base = annotation.value if isinstance(annotation, cst.Subscript) else annotation
    return dotted_name(base).rsplit(".", 1)[-1] == "ClassVar"


def denotes_value(sym: Optional[Symbol]) -> bool:
    """True when an expression denotes a runtime value rather than a module, class or function."""
    return sym is None or isinstance(sym, GlobalRef)
