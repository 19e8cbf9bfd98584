from __future__ import annotations

import libcst as cst
import pytest

from emittergen.callsites.emitter_api import EmitterApi
from emittergen.callsites.loader import load_package
from emittergen.callsites.program import (
    BindingKind,
    ClassInfo,
    ExternalRef,
    FunctionInfo,
    GlobalRef,
    ModuleInfo,
    ProgramIndex,
    literal_key,
    subscript_key,
)
from emittergen.callsites.typeinfo import TypeOracle


def _index(make_package, files):
    package = load_package(make_package(files))
    program = ProgramIndex.build(package, relative_paths=True)
    return program, TypeOracle(program, EmitterApi())


def _call(program: ProgramIndex, module: str, snippet: str) -> cst.Call:
    info = program.modules[module]
    for call in info.calls:
        if info.node.code_for_node(call).startswith(snippet):
            return call
    raise AssertionError(snippet)


SERVICE = {
    "__init__.py": "",
    "base.py": """
    from emittergen.types import CombinedEmitter


    class Base:
        emitter: CombinedEmitter

        def __init__(self, emitter: CombinedEmitter) -> None:
            self.emitter = emitter
            self.count = 0


    def helper(x):
        return x
    """,
    "service.py": """
    from typing import Dict, List, Optional

    from emittergen.types import CombinedEmitter, MetricEmitterFn

    from . import base
    from .base import Base, helper as aliased


    class Service(Base):
        handlers: "Dict[str, MetricEmitterFn]"

        def run(self, flag) -> None:
            value = 1
            if flag:
                value = 2
            aliased(value)

            def inner() -> None:
                aliased(value)

            inner()


    def typed(a: Optional[Service], b: "Service | None", c: List[Service]) -> None:
        a.run(True)
        b.run(True)
        c[0].run(True)
        base.helper(1)
    """,
}


def test_module_names_and_symbols(make_package) -> None:
    program, _ = _index(make_package, SERVICE)
    assert set(program.modules) == {"pkg", "pkg.base", "pkg.service"}
    assert isinstance(program.resolve_fq("pkg.base"), ModuleInfo)
    assert isinstance(program.resolve_fq("pkg.service.Base"), ClassInfo)
    assert isinstance(program.resolve_fq("pkg.service.aliased"), FunctionInfo)
    assert program.resolve_fq("pkg.service.CombinedEmitter") == ExternalRef("emittergen.types.CombinedEmitter")


def test_relative_import_and_alias_resolve_to_functions(make_package) -> None:
    program, _ = _index(make_package, SERVICE)
    helper = program.functions["pkg.base.helper"]
    assert program.callee_function(_call(program, "pkg.service", "aliased(value)")) is helper
    assert program.callee_function(_call(program, "pkg.service", "base.helper(1)")) is helper


def test_routine_names(make_package) -> None:
    program, _ = _index(make_package, SERVICE)
    run_call = _call(program, "pkg.service", "aliased(value)")
    assert program.routine_name(run_call) == "pkg.service.Service.run"
    inner_call = _call(program, "pkg.service", "inner()")
    assert program.routine_name(inner_call) == "pkg.service.Service.run"
    typed_call = _call(program, "pkg.service", "base.helper(1)")
    assert program.routine_name(typed_call) == "pkg.service.typed"


def test_lookup_prefers_nearest_preceding_binding(make_package) -> None:
    program, _ = _index(make_package, SERVICE)
    call = _call(program, "pkg.service", "aliased(value)")
    use = call.args[0].value
    bindings = program.lookup("value", use)
    assert [b.kind for b in bindings] == [BindingKind.ASSIGN, BindingKind.ASSIGN]
    assert isinstance(bindings[0].value, cst.Integer) and bindings[0].value.value == "2"


def test_lambda_and_comprehension_scopes(make_package) -> None:
    program, _ = _index(
        make_package,
        {
            "mod.py": """
            x = 0

            def run(items):
                f = lambda x, y=x: g(x)
                return [g(x) for x in items if check(x)]
            """,
        },
    )
    lambda_call = _call(program, "mod", "g(x)")
    param = program.lookup("x", lambda_call.args[0].value)[0]
    assert param.kind is BindingKind.PARAM
    assert param.scope.kind == "lambda"
    assert program.routine_name(lambda_call) == "mod.run"

    lam = program.parent(lambda_call)
    assert isinstance(lam, cst.Lambda)
    default = lam.params.params[1].default
    assert program.scope_of(default).kind == "function"
    assert program.lookup("x", default)[0].scope.kind == "module"

    check_call = _call(program, "mod", "check(x)")
    target = program.lookup("x", check_call.args[0].value)[0]
    assert target.kind is BindingKind.LOOP
    assert target.scope.kind == "comprehension"
    # the first iterable is evaluated in the enclosing function
    assert program.lookup("items", target.value)[0].kind is BindingKind.PARAM
    assert program.routine_name(check_call) == "mod.run"


def test_inheritance_and_fields(make_package) -> None:
    program, _ = _index(make_package, SERVICE)
    service = program.classes["pkg.service.Service"]
    base = program.classes["pkg.base.Base"]
    assert program.mro(service)[:2] == [service, base]
    assert program.is_subclass(service, base)
    assert program.find_field(service, "emitter").owner is base
    assert program.find_field(service, "handlers").owner is service
    assert [c.fqname for c in program.classes_declaring("count")] == ["pkg.base.Base"]
    assert "emittergen.types.CombinedEmitter" not in program.base_names(service)


def test_annotation_types(make_package) -> None:
    program, oracle = _index(make_package, SERVICE)
    for snippet in ("a.run(True)", "b.run(True)", "c[0].run(True)"):
        call = _call(program, "pkg.service", snippet)
        receiver = call.func.value
        assert oracle.type_of(receiver).name == "pkg.service.Service", snippet
        assert oracle.callee_function(call) is program.classes["pkg.service.Service"].methods["run"]


def test_member_types_and_predicates(make_package) -> None:
    program, oracle = _index(make_package, SERVICE)
    service = oracle.type_of(_call(program, "pkg.service", "a.run(True)").func.value)
    emitter = oracle.member_type(service, "emitter")
    assert emitter.name == "emittergen.types.CombinedEmitter"
    assert oracle.is_provider(emitter)

    handlers = oracle.member_type(service, "handlers")
    assert handlers.name == "builtins.dict"
    assert oracle.is_handle(handlers.element("any"))
    assert not oracle.is_timer(handlers)


def test_global_refs(make_package) -> None:
    program, _ = _index(
        make_package,
        {
            "__init__.py": "",
            "state.py": "COUNTER = 0\nCOUNTER = 1\n",
            "user.py": "from .state import COUNTER\n\nprint(COUNTER)\n",
        },
    )
    call = _call(program, "pkg.user", "print(COUNTER)")
    sym = program.symbol_for(call.args[0].value)
    assert isinstance(sym, GlobalRef)
    assert sym.name == "COUNTER"
    assert isinstance(program.symbol_for(call.func), ExternalRef)


@pytest.mark.parametrize(
    "expr, key",
    [("x[0]", 0), ("x[-2]", -2), ("x['k']", "k"), ("x[i]", None), ("x[1:2]", None)],
)
def test_subscript_keys(expr, key) -> None:
    node = cst.parse_expression(expr)
    assert subscript_key(node) == key


def test_literal_key_rejects_non_literals() -> None:
    assert literal_key(cst.parse_expression("f'x'")) is None
    assert literal_key(cst.parse_expression("3")) == 3
