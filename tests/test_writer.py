from __future__ import annotations

import pytest

from emittergen.callsites.errors import WriteError
from emittergen.callsites.recorder import CallSite
from emittergen.callsites.writer import BANNER, render_callsites_module, write_callsites_module
from emittergen.types import CallSiteDetails


def _site(event: str, filename: str, line: int, keys=(), kind: str = "COUNT") -> CallSite:
    return CallSite(
        event_name=event,
        filename=filename,
        line_no=line,
        func_name=f"pkg.mod.{event}_handler",
        package="pkg",
        property_keys=tuple(keys),
        metric_type=kind,
    )


SITES = [
    _site("zeta", "b.py", 3, keys=("only",)),
    _site("alpha", "b.py", 10, keys=("x", "y"), kind="TIMER"),
    _site("omega", "a.py", 7, kind=""),
]


def test_rendered_module_starts_with_banner() -> None:
    text = render_callsites_module(SITES, var_name="TABLE", package_name="pkg")
    first, second = text.splitlines()[:2]
    assert first == BANNER
    assert second == '"""Call-site details for package pkg."""'
    assert text.endswith("}\n")


def test_entries_are_ordered_by_location() -> None:
    text = render_callsites_module(SITES, var_name="TABLE", package_name="pkg")
    positions = [text.index(f'"{name}": CallSiteDetails(') for name in ("omega", "zeta", "alpha")]
    assert positions == sorted(positions)


def test_single_key_renders_as_tuple() -> None:
    text = render_callsites_module(SITES, var_name="TABLE", package_name="pkg")
    assert 'property_keys=("only",),' in text
    assert "property_keys=()," in text


def test_rendered_module_evaluates_to_the_table() -> None:
    text = render_callsites_module(SITES, var_name="TABLE", package_name="pkg")
    namespace: dict = {}
    exec(compile(text, "emitter_callsites.py", "exec"), namespace)
    table = namespace["TABLE"]
    assert list(table) == ["omega", "zeta", "alpha"]
    assert table["alpha"] == CallSiteDetails(
        filename="b.py",
        line_no=10,
        func_name="pkg.mod.alpha_handler",
        package="pkg",
        property_keys=("x", "y"),
        metric_type="TIMER",
    )
    assert table["omega"].metric_type == ""


def test_non_ascii_and_quotes_survive() -> None:
    site = _site('say "hi"', "ünï.py", 1)
    namespace: dict = {}
    exec(render_callsites_module([site], var_name="T", package_name="pkg"), namespace)
    assert namespace["T"]['say "hi"'].filename == "ünï.py"


def test_empty_table() -> None:
    namespace: dict = {}
    exec(render_callsites_module([], var_name="EMPTY", package_name="pkg"), namespace)
    assert namespace["EMPTY"] == {}


def test_bad_variable_name(tmp_path) -> None:
    with pytest.raises(WriteError) as exc:
        write_callsites_module(tmp_path / "out.py", SITES, var_name="not-valid", package_name="pkg")
    assert exc.value.code == "BAD_VAR_NAME"
    assert not (tmp_path / "out.py").exists()


def test_write_replaces_existing_file(tmp_path) -> None:
    target = tmp_path / "nested" / "out.py"
    write_callsites_module(target, SITES, var_name="TABLE", package_name="pkg")
    write_callsites_module(target, SITES[:1], var_name="TABLE", package_name="pkg")

    text = target.read_text(encoding="utf-8")
    assert '"zeta"' in text
    assert '"alpha"' not in text
    assert [p.name for p in target.parent.iterdir()] == ["out.py"]


def test_write_failure_is_typed(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(WriteError) as exc:
        write_callsites_module(blocker / "out.py", SITES, var_name="TABLE", package_name="pkg")
    assert exc.value.code == "WRITE_FAILED"
