from __future__ import annotations

import pytest

from emittergen.callsites.api import GeneratorConfig
from emittergen.callsites.recorder import CallSite
from emittergen.callsites.resolver import ResolverConfig
from emittergen.core.config import env_int, feature_enabled
from emittergen.static import new_static_callsite_provider
from emittergen.types import CallSiteDetails, MetricType


@pytest.fixture(autouse=True)
def _fresh_flags():
    feature_enabled.cache_clear()
    yield
    feature_enabled.cache_clear()


def test_static_provider_returns_known_details() -> None:
    details = CallSiteDetails(filename="svc.py", line_no=3, func_name="pkg.svc.run", package="pkg", property_keys=("a",), metric_type="COUNT")
    table = {"hits": details}
    provider = new_static_callsite_provider(table)

    table.clear()
    assert provider("hits") == details
    assert not provider("hits").is_empty()


def test_static_provider_unknown_event_is_empty() -> None:
    provider = new_static_callsite_provider({})
    assert provider("missing").is_empty()
    assert provider("missing") == CallSiteDetails()


def test_feature_flag_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("EMITTERGEN_FEATURE_CALLSITES_RELATIVE_PATHS", "Yes")
    assert feature_enabled("feature.callsites.relative_paths") is True


def test_feature_flag_defaults(monkeypatch) -> None:
    monkeypatch.delenv("EMITTERGEN_FEATURE_CALLSITES_RELATIVE_PATHS", raising=False)
    assert feature_enabled("feature.callsites.relative_paths") is False
    assert feature_enabled("feature.other", default=True) is True


def test_env_int(monkeypatch) -> None:
    monkeypatch.setenv("EMITTERGEN_MAX_RESOLVE_DEPTH", "5")
    assert env_int("max_resolve_depth", 32) == 5
    assert ResolverConfig.from_env().max_depth == 5

    monkeypatch.setenv("EMITTERGEN_MAX_RESOLVE_DEPTH", "zero")
    assert env_int("max_resolve_depth", 32) == 32

    monkeypatch.setenv("EMITTERGEN_MAX_RESOLVE_DEPTH", "-3")
    assert env_int("max_resolve_depth", 32, minimum=1) == 1


def test_output_path_placement(tmp_path) -> None:
    cfg = GeneratorConfig(directory=tmp_path)
    assert cfg.output_path() == tmp_path / "emitter_callsites.py"

    nested = GeneratorConfig(directory=tmp_path, output=tmp_path / "elsewhere" / "table.py")
    assert nested.output_path() == tmp_path / "elsewhere" / "table.py"


def test_manifest_entry_of_callsite() -> None:
    typed = CallSite("hits", "a.py", 1, "pkg.a.f", "pkg", ("k",), "GAUGE").to_manifest_entry()
    assert typed.metric_type is MetricType.GAUGE
    assert typed.type_string == "GAUGE"

    untyped = CallSite("raw", "a.py", 2, "pkg.a.f", "pkg").to_manifest_entry()
    assert untyped.metric_type is None
    assert untyped.type_string == ""
    assert str(MetricType.TIMER) == "TIMER"
