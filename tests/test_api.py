from __future__ import annotations

import pytest

from emittergen.callsites.anomalies import AnomalyKind, AnomalySink
from emittergen.callsites.api import GeneratorConfig, generate
from emittergen.callsites.errors import LoaderError

SOURCE = """
from emittergen.types import CombinedEmitter, MetricType

em: CombinedEmitter = None
requests = em.metric_with_props("requests", MetricType.COUNT, ["route"])


def serve(ctx, route):
    requests(ctx, {"route": route}, 1)
    em.infof("served", None, "ok")
    route.upper()
"""


def test_generate_returns_a_summary(make_package, tmp_path) -> None:
    root = make_package({"server.py": SOURCE}, name="server")
    sink = AnomalySink()
    result = generate(
        GeneratorConfig(directory=root, manifest_dir=tmp_path / "manifest", relative_paths=True),
        sink=sink,
    )

    assert result.output_path == root / "emitter_callsites.py"
    assert result.output_path.exists()
    assert sorted(result.callsites) == ["requests", "served"]
    assert result.callsites["requests"].filename == "server.py"
    assert result.callsites["requests"].package == "server"
    assert result.anomalies == sink.count()
    assert result.wall_ms >= 0
    assert result.manifest_dir == tmp_path / "manifest"
    assert "extract_seconds" in sink.timer_histograms()


def test_generate_propagates_loader_errors(tmp_path) -> None:
    with pytest.raises(LoaderError):
        generate(GeneratorConfig(directory=tmp_path / "absent"))


def test_unresolved_invocations_are_counted(make_package) -> None:
    src = SOURCE + """

def forward(handler, ctx):
    handler(ctx, None)
"""
    root = make_package({"server.py": src}, name="server")
    sink = AnomalySink()
    result = generate(GeneratorConfig(directory=root, relative_paths=True), sink=sink)
    assert "requests" in result.callsites
    assert sink.count(AnomalyKind.UNRESOLVED) >= 1
