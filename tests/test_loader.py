from __future__ import annotations

import pytest

from emittergen.callsites.anomalies import AnomalyKind, AnomalySink
from emittergen.callsites.discovery import DiscoveryConfig
from emittergen.callsites.errors import LoaderError
from emittergen.callsites.loader import load_package


def test_missing_directory(tmp_path) -> None:
    with pytest.raises(LoaderError) as exc:
        load_package(tmp_path / "nope")
    assert exc.value.code == "NOT_A_DIRECTORY"
    assert str(exc.value).startswith("loading package: ")


def test_directory_without_modules(tmp_path) -> None:
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "README.md").write_text("hello\n")
    with pytest.raises(LoaderError) as exc:
        load_package(tmp_path)
    assert exc.value.code == "NO_PACKAGES"
    assert "no packages found in" in str(exc.value)


def test_directory_holding_several_packages(make_package) -> None:
    root = make_package({"alpha/__init__.py": "", "beta/__init__.py": ""}, name="workspace")
    with pytest.raises(LoaderError) as exc:
        load_package(root)
    assert exc.value.code == "MULTIPLE_PACKAGES"
    assert str(exc.value).endswith("alpha, beta")


def test_syntax_error_in_own_module(make_package) -> None:
    root = make_package({"ok.py": "x = 1\n", "broken.py": "def f(:\n    pass\n"})
    sink = AnomalySink()
    with pytest.raises(LoaderError) as exc:
        load_package(root, sink=sink)
    assert exc.value.code == "PACKAGE_ERRORS"
    assert "package has errors: broken.py:" in str(exc.value)
    assert sink.count(AnomalyKind.PARSE_FAILED) == 1


def test_syntax_error_in_sub_package_is_an_anomaly(make_package) -> None:
    root = make_package(
        {
            "__init__.py": "",
            "main.py": "x = 1\n",
            "helpers/__init__.py": "",
            "helpers/bad.py": "class (:\n",
        }
    )
    sink = AnomalySink()
    package = load_package(root, sink=sink)
    assert [m.name for m in package.support] == ["pkg.helpers"]
    assert sink.count(AnomalyKind.PARSE_FAILED) == 1


def test_module_names_and_units(make_package) -> None:
    root = make_package(
        {
            "__init__.py": "",
            "api.py": "",
            "util/__init__.py": "",
            "util/strings.py": "",
        }
    )
    package = load_package(root)
    assert package.name == "pkg"
    assert [m.name for m in package.units] == ["pkg", "pkg.api"]
    assert [m.name for m in package.support] == ["pkg.util", "pkg.util.strings"]
    assert all(m.is_unit for m in package.units)
    assert not any(m.is_unit for m in package.support)


def test_plain_directory_has_no_prefix(make_package) -> None:
    package = load_package(make_package({"tool.py": "x = 1\n"}))
    assert package.name == ""
    assert [m.name for m in package.units] == ["tool"]


def test_generated_modules_are_skipped(make_package) -> None:
    root = make_package(
        {
            "service.py": "x = 1\n",
            "emitter_callsites.py": "# Code generated by emittergen. DO NOT EDIT.\nsyntax error here(\n",
        }
    )
    sink = AnomalySink()
    package = load_package(root, sink=sink)
    assert [m.file.path for m in package.units] == ["service.py"]
    assert sink.count(AnomalyKind.GENERATED_CODE) == 1


def test_generated_modules_kept_when_configured(make_package) -> None:
    root = make_package({"gen.py": "# @generated\nVALUE = 1\n"})
    package = load_package(root, cfg=DiscoveryConfig(skip_generated=False))
    assert [m.file.path for m in package.units] == ["gen.py"]


def test_hidden_and_excluded_directories_are_ignored(make_package) -> None:
    root = make_package(
        {
            "main.py": "",
            ".cache/junk.py": "",
            "__pycache__/main.py": "",
            "build/out.py": "",
        }
    )
    package = load_package(root)
    assert [m.file.path for m in package.modules] == ["main.py"]
