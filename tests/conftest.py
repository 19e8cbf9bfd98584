from __future__ import annotations

import re
import sys
import textwrap
from pathlib import Path
from typing import Dict, Tuple

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT / "src"))

FIXTURE_ROOT = Path(__file__).resolve().parent / "fixtures" / "example"

_MARKER = re.compile(r"#\s*callsite:\s*(\S+)\s*$")


def callsite_markers(root: Path) -> Dict[str, Tuple[str, int]]:
    """``# callsite: <event>`` comments in the top-level modules of ``root``."""
    found: Dict[str, Tuple[str, int]] = {}
    for path in sorted(root.glob("*.py")):
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            m = _MARKER.search(line)
            if m:
                found[m.group(1)] = (str(path.resolve()), lineno)
    return found


def write_package(root: Path, files: Dict[str, str]) -> Path:
    for rel, source in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
    return root


@pytest.fixture
def example_dir() -> Path:
    return FIXTURE_ROOT


@pytest.fixture
def make_package(tmp_path):
    def _make(files: Dict[str, str], name: str = "pkg") -> Path:
        return write_package(tmp_path / name, files)

    return _make
