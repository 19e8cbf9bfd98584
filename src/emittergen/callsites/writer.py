# src/emittergen/callsites/writer.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Sequence

from .errors import WriteError
from .recorder import CallSite, sort_key

logger = logging.getLogger(__name__)

BANNER = "# Code generated by emittergen. DO NOT EDIT."


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


def _tuple_literal(items: Sequence[str]) -> str:
    if not items:
        return "()"
    if len(items) == 1:
        return f"({_quote(items[0])},)"
    return "(" + ", ".join(_quote(i) for i in items) + ")"


def render_callsites_module(callsites: Iterable[CallSite], *, var_name: str, package_name: str) -> str:
    """Source text of the generated table, entries ordered by (filename, line)."""
    lines: List[str] = [
        BANNER,
        f'"""Call-site details for package {package_name}."""',
        "from typing import Dict",
        "",
        "from emittergen.types import CallSiteDetails",
        "",
        f"{var_name}: Dict[str, CallSiteDetails] = {{",
    ]
    for site in sorted(callsites, key=sort_key):
        d = site.to_details()
        lines.extend(
            [
                f"    {_quote(site.event_name)}: CallSiteDetails(",
                f"        filename={_quote(d.filename)},",
                f"        line_no={d.line_no},",
                f"        func_name={_quote(d.func_name)},",
                f"        package={_quote(d.package)},",
                f"        property_keys={_tuple_literal(d.property_keys)},",
                f"        metric_type={_quote(d.metric_type)},",
                "    ),",
            ]
        )
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_callsites_module(
    path: Path,
    callsites: Iterable[CallSite],
    *,
    var_name: str,
    package_name: str,
) -> Path:
    """
    Render and atomically write the generated module to ``path``.
    Raises WriteError when the file cannot be written.
    """
    if not var_name.isidentifier():
        raise WriteError("BAD_VAR_NAME", f"writing output: {var_name!r} is not a valid identifier")

    text = render_callsites_module(callsites, var_name=var_name, package_name=package_name)
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as fh:
            tmp_name = fh.name
            fh.write(text)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise WriteError("WRITE_FAILED", f"writing output: {path}: {e}") from e

    logger.debug("wrote %s (%d bytes)", path, len(text))
    return path
