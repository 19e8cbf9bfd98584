# src/emittergen/callsites/loader.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .discovery import DiscoveryConfig, FileMeta, iter_package_files
from .errors import LoaderError, ParserError
from .python_driver import DriverInfo, ParsedModule, PythonLibCstDriver

logger = logging.getLogger(__name__)


@dataclass
class LoadedPackage:
    """
    One compilation unit: the modules living directly in ``root`` (units) and
    the modules of its sub-packages (support, indexed for declarations only).
    """
    root: Path
    name: str                       # dotted prefix; "" for a plain directory of modules
    units: List[ParsedModule] = field(default_factory=list)
    support: List[ParsedModule] = field(default_factory=list)
    parser: Optional[DriverInfo] = None

    @property
    def modules(self) -> List[ParsedModule]:
        return self.units + self.support


def module_name_for(meta: FileMeta, prefix: str) -> str:
    parts = meta.path[: -len(".py")].split("/")
    if parts[-1] == "__init__":
        parts = parts[:-1]
    if prefix:
        parts = [prefix] + parts
    return ".".join(p for p in parts if p)


def load_package(
    directory: Path,
    *,
    cfg: Optional[DiscoveryConfig] = None,
    sink: Optional[AnomalySink] = None,
    driver: Optional[PythonLibCstDriver] = None,
) -> LoadedPackage:
    """
    Discover and parse the package in ``directory``.

    Raises LoaderError when the directory is missing, holds no modules of its
    own, or any of its own modules fails to parse. Sub-package modules that
    fail to parse are recorded as anomalies and left out.
    """
    root = Path(directory)
    if not root.is_dir():
        raise LoaderError("NOT_A_DIRECTORY", f"loading package: {root} is not a directory")
    root = root.resolve()
    sink = sink or AnomalySink()
    driver = driver or PythonLibCstDriver()

    cfg = cfg or DiscoveryConfig()
    skipped = {"generated", "binary"} if cfg.skip_generated else {"binary"}
    files = [fm for fm in iter_package_files(root, cfg, sink) if not (fm.flags & skipped)]
    own = [fm for fm in files if fm.depth == 0]
    nested = [fm for fm in files if fm.depth > 0]

    if not own:
        child_packages = sorted({fm.path.split("/", 1)[0] for fm in nested})
        if len(child_packages) > 1:
            raise LoaderError(
                "MULTIPLE_PACKAGES",
                f"loading package: multiple packages found in {root}: {', '.join(child_packages)}",
            )
        raise LoaderError("NO_PACKAGES", f"loading package: no packages found in {root}")

    prefix = root.name if any(fm.path == "__init__.py" for fm in own) else ""
    pkg = LoadedPackage(root=root, name=prefix, parser=driver.info())

    errors: List[ParserError] = []
    for fm in own:
        start = time.perf_counter()
        try:
            pkg.units.append(driver.parse(fm, module_name_for(fm, prefix), is_unit=True))
        except ParserError as e:
            errors.append(e)
            sink.emit(Anomaly(path=fm.path, blob_sha=fm.blob_sha, kind=AnomalyKind.PARSE_FAILED, severity=Severity.ERROR, detail=e.message, line=e.line or 0))
        sink.observe_duration("parse_seconds", time.perf_counter() - start)

    if errors:
        first = errors[0]
        raise LoaderError(
            "PACKAGE_ERRORS",
            f"loading package: package has errors: {first.message}",
            detail="\n".join(e.detail or e.message for e in errors),
        )

    for fm in nested:
        try:
            pkg.support.append(driver.parse(fm, module_name_for(fm, prefix), is_unit=False))
        except ParserError as e:
            sink.emit(Anomaly(path=fm.path, blob_sha=fm.blob_sha, kind=AnomalyKind.PARSE_FAILED, severity=Severity.WARN, detail=e.message, line=e.line or 0))

    logger.debug("loaded %s: %d unit modules, %d support modules", root, len(pkg.units), len(pkg.support))
    return pkg
