# src/emittergen/callsites/api.py
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..core.config import feature_enabled
from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .classifier import InvocationClassifier, InvocationKind
from .discovery import DiscoveryConfig
from .emitter_api import EmitterApi, EmitterApiConfig, Role
from .loader import LoadedPackage, load_package
from .program import ProgramIndex
from .recorder import CallSite, CallsiteRecorder
from .registrations import Registration, RegistrationScanner
from .resolver import AliasResolver, ResolverConfig
from .typeinfo import TypeOracle

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "emitter_callsites.py"
DEFAULT_VAR_NAME = "EMITTER_CALLSITE_DETAILS"


@dataclass(frozen=True)
class GeneratorConfig:
    """Everything one generator run needs."""
    directory: Path
    output: Path = Path(DEFAULT_OUTPUT)
    var_name: str = DEFAULT_VAR_NAME
    package_name: str = ""                 # generated module only; defaults to the analyzed package
    manifest_dir: Optional[Path] = None    # optional Parquet export
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    emitter_api: EmitterApiConfig = field(default_factory=EmitterApiConfig)
    resolver: Optional[ResolverConfig] = None
    relative_paths: Optional[bool] = None  # None -> feature flag

    def output_path(self) -> Path:
        """A bare file name is placed inside the scanned directory."""
        out = Path(self.output)
        if not out.is_absolute() and out.parent == Path("."):
            return Path(self.directory) / out
        return out


@dataclass(frozen=True)
class GeneratorResult:
    output_path: Path
    callsites: Dict[str, CallSite]
    anomalies: int
    wall_ms: int
    manifest_dir: Optional[Path] = None


def package_display_name(package: LoadedPackage) -> str:
    """Import name of the analyzed package, or its directory name for a plain directory."""
    return package.name or package.root.name


def _callsite(reg: Registration, program: ProgramIndex, call, package_name: str) -> CallSite:
    loc = program.location(call)
    return CallSite(
        event_name=reg.event_name,
        filename=loc.filename,
        line_no=loc.line,
        func_name=program.routine_name(call),
        package=package_name,
        property_keys=reg.property_keys,
        metric_type=reg.metric_kind,
    )


def extract_callsites(
    package: LoadedPackage,
    *,
    api_cfg: Optional[EmitterApiConfig] = None,
    resolver_cfg: Optional[ResolverConfig] = None,
    sink: Optional[AnomalySink] = None,
    relative_paths: Optional[bool] = None,
) -> Dict[str, CallSite]:
    """
    Single pass over the unit modules (sorted by path, calls in source order):
    direct and timer calls are recorded where they are, handle invocations
    are resolved back to their registration and recorded at the invocation,
    decorators are recorded at the decorator call and override earlier entries.

    Raises NonLiteralEventNameError / DuplicateEventError (ScanError).
    """
    sink = sink or AnomalySink()
    if relative_paths is None:
        relative_paths = feature_enabled("feature.callsites.relative_paths")

    start = time.perf_counter()
    program = ProgramIndex.build(package, relative_paths=relative_paths)
    emitter_api = EmitterApi(api_cfg)
    oracle = TypeOracle(program, emitter_api)
    scanner = RegistrationScanner(program, oracle, emitter_api)
    classifier = InvocationClassifier(program, oracle, scanner)
    resolver = AliasResolver(program, oracle, scanner, cfg=resolver_cfg, sink=sink)
    recorder = CallsiteRecorder()
    package_name = package_display_name(package)

    for module in program.unit_modules():
        for call in module.calls:
            spec = scanner.match(call)
            if spec is not None and spec.role is Role.REGISTER:
                # the registering call is never a call site, but its name must be a literal
                scanner.registration_for(call)
                continue

            invocation = classifier.classify(call)
            if invocation is None:
                continue

            if invocation.kind in (InvocationKind.DIRECT, InvocationKind.TIMER):
                reg = scanner.registration_for(call)
                if reg is not None:
                    recorder.record(_callsite(reg, program, call, package_name))
                continue

            reg = resolver.resolve(invocation.target)
            if reg is None:
                loc = program.location(call)
                logger.debug("unresolved %s invocation at %s", invocation.kind.value, loc)
                sink.emit(
                    Anomaly(
                        path=module.parsed.file.path,
                        kind=AnomalyKind.UNRESOLVED,
                        severity=Severity.INFO,
                        detail=f"{invocation.kind.value} invocation",
                        line=loc.line,
                    )
                )
                continue
            recorder.record(
                _callsite(reg, program, call, package_name),
                decorator=invocation.kind is InvocationKind.DECORATOR,
            )

    sink.observe_duration("extract_seconds", time.perf_counter() - start)
    logger.debug("extracted %d call sites from %s", len(recorder), package.root)
    return recorder.as_dict()


def generate(cfg: GeneratorConfig, *, sink: Optional[AnomalySink] = None) -> GeneratorResult:
    """
    Load the package in ``cfg.directory``, extract its call sites and write the
    generated module (and the Parquet manifest when ``manifest_dir`` is set).
    Every failure surfaces as a GeneratorError.
    """
    from .callsite_store import CallsiteStore
    from .writer import write_callsites_module

    sink = sink or AnomalySink()
    start = time.time()

    package = load_package(Path(cfg.directory), cfg=cfg.discovery, sink=sink)
    callsites = extract_callsites(
        package,
        api_cfg=cfg.emitter_api,
        resolver_cfg=cfg.resolver,
        sink=sink,
        relative_paths=cfg.relative_paths,
    )

    output = cfg.output_path()
    package_name = cfg.package_name or package_display_name(package)
    write_callsites_module(output, list(callsites.values()), var_name=cfg.var_name, package_name=package_name)

    if cfg.manifest_dir is not None:
        anomalies: List[Anomaly] = sink.items()
        store = CallsiteStore(Path(cfg.manifest_dir))
        store.append_callsites(callsites.values())
        store.append_anomalies(anomalies)
        store.finalize(
            receipt={
                "run_meta": {
                    "directory": str(package.root),
                    "package": package_name,
                    "analyzed_package": package_display_name(package),
                    "output": str(output),
                    "parser": asdict(package.parser) if package.parser is not None else None,
                },
                "counters": sink.counters(),
                "timers": sink.timer_histograms(),
            }
        )

    return GeneratorResult(
        output_path=output,
        callsites=callsites,
        anomalies=sink.count(),
        wall_ms=int((time.time() - start) * 1000),
        manifest_dir=cfg.manifest_dir,
    )
