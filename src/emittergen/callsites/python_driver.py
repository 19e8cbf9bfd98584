# src/emittergen/callsites/python_driver.py
from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

import libcst as cst
from libcst.metadata import CodeRange, MetadataWrapper, ParentNodeProvider, PositionProvider

from .discovery import FileMeta
from .errors import ParserError, SourceLocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverInfo:
    grammar_name: str
    grammar_sha: str   # pin exact grammar build
    version: str


@dataclass(frozen=True, eq=False)
class ParsedModule:
    """
    One parsed source file: the metadata-annotated libcst module plus the
    resolved position and parent maps (keyed by node identity).
    """
    file: FileMeta
    name: str                                   # dotted module name
    module: cst.Module
    positions: Mapping[cst.CSTNode, CodeRange]
    parents: Mapping[cst.CSTNode, cst.CSTNode]
    is_unit: bool = True                        # False for support modules (sub-packages)
    elapsed_s: float = 0.0

    @property
    def is_package_init(self) -> bool:
        return self.file.path.rsplit("/", 1)[-1] == "__init__.py"

    def location(self, node: cst.CSTNode, *, filename: Optional[str] = None) -> SourceLocation:
        rng = self.positions.get(node)
        fname = filename if filename is not None else self.file.real_path
        if rng is None:
            return SourceLocation(fname, 0, 0)
        return SourceLocation(fname, rng.start.line, rng.start.column + 1)


class PythonLibCstDriver:
    """
    Python parser using libcst for a lossless Concrete Syntax Tree with precise
    positions. A module is parsed once and wrapped once; the wrapper's copy of
    the tree is the one every consumer sees, so metadata lookups by identity work.
    """

    def __init__(self) -> None:
        grammar_name = "libcst-python"
        version = self._libcst_version()
        grammar_sha = hashlib.blake2b(
            f"{grammar_name}:{version}".encode("utf-8"), digest_size=20
        ).hexdigest()
        self._info = DriverInfo(grammar_name=grammar_name, grammar_sha=grammar_sha, version=version)

    def info(self) -> DriverInfo:
        return self._info

    def parse(self, file: FileMeta, module_name: str, *, is_unit: bool = True) -> ParsedModule:
        if not file.is_text:
            raise ParserError(code="NOT_TEXT", message=f"{file.path}: classified as binary by discovery", path=file.path)

        enc = file.encoding or "utf-8"
        start = time.perf_counter()

        try:
            with open(file.real_path, "rb") as fh:
                raw = fh.read()
        except FileNotFoundError as e:
            raise ParserError(code="IO_ERROR", message=f"{file.path}: file not found", path=file.path, detail=str(e))
        except PermissionError as e:
            raise ParserError(code="PERMISSION_DENIED", message=f"{file.path}: permission denied", path=file.path, detail=str(e))
        except OSError as e:
            raise ParserError(code="IO_ERROR", message=f"{file.path}: read failed", path=file.path, detail=str(e))

        try:
            text = raw.decode(enc, errors="strict")
        except UnicodeDecodeError as e:
            raise ParserError(code="DECODE_FAILED", message=f"{file.path}: could not decode with {enc}", path=file.path, detail=str(e))

        try:
            parsed_module = cst.parse_module(text)
        except cst.ParserSyntaxError as e:
            raise ParserError(
                code="PARSE_ERROR",
                message=f"{file.path}:{e.raw_line}: {e.message}",
                path=file.path,
                line=e.raw_line,
                detail=str(e),
            )

        wrapper = MetadataWrapper(parsed_module)
        positions = wrapper.resolve(PositionProvider)
        parents = wrapper.resolve(ParentNodeProvider)
        module = wrapper.module  # use metadata-annotated node

        elapsed = time.perf_counter() - start
        logger.debug("parsed %s as %s in %.4fs", file.path, module_name, elapsed)
        return ParsedModule(
            file=file,
            name=module_name,
            module=module,
            positions=positions,
            parents=parents,
            is_unit=is_unit,
            elapsed_s=elapsed,
        )

    @staticmethod
    def _libcst_version() -> str:
        try:
            from importlib.metadata import version
            return version("libcst")
        except Exception:
            return "unknown"
