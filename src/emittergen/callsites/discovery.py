# src/emittergen/callsites/discovery.py
from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterator, Optional, Sequence, Set, Tuple

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity

logger = logging.getLogger(__name__)

# ---- Discovery data model -----------------------------------------------------


@dataclass(frozen=True)
class FileMeta:
    # Identity & provenance
    path: str                 # posix path relative to the scanned directory
    real_path: str            # resolved absolute path
    blob_sha: str             # content hash (BLAKE2b)
    size_bytes: int
    mtime_ns: int

    # Classification
    is_text: bool
    encoding: Optional[str]   # 'utf-8', 'utf-8-sig', ... (None for binary)
    encoding_confidence: float

    # Flags / notes
    flags: Set[str] = field(default_factory=set)   # e.g. {'generated','too_large','binary'}

    @property
    def depth(self) -> int:
        """Number of directories between the scanned root and this file."""
        return self.path.count("/")


@dataclass(frozen=True)
class DiscoveryConfig:
    # Limits
    max_file_size_bytes: int = 20 * 1024 * 1024  # 20 MiB

    # Sampling for heuristics
    sample_bytes_for_heuristics: int = 1024 * 64
    generated_banner_lines: int = 5

    # Skips
    exclude_dirs: FrozenSet[str] = frozenset(
        {
            ".git", ".hg", ".svn", ".tox", ".venv", "venv", "__pycache__",
            ".mypy_cache", ".pytest_cache", "node_modules", "build", "dist",
        }
    )
    exclude_globs: Tuple[str, ...] = ()
    skip_generated: bool = True

    # Safety / performance
    hard_read_time_budget_sec: float = 10.0


# ---- Utility helpers ----------------------------------------------------------


def _posix_relpath(p: Path, root: Path) -> str:
    rel = p.resolve().relative_to(root.resolve())
    return rel.as_posix()


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(path, pat) for pat in patterns)


_BOMS: Tuple[Tuple[bytes, str], ...] = (
    (b"\xef\xbb\xbf", "utf-8-sig"),
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
)


def _detect_bom(data: bytes) -> Optional[str]:
    for sig, name in _BOMS:
        if data.startswith(sig):
            return name
    return None


def _is_binary_sample(sample: bytes) -> bool:
    if not sample:
        return False
    if _detect_bom(sample) in ("utf-16-le", "utf-16-be"):
        return False
    if b"\x00" in sample:
        return True
    # very low control chars excluding \t \n \v \f \r
    ctrl = sum(1 for b in sample if (b < 32 and b not in (9, 10, 11, 12, 13)))
    high = sum(1 for b in sample if b > 0xF4)  # unlikely in valid UTF-8 streams
    return (ctrl / max(1, len(sample)) > 0.02) or (high > 0)


def _safe_decode(sample: bytes) -> Tuple[Optional[str], float]:
    """
    Try BOM first, then utf-8 (strict). A sample may end mid-character, so a
    failure in the last three bytes is still accepted as utf-8.
    Returns (encoding_label, confidence[0..1]).
    """
    bom = _detect_bom(sample)
    if bom:
        return bom, 1.0
    try:
        sample.decode("utf-8", errors="strict")
        return "utf-8", 0.95
    except UnicodeDecodeError as e:
        if e.start >= len(sample) - 3:
            return "utf-8", 0.9
        return None, 0.0


_GENERATED_BANNERS = (
    "code generated by", "do not edit", "@generated", "autogenerated", "this file was generated",
)


def _looks_generated(text_sample: str, lines: int) -> bool:
    head = "\n".join(text_sample.splitlines()[:lines]).lower()
    return any(b in head for b in _GENERATED_BANNERS)


# ---- Discovery core -----------------------------------------------------------


def iter_package_files(
    root: Path,
    cfg: Optional[DiscoveryConfig] = None,
    anomaly_sink: Optional[AnomalySink] = None,
) -> Iterator[FileMeta]:
    """
    Walk a package directory and yield FileMeta records for Python modules.
    Every skip produces an anomaly record. Ordering is deterministic
    (lexicographic, files of a directory before its sub-directories).
    """
    cfg = cfg or DiscoveryConfig()
    root = Path(root).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"not a directory: {root}")

    sink = anomaly_sink or AnomalySink()

    for path in _iter_paths_lex(root, cfg, sink):
        posix_rel = _posix_relpath(path, root)
        if cfg.exclude_globs and _matches_any(posix_rel, cfg.exclude_globs):
            sink.emit(Anomaly(path=posix_rel, kind=AnomalyKind.SKIPPED, severity=Severity.INFO, detail="Matched exclude_globs"))
            continue

        try:
            st = path.stat()
        except OSError as e:
            sink.emit(Anomaly(path=posix_rel, kind=AnomalyKind.IO_ERROR, severity=Severity.WARN, detail=f"Stat failed: {e}"))
            continue

        size = int(st.st_size)
        if size > cfg.max_file_size_bytes:
            sink.emit(Anomaly(path=posix_rel, kind=AnomalyKind.SKIPPED, severity=Severity.WARN, detail=f"File exceeds size budget ({size} bytes)"))
            continue

        try:
            blob_sha, sample, is_text, encoding, enc_conf = _hash_and_sample(path, size, cfg)
        except OSError as e:
            sink.emit(Anomaly(path=posix_rel, kind=AnomalyKind.IO_ERROR, severity=Severity.WARN, detail=f"Read failed: {e}"))
            continue

        flags: Set[str] = set()
        if not is_text:
            flags.add("binary")
            sink.emit(Anomaly(path=posix_rel, blob_sha=blob_sha, kind=AnomalyKind.BINARY_FILE, severity=Severity.INFO, detail="Binary detected by content"))
        else:
            sample_text = sample.decode(encoding or "utf-8", errors="replace")
            if _looks_generated(sample_text, cfg.generated_banner_lines):
                flags.add("generated")
                sink.emit(Anomaly(path=posix_rel, blob_sha=blob_sha, kind=AnomalyKind.GENERATED_CODE, severity=Severity.INFO, detail="Header banner suggests generated code"))

        yield FileMeta(
            path=posix_rel,
            real_path=str(path),
            blob_sha=blob_sha,
            size_bytes=size,
            mtime_ns=int(st.st_mtime_ns),
            is_text=is_text,
            encoding=encoding if is_text else None,
            encoding_confidence=enc_conf if is_text else 0.0,
            flags=flags,
        )


def _iter_paths_lex(root: Path, cfg: DiscoveryConfig, sink: AnomalySink) -> Iterator[Path]:
    """
    Deterministic lexicographic walk. Symlinked directories are never followed.
    """
    stack: list[Path] = [root]

    while stack:
        cur = stack.pop(0)
        try:
            entries = sorted(os.scandir(cur), key=lambda e: e.name)
        except OSError as e:
            sink.emit(Anomaly(path=_posix_relpath(cur, root), kind=AnomalyKind.IO_ERROR, severity=Severity.WARN, detail=f"Dir read failed: {e}"))
            continue

        subdirs: list[Path] = []
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=True)
                is_symlink = entry.is_symlink()
            except OSError:
                continue

            p = Path(entry.path)
            if is_symlink and not is_file:
                sink.emit(Anomaly(path=_posix_relpath(p, root), kind=AnomalyKind.SKIPPED, severity=Severity.INFO, detail="Symlinked directory not followed"))
                continue
            if is_dir:
                if entry.name in cfg.exclude_dirs or entry.name.startswith("."):
                    continue
                subdirs.append(p)
            elif is_file and entry.name.endswith(".py"):
                yield p
        stack.extend(subdirs)


def _hash_and_sample(
    path: Path,
    size: int,
    cfg: DiscoveryConfig,
) -> Tuple[str, bytes, bool, Optional[str], float]:
    """
    Stream file to compute content hash and take a small prefix sample for heuristics.
    Returns: (blob_sha_hex, sample_bytes, is_text, encoding_label, encoding_confidence)
    """
    h = hashlib.blake2b(digest_size=32)
    sample_budget = min(cfg.sample_bytes_for_heuristics, size)
    sample = bytearray()
    start = time.time()

    with open(path, "rb", buffering=1024 * 1024) as f:
        while True:
            if (time.time() - start) > cfg.hard_read_time_budget_sec:
                logger.warning("read budget exceeded for %s", path)
                break
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
            if len(sample) < sample_budget:
                need = sample_budget - len(sample)
                sample.extend(chunk[:need])

    sample_bytes = bytes(sample)
    is_text = not _is_binary_sample(sample_bytes)
    encoding: Optional[str] = None
    enc_conf = 0.0
    if is_text:
        encoding, enc_conf = _safe_decode(sample_bytes)
        if encoding is None:
            is_text = False

    return h.hexdigest(), sample_bytes, is_text, encoding, enc_conf
