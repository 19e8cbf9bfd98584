# src/emittergen/callsites/callsite_store.py
from __future__ import annotations

import hashlib
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Dict, Iterable, List

import pyarrow as pa
import pyarrow.parquet as pq

from .anomalies import Anomaly
from .errors import WriteError
from .recorder import CallSite, sort_key

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_TABLES = ("callsites", "anomalies")


class CallsiteStore:
    """
    Parquet manifest of one generator run.

    Layout of ``out_dir`` once published::

        callsites/emittergen_callsites_00000.parquet
        anomalies/emittergen_anomalies_00000.parquet
        run_receipt.json

    Files are written into a sibling staging directory, read back to check
    row counts, and the staging directory then replaces ``out_dir`` (the
    previous export is kept as ``out_dir.bak``).
    """

    def __init__(
        self,
        out_dir: Path,
        *,
        zstd_level: int = 7,
        staging_suffix: str = ".staging",
        file_prefix: str = "emittergen",
    ) -> None:
        self.out_dir = Path(out_dir)
        self.zstd_level = int(zstd_level)
        self.staging_suffix = staging_suffix
        self.file_prefix = file_prefix

        # Staging
        self._staging = Path(str(self.out_dir) + self.staging_suffix)
        if self._staging.exists():
            shutil.rmtree(self._staging, ignore_errors=True)
        try:
            for table in _TABLES:
                (self._staging / table).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError("STAGING_FAILED", f"creating {self._staging}: {e}") from e

        self._callsite_buf = _RowBuffer(_callsite_schema())
        self._anomaly_buf = _RowBuffer(_anomaly_schema())

        self._rows_total: Dict[str, int] = {t: 0 for t in _TABLES}
        self._file_idx: Dict[str, int] = {t: 0 for t in _TABLES}
        self._bytes_written = 0

        self._pq_write_kwargs = dict(
            compression="zstd",
            compression_level=self.zstd_level,
            use_dictionary=True,
            write_statistics=True,
        )

        # one "wrote_<table>:<file>" entry per Parquet file, copied into the receipt
        self._transaction_log: List[str] = []

    # ----------------------------- rows ---------------------------------------

    def append_callsites(self, callsites: Iterable[CallSite]) -> None:
        for site in sorted(callsites, key=sort_key):
            self._callsite_buf.add(_callsite_to_arrow_row(site))

    def append_anomalies(self, anomalies: Iterable[Anomaly]) -> None:
        """Store anomalies alongside the manifest."""
        for a in anomalies:
            self._anomaly_buf.add(_anomaly_to_arrow_row(a))

    def flush(self) -> None:
        self._flush("callsites", self._callsite_buf)
        self._flush("anomalies", self._anomaly_buf)

    def finalize(self, *, receipt: Dict) -> Path:
        """
        Flush buffers, write run_receipt.json, compute integrity hashes,
        then atomically publish the staging contents into out_dir.
        """
        self.flush()

        meta = {
            "schema_version": SCHEMA_VERSION,
            "callsite_rows": self._rows_total["callsites"],
            "anomaly_rows": self._rows_total["anomalies"],
            "bytes_written": self._bytes_written,
            "compression": {"algorithm": "zstd", "level": self.zstd_level},
            "files": dict(self._file_idx),
            "created_at_epoch": int(time.time()),
            "created_at_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "transaction_log": self._transaction_log,
        }
        meta.update(receipt or {})
        meta["integrity"] = self._compute_integrity_hashes()

        try:
            (self._staging / "run_receipt.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")
            self._atomic_publish()
        except OSError as e:
            raise WriteError("PUBLISH_FAILED", f"publishing manifest to {self.out_dir}: {e}") from e
        logger.debug("published manifest to %s (%d call sites)", self.out_dir, meta["callsite_rows"])
        return self.out_dir

    # ----------------------------- internals ----------------------------------

    def _flush(self, table: str, buf: "_RowBuffer") -> None:
        if not buf and self._file_idx[table] > 0:
            return
        path = self._staging / table / f"{self.file_prefix}_{table}_{self._file_idx[table]:05}.parquet"
        self._rows_total[table] += self._verified_write(buf, path)
        self._file_idx[table] += 1
        self._transaction_log.append(f"wrote_{table}:{path.name}")
        buf.clear()

    def _verified_write(self, buf: "_RowBuffer", path: Path) -> int:
        """Write ``buf`` to ``path`` and read it back; a failed file is removed. Returns the row count."""
        try:
            tbl = buf.to_table()
            meta = dict(tbl.schema.metadata or {})
            meta[b"version"] = SCHEMA_VERSION.encode("utf-8")
            tbl = tbl.replace_schema_metadata(meta)

            pq.write_table(tbl, path, **self._pq_write_kwargs)

            if not path.exists() or path.stat().st_size == 0:
                raise WriteError("EMPTY_FILE", f"failed to write {path}")

            written = pq.read_table(path)
            if written.num_rows != tbl.num_rows:
                raise WriteError(
                    "ROW_COUNT_MISMATCH",
                    f"row count mismatch in {path.name}: expected {tbl.num_rows}, got {written.num_rows}",
                )
            self._bytes_written += path.stat().st_size
            return tbl.num_rows

        except (OSError, pa.ArrowException, WriteError) as e:
            path.unlink(missing_ok=True)
            if isinstance(e, WriteError):
                raise
            raise WriteError("VERIFY_FAILED", f"Parquet write verification failed for {path}: {e}") from e

    def _compute_integrity_hashes(self) -> Dict[str, str]:
        hashes: Dict[str, str] = {}
        for file_path in sorted(self._staging.rglob("*.parquet")):
            with open(file_path, "rb") as f:
                hashes[file_path.relative_to(self._staging).as_posix()] = hashlib.blake2b(
                    f.read(), digest_size=16
                ).hexdigest()
        return hashes

    def _atomic_publish(self) -> None:
        # the previous export survives as <out_dir>.bak
        if self.out_dir.exists():
            backup = Path(str(self.out_dir) + ".bak")
            if backup.exists():
                shutil.rmtree(backup, ignore_errors=True)
            self.out_dir.replace(backup)
        self.out_dir.parent.mkdir(parents=True, exist_ok=True)
        self._staging.replace(self.out_dir)


# ==============================================================================
# Arrow schemas
# ==============================================================================


def _callsite_schema() -> pa.Schema:
    schema = pa.schema(
        [
            pa.field("event_name", pa.string()),
            pa.field("metric_type", pa.int32()),        # MetricType value; null for untyped emits
            pa.field("type_string", pa.string()),
            pa.field("property_keys", pa.list_(pa.string())),
            pa.field("filename", pa.string()),
            pa.field("line_no", pa.int64()),
            pa.field("func_name", pa.string()),
            pa.field("package", pa.string()),
            pa.field("schema_version", pa.string()),
        ]
    )
    return schema.with_metadata({"version": SCHEMA_VERSION})


def _anomaly_schema() -> pa.Schema:
    schema = pa.schema(
        [
            pa.field("path", pa.string()),
            pa.field("blob_sha", pa.string()),
            pa.field("kind", pa.string()),
            pa.field("severity", pa.string()),
            pa.field("detail", pa.string()),
            pa.field("line", pa.int64()),
            pa.field("ts_ms", pa.int64()),
            pa.field("schema_version", pa.string()),
        ]
    )
    return schema.with_metadata({"version": SCHEMA_VERSION})


def _callsite_to_arrow_row(site: CallSite) -> Dict:
    entry = site.to_manifest_entry()
    return dict(
        event_name=entry.name,
        metric_type=int(entry.metric_type) if entry.metric_type is not None else None,
        type_string=entry.type_string,
        property_keys=list(entry.property_keys),
        filename=site.filename,
        line_no=site.line_no,
        func_name=site.func_name,
        package=site.package,
        schema_version=SCHEMA_VERSION,
    )


def _anomaly_to_arrow_row(a: Anomaly) -> Dict:
    row = a.to_dict()
    row["schema_version"] = SCHEMA_VERSION
    return row


class _RowBuffer:
    """Row buffer -> Arrow Table, column-wise."""

    __slots__ = ("_schema", "_cols", "_count")

    def __init__(self, schema: pa.Schema) -> None:
        self._schema = schema
        self._cols: Dict[str, List] = {f.name: [] for f in schema}
        self._count = 0

    def __bool__(self) -> bool:
        return self._count > 0

    def __len__(self) -> int:
        return self._count

    def add(self, row: Dict) -> None:
        for f in self._schema:
            self._cols[f.name].append(row.get(f.name))
        self._count += 1

    def to_table(self) -> pa.Table:
        arrays = [pa.array(self._cols[f.name], type=f.type) for f in self._schema]
        return pa.Table.from_arrays(arrays, schema=self._schema)

    def clear(self) -> None:
        for k in self._cols:
            self._cols[k].clear()
        self._count = 0
