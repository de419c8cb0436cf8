"""Response storage - append-only JSON/CSV artifacts per form.

Layout:
  <storage_dir>/<form_key>.json   top-level array, 2-space indented
  <storage_dir>/<form_key>.csv    header row + one row per response
  <storage_dir>/<form_key>.lock   advisory lock serializing writers

Every read-modify-write of an artifact happens while holding the form's
``FileLock``, and files are replaced atomically, so concurrent appends to the
same form (threads or worker processes) never drop a response.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from filelock import FileLock, Timeout
from pydantic import ValidationError as PydanticValidationError

from ..errors import NoResponses, StorageUnavailable
from ..schemas.form import STORAGE_FORMATS
from ..schemas.submission import StoredResponse
from ..security.sanitize import sanitize_filename

logger = logging.getLogger(__name__)

CSV_SPECIALS = (",", '"', "\n", "\r")
MULTI_VALUE_SEPARATOR = "; "
# Leaves room for the ".json"/".lock" suffix within a 255-byte filename.
_MAX_KEY_LENGTH = 240

TIMESTAMP_COLUMN = "timestamp"
# A submitted field named "timestamp" is kept in this CSV column.
DATA_TIMESTAMP_COLUMN = "_field_timestamp"
EXTRA_COLUMN_PREFIX = "_extra_"


@dataclass(frozen=True)
class StorageResult:
    saved: bool
    path: Path
    count: int


def form_key_for(storage_path: str) -> str:
    """Derive the sanitized form key from a declared storage path."""
    name = PurePosixPath((storage_path or "").replace("\\", "/")).name
    stem = name.rsplit(".", 1)[0] if "." in name else name
    key = sanitize_filename(stem).strip(".")
    return key[:_MAX_KEY_LENGTH] or "responses"


def flatten_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return MULTI_VALUE_SEPARATOR.join("" if v is None else str(v) for v in value)
    return str(value)


def escape_csv_value(value: Any) -> str:
    """Quote a cell when it holds a comma, quote or line break; double inner quotes."""
    text = flatten_value(value)
    if any(ch in text for ch in CSV_SPECIALS):
        return '"' + text.replace('"', '""') + '"'
    return text


def unescape_csv_value(cell: str) -> str:
    if len(cell) >= 2 and cell.startswith('"') and cell.endswith('"'):
        return cell[1:-1].replace('""', '"')
    return cell


def csv_line(values: list[Any]) -> str:
    return ",".join(escape_csv_value(v) for v in values) + "\n"


def _data_column(key: str) -> str:
    return DATA_TIMESTAMP_COLUMN if key == TIMESTAMP_COLUMN else key


def _data_key(column: str) -> str:
    return TIMESTAMP_COLUMN if column == DATA_TIMESTAMP_COLUMN else column


def _overflow_cells(header: list[str], cells: list[str]) -> dict[str, str]:
    """Name the cells of a row that run past its header as ``_extra_<position>``."""
    extras: dict[str, str] = {}
    position = len(header)
    for cell in cells[len(header):]:
        position += 1
        name = f"{EXTRA_COLUMN_PREFIX}{position}"
        while name in header or name in extras:
            position += 1
            name = f"{EXTRA_COLUMN_PREFIX}{position}"
        extras[name] = cell
    return extras


def _write_atomic(dest: Path, text: str) -> None:
    """Write *text* next to *dest* and rename it into place."""
    fd = None
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=f"{dest.name}.tmp.", dir=str(dest.parent))
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            fd = None
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, dest)
        tmp_path = None
    finally:
        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                pass
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass


class ResponseStore:
    """Filesystem response store keyed by sanitized form key.

    Callers may append to different forms concurrently; writes to one form
    are serialized through that form's lock file.
    """

    def __init__(self, root_dir: str | Path = "responses", lock_timeout: float = 10.0):
        self.root_dir = Path(root_dir)
        self.lock_timeout = lock_timeout

    # -- paths ---------------------------------------------------------------

    def safe_key(self, form_key: str) -> str:
        key = sanitize_filename(form_key).strip(".")[:_MAX_KEY_LENGTH]
        if not key:
            raise StorageUnavailable(f"Invalid form key: {form_key!r}")
        return key

    def artifact_path(self, form_key: str, fmt: str) -> Path:
        if fmt not in STORAGE_FORMATS:
            raise ValueError(f"unsupported storage format: {fmt}")
        return self.root_dir / f"{self.safe_key(form_key)}.{fmt}"

    def lock_for(self, form_key: str) -> FileLock:
        return FileLock(str(self.root_dir / f"{self.safe_key(form_key)}.lock"), timeout=self.lock_timeout)

    # -- public API ----------------------------------------------------------

    def append(self, form_key: str, response: StoredResponse, fmt: str = "json") -> StorageResult:
        path = self.artifact_path(form_key, fmt)
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            with self.lock_for(form_key):
                if fmt == "json":
                    records = self._read_json(path)
                    records.append(response.to_record())
                    _write_atomic(path, self._dump_json(records))
                    count = len(records)
                else:
                    count = self._append_csv(path, response)
        except Timeout as exc:
            raise StorageUnavailable(f"Timed out waiting for lock on {path.name}") from exc
        except OSError as exc:
            raise StorageUnavailable(f"Could not write {path.name}: {exc}") from exc

        logger.debug("Stored response #%d in %s", count, path)
        return StorageResult(saved=True, path=path, count=count)

    def list(self, form_key: str, fmt: str = "json") -> list[StoredResponse]:
        path = self.artifact_path(form_key, fmt)
        try:
            if fmt == "json":
                records = self._read_json(path)
            else:
                records = self._read_csv_records(path)
        except OSError as exc:
            raise StorageUnavailable(f"Could not read {path.name}: {exc}") from exc
        try:
            return [StoredResponse.model_validate(r) for r in records]
        except PydanticValidationError as exc:
            raise StorageUnavailable(f"Malformed response in {path.name}") from exc

    def count(self, form_key: str, fmt: str = "json") -> int:
        return len(self.list(form_key, fmt))

    def export(self, form_key: str, fmt: str = "csv") -> Path:
        """Re-derive one artifact format from the other and return its path.

        A CSV export's header is the union of keys across every stored
        response, in first-seen order.
        """
        source_fmt = "json" if fmt == "csv" else "csv"
        dest = self.artifact_path(form_key, fmt)
        source = self.artifact_path(form_key, source_fmt)
        if not source.exists():
            raise NoResponses(f"No responses found for form: {form_key}")

        try:
            with self.lock_for(form_key):
                if fmt == "csv":
                    records = self._read_json(source)
                    text = self._render_csv(records)
                else:
                    records = self._read_csv_records(source)
                    text = self._dump_json(records)
                if not records:
                    raise NoResponses("No responses to export")
                _write_atomic(dest, text)
        except Timeout as exc:
            raise StorageUnavailable(f"Timed out waiting for lock on {dest.name}") from exc
        except OSError as exc:
            raise StorageUnavailable(f"Could not export {dest.name}: {exc}") from exc

        logger.info("Exported %d responses to %s", len(records), dest)
        return dest

    def purge(self, form_key: str) -> int:
        """Delete every artifact for a form; returns how many files were removed.

        The lock file is left in place so writers already waiting on it and
        writers arriving later contend for the same lock.
        """
        removed = 0
        lock_path = self.root_dir / f"{self.safe_key(form_key)}.lock"
        if not self.root_dir.is_dir():
            return removed
        try:
            with self.lock_for(form_key):
                for fmt in STORAGE_FORMATS:
                    path = self.artifact_path(form_key, fmt)
                    if path.exists():
                        path.unlink()
                        removed += 1
        except Timeout as exc:
            raise StorageUnavailable(f"Timed out waiting for lock on {lock_path.name}") from exc
        except OSError as exc:
            raise StorageUnavailable(f"Could not purge responses for {form_key}: {exc}") from exc
        return removed

    # -- JSON ------------------------------------------------------------------

    @staticmethod
    def _dump_json(records: list[dict]) -> str:
        return json.dumps(records, indent=2, ensure_ascii=False, default=str) + "\n"

    @staticmethod
    def _read_json(path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise StorageUnavailable(f"{path.name} is not valid UTF-8") from exc
        if not content.strip():
            return []
        try:
            records = json.loads(content)
        except json.JSONDecodeError as exc:
            raise StorageUnavailable(f"{path.name} is not valid JSON") from exc
        if not isinstance(records, list):
            raise StorageUnavailable(f"{path.name} does not hold a response array")
        return records

    # -- CSV -------------------------------------------------------------------

    @staticmethod
    def _read_csv_rows(path: Path) -> tuple[list[str], list[dict[str, str]]]:
        if not path.exists():
            return [], []
        try:
            with path.open("r", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                header = next(reader, [])
                rows = []
                for cells in reader:
                    if not cells:
                        continue
                    row = dict(zip(header, cells))
                    row.update(_overflow_cells(header, cells))
                    rows.append(row)
        except UnicodeDecodeError as exc:
            raise StorageUnavailable(f"{path.name} is not valid UTF-8") from exc
        except csv.Error as exc:
            raise StorageUnavailable(f"{path.name} is not valid CSV: {exc}") from exc
        return header, rows

    def _read_csv_records(self, path: Path) -> list[dict]:
        _, rows = self._read_csv_rows(path)
        records = []
        for row in rows:
            data = {
                _data_key(k): v for k, v in row.items() if k != TIMESTAMP_COLUMN and v != ""
            }
            records.append({"timestamp": row.get(TIMESTAMP_COLUMN, ""), "data": data})
        return records

    def _append_csv(self, path: Path, response: StoredResponse) -> int:
        row = {_data_column(k): flatten_value(v) for k, v in response.data.items()}
        row[TIMESTAMP_COLUMN] = response.timestamp

        header, rows = self._read_csv_rows(path)
        if not header:
            header = [TIMESTAMP_COLUMN, *[k for k in row if k != TIMESTAMP_COLUMN]]
            _write_atomic(path, csv_line(header) + csv_line([row.get(h, "") for h in header]))
            return 1

        new_keys = [k for k in row if k not in header]
        if new_keys:
            # Widen the header and realign existing rows by column name. Cells
            # that ran past the old header keep their generated columns.
            overflow: list[str] = []
            for existing in rows:
                overflow.extend(k for k in existing if k not in header and k not in overflow)
            header = header + overflow + new_keys
            rows.append(row)
            buf = io.StringIO()
            buf.write(csv_line(header))
            for existing in rows:
                buf.write(csv_line([existing.get(h, "") for h in header]))
            _write_atomic(path, buf.getvalue())
            logger.info("Widened CSV header of %s with %s", path.name, ", ".join(overflow + new_keys))
        else:
            with path.open("a", encoding="utf-8", newline="") as f:
                f.write(csv_line([row.get(h, "") for h in header]))
        return len(rows) + (0 if new_keys else 1)

    @staticmethod
    def _render_csv(records: list[dict]) -> str:
        header = [TIMESTAMP_COLUMN]
        for record in records:
            for key in (record.get("data") or {}):
                column = _data_column(key)
                if column not in header:
                    header.append(column)

        buf = io.StringIO()
        buf.write(csv_line(header))
        for record in records:
            data = record.get("data") or {}
            values = [record.get("timestamp", "")] + [data.get(_data_key(h)) for h in header[1:]]
            buf.write(csv_line(values))
        return buf.getvalue()
