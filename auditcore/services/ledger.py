"""Text ledger and spreadsheet exports for audit logs.

Layout under the logs root::

    combined.txt                      one line per audit entry, append-only
    README.md, .gitkeep               static scaffolding
    YYYY-MM-DD/audit_logs_<ts>.xlsx   one workbook per export
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter

from auditcore.utils.audit import format_json_cell
from auditcore.utils.time import utc_today, utcnow

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "combined.txt"
EXPORT_PREFIX = "audit_logs_"
EXPORT_SUFFIX = ".xlsx"
DETAIL_SHEET = "Audit Logs"
SUMMARY_SHEET = "Summary"
MAX_COLUMN_WIDTH = 50
MAX_CELL_CHARS = 32767

DAY_DIR_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

LEDGER_HEADER = (
    "# Audit Logs Combined File\n"
    "# This file contains a summary of all audit log activities\n"
    "# Generated on: {generated}\n"
    "# Format: [Timestamp] Operation on Table by User (Record ID) - Status: Response Status\n"
    "\n"
)

README_TEXT = (
    "# Audit logs\n\n"
    "- `combined.txt`: append-only ledger, one line per audit entry.\n"
    "- `YYYY-MM-DD/`: spreadsheet exports for that day (pruned after the retention window).\n"
)

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("ID", "id"),
    ("User ID", "user_id"),
    ("User Email", "user_email"),
    ("User Name", "user_name"),
    ("Operation", "operation_type"),
    ("Table", "table_name"),
    ("Record ID", "record_id"),
    ("Old Values", "old_values"),
    ("New Values", "new_values"),
    ("Changed Fields", "changed_fields"),
    ("IP Address", "ip_address"),
    ("User Agent", "user_agent"),
    ("Request Method", "request_method"),
    ("Request URL", "request_url"),
    ("Response Status", "response_status"),
    ("Execution Time (ms)", "execution_time_ms"),
    ("Error Message", "error_message"),
    ("Session ID", "session_id"),
    ("Transaction ID", "transaction_id"),
    ("Created At", "created_at"),
)
_JSON_COLUMNS = {"old_values", "new_values", "changed_fields"}

# Ledger instances writing the same file share one lock.
_path_locks: dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()

# Anything str.splitlines() would break on, plus the other C0/C1 controls.
_LINE_BREAKING_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\u2028\u2029]")


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.Lock())


class EmptyExportError(ValueError):
    """Raised when an export is requested for an empty batch."""


class RecordSource(Protocol):
    def created_on(self, day: date, *, limit: int = ...) -> Sequence[Any]:
        ...


@dataclass(frozen=True)
class ExportResult:
    filename: str
    filepath: Path
    date_dir: Path
    record_count: int
    export_date: datetime
    ledger_path: Path


@dataclass(frozen=True)
class ExportFileInfo:
    filename: str
    filepath: Path
    size: int
    created: datetime
    modified: datetime


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def _timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value is not None else utcnow().isoformat()


def _escape_controls(value: Any) -> str:
    return _LINE_BREAKING_RE.sub(
        lambda match: match.group().encode("unicode_escape").decode("ascii"), str(value)
    )


def format_ledger_line(record: Any) -> str:
    """``[timestamp] OPERATION on table by email (record_id) - Status: status``.

    Control characters in any field are written as escapes, so a record
    always occupies exactly one line.
    """

    fields = {
        "ts": _timestamp(_field(record, "created_at")),
        "op": _text(_field(record, "operation_type")) or "UNKNOWN",
        "table": _field(record, "table_name") or "unknown",
        "user": _field(record, "user_email") or "Unknown",
        "record_id": _field(record, "record_id") or "N/A",
        "status": _field(record, "response_status") or "N/A",
    }
    return "[{ts}] {op} on {table} by {user} ({record_id}) - Status: {status}".format(
        **{key: _escape_controls(value) for key, value in fields.items()}
    )


def _clean_cell_text(text: str) -> str:
    return ILLEGAL_CHARACTERS_RE.sub("", text)[:MAX_CELL_CHARS]


def _cell_value(record: Any, attr: str) -> Any:
    value = _field(record, attr)
    if attr in _JSON_COLUMNS:
        return _clean_cell_text(format_json_cell(value))
    if value is None:
        return "N/A"
    if isinstance(value, datetime):
        # Excel cells cannot carry a timezone.
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    try:
        text = _text(value) or ""
    except Exception:  # noqa: BLE001
        text = repr(value)
    return _clean_cell_text(text)


class AuditLedger:
    """Owns the logs root: the combined ledger and the daily export buckets."""

    def __init__(self, logs_root: str | os.PathLike[str]) -> None:
        self.logs_root = Path(logs_root)
        self.ledger_path = self.logs_root / LEDGER_FILENAME
        self._lock = _lock_for(self.ledger_path)

    # -- scaffolding -----------------------------------------------------

    def ensure_logs_root(self) -> Path:
        """Create the root, scaffolding files and ledger header if missing."""

        self.logs_root.mkdir(parents=True, exist_ok=True)
        (self.logs_root / ".gitkeep").touch(exist_ok=True)
        readme = self.logs_root / "README.md"
        if not readme.exists():
            readme.write_text(README_TEXT, encoding="utf-8")
        try:
            with self.ledger_path.open("x", encoding="utf-8") as handle:
                handle.write(LEDGER_HEADER.format(generated=utcnow().isoformat()))
        except FileExistsError:
            pass
        return self.logs_root

    def day_dir(self, day: date | None = None) -> Path:
        """Return the bucket directory for ``day``, creating it if needed."""

        target = self.logs_root / (day or utc_today()).isoformat()
        target.mkdir(parents=True, exist_ok=True)
        return target

    # -- ledger ----------------------------------------------------------

    def append_to_ledger(self, records: Iterable[Any]) -> Path:
        """Append one line per record as a single write."""

        lines = [format_ledger_line(record) for record in records]
        if not lines:
            return self.ledger_path
        payload = "\n".join(lines) + "\n"
        with self._lock:
            self.ensure_logs_root()
            with self.ledger_path.open("a", encoding="utf-8") as handle:
                handle.write(payload)
        logger.info("Ledger updated", extra={"lines": len(lines), "path": str(self.ledger_path)})
        return self.ledger_path

    def read_ledger(self, lines: int | None = None) -> str:
        """Return the ledger content, or only its last ``lines`` lines."""

        if not self.ledger_path.exists():
            return ""
        content = self.ledger_path.read_text(encoding="utf-8")
        if lines:
            return "\n".join(content.splitlines()[-lines:])
        return content

    # -- spreadsheets ----------------------------------------------------

    def export_to_spreadsheet(
        self,
        records: Sequence[Any],
        filters: Mapping[str, Any] | None = None,
    ) -> ExportResult:
        """Write ``records`` to a new workbook in today's bucket."""

        if not records:
            raise EmptyExportError("No audit logs provided for export")

        self.ensure_logs_root()
        exported_at = utcnow()
        workbook = Workbook()
        self._write_detail_sheet(workbook.active, records)
        self._write_summary_sheet(workbook.create_sheet(SUMMARY_SHEET), records, filters or {}, exported_at)

        date_dir = self.day_dir(exported_at.date())
        stamp = exported_at.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")
        filename = f"{EXPORT_PREFIX}{stamp}{EXPORT_SUFFIX}"
        filepath = date_dir / filename
        workbook.save(filepath)

        ledger_path = self.append_to_ledger(records)
        logger.info(
            "Audit export written",
            extra={"filename": filename, "records": len(records), "date_dir": str(date_dir)},
        )
        return ExportResult(
            filename=filename,
            filepath=filepath,
            date_dir=date_dir,
            record_count=len(records),
            export_date=exported_at,
            ledger_path=ledger_path,
        )

    def _write_detail_sheet(self, sheet, records: Sequence[Any]) -> None:
        sheet.title = DETAIL_SHEET
        headers = [header for header, _ in EXPORT_COLUMNS]
        sheet.append(headers)
        widths = [len(header) for header in headers]
        for record in records:
            row = [_cell_value(record, attr) for _, attr in EXPORT_COLUMNS]
            sheet.append(row)
            for index, value in enumerate(row):
                longest = max((len(part) for part in str(value).splitlines()), default=0)
                widths[index] = max(widths[index], longest)
        for index, width in enumerate(widths, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = min(width + 2, MAX_COLUMN_WIDTH)
        sheet.auto_filter.ref = sheet.dimensions
        sheet.freeze_panes = "A2"

    def _write_summary_sheet(
        self,
        sheet,
        records: Sequence[Any],
        filters: Mapping[str, Any],
        exported_at: datetime,
    ) -> None:
        sheet.append(["Metric", "Value"])
        sheet.append(["Export Date", exported_at.isoformat()])
        sheet.append(["Total Records", len(records)])

        operations = Counter(_text(_field(record, "operation_type")) for record in records)
        for operation, count in operations.items():
            sheet.append([f"{operation} Operations", count])

        tables = Counter(_field(record, "table_name") for record in records)
        for table, count in tables.most_common(10):
            sheet.append([f"Table: {table}", count])

        if filters:
            sheet.append(["Filters Applied", format_json_cell(dict(filters))])
        sheet.column_dimensions["A"].width = 30
        sheet.column_dimensions["B"].width = MAX_COLUMN_WIDTH

    def run_daily_export(self, store: RecordSource, *, max_rows: int = 10000) -> ExportResult | None:
        """Export today's audit logs; ``None`` when there is nothing to export."""

        today = utc_today()
        records = store.created_on(today, limit=max_rows)
        if not records:
            logger.info("No audit logs for today, skipping daily export", extra={"day": today.isoformat()})
            return None
        return self.export_to_spreadsheet(records, {"start_date": today.isoformat(), "end_date": today.isoformat()})

    # -- listing / retention ---------------------------------------------

    def list_exports_for_date(self, day: date | str | None = None) -> list[ExportFileInfo]:
        """Return workbook details for one day bucket, newest first."""

        target = _parse_day(day)
        day_path = self.logs_root / target.isoformat()
        if not day_path.is_dir():
            return []

        files: list[ExportFileInfo] = []
        for path in day_path.iterdir():
            if not (path.is_file() and path.name.startswith(EXPORT_PREFIX) and path.name.endswith(EXPORT_SUFFIX)):
                continue
            stat = path.stat()
            files.append(
                ExportFileInfo(
                    filename=path.name,
                    filepath=path,
                    size=stat.st_size,
                    created=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                )
            )
        return sorted(files, key=lambda info: (info.modified, info.filename), reverse=True)

    def resolve_export(self, filename: str, day: date | str | None = None) -> Path:
        """Return the path of an existing workbook or raise ``FileNotFoundError``."""

        target = _parse_day(day)
        if (
            Path(filename).name != filename
            or not filename.startswith(EXPORT_PREFIX)
            or not filename.endswith(EXPORT_SUFFIX)
        ):
            raise FileNotFoundError(filename)
        path = self.logs_root / target.isoformat() / filename
        if not path.is_file():
            raise FileNotFoundError(filename)
        return path

    def prune_older_than(self, days: int) -> int:
        """Remove day buckets older than ``days`` days; return how many went."""

        if not self.logs_root.is_dir():
            return 0
        cutoff = utc_today() - timedelta(days=days)
        removed = 0
        for entry in sorted(self.logs_root.iterdir()):
            if not entry.is_dir() or not DAY_DIR_RE.match(entry.name):
                continue
            try:
                bucket_day = date.fromisoformat(entry.name)
            except ValueError:
                continue
            if bucket_day < cutoff:
                shutil.rmtree(entry)
                removed += 1
                logger.info("Deleted old export directory", extra={"directory": entry.name})
        return removed


def _parse_day(day: date | str | None) -> date:
    if day is None:
        return utc_today()
    if isinstance(day, date):
        return day
    if not DAY_DIR_RE.match(day):
        raise ValueError(f"invalid day {day!r}, expected YYYY-MM-DD")
    return date.fromisoformat(day)


__all__ = [
    "AuditLedger",
    "EXPORT_COLUMNS",
    "EmptyExportError",
    "ExportFileInfo",
    "ExportResult",
    "LEDGER_FILENAME",
    "format_ledger_line",
]
