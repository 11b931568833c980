"""Audit reports: model, summary, CSV rendering and the file-backed store."""

from __future__ import annotations

import csv
import io
import json
import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from spacc.services.datetime_service import (
    format_iso,
    format_report_stamp,
    now_utc,
    parse_datetime,
)
from spacc.services.diff_service import DiffRow, DiffState, count_states

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "path",
    "state",
    "src_size",
    "src_hash",
    "src_mtime",
    "dst_size",
    "dst_hash",
    "dst_mtime",
    "action",
    "notes",
)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_REPORT_ID_RE = re.compile(r"^rep_\d{8}T\d{6}_[a-z0-9]{4}$")


def new_report_id(now: datetime | None = None) -> str:
    """Return ``rep_<YYYYMMDDTHHMMSS>_<4 random chars>``; safe as a file name."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"rep_{format_report_stamp(now or now_utc())}_{suffix}"


def is_valid_report_id(report_id: str) -> bool:
    return bool(_REPORT_ID_RE.match(report_id))


@dataclass
class AuditReport:
    """A persisted diff result. Never mutated after it is written."""

    report_id: str
    source: dict[str, Any]
    target: dict[str, Any]
    params: dict[str, Any]
    started_at: str
    finished_at: str
    summary: dict[str, Any]
    items: list[DiffRow] = field(default_factory=list)

    def header(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "source": self.source,
            "target": self.target,
            "params": self.params,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "summary": self.summary,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.header(), "items": [row.to_dict() for row in self.items]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditReport:
        return cls(
            report_id=str(data["report_id"]),
            source=dict(data.get("source") or {}),
            target=dict(data.get("target") or {}),
            params=dict(data.get("params") or {}),
            started_at=str(data.get("started_at") or ""),
            finished_at=str(data.get("finished_at") or ""),
            summary=dict(data.get("summary") or {}),
            items=[DiffRow.from_dict(item) for item in data.get("items") or []],
        )


def build_summary(
    rows: Iterable[DiffRow],
    *,
    bytes_source: int,
    bytes_target: int,
    started_at: datetime,
    finished_at: datetime,
) -> dict[str, Any]:
    rows = list(rows)
    counts = count_states(rows)
    return {
        "scanned": len(rows),
        "ok": counts[DiffState.OK],
        "missing_in_acc": counts[DiffState.MISSING_IN_ACC],
        "size_mismatch": counts[DiffState.SIZE_MISMATCH],
        "hash_mismatch": counts[DiffState.HASH_MISMATCH],
        "mtime_drift": counts[DiffState.MTIME_DRIFT],
        "failures": 0,
        "bytes_source": bytes_source,
        "bytes_target": bytes_target,
        "took_ms": max(0, round((finished_at - started_at).total_seconds() * 1000)),
    }


def build_report(
    *,
    source: dict[str, Any],
    target: dict[str, Any],
    params: dict[str, Any],
    rows: list[DiffRow],
    bytes_source: int,
    bytes_target: int,
    started_at: datetime,
    finished_at: datetime | None = None,
) -> AuditReport:
    """Assemble a report under a freshly generated ID."""
    finished_at = finished_at or now_utc()
    return AuditReport(
        report_id=new_report_id(started_at),
        source=source,
        target=target,
        params=params,
        started_at=format_iso(started_at),
        finished_at=format_iso(finished_at),
        summary=build_summary(
            rows,
            bytes_source=bytes_source,
            bytes_target=bytes_target,
            started_at=started_at,
            finished_at=finished_at,
        ),
        items=rows,
    )


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def render_csv(rows: Iterable[DiffRow]) -> str:
    """Render rows with a fixed column order, every field quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        writer.writerow(
            [
                _cell(row.path),
                _cell(row.state.value),
                _cell(row.src.size),
                _cell(row.src.content_hash),
                _cell(row.src.mtime),
                _cell(row.dst.size),
                _cell(row.dst.content_hash),
                _cell(row.dst.mtime),
                _cell(row.action.value if row.action else None),
                _cell(row.notes),
            ]
        )
    return buffer.getvalue()


class ReportStore(Protocol):
    """Storage for audit reports, keyed by report ID."""

    def put(self, report: AuditReport) -> None:
        """Persist a new report."""
        ...

    def get(self, report_id: str) -> AuditReport | None:
        """Return the report, or None if there is none under that ID."""
        ...

    def csv_path(self, report_id: str) -> Path | None:
        """Return the CSV rendition's location, or None if absent."""
        ...

    def list_reports(self) -> list[dict[str, Any]]:
        """Return report headers, newest first."""
        ...


class FileReportStore:
    """Reports as ``<report_id>.json`` plus ``<report_id>.csv`` in one directory.

    The JSON file is authoritative.  The two files are written one after
    the other; a crash in between leaves a JSON file without its CSV.
    """

    def __init__(self, reports_dir: Path) -> None:
        self.reports_dir = reports_dir
        self.reports_dir.mkdir(parents=True, exist_ok=True)

    def _json_path(self, report_id: str) -> Path:
        return self.reports_dir / f"{report_id}.json"

    def put(self, report: AuditReport) -> None:
        if not is_valid_report_id(report.report_id):
            msg = f"Invalid report ID: {report.report_id!r}"
            raise ValueError(msg)
        json_path = self._json_path(report.report_id)
        if json_path.exists():
            msg = f"Report {report.report_id} already exists"
            raise FileExistsError(msg)
        json_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        (self.reports_dir / f"{report.report_id}.csv").write_text(
            render_csv(report.items), encoding="utf-8"
        )
        logger.info("Stored report %s (%d rows)", report.report_id, len(report.items))

    def get(self, report_id: str) -> AuditReport | None:
        """Load a report. Malformed JSON raises ``json.JSONDecodeError``."""
        if not is_valid_report_id(report_id):
            return None
        json_path = self._json_path(report_id)
        if not json_path.is_file():
            return None
        data = json.loads(json_path.read_text(encoding="utf-8"))
        return AuditReport.from_dict(data)

    def csv_path(self, report_id: str) -> Path | None:
        if not is_valid_report_id(report_id):
            return None
        path = self.reports_dir / f"{report_id}.csv"
        return path if path.is_file() else None

    def list_reports(self) -> list[dict[str, Any]]:
        headers: list[dict[str, Any]] = []
        for json_path in self.reports_dir.glob("rep_*.json"):
            try:
                data = json.loads(json_path.read_text(encoding="utf-8"))
                headers.append(AuditReport.from_dict(data).header())
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable report %s: %s", json_path.name, exc)

        def sort_key(header: dict[str, Any]) -> tuple[float, str]:
            try:
                started = parse_datetime(header["started_at"]).timestamp()
            except ValueError:
                started = 0.0
            return started, header["report_id"]

        headers.sort(key=sort_key, reverse=True)
        return headers
