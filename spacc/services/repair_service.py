"""Repair executor: re-transfer the files a report flags, with N workers."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from spacc.exceptions import OperationCancelledError, ReportNotFoundError
from spacc.services.diff_service import DiffState
from spacc.services.path_service import split_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from spacc.backends.base import BackendFactory, SourceBackend, TargetBackend
    from spacc.services.diff_service import DiffRow
    from spacc.services.progress_service import ProgressChannel
    from spacc.services.report_service import AuditReport, ReportStore

logger = logging.getLogger(__name__)

DEFAULT_REPAIR_STATES = frozenset(
    {DiffState.MISSING_IN_ACC, DiffState.SIZE_MISMATCH, DiffState.HASH_MISMATCH}
)


@dataclass
class RepairOutcome:
    """Aggregate result of one repair run. ``ok + fail == total`` once finished."""

    total: int = 0
    ok: int = 0
    fail: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "ok": self.ok, "fail": self.fail, "errors": list(self.errors)}


def parse_states(states: Iterable[str] | None) -> frozenset[DiffState]:
    """Validate requested states; None selects the default repairable set."""
    if states is None:
        return DEFAULT_REPAIR_STATES
    parsed: set[DiffState] = set()
    for state in states:
        try:
            parsed.add(DiffState(state))
        except ValueError:
            msg = f"Unknown state: {state!r}"
            raise ValueError(msg) from None
    return frozenset(parsed)


async def download_to_file(source: SourceBackend, item_id: str, local_path: Path) -> int:
    """Stream a source file into ``local_path``; returns the byte count.

    Disk writes run in a worker thread, one chunk at a time.
    """
    written = 0
    with local_path.open("wb") as fh:
        async for chunk in source.download_content(item_id):
            await asyncio.to_thread(fh.write, chunk)
            written += len(chunk)
    return written


async def transfer_file(
    source: SourceBackend, target: TargetBackend, row: DiffRow, tmp_dir: Path
) -> int:
    """Copy one file to its target folder as a new item or a new version.

    The local temporary copy is always removed.  Returns bytes transferred.
    """
    if not row.src.id:
        msg = f"No source item ID recorded for {row.path}"
        raise ValueError(msg)
    folder_path, file_name = split_path(row.path)
    folder_id = await target.ensure_folder(folder_path)

    tmp_path = tmp_dir / f"{secrets.token_hex(8)}.part"
    try:
        size = await download_to_file(source, row.src.id, tmp_path)
        storage_id = await target.create_storage(folder_id, file_name)
        await target.write_bytes(storage_id, tmp_path)
        existing_id = await target.find_item(folder_id, file_name)
        if existing_id is None:
            await target.create_item(folder_id, file_name, storage_id)
        else:
            await target.create_version(existing_id, file_name, storage_id)
    finally:
        tmp_path.unlink(missing_ok=True)
    return size


async def run_repair(
    rows: Sequence[DiffRow],
    source: SourceBackend,
    target: TargetBackend,
    *,
    tmp_dir: Path,
    include_states: Iterable[str] | None = None,
    max_concurrency: int = 4,
    channel: ProgressChannel | None = None,
    step: str = "transferring",
) -> RepairOutcome:
    """Repair every row whose state is selected, best effort.

    Workers share one cursor over the selected rows; each row is claimed by
    exactly one worker.  A failing row is recorded and never stops the
    others.  On cancellation the workers finish their in-flight row and
    ``OperationCancelledError`` carries the partial outcome.
    """
    states = parse_states(include_states)
    selected = [row for row in rows if row.state in states]
    outcome = RepairOutcome(total=len(selected))
    workers = max(1, int(max_concurrency or 1))
    tmp_dir.mkdir(parents=True, exist_ok=True)
    cursor = iter(selected)
    stopped = False
    started = time.monotonic()

    logger.info(
        "Repairing %d of %d rows with %d workers", outcome.total, len(rows), workers
    )

    async def worker() -> None:
        nonlocal stopped
        while True:
            if channel is not None and channel.should_abort():
                stopped = True
                return
            row = next(cursor, None)
            if row is None:
                return
            try:
                size = await transfer_file(source, target, row, tmp_dir)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.warning("Repair of %s failed: %s", row.path, error)
                outcome.fail += 1
                outcome.errors.append({"path": row.path, "error": error})
                if channel is not None:
                    channel.add_non_critical_error(f"{row.path}: {error}")
                    channel.update_stats(files=1)
            else:
                outcome.ok += 1
                if channel is not None:
                    channel.update_stats(bytes_transferred=size, files=1)
            if channel is not None:
                done = outcome.ok + outcome.fail
                channel.progress(
                    step,
                    100 * done / outcome.total,
                    f"Repaired {done} of {outcome.total}",
                    total_items=outcome.total,
                    processed_items=done,
                    current_item=row.path,
                )

    await asyncio.gather(*(worker() for _ in range(workers)))

    logger.info(
        "Repair finished: total=%d ok=%d fail=%d (%.0f ms)",
        outcome.total,
        outcome.ok,
        outcome.fail,
        (time.monotonic() - started) * 1000,
    )
    if stopped:
        raise OperationCancelledError(outcome.to_dict())
    return outcome


async def backends_for_report(
    report: AuditReport, backends: BackendFactory
) -> tuple[SourceBackend, TargetBackend]:
    """Bind source and target back-ends to the report's descriptors."""
    drive_id = report.source.get("drive_id")
    if drive_id:
        source = backends.source_for_drive(drive_id)
    elif report.source.get("site_id"):
        source = await backends.source_for_site(report.source["site_id"])
    else:
        msg = f"Report {report.report_id} has no source library"
        raise ValueError(msg)

    project_id = report.target.get("project_id")
    if not project_id:
        msg = f"Report {report.report_id} has no target project"
        raise ValueError(msg)
    target = backends.target_for_project(project_id)
    root_path = report.target.get("root_path")
    folder_id = report.target.get("acc_folder_id")
    if root_path and folder_id:
        target.remember_folder(root_path, folder_id)
    return source, target


async def repair_report(
    store: ReportStore,
    backends: BackendFactory,
    report_id: str,
    *,
    tmp_dir: Path,
    include_states: Iterable[str] | None = None,
    max_concurrency: int = 4,
    channel: ProgressChannel | None = None,
) -> RepairOutcome:
    """Load a stored report and repair it against its own source and target."""
    states = parse_states(include_states)
    if channel is not None:
        channel.progress("loading", 0, f"Loading report {report_id}", force=True)
    report = await asyncio.to_thread(store.get, report_id)
    if report is None:
        raise ReportNotFoundError(report_id)
    source, target = await backends_for_report(report, backends)
    if channel is not None:
        channel.progress("loading", 100, "Report loaded", force=True)

    outcome = await run_repair(
        report.items,
        source,
        target,
        tmp_dir=tmp_dir,
        include_states=states,
        max_concurrency=max_concurrency,
        channel=channel,
    )
    if channel is not None:
        channel.progress("finalizing", 100, "Repair complete", force=True)
    return outcome
