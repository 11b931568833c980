"""Audit orchestration: collect both inventories, diff, persist the report."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spacc.services.datetime_service import now_utc, parse_datetime
from spacc.services.diff_service import DEFAULT_MTIME_TOLERANCE_MS, HashPolicy, build_diff
from spacc.services.inventory_service import (
    InventorySnapshot,
    collect_source_inventory,
    collect_source_segment,
    collect_target_inventory,
    locate_target_subtree,
    map_source_segment,
)
from spacc.services.report_service import build_report
from spacc.services.target_path_service import (
    DEFAULT_ROOT_NAMES,
    find_project_files_folder,
    resolve_target_folder_path,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from spacc.backends.base import BackendFactory
    from spacc.services.progress_service import ProgressChannel
    from spacc.services.report_service import AuditReport, ReportStore

logger = logging.getLogger(__name__)

SEGMENT_MODE = "segment"
SITE_MODE = "site"


@dataclass(frozen=True)
class AuditRequest:
    """What to compare.

    Segment mode needs ``drive_id``, ``item_id`` and ``acc_folder_id``;
    site mode needs ``site_id``.  ``project_id`` is always required.
    """

    project_id: str = ""
    site_id: str | None = None
    drive_id: str | None = None
    item_id: str | None = None
    acc_folder_id: str | None = None
    since: str | None = None
    hash_policy: str = HashPolicy.AUTO
    dry_run: bool = True
    with_meta: bool = True

    @property
    def mode(self) -> str:
        if self.drive_id and self.item_id and self.acc_folder_id:
            return SEGMENT_MODE
        return SITE_MODE

    def validate(self) -> tuple[HashPolicy, datetime | None]:
        """Reject incomplete requests before any I/O.

        Returns the parsed hash policy and ``since`` cutoff.
        """
        if not self.project_id:
            msg = "project_id is required"
            raise ValueError(msg)
        if self.mode != SEGMENT_MODE and not self.site_id:
            msg = "Either drive_id, item_id and acc_folder_id, or site_id is required"
            raise ValueError(msg)
        try:
            policy = HashPolicy(self.hash_policy)
        except ValueError:
            msg = f"Unknown hash policy: {self.hash_policy!r}"
            raise ValueError(msg) from None
        since = parse_datetime(self.since) if self.since else None
        return policy, since

    def params(self, policy: HashPolicy, tolerance_ms: int) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "since": self.since,
            "hash_policy": policy.value,
            "with_meta": self.with_meta,
            "mtime_tolerance_ms": tolerance_ms,
        }

    @classmethod
    def from_report(cls, report: AuditReport) -> AuditRequest:
        """Rebuild the request that produced a stored report."""
        params = report.params
        segment = params.get("mode") == SEGMENT_MODE
        return cls(
            project_id=report.target.get("project_id") or "",
            site_id=report.source.get("site_id"),
            drive_id=report.source.get("drive_id") if segment else None,
            item_id=report.source.get("item_id") if segment else None,
            acc_folder_id=report.target.get("acc_folder_id"),
            since=params.get("since"),
            hash_policy=params.get("hash_policy") or HashPolicy.AUTO,
            dry_run=bool(params.get("dry_run", True)),
            with_meta=bool(params.get("with_meta", True)),
        )


@dataclass(frozen=True)
class _Collected:
    source: InventorySnapshot
    target: InventorySnapshot
    source_descriptor: dict[str, Any]
    target_descriptor: dict[str, Any]


async def _collect_segment(
    request: AuditRequest,
    backends: BackendFactory,
    *,
    since: datetime | None,
    root_names: Sequence[str],
    max_depth: int,
    channel: ProgressChannel | None,
) -> _Collected:
    assert request.drive_id and request.item_id and request.acc_folder_id
    source = backends.source_for_drive(request.drive_id)
    target = backends.target_for_project(request.project_id)

    anchor_path = await resolve_target_folder_path(
        target, request.acc_folder_id, root_names=root_names, max_depth=max_depth
    )
    mapping = await map_source_segment(source, request.item_id, anchor_path)
    source_snapshot = await collect_source_segment(
        source,
        request.item_id,
        mapping,
        since=since,
        with_meta=request.with_meta,
        channel=channel,
    )

    subtree_id = await locate_target_subtree(target, request.acc_folder_id, mapping)
    if subtree_id is None:
        target_snapshot = InventorySnapshot(root=mapping.prefix)
        if channel is not None:
            channel.progress("target_inventory", 100, "Target folder not created yet", force=True)
    else:
        target_snapshot = await collect_target_inventory(
            target,
            subtree_id,
            start_path=mapping.prefix,
            with_meta=request.with_meta,
            channel=channel,
        )
    return _Collected(
        source=source_snapshot,
        target=target_snapshot,
        source_descriptor={
            "type": "sharepoint",
            "site_id": request.site_id,
            "drive_id": request.drive_id,
            "item_id": request.item_id,
        },
        target_descriptor={
            "type": "acc",
            "project_id": request.project_id,
            "acc_folder_id": request.acc_folder_id,
            "root_path": anchor_path,
        },
    )


async def _collect_site(
    request: AuditRequest,
    backends: BackendFactory,
    *,
    since: datetime | None,
    root_names: Sequence[str],
    max_depth: int,
    channel: ProgressChannel | None,
) -> _Collected:
    assert request.site_id
    source = await backends.source_for_site(request.site_id)
    target = backends.target_for_project(request.project_id)

    folder_id = request.acc_folder_id or await find_project_files_folder(
        target, root_names=root_names
    )
    if not folder_id:
        msg = f"No Project Files folder found in project {request.project_id}"
        raise ValueError(msg)
    root_path = await resolve_target_folder_path(
        target, folder_id, root_names=root_names, max_depth=max_depth
    )
    root = await source.get_root()
    source_snapshot = await collect_source_inventory(
        source,
        root.id,
        prefix=root_path,
        since=since,
        with_meta=request.with_meta,
        channel=channel,
    )
    target_snapshot = await collect_target_inventory(
        target,
        folder_id,
        start_path=root_path,
        with_meta=request.with_meta,
        channel=channel,
    )
    return _Collected(
        source=source_snapshot,
        target=target_snapshot,
        source_descriptor={
            "type": "sharepoint",
            "site_id": request.site_id,
            "drive_id": source.drive_id,
            "item_id": root.id,
        },
        target_descriptor={
            "type": "acc",
            "project_id": request.project_id,
            "acc_folder_id": folder_id,
            "root_path": root_path,
        },
    )


async def run_audit(
    request: AuditRequest,
    backends: BackendFactory,
    store: ReportStore,
    *,
    tolerance_ms: int = DEFAULT_MTIME_TOLERANCE_MS,
    root_names: Sequence[str] = DEFAULT_ROOT_NAMES,
    max_depth: int = 64,
    channel: ProgressChannel | None = None,
) -> AuditReport:
    """Run one read-only audit and persist its report."""
    policy, since = request.validate()
    started_at = now_utc()
    logger.info(
        "Audit started: mode=%s project=%s site=%s drive=%s item=%s folder=%s policy=%s",
        request.mode,
        request.project_id,
        request.site_id,
        request.drive_id,
        request.item_id,
        request.acc_folder_id,
        policy,
    )

    collect = _collect_segment if request.mode == SEGMENT_MODE else _collect_site
    collected = await collect(
        request,
        backends,
        since=since,
        root_names=root_names,
        max_depth=max_depth,
        channel=channel,
    )

    if channel is not None:
        channel.check_cancelled()
        channel.progress("diff", 0, "Comparing inventories", force=True)
    rows = build_diff(collected.source, collected.target, policy, tolerance_ms=tolerance_ms)
    if channel is not None:
        channel.progress("diff", 100, f"{len(rows)} rows classified", force=True)
        channel.check_cancelled()
        channel.progress("report", 0, "Writing report", force=True)

    report = build_report(
        source=collected.source_descriptor,
        target=collected.target_descriptor,
        params=request.params(policy, tolerance_ms),
        rows=rows,
        bytes_source=collected.source.total_bytes,
        bytes_target=collected.target.total_bytes,
        started_at=started_at,
    )
    await asyncio.to_thread(store.put, report)
    if channel is not None:
        channel.progress("report", 100, f"Report {report.report_id} written", force=True)

    summary = report.summary
    logger.info(
        "Audit %s finished: scanned=%d ok=%d missing=%d size=%d hash=%d drift=%d in %d ms",
        report.report_id,
        summary["scanned"],
        summary["ok"],
        summary["missing_in_acc"],
        summary["size_mismatch"],
        summary["hash_mismatch"],
        summary["mtime_drift"],
        summary["took_ms"],
    )
    return report


async def re_audit(
    report_id: str,
    backends: BackendFactory,
    store: ReportStore,
    *,
    tolerance_ms: int = DEFAULT_MTIME_TOLERANCE_MS,
    root_names: Sequence[str] = DEFAULT_ROOT_NAMES,
    max_depth: int = 64,
    channel: ProgressChannel | None = None,
) -> AuditReport | None:
    """Audit again with a stored report's parameters.

    Returns a brand-new report, or None when ``report_id`` is unknown.
    """
    previous = await asyncio.to_thread(store.get, report_id)
    if previous is None:
        return None
    logger.info("Re-auditing report %s", report_id)
    return await run_audit(
        AuditRequest.from_report(previous),
        backends,
        store,
        tolerance_ms=tolerance_ms,
        root_names=root_names,
        max_depth=max_depth,
        channel=channel,
    )
