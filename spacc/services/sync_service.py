"""Sync a segment: audit it, then repair whatever the audit flags."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spacc.services.audit_service import run_audit
from spacc.services.diff_service import DEFAULT_MTIME_TOLERANCE_MS
from spacc.services.repair_service import (
    DEFAULT_REPAIR_STATES,
    RepairOutcome,
    backends_for_report,
    run_repair,
)
from spacc.services.target_path_service import DEFAULT_ROOT_NAMES

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from spacc.backends.base import BackendFactory
    from spacc.services.audit_service import AuditRequest
    from spacc.services.progress_service import ProgressChannel
    from spacc.services.report_service import AuditReport, ReportStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Audit report plus the repair it triggered, if any."""

    report: AuditReport
    repaired: RepairOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report.report_id,
            "audit_summary": self.report.summary,
            "repaired": self.repaired.to_dict() if self.repaired else None,
            "download_url_csv": f"/api/audit/report/{self.report.report_id}/csv",
        }


async def sync_segment(
    request: AuditRequest,
    backends: BackendFactory,
    store: ReportStore,
    *,
    tmp_dir: Path,
    max_concurrency: int = 4,
    tolerance_ms: int = DEFAULT_MTIME_TOLERANCE_MS,
    root_names: Sequence[str] = DEFAULT_ROOT_NAMES,
    max_depth: int = 64,
    channel: ProgressChannel | None = None,
) -> SyncResult:
    """Audit, and repair the default repairable states when any row needs it."""
    report = await run_audit(
        request,
        backends,
        store,
        tolerance_ms=tolerance_ms,
        root_names=root_names,
        max_depth=max_depth,
        channel=channel,
    )
    if not any(row.state in DEFAULT_REPAIR_STATES for row in report.items):
        logger.info("Report %s needs no repair", report.report_id)
        if channel is not None:
            channel.progress("finalizing", 100, "Nothing to repair", force=True)
        return SyncResult(report=report)

    if channel is not None:
        channel.check_cancelled({"report_id": report.report_id})
    source, target = await backends_for_report(report, backends)
    repaired = await run_repair(
        report.items,
        source,
        target,
        tmp_dir=tmp_dir,
        max_concurrency=max_concurrency,
        channel=channel,
    )
    if channel is not None:
        channel.progress("finalizing", 100, "Sync complete", force=True)
    return SyncResult(report=report, repaired=repaired)
