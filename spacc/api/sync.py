"""Sync-segment API endpoints: audit one segment and repair it in one call."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from spacc.api.deps import (
    audit_options,
    get_backends,
    get_progress_manager,
    get_report_store,
    get_settings,
)
from spacc.api.streaming import stream_operation
from spacc.backends.base import BackendFactory
from spacc.config import Settings
from spacc.schemas.sync import SyncSegmentRequest, SyncSegmentResponse
from spacc.services.audit_service import AuditRequest
from spacc.services.progress_service import SYNC_PLAN, ProgressChannel, ProgressSessionManager
from spacc.services.report_service import ReportStore
from spacc.services.sync_service import SyncResult, sync_segment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _audit_request(body: SyncSegmentRequest) -> AuditRequest:
    return AuditRequest(
        project_id=body.project_id,
        site_id=body.site_id,
        drive_id=body.drive_id,
        item_id=body.item_id,
        acc_folder_id=body.acc_folder_id,
        since=body.since,
        hash_policy=body.hash_policy,
        dry_run=False,
    )


def _sync_summary(result: SyncResult) -> dict[str, Any]:
    repaired = result.repaired
    return {
        "report_id": result.report.report_id,
        "repaired_ok": repaired.ok if repaired else 0,
        "repaired_fail": repaired.fail if repaired else 0,
    }


@router.post("/segment", response_model=SyncSegmentResponse)
async def sync_segment_endpoint(
    body: SyncSegmentRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
) -> dict[str, Any]:
    """Audit a segment and repair what is missing or different."""
    result = await sync_segment(
        _audit_request(body),
        backends,
        store,
        tmp_dir=settings.tmp_dir,
        max_concurrency=body.max_concurrency or settings.repair_max_concurrency,
        **audit_options(settings),
    )
    return result.to_dict()


@router.post("/segment/stream")
async def sync_segment_stream_endpoint(
    body: SyncSegmentRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> StreamingResponse:
    """Sync a segment in the background and stream progress."""
    audit_request = _audit_request(body)
    audit_request.validate()
    options = audit_options(settings)

    async def operation(channel: ProgressChannel) -> SyncResult:
        return await sync_segment(
            audit_request,
            backends,
            store,
            tmp_dir=settings.tmp_dir,
            max_concurrency=body.max_concurrency or settings.repair_max_concurrency,
            channel=channel,
            **options,
        )

    return stream_operation(
        manager, SYNC_PLAN, operation, to_result=SyncResult.to_dict, summarize=_sync_summary
    )
