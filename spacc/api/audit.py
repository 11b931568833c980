"""Audit, report and repair API endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, StreamingResponse

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
from spacc.schemas.audit import (
    AuditReportResponse,
    RepairRequest,
    RepairResponse,
    ReportHeaderResponse,
)
from spacc.services.audit_service import AuditRequest, re_audit, run_audit
from spacc.services.progress_service import (
    AUDIT_PLAN,
    REPAIR_PLAN,
    ProgressChannel,
    ProgressSessionManager,
)
from spacc.services.repair_service import RepairOutcome, repair_report
from spacc.services.report_service import AuditReport, ReportStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audit", tags=["audit"])


def csv_url(report_id: str) -> str:
    return f"/api/audit/report/{report_id}/csv"


def _report_payload(report: AuditReport) -> dict[str, Any]:
    return {**report.to_dict(), "download_url_csv": csv_url(report.report_id)}


def _audit_summary(report: AuditReport) -> dict[str, Any]:
    return {"report_id": report.report_id, **report.summary}


def audit_request_params(
    project_id: Annotated[str, Query(max_length=200)] = "",
    site_id: Annotated[str | None, Query(max_length=500)] = None,
    drive_id: Annotated[str | None, Query(max_length=500)] = None,
    item_id: Annotated[str | None, Query(max_length=500)] = None,
    acc_folder_id: Annotated[str | None, Query(max_length=500)] = None,
    since: Annotated[str | None, Query(max_length=64)] = None,
    hash_policy: Annotated[str, Query(max_length=32)] = "auto",
    dry_run: bool = True,
    with_meta: bool = True,
) -> AuditRequest:
    """Build an audit request from query parameters."""
    return AuditRequest(
        project_id=project_id,
        site_id=site_id,
        drive_id=drive_id,
        item_id=item_id,
        acc_folder_id=acc_folder_id,
        since=since,
        hash_policy=hash_policy,
        dry_run=dry_run,
        with_meta=with_meta,
    )


@router.get("/sp-to-acc", response_model=AuditReportResponse)
async def audit_endpoint(
    audit_request: Annotated[AuditRequest, Depends(audit_request_params)],
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
) -> dict[str, Any]:
    """Run a read-only audit and return the stored report."""
    report = await run_audit(audit_request, backends, store, **audit_options(settings))
    return _report_payload(report)


@router.get("/sp-to-acc/stream")
async def audit_stream_endpoint(
    audit_request: Annotated[AuditRequest, Depends(audit_request_params)],
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> StreamingResponse:
    """Run an audit in the background and stream its progress."""
    audit_request.validate()
    options = audit_options(settings)

    async def operation(channel: ProgressChannel) -> AuditReport:
        return await run_audit(audit_request, backends, store, channel=channel, **options)

    return stream_operation(
        manager, AUDIT_PLAN, operation, to_result=_report_payload, summarize=_audit_summary
    )


@router.get("/reports", response_model=list[ReportHeaderResponse])
async def list_reports_endpoint(
    store: Annotated[ReportStore, Depends(get_report_store)],
) -> list[dict[str, Any]]:
    """List stored reports, newest first."""
    return await asyncio.to_thread(store.list_reports)


@router.get("/report/{report_id}", response_model=AuditReportResponse)
async def get_report_endpoint(
    report_id: str,
    store: Annotated[ReportStore, Depends(get_report_store)],
) -> dict[str, Any]:
    """Return a stored report."""
    report = await asyncio.to_thread(store.get, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return _report_payload(report)


@router.get("/report/{report_id}/csv")
async def get_report_csv_endpoint(
    report_id: str,
    store: Annotated[ReportStore, Depends(get_report_store)],
) -> FileResponse:
    """Download a report's CSV rendition."""
    path = store.csv_path(report_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return FileResponse(
        path,
        media_type="text/csv; charset=utf-8",
        filename=f"{report_id}.csv",
    )


@router.get("/report/{report_id}/re-audit", response_model=AuditReportResponse)
async def re_audit_endpoint(
    report_id: str,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
) -> dict[str, Any]:
    """Audit again with a stored report's parameters; returns the new report."""
    report = await re_audit(report_id, backends, store, **audit_options(settings))
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return _report_payload(report)


def _repair_payload(report_id: str) -> Callable[[RepairOutcome], dict[str, Any]]:
    def to_result(outcome: RepairOutcome) -> dict[str, Any]:
        return {"ok": True, "report_id": report_id, "result": outcome.to_dict()}

    return to_result


def _repair_summary(outcome: RepairOutcome) -> dict[str, Any]:
    return {"total": outcome.total, "ok": outcome.ok, "fail": outcome.fail}


@router.post("/sp-to-acc/repair", response_model=RepairResponse)
async def repair_endpoint(
    body: RepairRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
) -> dict[str, Any]:
    """Repair the rows of a stored report and return the outcome."""
    outcome = await repair_report(
        store,
        backends,
        body.report_id,
        tmp_dir=settings.tmp_dir,
        include_states=body.include_states,
        max_concurrency=body.max_concurrency or settings.repair_max_concurrency,
    )
    return _repair_payload(body.report_id)(outcome)


@router.post("/sp-to-acc/repair/stream")
async def repair_stream_endpoint(
    body: RepairRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ReportStore, Depends(get_report_store)],
    backends: Annotated[BackendFactory, Depends(get_backends)],
    manager: Annotated[ProgressSessionManager, Depends(get_progress_manager)],
) -> StreamingResponse:
    """Repair in the background and stream progress."""
    if await asyncio.to_thread(store.get, body.report_id) is None:
        raise HTTPException(status_code=404, detail="Report not found")

    async def operation(channel: ProgressChannel) -> RepairOutcome:
        return await repair_report(
            store,
            backends,
            body.report_id,
            tmp_dir=settings.tmp_dir,
            include_states=body.include_states,
            max_concurrency=body.max_concurrency or settings.repair_max_concurrency,
            channel=channel,
        )

    return stream_operation(
        manager,
        REPAIR_PLAN,
        operation,
        to_result=_repair_payload(body.report_id),
        summarize=_repair_summary,
    )
