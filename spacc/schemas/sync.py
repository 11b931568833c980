"""Sync-segment schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from spacc.schemas.audit import RepairOutcomeResponse, ReportSummary


class SyncSegmentRequest(BaseModel):
    """Audit one library segment against its target folder, then repair it."""

    project_id: str = Field(min_length=1)
    drive_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    acc_folder_id: str = Field(min_length=1)
    site_id: str | None = None
    since: str | None = None
    hash_policy: str = "auto"
    max_concurrency: int | None = Field(default=None, ge=1, le=64)


class SyncSegmentResponse(BaseModel):
    report_id: str
    audit_summary: ReportSummary
    repaired: RepairOutcomeResponse | None = None
    download_url_csv: str
