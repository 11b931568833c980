"""Audit and repair schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from spacc.services.diff_service import DiffState


class DiffSideResponse(BaseModel):
    """Metadata of one side of a diff row."""

    size: int | None = None
    hash: str | None = None
    mtime: str | None = None
    id: str | None = None


class DiffRowResponse(BaseModel):
    """One classified source file."""

    path: str
    src: DiffSideResponse
    dst: DiffSideResponse
    state: str
    action: str | None = None
    notes: str = ""


class ReportSummary(BaseModel):
    """Per-state counts and totals of one audit."""

    scanned: int = Field(ge=0)
    ok: int = Field(ge=0)
    missing_in_acc: int = Field(ge=0)
    size_mismatch: int = Field(ge=0)
    hash_mismatch: int = Field(ge=0)
    mtime_drift: int = Field(ge=0)
    failures: int = Field(default=0, ge=0)
    bytes_source: int = Field(default=0, ge=0)
    bytes_target: int = Field(default=0, ge=0)
    took_ms: int = Field(default=0, ge=0)


class ReportHeaderResponse(BaseModel):
    """Report metadata without the rows."""

    report_id: str
    source: dict[str, Any] = Field(default_factory=dict)
    target: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    started_at: str
    finished_at: str
    summary: ReportSummary


class AuditReportResponse(ReportHeaderResponse):
    """Full report with a link to its CSV rendition."""

    items: list[DiffRowResponse] = Field(default_factory=list)
    download_url_csv: str | None = None


class RepairRequest(BaseModel):
    """Request to repair the rows of a stored report."""

    report_id: str = Field(min_length=1, max_length=64)
    include_states: list[str] | None = None
    max_concurrency: int | None = Field(default=None, ge=1, le=64)

    @field_validator("include_states")
    @classmethod
    def states_must_be_known(cls, v: list[str] | None) -> list[str] | None:
        """Reject states a diff never produces."""
        _ = cls
        if v is None:
            return v
        known = {state.value for state in DiffState}
        unknown = [state for state in v if state not in known]
        if unknown:
            raise ValueError(f"Unknown states: {', '.join(unknown)}")
        return v


class RepairErrorEntry(BaseModel):
    path: str
    error: str


class RepairOutcomeResponse(BaseModel):
    """Aggregate repair result."""

    total: int = Field(ge=0)
    ok: int = Field(ge=0)
    fail: int = Field(ge=0)
    errors: list[RepairErrorEntry] = Field(default_factory=list)


class RepairResponse(BaseModel):
    ok: bool = True
    report_id: str
    result: RepairOutcomeResponse
