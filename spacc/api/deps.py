"""Shared API dependencies: settings, report store, back-ends, progress sessions."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from spacc.backends.base import BackendFactory
from spacc.config import Settings
from spacc.services.progress_service import ProgressSessionManager
from spacc.services.report_service import ReportStore


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_report_store(request: Request) -> ReportStore:
    """Get the report store from app state."""
    store: ReportStore = request.app.state.report_store
    return store


def get_backends(request: Request) -> BackendFactory:
    """Get the back-end factory from app state."""
    backends: BackendFactory = request.app.state.backends
    return backends


def get_progress_manager(request: Request) -> ProgressSessionManager:
    """Get the progress session manager from app state."""
    manager: ProgressSessionManager = request.app.state.progress
    return manager


def audit_options(settings: Settings) -> dict[str, Any]:
    """Diff and path-resolution options shared by audit, re-audit and sync."""
    return {
        "tolerance_ms": settings.mtime_tolerance_ms,
        "root_names": tuple(settings.project_files_names),
        "max_depth": settings.folder_chain_max_depth,
    }
