"""Shared test fixtures for the SPACC audit service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from spacc.config import Settings
from spacc.main import create_app
from spacc.services.progress_service import ProgressSessionManager
from spacc.services.report_service import FileReportStore
from tests.fakes import FakeBackendFactory, FakeSource, FakeTarget

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    backends: FakeBackendFactory,
    *,
    progress: ProgressSessionManager | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (report store,
    back-ends, progress sessions) because ASGITransport does not trigger it.
    """
    app: FastAPI = create_app(settings)
    settings.validate_runtime_security()
    settings.tmp_dir.mkdir(parents=True, exist_ok=True)

    app.state.settings = settings
    app.state.report_store = FileReportStore(settings.reports_dir)
    app.state.backends = backends
    manager = progress or ProgressSessionManager.from_settings(settings)
    app.state.progress = manager

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await manager.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        _env_file=None,
        debug=True,
        reports_dir=tmp_path / "reports",
        tmp_dir=tmp_path / "tmp",
        progress_throttle_ms=0,
    )


@pytest.fixture
def report_store(tmp_path: Path) -> FileReportStore:
    return FileReportStore(tmp_path / "reports")


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def backends(source: FakeSource, target: FakeTarget) -> FakeBackendFactory:
    return FakeBackendFactory(source, target)
