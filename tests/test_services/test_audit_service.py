"""Tests for audit orchestration in segment and site modes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from spacc.exceptions import InventoryError
from spacc.services.audit_service import (
    SEGMENT_MODE,
    SITE_MODE,
    AuditRequest,
    re_audit,
    run_audit,
)
from spacc.services.diff_service import DiffState, HashPolicy
from spacc.services.progress_service import AUDIT_PLAN, ProgressSessionManager

if TYPE_CHECKING:
    from spacc.services.report_service import FileReportStore
    from tests.fakes import FakeBackendFactory, FakeSource, FakeTarget


def _segment_fixture(source: FakeSource, target: FakeTarget) -> AuditRequest:
    drawings = source.add_folder(source.root_id, "Drawings")
    source.add_file(drawings, "plan.dwg", b"plan-v2")
    source.add_file(drawings, "same.pdf", b"same")
    level = source.add_folder(drawings, "Level 1")
    source.add_file(level, "new.txt", b"new")

    site = target.add_folder(target.project_files_id, "Site A")
    target_drawings = target.add_folder(site, "Drawings")
    target.add_file(target_drawings, "plan.dwg", b"plan")
    target.add_file(target_drawings, "same.pdf", b"same")
    target.add_file(target_drawings, "extra.txt", b"only in target")

    return AuditRequest(
        project_id="proj-1",
        drive_id=source.drive_id,
        item_id=drawings,
        acc_folder_id=target.project_files_id,
    )


class TestAuditRequest:
    def test_modes(self) -> None:
        assert AuditRequest(project_id="p", site_id="s").mode == SITE_MODE
        assert (
            AuditRequest(project_id="p", drive_id="d", item_id="i", acc_folder_id="f").mode
            == SEGMENT_MODE
        )
        assert AuditRequest(project_id="p", drive_id="d", site_id="s").mode == SITE_MODE

    def test_requires_project(self) -> None:
        with pytest.raises(ValueError, match="project_id is required"):
            AuditRequest(site_id="s").validate()

    def test_requires_site_or_segment(self) -> None:
        with pytest.raises(ValueError, match="Either drive_id"):
            AuditRequest(project_id="p", drive_id="d").validate()

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValueError, match="Unknown hash policy"):
            AuditRequest(project_id="p", site_id="s", hash_policy="md5").validate()

    def test_bad_since(self) -> None:
        with pytest.raises(ValueError):
            AuditRequest(project_id="p", site_id="s", since="not a date").validate()

    def test_validate_parses(self) -> None:
        policy, since = AuditRequest(
            project_id="p", site_id="s", since="2026-01-01", hash_policy="size_only"
        ).validate()
        assert policy is HashPolicy.SIZE_ONLY
        assert since is not None
        assert since.year == 2026


class TestSegmentAudit:
    async def test_classifies_and_persists(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        request = _segment_fixture(source, target)

        report = await run_audit(request, backends, report_store)

        states = {row.path: row.state for row in report.items}
        prefix = "/Project Files/Site A/Drawings"
        assert states == {
            f"{prefix}/Level 1/new.txt": DiffState.MISSING_IN_ACC,
            f"{prefix}/plan.dwg": DiffState.SIZE_MISMATCH,
            f"{prefix}/same.pdf": DiffState.OK,
        }
        assert report.summary["scanned"] == 3
        assert report.summary["missing_in_acc"] == 1
        assert report.summary["bytes_source"] == len(b"plan-v2") + len(b"same") + len(b"new")
        assert report.source["drive_id"] == source.drive_id
        assert report.target["root_path"] == "/Project Files"
        assert report.target["acc_folder_id"] == target.project_files_id
        assert report.params["mode"] == SEGMENT_MODE
        assert report.params["dry_run"] is True
        assert report.params["mtime_tolerance_ms"] == 2000

        stored = report_store.get(report.report_id)
        assert stored is not None
        assert stored.to_dict() == report.to_dict()

    async def test_target_folder_not_created_yet(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        source.add_file(source.root_id, "a.txt", b"a")
        request = AuditRequest(
            project_id="proj-1",
            drive_id=source.drive_id,
            item_id=source.root_id,
            acc_folder_id=target.project_files_id,
        )

        report = await run_audit(request, backends, report_store)

        assert [(row.path, row.state) for row in report.items] == [
            ("/Project Files/Site A/a.txt", DiffState.MISSING_IN_ACC)
        ]
        assert report.summary["bytes_target"] == 0

    async def test_progress_reaches_report_step(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        manager = ProgressSessionManager(throttle_ms=0)
        channel = manager.open(AUDIT_PLAN)
        await run_audit(_segment_fixture(source, target), backends, report_store, channel=channel)
        assert channel.current_step == "report"
        await manager.close()

    async def test_listing_failure_writes_no_report(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        request = _segment_fixture(source, target)
        target.failing_folders.add(target.project_files_id)
        source.failing_folders.add(request.item_id or "")
        with pytest.raises(InventoryError, match="Listing"):
            await run_audit(request, backends, report_store)
        assert report_store.list_reports() == []


class TestSiteAudit:
    async def test_whole_library_under_project_files(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        source.add_file(source.root_id, "a.txt", b"abc")
        docs = source.add_folder(source.root_id, "docs")
        source.add_file(docs, "b.txt", b"b")
        target.add_file(target.project_files_id, "a.txt", b"abc")

        report = await run_audit(
            AuditRequest(project_id="proj-1", site_id="site-1"), backends, report_store
        )

        assert {row.path: row.state for row in report.items} == {
            "/Project Files/a.txt": DiffState.OK,
            "/Project Files/docs/b.txt": DiffState.MISSING_IN_ACC,
        }
        assert report.source["site_id"] == "site-1"
        assert report.source["drive_id"] == source.drive_id
        assert report.target["acc_folder_id"] == target.project_files_id
        assert report.params["mode"] == SITE_MODE

    async def test_no_project_files_folder(
        self,
        backends: FakeBackendFactory,
        target: FakeTarget,
        report_store: FileReportStore,
    ) -> None:
        target.top_folder_ids.clear()
        with pytest.raises(ValueError, match="No Project Files folder"):
            await run_audit(
                AuditRequest(project_id="proj-1", site_id="site-1"), backends, report_store
            )

    async def test_since_and_without_meta(
        self,
        source: FakeSource,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        source.add_file(source.root_id, "old.txt", b"o", mtime="2024-01-01T00:00:00Z")
        source.add_file(source.root_id, "new.txt", b"n", mtime="2026-06-01T00:00:00Z")

        report = await run_audit(
            AuditRequest(
                project_id="proj-1", site_id="site-1", since="2026-01-01", with_meta=False
            ),
            backends,
            report_store,
        )

        assert [row.path for row in report.items] == ["/Project Files/new.txt"]
        assert report.items[0].src.size is None
        assert report.params["with_meta"] is False
        assert report.params["since"] == "2026-01-01"


class TestReAudit:
    async def test_new_report_with_same_parameters(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        request = AuditRequest(project_id="proj-1", site_id="site-1", hash_policy="size_only")
        source.add_file(source.root_id, "a.txt", b"abc")
        first = await run_audit(request, backends, report_store)
        target.add_file(target.project_files_id, "a.txt", b"abc")

        second = await re_audit(first.report_id, backends, report_store)

        assert second is not None
        assert second.report_id != first.report_id
        assert second.params == first.params
        assert [row.state for row in second.items] == [DiffState.OK]
        assert len(report_store.list_reports()) == 2

    async def test_segment_parameters_survive(
        self,
        source: FakeSource,
        target: FakeTarget,
        backends: FakeBackendFactory,
        report_store: FileReportStore,
    ) -> None:
        request = _segment_fixture(source, target)
        first = await run_audit(request, backends, report_store)
        rebuilt = AuditRequest.from_report(first)
        assert rebuilt == request

    async def test_unknown_report(
        self, backends: FakeBackendFactory, report_store: FileReportStore
    ) -> None:
        assert await re_audit("rep_20260101T000000_gone", backends, report_store) is None
