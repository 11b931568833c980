"""In-memory source and target back-ends for service and API tests.

Both fakes paginate listings and can simulate per-call latency so that
concurrency behaviour is observable.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import TYPE_CHECKING

from spacc.backends.base import ChildrenPage, RemoteEntry, VersionInfo
from spacc.exceptions import BackendError
from spacc.services.path_service import canonical_name, path_segments

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

_ids = itertools.count(1)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids)}"


class _Tree:
    """Folder tree with paginated listings shared by both fakes."""

    def __init__(self, *, page_size: int = 2, latency: float = 0.0) -> None:
        self.page_size = page_size
        self.latency = latency
        self.entries: dict[str, RemoteEntry] = {}
        self.children: dict[str, list[str]] = {}
        self.failing_folders: set[str] = set()
        self.list_calls = 0

    async def _pause(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

    def _add(self, entry: RemoteEntry) -> str:
        self.entries[entry.id] = entry
        if entry.is_folder:
            self.children.setdefault(entry.id, [])
        if entry.parent_id is not None:
            self.children.setdefault(entry.parent_id, []).append(entry.id)
        return entry.id

    async def list_children(
        self, folder_id: str, continuation: str | None = None
    ) -> ChildrenPage:
        await self._pause()
        self.list_calls += 1
        if folder_id in self.failing_folders:
            msg = f"Listing {folder_id} failed"
            raise BackendError(msg, status_code=500)
        ids = self.children.get(folder_id, [])
        start = int(continuation or 0)
        end = start + self.page_size
        page = [self.entries[child_id] for child_id in ids[start:end]]
        return ChildrenPage(entries=page, continuation=str(end) if end < len(ids) else None)


class FakeSource(_Tree):
    """One document library."""

    def __init__(
        self,
        *,
        drive_id: str = "drive-1",
        site_name: str = "Site A",
        root_name: str = "Documents",
        page_size: int = 2,
        latency: float = 0.0,
    ) -> None:
        super().__init__(page_size=page_size, latency=latency)
        self.drive_id = drive_id
        self.site_name = site_name
        self.content: dict[str, bytes] = {}
        self.failing_downloads: set[str] = set()
        self.root_id = self._add(
            RemoteEntry(id=_new_id("sp"), name=root_name, is_folder=True, is_library_root=True)
        )

    def add_folder(self, parent_id: str, name: str) -> str:
        return self._add(
            RemoteEntry(id=_new_id("sp"), name=name, is_folder=True, parent_id=parent_id)
        )

    def add_file(
        self,
        parent_id: str,
        name: str,
        content: bytes = b"",
        *,
        mtime: str | None = "2026-01-01T00:00:00Z",
        content_hash: str | None = None,
        size: int | None = None,
    ) -> str:
        item_id = self._add(
            RemoteEntry(
                id=_new_id("sp"),
                name=name,
                is_folder=False,
                size=len(content) if size is None else size,
                mtime=mtime,
                content_hash=content_hash,
                parent_id=parent_id,
            )
        )
        self.content[item_id] = content
        return item_id

    async def get_root(self) -> RemoteEntry:
        await self._pause()
        return self.entries[self.root_id]

    async def get_item(self, item_id: str) -> RemoteEntry:
        await self._pause()
        try:
            return self.entries[item_id]
        except KeyError:
            msg = f"Item {item_id} not found"
            raise BackendError(msg, status_code=404) from None

    async def get_site_name(self, item_id: str) -> str:
        await self._pause()
        return self.site_name

    async def download_content(self, item_id: str) -> AsyncIterator[bytes]:
        await self._pause()
        if item_id in self.failing_downloads:
            msg = f"Download of {item_id} failed"
            raise BackendError(msg, status_code=503)
        data = self.content[item_id]
        for start in range(0, len(data), 4):
            yield data[start : start + 4]


class FakeTarget(_Tree):
    """One ACC project with a ``Project Files`` top folder."""

    def __init__(
        self,
        *,
        project_id: str = "proj-1",
        page_size: int = 2,
        latency: float = 0.0,
    ) -> None:
        super().__init__(page_size=page_size, latency=latency)
        self.project_id = project_id
        self.top_folder_ids: list[str] = []
        self.versions: dict[str, list[str]] = {}
        self.mtimes: dict[str, str] = {}
        self.storage: dict[str, bytes | None] = {}
        self.failing_tips: set[str] = set()
        self.failing_writes: set[bytes] = set()
        self.created_items: list[tuple[str, str]] = []
        self.created_versions: list[tuple[str, str]] = []
        self.created_folders: list[str] = []
        self._folder_ids: dict[str, str] = {}
        self._folder_lock = asyncio.Lock()
        self.project_files_id = self.add_top_folder("Project Files")

    def add_top_folder(self, name: str) -> str:
        folder_id = self._add(RemoteEntry(id=_new_id("acc-f"), name=name, is_folder=True))
        self.top_folder_ids.append(folder_id)
        return folder_id

    def add_folder(self, parent_id: str, name: str) -> str:
        return self._add(
            RemoteEntry(id=_new_id("acc-f"), name=name, is_folder=True, parent_id=parent_id)
        )

    def add_file(
        self,
        parent_id: str,
        name: str,
        content: bytes = b"",
        *,
        mtime: str = "2026-01-01T00:00:00Z",
    ) -> str:
        storage_id = _new_id("storage")
        self.storage[storage_id] = content
        item_id = self._add(
            RemoteEntry(
                id=_new_id("acc-i"), name=name, is_folder=False, mtime=mtime, parent_id=parent_id
            )
        )
        self.versions[item_id] = [storage_id]
        self.mtimes[item_id] = mtime
        return item_id

    def item_content(self, item_id: str) -> bytes | None:
        return self.storage[self.versions[item_id][-1]]

    def files_by_path(self) -> dict[str, bytes | None]:
        """Current content of every item, keyed by its path from the top folders."""
        result: dict[str, bytes | None] = {}

        def visit(folder_id: str, base: str) -> None:
            for child_id in self.children.get(folder_id, []):
                entry = self.entries[child_id]
                path = f"{base}/{entry.name}"
                if entry.is_folder:
                    visit(child_id, path)
                else:
                    result[path] = self.item_content(child_id)

        for top_id in self.top_folder_ids:
            visit(top_id, "/" + self.entries[top_id].name)
        return result

    async def get_folder(self, folder_id: str) -> RemoteEntry:
        await self._pause()
        return self.entries[folder_id]

    async def get_top_folders(self) -> list[RemoteEntry]:
        await self._pause()
        return [self.entries[folder_id] for folder_id in self.top_folder_ids]

    async def get_tip_version(self, item_id: str) -> VersionInfo:
        await self._pause()
        if item_id in self.failing_tips:
            msg = f"Tip of {item_id} failed"
            raise BackendError(msg, status_code=500)
        content = self.item_content(item_id)
        return VersionInfo(
            size=len(content) if content is not None else None, mtime=self.mtimes.get(item_id)
        )

    async def find_subfolder(self, folder_id: str, name: str) -> str | None:
        await self._pause()
        for child_id in self.children.get(folder_id, []):
            entry = self.entries[child_id]
            if entry.is_folder and canonical_name(entry.name) == canonical_name(name):
                return child_id
        return None

    async def find_item(self, folder_id: str, name: str) -> str | None:
        await self._pause()
        for child_id in self.children.get(folder_id, []):
            entry = self.entries[child_id]
            if not entry.is_folder and canonical_name(entry.name) == canonical_name(name):
                return child_id
        return None

    def remember_folder(self, path: str, folder_id: str) -> None:
        self._folder_ids["/" + "/".join(path_segments(path))] = folder_id

    async def ensure_folder(self, path: str) -> str:
        segments = path_segments(path)
        if not segments:
            msg = "Cannot ensure the empty path"
            raise ValueError(msg)
        canonical = "/" + "/".join(segments)
        async with self._folder_lock:
            cached = self._folder_ids.get(canonical)
            if cached is not None:
                return cached
            folder_id: str | None = None
            for top_id in self.top_folder_ids:
                if canonical_name(self.entries[top_id].name) == segments[0]:
                    folder_id = top_id
            if folder_id is None:
                msg = f"Top folder {segments[0]!r} not found"
                raise BackendError(msg)
            for depth, name in enumerate(segments[1:], start=2):
                child_id = await self.find_subfolder(folder_id, name)
                if child_id is None:
                    child_id = self.add_folder(folder_id, name)
                    self.created_folders.append("/" + "/".join(segments[:depth]))
                folder_id = child_id
            self._folder_ids[canonical] = folder_id
            return folder_id

    async def create_storage(self, folder_id: str, name: str) -> str:
        await self._pause()
        storage_id = _new_id("storage")
        self.storage[storage_id] = None
        return storage_id

    async def write_bytes(self, storage_id: str, local_path: Path) -> None:
        await self._pause()
        content = local_path.read_bytes()
        if content in self.failing_writes:
            msg = "Upload rejected"
            raise BackendError(msg, status_code=400)
        self.storage[storage_id] = content

    async def create_item(self, folder_id: str, name: str, storage_id: str) -> str:
        await self._pause()
        item_id = self._add(
            RemoteEntry(id=_new_id("acc-i"), name=name, is_folder=False, parent_id=folder_id)
        )
        self.versions[item_id] = [storage_id]
        self.created_items.append((folder_id, name))
        return item_id

    async def create_version(self, item_id: str, name: str, storage_id: str) -> str:
        await self._pause()
        self.versions[item_id].append(storage_id)
        self.created_versions.append((item_id, name))
        return f"{item_id}?version={len(self.versions[item_id])}"


class FakeBackendFactory:
    """Hands out the same fakes for every identifier."""

    def __init__(self, source: FakeSource, target: FakeTarget) -> None:
        self.source = source
        self.target = target

    async def source_for_site(self, site_id: str) -> FakeSource:
        return self.source

    def source_for_drive(self, drive_id: str) -> FakeSource:
        return self.source

    def target_for_project(self, project_id: str) -> FakeTarget:
        return self.target
