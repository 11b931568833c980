"""Base protocols and data classes for the two storage back-ends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@dataclass(frozen=True)
class RemoteEntry:
    """A file or folder as reported by a back-end listing."""

    id: str
    name: str
    is_folder: bool
    size: int | None = None
    mtime: str | None = None
    content_hash: str | None = None
    parent_id: str | None = None
    is_library_root: bool = False


@dataclass(frozen=True)
class ChildrenPage:
    """One page of a folder listing plus the continuation token, if any."""

    entries: list[RemoteEntry] = field(default_factory=list)
    continuation: str | None = None


@dataclass(frozen=True)
class VersionInfo:
    """Metadata of the current version of a target item."""

    size: int | None = None
    mtime: str | None = None
    content_hash: str | None = None


@runtime_checkable
class SourceBackend(Protocol):
    """Read-only access to one document library (drive)."""

    drive_id: str

    async def get_root(self) -> RemoteEntry:
        """Return the root folder of the library."""
        ...

    async def get_item(self, item_id: str) -> RemoteEntry:
        """Return metadata for a single file or folder."""
        ...

    async def get_site_name(self, item_id: str) -> str:
        """Return the display name of the site that owns the item."""
        ...

    async def list_children(
        self, folder_id: str, continuation: str | None = None
    ) -> ChildrenPage:
        """Return one page of the folder's children."""
        ...

    def download_content(self, item_id: str) -> AsyncIterator[bytes]:
        """Stream the file's bytes."""
        ...


@runtime_checkable
class TargetBackend(Protocol):
    """Read/write access to one construction-document-management project."""

    project_id: str

    async def get_folder(self, folder_id: str) -> RemoteEntry:
        """Return folder metadata including its parent ID."""
        ...

    async def get_top_folders(self) -> list[RemoteEntry]:
        """Return the project's top-level folders."""
        ...

    async def list_children(
        self, folder_id: str, continuation: str | None = None
    ) -> ChildrenPage:
        """Return one page of the folder's children."""
        ...

    async def get_tip_version(self, item_id: str) -> VersionInfo:
        """Return metadata of the item's current version."""
        ...

    def remember_folder(self, path: str, folder_id: str) -> None:
        """Record a known path -> folder mapping used by ``ensure_folder``."""
        ...

    async def ensure_folder(self, path: str) -> str:
        """Return the folder ID for ``path``, creating missing folders."""
        ...

    async def find_subfolder(self, folder_id: str, name: str) -> str | None:
        """Return the ID of the direct subfolder named ``name``, if present."""
        ...

    async def find_item(self, folder_id: str, name: str) -> str | None:
        """Return the ID of the item named ``name`` in the folder, if present."""
        ...

    async def create_storage(self, folder_id: str, name: str) -> str:
        """Reserve a storage slot for a new upload and return its handle."""
        ...

    async def write_bytes(self, storage_id: str, local_path: Path) -> None:
        """Upload the local file's bytes into the storage slot."""
        ...

    async def create_item(self, folder_id: str, name: str, storage_id: str) -> str:
        """Create a new item whose first version points at the storage slot."""
        ...

    async def create_version(self, item_id: str, name: str, storage_id: str) -> str:
        """Add a new version to an existing item."""
        ...


class BackendFactory(Protocol):
    """Builds back-ends bound to the identifiers carried by audit requests."""

    async def source_for_site(self, site_id: str) -> SourceBackend:
        """Return the source back-end for the site's default library."""
        ...

    def source_for_drive(self, drive_id: str) -> SourceBackend:
        """Return the source back-end for a specific library."""
        ...

    def target_for_project(self, project_id: str) -> TargetBackend:
        """Return the target back-end for a project."""
        ...
