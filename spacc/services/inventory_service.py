"""Inventory collectors: flat, path-sorted file listings of a folder tree.

Every collector builds a fresh ``InventorySnapshot`` per call.  A failed
folder listing aborts the whole snapshot with ``InventoryError``; a failed
per-file metadata lookup only nulls that file's optional fields.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spacc.exceptions import BackendError, InventoryError
from spacc.services.datetime_service import parse_optional_datetime
from spacc.services.path_service import canonical_path, join_path

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Iterator
    from datetime import datetime

    from spacc.backends.base import ChildrenPage, RemoteEntry, SourceBackend, TargetBackend
    from spacc.services.progress_service import ProgressChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRecord:
    """One file of an inventory. Identity within a snapshot is ``path``."""

    path: str
    id: str
    size: int | None = None
    content_hash: str | None = None
    mtime: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "hash": self.content_hash,
            "mtime": self.mtime,
            "id": self.id,
        }


@dataclass(frozen=True)
class InventorySnapshot:
    """Immutable, path-sorted file records under one root."""

    root: str
    records: tuple[FileRecord, ...] = ()

    @classmethod
    def from_records(cls, root: str, records: Iterable[FileRecord]) -> InventorySnapshot:
        return cls(root=root, records=tuple(sorted(records, key=lambda record: record.path)))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self.records)

    @property
    def total_bytes(self) -> int:
        return sum(record.size or 0 for record in self.records)


@dataclass(frozen=True)
class SegmentMapping:
    """Where a source subtree lands on the target side.

    ``root_name`` is None when the source item is a library root; its name
    then never appears in destination paths.
    """

    anchor_path: str
    site_name: str
    root_name: str | None = None

    @property
    def relative_names(self) -> list[str]:
        names = [self.site_name]
        if self.root_name:
            names.append(self.root_name)
        return names

    @property
    def prefix(self) -> str:
        return join_path(self.anchor_path, *self.relative_names)


def _is_older(mtime: str | None, since: datetime | None) -> bool:
    """True only when the mtime is known and earlier than ``since``."""
    if since is None:
        return False
    parsed = parse_optional_datetime(mtime)
    return parsed is not None and parsed < since


async def _list_all(
    list_children: Callable[[str, str | None], Awaitable[ChildrenPage]],
    folder_id: str,
) -> list[RemoteEntry]:
    """Follow a folder's continuation tokens until the listing is exhausted."""
    entries: list[RemoteEntry] = []
    continuation: str | None = None
    try:
        while True:
            page = await list_children(folder_id, continuation)
            entries.extend(page.entries)
            if not page.continuation:
                return entries
            continuation = page.continuation
    except BackendError as exc:
        msg = f"Listing folder {folder_id} failed: {exc}"
        raise InventoryError(msg, exc.status_code) from exc


async def _walk(
    list_children: Callable[[str, str | None], Awaitable[ChildrenPage]],
    root_id: str,
    on_file: Callable[[RemoteEntry, str], Awaitable[None]],
    *,
    channel: ProgressChannel | None,
    step: str,
) -> int:
    """Visit every folder under ``root_id`` one at a time.

    ``on_file`` receives each file with its path relative to the root.
    The root's own name is never part of a relative path.  Returns the
    number of folders listed.
    """
    pending: list[tuple[str, str]] = [(root_id, "")]
    visited = 0
    while pending:
        if channel is not None:
            channel.check_cancelled()
        folder_id, base = pending.pop()
        for entry in await _list_all(list_children, folder_id):
            relative = f"{base}/{entry.name}" if base else entry.name
            if entry.is_folder:
                pending.append((entry.id, relative))
            else:
                await on_file(entry, relative)
        visited += 1
        if channel is not None:
            channel.progress(
                step,
                100 * visited / (visited + len(pending) + 1),
                f"Listed {visited} folders",
                processed_items=visited,
                total_items=visited + len(pending),
                current_item=base or "/",
            )
    return visited


async def collect_source_inventory(
    source: SourceBackend,
    root_id: str,
    *,
    prefix: str = "/",
    since: datetime | None = None,
    with_meta: bool = True,
    channel: ProgressChannel | None = None,
    step: str = "source_inventory",
) -> InventorySnapshot:
    """List every file under a source folder, mapped under ``prefix``.

    Hashes come with the listing, so enrichment costs no extra calls.
    """
    started = time.monotonic()
    records: list[FileRecord] = []

    async def on_file(entry: RemoteEntry, relative: str) -> None:
        if _is_older(entry.mtime, since):
            return
        records.append(
            FileRecord(
                path=join_path(prefix, relative),
                id=entry.id,
                size=entry.size if with_meta else None,
                content_hash=entry.content_hash if with_meta else None,
                mtime=entry.mtime if with_meta else None,
            )
        )

    visited = await _walk(source.list_children, root_id, on_file, channel=channel, step=step)
    if channel is not None:
        channel.progress(step, 100, f"{len(records)} source files", force=True)
    logger.info(
        "Source inventory under %s: %d files in %d folders (%.0f ms)",
        canonical_path(prefix),
        len(records),
        visited,
        (time.monotonic() - started) * 1000,
    )
    return InventorySnapshot.from_records(canonical_path(prefix), records)


async def map_source_segment(
    source: SourceBackend, item_id: str, anchor_path: str
) -> SegmentMapping:
    """Compute the destination prefix of a source subtree."""
    root = await source.get_item(item_id)
    if not root.is_folder:
        msg = f"Source item {item_id} is not a folder"
        raise ValueError(msg)
    site_name = await source.get_site_name(item_id)
    return SegmentMapping(
        anchor_path=canonical_path(anchor_path),
        site_name=site_name,
        root_name=None if root.is_library_root else root.name,
    )


async def collect_source_segment(
    source: SourceBackend,
    item_id: str,
    mapping: SegmentMapping,
    *,
    since: datetime | None = None,
    with_meta: bool = True,
    channel: ProgressChannel | None = None,
    step: str = "source_inventory",
) -> InventorySnapshot:
    """List a source subtree with paths rewritten to destination paths."""
    return await collect_source_inventory(
        source,
        item_id,
        prefix=mapping.prefix,
        since=since,
        with_meta=with_meta,
        channel=channel,
        step=step,
    )


async def locate_target_subtree(
    target: TargetBackend, anchor_id: str, mapping: SegmentMapping
) -> str | None:
    """Descend from the anchor folder along the mapping's folder names.

    Returns None as soon as one of the folders does not exist yet.
    """
    folder_id = anchor_id
    for name in mapping.relative_names:
        child_id = await target.find_subfolder(folder_id, name)
        if child_id is None:
            logger.info("Target folder %r not found under %s", name, folder_id)
            return None
        folder_id = child_id
    return folder_id


async def collect_target_inventory(
    target: TargetBackend,
    folder_id: str,
    *,
    start_path: str,
    with_meta: bool = True,
    channel: ProgressChannel | None = None,
    step: str = "target_inventory",
) -> InventorySnapshot:
    """List every item under a target folder, with paths under ``start_path``.

    Listings carry no sizes or hashes; with ``with_meta`` every file costs
    one extra tip-version lookup.
    """
    started = time.monotonic()
    records: list[FileRecord] = []
    enrichment_failures = 0

    async def on_file(entry: RemoteEntry, relative: str) -> None:
        nonlocal enrichment_failures
        path = join_path(start_path, relative)
        if not with_meta:
            records.append(FileRecord(path=path, id=entry.id))
            return
        if channel is not None:
            channel.check_cancelled()
        try:
            version = await target.get_tip_version(entry.id)
        except Exception as exc:
            enrichment_failures += 1
            logger.warning("Metadata lookup failed for %s: %s", path, exc)
            records.append(FileRecord(path=path, id=entry.id))
            return
        records.append(
            FileRecord(
                path=path,
                id=entry.id,
                size=version.size,
                content_hash=version.content_hash,
                mtime=version.mtime or entry.mtime,
            )
        )

    visited = await _walk(target.list_children, folder_id, on_file, channel=channel, step=step)
    if channel is not None:
        channel.progress(step, 100, f"{len(records)} target files", force=True)
    logger.info(
        "Target inventory under %s: %d files in %d folders, %d metadata failures (%.0f ms)",
        canonical_path(start_path),
        len(records),
        visited,
        enrichment_failures,
        (time.monotonic() - started) * 1000,
    )
    return InventorySnapshot.from_records(canonical_path(start_path), records)
