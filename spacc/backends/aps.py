"""Target back-end: ACC projects through the APS Data Management API."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from spacc.backends.base import ChildrenPage, RemoteEntry, VersionInfo
from spacc.backends.http import RetryPolicy, send_with_retry
from spacc.exceptions import BackendError
from spacc.services.path_service import canonical_name, canonical_path, path_segments

if TYPE_CHECKING:
    from pathlib import Path

    import httpx

logger = logging.getLogger(__name__)

_JSONAPI = {"version": "1.0"}
_FOLDER_EXTENSION = {"type": "folders:autodesk.bim360:Folder", "version": "1.0"}
_ITEM_EXTENSION = {"type": "items:autodesk.bim360:File", "version": "1.0"}
_VERSION_EXTENSION = {"type": "versions:autodesk.bim360:File", "version": "1.0"}
_STORAGE_URN_PREFIX = "urn:adsk.objects:os.object:"


def _seg(value: str) -> str:
    return quote(value, safe="")


def _display_name(resource: dict[str, Any]) -> str:
    attributes = resource.get("attributes") or {}
    return str(attributes.get("displayName") or attributes.get("name") or "")


def parse_resource(resource: dict[str, Any]) -> RemoteEntry:
    """Convert a JSON:API ``folders``/``items`` resource into a ``RemoteEntry``.

    Item listings carry neither size nor content hash; both come from the
    tip version (see ``ApsTargetBackend.get_tip_version``).
    """
    attributes = resource.get("attributes") or {}
    parent = ((resource.get("relationships") or {}).get("parent") or {}).get("data") or {}
    return RemoteEntry(
        id=str(resource.get("id", "")),
        name=_display_name(resource),
        is_folder=resource.get("type") == "folders",
        size=None,
        mtime=attributes.get("lastModifiedTime") or None,
        parent_id=parent.get("id"),
    )


def split_storage_urn(storage_id: str) -> tuple[str, str]:
    """Split ``urn:adsk.objects:os.object:<bucket>/<object>`` into its parts."""
    if not storage_id.startswith(_STORAGE_URN_PREFIX):
        msg = f"Unexpected storage URN: {storage_id!r}"
        raise ValueError(msg)
    bucket, _, object_key = storage_id.removeprefix(_STORAGE_URN_PREFIX).partition("/")
    if not bucket or not object_key:
        msg = f"Unexpected storage URN: {storage_id!r}"
        raise ValueError(msg)
    return bucket, object_key


class ApsTargetBackend:
    """Read/write access to one ACC project.

    Folder lookups by path are memoized; folder creation is serialized so
    that concurrent repair workers never create the same folder twice.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        project_id: str,
        *,
        access_token: str,
        hub_id: str = "",
        policy: RetryPolicy | None = None,
    ) -> None:
        if not project_id:
            msg = "project_id is required"
            raise ValueError(msg)
        self.project_id = project_id
        self._client = client
        self._hub_id = hub_id
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._policy = policy or RetryPolicy()
        self._folder_ids: dict[str, str] = {}
        self._folder_lock = asyncio.Lock()

    @property
    def _data_root(self) -> str:
        return f"/data/v1/projects/{_seg(self.project_id)}"

    async def _get_json(self, url: str, **params: str) -> dict[str, Any]:
        response = await send_with_retry(
            self._client,
            "GET",
            url,
            policy=self._policy,
            params=params or None,
            headers=self._headers,
        )
        data: dict[str, Any] = response.json()
        return data

    async def _post_json(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await send_with_retry(
            self._client,
            "POST",
            url,
            policy=self._policy,
            json=body,
            headers={**self._headers, "Content-Type": "application/vnd.api+json"},
        )
        data: dict[str, Any] = response.json()
        return data

    # ── Reads ──────────────────────────────────────────

    async def get_folder(self, folder_id: str) -> RemoteEntry:
        data = await self._get_json(f"{self._data_root}/folders/{_seg(folder_id)}")
        return parse_resource(data.get("data") or {})

    async def get_top_folders(self) -> list[RemoteEntry]:
        if not self._hub_id:
            msg = "APS_HUB_ID must be configured to list project top folders"
            raise ValueError(msg)
        data = await self._get_json(
            f"/project/v1/hubs/{_seg(self._hub_id)}/projects/{_seg(self.project_id)}/topFolders"
        )
        return [parse_resource(resource) for resource in data.get("data") or []]

    async def list_children(
        self, folder_id: str, continuation: str | None = None
    ) -> ChildrenPage:
        if continuation:
            data = await self._get_json(continuation)
        else:
            data = await self._get_json(f"{self._data_root}/folders/{_seg(folder_id)}/contents")
        entries = [
            parse_resource(resource)
            for resource in data.get("data") or []
            if resource.get("type") in ("folders", "items")
        ]
        next_link = ((data.get("links") or {}).get("next") or {}).get("href")
        return ChildrenPage(entries=entries, continuation=next_link)

    async def get_tip_version(self, item_id: str) -> VersionInfo:
        data = await self._get_json(f"{self._data_root}/items/{_seg(item_id)}/tip")
        attributes = (data.get("data") or {}).get("attributes") or {}
        size = attributes.get("storageSize")
        return VersionInfo(
            size=int(size) if isinstance(size, int) else None,
            mtime=attributes.get("lastModifiedTime") or None,
            content_hash=None,
        )

    async def _iter_children(self, folder_id: str) -> list[RemoteEntry]:
        children: list[RemoteEntry] = []
        continuation: str | None = None
        while True:
            page = await self.list_children(folder_id, continuation)
            children.extend(page.entries)
            if not page.continuation:
                return children
            continuation = page.continuation

    async def find_subfolder(self, folder_id: str, name: str) -> str | None:
        """Return the ID of the direct subfolder named ``name``, if present."""
        wanted = canonical_name(name)
        for entry in await self._iter_children(folder_id):
            if entry.is_folder and canonical_name(entry.name) == wanted:
                return entry.id
        return None

    async def find_item(self, folder_id: str, name: str) -> str | None:
        wanted = canonical_name(name)
        for entry in await self._iter_children(folder_id):
            if not entry.is_folder and canonical_name(entry.name) == wanted:
                return entry.id
        return None

    # ── Folder resolution ──────────────────────────────

    def remember_folder(self, path: str, folder_id: str) -> None:
        self._folder_ids[canonical_path(path)] = folder_id

    async def _create_folder(self, parent_id: str, name: str) -> str:
        body = {
            "jsonapi": _JSONAPI,
            "data": {
                "type": "folders",
                "attributes": {"name": name, "extension": _FOLDER_EXTENSION},
                "relationships": {"parent": {"data": {"type": "folders", "id": parent_id}}},
            },
        }
        data = await self._post_json(f"{self._data_root}/folders", body)
        folder_id = str((data.get("data") or {}).get("id", ""))
        if not folder_id:
            msg = f"Folder creation for {name!r} returned no ID"
            raise BackendError(msg)
        logger.info("Created target folder %r under %s", name, parent_id)
        return folder_id

    async def _top_folder_id(self, name: str) -> str:
        wanted = canonical_name(name)
        for folder in await self.get_top_folders():
            if canonical_name(folder.name) == wanted:
                return folder.id
        msg = f"Top folder {name!r} not found in project {self.project_id}"
        raise BackendError(msg)

    async def ensure_folder(self, path: str) -> str:
        """Resolve ``path`` to a folder ID, creating any missing folders.

        Resolution starts from the longest remembered prefix; without one the
        first segment must name a project top folder.
        """
        canonical = canonical_path(path)
        cached = self._folder_ids.get(canonical)
        if cached is not None:
            return cached

        async with self._folder_lock:
            cached = self._folder_ids.get(canonical)
            if cached is not None:
                return cached

            segments = path_segments(canonical)
            if not segments:
                msg = "Cannot ensure the empty path"
                raise ValueError(msg)

            depth = len(segments)
            while depth > 0 and "/" + "/".join(segments[:depth]) not in self._folder_ids:
                depth -= 1
            if depth == 0:
                folder_id = await self._top_folder_id(segments[0])
                self._folder_ids["/" + segments[0]] = folder_id
                depth = 1
            else:
                folder_id = self._folder_ids["/" + "/".join(segments[:depth])]

            for index in range(depth, len(segments)):
                name = segments[index]
                child_id = await self.find_subfolder(folder_id, name)
                if child_id is None:
                    child_id = await self._create_folder(folder_id, name)
                folder_id = child_id
                self._folder_ids["/" + "/".join(segments[: index + 1])] = folder_id
            return folder_id

    # ── Writes ─────────────────────────────────────────

    async def create_storage(self, folder_id: str, name: str) -> str:
        body = {
            "jsonapi": _JSONAPI,
            "data": {
                "type": "objects",
                "attributes": {"name": name},
                "relationships": {"target": {"data": {"type": "folders", "id": folder_id}}},
            },
        }
        data = await self._post_json(f"{self._data_root}/storage", body)
        storage_id = str((data.get("data") or {}).get("id", ""))
        if not storage_id:
            msg = f"Storage creation for {name!r} returned no ID"
            raise BackendError(msg)
        return storage_id

    async def write_bytes(self, storage_id: str, local_path: Path) -> None:
        """Upload through a signed S3 URL: request, PUT, complete.

        The whole file is read into memory so a retried PUT can resend the
        same body; files larger than available memory are not supported.
        """
        bucket, object_key = split_storage_urn(storage_id)
        oss_url = f"/oss/v2/buckets/{_seg(bucket)}/objects/{_seg(object_key)}/signeds3upload"
        signed = await self._get_json(oss_url)
        urls = signed.get("urls") or []
        upload_key = signed.get("uploadKey")
        if not urls or not upload_key:
            msg = f"Signed upload for {storage_id} returned no URL"
            raise BackendError(msg)

        content = await asyncio.to_thread(local_path.read_bytes)
        # Signed URLs reject an Authorization header.
        await send_with_retry(self._client, "PUT", urls[0], policy=self._policy, content=content)
        await send_with_retry(
            self._client,
            "POST",
            oss_url,
            policy=self._policy,
            json={"uploadKey": upload_key},
            headers=self._headers,
        )

    async def create_item(self, folder_id: str, name: str, storage_id: str) -> str:
        body = {
            "jsonapi": _JSONAPI,
            "data": {
                "type": "items",
                "attributes": {"displayName": name, "extension": _ITEM_EXTENSION},
                "relationships": {
                    "tip": {"data": {"type": "versions", "id": "1"}},
                    "parent": {"data": {"type": "folders", "id": folder_id}},
                },
            },
            "included": [
                {
                    "type": "versions",
                    "id": "1",
                    "attributes": {"name": name, "extension": _VERSION_EXTENSION},
                    "relationships": {
                        "storage": {"data": {"type": "objects", "id": storage_id}}
                    },
                }
            ],
        }
        data = await self._post_json(f"{self._data_root}/items", body)
        return str((data.get("data") or {}).get("id", ""))

    async def create_version(self, item_id: str, name: str, storage_id: str) -> str:
        body = {
            "jsonapi": _JSONAPI,
            "data": {
                "type": "versions",
                "attributes": {"name": name, "extension": _VERSION_EXTENSION},
                "relationships": {
                    "item": {"data": {"type": "items", "id": item_id}},
                    "storage": {"data": {"type": "objects", "id": storage_id}},
                },
            },
        }
        data = await self._post_json(f"{self._data_root}/versions", body)
        return str((data.get("data") or {}).get("id", ""))
