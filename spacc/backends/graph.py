"""Source back-end: document libraries through the Microsoft Graph API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from spacc.backends.base import ChildrenPage, RemoteEntry
from spacc.backends.http import RetryPolicy, send_with_retry
from spacc.exceptions import BackendError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_ITEM_SELECT = "id,name,folder,file,size,lastModifiedDateTime,parentReference,root"
_PAGE_SIZE = 200

# Preferred content hash facets, strongest first.
_HASH_FACETS = (
    ("sha256Hash", "sha256"),
    ("sha1Hash", "sha1"),
    ("quickXorHash", "quickxor"),
)


def _seg(value: str) -> str:
    return quote(value, safe="")


def _content_hash(item: dict[str, Any]) -> str | None:
    """Return ``"<algo>:<digest>"`` for the strongest hash the item exposes."""
    hashes = (item.get("file") or {}).get("hashes") or {}
    for facet, algo in _HASH_FACETS:
        digest = hashes.get(facet)
        if digest:
            return f"{algo}:{str(digest).lower()}"
    return None


def _is_library_root(item: dict[str, Any]) -> bool:
    """A drive root carries the ``root`` facet and has no parent path."""
    if "root" in item:
        return True
    parent = item.get("parentReference") or {}
    return "folder" in item and not parent.get("path") and not parent.get("id")


def parse_item(item: dict[str, Any]) -> RemoteEntry:
    """Convert a Graph ``driveItem`` payload into a ``RemoteEntry``."""
    is_folder = "folder" in item
    size = item.get("size")
    return RemoteEntry(
        id=str(item.get("id", "")),
        name=str(item.get("name", "")),
        is_folder=is_folder,
        size=int(size) if isinstance(size, int) else None,
        mtime=item.get("lastModifiedDateTime") or None,
        content_hash=None if is_folder else _content_hash(item),
        parent_id=(item.get("parentReference") or {}).get("id"),
        is_library_root=_is_library_root(item),
    )


class GraphSourceBackend:
    """Read-only access to one drive (document library).

    Args:
        client: Shared ``httpx.AsyncClient`` whose ``base_url`` is the Graph root.
        drive_id: The drive this back-end is bound to.
        access_token: Bearer token issued by the identity collaborator.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        drive_id: str,
        *,
        access_token: str,
        policy: RetryPolicy | None = None,
        download_timeout: float = 60.0,
    ) -> None:
        if not drive_id:
            msg = "drive_id is required"
            raise ValueError(msg)
        self.drive_id = drive_id
        self._client = client
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._policy = policy or RetryPolicy()
        self._download_timeout = download_timeout

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

    async def get_root(self) -> RemoteEntry:
        data = await self._get_json(
            f"/drives/{_seg(self.drive_id)}/root", **{"$select": _ITEM_SELECT}
        )
        return parse_item(data)

    async def get_item(self, item_id: str) -> RemoteEntry:
        data = await self._get_json(
            f"/drives/{_seg(self.drive_id)}/items/{_seg(item_id)}", **{"$select": _ITEM_SELECT}
        )
        return parse_item(data)

    async def get_site_name(self, item_id: str) -> str:
        """Resolve the owning site's display name, falling back to the drive name."""
        item = await self._get_json(
            f"/drives/{_seg(self.drive_id)}/items/{_seg(item_id)}",
            **{"$select": "id,parentReference"},
        )
        site_id = (item.get("parentReference") or {}).get("siteId")
        if site_id:
            site = await self._get_json(
                f"/sites/{_seg(site_id)}", **{"$select": "displayName,name"}
            )
            name = site.get("displayName") or site.get("name")
            if name:
                return str(name)
        drive = await self._get_json(f"/drives/{_seg(self.drive_id)}", **{"$select": "name"})
        return str(drive.get("name") or self.drive_id)

    async def list_children(
        self, folder_id: str, continuation: str | None = None
    ) -> ChildrenPage:
        if continuation:
            # nextLink is absolute and already carries the query string.
            data = await self._get_json(continuation)
        else:
            data = await self._get_json(
                f"/drives/{_seg(self.drive_id)}/items/{_seg(folder_id)}/children",
                **{"$select": _ITEM_SELECT, "$top": str(_PAGE_SIZE)},
            )
        entries = [parse_item(item) for item in data.get("value") or []]
        return ChildrenPage(entries=entries, continuation=data.get("@odata.nextLink"))

    async def download_content(self, item_id: str) -> AsyncIterator[bytes]:
        """Stream file bytes, falling back to the pre-authenticated download URL.

        The fallback is only attempted when the primary request fails before
        any byte has been yielded.  Streams are not retried.
        """
        url = f"/drives/{_seg(self.drive_id)}/items/{_seg(item_id)}/content"
        started = False
        try:
            async with self._client.stream(
                "GET",
                url,
                headers=self._headers,
                follow_redirects=True,
                timeout=self._download_timeout,
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    started = True
                    yield chunk
            return
        except httpx.HTTPError as exc:
            if started:
                msg = f"Download of {item_id} interrupted: {exc}"
                raise BackendError(msg) from exc
            logger.warning("Direct download of %s failed (%s), trying download URL", item_id, exc)
            primary_error = exc

        meta = await self._get_json(f"/drives/{_seg(self.drive_id)}/items/{_seg(item_id)}")
        download_url = meta.get("@microsoft.graph.downloadUrl")
        if not download_url:
            msg = f"Download of {item_id} failed: {primary_error}"
            raise BackendError(msg) from primary_error
        try:
            async with self._client.stream(
                "GET", download_url, follow_redirects=True, timeout=self._download_timeout
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            msg = f"Download of {item_id} failed: {exc}"
            raise BackendError(msg) from exc


async def resolve_default_drive_id(
    client: httpx.AsyncClient, site_id: str, *, access_token: str, policy: RetryPolicy
) -> str:
    """Return the ID of the site's default document library."""
    response = await send_with_retry(
        client,
        "GET",
        f"/sites/{_seg(site_id)}/drive",
        policy=policy,
        params={"$select": "id"},
        headers={"Authorization": f"Bearer {access_token}"},
    )
    drive_id = response.json().get("id")
    if not drive_id:
        msg = f"No default drive found for site {site_id}"
        raise BackendError(msg)
    return str(drive_id)
