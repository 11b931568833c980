"""Builds HTTP back-ends bound to the identifiers of an audit or repair call."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from spacc.backends.aps import ApsTargetBackend
from spacc.backends.graph import GraphSourceBackend, resolve_default_drive_id
from spacc.backends.http import RetryPolicy

if TYPE_CHECKING:
    from spacc.config import Settings


class HttpBackendFactory:
    """Owns one ``httpx.AsyncClient`` per back-end and hands out bound views."""

    def __init__(
        self,
        settings: Settings,
        graph_client: httpx.AsyncClient,
        aps_client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._graph_client = graph_client
        self._aps_client = aps_client
        self._policy = RetryPolicy.from_settings(settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpBackendFactory:
        timeout = httpx.Timeout(settings.request_timeout_seconds)
        return cls(
            settings,
            graph_client=httpx.AsyncClient(base_url=settings.graph_base_url, timeout=timeout),
            aps_client=httpx.AsyncClient(base_url=settings.aps_base_url, timeout=timeout),
        )

    async def source_for_site(self, site_id: str) -> GraphSourceBackend:
        drive_id = await resolve_default_drive_id(
            self._graph_client,
            site_id,
            access_token=self._settings.graph_access_token,
            policy=self._policy,
        )
        return self.source_for_drive(drive_id)

    def source_for_drive(self, drive_id: str) -> GraphSourceBackend:
        return GraphSourceBackend(
            self._graph_client,
            drive_id,
            access_token=self._settings.graph_access_token,
            policy=self._policy,
            download_timeout=self._settings.download_timeout_seconds,
        )

    def target_for_project(self, project_id: str) -> ApsTargetBackend:
        return ApsTargetBackend(
            self._aps_client,
            project_id,
            access_token=self._settings.aps_access_token,
            hub_id=self._settings.aps_hub_id,
            policy=self._policy,
        )

    async def aclose(self) -> None:
        """Close both HTTP clients."""
        await self._graph_client.aclose()
        await self._aps_client.aclose()
