"""Utilities for communicating with the remote media server API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from ..config import Settings
from ..db_models import Server
from ..errors import JellyfinAPIError
from ..models import ActivityPage, ItemsPage, RemoteActivity, RemoteLibrary

logger = logging.getLogger(__name__)

ITEM_FIELDS = (
    "DateCreated",
    "Etag",
    "ExternalUrls",
    "Genres",
    "OriginalTitle",
    "Overview",
    "ParentId",
    "Path",
    "PrimaryImageAspectRatio",
    "ProductionLocations",
    "ProviderIds",
    "SeriesStudio",
    "SortName",
    "Studios",
    "Tags",
    "Width",
    "Height",
    "MediaSources",
    "CanDelete",
    "CanDownload",
)


class CatalogClient(Protocol):
    """Read access to the remote catalog needed by the item syncer."""

    async def fetch_items_page(
        self, library_id: str, offset: int, page_size: int
    ) -> ItemsPage: ...

    async def fetch_recent_items(
        self, library_id: str, limit: int
    ) -> list[dict[str, Any]]: ...

    async def fetch_libraries(self) -> list[RemoteLibrary]: ...


def build_http_client(
    settings: Settings,
    server: Server,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Return an HTTP client bound to the server's internal address."""

    kwargs: dict[str, Any] = {
        "base_url": server.base_url.rstrip("/"),
        "timeout": httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
    }
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.AsyncClient(**kwargs)


class JellyfinClient:
    """Thin wrapper around the media server HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        api_key: str,
    ):
        self._settings = settings
        self._client = http_client
        self._api_key = api_key
        self._max_retries = settings.request_max_retries

    def _headers(self) -> dict[str, str]:
        return {
            "X-Emby-Token": self._api_key,
            "Accept": "application/json",
            "User-Agent": self._settings.app_name,
        }

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON document, retrying transport errors and 5xx responses."""

        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    path, headers=self._headers(), params=params
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error requesting %s (%s). Retrying in %.1fs",
                        path,
                        exc.__class__.__name__,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise JellyfinAPIError(f"Request to {path} failed: {exc}") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Server error %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            raise JellyfinAPIError(
                f"Request to {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise JellyfinAPIError(f"Non-JSON response from {path}") from exc

    @staticmethod
    def _extract_total_count(data: dict[str, Any]) -> int | None:
        """Return the reported result size, or None when the server omits it."""

        value = data.get("TotalRecordCount")
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    async def fetch_items_page(
        self, library_id: str, offset: int, page_size: int
    ) -> ItemsPage:
        """Fetch one page of items below a library, in stable sort order."""

        data = await self._get_json(
            "/Items",
            params={
                "ParentId": library_id,
                "Recursive": "true",
                "StartIndex": offset,
                "Limit": page_size,
                "SortBy": "SortName,Id",
                "SortOrder": "Ascending",
                "Fields": ",".join(ITEM_FIELDS),
                "EnableImageTypes": "Primary,Backdrop,Banner,Thumb,Logo",
            },
        )
        if not isinstance(data, dict):
            raise JellyfinAPIError("Unexpected items response structure")
        raw_items = data.get("Items") or []
        items = [entry for entry in raw_items if isinstance(entry, dict)]
        return ItemsPage(items=items, total_count=self._extract_total_count(data))

    async def fetch_recent_items(
        self, library_id: str, limit: int
    ) -> list[dict[str, Any]]:
        """Fetch the newest items of a library without paginating."""

        data = await self._get_json(
            "/Items",
            params={
                "ParentId": library_id,
                "Recursive": "true",
                "Limit": limit,
                "SortBy": "DateCreated",
                "SortOrder": "Descending",
                "Fields": ",".join(ITEM_FIELDS),
                "EnableImageTypes": "Primary,Backdrop,Banner,Thumb,Logo",
            },
        )
        if not isinstance(data, dict):
            raise JellyfinAPIError("Unexpected recent items response structure")
        return [entry for entry in data.get("Items") or [] if isinstance(entry, dict)]

    async def fetch_libraries(self) -> list[RemoteLibrary]:
        """Return the media folders currently present on the server."""

        data = await self._get_json("/Library/MediaFolders")
        if not isinstance(data, dict):
            raise JellyfinAPIError("Unexpected media folders response structure")
        return [
            RemoteLibrary.model_validate(entry)
            for entry in data.get("Items") or []
            if isinstance(entry, dict)
        ]

    async def fetch_activity_page(self, offset: int, limit: int) -> ActivityPage:
        """Fetch one page of the activity log, newest first."""

        data = await self._get_json(
            "/System/ActivityLog/Entries",
            params={"startIndex": offset, "limit": limit},
        )
        if not isinstance(data, dict):
            raise JellyfinAPIError("Unexpected activity log response structure")
        entries = [
            RemoteActivity.model_validate(entry)
            for entry in data.get("Items") or []
            if isinstance(entry, dict)
        ]
        return ActivityPage(
            items=entries, total_count=self._extract_total_count(data)
        )

