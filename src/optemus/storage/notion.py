"""Notion document-database backend.

Every image becomes one row (page) in a Notion database. Notion stores only
metadata and a URL, never bytes, so this backend needs the image to already
have a public http(s) URL: either the provider's URL or the URL produced by a
byte-storing backend configured ahead of it.

Database Schema
---------------
The target database must define these properties:

==============  ==========  ==============================================
Property        Type        Content
==============  ==========  ==============================================
``ID``          rich text   Image identifier shared with other backends
``Prompt``      rich text   Original (non-enhanced) prompt
``Image URL``   url         Public image location
``Filename``    rich text   Generated filename
``Created At``  date        Creation instant (server-side sort key)
``Style``       select      styleType setting
``Settings``    rich text   JSON-encoded display settings
==============  ==========  ==============================================

Deleting a record archives its page, which is how Notion removes rows.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from optemus.core.config import OptemusConfig
from optemus.core.errors import (
    ConfigurationError,
    StorageListError,
    StorageWriteError,
)
from optemus.core.models import DeleteOutcome, ImageMetadata, ImagePayload, StoredImageRecord
from optemus.storage.base import HTTPStorageBackend, backend_registry

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
RICH_TEXT_LIMIT = 2000


def _rich_text(value: str | None) -> dict[str, Any]:
    return {"rich_text": [{"text": {"content": (value or "")[:RICH_TEXT_LIMIT]}}]}


def _plain_text(prop: dict[str, Any] | None) -> str:
    if not prop:
        return ""
    fragments = prop.get("rich_text") or prop.get("title") or []
    return "".join(
        fragment.get("plain_text") or fragment.get("text", {}).get("content", "")
        for fragment in fragments
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return f"HTTP {response.status_code}: {body.get('code', 'error')} - {body['message']}"
    return f"HTTP {response.status_code}"


def _page_id(response: httpx.Response) -> str:
    """Page id from a create response, for logging; the page exists either way."""
    try:
        body = response.json()
    except ValueError:
        return "(unreadable response)"
    return str(body.get("id")) if isinstance(body, dict) else "(unreadable response)"


def page_to_record(page: dict[str, Any]) -> StoredImageRecord | None:
    """Map one Notion page onto a record; ``None`` if the row has no image URL."""
    props = page.get("properties") or {}
    url = (props.get("Image URL") or {}).get("url")
    if not url:
        return None

    created = (props.get("Created At") or {}).get("date") or {}
    filename = _plain_text(props.get("Filename")) or url.rsplit("/", 1)[-1]

    settings: dict[str, Any] = {}
    raw_settings = _plain_text(props.get("Settings"))
    if raw_settings:
        try:
            decoded = json.loads(raw_settings)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            settings = decoded

    return StoredImageRecord(
        id=_plain_text(props.get("ID")) or page.get("id", filename),
        filename=filename,
        prompt=_plain_text(props.get("Prompt")),
        url=url,
        created_at=created.get("start") or page.get("created_time"),
        settings=settings,
        storage_flags=("notion",),
    )


@backend_registry.register
class NotionBackend(HTTPStorageBackend):
    """Store image metadata as rows of a Notion database."""

    name = "notion"
    description = "Notion database with one row per image"

    def __init__(self, config: OptemusConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config, client)
        self.database_id = config.notion_database_id

    @property
    def configured(self) -> bool:
        return bool(self.config.notion_token and self.database_id)

    def _headers(self) -> dict[str, str]:
        if not self.configured:
            raise ConfigurationError("NOTION_TOKEN and NOTION_DATABASE_ID must both be configured")
        return {
            "Authorization": f"Bearer {self.config.notion_token}",
            "Notion-Version": self.config.notion_version,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> httpx.Response:
        return await self._client.request(
            method, f"{NOTION_API_URL}{path}", json=payload, headers=self._headers()
        )

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    def _properties(self, url: str, metadata: ImageMetadata) -> dict[str, Any]:
        properties: dict[str, Any] = {
            "ID": _rich_text(metadata.id),
            "Prompt": _rich_text(metadata.prompt),
            "Image URL": {"url": url},
            "Filename": _rich_text(metadata.filename),
            "Created At": {"date": {"start": metadata.created_at}},
            "Settings": _rich_text(json.dumps(metadata.settings, sort_keys=True)),
        }
        style = metadata.settings.get("styleType")
        if style:
            properties["Style"] = {"select": {"name": str(style)}}
        return properties

    async def persist(self, payload: ImagePayload, metadata: ImageMetadata) -> StoredImageRecord:
        url = payload.url
        if not url or not url.startswith(("http://", "https://")):
            raise StorageWriteError("Notion storage needs a public http(s) image URL")

        body = {
            "parent": {"database_id": self.database_id},
            "properties": self._properties(url, metadata),
        }
        try:
            response = await self._request("POST", "/pages", body)
        except httpx.HTTPError as exc:
            raise StorageWriteError(f"Notion page create failed: {exc}") from exc
        if response.status_code >= 400:
            raise StorageWriteError(f"Notion page create failed: {_error_detail(response)}")

        logger.info(f"Created Notion page {_page_id(response)} for {metadata.filename}")

        return StoredImageRecord(
            id=metadata.id,
            filename=metadata.filename,
            prompt=metadata.prompt,
            url=url,
            created_at=metadata.created_at,
            settings=dict(metadata.settings),
            storage_flags=(self.name,),
            enhanced_prompt=metadata.enhanced_prompt,
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def _query(self, extra: dict[str, Any], error_cls: type) -> list[dict[str, Any]]:
        """Run a database query, following pagination cursors."""
        pages: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            body = dict(extra)
            body["page_size"] = 100
            if cursor:
                body["start_cursor"] = cursor
            try:
                response = await self._request("POST", f"/databases/{self.database_id}/query", body)
            except httpx.HTTPError as exc:
                raise error_cls(f"Notion query failed: {exc}") from exc
            if response.status_code >= 400:
                raise error_cls(f"Notion query failed: {_error_detail(response)}")

            try:
                data = response.json()
            except ValueError as exc:
                raise error_cls(f"Notion query returned invalid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise error_cls("Notion query returned an unexpected response body")
            pages.extend(data.get("results") or [])
            cursor = data.get("next_cursor")
            if not data.get("has_more") or not cursor:
                return pages

    async def list(self, rescan: bool = False) -> list[StoredImageRecord]:
        if not self.configured:
            logger.warning("Notion storage is not configured; returning an empty listing")
            return []

        pages = await self._query(
            {"sorts": [{"property": "Created At", "direction": "descending"}]},
            StorageListError,
        )
        records = []
        for page in pages:
            record = page_to_record(page)
            if record is not None:
                records.append(record)
        return records

    async def delete(self, image_id: str) -> DeleteOutcome:
        pages = await self._query(
            {"filter": {"property": "ID", "rich_text": {"equals": image_id}}},
            StorageWriteError,
        )
        if not pages:
            return DeleteOutcome.NOT_FOUND

        for page in pages:
            try:
                response = await self._request("PATCH", f"/pages/{page['id']}", {"archived": True})
            except httpx.HTTPError as exc:
                raise StorageWriteError(f"Notion archive failed: {exc}") from exc
            if response.status_code >= 400:
                raise StorageWriteError(f"Notion archive failed: {_error_detail(response)}")
            logger.info(f"Archived Notion page {page['id']} for image {image_id}")
        return DeleteOutcome.DELETED
