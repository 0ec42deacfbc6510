"""Blob object-store backend with a versioned JSON index.

Image bytes are uploaded to a public object store. The store's native
listing needs elevated credentials that the gallery path does not have, so
the backend keeps its own index object (``blob_index_path``)::

    {"version": 7, "images": [{"id": ..., "filename": ..., "url": ...}, ...]}

Object Store Protocol
---------------------
:class:`BlobClient` speaks a small HTTP protocol against ``blob_base_url``:

- ``PUT {base}/{pathname}`` with ``Authorization: Bearer <token>`` stores an
  object and answers ``{"url": <public url>}`` with an ``ETag`` header.
- ``GET {base}/{pathname}`` returns the object and its ``ETag``; 404 if absent.
- ``If-Match: <etag>`` / ``If-None-Match: *`` make a PUT conditional; a
  failed precondition answers ``412``.

Index Concurrency
-----------------
Index updates are read-modify-write guarded by the ETag: a concurrent writer
makes the conditional PUT fail with 412, and the update is retried against
the fresh index up to ``blob_index_retries`` times. Two requests appending at
the same moment therefore both land in the index instead of the later one
silently overwriting the earlier one.

Deletion is not implemented for this backend: :meth:`BlobIndexBackend.delete`
returns ``DeleteOutcome.UNSUPPORTED`` and leaves both the object and the
index entry untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from optemus.core.config import OptemusConfig
from optemus.core.errors import ConfigurationError, StorageListError, StorageWriteError
from optemus.core.models import DeleteOutcome, ImageMetadata, ImagePayload, StoredImageRecord
from optemus.storage.base import HTTPStorageBackend, backend_registry

logger = logging.getLogger(__name__)


class IndexConflictError(StorageWriteError):
    """A conditional index write lost against a concurrent writer."""

    kind = "storage_conflict"


@dataclass(frozen=True)
class BlobObject:
    url: str
    pathname: str
    etag: str | None = None


class BlobClient:
    """Minimal client for the object store protocol described above."""

    def __init__(self, base_url: str, token: str | None, client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client = client

    def _object_url(self, pathname: str) -> str:
        return f"{self.base_url}/{quote(pathname.lstrip('/'))}"

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise ConfigurationError("BLOB_READ_WRITE_TOKEN is not configured")
        return {"Authorization": f"Bearer {self._token}"}

    async def put(
        self,
        pathname: str,
        data: bytes,
        content_type: str,
        *,
        if_match: str | None = None,
        if_none_match: str | None = None,
    ) -> BlobObject:
        """Upload one object.

        Raises:
            IndexConflictError: A conditional header's precondition failed.
            StorageWriteError: Any other network or HTTP failure.
        """
        headers = self._headers()
        headers["Content-Type"] = content_type
        headers["x-content-type"] = content_type
        headers["x-add-random-suffix"] = "0"
        if if_match is not None:
            headers["If-Match"] = if_match
        if if_none_match is not None:
            headers["If-None-Match"] = if_none_match

        try:
            response = await self._client.put(self._object_url(pathname), content=data, headers=headers)
        except httpx.HTTPError as exc:
            raise StorageWriteError(f"Blob upload of {pathname} failed: {exc}") from exc

        if response.status_code == 412:
            raise IndexConflictError(f"Precondition failed writing {pathname}")
        if response.status_code >= 400:
            raise StorageWriteError(f"Blob upload of {pathname} failed: HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        url = body.get("url") if isinstance(body, dict) else None
        etag = response.headers.get("etag") or (body.get("etag") if isinstance(body, dict) else None)
        return BlobObject(url=url or self._object_url(pathname), pathname=pathname, etag=etag)

    async def get(self, pathname: str) -> tuple[bytes, str | None] | None:
        """Fetch one object; ``None`` if it does not exist.

        Raises:
            StorageListError: On network or unexpected HTTP failure.
        """
        try:
            response = await self._client.get(self._object_url(pathname), headers=self._headers())
        except httpx.HTTPError as exc:
            raise StorageListError(f"Blob read of {pathname} failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise StorageListError(f"Blob read of {pathname} failed: HTTP {response.status_code}")
        return response.content, response.headers.get("etag")


def _entry_to_record(entry: dict[str, Any]) -> StoredImageRecord | None:
    if not isinstance(entry, dict) or not entry.get("url"):
        return None
    settings = entry.get("settings")
    filename = entry.get("filename") or entry["url"].rsplit("/", 1)[-1]
    return StoredImageRecord(
        id=str(entry.get("id") or filename),
        filename=filename,
        prompt=entry.get("prompt") or "",
        url=entry["url"],
        created_at=entry.get("createdAt") or entry.get("timestamp"),
        settings=settings if isinstance(settings, dict) else {},
        storage_flags=("blob",),
        enhanced_prompt=entry.get("enhancedPrompt"),
    )


@backend_registry.register
class BlobIndexBackend(HTTPStorageBackend):
    """Upload bytes to a blob store and track them in a versioned index object."""

    name = "blob"
    description = "Public blob object store with a versioned JSON index"

    def __init__(self, config: OptemusConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config, client)
        self.blob = BlobClient(config.blob_base_url, config.blob_token, self._client)
        self.index_path = config.blob_index_path
        self.max_attempts = config.blob_index_retries

    @property
    def configured(self) -> bool:
        return bool(self.config.blob_token)

    async def _read_index(self) -> tuple[dict[str, Any], str | None]:
        found = await self.blob.get(self.index_path)
        if found is None:
            return {"version": 0, "images": []}, None

        raw, etag = found
        try:
            document = json.loads(raw)
        except ValueError:
            logger.warning(f"Blob index {self.index_path} is not valid JSON; starting a new one")
            document = {}
        if not isinstance(document, dict) or not isinstance(document.get("images"), list):
            document = {"version": 0, "images": []}
        return document, etag

    async def _append_to_index(self, entry: dict[str, Any]) -> None:
        """Append one entry under optimistic concurrency control."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                document, etag = await self._read_index()
            except StorageListError as exc:
                raise StorageWriteError(f"Could not read blob index: {exc}") from exc

            document["images"].append(entry)
            document["version"] = int(document.get("version") or 0) + 1
            body = json.dumps(document, indent=2).encode("utf-8")

            try:
                await self.blob.put(
                    self.index_path,
                    body,
                    "application/json",
                    if_match=etag,
                    if_none_match=None if etag else "*",
                )
            except IndexConflictError:
                logger.warning(
                    f"Blob index write conflict (attempt {attempt}/{self.max_attempts}); retrying"
                )
                continue

            logger.info(f"Blob index updated to version {document['version']}")
            return

        raise StorageWriteError(
            f"Gave up updating blob index after {self.max_attempts} conflicting writes"
        )

    async def persist(self, payload: ImagePayload, metadata: ImageMetadata) -> StoredImageRecord:
        if payload.data is None:
            raise StorageWriteError("Blob storage needs image bytes")

        uploaded = await self.blob.put(metadata.filename, payload.data, payload.content_type)
        logger.info(f"Saved to blob store: {uploaded.url}")

        entry = {
            "id": metadata.id,
            "filename": metadata.filename,
            "prompt": metadata.prompt,
            "url": uploaded.url,
            "createdAt": metadata.created_at,
            "settings": metadata.settings,
            "enhancedPrompt": metadata.enhanced_prompt,
        }
        try:
            await self._append_to_index(entry)
        except StorageWriteError:
            logger.error(f"Uploaded {uploaded.url} but could not record it in the blob index")
            raise

        return StoredImageRecord(
            id=metadata.id,
            filename=metadata.filename,
            prompt=metadata.prompt,
            url=uploaded.url,
            created_at=metadata.created_at,
            settings=dict(metadata.settings),
            storage_flags=(self.name,),
            enhanced_prompt=metadata.enhanced_prompt,
        )

    async def list(self, rescan: bool = False) -> list[StoredImageRecord]:
        if not self.configured:
            logger.warning("Blob storage is not configured; returning an empty listing")
            return []

        document, _ = await self._read_index()
        records = []
        for entry in document["images"]:
            record = _entry_to_record(entry)
            if record is None:
                logger.warning(f"Skipping malformed blob index entry: {entry!r:.100}")
                continue
            records.append(record)
        return records

    async def delete(self, image_id: str) -> DeleteOutcome:
        logger.warning(f"Delete requested for {image_id}, but the blob backend cannot delete images")
        return DeleteOutcome.UNSUPPORTED
