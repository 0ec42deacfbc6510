"""Unit tests for optemus.storage.blob.

The object store is simulated in memory behind ``httpx.MockTransport``,
including ETags and conditional writes, so the optimistic-concurrency index
update can be exercised deterministically.
"""

from __future__ import annotations

import asyncio
import json
from urllib.parse import unquote

import httpx
import pytest

from optemus.core.errors import ConfigurationError, StorageListError, StorageWriteError
from optemus.core.models import DeleteOutcome, ImageMetadata, ImagePayload
from optemus.storage.blob import BlobIndexBackend

BASE_URL = "https://blob.test"
PUBLIC_URL = "https://public.blob.test"


class FakeBlobStore:
    """In-memory object store speaking the conditional PUT/GET protocol."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.versions = 0
        self.index_puts = 0
        self.before_index_put = None
        self.requests: list[httpx.Request] = []

    def _etag(self) -> str:
        self.versions += 1
        return f'"v{self.versions}"'

    def store(self, pathname: str, body: bytes) -> str:
        etag = self._etag()
        self.objects[pathname] = (body, etag)
        return etag

    def index(self, pathname: str = "images-index.json") -> dict:
        return json.loads(self.objects[pathname][0])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("authorization") != "Bearer rw-token":
            return httpx.Response(401)

        pathname = unquote(request.url.path.lstrip("/"))
        current = self.objects.get(pathname)

        if request.method == "GET":
            if current is None:
                return httpx.Response(404)
            return httpx.Response(200, content=current[0], headers={"etag": current[1]})

        if pathname.endswith(".json"):
            self.index_puts += 1
            if self.before_index_put is not None:
                self.before_index_put(self)

        current = self.objects.get(pathname)
        if_match = request.headers.get("if-match")
        if_none_match = request.headers.get("if-none-match")
        if if_match is not None and (current is None or current[1] != if_match):
            return httpx.Response(412)
        if if_none_match == "*" and current is not None:
            return httpx.Response(412)

        etag = self.store(pathname, request.content)
        return httpx.Response(200, json={"url": f"{PUBLIC_URL}/{pathname}"}, headers={"etag": etag})


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def blob_config(test_config):
    return test_config.model_copy(
        update={"blob_token": "rw-token", "blob_base_url": BASE_URL, "blob_index_retries": 3}
    )


@pytest.fixture
def blob_backend(blob_config, blob_store) -> BlobIndexBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(blob_store.handler))
    return BlobIndexBackend(blob_config, client=client)


def _metadata(number: int = 1) -> ImageMetadata:
    return ImageMetadata(
        id=f"id-{number}",
        filename=f"generated_2026-10-19T07-20-0{number}-000Z_1_abcd000{number}.png",
        prompt=f"prompt {number}",
        created_at=f"2026-10-19T07:20:0{number}.000Z",
        settings={"size": "1024x1024"},
    )


# ---------------------------------------------------------------------------
# Persist.
# ---------------------------------------------------------------------------


class TestPersist:
    """Test BlobIndexBackend.persist and its index update."""

    def test_uploads_bytes_and_creates_index(self, blob_backend, blob_store, png_bytes):
        metadata = _metadata()
        record = asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), metadata))

        assert record.url == f"{PUBLIC_URL}/{metadata.filename}"
        assert record.storage_flags == ("blob",)
        assert blob_store.objects[metadata.filename][0] == png_bytes

        index = blob_store.index()
        assert index["version"] == 1
        assert [entry["id"] for entry in index["images"]] == ["id-1"]
        assert index["images"][0]["url"] == record.url

    def test_first_index_write_is_create_only(self, blob_backend, blob_store, png_bytes):
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata()))
        index_put = [r for r in blob_store.requests if r.method == "PUT" and r.url.path.endswith(".json")][0]
        assert index_put.headers["if-none-match"] == "*"
        assert "if-match" not in index_put.headers

    def test_later_writes_are_conditional(self, blob_backend, blob_store, png_bytes):
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata(1)))
        etag = blob_store.objects["images-index.json"][1]
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata(2)))

        last_put = [r for r in blob_store.requests if r.method == "PUT" and r.url.path.endswith(".json")][-1]
        assert last_put.headers["if-match"] == etag
        assert blob_store.index()["version"] == 2

    def test_conflict_is_retried_and_nothing_is_lost(self, blob_backend, blob_store, png_bytes):
        """A concurrent writer sneaking in between read and write keeps both entries."""
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata(1)))

        def concurrent_writer(store: FakeBlobStore) -> None:
            if store.index_puts == 2:
                index = store.index()
                index["images"].append({"id": "other", "filename": "other.png", "url": f"{PUBLIC_URL}/other.png"})
                index["version"] += 1
                store.store("images-index.json", json.dumps(index).encode())

        blob_store.before_index_put = concurrent_writer
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata(2)))

        index = blob_store.index()
        assert [entry["id"] for entry in index["images"]] == ["id-1", "other", "id-2"]
        assert index["version"] == 3
        assert blob_store.index_puts == 3

    def test_gives_up_after_retries(self, blob_backend, blob_store, png_bytes):
        def always_conflict(store: FakeBlobStore) -> None:
            store.store("images-index.json", json.dumps({"version": 99, "images": []}).encode())

        blob_store.before_index_put = always_conflict
        with pytest.raises(StorageWriteError, match="Gave up"):
            asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata()))
        assert blob_store.index_puts == 3

    def test_requires_bytes(self, blob_backend):
        with pytest.raises(StorageWriteError):
            asyncio.run(blob_backend.persist(ImagePayload(url="https://cdn.example.com/a.png"), _metadata()))

    def test_missing_token(self, test_config, blob_store, png_bytes):
        config = test_config.model_copy(update={"blob_base_url": BASE_URL})
        backend = BlobIndexBackend(config, client=httpx.AsyncClient(transport=httpx.MockTransport(blob_store.handler)))
        assert not backend.configured
        with pytest.raises(ConfigurationError):
            asyncio.run(backend.persist(ImagePayload(data=png_bytes), _metadata()))

    def test_upload_http_error(self, blob_config, png_bytes):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        backend = BlobIndexBackend(blob_config, client=client)
        with pytest.raises(StorageWriteError):
            asyncio.run(backend.persist(ImagePayload(data=png_bytes), _metadata()))


# ---------------------------------------------------------------------------
# List and delete.
# ---------------------------------------------------------------------------


class TestList:
    """Test BlobIndexBackend.list."""

    def test_no_index_yet(self, blob_backend):
        assert asyncio.run(blob_backend.list()) == []

    def test_lists_index_entries(self, blob_backend, png_bytes):
        for number in (1, 2):
            asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata(number)))

        records = asyncio.run(blob_backend.list())
        assert [record.id for record in records] == ["id-1", "id-2"]
        assert records[0].settings == {"size": "1024x1024"}
        assert records[0].created_at == "2026-10-19T07:20:01.000Z"

    def test_skips_malformed_entries(self, blob_backend, blob_store):
        index = {"version": 4, "images": [{"id": "no-url"}, "junk", {"url": f"{PUBLIC_URL}/x.png", "timestamp": 5}]}
        blob_store.store("images-index.json", json.dumps(index).encode())

        (record,) = asyncio.run(blob_backend.list())
        assert record.filename == "x.png"
        assert record.id == "x.png"
        assert record.created_at == 5

    def test_corrupt_index_reads_as_empty(self, blob_backend, blob_store):
        blob_store.store("images-index.json", b"{oops")
        assert asyncio.run(blob_backend.list()) == []

    def test_read_failure(self, blob_config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        backend = BlobIndexBackend(blob_config, client=client)
        with pytest.raises(StorageListError):
            asyncio.run(backend.list())

    def test_unconfigured_lists_nothing(self, test_config):
        backend = BlobIndexBackend(test_config)
        assert asyncio.run(backend.list()) == []


class TestDelete:
    def test_delete_is_unsupported(self, blob_backend, blob_store, png_bytes):
        asyncio.run(blob_backend.persist(ImagePayload(data=png_bytes), _metadata()))

        assert asyncio.run(blob_backend.delete("id-1")) is DeleteOutcome.UNSUPPORTED
        assert [entry["id"] for entry in blob_store.index()["images"]] == ["id-1"]
