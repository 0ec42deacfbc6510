"""Shared pytest fixtures for Optemus tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from optemus.api.main import Services, create_app
from optemus.core.config import OptemusConfig
from optemus.core.gallery import GalleryReconciler
from optemus.core.models import ImagePayload
from optemus.core.orchestrator import GenerationOrchestrator
from optemus.core.payloads import ImageFetcher
from optemus.storage.local import LocalFileBackend

CLOCK_START = datetime(2026, 10, 19, 7, 20, 1, 123000, tzinfo=timezone.utc)


class FakeGenerationClient:
    """Stand-in for :class:`ImageGenerationClient` that records every call.

    ``outcomes`` is consumed one entry per call; an entry that is an exception
    is raised, anything else is returned. Once it runs out, ``default`` is
    returned.
    """

    configured = True

    def __init__(self, default: ImagePayload, outcomes: list[Any] | None = None) -> None:
        self.default = default
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def generate(self, prompt: str, size: str, quality: str) -> ImagePayload:
        self.calls.append((prompt, size, quality))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


def make_image_bytes(image_format: str = "PNG", color: str = "red") -> bytes:
    """Encode a tiny solid-colour image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=color).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> OptemusConfig:
    """Create a test configuration with temporary directories.

    Credentials are set explicitly so values from the developer's
    environment never leak into tests.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        OptemusConfig instance for testing
    """
    return OptemusConfig(
        _env_file=None,
        openai_api_key="sk-test-0123456789abcdefghijklmnop",
        storage_backends="local",
        images_dir=temp_dir / "images",
        public_url_prefix="/images",
        blob_base_url="https://blob.test",
        blob_token=None,
        notion_token=None,
        notion_database_id=None,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A valid 4x4 PNG image."""
    return make_image_bytes("PNG")


@pytest.fixture
def fake_client(png_bytes: bytes) -> FakeGenerationClient:
    """Generation client returning inline PNG bytes for every call."""
    return FakeGenerationClient(default=ImagePayload(data=png_bytes))


@pytest.fixture
def ticking_clock() -> Callable[[], datetime]:
    """Clock that advances one second per call, starting at a fixed instant."""
    state = {"now": CLOCK_START}

    def tick() -> datetime:
        current = state["now"]
        state["now"] = current + timedelta(seconds=1)
        return current

    return tick


@pytest.fixture
def remote_images(png_bytes: bytes) -> dict[str, bytes]:
    """URL -> body map served by :func:`image_fetcher`; edit it per test."""
    return {"https://images.example.com/cat.png": png_bytes}


@pytest.fixture
def image_fetcher(remote_images: dict[str, bytes]) -> ImageFetcher:
    """Fetcher whose HTTP client answers from ``remote_images`` (404 otherwise)."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = remote_images.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return ImageFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def local_backend(test_config: OptemusConfig) -> LocalFileBackend:
    return LocalFileBackend(test_config)


@pytest.fixture
def orchestrator(
    fake_client: FakeGenerationClient,
    local_backend: LocalFileBackend,
    image_fetcher: ImageFetcher,
    ticking_clock: Callable[[], datetime],
) -> GenerationOrchestrator:
    """Orchestrator wired to the fake client and a temporary local backend."""
    return GenerationOrchestrator(
        fake_client,
        [local_backend],
        fetcher=image_fetcher,
        clock=ticking_clock,
    )


@pytest.fixture
def services(
    test_config: OptemusConfig,
    fake_client: FakeGenerationClient,
    local_backend: LocalFileBackend,
    image_fetcher: ImageFetcher,
    orchestrator: GenerationOrchestrator,
) -> Services:
    return Services(
        config=test_config,
        generation_client=fake_client,
        backends=[local_backend],
        orchestrator=orchestrator,
        reconciler=GalleryReconciler(),
        fetcher=image_fetcher,
    )


@pytest.fixture
def test_client(test_config: OptemusConfig, services: Services) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with injected services; no network access occurs."""
    app = create_app(test_config, services=services)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def image_factory() -> Callable[..., bytes]:
    """Factory for encoded test images, e.g. ``image_factory("JPEG")``."""
    return make_image_bytes
