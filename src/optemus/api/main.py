"""Optemus FastAPI Application.

This module builds the FastAPI application, defines every REST route, and
provides the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
Handlers are thin. Every piece of behaviour lives in a service object that
is constructed explicitly from an :class:`~optemus.core.config.OptemusConfig`
and stored on ``app.state.services`` by the lifespan context:

- **Generation** is performed by
  :class:`~optemus.core.orchestrator.GenerationOrchestrator`, which enhances
  prompts, calls the provider and persists each variant.
- **Storage** is a list of backends from the backend registry, in
  configuration order. The first one is primary: it answers gallery
  listings and deletes.
- **Gallery views** are computed per request by
  :class:`~optemus.core.gallery.GalleryReconciler`.
- **Locally stored images** are served by ``StaticFiles`` at
  ``config.public_url_prefix``.

Errors derived from :class:`~optemus.core.errors.OptemusError` are rendered by
a single exception handler as ``{"success": false, "error", "kind"}``.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
POST      ``/api/generate-image``       Generate 1, 2 or 4 image variants
GET       ``/api/images``               Reconciled, paginated gallery
DELETE    ``/api/images/{id}``          Delete an image (best effort)
POST      ``/api/save-image``           Persist an existing image
GET       ``/api/download/{filename}``  Download a locally stored image
GET       ``/api/health``               Configuration presence summary
GET       ``/api/diagnostics``          Health plus truncated key previews
POST      ``/api/debug-image-data``     Describe a save payload's shape
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    optemus

Direct invocation::

    python -m optemus.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from optemus import __version__
from optemus.api.models import GenerateImageRequest, SaveImageRequest
from optemus.core.config import OptemusConfig, config
from optemus.core.errors import ImageNotFoundError, OptemusError, ValidationError
from optemus.core.gallery import (
    FILTER_OPTIONS,
    SORT_OPTIONS,
    GalleryReconciler,
    filter_gallery_entries,
    paginate_gallery_entries,
    sort_gallery_entries,
)
from optemus.core.generation_client import ImageGenerationClient
from optemus.core.models import DeleteOutcome, format_timestamp, utc_now
from optemus.core.orchestrator import GenerationOrchestrator
from optemus.core.payloads import ImageFetcher, content_type_for
from optemus.storage import LocalFileBackend, StorageBackend, backend_registry

logger = logging.getLogger(__name__)

EMPTY_GALLERY_MESSAGE = "No images yet. Generate some images and they will appear here."
DEGRADED_GALLERY_MESSAGE = "Image listing is temporarily unavailable; showing partial results"
PREVIEW_LENGTH = 50


# ---------------------------------------------------------------------------
# Service wiring.
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Explicitly constructed service objects shared by all handlers."""

    config: OptemusConfig
    generation_client: Any
    backends: list[StorageBackend]
    orchestrator: GenerationOrchestrator
    reconciler: GalleryReconciler = field(default_factory=GalleryReconciler)
    fetcher: ImageFetcher | None = None

    @property
    def primary(self) -> StorageBackend:
        return self.backends[0]

    def local_backend(self) -> LocalFileBackend | None:
        for backend in self.backends:
            if isinstance(backend, LocalFileBackend):
                return backend
        return None

    async def aclose(self) -> None:
        for backend in self.backends:
            await backend.aclose()
        if self.fetcher is not None:
            await self.fetcher.aclose()
        closer = getattr(self.generation_client, "aclose", None)
        if closer is not None:
            await closer()


def build_services(app_config: OptemusConfig) -> Services:
    """Construct every service from one configuration object."""
    client = ImageGenerationClient.from_config(app_config)
    backends = [backend_registry.instantiate(name, app_config) for name in app_config.storage_backend_names]
    fetcher = ImageFetcher(timeout=app_config.download_timeout)
    orchestrator = GenerationOrchestrator(client, backends, fetcher=fetcher)

    for backend in backends:
        if not backend.configured:
            logger.warning(f"Storage backend '{backend.name}' is enabled but not configured")
    if not client.configured:
        logger.warning("No image generation API key configured; generation requests will fail")

    return Services(
        config=app_config,
        generation_client=client,
        backends=backends,
        orchestrator=orchestrator,
        fetcher=fetcher,
    )


def _services(request: Request) -> Services:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Secret previews.
# ---------------------------------------------------------------------------


def mask_secret(value: str | None) -> dict[str, Any]:
    """Describe a secret without revealing it.

    At most the first 8 characters are shown, and never more than a third of
    the value, so short secrets are not exposed in full.
    """
    if not value:
        return {"present": False, "length": 0, "preview": None}
    visible = min(8, len(value) // 3)
    return {"present": True, "length": len(value), "preview": f"{value[:visible]}..."}


def _preview(value: Any, limit: int = PREVIEW_LENGTH) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return value if len(value) <= limit else f"{value[:limit]}..."


def _environment(services: Services) -> dict[str, Any]:
    app_config = services.config
    return {
        "openaiConfigured": bool(app_config.openai_api_key),
        "blobConfigured": bool(app_config.blob_token),
        "notionConfigured": bool(app_config.notion_token and app_config.notion_database_id),
        "storageBackends": [backend.name for backend in services.backends],
        "primaryBackend": services.primary.name,
        "storageConfigured": all(backend.configured for backend in services.backends),
        "model": app_config.image_model,
    }


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(app_config: OptemusConfig | None = None, services: Services | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        app_config: Configuration to build services from. Defaults to the
            global :data:`~optemus.core.config.config`.
        services: Pre-built services (tests inject fakes here). When given,
            the lifespan neither builds nor closes them.

    Returns:
        Configured FastAPI instance.
    """
    app_config = app_config or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build services on startup and release HTTP clients on shutdown."""
        # --- Startup -------------------------------------------------------
        owned = services is None
        app.state.services = build_services(app_config) if owned else services
        names = ", ".join(app_config.storage_backend_names)
        logger.info(f"Optemus {__version__} started with storage backends: {names}")

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        if owned:
            await app.state.services.aclose()
            logger.info("Services closed on shutdown.")

    app = FastAPI(
        title="Optemus",
        description="Brand-styled image generation API with pluggable image storage.",
        version=__version__,
        lifespan=lifespan,
    )

    # The browser client may be served from any origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Local record URLs are ``{public_url_prefix}/{filename}``.
    app.mount(
        app_config.public_url_prefix,
        StaticFiles(directory=str(app_config.images_dir)),
        name="images",
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OptemusError)
    async def handle_optemus_error(request: Request, exc: OptemusError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(f"{request.method} {request.url.path} failed ({exc.kind}): {exc}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        error = ValidationError("; ".join(problems) or "Invalid request")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _register_routes(app: FastAPI) -> None:
    @app.options("/{path:path}", include_in_schema=False)
    async def options_handler(path: str) -> Response:
        """Answer bare OPTIONS requests; CORS pre-flights are handled by the middleware."""
        return Response(status_code=200)

    # -----------------------------------------------------------------------
    # Generation.
    # -----------------------------------------------------------------------

    @app.post("/api/generate-image")
    async def generate_image(req: GenerateImageRequest, request: Request) -> dict:
        """Generate 1, 2 or 4 variants of a prompt and persist each one.

        Variants are generated one after another. If the first variant fails
        the request fails with that error; later failures only shrink the
        ``count`` in the response.
        """
        result = await _services(request).orchestrator.handle(req.to_domain())
        return result.to_dict()

    # -----------------------------------------------------------------------
    # Gallery.
    # -----------------------------------------------------------------------

    @app.get("/api/images")
    async def list_images(
        request: Request,
        q: str | None = Query(default=None, description="Search prompt and settings"),
        filter_by: str = Query(default="all", alias="filter", description="all or recent (last 24 hours)"),
        sort: str = Query(default="newest", description="newest, oldest or prompt"),
        page: int = Query(default=1, ge=1),
        per_page: int = Query(default=50, ge=1, le=200),
        rescan: bool = Query(default=False, description="Refresh the primary backend's view"),
    ) -> dict:
        """Return the reconciled gallery from the primary backend.

        A listing failure degrades to an empty page with ``complete: false``
        instead of failing the whole request.
        """
        if filter_by not in FILTER_OPTIONS:
            raise ValidationError(f"Unsupported filter '{filter_by}'; expected one of {', '.join(FILTER_OPTIONS)}")
        if sort not in SORT_OPTIONS:
            raise ValidationError(f"Unsupported sort '{sort}'; expected one of {', '.join(SORT_OPTIONS)}")

        services = _services(request)
        primary = services.primary
        complete = True
        try:
            records = await primary.list(rescan=rescan)
        except OptemusError as exc:
            logger.error(f"Listing images from {primary.name} failed ({exc.kind}): {exc}")
            records = []
            complete = False

        entries = services.reconciler.reconcile(records)
        entries = filter_gallery_entries(entries, query=q, filter_by=filter_by)
        entries = sort_gallery_entries(entries, sort)
        gallery_page = paginate_gallery_entries(entries, page, per_page)

        if not complete:
            message = DEGRADED_GALLERY_MESSAGE
        elif gallery_page.total == 0:
            message = EMPTY_GALLERY_MESSAGE
        else:
            message = f"Found {gallery_page.total} image(s)"

        return {
            "success": True,
            "images": [entry.to_dict() for entry in gallery_page.entries],
            "count": gallery_page.total,
            "total": gallery_page.total,
            "page": gallery_page.page,
            "per_page": gallery_page.per_page,
            "pages": gallery_page.pages,
            "message": message,
            "source": primary.name,
            "complete": complete,
        }

    @app.delete("/api/images/{image_id}")
    async def delete_image(image_id: str, request: Request) -> dict:
        """Delete an image from the primary backend, then best-effort elsewhere.

        Raises:
            ImageNotFoundError: The primary backend has no such image.
        """
        services = _services(request)
        primary = services.primary
        outcome = await primary.delete(image_id)

        if outcome is DeleteOutcome.NOT_FOUND:
            raise ImageNotFoundError(f"Image {image_id} not found in {primary.name}", user_message="Image not found")

        for backend in services.backends[1:]:
            try:
                secondary = await backend.delete(image_id)
            except OptemusError as exc:
                logger.warning(f"Failed to delete {image_id} from {backend.name}: {exc}")
                continue
            logger.debug(f"Delete {image_id} from {backend.name}: {secondary.value}")

        if outcome is DeleteOutcome.UNSUPPORTED:
            return {
                "success": True,
                "deleted": False,
                "message": f"Deletion is not supported by the {primary.name} storage backend; the image was kept",
            }
        return {"success": True, "deleted": True, "message": "Image deleted successfully"}

    # -----------------------------------------------------------------------
    # Explicit save and download.
    # -----------------------------------------------------------------------

    @app.post("/api/save-image")
    async def save_image(req: SaveImageRequest, request: Request) -> dict:
        """Persist an already-generated image given as base64 or a URL."""
        record = await _services(request).orchestrator.save(
            prompt=req.prompt,
            settings=req.settings,
            base64_data=req.base64_data,
            image_url=req.image_url,
        )
        return {
            "success": True,
            "message": "Image saved successfully",
            "image": {
                "id": record.id,
                "filename": record.filename,
                "url": record.url,
                "metadata": {
                    "prompt": record.prompt,
                    "timestamp": record.created_at,
                    "settings": dict(record.settings),
                    "filename": record.filename,
                    "url": record.url,
                    "storage": list(record.storage_flags),
                },
            },
        }

    @app.get("/api/download/{filename}")
    async def download_image(filename: str, request: Request) -> FileResponse:
        """Send a locally stored image as an attachment."""
        local = _services(request).local_backend()
        path = local.resolve_path(filename) if local is not None else None
        if path is None or not path.is_file():
            raise ImageNotFoundError(f"No local file named {filename!r}", user_message="File not found")
        return FileResponse(path, media_type=content_type_for(path.name), filename=path.name)

    # -----------------------------------------------------------------------
    # Health and diagnostics.
    # -----------------------------------------------------------------------

    @app.get("/api/health")
    async def health(request: Request) -> dict:
        return {
            "success": True,
            "status": "ok",
            "version": __version__,
            "timestamp": format_timestamp(utc_now()),
            "environment": _environment(_services(request)),
        }

    @app.get("/api/diagnostics")
    async def diagnostics(request: Request) -> dict:
        """Health plus truncated credential previews and per-backend status."""
        services = _services(request)
        app_config = services.config
        return {
            "success": True,
            "version": __version__,
            "timestamp": format_timestamp(utc_now()),
            "environment": _environment(services),
            "credentials": {
                "openaiApiKey": mask_secret(app_config.openai_api_key),
                "blobToken": mask_secret(app_config.blob_token),
                "notionToken": mask_secret(app_config.notion_token),
                "notionDatabaseId": mask_secret(app_config.notion_database_id),
            },
            "backends": [backend.describe() for backend in services.backends],
        }

    @app.post("/api/debug-image-data")
    async def debug_image_data(payload: dict[str, Any] | None = Body(default=None)) -> dict:
        """Report the shape of a save payload without storing anything."""
        payload = payload or {}
        base64_data = payload.get("base64Data")
        image_url = payload.get("imageUrl")
        return {
            "success": True,
            "receivedKeys": sorted(payload),
            "hasPrompt": bool(payload.get("prompt")),
            "hasBase64Data": isinstance(base64_data, str) and bool(base64_data),
            "base64Length": len(base64_data) if isinstance(base64_data, str) else 0,
            "base64Preview": _preview(base64_data),
            "isDataUri": isinstance(base64_data, str) and base64_data.startswith("data:"),
            "hasImageUrl": isinstance(image_url, str) and bool(image_url),
            "imageUrlPreview": _preview(image_url),
            "settingsKeys": sorted(payload["settings"]) if isinstance(payload.get("settings"), dict) else [],
        }


# ---------------------------------------------------------------------------
# Default application instance.
# ---------------------------------------------------------------------------
app = create_app(config)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~optemus.core.config.config`
    (``OPTEMUS_SERVER_HOST``, ``OPTEMUS_SERVER_PORT``, ``OPTEMUS_LOG_LEVEL``).
    Defaults to ``0.0.0.0:4001``.

    This function is registered as the ``optemus`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "optemus.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
