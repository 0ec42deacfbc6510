"""Local filesystem storage backend.

Each image is written to ``images_dir`` together with a JSON sidecar that
shares its basename::

    public/generated-images/
        generated_2026-10-19T07-20-01-123Z_1_1a2b3c4d.png
        generated_2026-10-19T07-20-01-123Z_1_1a2b3c4d.json

Listing reads the directory and pairs every image file with its sidecar by
basename. Image files without a sidecar (copied in by hand, or left over from
older versions) are still listed: their prompt is guessed from the filename
prefix and their timestamp is left to the gallery reconciler's fallback chain.
A rescan writes sidecars for those orphans so they become regular records.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from optemus.core.config import OptemusConfig
from optemus.core.errors import StorageListError, StorageWriteError
from optemus.core.gallery import resolve_timestamp
from optemus.core.models import (
    DeleteOutcome,
    ImageMetadata,
    ImagePayload,
    StoredImageRecord,
    format_timestamp,
)
from optemus.storage.base import StorageBackend, backend_registry

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".svg")
DEFAULT_PROMPT = "No prompt available"
# Filename prefixes this app writes itself; they say nothing about the prompt.
NON_PROMPT_PREFIXES = ("generated", "untitled", "image")


def _guess_prompt(filename: str) -> str:
    """Many saved filenames start with a slug of the prompt; recover it if plausible."""
    if "_" in filename:
        prefix = filename.split("_")[0]
        candidate = prefix.replace("-", " ")
        if len(candidate) > 5 and prefix.lower() not in NON_PROMPT_PREFIXES:
            return candidate
    return DEFAULT_PROMPT


@backend_registry.register
class LocalFileBackend(StorageBackend):
    """Store images and JSON sidecars in a local directory."""

    name = "local"
    description = "Image files with JSON sidecar metadata on the local filesystem"

    def __init__(self, config: OptemusConfig) -> None:
        super().__init__(config)
        self.images_dir = Path(config.images_dir)
        self.url_prefix = config.public_url_prefix.rstrip("/")
        self.images_dir.mkdir(parents=True, exist_ok=True)

    @property
    def configured(self) -> bool:
        return self.images_dir.is_dir()

    def resolve_path(self, filename: str) -> Path | None:
        """Return the path of a stored image, or ``None`` for unsafe or missing names."""
        if not filename or Path(filename).name != filename or filename.startswith("."):
            return None
        path = self.images_dir / filename
        return path if path.is_file() else None

    def _sidecar_path(self, filename: str) -> Path:
        return self.images_dir / f"{Path(filename).stem}.json"

    def _url_for(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    async def persist(self, payload: ImagePayload, metadata: ImageMetadata) -> StoredImageRecord:
        if payload.data is None:
            raise StorageWriteError("Local storage needs image bytes")
        if Path(metadata.filename).name != metadata.filename:
            raise StorageWriteError(f"Unsafe filename: {metadata.filename}")

        image_path = self.images_dir / metadata.filename
        sidecar = {
            "id": metadata.id,
            "prompt": metadata.prompt,
            "timestamp": metadata.created_at,
            "settings": metadata.settings,
            "filename": metadata.filename,
            "enhancedPrompt": metadata.enhanced_prompt,
            "sourceUrl": metadata.source_url,
        }

        try:
            image_path.write_bytes(payload.data)
            with open(self._sidecar_path(metadata.filename), "w", encoding="utf-8") as handle:
                json.dump(sidecar, handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            raise StorageWriteError(f"Failed to write {image_path}: {exc}") from exc

        logger.info(f"Saved image locally: {image_path}")

        return StoredImageRecord(
            id=metadata.id,
            filename=metadata.filename,
            prompt=metadata.prompt,
            url=self._url_for(metadata.filename),
            created_at=metadata.created_at,
            settings=dict(metadata.settings),
            storage_flags=(self.name,),
            enhanced_prompt=metadata.enhanced_prompt,
            modified_at=image_path.stat().st_mtime,
        )

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    def _read_sidecar(self, filename: str) -> dict[str, Any] | None:
        sidecar_path = self._sidecar_path(filename)
        if not sidecar_path.exists():
            return None
        try:
            with open(sidecar_path, encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning(f"Error reading metadata for {filename}: {exc}")
            return None
        return data if isinstance(data, dict) else None

    def _record_for(self, image_path: Path) -> tuple[StoredImageRecord, bool]:
        """Build the record for one image file; the flag is True for orphans."""
        filename = image_path.name
        try:
            modified_at = image_path.stat().st_mtime
        except OSError:
            modified_at = None

        sidecar = self._read_sidecar(filename)
        if sidecar is None:
            record = StoredImageRecord(
                id=image_path.stem,
                filename=filename,
                prompt=_guess_prompt(filename),
                url=self._url_for(filename),
                created_at=None,
                storage_flags=(self.name,),
                modified_at=modified_at,
            )
            return record, True

        settings = sidecar.get("settings")
        record = StoredImageRecord(
            id=str(sidecar.get("id") or image_path.stem),
            filename=filename,
            prompt=sidecar.get("prompt") or DEFAULT_PROMPT,
            url=self._url_for(filename),
            created_at=sidecar.get("timestamp") or sidecar.get("createdAt"),
            settings=settings if isinstance(settings, dict) else {},
            storage_flags=(self.name,),
            enhanced_prompt=sidecar.get("enhancedPrompt"),
            modified_at=modified_at,
        )
        return record, False

    def _adopt_orphan(self, record: StoredImageRecord) -> StoredImageRecord:
        """Write a sidecar for an image that has none and return the updated record."""
        created_at = format_timestamp(resolve_timestamp(record))
        sidecar = {
            "id": record.id,
            "prompt": record.prompt,
            "timestamp": created_at,
            "settings": {},
            "filename": record.filename,
        }
        try:
            with open(self._sidecar_path(record.filename), "w", encoding="utf-8") as handle:
                json.dump(sidecar, handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            logger.warning(f"Could not write metadata for {record.filename}: {exc}")
            return record
        logger.info(f"Rescan adopted orphan image {record.filename}")
        return StoredImageRecord(
            id=record.id,
            filename=record.filename,
            prompt=record.prompt,
            url=record.url,
            created_at=created_at,
            storage_flags=record.storage_flags,
            modified_at=record.modified_at,
        )

    async def list(self, rescan: bool = False) -> list[StoredImageRecord]:
        try:
            image_paths = sorted(
                path
                for path in self.images_dir.iterdir()
                if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS
            )
        except OSError as exc:
            raise StorageListError(f"Cannot read {self.images_dir}: {exc}") from exc

        records: list[StoredImageRecord] = []
        for image_path in image_paths:
            record, orphan = self._record_for(image_path)
            if orphan and rescan:
                record = self._adopt_orphan(record)
            records.append(record)

        logger.debug(f"Found {len(records)} images in {self.images_dir}")
        return records

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _find_image(self, image_id: str) -> Path | None:
        if not image_id or Path(image_id).name != image_id:
            return None

        # Fast path: the id is the file stem.
        for extension in IMAGE_EXTENSIONS:
            candidate = self.images_dir / f"{image_id}{extension}"
            if candidate.is_file():
                return candidate

        # Otherwise the id was assigned at generation time and lives in a sidecar.
        for image_path in self.images_dir.iterdir():
            if not image_path.is_file() or image_path.suffix.lower() not in IMAGE_EXTENSIONS:
                continue
            sidecar = self._read_sidecar(image_path.name)
            if sidecar and sidecar.get("id") == image_id:
                return image_path
        return None

    async def delete(self, image_id: str) -> DeleteOutcome:
        image_path = self._find_image(image_id)
        if image_path is None:
            return DeleteOutcome.NOT_FOUND

        sidecar_path = self._sidecar_path(image_path.name)
        try:
            image_path.unlink()
            logger.info(f"Deleted image: {image_path}")
            if sidecar_path.exists():
                sidecar_path.unlink()
                logger.info(f"Deleted metadata: {sidecar_path}")
        except OSError as exc:
            raise StorageWriteError(f"Failed to delete {image_path}: {exc}") from exc
        return DeleteOutcome.DELETED
