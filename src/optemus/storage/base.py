"""Base class and registry for storage backends.

A storage backend persists one image (bytes plus metadata) and can list and
delete what it persisted. Three backends ship with Optemus:

- **local**: image files plus JSON sidecars in ``images_dir``
- **blob**: public object store plus a versioned JSON index object
- **notion**: one Notion database row per image (metadata and URL only)

Backend Contract
----------------
``persist(payload, metadata)``
    Store one image and return a :class:`StoredImageRecord`. Every call
    creates a new record; there is no natural idempotence key, so calling
    it twice with different metadata ids yields two records.
``list(rescan=False)``
    Return the records this backend knows about, in any order. An empty
    list means "possibly incomplete", never "definitely empty": a backend
    that cannot enumerate its content returns what it can.
``delete(image_id)``
    Return a :class:`DeleteOutcome`. Backends without real deletion return
    ``DeleteOutcome.UNSUPPORTED`` rather than pretending to succeed.

Usage Example
-------------
    >>> from optemus.storage.base import backend_registry
    >>> backend = backend_registry.instantiate("local", config)
    >>> record = await backend.persist(payload, metadata)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from optemus.core.config import OptemusConfig
from optemus.core.models import DeleteOutcome, ImageMetadata, ImagePayload, StoredImageRecord

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base class for all storage backends.

    Attributes
    ----------
    name : str
        Registry key and storage flag written into records (e.g. "local")
    description : str
        Short human-readable description
    config : OptemusConfig
        Configuration the backend was built from
    """

    name: str = "base"
    description: str = "Base class for storage backends"

    def __init__(self, config: OptemusConfig) -> None:
        self.config = config
        logger.info(f"Initialized {self.name} storage backend")

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the credentials/paths this backend needs are present."""

    @abstractmethod
    async def persist(self, payload: ImagePayload, metadata: ImageMetadata) -> StoredImageRecord:
        """Store one image.

        Args:
            payload: Image bytes and/or a public URL for the image.
            metadata: Identifier, filename, prompt, timestamp and settings.

        Returns:
            The record as this backend stored it.

        Raises:
            StorageWriteError: If the image could not be stored.
        """

    @abstractmethod
    async def list(self, rescan: bool = False) -> list[StoredImageRecord]:
        """Return the records this backend knows about.

        Raises:
            StorageListError: If listing failed outright.
        """

    @abstractmethod
    async def delete(self, image_id: str) -> DeleteOutcome:
        """Delete one record (and its bytes, where the backend holds them)."""

    async def aclose(self) -> None:
        """Release network resources. No-op for backends without any."""

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "configured": self.configured,
        }


class HTTPStorageBackend(StorageBackend):
    """Base for backends that talk to a remote API over a shared httpx client."""

    def __init__(self, config: OptemusConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()


class BackendRegistry:
    """Registry mapping backend names to backend classes.

    Follows the same pattern as a model/plugin registry: classes register
    themselves at import time and are instantiated on demand by name.
    """

    def __init__(self) -> None:
        self._backends: dict[str, type[StorageBackend]] = {}

    def register(self, backend_class: type[StorageBackend]) -> type[StorageBackend]:
        """Register a backend class. Usable as a class decorator."""
        if backend_class.name in self._backends:
            logger.warning(f"Storage backend '{backend_class.name}' is already registered, overwriting")
        self._backends[backend_class.name] = backend_class
        return backend_class

    def instantiate(self, name: str, config: OptemusConfig, **kwargs: Any) -> StorageBackend:
        """Create a backend instance by name.

        Raises
        ------
        KeyError
            If ``name`` is not registered
        """
        if name not in self._backends:
            available = ", ".join(self.list_available())
            raise KeyError(f"Storage backend '{name}' not found. Available backends: {available}")
        return self._backends[name](config, **kwargs)

    def list_available(self) -> list[str]:
        return list(self._backends.keys())


backend_registry = BackendRegistry()
