"""Pluggable image storage backends.

Importing this package registers every shipped backend with
:data:`~optemus.storage.base.backend_registry`.
"""

from optemus.storage.base import BackendRegistry, StorageBackend, backend_registry
from optemus.storage.blob import BlobIndexBackend
from optemus.storage.local import LocalFileBackend
from optemus.storage.notion import NotionBackend

__all__ = [
    "BackendRegistry",
    "BlobIndexBackend",
    "LocalFileBackend",
    "NotionBackend",
    "StorageBackend",
    "backend_registry",
]
