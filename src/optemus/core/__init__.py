"""Core functionality for Optemus.

- **config**: Pydantic Settings configuration (``OPTEMUS_*`` environment variables)
- **errors**: error kinds with HTTP status and user-facing messages
- **models**: request, variant and stored-record data models
- **prompt_enhancer**: per-variant prompt construction
- **generation_client**: OpenAI Images API wrapper
- **orchestrator**: sequential generate-and-persist pipeline
- **gallery**: timestamp reconciliation, filtering and pagination
- **payloads**: base64/data-URI decoding, image sniffing, downloads, filenames

Submodules are imported directly (``from optemus.core.orchestrator import
GenerationOrchestrator``); this package only re-exports configuration so that
importing it never pulls in the storage layer.
"""

from optemus.core.config import OptemusConfig, config

__all__ = [
    "OptemusConfig",
    "config",
]
