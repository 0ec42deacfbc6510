"""Configuration management for Optemus.

This module provides centralized configuration management using Pydantic Settings.
Application settings are loaded from environment variables with the OPTEMUS_
prefix. Third-party credentials additionally accept their conventional
unprefixed names so an existing deployment environment works unchanged.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (OPTEMUS_* prefix, or the credential aliases below)
2. .env file in the project root
3. Default values defined in OptemusConfig

Example .env file:
    OPENAI_API_KEY=sk-...
    OPTEMUS_STORAGE_BACKENDS=local,blob
    BLOB_READ_WRITE_TOKEN=vercel_blob_rw_...
    OPTEMUS_IMAGES_DIR=public/generated-images

Credential Aliases
------------------
- ``OPENAI_API_KEY``        -> openai_api_key
- ``BLOB_READ_WRITE_TOKEN`` -> blob_token
- ``NOTION_TOKEN``          -> notion_token
- ``NOTION_DATABASE_ID``    -> notion_database_id

Storage Backends
----------------
``storage_backends`` is a comma-separated, ordered list of backend names
(``local``, ``blob``, ``notion``). Every generated image is persisted to each
configured backend in order. The first backend is the *primary* one: it
serves gallery listings and handles deletes.

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Services never read it implicitly; the FastAPI application passes it (or a
test configuration) explicitly into every component it builds.

Usage Example
-------------
    from optemus.core.config import config

    print(config.image_model)
    print(config.storage_backend_names)
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_BACKENDS = ("local", "blob", "notion")


class OptemusConfig(BaseSettings):
    """Main configuration for Optemus.

    Attributes
    ----------
    Generation Settings:
        openai_api_key : str | None
            API key for the image generation provider
        image_model : str
            Provider model identifier (gpt-image-1)
        request_timeout : float
            Per-call timeout for generation requests, in seconds
        max_retries : int
            Retry budget for transient provider failures (SDK-managed)

    Storage Settings:
        storage_backends : str
            Comma-separated ordered backend names; first is primary
        images_dir : Path
            Directory the local backend writes images and sidecars into
        public_url_prefix : str
            URL prefix under which images_dir is served
        blob_base_url : str
            Base URL of the blob object store API
        blob_token : str | None
            Read/write token for the blob store
        blob_index_path : str
            Object path of the JSON metadata index inside the blob store
        blob_index_retries : int
            Attempts for a conflicting index update before giving up
        notion_token : str | None
            Integration token for the document database
        notion_database_id : str | None
            Database that receives one row per image
        notion_version : str
            Notion-Version header sent with every request
        download_timeout : float
            Timeout for fetching remote images, in seconds

    Server Settings:
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        log_level : str
            Root logging level applied by the CLI entry point

    Notes
    -----
    - Directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OPTEMUS_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Generation provider
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("openai_api_key", "OPENAI_API_KEY", "OPTEMUS_OPENAI_API_KEY"),
        description="API key for the image generation provider",
    )
    image_model: str = Field(
        default="gpt-image-1",
        description="Provider model used for text-to-image generation",
    )
    request_timeout: float = Field(
        default=60.0,
        description="Timeout for a single generation call, in seconds",
        gt=0,
    )
    max_retries: int = Field(
        default=2,
        description="Retry budget for transient generation failures",
        ge=0,
        le=10,
    )

    # Storage
    storage_backends: str = Field(
        default="local",
        description="Comma-separated storage backends; the first one is primary",
    )
    images_dir: Path = Field(
        default=Path("public/generated-images"),
        description="Directory for locally stored images and metadata sidecars",
    )
    public_url_prefix: str = Field(
        default="/images",
        description="URL prefix under which images_dir is served",
    )
    blob_base_url: str = Field(
        default="https://blob.vercel-storage.com",
        description="Base URL of the blob object store",
    )
    blob_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("blob_token", "BLOB_READ_WRITE_TOKEN", "OPTEMUS_BLOB_TOKEN"),
        description="Read/write token for the blob object store",
    )
    blob_index_path: str = Field(
        default="images-index.json",
        description="Object path of the gallery metadata index",
    )
    blob_index_retries: int = Field(
        default=5,
        description="Attempts for a conflicting index update",
        ge=1,
        le=50,
    )
    notion_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("notion_token", "NOTION_TOKEN", "OPTEMUS_NOTION_TOKEN"),
        description="Notion integration token",
    )
    notion_database_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "notion_database_id", "NOTION_DATABASE_ID", "OPTEMUS_NOTION_DATABASE_ID"
        ),
        description="Notion database receiving one row per image",
    )
    notion_version: str = Field(
        default="2022-06-28",
        description="Notion API version header",
    )
    download_timeout: float = Field(
        default=30.0,
        description="Timeout for downloading remote images, in seconds",
        gt=0,
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=4001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )

    @field_validator("storage_backends")
    @classmethod
    def _check_backends(cls, value: str) -> str:
        names = [name.strip().lower() for name in value.split(",") if name.strip()]
        if not names:
            raise ValueError("at least one storage backend must be configured")
        unknown = [name for name in names if name not in KNOWN_BACKENDS]
        if unknown:
            raise ValueError(
                f"unknown storage backend(s): {', '.join(unknown)}; "
                f"expected one of {', '.join(KNOWN_BACKENDS)}"
            )
        return ",".join(names)

    @field_validator("notion_database_id")
    @classmethod
    def _strip_database_id(cls, value: str | None) -> str | None:
        # Copy-pasted ids frequently carry trailing whitespace.
        return value.strip() if value else value

    @property
    def storage_backend_names(self) -> list[str]:
        """Ordered backend names; the first entry is the primary backend."""
        return self.storage_backends.split(",")

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.images_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance
# Loaded from environment variables (OPTEMUS_* prefix plus credential aliases)
# and the .env file when the module is imported.
config = OptemusConfig()
