"""Tests for optemus.core.config: configuration management.

Tests cover:
- Default values for configuration fields.
- Environment variable overrides via the OPTEMUS_ prefix.
- Conventional credential variable names (OPENAI_API_KEY etc.).
- Storage backend list parsing and validation.
- Automatic directory creation on initialisation.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from optemus.core.config import OptemusConfig

CREDENTIAL_VARS = (
    "OPENAI_API_KEY",
    "BLOB_READ_WRITE_TOKEN",
    "NOTION_TOKEN",
    "NOTION_DATABASE_ID",
    "OPTEMUS_STORAGE_BACKENDS",
    "OPTEMUS_SERVER_PORT",
    "OPTEMUS_IMAGE_MODEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in CREDENTIAL_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _config(temp_dir: Path, **overrides) -> OptemusConfig:
    values = {"images_dir": temp_dir / "images"}
    values.update(overrides)
    return OptemusConfig(_env_file=None, **values)


class TestConfigDefaults:
    """Verify that OptemusConfig provides sensible defaults."""

    def test_generation_defaults(self, clean_env, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.image_model == "gpt-image-1"
        assert cfg.request_timeout == 60.0
        assert cfg.max_retries == 2
        assert cfg.openai_api_key is None

    def test_storage_defaults(self, clean_env, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.storage_backend_names == ["local"]
        assert cfg.public_url_prefix == "/images"
        assert cfg.blob_index_path == "images-index.json"
        assert cfg.notion_version == "2022-06-28"

    def test_server_defaults(self, clean_env, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.server_host == "0.0.0.0"
        assert cfg.server_port == 4001
        assert cfg.log_level == "INFO"


class TestEnvironmentOverrides:
    """Verify environment variable loading."""

    def test_prefixed_variable(self, clean_env, temp_dir):
        clean_env.setenv("OPTEMUS_IMAGE_MODEL", "gpt-image-2")
        assert _config(temp_dir).image_model == "gpt-image-2"

    def test_conventional_credential_names(self, clean_env, temp_dir):
        clean_env.setenv("OPENAI_API_KEY", "sk-env")
        clean_env.setenv("BLOB_READ_WRITE_TOKEN", "blob-env")
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_DATABASE_ID", "  db-env  ")

        cfg = _config(temp_dir)
        assert cfg.openai_api_key == "sk-env"
        assert cfg.blob_token == "blob-env"
        assert cfg.notion_token == "secret_env"
        assert cfg.notion_database_id == "db-env"

    def test_backend_list_from_env(self, clean_env, temp_dir):
        clean_env.setenv("OPTEMUS_STORAGE_BACKENDS", "Blob, notion")
        assert _config(temp_dir).storage_backend_names == ["blob", "notion"]


class TestStorageBackendValidation:
    def test_order_preserved(self, clean_env, temp_dir):
        cfg = _config(temp_dir, storage_backends="notion,local,blob")
        assert cfg.storage_backend_names == ["notion", "local", "blob"]

    def test_unknown_backend_rejected(self, clean_env, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, storage_backends="local,s3")

    def test_empty_list_rejected(self, clean_env, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, storage_backends=" , ")


class TestConfigValidation:
    def test_port_range(self, clean_env, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=80)

    def test_timeout_positive(self, clean_env, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, request_timeout=0)

    def test_log_level_literal(self, clean_env, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, log_level="CHATTY")


class TestConfigDirectoryCreation:
    """Verify that OptemusConfig creates required directories."""

    def test_directories_created(self, clean_env, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.images_dir.is_dir()

    def test_only_images_directory_created(self, clean_env, temp_dir):
        _config(temp_dir)
        assert [path.name for path in temp_dir.iterdir()] == ["images"]

    def test_nested_directories_created(self, clean_env, temp_dir):
        cfg = _config(temp_dir, images_dir=temp_dir / "a" / "b" / "images")
        assert cfg.images_dir.is_dir()
