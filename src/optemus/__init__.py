"""Optemus - prompt-to-image generation with a reconciled multi-backend gallery."""

__version__ = "0.3.0"

from optemus.core.config import OptemusConfig, config

__all__ = [
    "OptemusConfig",
    "config",
]
