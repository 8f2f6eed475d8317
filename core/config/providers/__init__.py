"""Configuration provider implementations."""

from .file_config_provider import FileConfigProvider

__all__ = [
    "FileConfigProvider"
]
