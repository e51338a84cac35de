"""Configuration management."""

from config.settings import VaultSessionSettings, get_settings

__all__ = [
    "VaultSessionSettings",
    "get_settings",
]
