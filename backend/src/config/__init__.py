"""
Configuration module for the temple-events backend.

Provides centralized application settings loaded from the environment.
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
