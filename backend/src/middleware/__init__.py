"""
Middleware components for the temple-events backend.

This module provides:
- get_actor: FastAPI dependency requiring a caller identity
- get_optional_actor: FastAPI dependency for an optional caller identity
"""

from backend.src.middleware.identity import get_actor, get_optional_actor

__all__ = [
    "get_actor",
    "get_optional_actor",
]
