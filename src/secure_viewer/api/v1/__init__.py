# src/secure_viewer/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import documents_router, events_router, nonces_router

__all__ = [
    "documents_router",
    "events_router",
    "nonces_router",
]
