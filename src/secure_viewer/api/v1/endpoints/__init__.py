# src/secure_viewer/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .documents import router as documents_router
from .events import router as events_router
from .nonces import router as nonces_router

__all__ = [
    "documents_router",
    "events_router",
    "nonces_router",
]
