# src/secure_viewer/models/__init__.py
"""SQLAlchemy models for the Secure Viewer application."""

from .access_log import AccessLog
from .document import DOCUMENT_STATUS_ACTIVE, DOCUMENT_STATUS_INACTIVE, Document
from .nonce import NonceRecord

__all__ = [
    "AccessLog",
    "Document", "DOCUMENT_STATUS_ACTIVE", "DOCUMENT_STATUS_INACTIVE",
    "NonceRecord",
]
