# src/secure_viewer/services/__init__.py
"""Business logic services for the Secure Viewer application."""

from .audit import AccessAuditLog, AuditAction
from .crypto import CryptoEngine
from .delivery import SecureDeliveryService
from .documents import SqlDocumentStore
from .maintenance import MaintenanceWorker
from .nonce import NonceStore
from .rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from .watermark import WatermarkCompositor

__all__ = [
    "AccessAuditLog",
    "AuditAction",
    "CryptoEngine",
    "InMemoryRateLimiter",
    "MaintenanceWorker",
    "NonceStore",
    "RedisRateLimiter",
    "SecureDeliveryService",
    "SqlDocumentStore",
    "WatermarkCompositor",
]
