"""Explicitly owned service graph for one running application."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from secure_viewer.db.session import SessionLocal
from secure_viewer.services.audit import AccessAuditLog
from secure_viewer.services.crypto import CryptoEngine
from secure_viewer.services.delivery import SecureDeliveryService
from secure_viewer.services.documents import DocumentMetadataStore, SqlDocumentStore
from secure_viewer.services.maintenance import MaintenanceWorker
from secure_viewer.services.nonce import NonceStore
from secure_viewer.services.rasterizer import PageRasterizer, PdfRasterizer
from secure_viewer.services.rate_limiter import RateLimiter, get_rate_limiter
from secure_viewer.services.watermark import WatermarkCompositor


@dataclass
class ServiceContainer:
    """Holds the stateful components; built at startup and closed at shutdown."""

    delivery: SecureDeliveryService
    maintenance: MaintenanceWorker

    @property
    def audit(self) -> AccessAuditLog:
        return self.delivery.audit

    @property
    def nonces(self) -> NonceStore:
        return self.delivery.nonces

    @property
    def rate_limiter(self) -> RateLimiter:
        return self.delivery.rate_limiter

    async def close(self) -> None:
        try:
            await self.maintenance.stop()
        finally:
            self.delivery.crypto.close()


def build_services(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    crypto: CryptoEngine | None = None,
    rate_limiter: RateLimiter | None = None,
    documents: DocumentMetadataStore | None = None,
    rasterizer: PageRasterizer | None = None,
    compositor: WatermarkCompositor | None = None,
) -> ServiceContainer:
    """Wire the delivery path; any component may be supplied to override the default."""
    nonces = NonceStore(session_factory)
    limiter = rate_limiter if rate_limiter is not None else get_rate_limiter()
    delivery = SecureDeliveryService(
        nonces=nonces,
        rate_limiter=limiter,
        audit=AccessAuditLog(session_factory),
        documents=documents if documents is not None else SqlDocumentStore(session_factory),
        crypto=crypto if crypto is not None else CryptoEngine.from_settings(),
        rasterizer=rasterizer if rasterizer is not None else PdfRasterizer(),
        compositor=compositor if compositor is not None else WatermarkCompositor(),
    )
    return ServiceContainer(
        delivery=delivery,
        maintenance=MaintenanceWorker(nonces, limiter),
    )
