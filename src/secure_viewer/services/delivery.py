# src/secure_viewer/services/delivery.py
"""Secure delivery path: throttle, mint, consume, decrypt, rasterize, stamp, audit."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from secure_viewer.core.exceptions import (
    AuthenticationFailure,
    DocumentNotFoundError,
    NonceNotFoundError,
    PageOutOfRangeError,
    RateLimitExceeded,
    ValidationError,
)
from secure_viewer.core.settings import settings
from secure_viewer.db.time import utcnow
from secure_viewer.schemas.document import DocumentView
from secure_viewer.services.audit import CLIENT_ACTIONS, AccessAuditLog, AuditAction
from secure_viewer.services.crypto import CryptoEngine
from secure_viewer.services.documents import (
    DocumentMetadata,
    DocumentMetadataStore,
    require_active,
)
from secure_viewer.services.nonce import NonceGrant, NonceStore
from secure_viewer.services.rasterizer import PageRasterizer
from secure_viewer.services.rate_limiter import RateLimiter, RateLimitResult
from secure_viewer.services.watermark import SessionFacts, WatermarkCompositor, watermark_text

logger = logging.getLogger(__name__)

ENDPOINT_MINT = "nonces.mint"
ENDPOINT_OPEN = "documents.open"
ENDPOINT_PAGE = "documents.page"
ENDPOINT_EVENTS = "events"


@dataclass(frozen=True)
class MintedSession:
    grant: NonceGrant
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class DeliveredPage:
    content: bytes
    media_type: str
    page_number: int
    page_count: int
    session_id: str
    watermark_text: str


class SecureDeliveryService:
    """Coordinates the core components for one request at a time.

    Holds no per-request state; safe to share across concurrent handlers.
    """

    def __init__(
        self,
        *,
        nonces: NonceStore,
        rate_limiter: RateLimiter,
        audit: AccessAuditLog,
        documents: DocumentMetadataStore,
        crypto: CryptoEngine,
        rasterizer: PageRasterizer,
        compositor: WatermarkCompositor,
        documents_dir: str | Path | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.nonces = nonces
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.documents = documents
        self.crypto = crypto
        self.rasterizer = rasterizer
        self.compositor = compositor
        self.documents_dir = Path(documents_dir or settings.documents_dir)
        self._clock = clock

    # --- Guards ---------------------------------------------------------------------
    def _throttle(
        self,
        doc_id: str,
        endpoint: str,
        client_identity: str,
        user_agent: str | None,
    ) -> RateLimitResult:
        result = self.rate_limiter.check(client_identity, endpoint)
        if not result.allowed:
            self.audit.record(
                doc_id,
                AuditAction.RATE_LIMITED,
                client_identity=client_identity,
                user_agent=user_agent,
                metadata={"endpoint": endpoint},
            )
            raise RateLimitExceeded(result.reset_at)
        return result

    def _record_not_found(
        self,
        doc_id: str,
        endpoint: str,
        client_identity: str,
        user_agent: str | None,
    ) -> None:
        logger.info(
            "Not-found rejection on %s for doc %s from %s", endpoint, doc_id, client_identity
        )
        self.audit.record(
            doc_id,
            AuditAction.NOT_FOUND,
            client_identity=client_identity,
            user_agent=user_agent,
            metadata={"endpoint": endpoint},
        )

    def _require_document(
        self,
        doc_id: str,
        endpoint: str,
        client_identity: str,
        user_agent: str | None,
    ) -> DocumentMetadata:
        try:
            return require_active(self.documents, doc_id)
        except DocumentNotFoundError:
            self._record_not_found(doc_id, endpoint, client_identity, user_agent)
            raise

    def _consume(
        self,
        document: DocumentMetadata,
        nonce: str,
        client_identity: str,
        user_agent: str | None,
        purpose: str,
        extra: Mapping[str, Any] | None = None,
    ) -> str:
        try:
            session_id = self.nonces.validate_and_consume(document.doc_id, nonce)
        except NonceNotFoundError:
            logger.info(
                "Invalid nonce for doc %s from %s", document.doc_id, client_identity
            )
            self.audit.record(
                document.doc_id,
                AuditAction.INVALID_NONCE,
                client_identity=client_identity,
                user_agent=user_agent,
                metadata={"purpose": purpose},
            )
            raise
        self.audit.record(
            document.doc_id,
            AuditAction.NONCE_CONSUME,
            session_id=session_id,
            client_identity=client_identity,
            user_agent=user_agent,
            metadata={"purpose": purpose, **(extra or {})},
        )
        return session_id

    def _load_plaintext(self, document: DocumentMetadata, session_id: str) -> bytes:
        path = Path(document.encrypted_path)
        if not path.is_absolute():
            path = self.documents_dir / path
        try:
            payload = path.read_bytes()
        except OSError:
            logger.error("Payload for doc %s is unreadable at %s", document.doc_id, path)
            raise DocumentNotFoundError(document.doc_id) from None

        if not document.is_encrypted:
            return payload
        try:
            return self.crypto.decrypt(payload)
        except (AuthenticationFailure, ValidationError) as err:
            logger.warning("Payload for doc %s failed to decrypt: %s", document.doc_id, err)
            self.audit.record(
                document.doc_id,
                AuditAction.DECRYPT_FAILURE,
                session_id=session_id,
                metadata={"error": type(err).__name__},
            )
            raise

    # --- Operations -----------------------------------------------------------------
    def mint_session(
        self,
        doc_id: str,
        client_identity: str,
        user_agent: str | None = None,
        session_id: str | None = None,
    ) -> MintedSession:
        """Issue a nonce for an active document, optionally continuing a session."""
        quota = self._throttle(doc_id, ENDPOINT_MINT, client_identity, user_agent)
        self._require_document(doc_id, ENDPOINT_MINT, client_identity, user_agent)
        try:
            grant = self.nonces.mint(doc_id, session_id=session_id)
        except NonceNotFoundError:
            self._record_not_found(doc_id, ENDPOINT_MINT, client_identity, user_agent)
            raise
        self.audit.record(
            doc_id,
            AuditAction.NONCE_MINT,
            session_id=grant.session_id,
            client_identity=client_identity,
            user_agent=user_agent,
        )
        return MintedSession(grant=grant, remaining=quota.remaining, reset_at=quota.reset_at)

    def open_document(
        self,
        doc_id: str,
        nonce: str,
        client_identity: str,
        user_agent: str | None = None,
    ) -> DocumentView:
        """Consume a nonce and describe the document for the viewer."""
        self._throttle(doc_id, ENDPOINT_OPEN, client_identity, user_agent)
        document = self._require_document(doc_id, ENDPOINT_OPEN, client_identity, user_agent)
        session_id = self._consume(document, nonce, client_identity, user_agent, "open")

        page_count = document.page_count
        if page_count is None:
            page_count = self.rasterizer.page_count(self._load_plaintext(document, session_id))

        facts = SessionFacts(ip=client_identity, timestamp=self._clock(), session_id=session_id)
        return DocumentView(
            doc_id=document.doc_id,
            title=document.title,
            page_count=page_count,
            session_id=session_id,
            watermark_text=watermark_text(facts, document.watermark_policy),
            watermark_policy=document.watermark_policy,
        )

    def render_page(
        self,
        doc_id: str,
        nonce: str,
        page_number: int,
        client_identity: str,
        user_agent: str | None = None,
    ) -> DeliveredPage:
        """Consume a nonce and return one decrypted, watermarked page as PNG."""
        if page_number < 1:
            raise ValidationError("Page numbers start at 1")
        self._throttle(doc_id, ENDPOINT_PAGE, client_identity, user_agent)
        document = self._require_document(doc_id, ENDPOINT_PAGE, client_identity, user_agent)
        if document.page_count is not None and page_number > document.page_count:
            raise PageOutOfRangeError(page_number, document.page_count)

        session_id = self._consume(
            document, nonce, client_identity, user_agent, "page", {"page": page_number}
        )
        plaintext = self._load_plaintext(document, session_id)
        raster = self.rasterizer.render_page(plaintext, page_number)

        facts = SessionFacts(ip=client_identity, timestamp=self._clock(), session_id=session_id)
        stamped = self.compositor.composite(raster.image, facts, document.watermark_policy)
        text = watermark_text(facts, document.watermark_policy)

        self.audit.record(
            doc_id,
            AuditAction.PAGE_REQUEST,
            session_id=session_id,
            client_identity=client_identity,
            user_agent=user_agent,
            metadata={"page": page_number},
        )
        return DeliveredPage(
            content=self.compositor.to_png(stamped),
            media_type="image/png",
            page_number=page_number,
            page_count=raster.page_count,
            session_id=session_id,
            watermark_text=text,
        )

    def report_event(
        self,
        doc_id: str,
        session_id: str,
        action: str,
        client_identity: str,
        user_agent: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record a viewer-side signal such as a detected screen capture."""
        try:
            parsed = AuditAction(action)
        except ValueError:
            raise ValidationError(f"Unsupported event action: {action}") from None
        if parsed not in CLIENT_ACTIONS:
            raise ValidationError(f"Unsupported event action: {action}")

        self._throttle(doc_id, ENDPOINT_EVENTS, client_identity, user_agent)
        if not self.nonces.session_exists(doc_id, session_id):
            self._record_not_found(doc_id, ENDPOINT_EVENTS, client_identity, user_agent)
            raise NonceNotFoundError()
        self.audit.record(
            doc_id,
            parsed,
            session_id=session_id,
            client_identity=client_identity,
            user_agent=user_agent,
            metadata=metadata,
        )
