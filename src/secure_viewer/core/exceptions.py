"""Exception taxonomy for the secure delivery path."""

from __future__ import annotations

from datetime import datetime


class SecureViewerError(Exception):
    """Base exception for Secure Viewer."""


class ValidationError(SecureViewerError):
    """Input was malformed; rejected before any state was touched."""


class MalformedPayloadError(ValidationError):
    """Encrypted payload is too short to contain an IV and auth tag."""


class PageOutOfRangeError(ValidationError):
    """Requested page does not exist in the document."""

    def __init__(self, page_number: int, page_count: int) -> None:
        super().__init__(
            f"Page {page_number} does not exist. Document has {page_count} pages."
        )
        self.page_number = page_number
        self.page_count = page_count


class NotFoundError(SecureViewerError):
    """Requested resource is absent or not eligible for delivery."""


class NonceNotFoundError(NotFoundError):
    """Nonce is unknown, bound to another document, or already used.

    The three cases are deliberately indistinguishable.
    """

    def __init__(self) -> None:
        super().__init__("Invalid or expired nonce")


class DocumentNotFoundError(NotFoundError):
    """Document is unknown or not active."""

    def __init__(self, doc_id: str) -> None:
        super().__init__("Document not found")
        self.doc_id = doc_id


class AuthenticationFailure(SecureViewerError):
    """Authentication tag did not verify; no plaintext is released."""


class RateLimitExceeded(SecureViewerError):
    """Client exceeded its request quota for the current window."""

    def __init__(self, reset_at: datetime) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")
        self.reset_at = reset_at
        self.remaining = 0


class TransientStoreError(SecureViewerError):
    """Persistence collaborator was unavailable or failed mid-operation."""
