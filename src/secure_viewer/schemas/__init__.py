"""Pydantic schemas for the Secure Viewer API."""

from .document import DocumentView, WatermarkPolicy
from .events import ClientEventIn
from .nonce import MintRequest, MintResponse

__all__ = [
    "ClientEventIn",
    "DocumentView",
    "MintRequest",
    "MintResponse",
    "WatermarkPolicy",
]
