"""Schemas for minting single-use nonces."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class MintRequest(BaseModel):
    """Request to open (or continue) a viewing session for a document."""

    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId", min_length=1, max_length=256)
    session_id: str | None = Field(default=None, alias="sessionId", max_length=64)


class MintResponse(BaseModel):
    """A freshly minted nonce and the session it belongs to."""

    model_config = ConfigDict(populate_by_name=True)

    nonce: str
    session_id: str = Field(alias="sessionId")
    issued_at: datetime = Field(alias="issuedAt")
