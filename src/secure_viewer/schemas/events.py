"""Schemas for client-reported viewer signals."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ClientEventIn(BaseModel):
    """A signal raised by the viewer UI, e.g. a detected screen capture."""

    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId", min_length=1, max_length=256)
    session_id: str = Field(alias="sessionId", min_length=1, max_length=64)
    action: str
    metadata: dict[str, Any] | None = None
