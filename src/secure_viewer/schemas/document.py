"""Schemas describing documents and their watermark policy."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class WatermarkPolicy(BaseModel):
    """Which session facts a document's pages are stamped with.

    Stored and exchanged with camelCase keys; defaults to every field on.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    show_ip: bool = Field(default=True, alias="showIp")
    show_timestamp: bool = Field(default=True, alias="showTimestamp")
    show_session_id: bool = Field(default=True, alias="showSessionId")
    custom_text: str | None = Field(default=None, alias="customText")


class DocumentView(BaseModel):
    """Metadata returned once a nonce has been consumed to open a document."""

    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId")
    title: str
    page_count: int = Field(alias="pageCount")
    session_id: str = Field(alias="sessionId")
    watermark_text: str = Field(alias="watermarkText")
    watermark_policy: WatermarkPolicy = Field(alias="watermarkPolicy")
