# src/secure_viewer/models/document.py
"""Document metadata backing the delivery path."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, VARCHAR, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from secure_viewer.db.session import Base
from secure_viewer.db.time import utcnow

DOCUMENT_STATUS_ACTIVE = "active"
DOCUMENT_STATUS_INACTIVE = "inactive"


class Document(Base):
    """Registered document whose encrypted payload lives on disk."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_path: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(
        Text, nullable=False, default="application/pdf"
    )
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # {"showIp": bool, "showTimestamp": bool, "showSessionId": bool, "customText": str?}
    watermark_policy: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        VARCHAR(16), nullable=False, default=DOCUMENT_STATUS_ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
