# src/secure_viewer/models/access_log.py
"""Append-only access audit records."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from secure_viewer.db.session import Base
from secure_viewer.db.time import utcnow


class AccessLog(Base):
    """One event on the delivery path (mint, consume, reject, client signal)."""

    __tablename__ = "access_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_id: Mapped[str] = mapped_column(Text, nullable=False)
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Client identity as derived from the request origin (usually an IP).
    ip: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    # Named `metadata` in the table; the attribute avoids DeclarativeBase.metadata.
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_access_logs_doc_id", "doc_id"),
        Index("idx_access_logs_action_created", "action", "created_at"),
    )
