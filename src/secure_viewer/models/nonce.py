# src/secure_viewer/models/nonce.py
"""Single-use nonce records."""

from datetime import datetime

from sqlalchemy import Boolean, CHAR, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from secure_viewer.db.session import Base
from secure_viewer.db.time import utcnow


class NonceRecord(Base):
    """A token authorizing exactly one content request for a document.

    ``used`` flips to true once, by consumption, and never reverts. Rows are
    deleted by the retention sweep regardless of ``used``.
    """

    __tablename__ = "nonces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_id: Mapped[str] = mapped_column(Text, nullable=False)
    # 24 random bytes, hex-encoded.
    nonce: Mapped[str] = mapped_column(CHAR(48), unique=True, nullable=False)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_nonces_doc_id", "doc_id"),
        Index("idx_nonces_session_id", "session_id"),
        Index("idx_nonces_created_at", "created_at"),
    )
