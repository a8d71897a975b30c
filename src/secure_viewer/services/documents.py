# src/secure_viewer/services/documents.py
"""Document metadata lookup used by the delivery path."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secure_viewer.core.exceptions import DocumentNotFoundError, TransientStoreError
from secure_viewer.db.session import SessionLocal
from secure_viewer.models import DOCUMENT_STATUS_ACTIVE, Document
from secure_viewer.schemas.document import WatermarkPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentMetadata:
    doc_id: str
    title: str
    encrypted_path: str
    content_type: str
    page_count: int | None
    is_encrypted: bool
    watermark_policy: WatermarkPolicy
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == DOCUMENT_STATUS_ACTIVE


class DocumentMetadataStore(Protocol):
    """Anything that can resolve a document id to its metadata."""

    def get(self, doc_id: str) -> DocumentMetadata | None: ...


def parse_policy(raw: Mapping[str, Any] | None, doc_id: str = "") -> WatermarkPolicy:
    """Parse a stored policy, falling back to the all-on default when unreadable."""
    if not raw:
        return WatermarkPolicy()
    try:
        return WatermarkPolicy.model_validate(raw)
    except PydanticValidationError:
        logger.warning("Unreadable watermark policy for doc %s; using defaults", doc_id)
        return WatermarkPolicy()


def require_active(store: DocumentMetadataStore, doc_id: str) -> DocumentMetadata:
    """Return the document if it exists and is active."""
    document = store.get(doc_id)
    if document is None or not document.is_active:
        raise DocumentNotFoundError(doc_id)
    return document


class SqlDocumentStore:
    """Document metadata backed by the ``documents`` table."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def get(self, doc_id: str) -> DocumentMetadata | None:
        try:
            with self._session_factory() as db:
                row = db.execute(
                    select(Document).where(Document.doc_id == doc_id)
                ).scalar_one_or_none()
                if row is None:
                    return None
                return DocumentMetadata(
                    doc_id=row.doc_id,
                    title=row.title,
                    encrypted_path=row.encrypted_path,
                    content_type=row.content_type,
                    page_count=row.page_count,
                    is_encrypted=bool(row.is_encrypted),
                    watermark_policy=parse_policy(row.watermark_policy, row.doc_id),
                    status=row.status,
                )
        except SQLAlchemyError as err:
            raise TransientStoreError("Document store unavailable") from err

    def register(
        self,
        *,
        doc_id: str,
        title: str,
        encrypted_path: str,
        content_type: str = "application/pdf",
        page_count: int | None = None,
        is_encrypted: bool = True,
        watermark_policy: WatermarkPolicy | None = None,
        status: str = DOCUMENT_STATUS_ACTIVE,
    ) -> None:
        """Insert or update a document row."""
        policy = (watermark_policy or WatermarkPolicy()).model_dump(by_alias=True)
        try:
            with self._session_factory() as db, db.begin():
                row = db.execute(
                    select(Document).where(Document.doc_id == doc_id)
                ).scalar_one_or_none()
                if row is None:
                    row = Document(doc_id=doc_id)
                    db.add(row)
                row.title = title
                row.encrypted_path = encrypted_path
                row.content_type = content_type
                row.page_count = page_count
                row.is_encrypted = is_encrypted
                row.watermark_policy = policy
                row.status = status
        except SQLAlchemyError as err:
            raise TransientStoreError("Document store unavailable") from err
