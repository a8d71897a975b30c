# src/secure_viewer/api/v1/endpoints/documents.py
"""Nonce-gated document and page delivery."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query, Response

from secure_viewer.api.v1.dependencies import ClientIdentityDep, DeliveryDep, UserAgentDep
from secure_viewer.schemas.document import DocumentView

router = APIRouter(prefix="/documents", tags=["documents"])

NonceQuery = Annotated[str, Query(min_length=1, max_length=128)]


@router.get("/{doc_id}", response_model=DocumentView, response_model_by_alias=True)
def open_document(
    doc_id: str,
    nonce: NonceQuery,
    delivery: DeliveryDep,
    client_identity: ClientIdentityDep,
    user_agent: UserAgentDep,
) -> DocumentView:
    """Consume a nonce and return viewer metadata for the document."""
    return delivery.open_document(doc_id, nonce, client_identity, user_agent=user_agent)


@router.get("/{doc_id}/pages/{page_number}")
def get_page(
    doc_id: str,
    page_number: Annotated[int, Path(ge=1)],
    nonce: NonceQuery,
    delivery: DeliveryDep,
    client_identity: ClientIdentityDep,
    user_agent: UserAgentDep,
) -> Response:
    """Consume a nonce and return one watermarked page image."""
    page = delivery.render_page(
        doc_id, nonce, page_number, client_identity, user_agent=user_agent
    )
    return Response(
        content=page.content,
        media_type=page.media_type,
        headers={
            "Cache-Control": "no-store",
            "X-Page-Count": str(page.page_count),
        },
    )
