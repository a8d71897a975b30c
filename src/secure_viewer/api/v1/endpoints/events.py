# src/secure_viewer/api/v1/endpoints/events.py
"""Client-reported viewer signals (capture detection and similar)."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from secure_viewer.api.v1.dependencies import ClientIdentityDep, DeliveryDep, UserAgentDep
from secure_viewer.schemas.events import ClientEventIn

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=status.HTTP_204_NO_CONTENT)
def report_event(
    body: ClientEventIn,
    delivery: DeliveryDep,
    client_identity: ClientIdentityDep,
    user_agent: UserAgentDep,
) -> Response:
    """Append a viewer signal to the audit trail of its session."""
    delivery.report_event(
        body.doc_id,
        body.session_id,
        body.action,
        client_identity,
        user_agent=user_agent,
        metadata=body.metadata,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
