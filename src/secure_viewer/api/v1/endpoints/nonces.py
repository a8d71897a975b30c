# src/secure_viewer/api/v1/endpoints/nonces.py
"""Nonce minting endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Response

from secure_viewer.api.v1.dependencies import ClientIdentityDep, DeliveryDep, UserAgentDep
from secure_viewer.schemas.nonce import MintRequest, MintResponse

router = APIRouter(prefix="/nonces", tags=["nonces"])


@router.post("/mint", response_model=MintResponse, response_model_by_alias=True)
def mint_nonce(
    body: MintRequest,
    response: Response,
    delivery: DeliveryDep,
    client_identity: ClientIdentityDep,
    user_agent: UserAgentDep,
) -> MintResponse:
    """Issue a single-use nonce for an active document.

    Args:
        body: Document id and, optionally, a session to continue
        response: Outgoing response, used for quota headers
        delivery: Secure delivery service
        client_identity: Caller identity derived from the request origin
        user_agent: Caller user agent, if sent

    Returns:
        The nonce, its session identifier and issue time
    """
    minted = delivery.mint_session(
        body.doc_id,
        client_identity,
        user_agent=user_agent,
        session_id=body.session_id,
    )
    response.headers["X-RateLimit-Remaining"] = str(minted.remaining)
    response.headers["X-RateLimit-Reset"] = minted.reset_at.isoformat()
    return MintResponse(
        nonce=minted.grant.nonce,
        session_id=minted.grant.session_id,
        issued_at=minted.grant.issued_at,
    )
