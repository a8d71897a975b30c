"""Shared API dependencies: the service graph and the caller's identity."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from secure_viewer.container import ServiceContainer
from secure_viewer.core.settings import settings
from secure_viewer.services.delivery import SecureDeliveryService

UNKNOWN_CLIENT = "unknown"


def get_services(request: Request) -> ServiceContainer:
    """Return the service container built at startup.

    Raises:
        HTTPException: If the application has not finished starting.
    """
    services: ServiceContainer | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting",
        )
    return services


def get_delivery_service(
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> SecureDeliveryService:
    return services.delivery


def _peer_is_trusted(peer: str | None) -> bool:
    trusted = settings.trusted_proxies
    return "*" in trusted or (peer is not None and peer in trusted)


def get_client_identity(request: Request) -> str:
    """Derive the client identity from the request origin.

    Forwarding headers are only believed when the socket peer is a trusted
    proxy; then the first ``X-Forwarded-For`` hop wins, then ``X-Real-IP``.
    Otherwise the socket peer itself is the identity.
    """
    peer = request.client.host if request.client and request.client.host else None
    if _peer_is_trusted(peer):
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return peer or UNKNOWN_CLIENT


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent") or None


# Type aliases for dependency injection
DeliveryDep = Annotated[SecureDeliveryService, Depends(get_delivery_service)]
ClientIdentityDep = Annotated[str, Depends(get_client_identity)]
UserAgentDep = Annotated[str | None, Depends(get_user_agent)]
