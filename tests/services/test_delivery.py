# tests/services/test_delivery.py
import io
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from secure_viewer.core.exceptions import (
    AuthenticationFailure,
    DocumentNotFoundError,
    NonceNotFoundError,
    PageOutOfRangeError,
    RateLimitExceeded,
    ValidationError,
)
from secure_viewer.models import DOCUMENT_STATUS_INACTIVE
from secure_viewer.schemas.document import WatermarkPolicy
from secure_viewer.services.delivery import SecureDeliveryService
from secure_viewer.services.rate_limiter import InMemoryRateLimiter
from tests.conftest import FakeRasterizer, ManualClock

CLIENT = "10.0.0.1"
AGENT = "pytest-viewer/1.0"


def _actions(delivery: SecureDeliveryService, doc_id: str = "doc-1") -> list[str]:
    return [event.action for event in reversed(delivery.audit.query(doc_id))]


def test_mint_open_and_replay(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")

    minted = delivery.mint_session("doc-1", CLIENT, AGENT)
    view = delivery.open_document("doc-1", minted.grant.nonce, CLIENT, AGENT)

    assert view.session_id == minted.grant.session_id
    assert view.page_count == 3
    assert view.title == "Quarterly Report"
    assert view.watermark_text.startswith(f"IP: {CLIENT} | Time: ")
    assert view.watermark_text.endswith(f"Session: {minted.grant.session_id[:8]}")

    with pytest.raises(NonceNotFoundError):
        delivery.open_document("doc-1", minted.grant.nonce, CLIENT, AGENT)

    assert _actions(delivery) == ["nonce_mint", "nonce_consume", "invalid_nonce"]
    rejected = delivery.audit.query("doc-1", action="invalid_nonce")[0]
    assert rejected.client_identity == CLIENT
    assert rejected.user_agent == AGENT


def test_mint_reports_quota(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")
    first = delivery.mint_session("doc-1", CLIENT)
    second = delivery.mint_session("doc-1", CLIENT)

    assert (first.remaining, second.remaining) == (99, 98)
    assert first.reset_at == second.reset_at


def test_rate_limited_mint_is_audited(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
    ms_clock: ManualClock,
) -> None:
    register_document("doc-1")
    delivery.rate_limiter = InMemoryRateLimiter(limit=2, window_ms=60_000, clock=ms_clock)

    delivery.mint_session("doc-1", CLIENT)
    delivery.mint_session("doc-1", CLIENT)
    with pytest.raises(RateLimitExceeded) as excinfo:
        delivery.mint_session("doc-1", CLIENT)

    assert excinfo.value.remaining == 0
    assert _actions(delivery) == ["nonce_mint", "nonce_mint", "rate_limited"]
    assert delivery.audit.query("doc-1", action="rate_limited")[0].metadata == {
        "endpoint": "nonces.mint"
    }
    # Another client is unaffected.
    delivery.mint_session("doc-1", "10.0.0.2")


def test_unknown_and_inactive_documents_look_the_same(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("retired", status=DOCUMENT_STATUS_INACTIVE)

    messages = set()
    for doc_id in ("retired", "missing"):
        with pytest.raises(DocumentNotFoundError) as excinfo:
            delivery.mint_session(doc_id, CLIENT)
        messages.add(str(excinfo.value))
    assert messages == {"Document not found"}


def test_nonce_from_another_document_is_rejected(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")
    register_document("doc-2")
    minted = delivery.mint_session("doc-2", CLIENT)

    with pytest.raises(NonceNotFoundError):
        delivery.open_document("doc-1", minted.grant.nonce, CLIENT)

    assert _actions(delivery, "doc-1") == ["invalid_nonce"]
    assert delivery.nonces.is_valid("doc-2", minted.grant.nonce)


def test_malformed_nonce_touches_nothing(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")

    with pytest.raises(ValidationError):
        delivery.open_document("doc-1", "not-a-nonce", CLIENT)
    assert _actions(delivery) == []


def test_render_page(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
    rasterizer: FakeRasterizer,
) -> None:
    register_document("doc-1")
    minted = delivery.mint_session("doc-1", CLIENT)

    page = delivery.render_page("doc-1", minted.grant.nonce, 2, CLIENT, AGENT)

    assert page.media_type == "image/png"
    assert (page.page_number, page.page_count) == (2, 3)
    assert page.session_id == minted.grant.session_id
    assert rasterizer.rendered == [2]
    with Image.open(io.BytesIO(page.content)) as image:
        assert image.size == rasterizer.size
        assert image.getextrema() != ((255, 255), (255, 255), (255, 255))

    assert _actions(delivery) == ["nonce_mint", "nonce_consume", "page_request"]
    assert delivery.audit.query("doc-1", action="page_request")[0].metadata == {"page": 2}
    with pytest.raises(NonceNotFoundError):
        delivery.render_page("doc-1", minted.grant.nonce, 2, CLIENT)


def test_every_page_needs_its_own_nonce(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")
    first = delivery.mint_session("doc-1", CLIENT)
    view = delivery.open_document("doc-1", first.grant.nonce, CLIENT)

    for number in range(1, view.page_count + 1):
        grant = delivery.mint_session("doc-1", CLIENT, session_id=view.session_id).grant
        page = delivery.render_page("doc-1", grant.nonce, number, CLIENT)
        assert page.session_id == view.session_id

    assert len(delivery.audit.by_session(view.session_id)) == 1 + 1 + 3 * 3


def test_page_out_of_range_does_not_consume(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")
    minted = delivery.mint_session("doc-1", CLIENT)

    with pytest.raises(PageOutOfRangeError):
        delivery.render_page("doc-1", minted.grant.nonce, 4, CLIENT)
    with pytest.raises(ValidationError):
        delivery.render_page("doc-1", minted.grant.nonce, 0, CLIENT)

    assert delivery.nonces.is_valid("doc-1", minted.grant.nonce)


def test_page_count_comes_from_rasterizer_when_unknown(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
    rasterizer: FakeRasterizer,
) -> None:
    register_document("doc-1", page_count=None)
    rasterizer.pages = 7
    minted = delivery.mint_session("doc-1", CLIENT)

    assert delivery.open_document("doc-1", minted.grant.nonce, CLIENT).page_count == 7


def test_tampered_payload_is_never_rendered(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
    rasterizer: FakeRasterizer,
) -> None:
    path = register_document("doc-1")
    payload = bytearray(path.read_bytes())
    payload[-1] ^= 0x01
    path.write_bytes(bytes(payload))
    minted = delivery.mint_session("doc-1", CLIENT)

    with pytest.raises(AuthenticationFailure):
        delivery.render_page("doc-1", minted.grant.nonce, 1, CLIENT)

    assert rasterizer.rendered == []
    assert _actions(delivery) == ["nonce_mint", "nonce_consume", "decrypt_failure"]


def test_missing_payload_is_not_found(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1").unlink()
    minted = delivery.mint_session("doc-1", CLIENT)

    with pytest.raises(DocumentNotFoundError):
        delivery.render_page("doc-1", minted.grant.nonce, 1, CLIENT)


def test_relative_payload_paths_resolve_against_documents_dir(
    delivery: SecureDeliveryService,
    document_store,
    crypto,
    tmp_path: Path,
) -> None:
    (tmp_path / "relative.enc").write_bytes(crypto.encrypt(b"body"))
    document_store.register(
        doc_id="doc-rel", title="Relative", encrypted_path="relative.enc", page_count=3
    )
    minted = delivery.mint_session("doc-rel", CLIENT)

    assert delivery.render_page("doc-rel", minted.grant.nonce, 1, CLIENT).page_count == 3


def test_watermark_policy_is_applied(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document(
        "doc-1",
        policy=WatermarkPolicy(show_ip=False, show_timestamp=False, custom_text="Legal hold"),
    )
    minted = delivery.mint_session("doc-1", CLIENT)
    view = delivery.open_document("doc-1", minted.grant.nonce, CLIENT)

    assert view.watermark_text == f"Session: {view.session_id[:8]} | Legal hold"
    assert view.watermark_policy.show_ip is False


def test_report_event(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("doc-1")
    session_id = delivery.mint_session("doc-1", CLIENT).grant.session_id

    delivery.report_event(
        "doc-1", session_id, "capture_detected", CLIENT, metadata={"source": "keydown"}
    )

    event = delivery.audit.query("doc-1", action="capture_detected")[0]
    assert event.session_id == session_id
    assert event.metadata == {"source": "keydown"}


@pytest.mark.parametrize("action", ["nonce_mint", "invalid_nonce", "screenshot"])
def test_report_event_rejects_server_side_actions(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
    action: str,
) -> None:
    register_document("doc-1")
    session_id = delivery.mint_session("doc-1", CLIENT).grant.session_id

    with pytest.raises(ValidationError):
        delivery.report_event("doc-1", session_id, action, CLIENT)


def test_report_event_requires_known_session(delivery: SecureDeliveryService) -> None:
    with pytest.raises(NonceNotFoundError):
        delivery.report_event("doc-1", "0" * 32, "view", CLIENT)


def test_not_found_rejections_flag_the_client(
    delivery: SecureDeliveryService,
    register_document: Callable[..., Path],
) -> None:
    register_document("retired", status=DOCUMENT_STATUS_INACTIVE)
    register_document("doc-1")
    scanner = "6.6.6.6"

    for attempt in range(3):
        with pytest.raises(DocumentNotFoundError):
            delivery.mint_session(f"doc-missing-{attempt}", scanner)
    with pytest.raises(DocumentNotFoundError):
        delivery.open_document("retired", "a" * 48, scanner)
    with pytest.raises(DocumentNotFoundError):
        delivery.render_page("retired", "a" * 48, 1, scanner)
    with pytest.raises(NonceNotFoundError):
        delivery.report_event("doc-1", "0" * 32, "view", scanner)
    with pytest.raises(NonceNotFoundError):
        delivery.mint_session("doc-1", scanner, session_id="feedfacefeedfacefeedfacefeedface")

    retired = delivery.audit.query("retired", action="not_found")
    endpoints = {event.metadata["endpoint"] for event in retired}
    assert endpoints == {"documents.open", "documents.page"}
    assert all(event.client_identity == scanner for event in retired)
    assert _actions(delivery) == ["not_found", "not_found"]

    flagged = delivery.audit.suspicious_clients(since_minutes=60, min_failures=5)
    assert [(c.client_identity, c.count) for c in flagged] == [(scanner, 7)]
