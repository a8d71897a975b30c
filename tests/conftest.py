# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import fitz
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

TEST_MASTER_KEY_HEX = "8f3a1c5e7b9d2f4a6c8e0b1d3f5a7c9e1b3d5f7a9c2e4b6d8f0a1c3e5b7d9f2a"

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("ENCRYPTION_MASTER_KEY", TEST_MASTER_KEY_HEX)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MAINTENANCE_ENABLED", "false")
# Starlette's TestClient connects from the peer "testclient".
os.environ.setdefault("TRUSTED_PROXIES", '["testclient"]')

from secure_viewer.container import build_services
from secure_viewer.core.exceptions import PageOutOfRangeError
from secure_viewer.db.session import Base, build_engine
from secure_viewer.main import app as fastapi_app
from secure_viewer.models import DOCUMENT_STATUS_ACTIVE
from secure_viewer.schemas.document import WatermarkPolicy
from secure_viewer.services.audit import AccessAuditLog
from secure_viewer.services.crypto import CryptoEngine
from secure_viewer.services.delivery import SecureDeliveryService
from secure_viewer.services.documents import SqlDocumentStore
from secure_viewer.services.nonce import NonceStore
from secure_viewer.services.rasterizer import RasterPage
from secure_viewer.services.rate_limiter import InMemoryRateLimiter
from secure_viewer.services.watermark import WatermarkCompositor

TEST_DB_URL = "sqlite://"
EPOCH = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class ManualClock:
    """Clock whose value only moves when a test moves it."""

    def __init__(self, start: Any) -> None:
        self.now = start

    def __call__(self) -> Any:
        return self.now

    def advance(self, delta: Any) -> None:
        self.now = self.now + delta


class FakeRasterizer:
    """Stands in for PDF rendering; every page is a blank white canvas."""

    def __init__(self, pages: int = 3, size: tuple[int, int] = (240, 160)) -> None:
        self.pages = pages
        self.size = size
        self.rendered: list[int] = []

    def page_count(self, document: bytes) -> int:
        return self.pages

    def render_page(self, document: bytes, page_number: int) -> RasterPage:
        if page_number < 1 or page_number > self.pages:
            raise PageOutOfRangeError(page_number, self.pages)
        self.rendered.append(page_number)
        image = Image.new("RGB", self.size, (255, 255, 255))
        return RasterPage(image=image, page_number=page_number, page_count=self.pages)


def failing_session_factory() -> Session:
    """Session factory for a database that is down."""
    raise OperationalError("SELECT 1", {}, Exception("database is unavailable"))


def make_pdf(pages: int = 2) -> bytes:
    doc = fitz.open()
    for number in range(1, pages + 1):
        page = doc.new_page(width=200, height=100)
        page.insert_text((20, 50), f"Page {number}")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[Callable[[], Session]]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def master_key() -> bytes:
    return bytes.fromhex(TEST_MASTER_KEY_HEX)


@pytest.fixture()
def crypto(master_key: bytes) -> Iterator[CryptoEngine]:
    engine = CryptoEngine(master_key)
    try:
        yield engine
    finally:
        engine.close()


@pytest.fixture()
def clock() -> ManualClock:
    """Wall clock for nonce and audit timestamps."""
    return ManualClock(EPOCH)


@pytest.fixture()
def ms_clock() -> ManualClock:
    """Millisecond clock for the rate limiter."""
    return ManualClock(int(EPOCH.timestamp() * 1000))


@pytest.fixture()
def nonce_store(session_factory: Callable[[], Session], clock: ManualClock) -> NonceStore:
    return NonceStore(session_factory, retention_days=7, clock=clock)


@pytest.fixture()
def audit_log(session_factory: Callable[[], Session], clock: ManualClock) -> AccessAuditLog:
    return AccessAuditLog(session_factory, clock=clock)


@pytest.fixture()
def limiter(ms_clock: ManualClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(limit=100, window_ms=60_000, clock=ms_clock)


@pytest.fixture()
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture()
def document_store(session_factory: Callable[[], Session]) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture()
def register_document(
    document_store: SqlDocumentStore,
    crypto: CryptoEngine,
    tmp_path: Path,
) -> Callable[..., Path]:
    """Write an encrypted payload to disk and register it; returns the payload path."""

    def _register(
        doc_id: str = "doc-1",
        *,
        plaintext: bytes = b"%PDF-1.7 test document body",
        title: str = "Quarterly Report",
        page_count: int | None = 3,
        status: str = DOCUMENT_STATUS_ACTIVE,
        policy: WatermarkPolicy | None = None,
        encrypted: bool = True,
    ) -> Path:
        path = tmp_path / f"{doc_id}.enc"
        path.write_bytes(crypto.encrypt(plaintext) if encrypted else plaintext)
        document_store.register(
            doc_id=doc_id,
            title=title,
            encrypted_path=str(path),
            page_count=page_count,
            is_encrypted=encrypted,
            watermark_policy=policy,
            status=status,
        )
        return path

    return _register


@pytest.fixture()
def delivery(
    nonce_store: NonceStore,
    limiter: InMemoryRateLimiter,
    audit_log: AccessAuditLog,
    document_store: SqlDocumentStore,
    crypto: CryptoEngine,
    rasterizer: FakeRasterizer,
    tmp_path: Path,
    clock: ManualClock,
) -> SecureDeliveryService:
    return SecureDeliveryService(
        nonces=nonce_store,
        rate_limiter=limiter,
        audit=audit_log,
        documents=document_store,
        crypto=crypto,
        rasterizer=rasterizer,
        compositor=WatermarkCompositor(),
        documents_dir=tmp_path,
        clock=clock,
    )


@pytest.fixture()
def client(
    session_factory: Callable[[], Session],
    crypto: CryptoEngine,
    limiter: InMemoryRateLimiter,
    rasterizer: FakeRasterizer,
) -> Iterator[TestClient]:
    fastapi_app.state.services = build_services(
        session_factory,
        crypto=crypto,
        rate_limiter=limiter,
        rasterizer=rasterizer,
        compositor=WatermarkCompositor(),
    )
    try:
        with TestClient(fastapi_app, base_url="http://test") as test_client:
            yield test_client
    finally:
        fastapi_app.state.services = None
