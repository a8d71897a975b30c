# tests/test_scripts.py
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from secure_viewer.core.settings import settings
from secure_viewer.scripts import encrypt_document, sweep
from secure_viewer.services.audit import AccessAuditLog, AuditAction
from secure_viewer.services.crypto import CryptoEngine
from secure_viewer.services.documents import SqlDocumentStore
from secure_viewer.services.nonce import NonceStore
from tests.conftest import ManualClock, make_pdf


def test_encrypt_document_registers_payload(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    session_factory: Callable[[], Session],
    crypto: CryptoEngine,
) -> None:
    source = tmp_path / "contract.pdf"
    source.write_bytes(make_pdf(pages=2))
    documents_dir = tmp_path / "vault"
    monkeypatch.setattr(settings, "documents_dir", str(documents_dir))
    monkeypatch.setattr(encrypt_document, "create_tables", lambda: None)
    monkeypatch.setattr(encrypt_document, "get_crypto_engine", lambda: crypto)
    monkeypatch.setattr(
        encrypt_document, "SqlDocumentStore", lambda: SqlDocumentStore(session_factory)
    )

    exit_code = encrypt_document.main(
        [str(source), "--doc-id", "contract-7", "--hide-ip", "--custom-text", "Counsel only"]
    )

    assert exit_code == 0
    payload = (documents_dir / "contract-7.enc").read_bytes()
    assert crypto.decrypt(payload) == source.read_bytes()

    document = SqlDocumentStore(session_factory).get("contract-7")
    assert document is not None
    assert document.title == "contract"
    assert document.page_count == 2
    assert document.encrypted_path == "contract-7.enc"
    assert document.watermark_policy.show_ip is False
    assert document.watermark_policy.custom_text == "Counsel only"


def test_encrypt_document_missing_source(tmp_path: Path) -> None:
    assert encrypt_document.main([str(tmp_path / "absent.pdf"), "--doc-id", "x"]) == 1


def test_sweep_script(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    nonce_store: NonceStore,
    audit_log: AccessAuditLog,
    clock: ManualClock,
) -> None:
    nonce_store.mint("doc-1")
    for _ in range(5):
        audit_log.record("doc-1", AuditAction.INVALID_NONCE, client_identity="198.51.100.23")
    clock.advance(timedelta(days=10))
    monkeypatch.setattr(sweep, "NonceStore", lambda: nonce_store)
    monkeypatch.setattr(sweep, "AccessAuditLog", lambda: audit_log)

    assert sweep.main(["--max-age-days", "7"]) == 0
    assert "Removed 1 expired nonces" in capsys.readouterr().out

    clock.now = clock.now - timedelta(days=10)
    assert sweep.main(["--report-suspicious"]) == 0
    assert "198.51.100.23\t5" in capsys.readouterr().out
