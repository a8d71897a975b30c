# src/secure_viewer/scripts/encrypt_document.py
"""Encrypt a document into the on-disk payload format and register it."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from secure_viewer.core.settings import settings
from secure_viewer.db.session import create_tables
from secure_viewer.schemas.document import WatermarkPolicy
from secure_viewer.services.crypto import get_crypto_engine
from secure_viewer.services.documents import SqlDocumentStore
from secure_viewer.services.rasterizer import PdfRasterizer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Encrypt and register a document")
    parser.add_argument("source", type=Path, help="Plaintext PDF to protect")
    parser.add_argument("--doc-id", required=True, help="Public document identifier")
    parser.add_argument("--title", help="Display title (default: file name)")
    parser.add_argument("--custom-text", help="Extra watermark text")
    parser.add_argument("--hide-ip", action="store_true", help="Leave client IP off the watermark")
    parser.add_argument("--hide-timestamp", action="store_true", help="Leave time off the watermark")
    parser.add_argument(
        "--hide-session", action="store_true", help="Leave the session id off the watermark"
    )
    parser.add_argument("--inactive", action="store_true", help="Register without activating")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        plaintext = args.source.read_bytes()
    except OSError as exc:
        print(f"Cannot read {args.source}: {exc}", file=sys.stderr)
        return 1

    page_count = PdfRasterizer().page_count(plaintext)
    payload = get_crypto_engine().encrypt(plaintext)

    target_dir = Path(settings.documents_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    relative_name = f"{args.doc_id}.enc"
    (target_dir / relative_name).write_bytes(payload)

    create_tables()
    SqlDocumentStore().register(
        doc_id=args.doc_id,
        title=args.title or args.source.stem,
        encrypted_path=relative_name,
        page_count=page_count,
        watermark_policy=WatermarkPolicy(
            show_ip=not args.hide_ip,
            show_timestamp=not args.hide_timestamp,
            show_session_id=not args.hide_session,
            custom_text=args.custom_text,
        ),
        status="inactive" if args.inactive else "active",
    )
    print(f"Registered {args.doc_id} ({page_count} pages) -> {target_dir / relative_name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
