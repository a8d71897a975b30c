# src/secure_viewer/scripts/sweep.py
"""
Cron entry point for the retention sweeps.

Run periodically (e.g. hourly) when the in-process maintenance worker is
disabled, to:
1. Delete nonces older than the retention window
2. Report clients with repeated rejected access in the trailing window
"""

from __future__ import annotations

import argparse

from secure_viewer.core.settings import settings
from secure_viewer.services.audit import AccessAuditLog
from secure_viewer.services.nonce import NonceStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run secure viewer retention sweeps")
    parser.add_argument(
        "--max-age-days",
        type=int,
        default=settings.nonce_retention_days,
        help="Delete nonces older than this many days (default: %(default)s)",
    )
    parser.add_argument(
        "--report-suspicious",
        action="store_true",
        help="Print clients with repeated rejected access",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    removed = NonceStore().sweep_expired(args.max_age_days)
    print(f"Removed {removed} expired nonces")

    if args.report_suspicious:
        for client in AccessAuditLog().suspicious_clients():
            print(f"{client.client_identity}\t{client.count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
