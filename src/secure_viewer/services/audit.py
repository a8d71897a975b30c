# src/secure_viewer/services/audit.py
"""Append-only access audit log.

Writes are best-effort: the access decision has already been made by the
time an event is recorded, so a failing write is logged and counted but
never raised into the request path.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secure_viewer.core.exceptions import TransientStoreError
from secure_viewer.core.settings import settings
from secure_viewer.db.session import SessionLocal
from secure_viewer.db.time import as_utc, utcnow
from secure_viewer.models import AccessLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Event kinds recorded on the delivery path."""

    NONCE_MINT = "nonce_mint"
    NONCE_CONSUME = "nonce_consume"
    PAGE_REQUEST = "page_request"
    INVALID_NONCE = "invalid_nonce"
    RATE_LIMITED = "rate_limited"
    DECRYPT_FAILURE = "decrypt_failure"
    AUTH_FAIL = "auth_fail"
    NOT_FOUND = "not_found"
    # Signals reported by the viewer UI.
    VIEW = "view"
    FULLSCREEN_EXIT = "fullscreen_exit"
    CAPTURE_DETECTED = "capture_detected"
    PRINT_ATTEMPT = "print_attempt"
    DOWNLOAD_ATTEMPT = "download_attempt"


CLIENT_ACTIONS = frozenset(
    {
        AuditAction.VIEW,
        AuditAction.FULLSCREEN_EXIT,
        AuditAction.CAPTURE_DETECTED,
        AuditAction.PRINT_ATTEMPT,
        AuditAction.DOWNLOAD_ATTEMPT,
    }
)

REJECTION_ACTIONS = frozenset(
    {
        AuditAction.INVALID_NONCE,
        AuditAction.RATE_LIMITED,
        AuditAction.AUTH_FAIL,
        AuditAction.DECRYPT_FAILURE,
        AuditAction.NOT_FOUND,
    }
)


@dataclass(frozen=True)
class AuditEvent:
    """Detached copy of a stored access log row."""

    id: int
    doc_id: str
    action: str
    session_id: str | None
    client_identity: str | None
    user_agent: str | None
    metadata: dict[str, Any] | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: AccessLog) -> AuditEvent:
        return cls(
            id=row.id,
            doc_id=row.doc_id,
            action=row.action,
            session_id=row.session_id,
            client_identity=row.ip,
            user_agent=row.user_agent,
            metadata=row.metadata_,
            created_at=as_utc(row.created_at),
        )


@dataclass(frozen=True)
class SuspiciousClient:
    client_identity: str
    count: int


class AccessAuditLog:
    """Records and queries access events."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._failures_lock = threading.Lock()
        self.failed_writes = 0

    def record(
        self,
        doc_id: str,
        action: AuditAction | str,
        *,
        session_id: str | None = None,
        client_identity: str | None = None,
        user_agent: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Append one event. Returns False if the write failed."""
        action_value = AuditAction(action).value
        try:
            with self._session_factory() as db, db.begin():
                db.add(
                    AccessLog(
                        doc_id=doc_id,
                        session_id=session_id,
                        ip=client_identity or None,
                        user_agent=user_agent or None,
                        action=action_value,
                        metadata_=dict(metadata) if metadata else None,
                        created_at=self._clock(),
                    )
                )
        except SQLAlchemyError:
            with self._failures_lock:
                self.failed_writes += 1
            logger.error(
                "Audit write failed for doc %s action %s", doc_id, action_value, exc_info=True
            )
            return False
        return True

    def query(
        self,
        doc_id: str,
        *,
        action: AuditAction | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Return events for a document, newest first."""
        stmt = select(AccessLog).where(AccessLog.doc_id == doc_id)
        if action is not None:
            stmt = stmt.where(AccessLog.action == AuditAction(action).value)
        stmt = (
            stmt.order_by(AccessLog.created_at.desc(), AccessLog.id.desc())
            .limit(max(0, limit))
            .offset(max(0, offset))
        )
        return self._fetch(stmt)

    def by_session(self, session_id: str) -> list[AuditEvent]:
        """Return every event of one viewing session, oldest first."""
        stmt = (
            select(AccessLog)
            .where(AccessLog.session_id == session_id)
            .order_by(AccessLog.created_at.asc(), AccessLog.id.asc())
        )
        return self._fetch(stmt)

    def suspicious_clients(
        self,
        since_minutes: int | None = None,
        min_failures: int | None = None,
    ) -> list[SuspiciousClient]:
        """Clients with at least ``min_failures`` rejections in the trailing window.

        Ordered by failure count, highest first.
        """
        since_minutes = settings.suspicious_window_minutes if since_minutes is None else since_minutes
        min_failures = settings.suspicious_min_failures if min_failures is None else min_failures
        threshold = self._clock() - timedelta(minutes=since_minutes)
        failures = func.count(AccessLog.id).label("failures")
        stmt = (
            select(AccessLog.ip, failures)
            .where(
                AccessLog.action.in_([a.value for a in REJECTION_ACTIONS]),
                AccessLog.created_at >= threshold,
                AccessLog.ip.is_not(None),
            )
            .group_by(AccessLog.ip)
            .having(failures >= min_failures)
            .order_by(failures.desc(), AccessLog.ip)
        )
        try:
            with self._session_factory() as db:
                rows = db.execute(stmt).all()
        except SQLAlchemyError as err:
            raise TransientStoreError("Audit store unavailable") from err
        return [SuspiciousClient(client_identity=ip, count=int(count)) for ip, count in rows]

    def _fetch(self, stmt: Any) -> list[AuditEvent]:
        try:
            with self._session_factory() as db:
                return [AuditEvent.from_row(row) for row in db.execute(stmt).scalars()]
        except SQLAlchemyError as err:
            raise TransientStoreError("Audit store unavailable") from err


def get_audit_log() -> AccessAuditLog:
    """Return an audit log bound to the default session factory."""
    return AccessAuditLog()
