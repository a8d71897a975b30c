# src/secure_viewer/services/nonce.py
"""Single-use nonce and viewing-session lifecycle."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secure_viewer.core.exceptions import (
    NonceNotFoundError,
    TransientStoreError,
    ValidationError,
)
from secure_viewer.core.settings import settings
from secure_viewer.db.session import SessionLocal
from secure_viewer.db.time import as_utc, utcnow
from secure_viewer.models import NonceRecord
from secure_viewer.services.crypto import generate_nonce, generate_session_id

logger = logging.getLogger(__name__)

_NONCE_RE: Final = re.compile(r"^[0-9a-f]{48}$")
_SWEEP_BATCH_SIZE: Final[int] = 500


@dataclass(frozen=True)
class NonceGrant:
    """Result of minting: the nonce plus the session it belongs to."""

    nonce: str
    session_id: str
    doc_id: str
    issued_at: datetime


@dataclass(frozen=True)
class NonceSnapshot:
    """Detached, read-only view of a stored nonce."""

    doc_id: str
    nonce: str
    session_id: str
    used: bool
    created_at: datetime


def normalize_nonce(nonce: str) -> str:
    """Return the canonical form of ``nonce`` or raise ``ValidationError``."""
    candidate = (nonce or "").strip().lower()
    if not _NONCE_RE.match(candidate):
        raise ValidationError("Malformed nonce")
    return candidate


class NonceStore:
    """Mints nonces and consumes them exactly once.

    Consumption is a single conditional UPDATE, so two callers racing on the
    same nonce cannot both observe it unused.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._retention_days = (
            settings.nonce_retention_days if retention_days is None else retention_days
        )
        self._clock = clock

    def mint(self, doc_id: str, session_id: str | None = None) -> NonceGrant:
        """Create a fresh unused nonce for ``doc_id``.

        Passing ``session_id`` continues an existing viewing session for the
        same document; an unknown session raises ``NonceNotFoundError``.
        """
        nonce = generate_nonce()
        issued_at = self._clock()
        try:
            with self._session_factory() as db, db.begin():
                if session_id is None:
                    session_id = generate_session_id()
                else:
                    known = db.execute(
                        select(NonceRecord.id)
                        .where(
                            NonceRecord.doc_id == doc_id,
                            NonceRecord.session_id == session_id,
                        )
                        .limit(1)
                    ).first()
                    if known is None:
                        raise NonceNotFoundError()
                db.add(
                    NonceRecord(
                        doc_id=doc_id,
                        nonce=nonce,
                        session_id=session_id,
                        used=False,
                        created_at=issued_at,
                    )
                )
        except SQLAlchemyError as err:
            raise TransientStoreError("Nonce store unavailable") from err

        return NonceGrant(nonce=nonce, session_id=session_id, doc_id=doc_id, issued_at=issued_at)

    def validate_and_consume(self, doc_id: str, nonce: str) -> str:
        """Mark the nonce used and return its session identifier.

        Raises:
            ValidationError: If the nonce is not well formed.
            NonceNotFoundError: If the nonce is unknown, belongs to another
                document, or was already used.
            TransientStoreError: If the store could not record the outcome.
        """
        candidate = normalize_nonce(nonce)
        try:
            with self._session_factory() as db, db.begin():
                result = db.execute(
                    update(NonceRecord)
                    .where(
                        NonceRecord.nonce == candidate,
                        NonceRecord.doc_id == doc_id,
                        NonceRecord.used.is_(False),
                    )
                    .values(used=True)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.debug("Rejected nonce %s... for doc %s", candidate[:8], doc_id)
                    raise NonceNotFoundError()
                # session_id is immutable, so reading it after the update is safe.
                return db.execute(
                    select(NonceRecord.session_id).where(NonceRecord.nonce == candidate)
                ).scalar_one()
        except SQLAlchemyError as err:
            raise TransientStoreError("Nonce store unavailable") from err

    def is_valid(self, doc_id: str, nonce: str) -> bool:
        """Return True if the nonce could currently be consumed. Diagnostics only."""
        snapshot = self.peek(nonce)
        return snapshot is not None and snapshot.doc_id == doc_id and not snapshot.used

    def session_exists(self, doc_id: str, session_id: str) -> bool:
        """Return True if any nonce was ever minted for this session and document."""
        try:
            with self._session_factory() as db:
                return db.execute(
                    select(NonceRecord.id)
                    .where(
                        NonceRecord.doc_id == doc_id,
                        NonceRecord.session_id == session_id,
                    )
                    .limit(1)
                ).first() is not None
        except SQLAlchemyError as err:
            raise TransientStoreError("Nonce store unavailable") from err

    def peek(self, nonce: str) -> NonceSnapshot | None:
        """Look up a nonce without consuming it. Never use to authorize access."""
        try:
            candidate = normalize_nonce(nonce)
        except ValidationError:
            return None
        try:
            with self._session_factory() as db:
                record = db.execute(
                    select(NonceRecord).where(NonceRecord.nonce == candidate)
                ).scalar_one_or_none()
                if record is None:
                    return None
                return NonceSnapshot(
                    doc_id=record.doc_id,
                    nonce=record.nonce,
                    session_id=record.session_id,
                    used=bool(record.used),
                    created_at=as_utc(record.created_at),
                )
        except SQLAlchemyError as err:
            raise TransientStoreError("Nonce store unavailable") from err

    def sweep_expired(self, max_age_days: int | None = None) -> int:
        """Delete nonces older than the retention window, used or not.

        Deletes in small batches so no single transaction holds the table
        for long. Returns the number of rows removed.
        """
        days = self._retention_days if max_age_days is None else max_age_days
        threshold = self._clock() - timedelta(days=days)
        removed = 0
        try:
            while True:
                with self._session_factory() as db, db.begin():
                    ids = db.execute(
                        select(NonceRecord.id)
                        .where(NonceRecord.created_at < threshold)
                        .limit(_SWEEP_BATCH_SIZE)
                    ).scalars().all()
                    if not ids:
                        break
                    db.execute(
                        delete(NonceRecord)
                        .where(NonceRecord.id.in_(ids))
                        .execution_options(synchronize_session=False)
                    )
                    removed += len(ids)
        except SQLAlchemyError as err:
            raise TransientStoreError("Nonce store unavailable") from err
        return removed


def get_nonce_store() -> NonceStore:
    """Return a nonce store bound to the default session factory."""
    return NonceStore()
