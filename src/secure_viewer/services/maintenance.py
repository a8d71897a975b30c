"""Periodic housekeeping for nonce and rate-limit state.

The sweeps run on their own schedule in a background task and never on the
request path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from secure_viewer.core.exceptions import TransientStoreError
from secure_viewer.core.settings import settings
from secure_viewer.services.nonce import NonceStore
from secure_viewer.services.rate_limiter import RateLimiter

# Configure logger for this module
logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 20


@dataclass
class SweepResult:
    nonces_removed: int | None = None
    rate_entries_removed: int | None = None


@dataclass
class MaintenanceState:
    """When each sweep last ran, on the worker's monotonic clock."""

    last_nonce_sweep: float | None = None
    last_rate_sweep: float | None = None
    errors: deque[str] = field(default_factory=lambda: deque(maxlen=MAX_RECORDED_ERRORS))


class MaintenanceWorker:
    """Runs the nonce-expiry and rate-limit sweeps at their configured intervals."""

    def __init__(
        self,
        nonces: NonceStore,
        rate_limiter: RateLimiter,
        *,
        nonce_interval: float | None = None,
        rate_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.nonces = nonces
        self.rate_limiter = rate_limiter
        self.nonce_interval = (
            settings.nonce_sweep_interval_seconds if nonce_interval is None else nonce_interval
        )
        self.rate_interval = (
            settings.rate_limit_sweep_interval_seconds if rate_interval is None else rate_interval
        )
        self.state = MaintenanceState()
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def _due(self, last: float | None, interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    def run_once(self, *, force: bool = False) -> SweepResult:
        """Run whichever sweeps are due (or all of them with ``force``)."""
        now = self._clock()
        result = SweepResult()

        if force or self._due(self.state.last_nonce_sweep, self.nonce_interval, now):
            try:
                result.nonces_removed = self.nonces.sweep_expired()
            except TransientStoreError as e:
                logger.error("Nonce sweep failed: %s", e, exc_info=True)
                self.state.errors.append(f"nonce: {e}")
            else:
                self.state.last_nonce_sweep = now
                logger.info("Nonce sweep removed %d records", result.nonces_removed)

        if force or self._due(self.state.last_rate_sweep, self.rate_interval, now):
            try:
                result.rate_entries_removed = self.rate_limiter.sweep()
            except TransientStoreError as e:
                logger.error("Rate limit sweep failed: %s", e, exc_info=True)
                self.state.errors.append(f"rate: {e}")
            else:
                self.state.last_rate_sweep = now
                logger.info("Rate limit sweep removed %d entries", result.rate_entries_removed)

        return result

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop and wait for it to exit."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        tick = max(0.1, min(self.nonce_interval, self.rate_interval))

        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.exception("Maintenance pass failed")
                self.state.errors.append(f"pass: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=tick)
            except TimeoutError:
                continue
