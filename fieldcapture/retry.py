"""Batch re-dispatch of pending and failed sessions, plus the auto-sync loop."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from fieldcapture.dispatcher import WebhookDispatcher
from fieldcapture.models import CaptureSession, utcnow
from fieldcapture.store import FieldStore

logger = logging.getLogger("fieldcapture.retry")

PENDING_STATUSES = frozenset({"pending", "failed"})


@dataclass
class RetryRun:
    """Outcome of one batch, reported back as "N succeeded, M failed"."""

    kind: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_session_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failedSessionIds": list(self.failed_session_ids),
        }


class RetryCoordinator:
    def __init__(self, store: FieldStore, dispatcher: WebhookDispatcher):
        self.store = store
        self.dispatcher = dispatcher
        self.last_run: RetryRun | None = None
        self._batch_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    # ── Selection ───────────────────────────────────────────────────

    async def select_pending_sessions(self) -> list[CaptureSession]:
        """Ended sessions awaiting delivery (pending or failed), in store order."""
        sessions = await self.store.list_sessions()
        return [s for s in sessions if s.endedAt is not None and s.webhookStatus in PENDING_STATUSES]

    async def select_failed_sessions(self) -> list[CaptureSession]:
        sessions = await self.store.list_sessions()
        return [s for s in sessions if s.endedAt is not None and s.webhookStatus == "failed"]

    # ── Batches ─────────────────────────────────────────────────────

    async def sync_pending_sessions(self) -> int:
        async with self._batch_lock:
            run = await self._run("pending", await self.select_pending_sessions())
        return run.succeeded

    async def retry_failed_items(self) -> int:
        async with self._batch_lock:
            run = await self._run("failed", await self.select_failed_sessions())
        return run.succeeded

    async def _run(self, kind: str, sessions: list[CaptureSession]) -> RetryRun:
        run = RetryRun(kind=kind, started_at=utcnow())
        # One at a time, in selection order.
        for session in sessions:
            run.attempted += 1
            try:
                delivered = await self.dispatcher.dispatch(session.id)
            except Exception:
                logger.exception(f"Dispatch of session {session.id} raised during {kind} batch")
                delivered = False
            if delivered:
                run.succeeded += 1
            else:
                run.failed += 1
                run.failed_session_ids.append(session.id)
        run.finished_at = utcnow()
        self.last_run = run
        if run.attempted:
            logger.info(
                f"Retry batch ({kind}): {run.succeeded} succeeded, {run.failed} failed "
                f"of {run.attempted} session(s)"
            )
        return run

    # ── Auto-sync loop ──────────────────────────────────────────────

    async def start(self, interval_seconds: float, startup_delay: float = 0) -> None:
        if self._running:
            logger.warning("Auto-sync loop already running")
            return
        if interval_seconds <= 0:
            logger.info("Auto-sync loop disabled (interval <= 0)")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(interval_seconds, startup_delay))
        logger.info(f"Auto-sync loop started (every {interval_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Auto-sync loop stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self, interval_seconds: float, startup_delay: float) -> None:
        try:
            if startup_delay > 0:
                await asyncio.sleep(startup_delay)
            while self._running:
                try:
                    await self.run_auto_sync_once()
                except Exception as e:
                    logger.error(f"Auto-sync pass failed: {e}")
                await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Auto-sync task cancelled")
            raise
        finally:
            self._running = False

    async def run_auto_sync_once(self) -> int | None:
        """One loop iteration; ``None`` when the persisted autoSync setting is off."""
        settings = await self.store.get_settings()
        if not settings.autoSync:
            logger.debug("Auto-sync disabled in settings, skipping pass")
            return None
        return await self.sync_pending_sessions()
