"""Outbound webhook dispatch for ended capture sessions.

``WebhookDispatcher.dispatch`` never raises: configuration problems return
``False`` without touching the session, and every delivery problem
(non-2xx, network error, timeout, filesystem error) is persisted as a
``failed`` session plus ``failed`` media/audio before returning ``False``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from fieldcapture import config
from fieldcapture.capture_sessions import SessionService
from fieldcapture.ingestion import IngestionReport, ResultIngestor
from fieldcapture.observability import record_dispatch, start_span
from fieldcapture.payload import SessionPayload, build_session_payload
from fieldcapture.store import FieldStore

logger = logging.getLogger("fieldcapture.dispatch")


@dataclass
class DispatchResult:
    session_id: str
    outcome: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    report: Optional[IngestionReport] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "received"


def parse_response_body(response: httpx.Response) -> Any:
    """JSON body of a 2xx response, or ``None`` when it is empty or not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class WebhookDispatcher:
    def __init__(
        self,
        store: FieldStore,
        sessions: SessionService,
        ingestor: ResultIngestor,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        media_root: Path | None = None,
        audio_mime_type: str | None = None,
    ):
        self.store = store
        self.sessions = sessions
        self.ingestor = ingestor
        self.timeout = config.WEBHOOK_TIMEOUT_SECONDS if timeout is None else timeout
        self.transport = transport
        self.media_root = config.MEDIA_ROOT if media_root is None else Path(media_root)
        self.audio_mime_type = audio_mime_type or config.WEBHOOK_AUDIO_MIME_TYPE
        self._in_flight: set[str] = set()

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def dispatch(self, session_id: str) -> bool:
        result = await self.dispatch_session(session_id)
        return result.ok

    async def dispatch_session(self, session_id: str) -> DispatchResult:
        try:
            session = await self.store.get_session(session_id)
            settings = await self.store.get_settings() if session is not None else None
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Dispatch skipped for session {session_id}: could not read store: {exc!r}")
            return DispatchResult(session_id, "failed", error=str(exc) or type(exc).__name__)

        if session is None:
            logger.warning(f"Dispatch skipped: session {session_id} not found")
            return DispatchResult(session_id, "not_found", error="Session not found")

        url = (settings.webhookUrl or "").strip()
        if not url:
            logger.warning(f"Dispatch skipped for session {session_id}: no webhook URL configured")
            return DispatchResult(session_id, "not_configured", error="Webhook URL not configured")

        if session.endedAt is None:
            logger.warning(f"Dispatch skipped: session {session_id} has not ended")
            return DispatchResult(session_id, "not_ended", error="Session has not ended")

        if session_id in self._in_flight:
            logger.info(f"Dispatch skipped: session {session_id} is already in flight")
            return DispatchResult(session_id, "in_flight", error="Dispatch already in progress")

        self._in_flight.add(session_id)
        started = time.perf_counter()
        result: DispatchResult | None = None
        try:
            with start_span(
                "webhook.dispatch",
                {"session.id": session_id, "project.id": session.projectId},
            ) as span:
                result = await self._deliver(session_id, url)
                if span is not None:
                    span.set_attribute("dispatch.outcome", result.outcome)
                    if result.status_code is not None:
                        span.set_attribute("http.status_code", result.status_code)
            return result
        finally:
            self._in_flight.discard(session_id)
            duration_ms = (time.perf_counter() - started) * 1000.0
            record_dispatch(
                result.outcome if result else "failed",
                duration_ms,
                project_id=session.projectId,
            )

    async def _deliver(self, session_id: str, url: str) -> DispatchResult:
        try:
            # pending/failed/received -> sent is persisted before the network call.
            current = await self.store.get_session(session_id)
            if current is not None and current.webhookStatus != "sent":
                current = await self.sessions.transition(session_id, "sent")
            payload = await build_session_payload(self.store, current, self.media_root)
            response = await self._post(url, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Webhook dispatch failed for session {session_id}: {exc!r}")
            await self._mark_failed(session_id)
            return DispatchResult(session_id, "failed", error=str(exc) or type(exc).__name__)

        if not response.is_success:
            logger.warning(
                f"Webhook dispatch failed for session {session_id}: HTTP {response.status_code}"
            )
            await self._mark_failed(session_id)
            return DispatchResult(
                session_id,
                "failed",
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        try:
            await self.store.mark_session_items(session_id, "received", "uploaded")
            await self._refresh()
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Could not record delivery of session {session_id}: {exc!r}")
            await self._mark_failed(session_id)
            return DispatchResult(session_id, "failed", status_code=response.status_code, error=str(exc))

        logger.info(f"Session {session_id} delivered (HTTP {response.status_code})")
        body = parse_response_body(response)
        report = None
        if body is not None:
            try:
                report = await self.ingestor.ingest(session_id, body)
            except Exception:
                logger.exception(f"Result ingestion crashed for session {session_id}")
            if report is not None and report.ingested:
                await self._refresh()
        return DispatchResult(session_id, "received", status_code=response.status_code, report=report)

    async def _post(self, url: str, payload: SessionPayload) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            if payload.attachment is not None:
                content = await asyncio.to_thread(payload.attachment.read_bytes)
                files = {"file": (payload.attachment.name, content, self.audio_mime_type)}
                data = {"data": json.dumps(payload.metadata)}
                return await client.post(url, files=files, data=data)
            return await client.post(url, json=payload.metadata)

    async def _mark_failed(self, session_id: str) -> None:
        try:
            await self.store.mark_session_items(session_id, "failed", "failed")
        except Exception:
            logger.exception(f"Could not mark session {session_id} as failed")
            return
        await self._refresh()

    async def _refresh(self) -> None:
        try:
            await self.store.load_all()
        except Exception:
            logger.exception("Store refresh after dispatch failed")
