"""API router for webhook delivery, retries and sync status."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from fieldcapture.routers.common import get_dispatcher, get_retry_coordinator, get_store

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])

_OUTCOME_STATUS = {
    "not_found": 404,
    "not_configured": 500,
    "not_ended": 409,
    "in_flight": 409,
    "failed": 502,
}


class TriggerWebhookRequest(BaseModel):
    sessionId: Optional[str] = None


def _batch_response(coordinator, succeeded: int) -> dict:
    run = coordinator.last_run
    payload = {"succeeded": succeeded, "failed": 0, "attempted": succeeded}
    if run is not None:
        payload.update(run.as_dict())
    return payload


@sync_router.post("/trigger-webhook")
async def trigger_webhook(request: Request, body: TriggerWebhookRequest):
    """Dispatch one session to the webhook and ingest the response."""
    session_id = (body.sessionId or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")

    dispatcher = get_dispatcher(request)
    result = await dispatcher.dispatch_session(session_id)
    if not result.ok:
        status_code = _OUTCOME_STATUS.get(result.outcome, 500)
        detail = {"message": result.error or "Webhook dispatch failed", "outcome": result.outcome}
        if result.status_code is not None:
            detail["status"] = result.status_code
        raise HTTPException(status_code=status_code, detail=detail)

    session = await get_store(request).get_session(session_id)
    webhook_result = session.webhookResult.model_dump(mode="json") if session and session.webhookResult else None
    return {
        "status": "received",
        "webhookResult": webhook_result,
        "ingestion": result.report.as_dict() if result.report else None,
    }


@sync_router.post("/pending")
async def sync_pending(request: Request):
    """Force a sync of every ended pending/failed session."""
    coordinator = get_retry_coordinator(request)
    succeeded = await coordinator.sync_pending_sessions()
    return _batch_response(coordinator, succeeded)


@sync_router.post("/retry-failed")
async def retry_failed(request: Request):
    """Re-dispatch failed sessions only."""
    coordinator = get_retry_coordinator(request)
    succeeded = await coordinator.retry_failed_items()
    return _batch_response(coordinator, succeeded)


@sync_router.get("/status")
async def sync_status(request: Request):
    store = get_store(request)
    summary = await store.sync_status_summary()
    payload = summary.model_dump()
    coordinator = getattr(request.app.state, "retry_coordinator", None)
    dispatcher = getattr(request.app.state, "dispatcher", None)
    payload["autoSyncRunning"] = bool(coordinator and coordinator.is_running)
    payload["inFlightSessions"] = sorted(dispatcher.in_flight) if dispatcher else []
    payload["lastRun"] = coordinator.last_run.as_dict() if coordinator and coordinator.last_run else None
    return payload
