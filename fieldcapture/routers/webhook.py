"""Inbound processor callback, the asynchronous alternative to the dispatch response body."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from fieldcapture.errors import FieldCaptureError
from fieldcapture.routers.common import get_ingestor, get_session_service, get_store, http_error

logger = logging.getLogger("fieldcapture.ingest")

webhook_router = APIRouter(prefix="/api/webhook", tags=["webhook"])


@webhook_router.post("/n8n-callback")
async def processor_callback(request: Request, payload: dict[str, Any] = Body(...)):
    """Accept ``{sessionId, ...result}``, mark the session received and ingest the result."""
    session_id = str(payload.get("sessionId") or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")

    store = get_store(request)
    if await store.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    result = {key: value for key, value in payload.items() if key != "sessionId"}
    try:
        await get_session_service(request).acknowledge(session_id)
    except FieldCaptureError as e:
        raise http_error(e)

    report = await get_ingestor(request).ingest(session_id, result)
    await store.load_all()
    logger.info(f"Callback for session {session_id} processed")
    return {"status": "received", "sessionId": session_id, "ingestion": report.as_dict()}
