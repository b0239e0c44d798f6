"""API router for capture sessions and meeting approval."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from fieldcapture.errors import FieldCaptureError
from fieldcapture.models import AreaType, CaptureMode, CaptureSession, MeetingMetadata, SessionType
from fieldcapture.routers.common import get_session_service, get_store, http_error

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class SessionCreate(BaseModel):
    projectId: str
    areaId: str
    areaType: AreaType
    mode: CaptureMode
    sessionType: SessionType = "walkthrough"
    meetingMetadata: Optional[MeetingMetadata] = None


class SessionItem(BaseModel):
    id: str


class ApproveRequest(BaseModel):
    approvedBy: str = "user"


@sessions_router.get("")
async def list_sessions(request: Request, projectId: Optional[str] = Query(None)):
    sessions = await get_store(request).list_sessions(projectId)
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@sessions_router.post("", status_code=201)
async def create_session(request: Request, body: SessionCreate):
    """Start a session; meeting sessions require recorded consent."""
    service = get_session_service(request)
    try:
        session = await service.start_session(
            body.projectId,
            body.areaId,
            body.areaType,
            body.mode,
            session_type=body.sessionType,
            meeting_metadata=body.meetingMetadata,
        )
    except FieldCaptureError as e:
        raise http_error(e)
    return {"session": session.model_dump(mode="json")}


@sessions_router.get("/{session_id}")
async def get_session(request: Request, session_id: str):
    session = await get_store(request).get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"session": session.model_dump(mode="json")}


@sessions_router.put("/{session_id}/end")
async def end_session(request: Request, session_id: str):
    try:
        session = await get_session_service(request).end_session(session_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {"session": session.model_dump(mode="json")}


@sessions_router.post("/{session_id}/media", response_model=CaptureSession)
async def add_session_media(request: Request, session_id: str, body: SessionItem):
    try:
        return await get_session_service(request).add_media_to_session(session_id, body.id)
    except FieldCaptureError as e:
        raise http_error(e)


@sessions_router.post("/{session_id}/audio", response_model=CaptureSession)
async def add_session_audio(request: Request, session_id: str, body: SessionItem):
    try:
        return await get_session_service(request).add_audio_to_session(session_id, body.id)
    except FieldCaptureError as e:
        raise http_error(e)


@sessions_router.post("/{session_id}/approve")
async def approve_session(request: Request, session_id: str, body: Optional[ApproveRequest] = None):
    approved_by = body.approvedBy if body else "user"
    try:
        session, recipients = await get_session_service(request).approve_session(session_id, approved_by)
    except FieldCaptureError as e:
        raise http_error(e)
    return {
        "session": session.model_dump(mode="json"),
        "emailDispatched": bool(recipients),
        "recipients": recipients,
    }


@sessions_router.post("/{session_id}/reject")
async def reject_session(request: Request, session_id: str):
    try:
        session = await get_session_service(request).reject_session(session_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {"session": session.model_dump(mode="json")}


@sessions_router.post("/{session_id}/dispatch")
async def dispatch_meeting_notes(request: Request, session_id: str):
    """Address approved meeting notes to the participants with an email."""
    try:
        recipients = await get_session_service(request).dispatch_meeting_notes(session_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {
        "dispatched": True,
        "recipients": recipients,
        "message": f"Meeting notes dispatched to {len(recipients)} recipient(s)",
    }
