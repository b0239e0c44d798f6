"""API router for registering captured media and audio."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from fieldcapture.errors import FieldCaptureError
from fieldcapture.models import AreaType, AudioNote, MediaAsset, MediaKind, SyncStatus
from fieldcapture.routers.common import get_session_service, get_store, http_error

captures_router = APIRouter(prefix="/api/captures", tags=["captures"])


class MediaCreate(BaseModel):
    projectId: str
    areaId: str
    areaType: AreaType
    uri: str
    type: MediaKind = "photo"
    capturedAt: Optional[datetime] = None
    thumbnailUri: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    sessionId: Optional[str] = None


class AudioCreate(BaseModel):
    projectId: str
    areaId: str
    areaType: AreaType
    uri: str = ""
    durationMs: int = 0
    capturedAt: Optional[datetime] = None
    linkedMediaId: Optional[str] = None
    transcript: Optional[str] = None
    sessionId: Optional[str] = None


class StatusUpdate(BaseModel):
    status: SyncStatus


@captures_router.post("/media", response_model=MediaAsset)
async def add_media(request: Request, body: MediaCreate):
    """Register a photo/video, optionally appending it to a session."""
    store = get_store(request)
    try:
        media = await store.add_media(
            project_id=body.projectId,
            area_id=body.areaId,
            area_type=body.areaType,
            uri=body.uri,
            kind=body.type,
            captured_at=body.capturedAt,
            metadata=body.metadata,
            thumbnail_uri=body.thumbnailUri,
            width=body.width,
            height=body.height,
        )
        if body.sessionId:
            await get_session_service(request).add_media_to_session(body.sessionId, media.id)
            media = await store.get_media(media.id)
    except FieldCaptureError as e:
        raise http_error(e)
    return media


@captures_router.post("/audio", response_model=AudioNote)
async def add_audio(request: Request, body: AudioCreate):
    store = get_store(request)
    try:
        note = await store.add_audio_note(
            project_id=body.projectId,
            area_id=body.areaId,
            area_type=body.areaType,
            uri=body.uri,
            duration_ms=body.durationMs,
            captured_at=body.capturedAt,
            linked_media_id=body.linkedMediaId,
            transcript=body.transcript,
        )
        if body.sessionId:
            await get_session_service(request).add_audio_to_session(body.sessionId, note.id)
            note = await store.get_audio_note(note.id)
    except FieldCaptureError as e:
        raise http_error(e)
    return note


@captures_router.put("/media/{media_id}/status")
async def update_media_status(request: Request, media_id: str, body: StatusUpdate):
    if not await get_store(request).update_media_status(media_id, body.status):
        raise HTTPException(status_code=404, detail=f"Media {media_id} not found")
    return {"id": media_id, "syncStatus": body.status}


@captures_router.put("/audio/{audio_id}/status")
async def update_audio_status(request: Request, audio_id: str, body: StatusUpdate):
    if not await get_store(request).update_audio_status(audio_id, body.status):
        raise HTTPException(status_code=404, detail=f"Audio note {audio_id} not found")
    return {"id": audio_id, "syncStatus": body.status}


@captures_router.delete("/media/{media_id}")
async def delete_media(request: Request, media_id: str):
    try:
        await get_store(request).delete_media(media_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {"status": "deleted", "mediaId": media_id}
