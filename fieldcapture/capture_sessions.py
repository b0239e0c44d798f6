"""Capture session lifecycle and webhook status state machine."""
from __future__ import annotations

import logging
from typing import Any

from fieldcapture.errors import (
    ConsentRequiredError,
    InvalidSessionTransition,
    NotAMeetingError,
    NotFoundError,
    SessionNotApprovedError,
)
from fieldcapture.models import (
    AudioNote,
    CaptureSession,
    MediaAsset,
    MeetingMetadata,
    utcnow,
)
from fieldcapture.store import FieldStore, new_id

logger = logging.getLogger("fieldcapture.sessions")

# webhookStatus edges. received -> sent only happens on an explicit re-dispatch;
# the retry coordinator never selects received sessions.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"sent"}),
    "sent": frozenset({"received", "failed"}),
    "failed": frozenset({"sent"}),
    "received": frozenset({"sent"}),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _coerce_meeting(meeting_metadata: MeetingMetadata | dict | None) -> MeetingMetadata | None:
    if meeting_metadata is None or isinstance(meeting_metadata, MeetingMetadata):
        return meeting_metadata
    return MeetingMetadata.model_validate(meeting_metadata)


class SessionService:
    """Owns creation, membership and status transitions of capture sessions."""

    def __init__(self, store: FieldStore):
        self.store = store

    async def _require(self, session_id: str) -> CaptureSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    async def start_session(
        self,
        project_id: str,
        area_id: str,
        area_type: str,
        mode: str,
        session_type: str = "walkthrough",
        meeting_metadata: MeetingMetadata | dict | None = None,
    ) -> CaptureSession:
        meeting = _coerce_meeting(meeting_metadata)
        if session_type == "meeting":
            if meeting is None or not meeting.consentGiven:
                raise ConsentRequiredError("Consent must be given for meeting recordings")
            if meeting.consentTimestamp is None:
                meeting = meeting.model_copy(update={"consentTimestamp": utcnow()})
        else:
            meeting = None

        session = CaptureSession(
            id=new_id(),
            projectId=project_id,
            areaId=area_id,
            areaType=area_type,
            mode=mode,
            sessionType=session_type,
            startedAt=utcnow(),
            webhookStatus="pending",
            meetingMetadata=meeting,
            approvalStatus="pending" if session_type == "meeting" else None,
        )
        await self.store.insert_session(session)
        logger.info(f"Started {session_type} session {session.id} ({mode}) for project {project_id}")
        return session

    async def add_media_to_session(self, session_id: str, media_id: str) -> CaptureSession:
        # Not idempotent: a repeated call appends the id again.
        return await self.store.attach_session_item(session_id, "media", media_id)

    async def add_audio_to_session(self, session_id: str, audio_id: str) -> CaptureSession:
        return await self.store.attach_session_item(session_id, "audio", audio_id)

    async def end_session(self, session_id: str) -> CaptureSession:
        await self._require(session_id)
        session = await self.store.update_session(session_id, endedAt=utcnow())
        logger.info(f"Ended session {session_id}")
        return session

    async def transition(self, session_id: str, target: str) -> CaptureSession:
        session = await self._require(session_id)
        if not can_transition(session.webhookStatus, target):
            raise InvalidSessionTransition(session_id, session.webhookStatus, target)
        return await self.store.update_session(session_id, webhookStatus=target)

    async def acknowledge(self, session_id: str) -> CaptureSession:
        """Drive a session to ``received`` through legal edges and mark its items uploaded."""
        session = await self._require(session_id)
        if session.webhookStatus in ("pending", "failed"):
            session = await self.transition(session_id, "sent")
        if session.webhookStatus == "sent":
            session = await self.transition(session_id, "received")
        return await self.store.mark_session_items(session_id, None, "uploaded")

    # ── Capture helpers ─────────────────────────────────────────────

    async def capture_media(self, session_id: str, uri: str, **kwargs: Any) -> MediaAsset:
        session = await self._require(session_id)
        media = await self.store.add_media(
            project_id=session.projectId,
            area_id=session.areaId,
            area_type=session.areaType,
            uri=uri,
            **kwargs,
        )
        await self.add_media_to_session(session_id, media.id)
        return media.model_copy(update={"sessionId": session_id})

    async def capture_audio(self, session_id: str, uri: str, **kwargs: Any) -> AudioNote:
        session = await self._require(session_id)
        note = await self.store.add_audio_note(
            project_id=session.projectId,
            area_id=session.areaId,
            area_type=session.areaType,
            uri=uri,
            **kwargs,
        )
        await self.add_audio_to_session(session_id, note.id)
        # Voice-only capture is single-shot.
        if session.mode == "voice_only" and session.endedAt is None:
            await self.end_session(session_id)
        return note.model_copy(update={"sessionId": session_id})

    # ── Meeting approval ────────────────────────────────────────────

    async def approve_session(self, session_id: str, approved_by: str) -> tuple[CaptureSession, list[str]]:
        session = await self._require(session_id)
        if session.sessionType != "meeting":
            raise NotAMeetingError("Only meeting sessions can be approved")
        session = await self.store.update_session(
            session_id,
            approvalStatus="approved",
            approvedAt=utcnow(),
            approvedBy=approved_by,
        )
        recipients = [p.email for p in session.meetingMetadata.participants if p.email] if session.meetingMetadata else []
        if recipients:
            logger.info(f"Meeting session {session_id} approved; notes go to {', '.join(recipients)}")
        return session, recipients

    async def reject_session(self, session_id: str) -> CaptureSession:
        session = await self._require(session_id)
        if session.sessionType != "meeting":
            raise NotAMeetingError("Only meeting sessions can be rejected")
        return await self.store.update_session(session_id, approvalStatus="rejected")

    async def dispatch_meeting_notes(self, session_id: str) -> list[dict]:
        """Return the participants meeting notes are addressed to.

        Email delivery itself is not part of this service; the dispatch is logged.
        """
        session = await self._require(session_id)
        if session.approvalStatus != "approved":
            raise SessionNotApprovedError("Session must be approved before dispatching")
        participants = session.meetingMetadata.participants if session.meetingMetadata else []
        recipients = [
            {"name": p.name, "email": p.email, "role": p.role}
            for p in participants
            if p.email
        ]
        meeting_type = session.meetingMetadata.meetingType if session.meetingMetadata else ""
        logger.info(
            f"Dispatching {meeting_type} meeting notes for session {session_id} "
            f"to {len(recipients)} recipient(s)"
        )
        return recipients
