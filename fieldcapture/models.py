"""Pydantic models matching the mobile client's TypeScript types."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

SyncStatus = Literal["captured", "syncing", "uploaded", "failed"]
CaptureMode = Literal["photo_speak", "walkthrough", "voice_only"]
SessionType = Literal["walkthrough", "meeting"]
WebhookStatus = Literal["pending", "sent", "received", "failed"]
MeetingType = Literal["scope", "schedule", "material", "vendor", "internal"]
ParticipantRole = Literal["pm", "sub", "owner", "vendor", "internal"]
ConsentMethod = Literal["verbal", "written", "contract"]
ApprovalStatus = Literal["pending", "approved", "rejected"]
TaskStatus = Literal["open", "in_progress", "blocked", "done"]
TaskPriority = Literal["low", "medium", "high"]
LinkType = Literal["strong", "suggested", "possible"]
LinkCreator = Literal["system", "user"]
EvidenceTargetType = Literal["media", "audio", "transcript"]
MediaKind = Literal["photo", "video"]
AreaType = Literal[
    "kitchen", "bath", "roof", "exterior", "garage",
    "basement", "bedroom", "living_room", "other",
]

OPEN_TASK_STATUSES = frozenset({"open", "in_progress"})

# Created with every project, in display order.
DEFAULT_AREAS: tuple[tuple[str, str], ...] = (
    ("kitchen", "Kitchen"),
    ("bath", "Bathroom"),
    ("roof", "Roof"),
    ("exterior", "Exterior"),
    ("other", "Other"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Projects & areas ────────────────────────────────────────────────

class Project(BaseModel):
    id: str
    name: str
    address: str = ""
    clientName: str = ""
    createdAt: datetime
    updatedAt: datetime
    mediaCount: int = 0
    taskCount: int = 0
    openTaskCount: int = 0


class Area(BaseModel):
    id: str
    projectId: str
    type: AreaType
    label: str
    createdAt: datetime


# ── Captured items ──────────────────────────────────────────────────

class MediaAsset(BaseModel):
    id: str
    projectId: str
    areaId: str
    areaType: AreaType
    type: MediaKind = "photo"
    uri: str
    thumbnailUri: Optional[str] = None
    capturedAt: datetime
    syncStatus: SyncStatus = "captured"
    sessionId: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AudioNote(BaseModel):
    id: str
    projectId: str
    areaId: str
    areaType: AreaType
    uri: str = ""
    durationMs: int = 0
    capturedAt: datetime
    syncStatus: SyncStatus = "captured"
    sessionId: Optional[str] = None
    linkedMediaId: Optional[str] = None
    transcript: Optional[str] = None


class TranscriptSegment(BaseModel):
    id: str
    audioNoteId: str = ""
    projectId: str
    sessionId: Optional[str] = None
    externalId: Optional[str] = None
    text: str = ""
    startMs: int = 0
    endMs: int = 0
    speakerRole: Optional[str] = None
    confidence: float = 1.0


# ── Tasks & evidence ────────────────────────────────────────────────

class TaskItem(BaseModel):
    id: str
    projectId: str
    areaId: Optional[str] = None
    areaType: Optional[AreaType] = None
    title: str
    description: str = ""
    status: TaskStatus = "open"
    priority: TaskPriority = "medium"
    dueDate: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime
    createdBy: LinkCreator = "user"
    confidence: Optional[float] = None
    # Origin session and processor-supplied id of system-generated tasks
    sessionId: Optional[str] = None
    externalId: Optional[str] = None


class EvidenceLink(BaseModel):
    id: str
    taskId: str
    targetType: str
    targetId: str
    linkType: str = "suggested"
    linkScore: float = 0.5
    createdBy: LinkCreator = "system"
    createdAt: datetime


# ── Sessions ────────────────────────────────────────────────────────

class Participant(BaseModel):
    name: str
    role: ParticipantRole = "internal"
    email: Optional[str] = None


class MeetingMetadata(BaseModel):
    meetingType: MeetingType = "internal"
    participants: list[Participant] = Field(default_factory=list)
    consentGiven: bool = False
    consentMethod: ConsentMethod = "verbal"
    consentTimestamp: Optional[datetime] = None


class WebhookResult(BaseModel):
    """Display snapshot of a processor response, kept verbatim."""

    model_config = {"extra": "allow"}

    processedAt: datetime
    transcriptSegments: Optional[Any] = None
    tasks: Optional[Any] = None
    issues: Optional[Any] = None
    questions: Optional[Any] = None
    changeOrderCandidates: Optional[Any] = None
    dailyLog: Optional[Any] = None
    audit: Optional[Any] = None


class CaptureSession(BaseModel):
    id: str
    projectId: str
    areaId: str
    areaType: AreaType
    mode: CaptureMode
    sessionType: SessionType = "walkthrough"
    startedAt: datetime
    endedAt: Optional[datetime] = None
    mediaIds: list[str] = Field(default_factory=list)
    audioIds: list[str] = Field(default_factory=list)
    webhookStatus: WebhookStatus = "pending"
    webhookResult: Optional[WebhookResult] = None
    meetingMetadata: Optional[MeetingMetadata] = None
    approvalStatus: Optional[ApprovalStatus] = None
    approvedAt: Optional[datetime] = None
    approvedBy: Optional[str] = None


# ── Settings ────────────────────────────────────────────────────────

class AppSettings(BaseModel):
    wifiOnlyUpload: bool = True
    autoSync: bool = True
    webhookUrl: str = ""


class SyncStatusSummary(BaseModel):
    pendingSessions: int = 0
    failedSessions: int = 0
    syncedSessions: int = 0
    totalSessions: int = 0
    failedMedia: int = 0
    failedAudio: int = 0
