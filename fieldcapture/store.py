"""Application state service over the entity repositories.

``FieldStore`` is handed to the session service, dispatcher, ingestor and
routers. Reads go straight to the repositories; every command runs in one
transaction under a write lock so derived project counters move together
with the rows they count.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from fieldcapture import config
from fieldcapture.db.factory import Repositories, get_repositories, transaction
from fieldcapture.errors import NotFoundError
from fieldcapture.models import (
    DEFAULT_AREAS,
    OPEN_TASK_STATUSES,
    AppSettings,
    Area,
    AudioNote,
    CaptureSession,
    EvidenceLink,
    MediaAsset,
    Project,
    SyncStatusSummary,
    TaskItem,
    TranscriptSegment,
    utcnow,
)

logger = logging.getLogger("fieldcapture.store")

_PROJECT_FIELDS = {"name", "address", "clientName"}
_TASK_FIELDS = {"title", "description", "status", "priority", "tags", "dueDate", "areaId", "areaType"}
_SESSION_FIELDS = {
    "endedAt", "mediaIds", "audioIds", "webhookStatus", "webhookResult",
    "meetingMetadata", "approvalStatus", "approvedAt", "approvedBy",
}
_SETTINGS_FIELDS = set(AppSettings.model_fields)

Subscriber = Callable[["StoreSnapshot"], Any]


def new_id() -> str:
    return str(uuid.uuid4())


def _dump(model: Any) -> dict:
    return model.model_dump(mode="json")


def _open_delta(before: str | None, after: str | None) -> int:
    return int(after in OPEN_TASK_STATUSES) - int(before in OPEN_TASK_STATUSES)


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of every collection, rebuilt by ``FieldStore.load_all``."""

    projects: tuple[Project, ...] = ()
    areas: tuple[Area, ...] = ()
    media: tuple[MediaAsset, ...] = ()
    audio_notes: tuple[AudioNote, ...] = ()
    tasks: tuple[TaskItem, ...] = ()
    evidence_links: tuple[EvidenceLink, ...] = ()
    sessions: tuple[CaptureSession, ...] = ()
    transcripts: tuple[TranscriptSegment, ...] = ()
    settings: AppSettings = field(default_factory=AppSettings)
    loaded_at: Optional[datetime] = None


class FieldStore:
    def __init__(
        self,
        db: Any,
        *,
        default_webhook_url: str | None = None,
        placeholder_marker: str | None = None,
    ):
        self.db = db
        self.default_webhook_url = (
            config.DEFAULT_WEBHOOK_URL if default_webhook_url is None else default_webhook_url
        )
        self.placeholder_marker = (
            config.WEBHOOK_PLACEHOLDER_MARKER if placeholder_marker is None else placeholder_marker
        )
        self._write_lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []
        self._snapshot = StoreSnapshot()

    # ── Plumbing ────────────────────────────────────────────────────

    @property
    def repos(self) -> Repositories:
        return get_repositories(self.db)

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[Repositories]:
        async with self._write_lock:
            async with transaction(self.db) as repos:
                yield repos

    async def _require_project(self, repos: Repositories, project_id: str) -> dict:
        row = await repos.projects.get_by_id(project_id)
        if not row:
            raise NotFoundError("Project", project_id)
        return row

    async def _require_session(self, repos: Repositories, session_id: str) -> dict:
        row = await repos.sessions.get_by_id(session_id)
        if not row:
            raise NotFoundError("Session", session_id)
        return row

    # ── Reactive view ───────────────────────────────────────────────

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a listener for ``load_all``; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def load_all(self) -> StoreSnapshot:
        repos = self.repos
        snapshot = StoreSnapshot(
            projects=tuple(Project.model_validate(r) for r in await repos.projects.list_all()),
            areas=tuple(Area.model_validate(r) for r in await repos.areas.list_all()),
            media=tuple(MediaAsset.model_validate(r) for r in await repos.media.list_all()),
            audio_notes=tuple(AudioNote.model_validate(r) for r in await repos.audio.list_all()),
            tasks=tuple(TaskItem.model_validate(r) for r in await repos.tasks.list_all()),
            evidence_links=tuple(EvidenceLink.model_validate(r) for r in await repos.links.list_all()),
            sessions=tuple(CaptureSession.model_validate(r) for r in await repos.sessions.list_all()),
            transcripts=tuple(TranscriptSegment.model_validate(r) for r in await repos.transcripts.list_all()),
            settings=await self.get_settings(),
            loaded_at=utcnow(),
        )
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Store subscriber failed")
        return snapshot

    # ── Reads ───────────────────────────────────────────────────────

    async def get_project(self, project_id: str) -> Project | None:
        row = await self.repos.projects.get_by_id(project_id)
        return Project.model_validate(row) if row else None

    async def list_projects(self) -> list[Project]:
        return [Project.model_validate(r) for r in await self.repos.projects.list_all()]

    async def list_areas(self, project_id: str | None = None) -> list[Area]:
        return [Area.model_validate(r) for r in await self.repos.areas.list_all(project_id)]

    async def get_media(self, media_id: str) -> MediaAsset | None:
        row = await self.repos.media.get_by_id(media_id)
        return MediaAsset.model_validate(row) if row else None

    async def list_media(self, project_id: str | None = None) -> list[MediaAsset]:
        return [MediaAsset.model_validate(r) for r in await self.repos.media.list_all(project_id)]

    async def get_audio_note(self, note_id: str) -> AudioNote | None:
        row = await self.repos.audio.get_by_id(note_id)
        return AudioNote.model_validate(row) if row else None

    async def list_audio_notes(self, project_id: str | None = None) -> list[AudioNote]:
        return [AudioNote.model_validate(r) for r in await self.repos.audio.list_all(project_id)]

    async def get_task(self, task_id: str) -> TaskItem | None:
        row = await self.repos.tasks.get_by_id(task_id)
        return TaskItem.model_validate(row) if row else None

    async def find_task_by_external_id(self, session_id: str, external_id: str) -> TaskItem | None:
        row = await self.repos.tasks.get_by_external_id(session_id, external_id)
        return TaskItem.model_validate(row) if row else None

    async def list_tasks(
        self,
        project_id: str | None = None,
        status: str | None = None,
        priority: str | None = None,
    ) -> list[TaskItem]:
        rows = await self.repos.tasks.list_all(project_id, status, priority)
        return [TaskItem.model_validate(r) for r in rows]

    async def list_evidence_links(self, task_id: str | None = None) -> list[EvidenceLink]:
        return [EvidenceLink.model_validate(r) for r in await self.repos.links.list_all(task_id)]

    async def find_evidence_link(self, task_id: str, target_type: str, target_id: str) -> EvidenceLink | None:
        row = await self.repos.links.find(task_id, target_type, target_id)
        return EvidenceLink.model_validate(row) if row else None

    async def get_session(self, session_id: str) -> CaptureSession | None:
        row = await self.repos.sessions.get_by_id(session_id)
        return CaptureSession.model_validate(row) if row else None

    async def list_sessions(self, project_id: str | None = None) -> list[CaptureSession]:
        return [CaptureSession.model_validate(r) for r in await self.repos.sessions.list_all(project_id)]

    async def list_transcripts(self, project_id: str | None = None) -> list[TranscriptSegment]:
        return [TranscriptSegment.model_validate(r) for r in await self.repos.transcripts.list_all(project_id)]

    async def find_transcript_by_external_id(self, session_id: str, external_id: str) -> TranscriptSegment | None:
        row = await self.repos.transcripts.get_by_external_id(session_id, external_id)
        return TranscriptSegment.model_validate(row) if row else None

    async def get_settings(self) -> AppSettings:
        stored = await self.repos.settings.get_all()
        url = stored.get("webhookUrl")
        if isinstance(url, str) and self.placeholder_marker and self.placeholder_marker in url:
            logger.info("Replacing placeholder webhook URL with the configured default")
            stored["webhookUrl"] = self.default_webhook_url
            async with self._write() as repos:
                await repos.settings.set_many({"webhookUrl": self.default_webhook_url})
        merged = {"webhookUrl": self.default_webhook_url}
        merged.update({k: v for k, v in stored.items() if k in _SETTINGS_FIELDS})
        return AppSettings.model_validate(merged)

    async def sync_status_summary(self) -> SyncStatusSummary:
        repos = self.repos
        by_status = await repos.sessions.count_by_status()
        sessions = await repos.sessions.list_all()
        return SyncStatusSummary(
            # Ended sessions awaiting delivery, failed ones included.
            pendingSessions=by_status.get("pending", 0) + by_status.get("failed", 0),
            failedSessions=by_status.get("failed", 0),
            syncedSessions=by_status.get("received", 0),
            totalSessions=len(sessions),
            failedMedia=await repos.media.count_by_status("failed"),
            failedAudio=await repos.audio.count_by_status("failed"),
        )

    # ── Projects & areas ────────────────────────────────────────────

    async def add_project(self, name: str, address: str = "", client_name: str = "") -> Project:
        now = utcnow()
        project = Project(
            id=new_id(), name=name, address=address, clientName=client_name,
            createdAt=now, updatedAt=now,
        )
        async with self._write() as repos:
            await repos.projects.upsert(_dump(project))
            for area_type, label in DEFAULT_AREAS:
                area = Area(id=new_id(), projectId=project.id, type=area_type, label=label, createdAt=now)
                await repos.areas.add(_dump(area))
        logger.info(f"Created project {project.id} ({name})")
        return project

    async def update_project(self, project_id: str, **updates: Any) -> Project:
        async with self._write() as repos:
            row = await self._require_project(repos, project_id)
            row.update({k: v for k, v in updates.items() if k in _PROJECT_FIELDS and v is not None})
            row["updatedAt"] = utcnow()
            project = Project.model_validate(row)
            await repos.projects.upsert(_dump(project))
        return project

    async def delete_project(self, project_id: str) -> None:
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            await repos.projects.delete(project_id)
        logger.info(f"Deleted project {project_id}")

    async def add_area(self, project_id: str, area_type: str, label: str) -> Area:
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            area = Area(id=new_id(), projectId=project_id, type=area_type, label=label, createdAt=utcnow())
            await repos.areas.add(_dump(area))
        return area

    async def recompute_counters(self, project_id: str) -> Project:
        """Rebuild the derived counters from the rows they count."""
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            counters = await repos.projects.count_children(project_id)
            await repos.projects.set_counters(project_id, counters)
            row = await repos.projects.get_by_id(project_id)
        return Project.model_validate(row)

    # ── Media & audio ───────────────────────────────────────────────

    async def add_media(
        self,
        *,
        project_id: str,
        area_id: str,
        area_type: str,
        uri: str,
        kind: str = "photo",
        captured_at: datetime | None = None,
        metadata: dict | None = None,
        thumbnail_uri: str | None = None,
        width: int | None = None,
        height: int | None = None,
    ) -> MediaAsset:
        media = MediaAsset(
            id=new_id(), projectId=project_id, areaId=area_id, areaType=area_type,
            type=kind, uri=uri, thumbnailUri=thumbnail_uri, width=width, height=height,
            capturedAt=captured_at or utcnow(), syncStatus="captured", metadata=metadata or {},
        )
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            await repos.media.upsert(_dump(media))
            await repos.projects.adjust_counters(project_id, media=1, updated_at=utcnow().isoformat())
        return media

    async def update_media_status(self, media_id: str, status: str) -> bool:
        async with self._write() as repos:
            return await repos.media.update_status(media_id, status)

    async def delete_media(self, media_id: str) -> None:
        async with self._write() as repos:
            row = await repos.media.get_by_id(media_id)
            if not row:
                raise NotFoundError("Media", media_id)
            if row.get("sessionId"):
                session = await repos.sessions.get_by_id(row["sessionId"])
                if session:
                    session["mediaIds"] = [m for m in session["mediaIds"] if m != media_id]
                    await repos.sessions.upsert(session)
            await repos.media.delete(media_id)
            await repos.projects.adjust_counters(row["projectId"], media=-1, updated_at=utcnow().isoformat())

    async def add_audio_note(
        self,
        *,
        project_id: str,
        area_id: str,
        area_type: str,
        uri: str = "",
        duration_ms: int = 0,
        captured_at: datetime | None = None,
        linked_media_id: str | None = None,
        transcript: str | None = None,
    ) -> AudioNote:
        note = AudioNote(
            id=new_id(), projectId=project_id, areaId=area_id, areaType=area_type,
            uri=uri, durationMs=duration_ms, capturedAt=captured_at or utcnow(),
            syncStatus="captured", linkedMediaId=linked_media_id, transcript=transcript,
        )
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            await repos.audio.upsert(_dump(note))
        return note

    async def update_audio_status(self, note_id: str, status: str) -> bool:
        async with self._write() as repos:
            return await repos.audio.update_status(note_id, status)

    # ── Tasks & evidence ────────────────────────────────────────────

    async def add_task(
        self,
        *,
        project_id: str,
        title: str,
        description: str = "",
        status: str = "open",
        priority: str = "medium",
        tags: Iterable[str] | None = None,
        area_id: str | None = None,
        area_type: str | None = None,
        due_date: datetime | None = None,
        created_by: str = "user",
        confidence: float | None = None,
        session_id: str | None = None,
        external_id: str | None = None,
    ) -> TaskItem:
        now = utcnow()
        task = TaskItem(
            id=new_id(), projectId=project_id, areaId=area_id, areaType=area_type,
            title=title, description=description, status=status, priority=priority,
            dueDate=due_date, tags=list(dict.fromkeys(tags or [])),
            createdAt=now, updatedAt=now, createdBy=created_by,
            confidence=confidence if created_by == "system" else None,
            sessionId=session_id, externalId=external_id,
        )
        async with self._write() as repos:
            await self._require_project(repos, project_id)
            await repos.tasks.upsert(_dump(task))
            await repos.projects.adjust_counters(
                project_id,
                tasks=1,
                open_tasks=int(task.status in OPEN_TASK_STATUSES),
                updated_at=now.isoformat(),
            )
        return task

    async def update_task(self, task_id: str, **updates: Any) -> TaskItem:
        async with self._write() as repos:
            row = await repos.tasks.get_by_id(task_id)
            if not row:
                raise NotFoundError("Task", task_id)
            before = row["status"]
            row.update({k: v for k, v in updates.items() if k in _TASK_FIELDS and v is not None})
            row["updatedAt"] = utcnow()
            task = TaskItem.model_validate(row)
            await repos.tasks.upsert(_dump(task))
            delta = _open_delta(before, task.status)
            if delta:
                await repos.projects.adjust_counters(task.projectId, open_tasks=delta)
        return task

    async def delete_task(self, task_id: str) -> None:
        async with self._write() as repos:
            row = await repos.tasks.get_by_id(task_id)
            if not row:
                raise NotFoundError("Task", task_id)
            await repos.tasks.delete(task_id)
            await repos.projects.adjust_counters(
                row["projectId"],
                tasks=-1,
                open_tasks=-int(row["status"] in OPEN_TASK_STATUSES),
                updated_at=utcnow().isoformat(),
            )

    async def add_evidence_link(
        self,
        *,
        task_id: str,
        target_type: str,
        target_id: str,
        link_type: str = "suggested",
        link_score: float = 0.5,
        created_by: str = "system",
    ) -> EvidenceLink:
        link = EvidenceLink(
            id=new_id(), taskId=task_id, targetType=target_type, targetId=target_id,
            linkType=link_type, linkScore=link_score, createdBy=created_by, createdAt=utcnow(),
        )
        async with self._write() as repos:
            await repos.links.add(_dump(link))
        return link

    async def remove_evidence_link(self, link_id: str) -> bool:
        async with self._write() as repos:
            if not await repos.links.get_by_id(link_id):
                return False
            await repos.links.delete(link_id)
        return True

    async def add_transcripts(self, segments: list[TranscriptSegment]) -> int:
        if not segments:
            return 0
        async with self._write() as repos:
            return await repos.transcripts.add_many([_dump(s) for s in segments])

    # ── Sessions ────────────────────────────────────────────────────

    async def insert_session(self, session: CaptureSession) -> CaptureSession:
        async with self._write() as repos:
            await self._require_project(repos, session.projectId)
            await repos.sessions.upsert(_dump(session))
        return session

    async def update_session(self, session_id: str, **updates: Any) -> CaptureSession:
        async with self._write() as repos:
            row = await self._require_session(repos, session_id)
            row.update({k: v for k, v in updates.items() if k in _SESSION_FIELDS})
            session = CaptureSession.model_validate(row)
            await repos.sessions.upsert(_dump(session))
        return session

    async def attach_session_item(self, session_id: str, kind: str, item_id: str) -> CaptureSession:
        """Append a media/audio id to a session and point the item back at it.

        An item that belonged to another session is removed from that list
        first, so the relation lives in exactly one session.
        """
        list_key = "mediaIds" if kind == "media" else "audioIds"
        async with self._write() as repos:
            item_repo = repos.media if kind == "media" else repos.audio
            row = await self._require_session(repos, session_id)
            item = await item_repo.get_by_id(item_id)
            if not item:
                raise NotFoundError("Media" if kind == "media" else "AudioNote", item_id)
            previous = item.get("sessionId")
            if previous and previous != session_id:
                old = await repos.sessions.get_by_id(previous)
                if old:
                    old[list_key] = [i for i in old[list_key] if i != item_id]
                    await repos.sessions.upsert(old)
            row[list_key] = [*row[list_key], item_id]
            session = CaptureSession.model_validate(row)
            await repos.sessions.upsert(_dump(session))
            await item_repo.set_session(item_id, session_id)
        return session

    async def mark_session_items(
        self,
        session_id: str,
        webhook_status: str | None,
        item_status: str,
    ) -> CaptureSession:
        """Move a session and every media/audio item it references in one batch."""
        async with self._write() as repos:
            row = await self._require_session(repos, session_id)
            if webhook_status:
                row["webhookStatus"] = webhook_status
            session = CaptureSession.model_validate(row)
            await repos.sessions.upsert(_dump(session))
            await repos.media.mark_sync_status(session.mediaIds, item_status)
            await repos.audio.mark_sync_status(session.audioIds, item_status)
        return session

    # ── Settings ────────────────────────────────────────────────────

    async def update_settings(self, **updates: Any) -> AppSettings:
        values = {k: v for k, v in updates.items() if k in _SETTINGS_FIELDS and v is not None}
        if values:
            async with self._write() as repos:
                await repos.settings.set_many(values)
        return await self.get_settings()
