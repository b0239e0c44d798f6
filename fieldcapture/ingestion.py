"""Webhook result ingestion.

Normalizes a processor response into transcript segments, tasks and
evidence links. The synchronous dispatch path and the asynchronous
callback route both go through ``ResultIngestor``.

Each top-level field is applied independently and reported as a
``FieldOutcome``; a malformed field never blocks the others.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from fieldcapture.models import CaptureSession, TranscriptSegment, WebhookResult, utcnow
from fieldcapture.observability import record_ingested_entities, record_ingestion_field_failure
from fieldcapture.store import FieldStore, new_id

logger = logging.getLogger("fieldcapture.ingest")

DEFAULT_TASK_TITLE = "Untitled Task"
DEFAULT_LINK_TYPE = "suggested"
DEFAULT_LINK_SCORE = 0.5

# Copied verbatim into the session's display snapshot when present.
SNAPSHOT_FIELDS = (
    "transcriptSegments",
    "tasks",
    "issues",
    "questions",
    "changeOrderCandidates",
    "dailyLog",
    "audit",
)

_SEPARATOR_RE = re.compile(r"[\s-]+")
_TIME_RE = re.compile(r"^\s*(\d+):(\d{1,2})\s*$")

_STATUS_SYNONYMS = {
    "open": "open",
    "in_progress": "in_progress",
    "inprogress": "in_progress",
    "blocked": "blocked",
    "done": "done",
    "completed": "done",
    "closed": "done",
}
_PRIORITY_SYNONYMS = {
    "low": "low",
    "medium": "medium",
    "high": "high",
    "critical": "high",
    "urgent": "high",
}


# ── Normalization ───────────────────────────────────────────────────

def normalize_status(value: Any) -> str:
    """Map a free-form status onto open / in_progress / blocked / done."""
    if not isinstance(value, str) or not value.strip():
        return "open"
    token = _SEPARATOR_RE.sub("_", value.strip().lower())
    return _STATUS_SYNONYMS.get(token, "open")


def normalize_priority(value: Any) -> str:
    """Map a free-form priority onto low / medium / high."""
    if not isinstance(value, str) or not value.strip():
        return "medium"
    token = _SEPARATOR_RE.sub("_", value.strip().lower())
    return _PRIORITY_SYNONYMS.get(token, "medium")


def parse_time_to_ms(value: Any) -> int | None:
    """Parse ``"MM:SS"`` into milliseconds; anything else yields None."""
    if not isinstance(value, str):
        return None
    match = _TIME_RE.match(value)
    if not match:
        return None
    minutes, seconds = int(match.group(1)), int(match.group(2))
    return (minutes * 60 + seconds) * 1000


def unwrap_response(raw: Any) -> dict | None:
    """Return the response object, unwrapping a one-element array."""
    if isinstance(raw, list):
        if not raw:
            return None
        raw = raw[0]
    return raw if isinstance(raw, dict) else None


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return default
    return default


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _as_score(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return min(1.0, max(0.0, float(value)))


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_id(value: Any) -> str | None:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
        return str(value).strip()
    return None


def _as_tags(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    tags = [t.strip() for t in value if isinstance(t, str) and t.strip()]
    return list(dict.fromkeys(tags))


def _as_id_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return list(dict.fromkeys(i for i in (_as_id(v) for v in value) if i))


def normalize_transcript_segment(
    raw: dict, project_id: str, session_id: str | None = None
) -> TranscriptSegment:
    """The processor's segment id is kept as ``externalId``; ``id`` is always generated."""
    start_ms = parse_time_to_ms(raw.get("time"))
    if start_ms is None:
        start_ms = _as_int(raw.get("startMs"), 0)
    confidence = _as_number(raw.get("confidence"))
    speaker = raw.get("speakerRole")
    return TranscriptSegment(
        id=new_id(),
        audioNoteId=_as_str(raw.get("audioNoteId")),
        projectId=project_id,
        sessionId=session_id,
        externalId=_as_id(raw.get("segmentId")) or _as_id(raw.get("id")),
        text=_as_str(raw.get("text")),
        startMs=start_ms,
        endMs=_as_int(raw.get("endMs"), 0),
        speakerRole=speaker if isinstance(speaker, str) and speaker else None,
        confidence=1.0 if confidence is None else confidence,
    )


@dataclass
class TaskDraft:
    """A normalized processor task, ready for ``FieldStore.add_task``."""

    title: str
    description: str
    status: str
    priority: str
    tags: list[str]
    confidence: Optional[float]
    external_id: Optional[str]
    media_ids: list[str] = field(default_factory=list)
    transcript_segment_ids: list[str] = field(default_factory=list)

    @property
    def link_score(self) -> float:
        score = _as_score(self.confidence)
        return score or DEFAULT_LINK_SCORE


def normalize_task(raw: dict) -> TaskDraft:
    title = raw.get("title")
    return TaskDraft(
        title=title.strip() if isinstance(title, str) and title.strip() else DEFAULT_TASK_TITLE,
        description=_as_str(raw.get("description")),
        status=normalize_status(raw.get("status")),
        priority=normalize_priority(raw.get("priority")),
        tags=_as_tags(raw.get("tags")),
        confidence=_as_number(raw.get("confidence")),
        external_id=_as_id(raw.get("taskId")) or _as_id(raw.get("id")),
        media_ids=_as_id_list(raw.get("linkMediaAssetIds")),
        transcript_segment_ids=_as_id_list(raw.get("linkTranscriptSegmentIds")),
    )


def normalize_evidence_link(raw: dict) -> dict | None:
    """Keyword arguments for ``FieldStore.add_evidence_link``, or None when unusable."""
    task_id = _as_id(raw.get("taskId"))
    target_type = _as_id(raw.get("targetType"))
    target_id = _as_id(raw.get("targetId"))
    if not (task_id and target_type and target_id):
        return None
    link_type = raw.get("linkType")
    score = _as_score(raw.get("linkScore"))
    return {
        "task_id": task_id,
        "target_type": target_type,
        "target_id": target_id,
        "link_type": link_type if isinstance(link_type, str) and link_type else DEFAULT_LINK_TYPE,
        "link_score": score or DEFAULT_LINK_SCORE,
        "created_by": "system",
    }


# ── Reporting ───────────────────────────────────────────────────────

@dataclass
class FieldOutcome:
    field: str
    status: str  # "applied" | "skipped" | "failed"
    created: int = 0
    duplicates: int = 0
    invalid: int = 0
    error: Optional[str] = None


@dataclass
class IngestionReport:
    session_id: str
    fields: dict[str, FieldOutcome] = field(default_factory=dict)
    snapshot: Optional[WebhookResult] = None
    skipped_reason: Optional[str] = None

    @property
    def ingested(self) -> bool:
        return self.skipped_reason is None

    @property
    def failed_fields(self) -> list[str]:
        return [name for name, outcome in self.fields.items() if outcome.status == "failed"]

    def created(self, name: str) -> int:
        outcome = self.fields.get(name)
        return outcome.created if outcome else 0

    def as_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "ingested": self.ingested,
            "skippedReason": self.skipped_reason,
            "fields": {
                name: {
                    "status": o.status,
                    "created": o.created,
                    "duplicates": o.duplicates,
                    "invalid": o.invalid,
                    "error": o.error,
                }
                for name, o in self.fields.items()
            },
        }


# ── Ingestor ────────────────────────────────────────────────────────

class ResultIngestor:
    """Fans a processor response out into store entities."""

    def __init__(self, store: FieldStore):
        self.store = store

    async def ingest(self, session_id: str, raw: Any) -> IngestionReport:
        report = IngestionReport(session_id=session_id)
        result = unwrap_response(raw)
        if result is None:
            report.skipped_reason = "response is not an object"
            logger.info(f"Session {session_id}: response body has no result object, skipping ingestion")
            return report

        session = await self.store.get_session(session_id)
        if session is None:
            report.skipped_reason = "session not found"
            logger.warning(f"Session {session_id}: cannot ingest result, session not found")
            return report

        for name, handler in (
            ("transcriptSegments", self._ingest_transcripts),
            ("tasks", self._ingest_tasks),
            ("evidenceLinks", self._ingest_evidence_links),
        ):
            value = result.get(name)
            if value is None:
                report.fields[name] = FieldOutcome(field=name, status="skipped")
                continue
            outcome = FieldOutcome(field=name, status="applied")
            try:
                if not isinstance(value, list):
                    raise ValueError(f"expected a list, got {type(value).__name__}")
                await handler(session, value, outcome)
            except Exception as exc:  # noqa: BLE001
                outcome.status = "failed"
                outcome.error = str(exc) or type(exc).__name__
                logger.warning(f"Session {session_id}: failed to ingest {name}: {outcome.error}")
                record_ingestion_field_failure(name, project_id=session.projectId)
            report.fields[name] = outcome
            if outcome.created:
                record_ingested_entities(name, outcome.created, project_id=session.projectId)

        snapshot = WebhookResult(
            processedAt=utcnow(),
            **{key: result[key] for key in SNAPSHOT_FIELDS if result.get(key) is not None},
        )
        try:
            await self.store.update_session(session_id, webhookResult=snapshot)
            report.snapshot = snapshot
        except Exception as exc:  # noqa: BLE001
            report.fields["webhookResult"] = FieldOutcome(
                field="webhookResult", status="failed", error=str(exc) or type(exc).__name__
            )
            logger.warning(f"Session {session_id}: failed to store result snapshot: {exc}")
            record_ingestion_field_failure("webhookResult", project_id=session.projectId)

        logger.info(
            f"Session {session_id}: ingested {report.created('tasks')} task(s), "
            f"{report.created('transcriptSegments')} segment(s), "
            f"{report.created('evidenceLinks')} link(s)"
        )
        return report

    async def _ingest_transcripts(self, session: CaptureSession, items: list, outcome: FieldOutcome) -> None:
        segments: list[TranscriptSegment] = []
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict):
                outcome.invalid += 1
                continue
            segment = normalize_transcript_segment(item, session.projectId, session.id)
            if segment.externalId:
                if segment.externalId in seen:
                    outcome.duplicates += 1
                    continue
                seen.add(segment.externalId)
            segments.append(segment)
        inserted = await self.store.add_transcripts(segments)
        outcome.created = inserted
        outcome.duplicates += len(segments) - inserted

    async def _ingest_tasks(self, session: CaptureSession, items: list, outcome: FieldOutcome) -> None:
        for item in items:
            if not isinstance(item, dict):
                outcome.invalid += 1
                continue
            draft = normalize_task(item)
            existing = None
            if draft.external_id:
                existing = await self.store.find_task_by_external_id(session.id, draft.external_id)
            if existing is not None:
                outcome.duplicates += 1
                task_id = existing.id
            else:
                task = await self.store.add_task(
                    project_id=session.projectId,
                    area_id=session.areaId,
                    area_type=session.areaType,
                    title=draft.title,
                    description=draft.description,
                    status=draft.status,
                    priority=draft.priority,
                    tags=draft.tags,
                    created_by="system",
                    confidence=draft.confidence,
                    session_id=session.id,
                    external_id=draft.external_id,
                )
                outcome.created += 1
                task_id = task.id
            targets = [("media", i) for i in draft.media_ids]
            for segment_ref in draft.transcript_segment_ids:
                targets.append(("transcript", await self._resolve_segment_id(session.id, segment_ref)))
            for target_type, target_id in targets:
                await self._link_once(
                    task_id=task_id,
                    target_type=target_type,
                    target_id=target_id,
                    link_type=DEFAULT_LINK_TYPE,
                    link_score=draft.link_score,
                    created_by="system",
                )

    async def _ingest_evidence_links(self, session: CaptureSession, items: list, outcome: FieldOutcome) -> None:
        for item in items:
            link = normalize_evidence_link(item) if isinstance(item, dict) else None
            if link is None:
                outcome.invalid += 1
                continue
            if await self._link_once(**link):
                outcome.created += 1
            else:
                outcome.duplicates += 1

    async def _link_once(self, **link: Any) -> bool:
        existing = await self.store.find_evidence_link(link["task_id"], link["target_type"], link["target_id"])
        if existing is not None:
            return False
        await self.store.add_evidence_link(**link)
        return True

    async def _resolve_segment_id(self, session_id: str, segment_ref: str) -> str:
        """Local id of the session's segment the processor calls ``segment_ref``."""
        segment = await self.store.find_transcript_by_external_id(session_id, segment_ref)
        return segment.id if segment else segment_ref
