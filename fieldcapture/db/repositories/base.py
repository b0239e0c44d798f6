"""Shared row mapping for SQLite and Postgres repositories.

Repositories store snake_case columns and hand camelCase dicts back to the
store, matching the client wire format so models validate directly.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import aiosqlite


def ts(value: Any) -> str | None:
    """Serialize a timestamp column value."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return parsed if isinstance(parsed, type(default)) else default


def load_json_object(raw: str | None) -> dict | None:
    parsed = load_json(raw, {})
    return parsed or None


def project_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "name": r["name"],
        "address": r.get("address") or "",
        "clientName": r.get("client_name") or "",
        "mediaCount": r.get("media_count") or 0,
        "taskCount": r.get("task_count") or 0,
        "openTaskCount": r.get("open_task_count") or 0,
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
    }


def area_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "projectId": r["project_id"],
        "type": r["type"],
        "label": r["label"],
        "createdAt": r["created_at"],
    }


def media_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "projectId": r["project_id"],
        "areaId": r["area_id"],
        "areaType": r["area_type"],
        "type": r.get("kind") or "photo",
        "uri": r["uri"],
        "thumbnailUri": r.get("thumbnail_uri"),
        "width": r.get("width"),
        "height": r.get("height"),
        "capturedAt": r["captured_at"],
        "syncStatus": r["sync_status"],
        "sessionId": r.get("session_id"),
        "metadata": load_json(r.get("metadata_json"), {}),
    }


def audio_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "projectId": r["project_id"],
        "areaId": r["area_id"],
        "areaType": r["area_type"],
        "uri": r.get("uri") or "",
        "durationMs": r.get("duration_ms") or 0,
        "capturedAt": r["captured_at"],
        "syncStatus": r["sync_status"],
        "sessionId": r.get("session_id"),
        "linkedMediaId": r.get("linked_media_id"),
        "transcript": r.get("transcript"),
    }


def transcript_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "audioNoteId": r.get("audio_note_id") or "",
        "projectId": r["project_id"],
        "sessionId": r.get("session_id"),
        "externalId": r.get("external_id"),
        "text": r.get("text") or "",
        "startMs": r.get("start_ms") or 0,
        "endMs": r.get("end_ms") or 0,
        "speakerRole": r.get("speaker_role"),
        "confidence": r["confidence"] if r.get("confidence") is not None else 1.0,
    }


def task_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "projectId": r["project_id"],
        "areaId": r.get("area_id"),
        "areaType": r.get("area_type"),
        "title": r["title"],
        "description": r.get("description") or "",
        "status": r["status"],
        "priority": r["priority"],
        "dueDate": r.get("due_date"),
        "tags": load_json(r.get("tags_json"), []),
        "createdBy": r["created_by"],
        "confidence": r.get("confidence"),
        "sessionId": r.get("session_id"),
        "externalId": r.get("external_id"),
        "createdAt": r["created_at"],
        "updatedAt": r["updated_at"],
    }


def evidence_link_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "taskId": r["task_id"],
        "targetType": r["target_type"],
        "targetId": r["target_id"],
        "linkType": r.get("link_type") or "suggested",
        "linkScore": r["link_score"] if r.get("link_score") is not None else 0.5,
        "createdBy": r.get("created_by") or "system",
        "createdAt": r["created_at"],
    }


def session_from_row(row: Any) -> dict:
    r = dict(row)
    return {
        "id": r["id"],
        "projectId": r["project_id"],
        "areaId": r["area_id"],
        "areaType": r["area_type"],
        "mode": r["mode"],
        "sessionType": r.get("session_type") or "walkthrough",
        "startedAt": r["started_at"],
        "endedAt": r.get("ended_at"),
        "mediaIds": load_json(r.get("media_ids_json"), []),
        "audioIds": load_json(r.get("audio_ids_json"), []),
        "webhookStatus": r["webhook_status"],
        "webhookResult": load_json_object(r.get("webhook_result_json")),
        "meetingMetadata": load_json_object(r.get("meeting_metadata_json")),
        "approvalStatus": r.get("approval_status"),
        "approvedAt": r.get("approved_at"),
        "approvedBy": r.get("approved_by"),
    }


class SqliteRepository:
    """Base for SQLite repositories.

    With ``autocommit`` off the caller owns the transaction boundary, which
    is how the store groups a mutation with its counter updates.
    """

    def __init__(self, db: aiosqlite.Connection, autocommit: bool = True):
        self.db = db
        self.autocommit = autocommit

    async def _commit(self) -> None:
        if self.autocommit:
            await self.db.commit()

    async def _fetchall(self, query: str, params: tuple = ()) -> list[Any]:
        async with self.db.execute(query, params) as cur:
            return list(await cur.fetchall())

    async def _fetchone(self, query: str, params: tuple = ()) -> Any | None:
        async with self.db.execute(query, params) as cur:
            return await cur.fetchone()
