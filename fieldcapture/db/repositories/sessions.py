"""SQLite implementation of CaptureSessionRepository and SettingsRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

from fieldcapture.db.repositories.base import (
    SqliteRepository,
    dump_json,
    session_from_row,
    ts,
)


class SqliteCaptureSessionRepository(SqliteRepository):
    """Capture sessions, listed in insertion order."""

    async def upsert(self, session: dict) -> None:
        await self.db.execute(
            """INSERT INTO capture_sessions (
                id, project_id, area_id, area_type, mode, session_type,
                started_at, ended_at, media_ids_json, audio_ids_json,
                webhook_status, webhook_result_json, meeting_metadata_json,
                approval_status, approved_at, approved_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                area_id=excluded.area_id, area_type=excluded.area_type,
                mode=excluded.mode, session_type=excluded.session_type,
                ended_at=excluded.ended_at,
                media_ids_json=excluded.media_ids_json,
                audio_ids_json=excluded.audio_ids_json,
                webhook_status=excluded.webhook_status,
                webhook_result_json=excluded.webhook_result_json,
                meeting_metadata_json=excluded.meeting_metadata_json,
                approval_status=excluded.approval_status,
                approved_at=excluded.approved_at, approved_by=excluded.approved_by
            """,
            (
                session["id"], session["projectId"],
                session["areaId"], session["areaType"],
                session["mode"],
                session.get("sessionType", "walkthrough"),
                ts(session["startedAt"]),
                ts(session.get("endedAt")),
                dump_json(session.get("mediaIds") or []),
                dump_json(session.get("audioIds") or []),
                session.get("webhookStatus", "pending"),
                dump_json(session.get("webhookResult")),
                dump_json(session.get("meetingMetadata")),
                session.get("approvalStatus"),
                ts(session.get("approvedAt")),
                session.get("approvedBy"),
            ),
        )
        await self._commit()

    async def get_by_id(self, session_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM capture_sessions WHERE id = ?", (session_id,))
        return session_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self._fetchall(
                "SELECT * FROM capture_sessions WHERE project_id = ? ORDER BY rowid",
                (project_id,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM capture_sessions ORDER BY rowid")
        return [session_from_row(r) for r in rows]

    async def count_by_status(self) -> dict[str, int]:
        rows = await self._fetchall(
            """SELECT webhook_status, COUNT(*) FROM capture_sessions
               WHERE ended_at IS NOT NULL GROUP BY webhook_status"""
        )
        return {row[0]: row[1] for row in rows}


class SqliteSettingsRepository(SqliteRepository):
    """Key/value application settings."""

    async def get_all(self) -> dict:
        rows = await self._fetchall("SELECT key, value_json FROM app_settings")
        values: dict = {}
        for key, raw in rows:
            try:
                values[key] = json.loads(raw)
            except (TypeError, ValueError):
                continue
        return values

    async def set_many(self, values: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.executemany(
            """INSERT INTO app_settings (key, value_json, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value_json=excluded.value_json, updated_at=excluded.updated_at""",
            [(key, json.dumps(value), now) for key, value in values.items()],
        )
        await self._commit()
