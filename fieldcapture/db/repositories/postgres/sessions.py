"""PostgreSQL implementation of CaptureSessionRepository and SettingsRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import asyncpg

from fieldcapture.db.repositories.base import dump_json, session_from_row, ts


class PostgresCaptureSessionRepository:
    """Capture sessions, listed in insertion order (``seq``)."""

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, session: dict) -> None:
        query = """
            INSERT INTO capture_sessions (
                id, project_id, area_id, area_type, mode, session_type,
                started_at, ended_at, media_ids_json, audio_ids_json,
                webhook_status, webhook_result_json, meeting_metadata_json,
                approval_status, approved_at, approved_by
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            ON CONFLICT(id) DO UPDATE SET
                area_id=EXCLUDED.area_id, area_type=EXCLUDED.area_type,
                mode=EXCLUDED.mode, session_type=EXCLUDED.session_type,
                ended_at=EXCLUDED.ended_at,
                media_ids_json=EXCLUDED.media_ids_json,
                audio_ids_json=EXCLUDED.audio_ids_json,
                webhook_status=EXCLUDED.webhook_status,
                webhook_result_json=EXCLUDED.webhook_result_json,
                meeting_metadata_json=EXCLUDED.meeting_metadata_json,
                approval_status=EXCLUDED.approval_status,
                approved_at=EXCLUDED.approved_at, approved_by=EXCLUDED.approved_by
        """
        await self.db.execute(
            query,
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
        )

    async def get_by_id(self, session_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM capture_sessions WHERE id = $1", session_id)
        return session_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT * FROM capture_sessions WHERE project_id = $1 ORDER BY seq", project_id
            )
        else:
            rows = await self.db.fetch("SELECT * FROM capture_sessions ORDER BY seq")
        return [session_from_row(r) for r in rows]

    async def count_by_status(self) -> dict[str, int]:
        rows = await self.db.fetch(
            """SELECT webhook_status, COUNT(*) AS n FROM capture_sessions
               WHERE ended_at IS NOT NULL GROUP BY webhook_status"""
        )
        return {r["webhook_status"]: int(r["n"]) for r in rows}


class PostgresSettingsRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def get_all(self) -> dict:
        rows = await self.db.fetch("SELECT key, value_json FROM app_settings")
        values: dict = {}
        for row in rows:
            try:
                values[row["key"]] = json.loads(row["value_json"])
            except (TypeError, ValueError):
                continue
        return values

    async def set_many(self, values: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.executemany(
            """INSERT INTO app_settings (key, value_json, updated_at) VALUES ($1, $2, $3)
               ON CONFLICT(key) DO UPDATE SET
                   value_json=EXCLUDED.value_json, updated_at=EXCLUDED.updated_at""",
            [(key, json.dumps(value), now) for key, value in values.items()],
        )
