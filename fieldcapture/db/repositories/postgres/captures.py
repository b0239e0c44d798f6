"""PostgreSQL implementation of media, audio note and transcript storage."""
from __future__ import annotations

import asyncpg

from fieldcapture.db.repositories.base import (
    audio_from_row,
    dump_json,
    media_from_row,
    transcript_from_row,
    ts,
)


def _affected(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "INSERT 0 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class _PostgresSyncStatusMixin:
    _table = ""

    async def update_status(self, item_id: str, status: str) -> bool:
        result = await self.db.execute(
            f"UPDATE {self._table} SET sync_status = $1 WHERE id = $2", status, item_id
        )
        return _affected(result) > 0

    async def mark_sync_status(self, item_ids: list[str], status: str) -> int:
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return 0
        await self.db.execute(
            f"UPDATE {self._table} SET sync_status = $1 WHERE id = ANY($2::text[])", status, ids
        )
        return len(ids)

    async def set_session(self, item_id: str, session_id: str | None) -> None:
        await self.db.execute(
            f"UPDATE {self._table} SET session_id = $1 WHERE id = $2", session_id, item_id
        )

    async def count_by_status(self, status: str) -> int:
        value = await self.db.fetchval(
            f"SELECT COUNT(*) FROM {self._table} WHERE sync_status = $1", status
        )
        return int(value or 0)


class PostgresMediaRepository(_PostgresSyncStatusMixin):
    _table = "media_assets"

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, media: dict) -> None:
        query = """
            INSERT INTO media_assets (
                id, project_id, area_id, area_type, kind, uri,
                thumbnail_uri, width, height, captured_at,
                sync_status, session_id, metadata_json
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT(id) DO UPDATE SET
                area_id=EXCLUDED.area_id, area_type=EXCLUDED.area_type,
                kind=EXCLUDED.kind, uri=EXCLUDED.uri,
                thumbnail_uri=EXCLUDED.thumbnail_uri,
                width=EXCLUDED.width, height=EXCLUDED.height,
                sync_status=EXCLUDED.sync_status, session_id=EXCLUDED.session_id,
                metadata_json=EXCLUDED.metadata_json
        """
        await self.db.execute(
            query,
            media["id"], media["projectId"],
            media["areaId"], media["areaType"],
            media.get("type", "photo"),
            media["uri"],
            media.get("thumbnailUri"),
            media.get("width"),
            media.get("height"),
            ts(media["capturedAt"]),
            media.get("syncStatus", "captured"),
            media.get("sessionId"),
            dump_json(media.get("metadata") or {}),
        )

    async def get_by_id(self, media_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM media_assets WHERE id = $1", media_id)
        return media_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT * FROM media_assets WHERE project_id = $1 ORDER BY captured_at DESC",
                project_id,
            )
        else:
            rows = await self.db.fetch("SELECT * FROM media_assets ORDER BY captured_at DESC")
        return [media_from_row(r) for r in rows]

    async def delete(self, media_id: str) -> None:
        await self.db.execute("DELETE FROM media_assets WHERE id = $1", media_id)


class PostgresAudioNoteRepository(_PostgresSyncStatusMixin):
    _table = "audio_notes"

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, note: dict) -> None:
        query = """
            INSERT INTO audio_notes (
                id, project_id, area_id, area_type, uri, duration_ms,
                captured_at, sync_status, session_id, linked_media_id, transcript
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT(id) DO UPDATE SET
                area_id=EXCLUDED.area_id, area_type=EXCLUDED.area_type,
                uri=EXCLUDED.uri, duration_ms=EXCLUDED.duration_ms,
                sync_status=EXCLUDED.sync_status, session_id=EXCLUDED.session_id,
                linked_media_id=EXCLUDED.linked_media_id, transcript=EXCLUDED.transcript
        """
        await self.db.execute(
            query,
            note["id"], note["projectId"],
            note["areaId"], note["areaType"],
            note.get("uri", ""),
            note.get("durationMs", 0),
            ts(note["capturedAt"]),
            note.get("syncStatus", "captured"),
            note.get("sessionId"),
            note.get("linkedMediaId"),
            note.get("transcript"),
        )

    async def get_by_id(self, note_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM audio_notes WHERE id = $1", note_id)
        return audio_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT * FROM audio_notes WHERE project_id = $1 ORDER BY captured_at DESC",
                project_id,
            )
        else:
            rows = await self.db.fetch("SELECT * FROM audio_notes ORDER BY captured_at DESC")
        return [audio_from_row(r) for r in rows]


class PostgresTranscriptRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def add_many(self, segments: list[dict]) -> int:
        inserted = 0
        for seg in segments:
            result = await self.db.execute(
                """INSERT INTO transcript_segments (
                    id, audio_note_id, project_id, session_id, external_id,
                    text, start_ms, end_ms, speaker_role, confidence
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT DO NOTHING""",
                seg["id"],
                seg.get("audioNoteId", ""),
                seg["projectId"],
                seg.get("sessionId"),
                seg.get("externalId"),
                seg.get("text", ""),
                seg.get("startMs", 0),
                seg.get("endMs", 0),
                seg.get("speakerRole"),
                seg.get("confidence", 1.0),
            )
            inserted += _affected(result)
        return inserted

    async def get_by_external_id(self, session_id: str, external_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM transcript_segments WHERE session_id = $1 AND external_id = $2",
            session_id, external_id,
        )
        return transcript_from_row(row) if row else None

    async def get_by_id(self, segment_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM transcript_segments WHERE id = $1", segment_id)
        return transcript_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT * FROM transcript_segments WHERE project_id = $1 ORDER BY seq", project_id
            )
        else:
            rows = await self.db.fetch("SELECT * FROM transcript_segments ORDER BY seq")
        return [transcript_from_row(r) for r in rows]
