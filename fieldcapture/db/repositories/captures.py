"""SQLite implementation of MediaRepository, AudioNoteRepository, TranscriptRepository."""
from __future__ import annotations

from fieldcapture.db.repositories.base import (
    SqliteRepository,
    audio_from_row,
    dump_json,
    media_from_row,
    transcript_from_row,
    ts,
)


class _SyncStatusMixin:
    """Sync status updates shared by media and audio tables."""

    _table = ""

    async def update_status(self, item_id: str, status: str) -> bool:
        async with self.db.execute(
            f"UPDATE {self._table} SET sync_status = ? WHERE id = ?", (status, item_id)
        ) as cur:
            changed = cur.rowcount > 0
        await self._commit()
        return changed

    async def mark_sync_status(self, item_ids: list[str], status: str) -> int:
        """Set the status of every listed item as one batch."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return 0
        await self.db.executemany(
            f"UPDATE {self._table} SET sync_status = ? WHERE id = ?",
            [(status, item_id) for item_id in ids],
        )
        await self._commit()
        return len(ids)

    async def set_session(self, item_id: str, session_id: str | None) -> None:
        await self.db.execute(
            f"UPDATE {self._table} SET session_id = ? WHERE id = ?", (session_id, item_id)
        )
        await self._commit()

    async def count_by_status(self, status: str) -> int:
        row = await self._fetchone(
            f"SELECT COUNT(*) FROM {self._table} WHERE sync_status = ?", (status,)
        )
        return row[0] if row else 0


class SqliteMediaRepository(_SyncStatusMixin, SqliteRepository):
    """Captured photos and videos."""

    _table = "media_assets"

    async def upsert(self, media: dict) -> None:
        await self.db.execute(
            """INSERT INTO media_assets (
                id, project_id, area_id, area_type, kind, uri,
                thumbnail_uri, width, height, captured_at,
                sync_status, session_id, metadata_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                area_id=excluded.area_id, area_type=excluded.area_type,
                kind=excluded.kind, uri=excluded.uri,
                thumbnail_uri=excluded.thumbnail_uri,
                width=excluded.width, height=excluded.height,
                sync_status=excluded.sync_status, session_id=excluded.session_id,
                metadata_json=excluded.metadata_json
            """,
            (
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
            ),
        )
        await self._commit()

    async def get_by_id(self, media_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM media_assets WHERE id = ?", (media_id,))
        return media_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self._fetchall(
                "SELECT * FROM media_assets WHERE project_id = ? ORDER BY captured_at DESC",
                (project_id,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM media_assets ORDER BY captured_at DESC")
        return [media_from_row(r) for r in rows]

    async def delete(self, media_id: str) -> None:
        await self.db.execute("DELETE FROM media_assets WHERE id = ?", (media_id,))
        await self._commit()


class SqliteAudioNoteRepository(_SyncStatusMixin, SqliteRepository):
    """Recorded voice notes."""

    _table = "audio_notes"

    async def upsert(self, note: dict) -> None:
        await self.db.execute(
            """INSERT INTO audio_notes (
                id, project_id, area_id, area_type, uri, duration_ms,
                captured_at, sync_status, session_id, linked_media_id, transcript
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                area_id=excluded.area_id, area_type=excluded.area_type,
                uri=excluded.uri, duration_ms=excluded.duration_ms,
                sync_status=excluded.sync_status, session_id=excluded.session_id,
                linked_media_id=excluded.linked_media_id, transcript=excluded.transcript
            """,
            (
                note["id"], note["projectId"],
                note["areaId"], note["areaType"],
                note.get("uri", ""),
                note.get("durationMs", 0),
                ts(note["capturedAt"]),
                note.get("syncStatus", "captured"),
                note.get("sessionId"),
                note.get("linkedMediaId"),
                note.get("transcript"),
            ),
        )
        await self._commit()

    async def get_by_id(self, note_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM audio_notes WHERE id = ?", (note_id,))
        return audio_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self._fetchall(
                "SELECT * FROM audio_notes WHERE project_id = ? ORDER BY captured_at DESC",
                (project_id,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM audio_notes ORDER BY captured_at DESC")
        return [audio_from_row(r) for r in rows]


class SqliteTranscriptRepository(SqliteRepository):
    """Transcript segments produced by the processing pipeline."""

    async def add_many(self, segments: list[dict]) -> int:
        """Insert segments, skipping ones whose (session, processor id) is already stored.

        Returns the number inserted.
        """
        inserted = 0
        for seg in segments:
            async with self.db.execute(
                """INSERT INTO transcript_segments (
                    id, audio_note_id, project_id, session_id, external_id,
                    text, start_ms, end_ms, speaker_role, confidence
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
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
                ),
            ) as cur:
                inserted += max(0, cur.rowcount)
        await self._commit()
        return inserted

    async def get_by_external_id(self, session_id: str, external_id: str) -> dict | None:
        row = await self._fetchone(
            "SELECT * FROM transcript_segments WHERE session_id = ? AND external_id = ?",
            (session_id, external_id),
        )
        return transcript_from_row(row) if row else None

    async def get_by_id(self, segment_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM transcript_segments WHERE id = ?", (segment_id,))
        return transcript_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self._fetchall(
                "SELECT * FROM transcript_segments WHERE project_id = ? ORDER BY rowid",
                (project_id,),
            )
        else:
            rows = await self._fetchall("SELECT * FROM transcript_segments ORDER BY rowid")
        return [transcript_from_row(r) for r in rows]
