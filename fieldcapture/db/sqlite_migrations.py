"""Database schema creation and versioning.

All CREATE TABLE statements for the field capture store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("fieldcapture.db")

SCHEMA_VERSION = 3

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Projects & areas ────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id               TEXT PRIMARY KEY,
    name             TEXT NOT NULL,
    address          TEXT DEFAULT '',
    client_name      TEXT DEFAULT '',
    media_count      INTEGER NOT NULL DEFAULT 0,
    task_count       INTEGER NOT NULL DEFAULT 0,
    open_task_count  INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS areas (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    type        TEXT NOT NULL,
    label       TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_areas_project ON areas(project_id);

-- ── 2. Captured media & audio ──────────────────────────────────────
CREATE TABLE IF NOT EXISTS media_assets (
    id             TEXT PRIMARY KEY,
    project_id     TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    area_id        TEXT NOT NULL,
    area_type      TEXT NOT NULL,
    kind           TEXT NOT NULL DEFAULT 'photo',
    uri            TEXT NOT NULL,
    thumbnail_uri  TEXT,
    width          INTEGER,
    height         INTEGER,
    captured_at    TEXT NOT NULL,
    sync_status    TEXT NOT NULL DEFAULT 'captured',
    session_id     TEXT,
    metadata_json  TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_media_project ON media_assets(project_id, captured_at);
CREATE INDEX IF NOT EXISTS idx_media_status  ON media_assets(sync_status);

CREATE TABLE IF NOT EXISTS audio_notes (
    id               TEXT PRIMARY KEY,
    project_id       TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    area_id          TEXT NOT NULL,
    area_type        TEXT NOT NULL,
    uri              TEXT DEFAULT '',
    duration_ms      INTEGER DEFAULT 0,
    captured_at      TEXT NOT NULL,
    sync_status      TEXT NOT NULL DEFAULT 'captured',
    session_id       TEXT,
    linked_media_id  TEXT,
    transcript       TEXT
);

CREATE INDEX IF NOT EXISTS idx_audio_project ON audio_notes(project_id, captured_at);
CREATE INDEX IF NOT EXISTS idx_audio_status  ON audio_notes(sync_status);

CREATE TABLE IF NOT EXISTS transcript_segments (
    id             TEXT PRIMARY KEY,
    audio_note_id  TEXT DEFAULT '',
    project_id     TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    session_id     TEXT,
    external_id    TEXT,
    text           TEXT DEFAULT '',
    start_ms       INTEGER DEFAULT 0,
    end_ms         INTEGER DEFAULT 0,
    speaker_role   TEXT,
    confidence     REAL DEFAULT 1.0
);

CREATE INDEX IF NOT EXISTS idx_transcripts_project ON transcript_segments(project_id, start_ms);

-- ── 3. Tasks & evidence links ──────────────────────────────────────
CREATE TABLE IF NOT EXISTS tasks (
    id           TEXT PRIMARY KEY,
    project_id   TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    area_id      TEXT,
    area_type    TEXT,
    title        TEXT NOT NULL,
    description  TEXT DEFAULT '',
    status       TEXT NOT NULL DEFAULT 'open',
    priority     TEXT NOT NULL DEFAULT 'medium',
    due_date     TEXT,
    tags_json    TEXT DEFAULT '[]',
    created_by   TEXT NOT NULL DEFAULT 'user',
    confidence   REAL,
    session_id   TEXT,
    external_id  TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project  ON tasks(project_id, status);

CREATE TABLE IF NOT EXISTS evidence_links (
    id           TEXT PRIMARY KEY,
    task_id      TEXT NOT NULL,
    target_type  TEXT NOT NULL,
    target_id    TEXT NOT NULL,
    link_type    TEXT DEFAULT 'suggested',
    link_score   REAL DEFAULT 0.5,
    created_by   TEXT DEFAULT 'system',
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_task   ON evidence_links(task_id);
CREATE INDEX IF NOT EXISTS idx_evidence_target ON evidence_links(target_type, target_id);

-- ── 4. Capture sessions ────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS capture_sessions (
    id                     TEXT PRIMARY KEY,
    project_id             TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    area_id                TEXT NOT NULL,
    area_type              TEXT NOT NULL,
    mode                   TEXT NOT NULL,
    session_type           TEXT NOT NULL DEFAULT 'walkthrough',
    started_at             TEXT NOT NULL,
    ended_at               TEXT,
    media_ids_json         TEXT DEFAULT '[]',
    audio_ids_json         TEXT DEFAULT '[]',
    webhook_status         TEXT NOT NULL DEFAULT 'pending',
    webhook_result_json    TEXT,
    meeting_metadata_json  TEXT,
    approval_status        TEXT,
    approved_at            TEXT,
    approved_by            TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON capture_sessions(project_id);
CREATE INDEX IF NOT EXISTS idx_sessions_webhook ON capture_sessions(webhook_status);

-- ── 5. Settings ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS app_settings (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables if they don't exist and record schema version."""
    await db.executescript(_TABLES)

    async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
        current_version = row[0] if row and row[0] is not None else 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema at version {current_version}, no migration needed")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")

    # v2: ingestion idempotency keys on tasks
    await _ensure_column(db, "tasks", "session_id", "TEXT")
    await _ensure_column(db, "tasks", "external_id", "TEXT")
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_tasks_external ON tasks(session_id, external_id)"
    )

    # v3: processor segment ids are scoped to their session
    await _ensure_column(db, "transcript_segments", "session_id", "TEXT")
    await _ensure_column(db, "transcript_segments", "external_id", "TEXT")
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_transcripts_external "
        "ON transcript_segments(session_id, external_id)"
    )

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
