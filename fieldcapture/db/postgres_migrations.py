"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("fieldcapture.db")

SCHEMA_VERSION = 3

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

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

CREATE TABLE IF NOT EXISTS transcript_segments (
    id             TEXT PRIMARY KEY,
    seq            BIGSERIAL,
    audio_note_id  TEXT DEFAULT '',
    project_id     TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    session_id     TEXT,
    external_id    TEXT,
    text           TEXT DEFAULT '',
    start_ms       INTEGER DEFAULT 0,
    end_ms         INTEGER DEFAULT 0,
    speaker_role   TEXT,
    confidence     DOUBLE PRECISION DEFAULT 1.0
);

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
    confidence   DOUBLE PRECISION,
    session_id   TEXT,
    external_id  TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project  ON tasks(project_id, status);

CREATE TABLE IF NOT EXISTS evidence_links (
    id           TEXT PRIMARY KEY,
    seq          BIGSERIAL,
    task_id      TEXT NOT NULL,
    target_type  TEXT NOT NULL,
    target_id    TEXT NOT NULL,
    link_type    TEXT DEFAULT 'suggested',
    link_score   DOUBLE PRECISION DEFAULT 0.5,
    created_by   TEXT DEFAULT 'system',
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_evidence_task ON evidence_links(task_id);

CREATE TABLE IF NOT EXISTS capture_sessions (
    id                     TEXT PRIMARY KEY,
    seq                    BIGSERIAL,
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

CREATE INDEX IF NOT EXISTS idx_sessions_webhook ON capture_sessions(webhook_status);

CREATE TABLE IF NOT EXISTS app_settings (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


async def run_migrations(db: asyncpg.Pool) -> None:
    """Create all tables if they don't exist and record schema version."""
    async with db.acquire() as conn:
        await conn.execute(_TABLES)
        current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        if current_version >= SCHEMA_VERSION:
            logger.info(f"Schema at version {current_version}, no migration needed")
            return

        logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")
        await conn.execute("ALTER TABLE tasks ADD COLUMN IF NOT EXISTS session_id TEXT")
        await conn.execute("ALTER TABLE tasks ADD COLUMN IF NOT EXISTS external_id TEXT")
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tasks_external ON tasks(session_id, external_id)"
        )
        await conn.execute("ALTER TABLE transcript_segments ADD COLUMN IF NOT EXISTS session_id TEXT")
        await conn.execute("ALTER TABLE transcript_segments ADD COLUMN IF NOT EXISTS external_id TEXT")
        await conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_transcripts_external "
            "ON transcript_segments(session_id, external_id)"
        )
        await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
