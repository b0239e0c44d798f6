"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import aiosqlite

from fieldcapture.db.repositories.captures import (
    SqliteAudioNoteRepository,
    SqliteMediaRepository,
    SqliteTranscriptRepository,
)
from fieldcapture.db.repositories.projects import SqliteAreaRepository, SqliteProjectRepository
from fieldcapture.db.repositories.sessions import (
    SqliteCaptureSessionRepository,
    SqliteSettingsRepository,
)
from fieldcapture.db.repositories.tasks import SqliteEvidenceLinkRepository, SqliteTaskRepository


def get_project_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteProjectRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.projects import PostgresProjectRepository
    return PostgresProjectRepository(db)


def get_area_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteAreaRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.projects import PostgresAreaRepository
    return PostgresAreaRepository(db)


def get_media_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMediaRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.captures import PostgresMediaRepository
    return PostgresMediaRepository(db)


def get_audio_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteAudioNoteRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.captures import PostgresAudioNoteRepository
    return PostgresAudioNoteRepository(db)


def get_transcript_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteTranscriptRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.captures import PostgresTranscriptRepository
    return PostgresTranscriptRepository(db)


def get_task_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteTaskRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.tasks import PostgresTaskRepository
    return PostgresTaskRepository(db)


def get_evidence_link_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteEvidenceLinkRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.tasks import PostgresEvidenceLinkRepository
    return PostgresEvidenceLinkRepository(db)


def get_session_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteCaptureSessionRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.sessions import PostgresCaptureSessionRepository
    return PostgresCaptureSessionRepository(db)


def get_settings_repository(db: Any, autocommit: bool = True):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSettingsRepository(db, autocommit)
    from fieldcapture.db.repositories.postgres.sessions import PostgresSettingsRepository
    return PostgresSettingsRepository(db)


@dataclass
class Repositories:
    projects: Any
    areas: Any
    media: Any
    audio: Any
    transcripts: Any
    tasks: Any
    links: Any
    sessions: Any
    settings: Any


def get_repositories(db: Any, autocommit: bool = True) -> Repositories:
    return Repositories(
        projects=get_project_repository(db, autocommit),
        areas=get_area_repository(db, autocommit),
        media=get_media_repository(db, autocommit),
        audio=get_audio_repository(db, autocommit),
        transcripts=get_transcript_repository(db, autocommit),
        tasks=get_task_repository(db, autocommit),
        links=get_evidence_link_repository(db, autocommit),
        sessions=get_session_repository(db, autocommit),
        settings=get_settings_repository(db, autocommit),
    )


@asynccontextmanager
async def transaction(db: Any) -> AsyncIterator[Repositories]:
    """Yield repositories whose writes commit or roll back together."""
    if isinstance(db, aiosqlite.Connection):
        repos = get_repositories(db, autocommit=False)
        try:
            yield repos
        except BaseException:
            await db.rollback()
            raise
        await db.commit()
        return

    async with db.acquire() as conn:
        async with conn.transaction():
            yield get_repositories(conn)
