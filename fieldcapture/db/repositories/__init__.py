"""Repository package for database access."""

from .projects import SqliteProjectRepository, SqliteAreaRepository
from .captures import (
    SqliteMediaRepository,
    SqliteAudioNoteRepository,
    SqliteTranscriptRepository,
)
from .tasks import SqliteTaskRepository, SqliteEvidenceLinkRepository
from .sessions import SqliteCaptureSessionRepository, SqliteSettingsRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteAreaRepository",
    "SqliteMediaRepository",
    "SqliteAudioNoteRepository",
    "SqliteTranscriptRepository",
    "SqliteTaskRepository",
    "SqliteEvidenceLinkRepository",
    "SqliteCaptureSessionRepository",
    "SqliteSettingsRepository",
]
