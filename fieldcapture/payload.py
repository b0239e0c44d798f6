"""Outbound webhook payload construction."""
from __future__ import annotations

import asyncio
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from fieldcapture.models import AudioNote, CaptureSession, MediaAsset, Project


@dataclass
class SessionPayload:
    metadata: dict[str, Any]
    attachment: Optional[Path] = None


def area_label(area_type: str) -> str:
    """``living_room`` -> ``Living Room``."""
    words = (area_type or "").replace("_", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def to_wire_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _media_tags(media: MediaAsset) -> list[str]:
    tags = (media.metadata or {}).get("tags")
    if not isinstance(tags, list):
        return []
    return [str(tag) for tag in tags]


def build_session_metadata(
    session: CaptureSession,
    media: list[MediaAsset],
    audio_notes: list[AudioNote],
    project: Project | None,
) -> dict[str, Any]:
    """Serialize a session and its captured items into the webhook metadata object.

    Media and audio are emitted in the session's list order; ids in the
    session lists that did not resolve to a record are skipped.
    """
    label = area_label(session.areaType)
    media_by_id = {m.id: m for m in media}
    audio_by_id = {a.id: a for a in audio_notes}
    session_media = [media_by_id[i] for i in dict.fromkeys(session.mediaIds) if i in media_by_id]
    session_audio = [audio_by_id[i] for i in dict.fromkeys(session.audioIds) if i in audio_by_id]
    session_media_ids = [m.id for m in session_media]

    media_assets = [
        {
            "mediaAssetId": m.id,
            "type": m.type,
            "capturedAt": to_wire_timestamp(m.capturedAt),
            "area": label,
            "tags": _media_tags(m),
        }
        for m in session_media
    ]

    notes = []
    for note in session_audio:
        linked = list(session_media_ids)
        if note.linkedMediaId and note.linkedMediaId not in linked:
            linked.append(note.linkedMediaId)
        transcript = []
        if note.transcript:
            transcript.append({"time": "00:00", "text": note.transcript, "confidence": 1.0})
        notes.append(
            {
                "audioNoteId": note.id,
                "linkedMediaAssetIds": linked,
                "capturedAt": to_wire_timestamp(note.capturedAt),
                "area": label,
                "durationMs": note.durationMs,
                "transcript": transcript,
            }
        )

    metadata: dict[str, Any] = {
        "projectId": session.projectId,
        "projectName": project.name if project else "",
        "projectAddress": project.address if project else "",
        "sessionId": session.id,
        "area": label,
        "sessionType": session.mode,
        "capturedAt": to_wire_timestamp(session.startedAt),
    }
    if session.endedAt is not None:
        metadata["endedAt"] = to_wire_timestamp(session.endedAt)
    metadata["mediaAssets"] = media_assets
    metadata["audioNotes"] = notes
    return metadata


def resolve_audio_path(uri: str, media_root: Path) -> Path | None:
    """Map an audio URI or storage key onto a local path."""
    if not uri:
        return None
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    path = Path(uri)
    if path.is_absolute():
        return path
    return media_root / uri


async def select_audio_attachment(
    session: CaptureSession,
    audio_notes: list[AudioNote],
    media_root: Path,
) -> Path | None:
    """First audio file, in ``session.audioIds`` order, that exists on disk.

    OS errors from the existence check propagate to the caller.
    """
    by_id = {a.id: a for a in audio_notes}
    for audio_id in session.audioIds:
        note = by_id.get(audio_id)
        if note is None:
            continue
        path = resolve_audio_path(note.uri, media_root)
        if path is None:
            continue
        if await asyncio.to_thread(_is_file, path):
            return path
    return None


def _is_file(path: Path) -> bool:
    # Only a missing file reads as absent; permission and other OS errors propagate.
    try:
        st = path.stat()
    except FileNotFoundError:
        return False
    return stat.S_ISREG(st.st_mode)


async def build_session_payload(store, session: CaptureSession, media_root: Path) -> SessionPayload:
    """Resolve a session's records from the store and build its payload."""
    media = [m for m in [await store.get_media(i) for i in dict.fromkeys(session.mediaIds)] if m]
    audio = [a for a in [await store.get_audio_note(i) for i in dict.fromkeys(session.audioIds)] if a]
    project = await store.get_project(session.projectId)
    metadata = build_session_metadata(session, media, audio, project)
    attachment = await select_audio_attachment(session, audio, media_root)
    return SessionPayload(metadata=metadata, attachment=attachment)
