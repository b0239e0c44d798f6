import unittest

import aiosqlite

from fieldcapture.capture_sessions import SessionService, can_transition
from fieldcapture.db.sqlite_migrations import run_migrations
from fieldcapture.errors import (
    ConsentRequiredError,
    InvalidSessionTransition,
    NotAMeetingError,
    NotFoundError,
    SessionNotApprovedError,
)
from fieldcapture.store import FieldStore


class TransitionTableTests(unittest.TestCase):
    def test_allowed_edges(self) -> None:
        self.assertTrue(can_transition("pending", "sent"))
        self.assertTrue(can_transition("sent", "received"))
        self.assertTrue(can_transition("sent", "failed"))
        self.assertTrue(can_transition("failed", "sent"))

    def test_forbidden_edges(self) -> None:
        self.assertFalse(can_transition("pending", "received"))
        self.assertFalse(can_transition("pending", "failed"))
        self.assertFalse(can_transition("failed", "received"))
        self.assertFalse(can_transition("received", "failed"))


class SessionServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(self.db)
        self.service = SessionService(self.store)
        self.project = await self.store.add_project("Elm Ct")
        self.area = (await self.store.list_areas(self.project.id))[2]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _start(self, mode: str = "photo_speak", **kwargs):
        return await self.service.start_session(self.project.id, self.area.id, self.area.type, mode, **kwargs)

    async def test_new_session_is_pending_and_open(self) -> None:
        session = await self._start()
        self.assertEqual(session.webhookStatus, "pending")
        self.assertIsNone(session.endedAt)
        self.assertEqual(session.sessionType, "walkthrough")
        self.assertIsNone(session.approvalStatus)

    async def test_capture_appends_and_back_references(self) -> None:
        session = await self._start()
        media = await self.service.capture_media(session.id, "file:///a.jpg")
        note = await self.service.capture_audio(session.id, "a.m4a")

        stored = await self.store.get_session(session.id)
        self.assertEqual(stored.mediaIds, [media.id])
        self.assertEqual(stored.audioIds, [note.id])
        self.assertEqual((await self.store.get_media(media.id)).sessionId, session.id)
        self.assertEqual((await self.store.get_audio_note(note.id)).sessionId, session.id)
        self.assertIsNone(stored.endedAt)

    async def test_moving_media_between_sessions(self) -> None:
        first = await self._start()
        second = await self._start()
        media = await self.service.capture_media(first.id, "file:///a.jpg")

        await self.service.add_media_to_session(second.id, media.id)

        self.assertEqual((await self.store.get_session(first.id)).mediaIds, [])
        self.assertEqual((await self.store.get_session(second.id)).mediaIds, [media.id])
        self.assertEqual((await self.store.get_media(media.id)).sessionId, second.id)

    async def test_voice_only_ends_after_first_recording(self) -> None:
        session = await self._start("voice_only")
        await self.service.capture_audio(session.id, "v.m4a")
        self.assertIsNotNone((await self.store.get_session(session.id)).endedAt)

    async def test_transitions_are_validated(self) -> None:
        session = await self._start()
        with self.assertRaises(InvalidSessionTransition):
            await self.service.transition(session.id, "received")

        await self.service.transition(session.id, "sent")
        failed = await self.service.transition(session.id, "failed")
        self.assertEqual(failed.webhookStatus, "failed")
        resent = await self.service.transition(session.id, "sent")
        self.assertEqual(resent.webhookStatus, "sent")

    async def test_acknowledge_marks_session_and_items(self) -> None:
        session = await self._start()
        media = await self.service.capture_media(session.id, "file:///a.jpg")
        note = await self.service.capture_audio(session.id, "a.m4a")

        acknowledged = await self.service.acknowledge(session.id)

        self.assertEqual(acknowledged.webhookStatus, "received")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "uploaded")
        self.assertEqual((await self.store.get_audio_note(note.id)).syncStatus, "uploaded")

    async def test_unknown_session(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.service.end_session("missing")


class MeetingSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(self.db)
        self.service = SessionService(self.store)
        self.project = await self.store.add_project("Birch Rd")
        self.area = (await self.store.list_areas(self.project.id))[0]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _meeting(self, consent: bool = True) -> dict:
        return {
            "meetingType": "scope",
            "consentGiven": consent,
            "consentMethod": "verbal",
            "participants": [
                {"name": "Pat", "role": "pm", "email": "pat@example.com"},
                {"name": "Sam", "role": "sub"},
            ],
        }

    async def _start_meeting(self, consent: bool = True):
        return await self.service.start_session(
            self.project.id,
            self.area.id,
            self.area.type,
            "walkthrough",
            session_type="meeting",
            meeting_metadata=self._meeting(consent),
        )

    async def test_meeting_requires_consent(self) -> None:
        with self.assertRaises(ConsentRequiredError):
            await self._start_meeting(consent=False)

    async def test_meeting_records_consent_time_and_pending_approval(self) -> None:
        session = await self._start_meeting()
        self.assertEqual(session.approvalStatus, "pending")
        self.assertIsNotNone(session.meetingMetadata.consentTimestamp)

    async def test_dispatch_requires_approval(self) -> None:
        session = await self._start_meeting()
        with self.assertRaises(SessionNotApprovedError):
            await self.service.dispatch_meeting_notes(session.id)

        approved, emails = await self.service.approve_session(session.id, "lead")
        self.assertEqual(approved.approvalStatus, "approved")
        self.assertEqual(approved.approvedBy, "lead")
        self.assertEqual(emails, ["pat@example.com"])

        recipients = await self.service.dispatch_meeting_notes(session.id)
        self.assertEqual(recipients, [{"name": "Pat", "email": "pat@example.com", "role": "pm"}])

    async def test_only_meetings_can_be_approved(self) -> None:
        session = await self.service.start_session(self.project.id, self.area.id, self.area.type, "photo_speak")
        with self.assertRaises(NotAMeetingError):
            await self.service.approve_session(session.id, "lead")


if __name__ == "__main__":
    unittest.main()
