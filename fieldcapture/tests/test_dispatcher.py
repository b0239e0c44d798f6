import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import aiosqlite
import httpx

from fieldcapture.capture_sessions import SessionService
from fieldcapture.db.sqlite_migrations import run_migrations
from fieldcapture.dispatcher import WebhookDispatcher
from fieldcapture.ingestion import ResultIngestor
from fieldcapture.store import FieldStore

WEBHOOK_URL = "https://hooks.example.com/field"


class _DispatcherTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(self.db, default_webhook_url=WEBHOOK_URL)
        self.sessions = SessionService(self.store)
        self.ingestor = ResultIngestor(self.store)
        self.tmp = tempfile.TemporaryDirectory()
        self.media_root = Path(self.tmp.name)
        self.requests: list[httpx.Request] = []
        self.respond = lambda request: httpx.Response(200, json={})
        self.project = await self.store.add_project("Cedar Ln")
        self.area = (await self.store.list_areas(self.project.id))[0]

    async def asyncTearDown(self) -> None:
        self.tmp.cleanup()
        await self.db.close()

    def _dispatcher(self, handler=None) -> WebhookDispatcher:
        def _record(request: httpx.Request):
            self.requests.append(request)
            return self.respond(request)

        return WebhookDispatcher(
            self.store,
            self.sessions,
            self.ingestor,
            timeout=5.0,
            transport=httpx.MockTransport(handler or _record),
            media_root=self.media_root,
        )

    async def _ended_session(self, audio_uri: str = "missing.m4a"):
        session = await self.sessions.start_session(self.project.id, self.area.id, self.area.type, "photo_speak")
        media = await self.sessions.capture_media(session.id, "file:///photo.jpg")
        note = await self.sessions.capture_audio(session.id, audio_uri, transcript="water at the sink")
        session = await self.sessions.end_session(session.id)
        return session, media, note


class DispatchSuccessTests(_DispatcherTestCase):
    async def test_success_with_tasks(self) -> None:
        session, media, note = await self._ended_session()
        self.respond = lambda request: httpx.Response(
            200, json={"tasks": [{"title": "Fix leak", "status": "Open", "priority": "URGENT"}]}
        )

        self.assertTrue(await self._dispatcher().dispatch(session.id))

        request = self.requests[0]
        self.assertEqual(str(request.url), WEBHOOK_URL)
        self.assertEqual(request.headers["content-type"], "application/json")
        body = json.loads(request.content)
        self.assertEqual(body["sessionId"], session.id)
        self.assertEqual(body["mediaAssets"][0]["mediaAssetId"], media.id)

        tasks = await self.store.list_tasks(self.project.id)
        self.assertEqual(len(tasks), 1)
        self.assertEqual(tasks[0].title, "Fix leak")
        self.assertEqual(tasks[0].status, "open")
        self.assertEqual(tasks[0].priority, "high")
        self.assertEqual(tasks[0].createdBy, "system")
        self.assertEqual(tasks[0].areaId, self.area.id)

        project = await self.store.get_project(self.project.id)
        self.assertEqual((project.taskCount, project.openTaskCount), (1, 1))

        stored = await self.store.get_session(session.id)
        self.assertEqual(stored.webhookStatus, "received")
        self.assertIsNotNone(stored.webhookResult)
        self.assertEqual(stored.webhookResult.tasks[0]["status"], "Open")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "uploaded")
        self.assertEqual((await self.store.get_audio_note(note.id)).syncStatus, "uploaded")

    async def test_non_json_body_still_counts_as_delivered(self) -> None:
        session, _, _ = await self._ended_session()
        self.respond = lambda request: httpx.Response(200, text="not json")

        dispatcher = self._dispatcher()
        result = await dispatcher.dispatch_session(session.id)

        self.assertEqual(result.outcome, "received")
        self.assertIsNone(result.report)
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "received")
        self.assertEqual(await self.store.list_tasks(self.project.id), [])
        self.assertEqual(await self.store.list_transcripts(self.project.id), [])

    async def test_empty_body_is_tolerated(self) -> None:
        session, _, _ = await self._ended_session()
        self.respond = lambda request: httpx.Response(204)
        self.assertTrue(await self._dispatcher().dispatch(session.id))

    async def test_array_wrapped_response(self) -> None:
        session, _, _ = await self._ended_session()
        self.respond = lambda request: httpx.Response(
            200,
            json=[
                {
                    "tasks": [{"title": "Patch drywall", "status": "completed"}],
                    "transcriptSegments": [{"id": "seg-1", "time": "00:05", "text": "patch it"}],
                    "issues": [{"summary": "stain"}],
                }
            ],
        )

        result = await self._dispatcher().dispatch_session(session.id)

        self.assertEqual(result.report.created("tasks"), 1)
        self.assertEqual(result.report.created("transcriptSegments"), 1)
        tasks = await self.store.list_tasks(self.project.id)
        self.assertEqual(tasks[0].status, "done")
        segments = await self.store.list_transcripts(self.project.id)
        self.assertEqual(segments[0].startMs, 5000)
        stored = await self.store.get_session(session.id)
        self.assertEqual(stored.webhookResult.issues, [{"summary": "stain"}])

    async def test_multipart_upload_when_audio_exists(self) -> None:
        (self.media_root / "note.m4a").write_bytes(b"AUDIO-BYTES")
        session, _, _ = await self._ended_session("note.m4a")

        self.assertTrue(await self._dispatcher().dispatch(session.id))

        request = self.requests[0]
        self.assertTrue(request.headers["content-type"].startswith("multipart/form-data"))
        content = request.read()
        self.assertIn(b'name="file"', content)
        self.assertIn(b"audio/m4a", content)
        self.assertIn(b"AUDIO-BYTES", content)
        self.assertIn(b'name="data"', content)
        self.assertIn(session.id.encode(), content)

    async def test_failed_session_can_be_redelivered(self) -> None:
        session, _, _ = await self._ended_session()
        self.respond = lambda request: httpx.Response(500)
        dispatcher = self._dispatcher()
        self.assertFalse(await dispatcher.dispatch(session.id))

        self.respond = lambda request: httpx.Response(200, json={})
        self.assertTrue(await dispatcher.dispatch(session.id))
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "received")


class DispatchFailureTests(_DispatcherTestCase):
    async def test_server_error_marks_everything_failed(self) -> None:
        session, media, note = await self._ended_session()
        self.respond = lambda request: httpx.Response(500, text="boom")

        result = await self._dispatcher().dispatch_session(session.id)

        self.assertEqual(result.outcome, "failed")
        self.assertEqual(result.status_code, 500)
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "failed")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "failed")
        self.assertEqual((await self.store.get_audio_note(note.id)).syncStatus, "failed")

    async def test_network_error_is_caught(self) -> None:
        session, media, _ = await self._ended_session()

        def _down(request):
            raise httpx.ConnectError("connection refused", request=request)

        self.assertFalse(await self._dispatcher(_down).dispatch(session.id))
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "failed")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "failed")

    async def test_timeout_is_a_network_failure(self) -> None:
        session, _, _ = await self._ended_session()

        def _slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await self._dispatcher(_slow).dispatch_session(session.id)
        self.assertEqual(result.outcome, "failed")
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "failed")


    async def test_unreadable_audio_file_marks_everything_failed(self) -> None:
        session, media, note = await self._ended_session(audio_uri="locked.m4a")
        real_stat = Path.stat

        def _stat(path, *args, **kwargs):
            if path.name == "locked.m4a":
                raise PermissionError(13, "Permission denied", str(path))
            return real_stat(path, *args, **kwargs)

        with patch.object(Path, "stat", autospec=True, side_effect=_stat):
            result = await self._dispatcher().dispatch_session(session.id)

        self.assertFalse(result.ok)
        self.assertEqual(result.outcome, "failed")
        self.assertIn("Permission denied", result.error)
        self.assertEqual(self.requests, [])
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "failed")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "failed")
        self.assertEqual((await self.store.get_audio_note(note.id)).syncStatus, "failed")

    async def test_store_error_before_delivery_is_returned(self) -> None:
        session, media, _ = await self._ended_session()

        with patch.object(self.store, "get_settings", side_effect=OSError("disk I/O error")):
            result = await self._dispatcher().dispatch_session(session.id)

        self.assertEqual(result.outcome, "failed")
        self.assertEqual(result.error, "disk I/O error")
        self.assertEqual(self.requests, [])
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "pending")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "captured")


class DispatchPreconditionTests(_DispatcherTestCase):
    async def test_unknown_session(self) -> None:
        result = await self._dispatcher().dispatch_session("missing")
        self.assertEqual(result.outcome, "not_found")
        self.assertEqual(self.requests, [])

    async def test_missing_url_leaves_session_untouched(self) -> None:
        session, media, _ = await self._ended_session()
        await self.store.update_settings(webhookUrl="")

        result = await self._dispatcher().dispatch_session(session.id)

        self.assertEqual(result.outcome, "not_configured")
        self.assertEqual(self.requests, [])
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "pending")
        self.assertEqual((await self.store.get_media(media.id)).syncStatus, "captured")

    async def test_open_session_is_refused(self) -> None:
        session = await self.sessions.start_session(self.project.id, self.area.id, self.area.type, "photo_speak")
        result = await self._dispatcher().dispatch_session(session.id)
        self.assertEqual(result.outcome, "not_ended")
        self.assertEqual((await self.store.get_session(session.id)).webhookStatus, "pending")

    async def test_concurrent_dispatch_of_same_session(self) -> None:
        session, _, _ = await self._ended_session()
        release = asyncio.Event()
        entered = asyncio.Event()

        async def _held(request):
            entered.set()
            await release.wait()
            return httpx.Response(200, json={})

        dispatcher = self._dispatcher(_held)
        first = asyncio.create_task(dispatcher.dispatch_session(session.id))
        await entered.wait()

        self.assertTrue(dispatcher.is_in_flight(session.id))
        second = await dispatcher.dispatch_session(session.id)
        self.assertEqual(second.outcome, "in_flight")

        release.set()
        self.assertEqual((await first).outcome, "received")
        self.assertFalse(dispatcher.is_in_flight(session.id))


if __name__ == "__main__":
    unittest.main()
