import types
import unittest
from unittest.mock import patch

import aiosqlite
import httpx
from fastapi import HTTPException

from fieldcapture.capture_sessions import SessionService
from fieldcapture.db.sqlite_migrations import run_migrations
from fieldcapture.dispatcher import WebhookDispatcher
from fieldcapture.ingestion import ResultIngestor
from fieldcapture.retry import RetryCoordinator
from fieldcapture.routers import sync as sync_router
from fieldcapture.routers import webhook as webhook_router
from fieldcapture.store import FieldStore


class _RouterTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(self.db, default_webhook_url="https://hooks.example.com/field")
        self.sessions = SessionService(self.store)
        self.ingestor = ResultIngestor(self.store)
        self.respond = lambda request: httpx.Response(200, json={"tasks": [{"title": "Fix leak"}]})
        self.dispatcher = WebhookDispatcher(
            self.store,
            self.sessions,
            self.ingestor,
            transport=httpx.MockTransport(lambda request: self.respond(request)),
        )
        self.coordinator = RetryCoordinator(self.store, self.dispatcher)
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(
                    store=self.store,
                    session_service=self.sessions,
                    ingestor=self.ingestor,
                    dispatcher=self.dispatcher,
                    retry_coordinator=self.coordinator,
                )
            )
        )
        self.project = await self.store.add_project("Spruce Pl")
        self.area = (await self.store.list_areas(self.project.id))[0]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _ended_session(self):
        session = await self.sessions.start_session(self.project.id, self.area.id, self.area.type, "photo_speak")
        await self.sessions.capture_media(session.id, "file:///a.jpg")
        return await self.sessions.end_session(session.id)


class TriggerWebhookTests(_RouterTestCase):
    async def test_requires_session_id(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.trigger_webhook(self.request, sync_router.TriggerWebhookRequest())
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_unknown_session_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.trigger_webhook(self.request, sync_router.TriggerWebhookRequest(sessionId="nope"))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_missing_url_is_500(self) -> None:
        session = await self._ended_session()
        await self.store.update_settings(webhookUrl="")
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.trigger_webhook(self.request, sync_router.TriggerWebhookRequest(sessionId=session.id))
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_webhook_error_is_502(self) -> None:
        session = await self._ended_session()
        self.respond = lambda request: httpx.Response(503)
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.trigger_webhook(self.request, sync_router.TriggerWebhookRequest(sessionId=session.id))
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.detail["status"], 503)

    async def test_success_returns_result_snapshot(self) -> None:
        session = await self._ended_session()
        payload = await sync_router.trigger_webhook(
            self.request, sync_router.TriggerWebhookRequest(sessionId=session.id)
        )
        self.assertEqual(payload["status"], "received")
        self.assertEqual(payload["webhookResult"]["tasks"], [{"title": "Fix leak"}])
        self.assertEqual(payload["ingestion"]["fields"]["tasks"]["created"], 1)


class SyncBatchTests(_RouterTestCase):
    async def test_status_counts(self) -> None:
        await self._ended_session()
        failed = await self._ended_session()
        self.respond = lambda request: httpx.Response(500)
        await self.dispatcher.dispatch(failed.id)

        status = await sync_router.sync_status(self.request)

        self.assertEqual(status["pendingSessions"], 2)
        self.assertEqual(status["failedSessions"], 1)
        self.assertEqual(status["syncedSessions"], 0)
        self.assertEqual(status["totalSessions"], 2)
        self.assertEqual(status["failedMedia"], 1)
        self.assertFalse(status["autoSyncRunning"])

    async def test_retry_failed_reports_counts(self) -> None:
        failed = await self._ended_session()
        self.respond = lambda request: httpx.Response(500)
        await self.dispatcher.dispatch(failed.id)

        self.respond = lambda request: httpx.Response(200, json={})
        payload = await sync_router.retry_failed(self.request)

        self.assertEqual((payload["succeeded"], payload["failed"], payload["attempted"]), (1, 0, 1))
        self.assertEqual((await self.store.get_session(failed.id)).webhookStatus, "received")

    async def test_store_error_on_one_session_does_not_stop_the_batch(self) -> None:
        first = await self._ended_session()
        second = await self._ended_session()
        read_settings = self.store.get_settings
        calls: list[int] = []

        async def _flaky_settings():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("disk I/O error")
            return await read_settings()

        with patch.object(self.store, "get_settings", side_effect=_flaky_settings):
            payload = await sync_router.sync_pending(self.request)

        self.assertEqual((payload["attempted"], payload["succeeded"], payload["failed"]), (2, 1, 1))
        self.assertEqual((await self.store.get_session(first.id)).webhookStatus, "pending")
        self.assertEqual((await self.store.get_session(second.id)).webhookStatus, "received")

    async def test_missing_services_are_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.sync_pending(request)
        self.assertEqual(ctx.exception.status_code, 503)


class CallbackRouterTests(_RouterTestCase):
    async def test_callback_acknowledges_and_ingests(self) -> None:
        session = await self._ended_session()
        payload = await webhook_router.processor_callback(
            self.request,
            {
                "sessionId": session.id,
                "tasks": [{"title": "Replace shingles", "status": "In Progress", "linkMediaAssetIds": session.mediaIds}],
            },
        )

        self.assertEqual(payload["status"], "received")
        stored = await self.store.get_session(session.id)
        self.assertEqual(stored.webhookStatus, "received")
        self.assertEqual((await self.store.get_media(session.mediaIds[0])).syncStatus, "uploaded")

        tasks = await self.store.list_tasks(self.project.id)
        self.assertEqual([(t.title, t.status) for t in tasks], [("Replace shingles", "in_progress")])
        links = await self.store.list_evidence_links(tasks[0].id)
        self.assertEqual([(link.targetType, link.linkScore) for link in links], [("media", 0.5)])

    async def test_callback_validation(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await webhook_router.processor_callback(self.request, {"tasks": []})
        self.assertEqual(ctx.exception.status_code, 400)

        with self.assertRaises(HTTPException) as ctx:
            await webhook_router.processor_callback(self.request, {"sessionId": "missing"})
        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
