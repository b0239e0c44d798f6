import types
import unittest

import aiosqlite
from fastapi import HTTPException

from fieldcapture.capture_sessions import SessionService
from fieldcapture.db.sqlite_migrations import run_migrations
from fieldcapture.routers import captures as captures_router
from fieldcapture.routers import projects as projects_router
from fieldcapture.routers import sessions as sessions_router
from fieldcapture.routers import settings as settings_router
from fieldcapture.routers import tasks as tasks_router
from fieldcapture.store import FieldStore


class _RouterTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(self.db)
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(store=self.store, session_service=SessionService(self.store))
            )
        )
        self.project = await projects_router.add_project(
            self.request, projects_router.ProjectCreate(name="Willow Dr", address="9 Willow Dr")
        )
        self.area = (await self.store.list_areas(self.project.id))[0]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _create(self, **overrides) -> sessions_router.SessionCreate:
        payload = {
            "projectId": self.project.id,
            "areaId": self.area.id,
            "areaType": self.area.type,
            "mode": "photo_speak",
        }
        payload.update(overrides)
        return sessions_router.SessionCreate(**payload)


class SessionsRouterTests(_RouterTestCase):
    async def test_create_end_and_fetch(self) -> None:
        created = await sessions_router.create_session(self.request, self._create())
        session_id = created["session"]["id"]

        media = await captures_router.add_media(
            self.request,
            captures_router.MediaCreate(
                projectId=self.project.id,
                areaId=self.area.id,
                areaType=self.area.type,
                uri="file:///a.jpg",
                sessionId=session_id,
            ),
        )
        self.assertEqual(media.sessionId, session_id)

        ended = await sessions_router.end_session(self.request, session_id)
        self.assertIsNotNone(ended["session"]["endedAt"])
        fetched = await sessions_router.get_session(self.request, session_id)
        self.assertEqual(fetched["session"]["mediaIds"], [media.id])

        listed = await sessions_router.list_sessions(self.request, projectId=self.project.id)
        self.assertEqual([s["id"] for s in listed["sessions"]], [session_id])

    async def test_meeting_without_consent_is_400(self) -> None:
        body = self._create(
            sessionType="meeting",
            meetingMetadata={"meetingType": "scope", "consentGiven": False, "participants": []},
        )
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.create_session(self.request, body)
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_approve_and_dispatch_meeting(self) -> None:
        body = self._create(
            sessionType="meeting",
            meetingMetadata={
                "meetingType": "vendor",
                "consentGiven": True,
                "participants": [{"name": "Lee", "role": "vendor", "email": "lee@example.com"}],
            },
        )
        session_id = (await sessions_router.create_session(self.request, body))["session"]["id"]

        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.dispatch_meeting_notes(self.request, session_id)
        self.assertEqual(ctx.exception.status_code, 400)

        approved = await sessions_router.approve_session(
            self.request, session_id, sessions_router.ApproveRequest(approvedBy="lead")
        )
        self.assertTrue(approved["emailDispatched"])
        self.assertEqual(approved["recipients"], ["lee@example.com"])

        dispatched = await sessions_router.dispatch_meeting_notes(self.request, session_id)
        self.assertTrue(dispatched["dispatched"])
        self.assertEqual(dispatched["recipients"], [{"name": "Lee", "email": "lee@example.com", "role": "vendor"}])

    async def test_approving_walkthrough_is_400(self) -> None:
        session_id = (await sessions_router.create_session(self.request, self._create()))["session"]["id"]
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.approve_session(self.request, session_id, None)
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_unknown_session_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.end_session(self.request, "missing")
        self.assertEqual(ctx.exception.status_code, 404)


class ProjectTaskRouterTests(_RouterTestCase):
    async def test_project_detail_and_delete(self) -> None:
        await tasks_router.create_task(
            self.request, tasks_router.TaskCreate(projectId=self.project.id, title="Check GFCI")
        )
        detail = await projects_router.get_project(self.request, self.project.id)
        self.assertEqual(detail["project"]["taskCount"], 1)
        self.assertEqual(len(detail["areas"]), 5)
        self.assertEqual(len(detail["tasks"]), 1)

        await projects_router.delete_project(self.request, self.project.id)
        with self.assertRaises(HTTPException) as ctx:
            await projects_router.get_project(self.request, self.project.id)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_task_update_and_evidence(self) -> None:
        task = await tasks_router.create_task(
            self.request, tasks_router.TaskCreate(projectId=self.project.id, title="Check GFCI")
        )
        updated = await tasks_router.update_task(self.request, task.id, tasks_router.TaskUpdate(status="done"))
        self.assertEqual(updated.status, "done")
        project = await self.store.get_project(self.project.id)
        self.assertEqual(project.openTaskCount, 0)

        link = await tasks_router.add_task_evidence(
            self.request, task.id, tasks_router.EvidenceCreate(targetType="media", targetId="m-1")
        )
        self.assertEqual(link.createdBy, "user")
        self.assertEqual(len(await tasks_router.list_task_evidence(self.request, task.id)), 1)

        await tasks_router.remove_evidence(self.request, link.id)
        with self.assertRaises(HTTPException) as ctx:
            await tasks_router.remove_evidence(self.request, link.id)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_settings_partial_update(self) -> None:
        updated = await settings_router.update_settings(
            self.request, settings_router.SettingsUpdate(wifiOnlyUpload=False)
        )
        self.assertFalse(updated.wifiOnlyUpload)
        self.assertTrue(updated.autoSync)


if __name__ == "__main__":
    unittest.main()
