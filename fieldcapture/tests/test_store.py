import unittest

import aiosqlite

from fieldcapture.db.sqlite_migrations import run_migrations
from fieldcapture.errors import NotFoundError
from fieldcapture.models import MediaAsset, TranscriptSegment
from fieldcapture.store import FieldStore


class _StoreTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = FieldStore(
            self.db,
            default_webhook_url="https://hooks.example.com/field",
            placeholder_marker="webhook-test",
        )
        self.project = await self.store.add_project("Oak Ave", "4 Oak Ave", "R. Client")
        self.area = (await self.store.list_areas(self.project.id))[0]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _media(self, uri: str = "file:///p.jpg") -> MediaAsset:
        return await self.store.add_media(
            project_id=self.project.id,
            area_id=self.area.id,
            area_type=self.area.type,
            uri=uri,
        )


class ProjectCounterTests(_StoreTestCase):
    async def test_new_project_gets_default_areas(self) -> None:
        areas = await self.store.list_areas(self.project.id)
        self.assertEqual(
            [(a.type, a.label) for a in areas],
            [("kitchen", "Kitchen"), ("bath", "Bathroom"), ("roof", "Roof"), ("exterior", "Exterior"), ("other", "Other")],
        )

    async def test_counters_track_media_and_tasks(self) -> None:
        await self._media()
        second = await self._media("file:///q.jpg")
        await self.store.add_task(project_id=self.project.id, title="Open one")
        await self.store.add_task(project_id=self.project.id, title="Started", status="in_progress")
        done = await self.store.add_task(project_id=self.project.id, title="Finished", status="done")

        project = await self.store.get_project(self.project.id)
        self.assertEqual(project.mediaCount, 2)
        self.assertEqual(project.taskCount, 3)
        self.assertEqual(project.openTaskCount, 2)

        await self.store.update_task(done.id, status="open")
        await self.store.delete_media(second.id)
        project = await self.store.get_project(self.project.id)
        self.assertEqual(project.mediaCount, 1)
        self.assertEqual(project.openTaskCount, 3)

    async def test_counters_match_rows_after_mixed_operations(self) -> None:
        tasks = [
            await self.store.add_task(project_id=self.project.id, title=f"T{i}", status=status)
            for i, status in enumerate(["open", "blocked", "done", "in_progress"])
        ]
        await self.store.update_task(tasks[0].id, status="done")
        await self.store.update_task(tasks[1].id, status="in_progress")
        await self.store.delete_task(tasks[3].id)
        await self._media()

        project = await self.store.get_project(self.project.id)
        recounted = await self.store.recompute_counters(self.project.id)
        self.assertEqual(
            (project.mediaCount, project.taskCount, project.openTaskCount),
            (recounted.mediaCount, recounted.taskCount, recounted.openTaskCount),
        )
        self.assertEqual((recounted.taskCount, recounted.openTaskCount), (3, 1))

    async def test_user_tasks_drop_confidence(self) -> None:
        user_task = await self.store.add_task(project_id=self.project.id, title="Mine", confidence=0.9)
        system_task = await self.store.add_task(
            project_id=self.project.id, title="AI", created_by="system", confidence=0.9
        )
        self.assertIsNone(user_task.confidence)
        self.assertEqual(system_task.confidence, 0.9)

    async def test_media_for_unknown_project_is_rejected(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.store.add_media(project_id="nope", area_id="a", area_type="kitchen", uri="x")


class CascadeTests(_StoreTestCase):
    async def test_delete_project_removes_children(self) -> None:
        await self._media()
        task = await self.store.add_task(project_id=self.project.id, title="Leak")
        await self.store.add_evidence_link(task_id=task.id, target_type="media", target_id="m-1")
        await self.store.add_transcripts(
            [TranscriptSegment(id="seg-1", projectId=self.project.id, text="hello")]
        )

        await self.store.delete_project(self.project.id)

        self.assertIsNone(await self.store.get_project(self.project.id))
        self.assertEqual(await self.store.list_areas(self.project.id), [])
        self.assertEqual(await self.store.list_media(self.project.id), [])
        self.assertEqual(await self.store.list_tasks(self.project.id), [])
        self.assertEqual(await self.store.list_evidence_links(), [])
        self.assertEqual(await self.store.list_transcripts(self.project.id), [])

    async def test_delete_task_removes_its_links(self) -> None:
        task = await self.store.add_task(project_id=self.project.id, title="Leak")
        other = await self.store.add_task(project_id=self.project.id, title="Crack")
        await self.store.add_evidence_link(task_id=task.id, target_type="media", target_id="m-1")
        await self.store.add_evidence_link(task_id=other.id, target_type="media", target_id="m-1")

        await self.store.delete_task(task.id)

        links = await self.store.list_evidence_links()
        self.assertEqual([link.taskId for link in links], [other.id])

    async def test_transcripts_skip_known_ids(self) -> None:
        segment = TranscriptSegment(id="seg-1", projectId=self.project.id, text="hello")
        self.assertEqual(await self.store.add_transcripts([segment]), 1)
        self.assertEqual(await self.store.add_transcripts([segment]), 0)


class SettingsTests(_StoreTestCase):
    async def test_defaults(self) -> None:
        settings = await self.store.get_settings()
        self.assertTrue(settings.wifiOnlyUpload)
        self.assertTrue(settings.autoSync)
        self.assertEqual(settings.webhookUrl, "https://hooks.example.com/field")

    async def test_placeholder_url_is_replaced_and_persisted(self) -> None:
        await self.store.update_settings(webhookUrl="https://n8n.example.com/webhook-test/abc")
        settings = await self.store.get_settings()
        self.assertEqual(settings.webhookUrl, "https://hooks.example.com/field")
        stored = await self.store.repos.settings.get_all()
        self.assertEqual(stored["webhookUrl"], "https://hooks.example.com/field")

    async def test_partial_update_keeps_other_values(self) -> None:
        await self.store.update_settings(autoSync=False)
        await self.store.update_settings(webhookUrl="https://custom.example.com/hook")
        settings = await self.store.get_settings()
        self.assertFalse(settings.autoSync)
        self.assertTrue(settings.wifiOnlyUpload)
        self.assertEqual(settings.webhookUrl, "https://custom.example.com/hook")


class SnapshotTests(_StoreTestCase):
    async def test_load_all_notifies_subscribers(self) -> None:
        seen = []

        async def async_listener(snapshot):
            seen.append(("async", len(snapshot.projects)))

        unsubscribe = self.store.subscribe(lambda snapshot: seen.append(("sync", len(snapshot.areas))))
        self.store.subscribe(async_listener)
        snapshot = await self.store.load_all()

        self.assertIs(self.store.snapshot, snapshot)
        self.assertEqual(seen, [("sync", 5), ("async", 1)])

        unsubscribe()
        await self.store.load_all()
        self.assertEqual(seen[-1], ("async", 1))
        self.assertEqual(len(seen), 3)

    async def test_failing_subscriber_does_not_break_refresh(self) -> None:
        def broken(_snapshot):
            raise RuntimeError("boom")

        self.store.subscribe(broken)
        with self.assertLogs("fieldcapture.store", level="ERROR"):
            snapshot = await self.store.load_all()
        self.assertEqual(len(snapshot.projects), 1)


if __name__ == "__main__":
    unittest.main()
