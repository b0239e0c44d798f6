import unittest

import aiosqlite

from fieldcapture.db.factory import get_repositories, transaction
from fieldcapture.db.repositories.captures import SqliteMediaRepository
from fieldcapture.db.sqlite_migrations import run_migrations


def _media(media_id: str, status: str = "captured") -> dict:
    return {
        "id": media_id,
        "projectId": "P-1",
        "areaId": "A-1",
        "areaType": "kitchen",
        "type": "photo",
        "uri": f"file:///{media_id}.jpg",
        "capturedAt": "2026-05-01T10:00:00+00:00",
        "syncStatus": status,
        "metadata": {"tags": ["wall"]},
    }


class MediaRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteMediaRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_round_trip_keeps_metadata(self) -> None:
        await self.repo.upsert(_media("M-1"))
        row = await self.repo.get_by_id("M-1")
        self.assertEqual(row["type"], "photo")
        self.assertEqual(row["metadata"], {"tags": ["wall"]})
        self.assertEqual(row["syncStatus"], "captured")

    async def test_batch_status_update(self) -> None:
        for media_id in ("M-1", "M-2", "M-3"):
            await self.repo.upsert(_media(media_id))

        changed = await self.repo.mark_sync_status(["M-1", "M-2", "M-1"], "uploaded")

        self.assertEqual(changed, 2)
        self.assertEqual(await self.repo.count_by_status("uploaded"), 2)
        self.assertEqual(await self.repo.count_by_status("captured"), 1)
        self.assertFalse(await self.repo.update_status("M-404", "failed"))

    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)
        async with self.db.execute("SELECT COUNT(*) FROM schema_version") as cur:
            row = await cur.fetchone()
        self.assertEqual(row[0], 1)


class TransactionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_failed_batch_rolls_back(self) -> None:
        with self.assertRaises(RuntimeError):
            async with transaction(self.db) as repos:
                await repos.media.upsert(_media("M-1"))
                raise RuntimeError("interrupted")

        self.assertIsNone(await get_repositories(self.db).media.get_by_id("M-1"))

    async def test_committed_batch_is_visible(self) -> None:
        async with transaction(self.db) as repos:
            await repos.media.upsert(_media("M-1"))
            await repos.media.upsert(_media("M-2"))

        self.assertEqual(len(await get_repositories(self.db).media.list_all()), 2)


if __name__ == "__main__":
    unittest.main()
