"""SQLite implementation of ProjectRepository and AreaRepository."""
from __future__ import annotations

from fieldcapture.db.repositories.base import (
    SqliteRepository,
    area_from_row,
    project_from_row,
    ts,
)


class SqliteProjectRepository(SqliteRepository):
    """Projects and their derived counters."""

    async def upsert(self, project: dict) -> None:
        await self.db.execute(
            """INSERT INTO projects (
                id, name, address, client_name,
                media_count, task_count, open_task_count,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, address=excluded.address,
                client_name=excluded.client_name, updated_at=excluded.updated_at
            """,
            (
                project["id"],
                project.get("name", ""),
                project.get("address", ""),
                project.get("clientName", ""),
                project.get("mediaCount", 0),
                project.get("taskCount", 0),
                project.get("openTaskCount", 0),
                ts(project["createdAt"]),
                ts(project["updatedAt"]),
            ),
        )
        await self._commit()

    async def get_by_id(self, project_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        return project_from_row(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self._fetchall("SELECT * FROM projects ORDER BY updated_at DESC")
        return [project_from_row(r) for r in rows]

    async def adjust_counters(
        self,
        project_id: str,
        *,
        media: int = 0,
        tasks: int = 0,
        open_tasks: int = 0,
        updated_at: str | None = None,
    ) -> None:
        await self.db.execute(
            """UPDATE projects SET
                media_count = MAX(0, media_count + ?),
                task_count = MAX(0, task_count + ?),
                open_task_count = MAX(0, open_task_count + ?),
                updated_at = COALESCE(?, updated_at)
            WHERE id = ?""",
            (media, tasks, open_tasks, updated_at, project_id),
        )
        await self._commit()

    async def count_children(self, project_id: str) -> dict:
        """Count rows the derived counters are defined over."""
        media = await self._fetchone(
            "SELECT COUNT(*) FROM media_assets WHERE project_id = ?", (project_id,)
        )
        tasks = await self._fetchone(
            """SELECT COUNT(*),
                      COALESCE(SUM(CASE WHEN status IN ('open', 'in_progress') THEN 1 ELSE 0 END), 0)
               FROM tasks WHERE project_id = ?""",
            (project_id,),
        )
        return {
            "mediaCount": media[0] if media else 0,
            "taskCount": tasks[0] if tasks else 0,
            "openTaskCount": tasks[1] if tasks else 0,
        }

    async def set_counters(self, project_id: str, counters: dict) -> None:
        await self.db.execute(
            "UPDATE projects SET media_count = ?, task_count = ?, open_task_count = ? WHERE id = ?",
            (counters["mediaCount"], counters["taskCount"], counters["openTaskCount"], project_id),
        )
        await self._commit()

    async def delete(self, project_id: str) -> None:
        # Evidence links hang off tasks without a foreign key; clear them first.
        await self.db.execute(
            "DELETE FROM evidence_links WHERE task_id IN (SELECT id FROM tasks WHERE project_id = ?)",
            (project_id,),
        )
        for table in (
            "tasks", "transcript_segments", "capture_sessions",
            "audio_notes", "media_assets", "areas",
        ):
            await self.db.execute(f"DELETE FROM {table} WHERE project_id = ?", (project_id,))
        await self.db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        await self._commit()


class SqliteAreaRepository(SqliteRepository):
    """Areas within a project."""

    async def add(self, area: dict) -> None:
        await self.db.execute(
            "INSERT INTO areas (id, project_id, type, label, created_at) VALUES (?, ?, ?, ?, ?)",
            (area["id"], area["projectId"], area["type"], area["label"], ts(area["createdAt"])),
        )
        await self._commit()

    async def get_by_id(self, area_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM areas WHERE id = ?", (area_id,))
        return area_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self._fetchall(
                "SELECT * FROM areas WHERE project_id = ? ORDER BY rowid", (project_id,)
            )
        else:
            rows = await self._fetchall("SELECT * FROM areas ORDER BY rowid")
        return [area_from_row(r) for r in rows]
