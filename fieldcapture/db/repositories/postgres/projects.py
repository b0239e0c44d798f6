"""PostgreSQL implementation of ProjectRepository and AreaRepository."""
from __future__ import annotations

import asyncpg

from fieldcapture.db.repositories.base import area_from_row, project_from_row, ts


class PostgresProjectRepository:
    """PostgreSQL-backed projects and their derived counters."""

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, project: dict) -> None:
        query = """
            INSERT INTO projects (
                id, name, address, client_name,
                media_count, task_count, open_task_count,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT(id) DO UPDATE SET
                name=EXCLUDED.name, address=EXCLUDED.address,
                client_name=EXCLUDED.client_name, updated_at=EXCLUDED.updated_at
        """
        await self.db.execute(
            query,
            project["id"],
            project.get("name", ""),
            project.get("address", ""),
            project.get("clientName", ""),
            project.get("mediaCount", 0),
            project.get("taskCount", 0),
            project.get("openTaskCount", 0),
            ts(project["createdAt"]),
            ts(project["updatedAt"]),
        )

    async def get_by_id(self, project_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM projects WHERE id = $1", project_id)
        return project_from_row(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM projects ORDER BY updated_at DESC")
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
                media_count = GREATEST(0, media_count + $1),
                task_count = GREATEST(0, task_count + $2),
                open_task_count = GREATEST(0, open_task_count + $3),
                updated_at = COALESCE($4, updated_at)
            WHERE id = $5""",
            media, tasks, open_tasks, updated_at, project_id,
        )

    async def count_children(self, project_id: str) -> dict:
        media = await self.db.fetchval(
            "SELECT COUNT(*) FROM media_assets WHERE project_id = $1", project_id
        ) or 0
        row = await self.db.fetchrow(
            """SELECT COUNT(*) AS total,
                      COALESCE(SUM(CASE WHEN status IN ('open', 'in_progress') THEN 1 ELSE 0 END), 0) AS open
               FROM tasks WHERE project_id = $1""",
            project_id,
        )
        return {
            "mediaCount": int(media),
            "taskCount": int(row["total"]) if row else 0,
            "openTaskCount": int(row["open"]) if row else 0,
        }

    async def set_counters(self, project_id: str, counters: dict) -> None:
        await self.db.execute(
            "UPDATE projects SET media_count = $1, task_count = $2, open_task_count = $3 WHERE id = $4",
            counters["mediaCount"], counters["taskCount"], counters["openTaskCount"], project_id,
        )

    async def delete(self, project_id: str) -> None:
        await self.db.execute(
            "DELETE FROM evidence_links WHERE task_id IN (SELECT id FROM tasks WHERE project_id = $1)",
            project_id,
        )
        # Remaining children cascade through their foreign keys.
        await self.db.execute("DELETE FROM projects WHERE id = $1", project_id)


class PostgresAreaRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def add(self, area: dict) -> None:
        await self.db.execute(
            "INSERT INTO areas (id, project_id, type, label, created_at) VALUES ($1, $2, $3, $4, $5)",
            area["id"], area["projectId"], area["type"], area["label"], ts(area["createdAt"]),
        )

    async def get_by_id(self, area_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM areas WHERE id = $1", area_id)
        return area_from_row(row) if row else None

    async def list_all(self, project_id: str | None = None) -> list[dict]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT * FROM areas WHERE project_id = $1 ORDER BY created_at, id", project_id
            )
        else:
            rows = await self.db.fetch("SELECT * FROM areas ORDER BY created_at, id")
        return [area_from_row(r) for r in rows]
