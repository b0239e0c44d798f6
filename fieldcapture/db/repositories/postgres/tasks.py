"""PostgreSQL implementation of TaskRepository and EvidenceLinkRepository."""
from __future__ import annotations

import asyncpg

from fieldcapture.db.repositories.base import (
    dump_json,
    evidence_link_from_row,
    task_from_row,
    ts,
)


class PostgresTaskRepository:
    """PostgreSQL-backed task storage."""

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, task: dict) -> None:
        query = """
            INSERT INTO tasks (
                id, project_id, area_id, area_type, title, description,
                status, priority, due_date, tags_json, created_by,
                confidence, session_id, external_id, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            ON CONFLICT(id) DO UPDATE SET
                area_id=EXCLUDED.area_id, area_type=EXCLUDED.area_type,
                title=EXCLUDED.title, description=EXCLUDED.description,
                status=EXCLUDED.status, priority=EXCLUDED.priority,
                due_date=EXCLUDED.due_date, tags_json=EXCLUDED.tags_json,
                confidence=EXCLUDED.confidence, updated_at=EXCLUDED.updated_at
        """
        await self.db.execute(
            query,
            task["id"], task["projectId"],
            task.get("areaId"),
            task.get("areaType"),
            task.get("title", ""),
            task.get("description", ""),
            task.get("status", "open"),
            task.get("priority", "medium"),
            ts(task.get("dueDate")),
            dump_json(task.get("tags") or []),
            task.get("createdBy", "user"),
            task.get("confidence"),
            task.get("sessionId"),
            task.get("externalId"),
            ts(task["createdAt"]),
            ts(task["updatedAt"]),
        )

    async def get_by_id(self, task_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM tasks WHERE id = $1", task_id)
        return task_from_row(row) if row else None

    async def get_by_external_id(self, session_id: str, external_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM tasks WHERE session_id = $1 AND external_id = $2",
            session_id, external_id,
        )
        return task_from_row(row) if row else None

    async def list_all(
        self,
        project_id: str | None = None,
        status: str | None = None,
        priority: str | None = None,
    ) -> list[dict]:
        clauses: list[str] = []
        params: list[str] = []
        for column, value in (("project_id", project_id), ("status", status), ("priority", priority)):
            if value:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.db.fetch(f"SELECT * FROM tasks {where} ORDER BY updated_at DESC", *params)
        return [task_from_row(r) for r in rows]

    async def delete(self, task_id: str) -> None:
        await self.db.execute("DELETE FROM evidence_links WHERE task_id = $1", task_id)
        await self.db.execute("DELETE FROM tasks WHERE id = $1", task_id)


class PostgresEvidenceLinkRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def add(self, link: dict) -> None:
        await self.db.execute(
            """INSERT INTO evidence_links (
                id, task_id, target_type, target_id,
                link_type, link_score, created_by, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)""",
            link["id"],
            link["taskId"],
            link["targetType"],
            link["targetId"],
            link.get("linkType", "suggested"),
            link.get("linkScore", 0.5),
            link.get("createdBy", "system"),
            ts(link["createdAt"]),
        )

    async def get_by_id(self, link_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM evidence_links WHERE id = $1", link_id)
        return evidence_link_from_row(row) if row else None

    async def find(self, task_id: str, target_type: str, target_id: str) -> dict | None:
        row = await self.db.fetchrow(
            """SELECT * FROM evidence_links
               WHERE task_id = $1 AND target_type = $2 AND target_id = $3""",
            task_id, target_type, target_id,
        )
        return evidence_link_from_row(row) if row else None

    async def list_all(self, task_id: str | None = None) -> list[dict]:
        if task_id:
            rows = await self.db.fetch(
                "SELECT * FROM evidence_links WHERE task_id = $1 ORDER BY seq", task_id
            )
        else:
            rows = await self.db.fetch("SELECT * FROM evidence_links ORDER BY seq")
        return [evidence_link_from_row(r) for r in rows]

    async def delete(self, link_id: str) -> None:
        await self.db.execute("DELETE FROM evidence_links WHERE id = $1", link_id)
