"""SQLite implementation of TaskRepository and EvidenceLinkRepository."""
from __future__ import annotations

from fieldcapture.db.repositories.base import (
    SqliteRepository,
    dump_json,
    evidence_link_from_row,
    task_from_row,
    ts,
)


class SqliteTaskRepository(SqliteRepository):
    """SQLite-backed task storage."""

    async def upsert(self, task: dict) -> None:
        await self.db.execute(
            """INSERT INTO tasks (
                id, project_id, area_id, area_type, title, description,
                status, priority, due_date, tags_json, created_by,
                confidence, session_id, external_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                area_id=excluded.area_id, area_type=excluded.area_type,
                title=excluded.title, description=excluded.description,
                status=excluded.status, priority=excluded.priority,
                due_date=excluded.due_date, tags_json=excluded.tags_json,
                confidence=excluded.confidence, updated_at=excluded.updated_at
            """,
            (
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
            ),
        )
        await self._commit()

    async def get_by_id(self, task_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return task_from_row(row) if row else None

    async def get_by_external_id(self, session_id: str, external_id: str) -> dict | None:
        row = await self._fetchone(
            "SELECT * FROM tasks WHERE session_id = ? AND external_id = ?",
            (session_id, external_id),
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
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if priority:
            clauses.append("priority = ?")
            params.append(priority)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"SELECT * FROM tasks {where} ORDER BY updated_at DESC", tuple(params)
        )
        return [task_from_row(r) for r in rows]

    async def delete(self, task_id: str) -> None:
        await self.db.execute("DELETE FROM evidence_links WHERE task_id = ?", (task_id,))
        await self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        await self._commit()


class SqliteEvidenceLinkRepository(SqliteRepository):
    """Task ↔ evidence join rows."""

    async def add(self, link: dict) -> None:
        await self.db.execute(
            """INSERT INTO evidence_links (
                id, task_id, target_type, target_id,
                link_type, link_score, created_by, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                link["id"],
                link["taskId"],
                link["targetType"],
                link["targetId"],
                link.get("linkType", "suggested"),
                link.get("linkScore", 0.5),
                link.get("createdBy", "system"),
                ts(link["createdAt"]),
            ),
        )
        await self._commit()

    async def get_by_id(self, link_id: str) -> dict | None:
        row = await self._fetchone("SELECT * FROM evidence_links WHERE id = ?", (link_id,))
        return evidence_link_from_row(row) if row else None

    async def find(self, task_id: str, target_type: str, target_id: str) -> dict | None:
        row = await self._fetchone(
            """SELECT * FROM evidence_links
               WHERE task_id = ? AND target_type = ? AND target_id = ?""",
            (task_id, target_type, target_id),
        )
        return evidence_link_from_row(row) if row else None

    async def list_all(self, task_id: str | None = None) -> list[dict]:
        if task_id:
            rows = await self._fetchall(
                "SELECT * FROM evidence_links WHERE task_id = ? ORDER BY rowid", (task_id,)
            )
        else:
            rows = await self._fetchall("SELECT * FROM evidence_links ORDER BY rowid")
        return [evidence_link_from_row(r) for r in rows]

    async def delete(self, link_id: str) -> None:
        await self.db.execute("DELETE FROM evidence_links WHERE id = ?", (link_id,))
        await self._commit()
