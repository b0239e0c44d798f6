"""API router for tasks and their evidence links."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from fieldcapture.errors import FieldCaptureError
from fieldcapture.models import (
    AreaType,
    EvidenceLink,
    EvidenceTargetType,
    LinkType,
    TaskItem,
    TaskPriority,
    TaskStatus,
)
from fieldcapture.routers.common import get_store, http_error

tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class TaskCreate(BaseModel):
    projectId: str
    title: str
    description: str = ""
    status: TaskStatus = "open"
    priority: TaskPriority = "medium"
    tags: list[str] = Field(default_factory=list)
    areaId: Optional[str] = None
    areaType: Optional[AreaType] = None
    dueDate: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    tags: Optional[list[str]] = None
    areaId: Optional[str] = None
    areaType: Optional[AreaType] = None
    dueDate: Optional[datetime] = None


class EvidenceCreate(BaseModel):
    targetType: EvidenceTargetType
    targetId: str
    linkType: LinkType = "strong"
    linkScore: float = Field(1.0, ge=0.0, le=1.0)


@tasks_router.get("", response_model=list[TaskItem])
async def list_tasks(
    request: Request,
    projectId: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
):
    return await get_store(request).list_tasks(projectId, status, priority)


@tasks_router.post("", response_model=TaskItem, status_code=201)
async def create_task(request: Request, body: TaskCreate):
    """Create a user task; project counters move with it."""
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="Task title is required")
    try:
        return await get_store(request).add_task(
            project_id=body.projectId,
            title=body.title.strip(),
            description=body.description,
            status=body.status,
            priority=body.priority,
            tags=body.tags,
            area_id=body.areaId,
            area_type=body.areaType,
            due_date=body.dueDate,
            created_by="user",
        )
    except FieldCaptureError as e:
        raise http_error(e)


@tasks_router.get("/{task_id}", response_model=TaskItem)
async def get_task(request: Request, task_id: str):
    task = await get_store(request).get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@tasks_router.put("/{task_id}", response_model=TaskItem)
async def update_task(request: Request, task_id: str, body: TaskUpdate):
    try:
        return await get_store(request).update_task(task_id, **body.model_dump(exclude_none=True))
    except FieldCaptureError as e:
        raise http_error(e)


@tasks_router.delete("/{task_id}")
async def delete_task(request: Request, task_id: str):
    """Delete a task together with its evidence links."""
    try:
        await get_store(request).delete_task(task_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {"status": "deleted", "taskId": task_id}


@tasks_router.get("/{task_id}/evidence", response_model=list[EvidenceLink])
async def list_task_evidence(request: Request, task_id: str):
    return await get_store(request).list_evidence_links(task_id)


@tasks_router.post("/{task_id}/evidence", response_model=EvidenceLink, status_code=201)
async def add_task_evidence(request: Request, task_id: str, body: EvidenceCreate):
    store = get_store(request)
    if not await store.get_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return await store.add_evidence_link(
        task_id=task_id,
        target_type=body.targetType,
        target_id=body.targetId,
        link_type=body.linkType,
        link_score=body.linkScore,
        created_by="user",
    )


@tasks_router.delete("/evidence/{link_id}")
async def remove_evidence(request: Request, link_id: str):
    if not await get_store(request).remove_evidence_link(link_id):
        raise HTTPException(status_code=404, detail=f"Evidence link {link_id} not found")
    return {"status": "deleted", "linkId": link_id}
