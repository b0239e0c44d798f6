"""API router for projects and their areas."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from fieldcapture.errors import FieldCaptureError
from fieldcapture.models import Area, AreaType, Project, TaskItem
from fieldcapture.payload import area_label
from fieldcapture.routers.common import get_store, http_error

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


class ProjectCreate(BaseModel):
    name: str
    address: str = ""
    clientName: str = ""


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    clientName: Optional[str] = None


class AreaCreate(BaseModel):
    type: AreaType
    label: Optional[str] = None


@projects_router.get("", response_model=list[Project])
async def list_projects(request: Request):
    """List all projects, most recently updated first."""
    return await get_store(request).list_projects()


@projects_router.post("", response_model=Project)
async def add_project(request: Request, body: ProjectCreate):
    """Create a project along with its default areas."""
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Project name is required")
    store = get_store(request)
    return await store.add_project(body.name.strip(), body.address, body.clientName)


@projects_router.get("/{project_id}")
async def get_project(request: Request, project_id: str):
    """Project detail with every collection that belongs to it."""
    store = get_store(request)
    project = await store.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    sessions = await store.list_sessions(project_id)
    return {
        "project": project.model_dump(mode="json"),
        "areas": [a.model_dump(mode="json") for a in await store.list_areas(project_id)],
        "media": [m.model_dump(mode="json") for m in await store.list_media(project_id)],
        "audioNotes": [a.model_dump(mode="json") for a in await store.list_audio_notes(project_id)],
        "tasks": [t.model_dump(mode="json") for t in await store.list_tasks(project_id)],
        "sessions": [s.model_dump(mode="json") for s in sessions],
        "transcripts": [t.model_dump(mode="json") for t in await store.list_transcripts(project_id)],
    }


@projects_router.put("/{project_id}", response_model=Project)
async def update_project(request: Request, project_id: str, body: ProjectUpdate):
    try:
        return await get_store(request).update_project(project_id, **body.model_dump(exclude_none=True))
    except FieldCaptureError as e:
        raise http_error(e)


@projects_router.delete("/{project_id}")
async def delete_project(request: Request, project_id: str):
    """Delete a project and everything captured under it."""
    try:
        await get_store(request).delete_project(project_id)
    except FieldCaptureError as e:
        raise http_error(e)
    return {"status": "deleted", "projectId": project_id}


@projects_router.post("/{project_id}/areas", response_model=Area)
async def add_area(request: Request, project_id: str, body: AreaCreate):
    label = (body.label or "").strip() or area_label(body.type)
    try:
        return await get_store(request).add_area(project_id, body.type, label)
    except FieldCaptureError as e:
        raise http_error(e)


@projects_router.get("/{project_id}/tasks", response_model=list[TaskItem])
async def list_project_tasks(
    request: Request,
    project_id: str,
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
):
    return await get_store(request).list_tasks(project_id, status, priority)


@projects_router.post("/{project_id}/recount", response_model=Project)
async def recount_project(request: Request, project_id: str):
    """Rebuild mediaCount/taskCount/openTaskCount from the stored rows."""
    try:
        return await get_store(request).recompute_counters(project_id)
    except FieldCaptureError as e:
        raise http_error(e)
