"""API router for persisted app settings."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from fieldcapture.models import AppSettings
from fieldcapture.routers.common import get_store

settings_router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    wifiOnlyUpload: Optional[bool] = None
    autoSync: Optional[bool] = None
    webhookUrl: Optional[str] = None


@settings_router.get("", response_model=AppSettings)
async def get_settings(request: Request):
    return await get_store(request).get_settings()


@settings_router.put("", response_model=AppSettings)
async def update_settings(request: Request, body: SettingsUpdate):
    """Partial update; omitted fields keep their stored value."""
    updates = body.model_dump(exclude_none=True)
    if "webhookUrl" in updates:
        updates["webhookUrl"] = updates["webhookUrl"].strip()
    return await get_store(request).update_settings(**updates)
