"""Shared lookups of lifespan-managed services and domain error mapping."""
from __future__ import annotations

from fastapi import HTTPException, Request

from fieldcapture.errors import (
    ConsentRequiredError,
    FieldCaptureError,
    InvalidSessionTransition,
    NotAMeetingError,
    NotFoundError,
    SessionNotApprovedError,
)


def _get_state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if not value:
        raise HTTPException(status_code=503, detail=f"{label} not initialized")
    return value


def get_store(request: Request):
    return _get_state(request, "store", "Store")


def get_session_service(request: Request):
    return _get_state(request, "session_service", "Session service")


def get_dispatcher(request: Request):
    return _get_state(request, "dispatcher", "Webhook dispatcher")


def get_ingestor(request: Request):
    return _get_state(request, "ingestor", "Result ingestor")


def get_retry_coordinator(request: Request):
    return _get_state(request, "retry_coordinator", "Retry coordinator")


def http_error(exc: FieldCaptureError) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConsentRequiredError, NotAMeetingError, SessionNotApprovedError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, InvalidSessionTransition):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
