"""Domain errors raised by the store and the session service."""
from __future__ import annotations


class FieldCaptureError(Exception):
    """Base class for domain errors."""


class NotFoundError(FieldCaptureError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConsentRequiredError(FieldCaptureError):
    """Meeting recordings require recorded participant consent."""


class InvalidSessionTransition(FieldCaptureError):
    def __init__(self, session_id: str, current: str, target: str):
        super().__init__(f"Session {session_id} cannot move from {current} to {target}")
        self.session_id = session_id
        self.current = current
        self.target = target


class SessionNotApprovedError(FieldCaptureError):
    """Meeting notes can only be dispatched after approval."""


class NotAMeetingError(FieldCaptureError):
    """Approval applies to meeting sessions only."""
