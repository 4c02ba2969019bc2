"""Typed errors raised by the scheduling engine.

Every rejection path raises a subclass of ``SchedulingError``; the HTTP layer
turns ``code``/``status_code``/``details`` into the response body.
"""

from __future__ import annotations

from typing import Any

from studybuddy.domain.models import ConflictAnalysis


class SchedulingError(Exception):
    code = "SCHEDULING_ERROR"
    status_code = 400
    recoverable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class MissingFields(SchedulingError):
    code = "MISSING_FIELDS"

    def __init__(self, fields: list[str]) -> None:
        super().__init__(
            f"Missing required fields: {', '.join(fields)}",
            {"fields": fields},
        )
        self.fields = fields


class InvalidInput(SchedulingError):
    code = "INVALID_INPUT"


class NotAuthorized(SchedulingError):
    code = "NOT_AUTHORIZED"
    status_code = 403


class GroupNotFound(SchedulingError):
    code = "GROUP_NOT_FOUND"
    status_code = 404

    def __init__(self, group_id: str) -> None:
        super().__init__(f"Group not found: {group_id}", {"group_id": group_id})
        self.group_id = group_id


class SessionNotFound(SchedulingError):
    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class InvalidSessionTime(SchedulingError):
    code = "INVALID_SESSION_TIME"
    recoverable = True


class SchedulingConflict(SchedulingError):
    code = "SCHEDULING_CONFLICT"
    status_code = 409
    recoverable = True

    def __init__(self, analysis: ConflictAnalysis) -> None:
        titles = ", ".join(f'"{c.title}"' for c in analysis.conflicts)
        super().__init__(
            f"Scheduling conflict with existing sessions: {titles}",
            analysis.model_dump(mode="json"),
        )
        self.analysis = analysis


class SessionImmutable(SchedulingError):
    code = "SESSION_IMMUTABLE"
    status_code = 409

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"Cannot modify a {status} session",
            {"session_id": session_id, "status": status},
        )


class InvalidStatusTransition(SchedulingError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move a session from {current} to {requested}",
            {"current": current, "requested": requested},
        )


class NoEligibleCandidates(SchedulingError):
    code = "NO_ELIGIBLE_CANDIDATES"
    status_code = 422


class StorageFailure(SchedulingError):
    code = "STORAGE_FAILURE"
    status_code = 500
