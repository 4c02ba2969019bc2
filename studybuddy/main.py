"""FastAPI application: HTTP surface of the study-session scheduling engine."""

from __future__ import annotations

import logging
import random

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse

from studybuddy.config import settings
from studybuddy.domain.errors import SchedulingError
from studybuddy.domain.models import (
    AddAttendeeRequest,
    ConflictAnalysis,
    ConflictCheckRequest,
    CreateSessionRequest,
    Requester,
    RsvpRequest,
    Session,
    SessionPatch,
    SessionStatus,
    StatusChangeRequest,
)
from studybuddy.repos.memory import GroupRepository, InMemoryDatabase, SessionRepository
from studybuddy.services.scheduling import SchedulingCoordinator

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="StudyBuddy Scheduling Service")

# ── Singletons (created at import time for simplicity) ────────────────
db = InMemoryDatabase()
session_repo = SessionRepository(db)
group_repo = GroupRepository(db)

coordinator = SchedulingCoordinator(
    sessions=session_repo,
    groups=group_repo,
    history=session_repo,
    uow=db,
    policy=settings.scheduling_policy(),
    rng=random.Random(settings.balancer_seed) if settings.balancer_seed is not None else None,
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _requester(user_id: str, role: str | None) -> Requester:
    return Requester(user_id=user_id, is_admin=(role or "").lower() == "admin")


# ── Routes ────────────────────────────────────────────────────────────


@app.post("/groups/{group_id}/sessions", response_model=Session, status_code=201)
def create_session(
    group_id: str,
    body: CreateSessionRequest,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    """Schedule a new session in the group on behalf of the caller."""
    return coordinator.create_session(group_id, body, _requester(x_user_id, x_user_role))


@app.get("/groups/{group_id}/sessions", response_model=list[Session])
def list_group_sessions(
    group_id: str,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> list[Session]:
    return coordinator.list_group_sessions(group_id, _requester(x_user_id, x_user_role))


@app.get("/sessions/upcoming", response_model=list[Session])
def list_upcoming_sessions(
    limit: int | None = Query(default=None),
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> list[Session]:
    """Next scheduled sessions from the caller's groups or that they attend."""
    return coordinator.list_upcoming(_requester(x_user_id, x_user_role), limit=limit)


@app.get("/sessions/range", response_model=list[Session])
def list_sessions_by_date_range(
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    group_id: str | None = Query(default=None),
    status: SessionStatus | None = Query(default=None),
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> list[Session]:
    return coordinator.list_by_date_range(
        _requester(x_user_id, x_user_role), start, end, group_id=group_id, status=status
    )


@app.get("/sessions/{session_id}", response_model=Session)
def get_session(session_id: str) -> Session:
    return coordinator.get_session(session_id)


@app.put("/sessions/{session_id}", response_model=Session)
def update_session(
    session_id: str,
    body: SessionPatch,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    """Edit a session; changing the time re-runs the conflict check."""
    return coordinator.update_session(session_id, body, _requester(x_user_id, x_user_role))


@app.delete("/sessions/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Response:
    coordinator.delete_session(session_id, _requester(x_user_id, x_user_role))
    return Response(status_code=204)


@app.put("/sessions/{session_id}/rsvp", response_model=Session)
def rsvp_to_session(
    session_id: str,
    body: RsvpRequest,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    return coordinator.rsvp(session_id, _requester(x_user_id, x_user_role), body.status)


@app.post("/sessions/{session_id}/status", response_model=Session)
def change_session_status(
    session_id: str,
    body: StatusChangeRequest,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    return coordinator.change_status(session_id, body.status, _requester(x_user_id, x_user_role))


@app.post("/sessions/{session_id}/attendees", response_model=Session)
def add_attendee(
    session_id: str,
    body: AddAttendeeRequest,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    return coordinator.add_attendee(
        session_id, body.user_id, _requester(x_user_id, x_user_role), body.rsvp_status
    )


@app.delete("/sessions/{session_id}/attendees/{user_id}", response_model=Session)
def remove_attendee(
    session_id: str,
    user_id: str,
    x_user_id: str = Header(...),
    x_user_role: str | None = Header(default=None),
) -> Session:
    return coordinator.remove_attendee(session_id, user_id, _requester(x_user_id, x_user_role))


@app.post("/conflicts/check", response_model=ConflictAnalysis)
def check_conflict(body: ConflictCheckRequest) -> ConflictAnalysis:
    """Report true conflicts and buffer near misses for a proposed slot."""
    return coordinator.check_conflict(
        body.user_id, body.start, body.duration, body.exclude_session_id
    )
