"""Domain models for the study-session scheduling engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class SessionStatus(StrEnum):
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({SessionStatus.SCHEDULED, SessionStatus.ONGOING})

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.ONGOING, SessionStatus.CANCELLED}),
    SessionStatus.ONGOING: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


class RsvpStatus(StrEnum):
    GOING = "going"
    MAYBE = "maybe"
    NOT_GOING = "not-going"
    # Set by the system for explicit invitees and auto-assigned members;
    # users answer with one of the three values above.
    INVITED = "invited"


USER_RSVP_CHOICES = frozenset({RsvpStatus.GOING, RsvpStatus.MAYBE, RsvpStatus.NOT_GOING})


class OverlapKind(StrEnum):
    OVERLAP = "overlap"
    CONTAINS = "contains"
    CONTAINED = "contained"


class MemberRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Attendee(BaseModel):
    user_id: str
    rsvp_status: RsvpStatus = RsvpStatus.NOT_GOING
    joined_at: datetime = Field(default_factory=_utcnow)


def dedupe_attendees(attendees: list[Attendee]) -> list[Attendee]:
    """Collapse entries sharing a user id.

    The last entry for a user wins, but it takes the slot where that user
    first appeared so the list order stays stable.
    """
    latest: dict[str, Attendee] = {}
    for attendee in attendees:
        latest[attendee.user_id] = attendee
    return list(latest.values())


class Session(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    group_id: str
    title: str = Field(default="Study session", min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    location: str | None = None
    is_online: bool = False
    meeting_link: str | None = None
    notes: str | None = Field(default=None, max_length=5000)
    scheduled_start: datetime
    duration_minutes: int = Field(ge=30, le=480)
    status: SessionStatus = SessionStatus.SCHEDULED
    attendees: list[Attendee] = Field(default_factory=list)
    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("scheduled_start")
    @classmethod
    def _start_is_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("attendees")
    @classmethod
    def _unique_attendees(cls, value: list[Attendee]) -> list[Attendee]:
        return dedupe_attendees(value)

    @property
    def scheduled_end(self) -> datetime:
        return self.scheduled_start + timedelta(minutes=self.duration_minutes)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def attendee(self, user_id: str) -> Attendee | None:
        for entry in self.attendees:
            if entry.user_id == user_id:
                return entry
        return None

    def attendee_ids(self) -> list[str]:
        return [a.user_id for a in self.attendees]


class GroupPolicy(BaseModel):
    prefer_weekdays: bool = False


class GroupMember(BaseModel):
    user_id: str
    role: MemberRole = MemberRole.MEMBER


class Group(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    members: list[GroupMember] = Field(default_factory=list)
    preferences: GroupPolicy = Field(default_factory=GroupPolicy)
    session_ids: list[str] = Field(default_factory=list)


class Requester(BaseModel):
    """Identity of the caller, as resolved by the authentication layer."""

    user_id: str
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


class Interval(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: int


class ConflictDetail(BaseModel):
    session_id: str
    title: str
    group_id: str
    start: datetime
    end: datetime
    status: SessionStatus
    classification: OverlapKind
    overlap_minutes: float
    gap_minutes: float = 0.0
    time_until_available: datetime


class ConflictAnalysis(BaseModel):
    proposed: Interval
    buffer_minutes: int
    conflicts: list[ConflictDetail] = Field(default_factory=list)
    near_misses: list[ConflictDetail] = Field(default_factory=list)

    @computed_field
    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)


class LoadBalanceResult(BaseModel):
    selected_user_ids: list[str] = Field(default_factory=list)
    per_user_session_count: dict[str, int] = Field(default_factory=dict)
    eligible_user_ids: list[str] = Field(default_factory=list)


class TimeValidation(BaseModel):
    valid: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class AttendeeInput(BaseModel):
    user_id: str
    rsvp_status: RsvpStatus = RsvpStatus.INVITED


class CreateSessionRequest(BaseModel):
    # Presence of the two scheduling fields is checked by the coordinator so
    # it can answer with MissingFields rather than a generic validation error.
    scheduled_date: datetime | str | None = None
    duration: int | None = None
    title: str = Field(default="Study session", min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    location: str | None = None
    is_online: bool = False
    meeting_link: str | None = None
    notes: str | None = Field(default=None, max_length=5000)
    attendees: list[AttendeeInput] = Field(default_factory=list)
    auto_assign: bool = False


class SessionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scheduled_date: datetime | str | None = None
    duration: int | None = None
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    location: str | None = None
    is_online: bool | None = None
    meeting_link: str | None = None
    notes: str | None = Field(default=None, max_length=5000)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)

    @property
    def touches_time(self) -> bool:
        fields = self.model_fields_set
        return "scheduled_date" in fields or "duration" in fields


class RsvpRequest(BaseModel):
    status: RsvpStatus


class StatusChangeRequest(BaseModel):
    status: SessionStatus


class AddAttendeeRequest(BaseModel):
    user_id: str
    rsvp_status: RsvpStatus = RsvpStatus.INVITED


class ConflictCheckRequest(BaseModel):
    user_id: str | None = None
    start: datetime | str | None = None
    duration: int | None = None
    exclude_session_id: str | None = None
