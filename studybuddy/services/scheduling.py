"""Orchestration of the study-session lifecycle.

``SchedulingCoordinator`` is the entry point used by the HTTP layer. It runs
the time and conflict checks, builds attendee lists, and writes sessions and
group references together in one transaction.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

from studybuddy.config import SchedulingPolicy
from studybuddy.domain.errors import (
    InvalidInput,
    InvalidSessionTime,
    InvalidStatusTransition,
    MissingFields,
    NotAuthorized,
    SchedulingConflict,
    SchedulingError,
    SessionImmutable,
    SessionNotFound,
    StorageFailure,
)
from studybuddy.domain.models import (
    ALLOWED_TRANSITIONS,
    USER_RSVP_CHOICES,
    Attendee,
    AttendeeInput,
    ConflictAnalysis,
    CreateSessionRequest,
    Requester,
    RsvpStatus,
    Session,
    SessionPatch,
    SessionStatus,
    as_utc,
)
from studybuddy.repos.base import GroupStore, SessionHistoryProvider, SessionStore, UnitOfWork
from studybuddy.services.balancer import AssignmentBalancer
from studybuddy.services.conflicts import ConflictDetector, parse_instant
from studybuddy.services.locks import LockRegistry, group_key, user_key
from studybuddy.services.time_validation import TimeValidator

logger = logging.getLogger(__name__)

# Patch fields that map straight onto Session attributes.
_PLAIN_FIELDS = ("title", "description", "location", "is_online", "meeting_link", "notes")
_REQUIRED_PLAIN_FIELDS = frozenset({"title", "is_online"})


class SchedulingCoordinator:
    def __init__(
        self,
        sessions: SessionStore,
        groups: GroupStore,
        history: SessionHistoryProvider,
        uow: UnitOfWork,
        policy: SchedulingPolicy,
        rng: random.Random | None = None,
        locks: LockRegistry | None = None,
    ) -> None:
        self.sessions = sessions
        self.groups = groups
        self.uow = uow
        self.policy = policy
        self.detector = ConflictDetector(sessions, policy)
        self.time_validator = TimeValidator(groups, policy)
        self.balancer = AssignmentBalancer(history, policy, rng)
        self.locks = locks or LockRegistry()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        """Re-raise collaborator errors as StorageFailure; typed errors pass through."""
        try:
            yield
        except SchedulingError:
            raise
        except Exception as exc:
            logger.error("Storage failure while %s", action, exc_info=True)
            raise StorageFailure(f"Storage failure while {action}") from exc

    def _check_duration(self, duration: Any) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise InvalidInput(f"Duration must be a whole number of minutes: {duration!r}")
        low, high = self.policy.min_duration_minutes, self.policy.max_duration_minutes
        if not low <= duration <= high:
            raise InvalidInput(
                f"Duration must be between {low} and {high} minutes",
                {"duration": duration, "min": low, "max": high},
            )
        return duration

    def _members(self, group_id: str) -> list[str]:
        with self._storage("loading group membership"):
            return self.groups.get_membership(group_id)

    def _get(self, session_id: str) -> Session:
        with self._storage("loading session"):
            session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _require_editor(self, session: Session, requester: Requester) -> None:
        if requester.is_admin or requester.user_id == session.created_by:
            return
        with self._storage("loading group admins"):
            admins = self.groups.get_admin_ids(session.group_id)
        if requester.user_id not in admins:
            raise NotAuthorized("Not authorized to modify this session")

    @staticmethod
    def _require_mutable(session: Session) -> None:
        if session.is_terminal:
            raise SessionImmutable(session.id, session.status)

    @contextmanager
    def _current(self, session_id: str, action: str) -> Iterator[Session]:
        """Open a transaction and yield the session as stored at that point.

        Checks and the write made inside the block see no concurrent change.
        """
        with self._storage(action), self.uow.transaction():
            yield self._get(session_id)

    def _ensure_free(
        self,
        user_id: str,
        start: datetime,
        duration: int,
        exclude_session_id: str | None = None,
    ) -> ConflictAnalysis:
        analysis = self.detector.detect(user_id, start, duration, exclude_session_id)
        if analysis.has_conflict:
            logger.info(
                "Scheduling conflict for %s at %s: %s",
                user_id,
                start.isoformat(),
                [c.session_id for c in analysis.conflicts],
            )
            raise SchedulingConflict(analysis)
        return analysis

    def _build_attendees(
        self,
        creator_id: str,
        members: list[str],
        invitees: list[AttendeeInput],
    ) -> list[Attendee]:
        """Creator first as going, other members as not-going, then invitees.

        Later entries replace earlier ones for the same user, except that the
        creator always ends up going.
        """
        unknown = [i.user_id for i in invitees if i.user_id not in members and i.user_id != creator_id]
        if unknown:
            raise InvalidInput(
                "Invitees must be members of the group", {"user_ids": unknown}
            )
        attendees = [Attendee(user_id=creator_id, rsvp_status=RsvpStatus.GOING)]
        attendees += [
            Attendee(user_id=member_id, rsvp_status=RsvpStatus.NOT_GOING)
            for member_id in members
            if member_id != creator_id
        ]
        attendees += [Attendee(user_id=i.user_id, rsvp_status=i.rsvp_status) for i in invitees]
        return attendees

    def _auto_assign(self, group_id: str, creator_id: str, members: list[str]) -> list[Attendee]:
        candidates = [m for m in members if m != creator_id]
        if not candidates:
            return []
        result = self.balancer.balance(group_id, candidates)
        return [
            Attendee(user_id=user_id, rsvp_status=RsvpStatus.INVITED)
            for user_id in result.selected_user_ids
        ]

    def _visibility(self, requester: Requester) -> dict[str, Any]:
        """Scope for reads: the caller's groups plus sessions they attend."""
        if requester.is_admin:
            return {}
        with self._storage("loading user groups"):
            group_ids = self.groups.list_group_ids_for_user(requester.user_id)
        return {"group_ids": group_ids, "attendee_id": requester.user_id}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def check_conflict(
        self,
        user_id: str | None,
        start: datetime | str | None,
        duration: int | None,
        exclude_session_id: str | None = None,
    ) -> ConflictAnalysis:
        return self.detector.detect(user_id, start, duration, exclude_session_id)

    def get_session(self, session_id: str) -> Session:
        return self._get(session_id)

    def list_group_sessions(self, group_id: str, requester: Requester) -> list[Session]:
        members = self._members(group_id)
        if requester.user_id not in members and not requester.is_admin:
            raise NotAuthorized("You are not a member of this group")
        with self._storage("listing sessions"):
            return self.sessions.list_for_group(group_id)

    def list_upcoming(
        self,
        requester: Requester,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[Session]:
        """Next scheduled sessions visible to the requester, soonest first."""
        if limit is None:
            limit = self.policy.upcoming_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInput(f"Limit must be a positive whole number: {limit!r}")
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        scope = self._visibility(requester)
        with self._storage("listing upcoming sessions"):
            found = self.sessions.find_in_range(now, status=SessionStatus.SCHEDULED, **scope)
        return found[:limit]

    def list_by_date_range(
        self,
        requester: Requester,
        start: datetime | str | None,
        end: datetime | str | None = None,
        group_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        """Sessions starting between ``start`` and ``end``, inclusive.

        ``end`` defaults to ``default_range_days`` after ``start``; spans longer
        than ``max_range_days`` are rejected. With ``group_id`` the result is
        limited to that group and the requester must belong to it.
        """
        range_start = parse_instant(start)
        if end is None or end == "":
            range_end = range_start + timedelta(days=self.policy.default_range_days)
        else:
            range_end = parse_instant(end)
        if range_end < range_start:
            raise InvalidInput("End date must not be before start date")
        max_days = self.policy.max_range_days
        if range_end - range_start > timedelta(days=max_days):
            raise InvalidInput(
                f"Date range cannot exceed {max_days} days",
                {"start": range_start.isoformat(), "end": range_end.isoformat()},
            )

        if group_id:
            members = self._members(group_id)
            if requester.user_id not in members and not requester.is_admin:
                raise NotAuthorized("Not authorized to access sessions for this group")
            scope: dict[str, Any] = {"group_ids": [group_id]}
        else:
            scope = self._visibility(requester)
        with self._storage("listing sessions by date range"):
            return self.sessions.find_in_range(range_start, range_end, status=status, **scope)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_session(
        self,
        group_id: str,
        request: CreateSessionRequest,
        requester: Requester,
    ) -> Session:
        missing = [
            name
            for name, value in (("scheduled_date", request.scheduled_date), ("duration", request.duration))
            if value is None or value == ""
        ]
        if missing:
            raise MissingFields(missing)
        start = parse_instant(request.scheduled_date)
        duration = self._check_duration(request.duration)

        creator_id = requester.user_id
        members = self._members(group_id)
        if creator_id not in members and not requester.is_admin:
            raise NotAuthorized(
                "Not authorized to create sessions for this group. "
                "You must be a member of the group."
            )

        lock_keys = [user_key(creator_id)]
        if request.auto_assign:
            lock_keys.append(group_key(group_id))
        with self.locks.hold(lock_keys):
            self._ensure_free(creator_id, start, duration)

            with self._storage("loading group policy"):
                validation = self.time_validator.validate(start, group_id)
            if not validation.valid:
                raise InvalidSessionTime(validation.reason or "Invalid session time")

            attendees = self._build_attendees(creator_id, members, request.attendees)
            if request.auto_assign:
                attendees += self._auto_assign(group_id, creator_id, members)
            attendees.append(Attendee(user_id=creator_id, rsvp_status=RsvpStatus.GOING))

            session = Session(
                group_id=group_id,
                title=request.title,
                description=request.description,
                location=request.location,
                is_online=request.is_online,
                meeting_link=request.meeting_link,
                notes=request.notes,
                scheduled_start=start,
                duration_minutes=duration,
                attendees=attendees,
                created_by=creator_id,
            )
            with self._storage("saving session"), self.uow.transaction():
                created = self.sessions.create(session)
                self.groups.append_session_ref(group_id, created.id)

        logger.info(
            "Created session %s in group %s at %s (%d min, %d attendees)",
            created.id,
            group_id,
            start.isoformat(),
            duration,
            len(created.attendees),
        )
        return created

    def update_session(
        self,
        session_id: str,
        patch: SessionPatch,
        requester: Requester,
    ) -> Session:
        # The creator never changes, so this read only picks the lock.
        lock_keys = [user_key(self._get(session_id).created_by)] if patch.touches_time else []

        with self.locks.hold(lock_keys), self._current(session_id, "updating session") as session:
            self._require_editor(session, requester)
            self._require_mutable(session)

            changes = patch.changes()
            updates: dict[str, Any] = {}
            if "scheduled_date" in changes:
                updates["scheduled_start"] = parse_instant(changes["scheduled_date"])
            if "duration" in changes:
                updates["duration_minutes"] = self._check_duration(changes["duration"])
            for field in _PLAIN_FIELDS:
                if field not in changes:
                    continue
                if changes[field] is None and field in _REQUIRED_PLAIN_FIELDS:
                    raise InvalidInput(f"{field} cannot be cleared")
                updates[field] = changes[field]
            if not updates:
                return session

            if patch.touches_time:
                self._ensure_free(
                    session.created_by,
                    updates.get("scheduled_start", session.scheduled_start),
                    updates.get("duration_minutes", session.duration_minutes),
                    exclude_session_id=session.id,
                )
            updated = self.sessions.update(session_id, updates)

        if patch.touches_time:
            logger.info("Rescheduled session %s to %s", session_id, updated.scheduled_start.isoformat())
        return updated

    def delete_session(self, session_id: str, requester: Requester) -> None:
        with self._current(session_id, "deleting session") as session:
            self._require_editor(session, requester)
            self.sessions.delete(session_id)
            self.groups.remove_session_ref(session.group_id, session_id)
        logger.info("Deleted session %s from group %s", session_id, session.group_id)

    def rsvp(self, session_id: str, requester: Requester, status: RsvpStatus) -> Session:
        if status not in USER_RSVP_CHOICES:
            choices = ", ".join(sorted(USER_RSVP_CHOICES))
            raise InvalidInput(f"Invalid status. Must be one of: {choices}")
        with self._current(session_id, "saving rsvp") as session:
            if requester.user_id not in self.groups.get_membership(session.group_id):
                raise NotAuthorized("You are not a member of this group")
            if session.is_terminal:
                raise SessionImmutable(session.id, session.status)

            attendees = list(session.attendees)
            current = session.attendee(requester.user_id)
            if current is None:
                attendees.append(Attendee(user_id=requester.user_id, rsvp_status=status))
            else:
                attendees.append(current.model_copy(update={"rsvp_status": status}))
            return self.sessions.update(session_id, {"attendees": attendees})

    def add_attendee(
        self,
        session_id: str,
        user_id: str,
        requester: Requester,
        rsvp_status: RsvpStatus = RsvpStatus.INVITED,
    ) -> Session:
        with self._current(session_id, "adding attendee") as session:
            self._require_editor(session, requester)
            self._require_mutable(session)
            if user_id not in self.groups.get_membership(session.group_id):
                raise InvalidInput("Attendees must be members of the group", {"user_id": user_id})
            if user_id == session.created_by:
                rsvp_status = RsvpStatus.GOING
            attendees = session.attendees + [Attendee(user_id=user_id, rsvp_status=rsvp_status)]
            return self.sessions.update(session_id, {"attendees": attendees})

    def remove_attendee(self, session_id: str, user_id: str, requester: Requester) -> Session:
        with self._current(session_id, "removing attendee") as session:
            self._require_editor(session, requester)
            self._require_mutable(session)
            if user_id == session.created_by:
                raise InvalidInput("The session creator cannot be removed")
            if session.attendee(user_id) is None:
                raise InvalidInput("User is not an attendee of this session", {"user_id": user_id})
            attendees = [a for a in session.attendees if a.user_id != user_id]
            return self.sessions.update(session_id, {"attendees": attendees})

    def change_status(
        self,
        session_id: str,
        new_status: SessionStatus,
        requester: Requester,
    ) -> Session:
        with self._current(session_id, "changing session status") as session:
            self._require_editor(session, requester)
            self._require_mutable(session)
            previous = session.status
            if new_status not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidStatusTransition(previous, new_status)
            updated = self.sessions.update(session_id, {"status": new_status})
        logger.info("Session %s moved from %s to %s", session_id, previous, new_status)
        return updated
