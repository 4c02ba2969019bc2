"""In-memory repositories for sessions and groups."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from studybuddy.domain.errors import GroupNotFound, SessionNotFound
from studybuddy.domain.models import (
    ACTIVE_STATUSES,
    Group,
    GroupPolicy,
    MemberRole,
    RsvpStatus,
    Session,
    SessionStatus,
)

_COMMITTED_RSVPS = frozenset({RsvpStatus.GOING, RsvpStatus.INVITED})


class InMemoryDatabase:
    """Backing dicts shared by the repositories, with snapshot transactions."""

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self.groups: dict[str, Group] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the block under the write lock; restore both tables on error.

        Nested transactions join the outermost one.
        """
        with self._lock:
            sessions, groups = copy.deepcopy(self.sessions), copy.deepcopy(self.groups)
            try:
                yield
            except BaseException:
                # Tables the block left untouched keep their live objects.
                if self.sessions != sessions:
                    self.sessions = sessions
                if self.groups != groups:
                    self.groups = groups
                raise

    def clear(self) -> None:
        with self._lock:
            self.sessions.clear()
            self.groups.clear()


class SessionRepository:
    """Dict-backed store for Session instances, keyed by id."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def get(self, session_id: str) -> Session | None:
        return self._db.sessions.get(session_id)

    def list_all(self) -> list[Session]:
        return list(self._db.sessions.values())

    def list_for_group(self, group_id: str) -> list[Session]:
        return sorted(
            [s for s in list(self._db.sessions.values()) if s.group_id == group_id],
            key=lambda s: s.scheduled_start,
        )

    def find_in_range(
        self,
        start: datetime,
        end: datetime | None = None,
        *,
        group_ids: list[str] | None = None,
        attendee_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        scoped = group_ids is not None or attendee_id is not None
        allowed_groups = set(group_ids or ())
        found = []
        for session in list(self._db.sessions.values()):
            if session.scheduled_start < start:
                continue
            if end is not None and session.scheduled_start > end:
                continue
            if status is not None and session.status != status:
                continue
            if scoped and not (
                session.group_id in allowed_groups
                or (attendee_id is not None and session.attendee(attendee_id) is not None)
            ):
                continue
            found.append(session)
        return sorted(found, key=lambda s: s.scheduled_start)

    def find_by_user_and_window(
        self,
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_id: str | None = None,
    ) -> list[Session]:
        found = []
        for session in list(self._db.sessions.values()):
            if session.id == exclude_id or session.status not in ACTIVE_STATUSES:
                continue
            entry = session.attendee(user_id)
            if entry is None or entry.rsvp_status == RsvpStatus.NOT_GOING:
                continue
            start, end = session.scheduled_start, session.scheduled_end
            starts_inside = window_start <= start <= window_end
            ends_inside = window_start <= end <= window_end
            spans = start <= window_start and end >= window_end
            if starts_inside or ends_inside or spans:
                found.append(session)
        return sorted(found, key=lambda s: s.scheduled_start)

    def create(self, session: Session) -> Session:
        self._db.sessions[session.id] = session
        return session

    def update(self, session_id: str, patch: dict[str, Any]) -> Session:
        session = self._db.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        # Validate on a copy so a rejected field leaves the stored session intact.
        updated = session.model_copy(deep=True)
        for field, value in patch.items():
            setattr(updated, field, value)
        updated.updated_at = datetime.now(timezone.utc)
        self._db.sessions[session_id] = updated
        return updated

    def delete(self, session_id: str) -> None:
        self._db.sessions.pop(session_id, None)

    def count_by_user_in_group(self, group_id: str, user_ids: list[str]) -> dict[str, int]:
        counts = {user_id: 0 for user_id in user_ids}
        for session in list(self._db.sessions.values()):
            if session.group_id != group_id or session.status == SessionStatus.CANCELLED:
                continue
            for entry in session.attendees:
                if entry.user_id in counts and entry.rsvp_status in _COMMITTED_RSVPS:
                    counts[entry.user_id] += 1
        return counts


class GroupRepository:
    """Dict-backed store for Group instances, keyed by id."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, group: Group) -> None:
        self._db.groups[group.id] = group

    def get(self, group_id: str) -> Group | None:
        return self._db.groups.get(group_id)

    def _require(self, group_id: str) -> Group:
        group = self._db.groups.get(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    def get_membership(self, group_id: str) -> list[str]:
        return [m.user_id for m in self._require(group_id).members]

    def get_admin_ids(self, group_id: str) -> list[str]:
        return [
            m.user_id
            for m in self._require(group_id).members
            if m.role == MemberRole.ADMIN
        ]

    def list_group_ids_for_user(self, user_id: str) -> list[str]:
        return [
            group.id
            for group in list(self._db.groups.values())
            if any(m.user_id == user_id for m in group.members)
        ]

    def get_policy(self, group_id: str) -> GroupPolicy:
        return self._require(group_id).preferences

    def append_session_ref(self, group_id: str, session_id: str) -> None:
        group = self._require(group_id)
        if session_id not in group.session_ids:
            group.session_ids.append(session_id)

    def remove_session_ref(self, group_id: str, session_id: str) -> None:
        group = self._require(group_id)
        if session_id in group.session_ids:
            group.session_ids.remove(session_id)
