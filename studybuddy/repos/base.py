"""Protocols for the stores the scheduling engine depends on.

Implementations hand back plain string user ids; any populated user objects
are flattened before they reach the engine.
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Protocol

from studybuddy.domain.models import GroupPolicy, Session, SessionStatus


class SessionStore(Protocol):
    def find_by_user_and_window(
        self,
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_id: str | None = None,
    ) -> list[Session]:
        """
        Active sessions the user attends that intersect the window.
        Sorted by start time.
        """
        ...

    def get(self, session_id: str) -> Session | None: ...

    def list_for_group(self, group_id: str) -> list[Session]: ...

    def find_in_range(
        self,
        start: datetime,
        end: datetime | None = None,
        *,
        group_ids: list[str] | None = None,
        attendee_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        """
        Sessions starting within [start, end] (open-ended when end is None),
        sorted by start time.

        When group_ids or attendee_id is given, only sessions in one of those
        groups or with an entry for that attendee are returned.
        """
        ...

    def create(self, session: Session) -> Session: ...

    def update(self, session_id: str, patch: dict[str, Any]) -> Session: ...

    def delete(self, session_id: str) -> None: ...


class GroupStore(Protocol):
    def get_membership(self, group_id: str) -> list[str]:
        """Member user ids. Raises GroupNotFound for an unknown group."""
        ...

    def get_admin_ids(self, group_id: str) -> list[str]: ...

    def list_group_ids_for_user(self, user_id: str) -> list[str]: ...

    def get_policy(self, group_id: str) -> GroupPolicy: ...

    def append_session_ref(self, group_id: str, session_id: str) -> None: ...

    def remove_session_ref(self, group_id: str, session_id: str) -> None: ...


class SessionHistoryProvider(Protocol):
    def count_by_user_in_group(self, group_id: str, user_ids: list[str]) -> dict[str, int]:
        """Sessions each user is committed to within the group."""
        ...


class UnitOfWork(Protocol):
    def transaction(self) -> AbstractContextManager[None]:
        """All store writes inside the block commit together or not at all.

        Reads made inside the block see the state left by previously committed
        blocks, and blocks do not interleave.
        """
        ...
