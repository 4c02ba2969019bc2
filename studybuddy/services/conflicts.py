"""Service for detecting scheduling conflicts between a user's sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from dateutil.parser import isoparse

from studybuddy.config import SchedulingPolicy
from studybuddy.domain.errors import InvalidInput, SchedulingError, StorageFailure
from studybuddy.domain.models import (
    ConflictAnalysis,
    ConflictDetail,
    Interval,
    Session,
    as_utc,
)
from studybuddy.repos.base import SessionStore
from studybuddy.services.intervals import (
    classify,
    end_of,
    expand_with_buffer,
    gap_minutes,
    overlap_minutes,
)

logger = logging.getLogger(__name__)


def parse_instant(value: datetime | str | None) -> datetime:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime."""
    if value is None or value == "":
        raise InvalidInput("A start time is required")
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise InvalidInput(f"Invalid start time provided: {value!r}")
    try:
        return as_utc(isoparse(value.strip()))
    except (ValueError, OverflowError) as exc:
        raise InvalidInput(f"Invalid start time provided: {value!r}") from exc


class ConflictDetector:
    """Finds the sessions that block a user from taking a proposed slot.

    A candidate is fetched when it falls anywhere inside the buffered window,
    but only a real overlap counts as a conflict. Candidates that sit inside
    the buffer without overlapping are returned as near misses.
    """

    def __init__(self, sessions: SessionStore, policy: SchedulingPolicy) -> None:
        self.sessions = sessions
        self.policy = policy

    def detect(
        self,
        user_id: str | None,
        proposed_start: datetime | str | None,
        duration_minutes: int | None,
        exclude_session_id: str | None = None,
    ) -> ConflictAnalysis:
        if not user_id:
            raise InvalidInput("A user id is required for a conflict check")
        if duration_minutes is None:
            raise InvalidInput("A duration is required for a conflict check")
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise InvalidInput(f"Duration must be a whole number of minutes: {duration_minutes!r}")
        if duration_minutes <= 0:
            raise InvalidInput("Duration must be positive")
        start = parse_instant(proposed_start)
        end = end_of(start, duration_minutes)
        buffer = self.policy.buffer_minutes
        window_start, window_end = expand_with_buffer(start, end, buffer)

        try:
            candidates = self.sessions.find_by_user_and_window(
                user_id, window_start, window_end, exclude_session_id
            )
        except SchedulingError:
            raise
        except Exception as exc:
            logger.error("Session lookup failed for user %s", user_id, exc_info=True)
            raise StorageFailure("Error checking scheduling conflict") from exc

        conflicts: list[ConflictDetail] = []
        near_misses: list[ConflictDetail] = []
        for session in candidates:
            if exclude_session_id and session.id == exclude_session_id:
                continue
            existing_start, existing_end = session.scheduled_start, session.scheduled_end
            overlap = overlap_minutes(start, end, existing_start, existing_end)
            gap = gap_minutes(start, end, existing_start, existing_end)
            if overlap > 0:
                conflicts.append(self._describe(session, start, end, overlap, gap))
            elif gap < buffer:
                near_misses.append(self._describe(session, start, end, overlap, gap))

        conflicts.sort(key=lambda d: d.start)
        near_misses.sort(key=lambda d: d.start)
        logger.debug(
            "Conflict check for %s at %s (%d min): %d conflicts, %d near misses",
            user_id,
            start.isoformat(),
            duration_minutes,
            len(conflicts),
            len(near_misses),
        )
        return ConflictAnalysis(
            proposed=Interval(start=start, end=end, duration_minutes=duration_minutes),
            buffer_minutes=buffer,
            conflicts=conflicts,
            near_misses=near_misses,
        )

    def _describe(
        self,
        session: Session,
        start: datetime,
        end: datetime,
        overlap: float,
        gap: float,
    ) -> ConflictDetail:
        existing_start, existing_end = session.scheduled_start, session.scheduled_end
        return ConflictDetail(
            session_id=session.id,
            title=session.title,
            group_id=session.group_id,
            start=existing_start,
            end=existing_end,
            status=session.status,
            classification=classify(start, end, existing_start, existing_end),
            overlap_minutes=round(overlap, 1),
            gap_minutes=round(gap, 1),
            time_until_available=existing_end + timedelta(minutes=self.policy.buffer_minutes),
        )
