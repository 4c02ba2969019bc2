"""Interval arithmetic used by conflict detection."""

from __future__ import annotations

from datetime import datetime, timedelta

from studybuddy.domain.models import OverlapKind


def end_of(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def expand_with_buffer(
    start: datetime, end: datetime, buffer_minutes: int
) -> tuple[datetime, datetime]:
    """Widen ``[start, end]`` by the buffer on both sides."""
    buffer = timedelta(minutes=buffer_minutes)
    return start - buffer, end + buffer


def overlap_minutes(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> float:
    """Length of the intersection of A and B in minutes; 0 when disjoint or touching."""
    overlap = min(a_end, b_end) - max(a_start, b_start)
    return max(0.0, overlap.total_seconds() / 60)


def gap_minutes(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> float:
    """Distance between A and B in minutes; 0 when they touch or overlap."""
    gap = max(a_start, b_start) - min(a_end, b_end)
    return max(0.0, gap.total_seconds() / 60)


def classify(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> OverlapKind:
    """Describe how interval B relates to interval A.

    ``CONTAINED`` when B encloses A, ``CONTAINS`` when A encloses B,
    ``OVERLAP`` otherwise. Identical intervals are ``OVERLAP`` so that
    ``classify(A, B) == CONTAINS`` exactly when ``classify(B, A) == CONTAINED``.
    """
    if (a_start, a_end) == (b_start, b_end):
        return OverlapKind.OVERLAP
    if b_start <= a_start and a_end <= b_end:
        return OverlapKind.CONTAINED
    if a_start <= b_start and b_end <= a_end:
        return OverlapKind.CONTAINS
    return OverlapKind.OVERLAP
