"""Tests for interval arithmetic."""

from datetime import datetime, timedelta, timezone

import pytest

from studybuddy.domain.models import OverlapKind
from studybuddy.services.intervals import (
    classify,
    end_of,
    expand_with_buffer,
    gap_minutes,
    overlap_minutes,
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def test_end_of_adds_duration():
    assert end_of(_at(10), 90) == _at(11, 30)


def test_expand_with_buffer_widens_both_sides():
    """The search window grows by the buffer before the start and after the end."""
    start, end = expand_with_buffer(_at(10), _at(11), 15)
    assert start == _at(9, 45)
    assert end == _at(11, 15)


def test_overlap_minutes_partial():
    assert overlap_minutes(_at(10), _at(11), _at(10, 30), _at(11, 30)) == 30


def test_overlap_minutes_touching_is_zero():
    """Back-to-back intervals share a boundary but do not overlap."""
    assert overlap_minutes(_at(10), _at(11), _at(11), _at(12)) == 0


def test_overlap_minutes_disjoint_is_zero():
    assert overlap_minutes(_at(10), _at(11), _at(13), _at(14)) == 0


def test_overlap_minutes_is_symmetric():
    a = (_at(9), _at(12))
    b = (_at(10, 15), _at(10, 45))
    assert overlap_minutes(*a, *b) == overlap_minutes(*b, *a) == 30


def test_gap_minutes():
    assert gap_minutes(_at(10), _at(11), _at(11, 16), _at(12)) == 16
    assert gap_minutes(_at(11, 16), _at(12), _at(10), _at(11)) == 16
    assert gap_minutes(_at(10), _at(11), _at(10, 30), _at(12)) == 0


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


def test_classify_contained():
    """B encloses A -> contained."""
    assert classify(_at(10), _at(11), _at(9), _at(12)) == OverlapKind.CONTAINED


def test_classify_contains():
    """A encloses B -> contains."""
    assert classify(_at(9), _at(12), _at(10), _at(11)) == OverlapKind.CONTAINS


def test_classify_partial_overlap():
    assert classify(_at(10), _at(11), _at(10, 30), _at(11, 30)) == OverlapKind.OVERLAP


def test_classify_identical_intervals_is_overlap():
    assert classify(_at(10), _at(11), _at(10), _at(11)) == OverlapKind.OVERLAP


def test_classify_shared_start_longer_b_is_contained():
    assert classify(_at(10), _at(11), _at(10), _at(12)) == OverlapKind.CONTAINED


_PAIRS = [
    ((_at(10), _at(11)), (_at(9), _at(12))),
    ((_at(10), _at(11)), (_at(10), _at(12))),
    ((_at(10), _at(12)), (_at(11), _at(12))),
    ((_at(10), _at(11)), (_at(10, 30), _at(11, 30))),
    ((_at(10), _at(11)), (_at(10), _at(11))),
    ((_at(10), _at(11)), (_at(14), _at(15))),
]


@pytest.mark.parametrize("a, b", _PAIRS)
def test_classify_contains_mirrors_contained(a, b):
    """contains(A, B) holds exactly when contained(B, A) does."""
    forward = classify(*a, *b)
    backward = classify(*b, *a)
    assert forward in set(OverlapKind)
    assert (forward == OverlapKind.CONTAINS) == (backward == OverlapKind.CONTAINED)
    assert (forward == OverlapKind.CONTAINED) == (backward == OverlapKind.CONTAINS)


def test_classify_one_second_longer_b_is_contained():
    start = _at(10)
    assert (
        classify(start, start + timedelta(minutes=60), start, start + timedelta(minutes=60, seconds=1))
        == OverlapKind.CONTAINED
    )
