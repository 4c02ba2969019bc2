"""Service for checking a proposed start time against group policy."""

from __future__ import annotations

import logging
from datetime import datetime

from studybuddy.config import SchedulingPolicy
from studybuddy.domain.models import GroupPolicy, TimeValidation, as_utc
from studybuddy.repos.base import GroupStore

logger = logging.getLogger(__name__)


def check_session_time(
    proposed_start: datetime,
    group_policy: GroupPolicy,
    policy: SchedulingPolicy,
) -> TimeValidation:
    """Apply the preferred-hours window and the weekday preference.

    Both rules are evaluated in UTC.
    """
    start = as_utc(proposed_start)
    if start.hour < policy.earliest_hour or start.hour >= policy.latest_hour:
        return TimeValidation(
            valid=False,
            reason=(
                "Session time is outside preferred group hours "
                f"({policy.earliest_hour:02d}:00 - {policy.latest_hour:02d}:00 UTC)"
            ),
        )
    if group_policy.prefer_weekdays and start.weekday() in policy.weekend_days:
        return TimeValidation(valid=False, reason="Group prefers sessions on weekdays")
    return TimeValidation(valid=True)


class TimeValidator:
    def __init__(self, groups: GroupStore, policy: SchedulingPolicy) -> None:
        self.groups = groups
        self.policy = policy

    def validate(self, proposed_start: datetime, group_id: str) -> TimeValidation:
        """Raises GroupNotFound when the group's policy cannot be loaded."""
        group_policy = self.groups.get_policy(group_id)
        result = check_session_time(proposed_start, group_policy, self.policy)
        if not result.valid:
            logger.info("Rejected start %s for group %s: %s", proposed_start, group_id, result.reason)
        return result
