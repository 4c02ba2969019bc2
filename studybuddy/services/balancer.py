"""Service for spreading auto-assigned sessions evenly across group members."""

from __future__ import annotations

import logging
import random

from studybuddy.config import SchedulingPolicy
from studybuddy.domain.errors import NoEligibleCandidates, SchedulingError, StorageFailure
from studybuddy.domain.models import LoadBalanceResult
from studybuddy.repos.base import SessionHistoryProvider

logger = logging.getLogger(__name__)


class AssignmentBalancer:
    """Picks members for a session, favouring those with the fewest sessions.

    Members within one session of the current minimum are all eligible, so
    the choice is not always the single least-loaded member. Members already
    at ``max_per_user`` are never picked. The eligible pool is sampled
    uniformly without replacement using the injected ``rng``.
    """

    def __init__(
        self,
        history: SessionHistoryProvider,
        policy: SchedulingPolicy,
        rng: random.Random | None = None,
    ) -> None:
        self.history = history
        self.policy = policy
        self.rng = rng or random.Random()

    def balance(
        self,
        group_id: str,
        candidate_user_ids: list[str],
        target_count: int | None = None,
        max_per_user: int | None = None,
    ) -> LoadBalanceResult:
        target = self.policy.auto_assign_target if target_count is None else target_count
        ceiling = self.policy.max_assignments_per_user if max_per_user is None else max_per_user

        candidates = list(dict.fromkeys(candidate_user_ids))
        if not candidates:
            raise NoEligibleCandidates("No candidates supplied for auto-assignment")

        try:
            reported = self.history.count_by_user_in_group(group_id, candidates)
        except SchedulingError:
            raise
        except Exception as exc:
            logger.error("Session history lookup failed for group %s", group_id, exc_info=True)
            raise StorageFailure("Error balancing session assignments") from exc
        counts = {user_id: reported.get(user_id, 0) for user_id in candidates}

        min_count = min(counts.values())
        eligible = [
            user_id
            for user_id in sorted(candidates, key=lambda u: counts[u])
            if counts[user_id] <= min_count + 1 and counts[user_id] < ceiling
        ]

        pool = list(eligible)
        selected: list[str] = []
        while pool and len(selected) < target:
            selected.append(pool.pop(self.rng.randrange(len(pool))))

        logger.debug(
            "Balanced group %s: min=%d eligible=%s selected=%s",
            group_id,
            min_count,
            eligible,
            selected,
        )
        return LoadBalanceResult(
            selected_user_ids=selected,
            per_user_session_count=counts,
            eligible_user_ids=eligible,
        )
