"""
Workboard Core — Points & Reward Engine.

Accrues completed-task points per user per calendar month (no carry-over)
and evaluates reward tiers and achievements against the current month's
total. Month boundaries are taken in the configured timezone.

The ledger port performs the increment atomically, so concurrent credits
for the same user never lose updates.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Iterable

from workboard.core.authorization import require_admin
from workboard.core.errors import ValidationError
from workboard.data.models import (
    Achievement,
    AchievementProgress,
    PointsStats,
    RewardTier,
    User,
)
from workboard.data.schemas import AchievementInput, RewardTierInput, parse_input
from workboard.ports.repositories import PointsLedgerRepository, RewardSettingsRepository

logger = logging.getLogger(__name__)

MILESTONES = (50, 80, 100)
MONTHLY_TARGET_KEY = "monthly_target"

DEFAULT_REWARD_TIERS = [
    RewardTier(
        name="Bronze Achiever", points=300, reward="$50 cash bonus",
        description="Complete 300 points worth of tasks",
    ),
    RewardTier(
        name="Silver Performer", points=500, reward="$100 cash bonus",
        description="Complete 500 points worth of tasks",
    ),
    RewardTier(
        name="Gold Champion", points=1000, reward="$200 cash bonus + extra day off",
        description="Complete 1000 points worth of tasks",
    ),
]


def milestones_reached(total: int, target: int) -> list[int]:
    """Milestone percentages of `target` that `total` has reached."""
    if target <= 0:
        return []
    return [m for m in MILESTONES if total * 100 >= m * target]


def crossed_milestones(before: int, after: int, target: int) -> list[int]:
    """Milestones reached by `after` that `before` had not reached yet."""
    already = set(milestones_reached(before, target))
    return [m for m in milestones_reached(after, target) if m not in already]


class PointsEngine:
    """Monthly points ledger plus reward tiers and the monthly target."""

    def __init__(
        self,
        ledger: PointsLedgerRepository,
        rewards: RewardSettingsRepository,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        default_target: int | None = None,
    ) -> None:
        if tz is None or default_target is None:
            from workboard.config import settings
            tz = tz or settings.tz
            default_target = default_target or settings.DEFAULT_MONTHLY_TARGET

        self._ledger = ledger
        self._rewards = rewards
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_target = default_target

    def _month_of(self, at: datetime) -> tuple[int, int]:
        local = at.astimezone(self._tz)
        return local.month, local.year

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def credit(self, user_id: str, points: int, at: datetime, task_id: str | None = None) -> int:
        """Add `points` to the user's ledger for the month of `at`.

        A credit made for a task_id is applied at most once, however often
        it is retried.
        """
        if points < 0:
            raise ValidationError("Points to credit cannot be negative")
        month, year = self._month_of(at)
        total = await self._ledger.add_points(user_id, month, year, points, credit_id=task_id)
        logger.info("Credited %d points to %s for %02d/%d (total %d)", points, user_id, month, year, total)
        return total

    async def revoke(self, task_id: str) -> int | None:
        """Take back the credit made for task_id, if there is one.

        Used when a completion is rolled back. Returns the month's new total,
        or None when the task was never credited.
        """
        total = await self._ledger.remove_credit(task_id)
        if total is not None:
            logger.warning("Revoked the points credited for task %s (total %d)", task_id, total)
        return total

    async def monthly_total(self, user_id: str, month: int, year: int) -> int:
        return await self._ledger.get_points(user_id, month, year)

    async def current_total(self, user_id: str, now: datetime | None = None) -> int:
        month, year = self._month_of(now or self._clock())
        return await self.monthly_total(user_id, month, year)

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    async def reward_tiers(self) -> list[RewardTier]:
        tiers = await self._rewards.load_reward_tiers()
        return sorted(tiers, key=lambda t: t.points)

    async def monthly_target(self) -> int:
        raw = await self._rewards.get_setting(MONTHLY_TARGET_KEY)
        if raw is None:
            return self._default_target
        try:
            return int(raw)
        except ValueError:
            logger.warning("Stored monthly target %r is not a number, using default", raw)
            return self._default_target

    async def reached_tiers(self, user_id: str, now: datetime | None = None) -> list[RewardTier]:
        """Tiers whose threshold the user's current-month total has reached."""
        total = await self.current_total(user_id, now)
        return [t for t in await self.reward_tiers() if t.points <= total]

    async def points_stats(self, user_id: str, now: datetime | None = None) -> PointsStats:
        earned = await self.current_total(user_id, now)
        target = await self.monthly_target()
        percent = round(earned * 100 / target) if target > 0 else 0
        return PointsStats(earned=earned, target=target, percent_complete=percent)

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    async def achievements(self) -> list[Achievement]:
        achievements = await self._rewards.load_achievements()
        return sorted(achievements, key=lambda a: a.points_required)

    async def unlock_achievements(self, user_id: str, now: datetime | None = None) -> list[Achievement]:
        """Unlock every achievement the current month's total now qualifies for.

        Returns only the achievements unlocked by this call.
        """
        now = now or self._clock()
        total = await self.current_total(user_id, now)
        unlocked = []
        for achievement in await self.achievements():
            if achievement.points_required > total:
                break
            if await self._rewards.unlock_achievement(user_id, achievement.id, now):
                unlocked.append(achievement)
        return unlocked

    async def achievement_progress(
        self, user_id: str, now: datetime | None = None,
    ) -> list[AchievementProgress]:
        total = await self.current_total(user_id, now)
        unlocked = await self._rewards.list_unlocked_achievements(user_id)
        progress = []
        for achievement in await self.achievements():
            unlocked_at = unlocked.get(achievement.id)
            percent = 100 if unlocked_at else min(100, total * 100 // achievement.points_required)
            progress.append(AchievementProgress(
                achievement=achievement,
                unlocked=unlocked_at is not None,
                progress=percent,
                unlocked_at=unlocked_at,
            ))
        return progress

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def replace_reward_tiers(
        self, actor: User, tiers: Iterable[RewardTier | dict[str, Any]],
    ) -> list[RewardTier]:
        """Replace every reward tier. Admin only; thresholds must be unique."""
        require_admin(actor, "change reward tiers")

        parsed: list[RewardTier] = []
        for raw in tiers:
            if isinstance(raw, RewardTier):
                raw = {
                    "name": raw.name, "points": raw.points,
                    "reward": raw.reward, "description": raw.description,
                }
            tier = parse_input(RewardTierInput, raw)
            parsed.append(RewardTier(
                name=tier.name, points=tier.points,
                reward=tier.reward, description=tier.description,
            ))

        thresholds = [t.points for t in parsed]
        if len(set(thresholds)) != len(thresholds):
            raise ValidationError("Reward tiers must have distinct point thresholds")

        stored = await self._rewards.replace_reward_tiers(parsed)
        logger.info("Reward tiers replaced by %s: %s", actor.id, thresholds)
        return stored

    async def set_monthly_target(self, actor: User, target: int) -> int:
        require_admin(actor, "change the monthly target")
        if isinstance(target, bool) or not isinstance(target, int) or target < 1:
            raise ValidationError("Monthly target must be a whole number of at least 1")
        await self._rewards.upsert_setting(MONTHLY_TARGET_KEY, str(target))
        logger.info("Monthly target set to %d by %s", target, actor.id)
        return target

    async def replace_achievements(
        self, actor: User, achievements: Iterable[Achievement | dict[str, Any]],
    ) -> list[Achievement]:
        """Replace every achievement. Admin only; titles must be unique."""
        require_admin(actor, "change achievements")

        parsed: list[Achievement] = []
        for raw in achievements:
            if isinstance(raw, Achievement):
                raw = {
                    "id": raw.id, "title": raw.title, "description": raw.description,
                    "icon": raw.icon, "points_required": raw.points_required,
                    "reward": raw.reward,
                }
            item = parse_input(AchievementInput, raw)
            parsed.append(Achievement(
                id=item.id, title=item.title, description=item.description,
                icon=item.icon, points_required=item.points_required, reward=item.reward,
            ))

        titles = [a.title.lower() for a in parsed]
        if len(set(titles)) != len(titles):
            raise ValidationError("Achievements must have distinct titles")

        stored = await self._rewards.replace_achievements(parsed)
        logger.info("Achievements replaced by %s (%d)", actor.id, len(stored))
        return stored
