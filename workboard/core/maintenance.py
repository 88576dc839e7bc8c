"""Startup / periodic maintenance run.

Seeds the default reward tiers and monthly target on an empty database and
backfills recurring instances that a failed or missed spawn left behind.
Every step is idempotent, so the run is safe to repeat.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from workboard.core.points import DEFAULT_REWARD_TIERS, MONTHLY_TARGET_KEY

if TYPE_CHECKING:
    from workboard.core.task_service import TaskService
    from workboard.data.models import Task
    from workboard.ports.repositories import RewardSettingsRepository

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    seeded_tiers: bool = False
    seeded_target: bool = False
    spawned: list[Task] = field(default_factory=list)


async def seed_defaults(rewards: RewardSettingsRepository, default_target: int | None = None) -> tuple[bool, bool]:
    """Store the default tiers and target if none exist yet."""
    if default_target is None:
        from workboard.config import settings
        default_target = settings.DEFAULT_MONTHLY_TARGET

    seeded_tiers = False
    if not await rewards.load_reward_tiers():
        await rewards.replace_reward_tiers(list(DEFAULT_REWARD_TIERS))
        seeded_tiers = True
        logger.info("Seeded %d default reward tiers", len(DEFAULT_REWARD_TIERS))

    seeded_target = False
    if await rewards.get_setting(MONTHLY_TARGET_KEY) is None:
        await rewards.upsert_setting(MONTHLY_TARGET_KEY, str(default_target))
        seeded_target = True
        logger.info("Seeded monthly target %d", default_target)

    return seeded_tiers, seeded_target


async def run_maintenance(
    tasks: TaskService,
    rewards: RewardSettingsRepository,
    now: datetime | None = None,
) -> MaintenanceReport:
    seeded_tiers, seeded_target = await seed_defaults(rewards)
    spawned = await tasks.generate_missing_instances(now)
    logger.info(
        "Maintenance done: tiers seeded=%s, target seeded=%s, %d instance(s) spawned",
        seeded_tiers, seeded_target, len(spawned),
    )
    return MaintenanceReport(seeded_tiers, seeded_target, spawned)
