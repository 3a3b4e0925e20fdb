"""
Risk context and ban history lookups.

Both evaluators read persisted state through the RecordStore. A failed
read never blocks moderation: the evaluator logs the degraded evaluation
and answers as if the actor had a clean record.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable

from chatguard.config import ModerationThresholds
from chatguard.utils.database import RecordStore
from chatguard.utils.logging import get_logger

logger = get_logger(__name__)


async def _gather_reads(*reads: Awaitable[Any]) -> list[Any]:
    """Run store reads concurrently; re-raise the first failure after all settle."""
    results = await asyncio.gather(*reads, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


@dataclass(frozen=True)
class RiskContext:
    """Contribution of an actor's cumulative threat score to the current message."""
    score_contribution: float = 0.0
    is_high_risk: bool = False
    cumulative_score: float = 0.0
    has_device_ban: bool = False
    degraded: bool = False


@dataclass(frozen=True)
class HistoryContext:
    """Prior bans on record for an actor and the device's pending warnings."""
    previous_ban_count: int = 0
    warning_count: int = 0
    degraded: bool = False


class RiskContextEvaluator:
    """
    Adds a fraction of the persisted cumulative threat score.

    An actor is high risk when the cumulative score exceeds the cut-off or
    the device has any ban on record; the engine then judges the message
    more strictly.
    """

    def __init__(self, store: RecordStore, thresholds: ModerationThresholds | None = None) -> None:
        self.store = store
        self.thresholds = thresholds or ModerationThresholds()

    async def context(self, actor_name: str, device_id: str) -> RiskContext:
        """
        Read the actor's risk context.

        Args:
            actor_name: Username
            device_id: Device identifier

        Returns:
            RiskContext: Score contribution and high-risk flag
        """
        try:
            profile, device_bans = await _gather_reads(
                self.store.get_risk_profile(actor_name),
                self.store.get_bans_by_device(device_id),
            )
        except Exception as e:
            logger.warning(
                "Degraded risk context for actor=%s device=%s, treating as low risk: %s",
                actor_name, device_id, e,
            )
            return RiskContext(degraded=True)

        cumulative = profile.cumulative_threat_score if profile else 0.0
        has_device_ban = len(device_bans) > 0

        return RiskContext(
            score_contribution=cumulative * self.thresholds.risk_score_fraction,
            is_high_risk=cumulative > self.thresholds.high_risk_score or has_device_ban,
            cumulative_score=cumulative,
            has_device_ban=has_device_ban,
        )


class HistoryEvaluator:
    """Counts prior bans for escalation."""

    def __init__(self, store: RecordStore, thresholds: ModerationThresholds | None = None) -> None:
        self.store = store
        self.thresholds = thresholds or ModerationThresholds()

    async def history(self, actor_name: str, device_id: str, warning_count: int = 0) -> HistoryContext:
        """
        Read ban history.

        previous_ban_count is the larger of the bans recorded against the
        username and against the device, not their union. warning_count is
        passed through from the in-memory warning tracker; the persisted
        profile count only ever grows and does not feed scoring.

        Args:
            actor_name: Username
            device_id: Device identifier
            warning_count: Pending warnings for the device

        Returns:
            HistoryContext: Prior ban and warning counts
        """
        try:
            actor_bans, device_bans = await _gather_reads(
                self.store.get_bans_by_actor(actor_name),
                self.store.get_bans_by_device(device_id),
            )
        except Exception as e:
            logger.warning(
                "Degraded history for actor=%s device=%s, assuming no prior bans: %s",
                actor_name, device_id, e,
            )
            return HistoryContext(warning_count=warning_count, degraded=True)

        return HistoryContext(
            previous_ban_count=max(len(actor_bans), len(device_bans)),
            warning_count=warning_count,
        )

    def warning_bonus(self, history: HistoryContext) -> int:
        """Score added for actors who keep collecting warnings."""
        if history.warning_count >= self.thresholds.warning_bonus_threshold:
            return history.warning_count * self.thresholds.warning_bonus_per_warning
        return 0
