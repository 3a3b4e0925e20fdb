"""
Warning tracker for automated moderation.

Counts consecutive warn-level decisions per device:
- Warnings 1..limit-1: the warning stands
- Warning at the limit: converted to a one-hour temporary ban, or a
  permanent one for repeat offenders

The counter is cleared when a ban is executed or by an admin.
"""

from __future__ import annotations

from dataclasses import replace

from chatguard.config import ModerationThresholds
from chatguard.utils.decision import BanDecision, SuggestedAction
from chatguard.utils.locks import ShardedMap
from chatguard.utils.logging import get_logger

logger = get_logger(__name__)


class WarningTracker:
    """
    In-memory warning counters keyed by device id.

    Escalation happens in the same evaluation whose warning reaches the
    limit, so the third warn-band message in a row comes back as a ban.
    """

    def __init__(self, thresholds: ModerationThresholds | None = None) -> None:
        self.thresholds = thresholds or ModerationThresholds()
        self._counters: ShardedMap[str, int] = ShardedMap()

    def get_warning_count(self, device_id: str) -> int:
        """Current warning count for a device."""
        return self._counters.get(device_id, 0) or 0

    def apply(self, device_id: str, decision: BanDecision, previous_ban_count: int = 0) -> BanDecision:
        """
        Count a warning and escalate when the limit is reached.

        Args:
            device_id: Device identifier
            decision: Decision from the decision engine
            previous_ban_count: Prior bans on record for the actor or device

        Returns:
            BanDecision: The same decision, or a ban once the limit is hit
        """
        if not decision.should_warn or decision.should_ban:
            return decision

        count = self._counters.update(device_id, lambda current: (current or 0) + 1) or 0
        limit = self.thresholds.warning_limit

        if count < limit:
            logger.info("Warning %d/%d for device %s: %s", count, limit, device_id, decision.reason)
            return decision

        if previous_ban_count >= self.thresholds.perm_ban_prior_bans:
            action, duration = SuggestedAction.PERM_BAN, 0
        else:
            action, duration = SuggestedAction.TEMP_BAN, self.thresholds.warning_ban_seconds

        logger.info("Device %s reached %d warnings, escalating to %s", device_id, count, action.value)
        return replace(
            decision,
            should_ban=True,
            should_warn=False,
            reason=f"Exceeded warning limit ({count} warnings)",
            ban_duration_seconds=duration,
            suggested_action=action,
            escalated=True,
        )

    def clear(self, device_id: str) -> bool:
        """
        Reset the warning counter for a device.

        Returns:
            bool: True if the device had warnings
        """
        cleared = self._counters.pop(device_id) is not None
        if cleared:
            logger.info("Warnings cleared for device %s", device_id)
        return cleared

    def describe(self, device_id: str) -> str:
        """Format the warning state for display to the actor."""
        count = self.get_warning_count(device_id)
        limit = self.thresholds.warning_limit
        if count == 0:
            return "No warnings."
        left = max(0, limit - count)
        return f"Warning {count}/{limit}: {left} warning{'s' if left != 1 else ''} left before ban."
