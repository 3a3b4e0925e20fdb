"""
Enforcement writer: the only place moderation state becomes durable.

- execute_ban: writes a BanRecord and bumps the actor's RiskProfile
- record_warning: bumps the RiskProfile for a warn-level decision

Writes are retried with exponential backoff. When they still fail the
caller gets False back; the moderation decision itself is not retracted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chatguard.config import ModerationThresholds
from chatguard.utils.database import RecordStore
from chatguard.utils.decision import BanDecision, BanRecord, RiskProfile
from chatguard.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EnforcementWriter:
    """Persists executed bans and risk-profile updates through a RecordStore."""

    def __init__(self, store: RecordStore, thresholds: ModerationThresholds | None = None) -> None:
        self.store = store
        self.thresholds = thresholds or ModerationThresholds()

    def _retrying(self) -> AsyncRetrying:
        t = self.thresholds
        return AsyncRetrying(
            stop=stop_after_attempt(t.enforcement_attempts),
            wait=wait_exponential(multiplier=t.enforcement_backoff, max=t.enforcement_backoff_max),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _with_retry(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        result: Any = None
        async for attempt in self._retrying():
            with attempt:
                result = await func(*args)
        return result

    async def _bump_profile(
        self,
        actor_name: str,
        device_id: str,
        threat_score: float,
        now: datetime,
    ) -> RiskProfile:
        # The new profile is computed once so that retrying the put is idempotent
        existing = await self._with_retry(self.store.get_risk_profile, actor_name)
        profile = RiskProfile(
            actor_name=actor_name,
            cumulative_threat_score=(existing.cumulative_threat_score if existing else 0.0) + threat_score,
            warning_count=(existing.warning_count if existing else 0) + 1,
            last_activity=now,
            device_fingerprint=device_id,
        )
        await self._with_retry(self.store.upsert_risk_profile, profile)
        return profile

    async def execute_ban(
        self,
        actor_name: str,
        device_id: str,
        decision: BanDecision,
        message_content: Optional[str] = None,
        now: Optional[datetime] = None,
        room_id: Optional[int] = None,
    ) -> bool:
        """
        Persist a ban and update the actor's risk profile.

        Args:
            actor_name: Username being banned
            device_id: Device being banned
            decision: The ban decision
            message_content: Offending message, kept for appeals
            now: Ban creation time (default: current UTC time)
            room_id: Room the message was sent in

        Returns:
            bool: True if everything was persisted
        """
        now = now or datetime.now(timezone.utc)
        duration = decision.ban_duration_seconds
        record = BanRecord(
            actor_name=actor_name,
            device_id=device_id,
            reason=decision.reason,
            severity=decision.severity,
            threat_score=decision.threat_score,
            detected_patterns=tuple(decision.detected_patterns),
            duration_seconds=duration,
            created_at=now,
            expires_at=None if duration == 0 else now + timedelta(seconds=duration),
            message_content=message_content,
            room_id=room_id,
        )

        try:
            inserted = await self._with_retry(self.store.insert_ban_record, record)
            if not inserted:
                logger.debug("Ban for device %s at %s already recorded", device_id, now.isoformat())
            await self._bump_profile(actor_name, device_id, decision.threat_score, now)
        except Exception as e:
            logger.error(
                "Enforcement not persisted for %s (device %s) after %d attempts: %s",
                actor_name, device_id, self.thresholds.enforcement_attempts, e,
            )
            return False

        logger.info(
            "Auto-ban executed: %s %s - %s - Score: %d",
            actor_name, decision.duration_text, decision.reason, decision.threat_score,
        )
        return True

    async def record_warning(
        self,
        actor_name: str,
        device_id: str,
        decision: BanDecision,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Add a warn-level decision to the actor's risk profile.

        Returns:
            bool: True if the profile update was persisted
        """
        now = now or datetime.now(timezone.utc)
        try:
            await self._bump_profile(actor_name, device_id, decision.threat_score, now)
        except Exception as e:
            logger.error("Warning for %s (device %s) not persisted: %s", actor_name, device_id, e)
            return False
        return True
