"""
Moderation engine: the single entry point for real-time message evaluation.

Pipeline for each message:
1. Content classification and behavioral analysis
2. Risk context and ban history (persisted state, read concurrently)
3. Score aggregation and decision
4. Warning escalation
5. Enforcement (ban record / risk profile writes)

Evaluations for the same device are serialized; different devices never
wait on each other.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from chatguard.config import Config, ModerationThresholds
from chatguard.utils.behavior import BehaviorTracker
from chatguard.utils.classifier import Classifier, ContentClassifier
from chatguard.utils.content_filter import FilterResult, FilterSettings, filter_content
from chatguard.utils.database import DatabaseManager, RecordStore, SQLiteRecordStore
from chatguard.utils.decision import BanDecision, BanRecord, DecisionEngine, MessageEvent, SuggestedAction
from chatguard.utils.enforcement import EnforcementWriter
from chatguard.utils.locks import DeviceLocks
from chatguard.utils.logging import get_logger
from chatguard.utils.patterns import DEFAULT_LIBRARY, PatternLibrary
from chatguard.utils.risk import HistoryEvaluator, RiskContextEvaluator
from chatguard.utils.strikes import WarningTracker

logger = get_logger(__name__)


class ModerationEngine:
    """
    Automated moderation for chat messages.

    Features:
    - Tiered toxicity, spam and evasion classification
    - Sliding-window behavioral flags per device
    - Cumulative risk and prior-ban escalation
    - Warning counter with automatic temporary bans
    - Durable ban records with retried writes
    """

    def __init__(
        self,
        store: RecordStore,
        thresholds: ModerationThresholds | None = None,
        classifier: Classifier | None = None,
        library: PatternLibrary | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Persistence collaborator for bans and risk profiles
            thresholds: Scoring thresholds (default: production values)
            classifier: Content classifier (default: regex ContentClassifier)
            library: Pattern library for the default classifier and mention counting
        """
        self.thresholds = thresholds or ModerationThresholds()
        self.store = store
        self.library = library or DEFAULT_LIBRARY
        self.classifier: Classifier = classifier or ContentClassifier(self.thresholds, self.library)
        self.behavior = BehaviorTracker(self.thresholds, self.library)
        self.risk = RiskContextEvaluator(store, self.thresholds)
        self.history = HistoryEvaluator(store, self.thresholds)
        self.decisions = DecisionEngine(self.thresholds)
        self.warnings = WarningTracker(self.thresholds)
        self.enforcement = EnforcementWriter(store, self.thresholds)
        self._locks = DeviceLocks()

        logger.info("ModerationEngine initialized")

    @staticmethod
    def _is_valid(event: Optional[MessageEvent]) -> bool:
        if event is None:
            return False
        if not isinstance(event.content, str) or not event.content.strip():
            return False
        return bool(event.actor_name) and bool(event.actor_device_id)

    async def evaluate(self, event: MessageEvent) -> BanDecision:
        """
        Evaluate one inbound message and enforce the outcome.

        Never raises for bad input: an empty message or a missing actor
        returns an ignore decision with zero confidence.

        Args:
            event: The inbound message

        Returns:
            BanDecision: Final decision, after warning escalation and enforcement
        """
        if not self._is_valid(event):
            return BanDecision.ignore("Invalid message event")

        if event.timestamp.tzinfo is None:
            event = replace(event, timestamp=event.timestamp.replace(tzinfo=timezone.utc))

        async with self._locks.hold(event.actor_device_id):
            return await self._evaluate(event)

    async def _evaluate(self, event: MessageEvent) -> BanDecision:
        actor = event.actor_name
        device = event.actor_device_id
        content = event.content
        now = event.timestamp

        classification = self.classifier.classify(content)
        behavior = self.behavior.analyze(device, content, now)
        context, history = await asyncio.gather(
            self.risk.context(actor, device),
            self.history.history(actor, device, self.warnings.get_warning_count(device)),
        )

        score: float = classification.total_score + behavior.score
        if context.is_high_risk:
            score *= self.thresholds.high_risk_multiplier
        score += context.score_contribution
        score += self.history.warning_bonus(history)

        reason = classification.primary_reason
        if not reason and behavior.is_suspicious:
            reason = behavior.reason

        decision = self.decisions.decide(
            score,
            classification.severity_tier,
            history.previous_ban_count,
            history.warning_count,
            reason,
            classification.detected_patterns + behavior.flags,
        )
        if context.degraded or history.degraded:
            decision = replace(decision, degraded=True)

        decision = self.warnings.apply(device, decision, history.previous_ban_count)

        # The decision is final; only now touch in-memory state
        self.behavior.commit(device, content, now)

        if decision.should_ban:
            persisted = await self.enforcement.execute_ban(
                actor, device, decision, content, now, event.room_id
            )
            self.warnings.clear(device)
            decision = replace(decision, enforcement_persisted=persisted)
        elif decision.should_warn:
            persisted = await self.enforcement.record_warning(actor, device, decision, now)
            decision = replace(decision, enforcement_persisted=persisted)

        if decision.suggested_action is not SuggestedAction.IGNORE:
            logger.info(
                "[%s] %s (device %s, score %d, confidence %d): %s",
                decision.suggested_action.value.upper(),
                actor, device, decision.threat_score, decision.confidence, decision.reason,
            )
        return decision

    # ==================== Admin Operations ====================

    def clear_warnings(self, device_id: str) -> None:
        """Reset the warning counter and behavioral history for a device."""
        self.warnings.clear(device_id)
        self.behavior.clear(device_id)

    def get_warning_count(self, device_id: str) -> int:
        """Current in-memory warning count for a device."""
        return self.warnings.get_warning_count(device_id)

    def describe_warnings(self, device_id: str) -> str:
        """Warning state for a device, worded for display to the actor."""
        return self.warnings.describe(device_id)

    async def active_ban(self, device_id: str, now: Optional[datetime] = None) -> Optional[BanRecord]:
        """
        Find a ban currently in force for a device.

        Returns None when there is none or the store cannot be read.
        """
        now = now or datetime.now(timezone.utc)
        try:
            bans = await self.store.get_bans_by_device(device_id)
        except Exception as e:
            logger.warning("Could not check active bans for device %s: %s", device_id, e)
            return None
        return next((ban for ban in bans if ban.is_active(now)), None)

    async def threat_level(self, actor_name: str) -> float:
        """Cumulative threat score for an actor (0 when unknown)."""
        try:
            profile = await self.store.get_risk_profile(actor_name)
        except Exception as e:
            logger.warning("Could not read threat level for %s: %s", actor_name, e)
            return 0.0
        return profile.cumulative_threat_score if profile else 0.0

    async def high_risk_actors(self, min_score: float = 80.0, limit: int = 50) -> list[str]:
        """Actors at or above min_score, most dangerous first."""
        profiles = await self.store.list_risk_profiles(min_score, limit)
        return [profile.actor_name for profile in profiles]

    async def reset_risk_profile(self, actor_name: str) -> bool:
        """Delete an actor's persisted risk profile."""
        removed = await self.store.delete_risk_profile(actor_name)
        if removed:
            logger.info("Risk profile reset for %s", actor_name)
        return removed

    def filter_content(self, content: str, settings: Optional[FilterSettings] = None) -> FilterResult:
        """Mask personal information and profanity in a message."""
        return filter_content(content, settings, self.library)


def build_engine(config: Config) -> ModerationEngine:
    """Create an engine backed by the configured SQLite database."""
    store = SQLiteRecordStore(DatabaseManager(config.database_path))
    return ModerationEngine(store, config.thresholds)
