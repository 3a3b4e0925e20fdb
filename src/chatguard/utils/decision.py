"""
Moderation data model and the decision engine.

The decision engine turns an aggregated threat score, the worst severity
tier seen, and the actor's prior-ban count into one enforcement action
with a concrete duration and a confidence value.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from chatguard.config import ModerationThresholds
from chatguard.utils.logging import get_logger
from chatguard.utils.patterns import Severity

logger = get_logger(__name__)


class SuggestedAction(Enum):
    """Actions the engine can recommend."""
    IGNORE = "ignore"
    WARN = "warn"
    MUTE = "mute"
    TEMP_BAN = "temp_ban"
    PERM_BAN = "perm_ban"


@dataclass(frozen=True)
class MessageEvent:
    """An inbound chat message."""
    content: str
    actor_name: str
    actor_device_id: str
    room_id: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RiskProfile:
    """Persisted, cumulative risk for one actor."""
    actor_name: str
    cumulative_threat_score: float = 0.0
    warning_count: int = 0
    last_activity: Optional[datetime] = None
    device_fingerprint: str = ""


@dataclass(frozen=True)
class BanRecord:
    """A persisted ban. expires_at of None means permanent."""
    actor_name: str
    device_id: str
    reason: str
    severity: Severity
    threat_score: int
    detected_patterns: tuple[str, ...]
    duration_seconds: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    message_content: Optional[str] = None
    room_id: Optional[int] = None
    auto_ban: bool = True

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """True while the ban is permanent or has not yet expired."""
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.now(timezone.utc))


@dataclass(frozen=True)
class BanDecision:
    """
    The engine's verdict for one message.

    should_ban and should_warn are never both true. enforcement_persisted
    is None when nothing had to be written, True when the write landed
    and False when it could not be persisted after retries.
    """
    should_ban: bool
    should_warn: bool
    reason: str
    severity: Severity
    threat_score: int
    ban_duration_seconds: int
    confidence: int
    detected_patterns: list[str]
    suggested_action: SuggestedAction
    degraded: bool = False
    escalated: bool = False
    enforcement_persisted: Optional[bool] = None

    @classmethod
    def ignore(cls, reason: str) -> BanDecision:
        """A zero-confidence no-op decision."""
        return cls(
            should_ban=False,
            should_warn=False,
            reason=reason,
            severity=Severity.LOW,
            threat_score=0,
            ban_duration_seconds=0,
            confidence=0,
            detected_patterns=[],
            suggested_action=SuggestedAction.IGNORE,
        )

    @property
    def is_permanent(self) -> bool:
        return self.should_ban and self.ban_duration_seconds == 0

    @property
    def duration_text(self) -> str:
        """Human readable ban length, e.g. "for 6 hours" or "permanently"."""
        if not self.should_ban:
            return ""
        if self.ban_duration_seconds == 0:
            return "permanently"
        hours = _round_half_up(self.ban_duration_seconds / 3600)
        days = hours // 24
        if days > 0:
            return f"for {days} day{'s' if days > 1 else ''}"
        return f"for {hours} hour{'s' if hours != 1 else ''}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["suggested_action"] = self.suggested_action.value
        return data


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def _unique(patterns: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(patterns))


class DecisionEngine:
    """
    Maps an aggregated score to an action.

    Bands, checked top-down (score OR severity triggers a band):
    - perm_ban:  score >= 200 or extreme
    - temp_ban:  score >= 150 or critical, 24h x (1 + prior bans)
    - temp_ban:  score >= 100 or high, 6h x (1 + 0.5 x prior bans)
    - temp_ban:  score >= 70 or medium, 1h x (1 + prior bans)
    - warn:      score >= 40
    - mute:      score >= 20 (suggestion only)
    - ignore

    Any ban for an actor with 3+ prior bans becomes permanent.
    """

    def __init__(self, thresholds: ModerationThresholds | None = None) -> None:
        self.thresholds = thresholds or ModerationThresholds()

    def decide(
        self,
        score: float,
        severity: Optional[Severity],
        previous_ban_count: int,
        warning_count: int,
        reason: str,
        patterns: Iterable[str],
    ) -> BanDecision:
        """
        Produce a decision from aggregated signals.

        Args:
            score: Aggregated threat score
            severity: Worst toxicity tier matched, or None
            previous_ban_count: Prior bans on record for the actor
            warning_count: Pending warning count for the device (informational)
            reason: Primary reason collected during analysis
            patterns: Detected pattern labels

        Returns:
            BanDecision: The verdict
        """
        t = self.thresholds
        patterns = _unique(patterns)

        should_ban = False
        should_warn = False
        duration = 0.0
        action = SuggestedAction.IGNORE

        if score >= t.perm_ban_score or severity is Severity.EXTREME:
            should_ban = True
            action = SuggestedAction.PERM_BAN
            # A score-driven permanent ban is an extreme-severity decision
            severity = Severity.EXTREME
        elif score >= t.critical_score or severity is Severity.CRITICAL:
            should_ban = True
            duration = t.critical_ban_seconds * (1 + previous_ban_count)
            action = SuggestedAction.TEMP_BAN
        elif score >= t.high_score or severity is Severity.HIGH:
            should_ban = True
            duration = t.high_ban_seconds * (1 + previous_ban_count * t.high_ban_prior_factor)
            action = SuggestedAction.TEMP_BAN
        elif score >= t.medium_score or severity is Severity.MEDIUM:
            should_ban = True
            duration = t.medium_ban_seconds * (1 + previous_ban_count)
            action = SuggestedAction.TEMP_BAN
        elif score >= t.warn_score:
            should_warn = True
            action = SuggestedAction.WARN
        elif score >= t.mute_score:
            action = SuggestedAction.MUTE

        if should_ban and previous_ban_count >= t.perm_ban_prior_bans:
            duration = 0
            action = SuggestedAction.PERM_BAN

        confidence = min(100.0, len(patterns) * 20 + score / 2)

        return BanDecision(
            should_ban=should_ban,
            should_warn=should_warn,
            reason=reason or "Automatic detection triggered",
            severity=severity or Severity.LOW,
            threat_score=_round_half_up(score),
            ban_duration_seconds=_round_half_up(duration),
            confidence=_round_half_up(confidence),
            detected_patterns=patterns,
            suggested_action=action,
        )
