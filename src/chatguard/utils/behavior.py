"""
Behavioral analysis over a sliding window of recent messages per device.

Flags:
- rapid_fire: too many messages in a few seconds
- flooding: too many messages in a minute
- repetition: the same message sent again and again
- short_spam: a burst of tiny messages
- mention_spam: too many @mentions in one message

Windows live in memory only and are rebuilt from nothing after a restart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from chatguard.config import ModerationThresholds
from chatguard.utils.locks import ShardedMap
from chatguard.utils.logging import get_logger
from chatguard.utils.patterns import DEFAULT_LIBRARY, PatternLibrary

logger = get_logger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """One remembered message."""
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class BehaviorFlags:
    """Behavioral signals for the message being evaluated."""
    score: int = 0
    flags: list[str] = field(default_factory=list)
    reason: str = ""
    is_suspicious: bool = False

    @property
    def rapid_fire(self) -> bool:
        return "rapid_fire" in self.flags

    @property
    def flooding(self) -> bool:
        return "flooding" in self.flags

    @property
    def repetition(self) -> bool:
        return "repetition" in self.flags

    @property
    def short_spam(self) -> bool:
        return "short_spam" in self.flags

    @property
    def mention_spam(self) -> bool:
        return "mention_spam" in self.flags


class BehaviorTracker:
    """
    Keeps a bounded, time-windowed message history per device.

    analyze() is read-only; commit() inserts the message and trims the
    window. The engine calls commit() only once a decision is final, so an
    abandoned evaluation leaves the window untouched.
    """

    def __init__(
        self,
        thresholds: ModerationThresholds | None = None,
        library: PatternLibrary | None = None,
    ) -> None:
        self.thresholds = thresholds or ModerationThresholds()
        self.library = library or DEFAULT_LIBRARY
        self._windows: ShardedMap[str, tuple[HistoryEntry, ...]] = ShardedMap()

    def _trim(self, entries: tuple[HistoryEntry, ...], now: datetime) -> tuple[HistoryEntry, ...]:
        cutoff = now - timedelta(seconds=self.thresholds.history_max_age)
        recent = tuple(e for e in entries if e.timestamp > cutoff)
        return recent[-self.thresholds.history_max_entries:]

    def history(self, device_id: str, now: Optional[datetime] = None) -> list[HistoryEntry]:
        """
        Get the current window for a device, oldest first.

        Args:
            device_id: Device identifier
            now: Reference time for age trimming (default: no trimming)
        """
        entries = self._windows.get(device_id, ()) or ()
        if now is not None:
            entries = self._trim(entries, now)
        return list(entries)

    def analyze(self, device_id: str, message: str, now: Optional[datetime] = None) -> BehaviorFlags:
        """
        Compute behavioral flags for a message without recording it.

        Args:
            device_id: Device identifier
            message: Message being evaluated
            now: Evaluation time (default: current UTC time)

        Returns:
            BehaviorFlags: Flags and combined behavioral score
        """
        t = self.thresholds
        now = now or datetime.now(timezone.utc)
        history = self.history(device_id, now)

        score = 0
        flags: list[str] = []
        reason = ""

        def within(seconds: float) -> list[HistoryEntry]:
            return [e for e in history if (now - e.timestamp).total_seconds() < seconds]

        if len(within(t.rapid_fire_window)) >= t.rapid_fire_count:
            score += t.rapid_fire_score
            flags.append("rapid_fire")
            reason = "Sending messages too quickly"

        if len(within(t.flood_window)) >= t.flood_count:
            score += t.flood_score
            flags.append("flooding")
            reason = "Message flooding detected"

        lowered = message.lower()
        if sum(1 for e in history if e.content.lower() == lowered) >= t.repetition_count:
            score += t.repetition_score
            flags.append("repetition")
            reason = "Repeated messages detected"

        if len(message) < t.short_message_length and history:
            short = [e for e in within(t.short_spam_window) if len(e.content) < t.short_message_length]
            if len(short) > t.short_spam_count:
                score += t.short_spam_score
                flags.append("short_spam")
                reason = "Short message spam"

        if len(self.library.mentions.findall(message)) >= t.mention_count:
            score += t.mention_score
            flags.append("mention_spam")
            reason = "Excessive mentions"

        return BehaviorFlags(
            score=score,
            flags=flags,
            reason=reason,
            is_suspicious=score >= t.suspicious_score,
        )

    def commit(self, device_id: str, message: str, now: Optional[datetime] = None) -> None:
        """Append a message to the device window and trim it."""
        now = now or datetime.now(timezone.utc)
        entry = HistoryEntry(content=message, timestamp=now)
        self._windows.update(
            device_id,
            lambda entries: self._trim((entries or ()) + (entry,), now),
        )

    def record(self, device_id: str, message: str, now: Optional[datetime] = None) -> BehaviorFlags:
        """Analyze a message, then add it to the window."""
        now = now or datetime.now(timezone.utc)
        flags = self.analyze(device_id, message, now)
        self.commit(device_id, message, now)
        return flags

    def clear(self, device_id: str) -> None:
        """Forget the window for a device."""
        if self._windows.pop(device_id) is not None:
            logger.debug("Cleared message history for device %s", device_id)

    def __len__(self) -> int:
        return len(self._windows)
