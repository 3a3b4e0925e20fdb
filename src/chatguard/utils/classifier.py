"""
Content classification for chat messages.

Scores a single message against the pattern library:
- Toxicity by severity tier (extreme down to low)
- Spam indicators
- Filter-evasion indicators

Classification is a pure function of the message text; it never reads
or writes per-actor state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from chatguard.config import ModerationThresholds
from chatguard.utils.logging import get_logger
from chatguard.utils.patterns import (
    DEFAULT_LIBRARY,
    LEETSPEAK_REASON,
    LEETSPEAK_WEIGHT,
    TIER_REASONS,
    TIER_SCORES,
    PatternLibrary,
    Severity,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying one message."""
    score: int
    severity: int  # 0 when nothing toxic matched, else 1 (low) .. 5 (extreme)
    toxic_patterns: list[str] = field(default_factory=list)
    reason: str = ""
    spam_score: int = 0
    is_spam: bool = False
    spam_reason: str = ""
    spam_patterns: list[str] = field(default_factory=list)
    evasion_score: int = 0
    is_evading: bool = False
    evasion_reason: str = ""
    evasion_patterns: list[str] = field(default_factory=list)
    evasion_penalty: int = 0

    @property
    def total_score(self) -> int:
        """Toxicity + spam + evasion, plus the flat penalty when evading."""
        return self.score + self.spam_score + self.evasion_score + self.evasion_penalty

    @property
    def severity_tier(self) -> Optional[Severity]:
        """The highest tier matched, or None for clean text."""
        return Severity.from_level(self.severity) if self.severity else None

    @property
    def detected_patterns(self) -> list[str]:
        """Pattern labels that feed a moderation decision."""
        patterns = list(self.toxic_patterns)
        if self.is_spam:
            patterns.append("spam_detected")
        if self.is_evading:
            patterns.append("filter_evasion")
        return patterns

    @property
    def primary_reason(self) -> str:
        """Toxicity reason first, then spam, then evasion."""
        if self.reason:
            return self.reason
        if self.is_spam and self.spam_reason:
            return self.spam_reason
        if self.is_evading:
            return "Attempting to bypass content filters"
        return ""


class Classifier(Protocol):
    """Anything that can score a message; lets a statistical model replace the regex tables."""

    def classify(self, message: str) -> ClassificationResult:
        ...


class ContentClassifier:
    """
    Regex classifier over a compiled PatternLibrary.

    Extreme patterns count once (first match wins); every other tier adds
    its base score for each pattern that matches.
    """

    def __init__(
        self,
        thresholds: ModerationThresholds | None = None,
        library: PatternLibrary | None = None,
    ) -> None:
        self.thresholds = thresholds or ModerationThresholds()
        self.library = library or DEFAULT_LIBRARY

    def classify(self, message: str) -> ClassificationResult:
        """
        Classify a message.

        Args:
            message: Raw chat message

        Returns:
            ClassificationResult: Toxicity, spam and evasion sub-scores
        """
        score, severity, toxic_patterns, reason = self._check_toxicity(message)
        spam_score, spam_reason, spam_patterns = self._check_spam(message)
        evasion_score, evasion_reason, evasion_patterns = self._check_evasion(message)

        is_spam = spam_score >= self.thresholds.spam_threshold
        is_evading = evasion_score >= self.thresholds.evasion_threshold

        return ClassificationResult(
            score=score,
            severity=severity,
            toxic_patterns=toxic_patterns,
            reason=reason,
            spam_score=spam_score,
            is_spam=is_spam,
            spam_reason=spam_reason,
            spam_patterns=spam_patterns,
            evasion_score=evasion_score,
            is_evading=is_evading,
            evasion_reason=evasion_reason,
            evasion_patterns=evasion_patterns,
            evasion_penalty=self.thresholds.evasion_penalty if is_evading else 0,
        )

    def _check_toxicity(self, message: str) -> tuple[int, int, list[str], str]:
        score = 0
        max_severity = 0
        patterns: list[str] = []
        reason = ""

        for severity, tier in self.library.toxic:
            for regex, name in tier:
                if not regex.search(message):
                    continue
                score += TIER_SCORES[severity]
                max_severity = max(max_severity, severity.level)
                patterns.append(name)
                if not reason:
                    reason = TIER_REASONS[severity]
                if severity is Severity.EXTREME:
                    break

        return score, max_severity, patterns, reason

    def _check_spam(self, message: str) -> tuple[int, str, list[str]]:
        score = 0
        reason = ""
        patterns: list[str] = []

        # Later rules overwrite the reason, so the most specific scam wins
        for rule in self.library.spam:
            hit = rule.score(message)
            if hit:
                score += hit
                reason = rule.reason
                patterns.append(rule.name)

        return score, reason, patterns

    def _check_evasion(self, message: str) -> tuple[int, str, list[str]]:
        score = 0
        reason = ""
        patterns: list[str] = []

        for rule in self.library.evasion:
            hit = rule.score(message)
            if hit:
                score += hit
                reason = rule.reason
                patterns.append(rule.name)

        leet = "".join(self.library.leetspeak.findall(message))
        if message and len(leet) > len(message) * self.thresholds.leetspeak_ratio:
            score += LEETSPEAK_WEIGHT
            reason = LEETSPEAK_REASON
            patterns.append("leetspeak")

        return score, reason, patterns
