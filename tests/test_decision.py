"""
Tests for the decision engine and the warning tracker.

These tests verify:
- Band selection by score or severity
- Prior-ban duration scaling and permanent escalation
- Confidence, rounding and pattern de-duplication
- Warning counting and escalation to a temporary or permanent ban
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatguard.utils.decision import BanDecision, BanRecord, DecisionEngine, SuggestedAction
from chatguard.utils.patterns import Severity
from chatguard.utils.strikes import WarningTracker


@pytest.fixture
def engine() -> DecisionEngine:
    return DecisionEngine()


class TestDecisionEngine:
    """Tests for score-to-action mapping."""

    def test_score_driven_perm_ban(self, engine: DecisionEngine) -> None:
        """Test that a score of 200 or more is a permanent, extreme ban."""
        decision = engine.decide(250, None, 0, 0, "", [])

        assert decision.should_ban is True
        assert decision.suggested_action is SuggestedAction.PERM_BAN
        assert decision.ban_duration_seconds == 0
        assert decision.severity is Severity.EXTREME
        assert decision.reason == "Automatic detection triggered"

    def test_extreme_severity_is_permanent(self, engine: DecisionEngine) -> None:
        """Test that extreme content is permanent whatever the score."""
        decision = engine.decide(30, Severity.EXTREME, 0, 0, "x", ["extreme:doxxing"])

        assert decision.is_permanent is True
        assert decision.duration_text == "permanently"

    def test_critical_scales_with_prior_bans(self, engine: DecisionEngine) -> None:
        """Test the 24 hour band doubling with one prior ban."""
        decision = engine.decide(100, Severity.CRITICAL, 1, 0, "hate", ["critical:hate_symbol"])

        assert decision.suggested_action is SuggestedAction.TEMP_BAN
        assert decision.ban_duration_seconds == 172800
        assert decision.confidence == 70
        assert decision.duration_text == "for 2 days"

    def test_high_band(self, engine: DecisionEngine) -> None:
        """Test the six hour band and its half-step scaling."""
        assert engine.decide(70, Severity.HIGH, 0, 0, "", []).ban_duration_seconds == 21600
        assert engine.decide(70, Severity.HIGH, 1, 0, "", []).ban_duration_seconds == 32400
        assert engine.decide(120, None, 0, 0, "", []).ban_duration_seconds == 21600

    def test_medium_band(self, engine: DecisionEngine) -> None:
        """Test that medium severity alone reaches the one hour band."""
        decision = engine.decide(25, Severity.MEDIUM, 0, 0, "", [])
        assert decision.ban_duration_seconds == 3600
        assert decision.duration_text == "for 1 hour"

        decision = engine.decide(70, None, 2, 0, "", [])
        assert decision.ban_duration_seconds == 10800
        assert decision.severity is Severity.LOW

    def test_warn_mute_ignore(self, engine: DecisionEngine) -> None:
        """Test the non-ban bands."""
        warn = engine.decide(45, None, 0, 0, "", [])
        mute = engine.decide(25, None, 0, 0, "", [])
        ignore = engine.decide(10, Severity.LOW, 0, 0, "", [])

        assert warn.suggested_action is SuggestedAction.WARN
        assert warn.should_warn is True and warn.should_ban is False
        assert mute.suggested_action is SuggestedAction.MUTE
        assert mute.should_warn is False and mute.should_ban is False
        assert ignore.suggested_action is SuggestedAction.IGNORE
        assert ignore.ban_duration_seconds == 0

    def test_three_prior_bans_make_any_ban_permanent(self, engine: DecisionEngine) -> None:
        """Test repeat-offender escalation."""
        decision = engine.decide(70, Severity.HIGH, 3, 0, "", [])

        assert decision.suggested_action is SuggestedAction.PERM_BAN
        assert decision.ban_duration_seconds == 0

        # A warn stays a warn
        assert engine.decide(45, None, 5, 0, "", []).suggested_action is SuggestedAction.WARN

    def test_ban_and_warn_are_exclusive(self, engine: DecisionEngine) -> None:
        """Test that no score produces both a ban and a warning."""
        for score in range(0, 260, 5):
            decision = engine.decide(score, None, 0, 0, "", [])
            assert not (decision.should_ban and decision.should_warn)
            if decision.ban_duration_seconds == 0 and decision.should_ban:
                assert decision.severity is Severity.EXTREME

    def test_confidence_is_capped(self, engine: DecisionEngine) -> None:
        """Test that confidence never exceeds 100."""
        decision = engine.decide(90, None, 0, 0, "", [f"p{i}" for i in range(6)])
        assert decision.confidence == 100

    def test_rounds_half_up(self, engine: DecisionEngine) -> None:
        """Test that .5 scores round away from zero."""
        assert engine.decide(48.5, None, 0, 0, "", []).threat_score == 49
        assert engine.decide(48.4, None, 0, 0, "", []).threat_score == 48

    def test_patterns_deduplicated(self, engine: DecisionEngine) -> None:
        """Test that repeated labels appear once, in first-seen order."""
        decision = engine.decide(50, None, 0, 0, "", ["b", "a", "b"])
        assert decision.detected_patterns == ["b", "a"]

    def test_to_dict(self, engine: DecisionEngine) -> None:
        """Test the JSON-friendly form."""
        data = engine.decide(100, Severity.CRITICAL, 0, 0, "hate", ["critical:slur"]).to_dict()

        assert data["severity"] == "critical"
        assert data["suggested_action"] == "temp_ban"
        assert data["detected_patterns"] == ["critical:slur"]

    def test_ignore_decision(self) -> None:
        """Test the zero-confidence no-op."""
        decision = BanDecision.ignore("Invalid message event")

        assert decision.confidence == 0
        assert decision.suggested_action is SuggestedAction.IGNORE
        assert decision.duration_text == ""


class TestBanRecord:
    """Tests for ban expiry."""

    def test_is_active(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        base = dict(
            actor_name="bob",
            device_id="dev",
            reason="x",
            severity=Severity.HIGH,
            threat_score=70,
            detected_patterns=(),
            duration_seconds=3600,
            created_at=now,
        )

        assert BanRecord(**base).is_active(now) is True
        assert BanRecord(**base, expires_at=now + timedelta(hours=1)).is_active(now) is True
        assert BanRecord(**base, expires_at=now - timedelta(seconds=1)).is_active(now) is False


class TestWarningTracker:
    """Tests for warning escalation."""

    def setup_method(self) -> None:
        self.tracker = WarningTracker()
        self.warn = DecisionEngine().decide(45, None, 0, 0, "Link spam", [])

    def test_third_warning_escalates(self) -> None:
        """Test that the third warning comes back as a one hour ban."""
        first = self.tracker.apply("dev", self.warn)
        second = self.tracker.apply("dev", self.warn)
        third = self.tracker.apply("dev", self.warn)

        assert first is self.warn
        assert second is self.warn
        assert third.should_ban is True
        assert third.should_warn is False
        assert third.escalated is True
        assert third.suggested_action is SuggestedAction.TEMP_BAN
        assert third.ban_duration_seconds == 3600
        assert third.reason == "Exceeded warning limit (3 warnings)"

    def test_repeat_offender_escalates_permanently(self) -> None:
        """Test that three prior bans turn the limit ban into a permanent one."""
        self.tracker.apply("dev", self.warn, previous_ban_count=3)
        self.tracker.apply("dev", self.warn, previous_ban_count=3)
        third = self.tracker.apply("dev", self.warn, previous_ban_count=3)

        assert third.should_ban is True
        assert third.escalated is True
        assert third.suggested_action is SuggestedAction.PERM_BAN
        assert third.ban_duration_seconds == 0
        assert third.duration_text == "permanently"

    def test_two_prior_bans_keep_one_hour(self) -> None:
        for _ in range(2):
            self.tracker.apply("dev", self.warn, previous_ban_count=2)
        third = self.tracker.apply("dev", self.warn, previous_ban_count=2)

        assert third.suggested_action is SuggestedAction.TEMP_BAN
        assert third.ban_duration_seconds == 3600

    def test_bans_are_not_counted(self) -> None:
        """Test that only warn decisions touch the counter."""
        ban = DecisionEngine().decide(120, None, 0, 0, "", [])
        self.tracker.apply("dev", ban)

        assert self.tracker.get_warning_count("dev") == 0

    def test_clear(self) -> None:
        """Test resetting a device."""
        self.tracker.apply("dev", self.warn)

        assert self.tracker.clear("dev") is True
        assert self.tracker.clear("dev") is False
        assert self.tracker.get_warning_count("dev") == 0

    def test_describe(self) -> None:
        """Test the user-facing summary."""
        assert self.tracker.describe("dev") == "No warnings."

        self.tracker.apply("dev", self.warn)
        assert self.tracker.describe("dev") == "Warning 1/3: 2 warnings left before ban."

        self.tracker.apply("dev", self.warn)
        assert self.tracker.describe("dev") == "Warning 2/3: 1 warning left before ban."
