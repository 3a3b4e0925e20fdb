"""
Tests for the SQLite record store, the risk/history evaluators and the
enforcement writer.
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatguard.config import ModerationThresholds
from chatguard.utils.database import DatabaseManager, SQLiteRecordStore
from chatguard.utils.decision import BanRecord, DecisionEngine, RiskProfile
from chatguard.utils.enforcement import EnforcementWriter
from chatguard.utils.patterns import Severity
from chatguard.utils.risk import HistoryContext, HistoryEvaluator, RiskContextEvaluator

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
FAST = ModerationThresholds(enforcement_backoff=0.0)


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield DatabaseManager(os.path.join(tmpdir, "test.db"))


@pytest.fixture
def store(db: DatabaseManager) -> SQLiteRecordStore:
    return SQLiteRecordStore(db)


def make_ban(actor: str = "bob", device: str = "dev-1", created: datetime = NOW, **kwargs) -> BanRecord:
    values = dict(
        actor_name=actor,
        device_id=device,
        reason="Explicit language detected",
        severity=Severity.HIGH,
        threat_score=70,
        detected_patterns=("high:profanity_f",),
        duration_seconds=21600,
        created_at=created,
        expires_at=created + timedelta(hours=6),
    )
    values.update(kwargs)
    return BanRecord(**values)


def failing_store(exc: Exception) -> MagicMock:
    store = MagicMock()
    for name in (
        "get_risk_profile",
        "get_bans_by_actor",
        "get_bans_by_device",
        "insert_ban_record",
        "upsert_risk_profile",
    ):
        setattr(store, name, AsyncMock(side_effect=exc))
    return store


class TestDatabaseManager:
    """Tests for the SQLite tables."""

    def test_ban_round_trip(self, db: DatabaseManager) -> None:
        """Test that a ban reads back with every field intact."""
        record = make_ban(message_content="FUCK YOU ALL", room_id=7)

        assert db.insert_ban_record(record) is True

        [loaded] = db.get_bans_by_device("dev-1")
        assert loaded == record
        assert loaded.expires_at.tzinfo is not None

    def test_duplicate_ban_ignored(self, db: DatabaseManager) -> None:
        """Test that (device, created_at) makes inserts idempotent."""
        assert db.insert_ban_record(make_ban()) is True
        assert db.insert_ban_record(make_ban()) is False
        assert len(db.get_bans_by_device("dev-1")) == 1

    def test_bans_by_actor_and_device(self, db: DatabaseManager) -> None:
        """Test both lookup keys, newest first."""
        db.insert_ban_record(make_ban("bob", "dev-1", NOW - timedelta(days=2)))
        db.insert_ban_record(make_ban("bob", "dev-2", NOW - timedelta(days=1)))
        db.insert_ban_record(make_ban("eve", "dev-2", NOW))

        by_actor = db.get_bans_by_actor("bob")
        assert [ban.device_id for ban in by_actor] == ["dev-2", "dev-1"]
        assert [ban.actor_name for ban in db.get_bans_by_device("dev-2")] == ["eve", "bob"]
        assert db.get_bans_by_actor("nobody") == []

    def test_permanent_ban_has_no_expiry(self, db: DatabaseManager) -> None:
        """Test that a NULL expiry survives storage."""
        db.insert_ban_record(make_ban(duration_seconds=0, expires_at=None, severity=Severity.EXTREME))

        [loaded] = db.get_bans_by_actor("bob")
        assert loaded.expires_at is None
        assert loaded.is_active(NOW + timedelta(days=365)) is True

    def test_risk_profiles(self, db: DatabaseManager) -> None:
        """Test upsert, listing and deletion of risk profiles."""
        assert db.get_risk_profile("bob") is None

        db.upsert_risk_profile(RiskProfile("bob", 40.0, 1, NOW, "dev-1"))
        db.upsert_risk_profile(RiskProfile("bob", 120.0, 2, NOW, "dev-1"))
        db.upsert_risk_profile(RiskProfile("eve", 90.0, 1, NOW, "dev-2"))
        db.upsert_risk_profile(RiskProfile("amy", 10.0, 1, NOW, "dev-3"))

        profile = db.get_risk_profile("bob")
        assert profile.cumulative_threat_score == 120.0
        assert profile.warning_count == 2
        assert profile.last_activity == NOW

        assert [p.actor_name for p in db.list_risk_profiles(min_score=80)] == ["bob", "eve"]
        assert [p.actor_name for p in db.list_risk_profiles(limit=1)] == ["bob"]

        assert db.delete_risk_profile("bob") is True
        assert db.delete_risk_profile("bob") is False

    def test_async_store(self, store: SQLiteRecordStore) -> None:
        """Test that the async wrapper reaches the same tables."""
        async def scenario():
            inserted = await store.insert_ban_record(make_ban())
            bans = await store.get_bans_by_device("dev-1")
            await store.upsert_risk_profile(RiskProfile("bob", 70.0, 1, NOW, "dev-1"))
            profile = await store.get_risk_profile("bob")
            return inserted, bans, profile

        inserted, bans, profile = asyncio.run(scenario())

        assert inserted is True
        assert len(bans) == 1
        assert profile.cumulative_threat_score == 70.0


class TestRiskContextEvaluator:
    """Tests for cumulative risk lookups."""

    def test_unknown_actor(self, store: SQLiteRecordStore) -> None:
        context = asyncio.run(RiskContextEvaluator(store).context("bob", "dev-1"))

        assert context.score_contribution == 0.0
        assert context.is_high_risk is False
        assert context.degraded is False

    def test_high_cumulative_score(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        """Test that a cumulative score above 100 is high risk."""
        db.upsert_risk_profile(RiskProfile("bob", 120.0, 2, NOW, "dev-1"))

        context = asyncio.run(RiskContextEvaluator(store).context("bob", "dev-1"))

        assert context.score_contribution == pytest.approx(12.0)
        assert context.is_high_risk is True

    def test_device_ban_is_high_risk(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        """Test that any ban on the device marks the actor high risk."""
        db.insert_ban_record(make_ban("someone-else", "dev-1"))

        context = asyncio.run(RiskContextEvaluator(store).context("bob", "dev-1"))

        assert context.is_high_risk is True
        assert context.has_device_ban is True

    def test_store_failure_degrades(self) -> None:
        """Test that a failed read is treated as low risk."""
        store = failing_store(sqlite3.OperationalError("database is locked"))

        context = asyncio.run(RiskContextEvaluator(store).context("bob", "dev-1"))

        assert context.degraded is True
        assert context.is_high_risk is False
        assert context.score_contribution == 0.0


class TestHistoryEvaluator:
    """Tests for prior-ban counting."""

    def test_counts_larger_of_actor_and_device(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        db.insert_ban_record(make_ban("bob", "dev-1", NOW - timedelta(days=3)))
        db.insert_ban_record(make_ban("bob", "dev-2", NOW - timedelta(days=2)))
        db.insert_ban_record(make_ban("eve", "dev-3", NOW - timedelta(days=1)))

        history = asyncio.run(HistoryEvaluator(store).history("bob", "dev-3"))

        assert history.previous_ban_count == 2
        assert history.warning_count == 0
        assert history.degraded is False

    def test_store_failure_degrades(self) -> None:
        store = failing_store(OSError("disk gone"))

        history = asyncio.run(HistoryEvaluator(store).history("bob", "dev-1"))

        assert history == HistoryContext(degraded=True)

    def test_persisted_warnings_do_not_feed_bonus(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        """Test that only the pending warning count reaches the score bonus."""
        db.upsert_risk_profile(RiskProfile("bob", 300.0, 9, NOW, "dev-1"))
        evaluator = HistoryEvaluator(store)

        settled = asyncio.run(evaluator.history("bob", "dev-1"))
        pending = asyncio.run(evaluator.history("bob", "dev-1", warning_count=3))

        assert settled.warning_count == 0
        assert evaluator.warning_bonus(settled) == 0
        assert pending.warning_count == 3
        assert evaluator.warning_bonus(pending) == 30

    def test_warning_bonus(self) -> None:
        """Test the bonus for devices with three or more pending warnings."""
        evaluator = HistoryEvaluator(MagicMock())

        assert evaluator.warning_bonus(HistoryContext(warning_count=2)) == 0
        assert evaluator.warning_bonus(HistoryContext(warning_count=3)) == 30
        assert evaluator.warning_bonus(HistoryContext(warning_count=5)) == 50


class TestEnforcementWriter:
    """Tests for durable enforcement."""

    def test_execute_ban(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        """Test that a ban writes the record and bumps the risk profile."""
        decision = DecisionEngine().decide(70, Severity.HIGH, 0, 0, "Explicit language detected", ["high:profanity_f"])
        writer = EnforcementWriter(store, FAST)

        assert asyncio.run(writer.execute_ban("bob", "dev-1", decision, "FUCK YOU ALL", NOW, 3)) is True

        [ban] = db.get_bans_by_device("dev-1")
        assert ban.duration_seconds == 21600
        assert ban.expires_at == NOW + timedelta(hours=6)
        assert ban.message_content == "FUCK YOU ALL"
        assert ban.room_id == 3

        profile = db.get_risk_profile("bob")
        assert profile.cumulative_threat_score == 70.0
        assert profile.warning_count == 1
        assert profile.device_fingerprint == "dev-1"

    def test_permanent_ban_never_expires(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        decision = DecisionEngine().decide(200, Severity.EXTREME, 0, 0, "", [])

        asyncio.run(EnforcementWriter(store, FAST).execute_ban("bob", "dev-1", decision, now=NOW))

        assert db.get_bans_by_device("dev-1")[0].expires_at is None

    def test_record_warning_accumulates(self, db: DatabaseManager, store: SQLiteRecordStore) -> None:
        warn = DecisionEngine().decide(40, None, 0, 0, "Social media link spam", [])
        writer = EnforcementWriter(store, FAST)

        asyncio.run(writer.record_warning("bob", "dev-1", warn, NOW))
        asyncio.run(writer.record_warning("bob", "dev-1", warn, NOW + timedelta(seconds=20)))

        profile = db.get_risk_profile("bob")
        assert profile.cumulative_threat_score == 80.0
        assert profile.warning_count == 2

    def test_retries_transient_failures(self) -> None:
        """Test that a write which fails once is retried and lands."""
        store = MagicMock()
        store.insert_ban_record = AsyncMock(side_effect=[sqlite3.OperationalError("locked"), True])
        store.get_risk_profile = AsyncMock(return_value=None)
        store.upsert_risk_profile = AsyncMock(return_value=None)
        decision = DecisionEngine().decide(120, None, 0, 0, "", [])

        result = asyncio.run(EnforcementWriter(store, FAST).execute_ban("bob", "dev-1", decision, now=NOW))

        assert result is True
        assert store.insert_ban_record.await_count == 2
        store.upsert_risk_profile.assert_awaited_once()

    def test_gives_up_after_attempts(self) -> None:
        """Test that persistent failure is reported, not raised."""
        store = failing_store(sqlite3.OperationalError("locked"))
        decision = DecisionEngine().decide(120, None, 0, 0, "", [])

        result = asyncio.run(EnforcementWriter(store, FAST).execute_ban("bob", "dev-1", decision, now=NOW))

        assert result is False
        assert store.insert_ban_record.await_count == 3
