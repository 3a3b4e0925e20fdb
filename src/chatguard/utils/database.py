"""
Record store for ban records and risk profiles.

Handles:
- RecordStore: the async get-by-key / put interface the engine depends on
- DatabaseManager: SQLite implementation of the tables
- SQLiteRecordStore: runs DatabaseManager calls off the event loop
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional, Protocol

from chatguard.utils.decision import BanRecord, RiskProfile
from chatguard.utils.logging import get_logger
from chatguard.utils.patterns import Severity

logger = get_logger(__name__)


class RecordStore(Protocol):
    """Persistence collaborator used by the evaluators and the enforcement writer."""

    async def get_risk_profile(self, actor_name: str) -> Optional[RiskProfile]:
        ...

    async def get_bans_by_actor(self, actor_name: str) -> list[BanRecord]:
        ...

    async def get_bans_by_device(self, device_id: str) -> list[BanRecord]:
        ...

    async def insert_ban_record(self, record: BanRecord) -> bool:
        ...

    async def upsert_risk_profile(self, profile: RiskProfile) -> None:
        ...

    async def list_risk_profiles(self, min_score: float = 0.0, limit: int = 50) -> list[RiskProfile]:
        ...

    async def delete_risk_profile(self, actor_name: str) -> bool:
        ...


def _to_text(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DatabaseManager:
    """
    SQLite database manager for moderation records.

    Every call opens its own connection, so the manager can be used from
    worker threads concurrently.
    """

    def __init__(self, db_path: str = "data/chatguard.db") -> None:
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info("Database initialized at %s", self.db_path)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with automatic cleanup.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Database error: %s", e)
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize database tables."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            # (device_id, created_at) makes ban inserts idempotent under retries
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS bans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    actor_name TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    reason TEXT,
                    severity TEXT,
                    threat_score INTEGER DEFAULT 0,
                    detected_patterns TEXT,
                    duration_seconds INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    message_content TEXT,
                    room_id INTEGER,
                    auto_ban BOOLEAN DEFAULT TRUE,
                    UNIQUE(device_id, created_at)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS risk_profiles (
                    actor_name TEXT PRIMARY KEY,
                    cumulative_threat_score REAL DEFAULT 0,
                    warning_count INTEGER DEFAULT 0,
                    last_activity TEXT,
                    device_fingerprint TEXT
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_bans_actor ON bans(actor_name)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_bans_device ON bans(device_id)")
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_risk_score ON risk_profiles(cumulative_threat_score)"
            )

    # ==================== Ban Records ====================

    @staticmethod
    def _row_to_ban(row: sqlite3.Row) -> BanRecord:
        return BanRecord(
            actor_name=row["actor_name"],
            device_id=row["device_id"],
            reason=row["reason"] or "",
            severity=Severity(row["severity"] or Severity.LOW.value),
            threat_score=int(row["threat_score"] or 0),
            detected_patterns=tuple(json.loads(row["detected_patterns"] or "[]")),
            duration_seconds=int(row["duration_seconds"] or 0),
            created_at=_from_text(row["created_at"]),
            expires_at=_from_text(row["expires_at"]),
            message_content=row["message_content"],
            room_id=row["room_id"],
            auto_ban=bool(row["auto_ban"]),
        )

    def insert_ban_record(self, record: BanRecord) -> bool:
        """Insert a ban. Returns False when the same (device, created_at) already exists."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO bans
                (actor_name, device_id, reason, severity, threat_score, detected_patterns,
                 duration_seconds, created_at, expires_at, message_content, room_id, auto_ban)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.actor_name,
                    record.device_id,
                    record.reason,
                    record.severity.value,
                    record.threat_score,
                    json.dumps(list(record.detected_patterns)),
                    record.duration_seconds,
                    _to_text(record.created_at),
                    _to_text(record.expires_at),
                    record.message_content,
                    record.room_id,
                    record.auto_ban,
                ),
            )
            return cursor.rowcount > 0

    def get_bans_by_actor(self, actor_name: str) -> list[BanRecord]:
        """Get every ban recorded against a username, newest first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM bans WHERE actor_name = ? ORDER BY created_at DESC",
                (actor_name,),
            )
            return [self._row_to_ban(row) for row in cursor.fetchall()]

    def get_bans_by_device(self, device_id: str) -> list[BanRecord]:
        """Get every ban recorded against a device, newest first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM bans WHERE device_id = ? ORDER BY created_at DESC",
                (device_id,),
            )
            return [self._row_to_ban(row) for row in cursor.fetchall()]

    # ==================== Risk Profiles ====================

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> RiskProfile:
        return RiskProfile(
            actor_name=row["actor_name"],
            cumulative_threat_score=float(row["cumulative_threat_score"] or 0),
            warning_count=int(row["warning_count"] or 0),
            last_activity=_from_text(row["last_activity"]),
            device_fingerprint=row["device_fingerprint"] or "",
        )

    def get_risk_profile(self, actor_name: str) -> Optional[RiskProfile]:
        """Get an actor's risk profile, or None when the actor is unknown."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM risk_profiles WHERE actor_name = ?", (actor_name,))
            row = cursor.fetchone()
            return self._row_to_profile(row) if row else None

    def upsert_risk_profile(self, profile: RiskProfile) -> None:
        """Write a risk profile, replacing any previous values."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO risk_profiles
                (actor_name, cumulative_threat_score, warning_count, last_activity, device_fingerprint)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(actor_name) DO UPDATE SET
                    cumulative_threat_score = excluded.cumulative_threat_score,
                    warning_count = excluded.warning_count,
                    last_activity = excluded.last_activity,
                    device_fingerprint = excluded.device_fingerprint
                """,
                (
                    profile.actor_name,
                    profile.cumulative_threat_score,
                    profile.warning_count,
                    _to_text(profile.last_activity),
                    profile.device_fingerprint,
                ),
            )

    def list_risk_profiles(self, min_score: float = 0.0, limit: int = 50) -> list[RiskProfile]:
        """Get profiles at or above min_score, highest score first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM risk_profiles
                WHERE cumulative_threat_score >= ?
                ORDER BY cumulative_threat_score DESC
                LIMIT ?
                """,
                (min_score, limit),
            )
            return [self._row_to_profile(row) for row in cursor.fetchall()]

    def delete_risk_profile(self, actor_name: str) -> bool:
        """Remove an actor's risk profile. Returns True if one existed."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM risk_profiles WHERE actor_name = ?", (actor_name,))
            return cursor.rowcount > 0


class SQLiteRecordStore:
    """RecordStore that runs each DatabaseManager call in a worker thread."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get_risk_profile(self, actor_name: str) -> Optional[RiskProfile]:
        return await asyncio.to_thread(self.db.get_risk_profile, actor_name)

    async def get_bans_by_actor(self, actor_name: str) -> list[BanRecord]:
        return await asyncio.to_thread(self.db.get_bans_by_actor, actor_name)

    async def get_bans_by_device(self, device_id: str) -> list[BanRecord]:
        return await asyncio.to_thread(self.db.get_bans_by_device, device_id)

    async def insert_ban_record(self, record: BanRecord) -> bool:
        return await asyncio.to_thread(self.db.insert_ban_record, record)

    async def upsert_risk_profile(self, profile: RiskProfile) -> None:
        await asyncio.to_thread(self.db.upsert_risk_profile, profile)

    async def list_risk_profiles(self, min_score: float = 0.0, limit: int = 50) -> list[RiskProfile]:
        return await asyncio.to_thread(self.db.list_risk_profiles, min_score, limit)

    async def delete_risk_profile(self, actor_name: str) -> bool:
        return await asyncio.to_thread(self.db.delete_risk_profile, actor_name)
