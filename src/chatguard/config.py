"""
Configuration management for the moderation engine.

Loads configuration from environment variables and .env files,
validates values, and provides type-safe access to every threshold
the engine uses.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "CHATGUARD_"


@dataclass(frozen=True)
class ModerationThresholds:
    """
    Every tunable number used by the classifier, trackers and decision engine.

    Windows and durations are in seconds. Defaults reproduce the
    production rule set; see DESIGN.md before changing any of them.
    """

    # Content classification
    spam_threshold: int = 50
    evasion_threshold: int = 30
    evasion_penalty: int = 30
    leetspeak_ratio: float = 0.3

    # Behavioral flags
    rapid_fire_count: int = 5
    rapid_fire_window: float = 10.0
    rapid_fire_score: int = 40
    flood_count: int = 20
    flood_window: float = 60.0
    flood_score: int = 60
    repetition_count: int = 3
    repetition_score: int = 30
    short_message_length: int = 3
    short_spam_count: int = 3
    short_spam_window: float = 30.0
    short_spam_score: int = 20
    mention_count: int = 5
    mention_score: int = 35
    suspicious_score: int = 40

    # Sliding window
    history_max_entries: int = 100
    history_max_age: float = 3600.0

    # Risk context and history
    risk_score_fraction: float = 0.1
    high_risk_score: float = 100.0
    high_risk_multiplier: float = 1.5
    warning_bonus_threshold: int = 3
    warning_bonus_per_warning: int = 10

    # Decision bands
    perm_ban_score: int = 200
    critical_score: int = 150
    high_score: int = 100
    medium_score: int = 70
    warn_score: int = 40
    mute_score: int = 20
    critical_ban_seconds: int = 86400
    high_ban_seconds: int = 21600
    high_ban_prior_factor: float = 0.5
    medium_ban_seconds: int = 3600
    perm_ban_prior_bans: int = 3

    # Warning escalation
    warning_limit: int = 3
    warning_ban_seconds: int = 3600

    # Enforcement writes
    enforcement_attempts: int = 3
    enforcement_backoff: float = 0.5
    enforcement_backoff_max: float = 4.0


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for the moderation engine.

    Attributes:
        log_level: Logging level (default: INFO)
        log_file: Optional log file path
        database_path: SQLite file backing ban records and risk profiles
        redact_logs: Mask personal information in log output
        thresholds: Scoring and escalation thresholds
    """

    log_level: str = "INFO"
    log_file: str | None = None
    database_path: str = "data/chatguard.db"
    redact_logs: bool = True
    thresholds: ModerationThresholds = field(default_factory=ModerationThresholds)


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean from environment variable string."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_number(value: str, kind: type) -> int | float:
    """Parse an int or float, raising ValueError on garbage or negatives."""
    number = kind(value)
    if number < 0:
        raise ValueError(f"{value} is negative")
    return number


def _load_thresholds(errors: list[str]) -> ModerationThresholds:
    """Apply CHATGUARD_<FIELD> overrides on top of the defaults."""
    defaults = ModerationThresholds()
    overrides: dict[str, int | float] = {}

    for item in fields(ModerationThresholds):
        env_name = ENV_PREFIX + item.name.upper()
        raw = os.getenv(env_name)
        if raw is None or raw.strip() == "":
            continue
        kind = type(getattr(defaults, item.name))
        try:
            overrides[item.name] = _parse_number(raw.strip(), kind)
        except ValueError:
            errors.append(f"{env_name} must be a non-negative {kind.__name__}, got {raw!r}")

    return replace(defaults, **overrides)


def load_config(env_file: str | Path | None = None) -> Config:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory and parent directories.

    Returns:
        Config: Validated configuration object

    Raises:
        ValueError: If any threshold override is invalid
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    errors: list[str] = []
    thresholds = _load_thresholds(errors)

    if thresholds.enforcement_attempts < 1:
        errors.append(f"{ENV_PREFIX}ENFORCEMENT_ATTEMPTS must be at least 1")
    if thresholds.history_max_entries < 1:
        errors.append(f"{ENV_PREFIX}HISTORY_MAX_ENTRIES must be at least 1")

    if errors:
        error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        log_level = "INFO"

    return Config(
        log_level=log_level,
        log_file=os.getenv("LOG_FILE") or None,
        database_path=os.getenv(f"{ENV_PREFIX}DATABASE", "data/chatguard.db"),
        redact_logs=_parse_bool(os.getenv(f"{ENV_PREFIX}REDACT_LOGS"), True),
        thresholds=thresholds,
    )
