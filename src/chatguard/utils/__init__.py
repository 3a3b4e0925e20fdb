"""
Building blocks of the moderation engine.

Provides:
- logging: Logging setup with personal-information redaction
- patterns: Versioned toxicity, spam and evasion rule tables
- classifier: Content classifier over the pattern library
- behavior: Sliding-window behavioral tracker
- risk: Risk context and ban history evaluators
- decision: Data model and decision engine
- strikes: Warning tracker with automatic escalation
- enforcement: Retried ban and risk-profile writes
- database: SQLite record store
- content_filter: Personal-information and profanity masking
"""

from chatguard.utils.logging import get_logger, setup_logging
from chatguard.utils.patterns import DEFAULT_LIBRARY, PatternLibrary, PatternLibraryError, Severity
from chatguard.utils.classifier import ClassificationResult, Classifier, ContentClassifier
from chatguard.utils.behavior import BehaviorFlags, BehaviorTracker
from chatguard.utils.decision import (
    BanDecision,
    BanRecord,
    DecisionEngine,
    MessageEvent,
    RiskProfile,
    SuggestedAction,
)
from chatguard.utils.database import DatabaseManager, RecordStore, SQLiteRecordStore
from chatguard.utils.risk import HistoryContext, HistoryEvaluator, RiskContext, RiskContextEvaluator
from chatguard.utils.strikes import WarningTracker
from chatguard.utils.enforcement import EnforcementWriter
from chatguard.utils.content_filter import FilterResult, FilterSettings, filter_content

__all__ = [
    "get_logger",
    "setup_logging",
    "DEFAULT_LIBRARY",
    "PatternLibrary",
    "PatternLibraryError",
    "Severity",
    "ClassificationResult",
    "Classifier",
    "ContentClassifier",
    "BehaviorFlags",
    "BehaviorTracker",
    "BanDecision",
    "BanRecord",
    "DecisionEngine",
    "MessageEvent",
    "RiskProfile",
    "SuggestedAction",
    "DatabaseManager",
    "RecordStore",
    "SQLiteRecordStore",
    "HistoryContext",
    "HistoryEvaluator",
    "RiskContext",
    "RiskContextEvaluator",
    "WarningTracker",
    "EnforcementWriter",
    "FilterResult",
    "FilterSettings",
    "filter_content",
]
