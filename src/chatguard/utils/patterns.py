"""
Versioned regular-expression tables used by the content classifier.

Three families of rules:
- Toxicity, grouped by severity tier (extreme down to low)
- Spam indicators (repetition, caps, punctuation, links, scams, contact details)
- Evasion indicators (spaced/dotted letters, invisible and lookalike characters)

Everything is compiled once when the library is built. A pattern that fails
to compile raises PatternLibraryError so the engine never starts with a
partial rule set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

from chatguard.utils.logging import get_logger

logger = get_logger(__name__)

PATTERN_LIBRARY_VERSION = "2.1.0"


class PatternLibraryError(RuntimeError):
    """Raised when a rule table contains a pattern that does not compile."""


class Severity(Enum):
    """Toxicity tiers, ordered from mildest to worst."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    EXTREME = "extreme"

    @property
    def level(self) -> int:
        """Numeric level, 1 (low) to 5 (extreme)."""
        return list(Severity).index(self) + 1

    @classmethod
    def from_level(cls, level: int) -> Severity:
        """Map a numeric level back to a tier; out-of-range values are clamped."""
        members = list(cls)
        return members[min(5, max(1, level)) - 1]


# Base score per matching pattern in each tier
TIER_SCORES: dict[Severity, int] = {
    Severity.EXTREME: 200,
    Severity.CRITICAL: 100,
    Severity.HIGH: 50,
    Severity.MEDIUM: 25,
    Severity.LOW: 10,
}

TIER_REASONS: dict[Severity, str] = {
    Severity.EXTREME: "Extreme content violation - immediate action required",
    Severity.CRITICAL: "Critical content violation - hate speech or slurs detected",
    Severity.HIGH: "Explicit language detected",
    Severity.MEDIUM: "Inappropriate language detected",
    Severity.LOW: "Mildly inappropriate content",
}

# (pattern, name) per tier, scanned extreme -> low
TOXIC_PATTERNS: dict[Severity, list[tuple[str, str]]] = {
    Severity.EXTREME: [
        (r"\b(kill\s*yourself|kys|go\s*die|hope\s*you\s*die)\b", "self_harm_incitement"),
        (r"\b(bomb\s*threat|terrorist|shoot\s*up|mass\s*shooting)\b", "violent_threat"),
        (r"\b(child\s*p[o0]rn|cp\b|p[e3]d[o0]|minor\s*sex)", "child_exploitation"),
        (r"\b(doxx|doxing|swat|swatting)\b", "doxxing"),
    ],
    Severity.CRITICAL: [
        (r"\b(n[i1!]gg[e3a]r?|n[i1!]gg[a4]|f[a4]gg[o0]t|f[a4]g|r[e3]t[a4]rd)\b", "slur"),
        (r"\b(wh[o0]r[e3]|sl[u0]t|c[u0]nt|b[i1]tch)\b", "sexual_insult"),
        (r"\b(k[i1]ll\s*(him|her|them|it)|murder|rape)\b", "violence"),
        (r"\b(nazi|hitler|kkk|white\s*power|heil)\b", "hate_symbol"),
    ],
    Severity.HIGH: [
        (r"\b(f+u+c+k+|f+u+k+|fck|fuk|fvck|phuck)\b", "profanity_f"),
        (r"(\bsh[i1!]t+|\bsh[1!]t|\bsht|\$h!t)\b", "profanity_s"),
        (r"(\ba+s+s+h+[o0]+l+e+|\b[a4]ssh[o0]le|\ba\$\$)", "profanity_a"),
        (r"\b(d[i1!]ck|c[o0]ck|p[e3]n[i1!]s)\b", "explicit_anatomy"),
        (r"\b(p[u0]ss+y|vag[i1!]na|t[i1!]t+s*|b[o0]+bs*)\b", "explicit_body"),
        (r"\b(stfu|gtfo|lmfao|wtf|omfg)\b", "profane_acronym"),
    ],
    Severity.MEDIUM: [
        (r"\b(stupid|idiot|moron|dumb|loser|pathetic)\b", "insult"),
        (r"\b(hate\s*you|hate\s*u|i\s*hate)\b", "hostility"),
        (r"\b(shut\s*up|go\s*away|leave|get\s*out)\b", "dismissal"),
        (r"\b(ugly|fat|gross|disgusting)\b", "body_shaming"),
        (r"\b(suck|sucks|sucking|sucker)\b", "sucks"),
        (r"\b(crap|damn|hell|piss)\b", "mild_profanity"),
    ],
    Severity.LOW: [
        (r"\b(noob|newb|scrub|trash|garbage)\b", "gamer_insult"),
        (r"\b(cringe|lame|boring|dumb)\b", "dismissive"),
        (r"\b(whatever|idc|idgaf)\b", "indifference"),
    ],
}


@dataclass(frozen=True)
class RuleSpec:
    """Uncompiled spam/evasion rule."""
    name: str
    pattern: str
    weight: int
    reason: str
    per_match: bool = False
    min_matches: int = 1
    case_sensitive: bool = False


@dataclass(frozen=True)
class Rule:
    """Compiled spam/evasion rule."""
    name: str
    regex: re.Pattern[str]
    weight: int
    reason: str
    per_match: bool = False
    min_matches: int = 1

    def score(self, message: str) -> int:
        """Weighted score this rule contributes to a message (0 when it does not fire)."""
        if self.per_match or self.min_matches > 1:
            hits = sum(1 for _ in self.regex.finditer(message))
            if hits < self.min_matches:
                return 0
            return self.weight * hits if self.per_match else self.weight
        return self.weight if self.regex.search(message) else 0


SPAM_RULES: list[RuleSpec] = [
    RuleSpec("repeated_chars", r"(.)\1{5,}", 15, "Repeated character spam", per_match=True),
    RuleSpec("repeated_words", r"\b(\w+)\s+\1\s+\1\b", 30, "Repeated word spam"),
    # Caps must be matched case-sensitively; requires at least one letter.
    # Ten characters, so short shouted insults like "FUCK YOU ALL" count.
    RuleSpec("all_caps", r"^(?=.*[A-Z])[A-Z\s!?.]{10,}$", 20, "All caps spam", case_sensitive=True),
    RuleSpec("excessive_punctuation", r"[!?]{4,}|\.{5,}", 10, "Excessive punctuation", per_match=True),
    RuleSpec("link_spam", r"(?:https?://|www\.)\S+", 20, "Link spam detected", per_match=True, min_matches=3),
    RuleSpec("social_links", r"(discord\.gg|t\.me|bit\.ly|tinyurl|linktr\.ee)", 40, "Social media link spam"),
    RuleSpec(
        "commercial_spam",
        r"\b(buy|sell|cheap|discount|offer|deal|free|win|prize|click|visit)\b.*(https?://|\$|www\.)",
        60,
        "Commercial spam detected",
    ),
    RuleSpec(
        "crypto_spam",
        r"\b(crypto|bitcoin|btc|eth|nft|airdrop|wallet|token)\b.*\b(free|send|dm|click)",
        70,
        "Crypto/scam spam detected",
    ),
    RuleSpec(
        "phone_number",
        r"(?:\+?\d{1,3}[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b",
        30,
        "Phone number shared",
        per_match=True,
    ),
    RuleSpec(
        "email_address",
        r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
        25,
        "Email address shared",
        per_match=True,
    ),
]

EVASION_RULES: list[RuleSpec] = [
    RuleSpec("spaced_letters", r"\b[a-z]\s[a-z]\s[a-z]\s[a-z]\b", 40, "Spaced out words to evade filter"),
    RuleSpec("dotted_letters", r"\b[a-z]\.[a-z]\.[a-z]\.[a-z]\b", 40, "Dotted words to evade filter"),
    RuleSpec("zero_width", "[\u200b-\u200d\ufeff]", 50, "Zero-width characters detected"),
    # Cyrillic letters that render like Latin ones
    RuleSpec("homoglyphs", "[\u0430\u0435\u043e\u0440\u0441\u0445\u0443\u0410\u0415\u041e\u0420\u0421\u0425\u0423]", 30, "Homoglyph characters detected"),
    RuleSpec("bidi_control", "[\u202a-\u202e\u2066-\u2069]", 50, "Text direction manipulation detected"),
]

LEETSPEAK_PATTERN = r"[0-9@$!#%&*]+"
LEETSPEAK_WEIGHT = 25
LEETSPEAK_REASON = "Excessive leetspeak detected"

MENTION_PATTERN = r"@\w+"


def _compile(pattern: str, name: str, flags: int = re.IGNORECASE) -> re.Pattern[str]:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise PatternLibraryError(f"Pattern {name!r} failed to compile: {e}") from e


class PatternLibrary:
    """
    Compiled rule tables.

    Built once per process and shared read-only by every classifier; the
    compiled patterns carry no per-call state.
    """

    def __init__(
        self,
        toxic: Mapping[Severity, Sequence[tuple[str, str]]] | None = None,
        spam: Iterable[RuleSpec] | None = None,
        evasion: Iterable[RuleSpec] | None = None,
        version: str = PATTERN_LIBRARY_VERSION,
    ) -> None:
        self.version = version
        toxic = TOXIC_PATTERNS if toxic is None else toxic

        # Always ordered extreme -> low regardless of the mapping's order
        self.toxic: list[tuple[Severity, list[tuple[re.Pattern[str], str]]]] = []
        for severity in sorted(toxic, key=lambda s: s.level, reverse=True):
            compiled = [
                (_compile(pattern, f"{severity.value}:{name}"), f"{severity.value}:{name}")
                for pattern, name in toxic[severity]
            ]
            self.toxic.append((severity, compiled))

        self.spam = [self._build_rule(spec) for spec in (SPAM_RULES if spam is None else spam)]
        self.evasion = [self._build_rule(spec) for spec in (EVASION_RULES if evasion is None else evasion)]
        self.leetspeak = _compile(LEETSPEAK_PATTERN, "leetspeak", 0)
        self.mentions = _compile(MENTION_PATTERN, "mentions", 0)

        logger.debug(
            "Pattern library v%s loaded: %d toxic, %d spam, %d evasion rules",
            self.version,
            sum(len(patterns) for _, patterns in self.toxic),
            len(self.spam),
            len(self.evasion),
        )

    @staticmethod
    def _build_rule(spec: RuleSpec) -> Rule:
        flags = 0 if spec.case_sensitive else re.IGNORECASE
        return Rule(
            name=spec.name,
            regex=_compile(spec.pattern, spec.name, flags),
            weight=spec.weight,
            reason=spec.reason,
            per_match=spec.per_match,
            min_matches=spec.min_matches,
        )


# Built at import so a broken table stops the process at startup
DEFAULT_LIBRARY = PatternLibrary()
