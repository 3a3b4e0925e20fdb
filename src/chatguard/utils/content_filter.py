"""
Personal-information and profanity filter for outgoing chat content.

Detects and masks:
- Phone numbers, e-mail addresses, street addresses and ZIP codes
- Social security numbers and credit card numbers (Luhn-checked)
- IP addresses
- Profanity from the high, critical and extreme toxicity tiers,
  including spaced or dotted spellings ("f u c k", "f.u.c.k")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from chatguard.utils.patterns import DEFAULT_LIBRARY, PatternLibrary, Severity

PHONE_PATTERNS = [
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\(\d{3}\)\s*\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\+\d{1,3}[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{1,9}\b"),
    re.compile(r"\b\d{10,11}\b"),
]

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

ADDRESS_PATTERNS = [
    re.compile(
        r"\b\d{1,5}\s+\w+\s+(street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|court|ct|way|place|pl)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{5}(?:-\d{4})?\b"),
]

SSN_PATTERN = re.compile(r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b")

CREDIT_CARD_PATTERNS = [
    re.compile(r"\b4\d{3}[-.\s]?\d{4}[-.\s]?\d{4}[-.\s]?\d{4}\b"),
    re.compile(r"\b5[1-5]\d{2}[-.\s]?\d{4}[-.\s]?\d{4}[-.\s]?\d{4}\b"),
    re.compile(r"\b3[47]\d{2}[-.\s]?\d{6}[-.\s]?\d{5}\b"),
    re.compile(r"\b\d{4}[-.\s]?\d{4}[-.\s]?\d{4}[-.\s]?\d{4}\b"),
]

IP_PATTERN = re.compile(
    r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
)

SPAM_PATTERNS = [
    re.compile(r"(.)\1{5,}"),
    re.compile(r"(https?://\S+\s*){3,}"),
    re.compile(r"free|win|winner|congratulations|click here|subscribe|buy now", re.IGNORECASE),
]

# Runs of single characters separated by spaces or dots
SPACED_RUN = re.compile(r"\b(?:\w[\s.]){2,}\w\b")

BLOCKED = "***BLOCKED***"
PROFANITY_TIERS = (Severity.EXTREME, Severity.CRITICAL, Severity.HIGH)


@dataclass(frozen=True)
class FilterSettings:
    """Which checks are enabled. Everything is on by default."""
    block_phone_numbers: bool = True
    block_emails: bool = True
    block_addresses: bool = True
    block_social_security: bool = True
    block_credit_cards: bool = True
    block_ip_addresses: bool = True
    profanity_filter: bool = True


@dataclass
class FilterResult:
    """Outcome of filtering one message."""
    blocked: bool
    reasons: list[str] = field(default_factory=list)
    threat_score: int = 0
    filtered_content: str = ""
    has_profanity: bool = False


def luhn_valid(digits: str) -> bool:
    """Luhn checksum for a string of digits."""
    if not digits.isdigit():
        return False
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


def _collapse_spacing(text: str) -> str:
    return SPACED_RUN.sub(lambda m: re.sub(r"[\s.]", "", m.group()), text)


def filter_content(
    content: str,
    settings: Optional[FilterSettings] = None,
    library: Optional[PatternLibrary] = None,
) -> FilterResult:
    """
    Detect and mask personal information and profanity.

    Args:
        content: Message text
        settings: Enabled checks (default: all)
        library: Pattern library for profanity tiers

    Returns:
        FilterResult: Blocking verdict, reasons and masked content
    """
    settings = settings or FilterSettings()
    library = library or DEFAULT_LIBRARY

    reasons: list[str] = []
    score = 0
    critical = False
    has_profanity = False
    filtered = content

    if settings.block_credit_cards:
        for pattern in CREDIT_CARD_PATTERNS:
            for match in pattern.findall(content):
                digits = re.sub(r"\D", "", match)
                if 13 <= len(digits) <= 19 and luhn_valid(digits) and match in filtered:
                    reasons.append("Credit card detected - CRITICAL")
                    score += 100
                    critical = True
                    filtered = filtered.replace(match, "[CARD BLOCKED]")

    if settings.block_social_security:
        matches = SSN_PATTERN.findall(filtered)
        if matches:
            reasons.append("SSN detected - CRITICAL")
            score += 100
            critical = True
            filtered = SSN_PATTERN.sub("[SSN BLOCKED]", filtered)

    if settings.block_phone_numbers:
        for pattern in PHONE_PATTERNS:
            matches = pattern.findall(filtered)
            if matches:
                reasons.append(f"Phone number detected: {len(matches)} found")
                score += 30 * len(matches)
                filtered = pattern.sub("[PHONE BLOCKED]", filtered)

    if settings.block_emails:
        matches = EMAIL_PATTERN.findall(filtered)
        if matches:
            reasons.append(f"Email address detected: {len(matches)} found")
            score += 25 * len(matches)
            filtered = EMAIL_PATTERN.sub("[EMAIL BLOCKED]", filtered)

    if settings.block_ip_addresses:
        matches = IP_PATTERN.findall(filtered)
        if matches:
            reasons.append(f"IP address detected: {len(matches)} found")
            score += 15 * len(matches)
            filtered = IP_PATTERN.sub("[IP BLOCKED]", filtered)

    if settings.block_addresses:
        for pattern in ADDRESS_PATTERNS:
            if pattern.search(filtered):
                reasons.append("Address/ZIP detected")
                score += 20
                filtered = pattern.sub("[ADDRESS BLOCKED]", filtered)

    if settings.profanity_filter:
        for severity, tier in library.toxic:
            if severity not in PROFANITY_TIERS:
                continue
            for regex, name in tier:
                direct = regex.search(filtered)
                spaced = regex.search(_collapse_spacing(filtered))
                if not direct and not spaced:
                    continue
                reasons.append(f"Banned word: {name}")
                score += 100
                has_profanity = True
                filtered = regex.sub(BLOCKED, filtered)
                filtered = SPACED_RUN.sub(
                    lambda m: BLOCKED if regex.search(re.sub(r"[\s.]", "", m.group())) else m.group(),
                    filtered,
                )

    for pattern in SPAM_PATTERNS:
        if pattern.search(content):
            reasons.append("Spam pattern detected")
            score += 20

    return FilterResult(
        blocked=score >= 50 or critical or has_profanity,
        reasons=reasons,
        threat_score=score,
        filtered_content=filtered,
        has_profanity=has_profanity,
    )
