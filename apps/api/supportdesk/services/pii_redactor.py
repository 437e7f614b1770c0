"""PII redaction for model calls.

Strips personal data (names, account/identity numbers, phones, emails, card
numbers, dates of birth) from customer text before it leaves the system.
Each span becomes a typed placeholder such as ``[PHONE_1]``; the mapping back
to the original values stays in memory and is only used to restore text for
internal display, never for anything sent to a customer.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class PIIType(str, Enum):
    NAME = "NAME"
    ACCT_NUM = "ACCT_NUM"
    BVN = "BVN"
    NIN = "NIN"
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    CARD_NUM = "CARD_NUM"
    DOB = "DOB"


@dataclass(frozen=True)
class Redaction:
    """One redacted span of the input text."""

    type: PIIType
    original: str
    token: str
    start: int
    end: int


@dataclass
class RedactionResult:
    text: str
    redactions: list[Redaction] = field(default_factory=list)

    @property
    def has_redactions(self) -> bool:
        return bool(self.redactions)

    @property
    def mapping(self) -> dict[str, str]:
        """Placeholder -> original value."""
        return {r.token: r.original for r in self.redactions}


NAME_TITLES = ["Chief", "Dr", "Engr", "Barr", "Prof", "Alhaji", "Alhaja", "Pastor", "Rev", "Hon"]
KNOWN_FIRST_NAMES = [
    # Yoruba
    "Adebayo", "Oluwaseun", "Ayodeji", "Temitope", "Oluwafemi", "Adewale", "Olumide", "Tunde",
    "Funke", "Bukola", "Adeola", "Folake", "Yetunde", "Kehinde", "Taiwo", "Olayinka",
    "Babatunde", "Oluwakemi", "Adunni", "Abiodun",
    # Igbo
    "Chukwuemeka", "Obioma", "Chidinma", "Emeka", "Nnamdi", "Obinna", "Chinedu", "Adaeze",
    "Ngozi", "Chiamaka", "Uchenna", "Chinonso", "Kenechukwu", "Somtochukwu", "Chisom", "Ebuka",
    "Ifeanyi", "Kosisochukwu", "Ogochukwu",
    # Hausa
    "Abubakar", "Musa", "Ibrahim", "Suleiman", "Yusuf", "Fatima", "Amina", "Aisha", "Halima",
    "Zainab", "Mohammed", "Abdullahi", "Bello", "Usman", "Kabiru", "Hauwa", "Hadiza",
    "Khadija", "Sadiya",
    # English
    "John", "Mary", "Peter", "Paul", "Grace", "Blessing", "Favour", "Joy", "Peace", "Faith",
    "Victor", "Emmanuel", "David", "Samuel", "Daniel", "Michael", "Joseph", "Elizabeth",
    "Sarah", "Ruth",
]

_CAPITALIZED_NAME = r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2})"

# Earlier entries win when spans overlap.
_PATTERNS: list[tuple[PIIType, re.Pattern[str]]] = [
    (PIIType.EMAIL, re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")),
    (PIIType.CARD_NUM, re.compile(r"\b(?:\d[ -]*?){13,19}\b")),
    (
        PIIType.DOB,
        re.compile(
            r"\b(?:0?[1-9]|[12][0-9]|3[01])[/-](?:0?[1-9]|1[0-2])[/-](?:19|20)\d{2}\b"
        ),
    ),
    (PIIType.PHONE, re.compile(r"(?:\+234|\b234|\b0)[789][01][0-9]{8}\b")),
    (PIIType.BVN, re.compile(r"\b22[0-9]{9}\b")),
    (PIIType.NIN, re.compile(r"\b[0-9]{11}\b")),
    (PIIType.ACCT_NUM, re.compile(r"\b[0-9]{10}\b")),
]

# Intro keywords are case-insensitive; the captured name must be capitalized so
# "call me on 0803..." never yields a NAME.
_NAME_INTRO_PATTERNS = [
    re.compile(r"(?i:\b(?:my name is|i am|i'm|this is|call me))\s+" + _CAPITALIZED_NAME),
    re.compile(r"(?i:\b(?:name|customer|client|account holder))\s*:\s*" + _CAPITALIZED_NAME),
]
_TITLE_PATTERN = re.compile(
    r"\b(?i:" + "|".join(NAME_TITLES) + r")\.?\s+" + _CAPITALIZED_NAME
)
_KNOWN_NAME_PATTERN = re.compile(r"\b(?:" + "|".join(KNOWN_FIRST_NAMES) + r")\b")
_TOKEN_PATTERN = re.compile(r"\[(" + "|".join(t.value for t in PIIType) + r")_(\d+)\]")


def _overlaps(start: int, end: int, taken: list[tuple[int, int]]) -> bool:
    return any(start < t_end and t_start < end for t_start, t_end in taken)


class PIIRedactor:
    """Deterministic pattern + dictionary redactor."""

    def _candidate_spans(self, text: str) -> list[tuple[PIIType, int, int]]:
        spans: list[tuple[PIIType, int, int]] = []
        for pii_type, pattern in _PATTERNS:
            for match in pattern.finditer(text):
                start, end = match.span()
                # CARD_NUM may swallow trailing separators
                original = match.group(0).rstrip(" -")
                spans.append((pii_type, start, start + len(original)))
        for pattern in _NAME_INTRO_PATTERNS:
            for match in pattern.finditer(text):
                spans.append((PIIType.NAME, match.start(1), match.end(1)))
        for match in _TITLE_PATTERN.finditer(text):
            spans.append((PIIType.NAME, match.start(), match.end()))
        for match in _KNOWN_NAME_PATTERN.finditer(text):
            spans.append((PIIType.NAME, match.start(), match.end()))
        return spans

    def redact(self, text: str) -> RedactionResult:
        """Replace every PII span with a ``[TYPE_n]`` placeholder."""
        if not text:
            return RedactionResult(text=text or "")

        accepted: list[tuple[PIIType, int, int]] = []
        taken: list[tuple[int, int]] = []
        for pii_type, start, end in self._candidate_spans(text):
            if end <= start or _overlaps(start, end, taken):
                continue
            accepted.append((pii_type, start, end))
            taken.append((start, end))

        accepted.sort(key=lambda span: span[1])
        counters: Counter[PIIType] = Counter()
        redactions: list[Redaction] = []
        parts: list[str] = []
        cursor = 0
        for pii_type, start, end in accepted:
            counters[pii_type] += 1
            token = f"[{pii_type.value}_{counters[pii_type]}]"
            redactions.append(
                Redaction(type=pii_type, original=text[start:end], token=token, start=start, end=end)
            )
            parts.append(text[cursor:start])
            parts.append(token)
            cursor = end
        parts.append(text[cursor:])

        if redactions:
            logger.debug(
                "PII redaction replaced %d spans", len(redactions),
                extra={"pii_types": sorted({r.type.value for r in redactions})},
            )
        return RedactionResult(text="".join(parts), redactions=redactions)

    def restore(self, text: str, redactions: list[Redaction] | dict[str, str]) -> str:
        """Put original values back. Internal display only."""
        mapping = redactions if isinstance(redactions, dict) else {r.token: r.original for r in redactions}
        if not mapping:
            return text
        return _TOKEN_PATTERN.sub(lambda m: mapping.get(m.group(0), m.group(0)), text)

    def summarize(self, text: str) -> dict[str, int]:
        """Count redactions by type (all types present, zero when absent)."""
        counts = {pii_type.value: 0 for pii_type in PIIType}
        for redaction in self.redact(text).redactions:
            counts[redaction.type.value] += 1
        return counts


pii_redactor = PIIRedactor()
