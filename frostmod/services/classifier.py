"""Message classification strategies used by the moderation engine."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, FrozenSet, List, Optional, Protocol

from ..errors import CollaboratorUnavailable
from .settings import FilterLevel, GuildPolicy

logger = logging.getLogger(__name__)

# Longest prefix of a message that is ever sent to an external scorer.
MAX_SCORED_LENGTH = 500

SLUR_TERMS = frozenset(
    {
        "nigger",
        "faggot",
        "retard",
        "kike",
        "chink",
        "spic",
        "wetback",
        "beaner",
        "tranny",
        "dyke",
    }
)

PROFANITY_TERMS = frozenset(
    {
        "fuck",
        "fucking",
        "fucked",
        "fucker",
        "shit",
        "shitty",
        "bullshit",
        "bitch",
        "bitches",
        "asshole",
        "dick",
        "pussy",
        "cunt",
        "damn",
        "hell",
        "ass",
        "piss",
        "cock",
        "whore",
        "slut",
    }
)

FILTER_SETS: Dict[FilterLevel, FrozenSet[str]] = {
    FilterLevel.LIGHT: frozenset(),
    FilterLevel.MODERATE: SLUR_TERMS,
    FilterLevel.STRICT: SLUR_TERMS | PROFANITY_TERMS,
}

_NON_ALPHA = re.compile(r"[^a-z]")


class Severity(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True)
class ModerationVerdict:
    """Outcome of classifying a single message."""

    severity: Severity
    reason: str = ""
    score: Optional[float] = None
    matched_terms: FrozenSet[str] = field(default_factory=frozenset)
    unknown: bool = False

    @property
    def flagged(self) -> bool:
        return self.severity > Severity.NONE

    @classmethod
    def clean(cls, reason: str = "No violation detected") -> "ModerationVerdict":
        return cls(severity=Severity.NONE, reason=reason)

    @classmethod
    def unavailable(cls, reason: str) -> "ModerationVerdict":
        """Marker for a scorer outage. The engine treats it as NONE."""
        return cls(severity=Severity.NONE, reason=reason, unknown=True)


@dataclass(frozen=True)
class ToxicityResult:
    label: str
    score: float


class ToxicityScorer(Protocol):
    async def classify_toxicity(self, text: str) -> ToxicityResult: ...


class ContentClassifier(Protocol):
    """Anything that can turn a message into a verdict for a guild policy."""

    name: str
    rate_limited: bool

    async def evaluate(self, text: str, policy: GuildPolicy) -> ModerationVerdict: ...


def normalize_tokens(text: str) -> List[str]:
    """Lowercase, split on whitespace and strip non-letters from each token."""

    tokens = (_NON_ALPHA.sub("", word) for word in text.lower().split())
    return [token for token in tokens if token]


def match_terms(text: str, filter_level: Optional[FilterLevel]) -> List[str]:
    """Return the filtered words found in ``text``, in order of first appearance."""

    if not text or filter_level is None:
        return []
    words = FILTER_SETS[filter_level]
    found: List[str] = []
    for token in normalize_tokens(text):
        if token in words and token not in found:
            found.append(token)
    return found


def contains_filtered_word(text: str, filter_level: Optional[FilterLevel]) -> bool:
    return bool(match_terms(text, filter_level))


def severity_for_score(score: float) -> Severity:
    if score > 0.8:
        return Severity.HIGH
    if score > 0.6:
        return Severity.MEDIUM
    if score > 0.4:
        return Severity.LOW
    return Severity.NONE


class KeywordClassifier:
    """Static word-list matching. Binary: HIGH on any match, NONE otherwise."""

    name = "keyword"
    rate_limited = False

    async def evaluate(self, text: str, policy: GuildPolicy) -> ModerationVerdict:
        if not text or policy.filter_level is None:
            return ModerationVerdict.clean()
        matched = match_terms(text, policy.filter_level)
        if not matched:
            return ModerationVerdict.clean()
        return ModerationVerdict(
            severity=Severity.HIGH,
            reason=f"Matched {policy.filter_level.value} filter: {', '.join(matched)}",
            matched_terms=frozenset(matched),
        )


class ScoredClassifier:
    """Toxicity probability from an external model, bucketed into severity tiers."""

    name = "scored"
    rate_limited = True

    def __init__(self, scorer: ToxicityScorer, max_length: int = MAX_SCORED_LENGTH):
        self._scorer = scorer
        self._max_length = max_length

    async def evaluate(self, text: str, policy: GuildPolicy) -> ModerationVerdict:
        if not text or not text.strip():
            return ModerationVerdict.clean()
        try:
            result = await self._scorer.classify_toxicity(text[: self._max_length])
        except CollaboratorUnavailable as exc:
            logger.warning(
                "Toxicity scorer unavailable for guild %s; letting message through: %s",
                policy.guild_id,
                exc,
            )
            return ModerationVerdict.unavailable(str(exc))

        score = min(max(result.score, 0.0), 1.0)
        severity = severity_for_score(score)
        if severity is Severity.NONE:
            return ModerationVerdict(severity=severity, reason="Below toxicity threshold", score=score)
        return ModerationVerdict(
            severity=severity,
            reason=f"{result.label} ({score:.2f})",
            score=score,
        )
