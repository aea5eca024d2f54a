"""Rule suggestions mined from unrecognised lines."""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import ClassVar

from .models import UnknownLine
from .rules import DEFAULT_COMMENT_PREFIXES

logger = logging.getLogger(__name__)

STEP_CONFIDENCE = 0.8
CONDITION_CONFIDENCE = 0.6
CROSS_REFERENCE_CONFIDENCE = 0.9
VARIABLE_CONFIDENCE = 0.8
MIN_SUGGESTION_CONFIDENCE = 0.5

TOP_SUGGESTIONS = 10
EXAMPLES_PER_GROUP = 5

STEP_LIKE_RE = re.compile(r"^(?P<keyword>[^\W\d_]+)\s+(?P<number>\d+)\s*:\s*(?P<description>.*)$")
CROSS_REFERENCE_LIKE_RE = re.compile(
    r"\((?P<program>[^()]+?)\s+(?P<keyword>[^\W\d_]+)\s+(?P<steps>\d+(?:\s*\+\s*\d+)*)\)"
)
CONDITION_MARKER_RE = re.compile(r"^(?P<marker>[+-])\s*(?P<body>.+)$")


@dataclass(frozen=True)
class StepSuggestion:
    type: ClassVar[str] = "step"
    subtype: str
    pattern: str
    confidence: float
    example: str
    line_number: int = 0


@dataclass(frozen=True)
class ConditionSuggestion:
    type: ClassVar[str] = "condition"
    subtype: str
    pattern: str
    confidence: float
    example: str
    line_number: int = 0


@dataclass(frozen=True)
class CrossReferenceSuggestion:
    type: ClassVar[str] = "cross_reference"
    subtype: str
    pattern: str
    confidence: float
    example: str
    line_number: int = 0


@dataclass(frozen=True)
class VariableSuggestion:
    type: ClassVar[str] = "variable"
    subtype: str
    pattern: str
    confidence: float
    example: str
    line_number: int = 0


Suggestion = StepSuggestion | ConditionSuggestion | CrossReferenceSuggestion | VariableSuggestion


@dataclass
class AggregatedSuggestion:
    suggestion: Suggestion
    frequency: int = 1
    confidence: float = 0.0
    examples: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return self.suggestion.type, self.suggestion.subtype

    @property
    def score(self) -> float:
        return self.confidence * self.frequency

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.suggestion.type,
            "subtype": self.suggestion.subtype,
            "pattern": self.suggestion.pattern,
            "confidence": self.confidence,
            "frequency": self.frequency,
            "examples": list(self.examples),
        }


def analyze_unknown_line(line: UnknownLine) -> Suggestion | None:
    """Guess which rule table would have recognised ``line``."""
    text = line.text.strip()
    if not text or text.startswith(tuple(DEFAULT_COMMENT_PREFIXES)):
        return None
    reference = CROSS_REFERENCE_LIKE_RE.search(text)
    if reference:
        keyword = reference.group("keyword").upper()
        return CrossReferenceSuggestion(
            subtype=keyword,
            pattern=(
                rf"\((?P<program>[^()]+?)\s+{re.escape(keyword)}\s+(?P<steps>[0-9+\s]+)\)"
            ),
            confidence=CROSS_REFERENCE_CONFIDENCE,
            example=text,
            line_number=line.line_number,
        )
    if "=" in text and ":" not in text:
        words = text.partition("=")[0].split()
        if not words:
            return None
        return VariableSuggestion(
            subtype=words[0].casefold(),
            pattern=rf"^{re.escape(words[0])}(?:\s[^=]*)?=",
            confidence=VARIABLE_CONFIDENCE,
            example=text,
            line_number=line.line_number,
        )
    step = STEP_LIKE_RE.match(text)
    if step:
        keyword = step.group("keyword").upper()
        return StepSuggestion(
            subtype=keyword,
            pattern=rf"^{re.escape(keyword)}\s+(?P<number>\d+)\s*:\s*(?P<description>.*)$",
            confidence=STEP_CONFIDENCE,
            example=text,
            line_number=line.line_number,
        )
    marker = CONDITION_MARKER_RE.match(text)
    if marker:
        return ConditionSuggestion(
            subtype=marker.group("marker"),
            pattern=rf"^{re.escape(marker.group('marker'))}\s*\S",
            confidence=CONDITION_CONFIDENCE,
            example=text,
            line_number=line.line_number,
        )
    return None


def extract_suggestions(lines: Iterable[UnknownLine]) -> list[Suggestion]:
    suggestions: list[Suggestion] = []
    for line in lines:
        suggestion = analyze_unknown_line(line)
        if suggestion is None or suggestion.confidence <= MIN_SUGGESTION_CONFIDENCE:
            continue
        suggestions.append(suggestion)
    return suggestions


def aggregate_suggestions(
    suggestions: Iterable[Suggestion],
    min_confidence: float,
    *,
    limit: int = TOP_SUGGESTIONS,
    examples_per_group: int = EXAMPLES_PER_GROUP,
) -> list[AggregatedSuggestion]:
    """Group by (type, subtype), rank by confidence times frequency."""
    grouped: dict[tuple[str, str], AggregatedSuggestion] = {}
    for suggestion in suggestions:
        if suggestion.confidence < min_confidence:
            continue
        key = (suggestion.type, suggestion.subtype)
        entry = grouped.get(key)
        if entry is None:
            grouped[key] = AggregatedSuggestion(
                suggestion=suggestion,
                confidence=suggestion.confidence,
                examples=[suggestion.example],
            )
            continue
        entry.frequency += 1
        entry.confidence = max(entry.confidence, suggestion.confidence)
        if len(entry.examples) < examples_per_group and suggestion.example not in entry.examples:
            entry.examples.append(suggestion.example)
    ranked = sorted(grouped.values(), key=lambda entry: entry.score, reverse=True)
    return ranked[:limit]
