"""Priority-ordered line classification."""
from __future__ import annotations

import logging
import re
from collections.abc import Callable

from .models import ContentType
from .rules import CompiledRules, default_compiled_rules

logger = logging.getLogger(__name__)

BARE_ASSIGNMENT_RE = re.compile(r"^[^=]*[^\s=<>!]\s*=\s*$")
STANDALONE_EQUALS_RE = re.compile(r"(?<![=<>!])=(?!=)")

Rule = Callable[[str, CompiledRules], bool]


def is_cross_reference(text: str, rules: CompiledRules) -> bool:
    return any(pattern.search(text) for pattern in rules.cross_reference_res)


def is_rest(text: str, rules: CompiledRules) -> bool:
    return bool(rules.rest_re.match(text))


def is_numbered(text: str, rules: CompiledRules) -> bool:
    if rules.numbered_re.match(text):
        return True
    return any(pattern.match(text) for pattern in rules.learned_step_res)


def is_transition(text: str, rules: CompiledRules) -> bool:
    return bool(rules.transition_re.match(text))


def _starts_like_condition(text: str, rules: CompiledRules) -> bool:
    if text.startswith(rules.bullet_markers):
        return True
    return bool(rules.negation_re.match(text))


def is_assignment(text: str, rules: CompiledRules) -> bool:
    if _starts_like_condition(text, rules):
        return False
    if BARE_ASSIGNMENT_RE.match(text):
        return True
    return ":" not in text and bool(STANDALONE_EQUALS_RE.search(text))


def is_comment(text: str, rules: CompiledRules) -> bool:
    return text.startswith(rules.comment_prefixes)


# Order is significant: cross-references resemble step declarations.
CLASSIFICATION_RULES: tuple[tuple[ContentType, Rule], ...] = (
    (ContentType.CROSS_REFERENCE, is_cross_reference),
    (ContentType.REST, is_rest),
    (ContentType.NUMBERED, is_numbered),
    (ContentType.NON_SEQUENTIAL, is_transition),
    (ContentType.VARIABLE, is_assignment),
    (ContentType.COMMENT, is_comment),
)


class LineClassifier:
    """Assign exactly one content type to each line."""

    def __init__(self, rules: CompiledRules | None = None) -> None:
        self.rules = rules or default_compiled_rules()

    def classify(self, line: str) -> ContentType:
        text = line.strip()
        if not text:
            return ContentType.CONDITION
        for content_type, rule in CLASSIFICATION_RULES:
            if rule(text, self.rules):
                return content_type
        return ContentType.CONDITION


def classify_line(line: str, rules: CompiledRules | None = None) -> ContentType:
    return LineClassifier(rules).classify(line)
