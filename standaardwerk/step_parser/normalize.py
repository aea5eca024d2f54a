"""Normalization of converted step-program text."""
from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from functools import partial

from .rules import CompiledRules, default_compiled_rules

logger = logging.getLogger(__name__)

BLANK_RUN_RE = re.compile(r"\n{3,}")
INDENT_RE = re.compile(r"^[ \t]*")
INNER_WS_RE = re.compile(r"[ \t\xa0]+")

ASSIGN_OPEN_RE = re.compile(r"^(?P<head>.*?[^\s=<>!])\s*=\s*$")
ASSIGN_CONT_RE = re.compile(r"^\s*=\s*(?P<value>[^=\s].*?)\s*$")

BLOCK_OPEN = "["
BLOCK_CLOSE = "]"

TRANSITION_MAX_PARTS = 4

LineStage = Callable[[list[str]], list[str]]


def now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def _indent_of(line: str) -> str:
    match = INDENT_RE.match(line)
    return match.group(0) if match else ""


def _next_content_index(lines: Sequence[str], start: int) -> int | None:
    for index in range(start, len(lines)):
        if lines[index].strip():
            return index
    return None


def decode_entities(text: str) -> str:
    """Decode named, numeric and hex entities until the text stops changing."""
    while True:
        decoded = html.unescape(text)
        if decoded == text:
            return decoded.replace("\xa0", " ")
        text = decoded


def unify_line_breaks(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return BLANK_RUN_RE.sub("\n\n", text)


def join_split_assignments(lines: list[str]) -> list[str]:
    """Merge ``name =`` with a following ``= value`` line."""
    result: list[str] = []
    consumed: set[int] = set()
    for index, line in enumerate(lines):
        if index in consumed:
            continue
        current = line
        cursor = index + 1
        while True:
            opening = ASSIGN_OPEN_RE.match(current)
            if not opening:
                break
            nxt = _next_content_index(lines, cursor)
            if nxt is None:
                break
            continuation = ASSIGN_CONT_RE.match(lines[nxt])
            if not continuation:
                break
            current = f"{opening.group('head')} = {continuation.group('value')}"
            consumed.update(range(cursor, nxt + 1))
            cursor = nxt + 1
        result.append(current)
    return result


def merge_or_blocks(lines: list[str]) -> list[str]:
    """Fold continuation lines inside ``[`` ... ``]`` blocks into their item."""
    result: list[str] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        if line.strip() != BLOCK_OPEN or not _has_block_close(lines, index + 1):
            result.append(line)
            index += 1
            continue
        result.append(line)
        index += 1
        item: str | None = None
        while index < len(lines) and lines[index].strip() != BLOCK_CLOSE:
            text = lines[index].strip()
            index += 1
            if not text:
                continue
            if item is None or text.startswith("+"):
                if item is not None:
                    result.append(item)
                item = lines[index - 1].rstrip()
            else:
                item = f"{item} {text}"
        if item is not None:
            result.append(item)
        if index < len(lines):
            result.append(lines[index])
            index += 1
    return result


def _has_block_close(lines: Sequence[str], start: int) -> bool:
    for line in lines[start:]:
        stripped = line.strip()
        if stripped == BLOCK_CLOSE:
            return True
        if stripped == BLOCK_OPEN:
            return False
    return False


def join_split_transitions(
    lines: list[str], rules: CompiledRules | None = None
) -> list[str]:
    """Rebuild ``+ von SCHRITT n`` declarations broken over several lines."""
    compiled = rules or default_compiled_rules()
    result: list[str] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        if compiled.transition_prefix_re.match(line.strip()):
            merged = _collect_transition(lines, index, compiled)
            if merged is not None:
                text, next_index = merged
                result.append(text)
                index = next_index
                continue
        result.append(line)
        index += 1
    return result


def _collect_transition(
    lines: Sequence[str], start: int, rules: CompiledRules
) -> tuple[str, int] | None:
    parts = [lines[start].strip()]
    cursor = start + 1
    while len(parts) < TRANSITION_MAX_PARTS:
        nxt = _next_content_index(lines, cursor)
        if nxt is None:
            return None
        parts.append(lines[nxt].strip())
        candidate = re.sub(r"^\+\s*", "+ ", " ".join(" ".join(parts).split()))
        if rules.transition_re.match(candidate):
            return _indent_of(lines[start]) + candidate, nxt + 1
        if not rules.transition_prefix_re.match(candidate):
            return None
        cursor = nxt + 1
    return None


def clean_whitespace(lines: list[str]) -> list[str]:
    """Trim trailing whitespace, collapse inner runs and drop empty lines."""
    result: list[str] = []
    for line in lines:
        body = line.strip()
        if not body:
            continue
        result.append(_indent_of(line) + INNER_WS_RE.sub(" ", body))
    return result


def line_stages(rules: CompiledRules | None = None) -> tuple[LineStage, ...]:
    return (
        join_split_assignments,
        merge_or_blocks,
        partial(join_split_transitions, rules=rules),
        clean_whitespace,
    )


def normalize_text(text: str, rules: CompiledRules | None = None) -> str:
    """Normalize raw document text; deterministic and idempotent.

    Transition keywords come from ``rules`` (the default tables when omitted).
    """
    if not text:
        return ""
    text = unify_line_breaks(decode_entities(text))
    lines = text.split("\n")
    for stage in line_stages(rules):
        lines = stage(lines)
    logger.debug("Normalized %d characters into %d lines", len(text), len(lines))
    return "\n".join(lines)
