"""Indentation-driven tree construction for classified lines."""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from .classify import LineClassifier
from .models import ContentType
from .rules import CompiledRules, default_compiled_rules

logger = logging.getLogger(__name__)

LEADING_WS_RE = re.compile(r"^[ \t]*")
NUMBERING_RE = re.compile(r"^\d+\.(?!\d)")

WORD_SPACES_PER_LEVEL = 4
MANUAL_SPACES_PER_LEVEL = 2


@dataclass(frozen=True)
class ClassifiedLine:
    line_number: int
    text: str
    content_type: ContentType
    indent: int


@dataclass
class Node:
    line: ClassifiedLine | None
    children: list[Node] = field(default_factory=list)

    @property
    def indent(self) -> int:
        return self.line.indent if self.line else -1

    @property
    def content_type(self) -> ContentType | None:
        return self.line.content_type if self.line else None

    def walk(self) -> Iterator[Node]:
        """Yield descendants in document order."""
        for child in self.children:
            yield child
            yield from child.walk()


def indent_level(
    raw: str, source: str = "word", markers: Sequence[str] | None = None
) -> int:
    """Compute the nesting level of a raw line.

    Word-converted text counts tabs, every four residual spaces, and one
    extra level for a leading bullet or numbering marker. Manually authored
    text counts every two leading spaces (and each tab) as one level.
    """
    leading = LEADING_WS_RE.match(raw)
    whitespace = leading.group(0) if leading else ""
    tabs = whitespace.count("\t")
    spaces = whitespace.count(" ")
    if source == "manual":
        return tabs + spaces // MANUAL_SPACES_PER_LEVEL
    level = tabs + spaces // WORD_SPACES_PER_LEVEL
    body = raw[len(whitespace):]
    if markers is None:
        markers = default_compiled_rules().bullet_markers
    if body.startswith(tuple(markers)) or NUMBERING_RE.match(body):
        level += 1
    return level


def classify_lines(
    text: str, rules: CompiledRules | None = None, source: str | None = None
) -> list[ClassifiedLine]:
    compiled = rules or default_compiled_rules()
    classifier = LineClassifier(compiled)
    indent_source = source or compiled.indent_source
    lines: list[ClassifiedLine] = []
    for number, raw in enumerate(text.split("\n"), start=1):
        stripped = raw.strip()
        if not stripped:
            continue
        content_type = classifier.classify(stripped)
        lines.append(
            ClassifiedLine(
                line_number=number,
                text=stripped,
                content_type=content_type,
                indent=indent_level(raw, indent_source, compiled.bullet_markers),
            )
        )
        logger.debug("Line %d classified as %s", number, content_type)
    return lines


def build_tree(
    lines: Iterable[ClassifiedLine],
    container_types: Iterable[ContentType] | None = None,
) -> Node:
    """Attach each line beneath the nearest shallower container."""
    containers = (
        frozenset(container_types)
        if container_types is not None
        else default_compiled_rules().container_types
    )
    root = Node(line=None)
    stack: list[Node] = [root]
    for line in lines:
        while len(stack) > 1 and stack[-1].indent >= line.indent:
            stack.pop()
        node = Node(line=line)
        stack[-1].children.append(node)
        if line.content_type in containers:
            stack.append(node)
    return root
