"""End-to-end parse of one document."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .model_builder import ModelBuilder
from .models import Program
from .normalize import normalize_text
from .rules import CompiledRules, RuleSet, default_compiled_rules
from .structure import ClassifiedLine, build_tree, classify_lines
from .validate import validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseResult:
    program: Program
    normalized_text: str
    lines: tuple[ClassifiedLine, ...]
    source: str | None = None

    @property
    def step_count(self) -> int:
        return len(self.program.steps)

    @property
    def variable_count(self) -> int:
        return len(self.program.variables)

    @property
    def unknown_count(self) -> int:
        return len(self.program.unknown_lines)


def _compiled(rules: RuleSet | CompiledRules | None) -> CompiledRules:
    if rules is None:
        return default_compiled_rules()
    if isinstance(rules, RuleSet):
        return rules.compile()
    return rules


def parse_text(
    text: str,
    rules: RuleSet | CompiledRules | None = None,
    *,
    indent_source: str | None = None,
    provenance: str | None = None,
) -> ParseResult:
    compiled = _compiled(rules)
    normalized = normalize_text(text, compiled)
    lines = classify_lines(normalized, compiled, indent_source)
    tree = build_tree(lines, compiled.container_types)
    program = ModelBuilder(compiled).build(tree, provenance=provenance)
    extra = [replace(d, provenance=provenance) for d in validate(program, compiled)]
    if extra:
        program = replace(program, diagnostics=program.diagnostics + tuple(extra))
    logger.debug(
        "Parsed %s: %d steps, %d variables, %d diagnostics",
        provenance or "<text>",
        len(program.steps),
        len(program.variables),
        len(program.diagnostics),
    )
    return ParseResult(
        program=program, normalized_text=normalized, lines=tuple(lines), source=provenance
    )


def parse_document(
    text: str,
    rules: RuleSet | CompiledRules | None = None,
    *,
    indent_source: str | None = None,
    provenance: str | None = None,
) -> Program:
    """Normalize, classify, structure, model and validate ``text``."""
    return parse_text(
        text, rules, indent_source=indent_source, provenance=provenance
    ).program
