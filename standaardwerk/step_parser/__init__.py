"""RUST/SCHRITT step-program parser and rule learner."""
from __future__ import annotations

from pathlib import Path

from . import (
    classify,
    extract,
    model_builder,
    models,
    normalize,
    patterns,
    pipeline,
    rules,
    structure,
    suggestions,
    trainer,
    validate,
)
from .pipeline import parse_document

__all__ = [
    "classify",
    "extract",
    "model_builder",
    "models",
    "normalize",
    "patterns",
    "pipeline",
    "rules",
    "structure",
    "suggestions",
    "trainer",
    "validate",
    "parse_document",
    "parse_file",
]


def parse_file(path: Path, rule_path: Path | None = None) -> models.Program:
    """Convenience wrapper: extract ``path`` and parse it with rules from ``rule_path``."""
    document = extract.extract_document(path)
    rule_set = rules.load_rules(rule_path) if rule_path else rules.ensure_rules()
    return parse_document(
        document.normalized_text,
        rule_set,
        indent_source=document.indent_source,
        provenance=document.source,
    )
