from __future__ import annotations

import re

import pytest

from standaardwerk.step_parser.models import UnknownLine
from standaardwerk.step_parser.suggestions import (
    ConditionSuggestion,
    CrossReferenceSuggestion,
    StepSuggestion,
    VariableSuggestion,
    aggregate_suggestions,
    analyze_unknown_line,
    extract_suggestions,
)


@pytest.mark.parametrize(
    ("text", "kind", "subtype"),
    [
        ("ETAPE 3: Remplir", StepSuggestion, "ETAPE"),
        ("Vorige (FB12 ETAPE 2+4)", CrossReferenceSuggestion, "ETAPE"),
        ("Sollwert Druck = 5 bar", VariableSuggestion, "sollwert"),
        ("Tank Störung = 1", VariableSuggestion, "tank"),
        ("- Pumpe draait", ConditionSuggestion, "-"),
    ],
)
def test_analyze_unknown_line(text: str, kind: type, subtype: str) -> None:
    suggestion = analyze_unknown_line(UnknownLine(line_number=1, text=text))
    assert isinstance(suggestion, kind)
    assert suggestion.subtype == subtype
    assert re.search(suggestion.pattern, text, re.IGNORECASE)


def test_lines_without_shape_give_nothing() -> None:
    assert analyze_unknown_line(UnknownLine(1, "Pumpe draait")) is None
    assert analyze_unknown_line(UnknownLine(1, "// note")) is None


def test_extract_drops_low_confidence() -> None:
    lines = [UnknownLine(1, "- a"), UnknownLine(2, "ETAPE 1: x"), UnknownLine(3, "plain")]
    suggestions = extract_suggestions(lines)
    assert [type(s) for s in suggestions] == [ConditionSuggestion, StepSuggestion]


def test_aggregation_groups_and_ranks() -> None:
    steps = [
        StepSuggestion("ETAPE", "^ETAPE", 0.8, f"ETAPE {n}: x") for n in range(7)
    ]
    references = [
        CrossReferenceSuggestion("ETAPE", "x", 0.9, "(FB1 ETAPE 1)"),
        CrossReferenceSuggestion("ETAPE", "x", 0.9, "(FB1 ETAPE 1)"),
    ]
    conditions = [ConditionSuggestion("+", "^\\+", 0.6, "+ a")]
    ranked = aggregate_suggestions([*references, *steps, *conditions], min_confidence=0.8)
    assert [entry.key for entry in ranked] == [("step", "ETAPE"), ("cross_reference", "ETAPE")]
    step_entry, reference_entry = ranked
    assert step_entry.frequency == 7
    assert len(step_entry.examples) == 5
    assert reference_entry.frequency == 2
    assert reference_entry.examples == ["(FB1 ETAPE 1)"]
    assert step_entry.to_dict()["type"] == "step"


def test_aggregation_keeps_top_entries() -> None:
    suggestions = [
        StepSuggestion(f"K{index}", f"^K{index}", 0.8, f"K{index} 1: x") for index in range(15)
    ]
    assert len(aggregate_suggestions(suggestions, 0.5)) == 10
