from __future__ import annotations

from pathlib import Path

import pytest

from standaardwerk.step_parser import rules
from standaardwerk.step_parser.models import VariableGroup
from standaardwerk.step_parser.pipeline import parse_document


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("Simple Variable =", VariableGroup.HULPMERKER),
        ("Freigabe System =", VariableGroup.HULPMERKER),
        ("Ready to start =", VariableGroup.HULPMERKER),
        ("STORING: Motor fault =", VariableGroup.STORING),
        ("Tank Störung =", VariableGroup.STORING),
        ("E01 Alarm =", VariableGroup.STORING),
        ("MELDING: Status =", VariableGroup.MELDING),
        ("Info display active =", VariableGroup.MELDING),
        ("System Nachricht =", VariableGroup.MELDING),
        ("TIJD = 100s", VariableGroup.TIJD),
        ("Wachttijd = 30 sek", VariableGroup.TIJD),
        ("Teller = 5", VariableGroup.TELLER),
        ("Variabele = 42", VariableGroup.VARIABELE),
    ],
)
def test_determine_variable_group(line: str, expected: VariableGroup) -> None:
    name, _, value = line.partition("=")
    assert rules.determine_variable_group(name, value.strip() or None) is expected


def test_variable_group_is_deterministic() -> None:
    first = rules.determine_variable_group("Freigabe Pumpe")
    assert all(rules.determine_variable_group("Freigabe Pumpe") is first for _ in range(5))
    assert rules.determine_variable_group("") is VariableGroup.HULPMERKER


def test_learned_group_pattern() -> None:
    rule_set = rules.RuleSet()
    learned = rule_set.group_rule(VariableGroup.AUTO_LEARNED.value)
    assert learned is not None
    learned.include.append(r"^Sollwert\b")
    compiled = rule_set.compile()
    assert rules.determine_variable_group("Sollwert Druck", "5 bar", compiled) is (
        VariableGroup.AUTO_LEARNED
    )


def test_invalid_learned_patterns_are_discarded() -> None:
    baseline = len(rules.default_compiled_rules().condition_res)
    compiled = rules.RuleSet(condition_patterns=["(unclosed"], step_patterns=["[x"]).compile()
    assert len(compiled.condition_res) == baseline
    assert compiled.learned_step_res == ()


def test_rules_round_trip_through_json(tmp_path: Path) -> None:
    rule_set = rules.RuleSet(
        step_patterns=[r"^ETAPE\s+(?P<number>\d+)\s*:\s*(?P<description>.*)$"],
        known_programs=["FB100"],
        version=3,
    )
    path = tmp_path / "nested" / "rules.json"
    rules.save_rules(path, rule_set)
    loaded = rules.load_rules(path)
    assert loaded.to_dict() == rule_set.to_dict()
    assert isinstance(loaded.variable_groups[0], rules.VariableGroupRule)


def test_missing_rule_file_gives_defaults(tmp_path: Path) -> None:
    loaded = rules.load_rules(tmp_path / "absent.json")
    assert loaded.step_keywords == rules.DEFAULT_STEP_KEYWORDS
    assert loaded.version == 1


def test_copy_is_independent() -> None:
    original = rules.RuleSet()
    clone = original.copy()
    clone.step_keywords.append("ETAPE")
    clone.variable_groups[0].include.append("x")
    assert "ETAPE" not in original.step_keywords
    assert "x" not in original.variable_groups[0].include


def test_merge_rules_unions_tables() -> None:
    base = rules.RuleSet(step_patterns=["^A"], version=2)
    overlay = rules.RuleSet(
        step_keywords=["ETAPE"], step_patterns=["^A", "^B"], version=5
    )
    merged = rules.merge_rules(base, overlay)
    assert merged.step_keywords == ["SCHRITT", "STAP", "STEP", "ETAPE"]
    assert merged.step_patterns == ["^A", "^B"]
    assert merged.version == 5
    assert base.step_patterns == ["^A"]


def test_indent_source_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STANDAARDWERK_INDENT_SOURCE", "manual")
    assert rules.resolve_indent_source(None) == "manual"
    assert rules.ensure_rules().indent_source == "manual"
    assert rules.resolve_indent_source("word") == "word"
    monkeypatch.setenv("STANDAARDWERK_INDENT_SOURCE", "sideways")
    assert rules.resolve_indent_source(None) == "word"


def test_blank_markers_are_dropped() -> None:
    compiled = rules.RuleSet(bullet_markers=["", "-", "  "], comment_prefixes=["", "#"]).compile()
    assert compiled.bullet_markers == ("-",)
    assert compiled.comment_prefixes == ("#",)


def test_unmatched_assignment_has_no_group() -> None:
    assert rules.match_variable_group("Sollwert Druck", "5 bar") is None
    assert rules.match_variable_group("") is None
    assert rules.match_variable_group("Teller", "5") is VariableGroup.TELLER
    assert rules.determine_variable_group("Sollwert Druck", "5 bar") is VariableGroup.HULPMERKER


def test_blank_markers_do_not_stall_parsing() -> None:
    rule_set = rules.RuleSet(bullet_markers=["", "-"], comment_prefixes=[""])
    program = parse_document("RUST: Idle\nSCHRITT 1: Start\n\t- Ready", rule_set)
    step = program.step(1)
    assert step is not None
    assert [c.text for c in step.entry_condition_groups[0].conditions] == ["Ready"]
