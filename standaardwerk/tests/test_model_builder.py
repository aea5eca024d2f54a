from __future__ import annotations

import pytest

from standaardwerk.step_parser.model_builder import group_conditions
from standaardwerk.step_parser.models import (
    Comparison,
    Condition,
    ContentType,
    DiagnosticCode,
    GroupOperator,
    Program,
    Severity,
    StepKind,
    VariableGroup,
)
from standaardwerk.step_parser.pipeline import parse_document, parse_text


def _codes(program: Program) -> list[DiagnosticCode]:
    return [diagnostic.code for diagnostic in program.diagnostics]


def test_rest_and_single_step() -> None:
    program = parse_document("RUST: Idle\nSCHRITT 1: Start\n- Ready")
    assert [step.kind for step in program.steps] == [StepKind.REST, StepKind.NUMBERED]
    rest, first = program.steps
    assert rest.number == 0
    assert rest.description == "Idle"
    assert rest.entry_condition_groups == ()
    assert first.number == 1
    assert first.description == "Start"
    assert len(first.entry_condition_groups) == 1
    group = first.entry_condition_groups[0]
    assert group.operator is GroupOperator.AND
    assert group.conditions == (Condition(text="Ready", line_number=3),)
    assert program.diagnostics == ()


def test_or_prefix_closes_and_group() -> None:
    program = parse_document("SCHRITT 1: Start\n\tCond A\n\t+Cond B\n\t+Cond C")
    groups = program.steps[0].entry_condition_groups
    assert [group.operator for group in groups] == [GroupOperator.AND, GroupOperator.OR]
    assert [c.text for c in groups[0].conditions] == ["Cond A"]
    assert [c.text for c in groups[1].conditions] == ["Cond B", "Cond C"]


def test_group_conditions_directly() -> None:
    a, b, c, d = (Condition(text=name) for name in "ABCD")
    assert group_conditions([]) == ()
    only_or = group_conditions([(a, True), (b, True)])
    assert [g.operator for g in only_or] == [GroupOperator.OR]
    mixed = group_conditions([(a, False), (b, False), (c, True), (d, False)])
    assert [g.operator for g in mixed] == [GroupOperator.AND, GroupOperator.OR]
    assert mixed[0].conditions == (a, b)
    assert mixed[1].conditions == (c, d)


def test_bracket_block_forms_or_group() -> None:
    text = (
        "SCHRITT 2: Fill\n"
        "\t- Tank leer\n"
        "\t[\n"
        "\t+ Pumpe A bereit\n"
        "\t+ Pumpe B bereit\n"
        "\t]"
    )
    groups = parse_document(text).steps[0].entry_condition_groups
    assert [group.operator for group in groups] == [GroupOperator.AND, GroupOperator.OR]
    assert [c.text for c in groups[1].conditions] == ["Pumpe A bereit", "Pumpe B bereit"]


def test_rest_step_never_holds_conditions() -> None:
    program = parse_document("RUST: Idle\n\t- Motor aus\nSCHRITT 1: Start\n\t- Ready")
    assert program.rest_step is not None
    assert program.rest_step.entry_condition_groups == ()
    rejected = [d for d in program.diagnostics if d.code is DiagnosticCode.REST_HAS_CONDITIONS]
    assert len(rejected) == 1
    assert rejected[0].severity is Severity.ERROR
    assert rejected[0].line_number == 2
    texts = [c.text for step in program.steps for g in step.entry_condition_groups for c in g.conditions]
    assert texts == ["Ready"]


def test_implicit_rest_conditions_negate_every_step() -> None:
    program = parse_document("RUST: Idle\nSCHRITT 1: A\n\t- x\nSCHRITT 2: B\n\t- y")
    implicit = program.implicit_rest_conditions
    assert [c.text for c in implicit] == ["SCHRITT 1", "SCHRITT 2"]
    assert all(c.negated for c in implicit)


def test_no_rest_step_means_no_implicit_conditions() -> None:
    program = parse_document("SCHRITT 1: A\n\t- x")
    assert program.implicit_rest_conditions == ()
    assert DiagnosticCode.MISSING_REST in _codes(program)


def test_cross_reference_condition() -> None:
    program = parse_document("RUST: Idle\nSCHRITT 3: Wait\n\t- (FB102 SCHRITT 2+5+8)")
    assert [step.number for step in program.steps] == [0, 3]
    reference = program.cross_references[0]
    assert reference.target_program == "FB102"
    assert reference.target_steps == (2, 5, 8)
    condition = program.steps[1].entry_condition_groups[0].conditions[0]
    assert condition.reference == 0


def test_empty_cross_reference_is_reported() -> None:
    program = parse_document("RUST: Idle\nSCHRITT 1: A\n\t- (FB7 SCHRITT +)")
    assert program.cross_references[0].target_steps == ()
    assert DiagnosticCode.EMPTY_CROSS_REFERENCE in _codes(program)


def test_transition_is_recorded_on_enclosing_step() -> None:
    program = parse_document("RUST: Idle\nSCHRITT 1: A\n\t- x\nSCHRITT 2: B\n\t+ von SCHRITT 1")
    step = program.step(2)
    assert step is not None
    assert [(t.direction, t.step) for t in step.transitions] == [("from", 1)]
    assert step.entry_condition_groups == ()
    assert DiagnosticCode.EMPTY_STEP not in _codes(program)


def test_transition_outside_step() -> None:
    program = parse_document("+ von SCHRITT 3\nRUST: Idle")
    assert DiagnosticCode.ORPHAN_TRANSITION in _codes(program)


def test_condition_kinds() -> None:
    text = (
        "SCHRITT 1: Heat\n"
        "\t- TIJD 300Sek ??\n"
        "\t- Temperatur >= 80\n"
        "\t- NICHT Storing\n"
        "\t- ZEIT 2Min ??"
    )
    conditions = parse_document(text).steps[0].entry_condition_groups[0].conditions
    timer, comparison, negated, minutes = conditions
    assert timer.is_time_condition
    assert timer.duration_seconds == 300
    assert comparison.comparison == Comparison(left="Temperatur", operator=">=", right="80")
    assert negated.negated
    assert negated.text == "Storing"
    assert minutes.duration_seconds == 120


def test_variable_collects_following_conditions() -> None:
    program = parse_document("Freigabe Pumpe =\n\tSCHRITT 3\n\tNICHT Storing")
    variable = program.variables["Freigabe Pumpe"]
    assert variable.group is VariableGroup.HULPMERKER
    assert variable.value is None
    assert [c.text for c in variable.source_conditions] == ["SCHRITT 3", "Storing"]
    assert [c.negated for c in variable.source_conditions] == [False, True]
    assert DiagnosticCode.MISSING_CONDITIONS not in _codes(program)
    assert program.unknown_lines == ()


def test_variable_without_conditions() -> None:
    program = parse_document("Freigabe Pumpe =")
    assert DiagnosticCode.MISSING_CONDITIONS in _codes(program)


def test_duplicate_variable_keeps_first() -> None:
    program = parse_document("Teller = 5\nTeller = 6")
    assert program.variables["Teller"].value == "5"
    assert program.variables["Teller"].group is VariableGroup.TELLER
    assert DiagnosticCode.DUPLICATE_VARIABLE in _codes(program)


def test_step_without_colon() -> None:
    program = parse_document("SCHRITT 4 Vullen")
    assert program.steps == ()
    malformed = [d for d in program.diagnostics if d.code is DiagnosticCode.MALFORMED_STEP]
    assert malformed[0].suggestion == "SCHRITT 4: Vullen"


def test_unknown_line_is_collected() -> None:
    program = parse_document("RUST: Idle\nPumpe draait")
    assert [line.text for line in program.unknown_lines] == ["Pumpe draait"]
    assert [line.line_number for line in program.unknown_lines] == [2]
    assert DiagnosticCode.UNKNOWN_PATTERN in _codes(program)


def test_known_condition_outside_step() -> None:
    program = parse_document("NICHT Storing")
    assert program.unknown_lines == ()
    assert DiagnosticCode.ORPHAN_CONDITION in _codes(program)


def test_comments_are_ignored() -> None:
    program = parse_document("// header\nRUST: Idle\nSCHRITT 1: A\n\t- x\n\t// note")
    step = program.step(1)
    assert step is not None
    assert step.condition_count == 1
    assert program.unknown_lines == ()


def test_provenance_is_attached_to_every_diagnostic() -> None:
    result = parse_text("SCHRITT 1: A\nPumpe draait", provenance="fb100.txt")
    assert result.program.diagnostics
    assert {d.provenance for d in result.program.diagnostics} == {"fb100.txt"}
    assert result.source == "fb100.txt"


def test_program_serializes() -> None:
    data = parse_document("RUST: Idle\nSCHRITT 1: Start\n- Ready").to_dict()
    assert data["steps"][1]["number"] == 1
    assert data["steps"][1]["entry_condition_groups"][0]["operator"] == "AND"
    assert data["variables"] == {}


def test_unclaimed_assignment_is_kept_and_reported() -> None:
    program = parse_document("RUST: Idle\nSollwert Druck = 5 bar")
    variable = program.variables["Sollwert Druck"]
    assert variable.group is VariableGroup.HULPMERKER
    assert variable.value == "5 bar"
    (unknown,) = program.unknown_lines
    assert unknown.text == "Sollwert Druck = 5 bar"
    assert unknown.content_type is ContentType.VARIABLE
    assert DiagnosticCode.UNKNOWN_PATTERN in _codes(program)


def test_program_variables_are_read_only() -> None:
    program = parse_document("Teller = 5")
    with pytest.raises(TypeError):
        program.variables["Teller"] = program.variables["Teller"]
    data = program.to_dict()
    assert data["variables"]["Teller"]["group"] == "teller"
    assert data["variables"]["Teller"]["value"] == "5"
