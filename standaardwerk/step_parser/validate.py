"""Post-model validation checks."""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Iterator

from .models import (
    Condition,
    Diagnostic,
    DiagnosticCode,
    ErrorCategory,
    Program,
    Severity,
    Step,
    StepKind,
)
from .rules import CompiledRules, default_compiled_rules

logger = logging.getLogger(__name__)


def _diagnostic(
    severity: Severity,
    code: DiagnosticCode,
    message: str,
    line_number: int | None = None,
    snippet: str = "",
    suggestion: str = "",
) -> Diagnostic:
    return Diagnostic(
        severity=severity,
        code=code,
        category=ErrorCategory.VALIDATION,
        message=message,
        line_number=line_number,
        snippet=snippet,
        suggestion=suggestion,
    )


def _step_conditions(step: Step) -> Iterator[Condition]:
    for group in step.entry_condition_groups:
        yield from group.conditions


def check_steps(program: Program, rules: CompiledRules) -> Iterator[Diagnostic]:
    rests = [step for step in program.steps if step.kind is StepKind.REST]
    numbered = program.numbered_steps
    if numbered and not rests:
        yield _diagnostic(
            Severity.WARNING,
            DiagnosticCode.MISSING_REST,
            "Program declares steps but no rest step",
            suggestion="Add a 'RUST: <description>' line before the first step",
        )
    for extra in rests[1:]:
        yield _diagnostic(
            Severity.ERROR,
            DiagnosticCode.MULTIPLE_REST,
            "Program declares more than one rest step",
            extra.line_number,
            extra.description,
        )
    counts = Counter(step.number for step in numbered)
    reported: set[int] = set()
    for step in numbered:
        if counts[step.number] > 1 and step.number not in reported:
            reported.add(step.number)
            yield _diagnostic(
                Severity.ERROR,
                DiagnosticCode.DUPLICATE_STEP,
                f"Step number {step.number} is declared {counts[step.number]} times",
                step.line_number,
                step.description,
            )
    previous: int | None = None
    for step in numbered:
        if previous is not None:
            if step.number < previous:
                yield _diagnostic(
                    Severity.WARNING,
                    DiagnosticCode.STEP_ORDER,
                    f"Step {step.number} follows step {previous}",
                    step.line_number,
                    step.description,
                )
            elif step.number > previous + 1:
                yield _diagnostic(
                    Severity.WARNING,
                    DiagnosticCode.STEP_GAP,
                    f"Steps {previous + 1}..{step.number - 1} are missing",
                    step.line_number,
                    step.description,
                )
        previous = step.number if previous is None else max(previous, step.number)
    known_numbers = {step.number for step in program.steps}
    for step in numbered:
        if step.number < 1:
            yield _diagnostic(
                Severity.ERROR,
                DiagnosticCode.INVALID_STEP_NUMBER,
                f"Step number {step.number} is reserved for the rest step",
                step.line_number,
                step.description,
                suggestion="Number steps from 1",
            )
        count = step.condition_count
        if count == 0 and not step.transitions:
            yield _diagnostic(
                Severity.WARNING,
                DiagnosticCode.EMPTY_STEP,
                f"Step {step.number} has no entry conditions",
                step.line_number,
                step.description,
            )
        if count > rules.max_step_conditions:
            yield _diagnostic(
                Severity.WARNING,
                DiagnosticCode.TOO_MANY_CONDITIONS,
                f"Step {step.number} has {count} conditions (limit {rules.max_step_conditions})",
                step.line_number,
                step.description,
            )
        for transition in step.transitions:
            if transition.step not in known_numbers:
                yield _diagnostic(
                    Severity.WARNING,
                    DiagnosticCode.UNKNOWN_TRANSITION_TARGET,
                    f"Step {step.number} is entered from unknown step {transition.step}",
                    transition.line_number,
                )


def check_variables(program: Program, rules: CompiledRules) -> Iterator[Diagnostic]:
    limits = {group.group: group for group in rules.groups}
    for variable in program.variables.values():
        rule = limits.get(variable.group)
        if rule is None:
            continue
        count = len(variable.source_conditions)
        if rule.requires_conditions and variable.value is None and count == 0:
            yield _diagnostic(
                Severity.ERROR,
                DiagnosticCode.MISSING_CONDITIONS,
                f"{variable.group.value} '{variable.name}' requires at least one condition",
                variable.line_number,
                f"{variable.name} =",
                suggestion="List the conditions indented beneath the assignment",
            )
        if rule.max_conditions is not None and count > rule.max_conditions:
            yield _diagnostic(
                Severity.WARNING,
                DiagnosticCode.TOO_MANY_CONDITIONS,
                f"'{variable.name}' has {count} conditions (limit {rule.max_conditions})",
                variable.line_number,
            )


def check_cross_references(program: Program, rules: CompiledRules) -> Iterator[Diagnostic]:
    for reference in program.cross_references:
        if not reference.target_steps:
            yield _diagnostic(
                Severity.ERROR,
                DiagnosticCode.EMPTY_CROSS_REFERENCE,
                "Cross-reference does not name any target step",
                reference.line_number,
                reference.description,
                suggestion="Use the form (Program SCHRITT 2+5)",
            )
        if (
            rules.requires_program_exists
            and rules.known_programs
            and reference.target_program.lower() not in rules.known_programs
        ):
            yield _diagnostic(
                Severity.WARNING,
                DiagnosticCode.PROGRAM_NOT_FOUND,
                f"Referenced program '{reference.target_program}' is not known",
                reference.line_number,
                reference.description,
            )


def _all_conditions(program: Program) -> Iterable[Condition]:
    for step in program.steps:
        yield from _step_conditions(step)
    for variable in program.variables.values():
        yield from variable.source_conditions


def check_operators(program: Program, rules: CompiledRules) -> Iterator[Diagnostic]:
    for condition in _all_conditions(program):
        if condition.comparison is None:
            continue
        if condition.comparison.operator not in rules.allowed_operators:
            yield _diagnostic(
                Severity.ERROR,
                DiagnosticCode.INVALID_OPERATOR,
                f"Operator '{condition.comparison.operator}' is not allowed",
                condition.line_number,
                condition.text,
                suggestion="Use one of " + " ".join(sorted(rules.allowed_operators)),
            )


CHECKS = (check_steps, check_variables, check_cross_references, check_operators)


def validate(program: Program, rules: CompiledRules | None = None) -> list[Diagnostic]:
    """Run every check; failures are returned, never raised."""
    compiled = rules or default_compiled_rules()
    diagnostics: list[Diagnostic] = []
    for check in CHECKS:
        diagnostics.extend(check(program, compiled))
    logger.debug("Validation produced %d diagnostics", len(diagnostics))
    return diagnostics
