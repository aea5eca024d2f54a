"""Tree walk that applies RUST/SCHRITT semantics to a structure tree."""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .models import (
    Comparison,
    Condition,
    ConditionGroup,
    ContentType,
    CrossReference,
    Diagnostic,
    DiagnosticCode,
    ErrorCategory,
    GroupOperator,
    Program,
    Severity,
    Step,
    StepKind,
    Transition,
    UnknownLine,
    Variable,
    VariableGroup,
)
from .rules import (
    OR_MARKER,
    TIME_UNITS,
    CompiledRules,
    default_compiled_rules,
    match_variable_group,
    matches_variable_pattern,
)
from .structure import ClassifiedLine, Node

logger = logging.getLogger(__name__)

BLOCK_MARKERS = {"[", "]"}
STEP_NUMBER_RE = re.compile(r"\d+")
STEP_LIST_SPLIT_RE = re.compile(r"[+\s,]+")
SOURCE_CONDITION_TYPES = {ContentType.CONDITION, ContentType.CROSS_REFERENCE}


@dataclass
class StepDraft:
    kind: StepKind
    number: int
    description: str
    line_number: int
    entries: list[tuple[Condition, bool]] = field(default_factory=list)
    transitions: list[Transition] = field(default_factory=list)
    in_block: bool = False


@dataclass
class ProgramAccumulator:
    """Owned vectors threaded through one walk; conditions refer by index."""

    provenance: str | None = None
    steps: list[StepDraft] = field(default_factory=list)
    variables: dict[str, Variable] = field(default_factory=dict)
    cross_references: list[CrossReference] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    unknown_lines: list[UnknownLine] = field(default_factory=list)

    def report(
        self,
        severity: Severity,
        code: DiagnosticCode,
        category: ErrorCategory,
        message: str,
        line: ClassifiedLine | None = None,
        suggestion: str = "",
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                severity=severity,
                code=code,
                category=category,
                message=message,
                line_number=line.line_number if line else None,
                snippet=line.text if line else "",
                suggestion=suggestion,
                provenance=self.provenance,
            )
        )

    def add_cross_reference(self, reference: CrossReference) -> int:
        self.cross_references.append(reference)
        return len(self.cross_references) - 1


def group_conditions(entries: Iterable[tuple[Condition, bool]]) -> tuple[ConditionGroup, ...]:
    """Split a step's conditions into AND/OR groups.

    An OR-prefixed condition closes a non-empty AND group and opens an OR
    group; any other condition joins the group that is currently open.
    """
    groups: list[ConditionGroup] = []
    operator = GroupOperator.AND
    current: list[Condition] = []
    for condition, is_or in entries:
        if is_or and current and operator is GroupOperator.AND:
            groups.append(ConditionGroup(operator, tuple(current)))
            operator, current = GroupOperator.OR, [condition]
            continue
        if is_or and not current:
            operator = GroupOperator.OR
        current.append(condition)
    if current:
        groups.append(ConditionGroup(operator, tuple(current)))
    return tuple(groups)


class ModelBuilder:
    def __init__(self, rules: CompiledRules | None = None) -> None:
        self.rules = rules or default_compiled_rules()

    def build(self, root: Node, provenance: str | None = None) -> Program:
        acc = ProgramAccumulator(provenance=provenance)
        self._visit_children(root.children, acc, owner=None)
        return self._finalize(acc)

    # -- condition text -------------------------------------------------

    def strip_markers(self, text: str) -> str:
        body = text.strip()
        while body.startswith(self.rules.bullet_markers):
            marker = next(m for m in self.rules.bullet_markers if body.startswith(m))
            body = body[len(marker):].lstrip()
        return body

    def parse_condition(
        self, text: str, line_number: int = 0, reference: int | None = None
    ) -> Condition:
        body = self.strip_markers(text)
        negated = False
        negation = self.rules.negation_re.match(body)
        if negation:
            negated = True
            body = negation.group("rest").strip()
        timer = self.rules.timer_re.match(body)
        if timer:
            seconds = int(timer.group("amount")) * TIME_UNITS[timer.group("unit").lower()]
            return Condition(
                text=body,
                negated=negated,
                is_time_condition=True,
                duration_seconds=seconds,
                reference=reference,
                line_number=line_number,
            )
        comparison = None
        if reference is None:
            match = self.rules.comparison_re.match(body)
            if match:
                comparison = Comparison(
                    left=match.group("left").strip(),
                    operator=match.group("operator"),
                    right=match.group("right").strip(),
                )
        return Condition(
            text=body,
            negated=negated,
            comparison=comparison,
            reference=reference,
            line_number=line_number,
        )

    def parse_cross_reference(self, text: str, line_number: int = 0) -> CrossReference:
        body = self.strip_markers(text)
        program, steps_text, start = "", "", len(body)
        match = self.rules.cross_reference_re.search(body)
        if match:
            program, steps_text, start = match.group("program"), match.group("steps"), match.start()
        else:
            for pattern in self.rules.learned_cross_reference_res:
                learned = pattern.search(body)
                if not learned:
                    continue
                program, steps_text = _program_and_steps(learned)
                start = learned.start()
                break
        steps = tuple(
            int(part) for part in STEP_LIST_SPLIT_RE.split(steps_text or "") if part.isdigit()
        )
        description = body[:start].strip() or body
        return CrossReference(
            description=description,
            target_program=(program or "").strip(),
            target_steps=steps,
            line_number=line_number,
        )

    def parse_step(self, text: str) -> tuple[int, str] | None:
        match = self.rules.numbered_re.match(text)
        if match:
            return int(match.group("number")), match.group("description").strip()
        for pattern in self.rules.learned_step_res:
            learned = pattern.match(text)
            if not learned:
                continue
            groups = learned.groupdict()
            number_text = groups.get("number")
            if number_text is None:
                found = STEP_NUMBER_RE.search(text)
                number_text = found.group(0) if found else "0"
            description = groups.get("description")
            if description is None:
                description = text.split(":", 1)[1] if ":" in text else ""
            return int(number_text), description.strip()
        return None

    # -- walk -----------------------------------------------------------

    def _visit_children(
        self, children: Sequence[Node], acc: ProgramAccumulator, owner: StepDraft | None
    ) -> None:
        index = 0
        while index < len(children):
            node = children[index]
            if node.content_type is ContentType.VARIABLE:
                index = self._visit_variable(children, index, acc)
                continue
            self._visit(node, acc, owner)
            index += 1

    def _visit(self, node: Node, acc: ProgramAccumulator, owner: StepDraft | None) -> None:
        line = node.line
        if line is None:
            return
        kind = line.content_type
        if kind is ContentType.REST:
            self._visit_rest(node, acc)
        elif kind is ContentType.NUMBERED:
            self._visit_numbered(node, acc)
        elif kind is ContentType.NON_SEQUENTIAL:
            self._visit_transition(line, acc, owner)
            self._visit_children(node.children, acc, owner)
        elif kind is ContentType.CROSS_REFERENCE:
            self._visit_cross_reference(line, acc, owner)
            self._visit_children(node.children, acc, owner)
        elif kind is ContentType.COMMENT:
            self._visit_children(node.children, acc, owner)
        else:
            self._visit_condition(line, acc, owner)
            self._visit_children(node.children, acc, owner)

    def _visit_rest(self, node: Node, acc: ProgramAccumulator) -> None:
        assert node.line is not None
        match = self.rules.rest_re.match(node.line.text)
        description = match.group("description").strip() if match else ""
        draft = StepDraft(StepKind.REST, 0, description, node.line.line_number)
        acc.steps.append(draft)
        self._visit_children(node.children, acc, owner=draft)

    def _visit_numbered(self, node: Node, acc: ProgramAccumulator) -> None:
        assert node.line is not None
        parsed = self.parse_step(node.line.text)
        number, description = parsed if parsed else (0, node.line.text)
        draft = StepDraft(StepKind.NUMBERED, number, description, node.line.line_number)
        acc.steps.append(draft)
        self._visit_children(node.children, acc, owner=draft)

    def _reject_on_rest(self, line: ClassifiedLine, acc: ProgramAccumulator) -> None:
        logger.debug("Stripping entry condition from rest step at line %d", line.line_number)
        acc.report(
            Severity.ERROR,
            DiagnosticCode.REST_HAS_CONDITIONS,
            ErrorCategory.STRUCTURAL,
            "Rest step must not declare entry conditions",
            line,
            suggestion="Move the condition to a numbered step; rest is active when no step is",
        )

    def _visit_transition(
        self, line: ClassifiedLine, acc: ProgramAccumulator, owner: StepDraft | None
    ) -> None:
        match = self.rules.transition_re.match(line.text)
        if match is None:
            return
        if owner is None:
            acc.report(
                Severity.ERROR,
                DiagnosticCode.ORPHAN_TRANSITION,
                ErrorCategory.STRUCTURAL,
                "Transition declared outside of a numbered step",
                line,
                suggestion="Indent the transition beneath the step it enters",
            )
            return
        if owner.kind is StepKind.REST:
            self._reject_on_rest(line, acc)
            return
        direction = "from" if match.group("direction").lower() in self.rules.from_keywords else "to"
        owner.transitions.append(
            Transition(direction=direction, step=int(match.group("number")), line_number=line.line_number)
        )

    def _visit_cross_reference(
        self, line: ClassifiedLine, acc: ProgramAccumulator, owner: StepDraft | None
    ) -> None:
        reference = self.parse_cross_reference(line.text, line.line_number)
        index = acc.add_cross_reference(reference)
        if owner is None:
            return
        if owner.kind is StepKind.REST:
            self._reject_on_rest(line, acc)
            return
        condition = self.parse_condition(line.text, line.line_number, reference=index)
        owner.entries.append((condition, self._is_or(line.text, owner)))

    def _visit_condition(
        self, line: ClassifiedLine, acc: ProgramAccumulator, owner: StepDraft | None
    ) -> None:
        if line.text in BLOCK_MARKERS:
            if owner is not None:
                owner.in_block = line.text == "["
            return
        if owner is None:
            self._visit_unowned(line, acc)
            return
        if owner.kind is StepKind.REST:
            self._reject_on_rest(line, acc)
            return
        condition = self.parse_condition(line.text, line.line_number)
        owner.entries.append((condition, self._is_or(line.text, owner)))

    def _is_or(self, text: str, owner: StepDraft) -> bool:
        return owner.in_block or text.startswith(OR_MARKER)

    def _visit_unowned(self, line: ClassifiedLine, acc: ProgramAccumulator) -> None:
        head = self.rules.step_head_re.match(line.text)
        if head:
            keyword = head.group(1)
            number = head.group("number")
            description = head.group("description").strip()
            acc.report(
                Severity.WARNING,
                DiagnosticCode.MALFORMED_STEP,
                ErrorCategory.RECOGNITION,
                f"Step declaration {keyword} {number} is missing its ':'",
                line,
                suggestion=f"{keyword} {number}: {description}".rstrip(),
            )
            return
        if self.is_known_condition(line.text):
            acc.report(
                Severity.WARNING,
                DiagnosticCode.ORPHAN_CONDITION,
                ErrorCategory.STRUCTURAL,
                "Condition is not attached to any step or variable",
                line,
                suggestion="Indent the condition beneath its step",
            )
            return
        logger.debug("Unknown pattern at line %d: %s", line.line_number, line.text)
        acc.unknown_lines.append(UnknownLine(line_number=line.line_number, text=line.text))
        acc.report(
            Severity.WARNING,
            DiagnosticCode.UNKNOWN_PATTERN,
            ErrorCategory.RECOGNITION,
            "Line matches no known step, condition or variable pattern",
            line,
        )

    def is_known_condition(self, text: str) -> bool:
        for candidate in (text, self.strip_markers(text)):
            if any(pattern.search(candidate) for pattern in self.rules.condition_res):
                return True
            if matches_variable_pattern(candidate, self.rules):
                return True
        return False

    def _visit_variable(
        self, siblings: Sequence[Node], index: int, acc: ProgramAccumulator
    ) -> int:
        node = siblings[index]
        line = node.line
        assert line is not None
        name, _, value = line.text.partition("=")
        name = name.strip()
        value_text = value.strip() or None
        sources: list[Condition] = []
        self._collect_sources(node.walk(), acc, sources)
        cursor = index + 1
        while cursor < len(siblings):
            candidate = siblings[cursor]
            if candidate.indent <= line.indent or candidate.content_type not in SOURCE_CONDITION_TYPES:
                break
            self._collect_sources([candidate, *candidate.walk()], acc, sources)
            cursor += 1
        if name in acc.variables:
            acc.report(
                Severity.WARNING,
                DiagnosticCode.DUPLICATE_VARIABLE,
                ErrorCategory.VALIDATION,
                f"Variable '{name}' is already defined; keeping the first definition",
                line,
            )
            return cursor
        group = match_variable_group(name, value_text, self.rules)
        if group is None:
            logger.debug("No variable group claims line %d: %s", line.line_number, line.text)
            acc.unknown_lines.append(
                UnknownLine(
                    line_number=line.line_number,
                    text=line.text,
                    content_type=ContentType.VARIABLE,
                )
            )
            acc.report(
                Severity.WARNING,
                DiagnosticCode.UNKNOWN_PATTERN,
                ErrorCategory.RECOGNITION,
                f"Assignment '{name}' matches no variable group; defaulting to hulpmerker",
                line,
            )
            group = VariableGroup.HULPMERKER
        acc.variables[name] = Variable(
            name=name,
            group=group,
            value=value_text,
            source_conditions=tuple(sources),
            line_number=line.line_number,
        )
        return cursor

    def _collect_sources(
        self, nodes: Iterable[Node], acc: ProgramAccumulator, sources: list[Condition]
    ) -> None:
        for node in nodes:
            line = node.line
            if line is None or line.text in BLOCK_MARKERS:
                continue
            if line.content_type is ContentType.CROSS_REFERENCE:
                index = acc.add_cross_reference(
                    self.parse_cross_reference(line.text, line.line_number)
                )
                sources.append(self.parse_condition(line.text, line.line_number, reference=index))
            elif line.content_type is ContentType.CONDITION:
                sources.append(self.parse_condition(line.text, line.line_number))

    # -- finalize -------------------------------------------------------

    def _finalize(self, acc: ProgramAccumulator) -> Program:
        steps = tuple(
            Step(
                kind=draft.kind,
                number=draft.number,
                description=draft.description,
                entry_condition_groups=(
                    group_conditions(draft.entries) if draft.kind is StepKind.NUMBERED else ()
                ),
                transitions=tuple(draft.transitions),
                line_number=draft.line_number,
            )
            for draft in acc.steps
        )
        implicit: tuple[Condition, ...] = ()
        if any(step.kind is StepKind.REST for step in steps):
            keyword = self.rules.primary_step_keyword
            implicit = tuple(
                Condition(text=f"{keyword} {step.number}", negated=True)
                for step in steps
                if step.kind is StepKind.NUMBERED
            )
        return Program(
            steps=steps,
            variables=dict(acc.variables),
            cross_references=tuple(acc.cross_references),
            diagnostics=tuple(acc.diagnostics),
            unknown_lines=tuple(acc.unknown_lines),
            implicit_rest_conditions=implicit,
        )


def _program_and_steps(match: re.Match[str]) -> tuple[str, str]:
    groups = match.groupdict()
    if "program" in groups and "steps" in groups:
        return groups["program"] or "", groups["steps"] or ""
    positional = [group or "" for group in match.groups()]
    if len(positional) >= 2:
        return positional[0], positional[-1]
    return "", positional[0] if positional else ""
