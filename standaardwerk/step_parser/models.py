"""Program model produced by a single parse pass."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from types import MappingProxyType


class ContentType(StrEnum):
    REST = "rest"
    NUMBERED = "numbered"
    NON_SEQUENTIAL = "non_sequential_entry"
    VARIABLE = "variable_assignment"
    CROSS_REFERENCE = "cross_reference"
    COMMENT = "comment"
    CONDITION = "condition"


class StepKind(StrEnum):
    REST = "rest"
    NUMBERED = "numbered"


class GroupOperator(StrEnum):
    AND = "AND"
    OR = "OR"


class VariableGroup(StrEnum):
    HULPMERKER = "hulpmerker"
    STORING = "storing"
    MELDING = "melding"
    TIJD = "tijd"
    TELLER = "teller"
    VARIABELE = "variabele"
    AUTO_LEARNED = "auto_learned"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class ErrorCategory(StrEnum):
    STRUCTURAL = "structural"
    RECOGNITION = "recognition"
    VALIDATION = "validation"


class DiagnosticCode(StrEnum):
    REST_HAS_CONDITIONS = "REST_HAS_CONDITIONS"
    MALFORMED_STEP = "MALFORMED_STEP"
    ORPHAN_CONDITION = "ORPHAN_CONDITION"
    ORPHAN_TRANSITION = "ORPHAN_TRANSITION"
    UNKNOWN_PATTERN = "UNKNOWN_PATTERN"
    DUPLICATE_VARIABLE = "DUPLICATE_VARIABLE"
    DUPLICATE_STEP = "DUPLICATE_STEP"
    MULTIPLE_REST = "MULTIPLE_REST"
    MISSING_REST = "MISSING_REST"
    STEP_GAP = "STEP_GAP"
    STEP_ORDER = "STEP_ORDER"
    EMPTY_STEP = "EMPTY_STEP"
    TOO_MANY_CONDITIONS = "TOO_MANY_CONDITIONS"
    UNKNOWN_TRANSITION_TARGET = "UNKNOWN_TRANSITION_TARGET"
    MISSING_CONDITIONS = "MISSING_CONDITIONS"
    EMPTY_CROSS_REFERENCE = "EMPTY_CROSS_REFERENCE"
    PROGRAM_NOT_FOUND = "PROGRAM_NOT_FOUND"
    INVALID_OPERATOR = "INVALID_OPERATOR"
    INVALID_STEP_NUMBER = "INVALID_STEP_NUMBER"


@dataclass(frozen=True)
class Comparison:
    left: str
    operator: str
    right: str


@dataclass(frozen=True)
class Condition:
    text: str
    negated: bool = False
    comparison: Comparison | None = None
    is_time_condition: bool = False
    duration_seconds: int | None = None
    # Index into Program.cross_references for reference conditions.
    reference: int | None = None
    line_number: int = 0


@dataclass(frozen=True)
class ConditionGroup:
    operator: GroupOperator
    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class Transition:
    direction: str
    step: int
    line_number: int = 0


@dataclass(frozen=True)
class Step:
    kind: StepKind
    number: int
    description: str
    entry_condition_groups: tuple[ConditionGroup, ...] = ()
    transitions: tuple[Transition, ...] = ()
    line_number: int = 0

    @property
    def condition_count(self) -> int:
        return sum(len(group.conditions) for group in self.entry_condition_groups)


@dataclass(frozen=True)
class Variable:
    name: str
    group: VariableGroup
    value: str | None = None
    source_conditions: tuple[Condition, ...] = ()
    line_number: int = 0


@dataclass(frozen=True)
class CrossReference:
    description: str
    target_program: str
    target_steps: tuple[int, ...]
    line_number: int = 0


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    code: DiagnosticCode
    category: ErrorCategory
    message: str
    line_number: int | None = None
    snippet: str = ""
    suggestion: str = ""
    provenance: str | None = None


@dataclass(frozen=True)
class UnknownLine:
    line_number: int
    text: str
    content_type: ContentType = ContentType.CONDITION


@dataclass(frozen=True, eq=False)
class Program:
    steps: tuple[Step, ...] = ()
    variables: Mapping[str, Variable] = field(default_factory=dict)
    cross_references: tuple[CrossReference, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    unknown_lines: tuple[UnknownLine, ...] = ()
    # Effective Rest condition: active while no numbered step is active.
    implicit_rest_conditions: tuple[Condition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    @property
    def rest_step(self) -> Step | None:
        for step in self.steps:
            if step.kind is StepKind.REST:
                return step
        return None

    @property
    def numbered_steps(self) -> list[Step]:
        return [step for step in self.steps if step.kind is StepKind.NUMBERED]

    def step(self, number: int) -> Step | None:
        for step in self.steps:
            if step.number == number:
                return step
        return None

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "variables":
                data[item.name] = {name: asdict(variable) for name, variable in value.items()}
            else:
                data[item.name] = [asdict(entry) for entry in value]
        return data
