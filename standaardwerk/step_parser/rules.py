"""Rule tables, compilation and persistence."""
from __future__ import annotations

import copy
import json
import logging
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from .models import ContentType, VariableGroup

logger = logging.getLogger(__name__)

INDENT_SOURCES = {"word", "manual"}

DEFAULT_STEP_KEYWORDS = ["SCHRITT", "STAP", "STEP"]
DEFAULT_REST_KEYWORDS = ["RUST", "RUHE", "IDLE"]
DEFAULT_FROM_KEYWORDS = ["von", "van", "from"]
DEFAULT_TO_KEYWORDS = ["nach", "naar", "to"]
DEFAULT_NEGATION_KEYWORDS = ["NIET", "NOT", "NICHT"]
DEFAULT_TIMER_KEYWORDS = ["TIJD", "TIME", "ZEIT"]
DEFAULT_COMMENT_PREFIXES = ["//", "/*", "#", "*"]
DEFAULT_BULLET_MARKERS = ["-", "•", "▪", "▫", "+"]
DEFAULT_ALLOWED_OPERATORS = ["=", "==", "!=", "<>", "<", ">", "<=", ">="]
DEFAULT_CONTAINER_TYPES = [
    ContentType.REST.value,
    ContentType.NUMBERED.value,
    ContentType.CONDITION.value,
]

OR_MARKER = "+"
MAX_STEP_CONDITIONS = 20

TIME_UNITS: dict[str, int] = {
    "s": 1,
    "sek": 1,
    "sec": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "minutes": 60,
}

COMPARISON_PATTERN = r"^(?P<left>.+?)\s*(?P<operator>[<>=!]+)\s*(?P<right>[^<>=!].*)$"


@dataclass
class VariableGroupRule:
    group: str
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    requires_conditions: bool = False
    max_conditions: int | None = None


def default_variable_groups() -> list[VariableGroupRule]:
    return [
        VariableGroupRule(
            group=VariableGroup.HULPMERKER.value,
            exclude=[
                r"^(STORING|STÖRUNG|FAULT|MELDING|MELDUNG|MESSAGE|TIJD|TIME|ZEIT|TELLER|COUNTER|ZÄHLER|VARIABELE)\b",
                r"\b(Störung|Storing|Fault|Alarm|Error)\b",
                r"\b(Melding|Meldung|Message|Info|Nachricht)\b",
            ],
            include=[
                r"^[^=]+=\s*$",
                r"\b(Freigabe|Vrijgave|Release|Ready|Bereit|Gereed|Aan|Uit|Ein|Aus)\b",
            ],
            requires_conditions=True,
            max_conditions=MAX_STEP_CONDITIONS,
        ),
        VariableGroupRule(
            group=VariableGroup.STORING.value,
            include=[
                r"^(STORING|STÖRUNG|FAULT)\s*:",
                r"\b(Störung|Storing|Fault|Alarm)\b",
            ],
        ),
        VariableGroupRule(
            group=VariableGroup.MELDING.value,
            include=[
                r"^(MELDING|MELDUNG|MESSAGE)\s*:",
                r"\b(Info|Nachricht|Meldung|Melding)\b",
            ],
        ),
        VariableGroupRule(
            group=VariableGroup.TIJD.value,
            include=[
                r"^(TIJD|TIME|ZEIT)\b.*=\s*\S+",
                r"=\s*\d+\s*(s|sek|sec|min|ms)\b",
            ],
        ),
        VariableGroupRule(
            group=VariableGroup.TELLER.value,
            include=[r"^(TELLER|COUNTER|ZÄHLER)\b.*=\s*\S+"],
        ),
        VariableGroupRule(
            group=VariableGroup.VARIABELE.value,
            include=[
                r"^(VARIABELE|VARIABLE|WERT)\b.*=\s*\S+",
                r"=\s*-?\d+([.,]\d+)?\s*$",
            ],
        ),
        VariableGroupRule(group=VariableGroup.AUTO_LEARNED.value),
    ]


@dataclass
class RuleSet:
    """Mutable recognition configuration; owned by whoever trains it."""

    step_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_STEP_KEYWORDS))
    rest_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_REST_KEYWORDS))
    from_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_FROM_KEYWORDS))
    to_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_TO_KEYWORDS))
    negation_keywords: list[str] = field(
        default_factory=lambda: list(DEFAULT_NEGATION_KEYWORDS)
    )
    timer_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_TIMER_KEYWORDS))
    comment_prefixes: list[str] = field(
        default_factory=lambda: list(DEFAULT_COMMENT_PREFIXES)
    )
    bullet_markers: list[str] = field(default_factory=lambda: list(DEFAULT_BULLET_MARKERS))
    step_patterns: list[str] = field(default_factory=list)
    condition_patterns: list[str] = field(default_factory=list)
    cross_reference_patterns: list[str] = field(default_factory=list)
    variable_groups: list[VariableGroupRule] = field(default_factory=default_variable_groups)
    allowed_operators: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_OPERATORS)
    )
    max_step_conditions: int = MAX_STEP_CONDITIONS
    requires_program_exists: bool = False
    known_programs: list[str] = field(default_factory=list)
    indent_source: str = "word"
    container_types: list[str] = field(default_factory=lambda: list(DEFAULT_CONTAINER_TYPES))
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RuleSet:
        defaults = cls()
        values: dict[str, Any] = {}
        for name in defaults.to_dict():
            if name not in data:
                continue
            if name == "variable_groups":
                values[name] = [
                    VariableGroupRule(**cast(dict[str, Any], entry))
                    for entry in data[name]
                ]
            else:
                values[name] = copy.deepcopy(data[name])
        return cls(**values)

    def copy(self) -> RuleSet:
        return copy.deepcopy(self)

    def group_rule(self, group: str) -> VariableGroupRule | None:
        for rule in self.variable_groups:
            if rule.group == group:
                return rule
        return None

    def compile(self) -> CompiledRules:
        return compile_rules(self)


@dataclass(frozen=True)
class CompiledGroup:
    group: VariableGroup
    include: tuple[re.Pattern[str], ...]
    exclude: tuple[re.Pattern[str], ...]
    requires_conditions: bool
    max_conditions: int | None


@dataclass(frozen=True)
class CompiledRules:
    """Read-only pattern table shared by every document of one pass."""

    source: RuleSet
    rest_re: re.Pattern[str]
    numbered_re: re.Pattern[str]
    learned_step_res: tuple[re.Pattern[str], ...]
    step_head_re: re.Pattern[str]
    transition_re: re.Pattern[str]
    transition_prefix_re: re.Pattern[str]
    cross_reference_re: re.Pattern[str]
    learned_cross_reference_res: tuple[re.Pattern[str], ...]
    negation_re: re.Pattern[str]
    timer_re: re.Pattern[str]
    comparison_re: re.Pattern[str]
    condition_res: tuple[re.Pattern[str], ...]
    groups: tuple[CompiledGroup, ...]
    comment_prefixes: tuple[str, ...]
    bullet_markers: tuple[str, ...]
    from_keywords: frozenset[str]
    allowed_operators: frozenset[str]
    known_programs: frozenset[str]
    container_types: frozenset[ContentType]
    primary_step_keyword: str
    indent_source: str
    max_step_conditions: int
    requires_program_exists: bool

    @property
    def cross_reference_res(self) -> tuple[re.Pattern[str], ...]:
        return (self.cross_reference_re, *self.learned_cross_reference_res)


def _alternation(words: Iterable[str]) -> str:
    ordered = sorted({word for word in words if word}, key=len, reverse=True)
    return "|".join(re.escape(word) for word in ordered)


def _markers(values: Iterable[str]) -> tuple[str, ...]:
    """Drop blank entries; an empty prefix would match every line."""
    return tuple(value for value in values if value and value.strip())


def compile_pattern(
    source: str, flags: int = re.IGNORECASE, *, label: str = "pattern"
) -> re.Pattern[str] | None:
    try:
        return re.compile(source, flags)
    except re.error as exc:
        logger.warning("Discarding invalid %s %r: %s", label, source, exc)
        return None


def _compile_all(sources: Iterable[str], label: str) -> tuple[re.Pattern[str], ...]:
    compiled = (compile_pattern(source, label=label) for source in sources)
    return tuple(pattern for pattern in compiled if pattern is not None)


def _resolve_group(name: str) -> VariableGroup:
    try:
        return VariableGroup(name)
    except ValueError:
        logger.debug("Unknown variable group %r treated as auto_learned", name)
        return VariableGroup.AUTO_LEARNED


def compile_rules(rules: RuleSet) -> CompiledRules:
    steps = _alternation(rules.step_keywords)
    rests = _alternation(rules.rest_keywords)
    directions = _alternation([*rules.from_keywords, *rules.to_keywords])
    negations = _alternation(rules.negation_keywords)
    timers = _alternation(rules.timer_keywords)
    units = _alternation(TIME_UNITS)
    condition_sources = [
        rf"^({negations})\s+\S",
        rf"^({timers})\s+\d+\s*({units})\s*\?\?$",
        COMPARISON_PATTERN,
        rf"^({steps})\s+\d+$",
        *rules.condition_patterns,
    ]
    container_types = set()
    for name in rules.container_types:
        try:
            container_types.add(ContentType(name))
        except ValueError:
            logger.debug("Ignoring unknown container type %r", name)
    indent_source = rules.indent_source if rules.indent_source in INDENT_SOURCES else "word"
    return CompiledRules(
        source=rules,
        rest_re=re.compile(rf"^({rests})\s*:\s*(?P<description>.*)$", re.IGNORECASE),
        numbered_re=re.compile(
            rf"^({steps})\s+(?P<number>\d+)\s*:\s*(?P<description>.*)$", re.IGNORECASE
        ),
        learned_step_res=_compile_all(rules.step_patterns, "step pattern"),
        step_head_re=re.compile(
            rf"^({steps})\s+(?P<number>\d+)\b\s*(?P<description>[^:]*)$", re.IGNORECASE
        ),
        transition_re=re.compile(
            rf"^\+?\s*(?P<direction>{directions})\s+({steps})\s+(?P<number>\d+)\s*$",
            re.IGNORECASE,
        ),
        transition_prefix_re=re.compile(
            rf"^\+\s*(?:(?:{directions})(?:\s+(?:{steps}))?)?$", re.IGNORECASE
        ),
        cross_reference_re=re.compile(
            rf"\((?P<program>[^()]+?)\s+({steps})\s+(?P<steps>[0-9+\s]+)\)", re.IGNORECASE
        ),
        learned_cross_reference_res=_compile_all(
            rules.cross_reference_patterns, "cross-reference pattern"
        ),
        negation_re=re.compile(rf"^({negations})\s+(?P<rest>.+)$", re.IGNORECASE),
        timer_re=re.compile(
            rf"^({timers})\s+(?P<amount>\d+)\s*(?P<unit>{units})\s*\?\?$", re.IGNORECASE
        ),
        comparison_re=re.compile(COMPARISON_PATTERN),
        condition_res=_compile_all(condition_sources, "condition pattern"),
        groups=tuple(
            CompiledGroup(
                group=_resolve_group(rule.group),
                include=_compile_all(rule.include, f"{rule.group} include pattern"),
                exclude=_compile_all(rule.exclude, f"{rule.group} exclude pattern"),
                requires_conditions=rule.requires_conditions,
                max_conditions=rule.max_conditions,
            )
            for rule in rules.variable_groups
        ),
        comment_prefixes=_markers(rules.comment_prefixes),
        bullet_markers=_markers(rules.bullet_markers),
        from_keywords=frozenset(word.lower() for word in rules.from_keywords),
        allowed_operators=frozenset(rules.allowed_operators),
        known_programs=frozenset(name.lower() for name in rules.known_programs),
        container_types=frozenset(container_types),
        primary_step_keyword=rules.step_keywords[0] if rules.step_keywords else "SCHRITT",
        indent_source=indent_source,
        max_step_conditions=rules.max_step_conditions,
        requires_program_exists=rules.requires_program_exists,
    )


def assignment_text(name: str, value: str | None) -> str:
    return f"{name} = {value}" if value else f"{name} ="


def match_variable_group(
    name: str, value: str | None = None, rules: CompiledRules | None = None
) -> VariableGroup | None:
    """Return the first group whose pattern claims the assignment, if any."""
    compiled = rules or default_compiled_rules()
    if not name.strip():
        return None
    text = assignment_text(name.strip(), value.strip() if value else None)
    for group in compiled.groups:
        if any(pattern.search(text) for pattern in group.exclude):
            continue
        if any(pattern.search(text) for pattern in group.include):
            return group.group
    return None


def determine_variable_group(
    name: str, value: str | None = None, rules: CompiledRules | None = None
) -> VariableGroup:
    """Return the single group for an assignment; first matching family wins."""
    return match_variable_group(name, value, rules) or VariableGroup.HULPMERKER


def matches_variable_pattern(text: str, rules: CompiledRules) -> bool:
    return any(
        pattern.search(text) for group in rules.groups for pattern in group.include
    )


@lru_cache(maxsize=1)
def default_compiled_rules() -> CompiledRules:
    return RuleSet().compile()


def resolve_indent_source(value: str | None) -> str:
    if value:
        return value if value in INDENT_SOURCES else "word"
    env_value = os.environ.get("STANDAARDWERK_INDENT_SOURCE")
    if env_value:
        if env_value in INDENT_SOURCES:
            return env_value
        logger.debug("Invalid STANDAARDWERK_INDENT_SOURCE value: %s", env_value)
    return "word"


def ensure_rules() -> RuleSet:
    return RuleSet(indent_source=resolve_indent_source(None))


def load_rules(path: Path) -> RuleSet:
    if not path.exists():
        return ensure_rules()
    with path.open("r", encoding="utf-8") as fh:
        return RuleSet.from_dict(cast(dict[str, Any], json.load(fh)))


def save_rules(path: Path, rules: RuleSet) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(rules.to_dict(), fh, indent=2, sort_keys=True, ensure_ascii=False)


def _union(base: list[str], extra: Iterable[str]) -> list[str]:
    merged = list(base)
    for value in extra:
        if value not in merged:
            merged.append(value)
    return merged


LIST_TABLES = (
    "step_keywords",
    "rest_keywords",
    "from_keywords",
    "to_keywords",
    "negation_keywords",
    "timer_keywords",
    "comment_prefixes",
    "bullet_markers",
    "step_patterns",
    "condition_patterns",
    "cross_reference_patterns",
    "allowed_operators",
    "known_programs",
)


def merge_rules(base: RuleSet, overlay: RuleSet) -> RuleSet:
    """Union the tables of ``overlay`` into a copy of ``base``."""
    merged = base.copy()
    for name in LIST_TABLES:
        setattr(merged, name, _union(getattr(merged, name), getattr(overlay, name)))
    for rule in overlay.variable_groups:
        existing = merged.group_rule(rule.group)
        if existing is None:
            merged.variable_groups.append(copy.deepcopy(rule))
            continue
        existing.include = _union(existing.include, rule.include)
        existing.exclude = _union(existing.exclude, rule.exclude)
    merged.version = max(base.version, overlay.version)
    return merged
