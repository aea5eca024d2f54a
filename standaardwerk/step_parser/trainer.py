"""Iterative rule learning over a document corpus."""
from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from .errors import ExtractionError, StandaardwerkError, TrainingAborted
from .extract import ExtractedDocument, LocalExtractor, TextExtractor
from .history import ensure_history, mark_state, record_iteration, save_history
from .models import Program, VariableGroup
from .normalize import now_iso
from .patterns import GeneratorOptions, PatternGenerator
from .pipeline import parse_document
from .rules import CompiledRules, RuleSet, VariableGroupRule, save_rules
from .suggestions import (
    AggregatedSuggestion,
    ConditionSuggestion,
    CrossReferenceSuggestion,
    StepSuggestion,
    VariableSuggestion,
    aggregate_suggestions,
    extract_suggestions,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MIN_CONFIDENCE = 0.8
DEFAULT_CONVERGENCE_THRESHOLD = 0.05
MIN_APPLY_FREQUENCY = 2

HISTORY_FILENAME = "training_history.json"
ORIGINAL_RULES_FILENAME = "rules.original.json"


class TrainingState(StrEnum):
    IDLE = "idle"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    STALLED = "stalled"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


def _resolve_number(value: Any, env_name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    if value is not None:
        return value
    env_value = os.environ.get(env_name)
    if env_value:
        try:
            return cast(env_value)
        except ValueError:
            logger.debug("Invalid %s value: %s", env_name, env_value)
    return default


def resolve_max_iterations(value: int | None) -> int:
    resolved = _resolve_number(
        value, "STANDAARDWERK_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS, int
    )
    return max(int(resolved), 1)


def resolve_min_confidence(value: float | None) -> float:
    resolved = _resolve_number(
        value, "STANDAARDWERK_MIN_CONFIDENCE", DEFAULT_MIN_CONFIDENCE, float
    )
    return min(max(float(resolved), 0.0), 1.0)


def resolve_convergence_threshold(value: float | None) -> float:
    resolved = _resolve_number(
        value, "STANDAARDWERK_CONVERGENCE_THRESHOLD", DEFAULT_CONVERGENCE_THRESHOLD, float
    )
    return max(float(resolved), 0.0)


def resolve_workers(value: int | None) -> int | None:
    resolved = _resolve_number(value, "STANDAARDWERK_WORKERS", None, int)
    if resolved is None:
        return None
    return max(int(resolved), 1)


@dataclass
class TrainerOptions:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    convergence_threshold: float = DEFAULT_CONVERGENCE_THRESHOLD
    workers: int | None = None
    min_apply_frequency: int = MIN_APPLY_FREQUENCY
    generator: GeneratorOptions = field(default_factory=GeneratorOptions)

    @classmethod
    def resolve(
        cls,
        max_iterations: int | None = None,
        min_confidence: float | None = None,
        convergence_threshold: float | None = None,
        workers: int | None = None,
    ) -> TrainerOptions:
        return cls(
            max_iterations=resolve_max_iterations(max_iterations),
            min_confidence=resolve_min_confidence(min_confidence),
            convergence_threshold=resolve_convergence_threshold(convergence_threshold),
            workers=resolve_workers(workers),
        )


@dataclass(frozen=True)
class CorpusTotals:
    documents: int = 0
    steps: int = 0
    variables: int = 0
    unknowns: int = 0
    errors: int = 0
    warnings: int = 0

    @classmethod
    def from_program(cls, program: Program) -> CorpusTotals:
        return cls(
            documents=1,
            steps=len(program.steps),
            variables=len(program.variables),
            unknowns=len(program.unknown_lines),
            errors=len(program.errors),
            warnings=len(program.warnings),
        )

    def __add__(self, other: CorpusTotals) -> CorpusTotals:
        return CorpusTotals(
            documents=self.documents + other.documents,
            steps=self.steps + other.steps,
            variables=self.variables + other.variables,
            unknowns=self.unknowns + other.unknowns,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


def _ratio(numerator: int, denominator: int) -> float:
    if denominator:
        return numerator / denominator
    return float(numerator > 0)


@dataclass(frozen=True)
class TrainingMetrics:
    error_rate: float = 0.0
    warning_rate: float = 0.0
    unknown_pattern_rate: float = 0.0
    parsing_efficiency: float = 0.0

    @classmethod
    def from_totals(cls, totals: CorpusTotals) -> TrainingMetrics:
        recognised = totals.steps + totals.variables
        seen = recognised + totals.unknowns
        return cls(
            error_rate=_ratio(totals.errors, totals.steps),
            warning_rate=_ratio(totals.warnings, totals.steps),
            unknown_pattern_rate=_ratio(totals.unknowns, recognised),
            parsing_efficiency=recognised / seen if seen else 0.0,
        )


def has_converged(
    previous: TrainingMetrics, current: TrainingMetrics, threshold: float
) -> bool:
    """True when efficiency, error and unknown rates all moved less than ``threshold``.

    Regressions count the same as improvements of equal size.
    """
    deltas = (
        current.parsing_efficiency - previous.parsing_efficiency,
        current.error_rate - previous.error_rate,
        current.unknown_pattern_rate - previous.unknown_pattern_rate,
    )
    return all(abs(delta) < threshold or delta == 0 for delta in deltas)


@dataclass(frozen=True)
class TrainingIteration:
    index: int
    metrics: TrainingMetrics
    applied_suggestion_count: int
    timestamp: str
    suggestion_count: int = 0
    generated_pattern_count: int = 0
    state: TrainingState = TrainingState.ITERATING

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class TrainingResult:
    state: TrainingState
    iterations: tuple[TrainingIteration, ...]
    rules: RuleSet
    original_rules: RuleSet


def apply_suggestion(rules: RuleSet, entry: AggregatedSuggestion) -> bool:
    """Route a suggestion's pattern into its rule table; False if already there."""
    suggestion = entry.suggestion
    if isinstance(suggestion, StepSuggestion):
        table = rules.step_patterns
    elif isinstance(suggestion, ConditionSuggestion):
        table = rules.condition_patterns
    elif isinstance(suggestion, CrossReferenceSuggestion):
        table = rules.cross_reference_patterns
    else:
        table = _auto_learned_group(rules).include
    if suggestion.pattern in table:
        return False
    table.append(suggestion.pattern)
    return True


def _auto_learned_group(rules: RuleSet) -> VariableGroupRule:
    group = rules.group_rule(VariableGroup.AUTO_LEARNED.value)
    if group is None:
        group = VariableGroupRule(group=VariableGroup.AUTO_LEARNED.value)
        rules.variable_groups.append(group)
    return group


class AutoTrainer:
    """Parse a corpus repeatedly, learning rules from unrecognised lines."""

    def __init__(
        self,
        corpus: Sequence[Path | str | ExtractedDocument],
        rules: RuleSet | None = None,
        options: TrainerOptions | None = None,
        *,
        extractor: TextExtractor | None = None,
        output_dir: Path | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.corpus = list(corpus)
        self.rules = (rules or RuleSet()).copy()
        self.original_rules = self.rules.copy()
        self.options = options or TrainerOptions.resolve()
        self.extractor = extractor or LocalExtractor()
        self.output_dir = output_dir
        self.should_stop = should_stop or (lambda: False)
        self.state = TrainingState.IDLE
        self.history: list[TrainingIteration] = []
        self._history_doc = ensure_history()

    # -- public ---------------------------------------------------------

    def run(self) -> TrainingResult:
        if self.state is not TrainingState.IDLE:
            raise StandaardwerkError(f"Trainer cannot start from state {self.state}")
        documents = self._load_corpus()
        self.original_rules = self.rules.copy()
        self._save_rules(ORIGINAL_RULES_FILENAME, self.original_rules)
        previous: TrainingMetrics | None = None
        for index in range(1, self.options.max_iterations + 1):
            if self.should_stop():
                logger.info("Training cancelled before iteration %d", index)
                self._transition(TrainingState.CANCELLED)
                break
            self._transition(TrainingState.ITERATING)
            compiled = self.rules.compile()
            programs = self.run_pass(documents, compiled)
            metrics = self.measure(programs)
            logger.info(
                "Iteration %d: efficiency=%.3f errors=%.3f unknown=%.3f",
                index,
                metrics.parsing_efficiency,
                metrics.error_rate,
                metrics.unknown_pattern_rate,
            )
            if previous is not None and has_converged(
                previous, metrics, self.options.convergence_threshold
            ):
                self._record(index, metrics, 0, 0, 0, TrainingState.CONVERGED)
                break
            previous = metrics
            unknown = (line for program in programs for line in program.unknown_lines)
            suggestions = aggregate_suggestions(
                extract_suggestions(unknown), self.options.min_confidence
            )
            if not suggestions:
                self._record(index, metrics, 0, 0, 0, TrainingState.STALLED)
                break
            applied, generated = self.apply(suggestions, index)
            final = index == self.options.max_iterations
            self._record(
                index,
                metrics,
                applied,
                len(suggestions),
                generated,
                TrainingState.EXHAUSTED if final else TrainingState.ITERATING,
            )
        return TrainingResult(
            state=self.state,
            iterations=tuple(self.history),
            rules=self.rules.copy(),
            original_rules=self.original_rules.copy(),
        )

    def restore_original(self) -> RuleSet:
        self.rules = self.original_rules.copy()
        return self.rules.copy()

    def run_pass(
        self, documents: Sequence[ExtractedDocument], compiled: CompiledRules
    ) -> list[Program]:
        """Parse every document with one read-only rule table; order is preserved."""

        def parse(document: ExtractedDocument) -> Program:
            return parse_document(
                document.normalized_text,
                compiled,
                indent_source=document.indent_source,
                provenance=document.source,
            )

        with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
            return list(pool.map(parse, documents))

    @staticmethod
    def measure(programs: Iterable[Program]) -> TrainingMetrics:
        totals = sum((CorpusTotals.from_program(p) for p in programs), CorpusTotals())
        return TrainingMetrics.from_totals(totals)

    def apply(self, suggestions: Sequence[AggregatedSuggestion], index: int) -> tuple[int, int]:
        qualifying = [
            entry
            for entry in suggestions
            if entry.confidence >= self.options.min_confidence
            and entry.frequency >= self.options.min_apply_frequency
        ]
        if not qualifying:
            return 0, 0
        updated = self.rules.copy()
        applied = sum(1 for entry in qualifying if apply_suggestion(updated, entry))
        generated = self._add_generated_patterns(updated, qualifying)
        updated.version += 1
        self.rules = updated
        self._save_rules(f"rules.iteration-{index}.json", updated)
        logger.info("Applied %d suggestions and %d generated patterns", applied, generated)
        return applied, generated

    # -- internals ------------------------------------------------------

    def _add_generated_patterns(
        self, rules: RuleSet, entries: Sequence[AggregatedSuggestion]
    ) -> int:
        learnable = {
            f"{entry.suggestion.type}:{entry.suggestion.subtype}": entry
            for entry in entries
            if isinstance(entry.suggestion, (ConditionSuggestion, VariableSuggestion))
        }
        if not learnable:
            return 0
        generator = PatternGenerator(self.options.generator)
        generated = generator.generate(
            {key: entry.examples for key, entry in learnable.items()}
        )
        added = 0
        for key, patterns in generated.items():
            if isinstance(learnable[key].suggestion, ConditionSuggestion):
                table = rules.condition_patterns
            else:
                table = _auto_learned_group(rules).include
            for pattern in patterns:
                if pattern.source not in table:
                    table.append(pattern.source)
                    added += 1
        if generator.stats.compile_failures:
            logger.debug("Discarded %d invalid candidates", generator.stats.compile_failures)
        return added

    def _load_corpus(self) -> list[ExtractedDocument]:
        documents: list[ExtractedDocument] = []
        for item in self.corpus:
            if isinstance(item, ExtractedDocument):
                documents.append(item)
                continue
            try:
                documents.append(self.extractor.extract(Path(item)))
            except (ExtractionError, OSError) as exc:
                self._transition(TrainingState.ABORTED)
                raise TrainingAborted(f"Cannot read corpus document {item}: {exc}", str(item)) from exc
        if not documents:
            self._transition(TrainingState.ABORTED)
            raise TrainingAborted("Training corpus is empty")
        return documents

    def _transition(self, state: TrainingState) -> None:
        if state is not self.state:
            logger.debug("Trainer state %s -> %s", self.state, state)
        self.state = state
        if state not in {TrainingState.IDLE, TrainingState.ITERATING}:
            mark_state(self._history_doc, state.value)
            self._save_history()

    def _record(
        self,
        index: int,
        metrics: TrainingMetrics,
        applied: int,
        suggestion_count: int,
        generated: int,
        state: TrainingState,
    ) -> None:
        iteration = TrainingIteration(
            index=index,
            metrics=metrics,
            applied_suggestion_count=applied,
            timestamp=now_iso(),
            suggestion_count=suggestion_count,
            generated_pattern_count=generated,
            state=state,
        )
        self.history.append(iteration)
        record_iteration(self._history_doc, iteration.to_dict(), state.value)
        self._transition(state)
        self._save_history()

    def _save_rules(self, filename: str, rules: RuleSet) -> None:
        if self.output_dir is not None:
            save_rules(self.output_dir / filename, rules)

    def _save_history(self) -> None:
        if self.output_dir is not None:
            save_history(self.output_dir / HISTORY_FILENAME, self._history_doc)
