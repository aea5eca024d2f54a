"""Candidate pattern mining and precision/recall scoring."""
from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field

from .normalize import now_iso

logger = logging.getLogger(__name__)

WORD_RE = re.compile(r"\b\w+\b")
LETTER_RE = re.compile(r"[^\W\d_]")

TOP_WORDS = 10
TOP_NGRAMS = 15

STRUCTURAL_TEMPLATES: dict[str, tuple[str, str]] = {
    "technical_code": (r"^[A-Z0-9]{2,}\s+", "Starts with a technical code"),
    "equals_suffix": (r"\s*=\s*$", "Ends with '='"),
    "number_prefix": (r"^\d+", "Starts with a number"),
    "parentheses": (r"\([^)]+\)", "Contains parenthetical content"),
    "german_compound": (r"\b[A-ZÄÖÜ][a-zäöüß]{7,}\b", "Contains a long compound word"),
    "mixed_case": (r"[a-z][A-Z]", "Contains mixed case"),
}

COMPOSITE_TEMPLATES: dict[str, tuple[str, str]] = {
    "technical_code_phrase": (r"^[A-Z0-9]{2,}\s+\w+", "Technical code followed by a word"),
    "freigabe": (r"\b(freigabe|release|vrijgave)\s+\w+", "Release/freigabe phrase"),
}


@dataclass
class GeneratorOptions:
    min_frequency: int = 3
    min_precision: float = 0.7
    min_recall: float = 0.7
    max_patterns: int = 5
    ngram_size: int = 3
    extra_templates: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Candidate:
    source: str
    description: str
    kind: str
    frequency: int


@dataclass(frozen=True)
class Pattern:
    source: str
    description: str
    precision: float
    recall: float
    f1: float
    frequency: int
    source_group: str
    kind: str = ""

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class GenerationStats:
    candidates: int = 0
    compile_failures: int = 0
    emitted: int = 0
    skipped_groups: list[str] = field(default_factory=list)


def f1_score(precision: float, recall: float) -> float:
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def score_pattern(
    pattern: re.Pattern[str], examples: Sequence[str], declared_frequency: int
) -> tuple[float, float, float]:
    """Return (precision, recall, f1) of ``pattern`` over ``examples``."""
    matches = sum(1 for example in examples if pattern.search(example))
    if not examples or matches == 0:
        return 0.0, 0.0, 0.0
    precision = matches / len(examples)
    recall = matches / max(declared_frequency, 1)
    return precision, recall, f1_score(precision, recall)


class PatternGenerator:
    def __init__(self, options: GeneratorOptions | None = None) -> None:
        self.options = options or GeneratorOptions()
        self.stats = GenerationStats()

    def generate(self, examples_by_group: Mapping[str, Sequence[str]]) -> dict[str, list[Pattern]]:
        self.stats = GenerationStats()
        results: dict[str, list[Pattern]] = {}
        for group, examples in examples_by_group.items():
            if len(examples) < self.options.min_frequency:
                logger.debug("Skipping %s: %d examples", group, len(examples))
                self.stats.skipped_groups.append(group)
                continue
            results[group] = self.generate_group(group, examples)
        return results

    def generate_group(self, group: str, examples: Sequence[str]) -> list[Pattern]:
        candidates = [
            *self.frequency_candidates(examples),
            *self.ngram_candidates(examples),
            *self.structural_candidates(examples),
        ]
        self.stats.candidates += len(candidates)
        scored: list[Pattern] = []
        seen: set[str] = set()
        for candidate in candidates:
            if candidate.source in seen:
                continue
            seen.add(candidate.source)
            compiled = self._compile(candidate.source)
            if compiled is None:
                continue
            precision, recall, f1 = score_pattern(compiled, examples, candidate.frequency)
            scored.append(
                Pattern(
                    source=candidate.source,
                    description=candidate.description,
                    precision=precision,
                    recall=recall,
                    f1=f1,
                    frequency=candidate.frequency,
                    source_group=group,
                    kind=candidate.kind,
                )
            )
        kept = [
            pattern
            for pattern in scored
            if pattern.precision >= self.options.min_precision
            and pattern.recall >= self.options.min_recall
            and pattern.frequency >= self.options.min_frequency
        ]
        kept.sort(key=lambda pattern: pattern.f1, reverse=True)
        kept = kept[: self.options.max_patterns]
        self.stats.emitted += len(kept)
        logger.debug("Generated %d patterns for %s", len(kept), group)
        return kept

    def _compile(self, source: str) -> re.Pattern[str] | None:
        try:
            return re.compile(source, re.IGNORECASE)
        except re.error as exc:
            self.stats.compile_failures += 1
            logger.debug("Discarding candidate %r: %s", source, exc)
            return None

    def frequency_candidates(self, examples: Iterable[str]) -> list[Candidate]:
        counts: Counter[str] = Counter()
        for example in examples:
            counts.update(WORD_RE.findall(example.lower()))
        candidates: list[Candidate] = []
        for word, frequency in counts.most_common(TOP_WORDS):
            if frequency < self.options.min_frequency:
                continue
            escaped = re.escape(word)
            candidates.append(
                Candidate(rf"^{escaped}\b", f'Starts with "{word}"', "frequency_start", frequency)
            )
            candidates.append(
                Candidate(rf"\b{escaped}\b", f'Contains "{word}"', "frequency_contains", frequency)
            )
        return candidates

    def ngram_candidates(self, examples: Iterable[str]) -> list[Candidate]:
        size = self.options.ngram_size
        counts: Counter[str] = Counter()
        for example in examples:
            text = example.lower()
            for start in range(len(text) - size + 1):
                ngram = text[start : start + size]
                if LETTER_RE.search(ngram):
                    counts[ngram] += 1
        return [
            Candidate(re.escape(ngram), f'Contains n-gram "{ngram}"', "ngram", frequency)
            for ngram, frequency in counts.most_common(TOP_NGRAMS)
            if frequency >= self.options.min_frequency
        ]

    def structural_candidates(self, examples: Sequence[str]) -> list[Candidate]:
        templates = {**STRUCTURAL_TEMPLATES, **COMPOSITE_TEMPLATES}
        for name, source in self.options.extra_templates.items():
            templates[name] = (source, f"Custom template {name}")
        candidates: list[Candidate] = []
        for name, (source, description) in templates.items():
            compiled = self._compile(source)
            if compiled is None:
                continue
            matches = sum(1 for example in examples if compiled.search(example))
            if matches >= self.options.min_frequency:
                candidates.append(Candidate(source, description, name, matches))
        return candidates


def generate_patterns(
    examples_by_group: Mapping[str, Sequence[str]], options: GeneratorOptions | None = None
) -> dict[str, list[Pattern]]:
    return PatternGenerator(options).generate(examples_by_group)


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def build_report(
    patterns: Mapping[str, Sequence[Pattern]],
    examples_by_group: Mapping[str, Sequence[str]] | None = None,
) -> dict[str, object]:
    """Summarise generated patterns per group with follow-up recommendations."""
    everything = [pattern for group in patterns.values() for pattern in group]
    groups: dict[str, dict[str, object]] = {}
    recommendations: list[str] = []
    for group, group_patterns in patterns.items():
        groups[group] = {
            "total_patterns": len(group_patterns),
            "average_f1": _average([p.f1 for p in group_patterns]),
            "best_pattern": group_patterns[0].source if group_patterns else None,
            "total_examples": len((examples_by_group or {}).get(group, ())),
        }
        if not group_patterns:
            recommendations.append(f"{group}: no pattern passed the thresholds; collect more examples")
        elif _average([p.f1 for p in group_patterns]) < 0.8:
            recommendations.append(f"{group}: low average F1; review the examples for mislabels")
    return {
        "summary": {
            "total_groups": len(patterns),
            "total_patterns": len(everything),
            "average_precision": _average([p.precision for p in everything]),
            "average_recall": _average([p.recall for p in everything]),
            "generated_at": now_iso(),
        },
        "groups": groups,
        "patterns": {
            group: [pattern.to_dict() for pattern in group_patterns]
            for group, group_patterns in patterns.items()
        },
        "recommendations": recommendations,
    }
