from __future__ import annotations

import pytest

from standaardwerk.step_parser.models import ContentType
from standaardwerk.step_parser.structure import Node, build_tree, classify_lines, indent_level


@pytest.mark.parametrize(
    ("raw", "source", "expected"),
    [
        ("A", "word", 0),
        ("\tA", "word", 1),
        ("\t\tA", "word", 2),
        ("  A", "word", 0),
        ("        A", "word", 2),
        ("- A", "word", 1),
        ("    - A", "word", 2),
        ("1. A", "word", 1),
        ("1.5 bar", "word", 0),
        ("  A", "manual", 1),
        ("    A", "manual", 2),
        ("\t- A", "manual", 1),
    ],
)
def test_indent_level(raw: str, source: str, expected: int) -> None:
    assert indent_level(raw, source) == expected


def _texts(nodes: list[Node]) -> list[str]:
    return [node.line.text for node in nodes if node.line is not None]


def test_steps_own_their_indented_lines() -> None:
    text = "RUST: Idle\nSCHRITT 1: Start\n- Ready\n- Go\nSCHRITT 2: Next\n\t+ von SCHRITT 1"
    root = build_tree(classify_lines(text))
    assert _texts(root.children) == ["RUST: Idle", "SCHRITT 1: Start", "SCHRITT 2: Next"]
    assert _texts(root.children[1].children) == ["- Ready", "- Go"]
    transition = root.children[2].children[0]
    assert transition.content_type is ContentType.NON_SEQUENTIAL


def test_conditions_nest_under_conditions() -> None:
    root = build_tree(classify_lines("SCHRITT 1: X\n\tA\n\t\tB"))
    step = root.children[0]
    assert _texts(step.children) == ["A"]
    assert _texts(step.children[0].children) == ["B"]
    assert _texts(list(step.walk())) == ["A", "B"]


def test_variables_do_not_adopt_children() -> None:
    root = build_tree(classify_lines("Motor =\n\tReady"))
    assert _texts(root.children) == ["Motor =", "Ready"]
    assert root.children[0].children == []


def test_custom_container_types() -> None:
    lines = classify_lines("SCHRITT 1: X\n\tA\n\t\tB")
    root = build_tree(lines, container_types={ContentType.REST, ContentType.NUMBERED})
    assert _texts(root.children[0].children) == ["A", "B"]


def test_line_numbers_follow_source_lines() -> None:
    lines = classify_lines("RUST: Idle\n\nSCHRITT 1: Start")
    assert [line.line_number for line in lines] == [1, 3]
    assert [line.content_type for line in lines] == [ContentType.REST, ContentType.NUMBERED]


def test_manual_indent_source() -> None:
    lines = classify_lines("SCHRITT 1: Start\n  Ready\n    Nested", source="manual")
    assert [line.indent for line in lines] == [0, 1, 2]
