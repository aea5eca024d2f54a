from __future__ import annotations

from pathlib import Path

import pytest
from docx import Document

from standaardwerk.step_parser import extract, parse_file
from standaardwerk.step_parser.errors import ExtractionError
from standaardwerk.step_parser.models import GroupOperator
from standaardwerk.step_parser.pipeline import parse_document

HTML = """<html><body>
<p>RUST: Idle</p>
<p>SCHRITT 1: Start</p>
<ul><li>Ready</li><li>Go<ul><li>Nested</li></ul></li></ul>
</body></html>"""


def test_plain_text_keeps_layout(tmp_path: Path) -> None:
    path = tmp_path / "fb100.txt"
    path.write_text("\ufeffRUST: Idle\r\nSCHRITT 1: Start\r\n  - Ready\r\n", encoding="utf-8")
    document = extract.extract_document(path)
    assert document.indent_source == "manual"
    assert document.normalized_text == "RUST: Idle\nSCHRITT 1: Start\n  - Ready\n"
    assert document.source == str(path)


def test_html_lists_become_indented_bullets() -> None:
    document = extract.extract_html(HTML)
    assert document.indent_source == "word"
    assert document.normalized_text == "RUST: Idle\nSCHRITT 1: Start\n- Ready\n- Go\n\t- Nested"
    program = parse_document(document.normalized_text, indent_source=document.indent_source)
    groups = program.steps[1].entry_condition_groups
    assert [group.operator for group in groups] == [GroupOperator.AND]
    assert [c.text for c in groups[0].conditions] == ["Ready", "Go", "Nested"]


def test_docx_list_paragraphs(tmp_path: Path) -> None:
    path = tmp_path / "fb200.docx"
    word = Document()
    word.add_paragraph("RUST: Idle")
    word.add_paragraph("SCHRITT 1: Start")
    word.add_paragraph("Ready", style="List Bullet")
    word.add_paragraph("Druck > 2", style="List Bullet 2")
    word.save(str(path))

    document = extract.extract_document(path)
    assert document.normalized_text == "RUST: Idle\nSCHRITT 1: Start\n- Ready\n\t- Druck > 2"
    assert "<li" in document.html

    program = parse_file(path)
    conditions = program.steps[1].entry_condition_groups[0].conditions
    assert [c.text for c in conditions] == ["Ready", "Druck > 2"]
    assert {d.provenance for d in program.diagnostics} <= {str(path)}


def test_unsupported_and_missing_files(tmp_path: Path) -> None:
    with pytest.raises(ExtractionError):
        extract.extract_document(tmp_path / "notes.pdf")
    with pytest.raises(ExtractionError):
        extract.extract_document(tmp_path / "absent.txt")
    broken = tmp_path / "broken.docx"
    broken.write_text("not a zip", encoding="utf-8")
    with pytest.raises(ExtractionError):
        extract.extract_document(broken)


def test_iter_supported_files(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    for name in ("a.txt", "b.pdf", "sub/c.html", "d.docx", "e.png"):
        (tmp_path / name).write_text("x", encoding="utf-8")
    found = [path.relative_to(tmp_path).as_posix() for path in extract.iter_supported_files(tmp_path)]
    assert found == ["a.txt", "d.docx", "sub/c.html"]
