"""
Tests for docsync.export: writing read-back documents to .docx.

Run: pytest test_export.py
"""

import asyncio

import pytest
from docx import Document
from docx.oxml.ns import qn

from docsync.errors import ExportPathError
from docsync.export import export_docx
from docsync.redline.requests import (
    create_paragraph_bullets,
    parse_color,
    update_paragraph_style,
    update_text_style,
)
from docsync.remote.local import LocalDocumentService


def _document(text, requests=()):
    service = LocalDocumentService()
    doc_id = service.create_document("Export", text)
    if requests:
        asyncio.run(service.batch_update(doc_id, list(requests)))
    return asyncio.run(service.get_document(doc_id))


def test_struck_text_stays_struck(tmp_path):
    document = _document("keep gone\n", [update_text_style(6, 10, {"strikethrough": True})])
    path = export_docx(document, tmp_path / "out.docx")

    (paragraph,) = Document(str(path)).paragraphs
    assert paragraph.text == "keep gone"
    runs = {run.text: run for run in paragraph.runs}
    assert runs["gone"].font.strike is True
    assert not runs["keep "].font.strike


def test_background_becomes_shading(tmp_path):
    document = _document("new line\n", [update_text_style(1, 9, {"backgroundColor": parse_color("#00FF00")})])
    path = export_docx(document, tmp_path / "out.docx")

    (run,) = Document(str(path)).paragraphs[0].runs
    shd = run._r.rPr.find(qn("w:shd"))
    assert shd is not None
    assert shd.get(qn("w:fill")) == "00FF00"


def test_paragraph_styles_and_bullets(tmp_path):
    document = _document(
        "Heading\nbody\npoint\n",
        [update_paragraph_style(1, 8, "HEADING_1"), create_paragraph_bullets(14, 19, "bullet")],
    )
    path = export_docx(document, tmp_path / "out.docx")

    paragraphs = Document(str(path)).paragraphs
    assert [p.text for p in paragraphs] == ["Heading", "body", "point"]
    assert paragraphs[0].style.name == "Heading 1"
    assert paragraphs[2].style.name == "List Bullet"


def test_bad_paths_are_rejected(tmp_path):
    document = _document("text\n")
    with pytest.raises(ExportPathError):
        export_docx(document, tmp_path / "out.txt")
    with pytest.raises(ExportPathError):
        export_docx(document, tmp_path / "missing" / "out.docx")
