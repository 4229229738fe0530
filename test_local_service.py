"""
Tests for docsync.remote.local: the local document store.

Run: pytest test_local_service.py
"""

import asyncio

import pytest

from docsync.errors import RemoteServiceError
from docsync.ingest import extract_text, get_end_index
from docsync.redline.requests import (
    create_paragraph_bullets,
    delete_range,
    insert_text,
    update_paragraph_style,
    update_text_style,
)
from docsync.remote.local import LocalDocumentService


def _apply(service, document_id, requests):
    return asyncio.run(service.batch_update(document_id, requests))


def test_new_document_ends_with_newline():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "Hello")
    document = asyncio.run(service.get_document(doc_id))

    assert extract_text(document) == "Hello\n"
    assert get_end_index(document) == 7
    assert document["body"]["content"][0]["sectionBreak"] is not None


def test_requests_apply_in_order():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "Line A\nLine B\n")

    replies = _apply(service, doc_id, [delete_range(8, 14), insert_text(8, "Line C")])
    assert replies == [{}, {}]
    assert service.get_text(doc_id) == "Line A\nLine C\n"


def test_failed_call_changes_nothing():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "abc")

    with pytest.raises(RemoteServiceError) as excinfo:
        _apply(service, doc_id, [insert_text(1, "X"), delete_range(2, 99)])
    assert excinfo.value.status == 400
    assert service.get_text(doc_id) == "abc\n"


def test_insert_at_end_index_is_rejected():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "A\n")

    with pytest.raises(RemoteServiceError) as excinfo:
        _apply(service, doc_id, [insert_text(3, "B\n")])
    assert excinfo.value.status == 400
    assert service.get_text(doc_id) == "A\n"

    _apply(service, doc_id, [insert_text(2, "\nB")])
    assert service.get_text(doc_id) == "A\nB\n"


def test_unknown_document_and_request():
    service = LocalDocumentService()
    with pytest.raises(RemoteServiceError) as excinfo:
        asyncio.run(service.get_document("missing"))
    assert excinfo.value.kind == "not_found"

    doc_id = service.create_document("Notes", "abc")
    with pytest.raises(RemoteServiceError):
        _apply(service, doc_id, [{"replaceAllText": {}}])


def test_text_style_runs_and_clearing():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "keep gone\n")

    _apply(service, doc_id, [update_text_style(6, 10, {"strikethrough": True})])
    document = asyncio.run(service.get_document(doc_id))
    elements = document["body"]["content"][1]["paragraph"]["elements"]
    assert [e["textRun"]["content"] for e in elements] == ["keep ", "gone", "\n"]
    assert elements[1]["textRun"]["textStyle"] == {"strikethrough": True}
    assert (elements[1]["startIndex"], elements[1]["endIndex"]) == (6, 10)

    _apply(service, doc_id, [update_text_style(1, 10, {"strikethrough": False}, fields="strikethrough")])
    document = asyncio.run(service.get_document(doc_id))
    elements = document["body"]["content"][1]["paragraph"]["elements"]
    assert len(elements) == 1


def test_paragraph_style_and_bullets():
    service = LocalDocumentService()
    doc_id = service.create_document("Notes", "Title\nitem one\nitem two\n")

    _apply(
        service,
        doc_id,
        [update_paragraph_style(1, 6, "HEADING_1"), create_paragraph_bullets(7, 24, "bullet")],
    )
    paragraphs = [e["paragraph"] for e in asyncio.run(service.get_document(doc_id))["body"]["content"][1:]]
    assert paragraphs[0]["paragraphStyle"]["namedStyleType"] == "HEADING_1"
    assert "bullet" not in paragraphs[0]
    assert paragraphs[1]["bullet"]["preset"] == "BULLET_DISC_CIRCLE_SQUARE"
    assert paragraphs[2]["bullet"]["preset"] == "BULLET_DISC_CIRCLE_SQUARE"


def test_documents_persist_to_disk(tmp_path):
    service = LocalDocumentService(tmp_path)
    doc_id = service.create_document("Notes", "persisted", document_id="doc-1")
    _apply(service, doc_id, [update_text_style(1, 4, {"bold": True})])

    reopened = LocalDocumentService(tmp_path)
    assert reopened.list_documents() == ["doc-1"]
    document = asyncio.run(reopened.get_document("doc-1"))
    assert extract_text(document) == "persisted\n"
    first = document["body"]["content"][1]["paragraph"]["elements"][0]
    assert first["textRun"] == {"content": "per", "textStyle": {"bold": True}}
    assert document["revisionId"] == "1"
