from typing import Any, Dict, Iterator

import structlog

logger = structlog.get_logger(__name__)


def iter_structural_elements(document: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    yield from (document.get("body") or {}).get("content") or []


def iter_paragraphs(document: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Yields the structural elements that hold a paragraph. Section breaks and tables are skipped."""
    for element in iter_structural_elements(document):
        if "paragraph" in element:
            yield element


def extract_text(document: Dict[str, Any]) -> str:
    """
    Concatenates the content of every text run in body order.
    The result is the document's text in the coordinate space the diff engine works in
    (offset 0 is the first body character).
    """
    parts = []
    for element in iter_paragraphs(document):
        for item in element["paragraph"].get("elements", []):
            content = (item.get("textRun") or {}).get("content")
            if content:
                parts.append(content)
    return "".join(parts)


def get_end_index(document: Dict[str, Any]) -> int:
    content = list(iter_structural_elements(document))
    if not content:
        return 1
    return content[-1].get("endIndex") or 1
