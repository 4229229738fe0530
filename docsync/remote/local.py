"""
A local document store that speaks the same request dialect as the remote service.

Documents live in memory and, when a root directory is given, are persisted as
one JSON file per document. The text model follows the Docs body: index 1 is the
first character, every paragraph ends with a newline, and a call's requests are
applied all-or-nothing. Inserted text starts unstyled.
"""

import asyncio
import json
import uuid
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

from docsync.errors import RemoteServiceError
from docsync.redline.requests import LIST_PRESETS
from docsync.remote.service import DocumentService

logger = structlog.get_logger(__name__)

BODY_START = 1

BULLET_PRESETS = tuple(LIST_PRESETS.values())
SUPPORTED_REQUESTS = (
    "insertText",
    "deleteContentRange",
    "updateTextStyle",
    "updateParagraphStyle",
    "createParagraphBullets",
)


class _LocalDocument:
    def __init__(self, document_id: str, title: str, text: str = ""):
        self.document_id = document_id
        self.title = title
        self.revision = 0
        if not text.endswith("\n"):
            text += "\n"
        self.chars: List[str] = list(text)
        self.styles: List[Dict[str, Any]] = [{} for _ in text]
        # Paragraph properties, tracked on each paragraph's terminating newline.
        self.paragraphs: List[Optional[Dict[str, Any]]] = [{} if ch == "\n" else None for ch in text]

    @property
    def end_index(self) -> int:
        return BODY_START + len(self.chars)

    @property
    def text(self) -> str:
        return "".join(self.chars)

    def copy(self) -> "_LocalDocument":
        return deepcopy(self)

    def to_json(self) -> Dict[str, Any]:
        runs: List[List[Any]] = []
        for ch, style in zip(self.chars, self.styles):
            if runs and runs[-1][1] == style:
                runs[-1][0] += ch
            else:
                runs.append([ch, deepcopy(style)])
        return {
            "documentId": self.document_id,
            "title": self.title,
            "revision": self.revision,
            "runs": runs,
            "paragraphs": [p for p in self.paragraphs if p is not None],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "_LocalDocument":
        doc = cls(data["documentId"], data.get("title", ""), "")
        doc.revision = data.get("revision", 0)
        doc.chars, doc.styles, doc.paragraphs = [], [], []
        paragraph_props = iter(data.get("paragraphs", []))
        for text, style in data.get("runs", []):
            for ch in text:
                doc.chars.append(ch)
                doc.styles.append(dict(style))
                doc.paragraphs.append(next(paragraph_props, {}) if ch == "\n" else None)
        if not doc.chars:
            doc.chars, doc.styles, doc.paragraphs = ["\n"], [{}], [{}]
        return doc


def _bad_request(message: str) -> RemoteServiceError:
    return RemoteServiceError(f"Invalid request: {message}", status=400, kind="invalid_request")


def _parse_fields(fields: Optional[str], style: Dict[str, Any]) -> List[str]:
    if not fields:
        raise _bad_request("fields mask is required")
    if fields.strip() == "*":
        return list(style.keys())
    return [f.strip() for f in fields.split(",") if f.strip()]


def _is_cleared(value: Any) -> bool:
    # An empty colour ({"color": {}}) or False unsets the property.
    if value is False or value is None:
        return True
    if isinstance(value, dict):
        return not value or value == {"color": {}}
    return False


class LocalDocumentService(DocumentService):
    def __init__(self, root: Optional[Union[str, Path]] = None, latency: float = 0.0):
        self.root = Path(root) if root is not None else None
        self.latency = latency
        self._documents: Dict[str, _LocalDocument] = {}
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)

    # --- document management ---

    def create_document(self, title: str, text: str = "", document_id: Optional[str] = None) -> str:
        document_id = document_id or uuid.uuid4().hex[:16]
        doc = _LocalDocument(document_id, title, text)
        self._documents[document_id] = doc
        self._persist(doc)
        logger.info("Created local document", document_id=document_id, title=title)
        return document_id

    def list_documents(self) -> List[str]:
        ids = set(self._documents)
        if self.root is not None:
            ids.update(p.stem for p in self.root.glob("*.json"))
        return sorted(ids)

    def get_text(self, document_id: str) -> str:
        return self._load(document_id).text

    def _load(self, document_id: str) -> _LocalDocument:
        doc = self._documents.get(document_id)
        if doc is not None:
            return doc
        if self.root is not None:
            path = self.root / f"{document_id}.json"
            if path.is_file():
                with open(path, "r", encoding="utf-8") as f:
                    doc = _LocalDocument.from_json(json.load(f))
                self._documents[document_id] = doc
                return doc
        raise RemoteServiceError(f"Document not found: {document_id}", status=404, kind="not_found")

    def _persist(self, doc: _LocalDocument):
        if self.root is None:
            return
        path = self.root / f"{doc.document_id}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(doc.to_json(), f, indent=2)

    # --- DocumentService ---

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> List[Optional[Dict[str, Any]]]:
        if self.latency:
            await asyncio.sleep(self.latency)
        doc = self._load(document_id)
        working = doc.copy()
        replies = [self._apply(working, request) for request in requests]
        working.revision += 1
        self._documents[document_id] = working
        self._persist(working)
        logger.debug("Applied local batch", document_id=document_id, requests=len(requests))
        return replies

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        if self.latency:
            await asyncio.sleep(self.latency)
        return self._render(self._load(document_id))

    # --- request application ---

    def _apply(self, doc: _LocalDocument, request: Dict[str, Any]) -> Dict[str, Any]:
        if len(request) != 1:
            raise _bad_request("each request must hold exactly one operation")
        kind, body = next(iter(request.items()))
        if kind not in SUPPORTED_REQUESTS:
            raise _bad_request(f"unsupported request {kind!r}")

        if kind == "insertText":
            index = body.get("location", {}).get("index")
            text = body.get("text", "")
            # Text can only go in before the body's final newline.
            if index is None or not BODY_START <= index < doc.end_index:
                raise _bad_request(f"insertion index {index} outside [{BODY_START}, {doc.end_index})")
            pos = index - BODY_START
            doc.chars[pos:pos] = list(text)
            doc.styles[pos:pos] = [{} for _ in text]
            doc.paragraphs[pos:pos] = [{} if ch == "\n" else None for ch in text]
            return {}

        start, end = self._range(doc, body)

        if kind == "deleteContentRange":
            del doc.chars[start:end]
            del doc.styles[start:end]
            del doc.paragraphs[start:end]
            return {}

        if kind == "updateTextStyle":
            text_style = body.get("textStyle", {})
            fields = _parse_fields(body.get("fields"), text_style)
            for style in doc.styles[start:end]:
                for field in fields:
                    value = text_style.get(field)
                    if _is_cleared(value):
                        style.pop(field, None)
                    else:
                        style[field] = deepcopy(value)
            return {}

        if kind == "updateParagraphStyle":
            paragraph_style = body.get("paragraphStyle", {})
            fields = _parse_fields(body.get("fields"), paragraph_style)
            for props in self._paragraphs_in(doc, start, end):
                current = props.setdefault("paragraphStyle", {})
                for field in fields:
                    if field in paragraph_style:
                        current[field] = paragraph_style[field]
                    else:
                        current.pop(field, None)
            return {}

        if kind == "createParagraphBullets":
            preset = body.get("bulletPreset")
            if preset not in BULLET_PRESETS:
                raise _bad_request(f"unknown bullet preset {preset!r}")
            for props in self._paragraphs_in(doc, start, end):
                props["bullet"] = {"listId": f"local.{preset}", "preset": preset}
            return {}

        raise _bad_request(f"unhandled request {kind!r}")

    def _range(self, doc: _LocalDocument, body: Dict[str, Any]):
        rng = body.get("range", {})
        start, end = rng.get("startIndex"), rng.get("endIndex")
        if start is None or end is None or not BODY_START <= start < end <= doc.end_index:
            raise _bad_request(f"range [{start}, {end}) outside [{BODY_START}, {doc.end_index})")
        return start - BODY_START, end - BODY_START

    def _paragraphs_in(self, doc: _LocalDocument, start: int, end: int):
        """Yields the property dicts of every paragraph overlapping [start, end)."""
        pos = start
        while pos < len(doc.chars):
            if doc.paragraphs[pos] is not None:
                yield doc.paragraphs[pos]
                if pos >= end - 1:
                    return
            pos += 1

    # --- read-back ---

    def _render(self, doc: _LocalDocument) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"endIndex": BODY_START, "sectionBreak": {"sectionStyle": {}}}]
        para_start = 0
        elements: List[Dict[str, Any]] = []

        for pos, ch in enumerate(doc.chars):
            index = pos + BODY_START
            if elements and elements[-1]["textRun"]["textStyle"] == doc.styles[pos] and elements[-1]["endIndex"] == index:
                elements[-1]["textRun"]["content"] += ch
                elements[-1]["endIndex"] += 1
            else:
                elements.append(
                    {
                        "startIndex": index,
                        "endIndex": index + 1,
                        "textRun": {"content": ch, "textStyle": deepcopy(doc.styles[pos])},
                    }
                )
            if ch == "\n" or pos == len(doc.chars) - 1:
                props = doc.paragraphs[pos] or {}
                paragraph: Dict[str, Any] = {
                    "elements": elements,
                    "paragraphStyle": deepcopy(props.get("paragraphStyle", {"namedStyleType": "NORMAL_TEXT"})),
                }
                if "bullet" in props:
                    paragraph["bullet"] = deepcopy(props["bullet"])
                content.append(
                    {"startIndex": para_start + BODY_START, "endIndex": index + 1, "paragraph": paragraph}
                )
                para_start = pos + 1
                elements = []

        return {
            "documentId": doc.document_id,
            "title": doc.title,
            "revisionId": str(doc.revision),
            "body": {"content": content},
        }
