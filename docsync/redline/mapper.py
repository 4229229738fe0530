from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

from docsync.ingest import get_end_index, iter_paragraphs
from docsync.models import HighlightOptions
from docsync.redline.requests import parse_color

logger = structlog.get_logger(__name__)

# Colour components come back as floats; compare with a tolerance.
COLOR_TOLERANCE = 0.02


@dataclass
class TextSpan:
    start: int
    end: int
    text: str
    style: Dict[str, Any] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return self.end - self.start


def _rgb(color_value: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float, float]]:
    """Reads an OptionalColor. Missing components are 0, a missing colour is None."""
    if not color_value:
        return None
    rgb = (color_value.get("color") or {}).get("rgbColor")
    if rgb is None:
        return None
    return (rgb.get("red", 0.0), rgb.get("green", 0.0), rgb.get("blue", 0.0))


def _same_color(a: Optional[Tuple[float, float, float]], b: Optional[Tuple[float, float, float]]) -> bool:
    if a is None or b is None:
        return False
    return all(abs(x - y) <= COLOR_TOLERANCE for x, y in zip(a, b))


class DocumentMapper:
    """
    Flattens a read-back document into indexed text spans, one per text run,
    and classifies which of them carry suggestion markers.
    """

    def __init__(self, document: Dict[str, Any], options: Optional[HighlightOptions] = None):
        self.document = document
        self.options = options or HighlightOptions()
        self.spans: List[TextSpan] = []
        self.full_text = ""
        self.end_index = get_end_index(document)
        self._deleted_background = _rgb(parse_color(self.options.deleted_highlight_color))
        self._build_map()

    def _build_map(self):
        parts = []
        for element in iter_paragraphs(self.document):
            for item in element["paragraph"].get("elements", []):
                run = item.get("textRun")
                if not run or not run.get("content"):
                    continue
                self.spans.append(
                    TextSpan(
                        start=item["startIndex"],
                        end=item["endIndex"],
                        text=run["content"],
                        style=run.get("textStyle") or {},
                    )
                )
                parts.append(run["content"])
        self.full_text = "".join(parts)

    def is_deletion_marker(self, span: TextSpan) -> bool:
        if span.style.get("strikethrough"):
            return True
        return _same_color(_rgb(span.style.get("backgroundColor")), self._deleted_background)

    def is_addition_marker(self, span: TextSpan) -> bool:
        """Any background other than the deletion highlight marks added or modified text."""
        if self.is_deletion_marker(span):
            return False
        return _rgb(span.style.get("backgroundColor")) is not None

    def deletion_markers(self) -> List[TextSpan]:
        return [s for s in self.spans if self.is_deletion_marker(s)]

    def addition_markers(self) -> List[TextSpan]:
        return [s for s in self.spans if self.is_addition_marker(s)]

    def has_markers(self) -> bool:
        return any(self.is_deletion_marker(s) or self.is_addition_marker(s) for s in self.spans)

    def char_at(self, index: int) -> str:
        """Character at a document index, or '' outside the mapped body."""
        if not self.spans:
            return ""
        offset = index - self.spans[0].start
        if 0 <= offset < len(self.full_text):
            return self.full_text[offset]
        return ""
