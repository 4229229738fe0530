from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
from docx import Document
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor
from docx.text.run import Run

from docsync.errors import ExportPathError
from docsync.ingest import iter_paragraphs

logger = structlog.get_logger(__name__)

# namedStyleType -> built-in Word style
STYLE_MAP = {
    "TITLE": "Title",
    "SUBTITLE": "Subtitle",
    "HEADING_1": "Heading 1",
    "HEADING_2": "Heading 2",
    "HEADING_3": "Heading 3",
    "HEADING_4": "Heading 4",
    "HEADING_5": "Heading 5",
    "HEADING_6": "Heading 6",
}


def _hex(color_value: Optional[Dict[str, Any]]) -> Optional[str]:
    if not color_value:
        return None
    rgb = (color_value.get("color") or {}).get("rgbColor")
    if rgb is None:
        return None
    return "".join(f"{round(rgb.get(c, 0.0) * 255):02X}" for c in ("red", "green", "blue"))


def _set_shading(run: Run, fill: str):
    """Arbitrary background colours need w:shd; w:highlight only knows a fixed palette."""
    rPr = run._r.get_or_add_rPr()
    shd = OxmlElement("w:shd")
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), fill)
    rPr.append(shd)


def _apply_text_style(run: Run, style: Dict[str, Any]):
    run.bold = style.get("bold") or None
    run.italic = style.get("italic") or None
    run.underline = style.get("underline") or None
    run.font.strike = style.get("strikethrough") or None

    size = (style.get("fontSize") or {}).get("magnitude")
    if size:
        run.font.size = Pt(size)

    foreground = _hex(style.get("foregroundColor"))
    if foreground:
        run.font.color.rgb = RGBColor.from_string(foreground)

    background = _hex(style.get("backgroundColor"))
    if background:
        _set_shading(run, background)


def _check_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    if path.suffix.lower() != ".docx":
        raise ExportPathError(f"Export path must end in .docx: {path}")
    if not path.parent.is_dir():
        raise ExportPathError(f"Directory does not exist: {path.parent}")
    return path


def export_docx(document: Dict[str, Any], path: Union[str, Path]) -> Path:
    """
    Writes a read-back document to a .docx file.
    Paragraph styles, bullets and run styles (including suggestion markers) are kept.
    """
    path = _check_path(path)
    doc = Document()

    for element in iter_paragraphs(document):
        paragraph = element["paragraph"]
        named = (paragraph.get("paragraphStyle") or {}).get("namedStyleType", "NORMAL_TEXT")
        style = STYLE_MAP.get(named)
        if "bullet" in paragraph:
            preset = (paragraph["bullet"].get("preset") or "").upper()
            style = "List Number" if preset.startswith("NUMBERED") else "List Bullet"

        p = doc.add_paragraph(style=style)
        for item in paragraph.get("elements", []):
            run_data = item.get("textRun")
            if not run_data:
                continue
            text = run_data.get("content", "").rstrip("\n")
            if not text:
                continue
            run = p.add_run(text)
            _apply_text_style(run, run_data.get("textStyle") or {})

    doc.save(str(path))
    logger.info(f"Exported document to {path}", paragraphs=len(doc.paragraphs))
    return path
