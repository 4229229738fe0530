"""
Builders for the primitive edit requests accepted by the remote service,
and the translation of diff changes into ordered request lists.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog

from docsync.models import ChangeType, ContentChange, DeletedStyle, HighlightOptions

logger = structlog.get_logger(__name__)

Payload = Dict[str, Any]

NAMED_COLORS = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (1.0, 0.0, 0.0),
    "green": (0.0, 1.0, 0.0),
    "blue": (0.0, 0.0, 1.0),
    "yellow": (1.0, 1.0, 0.0),
    "cyan": (0.0, 1.0, 1.0),
    "magenta": (1.0, 0.0, 1.0),
}

LIST_PRESETS = {
    "bullet": "BULLET_DISC_CIRCLE_SQUARE",
    "numbered": "NUMBERED_DECIMAL_ALPHA_ROMAN",
}

# Order matters: it is the order fields appear in the generated mask.
STYLE_FIELDS = (
    "bold",
    "italic",
    "underline",
    "strikethrough",
    "fontSize",
    "foregroundColor",
    "backgroundColor",
    "link",
)


def parse_color(color: str) -> Dict[str, Any]:
    """
    Converts '#RRGGBB' or a basic colour name into an OptionalColor.
    Unknown values fall back to black.
    """
    if color.startswith("#") and len(color) == 7:
        try:
            r, g, b = (int(color[i : i + 2], 16) / 255 for i in (1, 3, 5))
            return {"color": {"rgbColor": {"red": r, "green": g, "blue": b}}}
        except ValueError:
            logger.warning(f"Invalid hex colour '{color}', using black")
            r, g, b = NAMED_COLORS["black"]
    else:
        r, g, b = NAMED_COLORS.get(color.lower(), NAMED_COLORS["black"])
    return {"color": {"rgbColor": {"red": r, "green": g, "blue": b}}}


def build_field_mask(style: Dict[str, Any]) -> str:
    return ",".join(field for field in STYLE_FIELDS if field in style)


def _range(start: int, end: int) -> Dict[str, int]:
    if end <= start:
        raise ValueError(f"Empty or inverted range [{start}, {end})")
    return {"startIndex": start, "endIndex": end}


def insert_text(index: int, text: str) -> Payload:
    return {"insertText": {"location": {"index": index}, "text": text}}


def delete_range(start: int, end: int) -> Payload:
    return {"deleteContentRange": {"range": _range(start, end)}}


def update_text_style(start: int, end: int, text_style: Dict[str, Any], fields: Optional[str] = None) -> Payload:
    return {
        "updateTextStyle": {
            "range": _range(start, end),
            "textStyle": text_style,
            "fields": fields or build_field_mask(text_style),
        }
    }


def update_paragraph_style(start: int, end: int, named_style_type: str) -> Payload:
    """named_style_type: NORMAL_TEXT, TITLE, HEADING_1 ... HEADING_6."""
    return {
        "updateParagraphStyle": {
            "range": _range(start, end),
            "paragraphStyle": {"namedStyleType": named_style_type},
            "fields": "namedStyleType",
        }
    }


def create_paragraph_bullets(start: int, end: int, list_type: str = "bullet") -> Payload:
    try:
        preset = LIST_PRESETS[list_type]
    except KeyError:
        raise ValueError(f"Unknown list type '{list_type}' (expected one of {sorted(LIST_PRESETS)})") from None
    return {"createParagraphBullets": {"range": _range(start, end), "bulletPreset": preset}}


def clear_markers(start: int, end: int) -> Payload:
    """Resets every marker style over [start, end) without touching the text."""
    return update_text_style(
        start,
        end,
        {"backgroundColor": {"color": {}}, "foregroundColor": {"color": {}}, "strikethrough": False},
        fields="backgroundColor,foregroundColor,strikethrough",
    )


def body_end_index(text: str, index_offset: int = 1) -> int:
    """End index of a body holding text. The body always ends with a paragraph break."""
    return index_offset + len(text) + (0 if text.endswith("\n") else 1)


def translate_changes(
    changes: Iterable[ContentChange],
    suggestion_mode: bool = True,
    index_offset: int = 0,
    end_index: Optional[int] = None,
) -> List[Payload]:
    """
    Turns diff changes into request payloads, preserving change order.

    - added:    insert the new line (with its newline) at position
    - modified: delete [position, position+length), then insert the new content at position
    - deleted:  strike [position, position+length) in suggestion mode, delete it otherwise
    - unchanged produces nothing

    When end_index (the body's end index before any change) is given, a line added
    at or past the end is inserted as "\\n" + text before the final newline, since
    insertions must fall strictly before the end index.
    """
    payloads: List[Payload] = []

    for change in changes:
        start = change.position + index_offset
        end = start + change.length

        if change.type == ChangeType.ADDED:
            if end_index is not None and start >= end_index:
                payloads.append(insert_text(end_index - 1, "\n" + change.new_content))
            else:
                payloads.append(insert_text(start, change.new_content + "\n"))
            if end_index is not None:
                end_index += len(change.new_content) + 1

        elif change.type == ChangeType.MODIFIED:
            # The old line's newline stays in place, so the replacement goes in without one.
            if change.length:
                payloads.append(delete_range(start, end))
            if change.new_content:
                payloads.append(insert_text(start, change.new_content))
            if end_index is not None:
                end_index += len(change.new_content) - change.length

        elif change.type == ChangeType.DELETED:
            if not change.length:
                continue
            if suggestion_mode:
                payloads.append(update_text_style(start, end, {"strikethrough": True}))
            else:
                payloads.append(delete_range(start, end))
                if end_index is not None:
                    end_index -= change.length

    logger.debug(f"Translated changes into {len(payloads)} payloads", suggestion_mode=suggestion_mode)
    return payloads


def rebase_changes(changes: Iterable[ContentChange], suggestion_mode: bool = True) -> List[ContentChange]:
    """
    Shifts diff positions onto the document as it is while the changes are being applied.

    Diff positions skip deleted lines, but a deletion leaves text behind: the struck line
    and its newline in suggestion mode, the bare newline otherwise. Every later change
    moves right by what earlier deletions left in place.
    """
    rebased: List[ContentChange] = []
    shift = 0
    for change in changes:
        rebased.append(change.model_copy(update={"position": change.position + shift}))
        if change.type == ChangeType.DELETED:
            shift += change.length + 1 if suggestion_mode else 1
    return rebased


def highlight_payloads(
    changes: Iterable[ContentChange], options: Optional[HighlightOptions] = None, index_offset: int = 0
) -> List[Payload]:
    """
    Marker styles for suggested changes:
    added/modified text gets a background colour over the new content,
    deleted text is struck through (red) or given the deletion background.
    """
    options = options or HighlightOptions()
    payloads: List[Payload] = []

    for change in changes:
        start = change.position + index_offset

        if change.type in (ChangeType.ADDED, ChangeType.MODIFIED):
            span = len(change.new_content or "") or change.length
            if not span:
                continue
            color = options.added_color if change.type == ChangeType.ADDED else options.modified_color
            payloads.append(update_text_style(start, start + span, {"backgroundColor": parse_color(color)}))

        elif change.type == ChangeType.DELETED:
            if not change.length:
                continue
            end = start + change.length
            if options.deleted_style == DeletedStyle.STRIKETHROUGH:
                style = {"strikethrough": True, "foregroundColor": parse_color(options.deleted_color)}
            else:
                style = {"backgroundColor": parse_color(options.deleted_highlight_color)}
            payloads.append(update_text_style(start, end, style))

    return payloads
