import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from docsync.config import SyncSettings, configure_logging
from docsync.diff import compute_diff, summarize
from docsync.errors import DocSyncError
from docsync.export import export_docx
from docsync.ingest import extract_text
from docsync.models import HighlightOptions
from docsync.redline.mapper import DocumentMapper
from docsync.redline.requests import body_end_index, translate_changes
from docsync.redline.suggestions import SuggestionManager
from docsync.remote.local import LocalDocumentService

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio. All logs must go to stderr; stdout carries JSON-RPC.
settings = SyncSettings()
configure_logging(settings.log_level, json=True)

mcp = FastMCP("Docsync Document Synchronization Service")

_manager: Optional[SuggestionManager] = None


def _get_manager() -> SuggestionManager:
    global _manager
    if _manager is None:
        _manager = SuggestionManager(LocalDocumentService(settings.store_path), settings=settings)
    return _manager


@mcp.tool()
def compare_texts(old_text: str, new_text: str) -> str:
    """
    Compares two texts line by line and returns a summary followed by every change.

    Each change line reads: [type] @position: content
    """
    result = compute_diff(old_text, new_text)
    lines = [summarize(result), ""]
    for change in result.actionable_changes():
        if change.new_content is not None and change.old_content is not None:
            lines.append(f"[{change.type.value}] @{change.position}: '{change.old_content}' -> '{change.new_content}'")
        else:
            lines.append(f"[{change.type.value}] @{change.position}: {change.old_content or change.new_content}")
    return "\n".join(lines)


@mcp.tool()
def plan_mutations(old_text: str, new_text: str, suggestion_mode: bool = True) -> str:
    """
    Returns, as JSON, the edit requests that would turn old_text into new_text.

    Args:
        suggestion_mode: If True (default), deletions are struck through instead of removed.
    """
    result = compute_diff(old_text, new_text)
    payloads = translate_changes(
        result.actionable_changes(),
        suggestion_mode=suggestion_mode,
        index_offset=settings.index_offset,
        end_index=body_end_index(old_text, settings.index_offset),
    )
    return json.dumps(payloads, indent=2)


@mcp.tool()
async def sync_document(
    document_id: str,
    new_text: str,
    suggestion_mode: bool = True,
    highlight: bool = True,
) -> str:
    """
    Brings a stored document up to date with new_text.

    Args:
        document_id: Id of the document in the local store.
        new_text: The full desired text.
        suggestion_mode: If True (default), deletions are struck through so they can be reviewed.
        highlight: If True (default), added and modified lines get a background colour.
    """
    try:
        result = await _get_manager().incremental_update(
            document_id, new_text, suggestion_mode=suggestion_mode, highlight=highlight, options=HighlightOptions()
        )
        return f"Synchronized {document_id}.\n{summarize(result)}"
    except DocSyncError as e:
        return f"Error synchronizing document: {str(e)}"


@mcp.tool()
async def accept_all_suggestions(document_id: str) -> str:
    """Accepts every pending suggestion: struck text is removed and all markers are cleared."""
    try:
        removed = await _get_manager().accept_all(document_id)
        return f"Accepted all suggestions in {document_id}. Removed {removed} ranges."
    except DocSyncError as e:
        return f"Error accepting suggestions: {str(e)}"


@mcp.tool()
async def reject_all_suggestions(document_id: str) -> str:
    """Rejects every pending suggestion: added text is removed and all markers are cleared."""
    try:
        removed = await _get_manager().reject_all(document_id)
        return f"Rejected all suggestions in {document_id}. Removed {removed} ranges."
    except DocSyncError as e:
        return f"Error rejecting suggestions: {str(e)}"


@mcp.tool()
async def read_document(document_id: str, show_markers: bool = False) -> str:
    """
    Returns the text of a stored document.

    Args:
        show_markers: If True, pending suggestions are shown inline as {--deleted--} and {++added++}.
    """
    try:
        document = await _get_manager().service.get_document(document_id)
    except DocSyncError as e:
        return f"Error reading document: {str(e)}"

    if not show_markers:
        return extract_text(document)

    mapper = DocumentMapper(document)
    parts = []
    for span in mapper.spans:
        if mapper.is_deletion_marker(span):
            parts.append(f"{{--{span.text}--}}")
        elif mapper.is_addition_marker(span):
            parts.append(f"{{++{span.text}++}}")
        else:
            parts.append(span.text)
    return "".join(parts)


@mcp.tool()
async def export_document(document_id: str, output_path: str) -> str:
    """Writes a stored document, markers included, to a .docx file."""
    try:
        document = await _get_manager().service.get_document(document_id)
        path = export_docx(document, output_path)
        return f"Exported {document_id} to: {path}"
    except DocSyncError as e:
        return f"Error exporting document: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
