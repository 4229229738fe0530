"""
Review workflow for suggested changes on a live document.

Suggestions are proposed by applying edits with visible markers (background
colour for added and modified text, strikethrough or a deletion background for
removed text). Whether a suggestion is still pending is read back from those
styles on every call, so accept/reject work on whatever the document holds now.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from docsync.batch import MutationQueue
from docsync.config import SyncSettings
from docsync.diff import compute_diff, summarize
from docsync.errors import AuthenticationError, RemoteServiceError
from docsync.events import EventEmitter
from docsync.ingest import extract_text, get_end_index
from docsync.models import (
    ChangeType,
    ContentChange,
    DiffResult,
    HighlightOptions,
    ReviewActionType,
    SuggestionState,
)
from docsync.redline.mapper import DocumentMapper
from docsync.redline.requests import (
    clear_markers,
    delete_range,
    highlight_payloads,
    rebase_changes,
    translate_changes,
)
from docsync.remote.service import DocumentService

logger = structlog.get_logger(__name__)

BODY_START = 1


def _merge_ranges(ranges: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Joins ranges that touch or overlap (a marked line split over several runs, neighbouring paragraphs)."""
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(end, merged[-1][1]))
        else:
            merged.append((start, end))
    return merged


class SuggestionManager(EventEmitter):
    def __init__(
        self,
        service: DocumentService,
        queue: Optional[MutationQueue] = None,
        settings: Optional[SyncSettings] = None,
        options: Optional[HighlightOptions] = None,
    ):
        super().__init__()
        if service is None or not service.is_authenticated():
            raise AuthenticationError("Document service must be authenticated")
        self.service = service
        self.settings = settings or SyncSettings()
        self.queue = queue or MutationQueue(service, settings=self.settings)
        self.options = options or HighlightOptions()

    # --- comparison ---

    async def compare_with_existing(self, document_id: str, new_text: str) -> DiffResult:
        try:
            document = await self.service.get_document(document_id)
        except RemoteServiceError as e:
            logger.error(f"Failed to read document {document_id}", error=str(e))
            raise

        current = extract_text(document)
        # The stored body always ends with a paragraph break.
        if current.endswith("\n") and not new_text.endswith("\n"):
            new_text += "\n"

        result = compute_diff(current, new_text)
        logger.info(f"Comparison complete for {document_id}\n{summarize(result)}")
        self.emit("comparison_complete", result)
        return result

    # --- applying ---

    async def suggest_changes(self, document_id: str, changes: List[ContentChange], suggestion_mode: bool = True):
        """
        Applies the changes in list order. In suggestion mode deleted lines are struck
        through instead of removed; additions and modifications are written directly.
        """
        document = await self.service.get_document(document_id)
        payloads = translate_changes(
            rebase_changes(changes, suggestion_mode),
            suggestion_mode=suggestion_mode,
            index_offset=self.settings.index_offset,
            end_index=get_end_index(document),
        )
        await self._apply(document_id, payloads)
        logger.info(f"Applied {len(payloads)} change requests", document_id=document_id, suggestion_mode=suggestion_mode)
        self.emit(
            "suggestions_applied",
            {"document_id": document_id, "count": len(payloads), "state": SuggestionState.PROPOSED},
        )

    async def highlight(
        self,
        document_id: str,
        changes: List[ContentChange],
        options: Optional[HighlightOptions] = None,
    ):
        payloads = highlight_payloads(changes, options or self.options, index_offset=self.settings.index_offset)
        await self._apply(document_id, payloads)
        logger.info(f"Applied {len(payloads)} highlights", document_id=document_id)
        self.emit("highlights_applied", {"document_id": document_id, "count": len(payloads)})

    async def clear_highlights(self, document_id: str):
        document = await self.service.get_document(document_id)
        end = get_end_index(document) - 1
        if end <= BODY_START:
            logger.debug(f"Nothing to clear in {document_id}")
            return
        await self._apply(document_id, [clear_markers(BODY_START, end)])
        logger.info(f"Cleared highlights in {document_id}")
        self.emit("highlights_cleared", {"document_id": document_id})

    # --- review ---

    async def accept_all(self, document_id: str) -> int:
        """Removes text marked for deletion and keeps everything else, unmarked."""
        removed = await self._resolve_markers(document_id, lambda mapper: mapper.deletion_markers())
        logger.info(f"Accepted all suggestions in {document_id}", removed=removed)
        self.emit(
            "suggestions_accepted",
            {"document_id": document_id, "removed": removed, "state": SuggestionState.ACCEPTED},
        )
        return removed

    async def reject_all(self, document_id: str) -> int:
        """
        Removes added and modified text and keeps the text marked for deletion, unmarked.
        Text replaced by a modification is gone from the document and is not restored.
        """
        removed = await self._resolve_markers(document_id, lambda mapper: mapper.addition_markers())
        logger.info(f"Rejected all suggestions in {document_id}", removed=removed)
        self.emit(
            "suggestions_rejected",
            {"document_id": document_id, "removed": removed, "state": SuggestionState.REJECTED},
        )
        return removed

    async def resolve(self, document_id: str, action: ReviewActionType) -> int:
        action = ReviewActionType(action)
        if action == ReviewActionType.ACCEPT:
            return await self.accept_all(document_id)
        return await self.reject_all(document_id)

    async def _resolve_markers(self, document_id: str, select) -> int:
        # Scan before touching anything: clearing first would erase the markers being resolved.
        document = await self.service.get_document(document_id)
        mapper = DocumentMapper(document, self.options)

        # The body's final newline is never removed, even when it carries a marker.
        last = mapper.end_index - 1
        marked = _merge_ranges([(s.start, min(s.end, last)) for s in select(mapper) if s.start < last])
        marked = self._join_paragraphs(mapper, marked)
        ranges = _merge_ranges([self._paragraph_aware(mapper, start, end) for start, end in marked])
        # Highest index first, so earlier ranges keep their indices.
        ranges.sort(reverse=True)
        payloads = [delete_range(start, end) for start, end in ranges]

        removed_chars = sum(end - start for start, end in ranges)
        clear_end = mapper.end_index - removed_chars - 1
        if clear_end > BODY_START:
            payloads.append(clear_markers(BODY_START, clear_end))

        if payloads:
            await self._apply(document_id, payloads)
        return len(ranges)

    @staticmethod
    def _whole_paragraph(mapper: DocumentMapper, start: int, end: int) -> bool:
        starts_paragraph = start == BODY_START or mapper.char_at(start - 1) == "\n"
        return starts_paragraph and mapper.char_at(end) == "\n"

    def _join_paragraphs(self, mapper: DocumentMapper, ranges: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
        """Consecutive whole paragraphs become one block, so they do not both claim the newline between them."""
        joined: List[Tuple[int, int]] = []
        for start, end in ranges:
            if joined:
                prev_start, prev_end = joined[-1]
                if (
                    start == prev_end + 1
                    and self._whole_paragraph(mapper, prev_start, prev_end)
                    and self._whole_paragraph(mapper, start, end)
                ):
                    joined[-1] = (prev_start, end)
                    continue
            joined.append((start, end))
        return joined

    def _paragraph_aware(self, mapper: DocumentMapper, start: int, end: int) -> Tuple[int, int]:
        """A range holding a whole paragraph's text takes one adjacent newline with it."""
        if not self._whole_paragraph(mapper, start, end):
            return start, end
        # The final newline of the body cannot be removed; take the preceding one instead.
        if end + 1 < mapper.end_index:
            return start, end + 1
        if start > BODY_START:
            return start - 1, end
        return start, end

    # --- incremental updates ---

    async def incremental_update(
        self,
        document_id: str,
        new_text: str,
        suggestion_mode: bool = True,
        highlight: bool = True,
        options: Optional[HighlightOptions] = None,
    ) -> DiffResult:
        """Brings the document to new_text: compare, apply the changes, then mark them."""
        logger.info(f"Starting incremental update for {document_id}", suggestion_mode=suggestion_mode)
        result = await self.compare_with_existing(document_id, new_text)
        changes = result.actionable_changes()

        if not changes:
            logger.info(f"No changes detected for {document_id}")
        else:
            await self.suggest_changes(document_id, changes, suggestion_mode=suggestion_mode)
            if highlight:
                await self.highlight(document_id, self._applied_positions(changes, suggestion_mode), options)

        self.emit("incremental_update_complete", {"document_id": document_id, "result": result})
        return result

    def _applied_positions(self, changes: List[ContentChange], suggestion_mode: bool) -> List[ContentChange]:
        applied = rebase_changes(changes, suggestion_mode)
        if suggestion_mode:
            return applied
        # Nothing is left to mark where a deletion was applied directly.
        return [c for c in applied if c.type != ChangeType.DELETED]

    # --- execution ---

    async def _apply(self, document_id: str, payloads: List[Dict[str, Any]]):
        if not payloads:
            return
        results = await self.queue.execute_batch(document_id, payloads)
        failures = [r for r in results if not r.success]
        if failures:
            logger.error(
                f"{len(failures)} of {len(payloads)} requests failed for {document_id}",
                error=str(failures[0].error),
            )
            raise failures[0].error
