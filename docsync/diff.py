from typing import List, Tuple

import structlog
from diff_match_patch import diff_match_patch

from docsync.models import ChangeType, ContentChange, DiffResult

logger = structlog.get_logger(__name__)

DIFF_DELETE = -1
DIFF_INSERT = 1
DIFF_EQUAL = 0


def compute_diff(old_text: str, new_text: str) -> DiffResult:
    """
    Line-level comparison of the stored text against the newly generated text.

    Every non-blank line becomes one change record. Positions are running character
    offsets that only advance over lines that survive the update (added and unchanged),
    so they address the document as it will look once earlier changes are applied.
    A deletion immediately followed by an addition is reported as one modification.
    """
    # 1. Line-Level Encoding & Diff
    diffs = _diff_lines(old_text, new_text)

    changes: List[ContentChange] = []
    counts = {t: 0 for t in ChangeType}
    position = 0

    # 2. Classify
    for op, chunk in diffs:
        lines = [line for line in chunk.split("\n") if line.strip()]

        for line in lines:
            if op == DIFF_INSERT:
                change = ContentChange(type=ChangeType.ADDED, new_content=line, position=position, length=len(line))
                position += len(line) + 1
            elif op == DIFF_DELETE:
                # Removed lines do not occupy space in the updated document.
                change = ContentChange(type=ChangeType.DELETED, old_content=line, position=position, length=len(line))
            else:
                change = ContentChange(
                    type=ChangeType.UNCHANGED,
                    old_content=line,
                    new_content=line,
                    position=position,
                    length=len(line),
                )
                position += len(line) + 1
            changes.append(change)
            counts[change.type] += 1

    # 3. Collapse adjacent Delete + Insert into Modification
    changes = _collapse_modifications(changes, counts)

    total = sum(counts.values())
    similarity = counts[ChangeType.UNCHANGED] / total if total > 0 else 0.0

    return DiffResult(
        changes=changes,
        added_count=counts[ChangeType.ADDED],
        modified_count=counts[ChangeType.MODIFIED],
        deleted_count=counts[ChangeType.DELETED],
        unchanged_count=counts[ChangeType.UNCHANGED],
        similarity=similarity,
    )


def _diff_lines(old_text: str, new_text: str) -> List[Tuple[int, str]]:
    """
    Encodes each distinct line as one character, diffs the encodings, and decodes back.
    Same trick as word-level diffing, at line granularity.
    """
    dmp = diff_match_patch()
    chars1, chars2, line_array = dmp.diff_linesToChars(old_text, new_text)
    diffs = dmp.diff_main(chars1, chars2, False)
    dmp.diff_charsToLines(diffs, line_array)
    return diffs


def _collapse_modifications(changes: List[ContentChange], counts) -> List[ContentChange]:
    result: List[ContentChange] = []
    i = 0
    while i < len(changes):
        current = changes[i]
        nxt = changes[i + 1] if i + 1 < len(changes) else None

        if current.type == ChangeType.DELETED and nxt is not None and nxt.type == ChangeType.ADDED:
            result.append(
                ContentChange(
                    type=ChangeType.MODIFIED,
                    old_content=current.old_content,
                    new_content=nxt.new_content,
                    position=current.position,
                    length=current.length,
                )
            )
            counts[ChangeType.DELETED] -= 1
            counts[ChangeType.ADDED] -= 1
            counts[ChangeType.MODIFIED] += 1
            i += 2
        else:
            result.append(current)
            i += 1

    return result


def summarize(result: DiffResult) -> str:
    return "\n".join(
        [
            f"Added: {result.added_count} blocks",
            f"Modified: {result.modified_count} blocks",
            f"Deleted: {result.deleted_count} blocks",
            f"Unchanged: {result.unchanged_count} blocks",
            f"Similarity: {result.similarity * 100:.1f}%",
        ]
    )
