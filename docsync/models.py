import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def generate_request_id() -> str:
    return uuid.uuid4().hex


class MutationRequest(BaseModel):
    """
    A single primitive edit (one Docs batchUpdate request) addressed to one document.
    Once enqueued, the queue owns the request; producers may only cancel or prioritize it by id.
    """

    id: str = Field(default_factory=generate_request_id)
    document_id: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(..., description="One request understood by the remote service.")
    priority: int = Field(0, description="Higher is dequeued sooner.")
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(3, ge=1)


@dataclass
class BatchResult:
    """Outcome of one request after it reached a terminal state."""

    success: bool
    request_id: str
    response: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None


@dataclass
class FailedRequest:
    request: MutationRequest
    error: BaseException


class QueueStats(BaseModel):
    pending: int = 0
    in_flight: int = 0
    completed: int = 0
    failed: int = 0
    total_processed: int = 0


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


class ContentChange(BaseModel):
    """
    One line-level unit of difference.

    position is a character offset in the coordinate space the target document
    will have once the changes before it (in list order) have been applied.
    """

    type: ChangeType
    old_content: Optional[str] = None
    new_content: Optional[str] = None
    position: int = Field(0, ge=0)
    length: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _check_sides(self):
        if self.type == ChangeType.ADDED:
            if self.new_content is None or self.old_content is not None:
                raise ValueError("added changes carry new_content only")
        elif self.type == ChangeType.DELETED:
            if self.old_content is None or self.new_content is not None:
                raise ValueError("deleted changes carry old_content only")
        elif self.old_content is None or self.new_content is None:
            raise ValueError(f"{self.type.value} changes carry both old_content and new_content")
        return self


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    changes: List[ContentChange] = Field(default_factory=list)
    added_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    unchanged_count: int = 0
    similarity: float = 0.0

    @property
    def total_blocks(self) -> int:
        return self.added_count + self.modified_count + self.deleted_count + self.unchanged_count

    def actionable_changes(self) -> List[ContentChange]:
        return [c for c in self.changes if c.type != ChangeType.UNCHANGED]


class DeletedStyle(str, Enum):
    STRIKETHROUGH = "strikethrough"
    HIGHLIGHT = "highlight"


class HighlightOptions(BaseModel):
    """Marker appearance for suggested changes."""

    added_color: str = "#00FF00"
    modified_color: str = "#FFFF00"
    deleted_style: DeletedStyle = DeletedStyle.STRIKETHROUGH
    deleted_color: str = Field("#FF0000", description="Foreground used with strikethrough deletions.")
    deleted_highlight_color: str = Field("#FFB6C1", description="Background used with highlight deletions.")


class SuggestionState(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ReviewActionType(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
