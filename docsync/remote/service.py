from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from docsync.errors import RemoteServiceError


class DocumentService(ABC):
    """
    The remote collaborative document store, seen through two calls:
    an ordered batch of edit requests per document, and a structural read-back.
    """

    def is_authenticated(self) -> bool:
        return True

    @abstractmethod
    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> List[Optional[Dict[str, Any]]]:
        """
        Applies requests in order. Returns one reply per request.
        Raises RemoteServiceError on a call-level failure.
        """

    @abstractmethod
    async def get_document(self, document_id: str) -> Dict[str, Any]:
        """Returns the document in the Docs `documents.get` shape (body.content with indexed text runs)."""


def classify_status(status: Optional[int]) -> str:
    if status == 429:
        return "quota_exceeded"
    if status == 403:
        return "permission_denied"
    if status == 404:
        return "not_found"
    if status is not None and status >= 500:
        return "server_error"
    return "unknown"


def error_from_status(status: Optional[int], message: str = "") -> RemoteServiceError:
    kind = classify_status(status)
    if kind == "quota_exceeded":
        message = "API quota exceeded. Please try again later."
    elif kind == "permission_denied":
        message = "Permission denied. Check your API credentials and permissions."
    elif kind == "not_found":
        message = "Document not found."
    return RemoteServiceError(message or "Unknown remote error", status=status, kind=kind)
