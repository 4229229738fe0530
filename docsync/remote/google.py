import asyncio
from typing import Any, Dict, List, Optional

import structlog
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from docsync.errors import AuthenticationError, RemoteServiceError
from docsync.remote.service import DocumentService, error_from_status

logger = structlog.get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/drive",
]


class GoogleDocsService(DocumentService):
    """
    Adapter over an authenticated googleapiclient `docs v1` resource.
    Obtaining and refreshing credentials is the caller's job.
    """

    def __init__(self, docs_resource):
        if docs_resource is None:
            raise AuthenticationError("An authenticated Docs API resource is required.")
        self._docs = docs_resource

    @classmethod
    def from_credentials(cls, credentials) -> "GoogleDocsService":
        if credentials is None:
            raise AuthenticationError("Google credentials are required.")
        return cls(build("docs", "v1", credentials=credentials, cache_discovery=False))

    def is_authenticated(self) -> bool:
        return self._docs is not None

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> List[Optional[Dict[str, Any]]]:
        call = self._docs.documents().batchUpdate(documentId=document_id, body={"requests": requests})
        response = await self._execute(call)
        replies = response.get("replies", [])
        # The API omits trailing empty replies; pad so callers can index per request.
        return [replies[i] if i < len(replies) else None for i in range(len(requests))]

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        return await self._execute(self._docs.documents().get(documentId=document_id))

    async def _execute(self, call) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(call.execute)
        except HttpError as e:
            status = getattr(e, "status_code", None) or int(e.resp.status)
            logger.warning("Docs API call failed", status=status, reason=str(e))
            raise error_from_status(status, str(e)) from e
        except OSError as e:
            logger.warning("Docs API unreachable", reason=str(e))
            raise RemoteServiceError(
                "Network error. Please check your internet connection.", kind="network_error"
            ) from e
