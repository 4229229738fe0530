from typing import Optional

TRANSIENT_KINDS = ("quota_exceeded", "network_error", "server_error")


class DocSyncError(Exception):
    """Base class for every error raised by docsync."""


class RemoteServiceError(DocSyncError):
    """
    A call-level failure reported by the remote document service.
    The queue retries these per request; they only surface to callers
    once retries are exhausted (as the error of a FailedRequest).
    """

    def __init__(self, message: str, status: Optional[int] = None, kind: str = "unknown"):
        super().__init__(message)
        self.status = status
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    def __repr__(self):
        return f"RemoteServiceError({str(self)!r}, status={self.status}, kind={self.kind!r})"


class AuthenticationError(DocSyncError):
    """Raised at construction when the document service is not authenticated."""


class ExportPathError(DocSyncError, ValueError):
    """Raised when an export target path is malformed."""


class QueueTimeoutError(DocSyncError, TimeoutError):
    """Raised when waiting on the mutation queue exceeds its timeout. Queue state is left untouched."""
