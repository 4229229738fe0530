from importlib.metadata import PackageNotFoundError, version

from docsync.batch import MutationQueue
from docsync.diff import compute_diff
from docsync.models import ContentChange, DiffResult, MutationRequest
from docsync.redline.requests import translate_changes
from docsync.redline.suggestions import SuggestionManager

try:
    __version__ = version("docsync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "MutationQueue",
    "MutationRequest",
    "SuggestionManager",
    "ContentChange",
    "DiffResult",
    "compute_diff",
    "translate_changes",
    "__version__",
]
