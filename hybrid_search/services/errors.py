"""
Search error taxonomy.

Adapters convert backend exceptions into these types at their boundary; only
the pipeline decides whether a failure is user-visible or a degradation.
"""

from dataclasses import dataclass


class SearchError(Exception):
    """Base class for all search-engine errors."""


class InputValidationError(SearchError, ValueError):
    """Request rejected before any backend call (empty query, bad top_k, ...). Never retried."""


class RetrievalBackendError(SearchError):
    """A retrieval path (``vector`` or ``lexical``) failed or timed out."""

    def __init__(self, path: str, message: str):
        super().__init__(f"[{path}] {message}")
        self.path = path


class FusionUnavailableError(SearchError):
    """Both retrieval paths failed; nothing to fuse. Safe to retry later."""

    retryable = True

    def __init__(self, errors: list[RetrievalBackendError]):
        detail = "; ".join(str(e) for e in errors) or "no retrieval path available"
        super().__init__(f"Search temporarily unavailable: {detail}")
        self.errors = errors


class CacheError(SearchError):
    """Result cache could not be read. Callers bypass the cache."""


@dataclass(frozen=True)
class FilterCollapseWarning:
    """Recorded (not raised) when a label filter was relaxed to keep a path non-empty."""

    path: str
    removed: int

    def to_dict(self) -> dict:
        return {"path": self.path, "removed": self.removed}
