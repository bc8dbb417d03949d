"""
Label-based inclusion/exclusion filtering of retrieval candidates.

A filter that would remove every candidate of a non-empty path is relaxed to
pass-through for that path, and the relaxation is reported instead of
silently returning nothing.
"""

from dataclasses import dataclass

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.services.errors import FilterCollapseWarning
from hybrid_search.services.models import DocumentChunk, LabelFilterSpec, ScoredCandidate

logger = setup_logger(__name__)

MEETING_NOTE_LABELS: frozenset[str] = frozenset({"議事録", "meeting-notes", "ミーティング議事録"})
ARCHIVE_LABELS: frozenset[str] = frozenset({"アーカイブ", "archive"})
# Folder pages are navigation containers with no body text
FOLDER_LABELS: frozenset[str] = frozenset({"フォルダ", "folder"})


@dataclass(frozen=True)
class FilterOutcome:
    candidates: list[ScoredCandidate]
    relaxation: FilterCollapseWarning | None = None


def _fold(labels) -> set[str]:
    return {str(label).strip().lower() for label in labels}


def excluded_labels(spec: LabelFilterSpec) -> frozenset[str]:
    """Lower-cased label set that removes a chunk under ``spec``."""
    excluded = set(FOLDER_LABELS)
    if not spec.include_meeting_notes:
        excluded |= MEETING_NOTE_LABELS
    if not spec.include_archived:
        excluded |= ARCHIVE_LABELS
    excluded |= _fold(spec.exclude_labels)
    return frozenset(label.lower() for label in excluded)


def is_allowed(chunk: DocumentChunk, spec: LabelFilterSpec, excluded: frozenset[str] | None = None) -> bool:
    labels = _fold(chunk.labels)
    if labels & (excluded if excluded is not None else excluded_labels(spec)):
        return False
    if spec.include_labels:
        return bool(labels & _fold(spec.include_labels))
    return True


def apply_label_filter(candidates: list[ScoredCandidate], spec: LabelFilterSpec | None, path: str) -> FilterOutcome:
    """Filter one path's candidates; relax to pass-through if nothing would remain."""
    spec = spec or LabelFilterSpec()
    if not candidates:
        return FilterOutcome(candidates=[])

    excluded = excluded_labels(spec)
    kept = [c for c in candidates if is_allowed(c.chunk, spec, excluded)]
    if kept:
        if len(kept) < len(candidates):
            logger.info("  filter[%s]: removed %s of %s", path, len(candidates) - len(kept), len(candidates))
        return FilterOutcome(candidates=kept)

    logger.warning(
        "  filter[%s]: would remove all %s candidates, relaxing to pass-through",
        path,
        len(candidates),
    )
    return FilterOutcome(
        candidates=list(candidates),
        relaxation=FilterCollapseWarning(path=path, removed=len(candidates)),
    )
