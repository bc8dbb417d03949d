# © 2026 Crest Advisory Group LLC. All rights reserved.
# PROPRIETARY AND CONFIDENTIAL. Unauthorized copying, distribution, or use is strictly prohibited.

"""
Search Domain Models

Pure data structures with no external dependencies, shared by the retrieval
adapters, the fusion engine, the cache and the HTTP layer.
"""

import json
from dataclasses import dataclass, field
from enum import Enum

from hybrid_search.config.settings import config
from hybrid_search.services.errors import FilterCollapseWarning, InputValidationError
from hybrid_search.utils.text import normalize_query


class SourceType(str, Enum):
    """Which retrieval path produced a candidate or result."""

    VECTOR = "vector"
    BM25 = "bm25"
    HYBRID = "hybrid"
    TITLE = "title"

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]


_SOURCE_LABELS = {
    SourceType.VECTOR: "Vector",
    SourceType.BM25: "BM25",
    SourceType.HYBRID: "Hybrid",
    SourceType.TITLE: "Title",
}

# Lower value wins when fused scores tie.
SOURCE_PRIORITY: dict[SourceType, int] = {
    SourceType.HYBRID: 0,
    SourceType.VECTOR: 1,
    SourceType.BM25: 2,
    SourceType.TITLE: 3,
}


class KeywordTier(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {KeywordTier.CRITICAL: 0, KeywordTier.HIGH: 1, KeywordTier.MEDIUM: 2, KeywordTier.LOW: 3}


@dataclass(frozen=True)
class DocumentChunk:
    """One indexed slice of a source page. Produced by ingestion, read-only here."""

    chunk_id: str
    page_id: int
    title: str
    content: str
    labels: frozenset[str] = frozenset()
    url: str = ""
    chunk_index: int = 0
    vector: tuple[float, ...] = ()
    space_key: str = ""

    @classmethod
    def from_dict(cls, row: dict) -> "DocumentChunk":
        """Build a chunk from a storage row (snake_case or camelCase keys)."""
        labels = row.get("labels") or []
        if isinstance(labels, str):
            labels = [labels]
        page_id = row.get("page_id", row.get("pageId"))
        chunk_index = row.get("chunk_index", row.get("chunkIndex", 0))
        return cls(
            chunk_id=str(row.get("chunk_id") or row.get("chunkId") or row.get("id") or f"{page_id}-{chunk_index}"),
            page_id=int(page_id),
            title=row.get("title") or "",
            content=row.get("content") or "",
            labels=frozenset(str(label) for label in labels),
            url=row.get("url") or "",
            chunk_index=int(chunk_index or 0),
            vector=tuple(float(v) for v in (row.get("vector") or row.get("embedding") or ())),
            space_key=row.get("space_key") or row.get("spaceKey") or "",
        )


@dataclass(frozen=True)
class LabelFilterSpec:
    """Inclusion/exclusion predicate over chunk labels."""

    include_meeting_notes: bool = False
    include_archived: bool = False
    include_labels: tuple[str, ...] = ()
    exclude_labels: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict | None) -> "LabelFilterSpec":
        """Accepts the camelCase request shape (``includeMeetingNotes`` ...) or snake_case."""
        if not data:
            return cls()

        def pick(snake: str, camel: str, default):
            return data.get(snake, data.get(camel, default))

        return cls(
            include_meeting_notes=bool(pick("include_meeting_notes", "includeMeetingNotes", False)),
            include_archived=bool(pick("include_archived", "includeArchived", False)),
            include_labels=tuple(sorted(str(v) for v in pick("include_labels", "includeLabels", ()) or ())),
            exclude_labels=tuple(sorted(str(v) for v in pick("exclude_labels", "excludeLabels", ()) or ())),
        )

    def to_dict(self) -> dict:
        return {
            "includeMeetingNotes": self.include_meeting_notes,
            "includeArchived": self.include_archived,
            "includeLabels": list(self.include_labels),
            "excludeLabels": list(self.exclude_labels),
        }

    def serialize(self) -> str:
        """Stable text form used in cache keys."""
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True)
class SearchRequest:
    """Validated, normalized search request. Build it with :meth:`create`."""

    query: str
    top_k: int
    label_filters: LabelFilterSpec
    table_name: str

    @classmethod
    def create(
        cls,
        query: str | None,
        top_k: int | None = None,
        label_filters: LabelFilterSpec | dict | None = None,
        table_name: str | None = None,
    ) -> "SearchRequest":
        normalized = normalize_query(query)
        if not normalized:
            raise InputValidationError("query must not be empty")
        if len(normalized) > config.MAX_QUERY_LENGTH:
            raise InputValidationError(f"query exceeds {config.MAX_QUERY_LENGTH} characters")

        if top_k is None:
            top_k = config.DEFAULT_TOP_K
        # bool is an int subclass; True must not pass as top_k=1
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise InputValidationError(f"top_k must be a positive integer (got {top_k!r})")

        if not isinstance(label_filters, LabelFilterSpec):
            label_filters = LabelFilterSpec.from_dict(label_filters)

        table = (table_name or "").strip() or config.DEFAULT_TABLE_NAME
        return cls(query=normalized, top_k=top_k, label_filters=label_filters, table_name=table)


@dataclass(frozen=True)
class ScoredCandidate:
    """A chunk returned by one retrieval path with its raw and normalized score."""

    chunk: DocumentChunk
    source_type: SourceType
    score_raw: float
    score_normalized: float

    @property
    def page_id(self) -> int:
        return self.chunk.page_id


@dataclass(frozen=True)
class KeywordSet:
    """Prioritized keywords for one query."""

    keywords: tuple[str, ...]
    tiers: dict[str, KeywordTier]
    statistics: dict[str, int] = field(default_factory=dict)
    used_fallback: bool = False

    def by_tier(self, tier: KeywordTier) -> list[str]:
        return [k for k in self.keywords if self.tiers.get(k) == tier]


@dataclass(frozen=True)
class RankedResult:
    """Final, page-level result. At most one per page_id in a response."""

    page_id: int
    title: str
    content: str
    labels: tuple[str, ...]
    url: str
    source: SourceType
    score_kind: SourceType
    score_raw: float
    score_text: str
    score: float
    chunk_id: str = ""
    chunk_index: int = 0

    def to_dict(self) -> dict:
        return {
            "pageId": self.page_id,
            "title": self.title,
            "content": self.content,
            "labels": list(self.labels),
            "url": self.url,
            "source": self.source.value,
            "scoreKind": self.score_kind.value,
            "scoreRaw": self.score_raw,
            "scoreText": self.score_text,
            "score": self.score,
            "chunkId": self.chunk_id,
        }


@dataclass
class SearchMetadata:
    degraded: bool = False
    failed_paths: list[str] = field(default_factory=list)
    filter_relaxations: list[FilterCollapseWarning] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    keyword_fallback: bool = False
    cache_hit: bool = False
    elapsed_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "degraded": self.degraded,
            "failedPaths": list(self.failed_paths),
            "filterRelaxations": [w.to_dict() for w in self.filter_relaxations],
            "keywords": list(self.keywords),
            "keywordFallback": self.keyword_fallback,
            "cacheHit": self.cache_hit,
            "elapsedMs": self.elapsed_ms,
        }


@dataclass(frozen=True)
class CacheStats:
    size: int
    hit_count: int
    miss_count: int

    def to_dict(self) -> dict:
        return {"size": self.size, "hitCount": self.hit_count, "missCount": self.miss_count}


@dataclass
class SearchResponse:
    results: list[RankedResult]
    metadata: SearchMetadata = field(default_factory=SearchMetadata)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "metadata": self.metadata.to_dict(),
        }
