"""
Shared test helpers. Used across unit and integration tests to avoid duplication.
"""

import asyncio

from hybrid_search.services.models import DocumentChunk, ScoredCandidate, SourceType
from hybrid_search.services.protocols import LexicalHit, TitleHit, VectorHit


def run(coro):
    """Run a coroutine synchronously (pytest-asyncio not required)."""
    return asyncio.run(coro)


def make_chunk(page_id: int, chunk_index: int = 0, **overrides: object) -> DocumentChunk:
    """Create a minimal DocumentChunk with sensible defaults for tests."""
    defaults: dict[str, object] = {
        "chunk_id": f"{page_id}-{chunk_index}",
        "page_id": page_id,
        "title": f"Page {page_id}",
        "content": f"Content of page {page_id} chunk {chunk_index}",
        "labels": frozenset(),
        "url": f"https://wiki.example.com/pages/{page_id}",
        "chunk_index": chunk_index,
    }
    defaults.update(overrides)
    if not isinstance(defaults["labels"], frozenset):
        defaults["labels"] = frozenset(defaults["labels"])
    return DocumentChunk(**defaults)


def make_candidate(
    page_id: int,
    score: float,
    source: SourceType = SourceType.VECTOR,
    chunk_index: int = 0,
    raw: float | None = None,
    **chunk_overrides: object,
) -> ScoredCandidate:
    """Create a ScoredCandidate for fusion / filter tests."""
    return ScoredCandidate(
        chunk=make_chunk(page_id, chunk_index, **chunk_overrides),
        source_type=source,
        score_raw=score if raw is None else raw,
        score_normalized=score,
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------
class FakeEmbedder:
    """Returns a fixed vector and counts calls."""

    def __init__(self, vector: list[float] | None = None, error: Exception | None = None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls = 0

    def embed_query(self, query_text: str) -> list[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeChunkStore:
    def __init__(self, chunks: list[DocumentChunk]):
        self.chunks = {c.chunk_id: c for c in chunks}

    async def get_chunk(self, chunk_ref: str) -> DocumentChunk | None:
        return self.chunks.get(chunk_ref)


class FakeVectorIndex:
    """Returns canned hits (ascending distance). Optional delay / error."""

    def __init__(
        self,
        hits: list[VectorHit],
        dimensions: int | None = 3,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.hits = hits
        self._dimensions = dimensions
        self.error = error
        self.delay = delay
        self.calls: list[int] = []

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    async def search(self, vector: list[float], k: int) -> list[VectorHit]:
        self.calls.append(k)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.hits[:k]


class FakeLexicalIndex:
    """Returns canned hits (descending relevance). Optional delay / error."""

    def __init__(self, hits: list[LexicalHit], error: Exception | None = None, delay: float = 0.0):
        self.hits = hits
        self.error = error
        self.delay = delay
        self.calls: list[tuple[list[str], int]] = []

    async def query(self, terms: list[str], limit: int) -> list[LexicalHit]:
        self.calls.append((list(terms), limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.hits[:limit]


class FakeTitleIndex:
    """Returns canned title hits regardless of terms. Optional error."""

    def __init__(self, hits: list[TitleHit], error: Exception | None = None):
        self.hits = hits
        self.error = error
        self.calls: list[tuple[list[str], int]] = []

    async def find_titles(self, terms: list[str], limit: int) -> list[TitleHit]:
        self.calls.append((list(terms), limit))
        if self.error is not None:
            raise self.error
        return self.hits[:limit]
