# © 2026 Crest Advisory Group LLC. All rights reserved.
# PROPRIETARY AND CONFIDENTIAL. Unauthorized copying, distribution, or use is strictly prohibited.

"""
Service Protocols (Interfaces)

Defines the contracts for the external collaborators of the search engine so
they can be mocked in tests and swapped in production (in-memory reference
backends vs. Supabase) without coupling to concrete implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from hybrid_search.services.models import DocumentChunk


@dataclass(frozen=True)
class VectorHit:
    """Raw similarity-index hit: chunk reference plus engine distance."""

    chunk_ref: str
    distance: float


@dataclass(frozen=True)
class LexicalHit:
    """Raw inverted-index hit: chunk reference plus BM25-like relevance."""

    chunk_ref: str
    relevance: float


@dataclass(frozen=True)
class TitleHit:
    """Raw title-match hit: chunk reference plus the page title it matched on."""

    chunk_ref: str
    title: str


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------
@runtime_checkable
class QueryEmbedder(Protocol):
    """Contract for query embedding generation.

    Called from a worker thread, so implementations may block.
    """

    def embed_query(self, query_text: str) -> list[float]:
        """Generate an embedding vector for a single query string."""
        ...


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
@runtime_checkable
class VectorIndex(Protocol):
    """Contract for a nearest-neighbour index over chunk vectors."""

    @property
    def dimensions(self) -> int | None:
        """Vector dimensionality of the indexed chunks, or None when unknown."""
        ...

    async def search(self, vector: list[float], k: int) -> list[VectorHit]:
        """Return up to ``k`` hits ordered by ascending distance."""
        ...


@runtime_checkable
class LexicalIndex(Protocol):
    """Contract for a BM25-like inverted-index query (OR over the terms)."""

    async def query(self, terms: list[str], limit: int) -> list[LexicalHit]:
        """Return up to ``limit`` hits ordered by descending relevance."""
        ...


@runtime_checkable
class TitleIndex(Protocol):
    """Contract for a page-title lookup: pages whose title contains any term."""

    async def find_titles(self, terms: list[str], limit: int) -> list[TitleHit]:
        """Return up to ``limit`` hits, one chunk per page."""
        ...


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
@runtime_checkable
class ChunkStore(Protocol):
    """Contract for resolving chunk references to full chunks."""

    async def get_chunk(self, chunk_ref: str) -> DocumentChunk | None:
        """Return the chunk, or None when the reference is unknown."""
        ...
