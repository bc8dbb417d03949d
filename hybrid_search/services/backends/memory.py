"""
In-memory reference backends.

Implements the collaborator protocols over a local list of chunks:
- InMemoryChunkStore: chunk_id -> DocumentChunk
- InMemoryVectorIndex: brute-force L2 / cosine search with numpy
- InMemoryLexicalIndex: BM25 (rank-bm25) over script-run tokens
- InMemoryTitleIndex: case-insensitive substring match over page titles
- CharacterNgramEmbedder: deterministic hashed char n-gram embeddings

Used by the CLI with a JSON corpus file and by the test-suite. Production
deployments use the Supabase backend instead.
"""

import hashlib
import json
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import numpy as np
from rank_bm25 import BM25Okapi

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.models import DocumentChunk
from hybrid_search.services.protocols import LexicalHit, TitleHit, VectorHit
from hybrid_search.utils.text import tokenize

logger = setup_logger(__name__)

_KANJI_MIN = "一"
_KANJI_MAX = "鿿"


def _is_kanji_run(token: str) -> bool:
    return all(_KANJI_MIN <= ch <= _KANJI_MAX or ch == "々" for ch in token)


def analyze(text: str | None) -> list[str]:
    """
    Index-time and query-time analyzer.

    Script-run tokens, plus character bigrams of kanji compounds so that
    "会員" matches "会員登録".
    """
    terms: list[str] = []
    for token in tokenize(text):
        terms.append(token)
        if len(token) > 2 and _is_kanji_run(token):
            terms.extend(token[i : i + 2] for i in range(len(token) - 1))
    return terms


def _chunk_text(chunk: DocumentChunk) -> str:
    return f"{chunk.title}\n{chunk.content}"


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------
class CharacterNgramEmbedder:
    """Hashed character n-gram embedder. Deterministic, offline, L2-normalized."""

    def __init__(self, dimension: int | None = None, ngram_sizes: Sequence[int] | None = None):
        self._dimension = dimension or config.NGRAM_EMBEDDING_DIMENSIONS
        self.ngram_sizes = tuple(ngram_sizes or (2, 3))
        self.model_id = f"hash-char-ngram-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    def _ngrams(self, text: str) -> list[str]:
        clean = " ".join(tokenize(text, keep_hiragana=True))
        grams: list[str] = []
        for n in self.ngram_sizes:
            if n <= 0:
                continue
            grams.extend(clean[i : i + n] for i in range(max(len(clean) - n + 1, 0)) if clean[i : i + n].strip())
        return grams or ([clean] if clean else [])

    def _vectorize(self, text: str) -> list[float]:
        vector = np.zeros(self._dimension, dtype=np.float64)
        for gram in self._ngrams(text):
            digest = hashlib.sha1(gram.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    def embed_query(self, query_text: str) -> list[float]:
        return self._vectorize(query_text)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
class InMemoryChunkStore:
    def __init__(self, chunks: list[DocumentChunk]):
        self._chunks = {c.chunk_id: c for c in chunks}

    async def get_chunk(self, chunk_ref: str) -> DocumentChunk | None:
        return self._chunks.get(chunk_ref)

    def __len__(self) -> int:
        return len(self._chunks)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
class InMemoryVectorIndex:
    """Exact nearest-neighbour search over a dense matrix of chunk vectors."""

    def __init__(self, chunks: list[DocumentChunk], metric: str = "l2"):
        if metric not in ("l2", "cosine"):
            raise ValueError(f"InMemoryVectorIndex supports l2 or cosine, got {metric!r}")
        self.metric = metric
        indexed = [c for c in chunks if c.vector]
        self._ids = [c.chunk_id for c in indexed]
        if indexed:
            dims = {len(c.vector) for c in indexed}
            if len(dims) != 1:
                raise ValueError(f"Chunk vectors have mixed dimensionality: {sorted(dims)}")
            self._matrix = np.array([c.vector for c in indexed], dtype=np.float64)
        else:
            self._matrix = np.zeros((0, 0), dtype=np.float64)
        if len(indexed) < len(chunks):
            logger.warning("%s chunks without vectors were not indexed", len(chunks) - len(indexed))

    @property
    def dimensions(self) -> int | None:
        return int(self._matrix.shape[1]) if self._ids else None

    def _distances(self, query: np.ndarray) -> np.ndarray:
        if self.metric == "l2":
            return np.linalg.norm(self._matrix - query, axis=1)
        norms = np.linalg.norm(self._matrix, axis=1) * (np.linalg.norm(query) or 1.0)
        norms[norms == 0] = 1.0
        return 1.0 - (self._matrix @ query) / norms

    async def search(self, vector: list[float], k: int) -> list[VectorHit]:
        if not self._ids or k <= 0:
            return []
        distances = self._distances(np.asarray(vector, dtype=np.float64))
        # stable sort keeps corpus order for equal distances
        order = np.argsort(distances, kind="stable")[:k]
        return [VectorHit(chunk_ref=self._ids[i], distance=float(distances[i])) for i in order]


class InMemoryLexicalIndex:
    """BM25Okapi over analyzed title + content. OR semantics across terms."""

    def __init__(self, chunks: list[DocumentChunk]):
        self._ids = [c.chunk_id for c in chunks]
        corpus = [analyze(_chunk_text(c)) for c in chunks]
        self._index = BM25Okapi(corpus) if chunks and any(corpus) else None

    async def query(self, terms: list[str], limit: int) -> list[LexicalHit]:
        if self._index is None or limit <= 0:
            return []
        tokens = list(dict.fromkeys(t for term in terms for t in analyze(term)))
        if not tokens:
            return []
        scores = self._index.get_scores(tokens)
        order = sorted((i for i, s in enumerate(scores) if s > 0), key=lambda i: (-scores[i], i))[:limit]
        return [LexicalHit(chunk_ref=self._ids[i], relevance=float(scores[i])) for i in order]


class InMemoryTitleIndex:
    """Page titles (first chunk of each page). Pages matching more terms come first."""

    def __init__(self, chunks: list[DocumentChunk]):
        first: dict[int, DocumentChunk] = {}
        for chunk in chunks:
            current = first.get(chunk.page_id)
            if current is None or chunk.chunk_index < current.chunk_index:
                first[chunk.page_id] = chunk
        self._titles = [(c.chunk_id, c.title, c.title.lower()) for c in first.values() if c.title]

    async def find_titles(self, terms: list[str], limit: int) -> list[TitleHit]:
        folded_terms = [t.lower() for t in dict.fromkeys(terms) if t]
        if not folded_terms or limit <= 0:
            return []
        matched = []
        for position, (ref, title, folded) in enumerate(self._titles):
            count = sum(1 for t in folded_terms if t in folded)
            if count:
                matched.append((-count, position, ref, title))
        matched.sort()
        return [TitleHit(chunk_ref=ref, title=title) for _, _, ref, title in matched[:limit]]


# ---------------------------------------------------------------------------
# Corpus loading
# ---------------------------------------------------------------------------
def load_corpus(path: str | Path) -> list[DocumentChunk]:
    """Load chunks from a JSON file: a list of rows or ``{"chunks": [...]}``."""
    corpus_path = Path(path)
    raw = json.loads(corpus_path.read_text(encoding="utf-8"))
    rows = raw.get("chunks", []) if isinstance(raw, dict) else raw
    chunks = [DocumentChunk.from_dict(row) for row in rows]
    logger.info("Loaded %s chunks from %s", len(chunks), corpus_path)
    return chunks


def embed_missing_vectors(chunks: list[DocumentChunk], embedder: CharacterNgramEmbedder) -> list[DocumentChunk]:
    """Attach embeddings to chunks that were stored without one."""
    missing = [c for c in chunks if not c.vector]
    if not missing:
        return chunks
    vectors = iter(embedder.embed_texts([_chunk_text(c) for c in missing]))
    return [c if c.vector else replace(c, vector=tuple(next(vectors))) for c in chunks]


def build_memory_backends(
    chunks: list[DocumentChunk],
    embedder: CharacterNgramEmbedder | None = None,
) -> tuple[
    CharacterNgramEmbedder, InMemoryChunkStore, InMemoryVectorIndex, InMemoryLexicalIndex, InMemoryTitleIndex
]:
    """Embedder, chunk store, vector, lexical and title indexes over one chunk list."""
    embedder = embedder or CharacterNgramEmbedder()
    chunks = embed_missing_vectors(chunks, embedder)
    return (
        embedder,
        InMemoryChunkStore(chunks),
        InMemoryVectorIndex(chunks),
        InMemoryLexicalIndex(chunks),
        InMemoryTitleIndex(chunks),
    )
