"""
Retrieval adapters.

Wrap the external similarity index, inverted index and title lookup behind
one shape: ``ScoredCandidate`` lists with scores normalized to [0, 1]. Every
backend exception or timeout leaves an adapter as ``RetrievalBackendError``
tagged with its path, so the pipeline can degrade to the surviving path.
"""

import asyncio
import re
import time
from difflib import SequenceMatcher

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import VALID_DISTANCE_METRICS, config
from hybrid_search.services.errors import RetrievalBackendError
from hybrid_search.services.models import DocumentChunk, ScoredCandidate, SourceType
from hybrid_search.services.protocols import ChunkStore, LexicalIndex, TitleIndex, VectorIndex
from hybrid_search.utils.retry import async_retry

logger = setup_logger(__name__)

VECTOR_PATH = "vector"
LEXICAL_PATH = "lexical"
TITLE_PATH = "title"

# whitespace and punctuation are ignored when comparing titles
_TITLE_NOISE_RE = re.compile(r"[\s\W_]+")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_distance(distance: float, metric: str) -> float:
    """
    Map an engine distance to a [0, 1] similarity (higher is better).

    l2: 1/(1+d); cosine distance: 1-d; similarity: used as-is.
    """
    if metric == "l2":
        return 1.0 / (1.0 + max(distance, 0.0))
    if metric == "cosine":
        return _clamp(1.0 - distance)
    if metric == "similarity":
        return _clamp(distance)
    raise ValueError(f"Unknown distance metric {metric!r} (expected one of {', '.join(VALID_DISTANCE_METRICS)})")


def min_max_normalize(scores: list[float]) -> list[float]:
    """Min-max scale scores to [0, 1]; a flat score list maps to all 1.0."""
    if not scores:
        return []
    low, high = min(scores), max(scores)
    if high == low:
        return [1.0] * len(scores)
    span = high - low
    return [(s - low) / span for s in scores]


class _BackendCall:
    """Timeout + retry + error conversion shared by the adapters."""

    def __init__(self, path: str, timeout: float | None, retries: int | None, retry_delay: float | None):
        self.path = path
        self.timeout = timeout if timeout is not None else config.BACKEND_TIMEOUT_SECONDS
        self.retries = retries if retries is not None else config.BACKEND_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else config.BACKEND_RETRY_DELAY

    async def run(self, fn, *args):
        try:
            return await asyncio.wait_for(
                async_retry(fn, *args, retries=self.retries, initial_delay=self.retry_delay),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("  %s timed out after %.1fs", self.path, self.timeout)
            raise RetrievalBackendError(self.path, f"timed out after {self.timeout:.1f}s") from e
        except RetrievalBackendError:
            raise
        except Exception as e:
            logger.error("  %s backend error: %s: %s", self.path, type(e).__name__, e)
            raise RetrievalBackendError(self.path, f"{type(e).__name__}: {e}") from e


async def _resolve_chunks(store: ChunkStore, refs: list[str]) -> list[DocumentChunk | None]:
    return list(await asyncio.gather(*(store.get_chunk(ref) for ref in refs)))


class VectorRetrievalAdapter:
    """Semantic retrieval over the similarity index."""

    def __init__(
        self,
        index: VectorIndex,
        store: ChunkStore,
        metric: str | None = None,
        overfetch_factor: int | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.index = index
        self.store = store
        self.metric = (metric or config.VECTOR_DISTANCE_METRIC).lower()
        if self.metric not in VALID_DISTANCE_METRICS:
            raise ValueError(f"Unknown distance metric {self.metric!r}")
        self.overfetch_factor = max(1, overfetch_factor or config.VECTOR_OVERFETCH_FACTOR)
        self._call = _BackendCall(VECTOR_PATH, timeout, retries, retry_delay)

    async def _fetch(self, query_vector: list[float], limit: int) -> list[tuple]:
        hits = await self.index.search(query_vector, limit)
        chunks = await _resolve_chunks(self.store, [h.chunk_ref for h in hits])
        return list(zip(hits, chunks))

    async def search(self, query_vector: list[float], k: int) -> list[ScoredCandidate]:
        """
        Return up to ``k * overfetch_factor`` candidates ordered by similarity.

        Raises:
            RetrievalBackendError: backend failure, timeout or a query vector
                whose dimensionality does not match the index.
        """
        expected = self.index.dimensions
        if expected is not None and len(query_vector) != expected:
            raise RetrievalBackendError(
                VECTOR_PATH, f"query vector has {len(query_vector)} dimensions, index expects {expected}"
            )

        t0 = time.time()
        pairs = await self._call.run(self._fetch, list(query_vector), k * self.overfetch_factor)

        candidates: list[ScoredCandidate] = []
        for hit, chunk in pairs:
            if chunk is None:
                logger.warning("  vector hit %s has no stored chunk, skipped", hit.chunk_ref)
                continue
            candidates.append(
                ScoredCandidate(
                    chunk=chunk,
                    source_type=SourceType.VECTOR,
                    score_raw=float(hit.distance),
                    score_normalized=normalize_distance(float(hit.distance), self.metric),
                )
            )
        logger.info("  vec: %s candidates in %.2fs", len(candidates), time.time() - t0)
        return candidates


class LexicalRetrievalAdapter:
    """BM25-like keyword retrieval over the inverted index."""

    def __init__(
        self,
        index: LexicalIndex,
        store: ChunkStore,
        overfetch_factor: int | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.index = index
        self.store = store
        self.overfetch_factor = max(1, overfetch_factor or config.LEXICAL_OVERFETCH_FACTOR)
        self._call = _BackendCall(LEXICAL_PATH, timeout, retries, retry_delay)

    async def _fetch(self, terms: list[str], limit: int) -> list[tuple]:
        hits = [h for h in await self.index.query(terms, limit) if h.relevance > 0]
        chunks = await _resolve_chunks(self.store, [h.chunk_ref for h in hits])
        return list(zip(hits, chunks))

    async def query(self, keywords: list[str], k: int) -> list[ScoredCandidate]:
        """
        Disjunctive keyword query. An empty keyword list returns no candidates
        without touching the backend.

        Raises:
            RetrievalBackendError: backend failure or timeout.
        """
        terms = [kw for kw in dict.fromkeys(keywords) if kw]
        if not terms:
            logger.info("  bm25: no keywords, skipping lexical query")
            return []

        t0 = time.time()
        fetched = await self._call.run(self._fetch, terms, k * self.overfetch_factor)
        pairs = []
        for hit, chunk in fetched:
            if chunk is None:
                logger.warning("  bm25 hit %s has no stored chunk, skipped", hit.chunk_ref)
                continue
            pairs.append((hit, chunk))

        normalized = min_max_normalize([float(hit.relevance) for hit, _ in pairs])
        candidates = [
            ScoredCandidate(
                chunk=chunk,
                source_type=SourceType.BM25,
                score_raw=float(hit.relevance),
                score_normalized=score,
            )
            for (hit, chunk), score in zip(pairs, normalized)
        ]
        logger.info("  bm25: %s candidates for %s terms in %.2fs", len(candidates), len(terms), time.time() - t0)
        return candidates


def _title_key(text: str | None) -> str:
    return _TITLE_NOISE_RE.sub("", text or "").lower()


def title_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two titles ignoring case, whitespace and punctuation (0.0 - 1.0)."""
    left, right = _title_key(a), _title_key(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return SequenceMatcher(None, left, right).ratio()


def title_match_score(
    title: str,
    query: str,
    keywords: list[str],
    exact_threshold: float,
    min_match_ratio: float,
) -> float:
    """
    How well a page title answers the query; 0.0 when it does not match.

    A title at least ``exact_threshold`` similar to the whole query scores its
    similarity. A title containing at least ``min_match_ratio`` of the
    keywords scores that share. The better of the two wins.
    """
    score = 0.0
    similarity = title_similarity(title, query)
    if similarity >= exact_threshold:
        score = similarity

    terms = [k.lower() for k in keywords if k]
    if terms:
        folded = (title or "").lower()
        ratio = sum(1 for t in terms if t in folded) / len(terms)
        if ratio >= min_match_ratio:
            score = max(score, ratio)
    return score


class TitleRetrievalAdapter:
    """Exact and partial page-title matching."""

    def __init__(
        self,
        index: TitleIndex,
        store: ChunkStore,
        exact_threshold: float | None = None,
        min_match_ratio: float | None = None,
        overfetch_factor: int | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.index = index
        self.store = store
        self.exact_threshold = exact_threshold if exact_threshold is not None else config.TITLE_EXACT_THRESHOLD
        self.min_match_ratio = min_match_ratio if min_match_ratio is not None else config.TITLE_MIN_MATCH_RATIO
        self.overfetch_factor = max(1, overfetch_factor or config.LEXICAL_OVERFETCH_FACTOR)
        self._call = _BackendCall(TITLE_PATH, timeout, retries, retry_delay)

    async def _fetch(self, terms: list[str], limit: int) -> list[tuple]:
        hits = await self.index.find_titles(terms, limit)
        chunks = await _resolve_chunks(self.store, [h.chunk_ref for h in hits])
        return list(zip(hits, chunks))

    async def query(self, query: str, keywords: list[str], k: int) -> list[ScoredCandidate]:
        """
        Candidates whose page title matches ``query`` exactly or covers enough
        of ``keywords``, best match first. Without keywords the query itself
        is the only lookup term.

        Raises:
            RetrievalBackendError: backend failure or timeout.
        """
        terms = [kw for kw in dict.fromkeys(keywords) if kw] or [query]

        t0 = time.time()
        fetched = await self._call.run(self._fetch, terms, k * self.overfetch_factor)
        candidates: list[ScoredCandidate] = []
        for hit, chunk in fetched:
            if chunk is None:
                logger.warning("  title hit %s has no stored chunk, skipped", hit.chunk_ref)
                continue
            score = title_match_score(hit.title, query, terms, self.exact_threshold, self.min_match_ratio)
            if score <= 0:
                continue
            candidates.append(
                ScoredCandidate(chunk=chunk, source_type=SourceType.TITLE, score_raw=score, score_normalized=score)
            )
        candidates.sort(key=lambda c: -c.score_normalized)
        logger.info("  title: %s candidates in %.2fs", len(candidates), time.time() - t0)
        return candidates
