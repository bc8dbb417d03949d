"""
Hybrid Search Pipeline

Validate -> extract keywords & embed -> retrieve (vector + lexical, optional
title match) -> label filter -> fuse & dedup -> cache -> return.

The pipeline owns the failure policy: one failed retrieval path degrades the
response to the surviving path, a failed vector and lexical path raise
FusionUnavailableError. A failed title path only degrades. Degraded responses
are returned but never cached.
"""

import asyncio
import time
from dataclasses import replace

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.errors import (
    CacheError,
    FusionUnavailableError,
    InputValidationError,
    RetrievalBackendError,
    SearchError,
)
from hybrid_search.services.keywords.extractor import KeywordExtractor
from hybrid_search.services.models import (
    CacheStats,
    KeywordSet,
    KeywordTier,
    LabelFilterSpec,
    SearchMetadata,
    SearchRequest,
    SearchResponse,
)
from hybrid_search.services.protocols import QueryEmbedder
from hybrid_search.utils.text import query_terms

from .adapters import (
    LEXICAL_PATH,
    VECTOR_PATH,
    LexicalRetrievalAdapter,
    TitleRetrievalAdapter,
    VectorRetrievalAdapter,
)
from .cache import ResultCache, build_cache_key
from .fusion import fuse
from .label_filter import apply_label_filter, excluded_labels, is_allowed

logger = setup_logger(__name__)


def _is_cacheable(response: SearchResponse) -> bool:
    return not response.metadata.degraded


def _copy_response(response: SearchResponse, cache_hit: bool) -> SearchResponse:
    """Fresh response object; callers never share a list with the cached entry."""
    metadata = response.metadata
    return SearchResponse(
        results=list(response.results),
        metadata=replace(
            metadata,
            failed_paths=list(metadata.failed_paths),
            filter_relaxations=list(metadata.filter_relaxations),
            keywords=list(metadata.keywords),
            cache_hit=cache_hit,
        ),
    )


class HybridSearchPipeline:
    """
    Orchestrates one hybrid search request end to end.

    Methods:
    - search: validate and answer a single query (cached, coalesced)
    - search_many: run several requests concurrently
    - clear_cache / get_cache_stats: cache administration
    """

    def __init__(
        self,
        embedder: QueryEmbedder,
        vector_adapter: VectorRetrievalAdapter,
        lexical_adapter: LexicalRetrievalAdapter,
        title_adapter: TitleRetrievalAdapter | None = None,
        keyword_extractor: KeywordExtractor | None = None,
        cache: ResultCache | None = None,
        table_name: str | None = None,
        embed_timeout: float | None = None,
    ):
        """Wire the collaborators.

        Args:
            embedder: Query embedding service (called in a worker thread).
            vector_adapter: Semantic retrieval path.
            lexical_adapter: Keyword retrieval path.
            title_adapter: Page-title match path; ``None`` disables it.
            keyword_extractor: Defaults to the packaged keyword dictionary.
            cache: Result cache; ``None`` disables caching.
            table_name: Corpus table the adapters are bound to. Requests
                naming another table are rejected.
            embed_timeout: Seconds allowed for the embedding call.
        """
        self.embedder = embedder
        self.vector_adapter = vector_adapter
        self.lexical_adapter = lexical_adapter
        self.title_adapter = title_adapter
        self.keyword_extractor = keyword_extractor or KeywordExtractor()
        self.cache = cache
        self.table_name = table_name or config.DEFAULT_TABLE_NAME
        self.embed_timeout = embed_timeout if embed_timeout is not None else config.BACKEND_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------
    async def _embed(self, query: str) -> list[float]:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.embedder.embed_query, query),
                timeout=self.embed_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RetrievalBackendError(VECTOR_PATH, f"embedding timed out after {self.embed_timeout:.1f}s") from e
        except Exception as e:
            logger.error("  embed failed: %s: %s", type(e).__name__, e)
            raise RetrievalBackendError(VECTOR_PATH, f"embedding failed: {type(e).__name__}: {e}") from e

    async def _extract_keywords(self, query: str) -> KeywordSet:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.keyword_extractor.extract, query)
        except Exception:
            # Keyword extraction must never fail the request
            logger.exception("Keyword extraction failed, using raw query tokens")
            terms = query_terms(query)[: config.KEYWORD_MAX_TERMS]
            return KeywordSet(
                keywords=tuple(terms),
                tiers={t: KeywordTier.HIGH for t in terms},
                statistics={"total": len(terms)},
                used_fallback=True,
            )

    async def _compute(self, request: SearchRequest) -> SearchResponse:
        t0 = time.time()

        # Phase 1: keyword extraction + embedding concurrently
        keyword_task = asyncio.create_task(self._extract_keywords(request.query))
        embedding_task = asyncio.create_task(self._embed(request.query))

        # Phase 2: each path starts as soon as its own input is ready
        async def _vector_path():
            vector = await embedding_task
            return await self.vector_adapter.search(vector, request.top_k)

        async def _lexical_path():
            keyword_set = await keyword_task
            return await self.lexical_adapter.query(list(keyword_set.keywords), request.top_k)

        async def _title_path():
            if self.title_adapter is None:
                return []
            keyword_set = await keyword_task
            return await self.title_adapter.query(request.query, list(keyword_set.keywords), request.top_k)

        vec_result, lex_result, title_result = await asyncio.gather(
            _vector_path(), _lexical_path(), _title_path(), return_exceptions=True
        )
        keyword_set = await keyword_task

        failures: list[RetrievalBackendError] = []
        for outcome in (vec_result, lex_result, title_result):
            if isinstance(outcome, RetrievalBackendError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

        core_failures = [f for f in failures if f.path in (VECTOR_PATH, LEXICAL_PATH)]
        if len(core_failures) == 2:
            logger.error("Both retrieval paths failed: %s", "; ".join(str(f) for f in core_failures))
            raise FusionUnavailableError(core_failures)
        for failure in failures:
            logger.warning("Degraded search, %s path failed: %s", failure.path, failure)

        vec_candidates = [] if isinstance(vec_result, BaseException) else vec_result
        lex_candidates = [] if isinstance(lex_result, BaseException) else lex_result
        title_candidates = [] if isinstance(title_result, BaseException) else title_result

        # Phase 3: label filter per path
        vec_filtered = apply_label_filter(vec_candidates, request.label_filters, VECTOR_PATH)
        lex_filtered = apply_label_filter(lex_candidates, request.label_filters, LEXICAL_PATH)
        relaxations = [o.relaxation for o in (vec_filtered, lex_filtered) if o.relaxation is not None]
        # Title matches are supplementary: filtered strictly, never relaxed
        excluded = excluded_labels(request.label_filters)
        title_allowed = [c for c in title_candidates if is_allowed(c.chunk, request.label_filters, excluded)]

        # Phase 4: fuse + dedup
        results = fuse(
            vec_filtered.candidates,
            lex_filtered.candidates,
            request.top_k,
            keywords=list(keyword_set.keywords),
            title_candidates=title_allowed,
        )

        elapsed_ms = int((time.time() - t0) * 1000)
        logger.info(
            "search: %sms (vec=%s, bm25=%s, title=%s, results=%s, failed=%s)",
            elapsed_ms,
            len(vec_candidates),
            len(lex_candidates),
            len(title_allowed),
            len(results),
            [f.path for f in failures],
        )
        return SearchResponse(
            results=results,
            metadata=SearchMetadata(
                degraded=bool(failures),
                failed_paths=[f.path for f in failures],
                filter_relaxations=relaxations,
                keywords=list(keyword_set.keywords),
                keyword_fallback=keyword_set.used_fallback,
                elapsed_ms=elapsed_ms,
            ),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def execute(self, request: SearchRequest) -> SearchResponse:
        """Answer an already validated request."""
        if request.table_name != self.table_name:
            raise InputValidationError(f"unknown table {request.table_name!r} (serving {self.table_name!r})")

        if self.cache is None:
            return await self._compute(request)

        key = build_cache_key(request)
        try:
            response, hit = await self.cache.get_or_compute(key, lambda: self._compute(request), _is_cacheable)
        except CacheError as e:
            logger.warning("Cache bypassed: %s", e)
            return await self._compute(request)

        if hit:
            logger.info("search: cache hit for %s", key[:12])
        return _copy_response(response, cache_hit=hit)

    async def search(
        self,
        query: str | None,
        top_k: int | None = None,
        label_filters: LabelFilterSpec | dict | None = None,
        table_name: str | None = None,
    ) -> SearchResponse:
        """
        Hybrid search for ``query``.

        Raises:
            InputValidationError: empty/oversize query or invalid ``top_k``;
                raised before any backend call.
            FusionUnavailableError: the vector and lexical paths both failed.
        """
        request = SearchRequest.create(query, top_k=top_k, label_filters=label_filters, table_name=table_name)
        return await self.execute(request)

    async def search_many(self, requests: list[SearchRequest]) -> list[SearchResponse | SearchError]:
        """
        Run several requests concurrently.

        Search errors are returned in place of the failed request's response
        so one bad request does not sink the batch; anything else propagates.
        """
        outcomes = await asyncio.gather(*(self.execute(r) for r in requests), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, SearchError):
                raise outcome
        return list(outcomes)

    def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        return self.cache.clear()

    def get_cache_stats(self) -> CacheStats:
        if self.cache is None:
            return CacheStats(size=0, hit_count=0, miss_count=0)
        return self.cache.stats()
