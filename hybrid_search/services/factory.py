"""
Pipeline construction from configuration (SEARCH_BACKEND).
"""

from pathlib import Path

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.backends.memory import build_memory_backends, load_corpus
from hybrid_search.services.keywords.extractor import KeywordExtractor
from hybrid_search.services.retrieval import (
    HybridSearchPipeline,
    LexicalRetrievalAdapter,
    ResultCache,
    TitleRetrievalAdapter,
    VectorRetrievalAdapter,
)

logger = setup_logger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_corpus_path(path: str | Path) -> Path:
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return PROJECT_ROOT / candidate


def build_pipeline(backend: str | None = None, corpus_path: str | Path | None = None) -> HybridSearchPipeline:
    """
    Build a pipeline for ``backend`` ("memory" or "supabase").

    The memory backend reads chunks from ``corpus_path`` (CORPUS_PATH) and
    embeds them with the offline n-gram embedder; its vectors are L2
    distances. The Supabase backend uses OpenAI query embeddings. The title
    match path is wired for both unless TITLE_SEARCH_ENABLED is off.
    """
    backend = (backend or config.SEARCH_BACKEND).lower()
    cache = ResultCache() if config.CACHE_ENABLED else None

    if backend == "memory":
        path = _resolve_corpus_path(corpus_path or config.CORPUS_PATH)
        embedder, store, vector_index, lexical_index, title_index = build_memory_backends(load_corpus(path))
        logger.info("Memory backend ready (%s chunks from %s)", len(store), path.name)
        return HybridSearchPipeline(
            embedder=embedder,
            vector_adapter=VectorRetrievalAdapter(vector_index, store, metric="l2"),
            lexical_adapter=LexicalRetrievalAdapter(lexical_index, store),
            title_adapter=TitleRetrievalAdapter(title_index, store) if config.TITLE_SEARCH_ENABLED else None,
            keyword_extractor=KeywordExtractor(),
            cache=cache,
        )

    if backend == "supabase":
        # imported lazily so the memory backend runs without network clients configured
        from hybrid_search.services.backends.supabase_backend import SupabaseSearchBackend
        from hybrid_search.services.embedder import OpenAIQueryEmbedder

        supabase = SupabaseSearchBackend()
        return HybridSearchPipeline(
            embedder=OpenAIQueryEmbedder(),
            vector_adapter=VectorRetrievalAdapter(supabase, supabase),
            lexical_adapter=LexicalRetrievalAdapter(supabase, supabase),
            title_adapter=TitleRetrievalAdapter(supabase, supabase) if config.TITLE_SEARCH_ENABLED else None,
            keyword_extractor=KeywordExtractor(),
            cache=cache,
            table_name=supabase.table_name,
        )

    raise ValueError(f"Unknown search backend {backend!r}")
