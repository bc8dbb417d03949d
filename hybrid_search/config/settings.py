"""
Configuration settings for the hybrid search engine
"""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# Use find_dotenv() to locate .env regardless of the current working directory.
# Falls back to an explicit path relative to this file (project root) if not found.
_dotenv_path = find_dotenv(usecwd=True) or str(Path(__file__).resolve().parent.parent.parent / ".env")
load_dotenv(_dotenv_path)

_TRUE_VALUES = ("true", "1", "yes")

VALID_DISTANCE_METRICS = ("l2", "cosine", "similarity")
VALID_BACKENDS = ("memory", "supabase")


def _env_bool(name: str, default: str) -> bool:
    return (os.getenv(name, default)).strip().lower() in _TRUE_VALUES


# ============================================
# Environment-based Configuration
# ============================================


class Config:
    """
    Centralized configuration loaded from environment variables.
    Edit .env file to change these values.
    """

    # Request defaults
    DEFAULT_TOP_K: int = int(os.getenv("DEFAULT_TOP_K", "10"))
    DEFAULT_TABLE_NAME: str = os.getenv("DEFAULT_TABLE_NAME", "confluence").strip() or "confluence"
    # Query length limit (chars) - reject oversize queries to avoid abuse and cost
    MAX_QUERY_LENGTH: int = int(os.getenv("MAX_QUERY_LENGTH", "2000"))

    # Retrieval adapters
    # Each path fetches top_k * factor candidates so filtering and page dedup
    # still leave enough material for fusion.
    VECTOR_OVERFETCH_FACTOR: int = int(os.getenv("VECTOR_OVERFETCH_FACTOR", "2"))
    LEXICAL_OVERFETCH_FACTOR: int = int(os.getenv("LEXICAL_OVERFETCH_FACTOR", "2"))
    # l2: 1/(1+d), cosine: 1-d, similarity: raw value clamped to [0, 1]
    VECTOR_DISTANCE_METRIC: str = os.getenv("VECTOR_DISTANCE_METRIC", "l2").strip().lower()
    BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "15"))
    BACKEND_RETRIES: int = int(os.getenv("BACKEND_RETRIES", "1"))
    BACKEND_RETRY_DELAY: float = float(os.getenv("BACKEND_RETRY_DELAY", "0.2"))

    # Fusion
    VECTOR_WEIGHT: float = float(os.getenv("VECTOR_WEIGHT", "0.5"))
    BM25_WEIGHT: float = float(os.getenv("BM25_WEIGHT", "0.5"))
    # 0.0 disables the title keyword boost (plain linear fusion).
    TITLE_BOOST_WEIGHT: float = float(os.getenv("TITLE_BOOST_WEIGHT", "0.0"))
    SCORE_TEXT_PRECISION: int = int(os.getenv("SCORE_TEXT_PRECISION", "2"))

    # Title match path (pages whose title equals or covers the query)
    TITLE_SEARCH_ENABLED: bool = _env_bool("TITLE_SEARCH_ENABLED", "true")
    TITLE_EXACT_THRESHOLD: float = float(os.getenv("TITLE_EXACT_THRESHOLD", "0.85"))
    TITLE_MIN_MATCH_RATIO: float = float(os.getenv("TITLE_MIN_MATCH_RATIO", "0.33"))

    # Keyword extraction
    KEYWORD_MAX_TERMS: int = int(os.getenv("KEYWORD_MAX_TERMS", "12"))
    KEYWORD_MIN_LENGTH: int = int(os.getenv("KEYWORD_MIN_LENGTH", "2"))
    KEYWORD_LISTS_PATH: str = (os.getenv("KEYWORD_LISTS_PATH") or "").strip()

    # Result cache
    CACHE_ENABLED: bool = _env_bool("CACHE_ENABLED", "true")
    CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "300"))
    CACHE_MAX_SIZE: int = int(os.getenv("CACHE_MAX_SIZE", "1000"))

    # Backend selection: "memory" (reference backends, local corpus file) or "supabase"
    SEARCH_BACKEND: str = os.getenv("SEARCH_BACKEND", "memory").strip().lower()
    CORPUS_PATH: str = (os.getenv("CORPUS_PATH") or "data/sample_corpus.json").strip()

    # Embedding Settings
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSIONS: int = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
    # Dimension of the offline character n-gram embedder used with the memory backend
    NGRAM_EMBEDDING_DIMENSIONS: int = int(os.getenv("NGRAM_EMBEDDING_DIMENSIONS", "256"))

    # Confluence base URL used when a chunk carries no absolute URL
    CONFLUENCE_BASE_URL: str = (os.getenv("CONFLUENCE_BASE_URL") or "").strip().rstrip("/")


# Singleton instance
config = Config()


def validate_config_dependencies() -> list[str]:
    """
    Check numeric ranges and cross-field requirements.

    Returns a list of human-readable problems; empty when the configuration is usable.
    """
    errors: list[str] = []

    if config.DEFAULT_TOP_K <= 0:
        errors.append("DEFAULT_TOP_K must be a positive integer")
    if config.MAX_QUERY_LENGTH <= 0:
        errors.append("MAX_QUERY_LENGTH must be a positive integer")
    if config.VECTOR_OVERFETCH_FACTOR < 1 or config.LEXICAL_OVERFETCH_FACTOR < 1:
        errors.append("VECTOR_OVERFETCH_FACTOR and LEXICAL_OVERFETCH_FACTOR must be >= 1")
    if config.VECTOR_DISTANCE_METRIC not in VALID_DISTANCE_METRICS:
        errors.append(
            f"VECTOR_DISTANCE_METRIC must be one of {', '.join(VALID_DISTANCE_METRICS)} "
            f"(got {config.VECTOR_DISTANCE_METRIC!r})"
        )
    if config.BACKEND_TIMEOUT_SECONDS <= 0:
        errors.append("BACKEND_TIMEOUT_SECONDS must be > 0")
    if config.BACKEND_RETRIES < 0:
        errors.append("BACKEND_RETRIES must be >= 0")

    if config.VECTOR_WEIGHT < 0 or config.BM25_WEIGHT < 0:
        errors.append("VECTOR_WEIGHT and BM25_WEIGHT must be non-negative")
    elif config.VECTOR_WEIGHT + config.BM25_WEIGHT <= 0:
        errors.append("VECTOR_WEIGHT + BM25_WEIGHT must be > 0")
    if not 0.0 <= config.TITLE_BOOST_WEIGHT <= 1.0:
        errors.append("TITLE_BOOST_WEIGHT must be between 0 and 1")
    if not 0 <= config.SCORE_TEXT_PRECISION <= 6:
        errors.append("SCORE_TEXT_PRECISION must be between 0 and 6")
    if not 0.0 < config.TITLE_EXACT_THRESHOLD <= 1.0 or not 0.0 < config.TITLE_MIN_MATCH_RATIO <= 1.0:
        errors.append("TITLE_EXACT_THRESHOLD and TITLE_MIN_MATCH_RATIO must be in (0, 1]")

    if config.KEYWORD_MAX_TERMS <= 0:
        errors.append("KEYWORD_MAX_TERMS must be a positive integer")
    if config.KEYWORD_MIN_LENGTH < 1:
        errors.append("KEYWORD_MIN_LENGTH must be >= 1")

    if config.CACHE_TTL_SECONDS <= 0:
        errors.append("CACHE_TTL_SECONDS must be > 0")
    if config.CACHE_MAX_SIZE <= 0:
        errors.append("CACHE_MAX_SIZE must be a positive integer")

    if config.SEARCH_BACKEND not in VALID_BACKENDS:
        errors.append(f"SEARCH_BACKEND must be one of {', '.join(VALID_BACKENDS)} (got {config.SEARCH_BACKEND!r})")
    elif config.SEARCH_BACKEND == "supabase":
        for name in ("SUPABASE_URL", "SUPABASE_KEY", "OPENAI_API_KEY"):
            if not os.getenv(name, "").strip():
                errors.append(f"SEARCH_BACKEND=supabase requires {name}")

    return errors


def validate_env_for_app() -> None:
    """
    Validate configuration for the search service. Call at startup.
    Raises SystemExit with clear message if anything is misconfigured.
    """
    errors = validate_config_dependencies()
    if errors:
        raise SystemExit("Invalid configuration: " + "; ".join(errors))
