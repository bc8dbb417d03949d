"""
Hybrid retrieval: adapters (vector, lexical, title), label filter, fusion,
result cache and the pipeline that sequences them.
"""

from .adapters import LexicalRetrievalAdapter, TitleRetrievalAdapter, VectorRetrievalAdapter
from .cache import ResultCache, build_cache_key
from .fusion import fuse
from .label_filter import apply_label_filter
from .pipeline import HybridSearchPipeline

__all__ = [
    "HybridSearchPipeline",
    "LexicalRetrievalAdapter",
    "ResultCache",
    "TitleRetrievalAdapter",
    "VectorRetrievalAdapter",
    "apply_label_filter",
    "build_cache_key",
    "fuse",
]
