"""
Score fusion and page-level deduplication.

Pure and deterministic: no clock, no randomness, no I/O. Given the same
candidate lists and parameters it always returns the same ordered results.
"""

from hybrid_search.config.settings import config
from hybrid_search.services.models import (
    SOURCE_PRIORITY,
    DocumentChunk,
    RankedResult,
    ScoredCandidate,
    SourceType,
)

# Only the strongest keywords count towards the title boost
TITLE_BOOST_TOP_KEYWORDS = 5


def _candidate_order(c: ScoredCandidate) -> tuple:
    return (-c.score_normalized, c.chunk.chunk_index, c.chunk.chunk_id)


def build_page_index(candidates: list[ScoredCandidate]) -> dict[int, list[ScoredCandidate]]:
    """Group candidates by page_id (insertion order preserved)."""
    index: dict[int, list[ScoredCandidate]] = {}
    for cand in candidates:
        index.setdefault(cand.page_id, []).append(cand)
    return index


def best_per_page(candidates: list[ScoredCandidate]) -> dict[int, ScoredCandidate]:
    """Keep the highest-scoring chunk per page; ties go to the earliest chunk."""
    return {page_id: min(group, key=_candidate_order) for page_id, group in build_page_index(candidates).items()}


def normalized_weights(vector_weight: float, bm25_weight: float) -> tuple[float, float]:
    if vector_weight < 0 or bm25_weight < 0:
        raise ValueError("fusion weights must be non-negative")
    total = vector_weight + bm25_weight
    if total <= 0:
        raise ValueError("fusion weights must not both be zero")
    return vector_weight / total, bm25_weight / total


def title_keyword_overlap(title: str, keywords: list[str]) -> float:
    """Fraction of the top keywords that appear in ``title`` (0.0 - 1.0)."""
    top = [k for k in keywords[:TITLE_BOOST_TOP_KEYWORDS] if k]
    if not top or not title:
        return 0.0
    title_lower = title.lower()
    return sum(1 for k in top if k.lower() in title_lower) / len(top)


def page_url(chunk: DocumentChunk) -> str:
    if chunk.url or not config.CONFLUENCE_BASE_URL:
        return chunk.url
    return f"{config.CONFLUENCE_BASE_URL}/pages/viewpage.action?pageId={chunk.page_id}"


def format_score_text(source: SourceType, score: float, precision: int) -> str:
    return f"{source.label} {score:.{precision}f}"


def fuse(
    vector_candidates: list[ScoredCandidate],
    lexical_candidates: list[ScoredCandidate],
    top_k: int,
    vector_weight: float | None = None,
    bm25_weight: float | None = None,
    keywords: list[str] | None = None,
    title_boost_weight: float | None = None,
    precision: int | None = None,
    title_candidates: list[ScoredCandidate] | None = None,
) -> list[RankedResult]:
    """
    Merge the candidate sets into at most ``top_k`` page-level results.

    A page found by both paths scores ``w_v*s_v + w_l*s_l`` (weights
    normalized to sum 1) and is tagged ``hybrid``; a page found by one path
    keeps that path's normalized score. Title matches only add pages neither
    path found, tagged ``title`` with their title-match score. Ordering: score
    desc, then source priority (hybrid > vector > bm25 > title), then page_id
    asc.
    """
    w_v, w_l = normalized_weights(
        config.VECTOR_WEIGHT if vector_weight is None else vector_weight,
        config.BM25_WEIGHT if bm25_weight is None else bm25_weight,
    )
    boost_weight = config.TITLE_BOOST_WEIGHT if title_boost_weight is None else title_boost_weight
    precision = config.SCORE_TEXT_PRECISION if precision is None else precision
    keywords = list(keywords or [])

    vec_best = best_per_page(vector_candidates)
    lex_best = best_per_page(lexical_candidates)
    title_best = {
        page_id: cand
        for page_id, cand in best_per_page(title_candidates or []).items()
        if page_id not in vec_best and page_id not in lex_best
    }

    scored: list[tuple[float, SourceType, int, ScoredCandidate, float]] = []
    for page_id in vec_best.keys() | lex_best.keys() | title_best.keys():
        vec = vec_best.get(page_id)
        lex = lex_best.get(page_id)
        if page_id in title_best:
            representative = title_best[page_id]
            fused = representative.score_normalized
            source = SourceType.TITLE
            raw = representative.score_raw
        elif vec is not None and lex is not None:
            fused = w_v * vec.score_normalized + w_l * lex.score_normalized
            representative = min(vec, lex, key=_candidate_order)
            source = SourceType.HYBRID
            raw = None
        else:
            representative = vec if vec is not None else lex
            fused = representative.score_normalized
            source = representative.source_type
            raw = representative.score_raw

        if boost_weight > 0 and keywords and source != SourceType.TITLE:
            fused = min(1.0, fused + boost_weight * title_keyword_overlap(representative.chunk.title, keywords))
        scored.append((fused, source, page_id, representative, fused if raw is None else raw))

    scored.sort(key=lambda item: (-item[0], SOURCE_PRIORITY[item[1]], item[2]))

    results: list[RankedResult] = []
    for fused, source, page_id, cand, raw in scored[:top_k]:
        chunk = cand.chunk
        results.append(
            RankedResult(
                page_id=page_id,
                title=chunk.title,
                content=chunk.content,
                labels=tuple(sorted(chunk.labels)),
                url=page_url(chunk),
                source=source,
                score_kind=source,
                score_raw=raw,
                score_text=format_score_text(source, fused, precision),
                score=fused,
                chunk_id=chunk.chunk_id,
                chunk_index=chunk.chunk_index,
            )
        )
    return results
