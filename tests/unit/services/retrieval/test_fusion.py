"""
Unit tests for score fusion: weighting, page-level dedup, tie-breaking,
title boost and result formatting.
"""

import pytest

from hybrid_search.config.settings import config
from hybrid_search.services.models import SourceType
from hybrid_search.services.retrieval.fusion import (
    best_per_page,
    format_score_text,
    fuse,
    normalized_weights,
    page_url,
    title_keyword_overlap,
)
from tests.helpers import make_candidate, make_chunk

V = SourceType.VECTOR
B = SourceType.BM25
T = SourceType.TITLE


def _pages(results):
    return [r.page_id for r in results]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
class TestHelpers:
    def test_best_per_page_keeps_highest(self):
        best = best_per_page([make_candidate(1, 0.4, chunk_index=0), make_candidate(1, 0.9, chunk_index=3)])
        assert best[1].chunk.chunk_index == 3

    def test_best_per_page_tie_prefers_earliest_chunk(self):
        best = best_per_page([make_candidate(1, 0.5, chunk_index=2), make_candidate(1, 0.5, chunk_index=0)])
        assert best[1].chunk.chunk_index == 0

    def test_weights_normalized(self):
        assert normalized_weights(3.0, 1.0) == (0.75, 0.25)

    @pytest.mark.parametrize(("wv", "wb"), [(-1.0, 1.0), (0.0, 0.0)])
    def test_invalid_weights(self, wv, wb):
        with pytest.raises(ValueError):
            normalized_weights(wv, wb)

    def test_title_overlap(self):
        assert title_keyword_overlap("教室コピー機能仕様", ["教室", "コピー", "求人", "会員"]) == 0.5
        assert title_keyword_overlap("", ["教室"]) == 0.0
        assert title_keyword_overlap("教室", []) == 0.0

    def test_score_text(self):
        assert format_score_text(SourceType.HYBRID, 0.8712, 2) == "Hybrid 0.87"
        assert format_score_text(SourceType.BM25, 1.0, 3) == "BM25 1.000"

    def test_page_url_fallback_to_base(self, monkeypatch):
        monkeypatch.setattr(config, "CONFLUENCE_BASE_URL", "https://wiki.example.com")
        assert page_url(make_chunk(42, url="")) == "https://wiki.example.com/pages/viewpage.action?pageId=42"
        assert page_url(make_chunk(42, url="https://x/42")) == "https://x/42"


# ---------------------------------------------------------------------------
# fuse()
# ---------------------------------------------------------------------------
class TestFuse:
    def test_page_found_by_both_paths_is_hybrid(self):
        results = fuse(
            [make_candidate(1, 0.75, V), make_candidate(2, 0.5, V), make_candidate(3, 0.25, V)],
            [make_candidate(2, 1.0, B, raw=2.0), make_candidate(4, 0.0, B, raw=1.0)],
            top_k=3,
            vector_weight=0.5,
            bm25_weight=0.5,
        )
        # page 2: 0.5*0.5 + 0.5*1.0 = 0.75 ties page 1, hybrid wins the tie
        assert _pages(results) == [2, 1, 3]
        assert results[0].source == SourceType.HYBRID
        assert results[0].score == pytest.approx(0.75)
        assert results[0].score_text == "Hybrid 0.75"
        assert results[1].source == SourceType.VECTOR

    def test_single_path_keeps_raw_engine_score(self):
        results = fuse([], [make_candidate(4, 0.6, B, raw=7.5)], top_k=5)
        assert results[0].source == SourceType.BM25
        assert results[0].score_raw == 7.5
        assert results[0].score == 0.6
        assert results[0].score_text == "BM25 0.60"

    def test_hybrid_score_raw_is_fused_value(self):
        results = fuse([make_candidate(1, 0.4, V)], [make_candidate(1, 0.8, B, raw=3.0)], top_k=1)
        assert results[0].score_raw == pytest.approx(0.6)

    def test_one_result_per_page(self):
        results = fuse(
            [make_candidate(1, 0.9, V, chunk_index=0), make_candidate(1, 0.8, V, chunk_index=1)],
            [make_candidate(1, 0.7, B, chunk_index=2)],
            top_k=10,
        )
        assert _pages(results) == [1]

    def test_hybrid_representative_is_best_chunk(self):
        results = fuse(
            [make_candidate(1, 0.4, V, chunk_index=0)],
            [make_candidate(1, 0.9, B, chunk_index=2)],
            top_k=1,
        )
        assert results[0].chunk_id == "1-2"

    def test_vector_beats_bm25_on_equal_score(self):
        results = fuse([make_candidate(9, 0.5, V)], [make_candidate(3, 0.5, B)], top_k=2)
        assert _pages(results) == [9, 3]

    def test_page_id_breaks_remaining_ties(self):
        results = fuse([make_candidate(7, 0.5, V), make_candidate(2, 0.5, V)], [], top_k=2)
        assert _pages(results) == [2, 7]

    def test_top_k_truncates(self):
        vec = [make_candidate(i, 1.0 - i / 10, V) for i in range(1, 8)]
        assert len(fuse(vec, [], top_k=3)) == 3

    def test_empty_inputs(self):
        assert fuse([], [], top_k=5) == []

    def test_weights_bias_result(self):
        vec = [make_candidate(1, 1.0, V), make_candidate(2, 0.0, V)]
        lex = [make_candidate(1, 0.0, B), make_candidate(2, 1.0, B)]
        assert _pages(fuse(vec, lex, top_k=2, vector_weight=3.0, bm25_weight=1.0)) == [1, 2]
        assert _pages(fuse(vec, lex, top_k=2, vector_weight=1.0, bm25_weight=3.0)) == [2, 1]

    def test_deterministic(self):
        vec = [make_candidate(i, (i * 37 % 10) / 10, V) for i in range(1, 10)]
        lex = [make_candidate(i, (i * 13 % 10) / 10, B) for i in range(5, 15)]
        assert fuse(vec, lex, top_k=8) == fuse(list(reversed(vec)), list(reversed(lex)), top_k=8)

    def test_labels_sorted_and_url_carried(self):
        results = fuse([make_candidate(5, 0.9, V, labels={"b", "a"})], [], top_k=1)
        assert results[0].labels == ("a", "b")
        assert results[0].url == "https://wiki.example.com/pages/5"


class TestTitleBoost:
    def test_boost_reorders_by_title_overlap(self):
        vec = [
            make_candidate(1, 0.6, V, title="会員登録フロー"),
            make_candidate(2, 0.5, V, title="教室コピー機能仕様"),
        ]
        results = fuse(vec, [], top_k=2, keywords=["教室", "コピー"], title_boost_weight=0.2)
        assert _pages(results) == [2, 1]
        assert results[0].score == pytest.approx(0.7)

    def test_boost_disabled_by_zero_weight(self):
        vec = [
            make_candidate(1, 0.6, V, title="会員登録フロー"),
            make_candidate(2, 0.5, V, title="教室コピー機能仕様"),
        ]
        results = fuse(vec, [], top_k=2, keywords=["教室"], title_boost_weight=0.0)
        assert _pages(results) == [1, 2]

    def test_boosted_score_capped_at_one(self):
        results = fuse(
            [make_candidate(1, 0.95, V, title="教室")], [], top_k=1, keywords=["教室"], title_boost_weight=0.5
        )
        assert results[0].score == 1.0


# ---------------------------------------------------------------------------
# Title matches
# ---------------------------------------------------------------------------
class TestTitleCandidates:
    def test_title_only_page_is_tagged_title(self):
        results = fuse(
            [make_candidate(1, 0.6, V)],
            [],
            top_k=3,
            title_candidates=[make_candidate(5, 0.75, T, title="教室コピー機能仕様")],
        )
        assert _pages(results) == [5, 1]
        assert results[0].source == SourceType.TITLE
        assert results[0].score_kind == SourceType.TITLE
        assert results[0].score == 0.75
        assert results[0].score_text == "Title 0.75"

    def test_page_found_by_other_paths_keeps_its_source(self):
        results = fuse(
            [make_candidate(1, 0.4, V)],
            [make_candidate(1, 0.6, B)],
            top_k=3,
            vector_weight=0.5,
            bm25_weight=0.5,
            title_candidates=[make_candidate(1, 1.0, T)],
        )
        assert len(results) == 1
        assert results[0].source == SourceType.HYBRID
        assert results[0].score == pytest.approx(0.5)

    def test_title_ranks_last_on_equal_score(self):
        results = fuse(
            [],
            [make_candidate(9, 0.5, B)],
            top_k=2,
            title_candidates=[make_candidate(2, 0.5, T)],
        )
        assert _pages(results) == [9, 2]

    def test_one_title_result_per_page(self):
        results = fuse(
            [],
            [],
            top_k=5,
            title_candidates=[make_candidate(3, 0.5, T, chunk_index=1), make_candidate(3, 0.9, T)],
        )
        assert _pages(results) == [3]
        assert results[0].chunk_id == "3-0"

    def test_title_only_page_not_boosted(self):
        results = fuse(
            [],
            [],
            top_k=1,
            keywords=["教室"],
            title_boost_weight=0.5,
            title_candidates=[make_candidate(4, 0.5, T, title="教室")],
        )
        assert results[0].score == 0.5
