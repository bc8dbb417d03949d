"""
Unit tests for the search domain models: request validation, label filter
parsing and response serialization.
"""

import pytest

from hybrid_search.services.errors import InputValidationError, SearchError
from hybrid_search.services.models import (
    DocumentChunk,
    LabelFilterSpec,
    RankedResult,
    SearchRequest,
    SourceType,
)


class TestSearchRequest:
    def test_defaults_applied(self):
        req = SearchRequest.create("  教室コピー  ")
        assert req.query == "教室コピー"
        assert req.top_k == 10
        assert req.table_name == "confluence"
        assert req.label_filters == LabelFilterSpec()
        assert req.label_filters.include_meeting_notes is False

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query_rejected(self, query):
        with pytest.raises(InputValidationError):
            SearchRequest.create(query)

    @pytest.mark.parametrize("top_k", [0, -1, 2.5, "5", True])
    def test_invalid_top_k_rejected(self, top_k):
        with pytest.raises(InputValidationError):
            SearchRequest.create("教室", top_k=top_k)

    def test_overlong_query_rejected(self):
        with pytest.raises(InputValidationError):
            SearchRequest.create("あ" * 2001)

    def test_validation_error_is_value_error_and_search_error(self):
        with pytest.raises(ValueError):
            SearchRequest.create("")
        assert issubclass(InputValidationError, SearchError)

    def test_filters_accept_camel_case_dict(self):
        req = SearchRequest.create("教室", label_filters={"includeMeetingNotes": True, "excludeLabels": ["b", "a"]})
        assert req.label_filters.include_meeting_notes is True
        assert req.label_filters.exclude_labels == ("a", "b")

    def test_blank_table_name_falls_back_to_default(self):
        assert SearchRequest.create("教室", table_name="  ").table_name == "confluence"


class TestLabelFilterSpec:
    def test_snake_case_keys(self):
        spec = LabelFilterSpec.from_dict({"include_archived": True, "include_labels": ["教室"]})
        assert spec.include_archived is True
        assert spec.include_labels == ("教室",)

    def test_serialize_is_stable(self):
        a = LabelFilterSpec.from_dict({"includeLabels": ["x", "y"]})
        b = LabelFilterSpec.from_dict({"includeLabels": ["y", "x"]})
        assert a.serialize() == b.serialize()


class TestDocumentChunk:
    def test_from_dict_camel_case_row(self):
        chunk = DocumentChunk.from_dict(
            {
                "pageId": "101",
                "chunkIndex": 2,
                "title": "教室コピー機能仕様",
                "content": "本文",
                "labels": ["教室", "機能仕様"],
                "spaceKey": "CLIENTTOMO",
                "embedding": [0.1, 0.2],
            }
        )
        assert chunk.page_id == 101
        assert chunk.chunk_index == 2
        assert chunk.chunk_id == "101-2"
        assert chunk.labels == frozenset({"教室", "機能仕様"})
        assert chunk.vector == (0.1, 0.2)
        assert chunk.space_key == "CLIENTTOMO"


class TestRankedResult:
    def test_to_dict_uses_camel_case(self):
        result = RankedResult(
            page_id=7,
            title="T",
            content="C",
            labels=("a",),
            url="u",
            source=SourceType.HYBRID,
            score_kind=SourceType.HYBRID,
            score_raw=0.87,
            score_text="Hybrid 0.87",
            score=0.87,
            chunk_id="7-0",
        )
        data = result.to_dict()
        assert data["pageId"] == 7
        assert data["source"] == "hybrid"
        assert data["scoreKind"] == "hybrid"
        assert data["scoreText"] == "Hybrid 0.87"
        assert data["chunkId"] == "7-0"

    def test_source_labels(self):
        assert SourceType.BM25.label == "BM25"
        assert SourceType.VECTOR.label == "Vector"
