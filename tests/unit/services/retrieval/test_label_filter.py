"""
Unit tests for label filtering and the collapse-to-pass-through relaxation.
"""

from hybrid_search.services.models import LabelFilterSpec
from hybrid_search.services.retrieval.label_filter import apply_label_filter, excluded_labels, is_allowed
from tests.helpers import make_candidate, make_chunk


def _pages(outcome):
    return [c.page_id for c in outcome.candidates]


class TestIsAllowed:
    def test_meeting_notes_excluded_by_default(self):
        chunk = make_chunk(1, labels={"議事録"})
        assert not is_allowed(chunk, LabelFilterSpec())
        assert is_allowed(chunk, LabelFilterSpec(include_meeting_notes=True))

    def test_archived_excluded_by_default(self):
        chunk = make_chunk(1, labels={"アーカイブ"})
        assert not is_allowed(chunk, LabelFilterSpec())
        assert is_allowed(chunk, LabelFilterSpec(include_archived=True))

    def test_folder_pages_always_excluded(self):
        chunk = make_chunk(1, labels={"フォルダ"})
        assert not is_allowed(chunk, LabelFilterSpec(include_meeting_notes=True, include_archived=True))

    def test_label_matching_is_case_insensitive(self):
        chunk = make_chunk(1, labels={"Meeting-Notes"})
        assert not is_allowed(chunk, LabelFilterSpec())

    def test_include_labels_is_any_match(self):
        spec = LabelFilterSpec(include_labels=("教室", "求人"))
        assert is_allowed(make_chunk(1, labels={"求人", "機能仕様"}), spec)
        assert not is_allowed(make_chunk(2, labels={"会員"}), spec)
        assert not is_allowed(make_chunk(3), spec)

    def test_explicit_exclusion(self):
        spec = LabelFilterSpec(exclude_labels=("draft",))
        assert not is_allowed(make_chunk(1, labels={"Draft"}), spec)
        assert "draft" in excluded_labels(spec)


class TestApplyLabelFilter:
    def test_removes_excluded_candidates(self):
        candidates = [
            make_candidate(1, 0.9),
            make_candidate(2, 0.8, labels={"議事録"}),
            make_candidate(3, 0.7),
        ]
        outcome = apply_label_filter(candidates, LabelFilterSpec(), "vector")
        assert _pages(outcome) == [1, 3]
        assert outcome.relaxation is None

    def test_collapse_relaxes_to_pass_through(self):
        candidates = [
            make_candidate(1, 0.9, labels={"議事録"}),
            make_candidate(2, 0.8, labels={"アーカイブ"}),
        ]
        outcome = apply_label_filter(candidates, LabelFilterSpec(), "lexical")
        assert _pages(outcome) == [1, 2]
        assert outcome.relaxation is not None
        assert outcome.relaxation.path == "lexical"
        assert outcome.relaxation.removed == 2
        assert outcome.relaxation.to_dict() == {"path": "lexical", "removed": 2}

    def test_empty_input_is_not_a_collapse(self):
        outcome = apply_label_filter([], LabelFilterSpec(), "vector")
        assert outcome.candidates == []
        assert outcome.relaxation is None

    def test_none_spec_uses_defaults(self):
        candidates = [make_candidate(1, 0.9), make_candidate(2, 0.5, labels={"archive"})]
        assert _pages(apply_label_filter(candidates, None, "vector")) == [1]

    def test_order_preserved(self):
        candidates = [make_candidate(3, 0.2), make_candidate(1, 0.9), make_candidate(2, 0.5)]
        assert _pages(apply_label_filter(candidates, LabelFilterSpec(), "vector")) == [3, 1, 2]
