# © 2026 Crest Advisory Group LLC. All rights reserved.
# PROPRIETARY AND CONFIDENTIAL. Unauthorized copying, distribution, or use is strictly prohibited.

"""
Query keyword extraction.

Surfaces domain terms from a free-text query by (1) scanning a curated
dictionary of surface forms, (2) structural patterns such as ``<noun>機能``,
then scores, tiers and truncates them. Falls back to plain query tokens when
nothing survives, so extraction never fails a search.
"""

import json
import re
from dataclasses import dataclass
from pathlib import Path

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.config.settings import config
from hybrid_search.services.models import KeywordSet, KeywordTier
from hybrid_search.utils.text import STOPWORDS, normalize_query, query_terms

logger = setup_logger(__name__)

DEFAULT_LISTS_PATH = Path(__file__).resolve().parent.parent.parent / "data" / "keyword_lists.json"

MAX_KEYWORD_LENGTH = 20

CATEGORIES: tuple[str, ...] = (
    "domain_names",
    "function_names",
    "operation_names",
    "system_fields",
    "system_terms",
    "related_keywords",
)
PATTERN_CATEGORY = "pattern"

# Base points per source category
CATEGORY_POINTS: dict[str, int] = {
    "domain_names": 100,
    "function_names": 80,
    "operation_names": 70,
    "system_fields": 50,
    "system_terms": 40,
    "related_keywords": 20,
    PATTERN_CATEGORY: 45,
}
SPECIFIC_TERM_BONUS = 10
SPECIFIC_TERM_MIN_LENGTH = 3
GENERIC_TERM_PENALTY = 15
REPEAT_BONUS = 5
REPEAT_BONUS_CAP = 15

# Tier thresholds, checked top-down
TIER_THRESHOLDS: tuple[tuple[int, KeywordTier], ...] = (
    (100, KeywordTier.CRITICAL),
    (70, KeywordTier.HIGH),
    (40, KeywordTier.MEDIUM),
)

# Words so broad they match most pages
GENERIC_TERMS: frozenset[str] = frozenset(
    {"機能", "画面", "情報", "データ", "設定", "管理", "一覧", "システム", "内容", "処理"}
)

# ---------------------------------------------------------------------------
# Structural patterns: the noun run in front of a functional suffix.
# "教室コピー機能" -> "教室コピー", "求人一覧" -> "求人", "承認する" -> "承認"
# ---------------------------------------------------------------------------
_NOUN = r"[一-鿿㐀-䶿々ァ-ヺーa-z0-9]"
_PATTERN_RE = re.compile(rf"({_NOUN}{{2,}}?)(?=する|機能|画面|一覧|設定|管理)")


@dataclass
class _Candidate:
    term: str
    category: str
    first_pos: int
    occurrences: int


def tier_for(points: int) -> KeywordTier:
    for threshold, tier in TIER_THRESHOLDS:
        if points >= threshold:
            return tier
    return KeywordTier.LOW


def load_keyword_lists(path: str | Path | None = None) -> dict[str, dict[str, str]]:
    """
    Load the keyword dictionary as ``category -> {surface: canonical}``.

    Surfaces and canonicals are NFKC-folded and lower-cased. A missing or
    malformed file yields an empty dictionary (the extractor then relies on
    patterns and the token fallback).
    """
    lists_path = Path(path) if path else DEFAULT_LISTS_PATH
    try:
        raw = json.loads(lists_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Keyword lists unavailable at %s: %s", lists_path, e)
        return {}

    categories = raw.get("categories", raw) if isinstance(raw, dict) else {}
    surfaces: dict[str, dict[str, str]] = {}
    for category in CATEGORIES:
        entries = categories.get(category) or {}
        mapping: dict[str, str] = {}
        for canonical, aliases in entries.items():
            canonical_norm = normalize_query(canonical).lower()
            if not canonical_norm:
                continue
            for surface in [canonical, *(aliases or [])]:
                surface_norm = normalize_query(surface).lower()
                if surface_norm:
                    mapping.setdefault(surface_norm, canonical_norm)
        surfaces[category] = mapping
    logger.info(
        "Loaded keyword lists from %s (%s surfaces)",
        lists_path.name,
        sum(len(m) for m in surfaces.values()),
    )
    return surfaces


class KeywordExtractor:
    """
    Dictionary + pattern keyword extractor.

    The dictionary is loaded once per instance; :meth:`extract` is pure and
    thread-safe, so the pipeline runs it in a worker thread.
    """

    def __init__(
        self,
        lists_path: str | Path | None = None,
        max_terms: int | None = None,
        min_length: int | None = None,
        keyword_lists: dict[str, dict[str, str]] | None = None,
    ):
        self.max_terms = max_terms or config.KEYWORD_MAX_TERMS
        self.min_length = min_length or config.KEYWORD_MIN_LENGTH
        if keyword_lists is None:
            keyword_lists = load_keyword_lists(lists_path or config.KEYWORD_LISTS_PATH or None)
        self._surfaces = keyword_lists
        # Category precedence when one canonical term appears in several lists
        self._category_rank = {c: i for i, c in enumerate(CATEGORIES)}

    # ------------------------------------------------------------------
    # Candidate collection
    # ------------------------------------------------------------------
    def _dictionary_candidates(self, text: str) -> dict[str, _Candidate]:
        found: dict[str, _Candidate] = {}
        for category in CATEGORIES:
            for surface, canonical in self._surfaces.get(category, {}).items():
                pos = text.find(surface)
                if pos < 0:
                    continue
                occurrences = text.count(surface)
                current = found.get(canonical)
                if current is None:
                    found[canonical] = _Candidate(canonical, category, pos, occurrences)
                    continue
                current.first_pos = min(current.first_pos, pos)
                current.occurrences = max(current.occurrences, occurrences)
                if self._category_rank[category] < self._category_rank[current.category]:
                    current.category = category
        return found

    @staticmethod
    def _pattern_candidates(text: str) -> dict[str, _Candidate]:
        found: dict[str, _Candidate] = {}
        for match in _PATTERN_RE.finditer(text):
            term = match.group(1)
            if term in found:
                continue
            found[term] = _Candidate(term, PATTERN_CATEGORY, match.start(1), text.count(term))
        return found

    def _keep(self, term: str) -> bool:
        return (
            self.min_length <= len(term) <= MAX_KEYWORD_LENGTH and term not in STOPWORDS and not term.isdigit()
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    @staticmethod
    def score(candidate: _Candidate) -> int:
        points = CATEGORY_POINTS[candidate.category]
        if len(candidate.term) >= SPECIFIC_TERM_MIN_LENGTH:
            points += SPECIFIC_TERM_BONUS
        if candidate.term in GENERIC_TERMS:
            points -= GENERIC_TERM_PENALTY
        points += min(REPEAT_BONUS * (candidate.occurrences - 1), REPEAT_BONUS_CAP)
        return points

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def extract(self, query: str) -> KeywordSet:
        """Return prioritized keywords for ``query``. Never raises on odd input."""
        text = normalize_query(query).lower()

        candidates = self._dictionary_candidates(text)
        for term, cand in self._pattern_candidates(text).items():
            # Dictionary hits win over pattern hits for the same term
            candidates.setdefault(term, cand)

        # Any dictionary hit outranks every pattern hit; tier then position within each source
        ranked: list[tuple[bool, int, int, str, KeywordTier]] = []
        for cand in candidates.values():
            if not self._keep(cand.term):
                continue
            tier = tier_for(self.score(cand))
            ranked.append((cand.category == PATTERN_CATEGORY, tier.rank, cand.first_pos, cand.term, tier))
        ranked.sort()

        statistics = {category: 0 for category in (*CATEGORIES, PATTERN_CATEGORY)}
        for cand in candidates.values():
            if self._keep(cand.term):
                statistics[cand.category] += 1

        if ranked:
            selected = ranked[: self.max_terms]
            keywords = tuple(term for *_, term, _ in selected)
            statistics["total"] = len(keywords)
            return KeywordSet(
                keywords=keywords,
                tiers={term: tier for *_, term, tier in selected},
                statistics=statistics,
            )

        fallback = [t for t in query_terms(text, self.min_length) if len(t) <= MAX_KEYWORD_LENGTH][: self.max_terms]
        logger.info("No dictionary keywords in query, using %s fallback tokens", len(fallback))
        statistics["total"] = len(fallback)
        return KeywordSet(
            keywords=tuple(fallback),
            tiers={term: KeywordTier.HIGH for term in fallback},
            statistics=statistics,
            used_fallback=True,
        )
