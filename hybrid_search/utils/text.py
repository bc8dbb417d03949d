# © 2026 Crest Advisory Group LLC. All rights reserved.
# PROPRIETARY AND CONFIDENTIAL. Unauthorized copying, distribution, or use is strictly prohibited.

"""
Query normalization and script-run tokenization.

Japanese queries carry no word boundaries, so tokens are maximal runs of a
single script (kanji, katakana, latin/digits). Hiragana runs are mostly
particles and inflections and are dropped by default.
"""

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")

# 々 and 〆 belong to kanji runs; ー belongs to katakana runs.
_TOKEN_RE = re.compile(
    r"[一-鿿㐀-䶿々〆]+"  # kanji
    r"|[ァ-ヺー]+"  # katakana
    r"|[a-z0-9][a-z0-9_.\-]*"  # latin / digits (input is lower-cased first)
    r"|[ぁ-ゖ]+"  # hiragana
)
_HIRAGANA_RE = re.compile(r"^[ぁ-ゖ]+$")

# Function words and request phrases that never identify a document.
STOPWORDS: frozenset[str] = frozenset(
    {
        "こと",
        "もの",
        "ため",
        "など",
        "これ",
        "それ",
        "あれ",
        "について",
        "の",
        "は",
        "が",
        "を",
        "に",
        "で",
        "と",
        "や",
        "から",
        "まで",
        "より",
        "へ",
        "も",
        "な",
        "だ",
        "です",
        "ます",
        "ください",
        "教えて",
        "件",
        "ですか",
        "とは",
        "方法",
        "可能",
        "できる",
        "どう",
        "なに",
        "何",
        # English filler words
        "the",
        "a",
        "an",
        "of",
        "to",
        "in",
        "on",
        "for",
        "and",
        "or",
        "is",
        "are",
        "how",
        "what",
        "which",
        "about",
        "please",
    }
)


def normalize_query(text: str | None) -> str:
    """NFKC-fold, trim and collapse whitespace. ``None`` becomes an empty string."""
    if not text:
        return ""
    folded = unicodedata.normalize("NFKC", text)
    return _WHITESPACE_RE.sub(" ", folded).strip()


def tokenize(text: str | None, keep_hiragana: bool = False) -> list[str]:
    """Split text into lower-cased script runs, in order of appearance."""
    if not text:
        return []
    tokens = _TOKEN_RE.findall(normalize_query(text).lower())
    if keep_hiragana:
        return tokens
    return [t for t in tokens if not _HIRAGANA_RE.match(t)]


def query_terms(text: str | None, min_length: int = 2) -> list[str]:
    """Tokens usable as search terms: stopwords and short tokens removed, first occurrence kept."""
    terms = [t for t in tokenize(text) if len(t) >= min_length and t not in STOPWORDS and not t.isdigit()]
    return list(dict.fromkeys(terms))
