"""Relevance scoring — BM25, adaptive alpha, hybrid fusion, semantic overlap.

Shared by the intent router (route-level scores) and the memory recall
engine (line-level scores). Everything here is pure arithmetic over
precomputed token statistics.
"""

from __future__ import annotations

import math
import os
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _text_constants import (
    ALPHA_DOMAIN_BONUS,
    ALPHA_LONG_PENALTY,
    ALPHA_MAX,
    ALPHA_MIN,
    ALPHA_NOISE_PENALTY,
    ALPHA_SHORT_BONUS,
    BM25_B,
    BM25_K1,
    BM25_SATURATION,
    DEFAULT_HYBRID_ALPHA,
    DEFAULT_LEXICAL_LAMBDA,
    DEFAULT_NEGATIVE_PENALTY,
    DOMAIN_SIGNAL_KEYWORDS,
    LONG_QUERY_TOKENS,
    NOISE_RATIO_THRESHOLD,
    SHORT_QUERY_TOKENS,
)
from _text_tokenization import jaccard

__all__ = [
    "ScoreWeights", "RouteSignals",
    "clamp", "bm25_idf", "bm25_score", "saturate_bm25",
    "adaptive_alpha", "hybrid_score", "semantic_overlap",
]


def clamp(value: float, low: float, high: float) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class ScoreWeights:
    """Global fusion weights; per-route alpha overrides take precedence."""

    hybrid_alpha: float = DEFAULT_HYBRID_ALPHA
    lexical_lambda: float = DEFAULT_LEXICAL_LAMBDA
    negative_penalty: float = DEFAULT_NEGATIVE_PENALTY
    bm25_k1: float = BM25_K1
    bm25_b: float = BM25_B


@dataclass(frozen=True)
class RouteSignals:
    """The four independent signals for one (query, route) pair, each in [0, 1]."""

    word_cosine: float
    bm25: float
    char_cosine: float
    negative_word: float = 0.0
    negative_char: float = 0.0


# ---------------------------------------------------------------------------
# BM25
# ---------------------------------------------------------------------------

def bm25_idf(total_docs: int, doc_freq: int) -> float:
    return math.log(1 + (total_docs - doc_freq + 0.5) / (doc_freq + 0.5))


def bm25_score(
    query_terms: Iterable[str],
    doc_tf: Mapping[str, int],
    doc_length: int,
    avg_doc_length: float,
    total_docs: int,
    doc_freq: Mapping[str, int],
    k1: float = BM25_K1,
    b: float = BM25_B,
) -> float:
    """Okapi BM25 of one document for a query (raw, unbounded)."""
    if total_docs <= 0:
        return 0.0
    avg_len = avg_doc_length if avg_doc_length > 0 else 1.0
    length = max(1, doc_length)
    score = 0.0
    for term in query_terms:
        tf = doc_tf.get(term, 0)
        if tf <= 0:
            continue
        idf = bm25_idf(total_docs, doc_freq.get(term, 0))
        denominator = tf + k1 * (1 - b + b * (length / avg_len))
        if denominator > 0:
            score += idf * (tf * (k1 + 1)) / denominator
    return score


def saturate_bm25(raw: float) -> float:
    """Map a raw BM25 score into [0, 1) as ``1 - e^(-raw / 6)``."""
    if raw <= 0:
        return 0.0
    return 1.0 - math.exp(-raw / BM25_SATURATION)


# ---------------------------------------------------------------------------
# Hybrid fusion
# ---------------------------------------------------------------------------

def adaptive_alpha(
    base_alpha: float,
    token_count: int,
    normalized_text: str,
    noise: float,
    domain_keywords: frozenset[str] = DOMAIN_SIGNAL_KEYWORDS,
) -> float:
    """Shift the word/char blend for the shape of one query.

    Short queries and domain vocabulary lean on word space; long or noisy
    text leans on character trigrams.
    """
    alpha = base_alpha
    if token_count <= SHORT_QUERY_TOKENS:
        alpha += ALPHA_SHORT_BONUS
    if domain_keywords and any(word in domain_keywords for word in normalized_text.split()):
        alpha += ALPHA_DOMAIN_BONUS
    if token_count >= LONG_QUERY_TOKENS:
        alpha -= ALPHA_LONG_PENALTY
    if noise >= NOISE_RATIO_THRESHOLD:
        alpha -= ALPHA_NOISE_PENALTY
    return clamp(alpha, ALPHA_MIN, ALPHA_MAX)


def hybrid_score(
    signals: RouteSignals,
    alpha: float,
    boost: float = 0.0,
    lexical_lambda: float = DEFAULT_LEXICAL_LAMBDA,
    negative_penalty: float = DEFAULT_NEGATIVE_PENALTY,
) -> float:
    """Fuse the four signals into one score clamped to [0, 1]."""
    lexical = (1 - lexical_lambda) * signals.word_cosine + lexical_lambda * signals.bm25
    negative = alpha * signals.negative_word + (1 - alpha) * signals.negative_char
    score = alpha * lexical + (1 - alpha) * signals.char_cosine + boost - negative_penalty * negative
    return clamp(score, 0.0, 1.0)


def semantic_overlap(
    query_tokens: set[str],
    query_ngrams: set[str],
    doc_tokens: set[str],
    doc_ngrams: set[str],
) -> float:
    """Lexical stand-in for semantic similarity: 0.65 token + 0.35 char-ngram Jaccard."""
    return 0.65 * jaccard(query_tokens, doc_tokens) + 0.35 * jaccard(query_ngrams, doc_ngrams)
