"""Sparse TF-IDF vectors and per-route centroids.

Vectors are plain ``dict[str, float]`` maps. IDF uses the smoothed form
``ln((1 + N) / (1 + df)) + 1``; terms never seen during training weigh 1.0.
There is no incremental update: every route-set change rebuilds the tables
and centroids from scratch.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

__all__ = [
    "SparseVector", "IdfTable", "RouteCentroid",
    "term_frequency", "mean_vector", "cosine",
]

SparseVector = dict[str, float]

UNSEEN_TERM_IDF = 1.0


def term_frequency(terms: Iterable[str]) -> Counter:
    return Counter(t for t in terms if t)


@dataclass
class IdfTable:
    """Smoothed inverse document frequencies for one term space."""

    idf: dict[str, float] = field(default_factory=dict)
    total_docs: int = 0

    @classmethod
    def from_documents(cls, documents: Sequence[Iterable[str]]) -> IdfTable:
        doc_freq: Counter = Counter()
        for terms in documents:
            doc_freq.update(set(terms))
        total = max(1, len(documents))
        idf = {term: math.log((1 + total) / (1 + df)) + 1 for term, df in doc_freq.items()}
        return cls(idf=idf, total_docs=len(documents))

    def weight(self, term: str) -> float:
        return self.idf.get(term, UNSEEN_TERM_IDF)

    def vectorize(self, terms: Iterable[str]) -> SparseVector:
        """termFrequency(doc) * idf(term) for every term of the document."""
        return {term: tf * self.weight(term) for term, tf in term_frequency(terms).items()}


def mean_vector(vectors: Sequence[SparseVector]) -> SparseVector:
    """Arithmetic mean of sparse vectors (empty input -> empty vector)."""
    if not vectors:
        return {}
    merged: dict[str, float] = {}
    for vector in vectors:
        for term, value in vector.items():
            merged[term] = merged.get(term, 0.0) + value
    count = len(vectors)
    return {term: value / count for term, value in merged.items()}


def cosine(a: SparseVector, b: SparseVector) -> float:
    """Cosine similarity of two sparse vectors; 0.0 when either is empty."""
    if not a or not b:
        return 0.0
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    small, large = (a, b) if len(a) <= len(b) else (b, a)
    dot = sum(value * large[term] for term, value in small.items() if term in large)
    # Non-negative weights keep this in [0, 1]; min() absorbs float drift.
    return min(1.0, max(0.0, dot / (norm_a * norm_b)))


@dataclass
class RouteCentroid:
    """Mean vectors for one route: positives and negatives, word and char space."""

    word: SparseVector = field(default_factory=dict)
    char: SparseVector = field(default_factory=dict)
    negative_word: SparseVector = field(default_factory=dict)
    negative_char: SparseVector = field(default_factory=dict)
