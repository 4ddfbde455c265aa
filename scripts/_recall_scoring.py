"""Recall engine scoring — scan heuristic, BM25 + semantic-overlap hybrid, snippets."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from _recall_constants import (
    BM25_WEIGHT,
    CHAT_PATH_RE,
    CONTINUITY_FILE,
    CONTINUITY_PATH_BONUS,
    DEFAULT_HALF_LIFE_DAYS,
    EXACT_QUERY_BONUS,
    EXACT_QUERY_MIN_CHARS,
    FULL_COVERAGE_BONUS,
    LONG_TERM_BONUS,
    LONG_TERM_CHARS,
    LONG_TERM_FILE,
    LONG_TERM_PATH_BONUS,
    META_CHAT_BONUS,
    PATH_CHAT_BONUS,
    SEMANTIC_MIN_SCORE,
    SEMANTIC_WEIGHT,
    SHORT_TERM_BONUS,
)
from _recall_corpus import RECALL_TOKENIZER, IndexedLine
from _recall_temporal import temporal_multiplier
from _text_constants import TRUNCATION_MARKER
from _text_tokenization import char_ngram_set, normalize
from relevance_scorer import bm25_score, semantic_overlap

__all__ = [
    "Candidate",
    "query_terms", "truncate_with_marker", "snippet_token_set",
    "metadata_chat_id", "path_chat_id",
    "scan_score", "make_candidate",
    "score_scan", "score_hybrid",
]


@dataclass
class Candidate:
    """A scored memory line ready for dedup, rerank and budgeting."""

    path: str
    line: int
    snippet: str
    score: float
    normalized_snippet: str
    token_set: frozenset[str]


def query_terms(query: str) -> list[str]:
    """Distinct query tokens and stems, in first-seen order."""
    return list(dict.fromkeys(RECALL_TOKENIZER.tokenize(query)))


def truncate_with_marker(text: str, max_chars: int) -> tuple[str, bool]:
    """Cut ``text`` to ``max_chars`` including the truncation marker.

    Returns ``("", True)`` when not even the marker fits.
    """
    if len(text) <= max_chars:
        return text, False
    usable = max_chars - len(TRUNCATION_MARKER)
    if usable <= 0:
        return "", True
    return text[:usable] + TRUNCATION_MARKER, True


def snippet_token_set(snippet: str) -> frozenset[str]:
    return frozenset(RECALL_TOKENIZER.surface_tokens(snippet))


def metadata_chat_id(metadata: dict | None) -> int | None:
    if not metadata:
        return None
    raw = metadata.get("chatId")
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


def path_chat_id(rel_path: str) -> int | None:
    match = CHAT_PATH_RE.search(rel_path.replace("\\", "/"))
    return int(match.group(1)) if match else None


def scan_score(
    line: IndexedLine,
    raw_query: str,
    terms: Sequence[str],
    chat_id: int | None = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """Heuristic line score: exact match, term hits, coverage, path and chat bonuses, decay."""
    normalized_query = normalize(raw_query.strip())
    if not line.normalized or not normalized_query:
        return 0.0

    score = 0.0
    if len(normalized_query) >= EXACT_QUERY_MIN_CHARS and normalized_query in line.normalized:
        score += EXACT_QUERY_BONUS

    matched = 0
    for term in terms:
        if len(term) < 2 or term not in line.normalized:
            continue
        matched += 1
        score += LONG_TERM_BONUS if len(term) >= LONG_TERM_CHARS else SHORT_TERM_BONUS
    if matched == 0 and score == 0:
        return 0.0
    if matched and matched == len(terms):
        score += FULL_COVERAGE_BONUS

    lowered_path = line.path.lower()
    if lowered_path.endswith(CONTINUITY_FILE.lower()):
        score += CONTINUITY_PATH_BONUS
    if lowered_path == LONG_TERM_FILE.lower():
        score += LONG_TERM_PATH_BONUS

    if chat_id is not None:
        if metadata_chat_id(line.metadata) == chat_id:
            score += META_CHAT_BONUS
        elif path_chat_id(line.path) == chat_id:
            score += PATH_CHAT_BONUS

    return score * temporal_multiplier(line.age_days, half_life_days)


def make_candidate(line: IndexedLine, score: float, snippet_max_chars: int) -> Candidate:
    snippet, _ = truncate_with_marker(line.content, snippet_max_chars)
    return Candidate(
        path=line.path,
        line=line.line,
        snippet=snippet,
        score=score,
        normalized_snippet=normalize(snippet),
        token_set=snippet_token_set(snippet),
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

def score_scan(
    query: str,
    lines: Sequence[IndexedLine],
    chat_id: int | None,
    snippet_max_chars: int,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> list[Candidate]:
    terms = query_terms(query)
    hits = []
    for line in lines:
        score = scan_score(line, query, terms, chat_id, half_life_days)
        if score > 0:
            hits.append(make_candidate(line, score, snippet_max_chars))
    return hits


def score_hybrid(
    query: str,
    lines: Sequence[IndexedLine],
    chat_id: int | None,
    snippet_max_chars: int,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> list[Candidate]:
    """Scan score + 3 x BM25 + 3.2 x semantic overlap (only above the 0.28 floor).

    A query with no word tokens gets no semantic term, so token-less lines
    cannot match it through the empty-set Jaccard.
    """
    if not lines:
        return []
    terms = query_terms(query)
    query_tokens = set(terms)
    query_ngrams = char_ngram_set(query)
    total_docs = len(lines)
    avg_length = sum(max(1, len(line.tokens)) for line in lines) / total_docs
    doc_freq = {term: sum(1 for line in lines if term in line.token_set) for term in terms}

    hits = []
    for line in lines:
        base = scan_score(line, query, terms, chat_id, half_life_days)
        bm25 = bm25_score(
            terms, line.token_freq, max(1, len(line.tokens)), avg_length, total_docs, doc_freq,
        )
        semantic = 0.0
        if query_tokens:
            semantic = semantic_overlap(query_tokens, query_ngrams, set(line.token_set), char_ngram_set(line.normalized))
        boost = semantic * SEMANTIC_WEIGHT if semantic >= SEMANTIC_MIN_SCORE else 0.0
        score = base + bm25 * BM25_WEIGHT + boost
        if score <= 0:
            continue
        if base <= 0 and bm25 <= 0 and semantic < SEMANTIC_MIN_SCORE:
            continue
        hits.append(make_candidate(line, score, snippet_max_chars))
    return hits
