"""Recall engine reranking — dedup, deterministic sort, MMR diversity, character budget."""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Sequence

from _recall_constants import (
    DEFAULT_MMR_LAMBDA,
    MMR_POOL_MULTIPLIER,
    MMR_RESULT_MULTIPLIER,
    TIMESTAMP_PREFIX_RE,
)
from _recall_scoring import Candidate, snippet_token_set, truncate_with_marker
from _text_tokenization import jaccard, normalize

__all__ = [
    "sort_key", "dedupe_candidates", "collapse_repeated_content",
    "mmr_rerank", "apply_char_budget", "finalize_candidates",
]


def sort_key(candidate: Candidate) -> tuple:
    """Score desc, then path, then line."""
    return (-candidate.score, candidate.path, candidate.line)


def dedupe_candidates(candidates: Sequence[Candidate]) -> list[Candidate]:
    """Keep the best-scoring candidate per ``(path, line, normalized_snippet)``."""
    best: dict[tuple, Candidate] = {}
    for candidate in candidates:
        key = (candidate.path, candidate.line, candidate.normalized_snippet)
        existing = best.get(key)
        if existing is None or candidate.score > existing.score:
            best[key] = candidate
    return list(best.values())


def _content_key(candidate: Candidate) -> str:
    body = TIMESTAMP_PREFIX_RE.sub("", candidate.normalized_snippet)
    return " ".join(body.split())


def collapse_repeated_content(sorted_candidates: Sequence[Candidate]) -> list[Candidate]:
    """Drop lines repeating an earlier line's text once the timestamp prefix is removed.

    Input must already be in ``sort_key`` order so the survivor is the best
    scored (ties: first by path, then line).
    """
    seen: set[str] = set()
    kept: list[Candidate] = []
    for candidate in sorted_candidates:
        key = _content_key(candidate)
        if key in seen:
            continue
        seen.add(key)
        kept.append(candidate)
    return kept


def mmr_rerank(
    sorted_candidates: Sequence[Candidate],
    limit: int,
    mmr_lambda: float = DEFAULT_MMR_LAMBDA,
) -> list[Candidate]:
    """Maximal Marginal Relevance over the top of a score-sorted list.

    A pool of ``max(limit, 4 * limit)`` candidates is reranked by
    ``lambda * relevance - (1 - lambda) * max_jaccard_to_selected`` until
    ``max(limit, 2 * limit)`` are picked; the rest of the pool follows in
    score order, then everything past the pool unchanged.
    """
    hits = list(sorted_candidates)
    if len(hits) <= 1 or limit <= 1:
        return hits

    pool_size = min(len(hits), max(limit, limit * MMR_POOL_MULTIPLIER))
    target = min(pool_size, max(limit, limit * MMR_RESULT_MULTIPLIER))
    pool = hits[:pool_size]
    max_score = max(c.score for c in pool)
    min_score = min(c.score for c in pool)
    spread = max_score - min_score

    def relevance(score: float) -> float:
        if not math.isfinite(score):
            return 0.0
        if spread <= 0:
            return 1.0
        return (score - min_score) / spread

    remaining = list(range(pool_size))
    selected: list[int] = []
    while len(selected) < target and remaining:
        best_idx = None
        best_mmr = -math.inf
        best_raw = -math.inf
        for idx in remaining:
            candidate = pool[idx]
            max_similarity = max(
                (jaccard(candidate.token_set, pool[s].token_set) for s in selected),
                default=0.0,
            )
            mmr = mmr_lambda * relevance(candidate.score) - (1 - mmr_lambda) * max_similarity
            if mmr > best_mmr or (mmr == best_mmr and candidate.score > best_raw):
                best_idx, best_mmr, best_raw = idx, mmr, candidate.score
        if best_idx is None:
            break
        selected.append(best_idx)
        remaining.remove(best_idx)

    rest = sorted((pool[i] for i in remaining), key=sort_key)
    return [pool[i] for i in selected] + rest + hits[pool_size:]


def apply_char_budget(candidates: Sequence[Candidate], max_chars: int | None) -> list[Candidate]:
    """Keep whole snippets while they fit; truncate the first that overflows, drop the rest.

    A snippet is only cut when the remaining budget can hold the truncation
    marker plus at least one character.
    """
    if max_chars is None or max_chars <= 0:
        return list(candidates)
    remaining = int(max_chars)
    kept: list[Candidate] = []
    for candidate in candidates:
        if remaining <= 0:
            break
        if len(candidate.snippet) <= remaining:
            kept.append(candidate)
            remaining -= len(candidate.snippet)
            continue
        snippet, _ = truncate_with_marker(candidate.snippet, remaining)
        if snippet.strip():
            kept.append(dataclasses.replace(
                candidate,
                snippet=snippet,
                normalized_snippet=normalize(snippet),
                token_set=snippet_token_set(snippet),
            ))
        break
    return kept


def finalize_candidates(
    candidates: Sequence[Candidate],
    limit: int,
    max_injected_chars: int | None = None,
    mmr_lambda: float = DEFAULT_MMR_LAMBDA,
) -> list[Candidate]:
    """Dedup -> sort -> collapse repeats -> MMR -> budget -> limit."""
    if not candidates:
        return []
    ordered = sorted(dedupe_candidates(candidates), key=sort_key)
    ordered = collapse_repeated_content(ordered)
    reranked = mmr_rerank(ordered, limit, mmr_lambda)
    budgeted = apply_char_budget(reranked, max_injected_chars)
    return budgeted[:limit]
