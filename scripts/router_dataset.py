#!/usr/bin/env python3
"""houdi-relevance router dataset — labeled interactions, stats, curation.

The orchestrator appends one JSON object per routed message to a JSONL file::

    {"ts": "...", "chatId": 1, "text": "enviar correo a ana",
     "semantic": {"handler": "gmail", "score": 0.41, ...},
     "finalHandler": "gmail"}

This module reads those files back as labeled samples for calibration, derives
per-route precision and threshold suggestions, and proposes new utterances
from routing misses.
"""

from __future__ import annotations

import json
import os
import sys
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from filelock import FileLock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _text_tokenization import compact
from observability import get_logger
from threshold_search import quantile

_log = get_logger("router_dataset")

MAX_READ_ENTRIES = 20_000
CURATION_MIN_CHARS = 8
CURATION_MAX_CHARS = 160
MIN_TRUE_POSITIVES = 8
MIN_FALSE_POSITIVES = 5

__all__ = [
    "LabeledSample", "CurationSuggestion",
    "coerce_sample", "coerce_samples",
    "read_labeled_jsonl", "read_dataset_entries", "append_dataset_entry",
    "quantile", "suggest_threshold", "summarize_route_stats",
    "build_curation_suggestions",
]


@dataclass(frozen=True)
class LabeledSample:
    """One ``{text, expectedRoute}`` pair."""

    text: str
    expected_route: str


@dataclass
class CurationSuggestion:
    route: str
    utterances: list[str]
    evidence: int


def coerce_sample(value) -> LabeledSample | None:
    """Accept a LabeledSample, a ``(text, route)`` pair or a dataset row dict."""
    if isinstance(value, LabeledSample):
        return value
    if isinstance(value, Mapping):
        text = value.get("text")
        route = value.get("finalHandler", value.get("expectedRoute"))
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        text, route = value
    else:
        return None
    if not isinstance(text, str) or not text.strip():
        return None
    if not isinstance(route, str) or not route.strip():
        return None
    return LabeledSample(text=text, expected_route=route.strip())


def coerce_samples(values: Iterable) -> list[LabeledSample]:
    return [s for s in (coerce_sample(v) for v in values) if s is not None]


# ---------------------------------------------------------------------------
# JSONL I/O
# ---------------------------------------------------------------------------

def read_dataset_entries(path: str, limit: int = MAX_READ_ENTRIES) -> list[dict]:
    """Return the last ``limit`` well-formed JSON object rows of a JSONL file.

    A missing file is an empty dataset; malformed lines are skipped.
    """
    try:
        with open(path, encoding="utf-8") as f:
            lines = [line.strip() for line in f if line.strip()]
    except FileNotFoundError:
        return []
    limit = max(1, min(MAX_READ_ENTRIES, int(limit)))
    entries: list[dict] = []
    skipped = 0
    for line in lines[-limit:]:
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get("text"), str):
            entries.append(parsed)
        else:
            skipped += 1
    if skipped:
        _log.debug("dataset_lines_skipped", path=path, skipped=skipped)
    return entries


def read_labeled_jsonl(path: str) -> list[LabeledSample]:
    """Rows with both ``text`` and ``finalHandler`` as labeled samples."""
    return [
        LabeledSample(text=row["text"], expected_route=str(row["finalHandler"]))
        for row in read_dataset_entries(path)
        if row.get("text") and row.get("finalHandler")
    ]


def append_dataset_entry(path: str, entry: Mapping) -> None:
    """Append one JSON row under a file lock."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    line = json.dumps(dict(entry), ensure_ascii=False, default=str)
    with FileLock(path + ".lock", timeout=10):
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


# ---------------------------------------------------------------------------
# Threshold suggestions
# ---------------------------------------------------------------------------

def suggest_threshold(
    current: float,
    true_positive_scores: list[float],
    false_positive_scores: list[float],
) -> float | None:
    """Suggest a new threshold from observed TP/FP scores, or None to keep it.

    With few false positives the threshold only moves up, conservatively.
    Otherwise it sits midway between the FP 80th and TP 20th percentiles when
    those separate, and just under the TP 20th percentile when they overlap.
    """
    if len(true_positive_scores) < MIN_TRUE_POSITIVES:
        return None
    low_tp = quantile(true_positive_scores, 0.2)
    if len(false_positive_scores) < MIN_FALSE_POSITIVES:
        candidate = max(current, low_tp - 0.01)
    else:
        high_fp = quantile(false_positive_scores, 0.8)
        candidate = (high_fp + low_tp) / 2 if high_fp < low_tp else low_tp - 0.01
    rounded = round(max(0.05, min(0.95, candidate)), 3)
    return rounded if abs(rounded - current) >= 0.01 else None


def summarize_route_stats(entries: Iterable[Mapping], thresholds: Mapping[str, float]) -> list[dict]:
    """Per-route selection counts, precision, average score and suggested threshold."""
    stats = {name: {"selected": 0, "hit": 0, "tp": [], "fp": [], "score_sum": 0.0} for name in thresholds}
    for entry in entries:
        semantic = entry.get("semantic")
        if not isinstance(semantic, Mapping):
            continue
        bucket = stats.get(semantic.get("handler"))
        score = semantic.get("score")
        if bucket is None or not isinstance(score, (int, float)):
            continue
        bucket["selected"] += 1
        bucket["score_sum"] += score
        if entry.get("finalHandler") == semantic.get("handler"):
            bucket["hit"] += 1
            bucket["tp"].append(float(score))
        else:
            bucket["fp"].append(float(score))

    report = []
    for name, threshold in thresholds.items():
        bucket = stats[name]
        selected = bucket["selected"]
        report.append({
            "route": name,
            "selected": selected,
            "hit": bucket["hit"],
            "falsePositive": len(bucket["fp"]),
            "precision": bucket["hit"] / selected if selected else 0.0,
            "avgScore": bucket["score_sum"] / selected if selected else 0.0,
            "threshold": threshold,
            "suggested": suggest_threshold(threshold, bucket["tp"], bucket["fp"]),
        })
    return report


# ---------------------------------------------------------------------------
# Curation
# ---------------------------------------------------------------------------

def build_curation_suggestions(
    entries: Iterable[Mapping],
    route_names: Iterable[str],
    max_per_route: int = 5,
) -> list[CurationSuggestion]:
    """Propose utterances from messages the router sent to the wrong handler.

    Phrases are grouped by the route that finally handled them, ranked by how
    often they occurred; suggestions are ordered by total evidence.
    """
    known = set(route_names)
    by_route: dict[str, Counter] = {}
    for entry in entries:
        semantic = entry.get("semantic")
        final = entry.get("finalHandler")
        if not isinstance(semantic, Mapping) or final not in known:
            continue
        if semantic.get("handler") == final:
            continue
        phrase = compact(str(entry.get("text", "")))
        if not CURATION_MIN_CHARS <= len(phrase) <= CURATION_MAX_CHARS:
            continue
        by_route.setdefault(final, Counter())[phrase] += 1

    suggestions = []
    for route, phrases in by_route.items():
        # Counter.most_common keeps first-seen order among equal counts.
        ranked = phrases.most_common(max(1, int(max_per_route)))
        suggestions.append(CurationSuggestion(
            route=route,
            utterances=[phrase for phrase, _ in ranked],
            evidence=sum(count for _, count in ranked),
        ))
    suggestions.sort(key=lambda s: s.evidence, reverse=True)
    return suggestions
