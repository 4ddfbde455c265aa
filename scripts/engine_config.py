#!/usr/bin/env python3
"""houdi-relevance engine configuration — houdi-relevance.json loader.

Configuration (houdi-relevance.json, optional):
    {
      "router": {
        "routes_file": "state/intent-routes.json",
        "hybrid_alpha": 0.72,
        "min_score_gap": 0.03,
        "cache_ttl_seconds": 300
      },
      "recall": {
        "backend": "hybrid",
        "max_results": 6,
        "snippet_max_chars": 320,
        "max_injected_chars": 2200,
        "half_life_days": 21
      }
    }

Unknown keys are logged and ignored. Out-of-range numbers are clamped.
A missing or unreadable file yields the defaults.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _recall_constants import (
    BACKEND_HYBRID,
    DEFAULT_HALF_LIFE_DAYS,
    DEFAULT_MAX_INJECTED_CHARS,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MMR_LAMBDA,
    DEFAULT_SNIPPET_MAX_CHARS,
    INJECTED_MAX,
    INJECTED_MIN,
    MAX_RESULTS_MAX,
    MAX_RESULTS_MIN,
    SEARCH_RECENT_CHAT_FILES,
    SEARCH_RECENT_GLOBAL_FILES,
    SNIPPET_MAX,
    SNIPPET_MIN,
    VALID_BACKENDS,
)
from _text_constants import (
    ALPHA_MAX,
    ALPHA_MIN,
    BM25_B,
    BM25_K1,
    DEFAULT_HYBRID_ALPHA,
    DEFAULT_LEXICAL_LAMBDA,
    DEFAULT_MIN_SCORE_GAP,
    DEFAULT_NEGATIVE_PENALTY,
)
from decision_cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from observability import get_logger
from relevance_scorer import ScoreWeights

_log = get_logger("engine_config")

CONFIG_FILE = "houdi-relevance.json"
DEFAULT_ROUTES_FILE = "state/intent-routes.json"

_VALID_ROUTER_KEYS = {
    "routes_file", "hybrid_alpha", "min_score_gap", "bm25_k1", "bm25_b",
    "lexical_lambda", "negative_penalty", "cache_ttl_seconds", "cache_max_entries",
}
_VALID_RECALL_KEYS = {
    "backend", "max_results", "snippet_max_chars", "max_injected_chars",
    "half_life_days", "mmr_lambda", "recent_global_files", "recent_chat_files",
}
_VALID_SECTIONS = {"router", "recall"}


@dataclass
class RouterSettings:
    routes_file: str = DEFAULT_ROUTES_FILE
    hybrid_alpha: float = DEFAULT_HYBRID_ALPHA
    min_score_gap: float = DEFAULT_MIN_SCORE_GAP
    bm25_k1: float = BM25_K1
    bm25_b: float = BM25_B
    lexical_lambda: float = DEFAULT_LEXICAL_LAMBDA
    negative_penalty: float = DEFAULT_NEGATIVE_PENALTY
    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    cache_max_entries: int = DEFAULT_MAX_ENTRIES

    def score_weights(self) -> ScoreWeights:
        return ScoreWeights(
            hybrid_alpha=self.hybrid_alpha,
            lexical_lambda=self.lexical_lambda,
            negative_penalty=self.negative_penalty,
            bm25_k1=self.bm25_k1,
            bm25_b=self.bm25_b,
        )


@dataclass
class RecallSettings:
    backend: str = BACKEND_HYBRID
    max_results: int = DEFAULT_MAX_RESULTS
    snippet_max_chars: int = DEFAULT_SNIPPET_MAX_CHARS
    max_injected_chars: int = DEFAULT_MAX_INJECTED_CHARS
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS
    mmr_lambda: float = DEFAULT_MMR_LAMBDA
    recent_global_files: int = SEARCH_RECENT_GLOBAL_FILES
    recent_chat_files: int = SEARCH_RECENT_CHAT_FILES


@dataclass
class EngineConfig:
    router: RouterSettings = field(default_factory=RouterSettings)
    recall: RecallSettings = field(default_factory=RecallSettings)
    workspace: str = "."

    def routes_path(self) -> str:
        if os.path.isabs(self.router.routes_file):
            return self.router.routes_file
        return os.path.join(self.workspace, self.router.routes_file)


def _number(section: dict, key: str, default, low, high, cast=float):
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        if key in section:
            _log.warning("config_value_invalid", key=key, value=raw)
        return default
    return cast(max(low, min(high, raw)))


def parse_router_settings(section: dict) -> RouterSettings:
    unknown = set(section) - _VALID_ROUTER_KEYS
    if unknown:
        _log.warning("unknown_router_config_keys", keys=sorted(unknown))
    routes_file = section.get("routes_file", DEFAULT_ROUTES_FILE)
    if not isinstance(routes_file, str) or not routes_file.strip():
        routes_file = DEFAULT_ROUTES_FILE
    return RouterSettings(
        routes_file=routes_file,
        hybrid_alpha=_number(section, "hybrid_alpha", DEFAULT_HYBRID_ALPHA, ALPHA_MIN, ALPHA_MAX),
        min_score_gap=_number(section, "min_score_gap", DEFAULT_MIN_SCORE_GAP, 0.0, 0.5),
        bm25_k1=_number(section, "bm25_k1", BM25_K1, 0.5, 3.0),
        bm25_b=_number(section, "bm25_b", BM25_B, 0.0, 1.0),
        lexical_lambda=_number(section, "lexical_lambda", DEFAULT_LEXICAL_LAMBDA, 0.0, 1.0),
        negative_penalty=_number(section, "negative_penalty", DEFAULT_NEGATIVE_PENALTY, 0.0, 1.0),
        cache_ttl_seconds=_number(section, "cache_ttl_seconds", DEFAULT_TTL_SECONDS, 0.0, 3600.0),
        cache_max_entries=_number(section, "cache_max_entries", DEFAULT_MAX_ENTRIES, 1, 10_000, int),
    )


def parse_recall_settings(section: dict) -> RecallSettings:
    unknown = set(section) - _VALID_RECALL_KEYS
    if unknown:
        _log.warning("unknown_recall_config_keys", keys=sorted(unknown))
    backend = section.get("backend", BACKEND_HYBRID)
    if backend not in VALID_BACKENDS:
        _log.warning("config_value_invalid", key="backend", value=backend)
        backend = BACKEND_HYBRID
    return RecallSettings(
        backend=backend,
        max_results=_number(section, "max_results", DEFAULT_MAX_RESULTS,
                            MAX_RESULTS_MIN, MAX_RESULTS_MAX, int),
        snippet_max_chars=_number(section, "snippet_max_chars", DEFAULT_SNIPPET_MAX_CHARS,
                                  SNIPPET_MIN, SNIPPET_MAX, int),
        max_injected_chars=_number(section, "max_injected_chars", DEFAULT_MAX_INJECTED_CHARS,
                                   INJECTED_MIN, INJECTED_MAX, int),
        half_life_days=_number(section, "half_life_days", DEFAULT_HALF_LIFE_DAYS, 1.0, 365.0),
        mmr_lambda=_number(section, "mmr_lambda", DEFAULT_MMR_LAMBDA, 0.0, 1.0),
        recent_global_files=_number(section, "recent_global_files", SEARCH_RECENT_GLOBAL_FILES, 1, 365, int),
        recent_chat_files=_number(section, "recent_chat_files", SEARCH_RECENT_CHAT_FILES, 1, 365, int),
    )


def load_engine_config(workspace: str) -> EngineConfig:
    """Load ``houdi-relevance.json`` from the workspace, defaults when absent."""
    workspace = os.path.abspath(workspace)
    config = EngineConfig(workspace=workspace)
    config_path = os.path.join(workspace, CONFIG_FILE)
    if not os.path.isfile(config_path):
        return config
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        _log.warning("config_load_failed", path=config_path, error=str(e))
        return config
    if not isinstance(raw, dict):
        _log.warning("config_load_failed", path=config_path, error="top level must be an object")
        return config

    unknown = set(raw) - _VALID_SECTIONS
    if unknown:
        _log.warning("unknown_config_sections", keys=sorted(unknown))
    router_section = raw.get("router", {})
    recall_section = raw.get("recall", {})
    if isinstance(router_section, dict):
        config.router = parse_router_settings(router_section)
    if isinstance(recall_section, dict):
        config.recall = parse_recall_settings(recall_section)
    return config
