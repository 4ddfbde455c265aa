#!/usr/bin/env python3
"""houdi-relevance Semantic Router — hybrid TF-IDF/BM25/char-trigram intent routing.

Classifies free-form text into one of a small set of named routes. Each route
is trained from example utterances (and optional negative examples); a query
is scored against every allowed route with four signals (word cosine, BM25,
char-trigram cosine, negative-centroid penalty) fused by an adaptive alpha.

The top route is accepted only when it clears its own threshold and beats the
runner-up by ``min_gap``; otherwise the router abstains (returns None).
Decisions, including abstentions, are memoized in a per-instance TTL cache.

Offline maintenance:
    fit_thresholds_from_dataset  — coordinate descent + jitter over thresholds
    augment_negatives_from_dataset — mine misroutes as negative examples

Usage:
    router = SemanticRouter()
    decision = router.route("enviame un correo a ana@example.com")
    if decision:
        print(decision.handler, decision.score)
"""

from __future__ import annotations

import dataclasses
import os
import sys
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _text_constants import DEFAULT_MIN_SCORE_GAP
from _text_tokenization import (
    DEFAULT_TOKENIZER,
    Tokenizer,
    compact,
    noise_ratio,
    with_bigrams,
    with_char_trigrams,
)
from decision_cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS, DecisionCache
from observability import get_logger, metrics, timed
from relevance_scorer import (
    RouteSignals,
    ScoreWeights,
    adaptive_alpha,
    bm25_score,
    hybrid_score,
    saturate_bm25,
)
from router_config import (
    KNOWN_ROUTE_NAMES,
    Route,
    RouterConfig,
    RouterConfigError,
    clamp_alpha,
    clamp_threshold,
    default_routes,
    load_router_config,
    save_router_config,
)
from router_dataset import LabeledSample, coerce_samples
from threshold_search import DEFAULT_JITTER_TRIALS, candidate_thresholds, optimize_thresholds
from vector_builder import IdfTable, RouteCentroid, SparseVector, cosine, mean_vector

_log = get_logger("semantic_router")

MIN_QUERY_CHARS = 3
DEFAULT_TOP_K = 3
MAX_TOP_K = 10
MIN_CALIBRATION_SAMPLES = 25
DEFAULT_NEGATIVES_PER_ROUTE = 20
NEGATIVE_MIN_CHARS = 6
NEGATIVE_MAX_CHARS = 220


@dataclass(frozen=True)
class RouteScore:
    name: str
    score: float


@dataclass(frozen=True)
class Decision:
    """An accepted routing decision."""

    handler: str
    score: float
    reason: str
    alternatives: tuple[RouteScore, ...] = ()

    def to_dict(self) -> dict:
        return {
            "handler": self.handler,
            "score": round(self.score, 4),
            "reason": self.reason,
            "alternatives": [{"name": a.name, "score": round(a.score, 4)} for a in self.alternatives],
        }


@dataclass
class CalibrationReport:
    total_labeled: int
    before_accuracy: float
    after_accuracy: float
    improved: bool
    before_thresholds: dict[str, float] = field(default_factory=dict)
    after_thresholds: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalLabeled": self.total_labeled,
            "beforeAccuracy": self.before_accuracy,
            "afterAccuracy": self.after_accuracy,
            "improved": self.improved,
            "beforeThresholds": dict(self.before_thresholds),
            "afterThresholds": dict(self.after_thresholds),
        }


@dataclass
class _TrainingDoc:
    tf: Counter
    length: int


@dataclass
class _QueryFeatures:
    normalized: str
    word_terms: list[str]
    word_vector: SparseVector
    char_vector: SparseVector
    token_count: int
    noise: float


class SemanticRouter:
    """Hybrid lexical intent router over a fixed route set.

    All training state and the decision cache live on the instance; two
    routers never share state. Any change to the route set retrains from
    scratch and clears the cache.
    """

    def __init__(
        self,
        routes: Iterable[Route] | None = None,
        weights: ScoreWeights | None = None,
        min_score_gap: float = DEFAULT_MIN_SCORE_GAP,
        known_route_names: Iterable[str] = KNOWN_ROUTE_NAMES,
        tokenizer: Tokenizer = DEFAULT_TOKENIZER,
        cache_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        cache_max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.routes: list[Route] = list(routes) if routes is not None else default_routes()
        self.weights = weights or ScoreWeights()
        self.min_score_gap = max(0.0, float(min_score_gap))
        self.known_route_names = frozenset(known_route_names)
        self.tokenizer = tokenizer
        self._cache = DecisionCache(cache_ttl_seconds, cache_max_entries, clock)
        self._word_idf = IdfTable()
        self._char_idf = IdfTable()
        self._centroids: dict[str, RouteCentroid] = {}
        self._docs_by_route: dict[str, list[_TrainingDoc]] = {}
        self._doc_freq: Counter = Counter()
        self._avg_doc_length = 0.0
        self._total_docs = 0
        self.train()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _word_terms(self, text: str) -> list[str]:
        """Tokens and stems, plus bigrams of the surface tokens."""
        surface = self.tokenizer.surface_tokens(text)
        terms = self.tokenizer.tokenize(text)
        terms.extend(with_bigrams(surface)[len(surface):])
        return terms

    def train(self) -> None:
        """Rebuild IDF tables, centroids and BM25 statistics from the routes."""
        if not self.routes:
            raise RouterConfigError("router needs at least one route")
        for route in self.routes:
            if not route.utterances:
                raise RouterConfigError(f"route {route.name!r} has no utterances")

        word_docs: list[list[str]] = []
        char_docs: list[list[str]] = []
        owners: list[str] = []
        for route in self.routes:
            for utterance in route.utterances:
                word_docs.append(self._word_terms(utterance))
                char_docs.append(with_char_trigrams(utterance))
                owners.append(route.name)

        self._word_idf = IdfTable.from_documents(word_docs)
        self._char_idf = IdfTable.from_documents(char_docs)

        self._doc_freq = Counter()
        self._docs_by_route = {route.name: [] for route in self.routes}
        for owner, terms in zip(owners, word_docs):
            self._doc_freq.update(set(terms))
            self._docs_by_route[owner].append(_TrainingDoc(tf=Counter(terms), length=len(terms)))
        self._total_docs = len(word_docs)
        self._avg_doc_length = sum(len(t) for t in word_docs) / max(1, len(word_docs))

        self._centroids = {}
        for route in self.routes:
            self._centroids[route.name] = RouteCentroid(
                word=mean_vector([self._word_idf.vectorize(self._word_terms(u)) for u in route.utterances]),
                char=mean_vector([self._char_idf.vectorize(with_char_trigrams(u)) for u in route.utterances]),
                negative_word=mean_vector(
                    [self._word_idf.vectorize(self._word_terms(u)) for u in route.negative_utterances]
                ),
                negative_char=mean_vector(
                    [self._char_idf.vectorize(with_char_trigrams(u)) for u in route.negative_utterances]
                ),
            )
        self._cache.clear()
        _log.info(
            "router_trained",
            routes=len(self.routes),
            utterances=self._total_docs,
            negatives=sum(len(r.negative_utterances) for r in self.routes),
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _features(self, text: str) -> _QueryFeatures | None:
        normalized = compact(text or "")
        if len(normalized) < MIN_QUERY_CHARS:
            return None
        word_terms = self._word_terms(normalized)
        return _QueryFeatures(
            normalized=normalized,
            word_terms=word_terms,
            word_vector=self._word_idf.vectorize(word_terms),
            char_vector=self._char_idf.vectorize(with_char_trigrams(normalized)),
            token_count=len(self.tokenizer.surface_tokens(normalized)),
            noise=noise_ratio(text),
        )

    def _bm25(self, route_name: str, query_terms: list[str]) -> float:
        best = 0.0
        unique_terms = list(dict.fromkeys(query_terms))
        for doc in self._docs_by_route.get(route_name, ()):
            raw = bm25_score(
                unique_terms, doc.tf, doc.length, self._avg_doc_length,
                self._total_docs, self._doc_freq, self.weights.bm25_k1, self.weights.bm25_b,
            )
            best = max(best, raw)
        return saturate_bm25(best)

    def _route_alpha(self, route: Route, alpha_overrides: Mapping[str, float] | None) -> float:
        if alpha_overrides and route.name in alpha_overrides:
            return clamp_alpha(alpha_overrides[route.name])
        if route.alpha_override is not None:
            return route.alpha_override
        return self.weights.hybrid_alpha

    def _score(
        self,
        features: _QueryFeatures,
        allowed: Iterable[str] | None = None,
        boosts: Mapping[str, float] | None = None,
        alpha_overrides: Mapping[str, float] | None = None,
    ) -> list[RouteScore]:
        allowed_set = set(allowed) if allowed is not None else None
        scored: list[RouteScore] = []
        for route in self.routes:
            if allowed_set is not None and route.name not in allowed_set:
                continue
            centroid = self._centroids[route.name]
            signals = RouteSignals(
                word_cosine=cosine(features.word_vector, centroid.word),
                bm25=self._bm25(route.name, features.word_terms),
                char_cosine=cosine(features.char_vector, centroid.char),
                negative_word=cosine(features.word_vector, centroid.negative_word),
                negative_char=cosine(features.char_vector, centroid.negative_char),
            )
            alpha = adaptive_alpha(
                self._route_alpha(route, alpha_overrides),
                features.token_count,
                features.normalized,
                features.noise,
            )
            boost = float((boosts or {}).get(route.name, 0.0))
            score = hybrid_score(
                signals, alpha, boost,
                self.weights.lexical_lambda, self.weights.negative_penalty,
            )
            scored.append(RouteScore(route.name, score))
        scored.sort(key=lambda s: (-s.score, s.name))
        return scored

    def score_routes(
        self,
        text: str,
        allowed: Iterable[str] | None = None,
        boosts: Mapping[str, float] | None = None,
        alpha_overrides: Mapping[str, float] | None = None,
    ) -> list[RouteScore]:
        """Score every allowed route, best first. Empty for too-short input."""
        features = self._features(text)
        if features is None:
            return []
        return self._score(features, allowed, boosts, alpha_overrides)

    def _decide(self, scored: list[RouteScore], thresholds: Mapping[str, float], min_gap: float) -> str | None:
        if not scored:
            return None
        best = scored[0]
        if best.score < thresholds.get(best.name, 1.0):
            return None
        if len(scored) > 1 and best.score - scored[1].score < min_gap:
            return None
        return best.name

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(
        self,
        text: str,
        allowed: Iterable[str] | None = None,
        boosts: Mapping[str, float] | None = None,
        alpha_overrides: Mapping[str, float] | None = None,
        top_k: int = DEFAULT_TOP_K,
        min_gap: float | None = None,
    ) -> Decision | None:
        """Route one text; None when no route qualifies."""
        normalized = compact(text or "")
        if len(normalized) < MIN_QUERY_CHARS:
            metrics.inc("router_rejections")
            return None
        top_k = max(1, min(MAX_TOP_K, int(top_k)))
        gap = self.min_score_gap if min_gap is None else max(0.0, float(min_gap))
        key = (
            normalized,
            tuple(sorted(set(allowed))) if allowed is not None else None,
            tuple(sorted((boosts or {}).items())),
            tuple(sorted((alpha_overrides or {}).items())),
            top_k,
            gap,
        )
        hit, cached = self._cache.lookup(key)
        if hit:
            metrics.inc("router_cache_hits")
            return cached

        features = self._features(text)
        scored = self._score(features, allowed, boosts, alpha_overrides)
        thresholds = {r.name: r.threshold for r in self.routes}
        handler = self._decide(scored, thresholds, gap)
        decision = None
        if handler is None:
            metrics.inc("router_rejections")
            _log.debug(
                "router_rejected",
                best=scored[0].name if scored else None,
                score=round(scored[0].score, 4) if scored else 0.0,
            )
        else:
            decision = self._build_decision(scored, thresholds[handler], gap, top_k)
            metrics.inc("router_decisions")
            _log.debug("router_decision", handler=handler, score=round(decision.score, 4))
        self._cache.store(key, decision)
        return decision

    def _build_decision(self, scored: list[RouteScore], threshold: float, gap: float, top_k: int) -> Decision:
        best = scored[0]
        reason = f"hybrid score {best.score:.4f} >= threshold {threshold:.2f}"
        if len(scored) > 1:
            reason += f" and gap {best.score - scored[1].score:.4f} >= {gap:.2f}"
        return Decision(
            handler=best.name,
            score=best.score,
            reason=reason,
            alternatives=tuple(scored[:top_k]),
        )

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def get_route_threshold(self, name: str) -> float | None:
        for route in self.routes:
            if route.name == name:
                return route.threshold
        return None

    def list_route_thresholds(self) -> list[dict]:
        return [{"name": r.name, "threshold": r.threshold} for r in self.routes]

    def set_route_threshold(self, name: str, threshold: float) -> None:
        for route in self.routes:
            if route.name == name:
                route.threshold = clamp_threshold(threshold)
                self._cache.clear()
                return
        raise KeyError(name)

    # ------------------------------------------------------------------
    # Dataset evaluation and calibration
    # ------------------------------------------------------------------

    def _score_matrix(self, samples: list[LabeledSample]) -> list[list[RouteScore]]:
        return [self.score_routes(sample.text) for sample in samples]

    def _accuracy(
        self,
        samples: list[LabeledSample],
        matrix: list[list[RouteScore]],
        thresholds: Mapping[str, float],
    ) -> float:
        if not samples:
            return 0.0
        names = {r.name for r in self.routes}
        correct = 0
        for sample, scored in zip(samples, matrix):
            predicted = self._decide(scored, thresholds, self.min_score_gap)
            if sample.expected_route in names:
                correct += predicted == sample.expected_route
            else:
                correct += predicted is None
        return correct / len(samples)

    def evaluate_dataset(self, samples: Iterable) -> float:
        """Whole-dataset accuracy at the current thresholds (cache untouched).

        A sample labeled with a route this router does not have counts as
        correct only when the router abstains.
        """
        labeled = coerce_samples(samples)
        thresholds = {r.name: r.threshold for r in self.routes}
        return self._accuracy(labeled, self._score_matrix(labeled), thresholds)

    def fit_thresholds_from_dataset(
        self,
        samples: Iterable,
        max_iter: int = DEFAULT_JITTER_TRIALS,
        seed: int = 1337,
    ) -> CalibrationReport:
        """Tune per-route thresholds to maximize dataset accuracy.

        Needs at least 25 labeled samples; with fewer the thresholds are left
        alone. ``max_iter`` bounds the jitter refinement trials.
        """
        labeled = coerce_samples(samples)
        before = {r.name: r.threshold for r in self.routes}
        matrix = self._score_matrix(labeled)

        def objective(thresholds: Mapping[str, float]) -> float:
            return self._accuracy(labeled, matrix, thresholds)

        before_accuracy = objective(before)
        if len(labeled) < MIN_CALIBRATION_SAMPLES:
            _log.info("calibration_skipped", samples=len(labeled), required=MIN_CALIBRATION_SAMPLES)
            return CalibrationReport(
                total_labeled=len(labeled),
                before_accuracy=before_accuracy,
                after_accuracy=before_accuracy,
                improved=False,
                before_thresholds=dict(before),
                after_thresholds=dict(before),
            )

        own_scores: dict[str, list[float]] = {name: [] for name in before}
        for sample, scored in zip(labeled, matrix):
            if sample.expected_route not in own_scores:
                continue
            for item in scored:
                if item.name == sample.expected_route:
                    own_scores[item.name].append(item.score)
                    break
        candidates = {name: candidate_thresholds(before[name], own_scores[name]) for name in before}

        with timed("router_calibration", _log):
            result = optimize_thresholds(objective, before, candidates, jitter_trials=max(0, int(max_iter)), seed=seed)

        after = dict(before)
        if result.improved:
            after = result.thresholds
            for route in self.routes:
                route.threshold = clamp_threshold(after[route.name])
            self._cache.clear()
        metrics.inc("router_calibrations")
        _log.info(
            "router_calibrated",
            samples=len(labeled),
            before=round(result.initial_score, 4),
            after=round(result.score, 4),
            improved=result.improved,
        )
        return CalibrationReport(
            total_labeled=len(labeled),
            before_accuracy=before_accuracy,
            after_accuracy=result.score if result.improved else before_accuracy,
            improved=result.improved,
            before_thresholds=dict(before),
            after_thresholds={r.name: r.threshold for r in self.routes},
        )

    def augment_negatives_from_dataset(
        self,
        samples: Iterable,
        per_route: int = DEFAULT_NEGATIVES_PER_ROUTE,
    ) -> dict[str, int]:
        """Add misrouted texts as negative examples of the route that took them.

        Returns the number of negatives added per route; retrains when any
        were added.
        """
        labeled = coerce_samples(samples)
        by_name = {r.name: r for r in self.routes}
        thresholds = {r.name: r.threshold for r in self.routes}
        cap = max(0, int(per_route))
        added: dict[str, int] = {}
        for sample in labeled:
            if sample.expected_route not in by_name:
                continue
            predicted = self._decide(self.score_routes(sample.text), thresholds, self.min_score_gap)
            # an abstention took no route, so there is nothing to mark negative
            if predicted is None or predicted == sample.expected_route:
                continue
            text = compact(sample.text)
            if not NEGATIVE_MIN_CHARS <= len(text) <= NEGATIVE_MAX_CHARS:
                continue
            if added.get(predicted, 0) >= cap:
                continue
            route = by_name[predicted]
            if text in route.negative_utterances:
                continue
            route.negative_utterances.append(text)
            added[predicted] = added.get(predicted, 0) + 1
        if added:
            self.train()
        _log.info("negatives_mined", added=added, samples=len(labeled))
        return added

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_config(self) -> RouterConfig:
        return RouterConfig(
            routes=[dataclasses.replace(r, utterances=list(r.utterances),
                                        negative_utterances=list(r.negative_utterances))
                    for r in self.routes],
            hybrid_alpha=self.weights.hybrid_alpha,
            min_score_gap=self.min_score_gap,
        )

    def apply_config(self, config: RouterConfig) -> None:
        self.routes = list(config.routes)
        self.weights = dataclasses.replace(self.weights, hybrid_alpha=config.hybrid_alpha)
        self.min_score_gap = config.min_score_gap
        self.train()

    def load_from_file(self, path: str, create_if_missing: bool = False) -> bool:
        """Replace the route set from a routes file.

        Returns True when routes were loaded. With ``create_if_missing`` a
        missing file is created from the current routes and an invalid file
        leaves the current routes in place; without it both raise
        RouterConfigError.
        """
        try:
            config = load_router_config(path, self.known_route_names)
        except RouterConfigError as exc:
            if not create_if_missing:
                raise
            if not os.path.exists(path):
                self.save_to_file(path)
            else:
                _log.warning("router_config_fallback", path=path, error=str(exc))
            return False
        self.apply_config(config)
        return True

    def save_to_file(self, path: str) -> None:
        save_router_config(path, self.to_config())

