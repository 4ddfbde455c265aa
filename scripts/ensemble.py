"""houdi-relevance ensemble ranking — additive fusion of routing signals.

Combines the semantic router's alternatives with an external selector's pick,
layer filtering, contextual boosts and calibrated confidence into one ranked
candidate list.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

SEMANTIC_WEIGHT = 0.65
SELECTOR_BONUS = 0.35
LAYER_BONUS = 0.08
BOOST_WEIGHT = 0.9
CONFIDENCE_WEIGHT = 0.25


def _score_of(alternative) -> tuple[str, float]:
    if isinstance(alternative, Mapping):
        return str(alternative["name"]), float(alternative["score"])
    return str(alternative.name), float(alternative.score)


def rank_with_ensemble(
    candidates: Iterable[str],
    semantic_alternatives: Sequence = (),
    ai_selected: str | None = None,
    layer_allowed: Iterable[str] = (),
    contextual_boosts: Mapping[str, float] | None = None,
    calibrated_confidence: float | None = None,
) -> list[dict]:
    """Return ``[{"name", "score"}]`` sorted by fused score, best first.

    ``semantic_alternatives`` accepts RouteScore objects or name/score dicts,
    best first; calibrated confidence is credited to the first one. Ties keep
    first-seen order.
    """
    scores: dict[str, float] = {}

    def add(name: str, value: float) -> None:
        scores[name] = scores.get(name, 0.0) + value

    candidate_list = list(candidates)
    for name in candidate_list:
        add(name, 0.0)

    alternatives = [_score_of(a) for a in semantic_alternatives]
    for name, score in alternatives:
        add(name, max(0.0, min(1.0, score)) * SEMANTIC_WEIGHT)

    if ai_selected:
        add(ai_selected, SELECTOR_BONUS)

    allowed = set(layer_allowed)
    for name in candidate_list:
        if name in allowed:
            add(name, LAYER_BONUS)

    for name, value in (contextual_boosts or {}).items():
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            add(name, value * BOOST_WEIGHT)

    if isinstance(calibrated_confidence, (int, float)) and alternatives:
        add(alternatives[0][0], calibrated_confidence * CONFIDENCE_WEIGHT)

    ranked = [{"name": name, "score": round(score, 6)} for name, score in scores.items()]
    ranked.sort(key=lambda item: item["score"], reverse=True)
    return ranked
