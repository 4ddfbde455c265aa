#!/usr/bin/env python3
"""houdi-relevance router optimizer — offline threshold fit + negative mining.

Loads the routes file (creating it from defaults when missing), measures
holdout accuracy, fits thresholds on the training set, mines misroutes as
negative examples, and measures holdout accuracy again. Nothing is written
unless ``--apply`` is given.

Usage:
    python3 scripts/router_optimize.py --train state/intent-dataset-train.jsonl \\
        --holdout state/intent-dataset-holdout.jsonl --routes state/intent-routes.json --apply
"""

from __future__ import annotations

import argparse
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from observability import get_logger
from router_dataset import read_labeled_jsonl
from semantic_router import SemanticRouter

_log = get_logger("router_optimize")

DEFAULT_TRAIN = "workspace/state/intent-dataset-train.jsonl"
DEFAULT_HOLDOUT = "workspace/state/intent-dataset-holdout.jsonl"
DEFAULT_ROUTES = "workspace/state/intent-routes.json"
MIN_ITER, MAX_ITER, DEFAULT_ITER = 100, 15000, 1200
MIN_NEG, MAX_NEG, DEFAULT_NEG = 5, 80, 20


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="houdi-relevance intent router optimizer")
    parser.add_argument("--train", default=DEFAULT_TRAIN, help="Labeled JSONL used for fitting")
    parser.add_argument("--holdout", default=DEFAULT_HOLDOUT, help="Labeled JSONL used for evaluation")
    parser.add_argument("--routes", default=DEFAULT_ROUTES, help="Router routes JSON file")
    parser.add_argument("--iter", type=int, default=DEFAULT_ITER,
                        help=f"Jitter refinement trials ({MIN_ITER}-{MAX_ITER}, default: {DEFAULT_ITER})")
    parser.add_argument("--neg", type=int, default=DEFAULT_NEG,
                        help=f"Max negatives mined per route ({MIN_NEG}-{MAX_NEG}, default: {DEFAULT_NEG})")
    parser.add_argument("--apply", action="store_true", help="Write the optimized routes file")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    train_path = os.path.abspath(args.train)
    holdout_path = os.path.abspath(args.holdout)
    routes_path = os.path.abspath(args.routes)
    max_iter = max(MIN_ITER, min(MAX_ITER, args.iter))
    negatives_per_route = max(MIN_NEG, min(MAX_NEG, args.neg))

    train = read_labeled_jsonl(train_path)
    holdout = read_labeled_jsonl(holdout_path)
    if not train or not holdout:
        print(f"insufficient dataset: train={len(train)}, holdout={len(holdout)}")
        return 0

    router = SemanticRouter()
    router.load_from_file(routes_path, create_if_missing=True)

    holdout_before = router.evaluate_dataset(holdout)
    fit = router.fit_thresholds_from_dataset(train, max_iter=max_iter)
    negatives_added = router.augment_negatives_from_dataset(train, negatives_per_route)
    holdout_after = router.evaluate_dataset(holdout)
    delta = holdout_after - holdout_before

    print("Intent router optimize")
    print(f"routes: {routes_path}")
    print(f"train: {len(train)} | holdout: {len(holdout)}")
    print(f"before_holdout_accuracy: {_pct(holdout_before)}")
    print(f"after_holdout_accuracy: {_pct(holdout_after)}")
    print(f"delta_holdout_accuracy: {'+' if delta >= 0 else ''}{_pct(delta)}")
    print(f"fit_before_accuracy(train): {_pct(fit.before_accuracy)}")
    print(f"fit_after_accuracy(train): {_pct(fit.after_accuracy)}")
    print(f"negatives_added: {json.dumps(negatives_added, sort_keys=True)}")

    if args.apply:
        router.save_to_file(routes_path)
        print("apply: true (routes saved)")
    else:
        print("apply: false (dry run, routes unchanged)")
    _log.info(
        "router_optimized",
        holdout_before=round(holdout_before, 4),
        holdout_after=round(holdout_after, 4),
        applied=args.apply,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
