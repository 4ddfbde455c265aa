#!/usr/bin/env python3
"""houdi-relevance Memory Recall — hybrid BM25 + lexical-overlap search over the note archive.

The corpus is rebuilt on every call from the workspace files (no persistent
index): MEMORY.md, the chat's CONTINUITY.md snapshot and recent dated files,
then the newest global ``memory/YYYY-MM-DD.md`` files. Lines that look like
prompt-injection attempts never enter the corpus.

Backends:
    hybrid  scan heuristic + 3 x BM25 + gated semantic overlap (preferred)
    scan    exact-match / term-hit heuristic with temporal decay

The preferred backend is tried first; on any exception the next one runs and
the failure is recorded as fallback telemetry. If every backend fails the
search returns an empty list.

Usage:
    python3 scripts/memory_recall.py --query "equipo de futbol" --workspace .
    python3 scripts/memory_recall.py --query "boca" --chat-id 42 --json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _recall_constants import (
    BACKEND_HYBRID,
    BACKEND_SCAN,
    LONG_TERM_FILE,
    MAX_READ_WORKERS,
    MEMORY_DIR,
    SEARCH_LIMIT_MAX,
    SEARCH_LIMIT_MIN,
    STATUS_SCAN_DEPTH,
    VALID_BACKENDS,
)
from _recall_corpus import collect_indexed_lines, search_file_paths
from _recall_reranking import finalize_candidates
from _recall_scoring import score_hybrid, score_scan
from engine_config import RecallSettings, load_engine_config
from observability import get_logger, metrics, timed

_log = get_logger("memory_recall")


@dataclass(frozen=True)
class MemoryHit:
    """One recalled memory line."""

    path: str
    line: int
    snippet: str
    score: float

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "line": self.line,
            "snippet": self.snippet,
            "score": round(self.score, 4),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def count_markdown_files(root: str, max_depth: int = STATUS_SCAN_DEPTH) -> int:
    """Count ``*.md`` files under ``root`` at most ``max_depth`` levels deep."""
    if not os.path.isdir(root):
        return 0
    total = 0
    root = os.path.abspath(root)
    for dirpath, dirnames, filenames in os.walk(root):
        rel = os.path.relpath(dirpath, root)
        depth = 0 if rel == "." else rel.count(os.sep) + 1
        total += sum(1 for name in filenames if name.lower().endswith(".md"))
        if depth + 1 >= max_depth:
            dirnames[:] = []
    return total


class MemoryRecall:
    """Search engine over one workspace's memory archive.

    Holds only fallback telemetry between calls; every search reads the
    files afresh.
    """

    def __init__(
        self,
        workspace: str,
        settings: RecallSettings | None = None,
        clock: Callable[[], datetime] = _utc_now,
        max_read_workers: int = MAX_READ_WORKERS,
    ) -> None:
        self.workspace = os.path.abspath(workspace)
        self.settings = settings or RecallSettings()
        self._clock = clock
        self._max_read_workers = max_read_workers
        self._backends: dict[str, Callable] = {
            BACKEND_HYBRID: score_hybrid,
            BACKEND_SCAN: score_scan,
        }
        self.last_backend: str | None = None
        self.fallback_count = 0
        self.last_fallback_error: str | None = None

    @property
    def preferred_backend(self) -> str:
        backend = self.settings.backend
        return backend if backend in VALID_BACKENDS else BACKEND_HYBRID

    def _backend_order(self) -> list[str]:
        preferred = self.preferred_backend
        return [preferred] + [b for b in VALID_BACKENDS if b != preferred]

    def search(
        self,
        query: str,
        limit: int | None = None,
        chat_id: int | None = None,
        max_injected_chars: int | None = None,
    ) -> list[MemoryHit]:
        """Ranked memory lines for ``query``.

        ``limit`` defaults to the configured ``max_results`` and is clamped to
        1..50. ``max_injected_chars`` caps the summed snippet length; None or
        a non-positive value disables the budget.
        """
        metrics.inc("recall_queries")
        query = (query or "").strip()
        if not query:
            return []
        if limit is None:
            limit = self.settings.max_results
        limit = max(SEARCH_LIMIT_MIN, min(SEARCH_LIMIT_MAX, int(limit)))

        with timed("recall_search", _log):
            files = search_file_paths(
                self.workspace,
                chat_id,
                recent_global_files=self.settings.recent_global_files,
                recent_chat_files_limit=self.settings.recent_chat_files,
            )
            lines, unreadable, blocked = collect_indexed_lines(
                self.workspace, files, self._clock(), max_workers=self._max_read_workers,
            )
            for path in unreadable:
                _log.debug("memory_file_unreadable", path=path)
            if blocked:
                metrics.inc("recall_injection_lines_skipped", blocked)
                _log.debug("injection_lines_skipped", count=blocked)
            metrics.observe("recall_corpus_lines", len(lines))

            preferred = self.preferred_backend
            errors: list[str] = []
            for backend in self._backend_order():
                scorer = self._backends.get(backend)
                if scorer is None:
                    continue
                try:
                    candidates = scorer(
                        query,
                        lines,
                        chat_id,
                        self.settings.snippet_max_chars,
                        self.settings.half_life_days,
                    )
                    finalized = finalize_candidates(
                        candidates, limit, max_injected_chars, self.settings.mmr_lambda,
                    )
                except Exception as e:
                    errors.append(f"{backend}: {e}")
                    _log.warning("recall_backend_failed", backend=backend, error=str(e))
                    continue

                self.last_backend = backend
                if backend != preferred:
                    self.fallback_count += 1
                    self.last_fallback_error = "; ".join(errors) or None
                    metrics.inc("recall_backend_fallbacks")
                    _log.warning("recall_backend_fallback", preferred=preferred,
                                 used=backend, error=self.last_fallback_error)
                _log.debug("recall_search", backend=backend, files=len(files),
                           lines=len(lines), results=len(finalized))
                return [MemoryHit(c.path, c.line, c.snippet, c.score) for c in finalized]

        self.fallback_count += 1
        self.last_fallback_error = "; ".join(errors) or "no backend available"
        metrics.inc("recall_backend_failures")
        _log.error("recall_all_backends_failed", error=self.last_fallback_error)
        return []

    def status(self) -> dict:
        """Workspace and backend telemetry snapshot."""
        today = self._clock().strftime("%Y-%m-%d")
        result = {
            "workspace": self.workspace,
            "long_term_memory_exists": os.path.isfile(os.path.join(self.workspace, LONG_TERM_FILE)),
            "memory_files_count": count_markdown_files(os.path.join(self.workspace, MEMORY_DIR)),
            "today_memory_file": f"{MEMORY_DIR}/{today}.md",
            "backend_preferred": self.preferred_backend,
            "backend_last_used": self.last_backend,
            "backend_fallback_count": self.fallback_count,
        }
        if self.last_fallback_error:
            result["backend_last_fallback_error"] = self.last_fallback_error
        return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="houdi-relevance memory recall")
    parser.add_argument("--query", "-q", required=True, help="Search query")
    parser.add_argument("--workspace", "-w", default=".", help="Workspace path")
    parser.add_argument("--limit", type=int, default=None, help="Max results (1-50)")
    parser.add_argument("--chat-id", type=int, default=None, help="Scope to one chat")
    parser.add_argument("--budget", type=int, default=None, help="Max injected characters")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    args = parser.parse_args(argv)

    config = load_engine_config(args.workspace)
    engine = MemoryRecall(config.workspace, config.recall)
    hits = engine.search(args.query, limit=args.limit, chat_id=args.chat_id,
                         max_injected_chars=args.budget)

    if args.json:
        print(json.dumps([h.to_dict() for h in hits], indent=2, ensure_ascii=False))
    elif not hits:
        print("No results found.")
    else:
        for h in hits:
            print(f"[{h.score:.3f}] {h.path}:{h.line} {h.snippet}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
