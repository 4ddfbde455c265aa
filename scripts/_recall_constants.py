"""Recall engine constants — corpus limits, scoring weights, path patterns."""

from __future__ import annotations

import re

# Backends, in fallback order
BACKEND_HYBRID = "hybrid"
BACKEND_SCAN = "scan"
VALID_BACKENDS = (BACKEND_HYBRID, BACKEND_SCAN)

# Corpus assembly
LONG_TERM_FILE = "MEMORY.md"
MEMORY_DIR = "memory"
CHATS_DIR = "chats"
CONTINUITY_FILE = "CONTINUITY.md"
SEARCH_RECENT_GLOBAL_FILES = 60
SEARCH_RECENT_CHAT_FILES = 40
MAX_READ_WORKERS = 8
STATUS_SCAN_DEPTH = 3

# Result shaping
DEFAULT_MAX_RESULTS = 6
MAX_RESULTS_MIN, MAX_RESULTS_MAX = 1, 20
SEARCH_LIMIT_MIN, SEARCH_LIMIT_MAX = 1, 50
DEFAULT_SNIPPET_MAX_CHARS = 320
SNIPPET_MIN, SNIPPET_MAX = 80, 2000
DEFAULT_MAX_INJECTED_CHARS = 2200
INJECTED_MIN, INJECTED_MAX = 300, 30_000

# Temporal decay: 0.65 + 0.35 * 2^(-age / half_life)
DEFAULT_HALF_LIFE_DAYS = 21.0
DECAY_FLOOR = 0.65
DECAY_SPAN = 0.35

# Diversity rerank
DEFAULT_MMR_LAMBDA = 0.72
MMR_POOL_MULTIPLIER = 4
MMR_RESULT_MULTIPLIER = 2

# Scan score
EXACT_QUERY_BONUS = 8.0
EXACT_QUERY_MIN_CHARS = 3
LONG_TERM_CHARS = 6
LONG_TERM_BONUS = 1.3
SHORT_TERM_BONUS = 1.0
FULL_COVERAGE_BONUS = 2.5
CONTINUITY_PATH_BONUS = 3.0
LONG_TERM_PATH_BONUS = 1.0
META_CHAT_BONUS = 4.0
PATH_CHAT_BONUS = 3.2

# Hybrid score: scan + bm25 * 3 + (semantic * 3.2 if semantic >= 0.28)
BM25_WEIGHT = 3.0
SEMANTIC_WEIGHT = 3.2
SEMANTIC_MIN_SCORE = 0.28

META_MARKER = "| meta="

DATE_PATH_RE = re.compile(r"(?:^|/)(\d{4})-(\d{2})-(\d{2})\.md$")
CHAT_PATH_RE = re.compile(r"(?:^|/)memory/chats/chat-(\d+)/\d{4}-\d{2}-\d{2}\.md$", re.IGNORECASE)
DATED_FILE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$", re.IGNORECASE)
# "- [HH:MM:SS] " prefix of journal lines
TIMESTAMP_PREFIX_RE = re.compile(r"^-\s*\[\d{2}:\d{2}:\d{2}\]\s*")
