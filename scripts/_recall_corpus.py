"""Recall engine corpus — candidate files, line metadata, injection filter, indexing."""

from __future__ import annotations

import json
import os
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from _recall_constants import (
    CHATS_DIR,
    CONTINUITY_FILE,
    DATED_FILE_RE,
    LONG_TERM_FILE,
    MAX_READ_WORKERS,
    MEMORY_DIR,
    META_MARKER,
    SEARCH_RECENT_CHAT_FILES,
    SEARCH_RECENT_GLOBAL_FILES,
)
from _recall_temporal import content_age_days
from _text_constants import PROMPT_INJECTION_PATTERNS
from _text_tokenization import Tokenizer, normalize

__all__ = [
    "IndexedLine", "RECALL_TOKENIZER",
    "split_line_metadata", "looks_like_prompt_injection",
    "chat_dir", "chat_continuity_path", "recent_chat_files",
    "search_file_paths", "read_file_lines", "collect_indexed_lines",
]

# Memory lines are short and stopwords carry meaning in exact matches.
RECALL_TOKENIZER = Tokenizer(stopwords=())


@dataclass
class IndexedLine:
    """One non-empty memory line, tokenized for a single query."""

    path: str
    line: int
    content: str
    normalized: str
    metadata: dict | None = None
    age_days: float | None = None
    tokens: list[str] = field(default_factory=list)
    token_set: frozenset[str] = frozenset()
    token_freq: Counter = field(default_factory=Counter)


def split_line_metadata(line: str) -> tuple[str, dict | None]:
    """Split ``text | meta={...}`` into ``(text, metadata)``.

    Uses the last marker. Metadata that is not a JSON object is dropped and
    the stripped text is kept.
    """
    idx = line.rfind(META_MARKER)
    if idx < 0:
        return line.strip(), None
    content = line[:idx].strip()
    raw_meta = line[idx + len(META_MARKER):].strip()
    if not raw_meta:
        return content, None
    try:
        parsed = json.loads(raw_meta)
    except json.JSONDecodeError:
        return content, None
    return content, parsed if isinstance(parsed, dict) else None


def looks_like_prompt_injection(text: str) -> bool:
    collapsed = " ".join(text.split())
    if not collapsed:
        return False
    return any(pattern.search(collapsed) for pattern in PROMPT_INJECTION_PATTERNS)


# ---------------------------------------------------------------------------
# Candidate files
# ---------------------------------------------------------------------------

def chat_dir(workspace: str, chat_id: int) -> str:
    return os.path.join(workspace, MEMORY_DIR, CHATS_DIR, f"chat-{int(chat_id)}")


def chat_continuity_path(workspace: str, chat_id: int) -> str:
    return os.path.join(chat_dir(workspace, chat_id), CONTINUITY_FILE)


def recent_chat_files(workspace: str, chat_id: int, max_files: int) -> list[str]:
    """Newest-first dated files of one chat."""
    if chat_id is None or int(chat_id) <= 0:
        return []
    directory = chat_dir(workspace, chat_id)
    try:
        names = [
            entry.name for entry in os.scandir(directory)
            if entry.is_file() and DATED_FILE_RE.match(entry.name)
        ]
    except OSError:
        return []
    names.sort(reverse=True)
    return [os.path.join(directory, name) for name in names[:max(1, max_files)]]


def search_file_paths(
    workspace: str,
    chat_id: int | None = None,
    recent_global_files: int = SEARCH_RECENT_GLOBAL_FILES,
    recent_chat_files_limit: int = SEARCH_RECENT_CHAT_FILES,
) -> list[str]:
    """Ordered, de-duplicated list of files to search.

    MEMORY.md, then the chat continuity snapshot and the chat's recent dated
    files, then the newest top-level ``memory/*.md`` files.
    """
    candidates: list[str] = []

    def add(path: str) -> None:
        if path not in candidates:
            candidates.append(path)

    long_term = os.path.join(workspace, LONG_TERM_FILE)
    if os.path.isfile(long_term):
        add(long_term)

    if chat_id is not None and int(chat_id) > 0:
        continuity = chat_continuity_path(workspace, chat_id)
        if os.path.isfile(continuity):
            add(continuity)
        for path in recent_chat_files(workspace, chat_id, recent_chat_files_limit):
            add(path)

    memory_dir = os.path.join(workspace, MEMORY_DIR)
    try:
        names = [e.name for e in os.scandir(memory_dir) if e.is_file() and e.name.endswith(".md")]
    except OSError:
        names = []
    names.sort(reverse=True)
    for name in names[:max(1, recent_global_files)]:
        add(os.path.join(memory_dir, name))
    return candidates


def read_file_lines(path: str) -> list[str] | None:
    """All lines of a UTF-8 file, or None when it cannot be read."""
    try:
        with open(path, encoding="utf-8") as f:
            return f.read().splitlines()
    except (OSError, UnicodeDecodeError):
        return None


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------

def _index_file(
    workspace: str,
    full_path: str,
    lines: list[str],
    now: datetime,
    tokenizer: Tokenizer,
) -> tuple[list[IndexedLine], int]:
    rel_path = os.path.relpath(full_path, workspace).replace(os.sep, "/")
    age_days = content_age_days(rel_path, full_path, now)
    indexed: list[IndexedLine] = []
    blocked = 0
    for idx, raw in enumerate(lines):
        stripped = raw.strip()
        if not stripped:
            continue
        content, metadata = split_line_metadata(stripped)
        if not content:
            continue
        if looks_like_prompt_injection(content):
            blocked += 1
            continue
        tokens = tokenizer.tokenize(content)
        indexed.append(IndexedLine(
            path=rel_path,
            line=idx + 1,
            content=content,
            normalized=normalize(content),
            metadata=metadata,
            age_days=age_days,
            tokens=tokens,
            token_set=frozenset(tokens),
            token_freq=Counter(tokens),
        ))
    return indexed, blocked


def collect_indexed_lines(
    workspace: str,
    files: list[str],
    now: datetime,
    tokenizer: Tokenizer = RECALL_TOKENIZER,
    max_workers: int = MAX_READ_WORKERS,
) -> tuple[list[IndexedLine], list[str], int]:
    """Read ``files`` concurrently and index their lines in file-list order.

    Returns ``(lines, unreadable_files, injection_lines_blocked)``.
    """
    if not files:
        return [], [], 0
    workers = max(1, min(max_workers, len(files)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        contents = list(pool.map(read_file_lines, files))

    collected: list[IndexedLine] = []
    unreadable: list[str] = []
    blocked_total = 0
    for full_path, lines in zip(files, contents):
        if lines is None:
            unreadable.append(full_path)
            continue
        indexed, blocked = _index_file(workspace, full_path, lines, now, tokenizer)
        collected.extend(indexed)
        blocked_total += blocked
    return collected, unreadable, blocked_total
