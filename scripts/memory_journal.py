#!/usr/bin/env python3
"""houdi-relevance Memory Journal — append-only writes into the recall archive.

Layout (relative to the workspace):
    MEMORY.md                                   long-term facts
    memory/YYYY-MM-DD.md                        global daily notes (UTC date)
    memory/chats/chat-<id>/YYYY-MM-DD.md        per-chat conversation turns
    memory/chats/chat-<id>/CONTINUITY.md        rolling chat snapshot

Line format:
    - [HH:MM:SS] <note> | meta={"chatId": 42, "role": "user"}

Every append holds a FileLock on ``<file>.lock``; whole-file rewrites
(MEMORY.md, CONTINUITY.md) go through a temp file and ``os.replace``.

Usage:
    journal = MemoryJournal("/path/to/workspace")
    journal.append_conversation_turn(42, "user", "mi equipo es boca")
    journal.upsert_long_term_fact("equipo favorito", "Boca Juniors", source="chat")
"""

from __future__ import annotations

import json
import os
import re
import sys
import unicodedata
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from filelock import FileLock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _recall_constants import CONTINUITY_FILE, LONG_TERM_FILE, MEMORY_DIR
from _recall_corpus import (
    RECALL_TOKENIZER,
    chat_continuity_path,
    chat_dir,
    read_file_lines,
    recent_chat_files,
    split_line_metadata,
)
from _text_constants import TRUNCATION_MARKER
from observability import get_logger, metrics

_log = get_logger("memory_journal")

LOCK_TIMEOUT_SECONDS = 10.0
CONVERSATION_TURN_MAX_CHARS = 1200
FACT_VALUE_MAX_CHARS = 180
FACT_KEY_MAX_CHARS = 64
CONTINUITY_EVERY_TURNS = 4
CONTINUITY_MAX_FILES = 6
CONTINUITY_MAX_TURNS = 80
CONTINUITY_RECENT_EXCHANGES = 10
CONTINUITY_TOPICS = 8
CONTINUITY_HINTS = 6
READ_MAX_LINES = 400
READ_DEFAULT_LINES = 40

FACTS_SECTION_TITLE = "## Perfil del usuario (auto)"
DEFAULT_MEMORY_TEMPLATE = "# MEMORY.md\n\nHechos duraderos del usuario y del entorno.\n"

CONVERSATION_LINE_RE = re.compile(
    r"^-\s*\[(\d{2}:\d{2}:\d{2})\]\s*(USER|ASSISTANT):\s*(.+)$", re.IGNORECASE,
)
PREFERENCE_RE = re.compile(
    r"\b(prefiero|preferiria|me gusta|no me gusta|evita|no quiero|siempre|nunca|responde|por favor evita)\b",
    re.IGNORECASE,
)
OPEN_LOOP_RE = re.compile(
    r"\b(pendiente|falta|resta|despues|después|luego|siguiente|proximo|próximo|recorda|recordá|"
    r"recordar|revisar|implementar|configurar|arreglar|resolver|continuar)\b",
    re.IGNORECASE,
)
TOPIC_STOP_WORDS = frozenset({
    "a", "al", "algo", "ante", "con", "como", "de", "del", "desde", "donde",
    "el", "ella", "ellas", "ellos", "en", "entre", "era", "es", "esa", "ese",
    "eso", "esta", "este", "esto", "fue", "ha", "hay", "hoy", "la", "las",
    "le", "les", "lo", "los", "mas", "me", "mi", "mis", "muy", "no", "nos",
    "o", "para", "pero", "por", "que", "se", "si", "sin", "sobre", "su",
    "sus", "te", "tu", "tus", "un", "una", "uno", "unos", "unas", "ya",
})


class MemoryWriteError(ValueError):
    """Invalid write into the memory archive."""


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def collapse_whitespace(text: str) -> str:
    return " ".join((text or "").split())


def truncate_inline(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    usable = max(0, max_chars - len(TRUNCATION_MARKER))
    return text[:usable] + TRUNCATION_MARKER


def normalize_fact_key(key: str) -> str:
    """``"Equipo Favorito!"`` -> ``"equipo_favorito"``."""
    decomposed = unicodedata.normalize("NFD", key or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()
    return re.sub(r"[^a-z0-9]+", "_", stripped).strip("_")[:FACT_KEY_MAX_CHARS]


def parse_conversation_line(line: str) -> ConversationTurn | None:
    """Role and text of a journal line, from the ``ROLE:`` prefix or ``meta.role``."""
    content, metadata = split_line_metadata(line)
    if not content:
        return None
    match = CONVERSATION_LINE_RE.match(content)
    if match:
        role = "assistant" if match.group(2).lower() == "assistant" else "user"
        text = match.group(3).strip()
        return ConversationTurn(role, text) if text else None

    role = (metadata or {}).get("role")
    if role not in ("user", "assistant"):
        return None
    prefix = f"{role.upper()}:"
    idx = content.upper().find(prefix)
    if idx < 0:
        return None
    text = content[idx + len(prefix):].strip()
    return ConversationTurn(role, text) if text else None


def ensure_safe_relative_path(rel_path: str) -> str:
    normalized = (rel_path or "").replace("\\", "/").strip()
    if not normalized:
        raise MemoryWriteError("empty path")
    if normalized.startswith("/") or ".." in normalized:
        raise MemoryWriteError(f"unsafe path: {rel_path}")
    return normalized


def _write_atomic(path: str, content: str) -> None:
    tmp = path + ".tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class MemoryJournal:
    """Writer for one workspace's memory archive.

    Keeps a per-chat turn counter so the continuity snapshot is rebuilt on
    the first turn and on every fourth turn after that.
    """

    def __init__(
        self,
        workspace: str,
        clock: Callable[[], datetime] = _utc_now,
        continuity_every: int = CONTINUITY_EVERY_TURNS,
    ) -> None:
        self.workspace = os.path.abspath(workspace)
        self._clock = clock
        self._continuity_every = max(1, int(continuity_every))
        self._turn_counts: dict[int, int] = {}

    # -- paths ---------------------------------------------------------------

    def _rel(self, full_path: str) -> str:
        return os.path.relpath(full_path, self.workspace).replace(os.sep, "/")

    def daily_path(self, when: datetime | None = None) -> str:
        when = when or self._clock()
        return os.path.join(self.workspace, MEMORY_DIR, f"{when.strftime('%Y-%m-%d')}.md")

    def chat_daily_path(self, chat_id: int, when: datetime | None = None) -> str:
        when = when or self._clock()
        return os.path.join(chat_dir(self.workspace, chat_id), f"{when.strftime('%Y-%m-%d')}.md")

    # -- appends -------------------------------------------------------------

    def _append_line(self, full_path: str, note: str, metadata: dict | None) -> None:
        now = self._clock()
        line = f"- [{now.strftime('%H:%M:%S')}] {note}"
        if metadata:
            line += " | meta=" + json.dumps(metadata, ensure_ascii=False, separators=(",", ":"))
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with FileLock(full_path + ".lock", timeout=LOCK_TIMEOUT_SECONDS):
            with open(full_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        metrics.inc("memory_notes_appended")

    def append_daily_note(self, note: str, metadata: dict | None = None) -> dict:
        """Append a note to today's global file. Returns ``{"path": rel_path}``."""
        text = collapse_whitespace(note)
        if not text:
            raise MemoryWriteError("empty note")
        full_path = self.daily_path()
        self._append_line(full_path, text, metadata)
        return {"path": self._rel(full_path)}

    def append_conversation_turn(
        self,
        chat_id: int,
        role: str,
        text: str,
        source: str = "conversation",
        user_id: int | None = None,
    ) -> dict:
        """Record one chat turn in the global and per-chat daily files."""
        compact_text = collapse_whitespace(text)
        if not compact_text:
            raise MemoryWriteError("empty conversation turn")
        role = "user" if role == "user" else "assistant"
        chat_id = int(chat_id or 0)
        note = f"{role.upper()}: {truncate_inline(compact_text, CONVERSATION_TURN_MAX_CHARS)}"
        metadata: dict = {"source": source, "role": role, "chatId": chat_id}
        if user_id is not None and int(user_id) > 0:
            metadata["userId"] = int(user_id)

        result = self.append_daily_note(note, metadata)
        if chat_id > 0:
            self._append_line(self.chat_daily_path(chat_id), note, metadata)
            self._refresh_continuity_if_needed(chat_id)
        return result

    # -- long-term facts -----------------------------------------------------

    def upsert_long_term_fact(
        self,
        key: str,
        value: str,
        source: str | None = None,
        chat_id: int | None = None,
        user_id: int | None = None,
    ) -> dict:
        """Insert or replace ``- key: value | updated=...`` under the facts section of MEMORY.md."""
        norm_key = normalize_fact_key(key)
        norm_value = truncate_inline(collapse_whitespace(value), FACT_VALUE_MAX_CHARS)
        if not norm_key or not norm_value:
            raise MemoryWriteError("fact key and value must be non-empty")

        full_path = os.path.join(self.workspace, LONG_TERM_FILE)
        os.makedirs(self.workspace, exist_ok=True)
        with FileLock(full_path + ".lock", timeout=LOCK_TIMEOUT_SECONDS):
            existing = read_file_lines(full_path)
            lines = existing if existing is not None else DEFAULT_MEMORY_TEMPLATE.splitlines()

            section_start = next(
                (i for i, line in enumerate(lines)
                 if line.strip().lower() == FACTS_SECTION_TITLE.lower()),
                -1,
            )
            if section_start < 0:
                if lines and lines[-1].strip():
                    lines.append("")
                lines.extend([FACTS_SECTION_TITLE, ""])
                section_start = len(lines) - 2

            section_end = len(lines)
            for i in range(section_start + 1, len(lines)):
                if re.match(r"^##\s+", lines[i].strip()):
                    section_end = i
                    break

            meta_parts = [f"updated={self._clock().isoformat()}"]
            if source and source.strip():
                meta_parts.append("source=" + "_".join(source.split()))
            if chat_id is not None:
                meta_parts.append(f"chat={int(chat_id)}")
            if user_id is not None:
                meta_parts.append(f"user={int(user_id)}")
            new_line = f"- {norm_key}: {norm_value} | " + " | ".join(meta_parts)
            key_re = re.compile(rf"^\s*-\s*{re.escape(norm_key)}\s*:", re.IGNORECASE)

            updated = False
            for i in range(section_start + 1, section_end):
                if key_re.match(lines[i].strip()):
                    lines[i] = new_line
                    updated = True
                    break
            if not updated:
                insert_at = section_end
                while insert_at > section_start + 1 and not lines[insert_at - 1].strip():
                    insert_at -= 1
                lines.insert(insert_at, new_line)

            _write_atomic(full_path, "\n".join(lines).rstrip("\n") + "\n")

        _log.info("long_term_fact_upserted", key=norm_key, updated=updated)
        return {"path": LONG_TERM_FILE, "key": norm_key, "value": norm_value, "updated": updated}

    # -- continuity ----------------------------------------------------------

    def _refresh_continuity_if_needed(self, chat_id: int) -> None:
        count = self._turn_counts.get(chat_id, 0) + 1
        self._turn_counts[chat_id] = count
        if os.path.isfile(chat_continuity_path(self.workspace, chat_id)) and count % self._continuity_every:
            return
        self.rebuild_chat_continuity(chat_id)

    def recent_turns(self, chat_id: int, max_turns: int = CONTINUITY_MAX_TURNS) -> list[ConversationTurn]:
        """Last ``max_turns`` turns across the chat's newest dated files, oldest first."""
        turns: list[ConversationTurn] = []
        for path in reversed(recent_chat_files(self.workspace, chat_id, CONTINUITY_MAX_FILES)):
            lines = read_file_lines(path)
            if lines is None:
                continue
            for line in lines:
                turn = parse_conversation_line(line)
                if turn is not None:
                    turns.append(turn)
        return turns[-max_turns:]

    def rebuild_chat_continuity(self, chat_id: int) -> str | None:
        """Rewrite the chat's CONTINUITY.md; returns its relative path, or None with no turns."""
        chat_id = int(chat_id or 0)
        if chat_id <= 0:
            return None
        turns = self.recent_turns(chat_id)
        if not turns:
            return None

        user_texts = [t.text for t in turns if t.role == "user"]
        assistant_texts = [t.text for t in turns if t.role == "assistant"]
        topics = _topic_keywords(user_texts)
        preferences = _matching_hints(user_texts, PREFERENCE_RE)
        open_loops = _matching_hints([t.text for t in reversed(turns)], OPEN_LOOP_RE)

        def clean(text: str, max_chars: int) -> str:
            return truncate_inline(collapse_whitespace(text), max_chars)

        out = [
            f"# {CONTINUITY_FILE} - chat-{chat_id}",
            "",
            f"Actualizado: {self._clock().isoformat()}",
            "",
            "## Snapshot",
            f"- Turnos considerados: {len(turns)}",
            f"- Último usuario: {clean(user_texts[-1], 180) if user_texts else '(sin dato)'}",
            f"- Último asistente: {clean(assistant_texts[-1], 180) if assistant_texts else '(sin dato)'}",
            "",
            "## Temas Activos",
        ]
        if topics:
            out.extend(f"- {topic}" for topic in topics)
        else:
            out.append("- (sin temas detectados)")
        out += ["", "## Preferencias del Usuario (heurística)"]
        if preferences:
            out.extend(f"- {item}" for item in preferences)
        else:
            out.append("- (sin preferencias explícitas recientes)")
        out += ["", "## Pendientes Abiertos (heurística)"]
        if open_loops:
            out.extend(f"- {item}" for item in open_loops)
        else:
            out.append("- (sin pendientes detectados)")
        out += ["", "## Últimos Intercambios"]
        for turn in turns[-CONTINUITY_RECENT_EXCHANGES:]:
            out.append(f"- {turn.role.upper()}: {clean(turn.text, 220)}")

        full_path = chat_continuity_path(self.workspace, chat_id)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with FileLock(full_path + ".lock", timeout=LOCK_TIMEOUT_SECONDS):
            _write_atomic(full_path, "\n".join(out) + "\n")
        _log.debug("chat_continuity_rebuilt", chat_id=chat_id, turns=len(turns))
        return self._rel(full_path)

    # -- reads ---------------------------------------------------------------

    def read_memory_file(
        self,
        rel_path: str,
        from_line: int = 1,
        lines: int = READ_DEFAULT_LINES,
    ) -> dict:
        """Windowed read of MEMORY.md or a file under ``memory/``.

        Raises MemoryWriteError for paths outside that area and OSError when
        the file is missing.
        """
        rel = ensure_safe_relative_path(rel_path)
        lowered = rel.lower()
        if lowered != LONG_TERM_FILE.lower() and not lowered.startswith(MEMORY_DIR + "/"):
            raise MemoryWriteError(f"only {LONG_TERM_FILE} or {MEMORY_DIR}/ may be read: {rel_path}")
        full_path = os.path.realpath(os.path.join(self.workspace, rel))
        if not full_path.startswith(os.path.realpath(self.workspace) + os.sep):
            raise MemoryWriteError(f"path outside workspace: {rel_path}")

        start = max(1, min(1_000_000, int(from_line)))
        count = max(1, min(READ_MAX_LINES, int(lines)))
        with open(full_path, encoding="utf-8") as f:
            all_lines = f.read().split("\n")
        end = min(len(all_lines), start - 1 + count)
        return {
            "path": rel,
            "from": start,
            "to": end,
            "text": "\n".join(all_lines[start - 1:end]),
        }


def _topic_keywords(messages: list[str], limit: int = CONTINUITY_TOPICS) -> list[str]:
    counts: Counter = Counter()
    for message in messages:
        for token in RECALL_TOKENIZER.surface_tokens(message):
            if len(token) < 3 or token in TOPIC_STOP_WORDS or token.isdigit():
                continue
            counts[token] += 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [f"{token} ({count})" for token, count in ranked[:limit]]


def _matching_hints(messages: list[str], pattern: re.Pattern, limit: int = CONTINUITY_HINTS) -> list[str]:
    hints: list[str] = []
    for message in messages:
        if not pattern.search(message):
            continue
        hint = truncate_inline(collapse_whitespace(message), 180)
        if hint not in hints:
            hints.append(hint)
        if len(hints) >= limit:
            break
    return hints
