"""Relevance engine constants — locale tables, scoring weights, limits.

The tables here are plain data: the tokenizer, the router and the recall
engine receive them as configuration so another locale can swap them out.
"""

from __future__ import annotations

import re

__all__ = [
    "SPANISH_STOPWORDS", "SPANISH_SUFFIXES", "TOKEN_PATTERN",
    "DOMAIN_SIGNAL_KEYWORDS", "PROMPT_INJECTION_PATTERNS",
    "MIN_STEM_LENGTH", "TRUNCATION_MARKER",
    "BM25_K1", "BM25_B", "BM25_SATURATION",
    "DEFAULT_HYBRID_ALPHA", "DEFAULT_LEXICAL_LAMBDA", "DEFAULT_NEGATIVE_PENALTY",
    "DEFAULT_MIN_SCORE_GAP", "ALPHA_MIN", "ALPHA_MAX", "THRESHOLD_MIN", "THRESHOLD_MAX",
    "SHORT_QUERY_TOKENS", "LONG_QUERY_TOKENS", "NOISE_RATIO_THRESHOLD",
    "ALPHA_SHORT_BONUS", "ALPHA_DOMAIN_BONUS", "ALPHA_LONG_PENALTY", "ALPHA_NOISE_PENALTY",
]

# Alphanumeric runs plus "_" and "-" (diacritics are already stripped).
TOKEN_PATTERN = re.compile(r"[a-z0-9_\-]{2,}")

# Stems shorter than this are not emitted.
MIN_STEM_LENGTH = 3

SPANISH_STOPWORDS = frozenset({
    "a", "al", "algo", "ante", "bajo", "con", "contra", "de", "del", "desde",
    "donde", "el", "ella", "ellas", "ellos", "en", "entre", "era", "eramos",
    "es", "esa", "ese", "eso", "esta", "estaba", "estamos", "estan", "estar",
    "este", "esto", "fue", "fueron", "ha", "hay", "la", "las", "le", "les",
    "lo", "los", "me", "mi", "mis", "mucho", "muy", "no", "nos", "o", "para",
    "pero", "por", "porque", "que", "se", "si", "sin", "sobre", "su", "sus",
    "te", "tu", "tus", "un", "una", "uno", "unos", "unas", "y", "ya",
})

# Ordered suffix table; the tokenizer strips the longest match.
SPANISH_SUFFIXES = (
    "amientos", "imientos", "aciones", "amiento", "imiento", "amente",
    "ciones", "idades", "adoras", "adores", "ancias", "mente", "acion",
    "istas", "ismos", "adora", "ancia", "iendo", "idad", "ador", "ismo",
    "ista", "cion", "ando", "ados", "adas", "idos", "idas", "ado", "ada",
    "ido", "ida", "es", "s",
)

# Presence of any of these in the normalized text nudges alpha up.
DOMAIN_SIGNAL_KEYWORDS = frozenset({
    "gmail", "correo", "mail", "email", "inbox", "bandeja", "destinatario",
    "archivo", "carpeta", "workspace", "pdf", "docx", "documento",
    "web", "internet", "url", "link", "reddit", "noticias",
    "recordatorio", "tarea", "agenda", "memoria", "recorda",
    "lim", "conector", "tunnel", "cloudflared", "skill", "servicio",
})

# Memory lines matching any of these are never recalled.
PROMPT_INJECTION_PATTERNS = (
    re.compile(r"ignore (all|any|previous|above|prior) instructions", re.IGNORECASE),
    re.compile(r"do not follow (the )?(system|developer)", re.IGNORECASE),
    re.compile(r"system prompt", re.IGNORECASE),
    re.compile(r"developer message", re.IGNORECASE),
    re.compile(r"<\s*(system|assistant|developer|tool|function|relevant-memories)\b", re.IGNORECASE),
    re.compile(r"\b(run|execute|call|invoke)\b.{0,40}\b(tool|command)\b", re.IGNORECASE),
)

TRUNCATION_MARKER = " [...truncated]"

# BM25 parameters
BM25_K1 = 1.2   # Term frequency saturation
BM25_B = 0.75   # Document length normalization
BM25_SATURATION = 6.0  # raw BM25 -> [0,1] via 1 - exp(-raw / BM25_SATURATION)

# Hybrid fusion
DEFAULT_HYBRID_ALPHA = 0.72
DEFAULT_LEXICAL_LAMBDA = 0.35
DEFAULT_NEGATIVE_PENALTY = 0.18
DEFAULT_MIN_SCORE_GAP = 0.03
ALPHA_MIN, ALPHA_MAX = 0.05, 0.95
THRESHOLD_MIN, THRESHOLD_MAX = 0.01, 0.99

# Adaptive alpha
SHORT_QUERY_TOKENS = 4
LONG_QUERY_TOKENS = 16
NOISE_RATIO_THRESHOLD = 0.22
ALPHA_SHORT_BONUS = 0.08
ALPHA_DOMAIN_BONUS = 0.03
ALPHA_LONG_PENALTY = 0.05
ALPHA_NOISE_PENALTY = 0.06
