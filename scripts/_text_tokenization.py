"""Relevance engine tokenization — normalization, Spanish stemming, n-grams."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

from _text_constants import MIN_STEM_LENGTH, SPANISH_STOPWORDS, SPANISH_SUFFIXES, TOKEN_PATTERN

__all__ = [
    "Tokenizer", "DEFAULT_TOKENIZER",
    "normalize", "compact", "noise_ratio",
    "tokenize", "surface_tokens", "stem",
    "with_bigrams", "with_char_trigrams", "char_ngram_set", "jaccard",
]

_NON_WORD_RE = re.compile(r"[^\w\s]|_")
_SPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Strip diacritics (NFD + combining-mark removal) and lowercase."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def compact(text: str) -> str:
    """normalize() plus punctuation to spaces and whitespace collapsed."""
    return _SPACE_RE.sub(" ", _NON_WORD_RE.sub(" ", normalize(text))).strip()


def noise_ratio(text: str) -> float:
    """Share of non-alphanumeric characters among the non-space ones."""
    chars = [ch for ch in normalize(text) if not ch.isspace()]
    if not chars:
        return 0.0
    noisy = sum(1 for ch in chars if not ch.isalnum())
    return noisy / len(chars)


class Tokenizer:
    """Stopword-filtering tokenizer with heuristic suffix stemming.

    The stopword set and the suffix table are configuration; pass other
    tables for another locale. Suffixes are tried longest first and a
    suffix is only stripped when the remaining stem keeps at least
    ``min_stem_length`` characters.
    """

    def __init__(
        self,
        stopwords: Iterable[str] = SPANISH_STOPWORDS,
        suffixes: Iterable[str] = SPANISH_SUFFIXES,
        token_pattern: re.Pattern = TOKEN_PATTERN,
        min_stem_length: int = MIN_STEM_LENGTH,
    ) -> None:
        self.stopwords = frozenset(stopwords)
        # Stable sort keeps table order among equal lengths.
        self.suffixes = tuple(sorted(suffixes, key=len, reverse=True))
        self.token_pattern = token_pattern
        self.min_stem_length = min_stem_length

    def stem(self, token: str) -> str:
        for suffix in self.suffixes:
            if token.endswith(suffix) and len(token) - len(suffix) >= self.min_stem_length:
                return token[: -len(suffix)]
        return token

    def surface_tokens(self, text: str) -> list[str]:
        """Normalized tokens in order, stopwords removed, no stems."""
        return [t for t in self.token_pattern.findall(normalize(text)) if t not in self.stopwords]

    def tokenize(self, text: str) -> list[str]:
        """Surface tokens, each followed by its stem when the stem differs."""
        tokens: list[str] = []
        for token in self.surface_tokens(text):
            tokens.append(token)
            stemmed = self.stem(token)
            if stemmed != token and len(stemmed) >= self.min_stem_length:
                tokens.append(stemmed)
        return tokens


DEFAULT_TOKENIZER = Tokenizer()


def tokenize(text: str) -> list[str]:
    return DEFAULT_TOKENIZER.tokenize(text)


def surface_tokens(text: str) -> list[str]:
    return DEFAULT_TOKENIZER.surface_tokens(text)


def stem(token: str) -> str:
    return DEFAULT_TOKENIZER.stem(token)


def with_bigrams(tokens: list[str]) -> list[str]:
    """Append ``a_b`` for every adjacent token pair."""
    return list(tokens) + [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]


def with_char_trigrams(text: str) -> list[str]:
    """Overlapping 3-character windows of the compacted, underscore-joined text."""
    joined = compact(text).replace(" ", "_")
    if not joined:
        return []
    if len(joined) < 3:
        return [joined]
    return [joined[i:i + 3] for i in range(len(joined) - 2)]


def char_ngram_set(text: str, n: int = 3) -> set[str]:
    """Set of character n-grams over the space-padded normalized text."""
    collapsed = _SPACE_RE.sub(" ", normalize(text)).strip()
    if not collapsed:
        return set()
    padded = f" {collapsed} "
    if len(padded) <= n:
        return {padded}
    return {padded[i:i + n] for i in range(len(padded) - n + 1)}


def jaccard(left: set, right: set) -> float:
    """|A ∩ B| / |A ∪ B|; two empty sets are identical (1.0)."""
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    intersection = len(left & right)
    return intersection / (len(left) + len(right) - intersection)
