#!/usr/bin/env python3
"""Tests for _text_tokenization.py — normalization, stemming, n-grams, Jaccard."""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from _text_tokenization import (
    Tokenizer,
    char_ngram_set,
    compact,
    jaccard,
    noise_ratio,
    normalize,
    stem,
    surface_tokens,
    tokenize,
    with_bigrams,
    with_char_trigrams,
)


class TestNormalize(unittest.TestCase):
    def test_strips_diacritics_and_lowercases(self):
        self.assertEqual(normalize("Recordame MAÑANA a las Ocho"), "recordame manana a las ocho")
        self.assertEqual(normalize("Canción"), "cancion")

    def test_empty(self):
        self.assertEqual(normalize(""), "")
        self.assertEqual(compact("  ¡¿!?  "), "")

    def test_compact_collapses_punctuation(self):
        self.assertEqual(compact("¿Qué   hay en   mi bandeja?!"), "que hay en mi bandeja")

    def test_noise_ratio(self):
        self.assertEqual(noise_ratio("hola"), 0.0)
        self.assertAlmostEqual(noise_ratio("a!!!"), 0.75)
        self.assertEqual(noise_ratio("   "), 0.0)


class TestTokenize(unittest.TestCase):
    def test_drops_stopwords_and_short_tokens(self):
        self.assertEqual(surface_tokens("enviame un correo a x"), ["enviame", "correo"])

    def test_emits_surface_and_stem(self):
        tokens = tokenize("correos")
        self.assertEqual(tokens, ["correos", "correo"])

    def test_stem_keeps_minimum_length(self):
        # "mes" - "es" would leave one character
        self.assertEqual(stem("mes"), "mes")
        self.assertEqual(stem("rapidamente"), "rapid")

    def test_longest_suffix_wins(self):
        self.assertEqual(stem("configuraciones"), "configur")

    def test_deterministic(self):
        text = "Buscá las noticias de tecnología en internet"
        self.assertEqual(tokenize(text), tokenize(text))

    def test_custom_tables(self):
        tok = Tokenizer(stopwords={"the"}, suffixes=("ing",))
        self.assertEqual(tok.tokenize("the walking dead"), ["walking", "walk", "dead"])

    def test_symbols_in_tokens(self):
        self.assertIn("x-ray", surface_tokens("x-ray de rutina"))


class TestNgrams(unittest.TestCase):
    def test_bigrams_appended(self):
        self.assertEqual(with_bigrams(["enviar", "correo", "ana"]),
                         ["enviar", "correo", "ana", "enviar_correo", "correo_ana"])

    def test_bigrams_single_token(self):
        self.assertEqual(with_bigrams(["solo"]), ["solo"])

    def test_char_trigrams(self):
        self.assertEqual(with_char_trigrams("Hola mi"), ["hol", "ola", "la_", "a_m", "_mi"])

    def test_char_trigrams_short(self):
        self.assertEqual(with_char_trigrams("ok"), ["ok"])
        self.assertEqual(with_char_trigrams(""), [])

    def test_char_ngram_set_padded(self):
        self.assertEqual(char_ngram_set("ab"), {" ab", "ab "})


class TestJaccard(unittest.TestCase):
    def test_empty_sets_are_identical(self):
        self.assertEqual(jaccard(set(), set()), 1.0)

    def test_one_empty(self):
        self.assertEqual(jaccard({"a"}, set()), 0.0)

    def test_partial_overlap(self):
        self.assertAlmostEqual(jaccard({"a", "b", "c"}, {"b", "c", "d"}), 0.5)


if __name__ == "__main__":
    unittest.main()
