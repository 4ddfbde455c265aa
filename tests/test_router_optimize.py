#!/usr/bin/env python3
"""Tests for router_optimize.py — the offline optimizer CLI."""

import io
import json
import os
import shutil
import sys
import tempfile
import unittest
from contextlib import redirect_stdout

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from router_config import Route
from router_optimize import main
from semantic_router import SemanticRouter

GMAIL_TEXTS = [
    "enviar correo", "enviame un email", "mandar un correo a alguien",
    "enviar un correo a juan", "enviame un correo", "manda un email a ana",
    "quiero enviar un correo", "enviar email al equipo", "correo para maria",
    "enviar correo urgente", "mandar correo", "enviame el email",
    "manda correo a pedro", "enviar un email", "correo a alguien",
]
WEB_TEXTS = [
    "busca en internet", "ultimas noticias", "abre este link",
    "busca noticias en internet", "noticias de hoy", "abre el link",
    "buscar en internet recetas", "ultimas noticias del dia", "abre este enlace link",
    "internet busca precios", "noticias ultimas", "busca eso en internet",
    "abre link", "que hay de noticias", "busca en la internet",
]


class TestRouterOptimize(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.mkdtemp()
        self.train = os.path.join(self.td, "train.jsonl")
        self.holdout = os.path.join(self.td, "holdout.jsonl")
        self.routes = os.path.join(self.td, "state", "intent-routes.json")
        rows = [{"text": t, "finalHandler": "gmail"} for t in GMAIL_TEXTS]
        rows += [{"text": t, "finalHandler": "web"} for t in WEB_TEXTS]
        for path in (self.train, self.holdout):
            with open(path, "w", encoding="utf-8") as f:
                for row in rows:
                    f.write(json.dumps(row) + "\n")
        router = SemanticRouter(routes=[
            Route("gmail", ["enviar correo", "enviame un email", "mandar un correo a alguien"], threshold=0.99),
            Route("web", ["busca en internet", "ultimas noticias", "abre este link"], threshold=0.23),
        ])
        router.save_to_file(self.routes)

    def tearDown(self):
        shutil.rmtree(self.td, ignore_errors=True)

    def _run(self, *extra):
        out = io.StringIO()
        argv = ["--train", self.train, "--holdout", self.holdout, "--routes", self.routes,
                "--iter", "100", *extra]
        with redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def _routes_text(self):
        with open(self.routes, encoding="utf-8") as f:
            return f.read()

    def test_insufficient_dataset(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--train", os.path.join(self.td, "missing.jsonl"),
                         "--holdout", self.holdout, "--routes", self.routes])
        self.assertEqual(code, 0)
        self.assertIn("insufficient dataset: train=0, holdout=30", out.getvalue())

    def test_dry_run_leaves_routes(self):
        before = self._routes_text()
        code, output = self._run()
        self.assertEqual(code, 0)
        self.assertIn("before_holdout_accuracy:", output)
        self.assertIn("apply: false", output)
        self.assertEqual(self._routes_text(), before)

    def test_apply_saves_fitted_thresholds(self):
        code, output = self._run("--apply")
        self.assertEqual(code, 0)
        self.assertIn("apply: true", output)
        fit = dict(line.split(": ", 1) for line in output.splitlines() if line.startswith("fit_"))
        before = float(fit["fit_before_accuracy(train)"].rstrip("%"))
        after = float(fit["fit_after_accuracy(train)"].rstrip("%"))
        self.assertGreater(after, before)
        with open(self.routes, encoding="utf-8") as f:
            saved = {r["name"]: r for r in json.load(f)["routes"]}
        self.assertLess(saved["gmail"]["threshold"], 0.99)


if __name__ == "__main__":
    unittest.main()
