#!/usr/bin/env python3
"""Tests for mcp_server.py: tool results as JSON, per-workspace engines, CLI parsing.

The server module is loaded fresh per test so HOUDI_WORKSPACE is picked up.
"""

import importlib.util
import json
import os
import shutil
import sys
import tempfile
import unittest

# Load the mcp_server module
_SERVER_PATH = os.path.join(os.path.dirname(__file__), "..", "mcp_server.py")
_SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "..", "scripts")
sys.path.insert(0, _SCRIPTS_DIR)

_HAS_FASTMCP = importlib.util.find_spec("fastmcp") is not None


def _load_server(workspace: str):
    """Load the mcp_server module with a given workspace."""
    os.environ["HOUDI_WORKSPACE"] = workspace
    spec = importlib.util.spec_from_file_location("mcp_server", _SERVER_PATH)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _call(fn, *args, **kwargs):
    # FastMCP keeps the original function on .fn
    if hasattr(fn, "fn"):
        return json.loads(fn.fn(*args, **kwargs))
    return json.loads(fn(*args, **kwargs))


@unittest.skipUnless(_HAS_FASTMCP, "fastmcp not installed")
class TestRouteTools(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.mkdtemp()
        self.mod = _load_server(self.td)

    def tearDown(self):
        os.environ.pop("HOUDI_WORKSPACE", None)
        shutil.rmtree(self.td, ignore_errors=True)

    def test_workspace_resolution(self):
        self.assertEqual(self.mod._workspace(), os.path.abspath(self.td))

    def test_default_routes(self):
        self.assertEqual(len(_call(self.mod.router_thresholds)), 10)
        result = _call(self.mod.route_intent, "revisar gmail")
        self.assertEqual(result["handler"], "gmail")
        self.assertLessEqual(len(result["alternatives"]), 3)

    def test_abstain(self):
        self.assertEqual(_call(self.mod.route_intent, "asdkj qpwoe"), {"handler": None})

    def test_allowed_subset(self):
        result = _call(self.mod.route_intent, "revisar gmail", allowed=["web"])
        self.assertNotEqual(result["handler"], "gmail")

    def test_routes_file_from_workspace(self):
        state = os.path.join(self.td, "state")
        os.makedirs(state)
        with open(os.path.join(state, "intent-routes.json"), "w", encoding="utf-8") as f:
            json.dump({"routes": [
                {"name": "gmail", "utterances": ["enviar correo"], "threshold": 0.3},
                {"name": "web", "utterances": ["busca en internet"], "threshold": 0.2},
            ]}, f)
        mod = _load_server(self.td)
        self.assertEqual(_call(mod.router_thresholds),
                         [{"name": "gmail", "threshold": 0.3}, {"name": "web", "threshold": 0.2}])


@unittest.skipUnless(_HAS_FASTMCP, "fastmcp not installed")
class TestMemoryTools(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.mkdtemp()
        with open(os.path.join(self.td, "MEMORY.md"), "w", encoding="utf-8") as f:
            f.write("# MEMORY.md\n\n- equipo favorito: boca juniors\n")
        self.mod = _load_server(self.td)

    def tearDown(self):
        os.environ.pop("HOUDI_WORKSPACE", None)
        shutil.rmtree(self.td, ignore_errors=True)

    def test_recall_memory(self):
        hits = _call(self.mod.recall_memory, "boca")
        self.assertEqual(hits[0]["path"], "MEMORY.md")
        self.assertEqual(hits[0]["line"], 3)

    def test_recall_memory_empty_query(self):
        self.assertEqual(_call(self.mod.recall_memory, "  "), [])

    def test_append_note_then_recall(self):
        result = _call(self.mod.append_note, "la clave del wifi esta en la heladera")
        self.assertTrue(result["path"].startswith("memory/"))
        self.assertTrue(os.path.isfile(os.path.join(self.td, result["path"])))
        hits = _call(self.mod.recall_memory, "wifi")
        self.assertEqual(hits[0]["path"], result["path"])

    def test_append_empty_note(self):
        self.assertIn("error", _call(self.mod.append_note, "   "))

    def test_recall_status(self):
        status = _call(self.mod.recall_status)
        self.assertEqual(status["workspace"], os.path.abspath(self.td))
        self.assertTrue(status["long_term_memory_exists"])
        self.assertEqual(status["backend_preferred"], "hybrid")


@unittest.skipUnless(_HAS_FASTMCP, "fastmcp not installed")
class TestCli(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.mkdtemp()
        self.mod = _load_server(self.td)

    def tearDown(self):
        os.environ.pop("HOUDI_WORKSPACE", None)
        shutil.rmtree(self.td, ignore_errors=True)

    def test_defaults(self):
        args = self.mod.build_parser().parse_args([])
        self.assertEqual(args.transport, "stdio")
        self.assertEqual(args.port, 8765)
        self.assertIsNone(args.workspace)

    def test_http_options(self):
        args = self.mod.build_parser().parse_args(
            ["--transport", "http", "--host", "0.0.0.0", "--port", "9000", "--workspace", self.td])
        self.assertEqual((args.transport, args.host, args.port), ("http", "0.0.0.0", 9000))
        self.assertEqual(args.workspace, self.td)

    def test_unknown_transport_rejected(self):
        with self.assertRaises(SystemExit):
            self.mod.build_parser().parse_args(["--transport", "sse"])


if __name__ == "__main__":
    unittest.main()
