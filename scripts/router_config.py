#!/usr/bin/env python3
"""houdi-relevance router configuration — routes, defaults, JSON persistence.

A routes file looks like::

    {
      "version": 1,
      "updatedAt": "2026-01-01T00:00:00Z",
      "hybridAlpha": 0.72,
      "minScoreGap": 0.03,
      "routes": [
        {"name": "gmail", "threshold": 0.27, "utterances": ["enviar correo"],
         "negativeUtterances": [], "alpha": 0.8}
      ]
    }

Unknown route names are dropped; a route entry without ``name`` or
``utterances`` and a file with no valid route left are configuration errors.
Saves are atomic (temp file + rename) under a cross-process file lock.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from filelock import FileLock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from _text_constants import (
    ALPHA_MAX,
    ALPHA_MIN,
    DEFAULT_HYBRID_ALPHA,
    DEFAULT_MIN_SCORE_GAP,
    THRESHOLD_MAX,
    THRESHOLD_MIN,
)
from observability import get_logger

_log = get_logger("router_config")

CONFIG_VERSION = 1
DEFAULT_THRESHOLD = 0.25
MAX_MIN_SCORE_GAP = 0.5
LOCK_TIMEOUT_SECONDS = 10.0


class RouterConfigError(ValueError):
    """Missing, unreadable or structurally invalid router configuration."""


def clamp_threshold(value: float) -> float:
    return max(THRESHOLD_MIN, min(THRESHOLD_MAX, float(value)))


def clamp_alpha(value: float) -> float:
    return max(ALPHA_MIN, min(ALPHA_MAX, float(value)))


@dataclass
class Route:
    """A named intent backed by example utterances."""

    name: str
    utterances: list[str]
    threshold: float = DEFAULT_THRESHOLD
    negative_utterances: list[str] = field(default_factory=list)
    alpha_override: float | None = None

    def __post_init__(self) -> None:
        self.threshold = clamp_threshold(self.threshold)
        if self.alpha_override is not None:
            self.alpha_override = clamp_alpha(self.alpha_override)

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "threshold": round(self.threshold, 4),
            "utterances": list(self.utterances),
            "negativeUtterances": list(self.negative_utterances),
        }
        if self.alpha_override is not None:
            data["alpha"] = round(self.alpha_override, 4)
        return data


# ---------------------------------------------------------------------------
# Default route table
# ---------------------------------------------------------------------------

DEFAULT_ROUTE_TABLE: tuple[tuple[str, float, tuple[str, ...]], ...] = (
    ("stoic-smalltalk", 0.20, (
        "en que estas pensando", "en que andas", "dime algo bonito",
        "decime algo lindo", "dame una reflexion", "frase estoica",
    )),
    ("self-maintenance", 0.30, (
        "reinicia el agente", "actualiza el repositorio", "sumar habilidad",
        "crear skill", "eliminar skill", "estado del servicio",
    )),
    ("connector", 0.30, (
        "inicia lim", "deten lim", "reinicia lim", "estado del conector",
        "arranca el tunnel", "detener cloudflared", "consulta lim first_name",
        "buscar mensajes en lim", "trae mensajes de contacto en lim",
    )),
    ("schedule", 0.24, (
        "recordame mañana", "agenda una tarea", "programa recordatorio",
        "listar recordatorios", "editar tarea programada", "eliminar tarea pendiente",
    )),
    ("memory", 0.24, (
        "te acordas de", "recordas lo que hablamos", "busca en memoria",
        "que recuerdas sobre", "acordate de esto", "recordatorio de contexto",
    )),
    ("gmail-recipients", 0.28, (
        "agrega destinatario", "lista destinatarios", "actualiza destinatario",
        "elimina destinatario", "agenda de contactos de correo", "contactos para email",
    )),
    ("gmail", 0.27, (
        "enviar correo", "enviame un email", "revisar gmail",
        "ultimo correo", "leer inbox", "mandar mail a",
    )),
    ("workspace", 0.28, (
        "listar archivos", "crear archivo txt", "renombrar archivo",
        "mover archivo a carpeta", "eliminar archivo", "crear carpeta en workspace",
    )),
    ("document", 0.24, (
        "leer documento pdf", "analiza este archivo", "resumi el contrato",
        "extrae texto del docx", "abrir documento", "que dice el pdf",
    )),
    ("web", 0.23, (
        "busca en internet", "ultimas noticias", "revisa reddit",
        "abre este link", "noticias de cripto", "resumen de noticias de hoy",
    )),
)

KNOWN_ROUTE_NAMES = frozenset(name for name, _, _ in DEFAULT_ROUTE_TABLE)


def default_routes() -> list[Route]:
    """Fresh copies of the built-in routes (callers may mutate them)."""
    return [
        Route(name=name, threshold=threshold, utterances=list(utterances))
        for name, threshold, utterances in DEFAULT_ROUTE_TABLE
    ]


@dataclass
class RouterConfig:
    routes: list[Route]
    hybrid_alpha: float = DEFAULT_HYBRID_ALPHA
    min_score_gap: float = DEFAULT_MIN_SCORE_GAP
    version: int = CONFIG_VERSION
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "updatedAt": self.updated_at or _utc_now(),
            "hybridAlpha": round(self.hybrid_alpha, 4),
            "minScoreGap": round(self.min_score_gap, 4),
            "routes": [route.to_dict() for route in self.routes],
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _clean_texts(values) -> list[str]:
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def _as_float(value, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_route(entry, known_names: Iterable[str] = KNOWN_ROUTE_NAMES) -> Route | None:
    """Build a Route from one JSON entry.

    Returns None for unknown names or routes with no usable utterance.
    Raises RouterConfigError when required keys are missing.
    """
    if not isinstance(entry, dict):
        raise RouterConfigError(f"route entry must be an object, got {type(entry).__name__}")
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise RouterConfigError("route entry is missing 'name'")
    if "utterances" not in entry:
        raise RouterConfigError(f"route {name!r} is missing 'utterances'")
    name = name.strip()
    if name not in set(known_names):
        _log.debug("route_dropped_unknown", route=name)
        return None
    utterances = _clean_texts(entry.get("utterances"))
    if not utterances:
        _log.warning("route_dropped_empty", route=name)
        return None
    alpha = _as_float(entry.get("alpha"), float("nan"))
    return Route(
        name=name,
        utterances=utterances,
        threshold=_as_float(entry.get("threshold"), DEFAULT_THRESHOLD),
        negative_utterances=_clean_texts(entry.get("negativeUtterances")),
        alpha_override=None if alpha != alpha else alpha,
    )


def parse_router_config(data, known_names: Iterable[str] = KNOWN_ROUTE_NAMES) -> RouterConfig:
    """Validate a decoded routes document into a RouterConfig."""
    if not isinstance(data, dict):
        raise RouterConfigError("router config must be a JSON object")
    raw_routes = data.get("routes")
    if not isinstance(raw_routes, list):
        raise RouterConfigError("router config has no 'routes' list")

    known = frozenset(known_names)
    routes: list[Route] = []
    seen: set[str] = set()
    for entry in raw_routes:
        route = parse_route(entry, known)
        if route is None or route.name in seen:
            continue
        seen.add(route.name)
        routes.append(route)
    if not routes:
        raise RouterConfigError("router config has zero valid routes")

    hybrid_alpha = clamp_alpha(_as_float(data.get("hybridAlpha"), DEFAULT_HYBRID_ALPHA))
    min_gap = _as_float(data.get("minScoreGap"), DEFAULT_MIN_SCORE_GAP)
    version = data.get("version")
    return RouterConfig(
        routes=routes,
        hybrid_alpha=hybrid_alpha,
        min_score_gap=max(0.0, min(MAX_MIN_SCORE_GAP, min_gap)),
        version=version if isinstance(version, int) else CONFIG_VERSION,
        updated_at=str(data.get("updatedAt") or ""),
    )


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------

def load_router_config(path: str, known_names: Iterable[str] = KNOWN_ROUTE_NAMES) -> RouterConfig:
    """Read and validate a routes file. Raises RouterConfigError on any failure."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise RouterConfigError(f"router config not found: {path}") from exc
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RouterConfigError(f"router config unreadable: {path}: {exc}") from exc
    config = parse_router_config(data, known_names)
    _log.info("router_config_loaded", path=path, routes=len(config.routes))
    return config


def save_router_config(path: str, config: RouterConfig) -> None:
    """Write the full route set atomically (write to temp, then rename)."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    payload = config.to_dict()
    payload["updatedAt"] = _utc_now()
    tmp_path = path + ".tmp"
    with FileLock(path + ".lock", timeout=LOCK_TIMEOUT_SECONDS):
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    config.updated_at = payload["updatedAt"]
    _log.info("router_config_saved", path=path, routes=len(config.routes))
