# houdi-relevance — intent routing + memory recall for a conversational assistant
# Package: houdi_relevance (maps to scripts/ via pyproject.toml package-dir)

"""houdi-relevance: lexical relevance engine behind an assistant bot.

Core modules:
    semantic_router       — TF-IDF/BM25/char-trigram hybrid intent router
    threshold_search      — Coordinate descent + jitter threshold optimizer
    router_config         — Route table, routes file load/save
    router_dataset        — Labeled JSONL datasets, threshold suggestions, curation
    router_optimize       — Offline calibration job (CLI)
    confidence_calibration — Per-route score histograms
    ensemble              — Additive fusion of routing signals
    memory_recall         — Hybrid/scan recall over the memory archive
    memory_journal        — Daily notes, conversation turns, long-term facts
    relevance_scorer      — BM25, adaptive alpha, hybrid score
    vector_builder        — IDF tables, sparse vectors, route centroids
    decision_cache        — TTL + bounded memoization of decisions
    engine_config         — houdi-relevance.json loader
    observability         — Structured JSON logging + metrics
"""

__version__ = "0.4.0"
