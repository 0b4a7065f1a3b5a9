"""Configuration and environment helpers for the project.

Provides small helpers to read typed environment variables and exposes
project-level configuration constants used across the codebase (e.g.
RETRIEVAL_BASE_URL, cache capacity and TTL, timeouts and log level).
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


# Network / HTTP
HTTP_VERIFY = _env_bool("HTTP_VERIFY", False)

# Retrieval backend
RETRIEVAL_BASE_URL = os.environ.get("RETRIEVAL_BASE_URL", "http://localhost:8080").strip()
RETRIEVAL_TIMEOUT = _env_float("RETRIEVAL_TIMEOUT", 20.0)
RETRIEVAL_MAX_CONCURRENCY = _env_int("RETRIEVAL_MAX_CONCURRENCY", 5)
DEFAULT_TOP_K = _env_int("DEFAULT_TOP_K", 5)

# Context cache
CONTEXT_CACHE_CAPACITY = _env_int("CONTEXT_CACHE_CAPACITY", 256)
CONTEXT_CACHE_TTL = _env_float("CONTEXT_CACHE_TTL", 300.0)
CONTEXT_CACHE_SWEEP_INTERVAL = _env_float("CONTEXT_CACHE_SWEEP_INTERVAL", 60.0)  # <= 0 disables
CONTEXT_WAIT_TIMEOUT = _env_float("CONTEXT_WAIT_TIMEOUT", 30.0)  # <= 0 waits forever

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip() or "INFO"
