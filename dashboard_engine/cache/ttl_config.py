"""
Ouvidoria Dashboard — TTL Configuration
────────────────────────────────────────
Single source of truth for all cache durations, client and server side.

Table values are milliseconds. The server / Redis boundary reads the same
table through get_ttl_seconds(), so there is one policy and two views of it.

Resolution order for get_ttl(key):
  1. exact endpoint match (query string ignored)
  2. wildcard pattern, `*` = one path segment, first match in table order
  3. category default: longest configured endpoint that prefixes the key
  4. global default
"""

import logging
import re
from typing import Dict, List, Optional, Pattern, Tuple

log = logging.getLogger("dash.ttl")

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS

# ── Tiers (milliseconds) ──────────────────────────────────────
STATIC_TTL_MS      = 30 * MINUTE_MS   # districts, health units
SEMI_STATIC_TTL_MS = 10 * MINUTE_MS   # monthly aggregates
DYNAMIC_TTL_MS     = 5 * SECOND_MS    # dashboard, summary

DEFAULT_TTL_MS = DYNAMIC_TTL_MS

# ── Per endpoint (milliseconds), wildcards tried in order ────
ENDPOINT_TTLS: Dict[str, int] = {
    "/api/distritos":          STATIC_TTL_MS,
    "/api/unit/*":             STATIC_TTL_MS,
    "/api/aggregate/by-month": SEMI_STATIC_TTL_MS,
    "/api/dashboard-data":     DYNAMIC_TTL_MS,
    "/api/summary":            DYNAMIC_TTL_MS,
    "/api/aggregate":          60 * SECOND_MS,
    "/api/stats":              60 * SECOND_MS,
    "/api/sla":                90 * SECOND_MS,
    "/api/distinct":           10 * SECOND_MS,
    "/api/health":             5 * SECOND_MS,
}

# ── Per page type (seconds), server-side cache ────────────────
TTL_BY_TYPE: Dict[str, int] = {
    "overview":  5,
    "status":    15,
    "tema":      15,
    "assunto":   15,
    "categoria": 15,
    "bairro":    15,
    "orgaoMes":  30,
    "distinct":  300,
    "dashboard": 5,
    "sla":       60,
}
DEFAULT_TYPE_TTL_S = 15

# Entries living at least this long are also written to the persistent cache
PERSIST_MIN_TTL_MS = SEMI_STATIC_TTL_MS


def _compile(pattern: str) -> Pattern:
    parts = [re.escape(p) for p in pattern.split("*")]
    return re.compile("[^/]+".join(parts))


_WILDCARDS: List[Tuple[str, Pattern, int]] = [
    (p, _compile(p), ttl) for p, ttl in ENDPOINT_TTLS.items() if "*" in p
]
_PREFIXES: List[Tuple[str, int]] = sorted(
    ((p, ttl) for p, ttl in ENDPOINT_TTLS.items() if "*" not in p),
    key=lambda item: len(item[0]),
    reverse=True,
)


def _path_of(key: str) -> str:
    return key.split("?", 1)[0].split("#", 1)[0]


def match_endpoint(key) -> Optional[Tuple[str, int]]:
    """Return (pattern, ttl_ms) for the rule that governs `key`, or None."""
    if not key or not isinstance(key, str):
        return None
    path = _path_of(key)

    ttl = ENDPOINT_TTLS.get(path)
    if ttl is not None and "*" not in path:
        return path, ttl

    for pattern, regex, ttl in _WILDCARDS:
        if regex.fullmatch(path):
            return pattern, ttl

    for prefix, ttl in _PREFIXES:
        if path.startswith(prefix + "/"):
            return prefix, ttl

    return None


def get_ttl(key) -> int:
    """TTL in milliseconds for a cache key or endpoint."""
    match = match_endpoint(key)
    if match is None:
        log.debug(f"Cache TTL: {key!r} → {DEFAULT_TTL_MS}ms (default)")
        return DEFAULT_TTL_MS
    pattern, ttl = match
    log.debug(f"Cache TTL: {key} → {ttl}ms (rule: {pattern})")
    return ttl


def get_default_ttl() -> int:
    return DEFAULT_TTL_MS


def ms_to_seconds(ms: int) -> int:
    """Server-side view of a TTL. Redis SETEX needs whole seconds ≥ 1."""
    return max(1, int(round(ms / SECOND_MS)))


def get_ttl_seconds(key) -> int:
    return ms_to_seconds(get_ttl(key))


def get_ttl_by_type(kind: str) -> int:
    """TTL in seconds for a page type (overview, status, tema, ...)."""
    return TTL_BY_TYPE.get(kind, DEFAULT_TYPE_TTL_S)


def describe(key) -> dict:
    """Both unit views of the rule for `key`, as served by /api/cache/ttl."""
    match = match_endpoint(key)
    ttl_ms = match[1] if match else DEFAULT_TTL_MS
    return {
        "key":         key,
        "rule":        match[0] if match else "default",
        "ttl_ms":      ttl_ms,
        "ttl_s":       ms_to_seconds(ttl_ms),
        "persistent":  ttl_ms >= PERSIST_MIN_TTL_MS,
    }
