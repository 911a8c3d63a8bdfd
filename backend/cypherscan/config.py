# cypherscan/config.py
"""
Runtime settings, read once from environment variables.

Every value has a default so a bare `create_app()` works in development.
Malformed values fail closed with RuntimeError at startup rather than
surfacing halfway through a scan.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple, TypeVar

from cypherscan.scanner.base import MAX_CONCURRENCY_LIMIT
from cypherscan.scanner.fetcher import DEFAULT_EXTENSIONS, EXPLORER_API, GITHUB_API

N = TypeVar("N", int, float)


def _env_number(name: str, default: N, cast: Callable[[str], N], minimum: N, maximum: Optional[N] = None) -> N:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise RuntimeError(f"{name} must be {bounds}, got {raw!r}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.environ.get(name, "")
    items = tuple(p.strip() for p in raw.split(",") if p.strip())
    return items or default


def _env_weights(name: str) -> Dict[str, float]:
    """`static_code=0.5,reentrancy=1.5` → {"static_code": 0.5, "reentrancy": 1.5}"""
    weights: Dict[str, float] = {}
    for item in _env_list(name, ()):
        analyzer, sep, raw = item.partition("=")
        try:
            weight = float(raw) if sep else None
        except ValueError:
            weight = None
        if not analyzer.strip() or weight is None or weight < 0:
            raise RuntimeError(f"{name} entries must look like analyzer=weight, got {item!r}")
        weights[analyzer.strip()] = weight
    return weights


@dataclass(frozen=True)
class ScanSettings:
    # consensus
    quorum_threshold: float = 0.6
    minimum_votes: Optional[int] = None            # None → half the analyzer pool
    voting_timeout: float = 300.0
    weighting_enabled: bool = False
    analyzer_weights: Dict[str, float] = field(default_factory=dict)

    # dispatch
    concurrency_limit: int = 4
    analyzer_timeout: float = 120.0

    # artifact cache
    cache_ttl: float = 600.0
    cache_max_entries: int = 10_000
    cache_sweep_interval: float = 300.0

    # scan table
    retention_seconds: float = 3600.0

    # sources
    source_extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    github_api_url: str = GITHUB_API
    github_token: Optional[str] = field(default=None, repr=False)
    explorer_api_url: str = EXPLORER_API
    explorer_api_key: Optional[str] = field(default=None, repr=False)

    # app
    cors_origins: Tuple[str, ...] = ()
    scheduler_enabled: bool = True

    @property
    def is_production(self) -> bool:
        """Production is detected by https CORS origins, as in deployment configs."""
        return any(o.startswith("https://") for o in self.cors_origins)

    @classmethod
    def from_env(cls) -> "ScanSettings":
        minimum_votes_raw = os.environ.get("SCAN_MINIMUM_VOTES", "").strip()
        return cls(
            quorum_threshold=_env_number("SCAN_QUORUM_THRESHOLD", 0.6, float, 0.01, 1.0),
            minimum_votes=(
                _env_number("SCAN_MINIMUM_VOTES", 1, int, 1) if minimum_votes_raw else None
            ),
            voting_timeout=_env_number("SCAN_VOTING_TIMEOUT", 300.0, float, 1.0),
            weighting_enabled=_env_bool("SCAN_WEIGHTING_ENABLED", False),
            analyzer_weights=_env_weights("SCAN_ANALYZER_WEIGHTS"),
            concurrency_limit=_env_number(
                "SCAN_CONCURRENCY_LIMIT", 4, int, 1, MAX_CONCURRENCY_LIMIT
            ),
            analyzer_timeout=_env_number("SCAN_ANALYZER_TIMEOUT", 120.0, float, 1.0),
            cache_ttl=_env_number("ARTIFACT_CACHE_TTL", 600.0, float, 1.0),
            cache_max_entries=_env_number("ARTIFACT_CACHE_MAX_ENTRIES", 10_000, int, 1),
            cache_sweep_interval=_env_number("ARTIFACT_CACHE_SWEEP_INTERVAL", 300.0, float, 1.0),
            retention_seconds=_env_number("SCAN_RETENTION_SECONDS", 3600.0, float, 0.0),
            source_extensions=tuple(
                e if e.startswith(".") else f".{e}"
                for e in _env_list("SCAN_SOURCE_EXTENSIONS", DEFAULT_EXTENSIONS)
            ),
            github_api_url=os.environ.get("GITHUB_API_URL") or GITHUB_API,
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            explorer_api_url=os.environ.get("EXPLORER_API_URL") or EXPLORER_API,
            explorer_api_key=os.environ.get("EXPLORER_API_KEY") or None,
            cors_origins=_env_list("CORS_ORIGINS", ()),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        )
