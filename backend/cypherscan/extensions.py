# cypherscan/extensions.py
"""
Process-wide services, built once per app and stored on
`app.extensions["cypherscan"]`:

    settings      ScanSettings
    cache         ArtifactCache (sweeper started when schedulers are enabled)
    fetcher       ArtifactFetcher over GitHub + block explorer providers
    orchestrator  ScanOrchestrator with every registered analyzer
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from flask import Flask, current_app

from cypherscan.config import ScanSettings
from cypherscan.scanner import ScanOrchestrator
from cypherscan.scanner.analyzers import build_analyzers
from cypherscan.scanner.cache import ArtifactCache
from cypherscan.scanner.dispatcher import AnalyzerDispatcher
from cypherscan.scanner.fetcher import ArtifactFetcher, ExplorerSourceProvider, GitHubContentsProvider

logger = logging.getLogger(__name__)

EXTENSION_KEY = "cypherscan"


def build_orchestrator(settings: ScanSettings, cache: ArtifactCache) -> ScanOrchestrator:
    session = requests.Session()
    fetcher = ArtifactFetcher(
        provider=GitHubContentsProvider(
            api_url=settings.github_api_url,
            default_token=settings.github_token,
            session=session,
        ),
        cache=cache,
        extensions=settings.source_extensions,
        ttl=settings.cache_ttl,
        explorer=ExplorerSourceProvider(
            api_url=settings.explorer_api_url,
            api_key=settings.explorer_api_key,
            session=session,
        ),
    )
    return ScanOrchestrator(
        fetcher=fetcher,
        analyzers=build_analyzers(),
        dispatcher=AnalyzerDispatcher(call_timeout=settings.analyzer_timeout),
        concurrency_limit=settings.concurrency_limit,
        quorum_threshold=settings.quorum_threshold,
        minimum_votes=settings.minimum_votes,
        voting_timeout=settings.voting_timeout,
        weighting_enabled=settings.weighting_enabled,
        analyzer_weights=settings.analyzer_weights,
    )


def init_extensions(
    app: Flask,
    settings: ScanSettings,
    orchestrator: Optional[ScanOrchestrator] = None,
) -> Dict[str, Any]:
    """Wire services onto the app. A prebuilt orchestrator (tests) skips provider setup."""
    if orchestrator is None:
        cache = ArtifactCache(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_ttl,
            sweep_interval=settings.cache_sweep_interval,
        )
        orchestrator = build_orchestrator(settings, cache)
    else:
        cache = orchestrator.fetcher.cache

    if settings.scheduler_enabled:
        cache.start()

    services = {
        "settings": settings,
        "cache": cache,
        "fetcher": orchestrator.fetcher,
        "orchestrator": orchestrator,
    }
    app.extensions[EXTENSION_KEY] = services
    logger.info(
        f"Scan services ready: {len(orchestrator.analyzers)} analyzers, "
        f"concurrency {orchestrator.concurrency_limit}, quorum {orchestrator.quorum_threshold}"
    )
    return services


def get_orchestrator() -> ScanOrchestrator:
    return current_app.extensions[EXTENSION_KEY]["orchestrator"]


def get_cache() -> ArtifactCache:
    return current_app.extensions[EXTENSION_KEY]["cache"]
