# cypherscan/scanner/fetcher.py
"""
Artifact fetcher: turns a scan locator into a flat tuple of FileArtifacts.

Two locator kinds:
    github   owner/name + optional subpath, resolved recursively through the
             GitHub contents API (directories are walked, files filtered by
             extension allow-list).
    onchain  contract address + chain, resolved through an Etherscan-style
             `getsourcecode` endpoint (verified source only).

Every fetch goes through the shared ArtifactCache first. The cache is pure
memoization: a cold fetch and a warm hit return the same files.

Errors:
    NotFoundError   nothing matched the extension filter / source not verified
    UpstreamError   the provider failed; `status` holds its HTTP status
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from cypherscan.scanner.base import SUPPORTED_CHAINS, FileArtifact, ScanRequest, SourceType
from cypherscan.scanner.cache import ArtifactCache
from cypherscan.scanner.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
EXPLORER_API = "https://api.etherscan.io/v2/api"

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".sol", ".vy")
DEFAULT_FETCH_TTL = 10 * 60
DEFAULT_MAX_FILES = 500
USER_AGENT = "cypherscan-security-scanner"

# vendored library trees, skipped unless the request opts in
DEPENDENCY_DIRS = frozenset({"lib", "node_modules", "dependencies", ".deps"})


def _decode(content: Any) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content or "")


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class SourceProvider(ABC):
    """
    Remote source-control contract.

    list_directory returns entries shaped like:
        {"name": "Vault.sol", "path": "contracts/Vault.sol", "type": "file" | "dir",
         "url": "<content url>", "content": bytes | None}

    A path that points at a single file returns a one-element list for that
    file, with `content` filled in when the provider got it for free.
    Credentials are passed through untouched.
    """

    @abstractmethod
    def list_directory(
        self, locator: str, path: str, credential: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_file_content(self, url: str, credential: Optional[str] = None) -> bytes:
        ...


class GitHubContentsProvider(SourceProvider):
    """GitHub REST v3 contents API over a shared requests.Session."""

    def __init__(
        self,
        api_url: str = GITHUB_API,
        default_token: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.default_token = default_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, credential: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        token = credential or self.default_token
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    def _get(self, url: str, credential: Optional[str]) -> requests.Response:
        try:
            resp = self.session.get(url, headers=self._headers(credential), timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"GitHub request failed for {url}: {e}") from e

        if resp.status_code == 403 and resp.headers.get("X-RateLimit-Remaining") == "0":
            raise UpstreamError("GitHub API rate limit exceeded", status=403)
        if resp.status_code >= 400:
            message = ""
            try:
                message = (resp.json() or {}).get("message", "")
            except ValueError:
                message = resp.text[:200]
            raise UpstreamError(
                f"GitHub returned {resp.status_code} for {url}: {message}".rstrip(": "),
                status=resp.status_code,
            )
        return resp

    @staticmethod
    def _entry(item: Dict[str, Any]) -> Dict[str, Any]:
        content = None
        if item.get("type") == "file" and item.get("encoding") == "base64" and item.get("content"):
            content = base64.b64decode(item["content"])
        return {
            "name": item.get("name", ""),
            "path": item.get("path", ""),
            "type": item.get("type", ""),
            "url": item.get("url", ""),
            "content": content,
        }

    def list_directory(
        self, locator: str, path: str, credential: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        url = f"{self.api_url}/repos/{locator}/contents/{quote(path.strip('/'))}"
        data = self._get(url, credential).json()

        if isinstance(data, list):
            return [self._entry(item) for item in data]
        if isinstance(data, dict):
            return [self._entry(data)]
        raise UpstreamError(f"Unexpected contents payload for {locator}/{path}")

    def get_file_content(self, url: str, credential: Optional[str] = None) -> bytes:
        data = self._get(url, credential).json()
        if data.get("encoding") == "base64" and data.get("content"):
            return base64.b64decode(data["content"])

        # Files over 1 MB come back with encoding "none"; pull the raw blob instead.
        download_url = data.get("download_url")
        if download_url:
            return self._get(download_url, credential).content
        return b""


class ExplorerSourceProvider:
    """
    Verified-source lookup against an Etherscan v2 compatible API.

    SourceCode comes in three shapes:
        plain Solidity text                          → one file
        {"A.sol": {"content": ...}, ...}             → multi-file
        {{"language": ..., "sources": {...}}}        → standard-json input (double braces)
    """

    def __init__(
        self,
        api_url: str = EXPLORER_API,
        api_key: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_source(self, address: str, chain: str) -> List[FileArtifact]:
        params = {
            "chainid": SUPPORTED_CHAINS[chain.lower()],
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        }
        if self.api_key:
            params["apikey"] = self.api_key

        try:
            resp = self.session.get(
                self.api_url, params=params, timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Explorer request failed for {address}: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(
                f"Explorer returned {resp.status_code} for {address}", status=resp.status_code
            )

        data = resp.json()
        if str(data.get("status")) != "1" or not data.get("result"):
            raise UpstreamError(f"Explorer error for {address}: {data.get('result') or data.get('message')}")

        record = data["result"][0]
        source = (record.get("SourceCode") or "").strip()
        if not source:
            raise NotFoundError(f"Contract {address} on {chain} has no verified source")

        return self._split_sources(source, record.get("ContractName") or address)

    @staticmethod
    def _split_sources(source: str, contract_name: str) -> List[FileArtifact]:
        if not source.startswith("{"):
            return [FileArtifact(path=f"{contract_name}.sol", content=source)]

        raw = source[1:-1] if source.startswith("{{") else source
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning(f"Could not parse multi-file source for {contract_name}; treating as one file")
            return [FileArtifact(path=f"{contract_name}.sol", content=source)]

        sources = payload.get("sources", payload)
        return [
            FileArtifact(path=path, content=_decode((body or {}).get("content")))
            for path, body in sources.items()
        ]


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class ArtifactFetcher:
    """
    Cache-backed resolver from locator to FileArtifacts.

    Results are tuples of frozen FileArtifacts, so a cached value can be
    handed to many scans without anyone mutating it.
    """

    def __init__(
        self,
        provider: SourceProvider,
        cache: ArtifactCache,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        ttl: float = DEFAULT_FETCH_TTL,
        max_files: int = DEFAULT_MAX_FILES,
        explorer: Optional[ExplorerSourceProvider] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.extensions = tuple(e.lower() for e in extensions)
        self.ttl = ttl
        self.max_files = max_files
        self.explorer = explorer

    def fetch(self, request: ScanRequest) -> Tuple[FileArtifact, ...]:
        """Resolve whichever locator the request carries."""
        if request.source_type == SourceType.ONCHAIN:
            return self.fetch_contract(request.contract_address, request.chain)
        return self.fetch_tree(
            request.repository,
            request.normalized_path,
            request.access_token,
            include_dependencies=request.options.include_dependencies,
        )

    def fetch_tree(
        self,
        locator: str,
        path: str = "",
        credential: Optional[str] = None,
        include_dependencies: bool = False,
    ) -> Tuple[FileArtifact, ...]:
        path = (path or "").strip("/")
        parts = ["github", locator.lower(), path]
        if include_dependencies:
            parts.append("deps")
        key = ArtifactCache.make_key(*parts)
        return self.cache.get_or_set(
            key,
            lambda: self._fetch_tree_uncached(locator, path, credential, include_dependencies),
            ttl=self.ttl,
        )

    def fetch_contract(self, address: str, chain: str) -> Tuple[FileArtifact, ...]:
        if self.explorer is None:
            raise UpstreamError("No block explorer provider is configured for on-chain scans")

        key = ArtifactCache.make_key("onchain", chain.lower(), address.lower())

        def _load() -> Tuple[FileArtifact, ...]:
            logger.info(f"Fetching verified source for {address} on {chain}")
            return tuple(self.explorer.get_source(address, chain))

        return self.cache.get_or_set(key, _load, ttl=self.ttl)

    # -------------------------------------------------------------------
    # Tree walk
    # -------------------------------------------------------------------

    def _matches(self, name: str) -> bool:
        return name.lower().endswith(self.extensions)

    def _fetch_tree_uncached(
        self, locator: str, path: str, credential: Optional[str], include_dependencies: bool = False
    ) -> Tuple[FileArtifact, ...]:
        logger.info(f"Fetching from GitHub: {locator}{'/' + path if path else ''}")
        collected: List[FileArtifact] = []
        self._walk(locator, path, credential, collected, include_dependencies)

        if not collected:
            raise NotFoundError(
                f"No source files matching {', '.join(self.extensions)} found in "
                f"{locator}{'/' + path if path else ''}"
            )

        logger.info(f"Fetched {len(collected)} files from {locator}")
        return tuple(collected)

    def _walk(
        self,
        locator: str,
        path: str,
        credential: Optional[str],
        out: List[FileArtifact],
        include_dependencies: bool = False,
    ) -> None:
        for entry in self.provider.list_directory(locator, path, credential):
            if len(out) >= self.max_files:
                logger.warning(f"File limit {self.max_files} reached for {locator}; truncating tree")
                return

            kind = entry.get("type")
            if kind == "dir":
                if not include_dependencies and entry.get("name") in DEPENDENCY_DIRS:
                    logger.debug(f"Skipping dependency directory {entry['path']}")
                    continue
                self._walk(locator, entry["path"], credential, out, include_dependencies)
            elif kind == "file" and self._matches(entry.get("name") or entry.get("path", "")):
                content = entry.get("content")
                if content is None:
                    content = self.provider.get_file_content(entry["url"], credential)
                out.append(FileArtifact(path=entry["path"], content=_decode(content)))
