"""Cache-first GitHub API access for pull requests and reviews."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from dotenv import load_dotenv

from prcheck.cache import GITHUB_API_VERSION, CacheStore, RequestSignature

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
PULLS_KIND = "pulls"
REVIEWS_KIND = "reviews"
PER_PAGE = 100
RATE_LIMIT_WARNING_THRESHOLD = 100


class FetchError(RuntimeError):
    """Raised when a GitHub request cannot be completed."""

    def __init__(self, message: str, *, endpoint: str) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class GitHubApiError(FetchError):
    """Raised when a GitHub API request fails or returns an unexpected shape."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message, endpoint=endpoint)
        self.status_code = status_code


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class PullRequest:
    """Open pull request reduced to what reconciliation needs."""

    number: int
    author_login: str


@dataclass(frozen=True, slots=True)
class Review:
    """One review record on a pull request."""

    state: str


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    """Rate limit headers seen on the most recent network response."""

    remaining: int
    reset_at: float | None


def endpoint_for(signature: RequestSignature) -> str:
    """Map a request signature to its GitHub REST endpoint."""
    if signature.kind == PULLS_KIND:
        return f"/repos/{signature.org}/{signature.repo}/pulls?state=open&per_page={PER_PAGE}"
    if signature.kind == REVIEWS_KIND:
        if signature.resource_id is None:
            raise ValueError("Review signatures require a pull request number.")
        return (
            f"/repos/{signature.org}/{signature.repo}/pulls/"
            f"{signature.resource_id}/reviews?per_page={PER_PAGE}"
        )
    raise ValueError(f"Unknown request kind '{signature.kind}'.")


def _parse_rate_limit(response: httpx.Response) -> RateLimitStatus | None:
    """Read rate limit headers if the response carries them."""
    remaining = response.headers.get("X-RateLimit-Remaining")
    if remaining is None:
        return None
    try:
        remaining_value = int(remaining)
    except ValueError:
        return None
    reset = response.headers.get("X-RateLimit-Reset")
    try:
        reset_at = float(reset) if reset is not None else None
    except ValueError:
        reset_at = None
    return RateLimitStatus(remaining=remaining_value, reset_at=reset_at)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    exhausted = response.headers.get("X-RateLimit-Remaining") == "0"
    if response.status_code == 429 or (response.status_code == 403 and exhausted):
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def _decode_json_list(payload: bytes, *, endpoint: str) -> list[dict[str, Any]]:
    """Decode a JSON array of objects."""
    try:
        decoded = json.loads(payload)
    except ValueError as error:
        raise GitHubApiError(
            "Expected JSON body in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        ) from error
    if not isinstance(decoded, list):
        raise GitHubApiError(
            "Expected JSON array in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in decoded:
        if not isinstance(item, dict):
            raise GitHubApiError(
                "Expected all array items to be JSON objects in GitHub response.",
                status_code=500,
                endpoint=endpoint,
            )
        rows.append(item)
    return rows


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected integer field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected object field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


class GitHubFetcher:
    """Cache-first fetcher for GitHub pull request data.

    A cached payload is reused when it was fetched at or after the caller's
    cutoff timestamp. Anything older, or any call made with ``cutoff=None``,
    goes to the network and replaces the cache entry. Failures are never
    retried here.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        cache: CacheStore | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self.network_calls = 0
        self.cache_hits = 0
        self.rate_limit: RateLimitStatus | None = None

    def _read_cache(self, signature: RequestSignature, cutoff: float | None) -> bytes | None:
        """Return a fresh cached payload or ``None``."""
        if self._cache is None or cutoff is None:
            return None
        try:
            entry = self._cache.get(signature)
        except sqlite3.Error:
            logger.warning("Cache read failed for %s; fetching from network", signature.describe())
            return None
        if entry is None or entry.fetched_at < cutoff:
            return None
        return entry.payload

    def _write_cache(self, signature: RequestSignature, payload: bytes) -> None:
        if self._cache is None:
            return
        try:
            self._cache.put(signature, payload)
        except sqlite3.Error as error:
            logger.warning("Cache write failed for %s: %s", signature.describe(), error)

    def _record_rate_limit(self, response: httpx.Response) -> None:
        status = _parse_rate_limit(response)
        if status is None:
            return
        self.rate_limit = status
        if status.remaining < RATE_LIMIT_WARNING_THRESHOLD:
            wait_seconds = max(0.0, status.reset_at - time.time()) if status.reset_at else 0.0
            logger.warning(
                "GitHub rate limit low (%d remaining, resets in %.0f seconds)",
                status.remaining,
                wait_seconds,
            )

    async def fetch(self, signature: RequestSignature, cutoff: float | None) -> bytes:
        """Return the payload for a signature, from cache when fresh enough."""
        cached = self._read_cache(signature, cutoff)
        if cached is not None:
            self.cache_hits += 1
            logger.debug("Cache hit for %s", signature.describe())
            return cached

        endpoint = endpoint_for(signature)
        logger.debug("Fetching %s from %s", signature.describe(), endpoint)
        self.network_calls += 1
        try:
            response = await self._client.get(endpoint)
        except httpx.HTTPError as error:
            raise FetchError(
                f"GitHub request for '{endpoint}' failed: {error}",
                endpoint=endpoint,
            ) from error

        self._record_rate_limit(response)
        if response.status_code >= 400:
            _raise_http_error(response, endpoint)

        payload = response.content
        self._write_cache(signature, payload)
        return payload

    async def list_open_pull_requests(
        self,
        org: str,
        repo: str,
        cutoff: float | None,
    ) -> tuple[PullRequest, ...]:
        """List open pull requests for one repository."""
        signature = RequestSignature(org=org, repo=repo, kind=PULLS_KIND)
        endpoint = endpoint_for(signature)
        rows = _decode_json_list(await self.fetch(signature, cutoff), endpoint=endpoint)

        pulls: list[PullRequest] = []
        for row in rows:
            user_payload = _require_object(row, key="user", endpoint=endpoint)
            pulls.append(
                PullRequest(
                    number=_require_int(row, key="number", endpoint=endpoint),
                    author_login=_require_str(user_payload, key="login", endpoint=endpoint),
                )
            )
        return tuple(pulls)

    async def list_reviews(
        self,
        org: str,
        repo: str,
        pull_number: int,
        cutoff: float | None,
    ) -> tuple[Review, ...]:
        """List reviews for one pull request in the order GitHub returns them."""
        signature = RequestSignature(org=org, repo=repo, kind=REVIEWS_KIND, resource_id=pull_number)
        endpoint = endpoint_for(signature)
        rows = _decode_json_list(await self.fetch(signature, cutoff), endpoint=endpoint)
        return tuple(
            Review(state=_require_str(row, key="state", endpoint=endpoint)) for row in rows
        )


def get_github_token(configured_token: str | None = None) -> str | None:
    """Return the configured token, else one from the environment or ``.env``."""
    if configured_token:
        return configured_token

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    return os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN") or None


def build_github_client(
    token: str | None = None,
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.AsyncClient:
    """Build a GitHub HTTP client, authenticated when a token is available."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=GITHUB_API_BASE_URL,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
