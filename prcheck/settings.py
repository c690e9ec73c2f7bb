"""Persisted CLI configuration and the per-run settings resolved from it."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal

import dateparser
from pydantic import BaseModel, ConfigDict, Field, field_validator

from prcheck.github_client import get_github_token
from prcheck.limiter import MAX_CONCURRENT_REPO_CHECKS

logger = logging.getLogger(__name__)

WILDCARD = "@"
DEFAULT_CACHE_EXPIRY = "60 minutes"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "prcheck" / "config.json"
CONFIG_PATH_ENV_VAR = "PRCHECK_CONFIG_PATH"
COHORT_EPOCH = date(2013, 6, 1)
COHORT_ORG_PREFIX = "Ada-C"
NO_CACHE_EXPRESSIONS = frozenset({"0", "none", "never"})

SUPPORTED_KEYS = (
    "githubAuthors",
    "githubOrg",
    "githubAuthToken",
    "cacheExpiry",
    "allGithubRepos",
)
ARRAY_KEYS = frozenset({"allGithubRepos", "githubAuthors"})


class ConfigError(ValueError):
    """Raised when a configuration key or file is invalid."""


class DurationParseError(ValueError):
    """Raised when a max cache age expression cannot be parsed."""


def validate_config_key(key: str) -> str:
    """Reject keys the tool does not know about."""
    if key not in SUPPORTED_KEYS:
        supported = "\n".join(f"- {supported_key}" for supported_key in SUPPORTED_KEYS)
        raise ConfigError(f"Unknown key name '{key}'! Supported values are:\n{supported}")
    return key


def is_wildcard(values: Sequence[str] | str | None) -> bool:
    """Return whether a value is the ``@`` wildcard, bare or as a one-item list."""
    if isinstance(values, str):
        return values == WILDCARD
    return values is not None and len(values) == 1 and values[0] == WILDCARD


class ConfigStore:
    """JSON file holding the user's saved defaults."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as error:
            raise ConfigError(f"Config file {self._path} is not valid JSON: {error}") from error
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self._path} must contain a JSON object.")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")

    def all(self) -> dict[str, Any]:
        return self._load()

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, values: Sequence[str]) -> Any:
        """Store values for a key; scalar keys keep only the first value."""
        validate_config_key(key)
        if not values:
            raise ConfigError(f"No value given for '{key}'.")
        value: Any = list(values) if key in ARRAY_KEYS else values[0]
        data = self._load()
        data[key] = value
        self._save(data)
        return value

    def delete(self, key: str) -> None:
        validate_config_key(key)
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


def default_config_store() -> ConfigStore:
    configured_path = os.getenv(CONFIG_PATH_ENV_VAR)
    return ConfigStore(Path(configured_path) if configured_path else DEFAULT_CONFIG_PATH)


def default_org_name(today: date) -> str:
    """Organization name of the cohort running on ``today`` (a new one every six months)."""
    months = (today.year - COHORT_EPOCH.year) * 12 + (today.month - COHORT_EPOCH.month)
    if today.day < COHORT_EPOCH.day:
        months -= 1
    return f"{COHORT_ORG_PREFIX}{months // 6}"


def parse_max_cache_age(expression: str, now: datetime) -> float | None:
    """Turn a relative expression like ``"60 minutes"`` into a cutoff timestamp.

    Returns ``None`` for expressions that disable cache reuse.
    """
    normalized = expression.strip()
    if normalized.lower() in NO_CACHE_EXPRESSIONS:
        return None

    if normalized.replace(".", "", 1).isdigit():
        raise DurationParseError(
            f"Invalid maxCacheAge '{expression}': add a unit, e.g. '{normalized} minutes'."
        )

    parsed = dateparser.parse(
        normalized,
        settings={"RELATIVE_BASE": now, "PREFER_DATES_FROM": "future"},
    )
    if parsed is None:
        raise DurationParseError(f"Invalid maxCacheAge '{expression}'.")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)

    age_seconds = abs((parsed - now).total_seconds())
    return now.timestamp() - age_seconds


class CheckSettings(BaseModel):
    """Everything one ``check`` run needs, resolved once up front."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    org: str = Field(min_length=1)
    repos: tuple[str, ...] = ()
    authors: tuple[str, ...] | Literal["@"] = WILDCARD
    cache_cutoff: float | None = None
    token: str | None = None
    max_concurrency: int = Field(default=MAX_CONCURRENT_REPO_CHECKS, ge=1)

    @field_validator("authors", mode="before")
    @classmethod
    def normalize_authors(cls, value: Any) -> Any:
        """Collapse the wildcard and drop duplicate logins, keeping first-seen order."""
        if value is None or is_wildcard(value):
            return WILDCARD
        if isinstance(value, str):
            return (value,)
        return tuple(dict.fromkeys(value))

    @property
    def all_authors(self) -> bool:
        return self.authors == WILDCARD


def _split_values(values: Sequence[str]) -> list[str]:
    """Flatten comma-separated CLI values."""
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


def resolve_check_settings(
    store: ConfigStore,
    *,
    repos: Sequence[str],
    authors: Sequence[str] | None = None,
    org: str | None = None,
    max_cache_age: str | None = None,
    no_cache: bool = False,
    now: datetime | None = None,
) -> CheckSettings:
    """Merge CLI arguments over saved configuration.

    Raises:
        ConfigError: If the config file cannot be read.
        DurationParseError: If the max cache age cannot be parsed.
    """
    now = now or datetime.now()
    config = store.all()

    resolved_repos: Sequence[str] = repos
    if is_wildcard(repos):
        resolved_repos = config.get("allGithubRepos") or []

    resolved_authors: Any = _split_values(authors) if authors else config.get("githubAuthors")

    resolved_org = org
    if not resolved_org:
        auto_org = default_org_name(now.date())
        configured_org = config.get("githubOrg")
        if (
            configured_org
            and configured_org.startswith(COHORT_ORG_PREFIX)
            and configured_org != auto_org
        ):
            logger.warning("GitHub org name may be outdated! %s --> %s", configured_org, auto_org)
        resolved_org = configured_org or auto_org

    expression = max_cache_age or config.get("cacheExpiry") or DEFAULT_CACHE_EXPIRY
    cutoff = None if no_cache else parse_max_cache_age(expression, now)

    return CheckSettings(
        org=resolved_org,
        repos=tuple(resolved_repos),
        authors=resolved_authors,
        cache_cutoff=cutoff,
        token=get_github_token(config.get("githubAuthToken")),
    )
