"""Unit tests for persisted configuration and per-run settings."""

from __future__ import annotations

import json
from datetime import date, datetime
from pathlib import Path

import pytest
from prcheck.settings import (
    DEFAULT_CACHE_EXPIRY,
    CheckSettings,
    ConfigError,
    ConfigStore,
    DurationParseError,
    default_org_name,
    is_wildcard,
    parse_max_cache_age,
    resolve_check_settings,
    validate_config_key,
)
from pydantic import ValidationError

NOW = datetime(2026, 10, 19, 12, 0, 0)


def make_store(tmp_path: Path, data: dict[str, object] | None = None) -> ConfigStore:
    """Create a config store, optionally pre-populated."""
    path = tmp_path / "prcheck" / "config.json"
    if data is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
    return ConfigStore(path)


@pytest.mark.unit
def test_validate_config_key_lists_supported_keys() -> None:
    assert validate_config_key("githubOrg") == "githubOrg"
    with pytest.raises(ConfigError) as error_info:
        validate_config_key("githubUser")
    assert "- allGithubRepos" in str(error_info.value)


@pytest.mark.unit
def test_is_wildcard() -> None:
    assert is_wildcard("@")
    assert is_wildcard(["@"])
    assert not is_wildcard(["@", "alice"])
    assert not is_wildcard([])
    assert not is_wildcard(None)


@pytest.mark.unit
def test_store_keeps_arrays_for_list_keys_and_first_value_otherwise(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    store.set("githubAuthors", ["alice", "bob"])
    store.set("githubOrg", ["acme", "ignored"])

    assert store.get("githubAuthors") == ["alice", "bob"]
    assert store.get("githubOrg") == "acme"
    assert json.loads(store.path.read_text(encoding="utf-8")) == {
        "githubAuthors": ["alice", "bob"],
        "githubOrg": "acme",
    }


@pytest.mark.unit
def test_store_rejects_unknown_keys_and_empty_values(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    with pytest.raises(ConfigError):
        store.set("nope", ["x"])
    with pytest.raises(ConfigError):
        store.set("githubOrg", [])
    with pytest.raises(ConfigError):
        store.delete("nope")


@pytest.mark.unit
def test_store_delete_removes_key(tmp_path: Path) -> None:
    store = make_store(tmp_path, {"githubOrg": "acme", "cacheExpiry": "1 hour"})

    store.delete("githubOrg")

    assert store.get("githubOrg") is None
    assert store.all() == {"cacheExpiry": "1 hour"}


@pytest.mark.unit
def test_store_reports_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigError):
        ConfigStore(path).all()


@pytest.mark.unit
@pytest.mark.parametrize(
    ("today", "expected"),
    [
        (date(2013, 6, 1), "Ada-C0"),
        (date(2013, 11, 30), "Ada-C0"),
        (date(2013, 12, 1), "Ada-C1"),
        (date(2026, 10, 19), "Ada-C26"),
    ],
)
def test_default_org_name_changes_every_six_months(today: date, expected: str) -> None:
    assert default_org_name(today) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    ("expression", "seconds"),
    [("60 minutes", 3600), ("2 hours", 7200), ("1 day", 86400)],
)
def test_parse_max_cache_age_returns_cutoff_in_the_past(expression: str, seconds: int) -> None:
    cutoff = parse_max_cache_age(expression, NOW)

    assert cutoff is not None
    assert cutoff == pytest.approx(NOW.timestamp() - seconds, abs=1)


@pytest.mark.unit
@pytest.mark.parametrize("expression", ["0", "none", "Never"])
def test_parse_max_cache_age_disables_cache(expression: str) -> None:
    assert parse_max_cache_age(expression, NOW) is None


@pytest.mark.unit
def test_parse_max_cache_age_rejects_gibberish() -> None:
    with pytest.raises(DurationParseError):
        parse_max_cache_age("xyzzy plugh", NOW)


@pytest.mark.unit
@pytest.mark.parametrize("expression", ["5", " 30 ", "1.5"])
def test_parse_max_cache_age_requires_a_unit(expression: str) -> None:
    with pytest.raises(DurationParseError, match="add a unit"):
        parse_max_cache_age(expression, NOW)


@pytest.mark.unit
def test_check_settings_normalizes_authors() -> None:
    assert CheckSettings(org="acme", authors=["alice", "bob", "alice"]).authors == (
        "alice",
        "bob",
    )
    assert CheckSettings(org="acme", authors=["@"]).all_authors
    assert CheckSettings(org="acme", authors=None).all_authors
    with pytest.raises(ValidationError):
        CheckSettings(org="", authors="@")
    with pytest.raises(ValidationError):
        CheckSettings(org="acme", max_concurrency=0)


@pytest.mark.unit
def test_resolve_prefers_cli_arguments(tmp_path: Path) -> None:
    store = make_store(
        tmp_path,
        {
            "githubAuthors": ["carol"],
            "githubOrg": "configured-org",
            "cacheExpiry": "1 day",
            "githubAuthToken": "config-token",
        },
    )

    settings = resolve_check_settings(
        store,
        repos=["widgets", "gadgets"],
        authors=["alice,bob", "bob"],
        org="cli-org",
        max_cache_age="2 hours",
        now=NOW,
    )

    assert settings.org == "cli-org"
    assert settings.repos == ("widgets", "gadgets")
    assert settings.authors == ("alice", "bob")
    assert settings.cache_cutoff == pytest.approx(NOW.timestamp() - 7200, abs=1)
    assert settings.token == "config-token"
    assert settings.max_concurrency == 5


@pytest.mark.unit
def test_resolve_falls_back_to_saved_configuration(tmp_path: Path) -> None:
    store = make_store(
        tmp_path,
        {
            "githubAuthors": ["carol"],
            "githubOrg": "configured-org",
            "cacheExpiry": "1 day",
            "allGithubRepos": ["widgets", "gadgets"],
        },
    )

    settings = resolve_check_settings(store, repos=["@"], now=NOW)

    assert settings.org == "configured-org"
    assert settings.repos == ("widgets", "gadgets")
    assert settings.authors == ("carol",)
    assert settings.cache_cutoff == pytest.approx(NOW.timestamp() - 86400, abs=1)
    assert settings.token is None


@pytest.mark.unit
def test_resolve_defaults_without_configuration(tmp_path: Path) -> None:
    settings = resolve_check_settings(make_store(tmp_path), repos=["@"], now=NOW)

    assert settings.org == "Ada-C26"
    assert settings.repos == ()
    assert settings.all_authors
    assert settings.cache_cutoff == parse_max_cache_age(DEFAULT_CACHE_EXPIRY, NOW)


@pytest.mark.unit
def test_resolve_author_wildcard_overrides_saved_authors(tmp_path: Path) -> None:
    store = make_store(tmp_path, {"githubAuthors": ["carol"]})

    settings = resolve_check_settings(store, repos=["widgets"], authors=["@"], now=NOW)

    assert settings.all_authors


@pytest.mark.unit
def test_resolve_warns_about_outdated_cohort_org(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = make_store(tmp_path, {"githubOrg": "Ada-C20"})

    with caplog.at_level("WARNING", logger="prcheck.settings"):
        settings = resolve_check_settings(store, repos=["widgets"], now=NOW)

    assert settings.org == "Ada-C20"
    assert "Ada-C20 --> Ada-C26" in caplog.text


@pytest.mark.unit
def test_resolve_no_cache_and_bad_duration(tmp_path: Path) -> None:
    store = make_store(tmp_path)

    assert resolve_check_settings(store, repos=["w"], no_cache=True, now=NOW).cache_cutoff is None
    with pytest.raises(DurationParseError):
        resolve_check_settings(store, repos=["w"], max_cache_age="xyzzy plugh", now=NOW)


@pytest.mark.unit
def test_resolve_reads_token_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "env-token")

    settings = resolve_check_settings(make_store(tmp_path), repos=["w"], now=NOW)

    assert settings.token == "env-token"
