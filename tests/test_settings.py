"""Tests for runtime settings loading and validation."""

from pathlib import Path

import pytest

from release_pipeline import config
from release_pipeline.exceptions import ConfigurationError
from release_pipeline.settings import (
    ReleaseSettings,
    load_settings,
    parse_package_units,
    validate_unit_order,
)


def test_defaults_from_empty_environment(tmp_path: Path):
    s = load_settings(tmp_path, environ={})
    assert s.repo_root == tmp_path
    assert s.version_file == tmp_path / "VERSION.txt"
    assert s.toolchains == ("stable", "beta", "nightly")
    assert [u.name for u in s.packages] == ["valu3-derive", "valu3"]
    assert s.packages[1].depends_on == frozenset({"valu3-derive"})
    assert s.remote == "origin"
    assert s.tag_conflict_policy == "error"
    assert s.log_dir == tmp_path / config.LOG_DIRNAME
    assert s.lock_dir == tmp_path / config.LOCK_DIRNAME
    assert s.git_token is None and s.registry_token is None


def test_environment_values_are_parsed(tmp_path: Path):
    env = {
        "RELEASE_TOOLCHAINS": "stable, 1.75.0",
        "RELEASE_MATRIX_COMMANDS": "cargo +{toolchain} test; cargo +{toolchain} doc",
        "RELEASE_PACKAGES": "a,b:a,c:a+b",
        "RELEASE_TAG_CONFLICT": " WARN ",
        "RELEASE_MAX_PARALLEL": "2",
        "RELEASE_TEST_TIMEOUT": "12.5",
        "RELEASE_REGISTRY_API": "",
        "RELEASE_VERSION_FILE": "crates/VERSION",
        "GITHUB_TOKEN": "gh-secret",
        "CARGO_REGISTRY_TOKEN": "cargo-secret",
    }
    s = load_settings(tmp_path, environ=env)
    assert s.toolchains == ("stable", "1.75.0")
    assert s.matrix_commands == ("cargo +{toolchain} test", "cargo +{toolchain} doc")
    assert [u.name for u in s.packages] == ["a", "b", "c"]
    assert s.packages[2].depends_on == frozenset({"a", "b"})
    assert s.tag_conflict_policy == "warn"
    assert s.max_parallel_toolchains == 2
    assert s.test_timeout == 12.5
    assert s.registry_api_url == ""
    assert s.version_file == tmp_path / "crates" / "VERSION"
    assert set(s.secrets) == {"gh-secret", "cargo-secret"}


def test_credentials_are_excluded_from_repr(tmp_path: Path):
    s = load_settings(
        tmp_path, environ={"GITHUB_TOKEN": "gh-secret", "CARGO_REGISTRY_TOKEN": "c-secret"}
    )
    text = repr(s)
    assert "gh-secret" not in text
    assert "c-secret" not in text


def test_overrides_win_and_none_is_ignored(tmp_path: Path):
    s = load_settings(
        tmp_path,
        environ={"RELEASE_REMOTE": "upstream"},
        remote=None,
        toolchains=["nightly"],
        version_file="other.txt",
        tag_conflict_policy="warn",
    )
    assert s.remote == "upstream"
    assert s.toolchains == ("nightly",)
    assert s.version_file == tmp_path / "other.txt"
    assert s.tag_conflict_policy == "warn"


def test_dotenv_does_not_override_process_environment(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text(
        "RELEASE_REMOTE=from-dotenv\nRELEASE_BRANCH=release\n", encoding="utf-8"
    )
    monkeypatch.setenv("RELEASE_REMOTE", "from-process")
    # Registers RELEASE_BRANCH with monkeypatch so the value loaded from
    # .env is removed again at teardown.
    monkeypatch.setenv("RELEASE_BRANCH", "placeholder")
    monkeypatch.delenv("RELEASE_BRANCH")
    s = load_settings(tmp_path)
    assert s.remote == "from-process"
    assert s.release_branch == "release"


@pytest.mark.parametrize(
    "env",
    [
        {"RELEASE_MAX_PARALLEL": "many"},
        {"RELEASE_TEST_TIMEOUT": "soon"},
        {"RELEASE_MAX_PARALLEL": "0"},
        {"RELEASE_PUBLISH_TIMEOUT": "-1"},
        {"RELEASE_LOCK_WAIT": "-1"},
        {"RELEASE_TOOLCHAINS": " , "},
        {"RELEASE_PACKAGES": ""},
        {"RELEASE_PACKAGES": "b:a,a"},
        {"RELEASE_TAG_CONFLICT": "ignore"},
    ],
)
def test_invalid_environment_raises(tmp_path: Path, env):
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path, environ=env)


def test_unknown_override_is_a_configuration_error(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path, environ={}, no_such_field=1)


def test_parse_package_units_keeps_declared_order():
    units = parse_package_units(" derive , main : derive ")
    assert [(u.name, u.order, u.depends_on) for u in units] == [
        ("derive", 0, frozenset()),
        ("main", 1, frozenset({"derive"})),
    ]


def test_parse_package_units_rejects_nameless_entry():
    with pytest.raises(ConfigurationError):
        parse_package_units("derive,:derive")


def test_validate_unit_order_rejects_duplicates():
    with pytest.raises(ConfigurationError):
        validate_unit_order(parse_package_units("a,a"))


def test_settings_validate_directly(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        ReleaseSettings(repo_root=tmp_path, version_file=tmp_path / "V", toolchains=())
