"""Runtime settings loader for a release run.

This module provides :class:`ReleaseSettings`, the single object carrying
everything a run needs (paths, matrix, package units, remote, timeouts and
the two credentials), and :func:`load_settings`, which builds it from the
process environment, an optional ``.env`` file at the repository root and
explicit overrides from the CLI.

Role in Architecture
--------------------
- Forms the boundary between the CI/developer environment and the
  pipeline's typed configuration.
- Values are passed explicitly into each component; nothing reads the
  environment after this point.
- No business logic: only loading, parsing and validation.

Examples
--------
>>> from pathlib import Path
>>> from release_pipeline.settings import load_settings
>>> settings = load_settings(Path("."), toolchains=("stable",))
>>> settings.toolchains
('stable',)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from release_pipeline import config as _config
from release_pipeline.exceptions import ConfigurationError
from release_pipeline.stages.publishing import PackageUnit


def parse_package_units(text: str) -> tuple[PackageUnit, ...]:
    """Parse ``name[:dep+dep],...`` into ordered package units.

    Examples
    --------
    >>> [u.name for u in parse_package_units("valu3-derive,valu3:valu3-derive")]
    ['valu3-derive', 'valu3']
    """
    units: list[PackageUnit] = []
    for index, raw in enumerate(e.strip() for e in text.split(",") if e.strip()):
        name, _, deps = raw.partition(":")
        name = name.strip()
        if not name:
            raise ConfigurationError(
                f"Package entry '{raw}' has no name", context={"entry": raw}
            )
        depends_on = frozenset(d.strip() for d in deps.split("+") if d.strip())
        units.append(PackageUnit(name=name, order=index, depends_on=depends_on))
    return tuple(units)


def validate_unit_order(units: tuple[PackageUnit, ...]) -> None:
    """Require unique names and every dependency to precede its dependent."""
    seen: set[str] = set()
    for unit in units:
        if unit.name in seen:
            raise ConfigurationError(
                f"Package unit '{unit.name}' is listed twice",
                context={"unit": unit.name},
            )
        missing = sorted(unit.depends_on - seen)
        if missing:
            raise ConfigurationError(
                f"Package unit '{unit.name}' depends on {', '.join(missing)}, "
                "which must be listed (and published) before it",
                context={"unit": unit.name, "missing": missing},
            )
        seen.add(unit.name)


@dataclass(frozen=True)
class ReleaseSettings:
    r"""Validated configuration for one release run.

    Credentials are excluded from ``repr`` so the object can be logged.

    Attributes
    ----------
    repo_root : Path
        Repository (workspace) root; every command runs here.
    version_file : Path
        Location of the version file.
    toolchains : tuple[str, ...]
        Toolchain identifiers of the test matrix.
    matrix_commands : tuple[str, ...]
        Command templates run per toolchain (``{toolchain}`` placeholder).
    packages : tuple[PackageUnit, ...]
        Package units in publish order.
    publish_command : str
        Publish command template (``{name}`` placeholder).
    remote, release_branch : str
        Tag push remote and the branch whose pushes trigger a release.
    tag_conflict_policy : str
        ``"error"`` or ``"warn"``.
    registry_api_url : str
        Registry metadata API; empty disables the visibility wait.
    """

    repo_root: Path
    version_file: Path
    toolchains: tuple[str, ...] = _config.DEFAULT_TOOLCHAINS
    matrix_commands: tuple[str, ...] = _config.DEFAULT_MATRIX_COMMANDS
    packages: tuple[PackageUnit, ...] = field(
        default_factory=lambda: parse_package_units(_config.DEFAULT_PACKAGES)
    )
    publish_command: str = _config.DEFAULT_PUBLISH_COMMAND
    remote: str = _config.DEFAULT_REMOTE
    release_branch: str = _config.DEFAULT_RELEASE_BRANCH
    tag_conflict_policy: str = _config.DEFAULT_TAG_CONFLICT_POLICY
    max_parallel_toolchains: int = _config.DEFAULT_MAX_PARALLEL_TOOLCHAINS
    test_timeout: float = _config.DEFAULT_TEST_TIMEOUT
    tag_timeout: float = _config.DEFAULT_TAG_TIMEOUT
    publish_timeout: float = _config.DEFAULT_PUBLISH_TIMEOUT
    propagation_timeout: float = _config.DEFAULT_PROPAGATION_TIMEOUT
    propagation_interval: float = _config.DEFAULT_PROPAGATION_INTERVAL
    lock_wait: float = _config.DEFAULT_LOCK_WAIT
    registry_api_url: str = _config.DEFAULT_REGISTRY_API_URL
    log_dir: Path | None = None
    lock_dir: Path | None = None
    git_token: str | None = field(default=None, repr=False)
    registry_token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "repo_root", Path(self.repo_root))
        object.__setattr__(self, "version_file", Path(self.version_file))
        if self.log_dir is None:
            object.__setattr__(self, "log_dir", self.repo_root / _config.LOG_DIRNAME)
        if self.lock_dir is None:
            object.__setattr__(self, "lock_dir", self.repo_root / _config.LOCK_DIRNAME)
        self.validate()

    @property
    def secrets(self) -> tuple[str, ...]:
        return tuple(s for s in (self.git_token, self.registry_token) if s)

    def validate(self) -> None:
        """Check invariants that do not depend on the repository state.

        Raises
        ------
        ConfigurationError
            On an empty matrix or unit list, duplicate or out-of-order units,
            an unknown conflict policy, or non-positive limits.
        """
        if not self.toolchains:
            raise ConfigurationError("At least one toolchain is required")
        if not self.matrix_commands:
            raise ConfigurationError("At least one matrix command is required")
        if not self.packages:
            raise ConfigurationError("At least one package unit is required")
        validate_unit_order(self.packages)
        if self.tag_conflict_policy not in _config.TAG_CONFLICT_POLICIES:
            raise ConfigurationError(
                f"Unknown tag conflict policy '{self.tag_conflict_policy}'",
                context={"allowed": list(_config.TAG_CONFLICT_POLICIES)},
            )
        if self.max_parallel_toolchains < 1:
            raise ConfigurationError("RELEASE_MAX_PARALLEL must be at least 1")
        for name in (
            "test_timeout",
            "tag_timeout",
            "publish_timeout",
            "propagation_timeout",
            "propagation_interval",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.lock_wait < 0:
            raise ConfigurationError("lock_wait must not be negative")
        if not self.remote:
            raise ConfigurationError("A tag remote is required")


def _split(value: str, sep: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(sep) if v.strip())


def _number(environ: Mapping[str, str], name: str, cast: type, default: Any) -> Any:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a {cast.__name__}, got {raw!r}", context={"variable": name}
        ) from None


def load_settings(
    repo_root: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ReleaseSettings:
    r"""Build :class:`ReleaseSettings` from the environment and overrides.

    Parameters
    ----------
    repo_root : Path | None, optional
        Repository root; defaults to the current working directory.
    environ : Mapping[str, str] | None, optional
        Environment to read instead of ``os.environ`` (after loading
        ``.env``). Mainly for tests.
    **overrides
        Field values that win over the environment; ``None`` values are
        ignored so CLI flags that were not given leave the default.

    Returns
    -------
    ReleaseSettings
        Validated settings.

    Raises
    ------
    ConfigurationError
        If a variable cannot be parsed or the result is invalid.

    Notes
    -----
    ``.env`` is loaded with ``override=False``: variables already present in
    the process environment (e.g. CI secrets) take precedence over the file.
    """
    root = Path(repo_root) if repo_root is not None else Path.cwd()
    if environ is None:
        env_path = root / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=False)
        environ = os.environ

    version_file = environ.get("RELEASE_VERSION_FILE") or _config.VERSION_FILENAME
    values: dict[str, Any] = {
        "repo_root": root,
        "version_file": root / version_file,
        "remote": environ.get("RELEASE_REMOTE") or _config.DEFAULT_REMOTE,
        "release_branch": environ.get("RELEASE_BRANCH") or _config.DEFAULT_RELEASE_BRANCH,
        "tag_conflict_policy": (
            environ.get("RELEASE_TAG_CONFLICT") or _config.DEFAULT_TAG_CONFLICT_POLICY
        ).strip().lower(),
        "publish_command": environ.get("RELEASE_PUBLISH_COMMAND")
        or _config.DEFAULT_PUBLISH_COMMAND,
        "registry_api_url": environ.get(
            "RELEASE_REGISTRY_API", _config.DEFAULT_REGISTRY_API_URL
        ).strip(),
        "max_parallel_toolchains": _number(
            environ, "RELEASE_MAX_PARALLEL", int, _config.DEFAULT_MAX_PARALLEL_TOOLCHAINS
        ),
        "test_timeout": _number(
            environ, "RELEASE_TEST_TIMEOUT", float, _config.DEFAULT_TEST_TIMEOUT
        ),
        "tag_timeout": _number(
            environ, "RELEASE_TAG_TIMEOUT", float, _config.DEFAULT_TAG_TIMEOUT
        ),
        "publish_timeout": _number(
            environ, "RELEASE_PUBLISH_TIMEOUT", float, _config.DEFAULT_PUBLISH_TIMEOUT
        ),
        "propagation_timeout": _number(
            environ,
            "RELEASE_PROPAGATION_TIMEOUT",
            float,
            _config.DEFAULT_PROPAGATION_TIMEOUT,
        ),
        "propagation_interval": _number(
            environ,
            "RELEASE_PROPAGATION_INTERVAL",
            float,
            _config.DEFAULT_PROPAGATION_INTERVAL,
        ),
        "lock_wait": _number(environ, "RELEASE_LOCK_WAIT", float, _config.DEFAULT_LOCK_WAIT),
        "git_token": environ.get(_config.GIT_TOKEN_ENV) or None,
        "registry_token": environ.get(_config.REGISTRY_TOKEN_ENV) or None,
    }
    if environ.get("RELEASE_TOOLCHAINS") is not None:
        values["toolchains"] = _split(environ["RELEASE_TOOLCHAINS"], ",")
    if environ.get("RELEASE_MATRIX_COMMANDS") is not None:
        values["matrix_commands"] = _split(environ["RELEASE_MATRIX_COMMANDS"], ";")
    packages = environ.get("RELEASE_PACKAGES")
    values["packages"] = parse_package_units(
        packages if packages is not None else _config.DEFAULT_PACKAGES
    )
    if environ.get("RELEASE_LOG_DIR"):
        values["log_dir"] = root / environ["RELEASE_LOG_DIR"]
    if environ.get("RELEASE_LOCK_DIR"):
        values["lock_dir"] = root / environ["RELEASE_LOCK_DIR"]

    for key, value in overrides.items():
        if value is None:
            continue
        if key == "version_file":
            value = root / value
        elif key == "toolchains":
            value = tuple(value)
        values[key] = value

    try:
        return ReleaseSettings(**values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


__all__ = [
    "ReleaseSettings",
    "load_settings",
    "parse_package_units",
    "validate_unit_order",
]
