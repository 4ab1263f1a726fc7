"""Global configuration constants for the release pipeline.

Defines filenames, default stage inputs and limits used across the
orchestrator, the stage components and the CLI. Runtime values (secrets,
per-repository overrides) are resolved by :mod:`release_pipeline.settings`.
"""

from __future__ import annotations

from pathlib import Path

# Package directories
PACKAGE_ROOT: Path = Path(__file__).resolve().parent

# Version file, relative to the repository root
VERSION_FILENAME: str = "VERSION.txt"

# Test matrix
DEFAULT_TOOLCHAINS: tuple[str, ...] = ("stable", "beta", "nightly")
DEFAULT_MATRIX_COMMANDS: tuple[str, ...] = (
    "rustup update {toolchain}",
    "cargo +{toolchain} build --verbose",
    "cargo +{toolchain} test --verbose",
)
DEFAULT_MAX_PARALLEL_TOOLCHAINS: int = 3
TOOLCHAIN_ENV: dict[str, str] = {"CARGO_TERM_COLOR": "always"}
MATRIX_TARGET_SUBDIR: str = "target/matrix"

# Package units in publish order: ``name[:dependency+dependency]``
DEFAULT_PACKAGES: str = "valu3-derive,valu3:valu3-derive"
DEFAULT_PUBLISH_COMMAND: str = "cargo publish --verbose -p {name}"

# Version control
DEFAULT_REMOTE: str = "origin"
DEFAULT_RELEASE_BRANCH: str = "main"
TAG_CONFLICT_POLICIES: tuple[str, ...] = ("error", "warn")
DEFAULT_TAG_CONFLICT_POLICY: str = "error"

# Registry
DEFAULT_REGISTRY_API_URL: str = "https://crates.io/api/v1/crates"
REGISTRY_USER_AGENT: str = "release-pipeline (+https://github.com/lowcarboncode/valu3)"
REGISTRY_REQUEST_TIMEOUT: int = 30

# Timeouts (seconds)
DEFAULT_TEST_TIMEOUT: float = 3600.0
DEFAULT_TAG_TIMEOUT: float = 300.0
DEFAULT_PUBLISH_TIMEOUT: float = 1200.0
DEFAULT_PROPAGATION_TIMEOUT: float = 600.0
DEFAULT_PROPAGATION_INTERVAL: float = 5.0
DEFAULT_LOCK_WAIT: float = 0.0
LOCK_POLL_INTERVAL: float = 0.5

# Secrets consumed opaquely from the environment
GIT_TOKEN_ENV: str = "GITHUB_TOKEN"
REGISTRY_TOKEN_ENV: str = "CARGO_REGISTRY_TOKEN"

# Logging and runtime directories (relative to the repository root)
LOG_DIRNAME: str = "logs"
LOG_FILENAME: str = "release_pipeline.log"
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOCK_DIRNAME: str = ".release-locks"

# Number of trailing output lines attached to a failed command's error
FAILURE_OUTPUT_TAIL_LINES: int = 40
