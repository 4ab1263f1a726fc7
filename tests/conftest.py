"""Pytest configuration for test environment setup.

- Forces ``DISABLE_FILE_LOGS=1`` to avoid writing log files during tests.
- Ensures the project root is available on ``sys.path`` for imports.
- Provides hand-written fakes for the git, publishing and registry
  collaborators plus a settings factory rooted in ``tmp_path``.
"""

import os
import signal
import sys

os.environ.setdefault("DISABLE_FILE_LOGS", "1")  # Avoid creating log files during tests
from pathlib import Path

import pytest

# Ensure project root is on sys.path
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from release_pipeline.exceptions import TagAlreadyExistsError  # noqa: E402
from release_pipeline.settings import ReleaseSettings, parse_package_units  # noqa: E402

_TEST_TIMEOUT = int(os.environ.get("PYTEST_TEST_TIMEOUT", "20"))


def _timeout_handler(signum, frame):
    """Test Timeout handler."""
    raise TimeoutError(f"Test exceeded {_TEST_TIMEOUT} seconds timeout")


def pytest_runtest_setup(item):
    """Test Pytest runtest setup."""
    try:
        signal.signal(signal.SIGALRM, _timeout_handler)
        signal.alarm(_TEST_TIMEOUT)
    except (AttributeError, ValueError):
        pass


def pytest_runtest_teardown(item, nextitem):
    """Test Pytest runtest teardown."""
    try:
        signal.alarm(0)
    except AttributeError:
        pass


class FakeGit:
    """In-memory stand-in for :class:`GitClient`.

    ``local`` and ``remote`` map tag names to the revision they point at.
    """

    def __init__(self, head: str = "c0ffee00c0ffee00"):
        self.head = head
        self.local: dict[str, str] = {}
        self.remote: dict[str, str] = {}
        self.calls: list[tuple[str, ...]] = []
        self.push_error: Exception | None = None

    async def head_revision(self):
        self.calls.append(("head",))
        return self.head

    async def local_tag_revision(self, tag):
        self.calls.append(("local", tag))
        return self.local.get(tag)

    async def remote_tag_revision(self, remote, tag):
        self.calls.append(("remote", remote, tag))
        return self.remote.get(tag)

    async def create_tag(self, tag):
        self.calls.append(("create", tag))
        if tag in self.local:
            raise TagAlreadyExistsError(tag, context={"where": "local"})
        self.local[tag] = self.head

    async def push_tag(self, remote, tag):
        self.calls.append(("push", remote, tag))
        if self.push_error is not None:
            raise self.push_error
        if tag in self.remote:
            raise TagAlreadyExistsError(tag, context={"where": "remote"})
        self.remote[tag] = self.local[tag]

    @property
    def tags(self) -> set[str]:
        return set(self.local) | set(self.remote)


class FakePackagePublisher:
    """Records ``publish_unit`` calls; units named in ``fail`` raise."""

    def __init__(self, fail=(), error_factory=None):
        self.fail = set(fail)
        self.error_factory = error_factory
        self.calls: list[tuple[str, str]] = []
        self.published: list[str] = []

    async def publish_unit(self, unit, version):
        self.calls.append((unit.name, version.value))
        if unit.name in self.fail:
            if self.error_factory is not None:
                raise self.error_factory(unit)
            from release_pipeline.exceptions import PublishError

            raise PublishError(f"Publishing {unit.name} failed", unit=unit.name)
        self.published.append(unit.name)


class FakeRegistry:
    def __init__(self):
        self.waited: list[tuple[str, str]] = []

    async def wait_until_visible(self, name, version, *, timeout, interval, session=None):
        self.waited.append((name, version))


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def fake_publisher():
    return FakePackagePublisher()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def make_settings(tmp_path):
    """Return a factory for settings rooted in ``tmp_path``.

    The version file holds ``2.3.0`` and the units are ``derive`` then
    ``main`` (which depends on ``derive``).
    """

    def factory(version: str | None = "2.3.0\n", **overrides):
        version_file = tmp_path / "VERSION.txt"
        if version is not None:
            version_file.write_text(version, encoding="utf-8")
        values = {
            "repo_root": tmp_path,
            "version_file": version_file,
            "toolchains": ("stable", "nightly"),
            "packages": parse_package_units("derive,main:derive"),
            "registry_api_url": "",
            "log_dir": tmp_path / "logs",
            "lock_dir": tmp_path / "locks",
        }
        values.update(overrides)
        return ReleaseSettings(**values)

    return factory
