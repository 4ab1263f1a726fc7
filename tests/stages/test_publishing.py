"""Tests for ordered package publication."""

import shlex
import sys
from pathlib import Path

import pytest

import release_pipeline.stages.publishing as publishing
from release_pipeline.commands import CommandResult
from release_pipeline.exceptions import ExecutionError, PublishError, TimeoutExceededError
from release_pipeline.settings import parse_package_units
from release_pipeline.stages.publishing import PackagePublisher, UnitStatus
from release_pipeline.stages.version import ReleaseVersion

PY = shlex.quote(sys.executable)
V = ReleaseVersion("2.3.0")
UNITS = parse_package_units("valu3-derive,valu3:valu3-derive")


def recording_template(log: Path, fail: str = "") -> str:
    """Publish command appending the unit name to ``log``; ``fail`` exits 1."""
    script = (
        "import sys; open(sys.argv[2], 'a').write(sys.argv[1] + chr(10)); "
        f"sys.exit(1 if sys.argv[1] == '{fail}' else 0)"
    )
    return f"{PY} -c {shlex.quote(script)} {{name}} {shlex.quote(str(log))}"


@pytest.mark.asyncio
async def test_units_publish_in_order(tmp_path: Path, fake_registry):
    log = tmp_path / "published.txt"
    publisher = PackagePublisher(
        tmp_path, command_template=recording_template(log), registry=fake_registry
    )
    report = await publisher.publish_all(UNITS, V)
    assert report.succeeded
    assert report.published == ["valu3-derive", "valu3"]
    assert log.read_text(encoding="utf-8").split() == ["valu3-derive", "valu3"]
    assert fake_registry.waited == [("valu3-derive", "2.3.0"), ("valu3", "2.3.0")]


@pytest.mark.asyncio
async def test_failure_halts_remaining_units_without_rollback(tmp_path: Path):
    units = parse_package_units("a,b:a,c:b")
    log = tmp_path / "published.txt"
    publisher = PackagePublisher(tmp_path, command_template=recording_template(log, fail="b"))
    report = await publisher.publish_all(units, V)
    assert not report.succeeded
    assert [r.status for r in report.records] == [
        UnitStatus.SUCCEEDED,
        UnitStatus.FAILED,
        UnitStatus.PENDING,
    ]
    assert report.published == ["a"]
    assert isinstance(report.failed_record.error, PublishError)
    assert report.failed_record.error.unit == "b"
    assert log.read_text(encoding="utf-8").split() == ["a", "b"]


@pytest.mark.asyncio
async def test_dependent_waits_for_dependency_visibility(tmp_path: Path, monkeypatch):
    events = []

    class OrderedRegistry:
        async def wait_until_visible(self, name, version, *, timeout, interval, session=None):
            events.append(("visible", name))

    publisher = PackagePublisher(tmp_path, registry=OrderedRegistry())

    async def fake_run(args, **kwargs):
        events.append(("publish", args[-1]))
        return CommandResult(tuple(args), 0, "", "")

    monkeypatch.setattr(publishing, "run_command", fake_run)
    await publisher.publish_all(UNITS, V)
    assert events == [
        ("publish", "valu3-derive"),
        ("visible", "valu3-derive"),
        ("publish", "valu3"),
        ("visible", "valu3"),
    ]


@pytest.mark.asyncio
async def test_registry_token_is_injected_and_redacted(tmp_path: Path):
    script = (
        "import os, sys; print('token=' + os.environ.get('CARGO_REGISTRY_TOKEN', '')); "
        "sys.exit(1)"
    )
    publisher = PackagePublisher(
        tmp_path,
        command_template=f"{PY} -c {shlex.quote(script)} {{name}}",
        token="crates-secret-42",
    )
    with pytest.raises(PublishError) as info:
        await publisher.publish_unit(UNITS[0], V)
    tail = info.value.context["output_tail"]
    assert "token=***" in tail
    assert "crates-secret-42" not in tail
    assert info.value.stage == "publish:valu3-derive"


@pytest.mark.asyncio
async def test_bad_template_is_publish_error(tmp_path: Path):
    publisher = PackagePublisher(tmp_path, command_template="cargo publish -p {crate}")
    with pytest.raises(PublishError) as info:
        await publisher.publish_unit(UNITS[0], V)
    assert isinstance(info.value, ExecutionError)


@pytest.mark.asyncio
async def test_visibility_timeout_fails_unit(tmp_path: Path):
    class NeverVisible:
        async def wait_until_visible(self, name, version, *, timeout, interval, session=None):
            raise TimeoutExceededError(f"{name} not visible")

    publisher = PackagePublisher(
        tmp_path, command_template=f'{PY} -c "pass" {{name}}', registry=NeverVisible()
    )
    report = await publisher.publish_all(UNITS, V)
    assert report.records[0].status is UnitStatus.FAILED
    assert isinstance(report.records[0].error, TimeoutExceededError)
    assert report.records[1].status is UnitStatus.PENDING
