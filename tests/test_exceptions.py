"""Tests for the exception taxonomy in ``release_pipeline.exceptions``."""

import pytest

from release_pipeline.exceptions import (
    AppError,
    ConcurrencyConflictError,
    ConfigurationError,
    ExecutionError,
    ParseError,
    PipelineCancelledError,
    PublishError,
    PushRejectedError,
    RunInProgressError,
    TagAlreadyExistsError,
    TimeoutExceededError,
)


def test_app_error_str_and_dict():
    e = AppError("CODE", "message", context={"stage": "tag"}, transient=True)
    assert str(e) == "CODE: message"
    assert e.to_dict() == {
        "error_code": "CODE",
        "message": "message",
        "context": {"stage": "tag"},
        "is_transient": True,
    }


def test_parse_error_is_configuration_error():
    e = ParseError("bad version file")
    assert isinstance(e, ConfigurationError)
    assert e.code == "PARSE_ERROR"
    assert not e.transient


@pytest.mark.parametrize(
    "error, code, stage",
    [
        (ExecutionError("x", stage="test"), "EXECUTION_ERROR", "test"),
        (PushRejectedError("denied"), "PUSH_REJECTED_ERROR", "tag"),
        (PublishError("boom", unit="valu3"), "PUBLISH_ERROR", "publish:valu3"),
    ],
)
def test_execution_errors_carry_stage(error, code, stage):
    assert isinstance(error, ExecutionError)
    assert error.code == code
    assert error.stage == stage
    assert error.context["stage"] == stage


def test_publish_error_records_unit():
    e = PublishError("boom", unit="valu3-derive", context={"output_tail": "t"})
    assert e.unit == "valu3-derive"
    assert e.context == {"output_tail": "t", "unit": "valu3-derive", "stage": "publish:valu3-derive"}


def test_concurrency_conflicts_are_transient():
    tag = TagAlreadyExistsError("2.3.0", context={"where": "remote"})
    run = RunInProgressError("run-2.3.0")
    for e in (tag, run):
        assert isinstance(e, ConcurrencyConflictError)
        assert e.transient
    assert str(tag) == "TAG_EXISTS_ERROR: Tag '2.3.0' already exists"
    assert tag.context == {"where": "remote", "tag": "2.3.0"}
    assert run.key == "run-2.3.0"
    assert run.code == "RUN_IN_PROGRESS_ERROR"


def test_timeout_and_cancel_codes():
    assert TimeoutExceededError("slow").code == "TIMEOUT_EXCEEDED_ERROR"
    assert PipelineCancelledError().message == "Pipeline cancelled"
