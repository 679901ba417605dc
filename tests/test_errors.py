from releaseci.errors import (
    ERROR_KINDS,
    BuildFailure,
    CIError,
    PublishRejection,
    StepFailure,
    classify,
)


def test_kind_is_class_name():
    e = PublishRejection(job="release", step="create", message="release 'v1' already exists")
    assert e.kind == "PublishRejection"
    assert isinstance(e, CIError)
    assert str(e).splitlines()[:3] == [
        "PublishRejection: release 'v1' already exists",
        "job=release",
        "step=create",
    ]


def test_all_kinds_registered():
    assert set(ERROR_KINDS) == {
        "BuildFailure",
        "FormatViolation",
        "LintViolation",
        "SecurityAdvisory",
        "TestFailure",
        "ArtifactPackagingFailure",
        "PublishRejection",
    }


def test_classify_keeps_exit_code_and_last_stderr_line():
    raw = StepFailure(job="check", step="compile", cmd="cargo check", exit_code=101, stderr="warning\nerror: aborting\n")
    e = classify("BuildFailure", raw)
    assert isinstance(e, BuildFailure)
    assert e.details == {"exit_code": 101, "cmd": "cargo check", "stderr": "error: aborting"}


def test_classify_without_kind_returns_raw_failure():
    raw = StepFailure(job="x", step="s", cmd="false", exit_code=1)
    assert classify(None, raw) is raw
    assert "exit=1" in str(raw)
