import subprocess

import pytest

from releaseci import publish as publish_mod
from releaseci.errors import PublishRejection
from releaseci.publish import publish_crate


class Proc:
    def __init__(self, returncode=0, stderr=""):
        self.returncode = returncode
        self.stdout = ""
        self.stderr = stderr


@pytest.fixture
def calls(monkeypatch):
    seen = []

    def fake_run(cmd, **kw):
        seen.append((cmd, kw))
        return Proc()

    monkeypatch.setattr(publish_mod.subprocess, "run", fake_run)
    return seen


def test_token_reaches_only_the_publish_process(tmp_path, calls, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "gh")
    monkeypatch.setenv("CRATES_IO_TOKEN", "ambient")
    publish_crate(tmp_path, "crates-token", toolchain="stable")

    cmd, kw = calls[0]
    assert cmd == ["cargo", "+stable", "publish"]
    assert kw["cwd"] == str(tmp_path)
    assert kw["env"]["CARGO_REGISTRY_TOKEN"] == "crates-token"
    assert "GITHUB_TOKEN" not in kw["env"]
    assert "crates-token" not in " ".join(cmd)


def test_empty_token_is_rejected(tmp_path, calls):
    with pytest.raises(PublishRejection, match="empty"):
        publish_crate(tmp_path, "")
    assert calls == []


def test_registry_refusal(tmp_path, monkeypatch):
    monkeypatch.setattr(
        publish_mod.subprocess,
        "run",
        lambda cmd, **kw: Proc(101, "error: crate version `1.2.3` is already uploaded"),
    )
    with pytest.raises(PublishRejection) as exc:
        publish_crate(tmp_path, "tok", job="publish")
    assert exc.value.kind == "PublishRejection"
    assert "already uploaded" in exc.value.details["stderr"]


def test_timeout(tmp_path, monkeypatch):
    def slow(cmd, **kw):
        raise subprocess.TimeoutExpired(cmd, kw["timeout"])

    monkeypatch.setattr(publish_mod.subprocess, "run", slow)
    with pytest.raises(PublishRejection, match="timed out"):
        publish_crate(tmp_path, "tok", timeout=5)


def test_missing_cargo(tmp_path):
    with pytest.raises(PublishRejection, match="not found"):
        publish_crate(tmp_path, "tok", cargo="cargo-that-does-not-exist-anywhere")
