import shutil
import subprocess

import pytest

from releaseci.git_facts.git import changed_files, current_ref, detect_run, diff_against

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def repo(tmp_path):
    _git(tmp_path, "init", "-q", "-b", "main")
    _git(tmp_path, "config", "user.email", "ci@example.com")
    _git(tmp_path, "config", "user.name", "ci")
    (tmp_path / "README.md").write_text("hi\n")
    _git(tmp_path, "add", ".")
    _git(tmp_path, "commit", "-q", "-m", "init")
    return tmp_path


def test_explicit_values_need_no_git():
    run = detect_run(event="pull_request", ref="refs/heads/feature", changed=["src/lib.rs"], environ={})
    assert run.event == "pull_request"
    assert run.changed_paths == ("src/lib.rs",)


def test_github_environment_is_used():
    env = {"GITHUB_EVENT_NAME": "push", "GITHUB_REF": "refs/tags/v3.0.0"}
    run = detect_run(environ=env, tag_pattern="v*")
    assert run.tag == "v3.0.0"
    assert run.is_version_tag
    assert run.changed_paths == ()


@needs_git
def test_branch_ref_and_diff(repo):
    (repo / "src").mkdir()
    (repo / "src" / "main.rs").write_text("fn main() {}\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "code")

    assert current_ref(cwd=repo) == "refs/heads/main"
    assert changed_files("HEAD~1", cwd=repo) == ["src/main.rs"]
    # no origin remote: falls back to the previous commit
    assert diff_against("origin/main", cwd=repo) == ["src/main.rs"]

    run = detect_run(cwd=repo, environ={})
    assert run.ref == "refs/heads/main"
    assert run.changed_paths == ("src/main.rs",)


@needs_git
def test_tagged_head(repo):
    _git(repo, "tag", "v0.1.0")
    assert current_ref(cwd=repo) == "refs/tags/v0.1.0"
    run = detect_run(cwd=repo, environ={})
    assert run.is_version_tag
