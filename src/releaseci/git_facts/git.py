# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional

from ..model import PipelineRun


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    # A non-zero git exit raises CalledProcessError for the caller to handle.
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Fully qualified ref for HEAD.

    Prefers an exact tag on HEAD (refs/tags/<tag>), then the checked-out
    branch (refs/heads/<branch>), then the bare SHA for a detached HEAD.
    """
    try:
        tag = _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
        if tag:
            return f"refs/tags/{tag}"
    except subprocess.CalledProcessError:
        pass

    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Return a list of files changed between two Git references, relative to
    the repository root. Deletions are included.
    """
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """Commit SHA of the merge-base between HEAD and `with_ref`."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def diff_against(compare_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Files changed on this branch: HEAD against its merge-base with
    `compare_ref`, falling back to HEAD~1 when no such ref exists.
    """
    try:
        base = merge_base(compare_ref, cwd=cwd)
    except subprocess.CalledProcessError:
        # e.g. no remote configured
        base = "HEAD~1"
    return changed_files(base, "HEAD", cwd=cwd)


def detect_run(
    *,
    event: Optional[str] = None,
    ref: Optional[str] = None,
    changed: Optional[List[str]] = None,
    compare_ref: str = "origin/main",
    tag_pattern: str = "v*",
    environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[str | Path] = None,
) -> PipelineRun:
    """
    Build a PipelineRun from explicit values, falling back to the
    GITHUB_EVENT_NAME / GITHUB_REF environment, then to local git.

    Changed paths are only read from git when not given and the ref is
    not a tag (tag pushes carry no path diff).
    """
    environ = os.environ if environ is None else environ
    event = event or environ.get("GITHUB_EVENT_NAME") or "push"
    ref = ref or environ.get("GITHUB_REF") or current_ref(cwd=cwd)

    if changed is None:
        changed = [] if ref.startswith("refs/tags/") else diff_against(compare_ref, cwd=cwd)

    return PipelineRun(event=event, ref=ref, changed_paths=tuple(changed), tag_pattern=tag_pattern)
