# trigger.py
# Decides whether a pipeline run proceeds at all, and whether a ref unlocks
# the release-only stages. Pure functions, no git or filesystem access.

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Sequence

from .model import PipelineRun

DEFAULT_IGNORE = ("docs/**", "**.md")
DEFAULT_TAG_PATTERN = "v*"


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    """
    Translate a path-filter glob into a regex.

      **   any characters, including '/'
      *    any characters except '/'
      ?    one character except '/'
      [..] character class
    """
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                # "dir/**/x" also matches "dir/x"
                if pattern.startswith("/", i) and out and out[-1] == "/":
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def matches(path: str, pattern: str) -> bool:
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    return _compile(pattern).match(path) is not None


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(matches(path, p) for p in patterns)


def is_version_tag(ref: str, pattern: str = DEFAULT_TAG_PATTERN) -> bool:
    """True if `ref` is a tag ref (refs/tags/...) whose name matches `pattern`."""
    prefix = "refs/tags/"
    if not ref.startswith(prefix):
        return False
    return matches(ref[len(prefix):], pattern)


def should_run(run: PipelineRun, ignore: Sequence[str] = DEFAULT_IGNORE) -> bool:
    """
    Returns False only if every changed path matches an ignore glob.

    - A branch push or pull request touching no tracked path (e.g. only
      ignored deletions) does not trigger.
    - A tag push with no path diff proceeds; when paths are supplied for
      a tag push they are filtered like any other run.
    """
    if run.tag is not None and run.event == "push" and not run.changed_paths:
        return True
    if not run.changed_paths:
        return False
    return not all(matches_any(p, ignore) for p in run.changed_paths)
