# config.py
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .trigger import DEFAULT_IGNORE, DEFAULT_TAG_PATTERN

DEFAULT_CONFIG_FILE = "releaseci.toml"
DEFAULT_JOB_TIMEOUT = 3600.0
ENV_PREFIX = "RELEASECI_"
# pip requirement the rendered workflow installs before in-process steps
DEFAULT_INSTALL_SPEC = "releaseci==0.1.0"

# Secret names, resolved from the environment
RELEASE_TOKEN = "GITHUB_TOKEN"
REGISTRY_TOKEN = "CRATES_IO_TOKEN"
SECRET_NAMES = (RELEASE_TOKEN, REGISTRY_TOKEN)


@dataclass(frozen=True)
class Target:
    """One release build cell: a target triple and the runner OS that builds it."""
    triple: str
    os: str

    @property
    def is_windows(self) -> bool:
        return "windows" in self.triple

    @property
    def archive_ext(self) -> str:
        return "zip" if self.is_windows else "tar.gz"

    def binary_name(self, tool: str) -> str:
        return f"{tool}.exe" if self.is_windows else tool

    def artifact_name(self, tool: str) -> str:
        return f"{tool}-{self.triple}.{self.archive_ext}"


DEFAULT_TARGETS = (
    Target("x86_64-unknown-linux-gnu", "linux"),
    Target("x86_64-apple-darwin", "macos"),
    Target("x86_64-pc-windows-msvc", "windows"),
)


@dataclass(frozen=True)
class ReleaseConfig:
    tool: str = "obslint"
    crate_dir: str = "."
    cargo: str = "cargo"
    toolchain: str = "stable"  # pinned toolchain for verification/build/publish
    channels: Tuple[str, ...] = ("stable", "nightly")
    test_os: Tuple[str, ...] = ("linux", "macos", "windows")
    targets: Tuple[Target, ...] = DEFAULT_TARGETS
    ignore: Tuple[str, ...] = DEFAULT_IGNORE
    tag_pattern: str = DEFAULT_TAG_PATTERN
    lint_level: str = "clippy::all"
    strip: bool = True
    job_timeout: float = DEFAULT_JOB_TIMEOUT
    artifact_dir: str = ".releaseci/artifacts"
    dist_dir: str = "dist"
    repository: Optional[str] = None  # "owner/name" for the release API
    api_url: str = "https://api.github.com"
    install_spec: str = DEFAULT_INSTALL_SPEC  # pinned version or "git+https://...@<tag>"

    def target(self, triple: str) -> Target:
        for t in self.targets:
            if t.triple == triple:
                return t
        known = ", ".join(t.triple for t in self.targets)
        raise KeyError(f"Unknown target {triple!r}. Known targets: {known}")

    def artifact_names(self) -> list[str]:
        return [t.artifact_name(self.tool) for t in self.targets]


def _coerce(name: str, value: object) -> object:
    if name == "targets":
        out = []
        for item in value:  # type: ignore[union-attr]
            if isinstance(item, Target):
                out.append(item)
            else:
                out.append(Target(triple=item["triple"], os=item["os"]))
        return tuple(out)
    if name in ("channels", "test_os", "ignore"):
        if isinstance(value, str):
            return tuple(v.strip() for v in value.split(",") if v.strip())
        return tuple(value)  # type: ignore[arg-type]
    if name == "job_timeout":
        return float(value)  # type: ignore[arg-type]
    if name == "strip" and isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return value


def load_config(
    path: str | Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ReleaseConfig:
    """
    Defaults, then `[tool.releaseci]` from releaseci.toml (if present),
    then RELEASECI_* environment variables.
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(ReleaseConfig)}
    overrides: Dict[str, object] = {}

    cfg_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    if cfg_path.exists():
        data = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
        table = data.get("tool", {}).get("releaseci", data.get("releaseci", {}))
        table = {k.replace("-", "_"): v for k, v in table.items()}
        unknown = sorted(set(table) - known)
        if unknown:
            raise ValueError(f"Unknown keys in {cfg_path}: {unknown}")
        overrides.update(table)
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    for name in known:
        env_val = environ.get(ENV_PREFIX + name.upper())
        if env_val is not None and name != "targets":
            overrides[name] = env_val

    if "repository" not in overrides and environ.get("GITHUB_REPOSITORY"):
        overrides["repository"] = environ["GITHUB_REPOSITORY"]

    return replace(ReleaseConfig(), **{k: _coerce(k, v) for k, v in overrides.items()})


def scrub_env(env: Dict[str, str], allowed: Iterable[str] = ()) -> Dict[str, str]:
    """Drop known secret names the caller did not declare from an inherited environment."""
    allowed = set(allowed)
    return {k: v for k, v in env.items() if k not in SECRET_NAMES or k in allowed}


@dataclass(frozen=True)
class Secrets:
    """
    Credentials, kept apart from ReleaseConfig and handed only to the jobs
    that declare them.
    """
    values: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(
        cls,
        names: Iterable[str] = (RELEASE_TOKEN, REGISTRY_TOKEN),
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Secrets":
        environ = os.environ if environ is None else environ
        return cls({n: environ[n] for n in names if environ.get(n)})

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def require(self, name: str) -> str:
        value = self.values.get(name)
        if not value:
            raise KeyError(f"Secret {name!r} is not configured")
        return value

    def subset(self, names: Iterable[str]) -> "Secrets":
        return Secrets({n: self.values[n] for n in names if n in self.values})

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __repr__(self) -> str:
        return f"Secrets({sorted(self.values)!r})"

    __str__ = __repr__
