from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from releaseci.config import ReleaseConfig, Secrets
from releaseci.errors import StepFailure
from releaseci.model import Job, Step
from releaseci.release import ReleaseResponse
from releaseci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def _quiet_console():
    set_console(Console(debug=False))
    yield


def noop(ctx) -> None:
    return None


def failing(ctx) -> None:
    raise StepFailure(job=ctx.job.name, step="fake", cmd="fake", exit_code=101, stderr="boom\n")


def write_binary(ctx) -> None:
    cfg = ctx.config
    target = cfg.target(ctx.job.target)
    out = ctx.workspace / cfg.crate_dir / "target" / target.triple / "release" / target.binary_name(cfg.tool)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(f"binary for {target.triple}\n".encode())


def fake_jobs(
    jobs: List[Job],
    *,
    fail: Iterable[str] = (),
    actions: Optional[Dict[str, Callable]] = None,
) -> List[Job]:
    """
    Swap cargo/rustup shell steps for in-process fakes.

    - jobs named in `fail` get a failing first step
    - "Build release binary" writes a small file where cargo would
    - action steps named in `actions` are replaced; other actions stay real
    """
    fail = set(fail)
    actions = actions or {}
    out = []
    for j in jobs:
        steps: List[Step] = []
        for s in j.steps:
            if s.name in actions:
                steps.append(Step(name=s.name, action=actions[s.name]))
            elif s.run is None:
                steps.append(s)
            elif s.name == "Build release binary":
                steps.append(Step(name=s.name, action=write_binary))
            else:
                steps.append(Step(name=s.name, action=noop))
        if j.name in fail:
            steps[0] = Step(name=steps[0].name, action=failing)
        out.append(replace(j, steps=steps))
    return out


class FakeReleaseClient:
    """In-memory stand-in for ReleaseClient."""

    def __init__(self, store: dict, repository: str, token: str, api_url: str, timeout=None):
        self.store = store
        self.repository = repository
        self.token = token
        self.api_url = api_url
        self.timeout = timeout

    def get_release(self, tag):
        if tag in self.store:
            return ReleaseResponse(id=1, tag_name=tag, upload_url="https://uploads.test/assets{?name,label}")
        return None

    def create_release(self, tag, name=None, draft=True):
        self.store[tag] = {"token": self.token, "files": {}, "draft": draft, "timeout": self.timeout}
        return ReleaseResponse(
            id=len(self.store),
            tag_name=tag,
            name=name or tag,
            draft=draft,
            html_url=f"https://github.test/{self.repository}/releases/{tag}",
            upload_url="https://uploads.test/assets{?name,label}",
        )

    def upload_asset(self, release, path: Path):
        self.store[release.tag_name]["files"][path.name] = path.read_bytes()

    def publish_release(self, release):
        self.store[release.tag_name]["draft"] = False
        return release.model_copy(update={"draft": False})


@pytest.fixture
def releases() -> dict:
    return {}


@pytest.fixture
def client_factory(releases):
    def factory(repository, token, api_url, timeout=None):
        return FakeReleaseClient(releases, repository, token, api_url, timeout)

    return factory


@pytest.fixture
def config(tmp_path) -> ReleaseConfig:
    return ReleaseConfig(strip=False, repository="acme/obslint", job_timeout=60)


@pytest.fixture
def secrets() -> Secrets:
    return Secrets({"GITHUB_TOKEN": "gh-token", "CRATES_IO_TOKEN": "crates-token"})
