# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .runner import StepContext

EVENTS = ("push", "pull_request")

# Terminal job states
SUCCESS = "success"
FAILURE = "failure"
SKIPPED = "skipped"


@dataclass(frozen=True)
class PipelineRun:
    """The event that triggered a run: event type, ref and changed paths."""
    event: str
    ref: str
    changed_paths: Tuple[str, ...] = ()
    tag_pattern: str = "v*"

    def __post_init__(self) -> None:
        if self.event not in EVENTS:
            raise ValueError(f"Unsupported event {self.event!r}, expected one of {EVENTS}")
        object.__setattr__(self, "changed_paths", tuple(self.changed_paths))

    @property
    def tag(self) -> Optional[str]:
        if self.ref.startswith("refs/tags/"):
            return self.ref[len("refs/tags/"):]
        return None

    @property
    def is_version_tag(self) -> bool:
        # Import here to avoid circular import
        from .trigger import is_version_tag

        return is_version_tag(self.ref, self.tag_pattern)


# Run condition: evaluated against the run before a job is scheduled
Condition = Callable[[PipelineRun], bool]


def always(run: PipelineRun) -> bool:
    return True


@dataclass(frozen=True)
class Step:
    """
    A single unit inside a job.

    Either a shell command (`run`) or an in-process action (`action`).
    """
    name: str
    run: Optional[str] = None
    cwd: Optional[str] = None
    action: Optional[Callable[["StepContext"], None]] = None

    def __post_init__(self) -> None:
        if (self.run is None) == (self.action is None):
            raise ValueError(f"Step {self.name!r} needs exactly one of run= or action=")

    @property
    def describe(self) -> str:
        if self.run is not None:
            return self.run
        return getattr(self.action, "__name__", repr(self.action))


@dataclass
class Job:
    """
    A CI job: steps + dependencies + run condition + target environment.

    `name` is the stable node id in the DAG; `needs` holds the node ids
    that must succeed before this job starts.
    """
    name: str
    steps: List[Step]
    needs: List[str] = field(default_factory=list)
    condition: Condition = always
    condition_label: Optional[str] = None

    # Target environment
    runs_on: str = "linux"
    toolchain: Optional[str] = None
    target: Optional[str] = None
    matrix: Dict[str, str] = field(default_factory=dict)

    env: Dict[str, str] = field(default_factory=dict)
    secrets: List[str] = field(default_factory=list)   # injected only into this job
    artifacts: List[str] = field(default_factory=list)  # artifact names this job uploads
    timeout: Optional[float] = None                     # seconds, runner default if None

    group: Optional[str] = None   # stage name
    error: Optional[str] = None   # error kind raised on step failure


@dataclass(frozen=True)
class JobResult:
    name: str
    status: str
    reason: str = ""
    duration: float = 0.0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


@dataclass(frozen=True)
class Artifact:
    """A packaged binary archive produced by a release build cell."""
    name: str
    target: str
    path: Path


@dataclass(frozen=True)
class Release:
    """An immutable, tag-named bundle of archives and their checksums."""
    tag: str
    name: str
    files: Tuple[Path, ...]
    url: Optional[str] = None
    id: Optional[int] = None
