# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the results table
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: Optional[str]
    message: str
    details: Dict[str, object] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class _Kinded(CIError):
    """CIError whose kind is its class name."""

    def __init__(
        self,
        job: str,
        message: str,
        step: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(type(self).__name__, job, step, message, dict(details or {}))


class BuildFailure(_Kinded):
    """A workspace member failed to compile."""


class FormatViolation(_Kinded):
    """A file differs from canonical formatting."""


class LintViolation(_Kinded):
    """Static analysis reported a diagnostic at or above the configured severity."""


class SecurityAdvisory(_Kinded):
    """The resolved dependency set has a known vulnerability advisory."""


class TestFailure(_Kinded):
    """At least one test failed in a test matrix cell."""
    __test__ = False


class ArtifactPackagingFailure(_Kinded):
    """Stripping, archiving, uploading or checksumming an artifact failed."""


class PublishRejection(_Kinded):
    """The registry or the release API refused a publish."""


ERROR_KINDS = {
    cls.__name__: cls
    for cls in (
        BuildFailure,
        FormatViolation,
        LintViolation,
        SecurityAdvisory,
        TestFailure,
        ArtifactPackagingFailure,
        PublishRejection,
    )
}


# ----------------------------------------------------------------------
# Raw step failures
# ----------------------------------------------------------------------

@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


def classify(kind: Optional[str], failure: StepFailure) -> Exception:
    """Map a raw step failure onto the job's declared error kind."""
    cls = ERROR_KINDS.get(kind or "")
    if cls is None:
        return failure
    details: Dict[str, object] = {"exit_code": failure.exit_code, "cmd": failure.cmd}
    tail = failure.stderr.strip()
    if tail:
        details["stderr"] = tail.splitlines()[-1]
    return cls(job=failure.job, step=failure.step, message=str(failure), details=details)
