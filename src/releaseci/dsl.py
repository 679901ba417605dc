# dsl.py
from __future__ import annotations

from dataclasses import replace
from itertools import product
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .model import Condition, Job, Step, always


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


def step(name: str, action: Callable[..., None], *, cwd: str | None = None) -> Step:
    """Create an in-process step; `action` receives a StepContext."""
    return Step(name=name, action=action, cwd=cwd)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[Iterable[str]] = None,
    condition: Condition = always,
    condition_label: Optional[str] = None,
    runs_on: str = "linux",
    toolchain: Optional[str] = None,
    target: Optional[str] = None,
    matrix: Optional[Dict[str, str]] = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Optional[List[str]] = None,
    artifacts: Optional[List[str]] = None,
    timeout: Optional[float] = None,
    group: Optional[str] = None,
    error: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        condition=condition,
        condition_label=condition_label,
        runs_on=runs_on,
        toolchain=toolchain,
        target=target,
        matrix=dict(matrix or {}),
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        secrets=list(secrets or []),
        artifacts=list(artifacts or []),
        timeout=timeout,
        group=group,
        error=error,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Cross-product matrix expander.

    Example:
        matrix(os=["linux", "macos"], toolchain=["stable", "nightly"]).jobs(
            lambda cell: job(f"test-{cell['os']}-{cell['toolchain']}", sh(...))
        )

    `include` entries extend every cell whose dimension values they match,
    or add a new cell when they match none.
    """
    def __init__(self, **dimensions: Iterable[Any]):
        self.dimensions: Dict[str, List[Any]] = {k: list(v) for k, v in dimensions.items()}
        self._include: List[Dict[str, Any]] = []

    def include(self, *entries: Dict[str, Any]) -> "Matrix":
        self._include.extend(dict(e) for e in entries)
        return self

    def cells(self) -> List[Dict[str, Any]]:
        keys = list(self.dimensions)
        cells = [dict(zip(keys, combo)) for combo in product(*self.dimensions.values())] if keys else []

        for extra in self._include:
            dim_keys = [k for k in extra if k in self.dimensions]
            hit = False
            for cell in cells:
                if dim_keys and all(cell[k] == extra[k] for k in dim_keys):
                    cell.update(extra)
                    hit = True
            if not hit:
                cells.append(dict(extra))

        return cells

    def __len__(self) -> int:
        return len(self.cells())

    def jobs(self, builder: Callable[[Dict[str, Any]], Job]) -> List[Job]:
        out = []
        for cell in self.cells():
            j = builder(cell)
            if not j.matrix:
                j.matrix = {k: str(v) for k, v in cell.items()}
            out.append(j)
        return out


def matrix(**dimensions: Iterable[Any]) -> Matrix:
    return Matrix(**dimensions)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(*jobs: Union[Job, List[Job]]) -> List[Job]:
    """
    Workflow definition helper. Accepts jobs and lists of jobs (matrix output):

        def workflow():
            return wf(
                job("check", ...),
                matrix(os=[...]).jobs(lambda cell: job(...)),
            )
    """
    out: List[Job] = []
    for j in jobs:
        if isinstance(j, Job):
            out.append(j)
        else:
            out.extend(j)
    return out
