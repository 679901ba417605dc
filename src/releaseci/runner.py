# runner.py
from __future__ import annotations

import os
import runpy
import subprocess
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait, FIRST_COMPLETED
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .artifacts import ArtifactStore
from .config import ReleaseConfig, Secrets, scrub_env
from .dag import Graph, build_dag, topo_order
from .errors import ERROR_KINDS, CIError, StepFailure, classify
from .model import FAILURE, SKIPPED, SUCCESS, Job, JobResult, PipelineRun, Step
from .ui.console import get_console


# ----------------------------------------------------------------------
# Step context
# ----------------------------------------------------------------------

@dataclass
class StepContext:
    """What an in-process step sees: its job, the run, and nothing global."""
    job: Job
    run: PipelineRun
    config: ReleaseConfig
    workspace: Path
    artifacts: ArtifactStore
    secrets: Secrets                 # only the secrets this job declared
    env: Dict[str, str] = field(default_factory=dict)
    deadline: Optional[float] = None  # time.monotonic() value

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path, config: ReleaseConfig) -> List[Job]:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow(config) -> List[Job]
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    globals_dict = runpy.run_path(str(wf_path), run_name=f"releaseci_workflow_{wf_path.stem}")

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"](config)
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, Job) for j in jobs):
        raise TypeError(
            "Workflow must return/define a List[Job]. "
            "Define workflow(config) -> List[Job] or JOBS = [Job, ...]."
        )
    return jobs


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _job_failure(job: Job, step: Optional[str], message: str, **details) -> Exception:
    cls = ERROR_KINDS.get(job.error or "")
    if cls is None:
        return CIError(kind="JobError", job=job.name, step=step, message=message, details=details)
    return cls(job=job.name, step=step, message=message, details=details)


def _run_step(job: Job, step: Step, ctx: StepContext) -> None:
    remaining = ctx.remaining()
    if remaining is not None and remaining <= 0:
        raise _job_failure(job, step.name, "job timeout exceeded")

    if step.action is not None:
        step.action(ctx)
        # an action cannot be interrupted; an overrun still fails the job
        after = ctx.remaining()
        if after is not None and after <= 0:
            raise _job_failure(job, step.name, "job timeout exceeded")
        return

    cwd = (ctx.workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise FileNotFoundError(f"[{job.name}] step '{step.name}' cwd not found: {cwd}")

    env = scrub_env(dict(os.environ), ctx.secrets.values)
    env.update(ctx.env)

    try:
        proc = subprocess.run(
            step.run,
            shell=True,
            cwd=str(cwd),
            env=env,
            text=True,
            capture_output=True,   # so output can be shown on failure
            timeout=remaining,
        )
    except subprocess.TimeoutExpired as e:
        raise _job_failure(job, step.name, f"timed out after {e.timeout:.0f}s", cmd=step.run)

    if proc.returncode != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run or "",
            exit_code=proc.returncode,
            stdout=proc.stdout[-4000:],
            stderr=proc.stderr[-4000:],
        )


def run_job(
    job: Job,
    run: PipelineRun,
    *,
    config: ReleaseConfig,
    secrets: Secrets,
    workspace: Path,
    artifacts: ArtifactStore,
) -> None:
    """
    Run every step of one job, in order. Raises on the first failing step,
    mapped onto the job's error kind. No retries.
    """
    console = get_console()

    missing = [name for name in job.secrets if name not in secrets]
    if missing:
        raise _job_failure(job, None, f"required secret(s) not configured: {', '.join(missing)}")

    own = secrets.subset(job.secrets)
    env = dict(job.env)
    env.update(own.values)

    timeout = job.timeout if job.timeout is not None else config.job_timeout
    ctx = StepContext(
        job=job,
        run=run,
        config=config,
        workspace=workspace,
        artifacts=artifacts,
        secrets=own,
        env=env,
        deadline=time.monotonic() + timeout if timeout else None,
    )

    for step in job.steps:
        console.print_step(job.name, step.name)
        console.print_debug(f"[{job.name}] {step.describe}")
        try:
            _run_step(job, step, ctx)
        except StepFailure as e:
            raise classify(job.error, e) from e


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def _deps_ok(graph: Graph, name: str, status: Dict[str, str]) -> Tuple[bool, str]:
    for dep in graph.needs(name):
        if status.get(dep) != SUCCESS:
            return False, f"needs {dep} ({status.get(dep, 'pending')})"
    return True, ""


def plan(jobs: List[Job], run: PipelineRun) -> Dict[str, JobResult]:
    """
    Which jobs would run for `run`, assuming every job that runs succeeds.
    Nothing is executed; statuses are `success` (would run) or `skipped`.
    """
    graph = build_dag(jobs)
    status: Dict[str, str] = {}
    out: Dict[str, JobResult] = {}

    for name in topo_order(graph):
        job = graph.jobs[name]
        ok, why = _deps_ok(graph, name, status)
        if not ok:
            status[name] = SKIPPED
            out[name] = JobResult(name, SKIPPED, why)
        elif not job.condition(run):
            status[name] = SKIPPED
            out[name] = JobResult(name, SKIPPED, job.condition_label or "condition not met")
        else:
            status[name] = SUCCESS
            out[name] = JobResult(name, SUCCESS, "would run")

    return {n: out[n] for n in graph.nodes}


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_dag(
    jobs: List[Job],
    run: PipelineRun,
    *,
    config: Optional[ReleaseConfig] = None,
    secrets: Optional[Secrets] = None,
    workspace: str | Path = ".",
    artifacts: Optional[ArtifactStore] = None,
    max_workers: int | None = None,
    fail_fast: bool = False,
) -> Dict[str, JobResult]:
    """
    Execute the job graph for one run.

    - A job starts only when every job it needs finished with `success`.
    - A job whose condition is false is `skipped`; so is every job that
      needs a failed or skipped job.
    - A failure halts only its own branch; independent jobs keep running
      unless `fail_fast` is set, which stops scheduling anything new.

    Returns job name -> JobResult, in declaration order.
    """
    console = get_console()
    config = config or ReleaseConfig()
    secrets = secrets or Secrets()
    workspace_p = Path(workspace).resolve()
    if artifacts is None:
        artifacts = ArtifactStore(workspace_p / config.artifact_dir)

    graph = build_dag(jobs)
    adj = graph.adj
    pending = graph.indeg  # unresolved dependencies per job
    status: Dict[str, str] = {}
    results: Dict[str, JobResult] = {}

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    ready = deque(n for n in graph.nodes if pending[n] == 0)
    in_flight: Dict[Future, Tuple[str, float]] = {}
    halted = False

    def resolve(name: str, result: JobResult) -> None:
        # record a terminal status and unlock (or skip) dependents
        status[name] = result.status
        results[name] = result
        for child in adj[name]:
            pending[child] -= 1
            if pending[child] == 0:
                ready.append(child)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            while ready:
                name = ready.popleft()
                job = graph.jobs[name]

                ok, why = _deps_ok(graph, name, status)
                if not ok:
                    console.print_job_skipped(name, why)
                    resolve(name, JobResult(name, SKIPPED, why))
                    continue
                if halted:
                    console.print_job_skipped(name, "fail-fast")
                    resolve(name, JobResult(name, SKIPPED, "fail-fast"))
                    continue
                if not job.condition(run):
                    why = job.condition_label or "condition not met"
                    console.print_job_skipped(name, why)
                    resolve(name, JobResult(name, SKIPPED, why))
                    continue

                console.print_job_start(name)
                fut = pool.submit(
                    run_job,
                    job,
                    run,
                    config=config,
                    secrets=secrets,
                    workspace=workspace_p,
                    artifacts=artifacts,
                )
                in_flight[fut] = (name, time.monotonic())

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for fut in sorted(done, key=lambda f: graph.nodes.index(in_flight[f][0])):
                name, started = in_flight.pop(fut)
                duration = time.monotonic() - started
                try:
                    fut.result()
                except Exception as e:
                    exit_code = e.details.get("exit_code") if isinstance(e, CIError) else getattr(e, "exit_code", None)
                    console.print_failure(name, str(e), exit_code=exit_code)
                    resolve(name, JobResult(name, FAILURE, getattr(e, "kind", type(e).__name__), duration, e))
                    if fail_fast:
                        halted = True
                else:
                    console.print_job_finished(name, SUCCESS, duration)
                    resolve(name, JobResult(name, SUCCESS, "", duration))

    return {n: results[n] for n in graph.nodes if n in results}


def failed(results: Dict[str, JobResult]) -> List[str]:
    return [n for n, r in results.items() if r.status == FAILURE]
