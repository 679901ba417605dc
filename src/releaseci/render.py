# render.py
# Emit the job graph as a GitHub Actions workflow, so the same DAG that runs
# locally can be handed to the hosted orchestrator.

from __future__ import annotations

import math
import shlex
from typing import Any, Dict, List

import yaml

from .config import ReleaseConfig
from .dag import build_dag
from .model import Job

RUNNERS = {
    "linux": "ubuntu-latest",
    "macos": "macos-latest",
    "windows": "windows-latest",
}

CHECKOUT = {"uses": "actions/checkout@v4"}
SETUP_PYTHON = {"uses": "actions/setup-python@v5", "with": {"python-version": "3.12"}}


def _install_self(config: ReleaseConfig) -> Dict[str, Any]:
    return {"name": "Install releaseci", "run": f"python -m pip install {shlex.quote(config.install_spec)}"}


def _quote(s: str) -> str:
    return '"' + s.replace('"', '\\"') + '"'


def _steps(job: Job, by_name: Dict[str, Job], config: ReleaseConfig) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = [dict(CHECKOUT)]
    if any(s.action is not None for s in job.steps):
        out += [dict(SETUP_PYTHON), _install_self(config)]

    # artifacts published by the jobs this one needs
    for dep in job.needs:
        for name in by_name[dep].artifacts:
            out.append({
                "name": f"Download {name}",
                "uses": "actions/download-artifact@v4",
                "with": {"name": name, "path": f"{config.artifact_dir}/{name}"},
            })

    for s in job.steps:
        entry: Dict[str, Any] = {"name": s.name}
        if s.run is not None:
            entry["run"] = s.run
        else:
            entry["run"] = f"releaseci step {job.name} {_quote(s.name)}"
        if s.cwd and s.cwd != ".":
            entry["working-directory"] = s.cwd
        out.append(entry)

    for name in job.artifacts:
        out.append({
            "name": f"Upload {name}",
            "uses": "actions/upload-artifact@v4",
            "with": {"name": name, "path": f"{config.artifact_dir}/{name}/"},
        })
    return out


def workflow_document(jobs: List[Job], config: ReleaseConfig, name: str = "Build") -> Dict[str, Any]:
    graph = build_dag(jobs)  # validates ids, edges and acyclicity
    by_name = graph.jobs

    trigger = {"paths-ignore": list(config.ignore)}
    doc: Dict[str, Any] = {
        "name": name,
        "on": {"push": dict(trigger), "pull_request": dict(trigger)},
        "jobs": {},
    }

    for job_name in graph.nodes:
        job = by_name[job_name]
        entry: Dict[str, Any] = {"name": job.name}
        if job.needs:
            entry["needs"] = list(job.needs)
        if job.condition_label:
            entry["if"] = job.condition_label
        entry["runs-on"] = RUNNERS.get(job.runs_on, job.runs_on)
        timeout = job.timeout if job.timeout is not None else config.job_timeout
        if timeout:
            entry["timeout-minutes"] = max(1, math.ceil(timeout / 60))

        env = dict(job.env)
        # secrets are referenced only by the jobs that declare them
        for secret in job.secrets:
            env[secret] = "${{ secrets.%s }}" % secret
        if env:
            entry["env"] = env

        entry["steps"] = _steps(job, by_name, config)
        doc["jobs"][job.name] = entry

    return doc


def render_workflow(jobs: List[Job], config: ReleaseConfig, name: str = "Build") -> str:
    """GitHub Actions YAML for the job graph."""
    doc = workflow_document(jobs, config, name=name)
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False, width=120)
