# releaseci_workflow.py
# Workflow for tracking releaseci itself: install, test, and render check.
# Run it with: releaseci --workflow releaseci_workflow.py run
from __future__ import annotations

import yaml

from releaseci import job, sh, step, wf
from releaseci.pipeline import build_pipeline
from releaseci.render import render_workflow


def check_rendered(ctx):
    # the default pipeline must render to a workflow with every job present
    jobs = build_pipeline(ctx.config)
    rendered = yaml.safe_load(render_workflow(jobs, ctx.config))["jobs"]
    missing = [j.name for j in jobs if j.name not in rendered]
    if missing:
        raise RuntimeError(f"rendered workflow is missing jobs: {missing}")


def workflow(config):
    return wf(
        job(
            "install",
            sh("Install package", "python -m pip install -e .[test]"),
        ),
        job(
            "test",
            sh("Run pytest", "python -m pytest -q"),
            needs=["install"],
        ),
        job(
            "render-check",
            step("Render default pipeline", check_rendered),
            needs=["install"],
        ),
    )
