# cli.py
from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import click

from .artifacts import ArtifactStore, package_binary
from .checksum import checksum_path, verify_checksum, write_checksum
from .config import ReleaseConfig, Secrets, load_config
from .dag import build_dag, requirements, topo_levels
from .errors import CIError
from .git_facts.git import detect_run, get_remote_url
from .model import Job, PipelineRun
from .pipeline import build_pipeline
from .render import render_workflow
from .runner import failed, load_workflow, plan, run_dag, run_job
from .trigger import should_run
from .ui.console import Console, get_console, set_console


def _fail(exc: BaseException) -> None:
    get_console().print_exception(exc)
    sys.exit(1)


def _load(ctx: click.Context) -> tuple[ReleaseConfig, List[Job]]:
    config: ReleaseConfig = ctx.obj["config"]
    workflow = ctx.obj.get("workflow")
    if workflow:
        jobs = load_workflow(workflow, config)
    else:
        jobs = build_pipeline(config)
    return config, jobs


def _detect(config: ReleaseConfig, event, ref, paths, git_diff, compare_ref) -> PipelineRun:
    changed: Optional[List[str]] = list(paths) if paths else None
    if changed is None and not git_diff:
        changed = []
    return detect_run(
        event=event,
        ref=ref,
        changed=changed,
        compare_ref=compare_ref,
        tag_pattern=config.tag_pattern,
    )


def run_options(f):
    f = click.option("--compare-ref", default="origin/main", show_default=True, help="Git ref to diff against")(f)
    f = click.option("--git-diff/--no-git-diff", default=True, show_default=True, help="Read changed paths from git when --path is not given")(f)
    f = click.option("--path", "paths", multiple=True, help="Changed path (repeatable)")(f)
    f = click.option("--ref", default=None, help="Git ref (defaults to GITHUB_REF, then HEAD)")(f)
    f = click.option(
        "--event",
        type=click.Choice(["push", "pull_request"]),
        default=None,
        help="Triggering event (defaults to GITHUB_EVENT_NAME, then push)",
    )(f)
    return f


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--config", "config_path", default=None, help="Config file (defaults to releaseci.toml if present)")
@click.option("--workflow", default=None, help="Python workflow file (defaults to the built-in release pipeline)")
@click.pass_context
def cli(ctx, debug, config_path, workflow):
    """releaseci: CI and release orchestration for a compiled CLI tool."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["workflow"] = workflow
    try:
        ctx.obj["config"] = load_config(config_path)
    except (OSError, ValueError, KeyError, TypeError) as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(1)


@cli.command()
@run_options
@click.pass_context
def trigger(ctx, event, ref, paths, git_diff, compare_ref):
    """Decide whether a run proceeds for the given event, ref and paths."""
    config: ReleaseConfig = ctx.obj["config"]
    try:
        run = _detect(config, event, ref, paths, git_diff, compare_ref)
    except (subprocess.CalledProcessError, ValueError) as e:
        _fail(e)
    decision = should_run(run, config.ignore)
    click.echo(f"run={'true' if decision else 'false'}")


@cli.command(name="plan")
@run_options
@click.pass_context
def plan_cmd(ctx, event, ref, paths, git_diff, compare_ref):
    """Print the stages and which jobs would run."""
    console = get_console()
    try:
        config, jobs = _load(ctx)
        run = _detect(config, event, ref, paths, git_diff, compare_ref)
        graph = build_dag(jobs)
    except Exception as e:
        _fail(e)

    if not should_run(run, config.ignore):
        console.print_trigger(False, len(run.changed_paths))
        return
    console.print_trigger(True, len(run.changed_paths))

    console.print_header(f"PLAN ({run.event} {run.ref})")
    decisions = plan(jobs, run)
    for i, level in enumerate(topo_levels(graph), start=1):
        console.print_stage(i, level)
        for name in level:
            res = decisions[name]
            if res.ok:
                console.print_plan_job(name, res.reason)
            else:
                console.print_plan_job_skipped(name, res.reason)


@cli.command()
@run_options
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new jobs after first failure")
@click.option("--only", "only", multiple=True, help="Run only this job and the jobs it needs (repeatable)")
@click.option("--workspace", default=".", show_default=True, help="Workspace root")
@click.pass_context
def run(ctx, event, ref, paths, git_diff, compare_ref, workers, fail_fast, workspace, only):
    """Run the pipeline locally."""
    console = get_console()

    try:
        config, jobs = _load(ctx)
        if only:
            graph = build_dag(jobs)
            keep = {n for name in only for n in requirements(graph, name)}
            jobs = [j for j in jobs if j.name in keep]
        pipeline_run = _detect(config, event, ref, paths, git_diff, compare_ref)

        try:
            repo_url = get_remote_url("origin")
            repo_name = repo_url.rstrip("/").split("/")[-1].replace(".git", "")
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo_name = Path(workspace).resolve().name

        console.print_run_started(
            repository=repo_name,
            event=pipeline_run.event,
            ref=pipeline_run.ref,
            job_count=len(jobs),
        )

        if not should_run(pipeline_run, config.ignore):
            console.print_trigger(False, len(pipeline_run.changed_paths))
            return
        console.print_trigger(True, len(pipeline_run.changed_paths))

        # artifacts from an earlier local run must not leak into this release
        store = ArtifactStore(Path(workspace).resolve() / config.artifact_dir)
        store.clear()

        results = run_dag(
            jobs,
            pipeline_run,
            config=config,
            secrets=Secrets.from_env(),
            workspace=workspace,
            artifacts=store,
            max_workers=workers,
            fail_fast=fail_fast,
        )
        console.print_results(results)

        if failed(results):
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(e)


@cli.command(name="step")
@click.argument("job_name")
@click.argument("step_name")
@click.option("--workspace", default=".", show_default=True, help="Workspace root")
@click.pass_context
def step_cmd(ctx, job_name, step_name, workspace):
    """Run one step of one job (used by the rendered workflow)."""
    console = get_console()
    try:
        config, jobs = _load(ctx)
        by_name = {j.name: j for j in jobs}
        if job_name not in by_name:
            raise click.UsageError(f"Unknown job {job_name!r}")
        job = by_name[job_name]
        steps = [s for s in job.steps if s.name == step_name]
        if not steps:
            raise click.UsageError(f"Job {job_name!r} has no step {step_name!r}")

        workspace_p = Path(workspace).resolve()
        run_job(
            replace(job, steps=steps),
            detect_run(changed=[], tag_pattern=config.tag_pattern),
            config=config,
            secrets=Secrets.from_env(job.secrets),
            workspace=workspace_p,
            artifacts=ArtifactStore(workspace_p / config.artifact_dir),
        )
    except click.UsageError:
        raise
    except CIError as e:
        console.print_failure(job_name, str(e), exit_code=e.details.get("exit_code"))
        sys.exit(1)
    except Exception as e:
        _fail(e)


@cli.command()
@click.option("--output", "-o", default=None, help="Write to file instead of stdout")
@click.option("--name", default="Build", show_default=True, help="Workflow name")
@click.pass_context
def render(ctx, output, name):
    """Render the pipeline as a GitHub Actions workflow."""
    try:
        config, jobs = _load(ctx)
        text = render_workflow(jobs, config, name=name)
    except Exception as e:
        _fail(e)

    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        get_console().print_info(f"Wrote {output}")
    else:
        click.echo(text, nl=False)


@cli.command()
@click.option("--target", "triple", required=True, help="Target triple")
@click.option("--binary", required=True, type=click.Path(exists=True, dir_okay=False), help="Release binary")
@click.option("--dest", default="dist", show_default=True, help="Output directory")
@click.option("--strip/--no-strip", default=True, help="Strip debug symbols first")
@click.pass_context
def package(ctx, triple, binary, dest, strip):
    """Strip and archive one release binary."""
    config: ReleaseConfig = ctx.obj["config"]
    try:
        artifact = package_binary(binary, config.target(triple), config.tool, dest, strip=strip)
    except (CIError, KeyError) as e:
        _fail(e)
    click.echo(str(artifact.path))


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def checksum(files):
    """Write <file>.sha256 next to each file."""
    for f in files:
        click.echo(str(write_checksum(f)))


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def verify(files):
    """Check each file against its <file>.sha256."""
    bad = 0
    for f in files:
        try:
            ok = verify_checksum(f)
        except (OSError, ValueError) as e:
            get_console().print_error("Checksum unreadable", f"{checksum_path(f)}: {e}")
            ok = False
        click.echo(f"{f}: {'OK' if ok else 'FAILED'}")
        bad += 0 if ok else 1
    if bad:
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
