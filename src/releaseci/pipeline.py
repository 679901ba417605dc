# pipeline.py
# The CI + release workflow for a cargo-built command-line tool:
#
#   check -> fmt, clippy, audit
#   check -> test (os x channel)  -> publish
#   build (target triple)         -> release  (also needs every test cell)

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, List, Optional

from .artifacts import package_binary
from .checksum import verify_checksum, write_checksums
from .config import REGISTRY_TOKEN, RELEASE_TOKEN, ReleaseConfig, Target
from .dsl import job, matrix, sh, step, wf
from .errors import ArtifactPackagingFailure, PublishRejection
from .model import Condition, Job, PipelineRun
from .publish import publish_crate
from .release import ReleaseClient, create_release
from .runner import StepContext
from .trigger import is_version_tag

ClientFactory = Callable[..., ReleaseClient]

VERIFY = "verify"
TEST = "test"
BUILD = "build"
RELEASE = "release"
PUBLISH = "publish"


def version_tag(pattern: str) -> Condition:
    """Run condition: a push of a tag whose name matches `pattern`."""
    def condition(run: PipelineRun) -> bool:
        return run.event == "push" and is_version_tag(run.ref, pattern)

    condition.__name__ = f"version_tag({pattern})"
    return condition


def tag_label(pattern: str) -> str:
    """GitHub expression for the tag gate: prefix match up to the first glob character."""
    prefix = re.split(r"[*?\[]", pattern, maxsplit=1)[0]
    return f"startsWith(github.ref, 'refs/tags/{prefix}')"


# ---------------------------------------------------------------------
# In-process steps
# ---------------------------------------------------------------------

def _package_step(target: Target) -> Callable[[StepContext], None]:
    def package(ctx: StepContext) -> None:
        cfg = ctx.config
        crate = ctx.workspace / cfg.crate_dir
        binary = crate / "target" / target.triple / "release" / target.binary_name(cfg.tool)
        artifact = package_binary(
            binary,
            target,
            cfg.tool,
            ctx.workspace / cfg.dist_dir,
            strip=cfg.strip,
            job=ctx.job.name,
        )
        ctx.artifacts.upload(artifact.path, artifact.name)

    package.__name__ = f"package_{target.triple}"
    return package


def _release_dir(ctx: StepContext) -> Path:
    return ctx.workspace / ctx.config.dist_dir / "release"


def download_artifacts(ctx: StepContext) -> None:
    out = _release_dir(ctx)
    for name in ctx.config.artifact_names():
        try:
            ctx.artifacts.download(name, out)
        except FileNotFoundError as e:
            raise ArtifactPackagingFailure(
                job=ctx.job.name,
                step="download",
                message=str(e),
                details={"available": ctx.artifacts.names()},
            ) from e


def generate_checksums(ctx: StepContext) -> None:
    out = _release_dir(ctx)
    archives = [out / name for name in ctx.config.artifact_names()]
    for p in write_checksums(archives):
        archive = p.with_name(p.name[: -len(".sha256")])
        if not verify_checksum(archive):
            raise ArtifactPackagingFailure(
                job=ctx.job.name,
                step="checksum",
                message=f"checksum mismatch for {archive.name}",
            )


def _create_release_step(client_factory: ClientFactory) -> Callable[[StepContext], None]:
    def create_github_release(ctx: StepContext) -> None:
        cfg = ctx.config
        tag = ctx.run.tag
        if tag is None:
            raise PublishRejection(job=ctx.job.name, step="create", message=f"not a tag ref: {ctx.run.ref}")
        if not cfg.repository:
            raise PublishRejection(
                job=ctx.job.name,
                step="create",
                message="no repository configured (RELEASECI_REPOSITORY or GITHUB_REPOSITORY)",
            )

        out = _release_dir(ctx)
        files: List[Path] = []
        for name in cfg.artifact_names():
            files.append(out / name)
            files.append(out / f"{name}.sha256")

        client = client_factory(
            cfg.repository,
            ctx.secrets.require(RELEASE_TOKEN),
            cfg.api_url,
            timeout=ctx.remaining(),
        )
        create_release(client, tag, files, job=ctx.job.name)

    return create_github_release


def publish_package(ctx: StepContext) -> None:
    cfg = ctx.config
    publish_crate(
        ctx.workspace / cfg.crate_dir,
        ctx.secrets.require(REGISTRY_TOKEN),
        cargo=cfg.cargo,
        toolchain=cfg.toolchain,
        env=ctx.env,
        timeout=ctx.remaining(),
        job=ctx.job.name,
    )


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------

def build_pipeline(
    config: Optional[ReleaseConfig] = None,
    *,
    client_factory: ClientFactory = ReleaseClient,
) -> List[Job]:
    cfg = config or ReleaseConfig()
    cargo = cfg.cargo
    tc = cfg.toolchain
    tagged = version_tag(cfg.tag_pattern)
    label = tag_label(cfg.tag_pattern)
    cwd = cfg.crate_dir

    def toolchain(channel: str, *components: str) -> List:
        cmd = f"rustup toolchain install {channel} --profile minimal"
        if components:
            cmd += " --component " + ",".join(components)
        return [sh(f"Install {channel} toolchain", cmd)]

    # Verification: one compile gate, then fan out
    check = job(
        "check",
        *toolchain(tc),
        sh("Check code compiles", f"{cargo} +{tc} check --all"),
        toolchain=tc,
        group=VERIFY,
        error="BuildFailure",
        cwd=cwd,
    )
    fmt = job(
        "fmt",
        *toolchain(tc, "rustfmt"),
        sh("Check formatting", f"{cargo} +{tc} fmt --all -- --check"),
        needs=["check"],
        toolchain=tc,
        group=VERIFY,
        error="FormatViolation",
        cwd=cwd,
    )
    clippy = job(
        "clippy",
        *toolchain(tc, "clippy"),
        sh("Lint", f"{cargo} +{tc} clippy --all-targets --all-features -- -D {cfg.lint_level}"),
        needs=["check"],
        toolchain=tc,
        group=VERIFY,
        error="LintViolation",
        cwd=cwd,
    )
    audit = job(
        "audit",
        *toolchain(tc),
        sh("Install cargo-audit", f"{cargo} +{tc} install --locked cargo-audit"),
        sh("Resolve dependencies", f"{cargo} +{tc} generate-lockfile"),
        sh("Audit dependencies", f"{cargo} +{tc} audit"),
        needs=["check"],
        toolchain=tc,
        group=VERIFY,
        error="SecurityAdvisory",
        cwd=cwd,
    )

    # Tests: every os x channel cell independent, all need the compile gate
    tests = matrix(os=cfg.test_os, toolchain=cfg.channels).jobs(
        lambda cell: job(
            f"test-{cell['os']}-{cell['toolchain']}",
            *toolchain(cell["toolchain"]),
            sh("Run tests", f"{cargo} +{cell['toolchain']} test"),
            needs=["check"],
            runs_on=cell["os"],
            toolchain=cell["toolchain"],
            group=TEST,
            error="TestFailure",
            cwd=cwd,
        )
    )

    # Release binaries, one cell per target triple, on the matching runner
    by_triple = {t.triple: t for t in cfg.targets}
    builds = (
        matrix(target=list(by_triple))
        .include(*({"target": t.triple, "os": t.os, "name": t.artifact_name(cfg.tool)} for t in cfg.targets))
        .jobs(
            lambda cell: job(
                f"build-{cell['target']}",
                sh(f"Install {tc} toolchain", f"rustup toolchain install {tc} --profile minimal --target {cell['target']}"),
                sh("Build release binary", f"{cargo} +{tc} build --release --target {cell['target']}", cwd=cwd),
                step("Strip and archive", _package_step(by_triple[cell["target"]])),
                condition=tagged,
                condition_label=label,
                runs_on=cell["os"],
                toolchain=tc,
                target=cell["target"],
                matrix=cell,
                artifacts=[cell["name"]],
                group=BUILD,
                error="BuildFailure",
            )
        )
    )

    test_names = [j.name for j in tests]

    release = job(
        "release",
        step("Download artifacts", download_artifacts),
        step("Generate checksums", generate_checksums),
        step("Create release", _create_release_step(client_factory)),
        needs=test_names + [j.name for j in builds],
        condition=tagged,
        condition_label=label,
        secrets=[RELEASE_TOKEN],
        group=RELEASE,
        error="PublishRejection",
    )

    publish = job(
        "publish",
        *toolchain(tc),
        step("Publish package", publish_package),
        needs=test_names,
        condition=tagged,
        condition_label=label,
        toolchain=tc,
        secrets=[REGISTRY_TOKEN],
        group=PUBLISH,
        error="PublishRejection",
    )

    return wf(check, fmt, clippy, audit, tests, builds, release, publish)


def workflow(config: ReleaseConfig) -> List[Job]:
    return build_pipeline(config)

