from .dsl import job, sh, step, matrix, wf, Matrix
from .runner import run_dag, plan
from .model import Job, Step, PipelineRun, JobResult, Artifact, Release
from .trigger import should_run, is_version_tag
from .pipeline import build_pipeline

__all__ = [
    "job", "sh", "step", "matrix", "wf", "Matrix",
    "run_dag", "plan",
    "Job", "Step", "PipelineRun", "JobResult", "Artifact", "Release",
    "should_run", "is_version_tag",
    "build_pipeline",
]
