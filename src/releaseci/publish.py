# publish.py
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Dict, Optional

from .config import REGISTRY_TOKEN, scrub_env
from .errors import PublishRejection


def publish_crate(
    crate_dir: str | Path,
    token: str,
    *,
    cargo: str = "cargo",
    toolchain: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    job: str = "publish",
) -> None:
    """
    Upload the package to the registry.

    The token is handed to this one process through CARGO_REGISTRY_TOKEN;
    nothing is written to the registry credentials file. A publish that the
    registry accepts cannot be undone, and a rejected one is not retried.
    """
    if not token:
        raise PublishRejection(job=job, step="publish", message="registry token is empty")

    cmd = [cargo]
    if toolchain:
        cmd.append(f"+{toolchain}")
    cmd.append("publish")

    proc_env = scrub_env(dict(os.environ), [REGISTRY_TOKEN])
    proc_env.update(env or {})
    proc_env["CARGO_REGISTRY_TOKEN"] = token

    try:
        proc = subprocess.run(
            cmd,
            cwd=str(crate_dir),
            env=proc_env,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise PublishRejection(job=job, step="publish", message=f"timed out after {e.timeout}s") from e
    except FileNotFoundError as e:
        raise PublishRejection(job=job, step="publish", message=f"{cargo!r} not found") from e

    if proc.returncode != 0:
        raise PublishRejection(
            job=job,
            step="publish",
            message=f"registry publish failed (exit={proc.returncode})",
            details={"stderr": proc.stderr[-4000:].strip()},
        )
