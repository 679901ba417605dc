# artifacts.py
from __future__ import annotations

import shutil
import subprocess
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional

from .config import Target
from .errors import ArtifactPackagingFailure
from .model import Artifact

DEFAULT_ARTIFACT_DIR = ".releaseci/artifacts"


# ---------------------------------------------------------------------
# Strip + archive
# ---------------------------------------------------------------------

def strip_binary(binary: Path, *, job: str = "package", strip_tool: str = "strip") -> None:
    """Remove debug symbols in place."""
    exe = shutil.which(strip_tool)
    if exe is None:
        raise ArtifactPackagingFailure(
            job=job,
            step="strip",
            message=f"{strip_tool!r} not found on PATH",
            details={"binary": str(binary)},
        )
    proc = subprocess.run([exe, str(binary)], capture_output=True, text=True)
    if proc.returncode != 0:
        raise ArtifactPackagingFailure(
            job=job,
            step="strip",
            message=f"strip failed (exit={proc.returncode})",
            details={"binary": str(binary), "stderr": proc.stderr[-4000:]},
        )


def archive_binary(binary: Path, dest: Path) -> Path:
    """
    Pack a single binary into `dest`; the archive format follows the suffix
    (.zip or .tar.gz). The binary sits at the archive root.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".tmp")
    try:
        if dest.name.endswith(".zip"):
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.write(binary, arcname=binary.name)
        elif dest.name.endswith(".tar.gz"):
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                tar.add(str(binary), arcname=binary.name, recursive=False)
        else:
            raise ValueError(f"Unsupported archive type: {dest.name}")
        tmp.replace(dest)
    finally:
        if tmp.exists():
            tmp.unlink(missing_ok=True)
    return dest


def package_binary(
    binary: str | Path,
    target: Target,
    tool: str,
    dest_dir: str | Path,
    *,
    strip: bool = True,
    job: str = "package",
) -> Artifact:
    """Strip, then archive the release binary as `<tool>-<triple>.<ext>`."""
    binary = Path(binary)
    if not binary.is_file():
        raise ArtifactPackagingFailure(
            job=job,
            step="archive",
            message=f"release binary not found: {binary}",
        )

    if strip:
        strip_binary(binary, job=job)

    dest = Path(dest_dir) / target.artifact_name(tool)
    try:
        archive_binary(binary, dest)
    except (OSError, ValueError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArtifactPackagingFailure(
            job=job,
            step="archive",
            message=str(e),
            details={"binary": str(binary), "archive": str(dest)},
        ) from e

    return Artifact(name=dest.name, target=target.triple, path=dest)


# ---------------------------------------------------------------------
# Artifact store (upload/download between jobs)
# ---------------------------------------------------------------------

class ArtifactStore:
    """
    File-based artifact store shared by the jobs of one run:
      root/
        <artifact_name>/
          <file>
    """

    def __init__(self, root: str | Path = DEFAULT_ARTIFACT_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _slot(self, name: str) -> Path:
        if "/" in name or "\\" in name or name in ("", ".", ".."):
            raise ValueError(f"Invalid artifact name: {name!r}")
        return self.root / name

    def upload(self, path: str | Path, name: Optional[str] = None) -> Path:
        """Publish `path` under `name` (defaults to the file name)."""
        src = Path(path)
        slot = self._slot(name or src.name)
        slot.mkdir(parents=True, exist_ok=True)
        dest = slot / src.name
        tmp = dest.with_name(dest.name + ".tmp")
        try:
            shutil.copyfile(src, tmp)
            tmp.replace(dest)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        return dest

    def download(self, name: str, dest_dir: str | Path = ".") -> List[Path]:
        slot = self._slot(name)
        if not slot.is_dir():
            raise FileNotFoundError(f"Artifact not found: {name}")
        out_dir = Path(dest_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        out = []
        for f in sorted(slot.iterdir()):
            if f.is_file():
                target = out_dir / f.name
                shutil.copyfile(f, target)
                out.append(target)
        return out

    def names(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)
