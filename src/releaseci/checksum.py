# checksum.py
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, List

CHECKSUM_SUFFIX = ".sha256"


def sha256_file(path: str | Path) -> str:
    """Lowercase hex sha256 of the file's exact bytes."""
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def checksum_path(path: str | Path) -> Path:
    p = Path(path)
    return p.with_name(p.name + CHECKSUM_SUFFIX)


def write_checksum(path: str | Path) -> Path:
    """
    Write `<path>.sha256` next to the file.

    The file holds the digest only, newline terminated, the way
    `openssl dgst -sha256 -r | awk '{print $1}'` writes it.
    """
    out = checksum_path(path)
    out.write_text(sha256_file(path) + "\n", encoding="ascii")
    return out


def write_checksums(paths: Iterable[str | Path]) -> List[Path]:
    return [write_checksum(p) for p in paths]


def read_checksum(path: str | Path) -> str:
    """Digest stored in a .sha256 file (tolerates a trailing `  filename`)."""
    text = Path(path).read_text(encoding="ascii").strip()
    digest = text.split()[0].lower() if text else ""
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise ValueError(f"{path}: not a sha256 digest: {text[:80]!r}")
    return digest


def verify_checksum(path: str | Path) -> bool:
    """Recompute the digest of `path` and compare it with `<path>.sha256`."""
    return read_checksum(checksum_path(path)) == sha256_file(path)
