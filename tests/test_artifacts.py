import tarfile
import zipfile

import pytest

from releaseci import artifacts
from releaseci.artifacts import ArtifactStore, archive_binary, package_binary, strip_binary
from releaseci.config import DEFAULT_TARGETS, Target
from releaseci.errors import ArtifactPackagingFailure

LINUX, MACOS, WINDOWS = DEFAULT_TARGETS


def _binary(tmp_path, name="obslint"):
    p = tmp_path / "target" / "release" / name
    p.parent.mkdir(parents=True)
    p.write_bytes(b"\x7fELF fake")
    return p


def test_target_naming():
    assert LINUX.artifact_name("obslint") == "obslint-x86_64-unknown-linux-gnu.tar.gz"
    assert MACOS.artifact_name("obslint") == "obslint-x86_64-apple-darwin.tar.gz"
    assert WINDOWS.artifact_name("obslint") == "obslint-x86_64-pc-windows-msvc.zip"
    assert WINDOWS.binary_name("obslint") == "obslint.exe"
    assert LINUX.binary_name("obslint") == "obslint"


def test_tar_archive_holds_binary_at_root(tmp_path):
    binary = _binary(tmp_path)
    art = package_binary(binary, LINUX, "obslint", tmp_path / "dist", strip=False)
    assert art.name == "obslint-x86_64-unknown-linux-gnu.tar.gz"
    assert art.target == LINUX.triple
    with tarfile.open(art.path) as tar:
        assert tar.getnames() == ["obslint"]
        assert tar.extractfile("obslint").read() == b"\x7fELF fake"


def test_zip_archive_for_windows(tmp_path):
    binary = _binary(tmp_path, "obslint.exe")
    art = package_binary(binary, WINDOWS, "obslint", tmp_path / "dist", strip=False)
    with zipfile.ZipFile(art.path) as zf:
        assert zf.namelist() == ["obslint.exe"]
    assert not list((tmp_path / "dist").glob("*.tmp"))


def test_unknown_archive_suffix(tmp_path):
    with pytest.raises(ValueError):
        archive_binary(_binary(tmp_path), tmp_path / "out.rar")


def test_missing_binary_is_packaging_failure(tmp_path):
    with pytest.raises(ArtifactPackagingFailure) as exc:
        package_binary(tmp_path / "nope", LINUX, "obslint", tmp_path, job="build-linux")
    assert exc.value.kind == "ArtifactPackagingFailure"
    assert exc.value.job == "build-linux"


def test_missing_strip_tool(tmp_path, monkeypatch):
    monkeypatch.setattr(artifacts.shutil, "which", lambda name: None)
    with pytest.raises(ArtifactPackagingFailure, match="not found"):
        strip_binary(_binary(tmp_path))


def test_strip_failure_reports_exit(tmp_path, monkeypatch):
    class Proc:
        returncode = 1
        stderr = "strip: file format not recognized"

    monkeypatch.setattr(artifacts.shutil, "which", lambda name: "/usr/bin/strip")
    monkeypatch.setattr(artifacts.subprocess, "run", lambda *a, **kw: Proc())
    with pytest.raises(ArtifactPackagingFailure) as exc:
        package_binary(_binary(tmp_path), LINUX, "obslint", tmp_path / "dist")
    assert "exit=1" in str(exc.value)
    assert not (tmp_path / "dist").exists()


def test_store_upload_download(tmp_path):
    store = ArtifactStore(tmp_path / "store")
    f = tmp_path / "obslint.zip"
    f.write_bytes(b"zip")
    store.upload(f)
    assert store.names() == ["obslint.zip"]

    got = store.download("obslint.zip", tmp_path / "out")
    assert [p.name for p in got] == ["obslint.zip"]
    assert got[0].read_bytes() == b"zip"


def test_store_missing_artifact(tmp_path):
    store = ArtifactStore(tmp_path / "store")
    with pytest.raises(FileNotFoundError):
        store.download("ghost")


def test_store_rejects_path_names(tmp_path):
    store = ArtifactStore(tmp_path / "store")
    f = tmp_path / "x"
    f.write_text("x")
    with pytest.raises(ValueError):
        store.upload(f, "../escape")


def test_store_clear(tmp_path):
    store = ArtifactStore(tmp_path / "store")
    f = tmp_path / "x"
    f.write_text("x")
    store.upload(f)
    store.clear()
    assert store.names() == []


def test_custom_target():
    t = Target("aarch64-unknown-linux-musl", "linux")
    assert not t.is_windows
    assert t.archive_ext == "tar.gz"
