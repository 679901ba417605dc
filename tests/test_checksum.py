import hashlib

import pytest

from releaseci.checksum import checksum_path, read_checksum, sha256_file, verify_checksum, write_checksum, write_checksums


def test_digest_matches_hashlib(tmp_path):
    f = tmp_path / "obslint.tar.gz"
    f.write_bytes(b"\x00\x01release bytes" * 1000)
    assert sha256_file(f) == hashlib.sha256(f.read_bytes()).hexdigest()


def test_checksum_file_is_digest_and_newline(tmp_path):
    f = tmp_path / "obslint.zip"
    f.write_bytes(b"abc")
    out = write_checksum(f)
    assert out == tmp_path / "obslint.zip.sha256"
    assert out.read_text() == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad\n"


def test_verify_detects_tampering(tmp_path):
    f = tmp_path / "a.tar.gz"
    f.write_bytes(b"original")
    write_checksum(f)
    assert verify_checksum(f)
    f.write_bytes(b"tampered")
    assert not verify_checksum(f)


def test_read_tolerates_sha256sum_layout(tmp_path):
    f = tmp_path / "a.tar.gz"
    f.write_bytes(b"x")
    digest = sha256_file(f)
    checksum_path(f).write_text(f"{digest.upper()}  a.tar.gz\n")
    assert read_checksum(checksum_path(f)) == digest
    assert verify_checksum(f)


def test_read_rejects_garbage(tmp_path):
    p = tmp_path / "bad.sha256"
    p.write_text("not a digest\n")
    with pytest.raises(ValueError):
        read_checksum(p)
    p.write_text("")
    with pytest.raises(ValueError):
        read_checksum(p)


def test_write_checksums_keeps_order(tmp_path):
    files = []
    for name in ("b.zip", "a.tar.gz"):
        (tmp_path / name).write_bytes(name.encode())
        files.append(tmp_path / name)
    assert [p.name for p in write_checksums(files)] == ["b.zip.sha256", "a.tar.gz.sha256"]
