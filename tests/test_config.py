import pytest

from releaseci.config import DEFAULT_TARGETS, ReleaseConfig, Secrets, Target, load_config, scrub_env


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config(environ={})
    assert cfg == ReleaseConfig()
    assert cfg.targets == DEFAULT_TARGETS
    assert cfg.ignore == ("docs/**", "**.md")


def test_toml_then_env(tmp_path):
    path = tmp_path / "releaseci.toml"
    path.write_text(
        "[tool.releaseci]\n"
        'tool = "mytool"\n'
        'crate-dir = "cli"\n'
        'channels = ["stable"]\n'
        "job_timeout = 900\n"
        "targets = [\n"
        '  { triple = "aarch64-apple-darwin", os = "macos" },\n'
        "]\n"
    )
    cfg = load_config(path, environ={"RELEASECI_TOOL": "override", "RELEASECI_STRIP": "no"})
    assert cfg.tool == "override"
    assert cfg.crate_dir == "cli"
    assert cfg.channels == ("stable",)
    assert cfg.job_timeout == 900.0
    assert cfg.targets == (Target("aarch64-apple-darwin", "macos"),)
    assert cfg.strip is False
    assert cfg.artifact_names() == ["override-aarch64-apple-darwin.tar.gz"]


def test_bare_table_is_accepted(tmp_path):
    path = tmp_path / "ci.toml"
    path.write_text('[releaseci]\ntag_pattern = "release-*"\n')
    assert load_config(path, environ={}).tag_pattern == "release-*"


def test_env_lists_are_comma_separated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config(environ={"RELEASECI_TEST_OS": "linux, windows", "RELEASECI_JOB_TIMEOUT": "120"})
    assert cfg.test_os == ("linux", "windows")
    assert cfg.job_timeout == 120.0


def test_github_repository_fallback(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config(environ={"GITHUB_REPOSITORY": "acme/obslint"}).repository == "acme/obslint"
    env = {"GITHUB_REPOSITORY": "acme/obslint", "RELEASECI_REPOSITORY": "fork/obslint"}
    assert load_config(environ=env).repository == "fork/obslint"


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "releaseci.toml"
    path.write_text('[tool.releaseci]\ntols = "typo"\n')
    with pytest.raises(ValueError, match="tols"):
        load_config(path, environ={})


def test_explicit_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.toml", environ={})


def test_unknown_target_lookup():
    with pytest.raises(KeyError):
        ReleaseConfig().target("riscv64gc-unknown-linux-gnu")


def test_secrets_from_env_ignores_empty_values():
    s = Secrets.from_env(environ={"GITHUB_TOKEN": "abc", "CRATES_IO_TOKEN": ""})
    assert "GITHUB_TOKEN" in s
    assert "CRATES_IO_TOKEN" not in s
    with pytest.raises(KeyError):
        s.require("CRATES_IO_TOKEN")
    assert "abc" not in str(s)


def test_scrub_env_keeps_declared_secrets_only():
    env = {"PATH": "/bin", "GITHUB_TOKEN": "a", "CRATES_IO_TOKEN": "b"}
    assert scrub_env(env) == {"PATH": "/bin"}
    assert scrub_env(env, ["CRATES_IO_TOKEN"]) == {"PATH": "/bin", "CRATES_IO_TOKEN": "b"}


def test_install_spec_from_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config(environ={}).install_spec == "releaseci==0.1.0"
    env = {"RELEASECI_INSTALL_SPEC": "git+https://git.example.com/acme/releaseci@v0.1.0"}
    assert load_config(environ=env).install_spec.endswith("@v0.1.0")
