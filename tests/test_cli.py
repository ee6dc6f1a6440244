"""Tests for CLI entry point."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from clawup.cli import main
from tests.conftest import FULL_ENV, write_identity

PM = {"name": "agent-pm", "displayName": "PM", "role": "pm", "identity": "./identities/pm"}


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CLAWUP_CACHE_DIR", str(tmp_path / ".cache"))
    for name in FULL_ENV:
        monkeypatch.delenv(name, raising=False)


def _env_file(root: Path) -> Path:
    path = root / ".env"
    path.write_text("".join(f"{k}={v}\n" for k, v in FULL_ENV.items()))
    return path


class TestValidateSubcommand:
    def test_valid_manifest(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM])
        main(["--root", str(root), "validate"])
        out = capsys.readouterr().out
        assert "Manifest OK" in out
        assert "agent-pm" in out

    def test_invalid_manifest(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
        (tmp_path / "clawup.yaml").write_text("stackName: dev\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(tmp_path), "validate"])
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert err.startswith("Error: Invalid manifest")
        assert "provider" in err

    def test_no_project_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(SystemExit) as exc_info:
            main(["validate"])
        assert exc_info.value.code == 1
        assert "no clawup.yaml" in capsys.readouterr().err

    def test_finds_root_from_cwd(self, project: Callable[..., Path], monkeypatch, capsys):
        root = project([PM])
        monkeypatch.chdir(root)
        main(["validate"])
        assert "Manifest OK" in capsys.readouterr().out


class TestResolveSubcommand:
    def test_local_identity(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
        write_identity(tmp_path / "pm", "pm", plugins=["slack"], templateVars=["OWNER_NAME"])
        main(["--root", str(tmp_path), "resolve", str(tmp_path / "pm")])
        out = capsys.readouterr().out
        assert "Identity:  Pm (pm)" in out
        assert "Plugins:   slack" in out
        assert "Template vars: OWNER_NAME" in out

    def test_invalid_reference(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(tmp_path), "resolve", "ftp://example.com/repo"])
        assert exc_info.value.code == 1
        assert "Invalid identity source" in capsys.readouterr().err

    def test_version_on_local_rejected(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]):
        write_identity(tmp_path / "pm", "pm")
        with pytest.raises(SystemExit):
            main(["--root", str(tmp_path), "resolve", str(tmp_path / "pm"), "--version", "v1"])
        assert "version pins" in capsys.readouterr().err


class TestSecretsSubcommand:
    def test_missing_secrets_exit_nonzero(
        self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]
    ):
        root = project([PM], {"identities/pm": {"name": "pm", "deps": ["gh"]}})
        _env_file(root)
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(root), "secrets"])
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "PM_GITHUB_TOKEN" in captured.out
        assert "missing" in captured.out
        assert "Missing 1 secret(s)" in captured.err

    def test_agents_sharing_identity_report_missing(
        self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]
    ):
        eng1 = {"name": "agent-eng1", "displayName": "Eng 1", "role": "eng", "identity": "./eng"}
        eng2 = {**eng1, "name": "agent-eng2", "displayName": "Eng 2"}
        root = project([eng1, eng2], {"eng": {"name": "eng", "deps": ["gh"]}})
        _env_file(root)
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(root), "secrets"])
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "agent-eng1" in captured.out
        assert "agent-eng2" in captured.out
        assert "All required secrets are set." not in captured.out
        assert "ENG_GITHUB_TOKEN" in captured.err

    def test_all_set(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM], {"identities/pm": {"name": "pm"}})
        _env_file(root)
        main(["--root", str(root), "secrets"])
        out = capsys.readouterr().out
        assert "ANTHROPIC_API_KEY" in out
        assert "All required secrets are set." in out


class TestSyncSubcommand:
    def test_sync_then_up_to_date(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM], {"identities/pm": {"name": "pm", "templateVars": ["LINEAR_TEAM"]}})
        _env_file(root)
        main(["--root", str(root), "sync", "--var", "LINEAR_TEAM=ENG"])
        out = capsys.readouterr().out
        assert "agent-pm -> ./identities/pm" in out
        assert "Updated clawup.yaml" in out
        assert "LINEAR_TEAM: ENG" in (root / "clawup.yaml").read_text()

        main(["--root", str(root), "sync"])
        assert "Already up to date." in capsys.readouterr().out

    def test_dry_run(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM], {"identities/pm": {"name": "pm"}})
        main(["--root", str(root), "sync", "--dry-run"])
        assert "Dry run" in capsys.readouterr().out
        assert not (root / ".env.example").exists()

    def test_from_directory(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        agent = {**PM, "identity": "./old/pm"}
        root = project([agent], {"identities/pm": {"name": "pm"}})
        main(["--root", str(root), "sync", "--from", "./identities"])
        assert "agent-pm -> ./identities/pm" in capsys.readouterr().out

    def test_missing_template_var(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM], {"identities/pm": {"name": "pm", "templateVars": ["LINEAR_TEAM"]}})
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(root), "sync"])
        assert exc_info.value.code == 1
        assert "LINEAR_TEAM" in capsys.readouterr().err

    def test_non_utf8_identity_reported(
        self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]
    ):
        root = project([PM])
        (root / "identities" / "pm").mkdir(parents=True)
        (root / "identities" / "pm" / "identity.yaml").write_bytes(b"name: \xff\xfe\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["--root", str(root), "sync"])
        assert exc_info.value.code == 1
        assert "not valid UTF-8" in capsys.readouterr().err

    def test_bad_var_syntax(self, project: Callable[..., Path], capsys: pytest.CaptureFixture[str]):
        root = project([PM], {"identities/pm": {"name": "pm"}})
        with pytest.raises(SystemExit):
            main(["--root", str(root), "sync", "--var", "NOEQUALS"])
        assert "NAME=VALUE" in capsys.readouterr().err

    def test_strict_fails_on_missing_secret(self, project: Callable[..., Path], capsys):
        root = project([PM], {"identities/pm": {"name": "pm"}})
        with pytest.raises(SystemExit):
            main(["--root", str(root), "sync", "--strict"])
        assert "ANTHROPIC_API_KEY" in capsys.readouterr().err


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]):
        with patch("sys.argv", ["clawup"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_version(self, capsys: pytest.CaptureFixture[str]):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.startswith("clawup ")
