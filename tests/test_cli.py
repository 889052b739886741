from __future__ import annotations

from pathlib import Path

import pytest

from ragbot import cli
from ragbot.config import Settings


def test_print_help_lists_subcommands(capsys: pytest.CaptureFixture[str]) -> None:
    cli._print_help()
    output = capsys.readouterr().out
    assert "ragbot setup" in output
    assert "ragbot doctor" in output
    assert "ragbot run" in output


def test_main_setup_prints_samples_and_exits(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(provider_name="openrouter"))
    monkeypatch.setattr(cli.sys, "argv", ["ragbot", "setup"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 0
    output = capsys.readouterr().out
    assert "Provider: openrouter" in output
    assert "OPENROUTER_API_KEY=YOUR_KEY_HERE" in output
    assert "system_prompt:" in output


def test_doctor_reports_agent_config(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(cli.shutil, "which", lambda _name: "/tmp/ragbot")
    (tmp_path / "agent.yaml").write_text("name: Bob\nsystem_prompt: You are Bob\n", encoding="utf-8")

    cli._print_doctor(Settings(agent_config_path=str(tmp_path / "agent.yaml")))
    output = capsys.readouterr().out
    assert "ragbot doctor" in output
    assert "PATH bin:  /tmp/ragbot" in output
    assert "Agent:     Bob" in output

    cli._print_doctor(Settings(agent_config_path=str(tmp_path / "missing.yaml")))
    assert "Agent:     not loaded (Agent config file not found" in capsys.readouterr().out


def test_run_with_missing_agent_config_exits_2(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(agent_config_path=str(tmp_path / "nope.yaml")))
    monkeypatch.setattr(cli.sys, "argv", ["ragbot"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 2
    assert "Example agent configuration" in capsys.readouterr().err


def test_unknown_subcommand_exits_2(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: Settings())
    monkeypatch.setattr(cli.sys, "argv", ["ragbot", "dance"])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 2


def test_main_rejects_non_numeric_settings(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MAX_PROMPT_TOKENS", "abc")
    monkeypatch.setattr(cli.sys, "argv", ["ragbot", "doctor"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 2
    err = capsys.readouterr().err
    assert "Error: invalid configuration" in err
    assert "max_prompt_tokens" in err


def test_run_with_missing_vault_folder_exits_with_error(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.chdir(tmp_path)
    agent_file = tmp_path / "agent.yaml"
    agent_file.write_text("name: Bob\nsystem_prompt: You are Bob\n", encoding="utf-8")
    settings = Settings(
        agent_config_path=str(agent_file),
        knowledge_backend="vault",
        vault_path=str(tmp_path / "missing"),
        channel="null",
    )
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli.sys, "argv", ["ragbot", "run"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 2
    assert "VAULT_PATH folder not found" in capsys.readouterr().err
