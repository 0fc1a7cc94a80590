"""Tests for the ``proofline check`` command."""

from __future__ import annotations

import json

import pytest

from helpers import FakeProvider, typo_rules
from proofline import cli
from proofline.services.settings import Settings
from proofline.state.models import AnalysisResult, Issue


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


def test_check_prints_issues_with_line_and_column(tmp_path, monkeypatch, capsys):
    target = tmp_path / "draft.txt"
    target.write_text("Fine start.\n\nIt was happpy.", encoding="utf-8")
    provider = FakeProvider(analyze=typo_rules({"happpy": "happy"}))
    monkeypatch.setattr(cli, "build_provider", lambda settings: provider)

    code = cli.main(["check", str(target), "--no-stability"])

    out = capsys.readouterr().out
    assert code == cli.EXIT_ISSUES
    assert "3:8  spelling" in out
    assert "'happpy' -> 'happy'" in out
    assert "1 issue(s) (spelling: 1)" in out
    assert provider.verify_calls == []


def test_check_json_output(tmp_path, monkeypatch, capsys):
    target = tmp_path / "clean.txt"
    target.write_text("Nothing wrong here.", encoding="utf-8")
    monkeypatch.setattr(cli, "build_provider", lambda settings: FakeProvider())
    monkeypatch.setenv("PROOFLINE_IDLE_DELAY", "0")

    code = cli.main(["check", str(target), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert code == cli.EXIT_OK
    assert payload["issues"] == []
    assert payload["text"] == "Nothing wrong here."


def test_missing_api_key_is_a_usage_error(tmp_path, capsys):
    target = tmp_path / "draft.txt"
    target.write_text("Some text.", encoding="utf-8")

    code = cli.main(["check", str(target)])

    assert code == cli.EXIT_ERROR
    assert "API key" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    assert cli.main([]) == cli.EXIT_ERROR
    assert "check" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_check_runs_stability_pass():
    provider = FakeProvider()
    settings = Settings(idle_delay=0.0)

    result = await cli.run_check(provider, "All good.\n\nStill good.", settings)

    assert result.issues == []
    assert len(provider.verify_calls) == 2


def test_format_result_without_issues():
    assert cli.format_result(AnalysisResult(text="ok")) == "No issues found."
    result = AnalysisResult(text="a\nteh", issues=[Issue("spelling", 2, 5, "teh", "the", "Typo.")])
    assert cli.format_result(result).splitlines()[0].startswith("2:1  spelling")


def test_failed_block_analysis_is_an_error(tmp_path, monkeypatch, capsys):
    target = tmp_path / "draft.txt"
    target.write_text("Fine start.\n\nIt was happpy.", encoding="utf-8")
    provider = FakeProvider(analyze=lambda text: RuntimeError("401 unauthorized"))
    monkeypatch.setattr(cli, "build_provider", lambda settings: provider)

    code = cli.main(["check", str(target), "--no-stability"])

    captured = capsys.readouterr()
    assert code == cli.EXIT_ERROR
    assert "No issues found." not in captured.out
    assert "401 unauthorized" in captured.err


def test_missing_input_file_is_an_error(tmp_path, capsys):
    code = cli.main(["check", str(tmp_path / "missing.txt")])

    assert code == cli.EXIT_ERROR
    assert "cannot read" in capsys.readouterr().err
