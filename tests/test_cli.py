"""Tests for the llm-reviewer command line."""

import io
import json
import os
from unittest import mock

import pytest

from llm_reviewer import cli
from llm_reviewer.errors import ProviderError, ProviderErrorKind
from llm_reviewer.llm.base import StreamItem


SCRIPT = """\
ANALYSIS_SUMMARY: Two fixes.

CHANGE: modify_file
FILE: app.py
REASON: Off-by-one
SEVERITY: high
CATEGORY: BUGS
ACTION: replace
LINE: 2
OLD: for i in range(len(xs) + 1):
NEW: for i in range(len(xs)):
END_CHANGE

CHANGE: create_file
FILE: docs/NOTES.md
REASON: Document the fix
SEVERITY: low
CATEGORY: CLEAN_CODE
CONTENT:
# Notes
END_CONTENT
END_CHANGE
"""

APP = "def f(xs):\n    for i in range(len(xs) + 1):\n        print(xs[i])\n"


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    for key in ("LLM_PROVIDER", "LLM_MODEL", "ANTHROPIC_API_KEY", "QUERY_TIMEOUT",
                "ALLOW_OVERWRITE", "MAX_VERBATIM_LINES"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    (root / "app.py").write_text(APP, encoding="utf-8")
    return root


@pytest.fixture
def script(tmp_path):
    path = tmp_path / "reply.txt"
    path.write_text(SCRIPT, encoding="utf-8")
    return str(path)


class FakeClient:
    provider_name = "Fake"
    model = "fake-model"

    def __init__(self, items):
        self.items = items

    def stream(self, messages, timeout=None):
        for item in self.items:
            if isinstance(item, BaseException):
                raise item
            yield item


class TestParse:
    def test_lists_changes(self, script, capsys):
        assert cli.main(["parse", script]) == 0

        out = capsys.readouterr().out
        assert "Two fixes." in out
        assert "modify_file" in out and "docs/NOTES.md" in out

    def test_json(self, script, capsys):
        assert cli.main(["parse", "--json", script]) == 0

        data = json.loads(capsys.readouterr().out)
        assert [c["path"] for c in data["changes"]] == ["app.py", "docs/NOTES.md"]
        assert data["parse_errors"] == []

    def test_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(SCRIPT))
        assert cli.main(["parse", "-"]) == 0
        assert "app.py" in capsys.readouterr().out

    def test_strict_fails_on_dropped_block(self, tmp_path, capsys):
        path = tmp_path / "bad.txt"
        path.write_text(SCRIPT.replace("LINE: 2", "LINE: two"), encoding="utf-8")

        assert cli.main(["parse", str(path)]) == 0
        assert cli.main(["parse", "--strict", str(path)]) == 3
        assert "skipped" in capsys.readouterr().out

    def test_missing_summary(self, tmp_path, capsys):
        path = tmp_path / "chatter.txt"
        path.write_text("I could not find anything.\n", encoding="utf-8")

        assert cli.main(["parse", str(path)]) == 3
        assert "ANALYSIS_SUMMARY" in capsys.readouterr().err

    def test_unreadable_script(self, tmp_path, capsys):
        assert cli.main(["parse", str(tmp_path / "absent.txt")]) == 1
        assert "Cannot read" in capsys.readouterr().err


class TestStats:
    def test_report(self, script, capsys):
        assert cli.main(["stats", script]) == 0
        out = capsys.readouterr().out
        assert "Risk Score" in out
        assert "Recommendations:" in out

    def test_json(self, script, capsys):
        assert cli.main(["stats", "--json", script]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["total_count"] == 2
        assert data["by_category"]["BUGS"] == 1


class TestApply:
    def test_applies_all_changes(self, script, repo, capsys):
        assert cli.main(["apply", script, "--repo", str(repo)]) == 0

        assert (repo / "app.py").read_text(encoding="utf-8") == APP.replace(
            "range(len(xs) + 1)", "range(len(xs))")
        assert (repo / "docs" / "NOTES.md").read_text(encoding="utf-8") == "# Notes"
        assert "2 applied, 0 failed" in capsys.readouterr().out

    def test_failure_exit_code(self, script, repo, capsys):
        (repo / "app.py").write_text("changed\nupstream\n", encoding="utf-8")

        assert cli.main(["apply", script, "--repo", str(repo)]) == 4
        assert "1 applied, 1 failed" in capsys.readouterr().out
        assert (repo / "docs" / "NOTES.md").exists()

    def test_only_selected_changes(self, script, repo):
        assert cli.main(["apply", script, "--repo", str(repo), "--only", "1"]) == 0

        assert (repo / "app.py").read_text(encoding="utf-8") == APP
        assert (repo / "docs" / "NOTES.md").exists()

    def test_only_out_of_range(self, script, repo, capsys):
        assert cli.main(["apply", script, "--repo", str(repo), "--only", "5"]) == 1
        assert "out of range" in capsys.readouterr().err

    def test_dry_run_writes_nothing(self, script, repo, capsys):
        assert cli.main(["apply", script, "--repo", str(repo), "--dry-run"]) == 0

        assert (repo / "app.py").read_text(encoding="utf-8") == APP
        assert not (repo / "docs").exists()
        assert "dry run" in capsys.readouterr().out

    def test_dry_run_flags_existing_file(self, script, repo, capsys):
        (repo / "docs").mkdir()
        (repo / "docs" / "NOTES.md").write_text("old", encoding="utf-8")

        assert cli.main(["apply", script, "--repo", str(repo), "--dry-run"]) == 4
        assert "already exists" in capsys.readouterr().out
        assert cli.main(["apply", script, "--repo", str(repo), "--dry-run",
                         "--overwrite"]) == 0
        assert (repo / "docs" / "NOTES.md").read_text(encoding="utf-8") == "old"

    def test_overwrite_flag(self, script, repo):
        (repo / "docs").mkdir()
        (repo / "docs" / "NOTES.md").write_text("old", encoding="utf-8")

        assert cli.main(["apply", script, "--repo", str(repo)]) == 4
        assert cli.main(["apply", script, "--repo", str(repo), "--only", "1",
                         "--overwrite"]) == 0
        assert (repo / "docs" / "NOTES.md").read_text(encoding="utf-8") == "# Notes"

    def test_writes_log_file(self, script, repo, tmp_path):
        cli.main(["apply", script, "--repo", str(repo)])
        assert os.listdir(str(tmp_path / "logs"))


class TestQuery:
    def test_requires_api_key(self, tmp_path, capsys):
        prompt = tmp_path / "prompt.txt"
        prompt.write_text("Review this.", encoding="utf-8")

        assert cli.main(["query", str(prompt)]) == 2
        assert "ANTHROPIC_API_KEY" in capsys.readouterr().err

    def test_streams_reply_to_file(self, tmp_path, repo, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        prompt = tmp_path / "prompt.txt"
        prompt.write_text("Review this.", encoding="utf-8")
        output = tmp_path / "reply.txt"
        client = FakeClient([StreamItem(content="ANALYSIS_SUMMARY: "),
                             StreamItem(content="fine"),
                             StreamItem(is_complete=True, stop_reason="stop")])

        with mock.patch("llm_reviewer.cli.create_client", return_value=client) as factory:
            code = cli.main(["query", str(prompt), "--files", str(repo / "app.py"),
                             "--output", str(output)])

        assert code == 0
        assert output.read_text(encoding="utf-8") == "ANALYSIS_SUMMARY: fine"
        assert factory.call_count == 1

    def test_provider_error_exit_code(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        prompt = tmp_path / "prompt.txt"
        prompt.write_text("Review this.", encoding="utf-8")
        client = FakeClient([ProviderError(ProviderErrorKind.AUTH, "bad key", 401)])

        with mock.patch("llm_reviewer.cli.create_client", return_value=client):
            assert cli.main(["query", str(prompt)]) == 5
        assert "bad key" in capsys.readouterr().err

    def test_interrupt(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        prompt = tmp_path / "prompt.txt"
        prompt.write_text("Review this.", encoding="utf-8")
        client = FakeClient([StreamItem(content="partial"), KeyboardInterrupt()])

        with mock.patch("llm_reviewer.cli.create_client", return_value=client):
            assert cli.main(["query", str(prompt), "--output",
                             str(tmp_path / "out.txt")]) == 130
