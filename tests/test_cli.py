"""Tests for the agent-logs command line."""

import io
import json
import shutil
from pathlib import Path

import pytest

from agent_logs.main import build_parser, main

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def aider_root(tmp_path):
    """A root holding one Aider chat history."""
    repo = tmp_path / "repo"
    repo.mkdir()
    shutil.copy(FIXTURES / "aider_history.md", repo / ".aider.chat.history.md")
    return tmp_path


class TestArguments:
    """Tests for argument handling."""

    def test_no_command(self, capsys):
        """Test running without a command prints help and fails."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_version(self, capsys):
        """Test --version prints the package version."""
        assert main(["--version"]) == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_scan_options(self):
        """Test scan options parse into the expected namespace."""
        args = build_parser().parse_args(["scan", "/a", "/b", "--workers", "3", "--jsonl", "-v"])
        assert args.roots == [Path("/a"), Path("/b")]
        assert args.workers == 3
        assert args.jsonl and args.verbose


class TestToolsCommand:
    """Tests for the tools subcommand."""

    def test_lists_registry(self, capsys):
        """Test the registry table is printed."""
        assert main(["tools"]) == 0
        assert "Known log locations" in capsys.readouterr().out

    def test_bad_precedence(self, capsys):
        """Test an unknown tool name is a configuration error."""
        assert main(["tools", "--precedence", "bogus"]) == 2
        assert "Configuration error" in capsys.readouterr().out


class TestScanCommand:
    """Tests for the scan subcommand."""

    def test_jsonl_output(self, aider_root, capsys):
        """Test --jsonl writes one sanitized session per line."""
        assert main(["scan", str(aider_root), "--jsonl"]) == 0
        lines = capsys.readouterr().out.splitlines()
        sessions = [json.loads(line) for line in lines]
        assert [s["tool"] for s in sessions] == ["aider", "aider"]
        assert {s["id"] for s in sessions} == {"aider-1", "aider-2"}

    def test_summary_output(self, aider_root, capsys):
        """Test the default output ends with the run summary."""
        assert main(["scan", str(aider_root)]) == 0
        out = capsys.readouterr().out
        assert "Sources attempted: 1, parsed: 1, skipped: 0, truncated: 0, failed: 0 (complete)" in out

    def test_partial_run_with_diagnostics(self, aider_root, capsys):
        """Test failures mark the run partial and are listed with -v."""
        bad = aider_root / "ws" / "workspaceStorage" / "h1" / "chatSessions" / "bad.json"
        bad.parent.mkdir(parents=True)
        bad.write_text("{not json")

        assert main(["scan", str(aider_root), "-v"]) == 0
        out = capsys.readouterr().out
        assert "failed: 1 (partial)" in out
        assert "bad.json" in out

    def test_missing_root(self, tmp_path, capsys):
        """Test a missing root exits with a configuration error."""
        assert main(["scan", str(tmp_path / "missing")]) == 2
        assert "Configuration error" in capsys.readouterr().out

    def test_bad_precedence(self, aider_root):
        """Test an unknown precedence name is rejected before scanning."""
        assert main(["scan", str(aider_root), "--precedence", "bogus"]) == 2


class TestSanitizeCommand:
    """Tests for the sanitize subcommand."""

    def test_sanitize_file(self, tmp_path, capsys):
        """Test a file is sanitized line by line."""
        path = tmp_path / "notes.txt"
        path.write_text("plain line\nkey sk-ant-REDACTED\n")
        assert main(["sanitize", str(path)]) == 0
        out = capsys.readouterr().out
        assert out.splitlines() == ["plain line", "key [REDACTED:credential:anthropic_key]"]

    def test_sanitize_stdin(self, monkeypatch, capsys):
        """Test stdin is sanitized when no file is given."""
        monkeypatch.setattr("sys.stdin", io.StringIO("mail bob@example.com please\n"))
        assert main(["sanitize"]) == 0
        out = capsys.readouterr().out
        assert "bob@example.com" not in out
        assert "[REDACTED:pii:email]" in out

    def test_missing_file(self, tmp_path, capsys):
        """Test an unreadable file is reported and fails."""
        assert main(["sanitize", str(tmp_path / "missing.txt")]) == 1
        assert "Cannot read" in capsys.readouterr().out

    def test_shell_history_to_directory(self, tmp_path, monkeypatch):
        """Test shell histories are written to the output directory."""
        home = tmp_path / "home"
        home.mkdir()
        (home / ".bash_history").write_text("export GITHUB_TOKEN=ghp_abcdefghijklmnop1234\n")
        monkeypatch.setenv("HOME", str(home))
        out_dir = tmp_path / "out"

        assert main(["sanitize", "--shell-history", "--output-dir", str(out_dir)]) == 0
        written = (out_dir / "bash_history_sanitized.txt").read_text()
        assert "ghp_abcdefghijklmnop1234" not in written
        assert written.startswith("export GITHUB_TOKEN=")

    def test_no_shell_history(self, tmp_path, monkeypatch, capsys):
        """Test an empty home reports that nothing was found."""
        monkeypatch.setenv("HOME", str(tmp_path))
        assert main(["sanitize", "--shell-history"]) == 0
        assert "No shell history files found" in capsys.readouterr().out
