"""Tests for the discovery -> parse -> sanitize pipeline."""

import json
import shutil
from pathlib import Path

import pytest

from agent_logs.config import ScanConfig
from agent_logs.diagnostics import DiagnosticKind
from agent_logs.discovery import source_for_path
from agent_logs.errors import ConfigurationError
from agent_logs.models import AiTool, ParseLimits
from agent_logs.pipeline import Pipeline, PipelineReport
from agent_logs.sanitizer import SanitizedSession

FIXTURES = Path(__file__).parent / "fixtures"
CLAUDE_KEY = "sk-ant-REDACTED"


def place(fixture: str, dest: Path) -> Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(FIXTURES / fixture, dest)
    return dest


def make_config(root: Path, **overrides) -> ScanConfig:
    config = ScanConfig(roots=[root], parse_workers=2, discovery_workers=2)
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


@pytest.fixture
def home(tmp_path):
    """A home directory holding two tools' logs and one corrupt chat file."""
    place("claude_code_session.jsonl", tmp_path / ".claude" / "projects" / "-home-alice-webapp" / "s1.jsonl")
    place("aider_history.md", tmp_path / ".aider.chat.history.md")
    bad = tmp_path / ".config" / "Code" / "User" / "workspaceStorage" / "h1" / "chatSessions" / "bad.json"
    bad.parent.mkdir(parents=True)
    bad.write_text("{not json")
    return tmp_path


class TestPipelineRun:
    """Tests for complete runs."""

    def test_run_collects_sanitized_sessions(self, home):
        """Test sessions from every parsed source come back sanitized."""
        report = Pipeline(make_config(home)).run()

        assert isinstance(report, PipelineReport)
        assert all(isinstance(s, SanitizedSession) for s in report.sessions)
        assert sorted(s.tool.value for s in report.sessions) == ["aider", "aider", "claude-code"]

        dumped = json.dumps([s.to_dict() for s in report.sessions])
        assert CLAUDE_KEY not in dumped
        assert "/home/alice" not in dumped
        assert "[REDACTED:credential:anthropic_key]" in dumped

    def test_failures_are_diagnostics(self, home):
        """Test a corrupt source fails alone and marks the run partial."""
        report = Pipeline(make_config(home)).run()

        assert report.summary() == {
            "attempted": 3,
            "parsed": 2,
            "sessions": 3,
            "truncated": 0,
            "failed": 1,
            "skipped": 0,
            "cancelled": False,
            "complete": False,
        }
        failed = report.diagnostics[0]
        assert failed.kind is DiagnosticKind.FAILED
        assert failed.stage == "parse"
        assert failed.path.endswith("bad.json")
        assert failed.reason.startswith("invalid JSON")

    def test_clean_run_is_complete(self, tmp_path):
        """Test a run with nothing wrong reports complete."""
        place("aider_history.md", tmp_path / "repo" / ".aider.chat.history.md")
        report = Pipeline(make_config(tmp_path)).run()
        assert len(report.sessions) == 2
        assert report.diagnostics == []
        assert report.complete

    def test_empty_root(self, tmp_path):
        """Test a root with no logs yields an empty, complete report."""
        report = Pipeline(make_config(tmp_path)).run()
        assert report.sessions == []
        assert report.summary()["attempted"] == 0
        assert report.complete

    def test_truncation_keeps_partial_sessions(self, tmp_path):
        """Test a source cut short by limits still yields its session."""
        place("claude_code_session.jsonl", tmp_path / ".claude" / "projects" / "-home-alice-webapp" / "s1.jsonl")
        config = make_config(tmp_path, limits=ParseLimits(max_lines=3))
        report = Pipeline(config).run()

        assert len(report.sessions) == 1
        assert report.sessions[0].truncated
        truncated = report.diagnostics[0]
        assert truncated.kind is DiagnosticKind.TRUNCATED
        assert truncated.reason == "max_lines"
        assert report.summary()["truncated"] == 1
        assert not report.complete

    def test_explicit_roots_override_config(self, home, tmp_path_factory):
        """Test roots passed to run() replace the configured ones."""
        other = tmp_path_factory.mktemp("other")
        place("aider_history.md", other / ".aider.chat.history.md")
        report = Pipeline(make_config(home)).run([other])
        assert [s.tool for s in report.sessions] == [AiTool.AIDER, AiTool.AIDER]

    def test_pipeline_is_reusable(self, home):
        """Test each run starts with fresh counters and diagnostics."""
        pipeline = Pipeline(make_config(home))
        first = pipeline.run().summary()
        second = pipeline.run().summary()
        assert first == second


class TestPipelineConfiguration:
    """Tests for configuration errors raised before any work starts."""

    def test_missing_root(self, tmp_path):
        """Test a run whose roots do not exist is refused."""
        pipeline = Pipeline(make_config(tmp_path / "missing"))
        with pytest.raises(ConfigurationError):
            pipeline.run()

    def test_no_roots(self, tmp_path):
        """Test an empty root list is refused."""
        with pytest.raises(ConfigurationError):
            Pipeline(make_config(tmp_path, roots=[])).run()

    def test_invalid_workers(self, tmp_path):
        """Test invalid settings are rejected at construction."""
        with pytest.raises(ConfigurationError):
            Pipeline(make_config(tmp_path, parse_workers=0))

    def test_precedence_applied_to_registry(self, tmp_path):
        """Test configured precedence reorders the registry used for discovery."""
        pipeline = Pipeline(make_config(tmp_path, tool_precedence=["cline"]))
        assert pipeline.registry.precedence == (AiTool.CLINE,)


class TestParseSources:
    """Tests for parsing explicitly supplied sources."""

    def test_parse_sources(self, tmp_path):
        """Test sources can be parsed without discovery."""
        path = place("droid_session.jsonl", tmp_path / ".factory" / "sessions" / "-home-tester-project" / "s.jsonl")
        pipeline = Pipeline(make_config(tmp_path))
        sessions = list(pipeline.parse_sources([source_for_path(path)]))
        assert len(sessions) == 1
        assert sessions[0].tool is AiTool.DROID
        assert "tester" not in sessions[0].project_path

    def test_cancel_stops_the_run(self, tmp_path):
        """Test cancelling after the first session stops further output."""
        sources = []
        for i in range(6):
            path = place("aider_history.md", tmp_path / f"repo{i}" / ".aider.chat.history.md")
            sources.append(source_for_path(path))

        pipeline = Pipeline(make_config(tmp_path, parse_workers=1))
        collected = []
        for session in pipeline.parse_sources(sources):
            collected.append(session)
            pipeline.cancel()

        report = pipeline.report(collected)
        assert len(collected) == 1
        assert report.cancelled
        assert report.summary()["cancelled"] is True
        assert not report.complete
        assert report.summary()["attempted"] < len(sources)
