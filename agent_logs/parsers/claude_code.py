"""Claude Code transcripts and prompt history."""

from pathlib import Path

from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role, Session
from . import register_parser
from .base import BoundedLineReader, SourceParser, extract_file_paths, extract_text_content, parse_timestamp, sniff

HISTORY_FILE = "history.jsonl"


def decode_path(encoded: str) -> str:
    """Decode project directory name back to original path."""
    return encoded.replace("-", "/")


def _usage_tokens(usage) -> int | None:
    if not isinstance(usage, dict):
        return None
    counts = [
        usage.get(key) for key in
        ("input_tokens", "output_tokens", "cache_creation_input_tokens", "cache_read_input_tokens")
    ]
    counts = [c for c in counts if isinstance(c, int) and not isinstance(c, bool)]
    return sum(counts) if counts else None


def _role_for(msg_type: str, content) -> Role:
    if isinstance(content, list) and content and all(
        isinstance(block, dict) and block.get("type") == "tool_result" for block in content
    ):
        return Role.TOOL
    return Role.from_label(msg_type) or Role.SYSTEM


@register_parser
class ClaudeCodeParser(SourceParser):
    """Per-session transcript under ~/.claude/projects/<encoded-path>/<id>.jsonl."""

    name = "claude-code"
    tools = (AiTool.CLAUDE_CODE,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        path = source.path
        if source.is_directory or path.suffix != ".jsonl" or path.name == HISTORY_FILE:
            return False
        if path.parent.parent.name == "projects" and path.parent.parent.parent.name == ".claude":
            return True
        head = sniff(path)
        return b'"sessionId"' in head and (b'"parentUuid"' in head or b'"userType"' in head)

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        path = source.path
        session = self.new_session(source, path.stem)
        with BoundedLineReader(path, limits) as reader:
            for data in reader.json_records():
                msg_type = data.get("type")

                if msg_type == "summary":
                    if not session.title and isinstance(data.get("summary"), str):
                        session.title = data["summary"][:80]
                    continue
                if msg_type not in ("user", "assistant"):
                    continue

                if data.get("sessionId") and session.id == path.stem:
                    session.id = data["sessionId"]
                if not session.project_path and data.get("cwd"):
                    session.project_path = data["cwd"]
                if data.get("isSidechain"):
                    session.extra["sidechain"] = True
                if data.get("gitBranch"):
                    session.extra.setdefault("git_branch", data["gitBranch"])

                msg = data.get("message") or {}
                if not isinstance(msg, dict):
                    continue
                model = msg.get("model")
                if msg_type == "assistant" and model and model != "<synthetic>" and not session.model:
                    session.model = model

                raw_content = msg.get("content", "")
                content = extract_text_content(raw_content)
                file_paths = set()
                if isinstance(raw_content, list):
                    for block in raw_content:
                        if isinstance(block, dict) and block.get("type") == "tool_use":
                            file_paths |= extract_file_paths(block.get("input"))
                if not content and not file_paths:
                    continue

                cost = data.get("costUSD")
                session.add_event(
                    _role_for(msg_type, raw_content),
                    content,
                    parse_timestamp(data.get("timestamp")),
                    file_paths=file_paths,
                    tokens=_usage_tokens(msg.get("usage")),
                    cost=cost if isinstance(cost, (int, float)) and not isinstance(cost, bool) else None,
                )

        if not session.project_path and path.parent.name.startswith("-"):
            session.project_path = decode_path(path.parent.name)
        return self.result(source, [session], reader.truncated, reader.reason)


@register_parser
class ClaudeHistoryParser(SourceParser):
    """~/.claude/history.jsonl: every prompt typed, grouped one session per project."""

    name = "claude-code-history"
    tools = (AiTool.CLAUDE_CODE,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        path = source.path
        if source.is_directory or path.suffix != ".jsonl":
            return False
        if path.name == HISTORY_FILE and path.parent.name == ".claude":
            return True
        head = sniff(path)
        return b'"display"' in head and b'"project"' in head

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        sessions: dict[str, Session] = {}
        with BoundedLineReader(source.path, limits) as reader:
            for data in reader.json_records():
                text = data.get("display")
                if not isinstance(text, str) or not text.strip():
                    continue
                project = data.get("project") if isinstance(data.get("project"), str) else ""
                session = sessions.get(project)
                if session is None:
                    name = Path(project).name if project else "unknown"
                    session = self.new_session(source, f"history-{name}", project_path=project)
                    sessions[project] = session
                session.add_event(Role.USER, text, parse_timestamp(data.get("timestamp")))
        return self.result(source, sessions.values(), reader.truncated, reader.reason)
