"""Continue.dev sessions (``~/.continue/sessions/<id>.json``)."""

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role
from . import register_parser
from .base import RecordBudget, SourceParser, extract_file_paths, extract_text_content, load_json_document, parse_timestamp, sniff

SESSION_INDEX = "sessions.json"


def _context_paths(items) -> set[str]:
    paths: set[str] = set()
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        uri = item.get("uri")
        if isinstance(uri, dict) and uri.get("type") == "file" and isinstance(uri.get("value"), str):
            value = uri["value"]
            paths.add(value[7:] if value.startswith("file://") else value)
        paths |= extract_file_paths(item.get("id"))
    return paths


@register_parser
class ContinueParser(SourceParser):
    """Parser for Continue session documents."""

    name = "continue"
    tools = (AiTool.CONTINUE,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        path = source.path
        if source.is_directory or path.suffix != ".json" or path.name == SESSION_INDEX:
            return False
        if path.parent.name == "sessions" and path.parent.parent.name in (".continue", "continue.continue"):
            return True
        head = sniff(path)
        return b'"sessionId"' in head and (b'"history"' in head or b'"workspaceDirectory"' in head)

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        data = load_json_document(source.path, limits)
        if not isinstance(data, dict):
            raise ParseError(source.path, "not a session document")
        history = data.get("history")
        if not isinstance(history, list):
            history = data.get("messages")
        if not isinstance(history, list):
            raise ParseError(source.path, "session has no history")

        session = self.new_session(
            source,
            data.get("sessionId") or source.path.stem,
            title=data.get("title") or "",
            project_path=data.get("workspaceDirectory") or "",
        )
        session.start_time = parse_timestamp(data.get("dateCreated"))

        budget = RecordBudget(limits)
        for item in history:
            if not budget.take():
                break
            if not isinstance(item, dict):
                continue
            # history[] wraps each message; legacy messages[] are bare
            message = item.get("message") if isinstance(item.get("message"), dict) else item
            role = Role.from_label(message.get("role"))
            text = extract_text_content(message.get("content"))
            paths = _context_paths(item.get("contextItems"))
            if role is None or (not text and not paths):
                continue
            session.add_event(role, text, parse_timestamp(item.get("timestamp")), file_paths=paths)

        return self.result(source, [session], budget.truncated, budget.reason)
