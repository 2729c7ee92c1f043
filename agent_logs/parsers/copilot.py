"""GitHub Copilot Chat sessions saved by VS Code (``chatSessions/*.json``)."""

from datetime import timedelta

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role
from . import register_parser
from .base import RecordBudget, SourceParser, extract_file_paths, load_json_document, parse_timestamp, sniff


def _response_text(response) -> tuple[str, set[str]]:
    texts = []
    paths: set[str] = set()
    for part in response if isinstance(response, list) else []:
        if not isinstance(part, dict):
            continue
        value = part.get("value")
        if isinstance(value, str) and value:
            texts.append(value)
        elif part.get("kind") == "inlineReference":
            paths |= extract_file_paths(part.get("inlineReference"))
    return "".join(texts).strip(), paths


@register_parser
class CopilotChatParser(SourceParser):
    """One session per chat file; each request yields a user and an assistant event."""

    name = "copilot"
    tools = (AiTool.COPILOT, AiTool.VSCODE)

    def can_parse(self, source: DiscoveredSource) -> bool:
        if source.is_directory or source.path.suffix != ".json":
            return False
        if source.path.parent.name in ("chatSessions", "emptyWindowChatSessions"):
            return True
        head = sniff(source.path)
        return b'"requests"' in head and (b'"requesterUsername"' in head or b'"responderUsername"' in head)

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        data = load_json_document(source.path, limits)
        if not isinstance(data, dict) or not isinstance(data.get("requests"), list):
            raise ParseError(source.path, "not a chat session document")

        session = self.new_session(
            source,
            data.get("sessionId") or source.path.stem,
            title=data.get("customTitle") or "",
        )
        session.start_time = parse_timestamp(data.get("creationDate"))
        session.end_time = parse_timestamp(data.get("lastMessageDate"))

        budget = RecordBudget(limits)
        for request in data["requests"]:
            if not budget.take():
                break
            if not isinstance(request, dict):
                continue
            asked_at = parse_timestamp(request.get("timestamp"))
            message = request.get("message") or {}
            prompt = message.get("text", "") if isinstance(message, dict) else ""
            context_paths = extract_file_paths(request.get("variableData"))
            context_paths |= extract_file_paths(request.get("contentReferences"))
            if request.get("modelId") and not session.model:
                session.model = request["modelId"]
            if prompt or context_paths:
                session.add_event(Role.USER, prompt, asked_at, file_paths=context_paths)

            answer, answer_paths = _response_text(request.get("response"))
            if answer or answer_paths:
                answered_at = None
                elapsed = ((request.get("result") or {}).get("timings") or {}).get("totalElapsed")
                if asked_at is not None and isinstance(elapsed, (int, float)):
                    answered_at = asked_at + timedelta(milliseconds=elapsed)
                session.add_event(Role.ASSISTANT, answer, answered_at, file_paths=answer_paths)

        return self.result(source, [session], budget.truncated, budget.reason)
