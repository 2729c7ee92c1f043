"""Cline task directories, shared by its forks (Roo Code, Kilo Code) and Kiro.

Each task lives in ``tasks/<epoch-ms>/`` with ``ui_messages.json`` (what the
user saw, timestamped, with API accounting) and
``api_conversation_history.json`` (what was sent to the model). The UI log
is preferred; the API history is the fallback when it is missing.
"""

import json
import logging

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role, Session, SourceKind
from . import register_parser
from .base import RecordBudget, SourceParser, extract_file_paths, extract_text_content, load_json_document, parse_timestamp

logger = logging.getLogger(__name__)

UI_MESSAGES = "ui_messages.json"
API_HISTORY = "api_conversation_history.json"
TASK_METADATA = "task_metadata.json"

_SAY_ROLES = {
    "task": Role.USER,
    "user_feedback": Role.USER,
    "user_feedback_diff": Role.USER,
    "text": Role.ASSISTANT,
    "reasoning": Role.ASSISTANT,
    "completion_result": Role.ASSISTANT,
    "tool": Role.TOOL,
    "command": Role.TOOL,
    "command_output": Role.TOOL,
    "browser_action": Role.TOOL,
    "browser_action_result": Role.TOOL,
    "mcp_server_response": Role.TOOL,
    "error": Role.SYSTEM,
}

_ASK_ROLES = {
    "followup": Role.ASSISTANT,
    "tool": Role.TOOL,
    "command": Role.TOOL,
    "browser_action_launch": Role.TOOL,
    "use_mcp_server": Role.TOOL,
}


def _number(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _tool_event(text: str) -> tuple[str, set[str]]:
    """Summarise a JSON tool payload as '(tool: name) path'."""
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text, set()
    if not isinstance(payload, dict):
        return text, set()
    paths = extract_file_paths(payload)
    label = payload.get("tool") or payload.get("type") or "tool"
    target = payload.get("path") or payload.get("command") or ""
    return f"(tool: {label}) {target}".strip(), paths


@register_parser
class ClineParser(SourceParser):
    """Parser for Cline-family task directories."""

    name = "cline"
    tools = (AiTool.CLINE, AiTool.ROO_CODE, AiTool.KILO_CODE, AiTool.KIRO)
    source_kind = SourceKind.DIRECTORY

    def can_parse(self, source: DiscoveredSource) -> bool:
        if not source.is_directory:
            return False
        return (source.path / UI_MESSAGES).is_file() or (source.path / API_HISTORY).is_file()

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        task_dir = source.path
        session = self.new_session(source, task_dir.name)
        session.start_time = parse_timestamp(task_dir.name) if task_dir.name.isdigit() else None

        if (task_dir / UI_MESSAGES).is_file():
            budget = self._parse_ui_messages(session, task_dir / UI_MESSAGES, limits)
        elif (task_dir / API_HISTORY).is_file():
            budget = self._parse_api_history(session, task_dir / API_HISTORY, limits)
        else:
            raise ParseError(task_dir, "task directory has no message log")

        metadata_path = task_dir / TASK_METADATA
        if metadata_path.is_file():
            try:
                self._apply_metadata(session, load_json_document(metadata_path, limits))
            except ParseError as e:
                logger.debug("Ignoring task metadata %s: %s", metadata_path, e.reason)

        return self.result(source, [session], budget.truncated, budget.reason)

    def _parse_ui_messages(self, session: Session, path, limits: ParseLimits) -> RecordBudget:
        messages = load_json_document(path, limits)
        if not isinstance(messages, list):
            raise ParseError(path, "expected a list of UI messages")

        budget = RecordBudget(limits)
        pending_tokens = None
        pending_cost = None
        for msg in messages:
            if not budget.take():
                break
            if not isinstance(msg, dict):
                continue
            kind = msg.get("type")
            label = msg.get(kind) if kind in ("say", "ask") else None
            text = msg.get("text") if isinstance(msg.get("text"), str) else ""
            timestamp = parse_timestamp(msg.get("ts"))

            if kind == "say" and label == "api_req_started":
                try:
                    info = json.loads(text)
                except (json.JSONDecodeError, TypeError):
                    continue
                if isinstance(info, dict):
                    counts = [_number(info.get(k)) for k in ("tokensIn", "tokensOut", "cacheWrites", "cacheReads")]
                    counts = [c for c in counts if c is not None]
                    pending_tokens = int(sum(counts)) if counts else None
                    pending_cost = _number(info.get("cost"))
                continue

            roles = _SAY_ROLES if kind == "say" else _ASK_ROLES
            role = roles.get(label)
            if role is None or not text.strip():
                continue

            file_paths = set()
            if role is Role.TOOL and text.lstrip().startswith("{"):
                text, file_paths = _tool_event(text)
            tokens = cost = None
            if role is Role.ASSISTANT and (pending_tokens is not None or pending_cost is not None):
                tokens, cost = pending_tokens, pending_cost
                pending_tokens = pending_cost = None
            session.add_event(role, text, timestamp, file_paths=file_paths, tokens=tokens, cost=cost)

        # Last request never got a reply: charge it to the session
        if pending_cost is not None:
            session.cost = (session.cost or 0) + pending_cost
        if pending_tokens is not None:
            if session.events:
                last = session.events[-1]
                last.tokens = (last.tokens or 0) + pending_tokens
            else:
                session.extra["unattributed_tokens"] = pending_tokens
        return budget

    def _parse_api_history(self, session: Session, path, limits: ParseLimits) -> RecordBudget:
        messages = load_json_document(path, limits)
        if not isinstance(messages, list):
            raise ParseError(path, "expected a list of API messages")

        budget = RecordBudget(limits)
        for msg in messages:
            if not budget.take():
                break
            if not isinstance(msg, dict):
                continue
            content = msg.get("content")
            text = extract_text_content(content)
            file_paths = set()
            if isinstance(content, list):
                for block in content:
                    if isinstance(block, dict) and block.get("type") == "tool_use":
                        file_paths |= extract_file_paths(block.get("input"))
            if not text and not file_paths:
                continue
            role = Role.from_label(msg.get("role")) or Role.SYSTEM
            session.add_event(role, text, parse_timestamp(msg.get("timestamp")), file_paths=file_paths)
        return budget

    def _apply_metadata(self, session: Session, metadata) -> None:
        if not isinstance(metadata, dict):
            return
        for entry in metadata.get("files_in_context") or []:
            if isinstance(entry, dict) and isinstance(entry.get("path"), str):
                session.file_paths.add(entry["path"])
        for usage in metadata.get("model_usage") or []:
            if isinstance(usage, dict) and usage.get("model_id") and not session.model:
                session.model = usage["model_id"]
