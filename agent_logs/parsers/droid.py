"""Factory Droid sessions (``~/.factory/sessions/<project>/<id>.jsonl``)."""

import logging
import re
from pathlib import Path

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role
from . import register_parser
from .base import (
    BoundedLineReader,
    SourceParser,
    extract_file_paths,
    extract_text_content,
    load_json_document,
    parse_timestamp,
    sniff,
)

logger = logging.getLogger(__name__)

SUBAGENT_TITLE_PREFIX = "# Task Tool Invocation"


def decode_path(encoded: str) -> str:
    """Decode directory name back to original path."""
    return encoded.replace("-", "/")


def _load_settings(path: Path, limits: ParseLimits) -> dict:
    settings_path = path.with_suffix(".settings.json")
    if not settings_path.is_file():
        return {}
    try:
        settings = load_json_document(settings_path, limits)
    except ParseError as e:
        logger.debug("Ignoring unreadable settings %s: %s", settings_path, e.reason)
        return {}
    return settings if isinstance(settings, dict) else {}


@register_parser
class DroidParser(SourceParser):
    """Parser for Droid JSONL sessions and their sibling ``.settings.json``."""

    name = "droid"
    tools = (AiTool.DROID,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        if source.is_directory or source.path.suffix != ".jsonl":
            return False
        if source.path.parent.parent.name == "sessions" and source.path.parent.parent.parent.name == ".factory":
            return True
        return b'"session_start"' in sniff(source.path)

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        path = source.path
        session = self.new_session(source, path.stem)
        settings = _load_settings(path, limits)
        if isinstance(settings.get("model"), str):
            session.model = settings["model"]

        with BoundedLineReader(path, limits) as reader:
            for data in reader.json_records():
                if data.get("type") == "session_start":
                    title = data.get("title") or data.get("sessionTitle") or ""
                    if isinstance(title, str):
                        session.title = title[:80]
                        # Detect sub-agent sessions
                        if title.startswith(SUBAGENT_TITLE_PREFIX):
                            match = re.search(r"Subagent type: ([a-zA-Z0-9_-]+)", title)
                            session.extra["subagent_type"] = match.group(1) if match else "subagent"
                    session.project_path = data.get("cwd") or ""
                    continue
                if data.get("type") != "message":
                    continue

                msg = data.get("message") or {}
                if not isinstance(msg, dict):
                    continue
                role = Role.from_label(msg.get("role"))
                raw_content = msg.get("content", "")
                content = extract_text_content(raw_content)
                file_paths = set()
                if isinstance(raw_content, list):
                    for block in raw_content:
                        if isinstance(block, dict) and block.get("type") == "tool_use":
                            file_paths |= extract_file_paths(block.get("input"))
                if role is None or (not content and not file_paths):
                    continue
                if isinstance(raw_content, list) and raw_content and all(
                    isinstance(b, dict) and b.get("type") == "tool_result" for b in raw_content
                ):
                    role = Role.TOOL
                session.add_event(role, content, parse_timestamp(data.get("timestamp")), file_paths=file_paths)

        if not session.project_path and path.parent.name.startswith("-"):
            session.project_path = decode_path(path.parent.name)
        return self.result(source, [session], reader.truncated, reader.reason)
