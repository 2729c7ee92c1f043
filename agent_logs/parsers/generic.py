"""Fallback parser for any line-oriented text log."""

import json
import re

from ..errors import ParseError
from ..models import DiscoveredSource, ParseLimits, ParseResult, Role
from .base import BoundedLineReader, SourceParser, extract_text_content, parse_timestamp, sniff

_LEADING_TIMESTAMP = re.compile(
    r"^\[?(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?)\]?\s*"
)
_ROLE_PREFIX = re.compile(
    r"^\[?(user|human|you|assistant|ai|bot|model|agent|claude|copilot|system|tool)\]?\s*[:>]\s*",
    re.IGNORECASE,
)

_ROLE_KEYS = ("role", "sender", "author", "speaker", "from", "type")
_CONTENT_KEYS = ("content", "text", "message", "msg", "prompt", "response", "display")
_TIME_KEYS = ("timestamp", "time", "ts", "created_at", "createdAt", "date")


def _looks_textual(head: bytes) -> bool:
    if not head or b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte character cut off by the sniff window is fine
        return e.start >= len(head) - 3
    return True


def _from_json(data: dict):
    role = None
    for key in _ROLE_KEYS:
        role = Role.from_label(data.get(key))
        if role is not None:
            break
    content = ""
    for key in _CONTENT_KEYS:
        value = data.get(key)
        if isinstance(value, dict) and role is None:
            role = Role.from_label(value.get("role"))
        content = extract_text_content(value) if value is not None else ""
        if content:
            break
    timestamp = None
    for key in _TIME_KEYS:
        timestamp = parse_timestamp(data.get(key))
        if timestamp is not None:
            break
    return role, content, timestamp


def _from_text(line: str):
    timestamp = None
    match = _LEADING_TIMESTAMP.match(line)
    if match:
        timestamp = parse_timestamp(match.group(1).replace(",", "."))
        line = line[match.end():]
    role = None
    match = _ROLE_PREFIX.match(line)
    if match:
        role = Role.from_label(match.group(1))
        line = line[match.end():]
    return role, line, timestamp


class GenericParser(SourceParser):
    """One event per non-empty line of any text file.

    Not registered with the tool parsers; dispatch always tries it last.
    """

    name = "generic"
    tools = ()

    def can_parse(self, source: DiscoveredSource) -> bool:
        if source.is_directory:
            return False
        return _looks_textual(sniff(source.path))

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        session = self.new_session(source, source.path.stem)
        max_lines = min(limits.max_lines, limits.generic_max_lines)
        with BoundedLineReader(source.path, limits, max_lines=max_lines) as reader:
            for line in reader:
                stripped = line.strip()
                if not stripped:
                    continue
                role = content = timestamp = None
                if stripped.startswith("{"):
                    try:
                        data = json.loads(stripped)
                    except json.JSONDecodeError:
                        data = None
                    if isinstance(data, dict):
                        role, content, timestamp = _from_json(data)
                if not content:
                    role, content, timestamp = _from_text(stripped)
                session.add_event(role or Role.SYSTEM, content or stripped, timestamp)

        if not session.events:
            raise ParseError(source.path, "no text lines")
        session.extra["skipped_lines"] = reader.skipped_lines
        return self.result(source, [session], reader.truncated, reader.reason)
