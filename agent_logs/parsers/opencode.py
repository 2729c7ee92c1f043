"""OpenCode sessions.

OpenCode stores each session as a directory of message files under
``storage/message/<session_id>/``; message text lives in
``storage/part/<message_id>/*.json`` and session metadata (title, directory)
in ``storage/session/<project_hash>/<session_id>.json``.
"""

import logging
from pathlib import Path

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role, SourceKind
from . import register_parser
from .base import RecordBudget, SourceParser, extract_file_paths, load_json_document, parse_timestamp

logger = logging.getLogger(__name__)


def _number(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _message_tokens(tokens) -> int | None:
    if not isinstance(tokens, dict):
        return None
    counts = [_number(tokens.get(k)) for k in ("input", "output", "reasoning")]
    cache = tokens.get("cache")
    if isinstance(cache, dict):
        counts += [_number(cache.get("read")), _number(cache.get("write"))]
    counts = [c for c in counts if c is not None]
    return int(sum(counts)) if counts else None


@register_parser
class OpenCodeParser(SourceParser):
    """Parser for OpenCode session directories."""

    name = "opencode"
    tools = (AiTool.OPENCODE,)
    source_kind = SourceKind.DIRECTORY

    def can_parse(self, source: DiscoveredSource) -> bool:
        path = source.path
        return source.is_directory and path.name.startswith("ses_") and path.parent.name == "message"

    def _session_metadata(self, storage: Path, session_id: str, limits: ParseLimits) -> dict:
        session_root = storage / "session"
        if not session_root.is_dir():
            return {}
        for candidate in session_root.glob(f"*/{session_id}.json"):
            try:
                meta = load_json_document(candidate, limits)
            except ParseError as e:
                logger.debug("Ignoring session metadata %s: %s", candidate, e.reason)
                continue
            if isinstance(meta, dict):
                return meta
        return {}

    def _message_parts(self, storage: Path, message_id: str, limits: ParseLimits) -> tuple[str, set[str]]:
        """Get message text and touched files from part files."""
        part_dir = storage / "part" / message_id
        if not message_id or not part_dir.is_dir():
            return "", set()
        texts = []
        paths: set[str] = set()
        for part_file in sorted(part_dir.glob("*.json")):
            try:
                part = load_json_document(part_file, limits)
            except ParseError:
                continue
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text" and isinstance(part.get("text"), str):
                texts.append(part["text"])
            elif part.get("type") == "tool":
                paths |= extract_file_paths((part.get("state") or {}).get("input"))
        return "\n".join(texts), paths

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        message_dir = source.path
        storage = message_dir.parent.parent
        session_id = message_dir.name
        try:
            message_files = sorted(message_dir.glob("*.json"), key=lambda f: f.name)
        except OSError as e:
            raise ParseError(message_dir, e.strerror or str(e)) from e

        meta = self._session_metadata(storage, session_id, limits)
        session = self.new_session(
            source,
            session_id,
            title=meta.get("title") or "",
            project_path=meta.get("directory") or "",
        )
        if meta.get("parentID"):
            session.extra["parent_id"] = meta["parentID"]

        budget = RecordBudget(limits)
        for msg_file in message_files:
            if not budget.take():
                break
            try:
                msg = load_json_document(msg_file, limits)
            except ParseError as e:
                logger.debug("Skipping message %s: %s", msg_file, e.reason)
                continue
            if not isinstance(msg, dict):
                continue

            role = Role.from_label(msg.get("role"))
            if role is None:
                continue
            path_data = msg.get("path") or {}
            if not session.project_path and isinstance(path_data, dict):
                session.project_path = path_data.get("root") or path_data.get("cwd") or ""
            if role is Role.ASSISTANT and msg.get("modelID") and not session.model:
                session.model = msg["modelID"]

            text, paths = self._message_parts(storage, msg.get("id") or msg_file.stem, limits)
            if not text and not paths:
                continue
            time_data = msg.get("time") or {}
            session.add_event(
                role,
                text,
                parse_timestamp(time_data.get("created")) if isinstance(time_data, dict) else None,
                file_paths=paths,
                tokens=_message_tokens(msg.get("tokens")),
                cost=_number(msg.get("cost")),
            )

        return self.result(source, [session], budget.truncated, budget.reason)
