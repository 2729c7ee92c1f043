"""Cursor chat history stored in VS Code-style ``state.vscdb`` SQLite files."""

import json
import logging
import os
import shutil
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role, Session
from . import register_parser
from .base import RecordBudget, SourceParser, extract_file_paths, parse_timestamp, sniff

logger = logging.getLogger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"
LEGACY_CHAT_KEY = "workbench.panel.aichat.view.aichat.chatdata"

_BUBBLE_ROLES = {1: Role.USER, 2: Role.ASSISTANT, "user": Role.USER, "ai": Role.ASSISTANT}


@contextmanager
def _open_db(path: Path) -> Iterator[sqlite3.Connection]:
    """Open the database read-only, falling back to a temp copy when Cursor holds a lock."""
    conn = None
    temp_path = None
    try:
        try:
            conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
            conn.execute("SELECT 1 FROM sqlite_master LIMIT 1")
        except sqlite3.Error:
            if conn is not None:
                conn.close()
            fd, temp_path = tempfile.mkstemp(suffix=".vscdb")
            os.close(fd)
            shutil.copy(path, temp_path)
            conn = sqlite3.connect(temp_path)
        yield conn
    except (OSError, sqlite3.Error) as e:
        raise ParseError(path, f"cannot read database: {e}") from e
    finally:
        if conn is not None:
            conn.close()
        if temp_path is not None:
            try:
                os.unlink(temp_path)
            except OSError as e:
                logger.warning("Failed to clean up temp file %s: %s", temp_path, e)


def extract_text_from_richtext(richtext) -> str:
    """Extract plain text from Cursor's Lexical richText format."""
    try:
        data = json.loads(richtext) if isinstance(richtext, str) else richtext
    except json.JSONDecodeError:
        return ""
    if not isinstance(data, dict):
        return ""
    texts = []

    def extract_text_nodes(node):
        if isinstance(node, dict):
            if node.get("type") == "text":
                texts.append(node.get("text", ""))
            elif node.get("type") == "mention":
                texts.append(f"@{node.get('mentionName', '')}")
            for child in node.get("children", []):
                extract_text_nodes(child)
        elif isinstance(node, list):
            for item in node:
                extract_text_nodes(item)

    extract_text_nodes(data.get("root", {}))
    return " ".join(texts).strip()


def _loads(value) -> Optional[dict]:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        data = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def _bubble_tokens(bubble: dict) -> Optional[int]:
    counts = bubble.get("tokenCount")
    if not isinstance(counts, dict):
        return None
    total = sum(v for v in counts.values() if isinstance(v, int) and not isinstance(v, bool))
    # Cursor writes zeros when it did not count
    return total or None


def _bubble_paths(bubble: dict) -> set[str]:
    paths = {p for p in bubble.get("relevantFiles") or [] if isinstance(p, str)}
    for key in ("context", "attachedCodeChunks", "codebaseContextChunks"):
        paths |= extract_file_paths(bubble.get(key))
    return paths


@register_parser
class CursorParser(SourceParser):
    """Composer conversations (``cursorDiskKV``) and legacy chat tabs (``ItemTable``)."""

    name = "cursor"
    tools = (AiTool.CURSOR,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        if source.is_directory or source.path.suffix != ".vscdb":
            return False
        return sniff(source.path, len(SQLITE_HEADER)) == SQLITE_HEADER

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        budget = RecordBudget(limits)
        sessions: list[Session] = []
        with _open_db(source.path) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            if "cursorDiskKV" in tables:
                sessions.extend(self._composer_sessions(conn, source, budget))
            if "ItemTable" in tables and not budget.truncated:
                sessions.extend(self._legacy_sessions(conn, source, budget))
        return self.result(source, sessions, budget.truncated, budget.reason)

    def _composer_sessions(self, conn, source: DiscoveredSource, budget: RecordBudget) -> list[Session]:
        sessions = []
        rows = conn.execute("SELECT key, value FROM cursorDiskKV WHERE key LIKE 'composerData:%'")
        for key, value in rows:
            if not budget.take():
                break
            data = _loads(value)
            if data is None:
                continue
            composer_id = data.get("composerId") or key.split(":", 1)[1]
            session = self.new_session(source, composer_id, title=data.get("name") or "")
            session.start_time = parse_timestamp(data.get("createdAt"))
            session.end_time = parse_timestamp(data.get("lastUpdatedAt"))
            model_config = data.get("modelConfig")
            if isinstance(model_config, dict) and model_config.get("modelName"):
                session.model = model_config["modelName"]

            bubbles = data.get("conversation")
            if not isinstance(bubbles, list) or not bubbles:
                bubbles = self._stored_bubbles(conn, composer_id, data.get("fullConversationHeadersOnly"), budget)
            for bubble in bubbles:
                self._add_bubble(session, bubble)
            sessions.append(session)
            if budget.truncated:
                break
        return sessions

    def _stored_bubbles(self, conn, composer_id: str, headers, budget: RecordBudget) -> list[dict]:
        bubbles = []
        for header in headers if isinstance(headers, list) else []:
            if not isinstance(header, dict) or not header.get("bubbleId"):
                continue
            if not budget.take():
                break
            row = conn.execute(
                "SELECT value FROM cursorDiskKV WHERE key = ?",
                (f"bubbleId:{composer_id}:{header['bubbleId']}",),
            ).fetchone()
            bubble = _loads(row[0]) if row else None
            if bubble is not None:
                bubble.setdefault("type", header.get("type"))
                bubbles.append(bubble)
        return bubbles

    def _add_bubble(self, session: Session, bubble) -> None:
        if not isinstance(bubble, dict):
            return
        role = _BUBBLE_ROLES.get(bubble.get("type")) or Role.from_label(bubble.get("role"))
        text = bubble.get("text") or bubble.get("rawText") or ""
        if not text and bubble.get("richText"):
            text = extract_text_from_richtext(bubble["richText"])
        paths = _bubble_paths(bubble)
        if role is None or (not text and not paths):
            return
        timestamp = parse_timestamp(bubble.get("createdAt") or bubble.get("timestamp"))
        session.add_event(role, text, timestamp, file_paths=paths, tokens=_bubble_tokens(bubble))

    def _legacy_sessions(self, conn, source: DiscoveredSource, budget: RecordBudget) -> list[Session]:
        row = conn.execute("SELECT value FROM ItemTable WHERE key = ?", (LEGACY_CHAT_KEY,)).fetchone()
        data = _loads(row[0]) if row else None
        if data is None:
            return []
        sessions = []
        for tab in data.get("tabs") or []:
            if not isinstance(tab, dict):
                continue
            session = self.new_session(source, tab.get("tabId") or f"tab-{len(sessions)}", title=tab.get("chatTitle") or "")
            session.end_time = parse_timestamp(tab.get("lastSendTime"))
            for bubble in tab.get("bubbles") or []:
                if not budget.take():
                    break
                self._add_bubble(session, bubble)
            sessions.append(session)
            if budget.truncated:
                break
        return sessions
