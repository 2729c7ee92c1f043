"""Base class for source parsers, plus the bounded readers they share."""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ..errors import ParseError
from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Session, SourceKind, ensure_utc

logger = logging.getLogger(__name__)

SYSTEM_REMINDER = "<system-reminder>"

# Keys that name a file in tool-call inputs across formats
FILE_PATH_KEYS = ("file_path", "filePath", "filepath", "path", "notebook_path", "fsPath", "uri")

_FRACTION = re.compile(r"(\.\d+)(?=(?:[+-]\d\d:?\d\d|Z)?$)")


def sniff(path: Path, size: int = 4096) -> bytes:
    """Read the first bytes of a file for format probing, or b'' if unreadable."""
    try:
        with open(path, "rb") as f:
            return f.read(size)
    except OSError:
        return b""


def parse_timestamp(value) -> Optional[datetime]:
    """Parse ISO-8601 strings, epoch seconds and epoch milliseconds to aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            text = text.replace("Z", "+00:00").replace("z", "+00:00")
            # fromisoformat wants exactly 3 or 6 fractional digits on older Pythons
            text = _FRACTION.sub(lambda m: m.group(1)[:7].ljust(7, "0"), text, count=1)
            try:
                return ensure_utc(datetime.fromisoformat(text))
            except ValueError:
                return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def extract_text_content(content, include_tool_results: bool = True) -> str:
    """Extract text from message content (handles both string and list formats)."""
    if isinstance(content, str):
        if content.strip().startswith(SYSTEM_REMINDER):
            return ""
        return content
    if isinstance(content, dict):
        return extract_text_content(content.get("text") or content.get("content") or "", include_tool_results)
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, dict):
                kind = item.get("type")
                if kind in ("text", "input_text", "output_text", None):
                    text = item.get("text", "")
                    if isinstance(text, str) and text and not text.strip().startswith(SYSTEM_REMINDER):
                        texts.append(text)
                elif kind == "tool_use":
                    texts.append(f"(tool_use: {item.get('name', '')})")
                elif kind == "tool_result" and include_tool_results:
                    result = extract_text_content(item.get("content", ""), include_tool_results)
                    if result:
                        texts.append(result)
            elif isinstance(item, str):
                texts.append(item)
        return "\n".join(texts)
    if content is None:
        return ""
    return str(content)


def extract_file_paths(value, depth: int = 0) -> set[str]:
    """Collect file paths named in a tool-call input or context object."""
    found: set[str] = set()
    if depth > 4:
        return found
    if isinstance(value, dict):
        for key, item in value.items():
            if key in FILE_PATH_KEYS and isinstance(item, str) and item:
                found.add(item[7:] if item.startswith("file://") else item)
            elif isinstance(item, (dict, list)):
                found |= extract_file_paths(item, depth + 1)
    elif isinstance(value, list):
        for item in value:
            found |= extract_file_paths(item, depth + 1)
    return found


def load_json_document(path: Path, limits: ParseLimits):
    """Load a whole JSON document, refusing anything over the resident cap."""
    try:
        size = path.stat().st_size
        if size > limits.max_resident_bytes:
            raise ParseError(path, f"document is {size} bytes, over the {limits.max_resident_bytes} byte cap")
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ParseError(path, e.strerror or str(e)) from e
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(path, f"invalid JSON: {e}") from e


class BoundedLineReader:
    """Line reader that stops at the configured line, byte and time bounds.

    Use as a context manager and iterate for decoded lines (without line
    endings). After iteration, ``truncated`` says whether a bound was hit
    before end of file and ``reason`` says which one.
    """

    def __init__(self, path: Path, limits: ParseLimits, max_lines: Optional[int] = None):
        self.path = Path(path)
        self.limits = limits
        self.max_lines = max_lines if max_lines is not None else limits.max_lines
        self.lines_read = 0
        self.bytes_read = 0
        self.skipped_lines = 0
        self.bad_lines = 0
        self.truncated = False
        self.reason = ""
        self._deadline = None
        if limits.timeout_seconds is not None:
            self._deadline = time.monotonic() + limits.timeout_seconds
        self._file = None

    def __enter__(self) -> "BoundedLineReader":
        try:
            self._file = open(self.path, "rb")
        except OSError as e:
            raise ParseError(self.path, e.strerror or str(e)) from e
        return self

    def __exit__(self, *exc):
        if self._file is not None:
            self._file.close()
            self._file = None
        return False

    def _stop(self, reason: str) -> None:
        self.truncated = True
        self.reason = reason

    def _more_data(self) -> bool:
        return bool(self._file.read(1))

    def _discard_rest_of_line(self) -> None:
        chunk = self.limits.max_resident_bytes
        while True:
            raw = self._file.readline(chunk)
            self.bytes_read += len(raw)
            if not raw or raw.endswith(b"\n"):
                return

    def __iter__(self) -> Iterator[str]:
        if self._file is None:
            raise RuntimeError("BoundedLineReader must be used as a context manager")
        cap = self.limits.max_resident_bytes
        while True:
            if self.limits.cancelled:
                self._stop("cancelled")
                return
            if self._deadline is not None and time.monotonic() > self._deadline:
                self._stop("timeout")
                return
            if self.lines_read >= self.max_lines:
                if self._more_data():
                    self._stop("max_lines")
                return
            if self.bytes_read >= self.limits.max_bytes:
                if self._more_data():
                    self._stop("max_bytes")
                return
            try:
                raw = self._file.readline(cap + 1)
            except OSError as e:
                raise ParseError(self.path, e.strerror or str(e)) from e
            if not raw:
                return
            self.lines_read += 1
            self.bytes_read += len(raw)
            if len(raw) > cap and not raw.endswith(b"\n"):
                self._discard_rest_of_line()
                self.skipped_lines += 1
                logger.debug("Skipped over-long line %d in %s", self.lines_read, self.path)
                continue
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def json_records(self) -> Iterator[dict]:
        """Yield each line that is a JSON object; other lines are counted and skipped."""
        for line in self:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                self.bad_lines += 1
                continue
            if isinstance(data, dict):
                yield data


class RecordBudget:
    """Counts records (rows, message files, array items) against the same
    bounds BoundedLineReader applies to lines."""

    def __init__(self, limits: ParseLimits, max_records: Optional[int] = None):
        self.limits = limits
        self.max_records = max_records if max_records is not None else limits.max_lines
        self.count = 0
        self.truncated = False
        self.reason = ""
        self._deadline = None
        if limits.timeout_seconds is not None:
            self._deadline = time.monotonic() + limits.timeout_seconds

    def take(self) -> bool:
        """Claim one more record; False (and truncated) once a bound is hit."""
        if self.truncated:
            return False
        if self.limits.cancelled:
            reason = "cancelled"
        elif self._deadline is not None and time.monotonic() > self._deadline:
            reason = "timeout"
        elif self.count >= self.max_records:
            reason = "max_lines"
        else:
            self.count += 1
            return True
        self.truncated = True
        self.reason = reason
        return False


class SourceParser(ABC):
    """Capability interface every tool parser implements.

    ``can_parse`` must only look at the path and the first bytes of a file;
    ``parse`` reads within the given limits and raises ParseError for input it
    cannot make sense of.
    """

    name: str = ""  # unique identifier: "claude-code", "aider", etc.
    tools: tuple[AiTool, ...] = ()  # tools whose sources this parser is tried first for
    source_kind: SourceKind = SourceKind.FILE

    def claims_tool(self, tool: AiTool) -> bool:
        return tool in self.tools

    @abstractmethod
    def can_parse(self, source: DiscoveredSource) -> bool:
        ...

    @abstractmethod
    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        ...

    def resolve_tool(self, source: DiscoveredSource) -> AiTool:
        """Tool to stamp on sessions: the discovery guess when this parser serves it."""
        if not self.tools or source.tool in self.tools:
            return source.tool
        return self.tools[0]

    def new_session(self, source: DiscoveredSource, session_id: str, **kwargs) -> Session:
        return Session(id=session_id, tool=self.resolve_tool(source), source_path=source.path, **kwargs)

    def result(
        self,
        source: DiscoveredSource,
        sessions: Iterable[Session],
        truncated: bool = False,
        reason: str = "",
    ) -> ParseResult:
        """Finalize non-empty sessions into a ParseResult."""
        kept = []
        for session in sessions:
            if not session.events:
                continue
            session.finalize()
            session.truncated = truncated
            kept.append(session)
        return ParseResult(
            source=source,
            parser_name=self.name,
            sessions=kept,
            truncated=truncated,
            reason=reason,
        )
