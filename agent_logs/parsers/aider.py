"""Aider chat transcripts (``.aider.chat.history.md``).

Aider appends markdown to one file per repository: a ``# aider chat started
at`` header per run, ``####`` lines for what the user typed, ``>`` lines for
tool output and everything else for the model's reply.
"""

import re
from typing import Optional

from ..models import AiTool, DiscoveredSource, ParseLimits, ParseResult, Role, Session
from . import register_parser
from .base import BoundedLineReader, SourceParser, parse_timestamp, sniff

HEADER_PREFIX = "# aider chat started at"

_TOKENS = re.compile(
    r"Tokens:\s*(?P<sent>[\d.]+)(?P<sent_unit>[kKmM]?)\s+sent.*?(?P<recv>[\d.]+)(?P<recv_unit>[kKmM]?)\s+received"
)
_COST = re.compile(r"Cost:\s*\$(?P<cost>[\d.]+)\s+message")
_APPLIED = re.compile(r"^Applied edit to (?P<path>\S+)")
_MODEL = re.compile(r"^(?:Main )?[Mm]odel:\s*(?P<model>\S+)")


def _count(number: str, unit: str) -> int:
    scale = {"k": 1_000, "m": 1_000_000}.get(unit.lower(), 1)
    return int(round(float(number) * scale))


class _Transcript:
    """Accumulates consecutive lines of one kind into a single event."""

    def __init__(self, parser: "AiderParser", source: DiscoveredSource):
        self.parser = parser
        self.source = source
        self.sessions: list[Session] = []
        self.session: Optional[Session] = None
        self.role: Optional[Role] = None
        self.lines: list[str] = []
        self.paths: set[str] = set()

    def start(self, started_at) -> None:
        self.flush()
        self.session = self.parser.new_session(
            self.source, f"aider-{len(self.sessions) + 1}", project_path=str(self.source.path.parent)
        )
        self.session.start_time = started_at
        self.sessions.append(self.session)

    def add(self, role: Role, line: str) -> None:
        if self.session is None:
            self.start(None)
        if role is not self.role:
            self.flush()
            self.role = role
        self.lines.append(line)

    def flush(self) -> None:
        text = "\n".join(self.lines).strip()
        if self.session is not None and self.role is not None and (text or self.paths):
            self.session.add_event(self.role, text, file_paths=self.paths)
        self.role = None
        self.lines = []
        self.paths = set()

    def account(self, line: str) -> None:
        """Attach a '> Tokens: ... Cost: ...' report to the reply it follows."""
        tokens = _TOKENS.search(line)
        cost = _COST.search(line)
        if self.session is None:
            return
        for event in reversed(self.session.events):
            if event.role is Role.ASSISTANT:
                if tokens and event.tokens is None:
                    event.tokens = _count(tokens["sent"], tokens["sent_unit"]) + _count(
                        tokens["recv"], tokens["recv_unit"]
                    )
                if cost and event.cost is None:
                    event.cost = float(cost["cost"])
                return
        if cost:
            self.session.cost = (self.session.cost or 0) + float(cost["cost"])


@register_parser
class AiderParser(SourceParser):
    """Parser for Aider markdown chat history."""

    name = "aider"
    tools = (AiTool.AIDER,)

    def can_parse(self, source: DiscoveredSource) -> bool:
        if source.is_directory or source.path.suffix != ".md":
            return False
        if source.path.name == ".aider.chat.history.md":
            return True
        return sniff(source.path).lstrip().startswith(HEADER_PREFIX.encode())

    def parse(self, source: DiscoveredSource, limits: ParseLimits) -> ParseResult:
        transcript = _Transcript(self, source)
        with BoundedLineReader(source.path, limits) as reader:
            for line in reader:
                if line.startswith(HEADER_PREFIX):
                    transcript.start(parse_timestamp(line[len(HEADER_PREFIX):].strip()))
                elif line.startswith("####"):
                    transcript.add(Role.USER, line[4:].strip())
                elif line.startswith(">"):
                    body = line[1:].strip()
                    if body.startswith("Tokens:"):
                        transcript.flush()
                        transcript.account(body)
                        continue
                    transcript.add(Role.TOOL, body)
                    applied = _APPLIED.match(body)
                    if applied:
                        transcript.paths.add(applied["path"])
                    model = _MODEL.match(body)
                    if model and not transcript.session.model:
                        transcript.session.model = model["model"]
                elif line.strip() or transcript.role is Role.ASSISTANT:
                    transcript.add(Role.ASSISTANT, line)
            transcript.flush()
        return self.result(source, transcript.sessions, reader.truncated, reader.reason)
