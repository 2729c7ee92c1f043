"""Canonical session model shared by every parser."""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

# Rough conversion used when a format carries no token accounting.
CHARS_PER_TOKEN = 4


class AiTool(str, Enum):
    """Closed set of AI coding tools whose logs we know how to find."""

    CLAUDE_CODE = "claude-code"
    CURSOR = "cursor"
    CLINE = "cline"
    ROO_CODE = "roo-code"
    KILO_CODE = "kilo-code"
    KIRO = "kiro"
    COPILOT = "copilot"
    CONTINUE = "continue"
    AIDER = "aider"
    WINDSURF = "windsurf"
    CODY = "cody"
    TABNINE = "tabnine"
    AMAZON_Q = "amazon-q"
    CODEGPT = "codegpt"
    BITO = "bito"
    SUPERMAVEN = "supermaven"
    JETBRAINS_AI = "jetbrains-ai"
    VSCODE = "vscode"
    DROID = "droid"
    OPENCODE = "opencode"
    CODEX = "codex"
    GENERIC = "generic"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def from_name(cls, name: str) -> "AiTool":
        """Look up a tool by its slug (``claude-code``) or member name (``CLAUDE_CODE``)."""
        key = name.strip()
        try:
            return cls(key.lower())
        except ValueError:
            pass
        try:
            return cls[key.upper().replace("-", "_")]
        except KeyError:
            raise ValueError(f"Unknown tool: {name}") from None


_DISPLAY_NAMES = {
    AiTool.CLAUDE_CODE: "Claude Code",
    AiTool.CURSOR: "Cursor",
    AiTool.CLINE: "Cline",
    AiTool.ROO_CODE: "Roo Code",
    AiTool.KILO_CODE: "Kilo Code",
    AiTool.KIRO: "Kiro",
    AiTool.COPILOT: "GitHub Copilot",
    AiTool.CONTINUE: "Continue",
    AiTool.AIDER: "Aider",
    AiTool.WINDSURF: "Windsurf",
    AiTool.CODY: "Sourcegraph Cody",
    AiTool.TABNINE: "Tabnine",
    AiTool.AMAZON_Q: "Amazon Q",
    AiTool.CODEGPT: "CodeGPT",
    AiTool.BITO: "Bito",
    AiTool.SUPERMAVEN: "Supermaven",
    AiTool.JETBRAINS_AI: "JetBrains AI",
    AiTool.VSCODE: "VS Code",
    AiTool.DROID: "Factory Droid",
    AiTool.OPENCODE: "OpenCode",
    AiTool.CODEX: "Codex CLI",
    AiTool.GENERIC: "Generic",
}


class SourceKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"

    @classmethod
    def from_label(cls, label) -> Optional["Role"]:
        """Map a tool-specific role label onto a canonical role, or None."""
        if not isinstance(label, str):
            return None
        return _ROLE_LABELS.get(label.strip().lower())


_ROLE_LABELS = {
    "user": Role.USER,
    "human": Role.USER,
    "you": Role.USER,
    "prompt": Role.USER,
    "assistant": Role.ASSISTANT,
    "ai": Role.ASSISTANT,
    "bot": Role.ASSISTANT,
    "model": Role.ASSISTANT,
    "agent": Role.ASSISTANT,
    "claude": Role.ASSISTANT,
    "copilot": Role.ASSISTANT,
    "tool": Role.TOOL,
    "tool_result": Role.TOOL,
    "tool_use": Role.TOOL,
    "function": Role.TOOL,
    "system": Role.SYSTEM,
    "developer": Role.SYSTEM,
}


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def estimate_tokens(text: str) -> int:
    """Estimate tokens from text length."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


@dataclass(frozen=True)
class DiscoveredSource:
    """One candidate log source located by discovery."""

    tool: AiTool
    path: Path
    size_bytes: int
    mtime: Optional[datetime]
    kind: SourceKind = SourceKind.FILE

    @property
    def is_directory(self) -> bool:
        return self.kind is SourceKind.DIRECTORY


@dataclass
class Event:
    """One message or turn within a session."""

    role: Role
    content: str
    timestamp: Optional[datetime] = None
    file_paths: set[str] = field(default_factory=set)
    tokens: Optional[int] = None  # native accounting only
    cost: Optional[float] = None
    index: int = 0  # position in the source's input order
    timestamp_interpolated: bool = False

    @property
    def token_estimate(self) -> int:
        if self.tokens is not None:
            return self.tokens
        return estimate_tokens(self.content)


@dataclass
class Session:
    """Canonical usage episode, built by exactly one parser worker."""

    # Identity
    id: str
    tool: AiTool
    source_path: Path

    # Context
    project_path: str = ""
    title: str = ""
    model: str = ""

    # Timing
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Content
    events: list[Event] = field(default_factory=list)
    file_paths: set[str] = field(default_factory=set)

    # Session-level cost reported by the tool itself (not per event)
    cost: Optional[float] = None
    truncated: bool = False

    # Parser-specific data
    extra: dict = field(default_factory=dict)

    def add_event(
        self,
        role: Role,
        content: str,
        timestamp: Optional[datetime] = None,
        *,
        file_paths: Iterable[str] = (),
        tokens: Optional[int] = None,
        cost: Optional[float] = None,
    ) -> Event:
        """Append an event in input order."""
        if tokens is not None and tokens < 0:
            tokens = None
        event = Event(
            role=role,
            content=content,
            timestamp=ensure_utc(timestamp),
            file_paths={p for p in file_paths if p},
            tokens=tokens,
            cost=cost,
            index=len(self.events),
        )
        self.events.append(event)
        return event

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def token_estimate(self) -> int:
        return sum(event.token_estimate for event in self.events)

    @property
    def cost_estimate(self) -> Optional[float]:
        costs = [event.cost for event in self.events if event.cost is not None]
        if self.cost is not None:
            costs.append(self.cost)
        if not costs:
            return None
        return sum(costs)

    def finalize(self) -> "Session":
        """Interpolate missing timestamps, order events and settle bounds."""
        self.start_time = ensure_utc(self.start_time)
        self.end_time = ensure_utc(self.end_time)

        known = [e.timestamp for e in self.events if e.timestamp is not None]
        lower = self.start_time or (min(known) if known else None)

        previous = None
        for event in self.events:
            if event.timestamp is None:
                fill = previous or lower
                if fill is not None:
                    event.timestamp = fill
                    event.timestamp_interpolated = True
            else:
                previous = event.timestamp

        if self.events and all(e.timestamp is not None for e in self.events):
            self.events.sort(key=lambda e: (e.timestamp, e.index))

        stamps = [e.timestamp for e in self.events if e.timestamp is not None]
        if stamps:
            first, last = min(stamps), max(stamps)
            self.start_time = min(self.start_time, first) if self.start_time else first
            self.end_time = max(self.end_time, last) if self.end_time else last
        if self.start_time and self.end_time and self.end_time < self.start_time:
            self.end_time = self.start_time

        for event in self.events:
            self.file_paths |= event.file_paths

        if not self.title:
            for event in self.events:
                if event.role is Role.USER and event.content.strip():
                    first_line = event.content.strip().split("\n")[0].strip()
                    self.title = first_line[:80]
                    break
        return self


@dataclass(frozen=True)
class ParseLimits:
    """Bounds for a single parse attempt."""

    max_lines: int = 200_000
    generic_max_lines: int = 10_000
    max_bytes: int = 256 * 1024 * 1024
    # Cap on any single line and on any whole document held in memory
    max_resident_bytes: int = 64 * 1024 * 1024
    timeout_seconds: Optional[float] = None
    cancel_event: Optional[threading.Event] = field(default=None, compare=False, repr=False)

    def with_cancel(self, event: threading.Event) -> "ParseLimits":
        return replace(self, cancel_event=event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class ParseResult:
    """Output of one parser run over one source."""

    source: DiscoveredSource
    parser_name: str
    sessions: list[Session] = field(default_factory=list)
    truncated: bool = False
    reason: str = ""
