"""Tool registry: where each AI coding tool keeps its logs.

Patterns are ``/``-separated globs matched against the tail of an absolute
path, so ``.claude/projects/*/*.jsonl`` matches wherever the ``.claude``
directory lives. Entries are tried in order and the first match wins, which
is why the most specific patterns (an extension's task directory hosted by
Kiro) come before the general ones (the same extension under any editor).
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence, Union

from .models import AiTool, SourceKind

PathLike = Union[str, Path]


def _glob_to_regex(glob: str) -> str:
    parts = glob.strip("/").split("/")
    out = []
    for i, part in enumerate(parts):
        last = i == len(parts) - 1
        if part == "**":
            out.append("(?:[^/]+/)*")
            continue
        segment = []
        for ch in part:
            if ch == "*":
                segment.append("[^/]*")
            elif ch == "?":
                segment.append("[^/]")
            else:
                segment.append(re.escape(ch))
        out.append("".join(segment) + ("" if last else "/"))
    return "(?:^|/)" + "".join(out) + "$"


def _posix(path: PathLike) -> str:
    return str(path).replace("\\", "/")


@dataclass(frozen=True)
class PathPattern:
    """A filesystem signature for one kind of log source."""

    glob: str
    kind: SourceKind = SourceKind.FILE
    exclude_names: tuple[str, ...] = ()
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_regex", re.compile(_glob_to_regex(self.glob)))

    def matches(self, path: PathLike) -> bool:
        posix = _posix(path).rstrip("/")
        if posix.rsplit("/", 1)[-1] in self.exclude_names:
            return False
        return self._regex.search(posix) is not None


_F = SourceKind.FILE
_D = SourceKind.DIRECTORY
_SESSION_INDEX = ("sessions.json",)

DEFAULT_SIGNATURES: tuple[tuple[AiTool, PathPattern], ...] = (
    # Extension task dirs under Kiro belong to Kiro, whichever extension wrote them
    (AiTool.KIRO, PathPattern("Kiro/User/globalStorage/*/tasks/*", _D)),
    (AiTool.KIRO, PathPattern("Kiro/logs/**/*.log")),
    (AiTool.KIRO, PathPattern(".kiro/**/*.log")),
    (AiTool.CLINE, PathPattern("globalStorage/saoudrizwan.claude-dev/tasks/*", _D)),
    (AiTool.CLINE, PathPattern(".cline/data/tasks/*", _D)),
    (AiTool.CLINE, PathPattern("cline/tasks/*", _D)),
    (AiTool.CLINE, PathPattern("Cline/tasks/*", _D)),
    (AiTool.ROO_CODE, PathPattern("globalStorage/rooveterinaryinc.roo-cline/tasks/*", _D)),
    (AiTool.KILO_CODE, PathPattern("globalStorage/kilocode.kilo-code/tasks/*", _D)),
    (AiTool.COPILOT, PathPattern("workspaceStorage/*/chatSessions/*.json")),
    (AiTool.COPILOT, PathPattern("globalStorage/emptyWindowChatSessions/*.json")),
    (AiTool.COPILOT, PathPattern("github-copilot/**/*.log")),
    (AiTool.CONTINUE, PathPattern(".continue/sessions/*.json", exclude_names=_SESSION_INDEX)),
    (AiTool.CONTINUE, PathPattern(
        "globalStorage/continue.continue/sessions/*.json", exclude_names=_SESSION_INDEX)),
    (AiTool.CURSOR, PathPattern("Cursor/User/globalStorage/state.vscdb")),
    (AiTool.CURSOR, PathPattern("Cursor/User/workspaceStorage/*/state.vscdb")),
    (AiTool.CURSOR, PathPattern("Cursor/logs/**/*.log")),
    (AiTool.CURSOR, PathPattern(".cursor/**/*.log")),
    (AiTool.CLAUDE_CODE, PathPattern(".claude/projects/*/*.jsonl")),
    (AiTool.CLAUDE_CODE, PathPattern(".claude/history.jsonl")),
    (AiTool.CLAUDE_CODE, PathPattern("Claude/logs/*.log")),
    (AiTool.DROID, PathPattern(".factory/sessions/*/*.jsonl")),
    (AiTool.OPENCODE, PathPattern("opencode/storage/message/ses_*", _D)),
    (AiTool.CODEX, PathPattern(".codex/sessions/**/*.jsonl")),
    (AiTool.CODEX, PathPattern(".codex/history.jsonl")),
    (AiTool.AIDER, PathPattern(".aider.chat.history.md")),
    (AiTool.AIDER, PathPattern(".aider/**/*.md")),
    (AiTool.WINDSURF, PathPattern(".codeium/windsurf/**/*.log")),
    (AiTool.WINDSURF, PathPattern(".windsurf/**/*.log")),
    (AiTool.WINDSURF, PathPattern("windsurf/**/*.log")),
    (AiTool.WINDSURF, PathPattern("Windsurf/logs/**/*.log")),
    (AiTool.CODY, PathPattern("globalStorage/sourcegraph.cody-ai/**/*.json")),
    (AiTool.CODY, PathPattern(".cody/**/*.log")),
    (AiTool.CODY, PathPattern("cody/**/*.log")),
    (AiTool.TABNINE, PathPattern(".tabnine/**/*.log")),
    (AiTool.TABNINE, PathPattern("Tabnine/**/*.log")),
    (AiTool.AMAZON_Q, PathPattern(".aws/codewhisperer/**/*.log")),
    (AiTool.AMAZON_Q, PathPattern(".aws/amazonq/**/*.log")),
    (AiTool.AMAZON_Q, PathPattern("amazonq/**/*.log")),
    (AiTool.CODEGPT, PathPattern(".codegpt/**/*.log")),
    (AiTool.CODEGPT, PathPattern(".codegpt/**/*.json")),
    (AiTool.BITO, PathPattern(".bito/**/*.log")),
    (AiTool.SUPERMAVEN, PathPattern(".supermaven/**/*.log")),
    (AiTool.JETBRAINS_AI, PathPattern("JetBrains/*/log/*.log")),
    (AiTool.JETBRAINS_AI, PathPattern("Google/AndroidStudio*/log/*.log")),
    (AiTool.VSCODE, PathPattern("Code/logs/**/*.log")),
    (AiTool.VSCODE, PathPattern(".vscode-server/data/logs/**/*.log")),
)

# Home-relative directories each tool writes under. Discovery walks these
# instead of the whole home directory when any of them exist.
DEFAULT_TOOL_ROOTS: dict[AiTool, tuple[str, ...]] = {
    AiTool.CLAUDE_CODE: (
        ".claude", ".config/Claude", "Library/Application Support/Claude", "AppData/Roaming/Claude",
    ),
    AiTool.CURSOR: (
        ".cursor", ".config/Cursor", "Library/Application Support/Cursor", "AppData/Roaming/Cursor",
        ".var/app/com.cursor.Cursor/config/Cursor",
    ),
    AiTool.CLINE: (".cline", ".config/cline", "Library/Application Support/Cline", "AppData/Roaming/Cline"),
    AiTool.ROO_CODE: (".roocode", ".config/roo-code", "Library/Application Support/Roo"),
    AiTool.KILO_CODE: (".kilo", ".config/kilo"),
    AiTool.KIRO: (".kiro", ".config/Kiro", "Library/Application Support/Kiro"),
    AiTool.COPILOT: (".config/github-copilot",),
    AiTool.CONTINUE: (".continue", ".config/continue"),
    AiTool.AIDER: (".aider", "Library/Caches/aider"),
    AiTool.WINDSURF: (".windsurf", ".codeium", ".config/windsurf", "Library/Application Support/Windsurf"),
    AiTool.CODY: (".cody", ".config/cody", "Library/Application Support/Cody"),
    AiTool.TABNINE: (".tabnine", "Library/Application Support/Tabnine"),
    AiTool.AMAZON_Q: (".aws/codewhisperer", ".aws/amazonq", ".config/amazonq"),
    AiTool.CODEGPT: (".codegpt",),
    AiTool.BITO: (".bito",),
    AiTool.SUPERMAVEN: (".supermaven",),
    AiTool.JETBRAINS_AI: (
        ".config/JetBrains", ".cache/JetBrains", ".local/share/JetBrains",
        "Library/Application Support/JetBrains", "Library/Logs/JetBrains", ".config/Google", ".cache/Google",
    ),
    AiTool.VSCODE: (
        ".config/Code", ".vscode-server", "Library/Application Support/Code", "AppData/Roaming/Code",
        ".var/app/com.visualstudio.code/config/Code",
    ),
    AiTool.DROID: (".factory",),
    AiTool.OPENCODE: (".local/share/opencode",),
    AiTool.CODEX: (".codex",),
}

# Parent directories of personal home directories, for path redaction.
HOME_PARENTS = ("/home", "/Users", "/var/home")


def home_prefixes() -> list[str]:
    """Return home-directory roots that identify a person in a path.

    Includes the running user's real home when it is not under one of the
    usual parents (``/root``, ``/var/lib/someone``).
    """
    prefixes = [f"{parent}/" for parent in HOME_PARENTS]
    try:
        home = _posix(Path.home()).rstrip("/")
    except RuntimeError:
        return prefixes
    if home and home.count("/") >= 1 and not any(home.startswith(p) for p in prefixes):
        prefixes.append(home)
    return prefixes


class ToolRegistry:
    """Ordered, read-only table of tool signatures."""

    def __init__(
        self,
        entries: Iterable[tuple[AiTool, PathPattern]] = DEFAULT_SIGNATURES,
        tool_roots: Optional[dict[AiTool, tuple[str, ...]]] = None,
        precedence: Optional[Sequence[Union[AiTool, str]]] = None,
    ):
        ordered = list(entries)
        self._precedence: tuple[AiTool, ...] = ()
        if precedence:
            self._precedence = tuple(
                t if isinstance(t, AiTool) else AiTool.from_name(t) for t in precedence
            )
            rank = {tool: i for i, tool in enumerate(self._precedence)}
            ordered.sort(key=lambda entry: rank.get(entry[0], len(rank)))
        self._entries: tuple[tuple[AiTool, PathPattern], ...] = tuple(ordered)
        self._tool_roots = dict(DEFAULT_TOOL_ROOTS if tool_roots is None else tool_roots)
        self._region_markers = tuple(
            "/" + rel.strip("/") + "/" for rels in self._tool_roots.values() for rel in rels
        )

    def __iter__(self) -> Iterator[tuple[AiTool, PathPattern]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def precedence(self) -> tuple[AiTool, ...]:
        return self._precedence

    @property
    def tools(self) -> list[AiTool]:
        """Tools in registry order, each once."""
        seen: list[AiTool] = []
        for tool, _ in self._entries:
            if tool not in seen:
                seen.append(tool)
        return seen

    def with_precedence(self, precedence: Sequence[Union[AiTool, str]]) -> "ToolRegistry":
        return ToolRegistry(self._entries, self._tool_roots, precedence)

    def signatures_for(self, tool: AiTool) -> tuple[PathPattern, ...]:
        return tuple(pattern for t, pattern in self._entries if t is tool)

    def match(
        self, path: PathLike, kind: Optional[SourceKind] = None
    ) -> Optional[tuple[AiTool, PathPattern]]:
        """Return the first (tool, pattern) whose pattern matches ``path``."""
        for tool, pattern in self._entries:
            if kind is not None and pattern.kind is not kind:
                continue
            if pattern.matches(path):
                return tool, pattern
        return None

    def identify(self, path: PathLike) -> Optional[AiTool]:
        found = self.match(path)
        return found[0] if found else None

    def roots_for(self, tool: AiTool) -> tuple[str, ...]:
        return self._tool_roots.get(tool, ())

    def tool_roots(self, root: Path) -> list[Path]:
        """Existing tool data directories under ``root``, outermost only."""
        found = []
        for rels in self._tool_roots.values():
            for rel in rels:
                candidate = root / rel
                if os.path.isdir(candidate):
                    found.append(candidate)
        found.sort(key=lambda p: len(p.parts))
        kept: list[Path] = []
        for candidate in found:
            if not any(candidate == k or k in candidate.parents for k in kept):
                kept.append(candidate)
        return kept

    def in_tool_region(self, path: PathLike) -> bool:
        """True when ``path`` lies inside some tool's data directory."""
        posix = "/" + _posix(path).strip("/") + "/"
        return any(marker in posix for marker in self._region_markers) or self.match(path) is not None


DEFAULT_REGISTRY = ToolRegistry()
