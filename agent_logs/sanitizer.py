"""Redaction of secrets and personal data from canonical session text.

Every match is replaced by a placeholder naming what was there, e.g.
``[REDACTED:credential:openai_key]``, so later analysis can still count
what kind of data appeared without seeing it.

Rules run in a fixed order, most specific first: provider-prefixed keys
before key=value assignments, assignments before the generic high-entropy
rule. Text already inside a placeholder is never matched again, and the
table is re-applied until nothing changes, so ``sanitize`` is idempotent.
"""

import base64
import binascii
import ipaddress
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from .models import AiTool, Role, Session
from .registry import home_prefixes

logger = logging.getLogger(__name__)

CREDENTIAL = "credential"
PII = "pii"
NETWORK = "network"
PATH = "path"

PLACEHOLDER_RE = re.compile(r"\[REDACTED:(?P<category>[a-z]+):(?P<kind>[a-z0-9_]+)\]")

# Start of a token: not glued to a preceding letter or digit, except when the
# preceding letter is part of a literal escape such as "\n" in logged JSON.
_B = r"(?:(?<![A-Za-z0-9])|(?<=\\[nrtb\"']))"
# Same, for tokens whose body may contain "-" or "_": a match can only start
# at the beginning of such a run, never part way through it.
_B_RUN = r"(?:(?<![A-Za-z0-9_-])|(?<=\\[nrtb\"']))"


@dataclass(frozen=True)
class SanitizationRule:
    """Patterns for one kind of sensitive data.

    When a pattern has a ``secret`` group only that group is replaced and the
    surrounding text (a key name, a URL scheme) is kept. ``validator`` can
    veto a match, e.g. a digit run that fails the Luhn check.
    """

    kind: str
    category: str
    patterns: tuple[re.Pattern, ...]
    validator: Optional[Callable[[str], bool]] = None

    @property
    def placeholder(self) -> str:
        return f"[REDACTED:{self.category}:{self.kind}]"

    def _replace(self, match: re.Match) -> str:
        if "secret" in match.re.groupindex and match.group("secret") is not None:
            start, end = match.span("secret")
        else:
            start, end = match.span()
        if self.validator is not None and not self.validator(match.string[start:end]):
            return match.group(0)
        offset = match.start()
        whole = match.group(0)
        return whole[:start - offset] + self.placeholder + whole[end - offset:]

    def apply(self, text: str) -> str:
        for pattern in self.patterns:
            text = pattern.sub(self._replace, text)
        return text

    def search(self, text: str) -> bool:
        """True when some pattern matches and passes validation."""
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                if self._replace(match) != match.group(0):
                    return True
        return False


def _rule(kind, category, *patterns, validator=None, flags=0) -> SanitizationRule:
    return SanitizationRule(
        kind=kind,
        category=category,
        patterns=tuple(re.compile(p, flags) for p in patterns),
        validator=validator,
    )


def _luhn_ok(candidate: str) -> bool:
    digits = [int(c) for c in candidate if c.isdigit()]
    if not 13 <= len(digits) <= 19:
        return False
    # Card networks only issue numbers starting 2-6
    if digits[0] not in (2, 3, 4, 5, 6):
        return False
    total = 0
    for i, digit in enumerate(reversed(digits)):
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def _ssn_ok(candidate: str) -> bool:
    area, group, serial = candidate.split("-")
    return area not in ("000", "666") and not area.startswith("9") and group != "00" and serial != "0000"


def _phone_ok(candidate: str) -> bool:
    return 8 <= sum(c.isdigit() for c in candidate) <= 15


def _ipv6_ok(candidate: str) -> bool:
    try:
        ipaddress.IPv6Address(candidate)
    except ValueError:
        return False
    return sum(1 for group in candidate.split(":") if group) >= 2


def _shannon_entropy(text: str) -> float:
    counts = Counter(text)
    length = len(text)
    return -sum(n / length * math.log2(n / length) for n in counts.values())


def _high_entropy_ok(candidate: str) -> bool:
    if not (any(c.isupper() for c in candidate)
            and any(c.islower() for c in candidate)
            and any(c.isdigit() for c in candidate)):
        return False
    return _shannon_entropy(candidate) >= 4.2


def _decodes_to_secret(candidate: str) -> bool:
    """True when a base64/base64url blob decodes to text holding a credential."""
    blob = candidate.rstrip("=").replace("-", "+").replace("_", "/")
    blob += "=" * (-len(blob) % 4)
    try:
        decoded = base64.b64decode(blob, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return False
    return any(rule.search(decoded) for rule in _ENCODED_PROBES)


def _home_path_patterns() -> list[str]:
    parents = [re.escape(p.rstrip("/")) for p in home_prefixes() if p.endswith("/")]
    exact = [re.escape(p) for p in home_prefixes() if not p.endswith("/")]
    patterns = [
        r"(?:" + "|".join(parents) + r")/[^/\s\"'\\:;,<>|*?\[\]]+",
        r"\b[A-Za-z]:(?:\\\\|\\|/)Users(?:\\\\|\\|/)[^\\/\s\"':;,<>|*?\[\]]+",
        # Claude Code encodes project paths as directory names: -home-alice-project
        r"(?<![A-Za-z0-9])-(?:home|Users)-[A-Za-z0-9_.]+",
    ]
    if exact:
        patterns.append(r"(?:" + "|".join(exact) + r")(?![A-Za-z0-9_.-])")
    return patterns


_SECRET_KEY = (
    r"(?:password|passwd|passphrase|pass|pwd|secret|token|api[_-]?key|apikey|access[_-]?key"
    r"|auth[_-]?key|private[_-]?key|client[_-]?secret|credentials?)"
)


def build_default_rules() -> tuple[SanitizationRule, ...]:
    """Build the process-wide rule table, in application order."""
    return (
        _rule(
            "private_key", CREDENTIAL,
            r"-----BEGIN[A-Z0-9 ]*PRIVATE KEY-----(?:[\s\S]{0,8192}?-----END[A-Z0-9 ]*PRIVATE KEY-----"
            r"|(?:(?:\s|\\n)*[A-Za-z0-9+/=]{8,})*)",
        ),
        _rule("jwt", CREDENTIAL, _B_RUN + r"eyJ[A-Za-z0-9_-]{8,}\.eyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]*"),
        _rule("anthropic_key", CREDENTIAL, _B + r"sk-ant-[A-Za-z0-9_-]{6,}"),
        _rule(
            "openai_key", CREDENTIAL,
            _B + r"sk-(?:proj-|svcacct-|admin-)?(?=[A-Za-z_-]{0,64}[0-9])[A-Za-z0-9_-]{6,}",
        ),
        _rule("github_token", CREDENTIAL, _B + r"(?:gh[pousr]_[A-Za-z0-9]{16,}|github_pat_[A-Za-z0-9_]{20,})"),
        _rule("gitlab_token", CREDENTIAL, _B + r"glpat-[A-Za-z0-9_-]{16,}"),
        _rule("slack_token", CREDENTIAL, _B + r"xox[abposr]-[A-Za-z0-9-]{10,}"),
        _rule("aws_access_key", CREDENTIAL, _B + r"(?:AKIA|ASIA|AGPA|AIDA|AROA)[0-9A-Z]{16}(?![0-9A-Z])"),
        _rule(
            "aws_secret_key", CREDENTIAL,
            r"aws_?secret_?(?:access_?)?key[\"'\\\s]*[=:][\"'\\\s]*(?P<secret>[A-Za-z0-9/+]{40})(?![A-Za-z0-9/+])",
            flags=re.IGNORECASE,
        ),
        _rule("google_api_key", CREDENTIAL, _B + r"AIza[0-9A-Za-z_-]{20,}"),
        _rule("google_oauth_token", CREDENTIAL, _B + r"ya29\.[0-9A-Za-z_-]{20,}"),
        _rule("stripe_key", CREDENTIAL, _B + r"(?:sk|rk|pk)_(?:live|test)_[0-9A-Za-z]{10,}"),
        _rule("huggingface_token", CREDENTIAL, _B + r"hf_[A-Za-z0-9]{20,}"),
        _rule("npm_token", CREDENTIAL, _B + r"npm_[A-Za-z0-9]{20,}"),
        _rule(
            "url_credentials", CREDENTIAL,
            r"(?<![A-Za-z0-9+.-])[A-Za-z][A-Za-z0-9+.-]{0,31}://"
            r"(?P<secret>[^\s:/@'\"\\]{1,256}:[^\s@/'\"\\]{1,256})@",
        ),
        _rule(
            "authorization_header", CREDENTIAL,
            r"(?:\bauthorization\b[\"'\\]*\s*[:=]\s*[\"'\\]*(?:[a-z]+\s+)?|\b(?:bearer|basic)\s+)"
            r"(?P<secret>(?=[^\s\"'\\]*[0-9])[A-Za-z0-9._~+/=-]{8,})",
            flags=re.IGNORECASE,
        ),
        _rule(
            "secret_assignment", CREDENTIAL,
            r"(?<![A-Za-z0-9_.-])[A-Za-z0-9_.-]{0,64}?" + _SECRET_KEY + r"(?:[_.-][A-Za-z0-9_.-]{0,64})?"
            r"[\"'\\]*\s*(?:=|:|%3[dDaA])\s*[\"'\\]*"
            r"(?P<secret>(?!(?:null|none|true|false|undefined)\b)[^\s\"'\\,;&<>(){}\[\]]{6,})",
            flags=re.IGNORECASE,
        ),
        _rule(
            "cli_password", CREDENTIAL,
            r"--pass(?:word|wd)(?:=|\s+)[\"']?(?P<secret>[^\s\"']+)",
            r"\b(?:mysql|mysqladmin|mysqldump|psql|mongo|mongosh|sshpass|docker\s+login)\b"
            r"[^\n]{0,256}?\s-p\s*[\"']?(?P<secret>[^\s\"']{4,})",
        ),
        _rule(
            "encoded_secret", CREDENTIAL,
            r"(?<![A-Za-z0-9+/=_-])[A-Za-z0-9+/_-]{24,}={0,2}(?![A-Za-z0-9+/=_-])",
            validator=_decodes_to_secret,
        ),
        _rule(
            "email", PII,
            r"(?<![A-Za-z0-9._%+-])[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}(?![A-Za-z0-9-])",
        ),
        _rule("ssn", PII, r"(?<![\d-])\d{3}-\d{2}-\d{4}(?![\d-])", validator=_ssn_ok),
        # One pattern per card layout so a trailing number is never swallowed
        _rule(
            "credit_card", PII,
            r"(?<![\d-])\d{4}([ -]?)\d{4}\1\d{4}\1\d{4}(?!\d)",
            r"(?<![\d-])\d{4}([ -]?)\d{6}\1\d{4,5}(?!\d)",
            r"(?<![\d-])\d{13,19}(?!\d)",
            validator=_luhn_ok,
        ),
        _rule(
            "phone", PII,
            r"(?<![\w+])(?:\+\d{1,3}[\s.-]?)?(?:\(\d{3}\)\s?|\d{3}[\s.-])\d{3}[\s.-]\d{4}(?![\d-])",
            r"(?<![\w+])\+\d{1,3}(?:[\s.-]?\d{2,4}){2,4}(?![\d-])",
            validator=_phone_ok,
        ),
        _rule(
            "ipv4", NETWORK,
            r"(?<![\d.])(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(?!\.?\d)",
        ),
        _rule(
            "ipv6", NETWORK,
            r"(?<![0-9A-Za-z:.])(?=[0-9A-Fa-f]*:[0-9A-Fa-f]*:)[0-9A-Fa-f:]{3,39}(?![0-9A-Za-z:])",
            validator=_ipv6_ok,
        ),
        _rule("home_path", PATH, *_home_path_patterns()),
        _rule(
            "high_entropy_token", CREDENTIAL,
            r"(?<![A-Za-z0-9_+=/-])[A-Za-z0-9_+=-]{32,}(?![A-Za-z0-9_+=/-])",
            validator=_high_entropy_ok,
        ),
    )


DEFAULT_RULES = build_default_rules()

# What a decoded blob is checked against: every credential rule except the
# ones that would recurse or that match almost any long string.
_ENCODED_PROBES = tuple(
    rule for rule in DEFAULT_RULES
    if rule.category == CREDENTIAL and rule.kind not in ("encoded_secret", "high_entropy_token")
)

_SEAL = object()


@dataclass(frozen=True)
class SanitizedEvent:
    role: Role
    content: str
    timestamp: Optional[datetime]
    file_paths: tuple[str, ...]
    token_estimate: int
    cost: Optional[float]
    index: int
    timestamp_interpolated: bool = False
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self._seal is not _SEAL:
            raise TypeError("SanitizedEvent can only be created by Sanitizer.sanitize_session()")


@dataclass(frozen=True)
class SanitizedSession:
    """The only session type handed to consumers outside the pipeline."""

    id: str
    tool: AiTool
    source_path: str
    project_path: str
    title: str
    model: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    events: tuple[SanitizedEvent, ...]
    file_paths: tuple[str, ...]
    token_estimate: int
    cost_estimate: Optional[float]
    truncated: bool
    redactions: tuple[tuple[str, int], ...] = ()
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self._seal is not _SEAL:
            raise TypeError("SanitizedSession can only be created by Sanitizer.sanitize_session()")

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def texts(self) -> list[str]:
        return [event.content for event in self.events]

    @property
    def redaction_counts(self) -> dict[str, int]:
        return dict(self.redactions)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool": self.tool.value,
            "source_path": self.source_path,
            "project_path": self.project_path,
            "title": self.title,
            "model": self.model,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "event_count": self.event_count,
            "token_estimate": self.token_estimate,
            "cost_estimate": self.cost_estimate,
            "truncated": self.truncated,
            "file_paths": list(self.file_paths),
            "redactions": self.redaction_counts,
            "events": [
                {
                    "role": event.role.value,
                    "content": event.content,
                    "timestamp": event.timestamp.isoformat() if event.timestamp else None,
                    "file_paths": list(event.file_paths),
                    "token_estimate": event.token_estimate,
                    "cost": event.cost,
                }
                for event in self.events
            ],
        }


SHELL_HISTORY_FILES = (
    (".bash_history", "bash"),
    (".zsh_history", "zsh"),
    (".zhistory", "zsh"),
    (".sh_history", "sh"),
    (".local/share/fish/fish_history", "fish"),
)


class Sanitizer:
    """Applies an ordered rule table to text. Stateless and thread-safe."""

    def __init__(self, rules: Optional[Sequence[SanitizationRule]] = None):
        self._rules = tuple(DEFAULT_RULES if rules is None else rules)

    @property
    def rules(self) -> tuple[SanitizationRule, ...]:
        return self._rules

    def _apply_once(self, text: str) -> str:
        for rule in self._rules:
            pieces = PLACEHOLDER_RE.split(text)
            # split() interleaves captured groups; rebuild around placeholders
            out = []
            matches = PLACEHOLDER_RE.findall(text)
            raw_segments = pieces[::3]
            for i, segment in enumerate(raw_segments):
                out.append(rule.apply(segment) if segment else segment)
                if i < len(matches):
                    category, kind = matches[i]
                    out.append(f"[REDACTED:{category}:{kind}]")
            text = "".join(out)
        return text

    def sanitize(self, text) -> str:
        """Return ``text`` with every rule match replaced by its placeholder."""
        if text is None:
            return ""
        if not isinstance(text, str):
            text = str(text)
        while True:
            result = self._apply_once(text)
            if result == text:
                return result
            text = result

    def findings(self, text: str) -> Counter:
        """Count placeholders by kind in already sanitized text."""
        return Counter(match.group("kind") for match in PLACEHOLDER_RE.finditer(text or ""))

    def sanitize_session(self, session: Session) -> SanitizedSession:
        """Redact every text-bearing field of ``session``."""
        clean = self.sanitize
        redactions: Counter = Counter()

        def scrub(value: str) -> str:
            result = clean(value)
            redactions.update(self.findings(result))
            return result

        events = tuple(
            SanitizedEvent(
                role=event.role,
                content=scrub(event.content),
                timestamp=event.timestamp,
                file_paths=tuple(sorted({scrub(p) for p in event.file_paths})),
                token_estimate=event.token_estimate,
                cost=event.cost,
                index=event.index,
                timestamp_interpolated=event.timestamp_interpolated,
                _seal=_SEAL,
            )
            for event in session.events
        )
        return SanitizedSession(
            id=scrub(session.id),
            tool=session.tool,
            source_path=scrub(str(session.source_path)),
            project_path=scrub(session.project_path),
            title=scrub(session.title),
            model=scrub(session.model),
            start_time=session.start_time,
            end_time=session.end_time,
            events=events,
            file_paths=tuple(sorted({scrub(p) for p in session.file_paths})),
            token_estimate=session.token_estimate,
            cost_estimate=session.cost_estimate,
            truncated=session.truncated,
            redactions=tuple(sorted(redactions.items())),
            _seal=_SEAL,
        )

    def sanitize_file(self, path: Path) -> str:
        """Sanitize a text file line by line."""
        with open(path, encoding="utf-8", errors="replace") as f:
            return "\n".join(self.sanitize(line.rstrip("\n")) for line in f)

    def sanitize_shell_histories(self, home: Optional[Path] = None) -> list[tuple[str, str]]:
        """Find and sanitize the user's shell history files.

        Returns (output name, sanitized text) pairs.
        """
        home = home or Path.home()
        histories = []
        for rel, shell in SHELL_HISTORY_FILES:
            path = home / rel
            if not path.is_file():
                continue
            try:
                histories.append((f"{shell}_history_sanitized.txt", self.sanitize_file(path)))
            except OSError as e:
                logger.warning("Could not sanitize %s: %s", path, e)
        return histories


DEFAULT_SANITIZER = Sanitizer()


def sanitize(text) -> str:
    return DEFAULT_SANITIZER.sanitize(text)
