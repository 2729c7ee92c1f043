"""Discovery -> parse -> sanitize orchestration.

Sources found by the scanner are fanned out to a thread pool. Each worker
parses one source and sanitizes its sessions before returning them, so the
only thing that crosses back to the caller is a SanitizedSession.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from .config import ScanConfig
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticsLog
from .discovery import DiscoveryScanner
from .errors import ConfigurationError, ParseError
from .models import DiscoveredSource, ParseLimits
from .parsers import get_all_parsers, parse_source
from .parsers.base import SourceParser
from .registry import DEFAULT_REGISTRY, ToolRegistry
from .sanitizer import DEFAULT_SANITIZER, SanitizedSession, Sanitizer

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """Everything one run produced: sanitized sessions and what went wrong."""

    sessions: list[SanitizedSession] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    attempted: int = 0
    parsed: int = 0
    cancelled: bool = False

    def _count(self, kind: DiagnosticKind) -> int:
        return sum(1 for d in self.diagnostics if d.kind is kind)

    @property
    def complete(self) -> bool:
        """True only when nothing was skipped, truncated, failed or cancelled."""
        return not self.cancelled and not self.diagnostics

    def summary(self) -> dict:
        return {
            "attempted": self.attempted,
            "parsed": self.parsed,
            "sessions": len(self.sessions),
            "truncated": self._count(DiagnosticKind.TRUNCATED),
            "failed": self._count(DiagnosticKind.FAILED),
            "skipped": self._count(DiagnosticKind.SKIPPED),
            "cancelled": self.cancelled,
            "complete": self.complete,
        }


class Pipeline:
    """Runs discovery, parsing and sanitization for a ScanConfig.

    One run at a time per instance; ``cancel()`` stops the current run.
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        registry: Optional[ToolRegistry] = None,
        sanitizer: Optional[Sanitizer] = None,
        parsers: Optional[Sequence[SourceParser]] = None,
    ):
        self.config = (config or ScanConfig.from_env()).validate()
        registry = registry or DEFAULT_REGISTRY
        if self.config.tool_precedence:
            registry = registry.with_precedence(self.config.tool_precedence)
        self.registry = registry
        self.sanitizer = sanitizer or DEFAULT_SANITIZER
        self.parsers = list(parsers) if parsers is not None else get_all_parsers()
        self.diagnostics = DiagnosticsLog()
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._attempted = 0
        self._parsed = 0

    def cancel(self) -> None:
        logger.info("Cancelling run")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _reset(self) -> ParseLimits:
        self.diagnostics = DiagnosticsLog()
        self._cancel = threading.Event()
        self._attempted = 0
        self._parsed = 0
        return self.config.limits.with_cancel(self._cancel)

    def _check_roots(self, roots: list[Path]) -> None:
        if not roots:
            raise ConfigurationError("no root directories configured")
        if not any(Path(root).expanduser().is_dir() for root in roots):
            raise ConfigurationError(
                "none of the configured roots is an existing directory: "
                + ", ".join(str(root) for root in roots)
            )

    def _process(self, source: DiscoveredSource, limits: ParseLimits) -> list[SanitizedSession]:
        """Parse and sanitize one source. Never raises."""
        try:
            result = parse_source(source, limits, self.parsers)
        except ParseError as e:
            self.diagnostics.record(e.path, e.reason, DiagnosticKind.FAILED, stage="parse")
            return []
        except Exception as e:
            logger.debug("Parser crashed on %s", source.path, exc_info=True)
            self.diagnostics.record(
                source.path, f"unexpected {type(e).__name__}", DiagnosticKind.FAILED, stage="parse"
            )
            return []

        if result.truncated:
            self.diagnostics.record(source.path, result.reason, DiagnosticKind.TRUNCATED, stage="parse")
        with self._lock:
            self._parsed += 1
        return [self.sanitizer.sanitize_session(session) for session in result.sessions]

    def _run_sources(self, sources: Iterable[DiscoveredSource], limits: ParseLimits) -> Iterator[SanitizedSession]:
        workers = self.config.parse_workers
        max_in_flight = 2 * workers
        pending: set[Future] = set()

        def drain(done: Iterable[Future]) -> Iterator[SanitizedSession]:
            for future in done:
                for session in future.result():
                    if self.cancelled:
                        return
                    yield session

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="parse") as executor:
            try:
                for source in sources:
                    if self.cancelled:
                        break
                    with self._lock:
                        self._attempted += 1
                    pending.add(executor.submit(self._process, source, limits))
                    if len(pending) >= max_in_flight:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        yield from drain(done)
                while pending and not self.cancelled:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    yield from drain(done)
            finally:
                if pending:
                    # Abandoned or cancelled: stop readers at their next line
                    self._cancel.set()
                    for future in pending:
                        future.cancel()

    def iter_sessions(self, roots: Optional[Iterable[Path]] = None) -> Iterator[SanitizedSession]:
        """Discover, parse and sanitize, yielding sessions as they finish."""
        roots = list(self.config.roots if roots is None else roots)
        self._check_roots(roots)
        limits = self._reset()
        scanner = DiscoveryScanner(self.config, self.registry, self.diagnostics, self._cancel)
        yield from self._run_sources(scanner.scan(roots), limits)

    def parse_sources(self, sources: Iterable[DiscoveredSource]) -> Iterator[SanitizedSession]:
        """Parse and sanitize explicitly supplied sources, skipping discovery."""
        limits = self._reset()
        yield from self._run_sources(sources, limits)

    def report(self, sessions: list[SanitizedSession]) -> PipelineReport:
        return PipelineReport(
            sessions=sessions,
            diagnostics=self.diagnostics.snapshot(),
            attempted=self._attempted,
            parsed=self._parsed,
            cancelled=self.cancelled,
        )

    def run(self, roots: Optional[Iterable[Path]] = None) -> PipelineReport:
        """Run to completion (or cancellation) and collect a report."""
        sessions = list(self.iter_sessions(roots))
        return self.report(sessions)
