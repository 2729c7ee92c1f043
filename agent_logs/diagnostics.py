"""Append-only record of skipped, truncated and failed sources."""

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)


class DiagnosticKind(str, Enum):
    SKIPPED = "skipped"  # discovery could not (or chose not to) traverse it
    TRUNCATED = "truncated"  # partial parse, sessions kept
    FAILED = "failed"  # parse produced nothing usable


@dataclass(frozen=True)
class Diagnostic:
    path: str
    reason: str
    kind: DiagnosticKind
    stage: str = "discovery"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "reason": self.reason,
            "kind": self.kind.value,
            "stage": self.stage,
        }


class DiagnosticsLog:
    """Thread-safe diagnostics sink shared by discovery and parse workers.

    Entries are only ever appended; readers get snapshots.
    """

    def __init__(self):
        self._entries: list[Diagnostic] = []
        self._lock = threading.Lock()

    def record(
        self,
        path: Union[str, Path],
        reason: str,
        kind: DiagnosticKind,
        stage: str = "discovery",
    ) -> Diagnostic:
        diagnostic = Diagnostic(path=str(path), reason=reason, kind=kind, stage=stage)
        with self._lock:
            self._entries.append(diagnostic)
        if kind is DiagnosticKind.FAILED:
            logger.warning("%s %s: %s", stage, path, reason)
        else:
            logger.debug("%s %s %s: %s", stage, kind.value, path, reason)
        return diagnostic

    def snapshot(self) -> list[Diagnostic]:
        with self._lock:
            return list(self._entries)

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.snapshot() if d.kind is kind]

    def counts(self) -> Counter:
        return Counter(d.kind for d in self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.snapshot())
