"""Parallel filesystem scan for AI tool log sources.

Each directory listing is one task on a thread pool. A task returns the
sources it found plus the child directories to visit next, so independent
subtrees proceed in parallel and a failure in one listing only loses that
directory.
"""

import logging
import os
import stat
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .config import ScanConfig
from .diagnostics import DiagnosticKind, DiagnosticsLog
from .errors import DiscoveryError
from .models import AiTool, DiscoveredSource, SourceKind
from .registry import DEFAULT_REGISTRY, ToolRegistry

logger = logging.getLogger(__name__)

NodeKey = tuple[int, int]


def _mtime(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def _directory_size(path: Path) -> int:
    """Total size of regular files directly in ``path`` and one level below."""
    total = 0
    try:
        with os.scandir(path) as it:
            for entry in it:
                try:
                    if entry.is_file(follow_symlinks=False):
                        total += entry.stat(follow_symlinks=False).st_size
                    elif entry.is_dir(follow_symlinks=False):
                        with os.scandir(entry.path) as sub:
                            total += sum(
                                e.stat(follow_symlinks=False).st_size
                                for e in sub if e.is_file(follow_symlinks=False)
                            )
                except OSError:
                    continue
    except OSError:
        pass
    return total


def source_for_path(path: Path, registry: ToolRegistry = DEFAULT_REGISTRY) -> DiscoveredSource:
    """Build a source for a path given explicitly rather than discovered.

    The tool guess falls back to GENERIC when no signature matches.
    """
    path = Path(path).expanduser().absolute()
    try:
        st = path.stat()
    except OSError as e:
        raise DiscoveryError(path, e.strerror or str(e)) from e
    kind = SourceKind.DIRECTORY if stat.S_ISDIR(st.st_mode) else SourceKind.FILE
    found = registry.match(path, kind)
    tool = found[0] if found else AiTool.GENERIC
    size = _directory_size(path) if kind is SourceKind.DIRECTORY else st.st_size
    return DiscoveredSource(tool=tool, path=path, size_bytes=size, mtime=_mtime(st), kind=kind)


class _Task:
    __slots__ = ("path", "depth", "ancestors", "descend")

    def __init__(self, path: Path, depth: int, ancestors: frozenset, descend: bool = True):
        self.path = path
        self.depth = depth
        self.ancestors = ancestors
        self.descend = descend


class DiscoveryScanner:
    """Walks root directories and yields every source the registry recognises.

    A scanner instance is reusable; each ``scan()`` call starts a fresh
    traversal with its own visited set. Output order is not defined.
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        registry: ToolRegistry = DEFAULT_REGISTRY,
        diagnostics: Optional[DiagnosticsLog] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config or ScanConfig()
        self.registry = registry
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsLog()
        self.cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._visited: set[NodeKey] = set()
        self._emitted: set[NodeKey] = set()

    def _skip(self, path, reason: str) -> None:
        self.diagnostics.record(path, reason, DiagnosticKind.SKIPPED, stage="discovery")

    def _claim(self, seen: set, key: NodeKey) -> bool:
        """Add ``key`` to ``seen``; False if it was already there."""
        with self._lock:
            if key in seen:
                return False
            seen.add(key)
            return True

    def _start_tasks(self, roots: Iterable[Path]) -> tuple[list[_Task], list[DiscoveredSource]]:
        tasks: list[_Task] = []
        sources: list[DiscoveredSource] = []
        for root in roots:
            root = Path(root).expanduser().absolute()
            try:
                st = root.stat()
            except OSError as e:
                self._skip(root, e.strerror or str(e))
                continue
            if not stat.S_ISDIR(st.st_mode):
                if stat.S_ISREG(st.st_mode) and self._claim(self._emitted, (st.st_dev, st.st_ino)):
                    sources.append(source_for_path(root, self.registry))
                continue

            starts = self.registry.tool_roots(root) if self.config.targeted else []
            if not starts:
                starts = [root]
            elif root not in starts:
                # Top-level files of the root itself (e.g. ~/.aider.chat.history.md)
                tasks.append(_Task(root, 0, frozenset(), descend=False))
            for start in starts:
                try:
                    start_st = start.stat()
                except OSError as e:
                    self._skip(start, e.strerror or str(e))
                    continue
                key = (start_st.st_dev, start_st.st_ino)
                if self._claim(self._visited, key):
                    depth = len(start.relative_to(root).parts) if start != root else 0
                    tasks.append(_Task(start, depth, frozenset([key])))
        return tasks, sources

    def _list(self, path: Path) -> list[os.DirEntry]:
        limit = self.config.max_dir_entries
        try:
            with os.scandir(path) as it:
                entries = []
                for entry in it:
                    entries.append(entry)
                    if len(entries) > limit and not self.registry.in_tool_region(path):
                        raise DiscoveryError(path, f"more than {limit} entries")
                return entries
        except OSError as e:
            raise DiscoveryError(path, e.strerror or str(e)) from e

    def _visit(self, task: _Task) -> tuple[list[DiscoveredSource], list[_Task]]:
        """List one directory. Never raises; problems become diagnostics."""
        try:
            return self._walk_dir(task)
        except DiscoveryError as e:
            self._skip(e.path, e.reason)
        except Exception as e:
            logger.exception("Unexpected error listing %s", task.path)
            self._skip(task.path, f"{type(e).__name__}: {e}")
        return [], []

    def _walk_dir(self, task: _Task) -> tuple[list[DiscoveredSource], list[_Task]]:
        sources: list[DiscoveredSource] = []
        children: list[_Task] = []
        follow = self.config.follow_symlinks
        excluded = self.config.excluded_dirs

        for entry in self._list(task.path):
            if self.cancel_event.is_set():
                break
            path = Path(entry.path)
            try:
                is_link = entry.is_symlink()
                if is_link and not follow:
                    continue
                st = entry.stat(follow_symlinks=True)
            except OSError as e:
                if entry.is_symlink():
                    logger.debug("Dangling symlink %s: %s", path, e)
                else:
                    self._skip(path, e.strerror or str(e))
                continue

            key = (st.st_dev, st.st_ino)
            if stat.S_ISDIR(st.st_mode):
                if not task.descend or entry.name in excluded:
                    continue
                if key in task.ancestors:
                    self._skip(path, "symlink cycle")
                    continue
                found = self.registry.match(path, SourceKind.DIRECTORY)
                if found is not None:
                    if self._claim(self._emitted, key):
                        sources.append(DiscoveredSource(
                            tool=found[0],
                            path=path,
                            size_bytes=_directory_size(path),
                            mtime=_mtime(st),
                            kind=SourceKind.DIRECTORY,
                        ))
                    continue
                if not self._claim(self._visited, key):
                    logger.debug("Already visited %s", path)
                    continue
                if task.depth + 1 > self.config.max_depth:
                    self._skip(path, f"deeper than {self.config.max_depth} levels")
                    continue
                children.append(_Task(path, task.depth + 1, task.ancestors | {key}))
                continue

            found = self.registry.match(path, SourceKind.FILE)
            if found is None:
                continue
            if not stat.S_ISREG(st.st_mode):
                self._skip(path, "not a regular file")
                continue
            if self._claim(self._emitted, key):
                sources.append(DiscoveredSource(
                    tool=found[0], path=path, size_bytes=st.st_size, mtime=_mtime(st),
                ))
        return sources, children

    def scan(self, roots: Optional[Iterable[Path]] = None) -> Iterator[DiscoveredSource]:
        """Lazily yield sources found under ``roots`` (default: configured roots)."""
        with self._lock:
            self._visited = set()
            self._emitted = set()
        tasks, direct = self._start_tasks(self.config.roots if roots is None else roots)
        yield from direct

        executor = ThreadPoolExecutor(
            max_workers=self.config.discovery_workers, thread_name_prefix="discovery"
        )
        pending: set[Future] = set()
        try:
            for task in tasks:
                pending.add(executor.submit(self._visit, task))
            while pending:
                if self.cancel_event.is_set():
                    logger.debug("Discovery cancelled with %d listings pending", len(pending))
                    break
                done, pending = wait(pending, timeout=0.5, return_when=FIRST_COMPLETED)
                for future in done:
                    sources, children = future.result()
                    for child in children:
                        pending.add(executor.submit(self._visit, child))
                    yield from sources
        finally:
            for future in pending:
                future.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
