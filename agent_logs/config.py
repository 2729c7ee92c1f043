"""Run configuration, with defaults taken from AGENT_LOGS_* environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError
from .models import AiTool, ParseLimits


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


DEFAULT_WORKERS = min(8, os.cpu_count() or 1)

MAX_LINES = _env_int("AGENT_LOGS_MAX_LINES", 200_000)
GENERIC_MAX_LINES = _env_int("AGENT_LOGS_GENERIC_MAX_LINES", 10_000)
MAX_BYTES = _env_int("AGENT_LOGS_MAX_BYTES", 256 * 1024 * 1024)
MAX_RESIDENT_BYTES = _env_int("AGENT_LOGS_MAX_RESIDENT_BYTES", 64 * 1024 * 1024)
PARSE_TIMEOUT = _env_float("AGENT_LOGS_PARSE_TIMEOUT", None)

MAX_DEPTH = _env_int("AGENT_LOGS_MAX_DEPTH", 12)
MAX_DIR_ENTRIES = _env_int("AGENT_LOGS_MAX_DIR_ENTRIES", 5000)
DISCOVERY_WORKERS = _env_int("AGENT_LOGS_DISCOVERY_WORKERS", DEFAULT_WORKERS)
PARSE_WORKERS = _env_int("AGENT_LOGS_PARSE_WORKERS", DEFAULT_WORKERS)
FOLLOW_SYMLINKS = _env_bool("AGENT_LOGS_FOLLOW_SYMLINKS", True)
TARGETED = _env_bool("AGENT_LOGS_TARGETED", True)
TOOL_PRECEDENCE = _env_list("AGENT_LOGS_TOOL_PRECEDENCE")

# Directory names never worth descending into
EXCLUDED_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache", "site-packages", "CachedData",
    "CachedExtensionVSIXs", "GPUCache", "Code Cache",
})


def default_limits() -> ParseLimits:
    return ParseLimits(
        max_lines=MAX_LINES,
        generic_max_lines=GENERIC_MAX_LINES,
        max_bytes=MAX_BYTES,
        max_resident_bytes=MAX_RESIDENT_BYTES,
        timeout_seconds=PARSE_TIMEOUT,
    )


@dataclass
class ScanConfig:
    """Everything one discovery + parse run needs to know."""

    roots: list[Path] = field(default_factory=lambda: [Path.home()])
    max_depth: int = MAX_DEPTH
    max_dir_entries: int = MAX_DIR_ENTRIES
    discovery_workers: int = DISCOVERY_WORKERS
    parse_workers: int = PARSE_WORKERS
    follow_symlinks: bool = FOLLOW_SYMLINKS
    # Walk only known tool directories under each root when any exist
    targeted: bool = TARGETED
    excluded_dirs: frozenset[str] = EXCLUDED_DIRS
    tool_precedence: list[str] = field(default_factory=lambda: list(TOOL_PRECEDENCE))
    limits: ParseLimits = field(default_factory=default_limits)

    @classmethod
    def from_env(cls, roots: Optional[list[Path]] = None) -> "ScanConfig":
        config = cls()
        if roots:
            config.roots = [Path(r).expanduser() for r in roots]
        return config

    def validate(self) -> "ScanConfig":
        """Raise ConfigurationError for settings no run could work with."""
        for name in ("max_depth", "max_dir_entries", "discovery_workers", "parse_workers"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be positive")
        limits = self.limits
        for name in ("max_lines", "generic_max_lines", "max_bytes", "max_resident_bytes"):
            if getattr(limits, name) < 1:
                raise ConfigurationError(f"limits.{name} must be positive")
        if limits.timeout_seconds is not None and limits.timeout_seconds <= 0:
            raise ConfigurationError("limits.timeout_seconds must be positive")
        for name in self.tool_precedence:
            try:
                AiTool.from_name(name)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        return self
