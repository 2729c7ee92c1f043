"""Exception types for discovery, parsing and configuration."""

from pathlib import Path
from typing import Union


class AgentLogsError(Exception):
    """Base class for all agent-logs errors."""


class ConfigurationError(AgentLogsError):
    """Raised before a run starts when the configuration cannot work at all."""


class DiscoveryError(AgentLogsError):
    """Raised when a path cannot be traversed during discovery.

    Never escapes the scanner: it is always turned into a skipped-source
    diagnostic.
    """

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = str(path)
        self.reason = reason


class ParseError(AgentLogsError):
    """Raised when a source cannot be parsed."""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = str(path)
        self.reason = reason
