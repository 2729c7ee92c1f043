"""Discover, parse and sanitize AI coding assistant logs."""

__version__ = "0.1.0"

from .config import ScanConfig  # noqa: E402
from .errors import AgentLogsError, ConfigurationError, DiscoveryError, ParseError  # noqa: E402
from .models import AiTool, DiscoveredSource, Event, ParseLimits, Role, Session  # noqa: E402
from .pipeline import Pipeline, PipelineReport  # noqa: E402
from .sanitizer import SanitizedEvent, SanitizedSession, Sanitizer, sanitize  # noqa: E402

__all__ = [
    "AgentLogsError",
    "AiTool",
    "ConfigurationError",
    "DiscoveredSource",
    "DiscoveryError",
    "Event",
    "ParseError",
    "ParseLimits",
    "Pipeline",
    "PipelineReport",
    "Role",
    "SanitizedEvent",
    "SanitizedSession",
    "Sanitizer",
    "ScanConfig",
    "Session",
    "sanitize",
]
