"""Parser registry and dispatch."""

import logging
from typing import Optional, Sequence, Type

from ..errors import ParseError
from ..models import DiscoveredSource, ParseLimits, ParseResult
from .base import SourceParser

logger = logging.getLogger(__name__)

# Registry of all tool parsers, in probe order
_PARSERS: dict[str, Type[SourceParser]] = {}


def register_parser(parser_class: Type[SourceParser]) -> Type[SourceParser]:
    """Decorator to register a parser class."""
    if parser_class.name in _PARSERS:
        raise ValueError(f"Parser {parser_class.name!r} is already registered")
    _PARSERS[parser_class.name] = parser_class
    return parser_class


def get_parser(name: str) -> SourceParser | None:
    """Get an instance of a parser by name."""
    if name == GenericParser.name:
        return GenericParser()
    parser_class = _PARSERS.get(name)
    if parser_class:
        return parser_class()
    return None


def get_all_parsers() -> list[SourceParser]:
    """Get instances of all registered tool parsers (Generic excluded)."""
    return [cls() for cls in _PARSERS.values()]


def _probe(parser: SourceParser, source: DiscoveredSource) -> bool:
    try:
        return bool(parser.can_parse(source))
    except Exception:
        logger.debug("%s.can_parse raised on %s", parser.name, source.path, exc_info=True)
        return False


def select_parser(
    source: DiscoveredSource,
    parsers: Optional[Sequence[SourceParser]] = None,
    fallback: Optional[SourceParser] = None,
) -> SourceParser:
    """Pick exactly one parser for ``source``.

    Parsers serving the discovered tool are probed first, then every other
    parser in registry order, then the fallback.
    """
    if parsers is None:
        parsers = get_all_parsers()
    if fallback is None:
        fallback = GenericParser()
    preferred = [p for p in parsers if p.claims_tool(source.tool)]
    others = [p for p in parsers if not p.claims_tool(source.tool)]
    for parser in preferred + others + [fallback]:
        if _probe(parser, source):
            return parser
    raise ParseError(source.path, "no parser recognises this source")


def parse_source(
    source: DiscoveredSource,
    limits: ParseLimits,
    parsers: Optional[Sequence[SourceParser]] = None,
    fallback: Optional[SourceParser] = None,
) -> ParseResult:
    """Select a parser for ``source`` and run it."""
    parser = select_parser(source, parsers, fallback)
    logger.debug("Parsing %s with %s", source.path, parser.name)
    return parser.parse(source, limits)


# Import parsers to trigger registration
from . import claude_code  # noqa: F401, E402
from . import cline  # noqa: F401, E402
from . import cursor  # noqa: F401, E402
from . import copilot  # noqa: F401, E402
from . import continue_dev  # noqa: F401, E402
from . import aider  # noqa: F401, E402
from . import droid  # noqa: F401, E402
from . import opencode  # noqa: F401, E402
from .generic import GenericParser  # noqa: E402
