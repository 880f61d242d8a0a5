"""
Parsers Module

Payload parsers turning raw guide text into programs per channel.

Components:
    - BaseEPGParser: Contract shared by all adapters
    - XMLTVParser: XMLTV documents
    - JSONEPGParser: JSON guide layouts
    - EmbeddedEPGParser: Guide data embedded in M3U playlists
    - create_parser: Adapter selection by source type
"""

from .base import BaseEPGParser
from .embedded_parser import EmbeddedEPGParser
from .json_parser import JSONEPGParser
from .xmltv_parser import XMLTVParser

_PARSERS = {
    "xmltv": XMLTVParser,
    "json": JSONEPGParser,
    "embedded": EmbeddedEPGParser,
}


def create_parser(source_type: str) -> BaseEPGParser:
    """
    Create the parser adapter for a source type.

    Args:
        source_type: "xmltv", "json" or "embedded" (or a SourceType member)

    Raises:
        ValueError: If the type has no parser
    """
    key = getattr(source_type, "value", source_type)
    try:
        return _PARSERS[str(key).lower()]()
    except KeyError:
        raise ValueError(f"No parser for source type: {source_type}") from None


__all__ = [
    "BaseEPGParser",
    "XMLTVParser",
    "JSONEPGParser",
    "EmbeddedEPGParser",
    "create_parser",
]
