"""
XMLTV Parser.

Parses XMLTV guide documents (``<tv>`` root with ``<channel>`` and
``<programme>`` elements) into normalized programs per channel.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup, Tag

from epg_core.normalizer.schemas import Credits, EpisodeInfo, Program
from epg_core.normalizer.transformer import ProgramTransformer
from epg_core.parsers.base import RECORD_ERRORS, BaseEPGParser
from epg_core.utils.exceptions import ParsingError

logger = logging.getLogger(__name__)

_XMLTV_NS_EPISODE_RE = re.compile(r"(\d+)\s*\.\s*(\d+)")


@dataclass
class XMLTVChannel:
    """Channel declared in an XMLTV document."""

    id: str
    name: str
    icon: Optional[str] = None


class XMLTVParser(BaseEPGParser):
    """
    Parser for XMLTV documents.

    Uses BeautifulSoup with the lxml XML backend. Times use the XMLTV
    ``YYYYMMDDHHMMSS +HHMM`` notation; programmes without a stop time
    last 30 minutes.

    Example:
        >>> parser = XMLTVParser()
        >>> programs = parser.parse(xml_text)
        >>> programs["canal7.ar"][0].title
        'Noticiero Central'
    """

    name = "xmltv"

    def __init__(self, features: str = "xml"):
        super().__init__()
        self.features = features
        self.channels: dict[str, XMLTVChannel] = {}

    def parse(self, raw: str) -> dict[str, list[Program]]:
        """
        Parse an XMLTV document.

        Raises:
            ParsingError: If the payload is empty or has no ``<tv>`` root
        """
        if not raw or not isinstance(raw, str):
            raise ParsingError("Empty XMLTV payload", parser=self.name)

        self._skipped = 0
        soup = BeautifulSoup(raw, self.features)
        tv = soup.find("tv")
        if tv is None:
            raise ParsingError("Missing <tv> root element", parser=self.name, raw_data=raw)

        self.channels = self._parse_channels(tv)

        programs_map: dict[str, list[Program]] = {}
        for element in tv.find_all("programme"):
            try:
                program = self._parse_programme(element)
            except RECORD_ERRORS as e:
                program = self._skip(element.get("channel") or "", e)
            self._add_program(programs_map, program)

        result = self._sorted(programs_map)
        logger.debug(
            f"XMLTV parsed: {len(self.channels)} channels, "
            f"{sum(len(p) for p in result.values())} programs",
            extra={"skipped": self._skipped},
        )
        return result

    def parse_channels(self, raw: str) -> dict[str, XMLTVChannel]:
        """Only the channel declarations of a document."""
        soup = BeautifulSoup(raw, self.features)
        tv = soup.find("tv")
        if tv is None:
            raise ParsingError("Missing <tv> root element", parser=self.name, raw_data=raw)
        return self._parse_channels(tv)

    def _parse_channels(self, tv: Tag) -> dict[str, XMLTVChannel]:
        channels = {}
        for element in tv.find_all("channel", recursive=False):
            channel_id = element.get("id")
            if not channel_id:
                continue
            icon = element.find("icon")
            channels[channel_id] = XMLTVChannel(
                id=channel_id,
                name=self._text(element, "display-name") or channel_id,
                icon=icon.get("src") if icon else None,
            )
        return channels

    def _parse_programme(self, element: Tag) -> Optional[Program]:
        channel_id = element.get("channel")
        start = element.get("start")
        if not channel_id or not start:
            self._skipped += 1
            return None

        return self._build(
            channel_id,
            self._text(element, "title"),
            start,
            end=element.get("stop"),
            description=self._text(element, "desc"),
            genre=ProgramTransformer.normalize_genres(
                [c.get_text() for c in element.find_all("category")]
            ),
            rating=self._parse_rating(element),
            episode=self._parse_episode(element),
            credits=self._parse_credits(element),
        )

    @staticmethod
    def _text(element: Tag, name: str) -> Optional[str]:
        child = element.find(name)
        return ProgramTransformer.clean_text(child.get_text()) if child else None

    @staticmethod
    def _parse_episode(element: Tag) -> Optional[EpisodeInfo]:
        episode_num = element.find("episode-num")
        if episode_num is None:
            return None

        text = episode_num.get_text().strip()
        if episode_num.get("system", "xmltv_ns") == "xmltv_ns":
            match = _XMLTV_NS_EPISODE_RE.match(text)
            if match:
                # xmltv_ns numbering is zero-based
                return EpisodeInfo(
                    season=int(match.group(1)) + 1,
                    episode=int(match.group(2)) + 1,
                    title=XMLTVParser._text(element, "sub-title"),
                )
        return ProgramTransformer.parse_episode(text)

    @staticmethod
    def _parse_credits(element: Tag) -> Optional[Credits]:
        credits_el = element.find("credits")
        if credits_el is None:
            return None

        def names(role: str) -> list[str]:
            return [
                ProgramTransformer.clean_text(person.get_text())
                for person in credits_el.find_all(role)
                if ProgramTransformer.clean_text(person.get_text())
            ]

        credits = Credits(director=names("director"), actor=names("actor"), writer=names("writer"))
        return None if credits.is_empty() else credits

    @staticmethod
    def _parse_rating(element: Tag) -> Optional[str]:
        rating = element.find("rating")
        if rating is None:
            return None
        value = rating.find("value")
        return ProgramTransformer.clean_text(value.get_text()) if value else None
