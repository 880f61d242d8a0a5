"""
Embedded EPG Parser.

Extracts guide data carried inside M3U playlists:

    #EXTINF:-1 tvg-id="canal7.ar" tvg-url="http://..." tvg-shift="0",Canal 7
    #EXTPROGRAM:start="2024-12-25 14:00" end="2024-12-25 15:30" title="Noticiero" desc="..." genre="News"
    http://stream.example/canal7.m3u8
    # Canal 7: Noticiero (14:00-15:30) - Evening news
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from epg_core.normalizer.schemas import Program
from epg_core.normalizer.transformer import ProgramTransformer
from epg_core.parsers.base import RECORD_ERRORS, BaseEPGParser
from epg_core.utils.exceptions import ParsingError

logger = logging.getLogger(__name__)

_EXTINF_RE = re.compile(r"^#EXTINF:([^,]*),(.*)$")
_ATTRIBUTE_RE = re.compile(r'([\w-]+)="([^"]*)"')
_COMMENT_PROGRAM_RE = re.compile(
    r"^#\s*([^:]+):\s*([^(]+?)\s*\((\d{1,2}:\d{2})-(\d{1,2}:\d{2})\)\s*-?\s*(.*)$"
)
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

PLACEHOLDER_DURATION = timedelta(hours=1)


@dataclass
class PlaylistChannel:
    """Channel attributes read from an #EXTINF line."""

    id: str
    name: str
    logo: Optional[str] = None
    group: Optional[str] = None
    epg_url: Optional[str] = None
    time_shift: int = 0


class EmbeddedEPGParser(BaseEPGParser):
    """Parser for guide data embedded in M3U playlists."""

    name = "embedded"

    def __init__(self):
        super().__init__()
        self.channels: dict[str, PlaylistChannel] = {}

    def parse(self, raw: str) -> dict[str, list[Program]]:
        """
        Parse an M3U playlist.

        Raises:
            ParsingError: If the payload is empty
        """
        if not raw or not isinstance(raw, str) or not raw.strip():
            raise ParsingError("Empty playlist payload", parser=self.name)

        self._skipped = 0
        self.channels = {}
        programs_map: dict[str, list[Program]] = {}
        current: Optional[PlaylistChannel] = None

        for line in (line.strip() for line in raw.splitlines()):
            if not line:
                continue

            if line.startswith("#EXTINF:"):
                current = self._parse_channel_info(line)
                if current:
                    self.channels[current.id] = current
            elif line.startswith("#EXTEPG:") or line.startswith("#EPG:"):
                if current:
                    self._apply_epg_line(current, line)
            elif line.startswith("#EXTPROGRAM:"):
                if current:
                    self._add_program(programs_map, self._parse_program_line(current, line))
            elif line.startswith("#"):
                if not line.startswith("#EXT"):
                    self._add_program(programs_map, self._parse_comment(line))
            elif current:
                # Stream URL closes the current channel block
                if current.epg_url and current.id not in programs_map:
                    self._add_program(programs_map, self._placeholder(current))
                current = None

        result = self._sorted(programs_map)
        logger.debug(
            f"Embedded EPG parsed: {len(self.channels)} channels, {len(result)} with programs",
            extra={"skipped": self._skipped},
        )
        return result

    def _parse_channel_info(self, line: str) -> Optional[PlaylistChannel]:
        match = _EXTINF_RE.match(line)
        if not match:
            self._skipped += 1
            return None

        attributes = {key.lower(): value for key, value in _ATTRIBUTE_RE.findall(match.group(1))}
        name = match.group(2).strip()

        channel_id = attributes.get("tvg-id") or attributes.get("tvg-name")
        if not channel_id:
            channel_id = ProgramTransformer.slugify_channel(name)
        if not channel_id:
            self._skipped += 1
            return None

        try:
            shift = int(attributes.get("tvg-shift") or 0)
        except ValueError:
            shift = 0

        return PlaylistChannel(
            id=channel_id,
            name=name or channel_id,
            logo=attributes.get("tvg-logo"),
            group=attributes.get("group-title"),
            epg_url=attributes.get("tvg-url") or attributes.get("epg-url"),
            time_shift=shift,
        )

    @staticmethod
    def _apply_epg_line(channel: PlaylistChannel, line: str) -> None:
        attributes = dict(_ATTRIBUTE_RE.findall(line))
        if attributes.get("url"):
            channel.epg_url = attributes["url"]
        try:
            channel.time_shift = int(attributes.get("shift") or channel.time_shift)
        except ValueError:
            pass

    def _parse_program_line(self, channel: PlaylistChannel, line: str) -> Optional[Program]:
        attributes = dict(_ATTRIBUTE_RE.findall(line))
        if not attributes.get("start") or not attributes.get("title"):
            self._skipped += 1
            return None

        try:
            shift = timedelta(hours=channel.time_shift)
            start = ProgramTransformer.normalize_timestamp(attributes["start"]) + shift
            end = (
                ProgramTransformer.normalize_timestamp(attributes["end"]) + shift
                if attributes.get("end")
                else None
            )
        except RECORD_ERRORS as e:
            logger.debug(f"Bad #EXTPROGRAM times on {channel.id}: {e}")
            self._skipped += 1
            return None

        return self._build(
            channel.id,
            attributes["title"],
            start,
            end=end,
            description=attributes.get("desc"),
            genre=ProgramTransformer.normalize_genres(attributes.get("genre")),
        )

    def _parse_comment(self, line: str) -> Optional[Program]:
        match = _COMMENT_PROGRAM_RE.match(line)
        if not match:
            return None

        channel_name, title, start_clock, end_clock, description = match.groups()
        today = datetime.now().astimezone()
        start = self._time_today(start_clock, today)
        end = self._time_today(end_clock, today)
        if start is None or end is None or start >= end:
            self._skipped += 1
            return None

        return self._build(
            ProgramTransformer.slugify_channel(channel_name),
            title,
            start,
            end=end,
            description=description or None,
        )

    def _placeholder(self, channel: PlaylistChannel) -> Optional[Program]:
        start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
        return self._build(
            channel.id,
            "Programming available",
            start,
            end=start + PLACEHOLDER_DURATION,
            description=f"Guide available at {channel.epg_url}",
        )

    @staticmethod
    def _time_today(clock: str, today: datetime) -> Optional[datetime]:
        match = _CLOCK_RE.match(clock.strip())
        if not match:
            return None
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None
        return today.replace(hour=hours, minute=minutes, second=0, microsecond=0)
