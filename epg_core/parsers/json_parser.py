"""
JSON EPG Parser.

Accepts the JSON guide layouts seen in the wild:

    [{"id": "ch1", "programs": [...]}, ...]            channel array
    {"channels": {"ch1": {"programs": [...]}}}         channels object (or array)
    {"epg": <any of the above>}                        wrapped
    {"ch1": [...], "ch2": {"programs": [...]}}         direct mapping
"""

import logging
from typing import Any

import orjson

from epg_core.normalizer.schemas import Program
from epg_core.normalizer.transformer import ProgramTransformer
from epg_core.parsers.base import RECORD_ERRORS, BaseEPGParser
from epg_core.utils.exceptions import ParsingError

logger = logging.getLogger(__name__)

T = ProgramTransformer


class JSONEPGParser(BaseEPGParser):
    """Parser for JSON guide payloads."""

    name = "json"

    CHANNEL_ID_FIELDS = ["id", "channelId", "name"]
    PROGRAM_LIST_FIELDS = ["programs", "schedule", "epg"]

    def parse(self, raw: str) -> dict[str, list[Program]]:
        """
        Parse a JSON payload.

        Raises:
            ParsingError: If the payload is not JSON or not an object/array
        """
        if not raw or not isinstance(raw, str):
            raise ParsingError("Empty JSON payload", parser=self.name)

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise ParsingError(f"Invalid JSON: {e}", parser=self.name, raw_data=raw) from e

        if not isinstance(data, (dict, list)):
            raise ParsingError("JSON guide must be an object or an array", parser=self.name, raw_data=raw)

        self._skipped = 0
        programs_map: dict[str, list[Program]] = {}
        self._parse_node(data, programs_map)

        result = self._sorted(programs_map)
        logger.debug(
            f"JSON EPG parsed: {len(result)} channels, {sum(len(p) for p in result.values())} programs",
            extra={"skipped": self._skipped},
        )
        return result

    def _parse_node(self, data: Any, programs_map: dict[str, list[Program]]) -> None:
        if isinstance(data, list):
            self._parse_channel_array(data, programs_map)
        elif isinstance(data, dict):
            if "channels" in data:
                self._parse_node_or_mapping(data["channels"], programs_map)
            elif "epg" in data:
                self._parse_node_or_mapping(data["epg"], programs_map)
            else:
                self._parse_channel_mapping(data, programs_map)

    def _parse_node_or_mapping(self, data: Any, programs_map: dict[str, list[Program]]) -> None:
        if isinstance(data, list):
            self._parse_channel_array(data, programs_map)
        elif isinstance(data, dict):
            self._parse_channel_mapping(data, programs_map)

    def _parse_channel_array(self, channels: list, programs_map: dict[str, list[Program]]) -> None:
        for channel in channels:
            if not isinstance(channel, dict):
                continue
            channel_id = T._extract_field(channel, self.CHANNEL_ID_FIELDS)
            if not channel_id:
                continue
            items = T._extract_field(channel, self.PROGRAM_LIST_FIELDS) or []
            self._parse_programs(str(channel_id), items, programs_map)

    def _parse_channel_mapping(self, channels: dict, programs_map: dict[str, list[Program]]) -> None:
        for channel_id, channel_data in channels.items():
            if isinstance(channel_data, list):
                items = channel_data
            elif isinstance(channel_data, dict):
                items = T._extract_field(channel_data, self.PROGRAM_LIST_FIELDS) or []
            else:
                continue
            self._parse_programs(str(channel_id), items, programs_map)

    def _parse_programs(self, channel_id: str, items: Any, programs_map: dict[str, list[Program]]) -> None:
        if not isinstance(items, list):
            return
        for item in items:
            if not isinstance(item, dict):
                self._skipped += 1
                continue
            try:
                program = self._parse_program(channel_id, item)
            except RECORD_ERRORS as e:
                program = self._skip(channel_id, e)
            self._add_program(programs_map, program)

    def _parse_program(self, channel_id: str, item: dict[str, Any]):
        start = T._extract_field(item, T.START_FIELDS)
        if start is None:
            self._skipped += 1
            return None

        return self._build(
            channel_id,
            T._extract_field(item, T.TITLE_FIELDS),
            start,
            end=T._extract_field(item, T.END_FIELDS),
            duration=T.parse_duration(item.get("duration")),
            description=T._extract_field(item, T.DESCRIPTION_FIELDS),
            genre=T.normalize_genres(T._extract_field(item, T.GENRE_FIELDS)),
            rating=self._parse_rating(T._extract_field(item, T.RATING_FIELDS)),
            episode=T.parse_episode(item.get("episode")),
            credits=T.normalize_credits(T._extract_field(item, T.CREDITS_FIELDS)),
        )

    @staticmethod
    def _parse_rating(value: Any):
        if isinstance(value, dict):
            value = value.get("value") or value.get("rating")
        return T.clean_text(str(value)) if value not in (None, "") else None
