"""
Program normalization helpers.

Turns loosely-typed provider values (dates in several encodings, duration
strings, episode markers, genre lists) into validated Program objects with
deterministic ids.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError

from epg_core.normalizer.schemas import Credits, EpisodeInfo, Program, ensure_utc
from epg_core.utils.exceptions import DataNormalizationError


DEFAULT_PROGRAM_DURATION = timedelta(minutes=30)
MAX_TEXT_LENGTH = 500

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_XMLTV_DATE_RE = re.compile(r"^(\d{14})(?:\s*([+-]\d{4}))?$")
_SEASON_EPISODE_RE = re.compile(r"S(\d+)\s*E(\d+)", re.IGNORECASE)
_DOTTED_EPISODE_RE = re.compile(r"^(\d+)\.(\d+)")


class ProgramTransformer:
    """
    Normalize raw provider fields into Program objects.

    Example:
        >>> start = ProgramTransformer.normalize_timestamp("2024-12-25T14:00:00Z")
        >>> program = ProgramTransformer.build_program("canal7.ar", "Noticiero", start)
        >>> program.duration
        30
    """

    TITLE_FIELDS = ["title", "name", "programme"]
    DESCRIPTION_FIELDS = ["description", "desc", "summary"]
    START_FIELDS = ["startTime", "start", "starttime", "time"]
    END_FIELDS = ["endTime", "end", "endtime", "stop"]
    GENRE_FIELDS = ["genre", "category", "genres"]
    RATING_FIELDS = ["rating", "ageRating"]
    CREDITS_FIELDS = ["credits", "cast"]

    @staticmethod
    def string_hash(text: str) -> str:
        """32-bit rolling hash (h * 31 + c) rendered in base 36."""
        h = 0
        for char in text:
            h = (h * 31 + ord(char)) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
        h = abs(h)

        if h == 0:
            return "0"
        digits = []
        while h:
            h, rem = divmod(h, 36)
            digits.append(_BASE36_DIGITS[rem])
        return "".join(reversed(digits))

    @staticmethod
    def make_program_id(channel_id: str, start: datetime, title: str) -> str:
        """Deterministic program id so re-fetches are idempotent."""
        timestamp_ms = int(ensure_utc(start).timestamp() * 1000)
        return f"{channel_id}_{timestamp_ms}_{ProgramTransformer.string_hash(title)}"

    @staticmethod
    def clean_text(text: Optional[str], max_length: int = MAX_TEXT_LENGTH) -> Optional[str]:
        """Collapse whitespace and truncate; returns None for blank input."""
        if text is None:
            return None
        cleaned = re.sub(r"\s+", " ", str(text)).strip()
        if not cleaned:
            return None
        return cleaned[:max_length]

    @staticmethod
    def slugify_channel(name: str) -> str:
        """Channel key derived from a display name (lowercase, underscores)."""
        slug = re.sub(r"[^a-z0-9]", "_", name.lower())
        slug = re.sub(r"_+", "_", slug)
        return slug.strip("_")

    @staticmethod
    def parse_xmltv_date(value: str) -> datetime:
        """
        Parse an XMLTV timestamp ``YYYYMMDDHHMMSS +HHMM``.

        A missing offset is taken as UTC.

        Raises:
            DataNormalizationError: If the value does not follow the format
        """
        match = _XMLTV_DATE_RE.match((value or "").strip())
        if not match:
            raise DataNormalizationError(
                "Invalid XMLTV date", source="xmltv", field="date", value=value
            )

        digits, offset = match.groups()
        try:
            parsed = datetime.strptime(digits, "%Y%m%d%H%M%S")
        except ValueError as e:
            raise DataNormalizationError(
                "Invalid XMLTV date", source="xmltv", field="date", value=value
            ) from e

        if offset:
            sign = 1 if offset[0] == "+" else -1
            delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5]))
            parsed = parsed.replace(tzinfo=timezone(sign * delta))
        return ensure_utc(parsed)

    @staticmethod
    def normalize_timestamp(ts: Any) -> datetime:
        """
        Normalize various timestamp formats to an aware UTC datetime.

        Args:
            ts: datetime, epoch number (seconds below 1e10, milliseconds
                otherwise), numeric string, XMLTV string or ISO string

        Raises:
            DataNormalizationError: If timestamp cannot be parsed
        """
        if ts is None or ts == "":
            raise DataNormalizationError("Missing timestamp", field="timestamp")

        if isinstance(ts, datetime):
            return ensure_utc(ts)

        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            try:
                seconds = ts if ts < 1e10 else ts / 1000
                return datetime.fromtimestamp(seconds, tz=timezone.utc)
            except (ValueError, OSError, OverflowError) as e:
                raise DataNormalizationError(
                    "Invalid epoch timestamp", field="timestamp", value=ts
                ) from e

        if isinstance(ts, str):
            text = ts.strip()

            if _XMLTV_DATE_RE.match(text):
                return ProgramTransformer.parse_xmltv_date(text)

            if re.fullmatch(r"\d+(\.\d+)?", text):
                return ProgramTransformer.normalize_timestamp(float(text))

            try:
                return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
            except ValueError:
                pass

            for fmt in ["%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d/%m/%Y %H:%M", "%Y-%m-%d"]:
                try:
                    return ensure_utc(datetime.strptime(text, fmt))
                except ValueError:
                    continue

            raise DataNormalizationError("Unable to parse timestamp", field="timestamp", value=ts)

        raise DataNormalizationError(f"Unsupported timestamp type: {type(ts).__name__}")

    @staticmethod
    def parse_duration(value: Any) -> Optional[timedelta]:
        """Numbers are minutes; strings may be ``HH:MM:SS``, ``HH:MM`` or minutes."""
        if value is None or value == "" or isinstance(value, bool):
            return None

        if isinstance(value, (int, float)):
            return timedelta(minutes=value) if value > 0 else None

        if isinstance(value, str):
            text = value.strip()
            parts = text.split(":")
            if len(parts) in (2, 3) and all(p.isdigit() for p in parts):
                hours, minutes = int(parts[0]), int(parts[1])
                seconds = int(parts[2]) if len(parts) == 3 else 0
                duration = timedelta(hours=hours, minutes=minutes, seconds=seconds)
                return duration or None
            try:
                return ProgramTransformer.parse_duration(float(text))
            except ValueError:
                return None

        return None

    @staticmethod
    def parse_episode(value: Any) -> Optional[EpisodeInfo]:
        """Episode info from a mapping, ``S01E05`` or ``1.5`` notation."""
        if not value:
            return None

        if isinstance(value, dict):
            try:
                return EpisodeInfo(
                    season=value.get("season"),
                    episode=value.get("episode") or value.get("number"),
                    title=value.get("title"),
                )
            except ValidationError:
                return None

        text = str(value).strip()
        match = _SEASON_EPISODE_RE.search(text)
        if match:
            return EpisodeInfo(season=int(match.group(1)), episode=int(match.group(2)))

        match = _DOTTED_EPISODE_RE.match(text)
        if match:
            return EpisodeInfo(season=int(match.group(1)), episode=int(match.group(2)))

        return None

    @staticmethod
    def normalize_genres(value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            items = [part for part in re.split(r"[,;/|]", value)]
        elif isinstance(value, (list, tuple)):
            items = [str(item) for item in value if item]
        else:
            items = [str(value)]

        genres = []
        for item in items:
            cleaned = ProgramTransformer.clean_text(item, max_length=100)
            if cleaned and cleaned not in genres:
                genres.append(cleaned)
        return genres

    @staticmethod
    def normalize_credits(value: Any) -> Optional[Credits]:
        """Credits from a role mapping or a plain cast list (treated as actors)."""
        if not value:
            return None

        def as_list(item: Any) -> list[str]:
            if not item:
                return []
            if isinstance(item, str):
                return [item]
            return [str(i) for i in item if i]

        if isinstance(value, dict):
            credits = Credits(
                director=as_list(value.get("director") or value.get("directors")),
                actor=as_list(value.get("actor") or value.get("actors") or value.get("cast")),
                writer=as_list(value.get("writer") or value.get("writers")),
            )
        else:
            credits = Credits(actor=as_list(value))

        return None if credits.is_empty() else credits

    @staticmethod
    def build_program(
        channel_id: str,
        title: Optional[str],
        start: Any,
        end: Any = None,
        duration: Optional[timedelta] = None,
        default_title: str = "Untitled",
        **fields: Any,
    ) -> Program:
        """
        Build a validated Program, deriving its id and missing end time.

        Args:
            channel_id: Channel key
            title: Raw title (cleaned; ``default_title`` when blank)
            start: Start time in any format normalize_timestamp accepts
            end: Optional end time
            duration: Used when ``end`` is missing (default 30 minutes)
            **fields: description, genre, rating, episode, credits, source

        Raises:
            DataNormalizationError: If times are invalid or the program is inconsistent
        """
        start_dt = ProgramTransformer.normalize_timestamp(start)
        if end is not None and end != "":
            end_dt = ProgramTransformer.normalize_timestamp(end)
        else:
            end_dt = start_dt + (duration or DEFAULT_PROGRAM_DURATION)

        clean_title = ProgramTransformer.clean_text(title) or default_title
        if "description" in fields:
            fields["description"] = ProgramTransformer.clean_text(fields["description"])

        try:
            return Program(
                id=ProgramTransformer.make_program_id(channel_id, start_dt, clean_title),
                channel_id=channel_id,
                title=clean_title,
                start=start_dt,
                end=end_dt,
                **fields,
            )
        except ValidationError as e:
            raise DataNormalizationError(
                f"Invalid program: {e.errors()[0]['msg']}",
                source=fields.get("source"),
                value=clean_title,
            ) from e

    @staticmethod
    def _extract_field(data: dict[str, Any], field_names: list[str]) -> Optional[Any]:
        """
        Extract field from data dictionary trying multiple field names.

        Returns:
            Optional[Any]: First non-empty value or None if not found
        """
        for field_name in field_names:
            if field_name in data and data[field_name] not in (None, ""):
                return data[field_name]
        return None
