"""
Data schemas for normalized program guide data.

Pydantic models providing validation and serialization for programs
coming from heterogeneous EPG providers, plus the cache entry record
shared by all cache tiers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

import orjson
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from epg_core.utils.exceptions import DataNormalizationError


# Size assumed per program when a list cannot be serialized for measuring
FALLBACK_PROGRAM_SIZE = 500


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EpisodeInfo(BaseModel):
    """Season/episode numbering of a program."""

    model_config = ConfigDict(frozen=True)

    season: Optional[int] = Field(None, description="Season number (1-based)", ge=0)
    episode: Optional[int] = Field(None, description="Episode number (1-based)", ge=0)
    title: Optional[str] = Field(None, description="Episode title")


class Credits(BaseModel):
    """People credited on a program."""

    model_config = ConfigDict(frozen=True)

    director: list[str] = Field(default_factory=list)
    actor: list[str] = Field(default_factory=list)
    writer: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.director or self.actor or self.writer)


class Program(BaseModel):
    """
    One scheduled broadcast on a channel.

    Immutable once constructed. The duration is always derived from the
    start and end times and never read from input.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "canal7.ar_1735135200000_1x2k9f",
                "channel_id": "canal7.ar",
                "title": "Noticiero Central",
                "start": "2024-12-25T14:00:00+00:00",
                "end": "2024-12-25T15:30:00+00:00",
                "genre": ["News"],
                "source": "xmltv",
            }
        },
    )

    id: str = Field(..., description="Deterministic id from channel, start and title")
    channel_id: str = Field(..., description="Channel key the program belongs to")
    title: str = Field(..., description="Program title")
    start: datetime = Field(..., description="Start time (UTC)")
    end: datetime = Field(..., description="End time (UTC)")

    description: Optional[str] = Field(None, description="Program synopsis")
    genre: list[str] = Field(default_factory=list, description="Genre tags")
    rating: Optional[str] = Field(None, description="Content rating")
    episode: Optional[EpisodeInfo] = Field(None, description="Episode numbering")
    credits: Optional[Credits] = Field(None, description="Director/actor/writer lists")
    source: Optional[str] = Field(None, description="Parser that produced the program")

    @field_validator("channel_id", "title")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Ensure identifiers and titles are non-empty."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("start", "end")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Store all times as aware UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_time_order(self) -> "Program":
        """Reject programs that do not end after they start."""
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @computed_field
    @property
    def duration(self) -> int:
        """Length in minutes."""
        return round((self.end - self.start).total_seconds() / 60)

    def overlaps(self, range_start: datetime, range_end: datetime) -> bool:
        """True when the program interval intersects [range_start, range_end)."""
        return self.start < ensure_utc(range_end) and self.end > ensure_utc(range_start)

    def is_airing(self, at: Optional[datetime] = None) -> bool:
        at = ensure_utc(at) if at else datetime.now(timezone.utc)
        return self.start <= at < self.end

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Program":
        """Create a Program from a dictionary produced by to_dict()."""
        return cls.model_validate(data)


class ChannelRef(BaseModel):
    """
    Reference to a channel as the application knows it.

    The channel key is a plain string: the provider id when present,
    otherwise the tvg id, otherwise the display name. No other matching
    is attempted.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: Optional[str] = None
    url: Optional[str] = None
    tvg_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_identity(self) -> "ChannelRef":
        if not (self.id or self.tvg_id or self.name):
            raise ValueError("channel needs an id, tvg_id or name")
        return self

    @property
    def key(self) -> str:
        return self.id or self.tvg_id or self.name

    @classmethod
    def coerce(cls, value: Union["ChannelRef", str, dict[str, Any]]) -> "ChannelRef":
        """Accept a ChannelRef, a bare channel key, or a mapping."""
        if isinstance(value, ChannelRef):
            return value
        if isinstance(value, str):
            return cls(id=value)
        if isinstance(value, dict):
            return cls.model_validate(value)
        raise TypeError(f"Cannot build ChannelRef from {type(value).__name__}")


class TimeRange(BaseModel):
    """Half-open time window used to filter programs."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRange":
        if self.start >= self.end:
            raise ValueError("range start must be before range end")
        return self

    @classmethod
    def next_hours(cls, hours: float = 24, start: Optional[datetime] = None) -> "TimeRange":
        """Window from ``start`` (default now) spanning ``hours``."""
        start = ensure_utc(start) if start else datetime.now(timezone.utc)
        return cls(start=start, end=start + timedelta(hours=hours))

    def filter(self, programs: list[Program]) -> list[Program]:
        """Programs whose interval overlaps this window."""
        return [p for p in programs if p.overlaps(self.start, self.end)]


def estimate_size(programs: list[Program]) -> int:
    """Approximate serialized byte size of a program list."""
    try:
        return len(orjson.dumps([p.to_dict() for p in programs]))
    except (TypeError, orjson.JSONEncodeError):
        return len(programs) * FALLBACK_PROGRAM_SIZE


@dataclass
class CacheEntry:
    """
    A channel's program list plus cache bookkeeping.

    Created or replaced wholesale on each store; the same shape is
    persisted by the medium and durable tiers.
    """

    channel_id: str
    programs: list[Program]
    last_updated: datetime
    expires_at: datetime
    size: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if self.expires_at <= self.last_updated:
            raise ValueError("expires_at must be after last_updated")

    @classmethod
    def create(
        cls,
        channel_id: str,
        programs: list[Program],
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> "CacheEntry":
        """Build a fresh entry expiring ``ttl_seconds`` after ``now``."""
        now = now or datetime.now(timezone.utc)
        return cls(
            channel_id=channel_id,
            programs=list(programs),
            last_updated=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            size=estimate_size(programs),
        )

    def hours_since_update(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.last_updated).total_seconds() / 3600

    def to_record(self) -> dict[str, Any]:
        """Serializable record with ISO-formatted timestamps."""
        return {
            "channel_id": self.channel_id,
            "programs": [p.to_dict() for p in self.programs],
            "last_updated": self.last_updated.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "size": self.size,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "CacheEntry":
        """
        Rebuild an entry from a persisted record.

        Raises:
            DataNormalizationError: If the record is corrupt or incomplete
        """
        try:
            return cls(
                channel_id=record["channel_id"],
                programs=[Program.from_dict(p) for p in record["programs"]],
                last_updated=ensure_utc(datetime.fromisoformat(record["last_updated"])),
                expires_at=ensure_utc(datetime.fromisoformat(record["expires_at"])),
                size=int(record.get("size") or 0),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise DataNormalizationError(
                f"Corrupt cache record: {e}",
                source="cache",
                value=record.get("channel_id") if isinstance(record, dict) else record,
            ) from e
