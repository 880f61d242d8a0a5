"""
Pytest configuration and shared fixtures for EPG Core tests.

Provides:
    - Program factories
    - Sample XMLTV, JSON and M3U payloads
    - Temporary cache tiers and a cache without background jobs
    - Source factories
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from epg_core.normalizer.schemas import Program
from epg_core.normalizer.transformer import ProgramTransformer
from epg_core.orchestrator.cache_manager import CacheManager
from epg_core.orchestrator.source_registry import XMLTVSource
from epg_core.storage import DurableStore, SessionStore


# ========== Program Fixtures ==========


@pytest.fixture
def now() -> datetime:
    """Current UTC time truncated to the minute."""
    return datetime.now(timezone.utc).replace(second=0, microsecond=0)


@pytest.fixture
def make_program(now) -> Callable[..., Program]:
    """
    Factory for valid programs.

    Args (of the returned callable):
        channel_id: Channel key (default "ch1")
        title: Program title
        offset_minutes: Start relative to now
        minutes: Duration
    """

    def _make(
        channel_id: str = "ch1",
        title: str = "Show",
        offset_minutes: int = 0,
        minutes: int = 30,
        start: Optional[datetime] = None,
    ) -> Program:
        start = start or now + timedelta(minutes=offset_minutes)
        return ProgramTransformer.build_program(
            channel_id, title, start, end=start + timedelta(minutes=minutes), source="test"
        )

    return _make


@pytest.fixture
def todays_programs(make_program) -> list[Program]:
    """Three consecutive programs starting now."""
    return [
        make_program(title="Morning News", offset_minutes=0),
        make_program(title="Cooking", offset_minutes=30),
        make_program(title="Documentary", offset_minutes=60, minutes=60),
    ]


@pytest.fixture
def future_programs(make_program) -> list[Program]:
    """Programs three days ahead, outside the current day."""
    return [
        make_program(title="Future Show", offset_minutes=3 * 24 * 60),
        make_program(title="Future Movie", offset_minutes=3 * 24 * 60 + 30, minutes=120),
    ]


# ========== Payload Fixtures ==========


@pytest.fixture
def sample_xmltv() -> str:
    """XMLTV document with two channels and three programmes."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="canal7.ar">
    <display-name>Canal 7</display-name>
    <icon src="http://logos.example/canal7.png"/>
  </channel>
  <channel id="telefe.ar">
    <display-name>Telefe</display-name>
  </channel>
  <programme start="20241225140000 +0000" stop="20241225153000 +0000" channel="canal7.ar">
    <title>Noticiero Central</title>
    <desc>Evening   news</desc>
    <category>News</category>
    <category>Current Affairs</category>
    <rating system="AR"><value>ATP</value></rating>
  </programme>
  <programme start="20241225120000 +0000" stop="20241225140000 +0000" channel="canal7.ar">
    <title>Matinee</title>
    <sub-title>Pilot</sub-title>
    <episode-num system="xmltv_ns">0.4.</episode-num>
    <credits>
      <director>Jane Doe</director>
      <actor>John Roe</actor>
      <actor>Ann Poe</actor>
    </credits>
  </programme>
  <programme start="20241225200000 -0300" channel="telefe.ar">
    <title>Telenovela</title>
  </programme>
</tv>
"""


@pytest.fixture
def sample_json_epg() -> str:
    """JSON guide in the channel-array layout."""
    return """[
  {
    "id": "canal7.ar",
    "name": "Canal 7",
    "programs": [
      {"title": "Noticiero", "start": "2024-12-25T14:00:00Z", "end": "2024-12-25T15:30:00Z",
       "genre": "News, Politics", "rating": {"value": "ATP"}},
      {"title": "Cine", "startTime": 1735142400, "duration": 120, "episode": "S02E05"}
    ]
  },
  {
    "channelId": "telefe.ar",
    "schedule": [
      {"name": "Telenovela", "start": "2024-12-25 20:00", "stop": "2024-12-25 21:00"}
    ]
  }
]
"""


@pytest.fixture
def sample_playlist() -> str:
    """M3U playlist with embedded guide lines."""
    return """#EXTM3U
#EXTINF:-1 tvg-id="canal7.ar" tvg-logo="http://logos.example/c7.png" group-title="News",Canal 7
#EXTPROGRAM:start="2024-12-25 14:00" end="2024-12-25 15:30" title="Noticiero" desc="Evening news" genre="News"
http://stream.example/canal7.m3u8
#EXTINF:-1 tvg-id="telefe.ar" tvg-url="http://epg.example/telefe.xml",Telefe
http://stream.example/telefe.m3u8
"""


# ========== Cache Fixtures ==========


@pytest.fixture
def session_store(tmp_path: Path) -> SessionStore:
    """Medium tier backed by a temporary directory."""
    return SessionStore(directory=tmp_path / "session", max_bytes=1024 * 1024)


@pytest.fixture
def durable_store(tmp_path: Path):
    """Durable tier backed by a temporary database."""
    store = DurableStore(db_path=tmp_path / "epg_cache.db")
    yield store
    store.close()


@pytest.fixture
def cache_manager(session_store, durable_store):
    """CacheManager over temporary tiers with maintenance jobs disabled."""
    manager = CacheManager(
        ttl_seconds=7200,
        memory_max_bytes=10 * 1024 * 1024,
        session_store=session_store,
        durable_store=durable_store,
        auto_maintenance=False,
    )
    yield manager
    manager.shutdown()


# ========== Source Fixtures ==========


@pytest.fixture
def make_source() -> Callable[..., XMLTVSource]:
    """Factory for XMLTV sources with no rate limit and no backoff delay."""

    def _make(name: str, priority: Optional[int] = 1, **kwargs) -> XMLTVSource:
        defaults = {
            "endpoint": f"https://{name.lower()}.example/epg.xml",
            "max_retries": 1,
            "retry_delay": 0.0,
            "min_interval": 0.0,
        }
        defaults.update(kwargs)
        return XMLTVSource(name=name, priority=priority, **defaults)

    return _make
