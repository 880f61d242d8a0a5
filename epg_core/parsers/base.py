"""
Base class for EPG payload parsers.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from epg_core.normalizer.schemas import Program
from epg_core.normalizer.transformer import ProgramTransformer
from epg_core.utils.exceptions import DataNormalizationError

logger = logging.getLogger(__name__)

# Failures that drop a single record instead of the whole payload
RECORD_ERRORS = (DataNormalizationError, TypeError, ValueError, OverflowError)


class BaseEPGParser(ABC):
    """
    Contract shared by every parser adapter.

    ``parse`` turns a raw text payload into channel key -> programs,
    each list sorted by start time. Structurally invalid payloads raise
    ParsingError; individual records that cannot be normalized are skipped.
    """

    name: str = "base"

    def __init__(self):
        self._skipped = 0

    @abstractmethod
    def parse(self, raw: str) -> dict[str, list[Program]]:
        """Parse a raw payload."""

    @property
    def skipped_records(self) -> int:
        """Records dropped during the last parse."""
        return self._skipped

    def _build(self, channel_id: str, title: Optional[str], start: Any, **kwargs: Any) -> Optional[Program]:
        try:
            return ProgramTransformer.build_program(
                channel_id, title, start, source=self.name, **kwargs
            )
        except RECORD_ERRORS as e:
            return self._skip(channel_id, e)

    def _skip(self, channel_id: str, error: Exception) -> None:
        self._skipped += 1
        logger.debug(
            f"Skipping {self.name} program on {channel_id}: {error}",
            extra={"parser": self.name, "channel_id": channel_id, "error": type(error).__name__},
        )
        return None

    @staticmethod
    def _add_program(programs_map: dict[str, list[Program]], program: Optional[Program]) -> None:
        if program is None:
            return
        programs_map.setdefault(program.channel_id, []).append(program)

    @staticmethod
    def _sorted(programs_map: dict[str, list[Program]]) -> dict[str, list[Program]]:
        return {
            channel_id: sorted(programs, key=lambda p: p.start)
            for channel_id, programs in programs_map.items()
            if programs
        }
