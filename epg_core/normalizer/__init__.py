"""
Normalizer Module

Program data model and normalization of provider values.

Components:
    - Program: Normalized, immutable program record
    - EpisodeInfo / Credits: Optional program details
    - ChannelRef: Channel identity used across the core
    - TimeRange: Window for filtering programs
    - CacheEntry: Program list plus cache bookkeeping
    - ProgramTransformer: Provider field normalization and id derivation
"""

from .schemas import (
    CacheEntry,
    ChannelRef,
    Credits,
    EpisodeInfo,
    Program,
    TimeRange,
)
from .transformer import ProgramTransformer

__all__ = [
    "Program",
    "EpisodeInfo",
    "Credits",
    "ChannelRef",
    "TimeRange",
    "CacheEntry",
    "ProgramTransformer",
]
