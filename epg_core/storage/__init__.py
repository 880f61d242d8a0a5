"""
Storage Module

Persistent backends for the medium and durable cache tiers.

Components:
    - SessionStore: Byte-bounded orjson files, one record per channel
    - DurableStore: SQLite table indexed by update and expiry time
"""

from .durable_store import DurableStore
from .session_store import SessionStore

__all__ = [
    "SessionStore",
    "DurableStore",
]
