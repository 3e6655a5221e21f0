"""Persistence layer — key-value state and the append-only event log."""

from ballotbox.persistence.event_log import EventKind, EventLog, EventRecord
from ballotbox.persistence.kv_store import KeyValueStore

__all__ = ["EventKind", "EventLog", "EventRecord", "KeyValueStore"]
