"""Append-only event log — one record per successful state change.

Every mutating ElectionStore operation that succeeds appends exactly one
event. Reads never append, and failed operations never append. The log
doubles as the audit trail: vote events carry their weight, so the sum
of recorded vote weights must match the sum of proposal tallies.

Records are immutable once written. Each carries a SHA-256 hash of its
canonical JSON form, and that form includes the hash of the record before
it (empty for the first record), so the records form a chain. Event IDs
are "EVT-<n>" with n running 1, 2, 3... without gaps.

The log can be persisted to a JSONL file and reloaded. Loading is
fail-closed: a tampered, replayed, removed or reordered record aborts it.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

EVENT_ID_PREFIX = "EVT-"


class EventKind(str, enum.Enum):
    """Classification of election events."""
    ELECTION_CREATED = "election_created"
    VOTE_CAST = "vote_cast"
    VOTE_DELEGATED = "vote_delegated"
    VOTER_REGISTERED = "voter_registered"
    REGISTRATION_OPENED = "registration_opened"
    REGISTRATION_CLOSED = "registration_closed"
    ELECTION_OPENED = "election_opened"
    ELECTION_CLOSED = "election_closed"
    OWNERSHIP_CHANGED = "ownership_changed"


def event_sequence(event_id: str) -> int:
    """Return n for an "EVT-<n>" event ID. Raises ValueError otherwise."""
    number = event_id[len(EVENT_ID_PREFIX):]
    if not event_id.startswith(EVENT_ID_PREFIX) or not number.isdigit():
        raise ValueError(f"Malformed event ID: {event_id!r}")
    return int(number)


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
    prev_hash: str,
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
            "prev_hash": prev_hash,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    actor_id is the calling principal. The payload holds the fields
    relevant to the operation (election id, proposal, weight...).
    prev_hash is the event_hash of the preceding record.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str
    prev_hash: str = ""

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
        prev_hash: str = "",
    ) -> EventRecord:
        """Create a new event record chained onto prev_hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")

        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload, prev_hash,
            ),
            prev_hash=prev_hash,
        )

    @property
    def election_id(self) -> Optional[int]:
        return self.payload.get("election_id")

    def to_record(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored event, refusing it if the hash does not match."""
        expected = _canonical_hash(
            data["event_id"],
            data["event_kind"],
            data["timestamp_utc"],
            data["actor_id"],
            data["payload"],
            data["prev_hash"],
        )
        if data["event_hash"] != expected:
            raise ValueError(
                f"Integrity check failed: event {data['event_id']} "
                f"stored hash {data['event_hash']} != computed {expected}"
            )
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
            prev_hash=data["prev_hash"],
        )


class EventLog:
    """Append-only, hash-chained event log with optional file persistence.

    Events can only be appended, never modified or deleted. An appended
    event must carry the next sequence number and chain onto head_hash.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection),
        out of sequence, or if the event does not chain onto head_hash;
        raises OSError if the file write fails. In every case the
        in-memory log is unchanged.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        self._check_link(event)

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(
        self,
        election_id: int,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return the events of one election, optionally filtered by kind."""
        return [e for e in self.events(kind) if e.election_id == election_id]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        return [e for e in self.events(kind) if e.timestamp_utc >= since_utc]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    @property
    def head_hash(self) -> str:
        """Hash the next appended event must chain onto."""
        return self._events[-1].event_hash if self._events else ""

    @property
    def last_sequence(self) -> int:
        """Sequence number of the newest event, 0 for an empty log."""
        return event_sequence(self._events[-1].event_id) if self._events else 0

    def _check_link(self, event: EventRecord) -> None:
        sequence = event_sequence(event.event_id)
        if sequence != self.last_sequence + 1:
            raise ValueError(
                f"Event ID out of sequence: {event.event_id} "
                f"(expected {EVENT_ID_PREFIX}{self.last_sequence + 1:08d})"
            )
        if event.prev_hash != self.head_hash:
            raise ValueError(
                f"Chain break: event {event.event_id} links to "
                f"{event.prev_hash or '<start>'}, head is {self.head_hash or '<start>'}"
            )

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(
                json.dumps(event.to_record(), sort_keys=True, ensure_ascii=False)
                + "\n"
            )

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file.

        Fail-closed: a tampered record, a replayed event ID, a gap in the
        sequence or a broken chain aborts the load with ValueError naming
        the offending line.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    event = EventRecord.from_record(json.loads(line))
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Unreadable event (line {line_num}): {e}") from e
                if event.event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): "
                        f"{event.event_id}"
                    )
                try:
                    self._check_link(event)
                except ValueError as e:
                    raise ValueError(f"{e} (line {line_num})") from e
                self._events.append(event)
                self._event_ids.add(event.event_id)
