"""Election Store — the single facade over registry, ledgers and guard.

Every public mutating operation:
1. Resolves the election (by id or by name) and runs the guard checks.
2. Applies its writes inside one KeyValueStore transaction.
3. Appends exactly one event to the EventLog, still inside the
   transaction: if the append fails, the writes are discarded.
4. Flushes committed state to disk (when persistent).

Failures come back as ServiceResult values carrying an ErrorKind, never
as exceptions. A failed call leaves storage exactly as it was. The one
exception that does escape is WeightUnderflowError, which means a
spending path skipped its sufficiency check.

Usage:
    host = Host(caller="alice")
    store = ElectionStore(host)
    store.create_election("E", False, ["A", "B"])
    store.open_election("E")
    store.vote("E", "A", 1)
    store.get_result("E")    # [("A", 1), ("B", 0)]

Persistence (optional):
    store = ElectionStore.open(Path("data"), host)
    # state.json and events.jsonl are loaded on construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from ballotbox import __version__
from ballotbox.config import StoreConfig
from ballotbox.errors import ElectionError, ErrorKind
from ballotbox.host import Host
from ballotbox.ledger.guard import ElectionGuard
from ballotbox.ledger.proposals import ProposalLedger
from ballotbox.ledger.registry import ElectionRegistry
from ballotbox.ledger.voters import VoterLedger
from ballotbox.logging import bind_context, get_logger
from ballotbox.models.election import (
    Election,
    ElectionRef,
    ElectionState,
    RegistrationState,
)
from ballotbox.persistence.event_log import EventKind, EventLog, EventRecord
from ballotbox.persistence.kv_store import KeyValueStore

STATE_FILENAME = "state.json"
EVENTS_FILENAME = "events.jsonl"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a store operation.

    error is set when the operation was rejected by a guard check.
    """
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorKind] = None


class _EventLogFailure(Exception):
    """The audit event could not be recorded."""


class ElectionStore:
    """Election engine facade."""

    def __init__(
        self,
        host: Host,
        config: Optional[StoreConfig] = None,
        kv: Optional[KeyValueStore] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._host = host
        self._config = config or StoreConfig()
        self._kv = kv if kv is not None else KeyValueStore()
        self._event_log = event_log if event_log is not None else EventLog()

        self._registry = ElectionRegistry(self._kv)
        self._proposals = ProposalLedger(self._kv)
        self._voters = VoterLedger(self._kv, self._config.initial_voter_weight)
        self._guard = ElectionGuard(self._registry, self._proposals, self._voters)

        # Continue numbering after the newest event loaded from disk
        self._event_counter = self._event_log.last_sequence
        self._persistence_degraded = False
        self._log = get_logger(__name__)

    @classmethod
    def open(
        cls,
        data_dir: Path,
        host: Host,
        config: Optional[StoreConfig] = None,
    ) -> ElectionStore:
        """Create a store backed by files in data_dir."""
        data_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            host,
            config=config,
            kv=KeyValueStore(storage_path=data_dir / STATE_FILENAME),
            event_log=EventLog(storage_path=data_dir / EVENTS_FILENAME),
        )

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Election registry
    # ------------------------------------------------------------------

    def create_election(
        self,
        name: str,
        requires_registration: bool,
        proposals: list[str],
    ) -> ServiceResult:
        """Create an election owned by the caller. Both flags start closed."""
        caller = self._host.caller

        def _create() -> dict[str, Any]:
            self._guard.require_name_available(name)
            self._guard.require_proposals(proposals)
            election = self._registry.create(name, caller, requires_registration)
            self._proposals.build(election.election_id, list(proposals))
            self._record_event(EventKind.ELECTION_CREATED, {
                "name": name,
                "election_id": election.election_id,
                "owner": caller,
                "requires_registration": requires_registration,
            })
            return {"election_id": election.election_id, "name": name}

        return self._execute("create_election", _create)

    def change_ownership(self, election: ElectionRef, new_owner: str) -> ServiceResult:
        """Hand the election over to another principal (owner only)."""
        caller = self._host.caller

        def _change() -> dict[str, Any]:
            record = self._guard.require_election(election)
            self._guard.require_owner(record, caller)
            previous = record.owner
            self._registry.set_owner(record, new_owner)
            self._record_event(EventKind.OWNERSHIP_CHANGED, {
                "election_id": record.election_id,
                "previous_owner": previous,
                "new_owner": new_owner,
            })
            return {"election_id": record.election_id, "owner": new_owner}

        return self._execute("change_ownership", _change)

    def open_registration(self, election: ElectionRef) -> ServiceResult:
        return self._set_lifecycle(
            election, "open_registration", EventKind.REGISTRATION_OPENED,
            lambda e: self._registry.set_registration_state(e, RegistrationState.OPEN),
        )

    def close_registration(self, election: ElectionRef) -> ServiceResult:
        return self._set_lifecycle(
            election, "close_registration", EventKind.REGISTRATION_CLOSED,
            lambda e: self._registry.set_registration_state(e, RegistrationState.CLOSED),
        )

    def open_election(self, election: ElectionRef) -> ServiceResult:
        return self._set_lifecycle(
            election, "open_election", EventKind.ELECTION_OPENED,
            lambda e: self._registry.set_election_state(e, ElectionState.OPEN),
        )

    def close_election(self, election: ElectionRef) -> ServiceResult:
        return self._set_lifecycle(
            election, "close_election", EventKind.ELECTION_CLOSED,
            lambda e: self._registry.set_election_state(e, ElectionState.CLOSED),
        )

    # ------------------------------------------------------------------
    # Voter ledger
    # ------------------------------------------------------------------

    def register(self, election: ElectionRef, voter: str) -> ServiceResult:
        """Register a principal while registration is open."""
        def _register() -> dict[str, Any]:
            record = self._guard.require_election(election)
            self._guard.require_registration_open(record)
            self._guard.require_not_registered(record, voter)
            voter_record = self._voters.register(record.election_id, voter)
            self._record_event(EventKind.VOTER_REGISTERED, {
                "election_id": record.election_id,
                "voter": voter,
            })
            return {
                "election_id": record.election_id,
                "voter": voter,
                "weight": voter_record.weight,
            }

        return self._execute("register", _register)

    def register_me(self, election: ElectionRef) -> ServiceResult:
        """Register the caller."""
        return self.register(election, self._host.caller)

    # ------------------------------------------------------------------
    # Voting and delegation
    # ------------------------------------------------------------------

    def vote(self, election: ElectionRef, proposal: str, weight: int) -> ServiceResult:
        """Spend weight of the caller on one proposal.

        A voter may split their weight over several calls until the
        remainder reaches zero.
        """
        caller = self._host.caller

        def _vote() -> dict[str, Any]:
            record = self._guard.require_election(election)
            self._guard.require_election_open(record)
            voter = self._guard.check_registration_needed(record, caller)
            amount = self._guard.require_valid_weight(weight)
            self._guard.require_can_spend(voter, caller, amount)
            proposal_id = self._guard.require_proposal(record, proposal)

            eid = record.election_id
            self._voters.ensure(eid, caller)
            tally = self._proposals.add_votes(eid, proposal_id, amount)
            remaining = self._voters.subtract_weight(eid, caller, amount)
            self._record_event(EventKind.VOTE_CAST, {
                "election_id": eid,
                "voter": caller,
                "proposal": proposal,
                "weight": amount,
            })
            return {
                "election_id": eid,
                "proposal": proposal,
                "tally": tally,
                "remaining_weight": remaining.weight,
                "consumed": remaining.consumed,
            }

        return self._execute("vote", _vote)

    def delegate_vote(
        self, election: ElectionRef, delegate: str, weight: int,
    ) -> ServiceResult:
        """Move weight from the caller to another voter.

        Allowed whether or not the election is open. No tally changes.
        """
        caller = self._host.caller

        def _delegate() -> dict[str, Any]:
            record = self._guard.require_election(election)
            delegator = self._guard.check_registration_needed(record, caller)
            receiver = self._guard.check_registration_needed(record, delegate)
            amount = self._guard.require_valid_weight(weight)
            self._guard.require_can_spend(delegator, caller, amount)
            self._guard.require_not_consumed(receiver, delegate)

            eid = record.election_id
            self._voters.ensure(eid, caller)
            self._voters.ensure(eid, delegate)
            self._voters.add_weight(eid, delegate, amount)
            remaining = self._voters.subtract_weight(eid, caller, amount)
            self._record_event(EventKind.VOTE_DELEGATED, {
                "election_id": eid,
                "delegator": caller,
                "delegate": delegate,
                "weight": amount,
            })
            return {
                "election_id": eid,
                "delegate": delegate,
                "delegate_weight": self._voters.weight(eid, delegate),
                "remaining_weight": remaining.weight,
                "consumed": remaining.consumed,
            }

        return self._execute("delegate_vote", _delegate)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def election_exists(self, election: ElectionRef) -> bool:
        return self._registry.resolve(election) is not None

    def get_election(self, election: ElectionRef) -> Optional[Election]:
        return self._registry.lookup(election)

    def get_election_id(self, name: str) -> Optional[int]:
        return self._registry.resolve(name)

    def get_owner(self, election: ElectionRef) -> Optional[str]:
        record = self._registry.lookup(election)
        return record.owner if record else None

    def is_election_open(self, election: ElectionRef) -> bool:
        record = self._registry.lookup(election)
        return record.is_open if record else False

    def is_registration_open(self, election: ElectionRef) -> bool:
        record = self._registry.lookup(election)
        return record.is_registration_open if record else False

    def get_elections(self) -> list[str]:
        """Names of every election, in creation order."""
        return self._registry.names()

    def get_election_count(self) -> int:
        return self._registry.count

    def get_proposals(self, election: ElectionRef) -> list[str]:
        eid = self._registry.resolve(election)
        return self._proposals.labels(eid) if eid is not None else []

    def get_votes(self, election: ElectionRef, proposal: str) -> int:
        eid = self._registry.resolve(election)
        return self._proposals.votes(eid, proposal) if eid is not None else 0

    def get_result(self, election: ElectionRef) -> list[tuple[str, int]]:
        eid = self._registry.resolve(election)
        if eid is None:
            return []
        return [row.as_tuple() for row in self._proposals.result(eid)]

    def get_winner(self, election: ElectionRef) -> tuple[str, int]:
        """Leading proposal, or ("", 0) while every tally is zero."""
        eid = self._registry.resolve(election)
        if eid is None:
            return ("", 0)
        return self._proposals.winner(eid).as_tuple()

    def is_registered(self, election: ElectionRef, principal: str) -> bool:
        eid = self._registry.resolve(election)
        return eid is not None and self._voters.is_registered(eid, principal)

    def get_weight(self, election: ElectionRef, principal: str) -> int:
        eid = self._registry.resolve(election)
        return self._voters.weight(eid, principal) if eid is not None else 0

    def has_voted(self, election: ElectionRef, principal: str) -> bool:
        eid = self._registry.resolve(election)
        return eid is not None and self._voters.has_voted(eid, principal)

    def get_total_weight(self, election: ElectionRef) -> int:
        """Unspent weight summed over every voter record of the election."""
        eid = self._registry.resolve(election)
        return self._voters.total_weight(eid) if eid is not None else 0

    def events(
        self,
        election: Optional[ElectionRef] = None,
        since_utc: Optional[str] = None,
    ) -> list[EventRecord]:
        """Recorded events, optionally limited to one election and to
        events at or after since_utc ("YYYY-MM-DDTHH:MM:SSZ")."""
        if since_utc is not None:
            selected = self._event_log.events_since(since_utc)
        else:
            selected = self._event_log.events()
        if election is None:
            return selected
        eid = self._registry.resolve(election)
        return [e for e in selected if eid is not None and e.election_id == eid]

    def status(self) -> dict[str, Any]:
        """Return a store-wide status summary."""
        elections = [self._registry.lookup(n) for n in self._registry.names()]
        return {
            "version": __version__,
            "elections": {
                "total": self._registry.count,
                "open": sum(1 for e in elections if e and e.is_open),
                "registration_open": sum(
                    1 for e in elections if e and e.is_registration_open
                ),
            },
            "next_election_id": self._registry.nonce,
            "events": self._event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    def check_invariants(self) -> list[str]:
        """Audit the stored state. Returns violations; empty means healthy."""
        errors: list[str] = []
        nonce, count = self._registry.nonce, self._registry.count
        if nonce != count + 1:
            errors.append(f"election_nonce {nonce} != election_count {count} + 1")

        names = self._registry.names()
        if len(names) != count:
            errors.append(f"{len(names)} listed elections, count says {count}")

        for name in names:
            eid = self._registry.resolve(name)
            election = self._registry.get(eid) if eid is not None else None
            if election is None or election.name != name:
                errors.append(f"Election {name!r} has no matching record")
                continue

            labels = self._proposals.labels(eid)
            if not labels:
                errors.append(f"Election {eid} has no proposals")
            for label in labels:
                pid = self._proposals.proposal_id(eid, label)
                if pid is None or not 1 <= pid <= len(labels):
                    errors.append(f"Election {eid}: proposal {label!r} has bad id {pid}")
            for pid in range(1, len(labels) + 1):
                if not self._proposals.has_tally(eid, pid):
                    errors.append(f"Election {eid}: proposal {pid} has no tally")

            for principal, record in self._voters.records(eid).items():
                if record.weight < 0:
                    errors.append(f"Election {eid}: {principal} has negative weight")
                if record.consumed and record.weight != 0:
                    errors.append(
                        f"Election {eid}: {principal} consumed with weight {record.weight}"
                    )

            history = self._event_log.events_for(eid)
            if any(e.event_kind == EventKind.ELECTION_CREATED for e in history):
                spent = sum(
                    e.payload["weight"] for e in history
                    if e.event_kind == EventKind.VOTE_CAST
                )
                tallied = self._proposals.total_votes(eid)
                if spent != tallied:
                    errors.append(
                        f"Election {eid}: tallies sum to {tallied}, "
                        f"vote events sum to {spent}"
                    )
        return errors

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_lifecycle(
        self,
        election: ElectionRef,
        action: str,
        kind: EventKind,
        apply: Callable[[Election], Election],
    ) -> ServiceResult:
        caller = self._host.caller

        def _flip() -> dict[str, Any]:
            record = self._guard.require_election(election)
            self._guard.require_owner(record, caller)
            apply(record)
            now = self._host.now()
            self._record_event(kind, {
                "election_id": record.election_id,
                "date": now.isoformat(),
            }, timestamp=now)
            return {
                "election_id": record.election_id,
                "registration_state": record.registration_state.value,
                "election_state": record.election_state.value,
            }

        return self._execute(action, _flip)

    def _execute(
        self, action: str, operation: Callable[[], dict[str, Any]],
    ) -> ServiceResult:
        """Run an operation atomically and turn failures into results."""
        log = bind_context(self._log, caller=self._host.caller)
        try:
            with self._kv.transaction():
                data = operation()
        except ElectionError as e:
            log.info("operation_rejected", action=action, error=e.kind.value)
            return ServiceResult(success=False, errors=[str(e)], error=e.kind)
        except _EventLogFailure as e:
            log.error("event_log_failure", action=action, reason=str(e))
            return ServiceResult(success=False, errors=[f"Event log failure: {e}"])

        bind_context(log, election_id=data.get("election_id")).info(
            "operation_applied", action=action,
        )
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Peek the next event ID. The counter advances only on append."""
        return f"EVT-{self._event_counter + 1:08d}"

    def _record_event(
        self,
        kind: EventKind,
        payload: dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> EventRecord:
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=self._host.caller,
                payload=payload,
                timestamp_utc=timestamp or self._host.now(),
                prev_hash=self._event_log.head_hash,
            )
            self._event_log.append(event)
            self._event_counter += 1
        except (ValueError, OSError) as e:
            raise _EventLogFailure(str(e)) from e
        return event

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Flush state after the audit event has been committed.

        Never rolls back: the event log already holds the change. On
        failure the store keeps serving from memory, flags itself as
        degraded and returns a warning.
        """
        try:
            self._kv.flush()
            return None
        except OSError as e:
            self._persistence_degraded = True
            self._log.warning("persistence_degraded", reason=str(e))
            return f"Persistence degraded: {e}; state committed in event log but state file is stale"
