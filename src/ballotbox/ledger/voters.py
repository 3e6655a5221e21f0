"""Voter Ledger — remaining weight and consumed flag per (election, principal).

A record exists only after explicit registration, or after the first
qualifying interaction with an election that does not require
registration. Lazy creation is split into two steps so that validation
never writes:

1. resolve() returns the stored record, or the record the principal
   would get (initial weight, not consumed). It never writes.
2. ensure() stores that default record. The store calls it only after
   every gate of the operation has passed.

Weight moves in two ways only: subtract_weight() (voting, outgoing
delegation) and add_weight() (incoming delegation). Once a record is
consumed it stays consumed.
"""

from __future__ import annotations

from typing import Optional

from ballotbox.errors import WeightUnderflowError
from ballotbox.logging import get_logger
from ballotbox.models.election import VoterRecord
from ballotbox.persistence.kv_store import KeyValueStore

NS_VOTERS = "voters"

log = get_logger(__name__)


class VoterLedger:
    """Voting weight bookkeeping."""

    def __init__(self, kv: KeyValueStore, initial_weight: int = 1) -> None:
        self._kv = kv
        self._initial_weight = initial_weight

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, election_id: int, principal: str) -> Optional[VoterRecord]:
        data = self._kv.get(NS_VOTERS, (election_id, principal))
        if data is None:
            return None
        return VoterRecord.from_record(data)

    def resolve(self, election_id: int, principal: str) -> VoterRecord:
        """Return the stored record or the default a new voter would get."""
        record = self.get(election_id, principal)
        if record is None:
            return VoterRecord(weight=self._initial_weight)
        return record

    def is_registered(self, election_id: int, principal: str) -> bool:
        return self._kv.contains(NS_VOTERS, (election_id, principal))

    def weight(self, election_id: int, principal: str) -> int:
        record = self.get(election_id, principal)
        return record.weight if record else 0

    def has_voted(self, election_id: int, principal: str) -> bool:
        record = self.get(election_id, principal)
        return record.consumed if record else False

    def records(self, election_id: int) -> dict[str, VoterRecord]:
        """Every voter record of one election, keyed by principal."""
        result: dict[str, VoterRecord] = {}
        for key in self._kv.keys(NS_VOTERS):
            eid, principal = key
            if eid == election_id:
                result[principal] = self.get(eid, principal)
        return result

    def total_weight(self, election_id: int) -> int:
        return sum(r.weight for r in self.records(election_id).values())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, election_id: int, principal: str) -> VoterRecord:
        """Store a fresh record with the initial weight."""
        record = VoterRecord(weight=self._initial_weight)
        self._put(election_id, principal, record)
        return record

    def ensure(self, election_id: int, principal: str) -> VoterRecord:
        """Store the default record if none exists yet."""
        record = self.get(election_id, principal)
        if record is not None:
            return record
        log.debug("voter_auto_registered", election_id=election_id, voter=principal)
        return self.register(election_id, principal)

    def subtract_weight(
        self, election_id: int, principal: str, amount: int,
    ) -> VoterRecord:
        """Spend weight. Reaching exactly zero marks the record consumed.

        Raises WeightUnderflowError if the record does not exist or holds
        less than amount; every caller checks sufficiency beforehand.
        """
        current = self.get(election_id, principal)
        if current is None or amount > current.weight:
            held = current.weight if current else 0
            raise WeightUnderflowError(
                f"Voter {principal} in election {election_id} holds {held}, "
                f"cannot spend {amount}"
            )
        remaining = current.weight - amount
        record = VoterRecord(weight=remaining, consumed=remaining == 0)
        self._put(election_id, principal, record)
        return record

    def add_weight(
        self, election_id: int, principal: str, amount: int,
    ) -> VoterRecord:
        """Receive delegated weight. The record stays spendable."""
        current = self.resolve(election_id, principal)
        record = VoterRecord(weight=current.weight + amount, consumed=False)
        self._put(election_id, principal, record)
        return record

    def _put(self, election_id: int, principal: str, record: VoterRecord) -> None:
        self._kv.insert(NS_VOTERS, (election_id, principal), record.to_record())
