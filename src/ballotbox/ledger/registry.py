"""Election Registry — id allocation, election records, lifecycle flags.

The registry owns the two global counters:
- election_nonce: the next id to hand out (starts at 1).
- election_count: how many elections were ever created.

Neither is ever decremented. Elections are never deleted or renamed, so
the name index and the global election list are append-only.

The registry performs no authorization. Callers run the ElectionGuard
first and only then ask the registry to write.
"""

from __future__ import annotations

from typing import Optional

from ballotbox.models.election import (
    Election,
    ElectionRef,
    ElectionState,
    RegistrationState,
)
from ballotbox.persistence.kv_store import KeyValueStore

NS_ELECTIONS = "elections"
NS_NAME_INDEX = "election_ids"
NS_GLOBAL = "registry"

_KEY_NONCE = "election_nonce"
_KEY_COUNT = "election_count"
_KEY_NAMES = "election_names"


class ElectionRegistry:
    """Stores election records and hands out election ids."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    @property
    def nonce(self) -> int:
        return self._kv.get(NS_GLOBAL, _KEY_NONCE, 1)

    @property
    def count(self) -> int:
        return self._kv.get(NS_GLOBAL, _KEY_COUNT, 0)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, ref: ElectionRef) -> Optional[int]:
        """Map an id or a name to a canonical election id.

        Returns None when nothing matches.
        """
        if isinstance(ref, bool):
            return None
        if isinstance(ref, int):
            return ref if self._kv.contains(NS_ELECTIONS, ref) else None
        if isinstance(ref, str):
            return self._kv.get(NS_NAME_INDEX, ref)
        return None

    def get(self, election_id: int) -> Optional[Election]:
        data = self._kv.get(NS_ELECTIONS, election_id)
        if data is None:
            return None
        return Election.from_record(data)

    def lookup(self, ref: ElectionRef) -> Optional[Election]:
        election_id = self.resolve(ref)
        if election_id is None:
            return None
        return self.get(election_id)

    def name_taken(self, name: str) -> bool:
        return self._kv.contains(NS_NAME_INDEX, name)

    def names(self) -> list[str]:
        """Every election name, in creation order."""
        return self._kv.get(NS_GLOBAL, _KEY_NAMES, [])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        owner: str,
        requires_registration: bool,
    ) -> Election:
        """Allocate the next id and store a new election, both flags closed."""
        election = Election(
            election_id=self.nonce,
            name=name,
            owner=owner,
            requires_registration=requires_registration,
        )
        self.save(election)
        self._kv.insert(NS_NAME_INDEX, name, election.election_id)
        self._kv.insert(NS_GLOBAL, _KEY_NAMES, self.names() + [name])
        self._kv.insert(NS_GLOBAL, _KEY_NONCE, election.election_id + 1)
        self._kv.insert(NS_GLOBAL, _KEY_COUNT, self.count + 1)
        return election

    def save(self, election: Election) -> None:
        self._kv.insert(NS_ELECTIONS, election.election_id, election.to_record())

    def set_owner(self, election: Election, new_owner: str) -> Election:
        election.owner = new_owner
        self.save(election)
        return election

    def set_registration_state(
        self, election: Election, state: RegistrationState,
    ) -> Election:
        election.registration_state = state
        self.save(election)
        return election

    def set_election_state(
        self, election: Election, state: ElectionState,
    ) -> Election:
        election.election_state = state
        self.save(election)
        return election
