"""Election, proposal and voter data models.

An election carries two independent lifecycle flags. Neither constrains
the other: registration may stay open while voting runs, or be reopened
after voting has closed so the owner can finalise the roll.

Voter records hold a spendable weight and a consumed flag. The consumed
flag is set once, when weight reaches exactly zero through a vote or an
outgoing delegation, and is never cleared.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Union

# An election is addressed either by its numeric id or by its name.
ElectionRef = Union[int, str]

# Upper bound of a voting weight or a tally (unsigned 128-bit).
MAX_WEIGHT = 2**128 - 1


class RegistrationState(str, enum.Enum):
    """Whether explicit registration is accepted."""
    OPEN = "open"
    CLOSED = "closed"


class ElectionState(str, enum.Enum):
    """Whether votes are accepted."""
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Election:
    """An election record.

    Invariants:
    - election_id is assigned once and never changes.
    - name is unique across the store and never changes.
    - Both lifecycle flags start CLOSED.
    """
    election_id: int
    name: str
    owner: str
    requires_registration: bool
    registration_state: RegistrationState = RegistrationState.CLOSED
    election_state: ElectionState = ElectionState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.election_state == ElectionState.OPEN

    @property
    def is_registration_open(self) -> bool:
        return self.registration_state == RegistrationState.OPEN

    def to_record(self) -> dict[str, Any]:
        return {
            "election_id": self.election_id,
            "name": self.name,
            "owner": self.owner,
            "requires_registration": self.requires_registration,
            "registration_state": self.registration_state.value,
            "election_state": self.election_state.value,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Election:
        return cls(
            election_id=data["election_id"],
            name=data["name"],
            owner=data["owner"],
            requires_registration=data["requires_registration"],
            registration_state=RegistrationState(data["registration_state"]),
            election_state=ElectionState(data["election_state"]),
        )


@dataclass(frozen=True)
class VoterRecord:
    """Remaining voting weight of one principal in one election.

    consumed implies weight == 0.
    """
    weight: int
    consumed: bool = False

    def to_record(self) -> dict[str, Any]:
        return {"weight": self.weight, "consumed": self.consumed}

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> VoterRecord:
        return cls(weight=data["weight"], consumed=data["consumed"])


@dataclass(frozen=True)
class ProposalTally:
    """One row of an election result."""
    label: str
    votes: int

    def as_tuple(self) -> tuple[str, int]:
        return (self.label, self.votes)
