"""Election error kinds.

Every gate in the ledger layer fails with an ElectionError carrying one
ErrorKind. The ElectionStore facade turns these into ServiceResult values;
nothing above the ledger layer sees an ElectionError escape.

WeightUnderflowError is the exception to that rule: it means a spending
path ran without a sufficiency check, which is a defect. It is never
converted into a result value.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Why an election operation was rejected."""
    INSUFFICIENT_PROPOSALS = "InsufficientProposals"
    ELECTION_NOT_VALID = "ElectionNotValid"
    VOTER_NOT_REGISTERED = "VoterNotRegistred"
    VOTER_HAS_NOT_SO_MUCH_WEIGHT = "VoterHasNotSoMuchWeight"
    VOTER_HAS_ALREADY_VOTED = "VoterHasAlreadyVoted"
    INVALID_PROPOSAL = "InvalidProposal"
    ONLY_OWNER = "OnlyOwner"
    ELECTION_CLOSED = "ElectionClosed"
    REGISTRATION_CLOSED = "RegistrationClosed"
    VOTER_ALREADY_REGISTERED = "VoterAlreadyRegistered"
    INVALID_WEIGHT = "InvalidWeight"


class ElectionError(ValueError):
    """Raised when an election operation fails one of its gates."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)

    def __str__(self) -> str:
        detail = self.args[0] if self.args else ""
        if detail and detail != self.kind.value:
            return f"{self.kind.value}: {detail}"
        return self.kind.value


class WeightUnderflowError(RuntimeError):
    """Raised when a voter record would go below zero weight."""
