"""Core data models for ballotbox."""

from ballotbox.models.election import (
    MAX_WEIGHT,
    Election,
    ElectionRef,
    ElectionState,
    ProposalTally,
    RegistrationState,
    VoterRecord,
)

__all__ = [
    "MAX_WEIGHT",
    "Election",
    "ElectionRef",
    "ElectionState",
    "ProposalTally",
    "RegistrationState",
    "VoterRecord",
]
