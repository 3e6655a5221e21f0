"""Authorization & Lifecycle Guard — every precondition, in one place.

Checks never write. Each operation of the ElectionStore calls them in a
fixed order so that, when several conditions fail at once, the error
reported is always the same one:

1. Existence            ElectionNotValid
2. Ownership            OnlyOwner (owner-restricted operations only)
3. Lifecycle            ElectionClosed / RegistrationClosed
4. Registration needed  VoterNotRegistred
5. Eligibility          VoterHasAlreadyVoted, then VoterHasNotSoMuchWeight
6. Proposal validity    InvalidProposal

Weight arguments are validated (InvalidWeight) just before eligibility,
since eligibility compares against them.
"""

from __future__ import annotations

from typing import Any

from ballotbox.errors import ElectionError, ErrorKind
from ballotbox.ledger.proposals import ProposalLedger
from ballotbox.ledger.registry import ElectionRegistry
from ballotbox.ledger.voters import VoterLedger
from ballotbox.models.election import MAX_WEIGHT, Election, ElectionRef, VoterRecord


class ElectionGuard:
    """Validates calls against the registry and the ledgers."""

    def __init__(
        self,
        registry: ElectionRegistry,
        proposals: ProposalLedger,
        voters: VoterLedger,
    ) -> None:
        self._registry = registry
        self._proposals = proposals
        self._voters = voters

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def require_name_available(self, name: Any) -> None:
        if not isinstance(name, str):
            raise ElectionError(
                ErrorKind.ELECTION_NOT_VALID,
                f"Election name must be a string: {name!r}",
            )
        if self._registry.name_taken(name):
            raise ElectionError(
                ErrorKind.ELECTION_NOT_VALID,
                f"Election name already in use: {name}",
            )

    def require_proposals(self, proposals: list[str]) -> None:
        if not proposals:
            raise ElectionError(
                ErrorKind.INSUFFICIENT_PROPOSALS,
                "An election needs at least one proposal",
            )
        for label in proposals:
            if not isinstance(label, str):
                raise ElectionError(
                    ErrorKind.INVALID_PROPOSAL,
                    f"Proposal label must be a string: {label!r}",
                )

    # ------------------------------------------------------------------
    # Existence and ownership
    # ------------------------------------------------------------------

    def require_election(self, ref: ElectionRef) -> Election:
        election = self._registry.lookup(ref)
        if election is None:
            raise ElectionError(
                ErrorKind.ELECTION_NOT_VALID, f"Election not found: {ref!r}",
            )
        return election

    def require_owner(self, election: Election, caller: str) -> None:
        if caller != election.owner:
            raise ElectionError(
                ErrorKind.ONLY_OWNER,
                f"{caller} is not the owner of election {election.election_id}",
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def require_election_open(self, election: Election) -> None:
        if not election.is_open:
            raise ElectionError(
                ErrorKind.ELECTION_CLOSED,
                f"Election {election.election_id} is not open for voting",
            )

    def require_registration_open(self, election: Election) -> None:
        if not election.is_registration_open:
            raise ElectionError(
                ErrorKind.REGISTRATION_CLOSED,
                f"Registration for election {election.election_id} is closed",
            )

    # ------------------------------------------------------------------
    # Voters
    # ------------------------------------------------------------------

    def require_not_registered(self, election: Election, principal: str) -> None:
        if self._voters.is_registered(election.election_id, principal):
            raise ElectionError(
                ErrorKind.VOTER_ALREADY_REGISTERED,
                f"{principal} is already registered for election "
                f"{election.election_id}",
            )

    def check_registration_needed(
        self, election: Election, principal: str,
    ) -> VoterRecord:
        """Return the record the principal votes with.

        Elections requiring registration need a stored record. Other
        elections fall back to the default record; the caller stores it
        with VoterLedger.ensure() once the operation is known to succeed.
        """
        if election.requires_registration:
            record = self._voters.get(election.election_id, principal)
            if record is None:
                raise ElectionError(
                    ErrorKind.VOTER_NOT_REGISTERED,
                    f"{principal} is not registered for election "
                    f"{election.election_id}",
                )
            return record
        return self._voters.resolve(election.election_id, principal)

    def require_valid_weight(self, weight: Any) -> int:
        if isinstance(weight, bool) or not isinstance(weight, int):
            raise ElectionError(
                ErrorKind.INVALID_WEIGHT, f"Weight must be an integer: {weight!r}",
            )
        if not 0 <= weight <= MAX_WEIGHT:
            raise ElectionError(
                ErrorKind.INVALID_WEIGHT, f"Weight out of range: {weight}",
            )
        return weight

    def require_not_consumed(self, record: VoterRecord, principal: str) -> None:
        if record.consumed:
            raise ElectionError(
                ErrorKind.VOTER_HAS_ALREADY_VOTED,
                f"{principal} has no voting right left",
            )

    def require_can_spend(
        self, record: VoterRecord, principal: str, weight: int,
    ) -> None:
        self.require_not_consumed(record, principal)
        if record.weight < weight:
            raise ElectionError(
                ErrorKind.VOTER_HAS_NOT_SO_MUCH_WEIGHT,
                f"{principal} holds {record.weight}, requested {weight}",
            )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def require_proposal(self, election: Election, label: Any) -> int:
        proposal_id = None
        if isinstance(label, str):
            proposal_id = self._proposals.proposal_id(election.election_id, label)
        if proposal_id is None:
            raise ElectionError(
                ErrorKind.INVALID_PROPOSAL,
                f"Unknown proposal {label!r} in election {election.election_id}",
            )
        return proposal_id
