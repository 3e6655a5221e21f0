"""Election ledgers — registry, proposals, voters, and the guard in front of them."""

from ballotbox.ledger.guard import ElectionGuard
from ballotbox.ledger.proposals import ProposalLedger
from ballotbox.ledger.registry import ElectionRegistry
from ballotbox.ledger.voters import VoterLedger

__all__ = ["ElectionGuard", "ElectionRegistry", "ProposalLedger", "VoterLedger"]
