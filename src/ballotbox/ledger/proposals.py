"""Proposal Ledger — the fixed proposal list of each election and its tallies.

The ledger is built once, when the election is created. Proposal ids run
1..n in the order the labels were supplied. Nothing is ever added or
removed afterwards; the only mutation is adding vote weight to a tally.

Winner rule: proposals are scanned in creation order and a proposal
replaces the current winner only if its tally is strictly greater than
the current maximum, which starts at 0. Ties keep the earlier proposal.
An election where every tally is 0 therefore has no winner and reports
("", 0), including a freshly created election. Callers treat that pair
as "no winner yet".
"""

from __future__ import annotations

from typing import Optional

from ballotbox.models.election import ProposalTally
from ballotbox.persistence.kv_store import KeyValueStore

NS_PROPOSAL_LISTS = "proposal_lists"
NS_PROPOSAL_IDS = "proposal_ids"
NS_TALLIES = "proposal_tallies"

NO_WINNER = ProposalTally(label="", votes=0)


class ProposalLedger:
    """Per-election proposal lists, label index and tallies."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def build(self, election_id: int, labels: list[str]) -> None:
        """Record the proposals of a new election with zero tallies.

        A label supplied twice keeps both list entries, but the label
        index points at the later id.
        """
        for position, label in enumerate(labels):
            proposal_id = position + 1
            self._kv.insert(NS_TALLIES, (election_id, proposal_id), 0)
            self._kv.insert(NS_PROPOSAL_IDS, (election_id, label), proposal_id)
        self._kv.insert(NS_PROPOSAL_LISTS, election_id, list(labels))

    def labels(self, election_id: int) -> list[str]:
        return self._kv.get(NS_PROPOSAL_LISTS, election_id, [])

    def proposal_id(self, election_id: int, label: str) -> Optional[int]:
        return self._kv.get(NS_PROPOSAL_IDS, (election_id, label))

    def tally(self, election_id: int, proposal_id: int) -> int:
        return self._kv.get(NS_TALLIES, (election_id, proposal_id), 0)

    def has_tally(self, election_id: int, proposal_id: int) -> bool:
        return self._kv.contains(NS_TALLIES, (election_id, proposal_id))

    def votes(self, election_id: int, label: str) -> int:
        proposal_id = self.proposal_id(election_id, label)
        if proposal_id is None:
            return 0
        return self.tally(election_id, proposal_id)

    def add_votes(self, election_id: int, proposal_id: int, weight: int) -> int:
        """Add weight to a tally and return the new total."""
        total = self.tally(election_id, proposal_id) + weight
        self._kv.insert(NS_TALLIES, (election_id, proposal_id), total)
        return total

    def result(self, election_id: int) -> list[ProposalTally]:
        """Every proposal with its tally, in creation order."""
        return [
            ProposalTally(label=label, votes=self.tally(election_id, position + 1))
            for position, label in enumerate(self.labels(election_id))
        ]

    def winner(self, election_id: int) -> ProposalTally:
        best = NO_WINNER
        for row in self.result(election_id):
            if row.votes > best.votes:
                best = row
        return best

    def total_votes(self, election_id: int) -> int:
        return sum(row.votes for row in self.result(election_id))
