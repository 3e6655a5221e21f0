"""Tests for ElectionStore — proves the facade enforces gate order, weight
conservation, single spend, and all-or-nothing operations.

Also covers:
- Id allocation and the name index (lookup by id and by name)
- Lifecycle flags and ownership
- Registration, voting, delegation scenarios
- One event per successful operation, none otherwise
- Persistence round-trip and degraded persistence
- Invariant audit
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from ballotbox.config import StoreConfig
from ballotbox.errors import ErrorKind
from ballotbox.host import Host
from ballotbox.persistence.event_log import EventKind, EventLog, EventRecord
from ballotbox.persistence.kv_store import KeyValueStore
from ballotbox.store import ElectionStore, ServiceResult


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def host() -> Host:
    return Host(caller="owner", clock=_now)


@pytest.fixture
def kv() -> KeyValueStore:
    return KeyValueStore()


@pytest.fixture
def store(host: Host, kv: KeyValueStore) -> ElectionStore:
    return ElectionStore(host, kv=kv)


def _open_election(
    store: ElectionStore,
    name: str = "E",
    requires_registration: bool = False,
    proposals: tuple[str, ...] = ("A", "B"),
) -> int:
    result = store.create_election(name, requires_registration, list(proposals))
    assert result.success, result.errors
    assert store.open_election(name).success
    return result.data["election_id"]


def _fails_with(result: ServiceResult, kind: ErrorKind) -> bool:
    return not result.success and result.error == kind


# ==================================================================
# Election Registry
# ==================================================================

class TestCreateElection:
    def test_ids_follow_call_order(self, store: ElectionStore) -> None:
        ids = [
            store.create_election(f"e{i}", False, ["A"]).data["election_id"]
            for i in range(1, 5)
        ]
        assert ids == [1, 2, 3, 4]
        assert store.get_election_count() == 4
        assert store.get_elections() == ["e1", "e2", "e3", "e4"]

    def test_repeated_name_rejected_without_advancing(self, store: ElectionStore) -> None:
        store.create_election("E", False, ["A"])
        events_before = store.event_log.count

        result = store.create_election("E", True, ["X", "Y"])
        assert _fails_with(result, ErrorKind.ELECTION_NOT_VALID)
        assert store.get_election_count() == 1
        assert store.status()["next_election_id"] == 2
        assert store.event_log.count == events_before
        assert store.get_proposals("E") == ["A"]

        assert store.create_election("F", False, ["A"]).data["election_id"] == 2

    def test_empty_proposals_rejected(self, store: ElectionStore) -> None:
        result = store.create_election("E", False, [])
        assert _fails_with(result, ErrorKind.INSUFFICIENT_PROPOSALS)
        assert not store.election_exists("E")
        assert store.get_election_count() == 0

    def test_name_collision_reported_before_empty_proposals(
        self, store: ElectionStore,
    ) -> None:
        store.create_election("E", False, ["A"])
        result = store.create_election("E", False, [])
        assert _fails_with(result, ErrorKind.ELECTION_NOT_VALID)

    @pytest.mark.parametrize("name", [7, None, ("E",), True])
    def test_name_must_be_a_string(self, store: ElectionStore, name) -> None:
        result = store.create_election(name, False, ["A"])
        assert _fails_with(result, ErrorKind.ELECTION_NOT_VALID)
        assert store.get_elections() == []
        assert store.get_election_count() == 0

    @pytest.mark.parametrize("labels", [["A", 2], [None], [["A"]]])
    def test_labels_must_be_strings(self, store: ElectionStore, labels) -> None:
        result = store.create_election("E", False, labels)
        assert _fails_with(result, ErrorKind.INVALID_PROPOSAL)
        assert not store.election_exists("E")

    def test_caller_owns_new_closed_election(self, store: ElectionStore, host: Host) -> None:
        with host.acting_as("carol"):
            store.create_election("E", True, ["A", "B"])
        election = store.get_election("E")
        assert election.owner == "carol"
        assert store.get_owner(1) == "carol"
        assert not store.is_election_open("E")
        assert not store.is_registration_open("E")
        assert store.get_proposals(1) == ["A", "B"]

    def test_creation_event(self, store: ElectionStore) -> None:
        store.create_election("E", True, ["A"])
        event = store.event_log.last_event
        assert event.event_kind == EventKind.ELECTION_CREATED
        assert event.payload == {
            "name": "E",
            "election_id": 1,
            "owner": "owner",
            "requires_registration": True,
        }

    def test_id_and_name_resolve_to_same_record(self, store: ElectionStore) -> None:
        store.create_election("E", False, ["A"])
        assert store.get_election_id("E") == 1
        assert store.get_election(1) == store.get_election("E")


class TestLifecycle:
    def test_owner_flips_each_flag(self, store: ElectionStore) -> None:
        store.create_election("E", False, ["A"])
        assert store.open_registration("E").success
        assert store.is_registration_open("E")
        assert store.open_election(1).success
        assert store.is_election_open(1)
        assert store.close_registration("E").success
        assert not store.is_registration_open("E")
        assert store.is_election_open("E")
        assert store.close_election("E").success
        assert not store.is_election_open("E")

    def test_registration_may_reopen_after_voting_closed(self, store: ElectionStore) -> None:
        _open_election(store)
        store.close_election("E")
        assert store.open_registration("E").success
        assert store.is_registration_open("E")
        assert not store.is_election_open("E")

    def test_lifecycle_event_carries_timestamp(self, store: ElectionStore) -> None:
        store.create_election("E", False, ["A"])
        store.open_election("E")
        event = store.event_log.last_event
        assert event.event_kind == EventKind.ELECTION_OPENED
        assert event.payload == {"election_id": 1, "date": _now().isoformat()}
        assert event.timestamp_utc == "2026-03-01T12:00:00Z"

    @pytest.mark.parametrize("operation", [
        "open_registration", "close_registration", "open_election", "close_election",
    ])
    def test_non_owner_rejected(
        self, store: ElectionStore, host: Host, operation: str,
    ) -> None:
        store.create_election("E", False, ["A"])
        before = store.get_election("E")
        events_before = store.event_log.count

        with host.acting_as("mallory"):
            result = getattr(store, operation)("E")

        assert _fails_with(result, ErrorKind.ONLY_OWNER)
        assert store.get_election("E") == before
        assert store.event_log.count == events_before

    def test_non_owner_cannot_change_ownership(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        with host.acting_as("mallory"):
            result = store.change_ownership("E", "mallory")
        assert _fails_with(result, ErrorKind.ONLY_OWNER)
        assert store.get_owner("E") == "owner"

    def test_unknown_election_reported_before_ownership(
        self, store: ElectionStore, host: Host,
    ) -> None:
        with host.acting_as("mallory"):
            assert _fails_with(store.open_election("nope"), ErrorKind.ELECTION_NOT_VALID)
            assert _fails_with(store.change_ownership(3, "x"), ErrorKind.ELECTION_NOT_VALID)

    def test_change_ownership_moves_control(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        result = store.change_ownership("E", "bob")
        assert result.success
        assert store.event_log.last_event.event_kind == EventKind.OWNERSHIP_CHANGED
        assert store.event_log.last_event.payload["new_owner"] == "bob"

        assert _fails_with(store.open_election("E"), ErrorKind.ONLY_OWNER)
        with host.acting_as("bob"):
            assert store.open_election("E").success


# ==================================================================
# Voter Ledger
# ==================================================================

class TestRegistration:
    def test_registration_closed(self, store: ElectionStore) -> None:
        store.create_election("E", True, ["A"])
        assert _fails_with(store.register_me("E"), ErrorKind.REGISTRATION_CLOSED)
        assert not store.is_registered("E", "owner")

    def test_unknown_election(self, store: ElectionStore) -> None:
        assert _fails_with(store.register("nope", "alice"), ErrorKind.ELECTION_NOT_VALID)

    def test_register_and_duplicate(self, store: ElectionStore) -> None:
        store.create_election("E", True, ["A"])
        store.open_registration("E")
        result = store.register("E", "alice")
        assert result.success
        assert result.data["weight"] == 1
        assert store.is_registered(1, "alice")
        assert store.get_weight("E", "alice") == 1
        assert store.event_log.last_event.payload == {"election_id": 1, "voter": "alice"}

        assert _fails_with(store.register(1, "alice"), ErrorKind.VOTER_ALREADY_REGISTERED)

    def test_register_me_uses_caller(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", True, ["A"])
        store.open_registration("E")
        with host.acting_as("dave"):
            assert store.register_me("E").success
        assert store.is_registered("E", "dave")
        assert not store.is_registered("E", "owner")

    def test_vote_requires_prior_registration(self, store: ElectionStore, host: Host) -> None:
        _open_election(store, requires_registration=True)
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "A", 1), ErrorKind.VOTER_NOT_REGISTERED)

        store.open_registration("E")
        with host.acting_as("alice"):
            assert store.register_me("E").success
            assert store.vote("E", "A", 1).success
            assert _fails_with(store.vote("E", "A", 1), ErrorKind.VOTER_HAS_ALREADY_VOTED)
        assert store.get_votes("E", "A") == 1

    def test_configured_initial_weight(self, host: Host) -> None:
        store = ElectionStore(host, config=StoreConfig(initial_voter_weight=3))
        store.create_election("E", True, ["A"])
        store.open_registration("E")
        assert store.register("E", "alice").data["weight"] == 3


# ==================================================================
# Voting
# ==================================================================

class TestVoting:
    def test_single_vote_scenario(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("x"):
            result = store.vote("E", "A", 1)
            assert result.success
            assert result.data["consumed"]
            assert store.get_result("E") == [("A", 1), ("B", 0)]
            assert _fails_with(store.vote("E", "A", 1), ErrorKind.VOTER_HAS_ALREADY_VOTED)
        assert store.get_result("E") == [("A", 1), ("B", 0)]
        assert store.has_voted("E", "x")

    def test_vote_event(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.vote("E", "B", 1)
        event = store.event_log.last_event
        assert event.event_kind == EventKind.VOTE_CAST
        assert event.actor_id == "x"
        assert event.payload == {"election_id": 1, "voter": "x", "proposal": "B", "weight": 1}

    def test_closed_election(self, store: ElectionStore) -> None:
        store.create_election("E", False, ["A"])
        assert _fails_with(store.vote("E", "A", 1), ErrorKind.ELECTION_CLOSED)

    @pytest.mark.parametrize("ref, proposal, weight", [
        (99, "A", 1),
        ("missing", "A", 1),
        (99, "nope", 10**40),
        ("missing", "", -5),
    ])
    def test_unknown_election_always_reported_first(
        self, store: ElectionStore, ref, proposal, weight,
    ) -> None:
        _open_election(store)
        assert _fails_with(store.vote(ref, proposal, weight), ErrorKind.ELECTION_NOT_VALID)

    def test_closed_reported_before_registration(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", True, ["A"])
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "Z", 5), ErrorKind.ELECTION_CLOSED)

    def test_registration_reported_before_proposal(
        self, store: ElectionStore, host: Host,
    ) -> None:
        _open_election(store, requires_registration=True)
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "Z", 1), ErrorKind.VOTER_NOT_REGISTERED)

    def test_eligibility_reported_before_proposal(
        self, store: ElectionStore, host: Host,
    ) -> None:
        _open_election(store)
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "Z", 2), ErrorKind.VOTER_HAS_NOT_SO_MUCH_WEIGHT)
            store.vote("E", "A", 1)
            assert _fails_with(store.vote("E", "Z", 2), ErrorKind.VOTER_HAS_ALREADY_VOTED)

    def test_invalid_proposal_leaves_no_voter_record(
        self, store: ElectionStore, host: Host,
    ) -> None:
        _open_election(store)
        events_before = store.event_log.count
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "Z", 1), ErrorKind.INVALID_PROPOSAL)
        assert not store.is_registered("E", "alice")
        assert store.event_log.count == events_before

    def test_invalid_weight(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", "A", -1), ErrorKind.INVALID_WEIGHT)
        assert not store.is_registered("E", "alice")

    @pytest.mark.parametrize("label", [1, None, ["A"]])
    def test_non_string_label_is_invalid_proposal(
        self, store: ElectionStore, host: Host, label,
    ) -> None:
        _open_election(store)
        with host.acting_as("alice"):
            assert _fails_with(store.vote("E", label, 1), ErrorKind.INVALID_PROPOSAL)
        assert store.get_result("E") == [("A", 0), ("B", 0)]

    def test_weight_split_over_calls(self, host: Host) -> None:
        store = ElectionStore(host, config=StoreConfig(initial_voter_weight=3))
        _open_election(store)
        with host.acting_as("alice"):
            first = store.vote("E", "A", 1)
            assert first.data["remaining_weight"] == 2
            assert not first.data["consumed"]
            assert store.vote("E", "B", 2).data["consumed"]
            assert _fails_with(store.vote("E", "B", 0), ErrorKind.VOTER_HAS_ALREADY_VOTED)
        assert store.get_result("E") == [("A", 1), ("B", 2)]

    def test_zero_weight_vote_spends_nothing(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("alice"):
            assert store.vote("E", "A", 0).success
            assert store.vote("E", "A", 1).success
        assert store.get_votes("E", "A") == 1


class TestWinner:
    def test_fresh_election_has_no_winner(self, store: ElectionStore) -> None:
        _open_election(store)
        assert store.get_winner("E") == ("", 0)

    def test_leader_and_tie(self, store: ElectionStore, host: Host) -> None:
        _open_election(store, proposals=("A", "B", "C"))
        with host.acting_as("v1"):
            store.vote("E", "B", 1)
        assert store.get_winner("E") == ("B", 1)
        with host.acting_as("v2"):
            store.vote("E", "C", 1)
        assert store.get_winner("E") == ("B", 1)
        with host.acting_as("v3"):
            store.vote("E", "C", 1)
        assert store.get_winner("E") == ("C", 2)


# ==================================================================
# Delegation
# ==================================================================

class TestDelegation:
    def test_delegation_scenario(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A", "B"])
        with host.acting_as("x"):
            result = store.delegate_vote("E", "y", 1)
        assert result.success
        assert result.data["delegate_weight"] == 2
        assert store.get_weight("E", "y") == 2
        assert store.get_weight("E", "x") == 0
        assert store.has_voted("E", "x")
        assert not store.has_voted("E", "y")

    def test_delegation_allowed_while_closed(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        assert not store.is_election_open("E")
        with host.acting_as("x"):
            assert store.delegate_vote("E", "y", 1).success

    def test_delegation_does_not_touch_tallies(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.delegate_vote("E", "y", 1)
        assert store.get_result("E") == [("A", 0), ("B", 0)]

    def test_delegated_weight_can_be_voted(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.delegate_vote("E", "y", 1)
        with host.acting_as("y"):
            assert store.vote("E", "B", 2).success
        assert store.get_votes("E", "B") == 2
        assert store.has_voted("E", "y")

    def test_weight_conserved_under_delegation(self, host: Host) -> None:
        store = ElectionStore(host, config=StoreConfig(initial_voter_weight=5))
        store.create_election("E", False, ["A"])
        store.open_registration("E")
        for principal in ("a", "b", "c", "d"):
            store.register("E", principal)
        total = store.get_total_weight("E")
        assert total == 20

        moves = [("a", "b", 2), ("b", "c", 6), ("c", "a", 1), ("d", "a", 5), ("a", "b", 3)]
        for src, dst, amount in moves:
            with host.acting_as(src):
                assert store.delegate_vote("E", dst, amount).success
            assert store.get_total_weight("E") == total

    def test_voting_removes_exactly_the_spent_weight(
        self, store: ElectionStore, host: Host,
    ) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.delegate_vote("E", "y", 1)
        before = store.get_total_weight("E")
        with host.acting_as("y"):
            store.vote("E", "A", 1)
        assert store.get_total_weight("E") == before - 1

    def test_consumed_voter_cannot_spend_or_receive(
        self, store: ElectionStore, host: Host,
    ) -> None:
        _open_election(store)
        with host.acting_as("x"):
            assert store.delegate_vote("E", "y", 1).success
        with host.acting_as("y"):
            result = store.delegate_vote("E", "x", 1)
        assert _fails_with(result, ErrorKind.VOTER_HAS_ALREADY_VOTED)
        assert store.get_weight("E", "x") == 0
        with host.acting_as("x"):
            assert _fails_with(store.vote("E", "A", 0), ErrorKind.VOTER_HAS_ALREADY_VOTED)
            assert _fails_with(store.delegate_vote("E", "z", 0), ErrorKind.VOTER_HAS_ALREADY_VOTED)

    def test_overdelegation_leaves_no_records(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        with host.acting_as("x"):
            result = store.delegate_vote("E", "y", 2)
        assert _fails_with(result, ErrorKind.VOTER_HAS_NOT_SO_MUCH_WEIGHT)
        assert not store.is_registered("E", "x")
        assert not store.is_registered("E", "y")

    def test_registration_required_for_both_sides(
        self, store: ElectionStore, host: Host,
    ) -> None:
        store.create_election("E", True, ["A"])
        store.open_registration("E")
        store.register("E", "x")
        with host.acting_as("x"):
            assert _fails_with(store.delegate_vote("E", "y", 1), ErrorKind.VOTER_NOT_REGISTERED)
        with host.acting_as("y"):
            assert _fails_with(store.delegate_vote("E", "x", 1), ErrorKind.VOTER_NOT_REGISTERED)
        store.register("E", "y")
        with host.acting_as("x"):
            assert store.delegate_vote("E", "y", 1).success
        assert store.get_weight("E", "y") == 2

    def test_unknown_election(self, store: ElectionStore) -> None:
        assert _fails_with(store.delegate_vote("E", "y", 1), ErrorKind.ELECTION_NOT_VALID)

    def test_self_delegation_is_neutral(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        with host.acting_as("x"):
            assert store.delegate_vote("E", "x", 1).success
        assert store.get_weight("E", "x") == 1
        assert not store.has_voted("E", "x")

    def test_delegation_event(self, store: ElectionStore, host: Host) -> None:
        store.create_election("E", False, ["A"])
        with host.acting_as("x"):
            store.delegate_vote("E", "y", 1)
        event = store.event_log.last_event
        assert event.event_kind == EventKind.VOTE_DELEGATED
        assert event.payload == {
            "election_id": 1, "delegator": "x", "delegate": "y", "weight": 1,
        }


# ==================================================================
# Events, atomicity, persistence
# ==================================================================

class _FailingEventLog(EventLog):
    def append(self, event: EventRecord) -> None:
        raise OSError("disk full")


class _FailingFlushStore(KeyValueStore):
    def flush(self) -> None:
        raise OSError("read-only filesystem")


class TestEvents:
    def test_one_event_per_success_none_for_reads(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        assert store.event_log.count == 2
        store.get_result("E")
        store.get_winner("E")
        store.status()
        assert store.event_log.count == 2
        with host.acting_as("x"):
            store.vote("E", "A", 1)
            store.vote("E", "A", 1)
        assert store.event_log.count == 3

    def test_event_ids_are_sequential(self, store: ElectionStore) -> None:
        _open_election(store)
        assert [e.event_id for e in store.events()] == ["EVT-00000001", "EVT-00000002"]

    def test_events_filtered_by_election(self, store: ElectionStore) -> None:
        _open_election(store, name="E")
        _open_election(store, name="F")
        assert len(store.events("F")) == 2
        assert all(e.election_id == 2 for e in store.events(2))
        assert store.events("missing") == []

    def test_events_chain_onto_each_other(self, store: ElectionStore) -> None:
        _open_election(store)
        first, second = store.events()
        assert first.prev_hash == ""
        assert second.prev_hash == first.event_hash

    def test_events_since(self) -> None:
        now = [datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)]
        host = Host(caller="owner", clock=lambda: now[0])
        store = ElectionStore(host)
        store.create_election("E", False, ["A"])
        now[0] = datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)
        store.open_election("E")
        store.create_election("F", False, ["A"])

        recent = store.events(since_utc="2026-03-02T00:00:00Z")
        assert [e.event_kind for e in recent] == [
            EventKind.ELECTION_OPENED, EventKind.ELECTION_CREATED,
        ]
        assert [e.event_id for e in store.events("E", since_utc="2026-03-02T00:00:00Z")] == [
            "EVT-00000002",
        ]

    def test_library_use_prints_nothing(self, store: ElectionStore, host: Host, capsys) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.vote("E", "A", 1)
            store.vote("E", "A", 1)
        assert capsys.readouterr().out == ""

    def test_event_log_failure_discards_writes(self, host: Host) -> None:
        store = ElectionStore(host, event_log=_FailingEventLog())
        result = store.create_election("E", False, ["A"])
        assert not result.success
        assert result.error is None
        assert "Event log failure" in result.errors[0]
        assert not store.election_exists("E")
        assert store.get_election_count() == 0


class TestPersistence:
    def test_reopen_restores_state(self, tmp_path: Path, host: Host) -> None:
        store = ElectionStore.open(tmp_path, host)
        _open_election(store)
        with host.acting_as("x"):
            store.delegate_vote("E", "y", 1)
        with host.acting_as("y"):
            store.vote("E", "B", 2)

        reopened = ElectionStore.open(tmp_path, host)
        assert reopened.get_result("E") == [("A", 0), ("B", 2)]
        assert reopened.has_voted("E", "x")
        assert reopened.has_voted("E", "y")
        assert reopened.get_election_count() == 1
        assert reopened.is_election_open("E")
        assert reopened.event_log.count == store.event_log.count

        result = reopened.create_election("F", False, ["A"])
        assert result.data["election_id"] == 2
        assert reopened.event_log.last_event.event_id == "EVT-00000005"
        assert reopened.check_invariants() == []

    def test_failed_operation_writes_nothing_to_disk(self, tmp_path: Path, host: Host) -> None:
        store = ElectionStore.open(tmp_path, host)
        store.create_election("E", False, ["A"])
        before = (tmp_path / "state.json").read_text(encoding="utf-8")
        store.create_election("E", False, ["A"])
        store.vote("E", "A", 1)
        assert (tmp_path / "state.json").read_text(encoding="utf-8") == before

    def _registration_history(self, tmp_path: Path, host: Host) -> list[str]:
        store = ElectionStore.open(tmp_path, host)
        store.create_election("E", True, ["A"])
        store.open_registration("E")
        store.register("E", "bob")
        store.open_election("E")
        events_path = tmp_path / "events.jsonl"
        return events_path.read_text(encoding="utf-8").splitlines(keepends=True)

    def test_removed_event_refuses_to_load(self, tmp_path: Path, host: Host) -> None:
        lines = self._registration_history(tmp_path, host)
        assert len(lines) == 4
        del lines[2]  # the VOTER_REGISTERED record
        (tmp_path / "events.jsonl").write_text("".join(lines), encoding="utf-8")

        with pytest.raises(ValueError, match="out of sequence"):
            ElectionStore.open(tmp_path, host)

    def test_truncated_log_keeps_accepting_changes(self, tmp_path: Path, host: Host) -> None:
        lines = self._registration_history(tmp_path, host)
        (tmp_path / "events.jsonl").write_text("".join(lines[:-1]), encoding="utf-8")

        reopened = ElectionStore.open(tmp_path, host)
        assert reopened.event_log.count == 3
        result = reopened.close_election("E")
        assert result.success, result.errors
        assert reopened.event_log.last_event.event_id == "EVT-00000004"

    def test_flush_failure_degrades_without_rollback(self, host: Host, tmp_path: Path) -> None:
        store = ElectionStore(host, kv=_FailingFlushStore(tmp_path / "state.json"))
        result = store.create_election("E", False, ["A"])
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert store.election_exists("E")
        assert store.status()["persistence_degraded"]


# ==================================================================
# Queries and audit
# ==================================================================

class TestQueries:
    def test_unknown_election_defaults(self, store: ElectionStore) -> None:
        assert not store.election_exists("E")
        assert store.get_election("E") is None
        assert store.get_owner(1) is None
        assert store.get_election_id("E") is None
        assert not store.is_election_open("E")
        assert not store.is_registration_open(1)
        assert store.get_proposals("E") == []
        assert store.get_votes("E", "A") == 0
        assert store.get_result("E") == []
        assert store.get_winner("E") == ("", 0)
        assert not store.is_registered("E", "x")
        assert store.get_weight("E", "x") == 0
        assert not store.has_voted("E", "x")

    def test_unknown_proposal_has_no_votes(self, store: ElectionStore) -> None:
        _open_election(store)
        assert store.get_votes("E", "Z") == 0

    def test_status(self, store: ElectionStore) -> None:
        _open_election(store, name="E")
        store.create_election("F", False, ["A"])
        store.open_registration("F")
        status = store.status()
        assert status["elections"] == {"total": 2, "open": 1, "registration_open": 1}
        assert status["next_election_id"] == 3
        assert status["events"] == 4
        assert not status["persistence_degraded"]


class TestInvariantAudit:
    def test_healthy_store(self, store: ElectionStore, host: Host) -> None:
        _open_election(store)
        with host.acting_as("x"):
            store.vote("E", "A", 1)
        with host.acting_as("y"):
            store.delegate_vote("E", "z", 1)
        assert store.check_invariants() == []

    def test_consumed_with_weight_detected(self, store: ElectionStore, kv: KeyValueStore) -> None:
        _open_election(store)
        kv.insert("voters", (1, "x"), {"weight": 3, "consumed": True})
        errors = store.check_invariants()
        assert any("consumed with weight 3" in e for e in errors)

    def test_tally_mismatch_detected(self, store: ElectionStore, kv: KeyValueStore) -> None:
        _open_election(store)
        kv.insert("proposal_tallies", (1, 1), 10)
        errors = store.check_invariants()
        assert any("tallies sum to 10" in e for e in errors)
