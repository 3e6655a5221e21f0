"""ballotbox CLI — operator interface to a persistent election store.

Usage:
    python -m ballotbox.cli --caller alice create-election --name board --proposal yes --proposal no
    python -m ballotbox.cli --caller alice open-election --name board
    python -m ballotbox.cli --caller bob vote --name board --proposal yes --weight 1
    python -m ballotbox.cli results --name board
    python -m ballotbox.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable

from ballotbox.config import load_config
from ballotbox.host import Host
from ballotbox.logging import setup_logging
from ballotbox.models.election import ElectionRef
from ballotbox.store import ElectionStore, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_store(args: argparse.Namespace) -> ElectionStore:
    """Create an ElectionStore with durable persistence."""
    config = load_config(args.config)
    setup_logging(config.log_level, config.log_json)
    data_dir = args.data or config.data_dir or DEFAULT_DATA
    return ElectionStore.open(data_dir, Host(caller=args.caller), config)


def _election_ref(args: argparse.Namespace) -> ElectionRef:
    return args.id if args.id is not None else args.name


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message.format(**result.data))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _print_json(data: Any) -> int:
    print(json.dumps(data, indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    return _print_json(_make_store(args).status())


def cmd_create_election(args: argparse.Namespace) -> int:
    store = _make_store(args)
    result = store.create_election(
        name=args.name,
        requires_registration=args.require_registration,
        proposals=args.proposal or [],
    )
    return _report(result, "Created election: {name} (id {election_id})")


def _lifecycle_command(
    operation: Callable[[ElectionStore], Callable[[ElectionRef], ServiceResult]],
    verb: str,
) -> Callable[[argparse.Namespace], int]:
    def handler(args: argparse.Namespace) -> int:
        store = _make_store(args)
        result = operation(store)(_election_ref(args))
        return _report(result, f"{verb} for election {{election_id}}")
    return handler


cmd_open_election = _lifecycle_command(lambda s: s.open_election, "Voting opened")
cmd_close_election = _lifecycle_command(lambda s: s.close_election, "Voting closed")
cmd_open_registration = _lifecycle_command(
    lambda s: s.open_registration, "Registration opened",
)
cmd_close_registration = _lifecycle_command(
    lambda s: s.close_registration, "Registration closed",
)


def cmd_register(args: argparse.Namespace) -> int:
    store = _make_store(args)
    ref = _election_ref(args)
    if args.voter:
        result = store.register(ref, args.voter)
    else:
        result = store.register_me(ref)
    return _report(result, "Registered {voter} in election {election_id}")


def cmd_vote(args: argparse.Namespace) -> int:
    store = _make_store(args)
    result = store.vote(_election_ref(args), args.proposal, args.weight)
    return _report(
        result,
        "Voted for {proposal} (tally {tally}, remaining weight {remaining_weight})",
    )


def cmd_delegate(args: argparse.Namespace) -> int:
    store = _make_store(args)
    result = store.delegate_vote(_election_ref(args), args.to, args.weight)
    return _report(
        result,
        "Delegated to {delegate} (their weight {delegate_weight}, "
        "your remaining weight {remaining_weight})",
    )


def cmd_change_owner(args: argparse.Namespace) -> int:
    store = _make_store(args)
    result = store.change_ownership(_election_ref(args), args.new_owner)
    return _report(result, "Election {election_id} now owned by {owner}")


def _require_election(store: ElectionStore, ref: ElectionRef) -> bool:
    if store.election_exists(ref):
        return True
    print(f"Failed: Election not found: {ref!r}", file=sys.stderr)
    return False


def cmd_results(args: argparse.Namespace) -> int:
    store = _make_store(args)
    ref = _election_ref(args)
    if not _require_election(store, ref):
        return 1
    return _print_json([
        {"proposal": label, "votes": votes}
        for label, votes in store.get_result(ref)
    ])


def cmd_winner(args: argparse.Namespace) -> int:
    store = _make_store(args)
    ref = _election_ref(args)
    if not _require_election(store, ref):
        return 1
    label, votes = store.get_winner(ref)
    if votes == 0:
        print("No winner yet")
        return 0
    print(f"{label} ({votes})")
    return 0


def cmd_voter(args: argparse.Namespace) -> int:
    store = _make_store(args)
    ref = _election_ref(args)
    if not _require_election(store, ref):
        return 1
    voter = args.voter or args.caller
    return _print_json({
        "voter": voter,
        "registered": store.is_registered(ref, voter),
        "weight": store.get_weight(ref, voter),
        "has_voted": store.has_voted(ref, voter),
    })


def cmd_events(args: argparse.Namespace) -> int:
    store = _make_store(args)
    ref = _election_ref(args)
    events = store.events(ref, since_utc=args.since)
    return _print_json([e.to_record() for e in events])


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Audit the persisted election state."""
    store = _make_store(args)
    errors = store.check_invariants()
    if errors:
        print("Invariant check FAILED:")
        for error in errors:
            print(f"- {error}")
        return 1
    print("Invariant check passed.")
    return 0


def _add_election_args(parser: argparse.ArgumentParser, required: bool = True) -> None:
    group = parser.add_mutually_exclusive_group(required=required)
    group.add_argument("--name", help="Election name")
    group.add_argument("--id", type=int, help="Election id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ballotbox",
        description="ballotbox — weighted election engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: BALLOTBOX_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--caller",
        default="operator",
        help="Principal issuing the command (default: operator)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show store status")

    # create-election
    p_create = sub.add_parser("create-election", help="Create an election")
    p_create.add_argument("--name", required=True, help="Election name")
    p_create.add_argument(
        "--proposal", action="append",
        help="Proposal label (repeat for each proposal, in order)",
    )
    p_create.add_argument(
        "--require-registration", action="store_true",
        help="Only registered voters may vote",
    )

    # lifecycle
    for command, help_text in (
        ("open-election", "Open voting"),
        ("close-election", "Close voting"),
        ("open-registration", "Open registration"),
        ("close-registration", "Close registration"),
    ):
        _add_election_args(sub.add_parser(command, help=help_text))

    # register
    p_reg = sub.add_parser("register", help="Register a voter (default: the caller)")
    _add_election_args(p_reg)
    p_reg.add_argument("--voter", help="Principal to register")

    # vote
    p_vote = sub.add_parser("vote", help="Vote for a proposal")
    _add_election_args(p_vote)
    p_vote.add_argument("--proposal", required=True, help="Proposal label")
    p_vote.add_argument("--weight", type=int, default=1, help="Weight to spend (default: 1)")

    # delegate
    p_del = sub.add_parser("delegate", help="Delegate weight to another voter")
    _add_election_args(p_del)
    p_del.add_argument("--to", required=True, help="Delegate principal")
    p_del.add_argument("--weight", type=int, default=1, help="Weight to move (default: 1)")

    # change-owner
    p_own = sub.add_parser("change-owner", help="Transfer election ownership")
    _add_election_args(p_own)
    p_own.add_argument("--new-owner", required=True, help="New owner principal")

    # queries
    _add_election_args(sub.add_parser("results", help="Show per-proposal tallies"))
    _add_election_args(sub.add_parser("winner", help="Show the leading proposal"))
    p_voter = sub.add_parser("voter", help="Show a voter record (default: the caller)")
    _add_election_args(p_voter)
    p_voter.add_argument("--voter", help="Principal to inspect")
    p_events = sub.add_parser("events", help="Show the event log")
    _add_election_args(p_events, required=False)
    p_events.add_argument(
        "--since", help="Only events at or after this UTC time (YYYY-MM-DDTHH:MM:SSZ)",
    )

    # check-invariants
    sub.add_parser("check-invariants", help="Audit stored election state")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "create-election": cmd_create_election,
        "open-election": cmd_open_election,
        "close-election": cmd_close_election,
        "open-registration": cmd_open_registration,
        "close-registration": cmd_close_registration,
        "register": cmd_register,
        "vote": cmd_vote,
        "delegate": cmd_delegate,
        "change-owner": cmd_change_owner,
        "results": cmd_results,
        "winner": cmd_winner,
        "voter": cmd_voter,
        "events": cmd_events,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
