#!/usr/bin/env python3
"""ballotbox invariant checks against the policy file and a data directory."""

import json
import sys
from pathlib import Path

from ballotbox.config import StoreConfig
from ballotbox.host import Host
from ballotbox.store import ElectionStore


ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = ROOT / "config" / "election_policy.json"
DATA_DIR = ROOT / "data"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_policy(policy: dict, errors: list[str]) -> None:
    weight = policy.get("initial_voter_weight", 1)
    if isinstance(weight, bool) or not isinstance(weight, int):
        errors.append(f"initial_voter_weight must be an integer, got {weight!r}")
    elif weight < 1:
        errors.append(f"initial_voter_weight must be >= 1, got {weight}")
    try:
        StoreConfig.from_dict(policy)
    except (TypeError, ValueError) as e:
        errors.append(f"Policy does not load: {e}")


def check(policy_path: Path = POLICY_PATH, data_dir: Path = DATA_DIR) -> int:
    errors: list[str] = []

    if policy_path.exists():
        check_policy(load_json(policy_path), errors)

    # State checks only run against existing data; never create it
    if (data_dir / "state.json").exists():
        try:
            store = ElectionStore.open(data_dir, Host(caller="auditor"))
        except ValueError as e:
            errors.append(f"Stored state does not load: {e}")
        else:
            errors.extend(store.check_invariants())

    if errors:
        print("Invariant check FAILED:")
        for error in errors:
            print(f"- {error}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    data = Path(sys.argv[1]) if len(sys.argv) > 1 else DATA_DIR
    raise SystemExit(check(data_dir=data))
