"""Store configuration.

Sources, lowest precedence first:
1. Built-in defaults.
2. config/election_policy.json (StoreConfig.from_config_dir).
3. Environment variables, with a .env file loaded through python-dotenv:
   BALLOTBOX_DATA_DIR, BALLOTBOX_LOG_LEVEL, BALLOTBOX_LOG_JSON,
   BALLOTBOX_INITIAL_WEIGHT.

Invalid values raise ValueError at load time.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from ballotbox.models.election import MAX_WEIGHT

POLICY_FILENAME = "election_policy.json"

ENV_DATA_DIR = "BALLOTBOX_DATA_DIR"
ENV_LOG_LEVEL = "BALLOTBOX_LOG_LEVEL"
ENV_LOG_JSON = "BALLOTBOX_LOG_JSON"
ENV_INITIAL_WEIGHT = "BALLOTBOX_INITIAL_WEIGHT"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class StoreConfig:
    """Runtime settings of an ElectionStore.

    initial_voter_weight is the weight granted by explicit registration
    and by lazy auto-registration.
    """
    initial_voter_weight: int = 1
    data_dir: Optional[Path] = None
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.initial_voter_weight, bool) or not isinstance(
            self.initial_voter_weight, int
        ):
            raise ValueError("initial_voter_weight must be an integer")
        if not 1 <= self.initial_voter_weight <= MAX_WEIGHT:
            raise ValueError("initial_voter_weight must be >= 1")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StoreConfig:
        known = {"initial_voter_weight", "data_dir", "log_level", "log_json"}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        kwargs: dict[str, Any] = dict(data)
        if kwargs.get("data_dir") is not None:
            kwargs["data_dir"] = Path(kwargs["data_dir"])
        return cls(**kwargs)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> StoreConfig:
        """Load the policy file of a config directory, if present."""
        path = config_dir / POLICY_FILENAME
        if not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> StoreConfig:
        """Return a copy with environment overrides applied."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        if env.get(ENV_DATA_DIR):
            overrides["data_dir"] = Path(env[ENV_DATA_DIR])
        if env.get(ENV_LOG_LEVEL):
            overrides["log_level"] = env[ENV_LOG_LEVEL]
        if ENV_LOG_JSON in env:
            overrides["log_json"] = _parse_bool(ENV_LOG_JSON, env[ENV_LOG_JSON])
        if env.get(ENV_INITIAL_WEIGHT):
            try:
                overrides["initial_voter_weight"] = int(env[ENV_INITIAL_WEIGHT])
            except ValueError:
                raise ValueError(
                    f"{ENV_INITIAL_WEIGHT} must be an integer, "
                    f"got {env[ENV_INITIAL_WEIGHT]!r}"
                ) from None
        return replace(self, **overrides) if overrides else self


def load_config(
    config_dir: Optional[Path] = None,
    dotenv_path: Optional[Path] = None,
) -> StoreConfig:
    """Build the effective configuration from file and environment."""
    load_dotenv(dotenv_path)
    base = StoreConfig.from_config_dir(config_dir) if config_dir else StoreConfig()
    return base.with_env()
