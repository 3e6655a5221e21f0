"""Namespaced key-value store — the storage primitive the engine runs on.

Keys are ints, strings, or tuples of those (composite keys such as
(election_id, principal)). Values are JSON-compatible.

Writes made inside transaction() are staged and only become visible to
the rest of the store when the block exits normally. Any exception
discards the staged writes, so a failed operation leaves the store
exactly as it was before the call.

With a storage_path, flush() writes the committed state to a JSON file
(temp file + atomic replace). The file is loaded back on construction.
"""

from __future__ import annotations

import copy
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

Key = Union[int, str, tuple]

_FORMAT_VERSION = 1


def _encode_key(key: Key) -> str:
    if isinstance(key, tuple):
        return json.dumps(list(key), ensure_ascii=False)
    return json.dumps(key, ensure_ascii=False)


def _decode_key(raw: str) -> Key:
    value = json.loads(raw)
    if isinstance(value, list):
        return tuple(value)
    return value


class KeyValueStore:
    """In-memory key-value store with staged transactions and file persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._data: dict[str, dict[Key, Any]] = {}
        self._staged: Optional[dict[str, dict[Key, Any]]] = None
        self._storage_path = storage_path
        self._dirty = False

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # get / insert / contains
    # ------------------------------------------------------------------

    def get(self, namespace: str, key: Key, default: Any = None) -> Any:
        """Return a copy of the value stored under key, or default."""
        if self._staged is not None:
            staged = self._staged.get(namespace, {})
            if key in staged:
                return copy.deepcopy(staged[key])
        committed = self._data.get(namespace, {})
        if key in committed:
            return copy.deepcopy(committed[key])
        return default

    def insert(self, namespace: str, key: Key, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        target = self._staged if self._staged is not None else self._data
        target.setdefault(namespace, {})[key] = copy.deepcopy(value)
        if self._staged is None:
            self._dirty = True

    def contains(self, namespace: str, key: Key) -> bool:
        if self._staged is not None and key in self._staged.get(namespace, {}):
            return True
        return key in self._data.get(namespace, {})

    def keys(self, namespace: str) -> list[Key]:
        """Return every key of a namespace, staged keys included."""
        result = list(self._data.get(namespace, {}))
        if self._staged is not None:
            seen = set(result)
            result.extend(
                k for k in self._staged.get(namespace, {}) if k not in seen
            )
        return result

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._staged is not None

    @contextmanager
    def transaction(self) -> Iterator[KeyValueStore]:
        """Stage writes and apply them all when the block succeeds.

        A nested transaction joins the enclosing one.
        """
        if self._staged is not None:
            yield self
            return

        self._staged = {}
        try:
            yield self
        except BaseException:
            self._staged = None
            raise

        staged, self._staged = self._staged, None
        for namespace, entries in staged.items():
            self._data.setdefault(namespace, {}).update(entries)
        if staged:
            self._dirty = True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> None:
        """Write committed state to the storage file, if one is configured.

        Raises OSError if the write fails. Staged writes are never flushed.
        """
        if self._storage_path is None or not self._dirty:
            return
        document = {
            "version": _FORMAT_VERSION,
            "namespaces": {
                namespace: {_encode_key(k): v for k, v in entries.items()}
                for namespace, entries in self._data.items()
            },
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, sort_keys=True, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._storage_path)
        self._dirty = False

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            document = json.load(f)

        version = document.get("version")
        if version != _FORMAT_VERSION:
            raise ValueError(
                f"Unsupported state file version {version!r} in {path}"
            )
        for namespace, entries in document.get("namespaces", {}).items():
            self._data[namespace] = {
                _decode_key(raw): value for raw, value in entries.items()
            }
