"""Host environment — who is calling, and when.

The engine never authenticates anyone. The host hands it a principal
for every call and a clock for lifecycle timestamps; both are trusted.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Host:
    """Caller identity and clock supplied to the ElectionStore.

    Usage:
        host = Host(caller="alice")
        store = ElectionStore(host)
        store.create_election("board-2026", False, ["yes", "no"])

        with host.acting_as("bob"):
            store.vote("board-2026", "yes", 1)
    """

    def __init__(
        self,
        caller: str = "",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.caller = caller
        self._clock = clock or _utc_now

    def now(self) -> datetime:
        """Current UTC time as reported by the host."""
        return self._clock()

    @contextmanager
    def acting_as(self, principal: str) -> Iterator[Host]:
        """Temporarily switch the calling principal."""
        previous = self.caller
        self.caller = principal
        try:
            yield self
        finally:
            self.caller = previous
