"""
Tracks tab ids currently undergoing archival so one process never works the
same tab twice at once.

The registry is owned by an orchestrator instance (not a module global) so
independent orchestrators keep isolated state. It is deliberately in-memory:
a restart forgets it, and the durable "archiving" markers in the store cover
that window.
"""

from __future__ import annotations

from collections.abc import Iterator

from closure.observability.telemetry import counter, log_event


class InFlightRegistry:
    """In-memory set of tab ids mid-archival."""

    def __init__(self) -> None:
        self._ids: set[int] = set()

    def claim(self, tab_id: int) -> bool:
        """Add tab_id if absent. Returns False when it is already claimed.

        Side Effects:
            Adds tab_id to the registry.
            Increments a counter when a duplicate claim is refused.
        """
        if tab_id in self._ids:
            counter("inflight.duplicate_claim")
            log_event("inflight.duplicate", tab_id=tab_id)
            return False
        self._ids.add(tab_id)
        return True

    def release(self, tab_id: int) -> None:
        """Remove tab_id if present (safe to call twice)."""
        self._ids.discard(tab_id)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        self._ids.clear()
