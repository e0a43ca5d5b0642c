"""
In-memory per-unit registry.

DictRegistry satisfies the UnitRegistry protocol with a plain dict. It
keeps every unit for the life of the fit and is not thread-safe; callers
that ingest from several threads must serialize calls to the
orchestrator anyway (the global state has a single writer).
"""

from __future__ import annotations

from typing import Hashable, Iterator

from streamlmm.online._common import UnitState


class DictRegistry:
    """Dict-backed unit registry.

    Examples:
        >>> registry = DictRegistry()
        >>> registry.put('s1', state)
        >>> registry.get('s1') is state
        True
        >>> registry.get('s2') is None
        True
    """

    def __init__(self, states: dict[Hashable, UnitState] | None = None):
        self._states: dict[Hashable, UnitState] = dict(states or {})

    def get(self, unit_id: Hashable) -> UnitState | None:
        return self._states.get(unit_id)

    def put(self, unit_id: Hashable, state: UnitState) -> None:
        self._states[unit_id] = state

    def states(self) -> list[UnitState]:
        """All stored unit states, in insertion order."""
        return list(self._states.values())

    def __contains__(self, unit_id: Hashable) -> bool:
        return unit_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._states)

    def __repr__(self) -> str:
        return f"DictRegistry(n_units={len(self._states)})"
