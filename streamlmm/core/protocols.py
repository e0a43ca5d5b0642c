"""
Core protocols for streamlmm.

These define structural interfaces for the collaborators the estimator
talks to but does not own. We use Protocol (structural typing) rather
than ABC (nominal typing) so that any key-value store with the right
methods can be plugged in.
"""

from typing import Protocol, Hashable, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from streamlmm.online._common import UnitState


@runtime_checkable
class UnitRegistry(Protocol):
    """
    Protocol for the external per-unit store.

    Maps a unit identifier to the latest UnitState for that unit. The
    orchestrator reads a unit's state before processing its observation
    and the caller writes the returned state back afterwards.

    A registry is free to evict or archive entries, but removing a unit
    from the registry must never subtract its T1j/T2j/T3j contributions
    from the global sufficient statistics: those stay part of the model
    for the life of the fit. An evicted unit that reappears is treated
    as a new unit.
    """

    def get(self, unit_id: Hashable) -> 'UnitState | None':
        """
        Look up the state for a unit.

        Args:
            unit_id: Opaque unit identifier

        Returns:
            The stored UnitState, or None if the unit has not been seen
        """
        ...

    def put(self, unit_id: Hashable, state: 'UnitState') -> None:
        """
        Store the state for a unit, replacing any previous entry.

        Args:
            unit_id: Opaque unit identifier
            state: UnitState returned by the orchestrator
        """
        ...
