"""
Failure taxonomy for the attribution refresh path.

Every error raised inside a refresh attempt derives from AttributionError, so the
cache can catch a single type at its refresh boundary. `retryable` tells the cache
whether the next poll may succeed without operator intervention.
"""

from __future__ import annotations

class AttributionError(Exception):
    retryable = True

class DataUnavailable(AttributionError):
    """The telemetry source could not be reached or returned an unreadable table."""

class EmptyTopology(AttributionError):
    """The build produced zero usable devices."""

class PlayerCountTooLarge(AttributionError):
    """Too many players for exact enumeration; lower the collapse threshold."""

    retryable = False

    def __init__(self, n_players: int, ceiling: int) -> None:
        super().__init__(f"{n_players} players exceeds the exact-computation ceiling of {ceiling}; "
                         f"raise the collapse threshold or enable approximation")
        self.n_players = n_players
        self.ceiling = ceiling

class ComputationTimeout(AttributionError):
    """A refresh exceeded its deadline or was cancelled."""

class NumericalInconsistency(AttributionError):
    """Shapley values do not sum to the grand-coalition value."""

    retryable = False
