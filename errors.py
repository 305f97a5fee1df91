"""Exception types raised by the catalog loader and the solver."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

Coord = Tuple[int, int, int]


class TileSolverError(Exception):
    """Base class for everything this package raises on purpose."""


class CatalogError(TileSolverError, ValueError):
    """Malformed tile catalog, rejected before any solve begins."""

    def __init__(self, message: str, *, tile_id: Optional[str] = None):
        self.tile_id = tile_id
        if tile_id:
            message = f"tile {tile_id!r}: {message}"
        super().__init__(message)


class SolverError(TileSolverError):
    """A recoverable failure inside one solve attempt."""

    reason = "solver error"

    def __init__(self, message: Optional[str] = None, *, coords: Optional[List[Coord]] = None):
        self.coords: List[Coord] = list(coords or [])
        super().__init__(message or self.reason)


class LocalContradiction(SolverError):
    reason = "Contradiction: a cell ran out of candidate tiles"


class CollapseFailure(SolverError):
    reason = "Collapse failed: no candidate with positive weight"


class SolveCancelled(SolverError):
    """The caller asked the solve to stop; ``snapshot`` holds the partial grid."""

    reason = "Solve cancelled"

    def __init__(self, message: Optional[str] = None, *, snapshot: Any = None, attempts: int = 0):
        super().__init__(message)
        self.snapshot = snapshot
        self.attempts = attempts


class AttemptExhaustion(SolverError):
    """Every attempt failed; carries what the last attempt left behind."""

    reason = "No fully collapsed grid within the attempt budget"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        attempts: int = 0,
        diagnostics: Optional[Dict[str, Any]] = None,
        assignments: Optional[Dict[Coord, str]] = None,
        last_reason: Optional[str] = None,
        snapshot: Any = None,
        seed: Optional[int] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.snapshot = snapshot
        self.seed = seed
        self.diagnostics: Dict[str, Any] = dict(diagnostics or {})
        self.assignments: Dict[Coord, str] = dict(assignments or {})
        self.last_reason = last_reason


__all__ = [
    "TileSolverError",
    "CatalogError",
    "SolverError",
    "LocalContradiction",
    "CollapseFailure",
    "SolveCancelled",
    "AttemptExhaustion",
]
