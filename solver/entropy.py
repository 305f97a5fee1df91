# solver/entropy.py — Shannon and phase-amplified entropy over candidate sets
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, Optional, Sequence

from config import SolverOptions
from models import Coord, Tile

if TYPE_CHECKING:  # pragma: no cover
    from solver.grid import Cell, Grid


def shannon_entropy(tiles: Sequence[Tile]) -> float:
    """Entropy in bits of the base-weight distribution over ``tiles``."""
    if len(tiles) <= 1:
        return 0.0
    total = sum(t.weight for t in tiles)
    if total <= 0:
        return 0.0
    h = 0.0
    for t in tiles:
        p = t.weight / total
        if p > 0:
            h -= p * math.log2(p)
    return h


def quantum_entropy(
    tiles: Sequence[Tile],
    amplitude: float,
    phase: float,
    *,
    amplitude_gain: float = 0.5,
    phase_gain: float = 0.3,
) -> float:
    base = shannon_entropy(tiles)
    return base * (1.0 + amplitude * amplitude_gain + abs(math.sin(phase)) * phase_gain)


def cell_entropy(cell: "Cell", options: SolverOptions) -> float:
    if cell.resolved or not cell.candidates:
        return 0.0
    return quantum_entropy(
        cell.candidates,
        cell.amplitude,
        cell.phase,
        amplitude_gain=options.entropy_amplitude_gain,
        phase_gain=options.entropy_phase_gain,
    )


def refresh_entropy(cell: "Cell", options: SolverOptions) -> float:
    cell.entropy = cell_entropy(cell, options)
    return cell.entropy


def find_min_entropy(grid: "Grid") -> Optional[Coord]:
    """Lowest-entropy unresolved, non-contradicted cell; first one wins ties."""
    best: Optional[Coord] = None
    best_h = math.inf
    for cell in grid:
        if cell.resolved or not cell.candidates:
            continue
        if cell.entropy < best_h:
            best_h = cell.entropy
            best = cell.coord
    return best


def is_effectively_zero(entropy: float, threshold: float = 0.01) -> bool:
    return entropy < threshold


def entropy_gradient(grid: "Grid") -> Dict[Coord, float]:
    """Mean absolute entropy difference to unresolved neighbours (0 for resolved cells)."""
    out: Dict[Coord, float] = {}
    for cell in grid:
        if cell.resolved:
            out[cell.coord] = 0.0
            continue
        total = 0.0
        n = 0
        for _d, other in grid.neighbors(cell.coord):
            if other.resolved:
                continue
            total += abs(cell.entropy - other.entropy)
            n += 1
        out[cell.coord] = total / n if n else 0.0
    return out


__all__ = [
    "shannon_entropy",
    "quantum_entropy",
    "cell_entropy",
    "refresh_entropy",
    "find_min_entropy",
    "is_effectively_zero",
    "entropy_gradient",
]
