# solver/collapse.py — cell selection and the weighted collapse step
from __future__ import annotations

import math
import random
from typing import List, Optional, Tuple

from errors import CollapseFailure
from models import Coord, Tile, compatible
from solver.entropy import find_min_entropy
from solver.grid import Grid
from solver.propagation import relaxation_tile


def select_cell(grid: Grid, rng: random.Random, tunneling_probability: float) -> Optional[Tuple[Coord, bool]]:
    """
    Next cell to collapse as ``(coord, tunneled)``, or ``None``.

    The minimum-entropy cell wins when one exists. When only contradicted
    cells are left, one RNG roll decides whether to tunnel into a random
    unresolved cell.
    """
    coord = find_min_entropy(grid)
    if coord is not None:
        return coord, False
    remaining = grid.unresolved()
    if not remaining:
        return None
    if tunneling_probability > 0 and rng.random() < tunneling_probability:
        pick = remaining[rng.randrange(len(remaining))]
        return pick.coord, True
    return None


def interference(grid: Grid, coord: Coord, tile: Tile) -> float:
    cell = grid[coord]
    alpha = grid.options.interference_alpha
    total = 0.0
    for direction, other in grid.neighbors(coord):
        if not other.resolved:
            continue
        term = math.cos(abs(cell.phase - other.phase)) * alpha
        total += term if compatible(tile, other.tile, direction) else -term
    return total


def effective_weights(grid: Grid, coord: Coord) -> List[Tuple[Tile, float]]:
    return [(t, t.weight * (1.0 + interference(grid, coord, t))) for t in grid[coord].candidates]


def collapse_cell(grid: Grid, coord: Coord, rng: random.Random, *, tunneled: bool = False) -> Tuple[Tile, bool]:
    """
    Resolve ``coord`` and return ``(tile, relaxed)``. Propagation is left to
    the caller.

    Tunneled cells, and cells whose candidates all carry a non-positive
    effective weight when the relaxation roll succeeds, go through
    :func:`relaxation_tile`. Otherwise a non-positive total raises
    :class:`CollapseFailure`.
    """
    cell = grid[coord]
    if cell.resolved:
        return cell.tile, cell.relaxed

    if tunneled or not cell.candidates:
        tile = relaxation_tile(grid, coord, rng)
        grid.resolve(cell, tile, relaxed=True)
        return tile, True

    weighted = [(t, w) for t, w in effective_weights(grid, coord) if w > 0]
    if not weighted:
        p = grid.options.tunneling_probability
        if p > 0 and rng.random() < p:
            tile = relaxation_tile(grid, coord, rng)
            grid.resolve(cell, tile, relaxed=True)
            return tile, True
        raise CollapseFailure("no candidate has a positive effective weight", coords=[coord])

    total = sum(w for _t, w in weighted)
    r = rng.random() * total
    acc = 0.0
    chosen = weighted[-1][0]
    for t, w in weighted:
        acc += w
        if r < acc:
            chosen = t
            break
    grid.resolve(cell, chosen)
    return chosen, False


__all__ = ["select_cell", "interference", "effective_weights", "collapse_cell"]
