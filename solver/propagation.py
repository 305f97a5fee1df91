# solver/propagation.py — constraint propagation, relaxation and validation
"""
Single home for grid traversal: the breadth-first propagation fixpoint that
runs after every collapse, the relaxation ("tunneling") policy used when a
cell runs dry, and the read-only checks (contradictions, violations,
satisfaction ratio) the session and the diagnostics rely on.
"""
from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from models import Coord, Direction, Tile, compatible, step
from solver.entropy import refresh_entropy
from solver.grid import Cell, Grid


@dataclass
class PropagationResult:
    origin: Coord
    changed: int = 0
    resolved: List[Coord] = field(default_factory=list)
    relaxed: List[Coord] = field(default_factory=list)
    contradictions: List[Coord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.contradictions


@dataclass(frozen=True)
class Violation:
    coord: Coord
    neighbor: Coord
    direction: Direction
    tile_id: str
    neighbor_tile_id: str


def _weighted_pick(pool: Sequence[Tile], rng: random.Random) -> Tile:
    total = sum(t.weight for t in pool)
    r = rng.random() * total
    acc = 0.0
    for t in pool:
        acc += t.weight
        if r < acc:
            return t
    return pool[-1]


def relaxation_tile(grid: Grid, coord: Coord, rng: random.Random, source: Optional[Tile] = None) -> Tile:
    """
    Pick the tile forced into a cell that has run out of candidates.

    Pool, first non-empty wins: catalog tiles that fit every resolved
    neighbour; tiles that fit ``source`` (the tile whose propagation emptied
    the cell); ``source`` itself; the whole catalog. One weighted draw.
    """
    resolved_neighbors = [(d, c.tile) for d, c in grid.neighbors(coord) if c.resolved]
    pool = [
        t for t in grid.catalog
        if all(compatible(t, other, d) for d, other in resolved_neighbors)
    ]
    if not pool and source is not None:
        pool = [
            t for t in grid.catalog
            if any(compatible(t, other, d) for d, other in resolved_neighbors if other is source)
        ]
        if not pool:
            pool = [source]
    if not pool:
        pool = list(grid.catalog)
    return _weighted_pick(pool, rng)


def _filter_candidates(grid: Grid, source: Cell, direction: Direction, target: Cell) -> List[Tile]:
    allowed = set()
    for s in source.candidates:
        allowed |= grid.catalog.compatible_ids(s.id, direction)
    return [t for t in target.candidates if t.id in allowed]


def propagate(grid: Grid, origin: Coord, rng: random.Random) -> PropagationResult:
    """
    Shrink neighbouring candidate sets until nothing changes.

    Contradictions are recovered with probability ``tunneling_probability``;
    unrecovered ones are recorded while the queue keeps draining, so every
    other cell still ends up consistent with its neighbours.
    """
    options = grid.options
    result = PropagationResult(origin)
    queue = deque([origin])

    while queue:
        current = grid[queue.popleft()]
        if not current.candidates:
            continue
        for direction, neighbor in grid.neighbors(current.coord):
            if neighbor.resolved or not neighbor.candidates:
                continue
            kept = _filter_candidates(grid, current, direction, neighbor)
            if len(kept) == len(neighbor.candidates):
                continue

            result.changed += 1
            neighbor.candidates = kept
            neighbor.amplitude *= options.coherence
            refresh_entropy(neighbor, options)

            if len(kept) == 1:
                grid.resolve(neighbor, kept[0])
                result.resolved.append(neighbor.coord)
                queue.append(neighbor.coord)
            elif not kept:
                if options.tunneling_probability > 0 and rng.random() < options.tunneling_probability:
                    source = current.tile if current.resolved else None
                    grid.resolve(neighbor, relaxation_tile(grid, neighbor.coord, rng, source), relaxed=True)
                    result.relaxed.append(neighbor.coord)
                    queue.append(neighbor.coord)
                else:
                    result.contradictions.append(neighbor.coord)
            else:
                queue.append(neighbor.coord)

    return result


def constrain(grid: Grid, coord: Coord, allowed_ids, rng: random.Random) -> PropagationResult:
    """Restrict one cell to ``allowed_ids`` (a seeded constraint) and propagate."""
    cell = grid[coord]
    result = PropagationResult(coord)
    if cell.resolved:
        if cell.tile.id not in allowed_ids:
            result.contradictions.append(coord)
        return result
    kept = [t for t in cell.candidates if t.id in allowed_ids]
    cell.amplitude = 0.0
    if len(kept) != len(cell.candidates):
        result.changed += 1
    cell.candidates = kept
    refresh_entropy(cell, grid.options)
    if not kept:
        result.contradictions.append(coord)
        return result
    if len(kept) == 1:
        grid.resolve(cell, kept[0])
        result.resolved.append(coord)
    follow = propagate(grid, coord, rng)
    result.changed += follow.changed
    result.resolved.extend(follow.resolved)
    result.relaxed.extend(follow.relaxed)
    result.contradictions.extend(follow.contradictions)
    return result


def find_contradictions(grid: Grid) -> List[Coord]:
    return [c.coord for c in grid if c.contradicted]


def validate_all_constraints(grid: Grid) -> List[Violation]:
    """Every resolved adjacent pair that breaks the adjacency rules (each pair once)."""
    out: List[Violation] = []
    for cell in grid:
        if not cell.resolved:
            continue
        for direction in (Direction.NORTH, Direction.EAST, Direction.UP):
            other_coord = step(cell.coord, direction)
            if other_coord not in grid:
                continue
            other = grid[other_coord]
            if not other.resolved:
                continue
            if not compatible(cell.tile, other.tile, direction):
                out.append(Violation(cell.coord, other_coord, direction, cell.tile.id, other.tile.id))
    return out


def constraint_satisfaction(grid: Grid) -> float:
    """Fraction of resolved neighbour pairs (counted from both sides) that fit."""
    total = 0
    ok = 0
    for cell in grid:
        if not cell.resolved:
            continue
        for direction, other in grid.neighbors(cell.coord):
            if not other.resolved:
                continue
            total += 1
            if compatible(cell.tile, other.tile, direction):
                ok += 1
    return ok / total if total else 1.0


__all__ = [
    "PropagationResult",
    "Violation",
    "propagate",
    "constrain",
    "relaxation_tile",
    "find_contradictions",
    "validate_all_constraints",
    "constraint_satisfaction",
]
