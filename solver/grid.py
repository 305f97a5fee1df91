# solver/grid.py — per-attempt grid state and read-only snapshots
from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from config import SolverOptions
from models import DIRECTIONS, Bounds, Coord, Direction, Tile, step
from solver.entropy import refresh_entropy
from tiles import TileCatalog

# Marker used in assignment maps for cells that never resolved.
FAILED = "!"


@dataclass
class Cell:
    coord: Coord
    candidates: List[Tile]
    phase: float
    amplitude: float
    resolved: bool = False
    tile: Optional[Tile] = None
    entropy: float = 0.0
    relaxed: bool = False

    @property
    def contradicted(self) -> bool:
        return not self.resolved and not self.candidates


@dataclass(frozen=True)
class CellView:
    coord: Coord
    candidates: Tuple[str, ...]
    resolved: bool
    tile_id: Optional[str]
    entropy: float
    phase: float
    amplitude: float
    relaxed: bool

    @property
    def contradicted(self) -> bool:
        return not self.resolved and not self.candidates


@dataclass(frozen=True)
class GridSnapshot:
    """Copy of a grid's state handed to anything outside the solve session."""

    bounds: Bounds
    cells: Dict[Coord, CellView] = field(repr=False)

    def __getitem__(self, coord: Coord) -> CellView:
        return self.cells[coord]

    def __iter__(self) -> Iterator[CellView]:
        return iter(self.cells.values())

    def __len__(self) -> int:
        return len(self.cells)

    def is_fully_collapsed(self) -> bool:
        return all(c.resolved for c in self.cells.values())

    def assignments(self) -> Dict[Coord, str]:
        return {coord: (c.tile_id if c.resolved else FAILED) for coord, c in self.cells.items()}


class Grid:
    """
    Mutable solver state for one attempt: every in-bounds coordinate owns one
    :class:`Cell`. Only the solve session mutates it; everyone else reads
    :meth:`snapshot`.
    """

    def __init__(self, catalog: TileCatalog, bounds: Bounds, rng: random.Random, options: SolverOptions):
        self.catalog = catalog
        self.bounds = bounds
        self.options = options
        self.cells: Dict[Coord, Cell] = {}
        tiles = list(catalog)
        for coord in bounds.coords():
            phase = rng.random() * 2.0 * math.pi
            amplitude = options.coherence * (0.5 + 0.5 * math.sin(phase))
            self.cells[coord] = Cell(coord, list(tiles), phase, amplitude)
        for cell in self.cells.values():
            if len(cell.candidates) == 1:
                self.resolve(cell, cell.candidates[0])
            else:
                refresh_entropy(cell, options)

    def __contains__(self, coord: object) -> bool:
        return coord in self.cells

    def __getitem__(self, coord: Coord) -> Cell:
        return self.cells[coord]

    def __iter__(self) -> Iterator[Cell]:
        return iter(self.cells.values())

    def __len__(self) -> int:
        return len(self.cells)

    def neighbors(self, coord: Coord) -> Iterator[Tuple[Direction, Cell]]:
        for d in DIRECTIONS:
            other = step(coord, d)
            cell = self.cells.get(other)
            if cell is not None:
                yield d, cell

    def resolve(self, cell: Cell, tile: Tile, *, relaxed: bool = False) -> None:
        cell.candidates = [tile]
        cell.tile = tile
        cell.resolved = True
        cell.amplitude = 0.0
        cell.entropy = 0.0
        cell.relaxed = relaxed

    def unresolved(self) -> List[Cell]:
        return [c for c in self.cells.values() if not c.resolved]

    def is_fully_collapsed(self) -> bool:
        return all(c.resolved for c in self.cells.values())

    def resolved_count(self) -> int:
        return sum(1 for c in self.cells.values() if c.resolved)

    def snapshot(self) -> GridSnapshot:
        return GridSnapshot(
            self.bounds,
            {
                coord: CellView(
                    coord,
                    tuple(t.id for t in c.candidates),
                    c.resolved,
                    c.tile.id if c.tile is not None else None,
                    c.entropy,
                    c.phase,
                    c.amplitude,
                    c.relaxed,
                )
                for coord, c in self.cells.items()
            },
        )


__all__ = ["Cell", "CellView", "Grid", "GridSnapshot", "FAILED"]
