# solver/patterns.py — learn tile frequencies from finished grids
"""
Pattern learner.

Slides a ``k``-sized window over a fully resolved region of a grid and
records every window's tile ids (and phases) as a :class:`Pattern`. A
:class:`PatternDictionary` counts occurrences across any number of grids;
its :meth:`PatternDictionary.tile_prior` can be fed to
:meth:`tiles.TileCatalog.reweighted` to bias later solves toward the
examples. Nothing here touches the collapse or propagation rules.
"""
from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from models import Coord
from solver.grid import Grid, GridSnapshot


@dataclass(frozen=True)
class Pattern:
    dims: Tuple[int, int, int]
    tile_ids: Tuple[str, ...]
    phases: Tuple[float, ...]
    key: str

    @classmethod
    def build(cls, dims: Tuple[int, int, int], tile_ids: Iterable[str], phases: Iterable[float]) -> "Pattern":
        tile_ids = tuple(tile_ids)
        digest = hashlib.sha1()
        digest.update("x".join(str(d) for d in dims).encode("utf-8"))
        for tid in tile_ids:
            digest.update(b"\x00")
            digest.update(tid.encode("utf-8"))
        return cls(dims, tile_ids, tuple(phases), digest.hexdigest())

    def tile_at(self, dx: int, dy: int, dz: int) -> str:
        _, sy, sz = self.dims
        return self.tile_ids[(dx * sy + dy) * sz + dz]


def _as_snapshot(grid: Union[Grid, GridSnapshot]) -> GridSnapshot:
    return grid.snapshot() if isinstance(grid, Grid) else grid


def _window(snap: GridSnapshot, origin: Coord, dims: Tuple[int, int, int]) -> Optional[Pattern]:
    ox, oy, oz = origin
    ids: List[str] = []
    phases: List[float] = []
    for dx in range(dims[0]):
        for dy in range(dims[1]):
            for dz in range(dims[2]):
                view = snap.cells.get((ox + dx, oy + dy, oz + dz))
                if view is None or not view.resolved:
                    return None
                ids.append(view.tile_id)
                phases.append(view.phase)
    return Pattern.build(dims, ids, phases)


def extract_patterns(grid: Union[Grid, GridSnapshot], size: int = 2) -> Dict[Coord, Pattern]:
    """
    Every fully resolved window keyed by its origin.

    The window spans ``min(size, axis length)`` cells on each axis, so flat
    grids (height 1) still yield patterns.
    """
    if size < 1:
        raise ValueError(f"pattern size must be at least 1, got {size!r}")
    snap = _as_snapshot(grid)
    b = snap.bounds
    dims = (min(size, b.x), min(size, b.y), min(size, b.z))
    out: Dict[Coord, Pattern] = {}
    for x in range(b.x - dims[0] + 1):
        for y in range(b.y - dims[1] + 1):
            for z in range(b.z - dims[2] + 1):
                pattern = _window(snap, (x, y, z), dims)
                if pattern is not None:
                    out[(x, y, z)] = pattern
    return out


class PatternDictionary:
    def __init__(self) -> None:
        self._patterns: Dict[str, Pattern] = {}
        self._weights: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[Pattern]:
        return iter(self._patterns.values())

    def __contains__(self, key: object) -> bool:
        return key in self._patterns

    def add(self, pattern: Pattern) -> None:
        if pattern.key not in self._patterns:
            self._patterns[pattern.key] = pattern
            self._weights[pattern.key] = 0.0
        self._weights[pattern.key] += 1.0

    def get(self, key: str) -> Optional[Pattern]:
        return self._patterns.get(key)

    def weight(self, key: str) -> float:
        return self._weights.get(key, 0.0)

    def weights(self) -> Dict[str, float]:
        return dict(self._weights)

    def normalize(self) -> None:
        total = sum(self._weights.values())
        if total <= 0:
            return
        for key in self._weights:
            self._weights[key] /= total

    def sample(self, rng: random.Random) -> Optional[Pattern]:
        if not self._patterns:
            return None
        keys = list(self._patterns)
        total = sum(self._weights[k] for k in keys)
        r = rng.random() * total
        acc = 0.0
        for k in keys:
            acc += self._weights[k]
            if r < acc:
                return self._patterns[k]
        return self._patterns[keys[-1]]

    def tile_prior(self) -> Dict[str, float]:
        """Per-tile frequency across all patterns (weighted), summing to 1."""
        counts: Dict[str, float] = {}
        for key, pattern in self._patterns.items():
            w = self._weights[key]
            for tid in pattern.tile_ids:
                counts[tid] = counts.get(tid, 0.0) + w
        total = sum(counts.values())
        if total <= 0:
            return {}
        return {tid: c / total for tid, c in counts.items()}


def learn_from_examples(grids: Iterable[Union[Grid, GridSnapshot]], size: int = 2) -> PatternDictionary:
    learned = PatternDictionary()
    for grid in grids:
        for pattern in extract_patterns(grid, size).values():
            learned.add(pattern)
    learned.normalize()
    return learned


__all__ = ["Pattern", "PatternDictionary", "extract_patterns", "learn_from_examples"]
