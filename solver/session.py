# solver/session.py — one attempt: grid + RNG driven one cell at a time
from __future__ import annotations

import random
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from config import SolverOptions
from errors import CollapseFailure, LocalContradiction, SolveCancelled
from models import Bounds, Coord
from solver.collapse import collapse_cell, select_cell
from solver.entropy import entropy_gradient
from solver.grid import Grid, GridSnapshot
from solver.propagation import (
    PropagationResult,
    constrain,
    constraint_satisfaction,
    find_contradictions,
    propagate,
    validate_all_constraints,
)
from tiles import TileCatalog


@dataclass(frozen=True)
class SeedConstraint:
    """Restrict ``coord`` to the tile ids in ``allowed`` before the first collapse."""

    coord: Coord
    allowed: FrozenSet[str]

    @classmethod
    def of(cls, coord, allowed: Iterable[str]) -> "SeedConstraint":
        x, y, z = coord
        return cls((int(x), int(y), int(z)), frozenset(str(a) for a in allowed))


def tag_constraint(catalog: TileCatalog, coord: Coord, tag: str) -> SeedConstraint:
    ids = [t.id for t in catalog.by_tag(tag)]
    if not ids:
        raise ValueError(f"no tile carries tag {tag!r}")
    return SeedConstraint.of(coord, ids)


def center_start(catalog: TileCatalog, bounds: Bounds, tag: str = "start") -> SeedConstraint:
    """Pin the centre of the ground layer to tiles tagged ``tag``."""
    return tag_constraint(catalog, bounds.center(), tag)


class StepStatus(str, Enum):
    COLLAPSED = "collapsed"
    RELAXED = "relaxed"
    CONTRADICTION = "contradiction"
    COLLAPSE_FAILED = "collapse_failed"
    DONE = "done"
    STALLED = "stalled"


@dataclass(frozen=True)
class StepResult:
    status: StepStatus
    coord: Optional[Coord] = None
    tile_id: Optional[str] = None
    propagation: Optional[PropagationResult] = None

    @property
    def finished(self) -> bool:
        return self.status in (StepStatus.DONE, StepStatus.STALLED)


@dataclass(frozen=True)
class Diagnostics:
    total_cells: int
    resolved: int
    unresolved: int
    contradictions: int
    relaxed: int
    violations: int
    mean_entropy: float
    constraint_satisfaction: float
    mean_entropy_gradient: float
    steps: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SolveSession:
    """
    Owns one :class:`Grid` and one seeded ``random.Random``. All mutation goes
    through :meth:`advance_one_cell`, so callers can interleave other work
    between steps; :meth:`run` is the plain loop over it.
    """

    def __init__(
        self,
        catalog: TileCatalog,
        bounds: Bounds,
        *,
        seed: int,
        options: Optional[SolverOptions] = None,
        constraints: Iterable[SeedConstraint] = (),
    ):
        self.options = options or SolverOptions.from_cfg()
        self.seed = int(seed)
        self.rng = random.Random(self.seed)
        self.grid = Grid(catalog, Bounds.parse(bounds), self.rng, self.options)
        self.steps = 0
        self.recorded_contradictions: List[Coord] = []
        self.collapse_failures: List[Coord] = []
        for constraint in constraints:
            self.apply_constraint(constraint)

    def apply_constraint(self, constraint: SeedConstraint) -> PropagationResult:
        if constraint.coord not in self.grid:
            raise ValueError(f"constraint at {constraint.coord} lies outside {self.grid.bounds.label}")
        unknown = sorted(a for a in constraint.allowed if a not in self.grid.catalog)
        if unknown:
            raise ValueError(f"constraint at {constraint.coord} names unknown tiles: {', '.join(unknown)}")
        result = constrain(self.grid, constraint.coord, constraint.allowed, self.rng)
        self.recorded_contradictions.extend(result.contradictions)
        return result

    # --- stepping ---
    def advance_one_cell(self) -> StepResult:
        if self.grid.is_fully_collapsed():
            return StepResult(StepStatus.DONE)

        picked = select_cell(self.grid, self.rng, self.options.tunneling_probability)
        if picked is None:
            return StepResult(StepStatus.STALLED)
        coord, tunneled = picked

        self.steps += 1
        try:
            tile, relaxed = collapse_cell(self.grid, coord, self.rng, tunneled=tunneled)
        except CollapseFailure:
            # Leave the cell contradicted so selection moves on.
            cell = self.grid[coord]
            cell.candidates = []
            cell.entropy = 0.0
            self.collapse_failures.append(coord)
            return StepResult(StepStatus.COLLAPSE_FAILED, coord)

        prop = propagate(self.grid, coord, self.rng)
        self.recorded_contradictions.extend(prop.contradictions)
        if prop.contradictions:
            status = StepStatus.CONTRADICTION
        elif relaxed or prop.relaxed:
            status = StepStatus.RELAXED
        else:
            status = StepStatus.COLLAPSED
        return StepResult(status, coord, tile.id, prop)

    def run(
        self,
        cancel: Optional[threading.Event] = None,
        on_step: Optional[Callable[[StepResult], None]] = None,
    ) -> GridSnapshot:
        """
        Step until every cell is resolved.

        Raises :class:`LocalContradiction` or :class:`CollapseFailure` at the
        first unrecovered failure when ``halt_on_contradiction`` is set, and
        :class:`LocalContradiction` when only contradicted cells remain.
        :class:`SolveCancelled` carries the partial snapshot.
        """
        halt = self.options.halt_on_contradiction
        if halt and self.recorded_contradictions:
            raise LocalContradiction(
                "seeded constraints leave a cell without candidates",
                coords=self.recorded_contradictions,
            )
        while True:
            if cancel is not None and cancel.is_set():
                raise SolveCancelled(snapshot=self.snapshot())
            step = self.advance_one_cell()
            if on_step is not None:
                on_step(step)
            if step.status is StepStatus.DONE:
                return self.snapshot()
            if step.status is StepStatus.STALLED:
                raise LocalContradiction(
                    "only contradicted cells remain",
                    coords=find_contradictions(self.grid),
                )
            if halt and step.status is StepStatus.CONTRADICTION:
                raise LocalContradiction(coords=step.propagation.contradictions)
            if halt and step.status is StepStatus.COLLAPSE_FAILED:
                raise CollapseFailure(coords=[step.coord])

    # --- read side ---
    def snapshot(self) -> GridSnapshot:
        return self.grid.snapshot()

    def diagnostics(self) -> Diagnostics:
        grid = self.grid
        open_cells = [c for c in grid if not c.resolved and c.candidates]
        unresolved = grid.unresolved()
        gradient = entropy_gradient(grid)
        grads = [gradient[c.coord] for c in unresolved]
        return Diagnostics(
            total_cells=len(grid),
            resolved=grid.resolved_count(),
            unresolved=len(unresolved),
            contradictions=len(find_contradictions(grid)),
            relaxed=sum(1 for c in grid if c.relaxed),
            violations=len(validate_all_constraints(grid)),
            mean_entropy=(sum(c.entropy for c in open_cells) / len(open_cells)) if open_cells else 0.0,
            constraint_satisfaction=constraint_satisfaction(grid),
            mean_entropy_gradient=(sum(grads) / len(grads)) if grads else 0.0,
            steps=self.steps,
        )


__all__ = [
    "SeedConstraint",
    "tag_constraint",
    "center_start",
    "StepStatus",
    "StepResult",
    "Diagnostics",
    "SolveSession",
]
