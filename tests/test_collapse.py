import math
import random

import pytest

from config import SolverOptions
from data import CHECKER, DISJOINT, UNIVERSAL, catalog
from errors import CollapseFailure
from models import Bounds
from solver.collapse import collapse_cell, effective_weights, interference, select_cell
from solver.grid import Grid


def _grid(payload, bounds=(3, 1, 3), seed=3, **opts):
    return Grid(catalog(payload), Bounds.parse(bounds), random.Random(seed), SolverOptions(**opts))


def test_select_cell_returns_minimum_entropy_cell():
    grid = _grid(CHECKER)
    for cell in grid:
        cell.entropy = 5.0
    grid[(2, 0, 1)].entropy = 0.5
    assert select_cell(grid, random.Random(0), 0.0) == ((2, 0, 1), False)


def test_select_cell_returns_none_when_everything_is_resolved():
    grid = _grid(UNIVERSAL)
    assert select_cell(grid, random.Random(0), 1.0) is None


def test_select_cell_tunnels_only_when_roll_succeeds():
    grid = _grid(CHECKER, bounds=(2, 1, 1))
    for cell in grid:
        cell.candidates = []
    assert select_cell(grid, random.Random(0), 0.0) is None
    coord, tunneled = select_cell(grid, random.Random(0), 1.0)
    assert tunneled is True
    assert coord in grid


def test_interference_sign_follows_compatibility():
    grid = _grid(CHECKER, interference_alpha=0.1)
    black, white = grid.catalog.get("black"), grid.catalog.get("white")
    neighbor = grid[(1, 0, 0)]
    grid.resolve(neighbor, black)
    target = grid[(0, 0, 0)]
    target.phase = neighbor.phase = 0.25

    assert interference(grid, (0, 0, 0), white) == pytest.approx(0.1)
    assert interference(grid, (0, 0, 0), black) == pytest.approx(-0.1)

    target.phase = 0.25 + math.pi / 2
    assert interference(grid, (0, 0, 0), white) == pytest.approx(0.0, abs=1e-12)


def test_effective_weights_scale_base_weight():
    grid = _grid(CHECKER, interference_alpha=0.2)
    grid.resolve(grid[(1, 0, 0)], grid.catalog.get("black"))
    grid[(0, 0, 0)].phase = grid[(1, 0, 0)].phase
    weights = dict((t.id, w) for t, w in effective_weights(grid, (0, 0, 0)))
    assert weights["white"] == pytest.approx(1.2)
    assert weights["black"] == pytest.approx(0.8)


def test_collapse_resolves_to_a_candidate():
    grid = _grid(CHECKER)
    tile, relaxed = collapse_cell(grid, (1, 0, 1), random.Random(2))
    cell = grid[(1, 0, 1)]
    assert relaxed is False
    assert cell.resolved and cell.tile is tile
    assert cell.candidates == [tile]
    assert cell.amplitude == 0.0 and cell.entropy == 0.0


def test_collapse_is_deterministic_for_a_seed():
    picks = []
    for _ in range(2):
        grid = _grid(CHECKER, seed=21)
        picks.append(collapse_cell(grid, (0, 0, 0), random.Random(9))[0].id)
    assert picks[0] == picks[1]


def test_tunneled_collapse_uses_relaxation():
    grid = _grid(CHECKER)
    grid.resolve(grid[(1, 0, 0)], grid.catalog.get("white"))
    grid[(0, 0, 0)].candidates = []
    tile, relaxed = collapse_cell(grid, (0, 0, 0), random.Random(0), tunneled=True)
    assert relaxed is True
    assert tile.id == "black"
    assert grid[(0, 0, 0)].relaxed


def test_collapse_failure_without_positive_weight():
    grid = _grid(DISJOINT, interference_alpha=2.0, tunneling_probability=0.0)
    grid.resolve(grid[(1, 0, 0)], grid.catalog.get("a"))
    grid[(0, 0, 0)].phase = grid[(1, 0, 0)].phase
    with pytest.raises(CollapseFailure) as exc:
        collapse_cell(grid, (0, 0, 0), random.Random(0))
    assert exc.value.coords == [(0, 0, 0)]
    assert not grid[(0, 0, 0)].resolved


def test_collapse_failure_is_relaxed_when_tunneling_succeeds():
    grid = _grid(DISJOINT, interference_alpha=2.0, tunneling_probability=1.0)
    grid.resolve(grid[(1, 0, 0)], grid.catalog.get("a"))
    grid[(0, 0, 0)].phase = grid[(1, 0, 0)].phase
    tile, relaxed = collapse_cell(grid, (0, 0, 0), random.Random(0))
    assert relaxed is True
    assert grid[(0, 0, 0)].tile is tile
