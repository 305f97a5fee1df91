import pytest

from config import SolverOptions
from data import BANDS, CHECKER, DISJOINT, catalog
from errors import AttemptExhaustion
from models import Bounds
from solver.cp_sat import FEASIBLE_REASON, INFEASIBLE_REASON, probe_feasibility
from solver.orchestrator import solve_orchestrator


def test_checkerboard_is_feasible():
    verdict, reason, meta = probe_feasibility(catalog(CHECKER), Bounds(4, 1, 4))
    assert verdict is True
    assert reason == FEASIBLE_REASON
    # 12 east pairs plus 12 north pairs
    assert meta["pairs"] == 24
    assert meta["status"] in ("OPTIMAL", "FEASIBLE")


def test_disjoint_catalog_is_proven_infeasible():
    verdict, reason, meta = probe_feasibility(catalog(DISJOINT), Bounds(3, 1, 3))
    assert verdict is False
    assert reason == INFEASIBLE_REASON
    assert meta["dead_direction"] == "east"


def test_single_cell_needs_no_adjacency():
    verdict, _, meta = probe_feasibility(catalog(DISJOINT), Bounds(1, 1, 1))
    assert verdict is True
    assert meta["pairs"] == 0


def test_pinned_cells_can_make_a_grid_infeasible():
    cat = catalog(CHECKER)
    pinned = {(0, 0, 0): ["black"], (1, 0, 0): ["black"]}
    verdict, reason, _ = probe_feasibility(cat, Bounds(2, 1, 1), pinned)
    assert verdict is False
    assert reason == INFEASIBLE_REASON

    ok, _, _ = probe_feasibility(cat, Bounds(2, 1, 1), {(0, 0, 0): ["black"]})
    assert ok is True


def test_empty_domain_short_circuits():
    verdict, reason, meta = probe_feasibility(catalog(BANDS), Bounds(2, 1, 2), {(1, 0, 1): ["green"]})
    assert verdict is False
    assert reason == INFEASIBLE_REASON
    assert meta["empty_domain"] == (1, 0, 1)
    assert "status" not in meta


def test_orchestrator_stops_retrying_after_infeasible_probe():
    opts = SolverOptions(tunneling_probability=0.0, max_attempts=5, feasibility_probe=True)
    with pytest.raises(AttemptExhaustion) as exc:
        solve_orchestrator(DISJOINT, "3x1x3", seed=1, options=opts, report_progress=False)
    assert exc.value.attempts == 1
    assert exc.value.last_reason == INFEASIBLE_REASON
