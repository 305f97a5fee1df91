import threading

import pytest

from config import SolverOptions
from data import BANDS, CHECKER, DISJOINT, LONE, UNIVERSAL, catalog
from errors import LocalContradiction, SolveCancelled
from models import Bounds
from solver.grid import FAILED
from solver.propagation import validate_all_constraints
from solver.session import (
    SeedConstraint,
    SolveSession,
    StepStatus,
    center_start,
    tag_constraint,
)


def _session(payload, bounds="3x1x3", seed=1, constraints=(), **opts):
    return SolveSession(
        catalog(payload), Bounds.parse(bounds), seed=seed,
        options=SolverOptions(**opts), constraints=constraints,
    )


def test_single_cell_with_lone_tile():
    session = _session(LONE, bounds="1x1x1")
    snap = session.run()
    assert snap.is_fully_collapsed()
    assert snap.assignments() == {(0, 0, 0): "solo"}
    assert session.advance_one_cell().status is StepStatus.DONE


def test_universal_tile_always_fills_the_grid():
    for seed in range(5):
        snap = _session(UNIVERSAL, bounds="5x1x5", seed=seed).run()
        assert snap.is_fully_collapsed()
        assert set(snap.assignments().values()) == {"floor"}


def test_checker_run_is_consistent():
    session = _session(CHECKER, bounds="4x1x4", seed=8)
    snap = session.run()
    assert snap.is_fully_collapsed()
    assert validate_all_constraints(session.grid) == []
    diag = session.diagnostics()
    assert diag.resolved == 16 and diag.unresolved == 0
    assert diag.constraint_satisfaction == 1.0
    assert diag.steps >= 1


def test_same_seed_same_result():
    a = _session(BANDS, bounds="5x1x5", seed=99).run().assignments()
    b = _session(BANDS, bounds="5x1x5", seed=99).run().assignments()
    assert a == b


def test_candidate_sets_never_grow_between_steps():
    session = _session(BANDS, bounds="4x1x4", seed=4, tunneling_probability=0.0)
    prev = {v.coord: set(v.candidates) for v in session.snapshot()}
    while True:
        step = session.advance_one_cell()
        now = {v.coord: set(v.candidates) for v in session.snapshot()}
        for coord, cands in now.items():
            assert cands <= prev[coord]
        prev = now
        if step.finished:
            break
    assert step.status is StepStatus.DONE


def test_disjoint_catalog_halts_on_contradiction():
    session = _session(DISJOINT, tunneling_probability=0.0)
    with pytest.raises(LocalContradiction) as exc:
        session.run()
    assert exc.value.coords
    diag = session.diagnostics()
    assert diag.contradictions >= 1
    assert FAILED in session.snapshot().assignments().values()


def test_disjoint_catalog_without_halting_stalls():
    session = _session(DISJOINT, tunneling_probability=0.0, halt_on_contradiction=False)
    with pytest.raises(LocalContradiction, match="only contradicted cells remain"):
        session.run()
    assert session.steps > 1
    assert all(c.resolved or c.contradicted for c in session.grid)


def test_step_reports_contradiction_status():
    session = _session(DISJOINT, tunneling_probability=0.0)
    step = session.advance_one_cell()
    assert step.status is StepStatus.CONTRADICTION
    assert step.propagation.contradictions
    assert step.tile_id in ("a", "b")


def test_seed_constraint_is_applied_before_first_collapse():
    pin = SeedConstraint.of((1, 0, 1), ["white"])
    session = _session(CHECKER, constraints=[pin])
    assert session.grid[(1, 0, 1)].tile.id == "white"
    assert session.grid[(1, 0, 1)].amplitude == 0.0
    # checker is forced by a single cell
    assert session.grid.is_fully_collapsed()
    assert session.run().assignments()[(0, 0, 0)] == "white"


def test_conflicting_constraints_fail_the_run():
    pins = [SeedConstraint.of((0, 0, 0), ["black"]), SeedConstraint.of((1, 0, 0), ["black"])]
    session = _session(CHECKER, constraints=pins, tunneling_probability=0.0)
    with pytest.raises(LocalContradiction):
        session.run()


def test_constraint_validation():
    with pytest.raises(ValueError):
        _session(CHECKER, constraints=[SeedConstraint.of((9, 0, 0), ["black"])])
    with pytest.raises(ValueError):
        _session(CHECKER, constraints=[SeedConstraint.of((0, 0, 0), ["grey"])])


def test_tag_and_centre_constraints():
    cat = catalog(BANDS)
    c = tag_constraint(cat, (0, 0, 0), "red")
    assert c.allowed == frozenset({"red"})
    start = center_start(catalog(UNIVERSAL), Bounds(5, 1, 5))
    assert start.coord == (2, 0, 2)
    assert start.allowed == frozenset({"floor"})
    with pytest.raises(ValueError):
        tag_constraint(cat, (0, 0, 0), "green")


def test_cancel_returns_partial_snapshot():
    cancel = threading.Event()
    cancel.set()
    session = _session(CHECKER, bounds="3x1x3")
    with pytest.raises(SolveCancelled) as exc:
        session.run(cancel)
    assert exc.value.snapshot is not None
    assert len(exc.value.snapshot) == 9


def test_on_step_sees_every_step():
    seen = []
    session = _session(BANDS, bounds="3x1x3", seed=2)
    session.run(on_step=seen.append)
    assert seen[-1].status is StepStatus.DONE
    assert len(seen) == session.steps + 1


def test_diagnostics_shape():
    session = _session(BANDS, bounds="3x1x3")
    d = session.diagnostics().as_dict()
    assert set(d) == {
        "total_cells", "resolved", "unresolved", "contradictions", "relaxed",
        "violations", "mean_entropy", "constraint_satisfaction",
        "mean_entropy_gradient", "steps",
    }
    assert d["total_cells"] == 9
    assert d["mean_entropy"] > 0.0
