import threading

import pytest

from config import SolverOptions
from data import BANDS, CHECKER, DISJOINT, UNIVERSAL
from errors import AttemptExhaustion, SolveCancelled
from solver.grid import FAILED
from solver.orchestrator import (
    INFEASIBLE_REASON,
    SolveResult,
    _should_retry,
    coerce_constraints,
    coerce_seed,
    derive_attempt_seed,
    solve_many,
    solve_orchestrator,
)
from solver.session import SeedConstraint


def _opts(**kw):
    kw.setdefault("feasibility_probe", False)
    return SolverOptions(**kw)


def test_coerce_seed_hashes_strings_stably():
    assert coerce_seed(42) == 42
    assert coerce_seed("dungeon") == coerce_seed("dungeon")
    assert coerce_seed("dungeon") != coerce_seed("cavern")
    assert coerce_seed("dungeon") >= 0


def test_derive_attempt_seed():
    assert derive_attempt_seed(7, 0) == 7
    first = derive_attempt_seed(7, 1)
    assert first != 7
    assert derive_attempt_seed(7, 1) == first
    assert derive_attempt_seed(7, 2) != first


@pytest.mark.parametrize("reason,expected", [
    (None, True),
    ("Contradiction: a cell ran out of candidate tiles", True),
    ("Relaxation left 2 adjacency violation(s)", True),
    (INFEASIBLE_REASON, False),
    ("proven infeasible (probe)", False),
])
def test_should_retry(reason, expected):
    assert _should_retry(reason) is expected


def test_coerce_constraints_accepts_several_shapes():
    out = coerce_constraints([
        SeedConstraint.of((0, 0, 0), ["a"]),
        {"coord": [1, 0, 1], "allowed": ["b", "c"]},
        {"x": 2, "z": 2, "tiles": "d"},
        ((0, 0, 2), ["e"]),
    ])
    assert [c.coord for c in out] == [(0, 0, 0), (1, 0, 1), (2, 0, 2), (0, 0, 2)]
    assert out[2].allowed == frozenset({"d"})


def test_universal_tile_succeeds_first_time():
    result = solve_orchestrator(UNIVERSAL, "5x1x5", seed=3, options=_opts(), report_progress=False)
    assert isinstance(result, SolveResult)
    assert result.ok and result.fully_collapsed
    assert result.attempts == 1
    assert result.seed == 3
    assert len(result.assignments) == 25
    assert set(result.assignments.values()) == {"floor"}
    assert result.diagnostics["violations"] == 0


def test_disjoint_catalog_exhausts_attempts():
    opts = _opts(tunneling_probability=0.0, max_attempts=1)
    with pytest.raises(AttemptExhaustion) as exc:
        solve_orchestrator(DISJOINT, "3x1x3", seed=1, options=opts, report_progress=False)
    err = exc.value
    assert err.attempts == 1
    assert err.diagnostics["contradictions"] >= 1
    assert FAILED in err.assignments.values()
    assert err.snapshot is not None
    assert err.last_reason


def test_retries_use_perturbed_seeds():
    opts = _opts(tunneling_probability=0.0, max_attempts=3)
    with pytest.raises(AttemptExhaustion) as exc:
        solve_orchestrator(DISJOINT, "3x1x3", seed=5, options=opts, report_progress=False)
    assert exc.value.attempts == 3
    assert exc.value.seed == derive_attempt_seed(5, 2)


def test_same_seed_same_grid():
    a = solve_orchestrator(BANDS, "6x1x6", seed="repeat", options=_opts(), report_progress=False)
    b = solve_orchestrator(BANDS, "6x1x6", seed="repeat", options=_opts(), report_progress=False)
    assert a.assignments == b.assignments
    assert a.seed == b.seed


def test_relaxed_grids_need_accept_relaxed():
    opts = _opts(tunneling_probability=1.0, max_attempts=1)
    with pytest.raises(AttemptExhaustion) as exc:
        solve_orchestrator(DISJOINT, "3x1x3", seed=2, options=opts, report_progress=False)
    assert "violation" in exc.value.last_reason

    accepted = solve_orchestrator(
        DISJOINT, "3x1x3", seed=2,
        options=_opts(tunneling_probability=1.0, max_attempts=1, accept_relaxed=True),
        report_progress=False,
    )
    assert accepted.ok and accepted.fully_collapsed
    assert accepted.diagnostics["relaxed"] > 0
    assert accepted.diagnostics["violations"] > 0


def test_constraints_flow_through():
    result = solve_orchestrator(
        CHECKER, "3x1x3", seed=0, options=_opts(),
        constraints=[{"coord": [0, 0, 0], "allowed": ["black"]}],
        report_progress=False,
    )
    assert result.assignments[(0, 0, 0)] == "black"
    assert result.assignments[(1, 0, 0)] == "white"


def test_prior_reweights_catalog():
    result = solve_orchestrator(
        BANDS, "4x1x4", seed=1, options=_opts(), prior={"red": 1.0}, report_progress=False,
    )
    assert result.ok


def test_cancelled_before_start():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SolveCancelled):
        solve_orchestrator(CHECKER, "3x1x3", seed=0, options=_opts(), cancel=cancel, report_progress=False)


def test_progress_is_reported(monkeypatch):
    import solver.orchestrator as orch

    calls = []
    monkeypatch.setattr(orch, "set_grid", lambda v: calls.append(("grid", v)))
    monkeypatch.setattr(orch, "set_cells", lambda r, c=0: calls.append(("cells", r, c)))
    monkeypatch.setattr(orch, "set_status", lambda v: calls.append(("status", v)))
    monkeypatch.setattr(orch, "set_phase", lambda v: None)
    monkeypatch.setattr(orch, "set_attempt", lambda v: calls.append(("attempt", v)))
    monkeypatch.setattr(orch, "set_cell_count", lambda v: None)

    solve_orchestrator(CHECKER, "3x1x3", seed=0, options=_opts(max_attempts=2))
    assert ("grid", "3 × 1 × 3") in calls
    assert ("attempt", "1/2") in calls
    assert calls[-1] == ("cells", 9, 0)


def test_to_payload_is_json_ready():
    result = solve_orchestrator(UNIVERSAL, "2x1x2", seed=1, options=_opts(), report_progress=False)
    payload = result.to_payload()
    assert payload["ok"] is True
    assert payload["bounds"] == [2, 1, 2]
    assert payload["cells"][0] == {"x": 0, "y": 0, "z": 0, "tile": "floor"}
    assert len(payload["cells"]) == 4


def test_solve_many_runs_independent_jobs():
    jobs = [
        {"catalog": UNIVERSAL, "bounds": "3x1x3", "seed": 1, "options": _opts()},
        {"catalog": DISJOINT, "bounds": "3x1x3", "seed": 1,
         "options": _opts(tunneling_probability=0.0, max_attempts=1)},
        {"catalog": CHECKER, "bounds": "4x1x4", "seed": 2, "options": _opts()},
    ]
    results = solve_many(jobs, workers=2)
    assert [r.ok for r in results] == [True, False, True]
    assert results[1].reason
    assert results[1].diagnostics["contradictions"] >= 1
