import time
from typing import Dict, Iterable, List, Optional, Tuple

from ortools.sat.python import cp_model as _cp

from config import CFG
from models import Bounds, Coord, Direction, compatible, step
from tiles import TileCatalog

INFEASIBLE_REASON = "Proven infeasible under current constraints"
FEASIBLE_REASON = "Feasible"
TIMEBOX_REASON = "Stopped before solution (timebox)"

# Each adjacent pair is modelled once, from its lower-coordinate side.
_FORWARD = (Direction.EAST, Direction.UP, Direction.NORTH)


def _domains(
    catalog: TileCatalog,
    bounds: Bounds,
    allowed: Optional[Dict[Coord, Iterable[str]]],
) -> Dict[Coord, List[int]]:
    ids = catalog.ids()
    index = {tid: i for i, tid in enumerate(ids)}
    out: Dict[Coord, List[int]] = {}
    for coord in bounds.coords():
        if allowed and coord in allowed:
            out[coord] = sorted(index[t] for t in allowed[coord] if t in index)
        else:
            out[coord] = list(range(len(ids)))
    return out


def _pair_table(catalog: TileCatalog, direction: Direction) -> List[Tuple[int, int]]:
    tiles = catalog.tiles
    return [
        (i, j)
        for i, a in enumerate(tiles)
        for j, b in enumerate(tiles)
        if compatible(a, b, direction)
    ]


def probe_feasibility(
    catalog: TileCatalog,
    bounds: Bounds,
    allowed: Optional[Dict[Coord, Iterable[str]]] = None,
    *,
    max_seconds: float = 2.0,
) -> Tuple[Optional[bool], str, Dict[str, object]]:
    """
    Decide whether *any* full assignment satisfies every adjacency.

    ``allowed`` optionally narrows individual cells (seeded constraints).
    Returns ``(verdict, reason, meta)`` where ``verdict`` is ``True``
    (feasible), ``False`` (proven infeasible) or ``None`` (undecided in the
    time budget).
    """
    t0 = time.time()
    meta: Dict[str, object] = {"cells": bounds.cell_count, "tiles": len(catalog)}

    domains = _domains(catalog, bounds, allowed)
    for coord, dom in domains.items():
        if not dom:
            meta["empty_domain"] = coord
            meta["elapsed"] = time.time() - t0
            return False, INFEASIBLE_REASON, meta

    tables = {d: _pair_table(catalog, d) for d in _FORWARD}

    m = _cp.CpModel()
    x: Dict[Coord, _cp.IntVar] = {}
    for coord, dom in domains.items():
        name = "c_{}_{}_{}".format(*coord)
        x[coord] = m.NewIntVarFromDomain(_cp.Domain.FromValues(dom), name)

    pairs = 0
    for coord in domains:
        for d in _FORWARD:
            other = step(coord, d)
            if other not in x:
                continue
            table = tables[d]
            if not table:
                meta["dead_direction"] = d.value
                meta["elapsed"] = time.time() - t0
                return False, INFEASIBLE_REASON, meta
            m.AddAllowedAssignments([x[coord], x[other]], table)
            pairs += 1
    meta["pairs"] = pairs

    solver = _cp.CpSolver()
    solver.parameters.max_time_in_seconds = float(max_seconds)
    solver.parameters.num_workers = int(getattr(CFG, "WORKERS", 1))
    solver.parameters.cp_model_presolve = True
    solver.parameters.log_search_progress = False
    solver.parameters.stop_after_first_solution = True

    res = solver.Solve(m)
    meta["status"] = solver.StatusName(res)
    meta["elapsed"] = time.time() - t0

    if res in (_cp.OPTIMAL, _cp.FEASIBLE):
        return True, FEASIBLE_REASON, meta
    if res == _cp.INFEASIBLE:
        return False, INFEASIBLE_REASON, meta
    if res == _cp.MODEL_INVALID:
        return None, "Model invalid (configuration error)", meta
    return None, TIMEBOX_REASON, meta


__all__ = ["probe_feasibility", "INFEASIBLE_REASON", "FEASIBLE_REASON", "TIMEBOX_REASON"]
