# Orchestrator: seeded retry loop around solve sessions
from __future__ import annotations

import hashlib
import threading
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from config import CFG, SolverOptions
from errors import AttemptExhaustion, SolveCancelled, SolverError
from models import Bounds, Coord
from progress import (
    set_phase, set_attempt, set_grid, set_cell_count, set_cells,
    set_status, set_message, log_attempt_detail,
)
from solver.cp_sat import INFEASIBLE_REASON, probe_feasibility
from solver.grid import FAILED, GridSnapshot
from solver.session import SeedConstraint, SolveSession, StepResult
from solver.tasks import TaskQueue
from tiles import TileCatalog, parse_catalog

_SEED_MASK = (1 << 63) - 1


# ---------- seeds ----------

def coerce_seed(seed: Any = None) -> int:
    """Integers pass through; anything else is hashed (SHA-256) to an int."""
    if seed is None:
        seed = CFG.DEFAULT_SEED
    if isinstance(seed, bool):
        return int(seed)
    if isinstance(seed, int):
        return seed
    digest = hashlib.sha256(str(seed).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & _SEED_MASK


def derive_attempt_seed(seed: int, attempt: int) -> int:
    """Attempt 0 uses ``seed`` itself; later attempts get a stable perturbation."""
    if attempt <= 0:
        return int(seed)
    digest = hashlib.sha256(f"{int(seed)}:{int(attempt)}".encode("ascii")).digest()
    return int.from_bytes(digest[:8], "big") & _SEED_MASK


# ---------- results ----------

@dataclass
class SolveResult:
    ok: bool
    fully_collapsed: bool
    assignments: Dict[Coord, str]
    attempts: int
    seed: int
    diagnostics: Dict[str, Any]
    snapshot: Optional[GridSnapshot] = field(default=None, repr=False)
    reason: Optional[str] = None
    elapsed: float = 0.0

    @property
    def bounds(self) -> Optional[Bounds]:
        return self.snapshot.bounds if self.snapshot is not None else None

    @classmethod
    def from_exhaustion(cls, exc: AttemptExhaustion, elapsed: float = 0.0) -> "SolveResult":
        return cls(
            ok=False,
            fully_collapsed=False,
            assignments=dict(exc.assignments),
            attempts=exc.attempts,
            seed=exc.seed if exc.seed is not None else 0,
            diagnostics=dict(exc.diagnostics),
            snapshot=exc.snapshot,
            reason=exc.last_reason or str(exc),
            elapsed=elapsed,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON-friendly form shared by the HTTP layer, the file writers and child processes."""
        b = self.bounds
        return {
            "ok": self.ok,
            "fully_collapsed": self.fully_collapsed,
            "attempts": self.attempts,
            "seed": self.seed,
            "reason": self.reason,
            "elapsed": round(float(self.elapsed), 4),
            "bounds": [b.x, b.y, b.z] if b is not None else None,
            "diagnostics": dict(self.diagnostics),
            "cells": [
                {"x": x, "y": y, "z": z, "tile": tid}
                for (x, y, z), tid in sorted(self.assignments.items())
            ],
        }


def _should_retry(reason: Optional[str]) -> bool:
    """Return True when another seed is worth trying after ``reason``."""

    if not reason:
        return True
    return "proven infeasible" not in str(reason).strip().lower()


def coerce_constraints(constraints: Iterable[Any]) -> List[SeedConstraint]:
    out: List[SeedConstraint] = []
    for c in constraints or ():
        if isinstance(c, SeedConstraint):
            out.append(c)
        elif isinstance(c, Mapping):
            coord = c.get("coord")
            if coord is None:
                coord = (c.get("x", 0), c.get("y", 0), c.get("z", 0))
            allowed = c.get("allowed", c.get("tiles", ()))
            if isinstance(allowed, str):
                allowed = [allowed]
            out.append(SeedConstraint.of(coord, allowed))
        else:
            coord, allowed = c
            out.append(SeedConstraint.of(coord, allowed))
    return out


def _allowed_map(constraints: List[SeedConstraint]) -> Dict[Coord, set]:
    allowed: Dict[Coord, set] = {}
    for c in constraints:
        if c.coord in allowed:
            allowed[c.coord] &= set(c.allowed)
        else:
            allowed[c.coord] = set(c.allowed)
    return allowed


def _progress_hook(session: SolveSession, every: int):
    counter = {"n": 0}

    def _on_step(step: StepResult) -> None:
        counter["n"] += 1
        if counter["n"] % every and not step.finished:
            return
        grid = session.grid
        set_cells(grid.resolved_count(), sum(1 for c in grid if c.contradicted))

    return _on_step


# ---------- main entry ----------

def solve_orchestrator(
    catalog: Union[TileCatalog, Any],
    bounds: Union[Bounds, str, Any],
    *,
    seed: Any = None,
    constraints: Iterable[Any] = (),
    options: Optional[SolverOptions] = None,
    cancel: Optional[threading.Event] = None,
    report_progress: bool = True,
    prior: Optional[Mapping[str, float]] = None,
) -> SolveResult:
    """
    Run up to ``options.max_attempts`` seeded attempts and return the first
    fully collapsed, adjacency-clean grid.

    Raises :class:`AttemptExhaustion` (last attempt's diagnostics attached)
    when no attempt succeeds and :class:`SolveCancelled` when ``cancel`` is
    set. :class:`CatalogError`/``ValueError`` for bad input surface before
    the first attempt.
    """
    t0 = time.time()
    catalog = parse_catalog(catalog)
    bounds = Bounds.parse(bounds)
    options = options or SolverOptions.from_cfg()
    base_seed = coerce_seed(seed)
    constraints = coerce_constraints(constraints)
    if prior:
        catalog = catalog.reweighted(prior)

    log_attempt_detail(
        "Run setup",
        grid=bounds.label,
        cells=bounds.cell_count,
        tiles=len(catalog),
        seed=base_seed,
        constraints=len(constraints),
        max_attempts=options.max_attempts,
        tunneling=options.tunneling_probability,
        coherence=options.coherence,
    )
    dead = catalog.validate_connections()
    if dead:
        log_attempt_detail("Catalog warning", unconnectable=",".join(dead))

    if report_progress:
        set_status("Solving")
        set_phase("collapse")
        set_grid(bounds.label)
        set_cell_count(bounds.cell_count)
        set_cells(0, 0)

    every = max(1, bounds.cell_count // 50)
    probed = False
    last_snapshot: Optional[GridSnapshot] = None
    last_diag: Dict[str, Any] = {}
    last_reason: Optional[str] = None
    attempts = 0

    for attempt in range(options.max_attempts):
        if cancel is not None and cancel.is_set():
            raise SolveCancelled(snapshot=last_snapshot, attempts=attempts)

        attempts = attempt + 1
        attempt_seed = derive_attempt_seed(base_seed, attempt)
        if report_progress:
            set_attempt(f"{attempts}/{options.max_attempts}")

        session = SolveSession(
            catalog, bounds, seed=attempt_seed, options=options, constraints=constraints,
        )
        hook = _progress_hook(session, every) if report_progress else None
        reason: Optional[str] = None
        try:
            session.run(cancel, on_step=hook)
        except SolveCancelled as e:
            e.attempts = attempts
            log_attempt_detail("Solve cancelled", seed=attempt_seed, steps=session.steps)
            raise
        except SolverError as e:
            reason = str(e)

        diag = session.diagnostics()
        snap = session.snapshot()
        if reason is None and diag.violations and not options.accept_relaxed:
            reason = f"Relaxation left {diag.violations} adjacency violation(s)"

        if reason is None:
            log_attempt_detail(
                "Attempt solved",
                seed=attempt_seed,
                steps=diag.steps,
                relaxed=diag.relaxed,
                violations=diag.violations,
            )
            return SolveResult(
                ok=True,
                fully_collapsed=snap.is_fully_collapsed(),
                assignments=snap.assignments(),
                attempts=attempts,
                seed=attempt_seed,
                diagnostics=diag.as_dict(),
                snapshot=snap,
                reason=None,
                elapsed=time.time() - t0,
            )

        log_attempt_detail(
            "Attempt failed",
            seed=attempt_seed,
            reason=reason,
            resolved=diag.resolved,
            contradictions=diag.contradictions,
            steps=diag.steps,
        )
        last_snapshot, last_diag, last_reason = snap, diag.as_dict(), reason

        more = attempts < options.max_attempts
        if more and not probed and options.feasibility_probe and bounds.cell_count <= options.probe_max_cells:
            probed = True
            if report_progress:
                set_phase("probe")
            verdict, probe_reason, meta = _probe(catalog, bounds, constraints, options)
            log_attempt_detail("Feasibility probe", verdict=verdict, reason=probe_reason, **meta)
            if report_progress:
                set_phase("collapse")
            if verdict is False:
                last_reason = probe_reason

        if more and not _should_retry(last_reason):
            break

    if report_progress:
        set_message(last_reason)
    raise AttemptExhaustion(
        last_reason,
        attempts=attempts,
        diagnostics=last_diag,
        assignments=last_snapshot.assignments() if last_snapshot is not None else {},
        last_reason=last_reason,
        snapshot=last_snapshot,
        seed=derive_attempt_seed(base_seed, attempts - 1) if attempts else base_seed,
    )


def _probe(catalog: TileCatalog, bounds: Bounds, constraints: List[SeedConstraint], options: SolverOptions):
    try:
        verdict, reason, meta = probe_feasibility(
            catalog, bounds, _allowed_map(constraints), max_seconds=options.probe_seconds,
        )
    except Exception as e:
        # The probe only ever shortens the retry loop; a broken probe must not end it.
        log_attempt_detail("Feasibility probe error", error=repr(e), trace=traceback.format_exc(limit=3))
        return None, "probe error", {}
    meta = {k: v for k, v in meta.items() if k in ("status", "pairs", "elapsed", "empty_domain", "dead_direction")}
    return verdict, reason, meta


# ---------- batches ----------

def solve_many(
    jobs: Iterable[Mapping[str, Any]],
    workers: Optional[int] = None,
    *,
    cancel: Optional[threading.Event] = None,
) -> List[SolveResult]:
    """
    Solve independent grids on an owned :class:`TaskQueue`.

    Each job is a mapping of :func:`solve_orchestrator` keyword arguments
    (``catalog`` and ``bounds`` required). Exhausted jobs come back as
    ``ok=False`` results; any other error is re-raised.
    """
    workers = int(workers if workers is not None else getattr(CFG, "WORKERS", 1))
    out: List[SolveResult] = []
    with TaskQueue(workers, name="solve-many") as q:
        tasks = []
        for job in jobs:
            kwargs = dict(job)
            catalog = kwargs.pop("catalog")
            bounds = kwargs.pop("bounds")
            kwargs.setdefault("cancel", cancel)
            kwargs["report_progress"] = False
            tasks.append(q.submit(solve_orchestrator, catalog, bounds, **kwargs))
        q.wait_all()
        for task in tasks:
            if isinstance(task.error, AttemptExhaustion):
                out.append(SolveResult.from_exhaustion(task.error))
            else:
                out.append(task.get())
    return out


__all__ = [
    "SolveResult",
    "coerce_seed",
    "derive_attempt_seed",
    "solve_orchestrator",
    "solve_many",
    "coerce_constraints",
    "FAILED",
    "INFEASIBLE_REASON",
]
