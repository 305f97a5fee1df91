# solver/isolate.py
import multiprocessing as mp
import queue
import traceback
from typing import Any, Dict, List, Optional, Tuple


# Worker must be top-level (picklable under spawn)
def _solve_worker(q, catalog_payload, bounds, seed, constraints, options):
    try:
        from errors import AttemptExhaustion  # import inside child
        from solver.orchestrator import SolveResult, solve_orchestrator

        try:
            result = solve_orchestrator(
                catalog_payload,
                bounds,
                seed=seed,
                constraints=constraints,
                options=options,
                report_progress=False,
            )
        except AttemptExhaustion as e:
            result = SolveResult.from_exhaustion(e)
        q.put(("ok", result.to_payload(), result.reason))
    except MemoryError:
        q.put(("err", None, "Child ran out of memory"))
    except Exception as e:
        q.put(("exc", None, f"{e}\n{traceback.format_exc()}"))


def run_solve_isolated(
    catalog_payload: List[Dict[str, Any]],
    bounds: Tuple[int, int, int],
    seed: Any,
    constraints: List[Tuple[Tuple[int, int, int], List[str]]],
    options: Any,
    timeout: float,
) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str], Optional[str]]:
    """
    Run one :func:`solve_orchestrator` call in a spawned child process.

    Returns ``(ok, payload, reason, crash_note)``; ``payload`` is
    :meth:`SolveResult.to_payload` output. ``crash_note`` is set only when
    the child crashed, was killed or timed out.
    """
    ctx = mp.get_context("spawn")
    q = ctx.Queue()
    p = ctx.Process(
        target=_solve_worker,
        args=(q, catalog_payload, tuple(bounds), seed, constraints, options),
    )
    p.daemon = True
    p.start()

    # Results are read before join so a large payload cannot block the child's exit.
    try:
        tag, payload, reason = q.get(timeout=float(timeout) + 5.0)
    except queue.Empty:
        tag = None
        payload, reason = None, None

    if tag is None:
        if p.is_alive():
            p.terminate()
            p.join(2.0)
            if p.is_alive():
                p.kill()
                p.join(1.0)
            return False, None, "Stopped before solution (timebox)", "killed: timeout"
        p.join(1.0)
        if p.exitcode not in (0, None):
            return False, None, f"Stopped before solution (child exit {p.exitcode})", "child crashed"
        return False, None, "No result from child process", "no-result"

    p.join(2.0)
    if tag == "ok":
        return bool(payload and payload.get("ok")), payload, reason, None
    return False, None, reason, None


__all__ = ["run_solve_isolated"]
