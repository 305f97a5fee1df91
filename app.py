# app.py — JSON solve endpoint; progress no-cache
from __future__ import annotations
import os
import threading
import time
from typing import Any, Dict, Optional

from flask import Flask, request, send_from_directory, jsonify, url_for, abort

from config import CFG, SolverOptions
from errors import AttemptExhaustion, CatalogError, SolveCancelled
from io_files import write_assignments, write_grid_json
from models import Bounds
from solver.isolate import run_solve_isolated
from solver.orchestrator import SolveResult, coerce_constraints, solve_orchestrator
from tiles import parse_catalog

from progress import (
    reset as progress_reset,
    as_json as progress_json,
    start_timer as progress_start,
    set_status, set_phase, set_attempt, set_grid, set_cell_count,
    set_elapsed, set_done, set_result_url, log_attempt_detail,
)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
OUTPUT_DIR = os.environ.get("WFC_OUTPUT_DIR", BASE_DIR)

_RESULT_LOCK = threading.Lock()
LAST_RESULT: Dict[str, Any] = {
    "ok": False,
    "reason": "No solve has run yet",
    "elapsed_str": "0s",
    "result": None,
    "assignments_path": "",
    "grid_json_path": "",
}

app = Flask(__name__)


@app.after_request
def _no_cache_progress(resp):
    if request.path == "/progress3":
        resp.headers["Cache-Control"] = "no-store, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


def _fmt_elapsed(seconds: float) -> str:
    if seconds < 1:
        return "0s"
    m, s = divmod(int(seconds), 60)
    if m == 0:
        return f"{s}s"
    h, m = divmod(m, 60)
    if h == 0:
        return f"{m}m {s}s"
    return f"{h}h {m}m {s}s"


def _bad_request(reason: str):
    set_status("Error")
    set_done(False, reason=reason)
    return jsonify({"ok": False, "reason": reason}), 400


def _options_from(raw: Any) -> SolverOptions:
    if raw is None:
        return SolverOptions.from_cfg()
    if not isinstance(raw, dict):
        raise ValueError("options must be an object")
    return SolverOptions.from_cfg(**raw)


def _write_outputs(payload: Dict[str, Any]) -> Dict[str, str]:
    paths = {"assignments_path": "", "grid_json_path": ""}
    try:
        paths["assignments_path"] = write_assignments(payload, OUTPUT_DIR)
        paths["grid_json_path"] = write_grid_json(payload, OUTPUT_DIR)
    except OSError as e:
        log_attempt_detail("Output write failed", error=repr(e))
    return paths


def _store_result(payload: Dict[str, Any], t0: float) -> None:
    paths = _write_outputs(payload)
    with _RESULT_LOCK:
        LAST_RESULT.update({
            "ok": bool(payload.get("ok")),
            "reason": payload.get("reason") or "",
            "elapsed_str": _fmt_elapsed(time.time() - t0),
            "result": payload,
            **paths,
        })
    set_result_url(url_for("result_latest"))


def _solve_isolated(catalog, bounds: Bounds, seed, constraints, options) -> Dict[str, Any]:
    ok, payload, reason, crash_note = run_solve_isolated(
        catalog.to_payload(),
        (bounds.x, bounds.y, bounds.z),
        seed,
        [(c.coord, sorted(c.allowed)) for c in constraints],
        options,
        float(CFG.SOLVE_TIMEOUT_SEC),
    )
    if payload is None:
        if crash_note:
            log_attempt_detail("Isolated solve crashed", note=crash_note, reason=reason)
        payload = {
            "ok": False, "fully_collapsed": False, "attempts": 0, "seed": None,
            "reason": reason, "elapsed": 0.0, "bounds": [bounds.x, bounds.y, bounds.z],
            "diagnostics": {}, "cells": [],
        }
    return payload


@app.route("/solve", methods=["POST"])
def solve():
    progress_reset()
    progress_start()
    set_status("Solving")
    set_phase("setup")
    set_attempt("")

    t0 = time.time()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _bad_request("Bad request: expected a JSON object")

    try:
        catalog = parse_catalog(body.get("catalog", body.get("tiles")))
        bounds = Bounds.parse(body.get("bounds") or CFG.DEFAULT_BOUNDS)
        options = _options_from(body.get("options"))
        constraints = coerce_constraints(body.get("constraints") or [])
    except CatalogError as e:
        return _bad_request(f"Bad catalog: {e}")
    except (ValueError, TypeError, KeyError) as e:
        return _bad_request(f"Bad request: {e}")

    seed = body.get("seed", CFG.DEFAULT_SEED)
    set_grid(bounds.label)
    set_cell_count(bounds.cell_count)

    isolate = bool(body.get("isolate", CFG.ISOLATE_SOLVES))
    try:
        if isolate:
            payload = _solve_isolated(catalog, bounds, seed, constraints, options)
        else:
            result = solve_orchestrator(
                catalog, bounds, seed=seed, constraints=constraints, options=options,
            )
            payload = result.to_payload()
    except AttemptExhaustion as e:
        payload = SolveResult.from_exhaustion(e, time.time() - t0).to_payload()
    except SolveCancelled as e:
        payload = {"ok": False, "reason": str(e), "attempts": e.attempts, "cells": []}
    except ValueError as e:
        # Constraints are checked against the grid once the first session starts.
        return _bad_request(f"Bad request: {e}")

    set_elapsed(time.time() - t0)
    set_done(bool(payload.get("ok")), reason=payload.get("reason") or "Solved")
    _store_result(payload, t0)
    return jsonify(payload), 200


@app.route("/result/latest")
def result_latest():
    with _RESULT_LOCK:
        return jsonify(dict(LAST_RESULT))


def _download(key: str):
    with _RESULT_LOCK:
        path: Optional[str] = LAST_RESULT.get(key) or None
    if not path or not os.path.exists(path):
        abort(404)
    return send_from_directory(os.path.dirname(path), os.path.basename(path), as_attachment=True)


@app.route("/download/assignments")
def download_assignments():
    return _download("assignments_path")


@app.route("/download/json")
def download_json():
    return _download("grid_json_path")


@app.route("/progress3")
def progress3():
    return jsonify(progress_json())


if __name__ == "__main__":
    app.run(debug=False)
