from __future__ import annotations

import json
import logging
import os
import time
import threading
from pathlib import Path
from typing import Any, Dict, Optional

# ------------------------------
# Thread-safe global progress state
# ------------------------------

PROGRESS_LOCK = threading.Lock()

_LOG_DIR = Path(__file__).resolve().parent / "logs"


def _state_file_path() -> Path:
    configured = os.environ.get("PROGRESS_STATE_FILE")
    if configured:
        return Path(configured)
    return _LOG_DIR / "progress_state.json"


def _attempt_log_path() -> Path:
    configured = os.environ.get("WFC_ATTEMPT_LOG")
    if configured:
        return Path(configured)
    return _LOG_DIR / "solver_attempts.log"


STATE_FILE = _state_file_path()
STATE_FILE_TMP = STATE_FILE.with_name(STATE_FILE.name + ".tmp")
_LAST_STATE_MTIME: float = 0.0


def _init_logger() -> logging.Logger:
    logger = logging.getLogger("solver.attempt_log")
    if logger.handlers:
        return logger

    log_path = _attempt_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    except Exception:
        # No log file, no attempt log; progress tracking carries on.
        logger.handlers.clear()
    return logger


ATTEMPT_LOGGER = _init_logger()


def _log_enabled() -> bool:
    return bool(ATTEMPT_LOGGER.handlers)


def _fmt_seconds(seconds: Optional[float]) -> Optional[str]:
    if seconds is None:
        return None
    try:
        return f"{float(seconds):.2f}s"
    except Exception:
        return None


def _emit_log(event: str, **fields: Any) -> None:
    if not _log_enabled():
        return
    extras = [
        f"{key}={value}"
        for key, value in fields.items()
        if value is not None and value != ""
    ]
    try:
        if extras:
            ATTEMPT_LOGGER.info("%s | %s", event, " ".join(extras))
        else:
            ATTEMPT_LOGGER.info("%s", event)
    except Exception:
        # Logging failures must never bubble back to callers.
        pass


def log_attempt_detail(event: str, **fields: Any) -> None:
    """Free-form attempt log line, tagged with the current phase/attempt."""
    with PROGRESS_LOCK:
        phase = LOG_STATE.get("phase") or ""
        attempt = LOG_STATE.get("attempt") or ""
    merged: Dict[str, Any] = {"phase": phase, "attempt": attempt}
    merged.update(fields)
    _emit_log(event, **merged)


LOG_STATE: Dict[str, Any] = {
    "run_start": None,
    "phase": "",
    "phase_start": None,
    "attempt": "",
    "attempt_start": None,
    "grid": "",
}


def _persist_locked() -> None:
    global _LAST_STATE_MTIME
    try:
        STATE_FILE.parent.mkdir(parents=True, exist_ok=True)
        with STATE_FILE_TMP.open("w", encoding="utf-8") as fh:
            json.dump(PROGRESS, fh, ensure_ascii=False, separators=(",", ":"))
        STATE_FILE_TMP.replace(STATE_FILE)
        try:
            _LAST_STATE_MTIME = STATE_FILE.stat().st_mtime
        except OSError:
            _LAST_STATE_MTIME = time.time()
    except Exception:
        # Persistence must never break solver progress updates.
        pass


def _load_persisted_locked(force: bool = False) -> None:
    global _LAST_STATE_MTIME
    try:
        stat = STATE_FILE.stat()
    except OSError:
        return
    if not force and stat.st_mtime <= _LAST_STATE_MTIME:
        return
    try:
        with STATE_FILE.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except Exception:
        return
    if not isinstance(data, dict):
        return
    for key in PROGRESS.keys():
        if key in data:
            PROGRESS[key] = data[key]
    _LAST_STATE_MTIME = stat.st_mtime


def _finalize_attempt_locked(now: Optional[float] = None, *, reason: Optional[str] = None) -> None:
    attempt = LOG_STATE.get("attempt")
    if not attempt:
        return
    if now is None:
        now = _now()
    start = LOG_STATE.get("attempt_start")
    duration = None
    if isinstance(start, (int, float)):
        duration = max(0.0, float(now) - float(start))
    _emit_log(
        "Attempt finished",
        phase=LOG_STATE.get("phase") or "",
        attempt=attempt,
        grid=LOG_STATE.get("grid") or "",
        duration=_fmt_seconds(duration),
        reason=reason,
    )
    LOG_STATE["attempt"] = ""
    LOG_STATE["attempt_start"] = None


def _log_attempt_transition_locked(new_attempt: str) -> None:
    prev_attempt = LOG_STATE.get("attempt") or ""
    if new_attempt == prev_attempt:
        return
    now = _now()
    if prev_attempt:
        _finalize_attempt_locked(now, reason="switch")
    LOG_STATE["attempt"] = new_attempt
    if new_attempt:
        LOG_STATE["attempt_start"] = now
        _emit_log(
            "Attempt started",
            phase=LOG_STATE.get("phase") or "",
            attempt=new_attempt,
            grid=LOG_STATE.get("grid") or "",
        )
    else:
        LOG_STATE["attempt_start"] = None


def _log_phase_transition_locked(new_phase: str) -> None:
    prev_phase = LOG_STATE.get("phase") or ""
    if new_phase == prev_phase:
        return
    now = _now()
    if LOG_STATE.get("attempt"):
        _finalize_attempt_locked(now, reason="phase_change")
    if prev_phase and LOG_STATE.get("phase_start"):
        duration = max(0.0, now - float(LOG_STATE["phase_start"]))
        _emit_log("Phase finished", phase=prev_phase, duration=_fmt_seconds(duration))
    LOG_STATE["phase"] = new_phase
    LOG_STATE["phase_start"] = now
    if new_phase:
        _emit_log("Phase started", phase=new_phase)


def _update_grid_locked(new_grid: str) -> None:
    prev_grid = LOG_STATE.get("grid") or ""
    if new_grid == prev_grid:
        return
    LOG_STATE["grid"] = new_grid
    if new_grid:
        _emit_log("Grid updated", phase=LOG_STATE.get("phase") or "", grid=new_grid)

# Single source of truth for /progress3
PROGRESS: Dict[str, Any] = {
    "status": "Idle",          # Idle | Solving | Solved | Error
    "phase": "",               # setup | collapse | probe
    "attempt": "",             # e.g. "2/10"
    "grid": "",                # e.g. "10 × 1 × 10"
    "percent": 0.0,            # 0..100 float, share of resolved cells
    "resolved": 0,             # resolved cells in the current attempt
    "contradictions": 0,       # contradicted cells in the current attempt
    "cell_count": 0,           # cells in the grid
    "elapsed_start": None,     # t0 (float) when solving started
    "elapsed": 0.0,            # seconds snapshot
    "message": "",
    "done": False,
    "ok": None,
    "result_url": "",
    "run_id": 0,               # monotonically increasing identifier
}

# ------------------------------
# Helpers
# ------------------------------

def _now() -> float:
    return time.time()

def _fmt_elapsed(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    if seconds < 60:
        return f"{int(seconds)}s"
    m, s = divmod(int(seconds), 60)
    if m < 60:
        return f"{m}m {s}s"
    h, m = divmod(m, 60)
    return f"{h}h {m}m"

def _nonneg_int(n: Any) -> int:
    try:
        return max(0, int(n))
    except Exception:
        return 0

def reset() -> None:
    with PROGRESS_LOCK:
        now = _now()
        _finalize_attempt_locked(now, reason="reset")
        new_run_id = _nonneg_int(PROGRESS.get("run_id", 0)) + 1
        PROGRESS.update({
            "status": "Idle",
            "phase": "",
            "attempt": "",
            "grid": "",
            "percent": 0.0,
            "resolved": 0,
            "contradictions": 0,
            "cell_count": 0,
            "elapsed_start": None,
            "elapsed": 0.0,
            "message": "",
            "done": False,
            "ok": None,
            "result_url": "",
            "run_id": new_run_id,
        })
        LOG_STATE.update({
            "phase": "",
            "phase_start": None,
            "attempt": "",
            "attempt_start": None,
            "grid": "",
            "run_start": None,
        })
        _emit_log("Progress reset", run_id=new_run_id)
        _persist_locked()

def start_timer() -> None:
    with PROGRESS_LOCK:
        now = _now()
        PROGRESS["elapsed_start"] = now
        PROGRESS["elapsed"] = 0.0
        LOG_STATE["run_start"] = now
        _emit_log("Run timer started")
        _persist_locked()

def _touch_elapsed_locked() -> None:
    t0 = PROGRESS.get("elapsed_start")
    if t0 is not None:
        PROGRESS["elapsed"] = _now() - float(t0)

# ------------------------------
# Setters (tolerant)
# ------------------------------

def set_status(v: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["status"] = str(v)
        _persist_locked()

def set_phase(v: Any) -> None:
    with PROGRESS_LOCK:
        phase_str = "" if v is None else str(v)
        PROGRESS["phase"] = phase_str
        _log_phase_transition_locked(phase_str)
        _persist_locked()

def set_attempt(v: Any) -> None:
    with PROGRESS_LOCK:
        attempt_str = "" if v is None else str(v)
        PROGRESS["attempt"] = attempt_str
        _log_attempt_transition_locked(attempt_str)
        _persist_locked()

def set_grid(v: Any) -> None:
    with PROGRESS_LOCK:
        grid_str = "" if v is None else str(v)
        PROGRESS["grid"] = grid_str
        _update_grid_locked(grid_str)
        _persist_locked()

def set_cell_count(n: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["cell_count"] = _nonneg_int(n)
        _persist_locked()

def set_cells(resolved: Any, contradictions: Any = 0) -> None:
    """Resolved/contradicted counters plus the derived percentage, in one write."""
    with PROGRESS_LOCK:
        done = _nonneg_int(resolved)
        PROGRESS["resolved"] = done
        PROGRESS["contradictions"] = _nonneg_int(contradictions)
        total = _nonneg_int(PROGRESS.get("cell_count"))
        if total:
            PROGRESS["percent"] = max(0.0, min(100.0, 100.0 * done / total))
        _touch_elapsed_locked()
        _persist_locked()

def set_elapsed(seconds: Any) -> None:
    try:
        f = float(seconds)
    except Exception:
        f = 0.0
    with PROGRESS_LOCK:
        PROGRESS["elapsed"] = max(0.0, f)
        _persist_locked()

def set_message(msg: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["message"] = "" if msg is None else str(msg)
        _persist_locked()

def set_result_url(url: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["result_url"] = "" if url is None else str(url)
        _persist_locked()

def set_done(ok: Any = None, *, reason: Any = None, message: Any = None) -> None:
    """Mark the run complete.

    ``ok`` picks the final status (``"Solved"``/``"Error"``); when omitted
    the current status is kept. ``reason`` is accepted as an alias for
    ``message``.
    """

    final_status: Optional[str] = None
    ok_flag: Optional[bool] = None
    if ok is not None:
        ok_flag = bool(ok)
        final_status = "Solved" if ok_flag else "Error"

    final_message = message if message is not None else reason

    with PROGRESS_LOCK:
        _touch_elapsed_locked()
        now = _now()
        if final_status is not None:
            PROGRESS["status"] = final_status
        elif PROGRESS.get("status") in ("", "Idle", None):
            PROGRESS["status"] = "Solved"
            ok_flag = True
        PROGRESS["percent"] = 100.0
        if final_message is not None:
            PROGRESS["message"] = str(final_message)
        PROGRESS["done"] = True
        if ok_flag is not None:
            PROGRESS["ok"] = ok_flag
        _finalize_attempt_locked(now, reason="run_complete")
        run_start = LOG_STATE.get("run_start")
        if isinstance(run_start, (int, float)):
            total = max(0.0, now - float(run_start))
        else:
            total = None
        LOG_STATE.update({
            "run_start": None,
            "phase_start": None,
            "phase": PROGRESS.get("phase", ""),
            "grid": PROGRESS.get("grid", ""),
        })
        _emit_log(
            "Run finished",
            status=PROGRESS.get("status"),
            ok=PROGRESS.get("ok"),
            duration=_fmt_seconds(total),
            resolved=PROGRESS.get("resolved"),
            contradictions=PROGRESS.get("contradictions"),
            message=PROGRESS.get("message"),
        )
        _persist_locked()

# ------------------------------
# Snapshots for the UI
# ------------------------------

def snapshot() -> Dict[str, Any]:
    with PROGRESS_LOCK:
        _load_persisted_locked()
        _touch_elapsed_locked()
        return {
            "status": PROGRESS["status"],
            "phase": PROGRESS["phase"],
            "attempt": PROGRESS["attempt"],
            "grid": PROGRESS["grid"],
            "percent": PROGRESS["percent"],
            "resolved": PROGRESS["resolved"],
            "contradictions": PROGRESS["contradictions"],
            "cell_count": PROGRESS["cell_count"],
            "elapsed": PROGRESS["elapsed"],
            "elapsed_str": _fmt_elapsed(PROGRESS["elapsed"]),
            "message": PROGRESS["message"],
            "done": PROGRESS["done"],
            "ok": PROGRESS["ok"],
            "result_url": PROGRESS["result_url"],
            "run_id": PROGRESS["run_id"],
        }

def as_json() -> Dict[str, Any]:
    # Alias used by /progress3
    return snapshot()


with PROGRESS_LOCK:
    _load_persisted_locked(force=True)
