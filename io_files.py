"""Helpers for reading catalogs from disk and writing solver outputs."""

from __future__ import annotations

import json
import os
from typing import Any, Dict

from config import CFG
from tiles import TileCatalog, parse_catalog


def _resolve_output_path(base_dir: str, configured_name: str, fallback: str) -> str:
    """Return the absolute path where an output artifact should be written."""

    name = (configured_name or "").strip() or fallback
    if os.path.isabs(name):
        return name
    return os.path.join(base_dir, name)


def load_catalog(path: str) -> TileCatalog:
    """Read a JSON tile catalog (list of tiles or ``{"tiles": [...]}``)."""

    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    return parse_catalog(payload)


def _payload(result: Any) -> Dict[str, Any]:
    # SolveResult, or an already serialised payload (e.g. from a child process)
    if isinstance(result, dict):
        return result
    return result.to_payload()


def write_assignments(result: Any, base_dir: str) -> str:
    """Write one ``x,y,z tile`` line per cell to the configured text file."""

    data = _payload(result)
    path = _resolve_output_path(base_dir, CFG.ASSIGNMENTS_OUT, "assignments.txt")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        cells = data.get("cells") or []
        if not cells:
            f.write("No solution\n")
        else:
            status = "ok" if data.get("ok") else "failed"
            f.write(f"# seed={data.get('seed')} attempts={data.get('attempts')} status={status}\n")
            for c in cells:
                f.write(f"{c['x']},{c['y']},{c['z']} {c['tile']}\n")
    return path


def write_grid_json(result: Any, base_dir: str) -> str:
    """Write the full result payload (cells, diagnostics, seed) as JSON."""

    data = _payload(result)
    path = _resolve_output_path(base_dir, CFG.GRID_JSON_OUT, "grid.json")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    return path


__all__ = ["load_catalog", "write_assignments", "write_grid_json"]
