import math
import os
from dataclasses import dataclass, fields, replace
from typing import Any

# ======= Quantum-inspired solver knobs =======
COHERENCE             = float(os.getenv("WFC_COHERENCE", "0.8"))
TUNNELING_PROBABILITY = float(os.getenv("WFC_TUNNELING_PROBABILITY", "0.05"))
INTERFERENCE_ALPHA    = float(os.getenv("WFC_INTERFERENCE_ALPHA", "0.1"))

# Entropy multiplier: H * (1 + amplitude*k1 + |sin(phase)|*k2)
ENTROPY_AMPLITUDE_GAIN = float(os.getenv("WFC_ENTROPY_AMPLITUDE_GAIN", "0.5"))
ENTROPY_PHASE_GAIN     = float(os.getenv("WFC_ENTROPY_PHASE_GAIN", "0.3"))

# ======= Retry / failure policy =======
MAX_ATTEMPTS          = int(os.getenv("WFC_MAX_ATTEMPTS", "10"))
HALT_ON_CONTRADICTION = int(os.getenv("WFC_HALT_ON_CONTRADICTION", "1")) != 0
# Accept fully collapsed grids that still carry relaxed (violating) adjacencies.
ACCEPT_RELAXED        = int(os.getenv("WFC_ACCEPT_RELAXED", "0")) != 0

# ======= Feasibility probe (CP-SAT) between retries =======
FEASIBILITY_PROBE = int(os.getenv("WFC_FEASIBILITY_PROBE", "1")) != 0
PROBE_MAX_CELLS   = int(os.getenv("WFC_PROBE_MAX_CELLS", "512"))
PROBE_SECONDS     = float(os.getenv("WFC_PROBE_SECONDS", "2.0"))

# ======= Pattern learner =======
PATTERN_SIZE = int(os.getenv("WFC_PATTERN_SIZE", "2"))

# ======= Workers / isolation =======
WORKERS           = int(os.getenv("WFC_WORKERS", "1"))
ISOLATE_SOLVES    = int(os.getenv("WFC_ISOLATE_SOLVES", "0")) != 0
SOLVE_TIMEOUT_SEC = float(os.getenv("WFC_SOLVE_TIMEOUT_SEC", "60"))

# ======= Defaults for HTTP requests =======
DEFAULT_SEED   = os.getenv("WFC_DEFAULT_SEED", "0")
DEFAULT_BOUNDS = os.getenv("WFC_DEFAULT_BOUNDS", "10x1x10")

# ======= Output names =======
ASSIGNMENTS_OUT = os.getenv("WFC_ASSIGNMENTS_OUT", "assignments.txt")
GRID_JSON_OUT   = os.getenv("WFC_GRID_JSON_OUT", "grid.json")


class CFG:
    COHERENCE             = COHERENCE
    TUNNELING_PROBABILITY = TUNNELING_PROBABILITY
    INTERFERENCE_ALPHA    = INTERFERENCE_ALPHA

    ENTROPY_AMPLITUDE_GAIN = ENTROPY_AMPLITUDE_GAIN
    ENTROPY_PHASE_GAIN     = ENTROPY_PHASE_GAIN

    MAX_ATTEMPTS          = MAX_ATTEMPTS
    HALT_ON_CONTRADICTION = HALT_ON_CONTRADICTION
    ACCEPT_RELAXED        = ACCEPT_RELAXED

    FEASIBILITY_PROBE = FEASIBILITY_PROBE
    PROBE_MAX_CELLS   = PROBE_MAX_CELLS
    PROBE_SECONDS     = PROBE_SECONDS

    PATTERN_SIZE = PATTERN_SIZE

    WORKERS           = WORKERS
    ISOLATE_SOLVES    = ISOLATE_SOLVES
    SOLVE_TIMEOUT_SEC = SOLVE_TIMEOUT_SEC

    DEFAULT_SEED   = DEFAULT_SEED
    DEFAULT_BOUNDS = DEFAULT_BOUNDS

    ASSIGNMENTS_OUT = ASSIGNMENTS_OUT
    GRID_JSON_OUT   = GRID_JSON_OUT


_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off", "")


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if math.isnan(out):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return out


def _as_int(name: str, value: Any) -> int:
    out = _as_float(name, value)
    if not out.is_integer():
        raise ValueError(f"{name} must be a whole number, got {value!r}")
    return int(out)


@dataclass(frozen=True)
class SolverOptions:
    """Per-solve knobs, snapshotted from :class:`CFG` at construction time."""

    coherence: float = COHERENCE
    tunneling_probability: float = TUNNELING_PROBABILITY
    max_attempts: int = MAX_ATTEMPTS
    pattern_size: int = PATTERN_SIZE
    interference_alpha: float = INTERFERENCE_ALPHA
    entropy_amplitude_gain: float = ENTROPY_AMPLITUDE_GAIN
    entropy_phase_gain: float = ENTROPY_PHASE_GAIN
    halt_on_contradiction: bool = HALT_ON_CONTRADICTION
    accept_relaxed: bool = ACCEPT_RELAXED
    feasibility_probe: bool = FEASIBILITY_PROBE
    probe_max_cells: int = PROBE_MAX_CELLS
    probe_seconds: float = PROBE_SECONDS

    def __post_init__(self) -> None:
        # JSON requests hand over strings; store every knob as its declared type.
        for f in fields(self):
            value = getattr(self, f.name)
            kind = _FIELD_KINDS[f.name]
            if kind is bool:
                value = _as_bool(f.name, value)
            elif kind is int:
                value = _as_int(f.name, value)
            else:
                value = _as_float(f.name, value)
            object.__setattr__(self, f.name, value)

        if not 0.0 <= self.coherence <= 1.0:
            raise ValueError(f"coherence must be within [0, 1], got {self.coherence!r}")
        if not 0.0 <= self.tunneling_probability <= 1.0:
            raise ValueError(
                f"tunneling_probability must be within [0, 1], got {self.tunneling_probability!r}"
            )
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts!r}")
        if self.pattern_size < 1:
            raise ValueError(f"pattern_size must be at least 1, got {self.pattern_size!r}")

    @classmethod
    def from_cfg(cls, cfg: Any = None, **overrides: Any) -> "SolverOptions":
        cfg = cfg if cfg is not None else CFG
        base = cls(
            coherence=getattr(cfg, "COHERENCE", COHERENCE),
            tunneling_probability=getattr(cfg, "TUNNELING_PROBABILITY", TUNNELING_PROBABILITY),
            max_attempts=getattr(cfg, "MAX_ATTEMPTS", MAX_ATTEMPTS),
            pattern_size=getattr(cfg, "PATTERN_SIZE", PATTERN_SIZE),
            interference_alpha=getattr(cfg, "INTERFERENCE_ALPHA", INTERFERENCE_ALPHA),
            entropy_amplitude_gain=getattr(cfg, "ENTROPY_AMPLITUDE_GAIN", ENTROPY_AMPLITUDE_GAIN),
            entropy_phase_gain=getattr(cfg, "ENTROPY_PHASE_GAIN", ENTROPY_PHASE_GAIN),
            halt_on_contradiction=getattr(cfg, "HALT_ON_CONTRADICTION", HALT_ON_CONTRADICTION),
            accept_relaxed=getattr(cfg, "ACCEPT_RELAXED", ACCEPT_RELAXED),
            feasibility_probe=getattr(cfg, "FEASIBILITY_PROBE", FEASIBILITY_PROBE),
            probe_max_cells=getattr(cfg, "PROBE_MAX_CELLS", PROBE_MAX_CELLS),
            probe_seconds=getattr(cfg, "PROBE_SECONDS", PROBE_SECONDS),
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"unknown solver option(s): {', '.join(unknown)}")
        return replace(base, **overrides) if overrides else base


_FIELD_KINDS = {
    "coherence": float,
    "tunneling_probability": float,
    "max_attempts": int,
    "pattern_size": int,
    "interference_alpha": float,
    "entropy_amplitude_gain": float,
    "entropy_phase_gain": float,
    "halt_on_contradiction": bool,
    "accept_relaxed": bool,
    "feasibility_probe": bool,
    "probe_max_cells": int,
    "probe_seconds": float,
}


__all__ = ["CFG", "SolverOptions"]
