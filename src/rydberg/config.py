"""Physical constants, tutorial presets and solver option records.

Units follow the neutral-atom convention used throughout the repo:
time in μs, angular frequencies in rad/μs (i.e. ``2π × MHz``), distances in μm.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Physical constants
# ---------------------------------------------------------------------------

#: Van der Waals coefficient C6 for the 70S Rb-87 Rydberg state (2π·MHz·μm⁶).
C6_DEFAULT: float = 2.0 * math.pi * 862690.0

#: Largest vertex count for which the blockade subspace is enumerated.
MAX_SUBSPACE_SITES: int = 32

# ---------------------------------------------------------------------------
# Tutorial presets (diagonal-connected unit-disk grid graph, 4x4, 20% dropout)
# ---------------------------------------------------------------------------

LATTICE_SCALE: float = 4.5
BLOCKADE_RADIUS: float = 7.5
DROPOUT_FRACTION: float = 0.2

T_MAX: float = 0.6
OMEGA_MAX: float = 2.0 * math.pi * 4.0
DELTA_START: float = -2.0 * math.pi * 13.0
DELTA_END: float = 2.0 * math.pi * 11.0
#: Scale of the three variational detuning knots of the smoothed protocol.
DELTA_0: float = 2.0 * math.pi * 11.0
KERNEL_RADIUS: float = 0.02
#: Longest total pulse (μs) accepted for variational pulse durations.
MAX_PULSE_DURATION: float = 4.0

# ---------------------------------------------------------------------------
# Solver options
# ---------------------------------------------------------------------------

TIME_SAMPLINGS: tuple[str, ...] = ("midpoint", "left", "right")
OPTIMIZER_METHODS: tuple[str, ...] = ("Nelder-Mead", "Powell", "COBYLA")


@dataclass(frozen=True)
class SchrodingerConfig:
    """Options for the adaptive ODE propagator."""

    method: str = "DOP853"
    rtol: float = 1e-8
    atol: float = 1e-10
    norm_tol: float = 1e-6
    max_step: float = math.inf

    def __post_init__(self) -> None:
        if self.method not in {"RK45", "RK23", "DOP853"}:
            raise ValueError(f"method must be one of {{'RK45','RK23','DOP853'}}, got {self.method!r}")
        if not (self.rtol > 0.0 and self.atol > 0.0):
            raise ValueError("rtol and atol must be > 0")
        if not self.norm_tol > 0.0:
            raise ValueError("norm_tol must be > 0")
        if not self.max_step > 0.0:
            raise ValueError("max_step must be > 0")


@dataclass(frozen=True)
class KrylovConfig:
    """Options for the piecewise-constant Krylov propagator.

    ``max_substep`` splits every segment into equal sub-intervals no longer
    than the given length; the Hamiltonian is constant across them, so this
    only trades work for a smaller Krylov error estimate.
    """

    krylov_dim: int = 30
    tol: float = 1e-7
    norm_tol: float = 1e-6
    time_sampling: str = "midpoint"
    max_substep: Optional[float] = None

    def __post_init__(self) -> None:
        if int(self.krylov_dim) < 1:
            raise ValueError("krylov_dim must be >= 1")
        if not self.tol > 0.0:
            raise ValueError("tol must be > 0")
        if not self.norm_tol > 0.0:
            raise ValueError("norm_tol must be > 0")
        if str(self.time_sampling) not in TIME_SAMPLINGS:
            raise ValueError(f"time_sampling must be one of {set(TIME_SAMPLINGS)}, got {self.time_sampling!r}")
        if self.max_substep is not None and not float(self.max_substep) > 0.0:
            raise ValueError("max_substep must be > 0 when given")


@dataclass(frozen=True)
class OptimizerConfig:
    """Options for the derivative-free variational loop."""

    method: str = "Nelder-Mead"
    maxiter: int = 200
    xatol: float = 1e-4
    fatol: float = 1e-4
    adaptive: bool = False
    invalid_loss: float = math.inf

    def __post_init__(self) -> None:
        if self.method not in OPTIMIZER_METHODS:
            raise ValueError(f"method must be one of {set(OPTIMIZER_METHODS)}, got {self.method!r}")
        if int(self.maxiter) < 1:
            raise ValueError("maxiter must be >= 1")
