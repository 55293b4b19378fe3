"""MIS pulse protocols and the loss functions the variational loop minimizes.

Three protocols, all starting from the all-ground state:

``run_adiabatic``
    Piecewise-linear sweep: Ω ramps up, Δ sweeps from negative to positive,
    Ω ramps down.  Evolved with the ODE propagator, by default in the full
    space so that blockade leakage (and its repair) can be studied.

``loss_piecewise_constant``
    QAOA-like alternating layers (Ω on / Δ on) with variational durations,
    evolved segment by segment with the Krylov propagator inside the blockade
    subspace.

``loss_piecewise_linear``
    Smoothed piecewise-linear pulses with three variational detuning knots,
    evolved with the ODE propagator inside the blockade subspace.

The loss is ``-⟨Σ n_k⟩``, the negative mean independent-set size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import networkx as nx
import numpy as np

from src.rydberg.config import (
    BLOCKADE_RADIUS,
    C6_DEFAULT,
    DELTA_0,
    DELTA_END,
    DELTA_START,
    DROPOUT_FRACTION,
    KERNEL_RADIUS,
    LATTICE_SCALE,
    MAX_PULSE_DURATION,
    OMEGA_MAX,
    T_MAX,
    KrylovConfig,
    SchrodingerConfig,
)
from src.rydberg.errors import InvalidParameterVector
from src.rydberg.geometry import Point, random_dropout, square_lattice, unit_disk_graph
from src.rydberg.hamiltonian import Coefficient, RydbergHamiltonian, build_rydberg_hamiltonian
from src.rydberg.observables import rydberg_density_sum
from src.rydberg.propagators import EvolutionResult, evolve_krylov, evolve_schrodinger
from src.rydberg.register import RydbergRegister, zero_state
from src.rydberg.subspace import Subspace, build_subspace
from src.rydberg.variational import validate_parameter_vector
from src.rydberg.waveforms import Waveform, piecewise_constant, piecewise_linear, smooth

#: Krylov settings for QAOA layers: 0.01 μs substeps keep ‖H‖·dt small for
#: tutorial-sized pulses, so the default Krylov dimension suffices.
QAOA_KRYLOV_CONFIG = KrylovConfig(krylov_dim=30, tol=1e-7, max_substep=0.01)

# Knot positions of the tutorial pulses as fractions of the total time.
_ADIABATIC_FRACTIONS = (0.0, 0.1 / 0.6, 0.5 / 0.6, 1.0)
_SMOOTH_DELTA_FRACTIONS = (0.0, 0.05 / 0.6, 0.2 / 0.6, 0.3 / 0.6, 0.4 / 0.6, 0.55 / 0.6, 1.0)
_SMOOTH_RABI_FRACTIONS = (0.0, 0.05 / 0.6, 0.1 / 0.6, 0.5 / 0.6, 0.55 / 0.6, 1.0)


@dataclass(frozen=True, eq=False)
class MISProblem:
    """Session state shared read-only by every loss evaluation."""

    points: tuple[Point, ...]
    radius: float
    graph: nx.Graph
    subspace: Subspace
    c6: float = C6_DEFAULT

    @classmethod
    def from_points(
        cls,
        points: Sequence[Sequence[float]],
        radius: float = BLOCKADE_RADIUS,
        *,
        c6: float = C6_DEFAULT,
    ) -> "MISProblem":
        graph = unit_disk_graph(points, radius)
        pts = tuple((float(p[0]), float(p[1])) for p in points)
        return cls(points=pts, radius=float(radius), graph=graph, subspace=build_subspace(graph), c6=float(c6))

    @classmethod
    def dropout_lattice(
        cls,
        rng: np.random.Generator,
        *,
        nx_sites: int = 4,
        ny_sites: int = 4,
        scale: float = LATTICE_SCALE,
        dropout: float = DROPOUT_FRACTION,
        radius: float = BLOCKADE_RADIUS,
    ) -> "MISProblem":
        """Square lattice with random vacancies (the tutorial's DUGG instance)."""
        points = random_dropout(square_lattice(nx_sites, ny_sites, scale=scale), dropout, rng)
        return cls.from_points(points, radius)

    @property
    def n_sites(self) -> int:
        return len(self.points)

    def hamiltonian(
        self,
        rabi: Coefficient,
        detuning: Coefficient,
        *,
        use_subspace: bool = True,
    ) -> RydbergHamiltonian:
        return build_rydberg_hamiltonian(
            self.graph,
            self.points,
            rabi=rabi,
            detuning=detuning,
            c6=self.c6,
            subspace=self.subspace if use_subspace else None,
        )

    def zero_state(self, *, use_subspace: bool = True) -> RydbergRegister:
        return zero_state(self.n_sites, self.subspace if use_subspace else None)


def mis_loss(register: RydbergRegister) -> float:
    """Negative mean number of excitations."""
    return -rydberg_density_sum(register)


# ---------------------------------------------------------------------------
# Adiabatic sweep
# ---------------------------------------------------------------------------

def adiabatic_waveforms(
    t_max: float = T_MAX,
    *,
    omega_max: float = OMEGA_MAX,
    delta_start: float = DELTA_START,
    delta_end: float = DELTA_END,
) -> tuple[Waveform, Waveform]:
    """(Ω, Δ) of the adiabatic sweep on knots ``[0, T/6, 5T/6, T]``."""
    T = float(t_max)
    if not (math.isfinite(T) and T > 0.0):
        raise InvalidParameterVector(f"t_max must be a positive finite number, got {t_max!r}")
    clocks = [f * T for f in _ADIABATIC_FRACTIONS]
    rabi = piecewise_linear(clocks, [0.0, omega_max, omega_max, 0.0])
    detuning = piecewise_linear(clocks, [delta_start, delta_start, delta_end, delta_end])
    return rabi, detuning


def run_adiabatic(
    problem: MISProblem,
    *,
    t_max: float = T_MAX,
    use_subspace: bool = False,
    config: SchrodingerConfig = SchrodingerConfig(),
) -> EvolutionResult:
    rabi, detuning = adiabatic_waveforms(t_max)
    h = problem.hamiltonian(rabi, detuning, use_subspace=use_subspace)
    return evolve_schrodinger(problem.zero_state(use_subspace=use_subspace), h, t_max, config=config)


# ---------------------------------------------------------------------------
# Piecewise-constant (QAOA-like) layers
# ---------------------------------------------------------------------------

def qaoa_waveforms(
    durations: Sequence[float],
    *,
    omega_max: float = OMEGA_MAX,
    delta_end: float = DELTA_END,
    max_duration: float = MAX_PULSE_DURATION,
) -> tuple[Waveform, Waveform, np.ndarray]:
    """Alternating (Ω on, Δ on) layers with the given segment *durations*.

    Returns ``(rabi, detuning, clocks)``.  Durations must be an even number of
    positive finite values summing to at most *max_duration*; the final
    control point repeats the last layer.
    """
    x = validate_parameter_vector(durations)
    if x.size % 2 != 0:
        raise InvalidParameterVector(f"need an even number of durations, got {x.size}")
    if np.any(x <= 0.0):
        raise InvalidParameterVector(f"durations must be positive, got {x.tolist()}")
    if float(np.sum(x)) > float(max_duration):
        raise InvalidParameterVector(
            f"total duration {float(np.sum(x))} exceeds the maximum {float(max_duration)}"
        )
    p = x.size // 2
    clocks = np.concatenate([[0.0], np.cumsum(x)])
    rabi_vals = [float(omega_max), 0.0] * p
    delta_vals = [0.0, float(delta_end)] * p
    rabi = piecewise_constant(clocks, rabi_vals + rabi_vals[-1:])
    detuning = piecewise_constant(clocks, delta_vals + delta_vals[-1:])
    return rabi, detuning, clocks


def loss_piecewise_constant(
    problem: MISProblem,
    x: Sequence[float],
    *,
    config: KrylovConfig = QAOA_KRYLOV_CONFIG,
) -> tuple[float, RydbergRegister]:
    """Loss of the alternating-layer protocol with durations *x* (subspace, Krylov)."""
    rabi, detuning, clocks = qaoa_waveforms(x)
    h = problem.hamiltonian(rabi, detuning, use_subspace=True)
    result = evolve_krylov(problem.zero_state(use_subspace=True), h, clocks, config=config)
    return mis_loss(result.register), result.register


# ---------------------------------------------------------------------------
# Smoothed piecewise-linear pulses
# ---------------------------------------------------------------------------

def smoothed_rabi(
    t_max: float = T_MAX,
    *,
    omega_max: float = OMEGA_MAX,
    kernel_radius: float = KERNEL_RADIUS,
) -> Waveform:
    clocks = [f * float(t_max) for f in _SMOOTH_RABI_FRACTIONS]
    return smooth(
        piecewise_linear(clocks, [0.0, 0.0, omega_max, omega_max, 0.0, 0.0]),
        kernel_radius,
    )


def piecewise_linear_detuning(
    x: Sequence[float],
    t_max: float = T_MAX,
    *,
    delta_start: float = DELTA_START,
    delta_end: float = DELTA_END,
    delta_0: float = DELTA_0,
) -> Waveform:
    """Unsmoothed detuning with the three variational knots ``Δ0 · x``."""
    xv = validate_parameter_vector(x, arity=3)
    T = float(t_max)
    if not (math.isfinite(T) and T > 0.0):
        raise InvalidParameterVector(f"t_max must be a positive finite number, got {t_max!r}")
    clocks = [f * T for f in _SMOOTH_DELTA_FRACTIONS]
    values = [
        delta_start,
        delta_start,
        delta_0 * xv[0],
        delta_0 * xv[1],
        delta_0 * xv[2],
        delta_end,
        delta_end,
    ]
    return piecewise_linear(clocks, values)


def smoothed_detuning(
    x: Sequence[float],
    t_max: float = T_MAX,
    *,
    kernel_radius: float = KERNEL_RADIUS,
) -> Waveform:
    return smooth(piecewise_linear_detuning(x, t_max), kernel_radius)


def loss_piecewise_linear(
    problem: MISProblem,
    x: Sequence[float],
    *,
    t_max: float = T_MAX,
    config: SchrodingerConfig = SchrodingerConfig(),
) -> tuple[float, RydbergRegister, Waveform]:
    """Loss of the smoothed protocol with detuning knots *x* (subspace, ODE)."""
    detuning = smoothed_detuning(x, t_max)
    rabi = smoothed_rabi(t_max)
    h = problem.hamiltonian(rabi, detuning, use_subspace=True)
    result = evolve_schrodinger(problem.zero_state(use_subspace=True), h, t_max, config=config)
    return mis_loss(result.register), result.register, detuning


def scalar_loss(problem: MISProblem, protocol: str, **kwargs):
    """``x -> float`` wrapper suitable for :func:`~src.rydberg.variational.optimize`."""
    name = str(protocol).strip().lower()
    if name == "piecewise_constant":
        return lambda x: loss_piecewise_constant(problem, x, **kwargs)[0]
    if name == "piecewise_linear":
        return lambda x: loss_piecewise_linear(problem, x, **kwargs)[0]
    raise ValueError(f"protocol must be 'piecewise_constant' or 'piecewise_linear', got {protocol!r}")
