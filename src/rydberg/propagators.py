"""Schrödinger-equation propagators for :class:`RydbergHamiltonian`.

Two interchangeable engines share one contract: take an initial register, a
Hamiltonian and a time specification, return a **new** register (plus an
optional trajectory).  Inputs are never mutated, and results are deterministic
for identical inputs and tolerances.

``evolve_schrodinger``
    Adaptive Runge–Kutta integration (``scipy.integrate.solve_ivp``) of
    ``i dψ/dt = H(t) ψ``.  Suited to smooth waveforms.

``evolve_krylov``
    Piecewise-constant propagation.  Each segment ``[t_k, t_{k+1}]`` of the
    given clocks is advanced by ``exp(−i H(t_k*) Δt) ψ`` where ``t_k*`` is the
    sample time selected by ``time_sampling``:

    * ``"midpoint"`` (default): ``t_k* = (t_k + t_{k+1}) / 2``.  Exact for
      piecewise-constant drives whose jumps sit on the clocks, and the
      exponential midpoint / Magnus-2 rule (second order) otherwise.
    * ``"left"`` / ``"right"``: first-order endpoint rules, for diagnostics.

    The action of the exponential is computed in a Lanczos (Krylov) subspace of
    dimension ``krylov_dim``; no matrix exponential of the full operator is
    formed.

Both engines check ``|‖ψ‖² − 1|`` against ``norm_tol`` at every checkpoint and
raise :class:`~src.rydberg.errors.NumericalInstability` instead of returning a
corrupted state.  The Krylov engine also raises when the a-posteriori error
estimate of a segment exceeds ``tol``; shrinking segments (``max_substep``) or
raising ``krylov_dim`` is left to the caller.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from scipy.integrate import solve_ivp
from scipy.linalg import eigh_tridiagonal

from src.rydberg.ai_log import ai_log
from src.rydberg.config import TIME_SAMPLINGS, KrylovConfig, SchrodingerConfig
from src.rydberg.errors import InvalidWaveformSpec, NumericalInstability
from src.rydberg.hamiltonian import RydbergHamiltonian
from src.rydberg.register import RydbergRegister

#: Maps the ``time_sampling`` choice to a descriptive method name for JSON
#: output, so readers can tell the approximation order apart from a true
#: time-ordered exponential.
KRYLOV_METHOD_NAMES: Dict[str, str] = {
    "midpoint": "krylov_exponential_midpoint_magnus2_order2",
    "left":     "krylov_exponential_left_endpoint_order1",
    "right":    "krylov_exponential_right_endpoint_order1",
}

_BREAKDOWN_TOL: float = 1e-12


def krylov_method_name(time_sampling: str) -> str:
    """Return the canonical method name string for *time_sampling*.

    Raises
    ------
    ValueError
        If *time_sampling* is not one of ``"midpoint"``, ``"left"``, ``"right"``.
    """
    key = str(time_sampling).strip().lower()
    try:
        return KRYLOV_METHOD_NAMES[key]
    except KeyError:
        raise ValueError(
            f"time_sampling must be one of {set(KRYLOV_METHOD_NAMES)}, got {key!r}"
        )


@dataclass(frozen=True)
class EvolutionResult:
    """Final register, checkpoint times and (optionally) the states at those times."""

    register: RydbergRegister
    method: str
    times: tuple[float, ...] = ()
    trajectory: tuple[RydbergRegister, ...] = ()
    stats: Dict[str, float] = field(default_factory=dict)


def _check_compatible(register: RydbergRegister, hamiltonian: RydbergHamiltonian) -> None:
    if register.n_sites != hamiltonian.n_sites:
        raise ValueError(
            f"register has {register.n_sites} sites, Hamiltonian has {hamiltonian.n_sites}"
        )
    if register.dim != hamiltonian.dim:
        raise ValueError(
            f"register dimension {register.dim} does not match Hamiltonian dimension {hamiltonian.dim}"
        )
    if (register.subspace is None) != (hamiltonian.subspace is None):
        raise ValueError("register and Hamiltonian use different representations")
    if register.subspace is not None and register.subspace is not hamiltonian.subspace:
        if not np.array_equal(register.subspace.configs, hamiltonian.subspace.configs):
            raise ValueError("register and Hamiltonian use different subspaces")


def _check_norm(psi: np.ndarray, norm_tol: float, *, where: str, t: float) -> None:
    norm_sq = float(np.real(np.vdot(psi, psi)))
    drift = abs(norm_sq - 1.0)
    if not math.isfinite(norm_sq) or drift > float(norm_tol):
        ai_log("propagation_norm_drift", where=where, time=float(t), norm_squared=norm_sq, norm_tol=float(norm_tol))
        raise NumericalInstability(
            f"{where}: squared norm {norm_sq!r} drifted beyond tolerance {norm_tol} at t={t}"
        )


# ---------------------------------------------------------------------------
# Continuous-time ODE propagator
# ---------------------------------------------------------------------------

def evolve_schrodinger(
    register: RydbergRegister,
    hamiltonian: RydbergHamiltonian,
    t_final: float,
    *,
    config: SchrodingerConfig = SchrodingerConfig(),
    save_times: Optional[Sequence[float]] = None,
) -> EvolutionResult:
    """Integrate the Schrödinger equation from 0 to *t_final*.

    *save_times* (each in ``[0, t_final]``) are returned as the trajectory; the
    final time is always included.
    """
    _check_compatible(register, hamiltonian)
    T = float(t_final)
    if not (math.isfinite(T) and T > 0.0):
        raise ValueError(f"t_final must be a positive finite number, got {t_final!r}")
    duration = hamiltonian.duration
    if duration is not None and T > duration * (1.0 + 1e-12):
        raise InvalidWaveformSpec(f"t_final={T} exceeds the waveform duration {duration}")

    if save_times is None:
        t_eval = np.array([T], dtype=float)
    else:
        t_eval = np.unique(np.append(np.asarray(save_times, dtype=float).reshape(-1), T))
        if np.any(~np.isfinite(t_eval)) or t_eval[0] < 0.0 or t_eval[-1] > T:
            raise ValueError("save_times must lie in [0, t_final]")

    ai_log(
        "propagation_start",
        engine="schrodinger",
        method=config.method,
        dim=int(register.dim),
        t_final=T,
    )
    psi0 = np.array(register.amplitudes, dtype=complex, copy=True)

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        return -1j * hamiltonian.apply(y, t)

    sol = solve_ivp(
        rhs,
        (0.0, T),
        psi0,
        method=config.method,
        t_eval=t_eval,
        rtol=float(config.rtol),
        atol=float(config.atol),
        max_step=float(config.max_step),
    )
    if not sol.success:
        ai_log("schrodinger_solver_failed", message=str(sol.message), t_final=T)
        raise NumericalInstability(f"ODE solver failed: {sol.message}")

    states: List[RydbergRegister] = []
    for k, t in enumerate(sol.t):
        psi_k = np.asarray(sol.y[:, k], dtype=complex)
        _check_norm(psi_k, config.norm_tol, where="evolve_schrodinger", t=float(t))
        states.append(register.with_amplitudes(psi_k))

    ai_log("propagation_done", engine="schrodinger", t_final=T, nfev=int(sol.nfev))
    return EvolutionResult(
        register=states[-1],
        method=f"solve_ivp_{config.method.lower()}",
        times=tuple(float(t) for t in sol.t),
        trajectory=tuple(states) if save_times is not None else (),
        stats={"nfev": float(sol.nfev)},
    )


# ---------------------------------------------------------------------------
# Krylov (Lanczos) propagator for piecewise-constant segments
# ---------------------------------------------------------------------------

def expmv_krylov(
    matvec: Callable[[np.ndarray], np.ndarray],
    psi: np.ndarray,
    dt: float,
    *,
    krylov_dim: int = 30,
) -> tuple[np.ndarray, float]:
    """Approximate ``exp(−i·dt·H) ψ`` for Hermitian H given by *matvec*.

    Builds an orthonormal Lanczos basis ``V_m`` (with full
    re-orthogonalisation) and the tridiagonal projection ``T_m``, then returns

        φ ≈ β V_m exp(−i dt T_m) e_1,           β = ‖ψ‖

    together with the a-posteriori error estimate
    ``β · β_m · |e_m^T exp(−i dt T_m) e_1|``, which is zero on a happy
    breakdown (the Krylov space is invariant and the result exact).
    """
    vec = np.asarray(psi, dtype=complex).reshape(-1)
    beta = float(np.linalg.norm(vec))
    dim = int(vec.size)
    if beta == 0.0:
        return np.zeros_like(vec), 0.0
    m_max = max(1, min(int(krylov_dim), dim))

    basis = np.zeros((m_max + 1, dim), dtype=complex)
    alpha = np.zeros(m_max, dtype=float)
    offdiag = np.zeros(m_max, dtype=float)
    basis[0] = vec / beta
    m = m_max
    breakdown = False
    scale = 0.0

    for j in range(m_max):
        w = np.asarray(matvec(basis[j]), dtype=complex)
        alpha[j] = float(np.real(np.vdot(basis[j], w)))
        w = w - alpha[j] * basis[j]
        if j > 0:
            w = w - offdiag[j - 1] * basis[j - 1]
        w = w - basis[: j + 1].T @ (basis[: j + 1].conj() @ w)
        b = float(np.linalg.norm(w))
        offdiag[j] = b
        scale = max(scale, abs(alpha[j]) + b)
        if b <= _BREAKDOWN_TOL * max(scale, 1.0):
            m = j + 1
            breakdown = True
            break
        basis[j + 1] = w / b

    if m == 1:
        coeffs = np.array([np.exp(-1j * dt * alpha[0])], dtype=complex)
    else:
        evals, evecs = eigh_tridiagonal(alpha[:m], offdiag[: m - 1])
        coeffs = evecs @ (np.exp(-1j * dt * evals) * evecs[0, :])

    phi = beta * (basis[:m].T @ coeffs)
    err = 0.0 if breakdown else beta * float(offdiag[m - 1]) * float(abs(coeffs[m - 1]))
    return phi, err


def _sample_time(t_left: float, t_right: float, sampling: str) -> float:
    if sampling == "midpoint":
        return 0.5 * (t_left + t_right)
    if sampling == "left":
        return t_left
    return t_right


def evolve_krylov(
    register: RydbergRegister,
    hamiltonian: RydbergHamiltonian,
    clocks: Sequence[float],
    *,
    config: KrylovConfig = KrylovConfig(),
    keep_trajectory: bool = False,
) -> EvolutionResult:
    """Chain Krylov exponentials over the segments defined by *clocks*.

    *clocks* must be finite, non-negative and strictly increasing; the
    register is taken to be the state at ``clocks[0]``.
    """
    _check_compatible(register, hamiltonian)
    c = np.asarray(clocks, dtype=float).reshape(-1)
    if c.size < 2:
        raise ValueError("clocks must contain at least two time points")
    if np.any(~np.isfinite(c)) or c[0] < 0.0 or not np.all(np.diff(c) > 0.0):
        raise ValueError("clocks must be finite, non-negative and strictly increasing")
    sampling = str(config.time_sampling).strip().lower()
    if sampling not in TIME_SAMPLINGS:
        raise ValueError(f"time_sampling must be one of {set(TIME_SAMPLINGS)}, got {sampling!r}")

    ai_log(
        "propagation_start",
        engine="krylov",
        time_sampling=sampling,
        dim=int(register.dim),
        segments=int(c.size - 1),
        t_final=float(c[-1]),
    )
    psi = np.array(register.amplitudes, dtype=complex, copy=True)
    states: List[RydbergRegister] = [register] if keep_trajectory else []
    max_err = 0.0
    n_substeps_total = 0

    for k in range(c.size - 1):
        t_left, t_right = float(c[k]), float(c[k + 1])
        seg = t_right - t_left
        t_sample = _sample_time(t_left, t_right, sampling)
        matvec = hamiltonian.frozen(t_sample)

        n_sub = 1
        if config.max_substep is not None:
            n_sub = max(1, int(math.ceil(seg / float(config.max_substep) - 1e-12)))
        dt = seg / float(n_sub)
        for _ in range(n_sub):
            psi, err = expmv_krylov(matvec, psi, dt, krylov_dim=int(config.krylov_dim))
            max_err = max(max_err, err)
            if err > float(config.tol):
                ai_log(
                    "krylov_error_exceeded",
                    segment=k,
                    t_left=t_left,
                    t_right=t_right,
                    substep_dt=dt,
                    error_estimate=err,
                    tol=float(config.tol),
                    krylov_dim=int(config.krylov_dim),
                )
                raise NumericalInstability(
                    f"Krylov error estimate {err:.3e} exceeds tol {config.tol:.3e} on segment "
                    f"[{t_left}, {t_right}] (dt={dt}); increase krylov_dim or shrink the segment"
                )
        n_substeps_total += n_sub
        _check_norm(psi, config.norm_tol, where="evolve_krylov", t=t_right)
        if keep_trajectory:
            states.append(register.with_amplitudes(psi))

    ai_log(
        "propagation_done",
        engine="krylov",
        t_final=float(c[-1]),
        substeps=int(n_substeps_total),
        max_error_estimate=float(max_err),
    )
    return EvolutionResult(
        register=register.with_amplitudes(psi),
        method=krylov_method_name(sampling),
        times=tuple(float(t) for t in c) if keep_trajectory else (float(c[-1]),),
        trajectory=tuple(states),
        stats={"max_error_estimate": float(max_err), "substeps": float(n_substeps_total)},
    )
