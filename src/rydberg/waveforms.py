"""Scalar control waveforms for the Rabi frequency Ω(t) and detuning Δ(t).

A waveform is a list of control points ``(clock, value)`` together with an
interpolation mode.  The mode set is closed:

``"constant"``
    Step function.  ``f(t)`` is the value of the last control point with
    ``clock <= t``; the final control point only defines ``f(T)``.
``"linear"``
    Linear interpolation between the bracketing control points.
``"smoothed"``
    Produced by :func:`smooth`.  The control points are a fine uniform grid
    holding the kernel-smoothed signal; evaluation interpolates linearly.

Waveforms are immutable; :func:`smooth` returns a new waveform with the same
domain ``[0, T]``.  Evaluating outside the domain raises
:class:`~src.rydberg.errors.InvalidWaveformSpec`, except for a relative slack of
``1e-12 · T`` which is clamped so that adaptive integrators landing a hair past
``T`` do not fail.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from src.rydberg.errors import InvalidWaveformSpec

WAVEFORM_MODES: tuple[str, ...] = ("constant", "linear", "smoothed")

_DOMAIN_SLACK: float = 1e-12
_SMOOTH_MIN_POINTS: int = 200
_SMOOTH_POINTS_PER_RADIUS: int = 10
_SMOOTH_MAX_POINTS: int = 100_000


# ---------------------------------------------------------------------------
# Smoothing kernels: K(u) on the reduced coordinate u = (t - s) / radius
# ---------------------------------------------------------------------------

def _gaussian(u: np.ndarray) -> np.ndarray:
    return np.exp(-0.5 * u * u)


def _triangle(u: np.ndarray) -> np.ndarray:
    return np.clip(1.0 - np.abs(u), 0.0, None)


def _biweight(u: np.ndarray) -> np.ndarray:
    return np.clip(1.0 - u * u, 0.0, None) ** 2


def _uniform(u: np.ndarray) -> np.ndarray:
    return (np.abs(u) <= 1.0).astype(float)


#: kernel name -> (K(u), support in units of the radius)
SMOOTHING_KERNELS: Dict[str, tuple[Callable[[np.ndarray], np.ndarray], float]] = {
    "gaussian": (_gaussian, 3.0),
    "triangle": (_triangle, 1.0),
    "biweight": (_biweight, 1.0),
    "uniform": (_uniform, 1.0),
}


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Waveform:
    """Immutable piecewise waveform on ``[0, clocks[-1]]``."""

    clocks: np.ndarray
    values: np.ndarray
    mode: str
    kernel_radius: Optional[float] = None

    @classmethod
    def construct(
        cls,
        clocks: Sequence[float],
        values: Sequence[float],
        mode: str,
    ) -> "Waveform":
        """Validate control points and build a ``constant`` or ``linear`` waveform."""
        mode_n = str(mode).strip().lower()
        if mode_n not in WAVEFORM_MODES[:2]:
            raise InvalidWaveformSpec(f"mode must be 'constant' or 'linear', got {mode!r}")
        return cls._checked(clocks, values, mode_n, None)

    @classmethod
    def _checked(
        cls,
        clocks: Sequence[float],
        values: Sequence[float],
        mode: str,
        kernel_radius: Optional[float],
    ) -> "Waveform":
        try:
            c = np.array(clocks, dtype=float).reshape(-1)
            v = np.array(values, dtype=float).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise InvalidWaveformSpec(f"clocks and values must be real sequences: {exc}")
        if c.size != v.size:
            raise InvalidWaveformSpec(
                f"clocks and values must have the same length, got {c.size} and {v.size}"
            )
        if c.size < 2:
            raise InvalidWaveformSpec("a waveform needs at least two control points")
        if not (np.all(np.isfinite(c)) and np.all(np.isfinite(v))):
            raise InvalidWaveformSpec("clocks and values must be finite")
        if c[0] != 0.0:
            raise InvalidWaveformSpec(f"first clock must be 0, got {c[0]}")
        if not np.all(np.diff(c) > 0.0):
            raise InvalidWaveformSpec("clocks must be strictly increasing")
        return cls(clocks=_readonly(c), values=_readonly(v), mode=mode, kernel_radius=kernel_radius)

    # -- queries ------------------------------------------------------------

    @property
    def duration(self) -> float:
        return float(self.clocks[-1])

    def _clamp(self, t: np.ndarray) -> np.ndarray:
        T = self.duration
        slack = _DOMAIN_SLACK * max(T, 1.0)
        if np.any(~np.isfinite(t)) or np.any(t < -slack) or np.any(t > T + slack):
            bad = t[~np.isfinite(t) | (t < -slack) | (t > T + slack)]
            raise InvalidWaveformSpec(
                f"time {float(bad.reshape(-1)[0])!r} outside waveform domain [0, {T}]"
            )
        return np.clip(t, 0.0, T)

    def sample(self, times: Sequence[float] | np.ndarray) -> np.ndarray:
        """Evaluate on an array of times (same shape as *times*)."""
        if self.mode not in WAVEFORM_MODES:
            raise InvalidWaveformSpec(f"unknown waveform mode {self.mode!r}")
        t = self._clamp(np.asarray(times, dtype=float))
        if self.mode == "constant":
            idx = np.searchsorted(self.clocks, t, side="right") - 1
            return np.asarray(self.values[idx], dtype=float)
        return np.asarray(np.interp(t, self.clocks, self.values), dtype=float)

    def evaluate(self, t: float) -> float:
        return float(self.sample(np.asarray([float(t)]))[0])

    def __call__(self, t: float) -> float:
        return self.evaluate(t)

    def smooth(self, kernel_radius: float, kernel: str = "gaussian") -> "Waveform":
        return smooth(self, kernel_radius, kernel=kernel)

    def __repr__(self) -> str:
        extra = f", kernel_radius={self.kernel_radius}" if self.kernel_radius is not None else ""
        return (
            f"Waveform(mode={self.mode!r}, points={self.clocks.size}, "
            f"duration={self.duration}{extra})"
        )


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def piecewise_linear(clocks: Sequence[float], values: Sequence[float]) -> Waveform:
    return Waveform.construct(clocks, values, "linear")


def piecewise_constant(clocks: Sequence[float], values: Sequence[float]) -> Waveform:
    return Waveform.construct(clocks, values, "constant")


def constant_waveform(duration: float, value: float) -> Waveform:
    """Time-independent waveform on ``[0, duration]``."""
    T = float(duration)
    if not (math.isfinite(T) and T > 0.0):
        raise InvalidWaveformSpec(f"duration must be > 0, got {duration!r}")
    return piecewise_constant([0.0, T], [float(value), float(value)])


def evaluate(waveform: Waveform, t: float) -> float:
    return waveform.evaluate(t)


# ---------------------------------------------------------------------------
# Smoothing
# ---------------------------------------------------------------------------

def smooth(waveform: Waveform, kernel_radius: float, *, kernel: str = "gaussian") -> Waveform:
    """Kernel-smooth *waveform* and re-fit it on a fine uniform grid.

    The original signal is sampled on ``N >= 200`` uniform points (spacing at
    most ``kernel_radius / 10``), padded on both sides with the boundary values
    for the width of the kernel support, and convolved with the normalized
    kernel weights.  A constant signal therefore stays constant and the domain
    is unchanged.  Both the grid and the kernel are capped at 10^5 points;
    radii that would need more raise :class:`InvalidWaveformSpec`.
    """
    r = float(kernel_radius)
    if not (math.isfinite(r) and r > 0.0):
        raise InvalidWaveformSpec(f"kernel_radius must be > 0, got {kernel_radius!r}")
    kname = str(kernel).strip().lower()
    if kname not in SMOOTHING_KERNELS:
        raise InvalidWaveformSpec(
            f"kernel must be one of {sorted(SMOOTHING_KERNELS)}, got {kernel!r}"
        )
    kfun, support = SMOOTHING_KERNELS[kname]

    T = waveform.duration
    n_points = max(_SMOOTH_MIN_POINTS, int(math.ceil(T * _SMOOTH_POINTS_PER_RADIUS / r)) + 1)
    if n_points > _SMOOTH_MAX_POINTS:
        raise InvalidWaveformSpec(
            f"kernel_radius {r!r} too small for duration {T!r}: "
            f"needs {n_points} grid points (max {_SMOOTH_MAX_POINTS})"
        )
    grid = np.linspace(0.0, T, n_points)
    dt = float(grid[1] - grid[0])
    raw = waveform.sample(grid)

    half_width = max(1, int(math.ceil(support * r / dt)))
    if half_width > _SMOOTH_MAX_POINTS:
        raise InvalidWaveformSpec(
            f"kernel_radius {r!r} too large for duration {T!r}: "
            f"kernel needs {2 * half_width + 1} weights (max {2 * _SMOOTH_MAX_POINTS + 1})"
        )
    offsets = np.arange(-half_width, half_width + 1, dtype=float) * dt
    weights = kfun(offsets / r)
    weights = weights / float(np.sum(weights))

    # Offsets beyond the grid length only ever see the padded boundary values.
    max_offset = n_points - 1
    if half_width > max_offset:
        cut = half_width - max_offset
        folded = weights[cut:cut + 2 * max_offset + 1].copy()
        folded[0] += float(np.sum(weights[:cut]))
        folded[-1] += float(np.sum(weights[cut + 2 * max_offset + 1:]))
        weights, half_width = folded, max_offset

    padded = np.concatenate([
        np.full(half_width, raw[0]),
        raw,
        np.full(half_width, raw[-1]),
    ])
    smoothed = np.convolve(padded, weights[::-1], mode="valid")
    return Waveform._checked(grid, smoothed, "smoothed", r)
