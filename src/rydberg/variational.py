"""Classical outer loop: derivative-free minimization of a black-box loss.

The loss is any ``f(x) -> float``; in this repo it is one full
waveform → Hamiltonian → propagation → observable pipeline per call (see
``src.rydberg.protocols``).  No gradients are assumed.

Trial policy
------------
* ``x0`` is validated up front; a malformed ``x0`` raises
  :class:`~src.rydberg.errors.InvalidParameterVector` and nothing runs.
* An ``InvalidParameterVector`` raised by the loss at ``x0`` is fatal too.
* Any other :class:`~src.rydberg.errors.RydbergError` raised by a trial (or a
  non-finite loss) marks the trial invalid: the optimizer sees
  ``config.invalid_loss`` (``inf`` by default) and the event is logged.
* Exceptions that are not ``RydbergError`` are programming errors and propagate.

The returned point is the best one evaluated over the whole run (the initial
point included), so ``result.loss <= result.initial_loss`` always holds.  This
is a local heuristic; global optimality is not guaranteed.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

import numpy as np
from scipy.optimize import minimize

from src.rydberg.ai_log import ai_log
from src.rydberg.config import OptimizerConfig
from src.rydberg.errors import InvalidParameterVector, RydbergError

LossFn = Callable[[np.ndarray], float]


@dataclass
class OptimizerTrace:
    """Append-only history of evaluated parameter vectors and their losses."""

    _parameters: List[np.ndarray] = field(default_factory=list, repr=False)
    _losses: List[float] = field(default_factory=list, repr=False)

    def append(self, x: np.ndarray, loss: float) -> None:
        xc = np.array(x, dtype=float, copy=True)
        xc.setflags(write=False)
        self._parameters.append(xc)
        self._losses.append(float(loss))

    @property
    def parameters(self) -> tuple[np.ndarray, ...]:
        return tuple(self._parameters)

    @property
    def losses(self) -> tuple[float, ...]:
        return tuple(self._losses)

    def __len__(self) -> int:
        return len(self._losses)

    def best_index(self) -> int:
        if not self._losses:
            raise ValueError("trace is empty")
        return int(np.argmin(np.asarray(self._losses, dtype=float)))


@dataclass(frozen=True)
class OptimizationResult:
    x: np.ndarray
    loss: float
    initial_loss: float
    nfev: int
    nit: int
    n_invalid: int
    success: bool
    message: str
    method: str
    trace: OptimizerTrace
    elapsed_sec: float


def validate_parameter_vector(x: Sequence[float], *, arity: int | None = None) -> np.ndarray:
    """Return *x* as a 1-D finite float array or raise ``InvalidParameterVector``."""
    try:
        arr = np.array(x, dtype=float).reshape(-1) if np.ndim(x) <= 1 else None
    except (TypeError, ValueError) as exc:
        raise InvalidParameterVector(f"parameter vector is not real-valued: {exc}")
    if arr is None:
        raise InvalidParameterVector("parameter vector must be one-dimensional")
    if arr.size == 0:
        raise InvalidParameterVector("parameter vector must not be empty")
    if arity is not None and arr.size != int(arity):
        raise InvalidParameterVector(f"expected {int(arity)} parameters, got {arr.size}")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterVector(f"parameter vector has non-finite entries: {arr.tolist()}")
    return arr


def _method_options(config: OptimizerConfig) -> dict:
    if config.method == "Nelder-Mead":
        return {
            "maxiter": int(config.maxiter),
            "xatol": float(config.xatol),
            "fatol": float(config.fatol),
            "adaptive": bool(config.adaptive),
        }
    if config.method == "Powell":
        return {"maxiter": int(config.maxiter), "xtol": float(config.xatol), "ftol": float(config.fatol)}
    return {"maxiter": int(config.maxiter), "tol": float(config.fatol)}


def optimize(
    x0: Sequence[float],
    loss_fn: LossFn,
    config: OptimizerConfig = OptimizerConfig(),
) -> OptimizationResult:
    """Minimize *loss_fn* from *x0* with a derivative-free SciPy method."""
    t_start = time.perf_counter()
    x_init = validate_parameter_vector(x0)
    trace = OptimizerTrace()
    n_invalid = 0

    def _evaluate(x: np.ndarray, *, initial: bool = False) -> float:
        nonlocal n_invalid
        xc = np.array(x, dtype=float, copy=True)
        try:
            val = float(loss_fn(np.array(xc, copy=True)))
        except InvalidParameterVector as exc:
            if initial:
                raise
            n_invalid += 1
            ai_log("variational_invalid_trial", x=xc.tolist(), error=type(exc).__name__, detail=str(exc))
            val = float(config.invalid_loss)
        except RydbergError as exc:
            n_invalid += 1
            ai_log("variational_invalid_trial", x=xc.tolist(), error=type(exc).__name__, detail=str(exc))
            val = float(config.invalid_loss)
        else:
            if not math.isfinite(val):
                n_invalid += 1
                ai_log("variational_invalid_trial", x=xc.tolist(), error="non_finite_loss", detail=str(val))
                val = float(config.invalid_loss)
        trace.append(xc, val)
        return val

    ai_log(
        "variational_start",
        method=config.method,
        maxiter=int(config.maxiter),
        num_parameters=int(x_init.size),
        x0=x_init.tolist(),
    )
    initial_loss = _evaluate(x_init, initial=True)

    iteration = 0

    def _callback(xk: np.ndarray) -> None:
        nonlocal iteration
        iteration += 1
        ai_log(
            "variational_iter",
            nit=iteration,
            nfev=len(trace),
            best_loss=float(min(trace.losses)),
        )

    res = minimize(
        _evaluate,
        x_init,
        method=config.method,
        callback=_callback,
        options=_method_options(config),
    )

    best = trace.best_index()
    x_best = np.array(trace.parameters[best], dtype=float, copy=True)
    loss_best = float(trace.losses[best])
    elapsed = time.perf_counter() - t_start
    ai_log(
        "variational_done",
        method=config.method,
        success=bool(res.success),
        message=str(res.message),
        nfev=len(trace),
        nit=int(getattr(res, "nit", iteration) or iteration),
        n_invalid=int(n_invalid),
        initial_loss=float(initial_loss),
        best_loss=loss_best,
        elapsed_sec=round(elapsed, 6),
    )
    return OptimizationResult(
        x=x_best,
        loss=loss_best,
        initial_loss=float(initial_loss),
        nfev=len(trace),
        nit=int(getattr(res, "nit", iteration) or iteration),
        n_invalid=int(n_invalid),
        success=bool(res.success),
        message=str(res.message),
        method=config.method,
        trace=trace,
        elapsed_sec=float(elapsed),
    )
