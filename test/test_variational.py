#!/usr/bin/env python3
"""Derivative-free variational loop: wiring, trial policy and result contract."""

from __future__ import annotations

import json
import math
import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.rydberg.config import OptimizerConfig
from src.rydberg.errors import InvalidParameterVector, NumericalInstability
from src.rydberg.variational import OptimizerTrace, optimize, validate_parameter_vector


def _quadratic(x: np.ndarray) -> float:
    target = np.array([0.3, -0.7])
    return float(np.sum((np.asarray(x) - target) ** 2))


class TestOptimizeQuadratic(unittest.TestCase):
    def test_loss_does_not_increase(self) -> None:
        for method in ("Nelder-Mead", "Powell", "COBYLA"):
            with self.subTest(method=method):
                res = optimize([2.0, 2.0], _quadratic, OptimizerConfig(method=method, maxiter=400))
                self.assertLessEqual(res.loss, res.initial_loss)
                self.assertAlmostEqual(res.initial_loss, _quadratic(np.array([2.0, 2.0])), places=12)
                self.assertLess(res.loss, 1e-3)
                self.assertEqual(res.method, method)

    def test_trace_records_every_evaluation(self) -> None:
        res = optimize([1.0, 1.0], _quadratic, OptimizerConfig(maxiter=50))
        self.assertEqual(len(res.trace), res.nfev)
        self.assertEqual(res.trace.losses[0], res.initial_loss)
        self.assertEqual(res.loss, min(res.trace.losses))
        self.assertTrue(np.array_equal(res.x, res.trace.parameters[res.trace.best_index()]))

    def test_loss_receives_copies(self) -> None:
        def loss(x: np.ndarray) -> float:
            x[0] = 1e9
            return _quadratic(np.array([0.0, 0.0]))

        res = optimize([0.5, 0.5], loss, OptimizerConfig(maxiter=5))
        self.assertTrue(np.allclose(res.trace.parameters[0], [0.5, 0.5]))


class TestTrialPolicy(unittest.TestCase):
    def test_invalid_trials_become_penalties(self) -> None:
        def loss(x: np.ndarray) -> float:
            if x[0] < 0.0:
                raise InvalidParameterVector("negative duration")
            if x[0] > 5.0:
                raise NumericalInstability("norm drift")
            return (x[0] - 1.0) ** 2

        res = optimize([0.05], loss, OptimizerConfig(maxiter=100))
        self.assertLessEqual(res.loss, res.initial_loss)
        self.assertLess(res.loss, 1e-3)

    def test_non_finite_loss_is_invalid(self) -> None:
        def loss(x: np.ndarray) -> float:
            return math.nan if x[0] > 1.0 else float(x[0] ** 2)

        res = optimize([0.9], loss, OptimizerConfig(maxiter=60))
        self.assertTrue(math.isfinite(res.loss))
        self.assertLessEqual(res.loss, res.initial_loss)

    def test_bad_initial_point_is_fatal(self) -> None:
        for x0 in ([], [math.nan], [[1.0, 2.0]], ["a"]):
            with self.subTest(x0=x0):
                with self.assertRaises(InvalidParameterVector):
                    optimize(x0, _quadratic)

    def test_invalid_parameter_at_x0_is_fatal(self) -> None:
        def loss(x: np.ndarray) -> float:
            raise InvalidParameterVector("bad arity")

        with self.assertRaises(InvalidParameterVector):
            optimize([1.0], loss)

    def test_other_errors_at_x0_are_trials(self) -> None:
        calls = []

        def loss(x: np.ndarray) -> float:
            calls.append(1)
            if len(calls) == 1:
                raise NumericalInstability("first call fails")
            return float(x[0] ** 2)

        res = optimize([1.0], loss, OptimizerConfig(maxiter=20, invalid_loss=1e6))
        self.assertEqual(res.initial_loss, 1e6)
        self.assertGreaterEqual(res.n_invalid, 1)
        self.assertLess(res.loss, 1e6)

    def test_programming_errors_propagate(self) -> None:
        def loss(x: np.ndarray) -> float:
            raise KeyError("bug")

        with self.assertRaises(KeyError):
            optimize([1.0], loss)


class TestValidation(unittest.TestCase):
    def test_arity(self) -> None:
        self.assertEqual(validate_parameter_vector([1, 2, 3], arity=3).tolist(), [1.0, 2.0, 3.0])
        with self.assertRaises(InvalidParameterVector):
            validate_parameter_vector([1.0, 2.0], arity=3)

    def test_trace_empty(self) -> None:
        with self.assertRaises(ValueError):
            OptimizerTrace().best_index()

    def test_config_rejects_unknown_method(self) -> None:
        with self.assertRaises(ValueError):
            OptimizerConfig(method="BFGS")


def test_optimizer_logs_events(monkeypatch, capsys) -> None:
    monkeypatch.setenv("RYDBERG_AI_LOG", "1")
    optimize([1.0, 1.0], _quadratic, OptimizerConfig(maxiter=3))
    lines = [ln for ln in capsys.readouterr().out.splitlines() if ln.startswith("AI_LOG ")]
    events = [json.loads(ln[len("AI_LOG "):])["event"] for ln in lines]
    assert events[0] == "variational_start"
    assert events[-1] == "variational_done"


def test_optimizer_silent_when_disabled(monkeypatch, capsys) -> None:
    monkeypatch.setenv("RYDBERG_AI_LOG", "0")
    optimize([1.0], lambda x: float(x[0] ** 2), OptimizerConfig(maxiter=3))
    assert "AI_LOG" not in capsys.readouterr().out


@pytest.mark.parametrize("maxiter", [1, 10])
def test_maxiter_bounds_iterations(maxiter: int) -> None:
    res = optimize([3.0], lambda x: float((x[0] - 1.0) ** 2), OptimizerConfig(maxiter=maxiter))
    assert res.nit <= maxiter
    assert res.loss <= res.initial_loss


if __name__ == "__main__":
    unittest.main()
