#!/usr/bin/env python3
"""MIS protocols end to end on small graphs.

Tests cover:
  - adiabatic sweep on the 4-vertex path concentrates on maximum independent sets
    (subspace and full space, the latter with repair)
  - isolated atoms: blockade subspace equals the full space
  - QAOA-like and smoothed protocols: waveform layout, parameter validation
  - the variational loop never returns a worse loss than its starting point
"""

from __future__ import annotations

import math
import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.rydberg.config import (
    DELTA_0,
    DELTA_END,
    DELTA_START,
    MAX_PULSE_DURATION,
    OMEGA_MAX,
    OptimizerConfig,
)
from src.rydberg.errors import InvalidParameterVector
from src.rydberg.observables import (
    independent_set_probabilities,
    is_independent_set,
    most_probable,
    probabilities,
)
from src.rydberg.postprocessing import repair
from src.rydberg.protocols import (
    MISProblem,
    adiabatic_waveforms,
    loss_piecewise_constant,
    loss_piecewise_linear,
    piecewise_linear_detuning,
    qaoa_waveforms,
    run_adiabatic,
    scalar_loss,
    smoothed_detuning,
    smoothed_rabi,
)
from src.rydberg.variational import optimize

from conftest import PATH4_MIS_CONFIGS, PATH4_POINTS, PATH4_RADIUS

# Slow enough sweep for the 4-atom path to follow the ground state.
ADIABATIC_T = 4.0


class TestAdiabaticPath(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.problem = MISProblem.from_points(PATH4_POINTS, PATH4_RADIUS)

    def test_waveform_shape(self) -> None:
        rabi, detuning = adiabatic_waveforms(0.6)
        self.assertEqual(rabi(0.0), 0.0)
        self.assertAlmostEqual(rabi(0.3), OMEGA_MAX, places=12)
        self.assertAlmostEqual(detuning(0.05), DELTA_START, places=12)
        self.assertAlmostEqual(detuning(0.6), DELTA_END, places=12)
        with self.assertRaises(InvalidParameterVector):
            adiabatic_waveforms(-1.0)

    def test_subspace_sweep_finds_mis(self) -> None:
        res = run_adiabatic(self.problem, t_max=ADIABATIC_T, use_subspace=True)
        reg = res.register
        self.assertAlmostEqual(reg.norm_squared(), 1.0, delta=1e-6)
        best, _ = most_probable(reg, 1)[0]
        self.assertIn(best, PATH4_MIS_CONFIGS)
        dist = independent_set_probabilities(reg, self.problem.graph)
        self.assertGreater(dist[2], 0.5)

    def test_fullspace_sweep_finds_mis_after_repair(self) -> None:
        res = run_adiabatic(self.problem, t_max=ADIABATIC_T, use_subspace=False)
        reg = res.register
        self.assertIsNone(reg.subspace)
        self.assertAlmostEqual(float(np.sum(probabilities(reg))), 1.0, delta=1e-6)
        top = most_probable(reg, 3)
        self.assertIn(top[0][0], PATH4_MIS_CONFIGS)
        for config, _ in top:
            fixed = repair(config, self.problem.graph)
            self.assertTrue(is_independent_set(fixed, self.problem.graph))


class TestIsolatedAtoms(unittest.TestCase):
    def test_subspace_is_full_space(self) -> None:
        pts = [(20.0 * k, 0.0) for k in range(5)]
        problem = MISProblem.from_points(pts, 7.5)
        self.assertEqual(problem.graph.number_of_edges(), 0)
        self.assertEqual(problem.subspace.dim, 2 ** 5)
        self.assertEqual(problem.subspace.configs.tolist(), list(range(32)))


class TestDropoutLattice(unittest.TestCase):
    def test_seeded_instance(self) -> None:
        a = MISProblem.dropout_lattice(np.random.default_rng(42))
        b = MISProblem.dropout_lattice(np.random.default_rng(42))
        self.assertEqual(a.n_sites, 13)
        self.assertEqual(a.points, b.points)
        self.assertTrue(np.array_equal(a.subspace.configs, b.subspace.configs))
        for c in a.subspace.configs[:: max(1, a.subspace.dim // 50)]:
            self.assertTrue(is_independent_set(int(c), a.graph))


class TestQAOAProtocol(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.problem = MISProblem.from_points(PATH4_POINTS, PATH4_RADIUS)

    def test_waveform_layout(self) -> None:
        rabi, detuning, clocks = qaoa_waveforms([0.1, 0.2, 0.1, 0.2])
        self.assertTrue(np.allclose(clocks, [0.0, 0.1, 0.3, 0.4, 0.6]))
        self.assertEqual(rabi(0.05), OMEGA_MAX)
        self.assertEqual(rabi(0.2), 0.0)
        self.assertEqual(detuning(0.05), 0.0)
        self.assertEqual(detuning(0.2), DELTA_END)
        self.assertEqual(rabi.mode, "constant")

    def test_invalid_durations(self) -> None:
        for x in ([0.1, 0.1, 0.1], [0.1, -0.1], [0.0, 0.1], [0.1, math.nan], []):
            with self.subTest(x=x):
                with self.assertRaises(InvalidParameterVector):
                    loss_piecewise_constant(self.problem, x)

    def test_total_duration_bounded(self) -> None:
        _, _, clocks = qaoa_waveforms([MAX_PULSE_DURATION / 2.0] * 2)
        self.assertAlmostEqual(clocks[-1], MAX_PULSE_DURATION, places=12)
        with self.assertRaises(InvalidParameterVector):
            loss_piecewise_constant(self.problem, [1e4, 0.1])
        with self.assertRaises(InvalidParameterVector):
            qaoa_waveforms([1.0, 1.0], max_duration=1.5)

    def test_loss_range(self) -> None:
        loss, reg = loss_piecewise_constant(self.problem, [0.1] * 6)
        self.assertLessEqual(loss, 0.0)
        self.assertGreaterEqual(loss, -2.0)
        self.assertTrue(reg.is_subspace)
        self.assertAlmostEqual(reg.norm_squared(), 1.0, delta=1e-6)

    def test_optimize_does_not_worsen(self) -> None:
        x0 = [0.1] * 4
        res = optimize(x0, scalar_loss(self.problem, "piecewise_constant"), OptimizerConfig(maxiter=15))
        self.assertLessEqual(res.loss, res.initial_loss)
        self.assertAlmostEqual(res.initial_loss, loss_piecewise_constant(self.problem, x0)[0], places=10)


class TestSmoothedProtocol(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.problem = MISProblem.from_points(PATH4_POINTS, PATH4_RADIUS)

    def test_detuning_knots(self) -> None:
        raw = piecewise_linear_detuning([0.1, 0.8, 0.8])
        self.assertAlmostEqual(raw(0.0), DELTA_START, places=12)
        self.assertAlmostEqual(raw(0.2), DELTA_0 * 0.1, places=9)
        self.assertAlmostEqual(raw(0.6), DELTA_END, places=12)
        smooth = smoothed_detuning([0.1, 0.8, 0.8])
        self.assertEqual(smooth.mode, "smoothed")
        self.assertAlmostEqual(smooth.duration, 0.6, places=12)

    def test_rabi_pulse_plateau(self) -> None:
        rabi = smoothed_rabi()
        self.assertAlmostEqual(rabi(0.3), OMEGA_MAX, places=6)
        # Kernel tail only reaches the start of the ramp.
        self.assertLess(abs(rabi(0.0)), 0.05)
        self.assertLess(abs(rabi(0.6)), 0.05)

    def test_arity_checked(self) -> None:
        with self.assertRaises(InvalidParameterVector):
            loss_piecewise_linear(self.problem, [0.1, 0.8])

    def test_loss_and_optimize(self) -> None:
        x0 = [0.1, 0.8, 0.8]
        loss, reg, detuning = loss_piecewise_linear(self.problem, x0)
        self.assertTrue(-2.0 <= loss <= 0.0)
        self.assertAlmostEqual(reg.norm_squared(), 1.0, delta=1e-6)
        res = optimize(x0, scalar_loss(self.problem, "piecewise_linear"), OptimizerConfig(maxiter=5))
        self.assertLessEqual(res.loss, loss + 1e-12)


def test_scalar_loss_rejects_unknown_protocol(path4_problem) -> None:
    with pytest.raises(ValueError):
        scalar_loss(path4_problem, "gradient_ascent")


def test_problem_hamiltonian_representations(path4_problem) -> None:
    h_sub = path4_problem.hamiltonian(1.0, 1.0)
    h_full = path4_problem.hamiltonian(1.0, 1.0, use_subspace=False)
    assert h_sub.dim == 8
    assert h_full.dim == 16
    assert path4_problem.zero_state().dim == 8
