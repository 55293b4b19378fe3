"""
Shared Rydberg MIS test constants & fixtures.

Canonical small geometries used across the test modules.  Individual test
files may re-declare local aliases for convenience, but should keep values
consistent with the definitions here.

Pytest fixtures (lowercase names) are available for fixture-style injection.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Keep test output readable; tests that check logging re-enable it.
os.environ.setdefault("RYDBERG_AI_LOG", "0")

# ── 4-vertex path 0-1-2-3 (spacing 5 μm, blockade radius 7.5 μm) ─────────
PATH4_POINTS: tuple[tuple[float, float], ...] = ((0.0, 0.0), (5.0, 0.0), (10.0, 0.0), (15.0, 0.0))
PATH4_RADIUS: float = 7.5
PATH4_EDGES: tuple[tuple[int, int], ...] = ((0, 1), (1, 2), (2, 3))
PATH4_MIS_CONFIGS: tuple[int, ...] = (0b0101, 0b1001, 0b1010)   # {0,2}, {0,3}, {1,3}
PATH4_NUM_INDEPENDENT_SETS: int = 8

# ── 3-atom triangle (all pairs blockaded) ────────────────────────────────
TRIANGLE_POINTS: tuple[tuple[float, float], ...] = ((0.0, 0.0), (5.0, 0.0), (2.5, 4.0))
TRIANGLE_RADIUS: float = 7.5


def brute_force_independent_sets(n: int, edges) -> list[int]:
    """Reference enumeration over all 2**n bitmasks."""
    out = []
    for c in range(1 << n):
        if all(not ((c >> i) & 1 and (c >> j) & 1) for i, j in edges):
            out.append(c)
    return out


def random_points(rng: np.random.Generator, n: int, box: float = 12.0) -> list[tuple[float, float]]:
    """*n* distinct random points in a ``box × box`` square."""
    pts = rng.uniform(0.0, box, size=(n, 2))
    return [(float(x), float(y)) for x, y in pts]


# ── Pytest fixtures ──────────────────────────────────────────────────────
@pytest.fixture()
def path4_graph():
    from src.rydberg.geometry import unit_disk_graph

    return unit_disk_graph(PATH4_POINTS, PATH4_RADIUS)


@pytest.fixture()
def path4_problem():
    from src.rydberg.protocols import MISProblem

    return MISProblem.from_points(PATH4_POINTS, PATH4_RADIUS)


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
