"""Measurement-side quantities: densities, losses, Born-rule samples, MIS checks.

``most_probable`` is deterministic (a ranking of the exact distribution);
``sample`` is a stochastic draw from a caller-supplied
``numpy.random.Generator``.  The two are deliberately separate operations.
"""

from __future__ import annotations

import math
from typing import List, Tuple

import networkx as nx
import numpy as np

from src.rydberg.geometry import graph_edges
from src.rydberg.postprocessing import repair
from src.rydberg.register import RydbergRegister, bitstring_qn1_to_q0, popcount_array
from src.rydberg.subspace import build_subspace

ConfigProb = Tuple[int, float]


def probabilities(register: RydbergRegister) -> np.ndarray:
    """|amplitude|² for every basis position."""
    return np.abs(register.amplitudes) ** 2


def expected_occupied_count(register: RydbergRegister) -> float:
    """⟨Σ_k n_k⟩ = Σ_c |ψ_c|² popcount(c)."""
    probs = probabilities(register)
    counts = popcount_array(register.configurations()).astype(float)
    return float(np.dot(probs, counts))


#: Same quantity under the name used by the MIS loss functions.
rydberg_density_sum = expected_occupied_count


def rydberg_densities(register: RydbergRegister) -> np.ndarray:
    """Per-atom excitation probabilities ⟨n_k⟩."""
    probs = probabilities(register)
    configs = register.configurations()
    return np.array(
        [float(np.dot(probs, ((configs >> k) & 1).astype(float))) for k in range(register.n_sites)],
        dtype=float,
    )


def most_probable(register: RydbergRegister, k: int) -> List[ConfigProb]:
    """The *k* most likely configurations, by descending probability.

    Ties keep basis order, so the result is fully deterministic.
    """
    kk = int(k)
    if kk <= 0:
        raise ValueError("k must be positive")
    probs = probabilities(register)
    order = np.argsort(-probs, kind="stable")[:kk]
    configs = register.configurations()
    return [(int(configs[i]), float(probs[i])) for i in order]


def sample(register: RydbergRegister, count: int, rng: np.random.Generator) -> List[ConfigProb]:
    """Draw *count* independent configurations with Born-rule weights.

    Each draw is returned with the exact probability of the drawn
    configuration; order is the draw order.
    """
    n_draw = int(count)
    if n_draw < 0:
        raise ValueError("count must be non-negative")
    probs = probabilities(register)
    total = float(np.sum(probs))
    if not (math.isfinite(total) and total > 0.0):
        raise ValueError("register has no probability mass")
    idx = rng.choice(probs.size, size=n_draw, p=probs / total)
    configs = register.configurations()
    return [(int(configs[i]), float(probs[i])) for i in idx]


def bitstring_histogram(register: RydbergRegister, nlargest: int = 20) -> List[Tuple[str, float]]:
    """``(bitstring, probability)`` rows of the *nlargest* configurations (plot data)."""
    return [
        (bitstring_qn1_to_q0(register.n_sites, c), p)
        for c, p in most_probable(register, nlargest)
    ]


# ---------------------------------------------------------------------------
# Independent-set checks
# ---------------------------------------------------------------------------

def num_mis_violation(config: int, graph: nx.Graph) -> int:
    """Number of edges with both endpoints excited."""
    c = int(config)
    return sum(1 for i, j in graph_edges(graph) if (c >> i) & 1 and (c >> j) & 1)


def is_independent_set(config: int, graph: nx.Graph) -> bool:
    c = int(config)
    for i, j in graph.edges():
        if (c >> int(i)) & 1 and (c >> int(j)) & 1:
            return False
    return True


def gibbs_loss(register: RydbergRegister, alpha: float) -> float:
    """Soft-max alternative to the mean-density loss.

        L = −(1/α) log Σ_c p_c exp(α · popcount(c))

    For α → 0 this tends to ``−rydberg_density_sum``; larger α rewards
    probability placed on the largest sets.
    """
    a = float(alpha)
    if not (math.isfinite(a) and a > 0.0):
        raise ValueError("alpha must be a positive finite number")
    probs = probabilities(register)
    counts = popcount_array(register.configurations()).astype(float)
    mask = probs > 0.0
    # log-sum-exp for stability
    exponents = a * counts[mask] + np.log(probs[mask])
    top = float(np.max(exponents))
    return float(-(top + math.log(float(np.sum(np.exp(exponents - top))))) / a)


def independent_set_probabilities(register: RydbergRegister, graph: nx.Graph) -> np.ndarray:
    """Probability of measuring an independent set of each size ``0..n``.

    Configurations that violate the blockade are first reduced with
    :func:`~src.rydberg.postprocessing.repair`, as one would do with hardware
    samples.
    """
    probs = probabilities(register)
    configs = register.configurations()
    out = np.zeros(register.n_sites + 1, dtype=float)
    for c, p in zip(configs.tolist(), probs.tolist()):
        if p <= 0.0:
            continue
        fixed = repair(int(c), graph)
        out[bin(fixed).count("1")] += p
    return out


def exact_mis(graph: nx.Graph) -> Tuple[int, List[int]]:
    """Brute-force MIS size and all maximum configurations (verification only).

    Exponential in the worst case; bounded by the subspace enumeration limit.
    """
    subspace = build_subspace(graph)
    counts = popcount_array(subspace.configs)
    best = int(np.max(counts))
    return best, [int(c) for c in subspace.configs[counts == best]]
