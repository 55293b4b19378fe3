"""Reduce measured configurations to independent sets.

Full-space simulation (and hardware) only penalises blockade violations
energetically, so sampled bitstrings can contain adjacent excitations.
``repair`` removes excitations greedily until the configuration is
independent; ``expand_greedy`` then fills in free vertices.  Together they
form ``mis_postprocessing``.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

import networkx as nx

from src.rydberg.geometry import check_vertex_labels


def _neighbor_masks(graph: nx.Graph) -> list[int]:
    n = check_vertex_labels(graph)
    masks = [0] * n
    for u, v in graph.edges():
        masks[int(u)] |= 1 << int(v)
        masks[int(v)] |= 1 << int(u)
    return masks


def repair(config: int, graph: nx.Graph) -> int:
    """Remove excitations until no edge has both endpoints excited.

    Each round removes the excited vertex with the most excited neighbours
    (lowest index on ties).  Bits are only ever cleared, so the result is a
    subset of *config*; at most ``n`` rounds run, and an independent input is
    returned unchanged (hence ``repair`` is idempotent).
    """
    masks = _neighbor_masks(graph)
    c = int(config)
    if c < 0 or c >> len(masks):
        raise ValueError(f"configuration {c} does not fit in {len(masks)} sites")
    for _ in range(len(masks)):
        worst, worst_deg = -1, 0
        for v, mask in enumerate(masks):
            if not (c >> v) & 1:
                continue
            deg = bin(c & mask).count("1")
            if deg > worst_deg:
                worst, worst_deg = v, deg
        if worst < 0:
            break
        c &= ~(1 << worst)
    return c


def expand_greedy(config: int, graph: nx.Graph) -> int:
    """Add free vertices in index order while the set stays independent.

    Only meaningful for independent inputs; the result is a maximal
    independent set containing *config*.
    """
    masks = _neighbor_masks(graph)
    c = int(config)
    for v, mask in enumerate(masks):
        if not (c >> v) & 1 and not (c & mask):
            c |= 1 << v
    return c


def mis_postprocessing(config: int, graph: nx.Graph) -> int:
    """``repair`` followed by ``expand_greedy``."""
    return expand_greedy(repair(config, graph), graph)


def repair_samples(samples: Iterable[Tuple[int, float]], graph: nx.Graph) -> List[Tuple[int, float]]:
    """Apply :func:`repair` to every ``(config, probability)`` pair."""
    return [(repair(c, graph), float(p)) for c, p in samples]
