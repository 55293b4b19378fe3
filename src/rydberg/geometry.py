"""Atom geometry and the unit-disk graph it induces.

Vertices are atom indices ``0..n-1``; two atoms are joined by an edge when
their Euclidean distance is at most the blockade radius.  Each node carries its
coordinate under the ``pos`` attribute so downstream code never has to keep
graph and positions in sync by hand.

The lattice helpers reproduce the square-grid-with-dropout geometry of the MIS
tutorial.  Randomness always comes from an explicit ``numpy.random.Generator``.
"""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import networkx as nx
import numpy as np

from src.rydberg.errors import InvalidGraphSpec

Point = Tuple[float, float]


def _as_points(points: Sequence[Sequence[float]]) -> tuple[Point, ...]:
    out: list[Point] = []
    for k, p in enumerate(points):
        try:
            x, y = p
        except (TypeError, ValueError):
            raise InvalidGraphSpec(f"point {k} is not an (x, y) pair: {p!r}")
        xf, yf = float(x), float(y)
        if not (math.isfinite(xf) and math.isfinite(yf)):
            raise InvalidGraphSpec(f"point {k} has non-finite coordinates: {p!r}")
        out.append((xf, yf))
    return tuple(out)


def pairwise_distances(points: Sequence[Sequence[float]]) -> np.ndarray:
    """Return the symmetric ``(n, n)`` matrix of Euclidean distances."""
    pts = np.asarray(_as_points(points), dtype=float).reshape(-1, 2)
    diff = pts[:, None, :] - pts[None, :, :]
    return np.sqrt(np.sum(diff * diff, axis=-1))


def unit_disk_graph(points: Sequence[Sequence[float]], radius: float) -> nx.Graph:
    """Build the unit-disk graph of *points* with blockade *radius*.

    Raises
    ------
    InvalidGraphSpec
        If *radius* is not a positive finite number or a point is malformed.
    """
    r = float(radius)
    if not (math.isfinite(r) and r > 0.0):
        raise InvalidGraphSpec(f"radius must be a positive finite number, got {radius!r}")
    pts = _as_points(points)
    graph = nx.Graph()
    for i, p in enumerate(pts):
        graph.add_node(i, pos=p)
    if len(pts) < 2:
        return graph
    dist = pairwise_distances(pts)
    ii, jj = np.nonzero(np.triu(dist <= r, k=1))
    graph.add_edges_from(zip(ii.tolist(), jj.tolist()))
    return graph


def graph_positions(graph: nx.Graph) -> tuple[Point, ...]:
    """Return node positions in vertex order (requires the ``pos`` attribute)."""
    out: list[Point] = []
    for i in range(graph.number_of_nodes()):
        pos = graph.nodes[i].get("pos")
        if pos is None:
            raise InvalidGraphSpec(f"node {i} has no 'pos' attribute")
        out.append((float(pos[0]), float(pos[1])))
    return tuple(out)


def graph_edges(graph: nx.Graph) -> tuple[tuple[int, int], ...]:
    """Sorted ``(i, j)`` edge tuple with ``i < j``."""
    return tuple(sorted((min(int(u), int(v)), max(int(u), int(v))) for u, v in graph.edges()))


def check_vertex_labels(graph: nx.Graph) -> int:
    """Return ``n`` after checking the nodes are exactly ``0..n-1``."""
    n = int(graph.number_of_nodes())
    if set(graph.nodes()) != set(range(n)):
        raise InvalidGraphSpec("graph nodes must be labelled 0..n-1")
    if any(u == v for u, v in graph.edges()):
        raise InvalidGraphSpec("graph must not contain self-loops")
    return n


# ---------------------------------------------------------------------------
# Lattice helpers
# ---------------------------------------------------------------------------

def square_lattice(nx_sites: int, ny_sites: int, *, scale: float = 1.0) -> tuple[Point, ...]:
    """Row-major ``nx_sites × ny_sites`` square grid with lattice constant *scale*."""
    if int(nx_sites) <= 0 or int(ny_sites) <= 0:
        raise InvalidGraphSpec("lattice dimensions must be positive")
    s = float(scale)
    if not s > 0.0:
        raise InvalidGraphSpec("scale must be > 0")
    return tuple(
        (float(ix) * s, float(iy) * s)
        for iy in range(int(ny_sites))
        for ix in range(int(nx_sites))
    )


def random_dropout(
    points: Sequence[Sequence[float]],
    fraction: float,
    rng: np.random.Generator,
) -> tuple[Point, ...]:
    """Remove ``round(fraction · n)`` points chosen uniformly by *rng*.

    Surviving points keep their original relative order.
    """
    f = float(fraction)
    if not 0.0 <= f <= 1.0:
        raise InvalidGraphSpec(f"dropout fraction must be in [0, 1], got {fraction!r}")
    pts = _as_points(points)
    n_drop = int(round(f * len(pts)))
    if n_drop == 0:
        return pts
    dropped = set(int(k) for k in rng.choice(len(pts), size=n_drop, replace=False))
    return tuple(p for k, p in enumerate(pts) if k not in dropped)
