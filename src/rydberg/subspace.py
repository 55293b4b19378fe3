"""Blockade subspace: all independent sets of a graph as an indexable basis.

Configurations are integer bitmasks (bit ``k`` set ⇔ atom ``k`` excited).  The
basis is stored once as a read-only ascending ``int64`` array, and every other
object (Hamiltonian rows/columns, state-vector positions) refers to it by
integer index.  Enumeration is a depth-first backtracking over vertices in
index order that only ever extends partial configurations which are still
independent, so rejected branches are never materialized.

Ordering contract: ascending bitmask order.  The all-zero configuration is
therefore always at index 0.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterator, Sequence

import networkx as nx
import numpy as np

from src.rydberg.config import MAX_SUBSPACE_SITES
from src.rydberg.errors import SubspaceOverflow
from src.rydberg.geometry import check_vertex_labels, graph_edges, unit_disk_graph


@dataclass(frozen=True, eq=False)
class Subspace:
    """Ordered, deduplicated basis of independent-set configurations."""

    n_sites: int
    configs: np.ndarray
    index: Dict[int, int] = field(repr=False)

    def __len__(self) -> int:
        return int(self.configs.size)

    @property
    def dim(self) -> int:
        return int(self.configs.size)

    def __iter__(self) -> Iterator[int]:
        return (int(c) for c in self.configs)

    def __contains__(self, config: object) -> bool:
        try:
            return int(config) in self.index  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return False

    def index_of(self, config: int) -> int:
        """Return the basis position of *config* (``ValueError`` if absent)."""
        try:
            return self.index[int(config)]
        except KeyError:
            raise ValueError(f"configuration {int(config):#b} is not in the subspace")

    def __repr__(self) -> str:
        return f"Subspace(n_sites={self.n_sites}, dim={self.dim})"


def _from_configs(n_sites: int, configs: Sequence[int]) -> Subspace:
    arr = np.array(sorted(set(int(c) for c in configs)), dtype=np.int64)
    arr.setflags(write=False)
    return Subspace(
        n_sites=int(n_sites),
        configs=arr,
        index={int(c): k for k, c in enumerate(arr.tolist())},
    )


def _enumerate_independent_sets(n: int, lower_neighbors: list[int]) -> list[int]:
    """Backtracking enumeration; ``lower_neighbors[v]`` masks neighbours ``< v``."""
    out: list[int] = []
    # Stack of (next vertex to decide, configuration so far).
    stack: list[tuple[int, int]] = [(0, 0)]
    while stack:
        v, conf = stack.pop()
        if v == n:
            out.append(conf)
            continue
        stack.append((v + 1, conf))
        if not (conf & lower_neighbors[v]):
            stack.append((v + 1, conf | (1 << v)))
    return out


#: Most recently used bases, keyed by graph content.
SUBSPACE_CACHE_SIZE: int = 8
_SUBSPACE_CACHE: "OrderedDict[tuple, Subspace]" = OrderedDict()


def clear_subspace_cache() -> None:
    _SUBSPACE_CACHE.clear()


def build_subspace(graph: nx.Graph, *, max_sites: int = MAX_SUBSPACE_SITES) -> Subspace:
    """Enumerate every independent set of *graph*.

    Results are memoized on the graph's content ``(n, edges)`` in a small LRU
    cache, so repeated loss evaluations on the same geometry share one basis.

    Raises
    ------
    SubspaceOverflow
        If the vertex count exceeds *max_sites*.
    """
    n = check_vertex_labels(graph)
    if n > int(max_sites):
        raise SubspaceOverflow(
            f"graph has {n} vertices; full enumeration is limited to {int(max_sites)}"
        )
    edges = graph_edges(graph)
    key = (n, edges)
    cached = _SUBSPACE_CACHE.get(key)
    if cached is not None:
        _SUBSPACE_CACHE.move_to_end(key)
        return cached

    lower_neighbors = [0] * n
    for i, j in edges:
        lower_neighbors[j] |= 1 << i
    subspace = _from_configs(n, _enumerate_independent_sets(n, lower_neighbors))
    _SUBSPACE_CACHE[key] = subspace
    while len(_SUBSPACE_CACHE) > SUBSPACE_CACHE_SIZE:
        _SUBSPACE_CACHE.popitem(last=False)
    return subspace


def blockade_subspace(points: Sequence[Sequence[float]], radius: float, **kwargs) -> Subspace:
    """Subspace of the unit-disk graph of *points* at blockade *radius*."""
    return build_subspace(unit_disk_graph(points, radius), **kwargs)


def full_space(n_sites: int, *, max_sites: int = MAX_SUBSPACE_SITES) -> Subspace:
    """All ``2**n`` configurations, in the same ascending order."""
    n = int(n_sites)
    if n < 0:
        raise ValueError("n_sites must be non-negative")
    if n > int(max_sites):
        raise SubspaceOverflow(f"{n} sites exceed the enumeration limit {int(max_sites)}")
    return _from_configs(n, range(1 << n))
