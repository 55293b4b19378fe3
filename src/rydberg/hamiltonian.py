"""Time-dependent Rydberg Hamiltonian over the full space or a blockade subspace.

Physics
-------
For atoms at positions r_i driven by a Rabi frequency Ω(t) and detuning Δ(t):

    H(t) = Σ_k Ω(t)/2 σ^x_k  −  Δ(t) Σ_k n_k  +  Σ_{i<j} C6 / |r_i − r_j|^6 n_i n_j

In the computational basis |c⟩ (bitmask c) this splits into

* a diagonal part  d_c(t) = −Δ(t)·popcount(c) + V_c,  where V_c sums the van
  der Waals energy over **every** pair of excited atoms (not just graph
  edges), so the long-range tail is kept in both representations;
* an off-diagonal part Ω(t)/2 · F, where F flips one atom at a time.

Representations
---------------
``"fullspace"``  rows/columns indexed by all 2^n bitmasks.
``"subspace"``   rows/columns indexed by a :class:`~src.rydberg.subspace.Subspace`;
                 flips that leave the subspace are dropped, which enforces the
                 blockade constraint exactly instead of penalising it.

F is assembled once per geometry as a real symmetric ``scipy.sparse.csr_matrix``
with at most ``dim × n`` non-zeros, so ``apply`` costs O(dim · n) and no dense
matrix is ever formed.  Hermiticity holds by construction: F is symmetric
(bit flips are involutions) and the diagonal is real.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

import networkx as nx
import numpy as np
from scipy.sparse import coo_matrix, csr_matrix, diags
from scipy.sparse.linalg import LinearOperator

from src.rydberg.config import C6_DEFAULT
from src.rydberg.errors import InvalidGraphSpec
from src.rydberg.geometry import check_vertex_labels, graph_positions, pairwise_distances
from src.rydberg.register import popcount_array
from src.rydberg.subspace import Subspace
from src.rydberg.waveforms import Waveform

Coefficient = Union[Waveform, Callable[[float], float], float]


def _coefficient_at(coeff: Coefficient, t: float) -> float:
    if callable(coeff):
        return float(coeff(float(t)))
    return float(coeff)


# ---------------------------------------------------------------------------
# Static pieces (built once per geometry / basis)
# ---------------------------------------------------------------------------

def interaction_matrix(positions: Sequence[Sequence[float]], c6: float = C6_DEFAULT) -> np.ndarray:
    """Pairwise couplings V_ij = C6 / r_ij^6 (zero diagonal)."""
    dist = pairwise_distances(positions)
    n = dist.shape[0]
    off = ~np.eye(n, dtype=bool)
    if np.any(dist[off] <= 0.0):
        raise InvalidGraphSpec("two atoms share the same position")
    vij = np.zeros((n, n), dtype=float)
    vij[off] = float(c6) / dist[off] ** 6
    return vij


def interaction_diagonal(configs: np.ndarray, vij: np.ndarray) -> np.ndarray:
    """V_c = Σ_{i<j} V_ij b_i(c) b_j(c) for each configuration."""
    c = np.asarray(configs, dtype=np.int64)
    n = vij.shape[0]
    bits = [((c >> k) & 1).astype(float) for k in range(n)]
    out = np.zeros(c.shape, dtype=float)
    for i in range(n):
        for j in range(i + 1, n):
            if vij[i, j] != 0.0:
                out += vij[i, j] * bits[i] * bits[j]
    return out


def flip_operator(configs: np.ndarray, n_sites: int, *, closed: bool) -> csr_matrix:
    """Single-atom flip operator F restricted to *configs*.

    ``closed=True`` means *configs* is the full space, so every flip lands on a
    valid index and no lookup is needed.
    """
    c = np.asarray(configs, dtype=np.int64)
    dim = int(c.size)
    positions = np.arange(dim, dtype=np.int64)
    rows: list[np.ndarray] = []
    cols: list[np.ndarray] = []
    for k in range(int(n_sites)):
        partner = c ^ np.int64(1 << k)
        if closed:
            rows.append(positions)
            cols.append(partner)
            continue
        pos = np.searchsorted(c, partner)
        pos_clipped = np.minimum(pos, dim - 1)
        valid = (pos < dim) & (c[pos_clipped] == partner)
        rows.append(positions[valid])
        cols.append(pos[valid])
    if rows:
        r = np.concatenate(rows)
        k_cols = np.concatenate(cols)
    else:
        r = np.zeros(0, dtype=np.int64)
        k_cols = np.zeros(0, dtype=np.int64)
    data = np.ones(r.size, dtype=float)
    return coo_matrix((data, (r, k_cols)), shape=(dim, dim)).tocsr()


# ---------------------------------------------------------------------------
# Hamiltonian
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class RydbergHamiltonian:
    """H(t) = Ω(t)/2 · F − Δ(t) · N + V over a fixed representation."""

    n_sites: int
    representation: str
    subspace: Optional[Subspace]
    configs: np.ndarray
    occupation: np.ndarray
    interaction: np.ndarray
    flip: csr_matrix
    rabi: Coefficient
    detuning: Coefficient
    c6: float

    @property
    def dim(self) -> int:
        return int(self.configs.size)

    @property
    def duration(self) -> Optional[float]:
        """Common waveform duration, or ``None`` if both drives are scalars."""
        durations = [w.duration for w in (self.rabi, self.detuning) if isinstance(w, Waveform)]
        return min(durations) if durations else None

    def rabi_at(self, t: float) -> float:
        return _coefficient_at(self.rabi, t)

    def detuning_at(self, t: float) -> float:
        return _coefficient_at(self.detuning, t)

    def diagonal(self, t: float) -> np.ndarray:
        return self.interaction - self.detuning_at(t) * self.occupation

    def apply(self, psi: np.ndarray, t: float) -> np.ndarray:
        """Return H(t)|psi⟩ without forming H(t)."""
        vec = np.asarray(psi)
        if vec.shape[0] != self.dim:
            raise ValueError(f"state has length {vec.shape[0]}, expected {self.dim}")
        half_rabi = 0.5 * self.rabi_at(t)
        out = self.diagonal(t)[:, None] * vec if vec.ndim == 2 else self.diagonal(t) * vec
        if half_rabi != 0.0:
            out = out + half_rabi * (self.flip @ vec)
        return out

    def frozen(self, t: float) -> Callable[[np.ndarray], np.ndarray]:
        """Matrix-vector product of H at the fixed time *t*."""
        diag = self.diagonal(t)
        half_rabi = 0.5 * self.rabi_at(t)
        flip = self.flip

        def _apply(vec: np.ndarray) -> np.ndarray:
            out = diag * vec
            if half_rabi != 0.0:
                out = out + half_rabi * (flip @ vec)
            return out

        return _apply

    def to_sparse(self, t: float) -> csr_matrix:
        """Explicit sparse matrix H(t) (mostly for tests and diagnostics)."""
        return (0.5 * self.rabi_at(t) * self.flip + diags(self.diagonal(t))).tocsr()

    def as_linear_operator(self, t: float) -> LinearOperator:
        matvec = self.frozen(t)
        return LinearOperator(
            shape=(self.dim, self.dim),
            matvec=lambda v: matvec(np.asarray(v, dtype=complex).reshape(-1)),
            rmatvec=lambda v: matvec(np.asarray(v, dtype=complex).reshape(-1)),
            dtype=complex,
        )

    def __repr__(self) -> str:
        return (
            f"RydbergHamiltonian(n_sites={self.n_sites}, representation={self.representation!r}, "
            f"dim={self.dim}, nnz_flip={self.flip.nnz})"
        )


def build_rydberg_hamiltonian(
    graph: nx.Graph,
    positions: Optional[Sequence[Sequence[float]]] = None,
    *,
    rabi: Coefficient = 0.0,
    detuning: Coefficient = 0.0,
    c6: float = C6_DEFAULT,
    subspace: Optional[Subspace] = None,
) -> RydbergHamiltonian:
    """Assemble the Rydberg Hamiltonian for *graph*.

    Parameters
    ----------
    graph : networkx.Graph
        Unit-disk graph; fixes the number of atoms.
    positions : sequence of (x, y), optional
        Atom coordinates.  Defaults to the graph's ``pos`` node attributes.
    rabi, detuning : Waveform, callable or float
        Control signals Ω(t) and Δ(t).
    c6 : float
        Interaction constant.
    subspace : Subspace, optional
        Reduced basis.  ``None`` selects the full 2^n space.
    """
    n = check_vertex_labels(graph)
    pos = graph_positions(graph) if positions is None else tuple(tuple(p) for p in positions)
    if len(pos) != n:
        raise InvalidGraphSpec(f"got {len(pos)} positions for a graph with {n} vertices")
    c6_f = float(c6)
    if not math.isfinite(c6_f):
        raise ValueError("c6 must be finite")

    if subspace is None:
        representation = "fullspace"
        configs = np.arange(1 << n, dtype=np.int64)
    else:
        if int(subspace.n_sites) != n:
            raise ValueError(f"subspace has {subspace.n_sites} sites, graph has {n}")
        representation = "subspace"
        configs = subspace.configs

    vij = interaction_matrix(pos, c6_f) if n > 1 else np.zeros((n, n), dtype=float)
    occupation = popcount_array(configs).astype(float)
    interaction = interaction_diagonal(configs, vij)
    flip = flip_operator(configs, n, closed=(subspace is None))
    for arr in (occupation, interaction):
        arr.setflags(write=False)

    return RydbergHamiltonian(
        n_sites=n,
        representation=representation,
        subspace=subspace,
        configs=configs,
        occupation=occupation,
        interaction=interaction,
        flip=flip,
        rabi=rabi,
        detuning=detuning,
        c6=c6_f,
    )


def apply(hamiltonian: RydbergHamiltonian, psi: np.ndarray, t: float) -> np.ndarray:
    return hamiltonian.apply(psi, t)
