"""Quantum register: a state vector plus the basis it is expressed in.

Bit-ordering conventions
------------------------
- A configuration is an ``int`` bitmask; atom ``k`` is bit ``k`` (atom 0 is the
  least significant bit).
- Full-space amplitude index == configuration bitmask (little endian).
- Subspace amplitude index == position in ``Subspace.configs``.
- Bitstrings are printed in ``q_(n-1)...q_0`` order, i.e. atom 0 is the
  rightmost character, matching the Qiskit label convention.

Registers are immutable: the amplitude array is read-only and propagators
always return a new register.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from src.rydberg.subspace import Subspace


def bitstring_qn1_to_q0(n_sites: int, config: int) -> str:
    """Label of *config* in ``q_(n-1)...q_0`` order.

    Example (n_sites=4, config=0b0101) -> ``"0101"`` i.e. atoms 0 and 2 excited.
    """
    n = int(n_sites)
    if n <= 0:
        raise ValueError("n_sites must be positive")
    c = int(config)
    if c < 0 or c >= (1 << n):
        raise ValueError(f"configuration {c} does not fit in {n} sites")
    return format(c, f"0{n}b")


def config_to_bits(n_sites: int, config: int) -> tuple[int, ...]:
    """Per-atom occupations ``(b_0, ..., b_{n-1})``."""
    c = int(config)
    return tuple((c >> k) & 1 for k in range(int(n_sites)))


def bits_to_config(bits: Sequence[int]) -> int:
    """Inverse of :func:`config_to_bits`."""
    out = 0
    for k, b in enumerate(bits):
        if int(b) not in (0, 1):
            raise ValueError(f"bit {k} must be 0 or 1, got {b!r}")
        if int(b):
            out |= 1 << k
    return out


def occupied_sites(config: int) -> list[int]:
    c = int(config)
    out: list[int] = []
    k = 0
    while c:
        if c & 1:
            out.append(k)
        c >>= 1
        k += 1
    return out


def popcount_array(configs: np.ndarray) -> np.ndarray:
    """Vectorised popcount of a non-negative integer array."""
    c = np.asarray(configs, dtype=np.int64).copy()
    out = np.zeros(c.shape, dtype=np.int64)
    while np.any(c):
        out += c & 1
        c >>= 1
    return out


@dataclass(frozen=True, eq=False)
class RydbergRegister:
    """Normalized state vector over the full space or a blockade subspace."""

    amplitudes: np.ndarray
    n_sites: int
    subspace: Optional[Subspace] = None

    def __post_init__(self) -> None:
        amp = np.array(self.amplitudes, dtype=complex, copy=True).reshape(-1)
        expected = self.dim_for(int(self.n_sites), self.subspace)
        if amp.size != expected:
            raise ValueError(f"amplitude vector has length {amp.size}, expected {expected}")
        amp.setflags(write=False)
        object.__setattr__(self, "amplitudes", amp)
        object.__setattr__(self, "n_sites", int(self.n_sites))

    @staticmethod
    def dim_for(n_sites: int, subspace: Optional[Subspace]) -> int:
        if subspace is None:
            return 1 << int(n_sites)
        if int(subspace.n_sites) != int(n_sites):
            raise ValueError(
                f"subspace is defined on {subspace.n_sites} sites, register on {n_sites}"
            )
        return subspace.dim

    @property
    def dim(self) -> int:
        return int(self.amplitudes.size)

    @property
    def is_subspace(self) -> bool:
        return self.subspace is not None

    def configurations(self) -> np.ndarray:
        """Configuration bitmask for every amplitude position."""
        if self.subspace is None:
            return np.arange(self.dim, dtype=np.int64)
        return self.subspace.configs

    def norm_squared(self) -> float:
        return float(np.real(np.vdot(self.amplitudes, self.amplitudes)))

    def with_amplitudes(self, amplitudes: np.ndarray) -> "RydbergRegister":
        return RydbergRegister(amplitudes=amplitudes, n_sites=self.n_sites, subspace=self.subspace)

    def amplitude_of(self, config: int) -> complex:
        c = int(config)
        if self.subspace is None:
            if c < 0 or c >= self.dim:
                raise ValueError(f"configuration {c} does not fit in {self.n_sites} sites")
            return complex(self.amplitudes[c])
        if c not in self.subspace:
            return 0j
        return complex(self.amplitudes[self.subspace.index_of(c)])

    def to_fullspace(self) -> "RydbergRegister":
        """Embed a subspace register into the full ``2**n`` space."""
        if self.subspace is None:
            return self
        full = np.zeros(1 << self.n_sites, dtype=complex)
        full[self.subspace.configs] = self.amplitudes
        return RydbergRegister(amplitudes=full, n_sites=self.n_sites)

    def __repr__(self) -> str:
        space = "fullspace" if self.subspace is None else f"subspace(dim={self.dim})"
        return f"RydbergRegister(n_sites={self.n_sites}, {space})"


def zero_state(n_sites: int, subspace: Optional[Subspace] = None) -> RydbergRegister:
    """All atoms in the ground state; index 0 in both representations."""
    dim = RydbergRegister.dim_for(int(n_sites), subspace)
    psi = np.zeros(dim, dtype=complex)
    psi[0] = 1.0 + 0.0j
    return RydbergRegister(amplitudes=psi, n_sites=int(n_sites), subspace=subspace)


def product_state(n_sites: int, config: int, subspace: Optional[Subspace] = None) -> RydbergRegister:
    """Computational basis state |config⟩."""
    dim = RydbergRegister.dim_for(int(n_sites), subspace)
    psi = np.zeros(dim, dtype=complex)
    if subspace is None:
        if int(config) < 0 or int(config) >= dim:
            raise ValueError(f"configuration {config} does not fit in {n_sites} sites")
        psi[int(config)] = 1.0
    else:
        psi[subspace.index_of(int(config))] = 1.0
    return RydbergRegister(amplitudes=psi, n_sites=int(n_sites), subspace=subspace)
