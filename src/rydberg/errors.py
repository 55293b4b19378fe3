"""Exception hierarchy for the Rydberg MIS simulator.

Every error the core raises on purpose derives from ``RydbergError`` so the
variational loop can tell a bad trial apart from a programming error.  Each
class also inherits the builtin it refines (``ValueError`` for malformed
input, ``RuntimeError`` for failures discovered while computing), so callers
written against the builtins keep working.
"""

from __future__ import annotations


class RydbergError(Exception):
    """Base class for all simulator errors."""


class InvalidWaveformSpec(RydbergError, ValueError):
    """Non-increasing clocks, length mismatch or evaluation outside the domain."""


class InvalidGraphSpec(RydbergError, ValueError):
    """Non-positive distance threshold or malformed point list."""


class SubspaceOverflow(RydbergError, RuntimeError):
    """Vertex count exceeds the safety bound for full enumeration."""


class NumericalInstability(RydbergError, RuntimeError):
    """Norm drift beyond tolerance, solver failure or Krylov error estimate exceeded."""


class InvalidParameterVector(RydbergError, ValueError):
    """Wrong arity, non-finite entries or a non-positive duration."""
