"""Conservation laws (left nullspace) of the variable pools.

Given Sx (nX x nR), conservation laws are r such that r^T Sx = 0: the
combination r . m of pool sizes never changes, whatever the fluxes.

We provide:
- rational_nullspace_left(): rational basis via sympy
- primitive_integer_basis(): scale vectors to integer primitive form
- conservation_laws(): the same for a compiled Network

The steady-state root strategy uses these laws to pin conserved totals, which
otherwise make the Jacobian singular.

NOTE: Carbon shares such as 1/3 are stored as floats; they are turned back
into exact rationals with a bounded denominator before the nullspace is taken.
"""

from __future__ import annotations

from fractions import Fraction
from functools import reduce
from math import gcd
from typing import TYPE_CHECKING

import numpy as np
import sympy as sp
from numpy.typing import NDArray

from .utils import as_fraction

if TYPE_CHECKING:
    from .network import Network


def _lcm(a: int, b: int) -> int:
    return abs(a * b) // gcd(a, b) if a and b else abs(a or b)


def _lcm_list(xs: list[int]) -> int:
    return reduce(_lcm, xs, 1)


def _gcd_list(xs: list[int]) -> int:
    xs = [abs(x) for x in xs if x != 0]
    return reduce(gcd, xs, 0) if xs else 1


def _primitive_int(vec: NDArray[np.int64]) -> NDArray[np.int64]:
    g = _gcd_list(vec.tolist())
    v = vec // g
    # make first nonzero positive
    for x in v:
        if x != 0:
            if x < 0:
                v = -v
            break
    return v


def rational_nullspace_left(Sx: NDArray[np.float64], *, max_den: int = 1_000_000) -> list[list[Fraction]]:
    """Compute a rational basis for left nullspace of Sx.

    Returns a list of vectors r (as Fractions) such that r^T Sx = 0.
    """
    Sx = np.asarray(Sx, dtype=float)
    if Sx.size == 0:
        return [[Fraction(int(i == j)) for j in range(Sx.shape[0])] for i in range(Sx.shape[0])]

    entries = [[as_fraction(x, max_den) for x in row] for row in Sx]
    S = sp.Matrix([[sp.Rational(f.numerator, f.denominator) for f in row] for row in entries])
    # left nullspace of Sx: nullspace of Sx^T
    ns = (S.T).nullspace()
    out: list[list[Fraction]] = []
    for v in ns:
        out.append([Fraction(int(x.p), int(x.q)) for x in (sp.Rational(e) for e in v)])
    return out


def primitive_integer_basis(Sx: NDArray[np.float64], *, max_den: int = 1_000_000) -> list[NDArray[np.int64]]:
    """Return a primitive integer basis for conservation laws.

    For each rational nullspace vector:
    - scale by lcm of denominators
    - divide by gcd to get a primitive integer vector

    Returns:
      list of primitive integer vectors r (nX,)
    """
    basis_q = rational_nullspace_left(Sx, max_den=max_den)
    basis_i: list[NDArray[np.int64]] = []
    for v in basis_q:
        L = _lcm_list([f.denominator for f in v])
        ints = np.array([int(f * L) for f in v], dtype=np.int64)
        basis_i.append(_primitive_int(ints))
    return basis_i


def conservation_laws(network: "Network") -> list[NDArray[np.int64]]:
    """Conserved integer combinations of the network's variable pool sizes."""
    return primitive_integer_basis(network.stoichiometry().Sx)
