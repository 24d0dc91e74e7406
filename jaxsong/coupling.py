"""Angular coupling coefficients of the second-order Boltzmann hierarchy.

Free streaming couples the (l, m) multipole to degree l-1 and l+1. In the
quadratic terms the direction of a leg wavevector is not along the zenith,
so the coupling also shifts the azimuthal index by one unit: m1 -> m with
m - m1 in {-1, 0, 1}. The five coefficient kinds are

    c_minus(l, m1, m), c_plus(l, m1, m)      spin 0 (temperature, neutrinos)
    d_minus(l, m1, m), d_plus(l, m1, m)      spin 2 (E and B)
    d_zero(l, m1, m)                         E <-> B mixing at fixed l

For m1 = m they reduce to the familiar single-mode factors, e.g.
c_minus(l, m, m) = sqrt(l^2 - m^2)/(2l+1) and d_zero(l, m, m) = 2m/(l(l+1)).
They depend only on (l, m1, m), never on the triangle, so they are built
once per run and shared between workers.

The shifted coefficients are Clebsch-Gordan couplings of the leg direction
R(1, m - m1) with the (l', m1) multipole. For a leg along a single direction
the recoupled sum collapses back onto R(l, m):

    sum_m1 c_minus(l, m1, m) R(1, m - m1) R(l - 1, m1) = l/(2l+1) R(l, m)
    sum_m1 c_plus(l, m1, m)  R(1, m - m1) R(l + 1, m1) = (l+1)/(2l+1) R(l, m)
    sum_m1 d_zero(l, m1, m)  R(1, m - m1) R(l, m1)     = 0

Storage follows SONG: one row per (l, m) in the massless layout and one
column per shift, addressed as [offset(l, m), m - m1 + 1].

References:
    SONG source: include/perturbations2_macros.h (c_minus, d_zero, ... macros)
    SONG source: tools/coupling_general.c
    Beneke & Fidler (2010), arXiv:1003.1834, eqs. 2.27-2.30
    Hu & White (1997) PRD 56, 596 (spin-2 free-streaming factors)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from time import perf_counter

import numpy as np
from loguru import logger

from jaxsong.indexing import lm_count

COUPLING_KINDS = ("c_minus", "c_plus", "d_minus", "d_plus", "d_zero")

# Degree of the multipole each kind couples to, relative to l
DEGREE_SHIFT = {
    "c_minus": -1,
    "c_plus": +1,
    "d_minus": -1,
    "d_plus": +1,
    "d_zero": 0,
}


def _lm(l: int, m: int) -> int:
    return l * l + l + m


def _sqrt(x: float) -> float:
    return math.sqrt(max(x, 0.0))


def _c_minus(l: int, m1: int, m: int) -> float:
    if m1 == m:
        result = _sqrt(l * l - m * m)
    elif m1 == m - 1:
        result = _sqrt((l + m) * (l + m - 1) / 2.0)
    else:
        result = _sqrt((l - m) * (l - m - 1) / 2.0)
    return result / (2 * l + 1)


def _c_plus(l: int, m1: int, m: int) -> float:
    if m1 == m:
        result = _sqrt((l + 1) * (l + 1) - m * m)
    elif m1 == m - 1:
        result = -_sqrt((l - m + 1) * (l - m + 2) / 2.0)
    else:
        result = -_sqrt((l + m + 1) * (l + m + 2) / 2.0)
    return result / (2 * l + 1)


def _d_minus(l: int, m1: int, m: int) -> float:
    if l < 2:
        return 0.0
    return _c_minus(l, m1, m) * _sqrt(l * l - 4) / l


def _d_plus(l: int, m1: int, m: int) -> float:
    if l < 1:
        return 0.0
    return _c_plus(l, m1, m) * _sqrt((l + 1) * (l + 1) - 4) / (l + 1)


def _d_zero(l: int, m1: int, m: int) -> float:
    if l < 2:
        return 0.0
    if m1 == m:
        result = 2.0 * m
    elif m1 == m - 1:
        result = -_sqrt(2.0 * (l - m + 1) * (l + m))
    else:
        result = _sqrt(2.0 * (l + m + 1) * (l - m))
    return result / (l * (l + 1))


_FORMULAS = {
    "c_minus": _c_minus,
    "c_plus": _c_plus,
    "d_minus": _d_minus,
    "d_plus": _d_plus,
    "d_zero": _d_zero,
}


@dataclass(frozen=True, eq=False)
class CouplingCoefficients:
    """Coupling coefficients for every (l, m) with l <= l_max.

    Attributes:
        l_max: highest degree with tabulated coefficients
        tables: kind -> array (count, 3), column m - m1 + 1
        rotation_index: kind -> int array (count, 3) pointing into a rotation
            table unfolded onto l <= l_max + 1 (see RotationCache.expanded),
            at the multipole (l + shift, m1) the coefficient multiplies;
            invalid targets point at a trailing zero slot
        direction_index: int array (count, 3) pointing at the (1, m - m1)
            component of the leg direction in the same unfolded table
    """

    l_max: int
    tables: dict
    rotation_index: dict
    direction_index: np.ndarray

    @classmethod
    def build(cls, l_max: int) -> CouplingCoefficients:
        t0 = perf_counter()
        n = lm_count(l_max)
        l_rot = l_max + 1
        zero_slot = lm_count(l_rot)

        tables = {kind: np.zeros((n, 3)) for kind in COUPLING_KINDS}
        rotation_index = {kind: np.full((n, 3), zero_slot, dtype=np.int64) for kind in COUPLING_KINDS}
        direction_index = np.zeros((n, 3), dtype=np.int64)

        for l in range(l_max + 1):
            for m in range(-l, l + 1):
                row = _lm(l, m)
                for col in range(3):
                    m1 = m - col + 1
                    direction_index[row, col] = _lm(1, m - m1)
                    for kind in COUPLING_KINDS:
                        tables[kind][row, col] = _FORMULAS[kind](l, m1, m)
                        l_target = l + DEGREE_SHIFT[kind]
                        if 0 <= l_target <= l_rot and abs(m1) <= l_target:
                            rotation_index[kind][row, col] = _lm(l_target, m1)

        logger.debug(
            f"coupling: built {len(COUPLING_KINDS)} kinds | l_max={l_max} rows={n} | "
            f"{(perf_counter() - t0) * 1e3:.2f} ms"
        )
        return cls(l_max, tables, rotation_index, direction_index)

    def coefficient(self, kind: str, l: int, m1: int, m: int) -> float:
        """Coupling of the (l + shift, m1) multipole into (l, m); 0 outside range."""
        if kind not in self.tables:
            raise KeyError(f"unknown coupling kind '{kind}', expected one of {COUPLING_KINDS}")
        if l < 0 or l > self.l_max or abs(m) > l or abs(m - m1) > 1:
            return 0.0
        return float(self.tables[kind][_lm(l, m), m - m1 + 1])

    def diagonal(self, kind: str) -> np.ndarray:
        """The m1 = m column of `kind`, one value per (l, m)."""
        return self.tables[kind][:, 1]

    def c_minus(self, l: int, m1: int, m: int) -> float:
        return self.coefficient("c_minus", l, m1, m)

    def c_plus(self, l: int, m1: int, m: int) -> float:
        return self.coefficient("c_plus", l, m1, m)

    def d_minus(self, l: int, m1: int, m: int) -> float:
        return self.coefficient("d_minus", l, m1, m)

    def d_plus(self, l: int, m1: int, m: int) -> float:
        return self.coefficient("d_plus", l, m1, m)

    def d_zero(self, l: int, m1: int, m: int) -> float:
        return self.coefficient("d_zero", l, m1, m)

    # Spin-agnostic names: spin 0 uses the c family, spin 2 the d family
    def minus(self, l: int, m1: int, m: int, spin: int = 0) -> float:
        return self.coefficient("c_minus" if spin == 0 else "d_minus", l, m1, m)

    def plus(self, l: int, m1: int, m: int, spin: int = 0) -> float:
        return self.coefficient("c_plus" if spin == 0 else "d_plus", l, m1, m)

    def zero(self, l: int, m1: int, m: int) -> float:
        """E <-> B mixing; there is no spin-0 counterpart."""
        return self.d_zero(l, m1, m)
