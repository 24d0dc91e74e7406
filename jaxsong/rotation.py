"""Rotation of first-order multipoles into the triangle frame.

First-order multipoles Delta_l(k) are computed with their own wavevector along
the zenith. In a quadratic term they enter with k1 or k2 tilted with respect
to the total wavevector k3 = k1 + k2, which defines the zenith at second order.
For a wavevector at polar angle theta (azimuth 0) the rotated multipole is

    Delta_lm(k) = sqrt(4pi/(2l+1)) Y_lm(theta, 0) Delta_l(k)
                = sqrt((l-m)!/(l+m)!) P_l^m(cos theta) Delta_l(k)

The triangle lies in the x-z plane. k1 has sin(theta_1) >= 0 and k2 sits on
the other side of the zenith, sin(theta_2) = -k1 sin(theta_1)/k2 <= 0; using
the signed sine in P_l^m puts the (-1)^m of the azimuth phi = pi straight
into the leg-2 table.

Only m >= 0 is stored. Negative m follows from Y_l,-m = (-1)^m Y_lm^*, which
for real coefficients is the mirror rule

    rotation(l, -m) = (-1)^m rotation(l, m)

Key functions:
    RotationCache.from_triangle(l_max, triangle) -> RotationCache
    RotationCache.build(l_max, theta_1, theta_2) -> RotationCache

References:
    SONG source: perturbations2.c (perturb2_geometrical_corner)
    SONG source: include/perturbations2_macros.h (rot_1, rot_2 macros)
    Pettinari (2013) PhD thesis, arXiv:1405.2280, sec. 3.6
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from time import perf_counter

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float
from loguru import logger

from jaxsong.indexing import lm_count

LEGS = (1, 2)


@dataclass(frozen=True)
class Triangle:
    """A closed triangle of wavenumbers, k3 = |k1 + k2|, with its grid indices.

    Units follow CLASS: k in Mpc^-1.
    """

    k1: float
    k2: float
    k3: float
    index_k1: int = 0
    index_k2: int = 0
    index_k3: int = 0

    def __post_init__(self):
        if min(self.k1, self.k2, self.k3) <= 0:
            raise ValueError(
                f"triangle sides must be positive, got k1={self.k1}, k2={self.k2}, k3={self.k3}"
            )
        # Relative tolerance for squeezed configurations built from a k-grid
        tol = 1e-10 * (self.k1 + self.k2)
        if not abs(self.k1 - self.k2) - tol <= self.k3 <= self.k1 + self.k2 + tol:
            raise ValueError(
                f"k3={self.k3} violates the triangle condition for k1={self.k1}, k2={self.k2}"
            )

    @property
    def indices(self) -> tuple[int, int, int]:
        return (self.index_k1, self.index_k2, self.index_k3)

    def cos_sin(self) -> tuple[float, float, float, float]:
        """Signed (cos theta_1, sin theta_1, cos theta_2, sin theta_2) of the legs.

        cos theta_1 = k1.k3 / (k1 k3) = (k3^2 + k1^2 - k2^2) / (2 k1 k3)
        """
        k1, k2, k3 = self.k1, self.k2, self.k3
        cos_1 = min(max((k3 * k3 + k1 * k1 - k2 * k2) / (2.0 * k1 * k3), -1.0), 1.0)
        cos_2 = min(max((k3 * k3 + k2 * k2 - k1 * k1) / (2.0 * k2 * k3), -1.0), 1.0)
        sin_1 = math.sqrt(1.0 - cos_1 * cos_1)
        sin_2 = -k1 / k2 * sin_1
        return cos_1, sin_1, cos_2, sin_2


def _quad_index(l: int, m: int) -> int:
    """Position of (l, m >= 0) in a rotation table."""
    return l * (l + 1) // 2 + m


def rotation_table(l_max: int, cos_theta, sin_theta) -> Float[Array, "Nq"]:
    """sqrt((l-m)!/(l+m)!) P_l^m(cos theta) for 0 <= m <= l <= l_max.

    Associated Legendre functions by upward recursion in l at fixed m,
    Condon-Shortley phase, with the signed sin(theta) in P_m^m. Entries are
    ordered by _quad_index.
    """
    x = jnp.asarray(cos_theta)
    s = jnp.asarray(sin_theta)
    values = {}
    p_mm = jnp.ones_like(x)
    for m in range(l_max + 1):
        if m > 0:
            p_mm = -(2 * m - 1) * s * p_mm
        values[(m, m)] = p_mm
        if m + 1 <= l_max:
            values[(m + 1, m)] = (2 * m + 1) * x * p_mm
        for l in range(m + 2, l_max + 1):
            values[(l, m)] = (
                (2 * l - 1) * x * values[(l - 1, m)] - (l + m - 1) * values[(l - 2, m)]
            ) / (l - m)

    out = []
    for l in range(l_max + 1):
        for m in range(l + 1):
            norm = math.exp(0.5 * (math.lgamma(l - m + 1) - math.lgamma(l + m + 1)))
            out.append(norm * values[(l, m)])
    return jnp.stack(out)


def _unfold_indices(l_max: int) -> tuple[np.ndarray, np.ndarray]:
    """Gather index and mirror sign taking an (l, |m|) table to the (l, m) layout."""
    n = lm_count(l_max)
    index = np.zeros(n, dtype=np.int64)
    sign = np.ones(n)
    for l in range(l_max + 1):
        for m in range(-l, l + 1):
            row = l * l + l + m
            index[row] = _quad_index(l, abs(m))
            if m < 0 and abs(m) % 2 == 1:
                sign[row] = -1.0
    return index, sign


@jax.tree_util.register_pytree_node_class
class RotationCache:
    """Rotation coefficients of both legs for one triangle geometry.

    Attributes:
        l_max: highest tabulated degree
        tables: shape (2, Nq), row leg-1, entries ordered by (l, m >= 0)
        generation: rebuild counter of the owning workspace, used to detect a
            product cache derived from another geometry
    """

    def __init__(self, l_max: int, tables: Float[Array, "2 Nq"], generation: int = 0):
        self.l_max = l_max
        self.tables = tables
        self.generation = generation

    @classmethod
    def build(cls, l_max: int, theta_1, theta_2, generation: int = 0) -> RotationCache:
        """Rotation cache for legs at signed polar angles theta_1, theta_2 (radians)."""
        return cls.from_cos_sin(
            l_max,
            jnp.cos(theta_1), jnp.sin(theta_1),
            jnp.cos(theta_2), jnp.sin(theta_2),
            generation=generation,
        )

    @classmethod
    def from_cos_sin(cls, l_max: int, cos_1, sin_1, cos_2, sin_2, generation: int = 0) -> RotationCache:
        t0 = perf_counter()
        tables = jnp.stack([
            rotation_table(l_max, cos_1, sin_1),
            rotation_table(l_max, cos_2, sin_2),
        ])
        logger.debug(
            f"rotation: generation={generation} l_max={l_max} | {(perf_counter() - t0) * 1e3:.2f} ms"
        )
        return cls(l_max, tables, generation)

    @classmethod
    def from_triangle(cls, l_max: int, triangle: Triangle, generation: int = 0) -> RotationCache:
        return cls.from_cos_sin(l_max, *triangle.cos_sin(), generation=generation)

    def rotation(self, leg: int, l: int, m: int):
        """sqrt(4pi/(2l+1)) Y_lm of `leg`; 0 for l < 0, |m| > l or l > l_max."""
        if leg not in LEGS:
            raise ValueError(f"leg must be 1 or 2, got {leg}")
        if l < 0 or abs(m) > l or l > self.l_max:
            return 0.0
        value = self.tables[leg - 1, _quad_index(l, abs(m))]
        if m < 0 and abs(m) % 2 == 1:
            return -value
        return value

    def expanded(self, leg: int) -> Float[Array, "Nlm_plus_1"]:
        """The `leg` table unfolded onto the (l, m) layout, plus a trailing zero.

        The extra slot is the gather target of out-of-range couplings.
        """
        if leg not in LEGS:
            raise ValueError(f"leg must be 1 or 2, got {leg}")
        index, sign = _unfold_indices(self.l_max)
        unfolded = jnp.asarray(sign) * self.tables[leg - 1][index]
        return jnp.concatenate([unfolded, jnp.zeros(1)])

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.tables,), (self.l_max, self.generation)

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.l_max, obj.generation = aux_data
        (obj.tables,) = children
        return obj
