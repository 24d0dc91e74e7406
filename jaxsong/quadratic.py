"""Quadratic sources of the second-order hierarchy.

Two buffers per (time, triangle) evaluation, both laid out like the state
vector:

    general     the full quadratic part of every equation. The second-order
                solver samples it at arbitrary tau, so it is tabulated on a
                tau grid and interpolated.
    collision   only the quadratic part of the collision term. Read by the
                line-of-sight integrand at the sampled times, never
                interpolated, because it needs the exact local scattering rate.

Reads follow the bounded-accessor contract (zero outside a hierarchy);
writes are unconditional. QuadraticSources is an immutable pytree: every
write returns a new instance.

Key functions:
    QuadraticSources.zeros(layout) -> QuadraticSources
    QuadraticSourceTable.tabulate(tau_grid, fn) -> QuadraticSourceTable

References:
    SONG source: include/perturbations2_macros.h (dI_qs2, dI_qc2, quad_coefficient)
    SONG source: perturbations2.c (perturb2_quadratic_sources,
                 perturb2_quadratic_sources_at_tau)
"""

from __future__ import annotations

from typing import Callable, Optional

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from jaxsong.constants import QUAD_COEFFICIENT
from jaxsong.indexing import Species, StateLayout
from jaxsong.interpolation import CubicSpline
from jaxsong.multipoles import add_multipole, read_multipole, set_multipole


@jax.tree_util.register_pytree_node_class
class QuadraticSources:
    """The general and collision-only quadratic source vectors.

    collision is None for sources interpolated in tau; reading or writing it
    then raises ValueError.
    """

    def __init__(
        self,
        layout: StateLayout,
        general: Float[Array, "D"],
        collision: Optional[Float[Array, "D"]],
    ):
        self.layout = layout
        self.general = general
        self.collision = collision

    @classmethod
    def zeros(cls, layout: StateLayout) -> QuadraticSources:
        return cls(layout, jnp.zeros(layout.size), jnp.zeros(layout.size))

    def _collision(self) -> Float[Array, "D"]:
        if self.collision is None:
            raise ValueError(
                "collision sources exist only at the sampled times; use "
                "QuadraticSourceTable.collision_at(index_tau)"
            )
        return self.collision

    # --- Reads (zero outside the hierarchy) ---

    def general_value(self, species: Species, l: int, m: int, n: Optional[int] = None):
        return read_multipole(self.layout, self.general, species, l, m, n)

    def collision_value(self, species: Species, l: int, m: int, n: Optional[int] = None):
        return read_multipole(self.layout, self._collision(), species, l, m, n)

    # --- Writes ---

    def set_general(self, species, l, m, value, n=None) -> QuadraticSources:
        general = set_multipole(self.general, self.layout, species, l, m, value, n)
        return QuadraticSources(self.layout, general, self.collision)

    def add_general(self, species, l, m, value, n=None) -> QuadraticSources:
        general = add_multipole(self.general, self.layout, species, l, m, value, n)
        return QuadraticSources(self.layout, general, self.collision)

    def set_collision(self, species, l, m, value, n=None) -> QuadraticSources:
        collision = set_multipole(self._collision(), self.layout, species, l, m, value, n)
        return QuadraticSources(self.layout, self.general, collision)

    def add_collision(self, species, l, m, value, n=None) -> QuadraticSources:
        collision = add_multipole(self._collision(), self.layout, species, l, m, value, n)
        return QuadraticSources(self.layout, self.general, collision)

    def add_quadratic(self, species, l, m, term, n=None, collision: bool = False) -> QuadraticSources:
        """Add QUAD_COEFFICIENT * term to the general buffer.

        `term` is a product of first-order quantities as written in the
        equations. Collision terms also belong to the general buffer, so with
        collision=True the term is added to both.
        """
        value = QUAD_COEFFICIENT * term
        out = self.add_general(species, l, m, value, n)
        if collision:
            out = out.add_collision(species, l, m, value, n)
        return out

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.general, self.collision), self.layout

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(aux_data, *children)


@jax.tree_util.register_pytree_node_class
class QuadraticSourceTable:
    """Quadratic sources sampled on a tau grid for one triangle.

    Attributes:
        layout: state layout of both buffers
        tau_grid: sample times, shape (Ntau,)
        general: shape (Ntau, D), interpolated by `general_at`
        collision: shape (Ntau, D), read by `collision_at` at grid indices only
        spline: cubic spline through `general` along tau
    """

    def __init__(self, layout, tau_grid, general, collision, spline=None):
        self.layout = layout
        self.tau_grid = jnp.asarray(tau_grid)
        self.general = jnp.asarray(general)
        self.collision = jnp.asarray(collision)
        self.spline = CubicSpline(self.tau_grid, self.general) if spline is None else spline

    @classmethod
    def tabulate(
        cls,
        layout: StateLayout,
        tau_grid: Float[Array, "Ntau"],
        fn: Callable[[Float[Array, ""]], QuadraticSources],
    ) -> QuadraticSourceTable:
        """Evaluate fn(tau) -> QuadraticSources on every point of tau_grid.

        fn is vmapped over tau, so it must only branch on static quantities
        (layout, l, m), which is what the bounded accessors do. The grid needs
        at least two times so that the general buffer can be interpolated.
        """
        tau_grid = jnp.asarray(tau_grid)
        if tau_grid.ndim != 1 or tau_grid.shape[0] < 2:
            raise ValueError(f"tau grid needs at least 2 times, got shape {tau_grid.shape}")
        sampled = jax.vmap(fn)(tau_grid)
        return cls(layout, tau_grid, sampled.general, sampled.collision)

    def general_at(self, tau) -> QuadraticSources:
        """Quadratic sources at arbitrary tau; only the general buffer exists.

        The result has no collision buffer: collision sources exist at the
        sampled times only, so reading one raises ValueError.
        """
        return QuadraticSources(self.layout, self.spline.evaluate(tau), None)

    def collision_at(self, index_tau: int) -> QuadraticSources:
        """Both buffers exactly as sampled at tau_grid[index_tau]."""
        return QuadraticSources(self.layout, self.general[index_tau], self.collision[index_tau])

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.tau_grid, self.general, self.collision, self.spline), self.layout

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.layout = aux_data
        obj.tau_grid, obj.general, obj.collision, obj.spline = children
        return obj
