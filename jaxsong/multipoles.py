"""Bounded access to the multipoles of a second-order state vector.

Evolution equations are written as if every (l, m) existed: reading a
multipole outside its hierarchy (l < 0, |m| > l, l > l_max, a switched-off
polarization hierarchy) returns zero. This lets a single loop over (l, m)
implement the whole hierarchy, including the truncation edges, e.g.

    dy = set_multipole(
        dy, layout, 'E', l, m,
        -k * (-d_plus(l, m, m) * v.E(l + 1, m) - d_zero(l, m, m) * v.B(l, m))
        - kappa_dot * v.E(l, m),
    )

Reads are safe by default; writes go through the unchecked index table,
because equations only ever write physically valid slots.

References:
    SONG source: include/perturbations2_macros.h (I, E, B, N, b, cdm macros)
"""

from __future__ import annotations

from typing import Optional

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from jaxsong.errors import ConfigurationError
from jaxsong.indexing import Species, StateLayout, Truncation


def multipole_in_range(
    truncation: Truncation, l: int, m: int, n: Optional[int] = None
) -> bool:
    """Whether the (n, l, m) multipole exists in the hierarchy `truncation`.

    The single range rule shared by every species and by both quadratic
    buffers.
    """
    if not truncation.enabled:
        return False
    if l < 0 or l > truncation.l_max or abs(m) > l:
        return False
    if truncation.n_max is None:
        return n is None
    return n is not None and 0 <= n <= truncation.n_max


def read_multipole(
    layout: StateLayout,
    y: Float[Array, "D"],
    species: Species,
    l: int,
    m: int,
    n: Optional[int] = None,
):
    """Return y at the (n, l, m) slot of `species`, or 0 if it does not exist."""
    if not multipole_in_range(layout.truncation(species), l, m, n):
        return 0.0
    return y[layout.index(species, l, m, n)]


def _write_index(layout: StateLayout, species: Species, l: int, m: int, n: Optional[int]) -> int:
    species = Species(species)
    if not layout.has(species):
        raise ConfigurationError(
            f"cannot write {species.value}({l},{m}): polarization is switched off"
        )
    return layout.index(species, l, m, n)


def set_multipole(
    dy: Float[Array, "D"],
    layout: StateLayout,
    species: Species,
    l: int,
    m: int,
    value,
    n: Optional[int] = None,
) -> Float[Array, "D"]:
    """Return a copy of dy with the (n, l, m) slot of `species` set to value."""
    return dy.at[_write_index(layout, species, l, m, n)].set(value)


def add_multipole(
    dy: Float[Array, "D"],
    layout: StateLayout,
    species: Species,
    l: int,
    m: int,
    value,
    n: Optional[int] = None,
) -> Float[Array, "D"]:
    """Return a copy of dy with value added to the (n, l, m) slot of `species`."""
    return dy.at[_write_index(layout, species, l, m, n)].add(value)


@jax.tree_util.register_pytree_node_class
class MultipoleView:
    """Read-only view of a flat vector through a StateLayout.

    A JAX pytree: the vector is the only child, the layout is static.
    """

    def __init__(self, layout: StateLayout, y: Float[Array, "D"]):
        self.layout = layout
        self.y = jnp.asarray(y)

    def get(self, species: Species, l: int, m: int, n: Optional[int] = None):
        return read_multipole(self.layout, self.y, species, l, m, n)

    # Photon temperature, polarization and neutrino multipoles
    def I(self, l: int, m: int):
        return self.get(Species.PHOTON_TEMPERATURE, l, m)

    def E(self, l: int, m: int):
        return self.get(Species.PHOTON_E, l, m)

    def B(self, l: int, m: int):
        return self.get(Species.PHOTON_B, l, m)

    def N(self, l: int, m: int):
        return self.get(Species.NEUTRINO, l, m)

    # Beta-moments
    def b(self, n: int, l: int, m: int):
        return self.get(Species.BARYON, l, m, n)

    def cdm(self, n: int, l: int, m: int):
        return self.get(Species.CDM, l, m, n)

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.y,), self.layout

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.layout = aux_data
        (obj.y,) = children
        return obj
