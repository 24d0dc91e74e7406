"""First-order multipoles entering the quadratic sources.

The first-order system is solved with each wavevector along the zenith, so
one leg provides a single multipole per degree, Delta_l ("tilde" values).
Rotated into the triangle frame they become

    Delta_lm(k_leg) = R_leg(l, m) * Delta_l(k_leg)

with R the rotation coefficient. B-modes vanish at first order.

References:
    SONG source: include/perturbations2_macros.h (I_1_tilde, I_1, E_2, ...)
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from jaxsong.indexing import Species


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class FirstOrderMultipoles:
    """First-order multipoles of one leg at one time, zenith-aligned.

    Arrays are indexed by l; a missing hierarchy can be an empty array.
    """
    I: Float[Array, "Lg"]
    E: Float[Array, "Lpol"]
    N: Float[Array, "Lur"]

    def tree_flatten(self):
        return [self.I, self.E, self.N], None

    @classmethod
    def tree_unflatten(cls, aux, fields):
        return cls(*fields)

    @classmethod
    def from_arrays(cls, I, E=(), N=()) -> FirstOrderMultipoles:
        return cls(
            jnp.asarray(I, dtype=float),
            jnp.asarray(E, dtype=float),
            jnp.asarray(N, dtype=float),
        )

    def tilde(self, species: Species, l: int, has_polarization: bool = True):
        """Delta_l of `species`; 0 for l < 0, l beyond the array, B, or E without polarization."""
        species = Species(species)
        if species is Species.PHOTON_TEMPERATURE:
            values = self.I
        elif species is Species.PHOTON_E:
            if not has_polarization:
                return 0.0
            values = self.E
        elif species is Species.NEUTRINO:
            values = self.N
        elif species is Species.PHOTON_B:
            return 0.0
        else:
            raise ValueError(f"no first-order multipoles for {species.value}")
        if l < 0 or l >= values.shape[0]:
            return 0.0
        return values[l]
