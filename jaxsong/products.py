"""Products of coupling coefficients and rotation coefficients.

Every quadratic source term multiplies a coupling coefficient by rotated
first-order quantities of leg 1 and/or leg 2. The angular part of those
products depends on the triangle only through the rotation cache, so it is
computed once per triangle instead of once per (l, m) per timestep.

For a coupling kind X, a leg pair ab in {11, 12, 21, 22} and (l, m):

    direct_X_ab(l, m) = X(l, m, m) R_a(l, m) R_b(l, m)
    summed_X_ab(l, m) = sum_{m1 = m-1}^{m+1} X(l, m1, m) R_a(1, m - m1) R_b(l', m1)
    single_X_a(l, m)  = X(l, m, m) R_a(l, m)

where R is the rotation coefficient and l' = l - 1, l + 1 or l for the minus,
plus and zero kinds. summed_X_ab is the recoupling of the direction of k_a
(an l = 1 object) with a rotated multipole of leg b, e.g.

    c_minus_12(l, m) * I_2_tilde(l - 1)

is the angular part of k1 . grad acting on the leg-2 temperature.

The cache carries the generation of the rotation cache it was derived
from; the workspace refuses to serve it once the rotation cache moves on.

References:
    SONG source: include/perturbations2_macros.h (c_minus_12, d_zero_21, ...)
    SONG source: perturbations2.c (perturb2_geometrical_corner)
"""

from __future__ import annotations

from time import perf_counter

import jax
import jax.numpy as jnp
from loguru import logger

from jaxsong.coupling import COUPLING_KINDS, CouplingCoefficients
from jaxsong.errors import ConfigurationError
from jaxsong.indexing import lm_count
from jaxsong.rotation import LEGS, RotationCache

PAIRS = ("11", "12", "21", "22")

_KIND_INDEX = {kind: i for i, kind in enumerate(COUPLING_KINDS)}
_PAIR_INDEX = {pair: i for i, pair in enumerate(PAIRS)}


def _check_kind(kind: str) -> int:
    if kind not in _KIND_INDEX:
        raise KeyError(f"unknown coupling kind '{kind}', expected one of {COUPLING_KINDS}")
    return _KIND_INDEX[kind]


def _check_pair(pair: str) -> int:
    if pair not in _PAIR_INDEX:
        raise KeyError(f"unknown leg pair '{pair}', expected one of {PAIRS}")
    return _PAIR_INDEX[pair]


@jax.tree_util.register_pytree_node_class
class ProductCache:
    """Coupling x rotation products for every kind, leg pair and (l, m).

    Attributes:
        l_max: highest degree (that of the coupling store)
        generation: generation of the rotation cache the products come from
        direct: shape (kinds, pairs, Nlm)
        summed: shape (kinds, pairs, Nlm)
        single: shape (kinds, legs, Nlm)
    """

    def __init__(self, l_max, generation, direct, summed, single):
        self.l_max = l_max
        self.generation = generation
        self.direct = direct
        self.summed = summed
        self.single = single

    @classmethod
    def build(cls, coupling: CouplingCoefficients, rotation: RotationCache) -> ProductCache:
        """Derive all products from `rotation`; rebuild whenever it is rebuilt."""
        if rotation.l_max < coupling.l_max + 1:
            raise ConfigurationError(
                f"rotation cache l_max={rotation.l_max} too small for coupling "
                f"l_max={coupling.l_max} (needs l_max + 1)"
            )
        t0 = perf_counter()
        n = lm_count(coupling.l_max)
        rot = {leg: rotation.expanded(leg) for leg in LEGS}
        direction = {leg: rot[leg][coupling.direction_index] for leg in LEGS}

        direct, summed, single = [], [], []
        for kind in COUPLING_KINDS:
            table = jnp.asarray(coupling.tables[kind])
            diagonal = table[:, 1]
            target = coupling.rotation_index[kind]
            direct.append(jnp.stack([
                diagonal * rot[int(pair[0])][:n] * rot[int(pair[1])][:n] for pair in PAIRS
            ]))
            summed.append(jnp.stack([
                jnp.sum(table * direction[int(pair[0])] * rot[int(pair[1])][target], axis=1)
                for pair in PAIRS
            ]))
            single.append(jnp.stack([diagonal * rot[leg][:n] for leg in LEGS]))

        logger.debug(
            f"products: generation={rotation.generation} l_max={coupling.l_max} | "
            f"{(perf_counter() - t0) * 1e3:.2f} ms"
        )
        return cls(
            coupling.l_max,
            rotation.generation,
            jnp.stack(direct),
            jnp.stack(summed),
            jnp.stack(single),
        )

    def _row(self, l: int, m: int):
        if l < 0 or abs(m) > l or l > self.l_max:
            return None
        return l * l + l + m

    def direct_product(self, kind: str, pair: str, l: int, m: int):
        """X(l, m, m) R_a(l, m) R_b(l, m); 0 outside range."""
        k, p, row = _check_kind(kind), _check_pair(pair), self._row(l, m)
        return 0.0 if row is None else self.direct[k, p, row]

    def summed_product(self, kind: str, pair: str, l: int, m: int):
        """sum over m1 of X(l, m1, m) R_a(1, m - m1) R_b(l', m1); 0 outside range."""
        k, p, row = _check_kind(kind), _check_pair(pair), self._row(l, m)
        return 0.0 if row is None else self.summed[k, p, row]

    def single_product(self, kind: str, leg: int, l: int, m: int):
        """X(l, m, m) R_leg(l, m); 0 outside range."""
        k, row = _check_kind(kind), self._row(l, m)
        if leg not in LEGS:
            raise ValueError(f"leg must be 1 or 2, got {leg}")
        return 0.0 if row is None else self.single[k, leg - 1, row]

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.direct, self.summed, self.single), (self.l_max, self.generation)

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*aux_data, *children)
