"""Setup and per-triangle workspace of the second-order hierarchy.

HierarchySetup is built once per run and is read-only: parameters, state
layout and coupling coefficients. It can be shared by any number of
workers.

TriangleWorkspace is owned by one triangle evaluation (one worker). It holds
the rotation and product caches of the current triangle and exposes the
vocabulary in which the evolution equations are written:

    ws = TriangleWorkspace(setup)
    ws.geometrical_corner(Triangle(k1, k2, k3, i1, i2, i3))
    v = ws.view(y)
    ... v.I(l, m), ws.rotation(1, l, m), ws.coupling.c_minus(l, m1, m),
    ... ws.summed_product('c_minus', '12', l, m), ws.first_order('I', 2, l, m, fo2)

Rotation and products are always rebuilt together. Every rebuild bumps a
generation counter stamped on both caches; reading either before the first
rebuild, after `invalidate()`, or with mismatched generations raises
StaleCacheError.

References:
    SONG source: perturbations2.c (perturb2_workspace_init,
                 perturb2_geometrical_corner)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from jaxtyping import Array, Float
from loguru import logger

from jaxsong.coupling import CouplingCoefficients
from jaxsong.debug import DebugSelector
from jaxsong.errors import StaleCacheError
from jaxsong.first_order import FirstOrderMultipoles
from jaxsong.indexing import Species, StateLayout
from jaxsong.multipoles import MultipoleView
from jaxsong.params import HierarchyParams
from jaxsong.products import ProductCache
from jaxsong.quadratic import QuadraticSources
from jaxsong.rotation import RotationCache, Triangle


@dataclass(frozen=True, eq=False)
class HierarchySetup:
    """Run-wide, geometry-independent tables."""

    params: HierarchyParams
    layout: StateLayout
    coupling: CouplingCoefficients
    debug: DebugSelector

    @classmethod
    def build(cls, params: HierarchyParams) -> HierarchySetup:
        layout = StateLayout.build(params)
        coupling = CouplingCoefficients.build(params.l_max)
        logger.info(
            f"setup: l_max_g={params.l_max_g} l_max_pol_g={params.l_max_pol_g} "
            f"l_max_ur={params.l_max_ur} polarization={params.has_polarization} | "
            f"state size={layout.size}"
        )
        return cls(params, layout, coupling, DebugSelector(params.debug_indices))


class TriangleWorkspace:
    """Rotation and product caches for the triangle being evolved."""

    def __init__(self, setup: HierarchySetup):
        self.setup = setup
        self.triangle: Optional[Triangle] = None
        self._generation = 0
        self._rotation: Optional[RotationCache] = None
        self._products: Optional[ProductCache] = None

    @property
    def layout(self) -> StateLayout:
        return self.setup.layout

    @property
    def coupling(self) -> CouplingCoefficients:
        return self.setup.coupling

    @property
    def generation(self) -> int:
        return self._generation

    # --- Per-triangle rebuild ---

    def geometrical_corner(self, triangle: Triangle) -> None:
        """Rebuild the rotation cache and, from it, the product cache."""
        self._generation += 1
        self.triangle = triangle
        rotation = RotationCache.from_triangle(
            self.coupling.l_max + 1, triangle, generation=self._generation
        )
        self._install(rotation)

    def geometrical_corner_from_angles(self, theta_1, theta_2) -> None:
        """Same as geometrical_corner, with the legs given by signed polar angles."""
        self._generation += 1
        self.triangle = None
        rotation = RotationCache.build(
            self.coupling.l_max + 1, theta_1, theta_2, generation=self._generation
        )
        self._install(rotation)

    def _install(self, rotation: RotationCache) -> None:
        self._rotation = rotation
        self._products = ProductCache.build(self.coupling, rotation)

    def invalidate(self) -> None:
        """Drop both caches, e.g. when the outer loop moves to a new triangle."""
        self._generation += 1
        self.triangle = None
        self._rotation = None
        self._products = None

    def _current(self) -> tuple[RotationCache, ProductCache]:
        rotation, products = self._rotation, self._products
        if rotation is None or products is None:
            raise StaleCacheError(
                "rotation/product caches read before geometrical_corner() for the current triangle"
            )
        if not rotation.generation == products.generation == self._generation:
            raise StaleCacheError(
                f"cache generations differ: rotation={rotation.generation}, "
                f"products={products.generation}, workspace={self._generation}"
            )
        return rotation, products

    @property
    def rotation_cache(self) -> RotationCache:
        return self._current()[0]

    @property
    def product_cache(self) -> ProductCache:
        return self._current()[1]

    # --- Equation vocabulary ---

    def view(self, y: Float[Array, "D"]) -> MultipoleView:
        return MultipoleView(self.layout, y)

    def quadratic_sources(self) -> QuadraticSources:
        """Fresh, zeroed quadratic buffers for one evaluation."""
        return QuadraticSources.zeros(self.layout)

    def rotation(self, leg: int, l: int, m: int):
        return self.rotation_cache.rotation(leg, l, m)

    def direct_product(self, kind: str, pair: str, l: int, m: int):
        return self.product_cache.direct_product(kind, pair, l, m)

    def summed_product(self, kind: str, pair: str, l: int, m: int):
        return self.product_cache.summed_product(kind, pair, l, m)

    def single_product(self, kind: str, leg: int, l: int, m: int):
        return self.product_cache.single_product(kind, leg, l, m)

    def first_order(
        self, species: Species, leg: int, l: int, m: int, multipoles: FirstOrderMultipoles
    ):
        """Rotated first-order multipole R_leg(l, m) * Delta_l(k_leg)."""
        tilde = multipoles.tilde(species, l, self.setup.params.has_polarization)
        return self.rotation(leg, l, m) * tilde

    def debug(self, message: str, *args, **kwargs) -> bool:
        """Emit a diagnostic if the current triangle is the debug triangle."""
        if self.triangle is None:
            return False
        return self.setup.debug.emit(self.triangle.indices, message, *args, depth=2, **kwargs)
