"""Parameter container for the second-order hierarchy.

HierarchyParams: truncation orders and feature flags, static (not traced).
They fix the shapes of every table and buffer, so they are frozen at setup
and must be compile-time constants for JIT.

References:
    SONG source: include/perturbations2.h, source/input2.c
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from jaxsong.constants import L_MIN_POLARIZATION
from jaxsong.errors import ConfigurationError
from jaxsong.parser import FileContent


@dataclass(frozen=True)
class HierarchyParams:
    """Truncation orders and switches of the second-order Boltzmann hierarchy.

    Validated on construction; a bad combination raises ConfigurationError.
    """

    l_max_g: int = 4                # photon temperature hierarchy
    l_max_pol_g: int = 4            # photon E and B hierarchies
    l_max_ur: int = 4               # massless neutrino hierarchy
    has_polarization: bool = True

    # (index_k1, index_k2, index_k3) of the triangle whose diagnostics are
    # printed; None disables the debug output
    debug_indices: Optional[tuple[int, int, int]] = None

    def __post_init__(self):
        for name in ("l_max_g", "l_max_pol_g", "l_max_ur"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        if self.has_polarization:
            if self.l_max_pol_g < L_MIN_POLARIZATION:
                raise ConfigurationError(
                    f"l_max_pol_g={self.l_max_pol_g} but polarization needs at least "
                    f"l={L_MIN_POLARIZATION}"
                )
            if self.l_max_pol_g > self.l_max_g:
                raise ConfigurationError(
                    f"l_max_pol_g={self.l_max_pol_g} exceeds l_max_g={self.l_max_g}"
                )
        if self.debug_indices is not None and len(self.debug_indices) != 3:
            raise ConfigurationError(
                f"debug_indices must be a (k1, k2, k3) index triple, got {self.debug_indices!r}"
            )

    @property
    def l_max(self) -> int:
        """Largest degree over all massless hierarchies."""
        l_max = max(self.l_max_g, self.l_max_ur)
        if self.has_polarization:
            l_max = max(l_max, self.l_max_pol_g)
        return l_max

    @classmethod
    def from_file_content(cls, fc: FileContent) -> HierarchyParams:
        """Read the hierarchy parameters from a parsed parameter file.

        Missing truncation orders fall back to the class defaults. The debug
        triple is enabled only when all three indices are given.
        """
        kwargs = {}
        for name, key in (
            ("l_max_g", "l_max_g_2nd_order"),
            ("l_max_pol_g", "l_max_pol_g_2nd_order"),
            ("l_max_ur", "l_max_ur_2nd_order"),
        ):
            value, found = fc.read_int(key)
            if found:
                kwargs[name] = value

        flag, found = fc.read_string("polarization_2nd_order")
        if found:
            # CLASS convention: any string containing 'y' or 'Y' means yes
            kwargs["has_polarization"] = "y" in flag.lower()

        debug = []
        for key in ("index_k1_debug", "index_k2_debug", "index_k3_debug"):
            value, found = fc.read_int(key)
            if found:
                debug.append(value)
        if len(debug) == 3:
            kwargs["debug_indices"] = tuple(debug)
        elif debug:
            raise ConfigurationError(
                "index_k1_debug, index_k2_debug and index_k3_debug must be given together"
            )

        return cls(**kwargs)

    def replace(self, **kwargs) -> HierarchyParams:
        """Return a new HierarchyParams with specified fields replaced."""
        current = {
            "l_max_g": self.l_max_g,
            "l_max_pol_g": self.l_max_pol_g,
            "l_max_ur": self.l_max_ur,
            "has_polarization": self.has_polarization,
            "debug_indices": self.debug_indices,
        }
        current.update(kwargs)
        return HierarchyParams(**current)

    @staticmethod
    def fast():
        """Small preset for tests and quick checks."""
        return HierarchyParams(l_max_g=4, l_max_pol_g=4, l_max_ur=4)

    @staticmethod
    def science():
        """Preset used for bispectrum production runs.

        l_max=8 for photons keeps the intrinsic bispectrum converged at the
        percent level on squeezed triangles.
        """
        return HierarchyParams(l_max_g=8, l_max_pol_g=8, l_max_ur=8)
