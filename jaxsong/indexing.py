"""Multipole index tables for the second-order state vector.

Every hierarchy is stored as one contiguous block of a flat vector. Within a
block, the (l, m) multipole of a massless species sits at

    offset(l, m) = l*l + l + m,      l in [0, l_max], m in [-l, l]

so degree l occupies [l^2, (l+1)^2). The baryon and CDM beta-moments add a
radial order n in {0, 1, 2} with l fixed to at most 2:

    offset(n, l, m) = 9*n + l*l + l + m

The same layout addresses the state vector y, its derivative dy and both
quadratic-source buffers.

Key functions:
    HierarchyIndexTable.build(species, l_max) -> HierarchyIndexTable
    StateLayout.build(params) -> StateLayout

References:
    SONG source: include/perturbations2_macros.h (lm, nlm macros)
    SONG source: perturbations2.c (perturb2_indices_of_perturbs)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from jaxsong.constants import L_MAX_MASSIVE, N_MAX_MASSIVE
from jaxsong.errors import ConfigurationError, IndexOutOfRangeError
from jaxsong.params import HierarchyParams


class Species(str, Enum):
    """Hierarchies evolved at second order."""

    PHOTON_TEMPERATURE = "I"
    PHOTON_E = "E"
    PHOTON_B = "B"
    NEUTRINO = "N"
    BARYON = "b"
    CDM = "cdm"

    @property
    def is_massive(self) -> bool:
        """Beta-moment hierarchy indexed by (n, l, m)."""
        return self in (Species.BARYON, Species.CDM)

    @property
    def is_polarization(self) -> bool:
        return self in (Species.PHOTON_E, Species.PHOTON_B)


# Order of the blocks in the state vector
SPECIES_ORDER = (
    Species.PHOTON_TEMPERATURE,
    Species.PHOTON_E,
    Species.PHOTON_B,
    Species.NEUTRINO,
    Species.BARYON,
    Species.CDM,
)


def lm_count(l_max: int) -> int:
    """Number of (l, m) pairs with l <= l_max: sum of (2l+1) = (l_max+1)^2."""
    return (l_max + 1) * (l_max + 1)


@dataclass(frozen=True)
class Truncation:
    """Range metadata of one hierarchy, used by the bounded accessor."""

    species: Species
    l_max: int
    n_max: Optional[int] = None     # None for massless species
    enabled: bool = True


@dataclass(frozen=True)
class HierarchyIndexTable:
    """Bijection (l, m) or (n, l, m) -> [0, count) for one species.

    Lookups are pure arithmetic, so they are free inside traced code where l,
    m and n are Python ints. Invalid indices raise IndexOutOfRangeError: the
    table is the unchecked layer, range filtering is done by MultipoleView.
    """

    species: Species
    l_max: int
    n_max: Optional[int] = None

    @classmethod
    def build(cls, species: Species, l_max: Optional[int] = None) -> HierarchyIndexTable:
        species = Species(species)
        if species.is_massive:
            if l_max is not None and l_max != L_MAX_MASSIVE:
                raise ConfigurationError(
                    f"{species.value}: beta-moment hierarchies are truncated at "
                    f"l_max={L_MAX_MASSIVE}, got {l_max}"
                )
            return cls(species, L_MAX_MASSIVE, N_MAX_MASSIVE)
        if l_max is None or l_max < 0:
            raise ConfigurationError(f"{species.value}: invalid truncation order l_max={l_max}")
        return cls(species, int(l_max))

    @property
    def count(self) -> int:
        n_lm = lm_count(self.l_max)
        if self.n_max is None:
            return n_lm
        return (self.n_max + 1) * n_lm

    def lookup(self, l: int, m: int, n: Optional[int] = None) -> int:
        """Offset of the (n, l, m) multipole within this hierarchy's block."""
        if not (0 <= l <= self.l_max and -l <= m <= l):
            raise IndexOutOfRangeError(
                f"{self.species.value}: (l={l}, m={m}) outside l_max={self.l_max}"
            )
        offset = l * l + l + m
        if self.n_max is None:
            if n is not None:
                raise IndexOutOfRangeError(
                    f"{self.species.value}: massless hierarchy takes no radial index, got n={n}"
                )
            return offset
        if n is None or not 0 <= n <= self.n_max:
            raise IndexOutOfRangeError(
                f"{self.species.value}: radial index n={n} outside [0, {self.n_max}]"
            )
        return n * lm_count(self.l_max) + offset

    def offsets_for_degree(self, l: int, n: Optional[int] = None) -> list[int]:
        """Offsets of the 2l+1 multipoles of degree l, ordered by m."""
        return [self.lookup(l, m, n) for m in range(-l, l + 1)]


@dataclass(frozen=True)
class StateLayout:
    """Placement of every enabled hierarchy in one flat vector.

    Hashable, so it can travel as static pytree metadata.

    Attributes:
        params: the frozen run parameters the layout was built from
        tables: index tables of the enabled species, in vector order
        bases: offset of each table's block (its monopole) in the vector
        size: total length of the vector
    """

    params: HierarchyParams
    tables: tuple
    bases: tuple
    size: int

    @classmethod
    def build(cls, params: HierarchyParams) -> StateLayout:
        l_max = {
            Species.PHOTON_TEMPERATURE: params.l_max_g,
            Species.PHOTON_E: params.l_max_pol_g,
            Species.PHOTON_B: params.l_max_pol_g,
            Species.NEUTRINO: params.l_max_ur,
            Species.BARYON: None,
            Species.CDM: None,
        }
        tables = []
        bases = []
        i = 0
        for species in SPECIES_ORDER:
            if species.is_polarization and not params.has_polarization:
                continue
            table = HierarchyIndexTable.build(species, l_max[species])
            tables.append(table)
            bases.append(i)
            i += table.count
        logger.debug(
            "indexing: state layout | "
            + ", ".join(f"{t.species.value}@{b}+{t.count}" for t, b in zip(tables, bases))
            + f" | size={i}"
        )
        return cls(params=params, tables=tuple(tables), bases=tuple(bases), size=i)

    def _position(self, species: Species) -> Optional[int]:
        species = Species(species)
        for i, table in enumerate(self.tables):
            if table.species is species:
                return i
        return None

    @property
    def species(self) -> tuple:
        """Enabled species, in vector order."""
        return tuple(t.species for t in self.tables)

    def has(self, species: Species) -> bool:
        return self._position(species) is not None

    def table(self, species: Species) -> HierarchyIndexTable:
        i = self._position(species)
        if i is None:
            raise ConfigurationError(
                f"{Species(species).value} hierarchy is not evolved (polarization disabled)"
            )
        return self.tables[i]

    def base(self, species: Species) -> int:
        i = self._position(species)
        if i is None:
            raise ConfigurationError(
                f"{Species(species).value} hierarchy is not evolved (polarization disabled)"
            )
        return self.bases[i]

    def index(self, species: Species, l: int, m: int, n: Optional[int] = None) -> int:
        """Absolute position of the (n, l, m) multipole in the flat vector."""
        return self.base(species) + self.table(species).lookup(l, m, n)

    def truncation(self, species: Species) -> Truncation:
        """Range metadata of `species`, including disabled polarization."""
        species = Species(species)
        i = self._position(species)
        if i is None:
            return Truncation(species, self.params.l_max_pol_g, None, False)
        table = self.tables[i]
        return Truncation(species, table.l_max, table.n_max, True)

    def slice(self, species: Species) -> slice:
        """Slice of the flat vector holding the whole `species` block."""
        start = self.base(species)
        return slice(start, start + self.table(species).count)
