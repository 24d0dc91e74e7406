"""jaxSONG: multipole addressing and quadratic couplings for second-order Boltzmann codes in JAX.

Usage:
    import jaxsong

    params = jaxsong.HierarchyParams(l_max_g=6, l_max_pol_g=6, l_max_ur=6)
    setup = jaxsong.HierarchySetup.build(params)      # once per run

    ws = jaxsong.TriangleWorkspace(setup)             # one per worker
    ws.geometrical_corner(jaxsong.Triangle(k1=0.02, k2=0.03, k3=0.04))
    v = ws.view(y)
    v.I(2, 1), ws.rotation(1, 2, -1), ws.summed_product('c_minus', '12', 2, 1)
"""

import jax
jax.config.update("jax_enable_x64", True)

from jaxsong.constants import QUAD_COEFFICIENT  # noqa: F401
from jaxsong.errors import ConfigurationError, IndexOutOfRangeError, JaxSongError, StaleCacheError  # noqa: F401
from jaxsong.parser import FileContent, cat, overlay  # noqa: F401
from jaxsong.params import HierarchyParams  # noqa: F401
from jaxsong.indexing import HierarchyIndexTable, Species, StateLayout  # noqa: F401
from jaxsong.multipoles import MultipoleView, add_multipole, multipole_in_range, set_multipole  # noqa: F401
from jaxsong.coupling import COUPLING_KINDS, CouplingCoefficients  # noqa: F401
from jaxsong.rotation import RotationCache, Triangle  # noqa: F401
from jaxsong.products import PAIRS, ProductCache  # noqa: F401
from jaxsong.first_order import FirstOrderMultipoles  # noqa: F401
from jaxsong.quadratic import QuadraticSources, QuadraticSourceTable  # noqa: F401
from jaxsong.debug import DebugSelector  # noqa: F401
from jaxsong.workspace import HierarchySetup, TriangleWorkspace  # noqa: F401


def setup_from_files(*paths) -> HierarchySetup:
    """Build a HierarchySetup from parameter files, later files overriding earlier ones.

    Warns about entries that were never read.
    """
    if not paths:
        raise ValueError("at least one parameter file is required")
    fc = FileContent.read(paths[0])
    for path in paths[1:]:
        fc = overlay(fc, FileContent.read(path))
    params = HierarchyParams.from_file_content(fc)
    fc.log_unread()
    return HierarchySetup.build(params)
