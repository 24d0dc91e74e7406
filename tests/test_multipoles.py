"""Test the bounded multipole accessor and the write helpers."""

import jax
import jax.numpy as jnp
import pytest

from jaxsong.errors import ConfigurationError
from jaxsong.indexing import Species, StateLayout, Truncation
from jaxsong.multipoles import (
    MultipoleView,
    add_multipole,
    multipole_in_range,
    read_multipole,
    set_multipole,
)


def _ramp(layout):
    """Vector whose entry i is i + 1, so no slot reads as zero."""
    return jnp.arange(1.0, layout.size + 1.0)


class TestInRange:
    """The single range rule."""

    @pytest.mark.parametrize("l, m", [(-1, 0), (2, 3), (2, -3), (5, 0)])
    def test_invalid_massless(self, l, m):
        assert not multipole_in_range(Truncation(Species.NEUTRINO, 4), l, m)

    def test_valid_massless(self):
        t = Truncation(Species.NEUTRINO, 4)
        assert multipole_in_range(t, 4, -4)
        assert not multipole_in_range(t, 4, -4, n=0)

    def test_disabled(self):
        assert not multipole_in_range(Truncation(Species.PHOTON_E, 4, enabled=False), 2, 0)

    def test_massive(self):
        t = Truncation(Species.BARYON, 2, 2)
        assert multipole_in_range(t, 1, 1, n=2)
        assert not multipole_in_range(t, 1, 1)
        assert not multipole_in_range(t, 1, 1, n=3)
        assert not multipole_in_range(t, 3, 0, n=0)


class TestMultipoleView:
    """Reads through the view return the slot or zero."""

    def test_reads_slot(self, params):
        layout = StateLayout.build(params)
        v = MultipoleView(layout, _ramp(layout))
        assert float(v.I(0, 0)) == 1.0
        assert float(v.E(2, -1)) == layout.index("E", 2, -1) + 1.0
        assert float(v.N(5, 5)) == layout.index("N", 5, 5) + 1.0
        assert float(v.b(2, 1, 0)) == layout.index("b", 1, 0, 2) + 1.0
        assert float(v.cdm(0, 0, 0)) == layout.index("cdm", 0, 0, 0) + 1.0

    def test_temperature_beyond_l_max(self):
        """With l_max=2, I(3,0) reads as zero."""
        from jaxsong import HierarchyParams

        layout = StateLayout.build(HierarchyParams(l_max_g=2, l_max_pol_g=2, l_max_ur=2))
        v = MultipoleView(layout, _ramp(layout))
        assert v.I(3, 0) == 0.0
        assert float(v.I(2, 2)) == 9.0

    @pytest.mark.parametrize("l, m", [(-1, 0), (1, 2), (1, -2), (9, 0)])
    def test_zero_outside_range(self, params, l, m):
        layout = StateLayout.build(params)
        v = MultipoleView(layout, _ramp(layout))
        for getter in (v.I, v.E, v.B, v.N):
            assert getter(l, m) == 0.0, f"{getter.__name__}({l},{m})"

    def test_massive_zero_outside_range(self, params):
        layout = StateLayout.build(params)
        v = MultipoleView(layout, _ramp(layout))
        assert v.b(3, 0, 0) == 0.0
        assert v.b(-1, 0, 0) == 0.0
        assert v.cdm(0, 3, 0) == 0.0

    def test_polarization_disabled(self, params_no_pol):
        """E(1,0) is zero when polarization is off, even though l is in range."""
        layout = StateLayout.build(params_no_pol)
        v = MultipoleView(layout, _ramp(layout))
        assert v.E(1, 0) == 0.0
        assert v.B(2, 1) == 0.0
        assert float(v.I(1, 0)) == 3.0

    def test_jit(self, params):
        layout = StateLayout.build(params)

        @jax.jit
        def dipole_sum(view):
            return view.I(1, -1) + view.I(1, 0) + view.I(1, 1) + view.I(7, 0)

        result = dipole_sum(MultipoleView(layout, _ramp(layout)))
        assert float(result) == 2.0 + 3.0 + 4.0

    def test_read_multipole_function(self, params):
        layout = StateLayout.build(params)
        y = _ramp(layout)
        assert read_multipole(layout, y, "N", 6, 0) == 0.0
        assert float(read_multipole(layout, y, "N", 1, 1)) == layout.index("N", 1, 1) + 1.0


class TestWrites:
    """Write helpers target the same slots as the reads."""

    def test_set_and_add(self, params):
        layout = StateLayout.build(params)
        dy = jnp.zeros(layout.size)
        dy = set_multipole(dy, layout, Species.PHOTON_B, 3, -2, 2.5)
        dy = add_multipole(dy, layout, Species.PHOTON_B, 3, -2, 0.5)
        dy = add_multipole(dy, layout, Species.BARYON, 2, 1, 1.0, n=1)
        v = MultipoleView(layout, dy)
        assert float(v.B(3, -2)) == 3.0
        assert float(v.b(1, 2, 1)) == 1.0
        assert float(jnp.sum(dy)) == 4.0

    def test_write_out_of_range_raises(self, params):
        layout = StateLayout.build(params)
        with pytest.raises(IndexError):
            set_multipole(jnp.zeros(layout.size), layout, "I", 5, 0, 1.0)

    def test_write_disabled_polarization_raises(self, params_no_pol):
        layout = StateLayout.build(params_no_pol)
        with pytest.raises(ConfigurationError):
            set_multipole(jnp.zeros(layout.size), layout, "E", 2, 0, 1.0)
