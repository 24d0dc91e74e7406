"""Test the coupling coefficient store."""

import math

import numpy as np
import pytest

from jaxsong.coupling import COUPLING_KINDS, CouplingCoefficients


@pytest.fixture(scope="module")
def coupling():
    return CouplingCoefficients.build(6)


class TestDiagonal:
    """m1 = m reduces to the single-mode free-streaming factors."""

    def test_c_minus(self, coupling):
        for l in range(7):
            for m in range(-l, l + 1):
                expected = math.sqrt(l * l - m * m) / (2 * l + 1)
                assert coupling.c_minus(l, m, m) == pytest.approx(expected, abs=1e-15)

    def test_c_plus(self, coupling):
        for l in range(7):
            for m in range(-l, l + 1):
                expected = math.sqrt((l + 1) ** 2 - m * m) / (2 * l + 1)
                assert coupling.c_plus(l, m, m) == pytest.approx(expected, abs=1e-15)

    def test_d_zero(self, coupling):
        for l in range(2, 7):
            for m in range(-l, l + 1):
                assert coupling.d_zero(l, m, m) == pytest.approx(2.0 * m / (l * (l + 1)))

    def test_d_minus_d_plus(self, coupling):
        l, m = 4, 1
        assert coupling.d_minus(l, m, m) == pytest.approx(
            coupling.c_minus(l, m, m) * math.sqrt(l * l - 4) / l
        )
        assert coupling.d_plus(l, m, m) == pytest.approx(
            coupling.c_plus(l, m, m) * math.sqrt((l + 1) ** 2 - 4) / (l + 1)
        )

    def test_polarization_below_quadrupole(self, coupling):
        for l in (0, 1):
            for kind in ("d_minus", "d_zero"):
                assert coupling.coefficient(kind, l, 0, 0) == 0.0

    def test_first_order_limit(self, coupling):
        """c_minus(l,0,0) = l/(2l+1), c_plus(l,0,0) = (l+1)/(2l+1)."""
        for l in range(7):
            assert coupling.c_minus(l, 0, 0) == pytest.approx(l / (2 * l + 1))
            assert coupling.c_plus(l, 0, 0) == pytest.approx((l + 1) / (2 * l + 1))


class TestShifted:
    """m1 = m +- 1 entries."""

    def test_mirror_symmetry(self, coupling):
        """Coefficients are invariant under (m1, m) -> (-m1, -m)."""
        for kind in ("c_minus", "c_plus", "d_minus", "d_plus"):
            for l in range(7):
                for m in range(-l, l + 1):
                    for m1 in (m - 1, m + 1):
                        a = coupling.coefficient(kind, l, m1, m)
                        b = coupling.coefficient(kind, l, -m1, -m)
                        assert a == pytest.approx(b, abs=1e-15), f"{kind}({l},{m1},{m})"

    def test_known_values(self, coupling):
        assert coupling.c_minus(2, 0, 1) == pytest.approx(math.sqrt(3.0) / 5)
        assert coupling.c_plus(1, 1, 0) == pytest.approx(-math.sqrt(3.0) / 3)
        assert coupling.d_zero(2, 1, 2) == pytest.approx(-math.sqrt(8.0) / 6)

    def test_vanishing_target(self, coupling):
        """No (l - 1, m1) multipole exists when |m1| >= l."""
        assert coupling.c_minus(1, 2, 1) == 0.0
        assert coupling.c_minus(2, -2, -1) == 0.0


class TestAccess:
    """Range handling and lookup errors."""

    def test_out_of_range_zero(self, coupling):
        assert coupling.c_minus(7, 0, 0) == 0.0
        assert coupling.c_plus(-1, 0, 0) == 0.0
        assert coupling.d_zero(3, 0, 4) == 0.0
        assert coupling.c_minus(3, 3, 1) == 0.0

    def test_unknown_kind(self, coupling):
        with pytest.raises(KeyError):
            coupling.coefficient("e_minus", 2, 0, 0)

    def test_spin_aliases(self, coupling):
        assert coupling.minus(3, 1, 2) == coupling.c_minus(3, 1, 2)
        assert coupling.minus(3, 1, 2, spin=2) == coupling.d_minus(3, 1, 2)
        assert coupling.plus(3, 2, 2, spin=2) == coupling.d_plus(3, 2, 2)
        assert coupling.zero(3, 2, 2) == coupling.d_zero(3, 2, 2)

    def test_table_layout(self, coupling):
        for kind in COUPLING_KINDS:
            assert coupling.tables[kind].shape == (49, 3)
            np.testing.assert_array_equal(coupling.diagonal(kind), coupling.tables[kind][:, 1])

    def test_no_triangle_dependence(self):
        a = CouplingCoefficients.build(3)
        b = CouplingCoefficients.build(3)
        for kind in COUPLING_KINDS:
            np.testing.assert_array_equal(a.tables[kind], b.tables[kind])
