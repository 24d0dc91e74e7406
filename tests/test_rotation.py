"""Test rotation coefficients of the triangle legs."""

import math

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jaxsong.rotation import RotationCache, Triangle, rotation_table


THETA_1 = math.radians(30.0)
THETA_2 = math.radians(60.0)


@pytest.fixture(scope="module")
def rot():
    return RotationCache.build(4, THETA_1, THETA_2)


class TestKnownValues:
    """Closed forms of sqrt((l-m)!/(l+m)!) P_l^m at 30 degrees."""

    def test_low_degrees(self, rot):
        c, s = math.sqrt(3.0) / 2, 0.5
        expected = {
            (0, 0): 1.0,
            (1, 0): c,
            (1, 1): -s / math.sqrt(2.0),
            (2, 0): 0.625,
            (2, 1): -3.0 * c * s / math.sqrt(6.0),
            (2, 2): 3.0 * s * s / math.sqrt(24.0),
        }
        for (l, m), value in expected.items():
            assert float(rot.rotation(1, l, m)) == pytest.approx(value, rel=1e-13), f"({l},{m})"

    def test_zenith(self):
        """A leg along the zenith only has m = 0 components, all equal to 1."""
        table = rotation_table(5, 1.0, 0.0)
        cache = RotationCache(5, jnp.stack([table, table]))
        for l in range(6):
            assert float(cache.rotation(1, l, 0)) == pytest.approx(1.0)
            for m in range(1, l + 1):
                assert float(cache.rotation(2, l, m)) == 0.0

    def test_addition_theorem(self, rot):
        """sum_m rotation(l, m)^2 = 1 for every l and both legs."""
        for leg in (1, 2):
            for l in range(5):
                total = sum(float(rot.rotation(leg, l, m)) ** 2 for m in range(-l, l + 1))
                assert total == pytest.approx(1.0, rel=1e-12), f"leg={leg} l={l}"


class TestMirrorAndRange:
    """Negative m and out-of-range requests."""

    def test_mirror_rule(self, rot):
        for leg in (1, 2):
            for l in range(5):
                for m in range(1, l + 1):
                    pos = float(rot.rotation(leg, l, m))
                    neg = float(rot.rotation(leg, l, -m))
                    assert neg == (-1) ** m * pos, f"leg={leg} ({l},{m})"

    @pytest.mark.parametrize("l, m", [(-1, 0), (2, 3), (2, -3), (5, 0)])
    def test_zero_outside(self, rot, l, m):
        assert rot.rotation(1, l, m) == 0.0
        assert rot.rotation(2, l, m) == 0.0

    def test_bad_leg(self, rot):
        with pytest.raises(ValueError):
            rot.rotation(3, 1, 0)

    def test_expanded_matches_rotation(self, rot):
        table = np.asarray(rot.expanded(2))
        assert table.shape == (26,)
        assert table[-1] == 0.0
        for l in range(5):
            for m in range(-l, l + 1):
                assert table[l * l + l + m] == float(rot.rotation(2, l, m))


class TestTriangle:
    """Leg angles derived from (k1, k2, k3)."""

    def test_closure(self):
        tri = Triangle(0.02, 0.03, 0.04)
        cos_1, sin_1, cos_2, sin_2 = tri.cos_sin()
        assert tri.k1 * cos_1 + tri.k2 * cos_2 == pytest.approx(tri.k3, rel=1e-12)
        assert tri.k1 * sin_1 + tri.k2 * sin_2 == pytest.approx(0.0, abs=1e-15)
        assert cos_2 ** 2 + sin_2 ** 2 == pytest.approx(1.0)
        assert sin_1 >= 0.0 and sin_2 <= 0.0

    def test_collinear(self):
        tri = Triangle(0.01, 0.02, 0.03, 1, 2, 3)
        cos_1, sin_1, cos_2, sin_2 = tri.cos_sin()
        assert (cos_1, cos_2) == (pytest.approx(1.0), pytest.approx(1.0))
        assert sin_1 == pytest.approx(0.0, abs=1e-7)
        assert tri.indices == (1, 2, 3)

    def test_from_triangle_matches_angles(self):
        tri = Triangle(0.02, 0.03, 0.04)
        cos_1, _, cos_2, _ = tri.cos_sin()
        a = RotationCache.from_triangle(3, tri)
        b = RotationCache.build(3, math.acos(cos_1), -math.acos(cos_2))
        np.testing.assert_allclose(np.asarray(a.tables), np.asarray(b.tables), rtol=1e-12, atol=1e-14)

    @pytest.mark.parametrize("k", [(0.0, 1.0, 1.0), (1.0, 1.0, 3.0), (1.0, 3.0, 1.0)])
    def test_invalid(self, k):
        with pytest.raises(ValueError):
            Triangle(*k)


class TestJax:
    """The cache is a pytree and differentiable in the leg angles."""

    def test_grad(self):
        def dipole(theta):
            return RotationCache.build(2, theta, 0.0).rotation(1, 1, 0)

        grad = jax.grad(dipole)(THETA_1)
        assert float(grad) == pytest.approx(-math.sin(THETA_1), rel=1e-12)

    def test_jit_roundtrip(self, rot):
        @jax.jit
        def quadrupole(cache):
            return cache.rotation(2, 2, -1)

        assert float(quadrupole(rot)) == pytest.approx(float(rot.rotation(2, 2, -1)))

    def test_generation_is_static(self):
        cache = RotationCache.build(2, THETA_1, THETA_2, generation=7)
        leaves, treedef = jax.tree_util.tree_flatten(cache)
        rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
        assert rebuilt.generation == 7 and rebuilt.l_max == 2
