"""Differentiable cubic spline interpolation along conformal time.

Quadratic sources are tabulated on a tau grid and sampled by the
second-order solver at arbitrary tau. The spline interpolates every
component of the source vector at once: knot values have shape (N, ...)
with the tau axis first, and evaluation returns the trailing shape.

Registered as a JAX pytree so it can sit inside other pytrees and flow
through jit/grad/vmap.

The tridiagonal system is solved with the Thomas algorithm via
jax.lax.fori_loop; jnp.searchsorted locates the interval.

References:
    CLASS: tools/arrays.c (array_spline_table_columns)
    SONG source: perturbations2.c (perturb2_quadratic_sources_at_tau)
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float


def _trailing(a, ndim: int):
    """Reshape `a` so it broadcasts against `ndim` trailing axes."""
    return a.reshape(a.shape + (1,) * ndim)


@jax.tree_util.register_pytree_node_class
class CubicSpline:
    """Natural cubic spline through (x[i], y[i, ...]).

    S''(x[0]) = S''(x[-1]) = 0.

    Attributes:
        x: knot positions, shape (N,), strictly increasing
        y: knot values, shape (N, ...)
        d2y: second derivatives at knots, shape of y
    """

    def __init__(self, x: Float[Array, "N"], y: Float[Array, "N ..."]):
        self.x = jnp.asarray(x)
        self.y = jnp.asarray(y)
        if self.x.ndim != 1 or self.x.shape[0] < 2:
            raise ValueError(f"spline needs at least 2 knots, got x of shape {self.x.shape}")
        if self.y.shape[:1] != self.x.shape:
            raise ValueError(
                f"knot values of shape {self.y.shape} do not match {self.x.shape[0]} knots"
            )
        self.d2y = _natural_spline_coeffs(self.x, self.y)

    def evaluate(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Spline value at x_eval; result shape is x_eval.shape + y.shape[1:].

        Points outside [x[0], x[-1]] are clamped to the end knots.
        """
        x_eval = jnp.asarray(x_eval)
        x_clamped = jnp.clip(x_eval, self.x[0], self.x[-1])
        idx = jnp.searchsorted(self.x, x_clamped, side="right") - 1
        idx = jnp.clip(idx, 0, len(self.x) - 2)

        rest = self.y.ndim - 1
        h = _trailing(self.x[idx + 1] - self.x[idx], rest)
        A = _trailing((self.x[idx + 1] - x_clamped), rest) / h
        B = _trailing((x_clamped - self.x[idx]), rest) / h

        # cf. CLASS arrays.h (array_spline_eval)
        return (
            A * self.y[idx]
            + B * self.y[idx + 1]
            + ((A**3 - A) * self.d2y[idx] + (B**3 - B) * self.d2y[idx + 1])
            * h**2
            / 6.0
        )

    # --- JAX pytree registration ---

    def tree_flatten(self):
        return (self.x, self.y, self.d2y), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.x, obj.y, obj.d2y = children
        return obj


def _natural_spline_coeffs(
    x: Float[Array, "N"], y: Float[Array, "N ..."]
) -> Float[Array, "N ..."]:
    """Second derivatives at the knots of a natural cubic spline.

    Interior rows of the tridiagonal system:
        h_{i-1} d2y_{i-1} + 2(h_{i-1} + h_i) d2y_i + h_i d2y_{i+1}
            = 6 [(y_{i+1} - y_i)/h_i - (y_i - y_{i-1})/h_{i-1}]

    The matrix only depends on x, so the forward sweep of the diagonal is
    shared by all components; the right-hand side carries the trailing axes.
    """
    n = x.shape[0]
    rest = y.ndim - 1
    if n < 3:
        return jnp.zeros_like(y)
    h = x[1:] - x[:-1]
    hb = _trailing(h, rest)

    rhs = 6.0 * ((y[2:] - y[1:-1]) / hb[1:] - (y[1:-1] - y[:-2]) / hb[:-1])
    diag = 2.0 * (h[:-1] + h[1:])
    lower = h[:-1]
    upper = h[1:]

    def forward_step(i, carry):
        d, r = carry
        w = lower[i] / d[i - 1]
        d = d.at[i].set(d[i] - w * upper[i - 1])
        r = r.at[i].set(r[i] - w * r[i - 1])
        return (d, r)

    diag_mod, rhs_mod = jax.lax.fori_loop(1, n - 2, forward_step, (diag, rhs))

    interior = jnp.zeros_like(rhs)
    interior = interior.at[-1].set(rhs_mod[-1] / diag_mod[-1])

    def backward_step(i, d2y):
        j = n - 4 - i
        return d2y.at[j].set((rhs_mod[j] - upper[j] * d2y[j + 1]) / diag_mod[j])

    interior = jax.lax.fori_loop(0, n - 3, backward_step, interior)

    edge = jnp.zeros((1,) + y.shape[1:], dtype=interior.dtype)
    return jnp.concatenate([edge, interior, edge])
