"""Numerical constants of the second-order hierarchy.

Conventions follow SONG (Pettinari 2013, arXiv:1405.2280): multipoles carry
the sqrt(4pi/(2l+1)) normalisation of the rotation coefficients, and the
second-order perturbation is expanded as X = X^(1) + X^(2)/2.
"""

# --- Expansion convention ---
QUAD_COEFFICIENT = 2.0
"""Factor multiplying every quadratic source term.

2 for the expansion X = X^(1) + X^(2)/2, which is the only convention
implemented. The alternative X = X^(1) + X^(2) would need 1 here.
"""

# --- Massive species (baryon and CDM beta-moments) ---
N_MAX_MASSIVE = 2
"""Highest radial order n kept for the beta-moment hierarchies."""

L_MAX_MASSIVE = 2
"""Highest degree l kept for the beta-moment hierarchies."""

# --- Polarization ---
L_MIN_POLARIZATION = 2
"""Lowest degree carried by the E and B hierarchies."""
