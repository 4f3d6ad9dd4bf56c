"""This private module contains central assumptions and data for the entire
compflux package.

Changes here should be done with much care.

"""

from __future__ import annotations

from enum import IntEnum

from . import config

__all__ = [
    "NUM_ELEMS",
    "MOBILITY_EPS",
    "UNSET_DIRECTION",
    "UpwindTerm",
    "UpwindScheme",
]


def _numba_flag(key: str, default: bool) -> bool:
    """Reads a boolean flag from the section ``[numba]`` of ``compflux.cfg``."""
    raw = config.get("numba", {}).get(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


NUMBA_CACHE: bool = _numba_flag("cache", True)
"""Flag to instruct the numba compiler to cache (!and use cached!) functions.

This might cause some confusion in the developing process due to some lack in numba's
caching functionality.
(Does not recognize changes in nested functions and hence does not trigger
re-compilation).

Use with care.

See Also:
    https://numba.readthedocs.io/en/stable/user/jit.html#cache

"""

NUMBA_FAST_MATH: bool = _numba_flag("fastmath", False)
"""Flag to instruct the numba compiler to use it's ``fastmath`` functions.

Must stay off for flux evaluations used in Newton's method: ``fastmath`` allows
reassociation of sums and breaks the fixed summation order within a connection.

See Also:
    https://numba.readthedocs.io/en/stable/reference/jit-compilation.html#numba.jit

"""

NUMBA_PARALLEL: bool = _numba_flag("parallel", True)
"""Flag to instruct numba to compile the loop over connections in parallel mode.

Flag is introduced for developing processes when involving other packages supporing
parallelism such as numpy and PETSc.

"""

NUM_ELEMS: int = 2
"""Number of primary cells in a connection.

The primary cells are the first two entries of a stencil. They define the mean
density entering the gravitational head, the cells between which the upwind direction
is chosen, and the donor (first) and receiver (second) rows of the local Jacobian.

"""

MOBILITY_EPS: float = 1e-20
"""Upwinded mobilities with an absolute value not above this threshold are treated as
exactly zero, including their derivatives."""

UNSET_DIRECTION: int = -1
"""Sentinel for an upwind direction which was never selected."""


class UpwindTerm(IntEnum):
    """Physical term of the flux for which an upwind direction is selected.

    - :attr:`VISCOUS`: Advective part driven by the total flux (value 0).
    - :attr:`GRAVITY`: Gravitational segregation between phases (value 1).
    - :attr:`CAPILLARY`: Capillary part (value 2).

    """

    VISCOUS = 0
    GRAVITY = 1
    CAPILLARY = 2


class UpwindScheme(IntEnum):
    """Rule used to form the potential deciding the upwind direction.

    - :attr:`PHASE_POTENTIAL`: Classical phase potential upwinding (value 0), see
      Sammon, "An analysis of upstream differencing", SPE Reservoir Engineering (1988).
    - :attr:`HYBRID`: Hybrid upwinding (value 1), see Lee, Efendiev and Tchelepi,
      "Hybrid upwind discretization of nonlinear two-phase flow with gravity",
      Advances in Water Resources (2015). The viscous term is upwinded with the total
      flux, the gravity term with the cross-phase segregation potential.
    - :attr:`PHASE`: Phase upwinding (value 2). Total flux plus segregation potential
      for every term.

    """

    PHASE_POTENTIAL = 0
    HYBRID = 1
    PHASE = 2
