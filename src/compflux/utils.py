"""Contains utility functions for the compflux package, as well as a custom exception
class :class:`FluxEvaluationError`."""

from __future__ import annotations

import logging

import numba
import numpy as np

from ._core import NUM_ELEMS, NUMBA_CACHE, NUMBA_FAST_MATH

__all__ = [
    "apply_chain_rule",
    "check_stencil_sizes",
    "FluxEvaluationError",
]

logger = logging.getLogger(__name__)


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def apply_chain_rule(
    nc: int, dxi_ds: np.ndarray, dy_ds: np.ndarray, dy_dx: np.ndarray
) -> None:
    r"""Converts derivatives w.r.t. component fractions into derivatives w.r.t.
    component densities.

    With :math:`z_j` the component fractions and :math:`\rho_i` the component
    densities of a cell, it computes

    .. math::

        \frac{\partial y}{\partial \rho_i} = \sum_j \frac{\partial z_j}{\partial \rho_i}
        \frac{\partial y}{\partial z_j}~,

    i.e. the product of the transposed ``NC x NC`` Jacobian with a vector of length
    ``NC``.

    Parameters:
        nc: Number of components.
        dxi_ds: ``shape=(NC, NC)``

            Jacobian of the component fractions w.r.t. the component densities, with
            ``dxi_ds[j, i]`` the derivative of fraction ``j`` w.r.t. density ``i``.
        dy_ds: ``shape=(NC,)``

            Derivatives of a scalar ``y`` w.r.t. the component fractions.
        dy_dx: ``shape=(NC,)``

            Output, overwritten with the derivatives of ``y`` w.r.t. the component
            densities.

    """
    for ic in range(nc):
        dy_dx[ic] = 0.0
        for jc in range(nc):
            dy_dx[ic] += dxi_ds[jc, ic] * dy_ds[jc]


def check_stencil_sizes(stencil_size: np.ndarray, max_stencil: int) -> None:
    """Checks that every connection has between :data:`~compflux._core.NUM_ELEMS`
    and ``max_stencil`` cells.

    Truncating a stencil would silently corrupt the Jacobian, hence the check fails
    fast.

    Parameters:
        stencil_size: ``shape=(num_connections,)``

            Number of cells per connection.
        max_stencil: Capacity of the stencil arrays.

    Raises:
        FluxEvaluationError: For the first connection with an invalid size.

    """
    invalid = np.flatnonzero((stencil_size < NUM_ELEMS) | (stencil_size > max_stencil))
    if invalid.size > 0:
        conn = int(invalid[0])
        msg = (
            f"Connection {conn} has {int(stencil_size[conn])} cells, expected between"
            f" {NUM_ELEMS} and {max_stencil}."
        )
        logger.error(msg)
        raise FluxEvaluationError(msg)


class FluxEvaluationError(Exception):
    """Custom exception class to alert the user when the flux evaluation is used with
    inconsistent input, which would corrupt the Jacobian if not caught.

    Such usage includes for example:

    - stencils with more cells than the capacity of the stencil arrays,
    - stencils with fewer cells than the two primary cells,
    - cell indices outside of the property arrays,
    - an upwind direction which was never selected for a phase.

    """
