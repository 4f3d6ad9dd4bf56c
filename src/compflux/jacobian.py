"""Module containing the local residual and Jacobian stamps of a connection, and their
scattering into a global system.

The degrees of freedom of a cell are ordered as
``[pressure, comp_dens_0, ..., comp_dens_NC-1]``. In the local Jacobian of a connection
they are contiguous per stencil entry, in stencil order. In the global system, cell
``c`` owns the columns ``c * (NC + 1) + j`` for ``j = 0, ..., NC`` and the rows
``c * (NC + 1) + ic`` of its component balances ``ic = 0, ..., NC - 1``. The row
``c * (NC + 1) + NC`` is reserved for a volume balance and not filled here.

"""

from __future__ import annotations

import logging

import numba
import numpy as np
import scipy.sparse as sps

from ._core import NUM_ELEMS, NUMBA_CACHE, NUMBA_FAST_MATH
from .utils import FluxEvaluationError

__all__ = [
    "fill_local_jacobi",
    "assemble_global_system",
]

logger = logging.getLogger(__name__)


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def fill_local_jacobi(
    comp_flux: np.ndarray,
    dcomp_flux_dpres: np.ndarray,
    dcomp_flux_dcomp: np.ndarray,
    stencil_size: int,
    dt: float,
    local_flux: np.ndarray,
    local_flux_jacobian: np.ndarray,
) -> None:
    """Fills the local residual and Jacobian of a connection from its component
    fluxes.

    The donor cell (first primary cell) receives ``+dt * flux``, the receiver cell
    (second primary cell) ``-dt * flux``.

    Parameters:
        comp_flux: ``shape=(NC,)``

            Component fluxes.
        dcomp_flux_dpres: ``shape=(MAX_STENCIL, NC)``

            Pressure derivatives of the component fluxes.
        dcomp_flux_dcomp: ``shape=(MAX_STENCIL, NC, NC)``

            Component density derivatives of the component fluxes.
        stencil_size: Number of cells in the stencil.
        dt: Time step size.
        local_flux: ``shape=(2 * NC,)``

            Output, overwritten.
        local_flux_jacobian: ``shape=(2 * NC, MAX_STENCIL * (NC + 1))``

            Output, the columns of the first ``stencil_size`` stencil entries are
            overwritten.

    """
    nc = comp_flux.shape[0]
    ndof = nc + 1

    for ic in range(nc):
        local_flux[ic] = dt * comp_flux[ic]
        local_flux[nc + ic] = -dt * comp_flux[ic]

        for ke in range(stencil_size):
            dof_pres = ke * ndof
            local_flux_jacobian[ic, dof_pres] = dt * dcomp_flux_dpres[ke, ic]
            local_flux_jacobian[nc + ic, dof_pres] = -dt * dcomp_flux_dpres[ke, ic]

            for jc in range(nc):
                dof_comp = dof_pres + jc + 1
                local_flux_jacobian[ic, dof_comp] = dt * dcomp_flux_dcomp[ke, ic, jc]
                local_flux_jacobian[nc + ic, dof_comp] = (
                    -dt * dcomp_flux_dcomp[ke, ic, jc]
                )


def assemble_global_system(
    cells: np.ndarray,
    stencil_size: np.ndarray,
    residual: np.ndarray,
    jacobian: np.ndarray,
    num_cells: int,
) -> tuple[np.ndarray, sps.csr_matrix]:
    """Sums the local stamps of all connections into a global residual and a sparse
    global Jacobian.

    Parameters:
        cells: ``shape=(num_connections, MAX_STENCIL)``

            Resolved cell indices, see
            :meth:`~compflux.states.ConnectionStencils.flat_cells`.
        stencil_size: ``shape=(num_connections,)``

            Number of cells per connection.
        residual: ``shape=(num_connections, 2 * NC)``

            Local residuals.
        jacobian: ``shape=(num_connections, 2 * NC, MAX_STENCIL * (NC + 1))``

            Local Jacobians.
        num_cells: Number of cells in the mesh.

    Raises:
        FluxEvaluationError: If the shapes of the local stamps do not match the
            stencils.

    Returns:
        A 2-tuple containing the residual vector of ``shape=(num_cells * (NC + 1),)``
        and the Jacobian as a CSR matrix of the matching square shape. Entries of
        connections sharing a cell are summed.

    """
    num_conn, max_stencil = cells.shape
    nc = residual.shape[1] // NUM_ELEMS
    ndof = nc + 1

    if residual.shape != (num_conn, NUM_ELEMS * nc) or jacobian.shape != (
        num_conn,
        NUM_ELEMS * nc,
        max_stencil * ndof,
    ):
        msg = (
            f"Local stamps of shapes {residual.shape} and {jacobian.shape} do not"
            f" match {num_conn} connections with stencil capacity {max_stencil}."
        )
        logger.error(msg)
        raise FluxEvaluationError(msg)

    size = num_cells * ndof
    comps = np.arange(nc)

    # rows of the donor and receiver balances per connection
    row_cells = cells[:, :NUM_ELEMS]
    local_rows = (
        row_cells[:, :, np.newaxis] * ndof + comps[np.newaxis, np.newaxis, :]
    ).reshape((num_conn, NUM_ELEMS * nc))

    global_res = np.zeros(size)
    np.add.at(global_res, local_rows.ravel(), residual.ravel())

    # columns of the stencil dofs, unused stencil entries are masked out
    local_cols = (
        cells[:, :, np.newaxis] * ndof + np.arange(ndof)[np.newaxis, np.newaxis, :]
    ).reshape((num_conn, max_stencil * ndof))
    used = np.repeat(
        np.arange(max_stencil)[np.newaxis, :] < stencil_size[:, np.newaxis],
        ndof,
        axis=1,
    )

    rows = np.broadcast_to(local_rows[:, :, np.newaxis], jacobian.shape)
    cols = np.broadcast_to(local_cols[:, np.newaxis, :], jacobian.shape)
    mask = np.broadcast_to(used[:, np.newaxis, :], jacobian.shape)

    global_jac = sps.coo_matrix(
        (jacobian[mask], (rows[mask], cols[mask])), shape=(size, size)
    ).tocsr()

    logger.debug(
        f"Assembled {num_conn} connections into a system of size {size}"
        f" with {global_jac.nnz} non-zeros."
    )
    return global_res, global_jac
