"""Distribution of phase fluxes onto component fluxes.

Both functions follow the product rule of the phase flux: the derivatives of the
incoming field are scaled at every stencil cell, and the derivatives of the upstream
property are added at the upwind direction ``k_up`` only.

"""

from __future__ import annotations

import numba
import numpy as np

from ._core import NUMBA_CACHE, NUMBA_FAST_MATH
from .utils import apply_chain_rule

__all__ = [
    "density_multiply",
    "form_phase_comp",
]


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def density_multiply(
    ip: int,
    k_up: int,
    stencil_size: int,
    cells: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_dens: np.ndarray,
    dphase_dens_dpres: np.ndarray,
    dphase_dens_dcomp: np.ndarray,
    field: float,
    dfield_dpres: np.ndarray,
    dfield_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> float:
    """Rescales a volumetric field of phase ``ip`` by the upstream phase density.

    Depending on the passed density, the result is in molar or in mass units.

    Parameters:
        ip: Phase index.
        k_up: Upwind direction of the field.
        stencil_size: Number of cells in the stencil.
        cells: Resolved cell indices of the connection.
        dcomp_frac_dcomp_dens: Jacobian of component fractions w.r.t. component
            densities per cell.
        phase_dens: Molar or mass phase density per cell.
        dphase_dens_dpres: Pressure derivative of ``phase_dens``.
        dphase_dens_dcomp: Component fraction derivatives of ``phase_dens``.
        field: Value to be rescaled.
        dfield_dpres: ``shape=(MAX_STENCIL,)``

            Pressure derivatives of ``field``, modified in place.
        dfield_dcomp: ``shape=(MAX_STENCIL, NC)``

            Component density derivatives of ``field``, modified in place.
        dprop_dcomp: ``shape=(NC,)``

            Working buffer.

    Returns:
        The rescaled field.

    """
    nc = dfield_dcomp.shape[1]
    cell_up = cells[k_up]
    dens = phase_dens[cell_up, ip]

    for ke in range(stencil_size):
        dfield_dpres[ke] *= dens
        for jc in range(nc):
            dfield_dcomp[ke, jc] *= dens

    dfield_dpres[k_up] += dphase_dens_dpres[cell_up, ip] * field
    apply_chain_rule(
        nc, dcomp_frac_dcomp_dens[cell_up], dphase_dens_dcomp[cell_up, ip], dprop_dcomp
    )
    for jc in range(nc):
        dfield_dcomp[k_up, jc] += dprop_dcomp[jc] * field

    # the unscaled field enters the derivatives above
    return field * dens


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_phase_comp(
    ip: int,
    k_up: int,
    stencil_size: int,
    cells: np.ndarray,
    phase_comp_frac: np.ndarray,
    dphase_comp_frac_dpres: np.ndarray,
    dphase_comp_frac_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_flux: float,
    dphase_flux_dpres: np.ndarray,
    dphase_flux_dcomp: np.ndarray,
    comp_flux: np.ndarray,
    dcomp_flux_dpres: np.ndarray,
    dcomp_flux_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> None:
    r"""Adds the component fluxes carried by the flux of phase ``ip``.

    .. math::

        F_c \mathrel{+}= F \, x_{c}^{up}~,

    with :math:`x^{up}` the phase composition in the upstream cell ``cells[k_up]``.

    Parameters:
        phase_comp_frac: Fractions of components in phases per cell.
        dphase_comp_frac_dpres: Pressure derivatives of the phase compositions.
        dphase_comp_frac_dcomp: Component fraction derivatives of the phase
            compositions.
        phase_flux: Flux of phase ``ip``.
        dphase_flux_dpres: ``shape=(MAX_STENCIL,)``

            Pressure derivatives of the phase flux.
        dphase_flux_dcomp: ``shape=(MAX_STENCIL, NC)``

            Component density derivatives of the phase flux.
        comp_flux: ``shape=(NC,)``

            Accumulator of the component fluxes.
        dcomp_flux_dpres: ``shape=(MAX_STENCIL, NC)``

            Accumulator of the pressure derivatives.
        dcomp_flux_dcomp: ``shape=(MAX_STENCIL, NC, NC)``

            Accumulator of the component density derivatives.
        dprop_dcomp: ``shape=(NC,)``

            Working buffer.

    """
    nc = comp_flux.shape[0]
    cell_up = cells[k_up]

    for ic in range(nc):
        ycp = phase_comp_frac[cell_up, ip, ic]
        comp_flux[ic] += phase_flux * ycp

        for ke in range(stencil_size):
            dcomp_flux_dpres[ke, ic] += dphase_flux_dpres[ke] * ycp
            for jc in range(nc):
                dcomp_flux_dcomp[ke, ic, jc] += dphase_flux_dcomp[ke, jc] * ycp

        # upstream composition
        dcomp_flux_dpres[k_up, ic] += (
            phase_flux * dphase_comp_frac_dpres[cell_up, ip, ic]
        )
        apply_chain_rule(
            nc,
            dcomp_frac_dcomp_dens[cell_up],
            dphase_comp_frac_dcomp[cell_up, ip, ic],
            dprop_dcomp,
        )
        for jc in range(nc):
            dcomp_flux_dcomp[k_up, ic, jc] += phase_flux * dprop_dcomp[jc]
