"""Module containing the evaluation of phase potentials over a connection.

The potential of a phase is the weighted pressure sum over the stencil (optionally
reduced by the capillary pressure) minus the gravitational head. The gravitational head
uses the mean mass density of the two primary cells, also for multi-point stencils.

Functions with a ``form_*`` prefix compute derivatives alongside the value and write
them into buffers provided by the caller. Functions with a ``*_value`` suffix compute
the value only, using the same summation order, and are used where only the upwind
direction is required.

Note:
    ``cells`` is always the row of resolved cell indices of a connection, see
    :meth:`~compflux.states.ConnectionStencils.flat_cells`.

"""

from __future__ import annotations

import numba
import numpy as np

from ._core import NUM_ELEMS, NUMBA_CACHE, NUMBA_FAST_MATH
from .utils import apply_chain_rule

__all__ = [
    "grav_head_value",
    "pressure_gradient_value",
    "form_grav_head",
    "form_pressure_gradient",
    "form_ppu_potential",
]


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def grav_head_value(
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    grav_coef: np.ndarray,
    phase_mass_dens: np.ndarray,
) -> float:
    """Gravitational head of phase ``ip``, without derivatives.

    See :func:`form_grav_head`.

    """
    dens_mean = 0.0
    for i in range(NUM_ELEMS):
        dens_mean += 0.5 * phase_mass_dens[cells[i], ip]

    grav_head = 0.0
    for i in range(stencil_size):
        grav_head += dens_mean * (weights[i] * grav_coef[cells[i]])
    return grav_head


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def pressure_gradient_value(
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
) -> float:
    """Weighted pressure sum of phase ``ip``, without derivatives.

    See :func:`form_pressure_gradient`.

    """
    pres_grad = 0.0
    for i in range(stencil_size):
        cell = cells[i]
        cap_pressure = phase_cap_pressure[cell, ip] if cap_pressure_flag else 0.0
        pres_grad += weights[i] * (pres[cell] + dpres[cell] - cap_pressure)
    return pres_grad


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_grav_head(
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    grav_coef: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    dgrav_head_dpres: np.ndarray,
    dgrav_head_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> float:
    r"""Forms the gravitational head of phase ``ip`` and its derivatives.

    .. math::

        g = \sum_i w_i \bar{\rho} \, \gamma_i~,\quad
        \bar{\rho} = \frac{1}{2}\left(\rho_0 + \rho_1\right)~,

    with :math:`w_i` the stencil weights, :math:`\gamma_i` the gravity coefficients and
    :math:`\rho` the phase mass density. The mean density only depends on the two
    primary cells, hence only the first :data:`~compflux._core.NUM_ELEMS` rows of the
    derivative buffers are written.

    Parameters:
        ip: Phase index.
        stencil_size: Number of cells in the stencil.
        cells: ``shape=(MAX_STENCIL,)``

            Resolved cell indices of the connection.
        weights: ``shape=(MAX_STENCIL,)``

            Stencil weights of the connection.
        grav_coef: Gravity coefficient per cell.
        dcomp_frac_dcomp_dens: Jacobian of component fractions w.r.t. component
            densities per cell.
        phase_mass_dens: Phase mass density per cell.
        dphase_mass_dens_dpres: Pressure derivative of the phase mass density.
        dphase_mass_dens_dcomp: Component fraction derivatives of the phase mass
            density.
        dgrav_head_dpres: ``shape=(>= NUM_ELEMS,)``

            Output, rows ``0`` and ``1`` are overwritten with the pressure derivatives.
        dgrav_head_dcomp: ``shape=(>= NUM_ELEMS, NC)``

            Output, rows ``0`` and ``1`` are overwritten with the component density
            derivatives.
        dprop_dcomp: ``shape=(NC,)``

            Working buffer.

    Returns:
        The gravitational head.

    """
    nc = dgrav_head_dcomp.shape[1]

    # mean density and its derivatives, stored in the output buffers
    dens_mean = 0.0
    for i in range(NUM_ELEMS):
        cell = cells[i]
        dens_mean += 0.5 * phase_mass_dens[cell, ip]
        dgrav_head_dpres[i] = 0.5 * dphase_mass_dens_dpres[cell, ip]

        apply_chain_rule(
            nc,
            dcomp_frac_dcomp_dens[cell],
            dphase_mass_dens_dcomp[cell, ip],
            dprop_dcomp,
        )
        for jc in range(nc):
            dgrav_head_dcomp[i, jc] = 0.5 * dprop_dcomp[jc]

    grav_head = 0.0
    grav_sum = 0.0
    for i in range(stencil_size):
        grav_d = weights[i] * grav_coef[cells[i]]
        grav_head += dens_mean * grav_d
        grav_sum += grav_d

    # both primary cells contribute through the mean density
    for i in range(NUM_ELEMS):
        dgrav_head_dpres[i] *= grav_sum
        for jc in range(nc):
            dgrav_head_dcomp[i, jc] *= grav_sum

    return grav_head


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_pressure_gradient(
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    dphase_vol_frac_dpres: np.ndarray,
    dphase_vol_frac_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    dphase_cap_pressure_dvol_frac: np.ndarray,
    cap_pressure_flag: bool,
    dpres_grad_dpres: np.ndarray,
    dpres_grad_dcomp: np.ndarray,
) -> float:
    r"""Forms the weighted pressure sum of phase ``ip`` and its derivatives.

    .. math::

        \Delta p = \sum_i w_i \left(p_i + \delta p_i - p_{c,i}\right)~.

    The capillary pressure is a function of the volume fractions of all phases. Its
    derivatives are chain-ruled through the volume fraction derivatives into pressure
    and component density derivatives.

    The derivatives are **added** to the buffers, for all stencil entries.

    Parameters:
        num_phases: Number of phases.
        ip: Phase index.
        stencil_size: Number of cells in the stencil.
        cells: Resolved cell indices of the connection.
        weights: Stencil weights of the connection.
        pres: Pressure per cell.
        dpres: Pressure increment per cell.
        dphase_vol_frac_dpres: Pressure derivatives of the volume fractions.
        dphase_vol_frac_dcomp: Component density derivatives of the volume fractions.
        phase_cap_pressure: Capillary pressure per cell and phase.
        dphase_cap_pressure_dvol_frac: Derivatives of the capillary pressure w.r.t.
            the volume fractions.
        cap_pressure_flag: If False, the capillary pressure is ignored.
        dpres_grad_dpres: ``shape=(MAX_STENCIL,)``

            Accumulator for the pressure derivatives.
        dpres_grad_dcomp: ``shape=(MAX_STENCIL, NC)``

            Accumulator for the component density derivatives.

    Returns:
        The weighted pressure sum.

    """
    nc = dpres_grad_dcomp.shape[1]

    pres_grad = 0.0
    for i in range(stencil_size):
        cell = cells[i]
        weight = weights[i]

        cap_pressure = 0.0
        dcap_pressure_dpres = 0.0
        if cap_pressure_flag:
            cap_pressure = phase_cap_pressure[cell, ip]
            for jp in range(num_phases):
                dcap_pressure_dpres += (
                    dphase_cap_pressure_dvol_frac[cell, ip, jp]
                    * dphase_vol_frac_dpres[cell, jp]
                )

        pres_grad += weight * (pres[cell] + dpres[cell] - cap_pressure)
        dpres_grad_dpres[i] += weight * (1.0 - dcap_pressure_dpres)

        if cap_pressure_flag:
            for jc in range(nc):
                dcap_pressure_dcomp = 0.0
                for jp in range(num_phases):
                    dcap_pressure_dcomp += (
                        dphase_cap_pressure_dvol_frac[cell, ip, jp]
                        * dphase_vol_frac_dcomp[cell, jp, jc]
                    )
                dpres_grad_dcomp[i, jc] += -weight * dcap_pressure_dcomp

    return pres_grad


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_ppu_potential(
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    dphase_vol_frac_dpres: np.ndarray,
    dphase_vol_frac_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    dphase_cap_pressure_dvol_frac: np.ndarray,
    cap_pressure_flag: bool,
    dpot_dpres: np.ndarray,
    dpot_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> float:
    """Forms the classical phase potential ``pres_grad - grav_head`` of phase ``ip``
    and its derivatives w.r.t. pressure and component densities at every stencil cell.

    The derivative buffers are overwritten on the first ``stencil_size`` entries.
    See :func:`form_pressure_gradient` and :func:`form_grav_head` for the parameters.

    Returns:
        The phase potential.

    """
    nc = dpot_dcomp.shape[1]
    for ke in range(stencil_size):
        dpot_dpres[ke] = 0.0
        for jc in range(nc):
            dpot_dcomp[ke, jc] = 0.0

    # gravitational head depends only on the primary cells, written first and negated
    grav_head = form_grav_head(
        ip,
        stencil_size,
        cells,
        weights,
        grav_coef,
        dcomp_frac_dcomp_dens,
        phase_mass_dens,
        dphase_mass_dens_dpres,
        dphase_mass_dens_dcomp,
        dpot_dpres,
        dpot_dcomp,
        dprop_dcomp,
    )
    for ke in range(NUM_ELEMS):
        dpot_dpres[ke] = -dpot_dpres[ke]
        for jc in range(nc):
            dpot_dcomp[ke, jc] = -dpot_dcomp[ke, jc]

    # pressure gradient depends on all points in the stencil
    pres_grad = form_pressure_gradient(
        num_phases,
        ip,
        stencil_size,
        cells,
        weights,
        pres,
        dpres,
        dphase_vol_frac_dpres,
        dphase_vol_frac_dcomp,
        phase_cap_pressure,
        dphase_cap_pressure_dvol_frac,
        cap_pressure_flag,
        dpot_dpres,
        dpot_dcomp,
    )

    return pres_grad - grav_head
